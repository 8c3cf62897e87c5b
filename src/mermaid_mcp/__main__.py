#!/usr/bin/env python3
"""
Mermaid MCP - Entry Point

Supports multiple transport modes:
- stdio: Standard I/O (default, for Claude Desktop)
- sse: Server-Sent Events over HTTP
- http: Streamable HTTP transport
"""

import argparse
import logging
import os

logger = logging.getLogger(__name__)

TRANSPORTS = {
    "stdio": "stdio",
    "sse": "sse",
    "http": "streamable-http",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mermaid-mcp",
        description="MCP server for rendering Mermaid diagrams",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with STDIO transport (default, for Claude Desktop)
  mermaid-mcp

  # Run with SSE transport on port 8080
  mermaid-mcp --transport sse --port 8080

  # Give slow renders more time and stage files elsewhere
  mermaid-mcp --timeout 120 --tmp-dir /var/tmp/mermaid

Note: Rendering requires Node.js with @mermaid-js/mermaid-cli and a Chromium
that puppeteer can launch (see PUPPETEER_EXECUTABLE_PATH).
"""
    )
    parser.add_argument(
        "--transport",
        choices=sorted(TRANSPORTS),
        default="stdio",
        help="Transport mode (default: stdio)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for SSE/HTTP transport (default: 8080)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind for SSE/HTTP transport (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--tmp-dir",
        type=str,
        help="Directory for staged input/output files (default: system temp dir)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds before a render is aborted (default: 60)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Log level, written to stderr (default: WARNING)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__import__('mermaid_mcp').__version__}"
    )
    return parser


def apply_environment(args: argparse.Namespace) -> None:
    """Export CLI overrides so the server module picks them up on import."""
    if args.tmp_dir:
        os.environ["MERMAID_MCP_TMPDIR"] = os.path.abspath(args.tmp_dir)
    if args.timeout is not None:
        os.environ["MERMAID_MCP_RENDER_TIMEOUT"] = str(args.timeout)
    if args.log_level:
        os.environ["MERMAID_MCP_LOG_LEVEL"] = args.log_level


def main(argv=None):
    args = build_parser().parse_args(argv)
    apply_environment(args)

    # Import server after setting environment
    from .server import TMP_DIR, mcp

    if args.transport != "stdio":
        mcp.settings.host = args.host
        mcp.settings.port = args.port
        logger.info("Starting %s server on %s:%s", args.transport, args.host, args.port)

    logger.info("Staging diagrams in %s", TMP_DIR)
    mcp.run(transport=TRANSPORTS[args.transport])


if __name__ == "__main__":
    main()
