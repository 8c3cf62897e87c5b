"""
Mermaid MCP
===========

MCP server that renders Mermaid diagrams through mermaid-cli.

Tools:
- render_mermaid: Render to SVG (text), PNG (image) or PDF (embedded resource)
- dryrun_mermaid: Validate a diagram definition without returning output

Transport modes:
- STDIO (default): For Claude Desktop and other MCP clients
- SSE: Server-Sent Events over HTTP
- HTTP: Streamable HTTP transport

Configuration is read from the environment when ``mermaid_mcp.server`` is
first imported, so the server module is not imported here.
"""

__version__ = "1.0.1"


def create_server():
    """Create and return the MCP server instance."""
    from .server import create_server as _create_server

    return _create_server()


__all__ = ["create_server", "__version__"]
