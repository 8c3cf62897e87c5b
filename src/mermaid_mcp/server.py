#!/usr/bin/env python3
"""
Mermaid MCP - Server Implementation
===================================

Renders Mermaid diagram definitions through mermaid-cli (mmdc), which drives
a headless Chromium via puppeteer.

Supported output formats:
- svg - returned as a text block with the SVG markup
- png - returned as an inline image block
- pdf - returned as an embedded binary resource

Tools:
- render_mermaid: Render a diagram and return the artifact
- dryrun_mermaid: Validate a diagram by rendering it and discarding the output
"""

import asyncio
import base64
import json
import logging
import os
import shlex
import shutil
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import BlobResourceContents, EmbeddedResource, ImageContent, TextContent
from pydantic import Field

logger = logging.getLogger(__name__)

# Configuration from environment
TMP_DIR = Path(os.environ.get("MERMAID_MCP_TMPDIR") or tempfile.gettempdir())
MMDC_COMMAND = shlex.split(os.environ.get("MERMAID_MCP_MMDC", ""))
RENDER_TIMEOUT = float(os.environ.get("MERMAID_MCP_RENDER_TIMEOUT", "60"))
LOG_LEVEL = os.environ.get("MERMAID_MCP_LOG_LEVEL", "WARNING").upper()

# --no-sandbox lets Chromium start inside containers without extra privileges
PUPPETEER_CONFIG = {"args": ["--no-sandbox"], "headless": "new"}

MIME_TYPES = {
    "svg": "image/svg+xml",
    "png": "image/png",
    "pdf": "application/pdf",
}

OutputFormat = Literal["svg", "png", "pdf"]

_puppeteer_config_path: Optional[Path] = None


class RenderError(Exception):
    """The external rendering engine failed to produce a diagram."""


@asynccontextmanager
async def server_lifespan(server: FastMCP):
    """Initialize on startup, cleanup on shutdown."""
    TMP_DIR.mkdir(parents=True, exist_ok=True)
    try:
        yield
    finally:
        _remove_puppeteer_config()


# Initialize the MCP server
mcp = FastMCP("mermaid", lifespan=server_lifespan, log_level=LOG_LEVEL)


def create_server() -> FastMCP:
    """Create and return the MCP server instance."""
    return mcp


# ============================================================================
# Markdown Extraction
# ============================================================================

MERMAID_FENCE = "```mermaid"
FENCE = "```"


def extract_diagram(text: str, is_markdown: bool) -> str:
    """Return the body of the first ```mermaid block when ``is_markdown`` is set.

    Falls back to the input unchanged if the flag is off or no mermaid fence
    is present. A missing closing fence takes the rest of the document.
    """
    if not is_markdown or MERMAID_FENCE not in text:
        return text

    _, _, rest = text.partition(MERMAID_FENCE)
    body, _, _ = rest.partition(FENCE)
    return body.strip()


# ============================================================================
# Temporary Staging
# ============================================================================

@dataclass(frozen=True)
class StagedFiles:
    key: str
    input_path: Path
    output_path: Path


def new_key() -> str:
    """Millisecond timestamp plus a random token, unique per call."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def stage(fmt: str, key: Optional[str] = None) -> StagedFiles:
    key = key or new_key()
    return StagedFiles(
        key=key,
        input_path=TMP_DIR / f"input-{key}.mmd",
        output_path=TMP_DIR / f"output-{key}.{fmt}",
    )


def write_input(path: Path, diagram: str) -> None:
    path.write_text(diagram, encoding="utf-8")


def cleanup(*paths: Path) -> None:
    """Best-effort removal; never raises."""
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not remove %s: %s", path, e)


# ============================================================================
# Rendering
# ============================================================================

def _mmdc_command() -> list:
    """Return the command used to invoke mermaid-cli."""
    if MMDC_COMMAND:
        return list(MMDC_COMMAND)

    mmdc = shutil.which("mmdc")
    if mmdc:
        return [mmdc]

    npx = shutil.which("npx")
    if npx:
        return [npx, "--yes", "@mermaid-js/mermaid-cli"]

    raise RenderError(
        "mermaid-cli (mmdc) not found. Install it with: npm install -g @mermaid-js/mermaid-cli"
    )


def _puppeteer_config() -> Path:
    """Write the headless browser config once per process and return its path."""
    global _puppeteer_config_path

    if _puppeteer_config_path is None or not _puppeteer_config_path.exists():
        path = TMP_DIR / f"mermaid-mcp-puppeteer-{os.getpid()}.json"
        path.write_text(json.dumps(PUPPETEER_CONFIG), encoding="utf-8")
        _puppeteer_config_path = path

    return _puppeteer_config_path


def _remove_puppeteer_config() -> None:
    global _puppeteer_config_path

    if _puppeteer_config_path is not None:
        cleanup(_puppeteer_config_path)
        _puppeteer_config_path = None


async def _kill(process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def render(input_path: Path, output_path: Path, fmt: str) -> None:
    """Render ``input_path`` to ``output_path`` with mermaid-cli.

    The engine's stdout/stderr are piped into this call only, so its
    diagnostics never reach the protocol channel and concurrent renders do
    not interfere with each other.

    Raises:
        RenderError: if the engine is missing, times out, exits non-zero or
            produces no output.
    """
    cmd = [
        *_mmdc_command(),
        '-i', str(input_path),
        '-o', str(output_path),
        '-e', fmt,
        '-p', str(_puppeteer_config()),
        '-q',
    ]
    logger.debug("Running %s", shlex.join(cmd))

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise RenderError(
            f"mermaid-cli not found ({cmd[0]}). Install it with: npm install -g @mermaid-js/mermaid-cli"
        ) from None

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=RENDER_TIMEOUT
        )
    except asyncio.TimeoutError:
        await _kill(process)
        raise RenderError(f"Rendering timed out after {RENDER_TIMEOUT:g} seconds") from None
    except BaseException:
        # Cancelled: the engine must not outlive the call and write after cleanup
        await _kill(process)
        raise

    stdout_text = stdout.decode('utf-8', errors='replace').strip() if stdout else ''
    stderr_text = stderr.decode('utf-8', errors='replace').strip() if stderr else ''
    if stdout_text or stderr_text:
        logger.debug("mermaid-cli output: stdout=%r stderr=%r", stdout_text, stderr_text)

    if process.returncode != 0:
        raise RenderError(
            stderr_text or stdout_text or f"mermaid-cli exited with code {process.returncode}"
        )

    if not output_path.exists() or output_path.stat().st_size == 0:
        raise RenderError("Rendering produced no output file")


# ============================================================================
# Response Shaping
# ============================================================================

UNKNOWN_ERROR = "Unknown error"


def error_message(error: BaseException) -> str:
    """Human-readable message for any failure, with a placeholder if it has none."""
    return str(error) or UNKNOWN_ERROR


def shape_response(
    data: bytes, fmt: str, key: str
) -> Union[ImageContent, EmbeddedResource, TextContent]:
    """Wrap rendered bytes in the content block matching ``fmt``."""
    if fmt == "png":
        return ImageContent(
            type="image",
            mimeType=MIME_TYPES["png"],
            data=base64.b64encode(data).decode('ascii'),
        )

    if fmt == "pdf":
        return EmbeddedResource(
            type="resource",
            resource=BlobResourceContents(
                uri=f"mermaid://diagrams/{key}.pdf",
                mimeType=MIME_TYPES["pdf"],
                blob=base64.b64encode(data).decode('ascii'),
            ),
        )

    return TextContent(type="text", text=data.decode('utf-8'))


def failure_payload(error: BaseException) -> dict:
    return {"status": "failed", "message": error_message(error)}


# ============================================================================
# Diagram Pipeline
# ============================================================================

async def generate_diagram(
    diagram: str,
    fmt: str,
    is_markdown: bool,
    key: Optional[str] = None,
) -> tuple:
    """Render a diagram definition and return ``(artifact_bytes, key)``.

    Staged files are removed whether or not rendering succeeds.
    """
    content = extract_diagram(diagram, is_markdown)
    staged = stage(fmt, key)

    try:
        write_input(staged.input_path, content)
        await render(staged.input_path, staged.output_path, fmt)
        return staged.output_path.read_bytes(), staged.key
    finally:
        cleanup(staged.input_path, staged.output_path)


# ============================================================================
# Tools
# ============================================================================

DiagramArg = Annotated[str, Field(description="Diagram definition in Mermaid format")]
IsMarkdownArg = Annotated[
    bool, Field(description="Whether the diagram definition is in Markdown format")
]


@mcp.tool(structured_output=False)
async def render_mermaid(
    diagram: DiagramArg,
    format: Annotated[OutputFormat, Field(description="Output format")] = "png",
    isMarkdownWrapped: IsMarkdownArg = False,
) -> Union[ImageContent, EmbeddedResource, TextContent]:
    """Generate a Mermaid diagram from a diagram definition.

    The diagram definition can be in Mermaid format or Markdown format.
    If the diagram definition is in Markdown format, the diagram definition
    is extracted from the first ```mermaid``` block in the input.
    """
    try:
        output, key = await generate_diagram(diagram, format, isMarkdownWrapped)
        return shape_response(output, format, key)
    except Exception as e:
        logger.error("Diagram generation failed: %s", error_message(e))
        raise ToolError(f"Failed to generate diagram: {error_message(e)}") from e


@mcp.tool(structured_output=False)
async def dryrun_mermaid(
    diagram: DiagramArg,
    format: Annotated[OutputFormat, Field(description="Output format")] = "svg",
    isMarkdownWrapped: IsMarkdownArg = False,
) -> str:
    """Validates a Mermaid diagram definition without generating a diagram.

    The diagram definition can be in Mermaid format or Markdown format.
    If the diagram definition is in Markdown format, the diagram definition
    is extracted from the first ```mermaid``` block in the input.

    Returns:
        JSON string: {"status": "ok"} or {"status": "failed", "message": "..."}
    """
    try:
        await generate_diagram(diagram, format, isMarkdownWrapped)
        return json.dumps({"status": "ok"})
    except Exception as e:
        logger.info("Diagram validation failed: %s", error_message(e))
        return json.dumps(failure_payload(e))
