import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / 'src'))

from mermaid_mcp import server  # noqa: E402

SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg" id="mermaid-0"><g class="node"/></svg>'
PNG_BYTES = b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR fake png payload'
PDF_BYTES = b'%PDF-1.4\n% fake pdf payload\n%%EOF'


class FakeProcess:
    def __init__(self, returncode=0, stdout=b'', stderr=b'', delay=0):
        self.exit_code = returncode
        self.returncode = None if delay else returncode
        self.stdout = stdout
        self.stderr = stderr
        self.delay = delay
        self.killed = False

    async def communicate(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.returncode = self.exit_code
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


class FakeEngine:
    """Stands in for mermaid-cli: records each invocation and writes canned output."""

    def __init__(self):
        self.calls = []
        self.inputs = []
        self.processes = []
        self.outputs = {"svg": SVG_BYTES, "png": PNG_BYTES, "pdf": PDF_BYTES}
        self.stderr = None
        self.returncode = 0
        self.write_output = True
        self.delay = 0
        self.missing = False

    async def __call__(self, *cmd, **kwargs):
        if self.missing:
            raise FileNotFoundError(cmd[0])

        args = list(cmd)
        input_path = Path(args[args.index('-i') + 1])
        output_path = Path(args[args.index('-o') + 1])
        fmt = args[args.index('-e') + 1]

        self.calls.append(args)
        self.inputs.append(input_path.read_text(encoding='utf-8'))

        if self.returncode == 0 and self.write_output and not self.delay:
            output_path.write_bytes(self.outputs[fmt])

        process = FakeProcess(
            returncode=self.returncode,
            stderr=self.stderr or b'',
            delay=self.delay,
        )
        self.processes.append(process)
        return process


@pytest.fixture
def staging_dir(monkeypatch, tmp_path):
    monkeypatch.setattr(server, "TMP_DIR", tmp_path)
    monkeypatch.setattr(server, "_puppeteer_config_path", None)
    return tmp_path


@pytest.fixture
def engine(monkeypatch, staging_dir):
    fake = FakeEngine()
    monkeypatch.setattr(server, "MMDC_COMMAND", ["mmdc"])
    monkeypatch.setattr(server.asyncio, "create_subprocess_exec", fake)
    return fake


def staged_leftovers(directory: Path) -> list:
    return sorted(
        p.name for p in directory.iterdir()
        if p.name.startswith(("input-", "output-"))
    )
