import os
import sys
import tempfile
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# The app module loads its config at import time; keep that out of the repo.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="webiscriptura-tests-"))
os.environ.setdefault(
    "WEBISCRIPTURA_CONFIG_FILE", str(_SESSION_DIR / "webiscriptura.toml")
)
os.environ.setdefault("WEBISCRIPTURA_LOG_PATH", str(_SESSION_DIR / "chat_proxy.jsonl"))

PROVIDER_ENV_VARS = (
    "AZURE_OPENAI_API_BASE_URL",
    "AZURE_OPENAI_DEPLOYMENT",
    "AZURE_OPENAI_API_KEY",
    "OPENAI_API_BASE_URL",
    "OPENAI_API_KEY",
)


class ChunkedStream(httpx.AsyncByteStream):
    """Upstream body delivered in fixed pieces; records whether it was closed."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def sse_body(*payloads: str) -> bytes:
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode()


def delta(text: str) -> str:
    return '{"choices": [{"delta": {"content": "%s"}}]}' % text


@pytest.fixture
def clean_provider_env(monkeypatch):
    """Remove provider variables so each test picks its own upstream."""

    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
