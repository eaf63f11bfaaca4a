"""WebLook test configuration: shared fixtures for unit tests."""

from __future__ import annotations

import base64
import socket
import sys
import textwrap
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from weblook.capture.timer import InterruptibleTimer
from weblook.models.capture import Frame


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from weblook.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Frames and images
# ---------------------------------------------------------------------------


def solid_frame(width: int = 4, height: int = 3, color=(255, 0, 0, 255), timestamp: float = 0.0) -> Frame:
    """A single-colour RGBA frame."""
    return Frame(width=width, height=height, pixels=bytes(color) * (width * height), timestamp=timestamp)


def gradient_frame(width: int = 16, height: int = 8, timestamp: float = 0.0) -> Frame:
    """A frame where every pixel differs, to catch lossy encoding."""
    pixels = bytearray()
    for y in range(height):
        for x in range(width):
            pixels += bytes(((x * 16) % 256, (y * 32) % 256, (x * y) % 256, 255 - x))
    return Frame(width=width, height=height, pixels=bytes(pixels), timestamp=timestamp)


def png_base64(width: int = 8, height: int = 6, color=(10, 200, 30)) -> str:
    """Base64 PNG payload as returned by a WebDriver screenshot command."""
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


# ---------------------------------------------------------------------------
# Deterministic timer
# ---------------------------------------------------------------------------


class FakeTimer(InterruptibleTimer):
    """Timer on a virtual clock: sleeping advances time instantly."""

    def __init__(self) -> None:
        super().__init__()
        self.clock = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.clock

    def advance(self, seconds: float) -> None:
        self.clock += seconds

    async def sleep(self, seconds: float) -> bool:
        if self.cancelled:
            return False
        self.sleeps.append(seconds)
        self.clock += max(seconds, 0.0)
        return True


@pytest.fixture()
def fake_timer() -> FakeTimer:
    return FakeTimer()


# ---------------------------------------------------------------------------
# Fake automation backend process
# ---------------------------------------------------------------------------

_FAKE_BACKEND = textwrap.dedent(
    """
    import json
    import sys
    import threading
    from http.server import BaseHTTPRequestHandler, HTTPServer

    port = int(next(arg.split("=", 1)[1] for arg in sys.argv[1:] if arg.startswith("--port=")))
    ignore_shutdown = "--ignore-shutdown" in sys.argv


    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/status":
                self._reply(200, {"value": {"ready": True, "message": "ready"}})
            elif self.path == "/shutdown":
                self._reply(200, {"value": None})
                if not ignore_shutdown:
                    threading.Thread(target=server.shutdown, daemon=True).start()
            else:
                self._reply(404, {"value": {"error": "unknown command", "message": self.path}})

        def _reply(self, code, payload):
            body = json.dumps(payload).encode()
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass


    server = HTTPServer(("127.0.0.1", port), Handler)
    server.serve_forever()
    """
)


@pytest.fixture()
def fake_backend_command(tmp_path: Path) -> list[str]:
    """Command that starts a tiny WebDriver-like server; ``--port=N`` is appended by the supervisor."""
    script = tmp_path / "fake_backend.py"
    script.write_text(_FAKE_BACKEND)
    return [sys.executable, str(script)]


@pytest.fixture()
def free_port() -> int:
    """A port that was free a moment ago (the next one is very likely free too)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests that take more than a few seconds")
