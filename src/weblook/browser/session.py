"""Browser session over the W3C WebDriver protocol.

Talks JSON over HTTP to the automation backend started by
``weblook.backend.supervisor``.  One request is in flight at a time; each
public operation maps to exactly one protocol command (plus the window
sizing that follows session creation).

Protocol failures are raised internally as ``WebDriverProtocolError`` and
translated into the specific error for the operation that failed, so a
caller never sees a generic failure.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import httpx
from PIL import Image

from weblook.backend.supervisor import BackendHandle
from weblook.capture.timer import InterruptibleTimer
from weblook.exceptions import (
    NavigationFailed,
    ScreenshotDecodeError,
    ScreenshotRequestFailed,
    ScriptExecutionError,
    SessionClosedError,
    SessionCreationFailed,
    WebDriverProtocolError,
)
from weblook.models.capture import Frame, LogEntry, Viewport
from weblook.models.states import SESSION_USABLE_STATES
from weblook.settings.config import BrowserSettings

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    """A backend-assigned browser session and the identity it was opened with."""

    session_id: str
    viewport: Viewport
    user_agent: str
    console_log_enabled: bool = False
    closed: bool = False


class BrowserSession:
    """Drives one browser session against a running backend.

    Args:
        backend: Handle of the backend process to talk to.
        settings: Browser settings; read from ``get_settings()`` when omitted.
        timer: Timer used for waits and frame timestamps.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        backend: BackendHandle,
        settings: BrowserSettings | None = None,
        *,
        timer: InterruptibleTimer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if settings is None:
            from weblook.settings import get_settings

            settings = get_settings().browser
        self._backend = backend
        self._settings = settings
        self._timer = timer or InterruptibleTimer()
        self._client = httpx.AsyncClient(
            base_url=backend.base_url,
            timeout=settings.request_timeout_sec,
            transport=transport,
        )

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the HTTP connection pool."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def open(self, viewport: Viewport, user_agent: str, *, collect_console: bool = False) -> SessionHandle:
        """Create a browser session sized to *viewport* and presenting *user_agent*.

        Raises:
            SessionCreationFailed: The backend refused the session or returned
                a payload without a session id.
        """
        self._require_backend()

        args = [f"--window-size={viewport.width},{viewport.height}", f"--user-agent={user_agent}"]
        if self._settings.headless:
            args.insert(0, "--headless=new")
        if self._settings.disable_gpu:
            args.append("--disable-gpu")
        args.append("--force-device-scale-factor=1")

        capabilities: dict[str, Any] = {
            "browserName": "chrome",
            "goog:chromeOptions": {"args": args},
        }
        if collect_console:
            capabilities["goog:loggingPrefs"] = {"browser": "ALL"}

        try:
            value = await self._command(
                "POST",
                "/session",
                {"capabilities": {"alwaysMatch": capabilities}},
                name="new session",
            )
        except WebDriverProtocolError as exc:
            raise SessionCreationFailed(str(exc)) from exc

        session_id = value.get("sessionId") if isinstance(value, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise SessionCreationFailed("response did not include a session id")

        session = SessionHandle(
            session_id=session_id,
            viewport=viewport,
            user_agent=user_agent,
            console_log_enabled=collect_console,
        )
        logger.debug("Browser session %s opened (%s)", session_id, viewport)

        try:
            await self._command(
                "POST",
                f"/session/{session_id}/window/rect",
                {"x": 0, "y": 0, "width": viewport.width, "height": viewport.height},
                name="set window rect",
            )
        except WebDriverProtocolError as exc:
            await self.close(session)
            raise SessionCreationFailed(f"could not size the browser window: {exc}") from exc

        return session

    async def close(self, session: SessionHandle) -> None:
        """Delete the session. Closing an already closed session is a no-op."""
        if session.closed:
            return
        session.closed = True
        try:
            await self._command("DELETE", f"/session/{session.session_id}", name="delete session")
        except WebDriverProtocolError as exc:
            logger.warning("Failed to close browser session %s: %s", session.session_id, exc)
        else:
            logger.debug("Browser session %s closed", session.session_id)

    # ------------------------------------------------------------------
    # Page operations
    # ------------------------------------------------------------------

    async def navigate(self, session: SessionHandle, url: str) -> None:
        """Load *url* in the session's window.

        Raises:
            NavigationFailed: The backend reported an error or timed out.
        """
        self._require_open(session)
        try:
            await self._command("POST", f"/session/{session.session_id}/url", {"url": url}, name="navigate")
        except WebDriverProtocolError as exc:
            raise NavigationFailed(url, exc.message or exc.error or str(exc)) from exc
        logger.debug("Navigated to %s", url)

    async def wait(self, duration: float) -> bool:
        """Pause without touching the session; ``False`` if cancelled."""
        return await self._timer.sleep(duration)

    async def inject(self, session: SessionHandle, script: str) -> Any:
        """Run *script* synchronously in page context and return its result.

        A short settle pause follows so visual effects land before capture.

        Raises:
            ScriptExecutionError: The script threw or the backend refused it.
        """
        self._require_open(session)
        try:
            result = await self._command(
                "POST",
                f"/session/{session.session_id}/execute/sync",
                {"script": script, "args": []},
                name="execute script",
            )
        except WebDriverProtocolError as exc:
            raise ScriptExecutionError(exc.message or exc.error or str(exc)) from exc
        await self._timer.sleep(self._settings.script_settle_sec)
        return result

    async def read_console_log(self, session: SessionHandle) -> list[LogEntry]:
        """Drain the browser console buffer.

        Never raises for protocol failures: logs a warning and returns an
        empty list instead.
        """
        self._require_open(session)
        if not session.console_log_enabled:
            logger.debug("Console logging was not enabled for session %s", session.session_id)
            return []
        try:
            value = await self._command(
                "POST",
                f"/session/{session.session_id}/se/log",
                {"type": "browser"},
                name="read console log",
            )
        except WebDriverProtocolError as exc:
            logger.warning("Could not read browser console log: %s", exc)
            return []
        if not isinstance(value, list):
            logger.warning("Unexpected console log payload (%s), ignoring", type(value).__name__)
            return []

        entries: list[LogEntry] = []
        for raw in value:
            if not isinstance(raw, dict):
                continue
            entries.append(
                LogEntry(
                    level=str(raw.get("level", "INFO")),
                    message=str(raw.get("message", "")),
                    timestamp=raw.get("timestamp"),
                )
            )
        logger.debug("Read %d console log entries", len(entries))
        return entries

    async def capture_frame(self, session: SessionHandle, origin: float) -> Frame:
        """Take a screenshot and decode it into an RGBA frame.

        Args:
            session: Open session to capture.
            origin: Timer reading the frame's timestamp is measured from.

        Raises:
            ScreenshotRequestFailed: The backend refused the screenshot command.
            ScreenshotDecodeError: The returned payload is not a valid image.
        """
        self._require_open(session)
        timestamp = max(0.0, self._timer.now() - origin)
        try:
            payload = await self._command("GET", f"/session/{session.session_id}/screenshot", name="screenshot")
        except WebDriverProtocolError as exc:
            raise ScreenshotRequestFailed(str(exc)) from exc
        frame = decode_screenshot(payload, timestamp)
        logger.debug("Captured %dx%d frame at +%.3fs", frame.width, frame.height, timestamp)
        return frame

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_backend(self) -> None:
        if self._backend.status not in SESSION_USABLE_STATES:
            raise SessionCreationFailed(f"automation backend is {self._backend.status.value}")

    def _require_open(self, session: SessionHandle) -> None:
        if session.closed or self._backend.status not in SESSION_USABLE_STATES:
            raise SessionClosedError(session.session_id)

    async def _command(self, method: str, path: str, payload: dict[str, Any] | None = None, *, name: str) -> Any:
        """Send one protocol command and return the response's ``value``."""
        try:
            resp = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise WebDriverProtocolError(name, None, "timeout", str(exc) or "request timed out") from exc
        except httpx.HTTPError as exc:
            raise WebDriverProtocolError(name, None, "connection error", str(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        value = body.get("value") if isinstance(body, dict) else None
        if resp.is_success and isinstance(body, dict) and "value" in body:
            return value

        error = ""
        message = ""
        if isinstance(value, dict):
            error = str(value.get("error", ""))
            message = str(value.get("message", ""))
        if not error and resp.is_success:
            error = "malformed response"
        raise WebDriverProtocolError(name, resp.status_code, error, message)


def decode_screenshot(payload: Any, timestamp: float = 0.0) -> Frame:
    """Decode a base64 PNG screenshot payload into an RGBA ``Frame``.

    Raises:
        ScreenshotDecodeError: Empty payload, invalid base64, or not an image.
    """
    if not isinstance(payload, str) or not payload:
        raise ScreenshotDecodeError("empty screenshot payload")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ScreenshotDecodeError("payload is not valid base64") from exc
    try:
        with Image.open(BytesIO(raw)) as img:
            img.load()
            frame = Frame.from_image(img, timestamp)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ScreenshotDecodeError(f"payload is not a valid image ({exc})") from exc
    if frame.width == 0 or frame.height == 0:
        raise ScreenshotDecodeError("screenshot has zero size")
    return frame
