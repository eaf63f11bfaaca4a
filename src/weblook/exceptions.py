"""WebLook exception hierarchy.

Every fatal failure in the capture pipeline surfaces as a specific
``WeblookError`` subclass so the command line can print a distinct message
and exit non-zero.  ``ScriptExecutionError`` is the one recoverable member:
it is reported and the capture continues.
"""

from __future__ import annotations

from pathlib import Path


class WeblookError(Exception):
    """Base exception for all WebLook-specific errors."""


# ---------------------------------------------------------------------------
# Backend process
# ---------------------------------------------------------------------------


class PortInUse(WeblookError):
    """Raised when no port in the attempted range could be bound by the backend.

    Attributes:
        first_port: The preferred port the search started at.
        attempts: How many consecutive ports were tried.
    """

    def __init__(self, first_port: int, attempts: int) -> None:
        self.first_port = first_port
        self.attempts = attempts
        last = first_port + attempts - 1
        super().__init__(f"Could not bind the automation backend to any port in {first_port}-{last}")


class BackendStartTimeout(WeblookError):
    """Raised when the backend process never reports ready within the deadline."""

    def __init__(self, port: int, timeout_sec: float) -> None:
        self.port = port
        self.timeout_sec = timeout_sec
        super().__init__(
            f"Automation backend on port {port} did not become ready within {timeout_sec:.1f}s. "
            "Make sure chromedriver is installed and matches your Chrome version."
        )


class BackendLaunchFailed(WeblookError):
    """Raised when the backend executable cannot be run at all."""

    def __init__(self, binary: str, reason: str) -> None:
        self.binary = binary
        self.reason = reason
        super().__init__(f"Failed to start {binary}: {reason}. Make sure it's installed and on PATH.")


class BackendStateError(WeblookError):
    """Raised on an illegal backend lifecycle transition."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Backend cannot move from {current} to {requested}")


# ---------------------------------------------------------------------------
# Browser session protocol
# ---------------------------------------------------------------------------


class WebDriverProtocolError(WeblookError):
    """A request to the automation backend failed at the protocol level.

    Internal to ``weblook.browser.session``; always translated into one of the
    specific public errors below before it reaches a caller.
    """

    def __init__(self, command: str, status_code: int | None, error: str = "", message: str = "") -> None:
        self.command = command
        self.status_code = status_code
        self.error = error
        self.message = message
        detail = error or "protocol error"
        if message:
            detail = f"{detail}: {message}"
        status = f"HTTP {status_code}" if status_code is not None else "no response"
        super().__init__(f"{command} failed ({status}): {detail}")


class SessionCreationFailed(WeblookError):
    """Raised when the backend refuses to open a browser session."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to create browser session: {reason}")


class SessionClosedError(WeblookError):
    """Raised when a session handle is used after close or after its backend went away."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Browser session {session_id} is no longer usable")


class NavigationFailed(WeblookError):
    """Raised when the browser could not load the target URL."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class ScriptExecutionError(WeblookError):
    """Raised when injected JavaScript throws in page context. Non-fatal."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Injected script failed: {reason}")


class ScreenshotRequestFailed(WeblookError):
    """Raised when the backend refuses the screenshot command."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Screenshot request failed: {reason}")


class ScreenshotDecodeError(WeblookError):
    """Raised when the screenshot payload is not a decodable image."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Could not decode screenshot: {reason}")


# ---------------------------------------------------------------------------
# Capture, encoding, output
# ---------------------------------------------------------------------------


class CaptureAborted(WeblookError):
    """Raised when a capture is cancelled before any frame was captured."""

    def __init__(self, reason: str = "cancelled before the first frame was captured") -> None:
        self.reason = reason
        super().__init__(f"Capture aborted: {reason}")


class EncodingError(WeblookError):
    """Raised when captured frames cannot be encoded into an image container."""


class GifEncodingError(EncodingError):
    """Raised when a recording cannot be encoded as an animated GIF."""


class OutputWriteError(WeblookError):
    """Raised when the encoded capture cannot be written to its destination."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Could not write output to {self.path}: {reason}")
