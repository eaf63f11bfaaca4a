"""Capture request, frame, and result models.

Lightweight frozen data classes passed through the capture pipeline: the
request built by the command line (or a remote action), the frames produced
by the browser session, and the result handed to the encoder.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from PIL import Image

# One GIF time unit; recording cadence is never finer than this.
MIN_FRAME_INTERVAL = 0.01

# Comparison slack for float timing arithmetic (seconds)
_EPSILON = 1e-9


@dataclass(frozen=True)
class Viewport:
    """Pixel dimensions of the browser rendering surface."""

    width: int
    height: int

    def __post_init__(self) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"Viewport {name} must be a positive integer, got {value!r}")

    @classmethod
    def parse(cls, text: str) -> "Viewport":
        """Parse a ``WIDTHxHEIGHT`` string such as ``1280x720``."""
        parts = text.strip().lower().split("x")
        if len(parts) != 2:
            raise ValueError(f"Invalid viewport size {text!r}. Expected WIDTHxHEIGHT")
        try:
            width, height = int(parts[0]), int(parts[1])
        except ValueError:
            raise ValueError(f"Invalid viewport size {text!r}. Width and height must be integers") from None
        return cls(width=width, height=height)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


# ---------------------------------------------------------------------------
# Capture modes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Still:
    """Capture a single frame after the pre-capture wait."""


@dataclass(frozen=True)
class Recording:
    """Capture frames at a fixed cadence for ``duration`` seconds."""

    duration: float
    frame_interval: float = 0.1

    def __post_init__(self) -> None:
        if self.duration <= 0:
            raise ValueError(f"Recording duration must be positive, got {self.duration!r}")
        if self.frame_interval <= 0:
            raise ValueError(f"Frame interval must be positive, got {self.frame_interval!r}")

    @property
    def effective_interval(self) -> float:
        """Frame interval clamped to the minimum GIF time unit."""
        return max(self.frame_interval, MIN_FRAME_INTERVAL)

    @property
    def expected_frames(self) -> int:
        """Number of frame boundaries in ``[0, duration)``; never less than one."""
        return max(1, math.ceil(self.duration / self.effective_interval - _EPSILON))


CaptureMode = Union[Still, Recording]


# ---------------------------------------------------------------------------
# Output targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileOutput:
    """Write the encoded capture to a file, replacing any existing one."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))


@dataclass(frozen=True)
class StdStream:
    """Write the encoded capture, unframed, to standard output."""


OutputTarget = Union[FileOutput, StdStream]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CaptureRequest:
    """Everything needed to drive one capture, fully resolved by the caller."""

    url: str
    wait: float = 10.0
    mode: CaptureMode = field(default_factory=Still)
    viewport: Viewport = field(default_factory=lambda: Viewport(1280, 720))
    script: str | None = None
    console_log: Path | None = None
    output: OutputTarget = field(default_factory=lambda: FileOutput(Path("weblook.png")))

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("Capture URL must not be empty")
        if self.wait < 0:
            raise ValueError(f"Wait duration must not be negative, got {self.wait!r}")
        if self.console_log is not None:
            object.__setattr__(self, "console_log", Path(self.console_log))

    @property
    def is_recording(self) -> bool:
        return isinstance(self.mode, Recording)


# ---------------------------------------------------------------------------
# Frames and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogEntry:
    """One browser console message."""

    level: str
    message: str
    timestamp: int | None = None

    def format_line(self) -> str:
        """Render as a single line for the console-log file."""
        message = " ".join(self.message.splitlines())
        return f"[{self.level}] {message}"


@dataclass(frozen=True)
class Frame:
    """One decoded RGBA screenshot, stamped with its offset from capture start.

    Attributes:
        width: Pixel width.
        height: Pixel height.
        pixels: Raw RGBA bytes, row-major, ``width * height * 4`` long.
        timestamp: Seconds since the capture (or recording) started.
    """

    width: int
    height: int
    pixels: bytes = field(repr=False)
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        expected = self.width * self.height * 4
        if len(self.pixels) != expected:
            raise ValueError(
                f"Frame buffer holds {len(self.pixels)} bytes, expected {expected} for {self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_image(cls, image: Image.Image, timestamp: float = 0.0) -> "Frame":
        """Build a frame from any Pillow image (converted to RGBA)."""
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls(width=rgba.width, height=rgba.height, pixels=rgba.tobytes(), timestamp=timestamp)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_image(self) -> Image.Image:
        """Return the frame as a Pillow RGBA image."""
        return Image.frombytes("RGBA", (self.width, self.height), self.pixels)


@dataclass(frozen=True)
class CaptureResult:
    """The ordered frames of one capture.

    A still capture holds exactly one frame.  A recording holds one or more
    frames whose timestamps never decrease; ``partial`` marks a recording cut
    short by cancellation or a late failure.
    """

    frames: tuple[Frame, ...]
    recording: bool = False
    frame_interval: float = 0.1
    partial: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "frames", tuple(self.frames))
        if not self.frames:
            raise ValueError("A capture result needs at least one frame")
        if not self.recording and len(self.frames) != 1:
            raise ValueError(f"A still capture holds exactly one frame, got {len(self.frames)}")
        for earlier, later in zip(self.frames, self.frames[1:]):
            if later.timestamp < earlier.timestamp:
                raise ValueError("Frame timestamps must be non-decreasing")

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def delays(self) -> tuple[int, ...]:
        """Per-frame display delay in hundredths of a second (minimum 1).

        Each delay is the gap to the next frame's timestamp; the last frame
        is shown for the nominal frame interval.
        """
        delays: list[int] = []
        for current, following in zip(self.frames, self.frames[1:]):
            delays.append(_to_centiseconds(following.timestamp - current.timestamp))
        delays.append(_to_centiseconds(max(self.frame_interval, MIN_FRAME_INTERVAL)))
        return tuple(delays)

    @property
    def total_duration(self) -> float:
        """Total playback time in seconds."""
        return sum(self.delays) / 100


def _to_centiseconds(seconds: float) -> int:
    return max(1, round(seconds * 100))
