"""Turn captured frames into the final image bytes.

A still capture is written as a lossless RGBA PNG.  A recording is written
as an animated GIF: one colour palette (at most 256 entries) is built from
all frames together, every frame is mapped onto it without dithering, and
each frame carries its own display delay.  The animation loops forever.

Frames keep capture order and must all share one size; mismatched or empty
frames are rejected, never resized.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from io import BytesIO

from PIL import GifImagePlugin, Image

from weblook.exceptions import EncodingError, GifEncodingError
from weblook.models.capture import CaptureResult, Frame, MIN_FRAME_INTERVAL

logger = logging.getLogger(__name__)

# Largest thumbnail edge used when sampling frames for the shared palette
_PALETTE_SAMPLE_EDGE = 256


@dataclass(frozen=True)
class EncodedCapture:
    """Encoded capture bytes ready for an output sink."""

    data: bytes
    format: str
    frame_count: int = 1
    partial: bool = False

    @property
    def extension(self) -> str:
        return f".{self.format}"

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}"


class FrameBuffer:
    """Ordered, single-use collection of frames for one capture.

    Each frame may be added once; timestamps must not go backwards.
    """

    def __init__(self) -> None:
        self._frames: list[Frame] = []

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)

    @property
    def frames(self) -> tuple[Frame, ...]:
        return tuple(self._frames)

    def append(self, frame: Frame) -> None:
        if any(existing is frame for existing in self._frames):
            raise ValueError("Frame was already added to this buffer")
        if self._frames and frame.timestamp < self._frames[-1].timestamp:
            raise ValueError(
                f"Frame at +{frame.timestamp:.3f}s arrived after frame at +{self._frames[-1].timestamp:.3f}s"
            )
        self._frames.append(frame)

    def to_result(self, *, recording: bool, frame_interval: float = 0.1, partial: bool = False) -> CaptureResult:
        return CaptureResult(
            frames=tuple(self._frames),
            recording=recording,
            frame_interval=frame_interval,
            partial=partial,
        )


class GifAssembler:
    """Encodes a ``CaptureResult`` as PNG (still) or animated GIF (recording).

    Args:
        max_colors: Size cap of the shared GIF palette (2-256).
    """

    def __init__(self, *, max_colors: int = 256) -> None:
        if not 2 <= max_colors <= 256:
            raise ValueError(f"max_colors must be between 2 and 256, got {max_colors}")
        self._max_colors = max_colors

    def assemble(self, result: CaptureResult) -> EncodedCapture:
        """Encode *result*; the format follows the capture mode."""
        if result.recording:
            data = self.encode_animation(result.frames, result.delays)
            fmt = "gif"
        else:
            data = self.encode_still(result.frames[0])
            fmt = "png"
        logger.debug("Encoded %d frame(s) as %s (%d bytes)", result.frame_count, fmt.upper(), len(data))
        return EncodedCapture(data=data, format=fmt, frame_count=result.frame_count, partial=result.partial)

    def encode_still(self, frame: Frame) -> bytes:
        """Encode one frame as a full-colour RGBA PNG."""
        if frame.width <= 0 or frame.height <= 0:
            raise EncodingError(f"Cannot encode a {frame.width}x{frame.height} frame")
        buf = BytesIO()
        try:
            frame.to_image().save(buf, format="PNG")
        except (OSError, ValueError) as exc:
            raise EncodingError(f"PNG encoding failed: {exc}") from exc
        return buf.getvalue()

    def encode_animation(self, frames: Sequence[Frame], delays: Sequence[int] | None = None) -> bytes:
        """Encode *frames* as a looping GIF against one shared palette.

        Args:
            frames: Frames in capture order.
            delays: Display delay per frame in hundredths of a second.
                Defaults to the minimum GIF interval for every frame.

        Raises:
            GifEncodingError: No frames, a zero-size frame, mismatched frame
                sizes, or a delay list of the wrong length.
        """
        self._check_frames(frames)
        if delays is None:
            delays = [round(MIN_FRAME_INTERVAL * 100)] * len(frames)
        if len(delays) != len(frames):
            raise GifEncodingError(f"Got {len(delays)} delays for {len(frames)} frames")

        rgb_frames = [frame.to_image().convert("RGB") for frame in frames]
        try:
            palette = self._shared_palette(rgb_frames)
            paletted = [img.quantize(palette=palette, dither=Image.Dither.NONE) for img in rgb_frames]
            return self._write_gif(paletted, delays)
        except (OSError, ValueError) as exc:
            raise GifEncodingError(f"GIF encoding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_frames(frames: Sequence[Frame]) -> None:
        if not frames:
            raise GifEncodingError("No frames to encode")
        width, height = frames[0].size
        for position, frame in enumerate(frames):
            if frame.width <= 0 or frame.height <= 0:
                raise GifEncodingError(f"Frame {position} has zero size ({frame.width}x{frame.height})")
            if frame.size != (width, height):
                raise GifEncodingError(
                    f"Frame {position} is {frame.width}x{frame.height}, expected {width}x{height} like frame 0"
                )

    @staticmethod
    def _write_gif(paletted: Sequence[Image.Image], delays: Sequence[int]) -> bytes:
        """Write one image block per frame, repeats included, after the global header."""
        buf = BytesIO()
        # Pillow takes milliseconds and stores hundredths
        durations = [max(1, int(d)) * 10 for d in delays]
        header, _ = GifImagePlugin.getheader(paletted[0], info={"loop": 0, "duration": durations[0]})
        for chunk in header:
            buf.write(chunk)
        for img, duration in zip(paletted, durations):
            for chunk in GifImagePlugin.getdata(img, duration=duration, disposal=1):
                buf.write(chunk)
        buf.write(b";")
        return buf.getvalue()

    def _shared_palette(self, images: Sequence[Image.Image]) -> Image.Image:
        """Quantize a contact sheet of every frame down to one palette image."""
        thumbs: list[Image.Image] = []
        for img in images:
            thumb = img.copy()
            thumb.thumbnail((_PALETTE_SAMPLE_EDGE, _PALETTE_SAMPLE_EDGE))
            thumbs.append(thumb)

        sheet = Image.new("RGB", (max(t.width for t in thumbs), sum(t.height for t in thumbs)))
        top = 0
        for thumb in thumbs:
            sheet.paste(thumb, (0, top))
            top += thumb.height
        return sheet.quantize(colors=self._max_colors, method=Image.Quantize.MEDIANCUT)
