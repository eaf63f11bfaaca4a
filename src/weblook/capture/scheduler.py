"""Capture cadence: one still frame, or a fixed-interval recording.

Frame boundaries are measured from the moment recording starts, not from
the end of the previous capture.  A capture that overruns its interval is
not compensated with catch-up frames: the most recent overdue boundary is
captured as soon as possible and stamped with its real offset, older missed
boundaries are dropped.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable

from weblook.capture.assembler import FrameBuffer
from weblook.capture.timer import InterruptibleTimer
from weblook.exceptions import CaptureAborted, WeblookError
from weblook.models.capture import CaptureRequest, CaptureResult, Frame, Recording

logger = logging.getLogger(__name__)

# Takes the timer reading frames are stamped against, returns the captured frame
CaptureFn = Callable[[float], Awaitable[Frame]]
PrepareFn = Callable[[], Awaitable[None]]

_EPSILON = 1e-9


class CaptureScheduler:
    """Decides when and how many frames to capture for one request."""

    def __init__(self, timer: InterruptibleTimer) -> None:
        self._timer = timer

    async def run(
        self,
        request: CaptureRequest,
        capture: CaptureFn,
        *,
        before_capture: PrepareFn | None = None,
    ) -> CaptureResult:
        """Wait, optionally prepare the page, then capture per the request's mode.

        Args:
            request: The capture request (wait duration and mode are used).
            capture: Coroutine function taking the timestamp origin.
            before_capture: Awaited once after the wait, before the first frame.

        Raises:
            CaptureAborted: Cancelled before the first frame was captured.
        """
        if not await self._timer.sleep(request.wait):
            raise CaptureAborted("cancelled during the pre-capture wait")
        if before_capture is not None:
            await before_capture()
        if self._timer.cancelled:
            raise CaptureAborted()

        if isinstance(request.mode, Recording):
            return await self._record(request.mode, capture)

        frames = FrameBuffer()
        frames.append(await capture(self._timer.now()))
        return frames.to_result(recording=False)

    async def _record(self, mode: Recording, capture: CaptureFn) -> CaptureResult:
        interval = mode.effective_interval
        duration = mode.duration
        logger.debug("Recording %.2fs at %.3fs intervals (~%d frames)", duration, interval, mode.expected_frames)

        frames = FrameBuffer()
        partial = False
        origin = self._timer.now()
        index = 0

        while True:
            delay = origin + index * interval - self._timer.now()
            if delay > 0 and not await self._timer.sleep(delay):
                partial = True
                break
            if self._timer.cancelled:
                partial = True
                break
            if frames and self._timer.now() - origin >= duration - _EPSILON:
                break

            try:
                frame = await capture(origin)
            except WeblookError as exc:
                if not frames:
                    raise
                logger.warning(
                    "Frame capture failed after %d frame(s), keeping what was recorded: %s", len(frames), exc
                )
                partial = True
                break
            frames.append(frame)

            elapsed = self._timer.now() - origin
            index = max(index + 1, math.floor(elapsed / interval + _EPSILON))
            if index * interval >= duration - _EPSILON:
                break

        if not frames:
            raise CaptureAborted("cancelled before the first recording frame")
        if partial:
            logger.info("Recording stopped early with %d of ~%d frames", len(frames), mode.expected_frames)
        return frames.to_result(recording=True, frame_interval=interval, partial=partial)
