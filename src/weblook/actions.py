"""Remote-control actions.

A narrow entry point for agents and other programs that want captures
without going through the command line.  Each action validates a plain
parameter dict, builds a ``CaptureRequest``, runs the capture pipeline, and
returns the encoded image as base64::

    result = await invoke_action("capture_screenshot", {"url": "https://example.com", "wait": 2})
    result["format"]  # "png"

Transport and framing are the caller's concern; nothing here listens on a
socket.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from weblook.capture.pipeline import CaptureOutcome, capture
from weblook.models.capture import CaptureRequest, Recording, Still, StdStream, Viewport

logger = logging.getLogger(__name__)

CaptureRunner = Callable[[CaptureRequest], Awaitable[CaptureOutcome]]


class CaptureScreenshotParams(BaseModel):
    """Parameters of ``capture_screenshot``."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1, description="URL to capture")
    wait: float = Field(default=10, ge=0, description="Wait time before capture in seconds")
    size: str = Field(default="1280x720", description="Viewport size (format: WIDTHxHEIGHT)")
    js: str | None = Field(default=None, description="JavaScript to execute before capture")

    @field_validator("size")
    @classmethod
    def check_size(cls, v: str) -> str:
        return str(Viewport.parse(v))

    def to_request(self, frame_interval: float) -> CaptureRequest:
        return CaptureRequest(
            url=self.url,
            wait=self.wait,
            mode=Still(),
            viewport=Viewport.parse(self.size),
            script=self.js or None,
            output=StdStream(),
        )


class RecordInteractionParams(CaptureScreenshotParams):
    """Parameters of ``record_interaction``."""

    duration: float = Field(default=10, gt=0, description="Recording duration in seconds")

    def to_request(self, frame_interval: float) -> CaptureRequest:
        request = super().to_request(frame_interval)
        return CaptureRequest(
            url=request.url,
            wait=request.wait,
            mode=Recording(duration=self.duration, frame_interval=frame_interval),
            viewport=request.viewport,
            script=request.script,
            output=request.output,
        )


@dataclass(frozen=True)
class ActionDefinition:
    name: str
    description: str
    params: type[CaptureScreenshotParams]

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.params.model_json_schema(),
        }


ACTIONS: dict[str, ActionDefinition] = {
    action.name: action
    for action in (
        ActionDefinition("capture_screenshot", "Capture a screenshot of a web page", CaptureScreenshotParams),
        ActionDefinition("record_interaction", "Record an animated GIF of a web page", RecordInteractionParams),
    )
}


def list_actions() -> list[dict[str, Any]]:
    """Describe every registered action with its JSON parameter schema."""
    return [action.describe() for action in ACTIONS.values()]


async def invoke_action(
    name: str,
    params: Mapping[str, Any],
    *,
    runner: CaptureRunner | None = None,
    frame_interval: float | None = None,
) -> dict[str, str]:
    """Run action *name* with *params*.

    Returns:
        ``{"image_data": <base64>, "format": "png" | "gif"}``

    Raises:
        KeyError: No action is registered under *name*.
        pydantic.ValidationError: *params* failed validation.
        WeblookError: The capture itself failed.
    """
    try:
        action = ACTIONS[name]
    except KeyError:
        raise KeyError(f"Unknown action {name!r}; available: {', '.join(sorted(ACTIONS))}") from None

    if frame_interval is None:
        from weblook.settings import get_settings

        frame_interval = get_settings().capture.frame_interval_sec

    request = action.params.model_validate(dict(params)).to_request(frame_interval)
    logger.debug("Running action %s for %s", name, request.url)

    outcome = await (runner or capture)(request)
    return {
        "image_data": base64.b64encode(outcome.encoded.data).decode("ascii"),
        "format": outcome.encoded.format,
    }
