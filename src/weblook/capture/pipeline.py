"""End-to-end capture pipeline.

Start the automation backend, open a browser session, navigate, wait,
capture one frame or a recording, then tear everything down and encode::

    outcome = await capture(CaptureRequest(url="http://127.0.0.1:8080"))
    outcome.encoded.data  # PNG bytes

Teardown order is fixed: the browser session is closed best-effort, then
the backend process is stopped.  The backend stop runs on every exit path,
including errors raised by the session close and task cancellation.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import BinaryIO

from weblook.backend.supervisor import BackendHandle, BackendSupervisor
from weblook.browser.session import BrowserSession, SessionHandle
from weblook.browser.user_agents import UserAgentPool
from weblook.capture.assembler import EncodedCapture, GifAssembler
from weblook.capture.scheduler import CaptureScheduler
from weblook.capture.timer import InterruptibleTimer
from weblook.exceptions import CaptureAborted, ScriptExecutionError
from weblook.models.capture import CaptureRequest, CaptureResult, FileOutput, LogEntry
from weblook.output.sink import write_console_log, write_output
from weblook.settings.config import Settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[BackendHandle], BrowserSession]


@dataclass(frozen=True)
class CaptureOutcome:
    """Everything one capture produced."""

    result: CaptureResult
    encoded: EncodedCapture
    console_log: tuple[LogEntry, ...] = ()
    backend_port: int | None = None

    @property
    def partial(self) -> bool:
        return self.result.partial


async def capture(
    request: CaptureRequest,
    *,
    settings: Settings | None = None,
    cancel_event: asyncio.Event | None = None,
    timer: InterruptibleTimer | None = None,
    supervisor: BackendSupervisor | None = None,
    session_factory: SessionFactory | None = None,
    user_agents: UserAgentPool | None = None,
    preferred_port: int | None = None,
    debug: bool = False,
) -> CaptureOutcome:
    """Run one capture and return the encoded result without writing it.

    Args:
        request: What to capture.
        settings: Settings tree; ``get_settings()`` when omitted.
        cancel_event: Setting this event cancels the capture cooperatively.
        timer: Shared timer; built around *cancel_event* when omitted.
        supervisor: Backend supervisor; a chromedriver one when omitted.
        session_factory: Builds the ``BrowserSession`` for a ready backend.
        user_agents: Pool the session's user-agent is drawn from.
        preferred_port: First backend port to try.
        debug: Let the backend process write to the terminal.

    Raises:
        WeblookError: Any fatal failure; the backend has been stopped.
    """
    if settings is None:
        from weblook.settings import get_settings

        settings = get_settings()
    if timer is None:
        timer = InterruptibleTimer(cancel_event)
    if supervisor is None:
        supervisor = BackendSupervisor(settings.backend, timer=timer, debug=debug)
    if session_factory is None:
        session_factory = functools.partial(BrowserSession, settings=settings.browser, timer=timer)
    user_agents = user_agents or UserAgentPool()

    scheduler = CaptureScheduler(timer)
    console: list[LogEntry] = []

    async with supervisor.running(preferred_port) as backend:
        port = backend.port
        async with session_factory(backend) as browser:
            session = await browser.open(
                request.viewport,
                user_agents.pick(),
                collect_console=request.console_log is not None,
            )
            try:
                supervisor.mark_in_use(backend)
                if timer.cancelled:
                    raise CaptureAborted("cancelled before navigation")
                await browser.navigate(session, request.url)
                if timer.cancelled:
                    raise CaptureAborted("cancelled after navigation")

                prepare = None
                if request.script:
                    prepare = functools.partial(_inject_script, browser, session, request.script)

                result = await scheduler.run(
                    request,
                    functools.partial(browser.capture_frame, session),
                    before_capture=prepare,
                )
                if request.console_log is not None:
                    console = await browser.read_console_log(session)
            finally:
                await browser.close(session)

    encoded = GifAssembler().assemble(result)
    return CaptureOutcome(result=result, encoded=encoded, console_log=tuple(console), backend_port=port)


async def run_capture(request: CaptureRequest, *, stream: BinaryIO | None = None, **kwargs) -> CaptureOutcome:
    """Capture, then write the image (and console log, if requested).

    Keyword arguments other than *stream* are passed to ``capture()``.
    """
    outcome = await capture(request, **kwargs)

    target = request.output
    if isinstance(target, FileOutput) and target.path.suffix.lower() not in ("", outcome.encoded.extension):
        logger.warning("Writing %s data to %s", outcome.encoded.format.upper(), target.path)
    write_output(outcome.encoded.data, target, stream)

    if request.console_log is not None:
        write_console_log(outcome.console_log, request.console_log)
    return outcome


async def _inject_script(browser: BrowserSession, session: SessionHandle, script: str) -> None:
    try:
        await browser.inject(session, script)
    except ScriptExecutionError as exc:
        logger.warning("%s; continuing with the capture", exc)
