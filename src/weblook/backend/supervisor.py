"""Automation backend process supervision.

Owns the lifetime of the external chromedriver process: picks a free port,
spawns the process, polls its ``/status`` endpoint with exponential backoff
until it reports ready, and tears it down again.  Teardown asks for a
graceful ``/shutdown`` first, then terminates, then kills.

Usage::

    supervisor = BackendSupervisor()
    async with supervisor.running() as backend:
        ...  # talk to backend.base_url

Every handle returned by ``start()`` must be passed to ``stop()`` exactly
once; ``running()`` does that on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import subprocess
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from weblook.capture.timer import InterruptibleTimer
from weblook.exceptions import BackendLaunchFailed, BackendStartTimeout, BackendStateError, CaptureAborted, PortInUse
from weblook.models.states import STOPPABLE_STATES, BackendStatus, can_transition
from weblook.settings.config import BackendSettings

logger = logging.getLogger(__name__)

# Seconds allowed for a single readiness or shutdown request
_PROBE_TIMEOUT = 1.0
# Seconds to wait after SIGTERM before escalating to SIGKILL
_TERMINATE_TIMEOUT = 2.0


@dataclass
class BackendHandle:
    """A running (or formerly running) backend process bound to one port."""

    port: int
    host: str = "127.0.0.1"
    pid: int | None = None
    status: BackendStatus = BackendStatus.NOT_STARTED

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def port_is_free(host: str, port: int) -> bool:
    """Return True if a new listener could bind *host*:*port* right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        # A port left in TIME_WAIT by a previous backend can be reused
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class BackendSupervisor:
    """Starts, health-checks, and stops one automation backend process.

    Args:
        settings: Backend settings; read from ``get_settings()`` when omitted.
        command: Executable and leading arguments; ``--port=N`` is appended.
            Defaults to ``[settings.binary]``.
        timer: Timer used for readiness polling (and its cancellation).
        debug: Let the backend write to the inherited stdout/stderr.
    """

    def __init__(
        self,
        settings: BackendSettings | None = None,
        *,
        command: Sequence[str] | None = None,
        timer: InterruptibleTimer | None = None,
        debug: bool = False,
    ) -> None:
        if settings is None:
            from weblook.settings import get_settings

            settings = get_settings().backend
        self._settings = settings
        self._command = list(command) if command else [settings.binary]
        self._timer = timer or InterruptibleTimer()
        self._debug = debug
        self._process: asyncio.subprocess.Process | None = None
        self._handle: BackendHandle | None = None

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        """The most recently spawned backend process, if any."""
        return self._process

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, preferred_port: int | None = None) -> BackendHandle:
        """Spawn the backend on the first usable port at or after *preferred_port*.

        Raises:
            PortInUse: Every attempted port was taken or refused by the backend.
            BackendStartTimeout: The backend stayed alive but never became ready.
            BackendLaunchFailed: The backend executable could not be run.
            CaptureAborted: Cancellation was requested while starting.
        """
        first_port = preferred_port or self._settings.preferred_port
        attempts = self._settings.port_attempts
        host = self._settings.host

        for offset in range(attempts):
            port = first_port + offset
            if port > 65535:
                break
            if not port_is_free(host, port):
                logger.debug("Port %d is already in use, trying the next one", port)
                continue

            handle = BackendHandle(port=port, host=host)
            self._transition(handle, BackendStatus.STARTING)
            process = await self._spawn(handle)

            try:
                ready = await self._wait_until_ready(handle, process)
            except BaseException:
                await self._discard(handle, process)
                raise

            if ready:
                self._transition(handle, BackendStatus.READY)
                logger.debug("Automation backend ready on port %d (pid %s)", port, process.pid)
                return handle

            exited = process.returncode is not None
            await self._discard(handle, process)
            if self._timer.cancelled:
                raise CaptureAborted("cancelled while starting the automation backend")
            if exited:
                logger.debug("Backend exited with code %s on port %d, trying the next one", process.returncode, port)
                continue
            raise BackendStartTimeout(port, self._settings.start_timeout_sec)

        raise PortInUse(first_port, attempts)

    def mark_in_use(self, handle: BackendHandle) -> None:
        """Record that a browser session is now active against *handle*."""
        self._transition(handle, BackendStatus.IN_USE)

    async def stop(self, handle: BackendHandle) -> None:
        """Shut the backend down: graceful request, grace window, then force.

        Stopping an already stopped handle is a no-op.
        """
        if handle.status not in STOPPABLE_STATES:
            logger.debug("Backend on port %d is %s, nothing to stop", handle.port, handle.status.value)
            return

        process = self._process if handle is self._handle else None
        if process is not None and process.returncode is not None and handle.status != BackendStatus.FAILED:
            logger.warning("Automation backend exited unexpectedly (code %s)", process.returncode)
            self._transition(handle, BackendStatus.FAILED)

        self._transition(handle, BackendStatus.STOPPING)
        logger.debug("Stopping automation backend on port %d", handle.port)
        try:
            if process is not None and process.returncode is None:
                await self._request_shutdown(handle)
                if not await _wait_for_exit(process, self._settings.stop_grace_sec):
                    logger.debug("Backend ignored shutdown request, terminating pid %s", process.pid)
                    await _terminate(process)
        except BaseException:
            # Cancelled mid-teardown: never leave the process behind
            if process is not None and process.returncode is None:
                _kill_now(process)
            raise
        finally:
            self._transition(handle, BackendStatus.STOPPED)
        logger.debug("Automation backend stopped")

    @asynccontextmanager
    async def running(self, preferred_port: int | None = None) -> AsyncIterator[BackendHandle]:
        """Start the backend and stop it when the block exits, however it exits."""
        handle = await self.start(preferred_port)
        try:
            yield handle
        finally:
            await self.stop(handle)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, handle: BackendHandle, target: BackendStatus) -> None:
        if not can_transition(handle.status, target):
            raise BackendStateError(handle.status.value, target.value)
        handle.status = target

    async def _spawn(self, handle: BackendHandle) -> asyncio.subprocess.Process:
        cmd = [*self._command, f"--port={handle.port}"]
        output = None if self._debug else subprocess.DEVNULL
        logger.debug("Starting automation backend: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
                # Own process group: a terminal Ctrl+C must not kill it before we close the session
                start_new_session=True,
            )
        except OSError as exc:
            self._transition(handle, BackendStatus.FAILED)
            self._transition(handle, BackendStatus.STOPPING)
            self._transition(handle, BackendStatus.STOPPED)
            raise BackendLaunchFailed(self._command[0], str(exc)) from exc
        handle.pid = process.pid
        self._process = process
        self._handle = handle
        return process

    async def _wait_until_ready(self, handle: BackendHandle, process: asyncio.subprocess.Process) -> bool:
        """Poll ``/status`` with bounded exponential backoff.

        Returns ``False`` on timeout, early process exit, or cancellation.
        """
        deadline = self._timer.now() + self._settings.start_timeout_sec
        delay = self._settings.poll_initial_delay_sec
        async with httpx.AsyncClient(timeout=_PROBE_TIMEOUT) as client:
            while True:
                if process.returncode is not None:
                    return False
                if await _probe_ready(client, handle.base_url):
                    return True
                remaining = deadline - self._timer.now()
                if remaining <= 0:
                    return False
                if not await self._timer.sleep(min(delay, remaining)):
                    return False
                delay = min(delay * 2, self._settings.poll_max_delay_sec)

    async def _request_shutdown(self, handle: BackendHandle) -> None:
        try:
            async with httpx.AsyncClient(timeout=_PROBE_TIMEOUT) as client:
                await client.get(f"{handle.base_url}/shutdown")
        except httpx.HTTPError as exc:
            logger.debug("Graceful shutdown request failed: %s", exc)

    async def _discard(self, handle: BackendHandle, process: asyncio.subprocess.Process) -> None:
        """Tear down a process that never became usable."""
        try:
            await _terminate(process)
        finally:
            if handle.status != BackendStatus.FAILED:
                self._transition(handle, BackendStatus.FAILED)
            self._transition(handle, BackendStatus.STOPPING)
            self._transition(handle, BackendStatus.STOPPED)


async def _probe_ready(client: httpx.AsyncClient, base_url: str) -> bool:
    """Return True if the backend answers ``/status`` with a ready payload."""
    try:
        resp = await client.get(f"{base_url}/status")
    except httpx.HTTPError:
        return False
    if resp.status_code != 200:
        return False
    try:
        value = resp.json().get("value", {})
    except ValueError:
        return False
    if isinstance(value, dict) and "ready" in value:
        return bool(value["ready"])
    return True


async def _wait_for_exit(process: asyncio.subprocess.Process, timeout: float) -> bool:
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """SIGTERM, then SIGKILL if the process lingers."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    if await _wait_for_exit(process, _TERMINATE_TIMEOUT):
        return
    logger.warning("Backend pid %s did not terminate, killing it", process.pid)
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


def _kill_now(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
