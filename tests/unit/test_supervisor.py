"""Unit tests for backend process supervision.

These spawn real (tiny) Python processes standing in for chromedriver, so
they also prove that no process outlives its supervisor.
"""

from __future__ import annotations

import logging
import socket
import sys

import pytest

from weblook.backend.supervisor import BackendHandle, BackendSupervisor, port_is_free
from weblook.capture.timer import InterruptibleTimer
from weblook.exceptions import BackendLaunchFailed, BackendStartTimeout, CaptureAborted, PortInUse
from weblook.models.states import BackendStatus
from weblook.settings.config import BackendSettings

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]
CRASHER = [sys.executable, "-c", "import sys; sys.exit(3)"]


def _settings(port: int, **overrides) -> BackendSettings:
    values = dict(
        preferred_port=port,
        port_attempts=3,
        start_timeout_sec=10.0,
        poll_initial_delay_sec=0.02,
        poll_max_delay_sec=0.2,
        stop_grace_sec=2.0,
    )
    values.update(overrides)
    return BackendSettings(**values)


class TestStartStop:
    @pytest.mark.anyio
    async def test_start_then_stop(self, fake_backend_command, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port), command=fake_backend_command)

        handle = await supervisor.start()
        assert handle.status == BackendStatus.READY
        assert handle.port == free_port
        assert handle.pid == supervisor.process.pid
        assert supervisor.process.returncode is None

        supervisor.mark_in_use(handle)
        assert handle.status == BackendStatus.IN_USE

        await supervisor.stop(handle)
        assert handle.status == BackendStatus.STOPPED
        assert supervisor.process.returncode is not None

    @pytest.mark.anyio
    async def test_stop_twice_is_a_noop(self, fake_backend_command, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port), command=fake_backend_command)
        handle = await supervisor.start()
        await supervisor.stop(handle)
        await supervisor.stop(handle)
        assert handle.status == BackendStatus.STOPPED

    @pytest.mark.anyio
    async def test_ignored_shutdown_request_is_forced(self, fake_backend_command, free_port) -> None:
        settings = _settings(free_port, stop_grace_sec=0.2)
        supervisor = BackendSupervisor(settings, command=[*fake_backend_command, "--ignore-shutdown"])
        handle = await supervisor.start()

        await supervisor.stop(handle)
        assert handle.status == BackendStatus.STOPPED
        assert supervisor.process.returncode is not None

    @pytest.mark.anyio
    async def test_backend_that_died_is_marked_failed_then_stopped(
        self, fake_backend_command, free_port, caplog
    ) -> None:
        supervisor = BackendSupervisor(_settings(free_port), command=fake_backend_command)
        handle = await supervisor.start()
        supervisor.process.kill()
        await supervisor.process.wait()

        with caplog.at_level(logging.WARNING, logger="weblook.backend.supervisor"):
            await supervisor.stop(handle)
        assert handle.status == BackendStatus.STOPPED
        assert "exited unexpectedly" in caplog.text

    @pytest.mark.anyio
    async def test_running_stops_on_error(self, fake_backend_command, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port), command=fake_backend_command)

        with pytest.raises(RuntimeError):
            async with supervisor.running() as handle:
                assert handle.status == BackendStatus.READY
                raise RuntimeError("downstream failure")

        assert handle.status == BackendStatus.STOPPED
        assert supervisor.process.returncode is not None

    @pytest.mark.anyio
    async def test_stop_on_never_started_handle_is_a_noop(self) -> None:
        supervisor = BackendSupervisor(_settings(9515), command=SLEEPER)
        handle = BackendHandle(port=9515)
        await supervisor.stop(handle)
        assert handle.status == BackendStatus.NOT_STARTED


class TestPortSelection:
    def test_port_in_time_wait_counts_as_free(self, free_port) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(("127.0.0.1", free_port))
            listener.listen(1)
            client = socket.create_connection(("127.0.0.1", free_port))
            accepted, _ = listener.accept()
            # Server side closes first, leaving its port in TIME_WAIT
            accepted.close()
            client.close()

        assert port_is_free("127.0.0.1", free_port)

    @pytest.mark.anyio
    async def test_busy_preferred_port_moves_to_next(self, fake_backend_command, free_port, caplog) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", free_port))
            blocker.listen(1)
            assert not port_is_free("127.0.0.1", free_port)

            supervisor = BackendSupervisor(_settings(free_port), command=fake_backend_command)
            with caplog.at_level(logging.DEBUG, logger="weblook.backend.supervisor"):
                async with supervisor.running() as handle:
                    assert handle.port > free_port

        assert f"ready on port {handle.port}" in caplog.text
        assert supervisor.process.returncode is not None

    @pytest.mark.anyio
    async def test_explicit_preferred_port_wins(self, fake_backend_command, free_port) -> None:
        supervisor = BackendSupervisor(_settings(9), command=fake_backend_command)
        async with supervisor.running(free_port) as handle:
            assert handle.port == free_port

    @pytest.mark.anyio
    async def test_backend_refusing_every_port(self, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port, port_attempts=2), command=CRASHER)
        with pytest.raises(PortInUse) as exc_info:
            await supervisor.start()
        assert exc_info.value.first_port == free_port
        assert exc_info.value.attempts == 2
        assert supervisor.process.returncode is not None


class TestStartFailures:
    @pytest.mark.anyio
    async def test_never_ready_times_out_without_leaking(self, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port, start_timeout_sec=0.3), command=SLEEPER)
        with pytest.raises(BackendStartTimeout) as exc_info:
            await supervisor.start()
        assert exc_info.value.port == free_port
        assert supervisor.process.returncode is not None

    @pytest.mark.anyio
    async def test_missing_binary(self, free_port) -> None:
        supervisor = BackendSupervisor(_settings(free_port), command=["/nonexistent/weblook-chromedriver"])
        with pytest.raises(BackendLaunchFailed):
            await supervisor.start()
        assert supervisor.process is None

    @pytest.mark.anyio
    async def test_cancellation_while_starting(self, free_port) -> None:
        timer = InterruptibleTimer()
        timer.cancel()
        supervisor = BackendSupervisor(_settings(free_port), command=SLEEPER, timer=timer)
        with pytest.raises(CaptureAborted):
            await supervisor.start()
        assert supervisor.process.returncode is not None
