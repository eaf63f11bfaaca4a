"""Unit tests for the weblook command line."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from conftest import solid_frame
from weblook import __version__
from weblook.capture.assembler import EncodedCapture
from weblook.capture.pipeline import CaptureOutcome
from weblook.cli.app import app
from weblook.exceptions import BackendStartTimeout
from weblook.models.capture import CaptureResult, FileOutput, Recording, Still, StdStream, Viewport

runner = CliRunner()


def _outcome(recording: bool = False, partial: bool = False) -> CaptureOutcome:
    if recording:
        frames = (solid_frame(timestamp=0.0), solid_frame(timestamp=0.1))
        result = CaptureResult(frames=frames, recording=True, partial=partial)
        return CaptureOutcome(result=result, encoded=EncodedCapture(b"GIF89a", "gif", 2, partial), backend_port=9515)
    result = CaptureResult(frames=(solid_frame(),))
    return CaptureOutcome(result=result, encoded=EncodedCapture(b"\x89PNG", "png"), backend_port=9515)


@pytest.fixture()
def mock_run():
    with patch("weblook.capture.pipeline.run_capture", new_callable=AsyncMock) as mocked:
        mocked.return_value = _outcome()
        yield mocked


def _request(mock_run):
    mock_run.assert_awaited_once()
    return mock_run.await_args.args[0]


class TestStill:
    def test_defaults(self, mock_run) -> None:
        result = runner.invoke(app, ["http://127.0.0.1:8080"])
        assert result.exit_code == 0, result.output

        request = _request(mock_run)
        assert request.url == "http://127.0.0.1:8080"
        assert request.mode == Still()
        assert request.wait == 10
        assert request.viewport == Viewport(1280, 720)
        assert request.output == FileOutput(Path("weblook.png"))
        assert request.console_log is None
        assert "Saved screenshot to weblook.png" in result.output

    def test_options(self, mock_run) -> None:
        result = runner.invoke(
            app,
            [
                "https://example.com",
                "-o",
                "page.png",
                "-w",
                "2.5",
                "-s",
                "800x600",
                "-j",
                "document.title = 'x'",
                "--console-log",
                "console.txt",
                "--port",
                "9600",
            ],
        )
        assert result.exit_code == 0, result.output

        request = _request(mock_run)
        assert request.wait == 2.5
        assert request.viewport == Viewport(800, 600)
        assert request.script == "document.title = 'x'"
        assert request.console_log == Path("console.txt")
        assert request.output == FileOutput(Path("page.png"))
        assert mock_run.await_args.kwargs["preferred_port"] == 9600

    def test_stdout_output_suppresses_status(self, mock_run) -> None:
        result = runner.invoke(app, ["https://example.com", "-o", "-"])
        assert result.exit_code == 0, result.output
        assert _request(mock_run).output == StdStream()
        assert "Saved" not in result.output

    def test_url_from_stdin(self, mock_run) -> None:
        result = runner.invoke(app, [], input="https://piped.example\n")
        assert result.exit_code == 0, result.output
        assert _request(mock_run).url == "https://piped.example"

    def test_default_url_when_nothing_given(self, mock_run) -> None:
        result = runner.invoke(app, [], input="")
        assert result.exit_code == 0, result.output
        assert _request(mock_run).url == "http://127.0.0.1:8080"


class TestRecord:
    def test_record_with_length(self, mock_run) -> None:
        mock_run.return_value = _outcome(recording=True)
        result = runner.invoke(app, ["https://example.com", "--record", "-l", "3"])
        assert result.exit_code == 0, result.output

        request = _request(mock_run)
        assert request.mode == Recording(duration=3, frame_interval=0.1)
        assert request.output == FileOutput(Path("weblook.gif"))
        assert "Saved GIF to weblook.gif" in result.output

    def test_record_default_length(self, mock_run) -> None:
        mock_run.return_value = _outcome(recording=True)
        result = runner.invoke(app, ["https://example.com", "-r"])
        assert result.exit_code == 0, result.output
        assert _request(mock_run).mode == Recording(duration=10, frame_interval=0.1)

    def test_partial_recording_exits_zero(self, mock_run) -> None:
        mock_run.return_value = _outcome(recording=True, partial=True)
        result = runner.invoke(app, ["https://example.com", "-r", "-l", "3"])
        assert result.exit_code == 0
        assert "cut short" in result.output


class TestErrors:
    def test_bad_size(self, mock_run) -> None:
        result = runner.invoke(app, ["https://example.com", "-s", "huge"])
        assert result.exit_code == 2
        mock_run.assert_not_awaited()

    def test_negative_wait(self, mock_run) -> None:
        result = runner.invoke(app, ["https://example.com", "-w", "-1"])
        assert result.exit_code == 2
        mock_run.assert_not_awaited()

    def test_capture_error_exits_one(self, mock_run) -> None:
        mock_run.side_effect = BackendStartTimeout(9515, 5.0)
        result = runner.invoke(app, ["https://example.com"])
        assert result.exit_code == 1
        assert "did not become ready" in result.output


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
