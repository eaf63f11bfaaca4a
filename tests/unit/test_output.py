"""Unit tests for output delivery."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from types import SimpleNamespace

import pytest

from weblook.exceptions import OutputWriteError
from weblook.models.capture import FileOutput, LogEntry, StdStream
from weblook.output.sink import OutputSink, resolve_output_target, write_console_log, write_output

PAYLOAD = b"\x89PNG\r\n\x1a\n\x00\x01\x02\n\r\xff"


class TestResolveOutputTarget:
    def test_dash_means_stdout(self) -> None:
        assert resolve_output_target("-", recording=False) == StdStream()
        assert resolve_output_target("-", recording=True) == StdStream()

    def test_default_names(self) -> None:
        assert resolve_output_target(None, recording=False) == FileOutput(Path("weblook.png"))
        assert resolve_output_target(None, recording=True) == FileOutput(Path("weblook.gif"))

    def test_explicit_path(self) -> None:
        assert resolve_output_target("shots/page.png", recording=False) == FileOutput(Path("shots/page.png"))


class TestOutputSink:
    def test_file_and_stream_are_byte_identical(self, tmp_path: Path) -> None:
        path = tmp_path / "out.png"
        stream = BytesIO()

        write_output(PAYLOAD, FileOutput(path))
        write_output(PAYLOAD, StdStream(), stream=stream)

        assert path.read_bytes() == PAYLOAD
        assert stream.getvalue() == PAYLOAD

    def test_existing_file_is_overwritten(self, tmp_path: Path) -> None:
        path = tmp_path / "out.gif"
        path.write_bytes(b"old contents that are longer than the payload" * 3)
        write_output(PAYLOAD, FileOutput(path))
        assert path.read_bytes() == PAYLOAD

    def test_defaults_to_stdout_buffer(self, monkeypatch) -> None:
        fake_stdout = SimpleNamespace(buffer=BytesIO())
        monkeypatch.setattr("sys.stdout", fake_stdout)
        OutputSink().write(PAYLOAD, StdStream())
        assert fake_stdout.buffer.getvalue() == PAYLOAD

    def test_unwritable_path_reports_path(self, tmp_path: Path) -> None:
        path = tmp_path / "missing-dir" / "out.png"
        with pytest.raises(OutputWriteError) as exc_info:
            write_output(PAYLOAD, FileOutput(path))
        assert exc_info.value.path == str(path)
        assert str(path) in str(exc_info.value)

    def test_broken_stream(self) -> None:
        class BrokenPipe(BytesIO):
            def write(self, data):  # noqa: ARG002
                raise BrokenPipeError("reader went away")

        with pytest.raises(OutputWriteError):
            write_output(PAYLOAD, StdStream(), stream=BrokenPipe())

    def test_unknown_target(self) -> None:
        with pytest.raises(TypeError):
            OutputSink().write(PAYLOAD, "out.png")  # type: ignore[arg-type]


class TestConsoleLog:
    def test_one_line_per_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "console.log"
        entries = [LogEntry("INFO", "hello"), LogEntry("SEVERE", "Uncaught TypeError:\nx is undefined")]
        assert write_console_log(entries, path) == 2
        assert path.read_text() == "[INFO] hello\n[SEVERE] Uncaught TypeError: x is undefined\n"

    def test_empty_log_still_creates_file(self, tmp_path: Path) -> None:
        path = tmp_path / "console.log"
        assert write_console_log([], path) == 0
        assert path.read_text() == ""

    def test_unwritable(self, tmp_path: Path) -> None:
        with pytest.raises(OutputWriteError):
            write_console_log([LogEntry("INFO", "x")], tmp_path / "nope" / "console.log")
