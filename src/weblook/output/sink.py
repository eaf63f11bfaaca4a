"""Deliver encoded capture bytes to a file or to standard output."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

from weblook.exceptions import OutputWriteError
from weblook.models.capture import FileOutput, LogEntry, OutputTarget, StdStream

logger = logging.getLogger(__name__)

STDOUT_MARKER = "-"
DEFAULT_STILL_NAME = "weblook.png"
DEFAULT_RECORDING_NAME = "weblook.gif"


def resolve_output_target(output: str | Path | None, recording: bool) -> OutputTarget:
    """Map a command-line ``--output`` value to a target.

    ``-`` selects standard output; nothing selects ``weblook.png`` (still) or
    ``weblook.gif`` (recording) in the working directory.
    """
    if output is None or str(output) == "":
        return FileOutput(Path(DEFAULT_RECORDING_NAME if recording else DEFAULT_STILL_NAME))
    if str(output) == STDOUT_MARKER:
        return StdStream()
    return FileOutput(Path(output))


class OutputSink:
    """Writes bytes verbatim to a ``FileOutput`` or ``StdStream`` target.

    Args:
        stream: Binary stream used for ``StdStream``; defaults to
            ``sys.stdout.buffer`` at write time.
    """

    def __init__(self, stream: BinaryIO | None = None) -> None:
        self._stream = stream

    def write(self, data: bytes, target: OutputTarget) -> None:
        if isinstance(target, StdStream):
            self._write_stream(data)
        elif isinstance(target, FileOutput):
            self._write_file(data, target.path)
        else:
            raise TypeError(f"Unsupported output target: {target!r}")

    def _write_stream(self, data: bytes) -> None:
        stream = self._stream if self._stream is not None else sys.stdout.buffer
        try:
            stream.write(data)
            stream.flush()
        except OSError as exc:
            raise OutputWriteError("<stdout>", str(exc)) from exc
        logger.debug("Wrote %d bytes to standard output", len(data))

    def _write_file(self, data: bytes, path: Path) -> None:
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise OutputWriteError(path, exc.strerror or str(exc)) from exc
        logger.debug("Wrote %d bytes to %s", len(data), path)


def write_output(data: bytes, target: OutputTarget, stream: BinaryIO | None = None) -> None:
    """Write *data* to *target*; see ``OutputSink``."""
    OutputSink(stream).write(data, target)


def write_console_log(entries: Iterable[LogEntry], path: Path) -> int:
    """Write one ``[LEVEL] message`` line per entry; returns the line count.

    An empty log still creates (or truncates) the file.
    """
    lines = [entry.format_line() for entry in entries]
    text = "".join(f"{line}\n" for line in lines)
    try:
        Path(path).write_text(text, encoding="utf-8")
    except OSError as exc:
        raise OutputWriteError(path, exc.strerror or str(exc)) from exc
    logger.debug("Wrote %d console log line(s) to %s", len(lines), path)
    return len(lines)
