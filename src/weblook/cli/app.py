"""WebLook command line.

Config precedence: settings.default.toml -> settings.local.toml -> env vars (WEBLOOK_* with __) -> CLI flags.

Examples::

    weblook http://127.0.0.1:8080                     # weblook.png after 10s
    weblook https://example.com -w 2 -s 800x600 -o shot.png
    weblook https://example.com --record -l 3         # weblook.gif, 3 seconds
    weblook https://example.com -o - | display         # PNG bytes on stdout
    echo https://example.com | weblook -o page.png
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from weblook import __version__
from weblook.exceptions import WeblookError
from weblook.models.capture import CaptureRequest, Recording, Still, StdStream, Viewport
from weblook.output.sink import resolve_output_target

APP_HELP = (
    "weblook — capture a web page as a PNG screenshot or an animated GIF recording. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (WEBLOOK_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=False, help=APP_HELP)
console = Console(stderr=True)

logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"weblook {__version__}")
        raise typer.Exit()


@app.command()
def main(
    url: Optional[str] = typer.Argument(
        None, help="URL to capture. Read from stdin when piped; defaults to the configured URL."
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file (weblook.png / weblook.gif by default). Use '-' for stdout."
    ),
    wait: Optional[float] = typer.Option(None, "--wait", "-w", min=0, help="Seconds to wait before capturing."),
    record: bool = typer.Option(False, "--record", "-r", help="Record an animated GIF instead of a screenshot."),
    length: Optional[float] = typer.Option(None, "--length", "-l", min=0.01, help="Recording length in seconds."),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Viewport size as WIDTHxHEIGHT."),
    js: Optional[str] = typer.Option(None, "--js", "-j", help="JavaScript to run in the page before capturing."),
    console_log: Optional[Path] = typer.Option(
        None, "--console-log", help="Write the browser console log to this file."
    ),
    port: Optional[int] = typer.Option(None, "--port", min=1, max=65535, help="First port tried for chromedriver."),
    debug: bool = typer.Option(False, "--debug", "-d", help="Verbose logging, including chromedriver output."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
) -> None:
    """Capture a web page as an image or a short recording."""
    from weblook.settings import get_settings

    settings = get_settings()
    debug = debug or settings.debug
    _configure_logging(debug)

    if url is None and not sys.stdin.isatty():
        url = sys.stdin.read().strip() or None
    url = (url or settings.capture.url).strip()
    if not url:
        raise typer.BadParameter("URL must not be empty", param_hint="URL")

    try:
        viewport = Viewport.parse(size or settings.capture.size)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--size") from exc

    mode = Still()
    if record:
        mode = Recording(
            duration=length if length is not None else settings.capture.recording_length_sec,
            frame_interval=settings.capture.frame_interval_sec,
        )
    elif length is not None:
        console.print("[yellow]⚠[/yellow] --length only applies with --record; ignoring it")

    request = CaptureRequest(
        url=url,
        wait=wait if wait is not None else settings.capture.wait_sec,
        mode=mode,
        viewport=viewport,
        script=js,
        console_log=console_log,
        output=resolve_output_target(output, recording=record),
    )

    show_status = not debug and not isinstance(request.output, StdStream)
    if show_status:
        action = "Recording" if record else "Capturing"
        console.print(f"[bold]{action}:[/bold] {url} ({viewport}, waiting {request.wait:g}s)")

    try:
        outcome = asyncio.run(_run(request, port=port, debug=debug))
    except WeblookError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=1)

    if show_status:
        if outcome.partial:
            console.print(f"[yellow]⚠[/yellow] Recording was cut short after {outcome.result.frame_count} frame(s)")
        noun = "GIF" if outcome.encoded.format == "gif" else "screenshot"
        console.print(f"[green]✓[/green] Saved {noun} to {request.output.path}")
        if request.console_log is not None:
            console.print(f"  Console log: {request.console_log} ({len(outcome.console_log)} entries)")


async def _run(request: CaptureRequest, *, port: int | None, debug: bool):
    """Run the capture with Ctrl+C wired to cooperative cancellation."""
    from weblook.capture.pipeline import run_capture

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _interrupt, cancel_event)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No loop signal support here (e.g. Windows); Ctrl+C falls back to KeyboardInterrupt
        installed = False

    try:
        return await run_capture(request, cancel_event=cancel_event, preferred_port=port, debug=debug)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _interrupt(cancel_event: asyncio.Event) -> None:
    if not cancel_event.is_set():
        logger.warning("Interrupted, finishing up")
    cancel_event.set()


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    app()
