"""WebLook: screenshots and animated recordings of web pages via a headless browser."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("weblook")
except Exception:
    __version__ = "0.0.0"
