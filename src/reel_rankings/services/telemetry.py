from __future__ import annotations

import contextlib
import logging
import time
from typing import Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("reel_rankings.telemetry")


def configure_logging(level: str = "INFO", *, console: Optional[Console] = None) -> None:
    """Route every reel_rankings logger through a single rich handler."""
    root = logging.getLogger("reel_rankings")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    )


@contextlib.contextmanager
def timed_operation(label: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start
        logger.info("%s completed in %.2fs", label, duration)
