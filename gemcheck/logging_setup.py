"""Logging configuration for the Gem Check CLI."""

from __future__ import annotations

import logging
import sys


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow gemcheck logs at the configured level
    - suppress third-party noise (watchdog, websockets, asyncio) unless WARNING+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "gemcheck" or record.name.startswith("gemcheck."):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with a single stderr handler.

    Call this once, before the first task runs.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    logging.captureWarnings(True)
