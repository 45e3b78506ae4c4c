"""Logging setup for the mxl CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_installed = []


def level_for(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(verbosity: int = 0, log_file: Optional[Path] = None) -> None:
    """Send console logs through rich and, when given, everything to a log file."""
    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    console_handler = RichHandler(show_path=False, rich_tracebacks=False)
    console_handler.setLevel(level_for(verbosity))
    root.addHandler(console_handler)
    _installed.append(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            logging.getLogger(__name__).warning("Cannot write log file %s: %s", log_file, exc)
            return
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)
        _installed.append(file_handler)
