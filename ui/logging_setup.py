"""Centralized logging configuration."""
from __future__ import annotations

import logging

from rich.logging import RichHandler

from .dashboard import console


def configure_logging(verbose: bool = False) -> None:
    """Route every logger through one rich handler on the shared console."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=verbose)
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="%H:%M:%S"))

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
