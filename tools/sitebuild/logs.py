"""Console and logging setup shared by the CLI and the dev server."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["console", "configure_logging"]

_LOG_LEVEL_ENV = "SITEBUILD_LOG_LEVEL"

console = Console(stderr=True)


def _resolve_level(verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    level_name = os.getenv(_LOG_LEVEL_ENV, "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(verbose: bool = False) -> None:
    """Install a single Rich handler on the root logger."""
    root = logging.getLogger()
    if not any(getattr(h, "_sitebuild_managed", False) for h in root.handlers):
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_time=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._sitebuild_managed = True
        root.addHandler(handler)
    root.setLevel(_resolve_level(verbose))
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("MARKDOWN").setLevel(logging.WARNING)
