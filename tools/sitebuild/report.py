from __future__ import annotations

import logging
import pathlib
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from rich.table import Table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildWarning:
    kind: str  # "asset" or "broken-reference"
    path: pathlib.Path
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.path}: {self.message}"


@dataclass
class BuildReport:
    """Everything one build run accumulates. Never shared between runs."""

    output_dir: Optional[pathlib.Path] = None
    pages: int = 0
    images: int = 0
    variants_written: int = 0
    variants_reused: int = 0
    elapsed: float = 0.0
    warnings: List[BuildWarning] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def warn(self, kind: str, path: pathlib.Path, message: str) -> None:
        w = BuildWarning(kind, path, message)
        with self._lock:
            self.warnings.append(w)
        logger.warning("! %s", w)

    def count_image(self, written: int, reused: int) -> None:
        with self._lock:
            self.images += 1
            self.variants_written += written
            self.variants_reused += reused

    def summary_table(self) -> Table:
        table = Table(title="Build summary", show_header=False)
        table.add_column("what")
        table.add_column("value", justify="right")
        table.add_row("pages built", str(self.pages))
        table.add_row("images", str(self.images))
        table.add_row("variants written", str(self.variants_written))
        table.add_row("variants cached", str(self.variants_reused))
        table.add_row("warnings", str(len(self.warnings)))
        table.add_row("elapsed", f"{self.elapsed:.2f}s")
        if self.output_dir is not None:
            table.add_row("output", str(self.output_dir))
        return table
