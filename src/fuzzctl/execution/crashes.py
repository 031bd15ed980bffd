"""Collect crash and hang artifacts from an engine output directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

log = logging.getLogger(__name__)


class CrashCollector:
    """Finds crash artifacts under ``<output_dir>/<subdir>``.

    ``ignore_names`` are files the engine writes next to its artifacts
    (AFL's ``README.txt``). When ``prefixes`` is set only files whose name
    starts with one of them are kept.
    """

    def __init__(
        self,
        subdir: str = "crashes",
        ignore_names: Iterable[str] = ("README.txt",),
        prefixes: Iterable[str] | None = None,
    ) -> None:
        self.subdir = subdir
        self.ignore_names = frozenset(ignore_names)
        self.prefixes = tuple(prefixes) if prefixes else ()

    def crash_dir(self, output_dir: Path) -> Path:
        return Path(output_dir) / self.subdir

    def collect(self, output_dir: Path) -> list[Path]:
        """Return sorted artifact paths; a missing directory gives an empty list."""
        crash_dir = self.crash_dir(output_dir)
        if not crash_dir.is_dir():
            return []
        artifacts: list[Path] = []
        try:
            for path in sorted(crash_dir.rglob("*")):
                if not path.is_file() or path.is_symlink():
                    continue
                if path.name in self.ignore_names:
                    continue
                if self.prefixes and not path.name.startswith(self.prefixes):
                    continue
                artifacts.append(path)
        except OSError as e:
            log.error("Error collecting crash files from %s: %s", crash_dir, e)
        return artifacts
