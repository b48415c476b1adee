"""File discovery: hashing paths into the catalog."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Sequence

from filecatalog.errors import FileReadError
from filecatalog.index.catalog import CatalogStore
from filecatalog.utils.files import iter_file_paths

LOGGER = logging.getLogger(__name__)


def find_files(paths: Sequence[Path]) -> list[Path]:
    """Find all regular files under the given paths."""
    return list(iter_file_paths(paths))


@dataclass(slots=True)
class ScanStats:
    added: int = 0
    duplicates: int = 0
    known: int = 0
    errors: int = 0
    failed_files: list[Path] = field(default_factory=list)
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "added":
            self.added += 1
        elif status == "duplicate":
            self.duplicates += 1
        elif status == "known":
            self.known += 1
        else:
            self.errors += 1
            self.failed_files.append(path)
        self.processed_files.append(path)

    @property
    def total(self) -> int:
        return self.added + self.duplicates + self.known + self.errors


class Indexer:
    """Adds discovered files to the catalog.

    Unreadable files are logged, counted and skipped; they never abort a scan.
    """

    def __init__(self, catalog: CatalogStore, *, workers: int = 1) -> None:
        self.catalog = catalog
        self.workers = max(1, workers)

    def _ingest_one(self, path: Path, stream: Optional[BinaryIO] = None) -> str:
        try:
            _, outcome = self.catalog.register(path, stream)
        except FileReadError as exc:
            LOGGER.warning("Skipping %s: %s", path, exc.reason)
            return "error"
        return outcome

    def scan(self, paths: Sequence[Path]) -> ScanStats:
        """Catalog every file found under ``paths``."""
        files = find_files(paths)
        if not files:
            LOGGER.warning("No files found")
            return ScanStats()
        return self._run(files)

    def _run(self, files: List[Path]) -> ScanStats:
        stats = ScanStats()
        if self.workers == 1:
            for path in files:
                stats.increment(self._ingest_one(path), path)
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scan") as pool:
                for path, status in zip(files, pool.map(self._ingest_one, files)):
                    stats.increment(status, path)
        LOGGER.info(
            "Scanned %d files: %d added, %d duplicates, %d already known, %d errors",
            stats.total,
            stats.added,
            stats.duplicates,
            stats.known,
            stats.errors,
        )
        return stats

    def ingest(self, items: Iterable[tuple[Path, BinaryIO]]) -> ScanStats:
        """Catalog ``(path, stream)`` pairs from any source."""
        stats = ScanStats()
        for path, stream in items:
            stats.increment(self._ingest_one(Path(path), stream), Path(path))
        return stats
