"""Drives files from discovered to processed.

A worker first claims the file (``discovered``/``error`` -> ``processing``)
with a single conditional update, then recovers its text either in-process
or through the extraction backend, stores it and marks the file processed.
Every failure after the claim ends in ``error`` so the file can be retried.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from filecatalog.errors import (
    BackendError,
    BackendFailureError,
    ExtractionCancelledError,
    ExtractionTimeoutError,
    FileReadError,
)
from filecatalog.extraction.backends import ExtractionBackend
from filecatalog.extraction.readers import classify, language_for, read_text_file
from filecatalog.index.catalog import CatalogStore
from filecatalog.index.content import ContentStore
from filecatalog.models import (
    ContentRecord,
    ContentType,
    ExtractionResult,
    FileRecord,
    FileStatus,
    TaskState,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractionOutcome:
    content_hash: str
    status: str  # 'processed', 'error', or 'skipped'
    content: Optional[ContentRecord] = None
    error: Optional[str] = None
    reason: Optional[str] = None


@dataclass(slots=True)
class ProcessingStats:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, outcome: ExtractionOutcome) -> None:
        if outcome.status == "processed":
            self.processed += 1
        elif outcome.status == "error":
            self.failed += 1
            self.errors.append(f"{outcome.content_hash[:12]}: {outcome.error}")
        else:
            self.skipped += 1


class ExtractionCoordinator:
    """Runs the per-file processing state machine.

    ``poll_interval`` and ``poll_timeout`` bound how long a document
    conversion is waited for. A timed out or cancelled job is not
    resubmitted; retrying is a separate call.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        content: ContentStore,
        backend: Optional[ExtractionBackend] = None,
        *,
        poll_interval: float = 2.0,
        poll_timeout: float = 60.0,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if poll_timeout < 0:
            raise ValueError("poll_timeout must not be negative")
        self.catalog = catalog
        self.content = content
        self.backend = backend
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    def process(
        self,
        content_hash: str,
        *,
        cancel: Optional[threading.Event] = None,
        raise_on_error: bool = False,
    ) -> ExtractionOutcome:
        """Extract content for one file.

        With ``raise_on_error`` the error that moved the file to ``error`` is
        re-raised after the status change has been stored.
        """
        record = self.catalog.require(content_hash)
        source = self._source_path(record)
        kind = classify(source)
        if kind == "unsupported":
            LOGGER.debug("No extractor for %s", source)
            return ExtractionOutcome(content_hash, "skipped", reason="unsupported file type")
        if kind == "document" and self.backend is None:
            return ExtractionOutcome(content_hash, "skipped", reason="no extraction backend")

        if not self.catalog.claim(content_hash):
            current = self.catalog.require(content_hash)
            LOGGER.debug("%s not claimable (status %s)", content_hash[:12], current.status.value)
            return ExtractionOutcome(content_hash, "skipped", reason=f"status {current.status.value}")

        try:
            if kind == "text":
                stored = self._store_text(record, source)
            else:
                stored = self._store_document(record, source, cancel)
        except (FileReadError, BackendError) as exc:
            message = self._error_message(exc)
            self.catalog.set_status(content_hash, FileStatus.ERROR, message)
            LOGGER.warning("Extraction failed for %s: %s", source, message)
            if raise_on_error:
                raise
            return ExtractionOutcome(content_hash, "error", error=message)
        except BaseException as exc:
            self.catalog.set_status(content_hash, FileStatus.ERROR, f"{type(exc).__name__}: {exc}")
            raise

        self.catalog.set_status(content_hash, FileStatus.PROCESSED)
        LOGGER.info("Processed %s (%s)", source, stored.content_type.value)
        return ExtractionOutcome(content_hash, "processed", content=stored)

    @staticmethod
    def _source_path(record: FileRecord) -> Path:
        if record.centralized_path is not None and record.centralized_path.exists():
            return record.centralized_path
        return record.original_path

    @staticmethod
    def _error_message(exc: Exception) -> str:
        if isinstance(exc, FileReadError):
            return str(exc)
        if isinstance(exc, ExtractionTimeoutError) and not isinstance(exc, ExtractionCancelledError):
            return f"Timeout: {exc}"
        if isinstance(exc, ExtractionCancelledError):
            return f"Cancelled: {exc}"
        return str(exc)

    def _store_text(self, record: FileRecord, source: Path) -> ContentRecord:
        text = read_text_file(source)
        stored, _ = self.content.upsert(
            record.id,
            ContentType.RAW,
            text,
            language=language_for(source),
        )
        return stored

    def _store_document(
        self, record: FileRecord, source: Path, cancel: Optional[threading.Event]
    ) -> ContentRecord:
        result = self.extract(source, cancel=cancel)
        annotations = dict(result.metadata)
        if result.images:
            annotations["image_files"] = result.images
        if result.tables:
            annotations["table_files"] = result.tables
        stored, _ = self.content.upsert(
            record.id,
            ContentType.EXTRACTED,
            result.text,
            annotations=annotations,
            language=language_for(source),
        )
        return stored

    def extract(self, path: Path, *, cancel: Optional[threading.Event] = None) -> ExtractionResult:
        """Submit ``path`` to the backend and wait for a terminal status."""
        if self.backend is None:
            raise BackendFailureError("No extraction backend configured")
        if not Path(path).exists():
            raise FileReadError(path, "No such file or directory")
        cancel = cancel or threading.Event()

        task_id = self.backend.submit(path)
        deadline = time.monotonic() + self.poll_timeout
        while True:
            status = self.backend.poll(task_id)
            if status.state is TaskState.SUCCESS:
                if status.result is None:
                    raise BackendFailureError(f"Task {task_id} succeeded without a result")
                return status.result
            if status.state is TaskState.FAILURE:
                raise BackendFailureError(status.error or "Unknown error")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExtractionTimeoutError(
                    f"task {task_id} not finished after {self.poll_timeout:g}s"
                )
            if cancel.wait(min(self.poll_interval, remaining)):
                raise ExtractionCancelledError(f"polling for task {task_id} was cancelled")

    def process_many(
        self,
        content_hashes: Iterable[str],
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ProcessingStats:
        """Process each file in turn; one file's failure never stops the batch."""
        stats = ProcessingStats()
        for content_hash in content_hashes:
            if cancel is not None and cancel.is_set():
                break
            try:
                outcome = self.process(content_hash, cancel=cancel)
            except Exception as exc:
                LOGGER.exception("Unexpected error processing %s", content_hash[:12])
                outcome = ExtractionOutcome(
                    content_hash, "error", error=f"{type(exc).__name__}: {exc}"
                )
            stats.record(outcome)
        return stats

    def process_pending(self, *, cancel: Optional[threading.Event] = None) -> ProcessingStats:
        """Process every file still in ``discovered``."""
        records = self.catalog.list_by_status(FileStatus.DISCOVERED)
        return self.process_many((r.content_hash for r in records), cancel=cancel)

    def retry_failed(self, *, cancel: Optional[threading.Event] = None) -> ProcessingStats:
        """Explicit retry of every file in ``error``."""
        records = self.catalog.list_by_status(FileStatus.ERROR)
        return self.process_many((r.content_hash for r in records), cancel=cancel)
