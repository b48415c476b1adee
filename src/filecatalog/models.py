"""Core FileCatalog data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np


class FileStatus(str, Enum):
    DISCOVERED = "discovered"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ContentType(str, Enum):
    RAW = "raw"
    EXTRACTED = "extracted"
    PROCESSED = "processed"


# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PROCESSING: frozenset({FileStatus.DISCOVERED, FileStatus.ERROR}),
    FileStatus.PROCESSED: frozenset({FileStatus.PROCESSING}),
    FileStatus.ERROR: frozenset({FileStatus.PROCESSING}),
    FileStatus.DISCOVERED: frozenset({FileStatus.PROCESSED}),
}

CLAIMABLE_STATUSES = ALLOWED_TRANSITIONS[FileStatus.PROCESSING]


@dataclass(slots=True)
class FileRecord:
    """One catalogued file identity, keyed by content hash."""

    content_hash: str
    original_path: Path
    filename: str
    file_type: str
    size_bytes: int
    modified_at: Optional[float] = None
    mime_type: Optional[str] = None
    centralized_path: Optional[Path] = None
    status: FileStatus = FileStatus.DISCOVERED
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(slots=True)
class PathObservation:
    """A path at which a content hash was seen."""

    file_id: int
    path: Path
    observed_at: Optional[str] = None


@dataclass(slots=True)
class ContentRecord:
    """A content variant of a file, optionally with its embedding."""

    file_id: int
    content_type: ContentType
    text: str
    annotations: Dict[str, Any] = field(default_factory=dict)
    language: Optional[str] = None
    embedding: Optional[np.ndarray] = None
    id: Optional[int] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


@dataclass(slots=True)
class DuplicateSet:
    """All paths observed for one content hash."""

    content_hash: str
    paths: List[Path]
    kept_file_id: Optional[int] = None

    @property
    def count(self) -> int:
        return len(self.paths)


@dataclass(slots=True)
class Tag:
    name: str
    category: Optional[str] = None
    color: Optional[str] = None
    id: Optional[int] = None


@dataclass(slots=True)
class SimilarityMatch:
    record: ContentRecord
    distance: float


class TaskState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(slots=True)
class ExtractionResult:
    """Recovered output of a document conversion."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    images: List[str] = field(default_factory=list)
    tables: List[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskStatus:
    """Answer to a poll of the extraction backend."""

    state: TaskState
    result: Optional[ExtractionResult] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state is not TaskState.PENDING
