"""Exception hierarchy shared by the catalog, coordinators and backends."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for all FileCatalog errors."""


class FileReadError(CatalogError, OSError):
    """A file could not be read while hashing or extracting."""

    def __init__(self, path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read {path}: {reason}")


class DuplicateIdentityError(CatalogError):
    """A second file record was inserted for an existing content hash."""

    def __init__(self, content_hash: str) -> None:
        self.content_hash = content_hash
        super().__init__(f"File with hash {content_hash} already exists")


class NotFoundError(CatalogError, KeyError):
    """An operation referenced an unknown hash or id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Not found"


class InvalidTransitionError(CatalogError):
    """A status change is not allowed from the record's current status."""

    def __init__(self, content_hash: str, current: str, target: str) -> None:
        self.content_hash = content_hash
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {content_hash} from {current} to {target}")


class BackendError(CatalogError):
    """Base class for extraction and embedding backend errors."""


class BackendUnreachableError(BackendError):
    """The backend could not be reached at the network level."""


class BackendFailureError(BackendError):
    """The backend reported an explicit failure for a job."""


class ExtractionTimeoutError(BackendError):
    """The poll budget ran out before the backend reached a terminal status."""


class ExtractionCancelledError(ExtractionTimeoutError):
    """Polling was aborted by the caller's cancel signal."""


class DimensionMismatchError(CatalogError, ValueError):
    """Embedding dimensions disagree."""

    def __init__(self, expected: int, actual: int, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        message = f"Embedding dimension mismatch: expected {expected}, got {actual}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)
