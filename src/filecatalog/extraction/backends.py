"""Extraction backends: asynchronous submit/poll conversion of documents.

Two implementations share one contract:

* :class:`DoclingServiceBackend` talks to a docling conversion service over HTTP.
* :class:`PyMuPDFBackend` converts PDFs in-process; it finishes the work inside
  ``submit`` so the first ``poll`` already sees a terminal status.
"""

from __future__ import annotations

import io
import json
import logging
import threading
import uuid
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import requests

from filecatalog.errors import BackendFailureError, BackendUnreachableError, FileReadError
from filecatalog.extraction.pdf_loader import extract_pdf
from filecatalog.models import ExtractionResult, TaskState, TaskStatus

LOGGER = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "http://localhost:8000"
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg")


@runtime_checkable
class ExtractionBackend(Protocol):
    def submit(self, path: Path) -> str:
        """Start converting ``path`` and return a task id."""
        ...

    def poll(self, task_id: str) -> TaskStatus:
        """Report the task's status; terminal success carries the result."""
        ...


def parse_result_archive(payload: bytes) -> ExtractionResult:
    """Read a conversion archive: markdown text, image names, metadata.json.

    A corrupt archive or metadata file raises :class:`BackendFailureError`.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            names = sorted(archive.namelist())
            markdown = [name for name in names if name.lower().endswith(".md")]
            text = archive.read(markdown[0]).decode("utf-8", errors="replace") if markdown else ""
            images = [
                PurePosixPath(name).name for name in names if name.lower().endswith(IMAGE_SUFFIXES)
            ]
            tables = [PurePosixPath(name).name for name in names if name.lower().endswith(".csv")]
            metadata: Dict[str, Any] = {}
            meta_names = [name for name in names if PurePosixPath(name).name == "metadata.json"]
            if meta_names:
                metadata = json.loads(archive.read(meta_names[0]))
    except (zipfile.BadZipFile, EOFError, ValueError) as exc:
        raise BackendFailureError(f"Unreadable result archive: {exc}") from exc
    if not isinstance(metadata, dict):
        raise BackendFailureError("Result metadata.json is not an object")
    return ExtractionResult(text=text, metadata=metadata, images=images, tables=tables)


def _json_object(response: requests.Response, what: str) -> Dict[str, Any]:
    """Decode a JSON object body, treating anything else as a backend failure."""
    try:
        data = response.json()
    except ValueError as exc:
        raise BackendFailureError(f"Malformed {what} response: {exc}") from exc
    if not isinstance(data, dict):
        raise BackendFailureError(f"Malformed {what} response: expected an object")
    return data


def parse_result_json(data: Dict[str, Any]) -> ExtractionResult:
    document = data.get("document", data)
    if not isinstance(document, dict):
        raise BackendFailureError("Result document is not an object")
    text = document.get("md_content") or document.get("markdown") or document.get("text") or ""
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise BackendFailureError("Result metadata is not an object")
    return ExtractionResult(
        text=str(text),
        metadata=dict(metadata),
        images=list(data.get("images") or []),
        tables=list(data.get("tables") or []),
    )


class DoclingServiceBackend:
    """Client for a docling conversion service.

    Endpoints: ``POST /convert/file`` returns ``{"task_id"}``,
    ``GET /tasks/{id}`` returns ``{"status", "error"}`` and
    ``GET /tasks/{id}/result`` serves the converted output either as a ZIP
    archive or as JSON.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVICE_URL,
        *,
        request_timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def submit(self, path: Path) -> str:
        path = Path(path)
        try:
            with path.open("rb") as handle:
                response = self.session.post(
                    self._url("/convert/file"),
                    files={"file": (path.name, handle)},
                    timeout=self.request_timeout,
                )
        except requests.RequestException as exc:
            raise BackendUnreachableError(f"Extraction service unreachable: {exc}") from exc
        except OSError as exc:
            raise FileReadError(path, exc.strerror or str(exc)) from exc

        if response.status_code != 200:
            raise BackendFailureError(
                f"Submit failed with HTTP {response.status_code}: {response.text}"
            )
        task_id = _json_object(response, "submit").get("task_id")
        if not task_id:
            raise BackendFailureError("Extraction service returned no task id")
        LOGGER.debug("Submitted %s as task %s", path, task_id)
        return str(task_id)

    def poll(self, task_id: str) -> TaskStatus:
        try:
            response = self.session.get(
                self._url(f"/tasks/{task_id}"), timeout=self.request_timeout
            )
        except requests.RequestException as exc:
            raise BackendUnreachableError(f"Extraction service unreachable: {exc}") from exc

        if response.status_code != 200:
            LOGGER.debug("Task %s poll returned HTTP %s", task_id, response.status_code)
            return TaskStatus(TaskState.PENDING)

        data = _json_object(response, "poll")
        status = str(data.get("status", "")).upper()
        if status == "SUCCESS":
            return TaskStatus(TaskState.SUCCESS, result=self.fetch_result(task_id))
        if status == "FAILURE":
            return TaskStatus(TaskState.FAILURE, error=str(data.get("error") or "Unknown error"))
        return TaskStatus(TaskState.PENDING)

    def fetch_result(self, task_id: str) -> ExtractionResult:
        try:
            response = self.session.get(
                self._url(f"/tasks/{task_id}/result"), timeout=self.request_timeout
            )
        except requests.RequestException as exc:
            raise BackendUnreachableError(f"Extraction service unreachable: {exc}") from exc

        if response.status_code != 200:
            raise BackendFailureError(
                f"Result download failed with HTTP {response.status_code}: {response.text}"
            )
        content_type = response.headers.get("Content-Type", "")
        if "zip" in content_type or response.content[:2] == b"PK":
            return parse_result_archive(response.content)
        return parse_result_json(_json_object(response, "result"))


class PyMuPDFBackend:
    """In-process PDF conversion honouring the submit/poll contract."""

    def __init__(self) -> None:
        self._results: Dict[str, TaskStatus] = {}
        self._lock = threading.Lock()

    def submit(self, path: Path) -> str:
        task_id = uuid.uuid4().hex
        try:
            status = TaskStatus(TaskState.SUCCESS, result=extract_pdf(Path(path)))
        except Exception as exc:
            LOGGER.warning("PyMuPDF failed on %s: %s", path, exc)
            status = TaskStatus(TaskState.FAILURE, error=str(exc))
        with self._lock:
            self._results[task_id] = status
        return task_id

    def poll(self, task_id: str) -> TaskStatus:
        with self._lock:
            status = self._results.pop(task_id, None)
        if status is None:
            raise BackendFailureError(f"Unknown task {task_id}")
        return status


def build_backend(
    name: str,
    *,
    service_url: str = DEFAULT_SERVICE_URL,
    request_timeout: float = 30.0,
) -> ExtractionBackend:
    if name == "docling":
        return DoclingServiceBackend(service_url, request_timeout=request_timeout)
    if name == "pymupdf":
        return PyMuPDFBackend()
    raise ValueError(f"Unknown extraction backend: {name}")
