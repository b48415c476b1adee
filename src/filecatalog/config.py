"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping

from filecatalog.embedding.encoder import DEFAULT_MODEL
from filecatalog.extraction.backends import DEFAULT_SERVICE_URL

ENV_PREFIX = "FILECATALOG_"


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / ".filecatalog" / "catalog.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/catalog.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    extraction_backend: str = "docling"
    extraction_url: str = DEFAULT_SERVICE_URL
    poll_interval: float = 2.0
    poll_timeout: float = 60.0
    request_timeout: float = 30.0
    batch_size: int = 32
    max_chars: int = 8000
    workers: int = 1

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.poll_timeout <= 0:
            raise ValueError("poll_timeout must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "AppConfig":
        """Build a config from ``FILECATALOG_*`` variables; keyword overrides win."""
        environ = os.environ if environ is None else environ
        values = {}
        for item in fields(cls):
            raw = environ.get(ENV_PREFIX + item.name.upper())
            if raw is None:
                continue
            if item.name == "db_path":
                values[item.name] = Path(raw)
            elif item.name in {"poll_interval", "poll_timeout", "request_timeout"}:
                values[item.name] = float(raw)
            elif item.name in {"batch_size", "max_chars", "workers"}:
                values[item.name] = int(raw)
            else:
                values[item.name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
