"""FileCatalog: content-addressed file catalog with semantic search."""

__version__ = "0.1.0"
