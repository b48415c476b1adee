"""Command line interface for FileCatalog."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from filecatalog.config import AppConfig
from filecatalog.embedding.coordinator import EmbeddingCoordinator
from filecatalog.embedding.encoder import EmbeddingConfig, EmbeddingModel
from filecatalog.errors import CatalogError
from filecatalog.extraction.backends import build_backend
from filecatalog.extraction.coordinator import ExtractionCoordinator
from filecatalog.index.catalog import CatalogStore
from filecatalog.index.content import ContentStore
from filecatalog.index.indexer import Indexer, find_files
from filecatalog.index.search import SimilarityIndex
from filecatalog.index.storage import SQLiteDatabase
from filecatalog.models import FileStatus
from filecatalog.utils.files import humanize_bytes


console = Console()
app = typer.Typer(help="FileCatalog - deduplicated, searchable catalog of files")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_config(db: Optional[Path], **overrides) -> AppConfig:
    return AppConfig.from_env(db_path=db, **overrides)


def _open_database(config: AppConfig, *, must_exist: bool = True) -> SQLiteDatabase:
    resolved_db = config.resolve_db_path(Path.cwd())
    if must_exist and not resolved_db.exists():
        console.print(f"[red]Database not found: {resolved_db}. Run 'setup' first.[/red]")
        raise typer.Exit(code=1)
    _ensure_db_parent(resolved_db)
    return SQLiteDatabase(resolved_db)


def _extraction_coordinator(config: AppConfig, database: SQLiteDatabase) -> ExtractionCoordinator:
    backend = build_backend(
        config.extraction_backend,
        service_url=config.extraction_url,
        request_timeout=config.request_timeout,
    )
    return ExtractionCoordinator(
        CatalogStore(database),
        ContentStore(database),
        backend,
        poll_interval=config.poll_interval,
        poll_timeout=config.poll_timeout,
    )


def _embedder(config: AppConfig) -> EmbeddingModel:
    return EmbeddingModel(
        EmbeddingConfig(model_name=config.model_name, batch_size=config.batch_size)
    )


DB_OPTION = typer.Option(None, "--db", help="SQLite database path")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def setup(
    db: Path = DB_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Create the catalog database and its tables."""
    _setup_logging(verbose)
    config = _load_config(db)
    try:
        database = _open_database(config, must_exist=False)
    except (sqlite3.Error, OSError) as exc:
        console.print(f"[red]Setup failed: {exc}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Database ready at {database.db_path}[/green]")
    database.close()


@app.command()
def scan(
    inputs: List[Path] = typer.Argument(..., help="Files or directories to catalog.", resolve_path=True),
    db: Path = DB_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="List files without adding them"),
    workers: int = typer.Option(1, "--workers", "-w", min=1, help="Concurrent hashing workers"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Scan paths and add their files to the catalog."""
    _setup_logging(verbose)
    files = find_files(inputs)
    if not files:
        console.print("[yellow]No files found.[/yellow]")
        return

    if dry_run:
        console.print("[yellow]Dry run mode - no files will be added[/yellow]")
        for path in files:
            console.print(f"  Would add: {path}")
        console.print(f"Total files: {len(files)}")
        return

    config = _load_config(db, workers=workers)
    database = _open_database(config, must_exist=False)
    console.print(f"Scanning into [bold]{database.db_path}[/bold]...")
    try:
        stats = Indexer(CatalogStore(database), workers=config.workers).scan(files)
    finally:
        database.close()

    console.print("[green]Scan complete![/green]")
    console.print(f"Added: {stats.added}, duplicates: {stats.duplicates}, errors: {stats.errors}")
    if stats.known:
        console.print(f"Already catalogued: {stats.known}")


@app.command("find-duplicates")
def find_duplicates(
    db: Path = DB_OPTION,
) -> None:
    """Report files whose content was seen at more than one path."""
    config = _load_config(db)
    database = _open_database(config)
    try:
        catalog = CatalogStore(database)
        duplicate_sets = catalog.duplicate_sets()
        catalog.refresh_duplicate_summary()
    finally:
        database.close()

    if not duplicate_sets:
        console.print("[green]No duplicates found![/green]")
        return

    console.print(f"[yellow]Found {len(duplicate_sets)} sets of duplicates:[/yellow]")
    for dup in duplicate_sets:
        console.print(f"\n[cyan]Hash:[/cyan] {dup.content_hash[:16]}...")
        for path in dup.paths:
            console.print(f"  - {path}")


@app.command()
def stats(
    db: Path = DB_OPTION,
) -> None:
    """Show catalog statistics."""
    config = _load_config(db)
    database = _open_database(config)
    try:
        summary = CatalogStore(database).stats()
    finally:
        database.close()

    console.print("[blue]FileCatalog Statistics[/blue]")
    console.print(f"Total files: [green]{summary['total_files']}[/green]")
    console.print(f"Total size: [green]{humanize_bytes(summary['total_size'])}[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File type")
    table.add_column("Count")
    for file_type, count in summary["file_types"]:
        table.add_row(file_type, str(count))
    console.print(table)

    for status in FileStatus:
        console.print(f"  {status.value:<11} {summary['by_status'].get(status.value, 0)}")
    if summary["duplicate_sets"]:
        console.print(f"[yellow]Duplicate sets: {summary['duplicate_sets']}[/yellow]")


@app.command()
def process(
    file: Path = typer.Argument(..., help="File to catalog and extract", resolve_path=True),
    db: Path = DB_OPTION,
    embed: bool = typer.Option(False, "--embed", help="Also embed the extracted content"),
    backend: Optional[str] = typer.Option(None, help="Extraction backend: docling or pymupdf"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Add a single file, extract its content and optionally embed it."""
    _setup_logging(verbose)
    if not file.is_file():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(code=1)

    config = _load_config(db, extraction_backend=backend)
    database = _open_database(config, must_exist=False)
    try:
        coordinator = _extraction_coordinator(config, database)
        record, created = coordinator.catalog.find_or_create(file)
        console.print(
            "[green]File added to catalog[/green]" if created else "[yellow]File already catalogued[/yellow]"
        )
        outcome = coordinator.process(record.content_hash, raise_on_error=True)
        if outcome.status == "skipped":
            console.print(f"[yellow]Not processed: {outcome.reason}[/yellow]")
            return
        console.print(f"[green]Processed ({outcome.content.content_type.value})[/green]")

        if embed:
            embedder = EmbeddingCoordinator(
                _embedder(config),
                coordinator.content,
                batch_size=config.batch_size,
                max_chars=config.max_chars,
            )
            if embedder.embed_record(outcome.content.id):
                console.print("[green]Embedded[/green]")
    except CatalogError as exc:
        console.print(f"[red]Error processing {file}: {exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        database.close()


@app.command()
def reprocess(
    db: Path = DB_OPTION,
    include_processed: bool = typer.Option(
        False, "--all", help="Also reset processed files and extract them again"
    ),
    stale_after: Optional[float] = typer.Option(
        None,
        "--stale-after",
        min=0,
        help="Also retry files stuck in processing for this many seconds",
    ),
    backend: Optional[str] = typer.Option(None, help="Extraction backend: docling or pymupdf"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Retry failed files and process newly discovered ones."""
    _setup_logging(verbose)
    config = _load_config(db, extraction_backend=backend)
    database = _open_database(config)
    try:
        coordinator = _extraction_coordinator(config, database)
        if include_processed:
            for record in coordinator.catalog.list_by_status(FileStatus.PROCESSED):
                coordinator.catalog.reset(record.content_hash)
        if stale_after is not None:
            recovered = coordinator.catalog.recover_stale(stale_after)
            if recovered:
                console.print(f"[yellow]Recovered {len(recovered)} interrupted files[/yellow]")
        retried = coordinator.retry_failed()
        pending = coordinator.process_pending()
    finally:
        database.close()

    console.print(
        f"Processed: {retried.processed + pending.processed}, "
        f"failed: {retried.failed + pending.failed}, "
        f"skipped: {retried.skipped + pending.skipped}"
    )
    for message in retried.errors + pending.errors:
        console.print(f"  [red]{message}[/red]")


@app.command()
def embed(
    db: Path = DB_OPTION,
    model: Optional[str] = typer.Option(None, help="Sentence-transformer model name"),
    rebuild: bool = typer.Option(False, "--rebuild", help="Drop existing vectors first"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Embed all content that has no vector yet."""
    _setup_logging(verbose)
    config = _load_config(db, model_name=model)
    database = _open_database(config)
    try:
        content = ContentStore(database)
        if rebuild:
            content.clear_embeddings()
        coordinator = EmbeddingCoordinator(
            _embedder(config), content, batch_size=config.batch_size, max_chars=config.max_chars
        )
        result = coordinator.embed_pending()
    except CatalogError as exc:
        console.print(f"[red]Embedding failed: {exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        database.close()
    console.print(f"Embedded: {result.embedded}, skipped: {result.skipped}")
    if result.failed:
        console.print(f"[red]Failed: {result.failed} (left pending, run embed again to retry)[/red]")
        for message in result.errors:
            console.print(f"  [red]{message}[/red]")


def _print_matches(catalog: CatalogStore, matches) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Distance")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Snippet")
    for match in matches:
        record = catalog.get_by_id(match.record.file_id)
        snippet = match.record.text.replace("\n", " ")
        table.add_row(
            f"{match.distance:.4f}",
            str(record.original_path) if record else "?",
            match.record.content_type.value,
            snippet[:120],
        )
    console.print(table)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = DB_OPTION,
    model: Optional[str] = typer.Option(None, help="Sentence-transformer model name"),
    top_k: int = typer.Option(10, help="Number of results to display"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Semantic search over embedded content."""
    _setup_logging(verbose)
    config = _load_config(db, model_name=model)
    database = _open_database(config)
    try:
        embedder = _embedder(config)
        catalog = CatalogStore(database)
        index = SimilarityIndex(
            ContentStore(database), catalog, dimension=embedder.dimension, embedder=embedder
        )
        matches = index.search(query, top_k)
        if not matches:
            console.print("[yellow]No matches found.[/yellow]")
            return
        _print_matches(catalog, matches)
    except CatalogError as exc:
        console.print(f"[red]Search failed: {exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        database.close()


@app.command()
def similar(
    content_hash: str = typer.Argument(..., help="Hash (or unique prefix) of a catalogued file"),
    db: Path = DB_OPTION,
    top_k: int = typer.Option(10, help="Number of results to display"),
) -> None:
    """List content most similar to a catalogued file."""
    config = _load_config(db)
    database = _open_database(config)
    try:
        catalog = CatalogStore(database)
        content = ContentStore(database)
        record = catalog.resolve(content_hash)
        embedded = [item for item in content.for_file(record.id) if item.has_embedding]
        if not embedded:
            console.print("[yellow]File has no embedded content.[/yellow]")
            return
        matches = SimilarityIndex(content, catalog).nearest_to(embedded[0].id, top_k)
        if not matches:
            console.print("[yellow]No matches found.[/yellow]")
            return
        _print_matches(catalog, matches)
    except CatalogError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        database.close()


@app.command()
def tag(
    content_hash: str = typer.Argument(..., help="Hash (or unique prefix) of a catalogued file"),
    names: List[str] = typer.Argument(..., help="Tags to attach"),
    category: Optional[str] = typer.Option(None, help="Category for newly created tags"),
    db: Path = DB_OPTION,
) -> None:
    """Attach tags to a file."""
    config = _load_config(db)
    database = _open_database(config)
    try:
        catalog = CatalogStore(database)
        record = catalog.resolve(content_hash)
        for name in names:
            catalog.tag(record.content_hash, name, category=category)
        current = ", ".join(t.name for t in catalog.tags_for(record.content_hash))
    except CatalogError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        database.close()
    console.print(f"{record.original_path}: {current}")
