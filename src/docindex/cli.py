"""Command line interface for DocIndex."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from docindex.config import AppConfig
from docindex.embedding.encoder import EmbeddingConfig, EmbeddingModel
from docindex.errors import DocIndexError
from docindex.index.indexer import Indexer
from docindex.index.search import Searcher
from docindex.index.storage import SQLiteVectorStore
from docindex.web.app import app as web_app


console = Console()
app = typer.Typer(help="DocIndex - incremental semantic search for Markdown/MDX docs")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_embedder(config: AppConfig) -> EmbeddingModel:
    return EmbeddingModel(
        EmbeddingConfig(model_name=config.model_name, backend=config.embedding_backend)  # type: ignore[arg-type]
    )


@app.command()
def index(
    docs: Path = typer.Argument(AppConfig().docs_root, help="Root directory of the documentation."),
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Refresh data"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    backend: str = typer.Option(AppConfig().embedding_backend, help="Embedding backend: openai or local"),
    model: str = typer.Option(AppConfig().model_name, help="Embedding model name"),
    source: str = typer.Option(AppConfig().source, help="Source label stored on each page"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index all Markdown/MDX documents under DOCS."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        docs_root=docs,
        source=source,
        embedding_backend=backend,
        model_name=model,
    )

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        embedder = _build_embedder(config)
        store = SQLiteVectorStore(resolved_db, dimension=embedder.dimension)
    except DocIndexError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    indexer = Indexer(embedder, store, source=config.source)
    console.print(f"Indexing [bold]{config.docs_root}[/bold] into [bold]{resolved_db}[/bold]...")
    try:
        stats = indexer.index(config.docs_root, refresh=refresh)
        totals = store.get_stats()
    except DocIndexError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()

    console.print(
        f"Discovered: {stats.discovered}, re-indexed: {stats.reindexed}, "
        f"patched: {stats.patched}, skipped: {stats.skipped}, failed: {stats.failed}"
    )
    for path in stats.failed_paths:
        console.print(f"[yellow]Failed: {path} (will be retried on the next run)[/yellow]")
    console.print(
        f"Pages: {totals['page_count']} ({totals['pending_count']} pending), "
        f"sections: {totals['section_count']}"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    backend: str = typer.Option(AppConfig().embedding_backend, help="Embedding backend: openai or local"),
    model: str = typer.Option(AppConfig().model_name, help="Embedding model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        embedding_backend=backend,
        model_name=model,
    )
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    try:
        embedder = _build_embedder(config)
        store = SQLiteVectorStore(resolved_db, dimension=embedder.dimension)
    except DocIndexError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    searcher = Searcher(
        embedder,
        store,
        match_threshold=config.match_threshold,
        min_content_length=config.min_content_length,
        match_count=config.match_count,
    )
    try:
        results = searcher.search(query)
    except DocIndexError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Similarity")
    table.add_column("Page")
    table.add_column("Heading")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        table.add_row(f"{result.similarity:.4f}", result.path, result.heading or "", snippet[:180])

    console.print(table)


@app.command("init-db")
def init_db(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    dimension: int = typer.Option(1536, help="Embedding dimension"),
) -> None:
    """Create the page and page_section tables."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        store = SQLiteVectorStore(resolved_db, dimension=dimension)
    except DocIndexError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    store.close()
    console.print(f"Created tables 'page' and 'page_section' in [bold]{resolved_db}[/bold]")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    backend: str = typer.Option(AppConfig().embedding_backend, help="Embedding backend: openai or local"),
    model: str = typer.Option(AppConfig().model_name, help="Embedding model name"),
) -> None:
    """Start the search API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        embedding_backend=backend,
        model_name=model,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    config.db_path = resolved_db
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, searches might fail.[/yellow]")

    web_app.state.config = config
    console.print(f"Starting search API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    app()
