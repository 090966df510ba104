"""Command line interface for vaultrag."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table
from rich.text import Text

from vaultrag.config import AppConfig
from vaultrag.diff.engine import Token, UnchangedBlock
from vaultrag.diff.review import DiffReview
from vaultrag.embedding.encoder import EmbeddingConfig, EmbeddingModel, SentenceTransformerEmbeddingModel
from vaultrag.embedding.remote import OpenAICompatibleEmbeddingModel
from vaultrag.errors import IndexingError, ProviderConfigError, ProviderRateLimitError
from vaultrag.index.indexer import Indexer
from vaultrag.index.search import Indexing, QueryProgressState, RAGEngine
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.vault import FileSystemDocumentStore
from vaultrag.models import SearchScope

console = Console()
app = typer.Typer(help="vaultrag - semantic search and reviewed edits for markdown vaults")

EXIT_CONFIG_ERROR = 2
EXIT_RATE_LIMITED = 3

# fnmatch globs: "*" also crosses "/", so patterns match at any depth.
_INCLUDE_HELP = "Glob of notes to index, matched against the vault-relative path at any depth"
_EXCLUDE_HELP = "Glob of notes to skip, matched against the vault-relative path at any depth"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _make_embedding_model(model: str, provider: str, dimension: Optional[int]) -> EmbeddingModel:
    if provider == "local":
        return SentenceTransformerEmbeddingModel(EmbeddingConfig(model_name=model))
    if provider == "openai":
        if dimension is None:
            raise typer.BadParameter("--dimension is required for the openai provider")
        return OpenAICompatibleEmbeddingModel(model, dimension)
    raise typer.BadParameter(f"Unknown provider: {provider}")


@contextmanager
def _provider_errors() -> Iterator[None]:
    """Turn provider failures into distinct exit codes with a hint for the user."""
    try:
        yield
    except ProviderConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        console.print("Check VAULTRAG_API_KEY and VAULTRAG_BASE_URL, then try again.")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)
    except ProviderRateLimitError as exc:
        console.print(f"[yellow]{exc}[/yellow] Already indexed chunks were kept.")
        raise typer.Exit(code=EXIT_RATE_LIMITED)
    except IndexingError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)


def _open_store(config: AppConfig) -> SQLiteVectorStore:
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    return SQLiteVectorStore(resolved_db)


@app.command()
def index(
    vault: Path = typer.Argument(..., help="Vault directory with markdown notes.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Embedding model name"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
    dimension: Optional[int] = typer.Option(None, help="Vector dimension for remote models"),
    chunk_size: int = typer.Option(AppConfig().chunk_size, help="Chunk size in characters"),
    include: List[str] = typer.Option([], "--include", help=_INCLUDE_HELP),
    exclude: List[str] = typer.Option([], "--exclude", help=_EXCLUDE_HELP),
    reindex_all: bool = typer.Option(False, "--reindex-all", help="Drop and rebuild the index"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Bring the vault index up to date."""
    _setup_logging(verbose)
    if not vault.is_dir():
        raise typer.BadParameter(f"Vault not found: {vault}")
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        vault_path=vault,
        model_name=model,
        chunk_size=chunk_size,
        include_patterns=include,
        exclude_patterns=exclude,
    )

    store = _open_store(config)
    try:
        with _provider_errors():
            embedder = _make_embedding_model(config.model_name, provider, dimension)
            documents = FileSystemDocumentStore(vault)
            engine = RAGEngine(
                store,
                documents,
                embedder,
                config.rag_options(),
                indexer=Indexer(store, documents, concurrency=config.concurrency),
            )
            console.print(f"Indexing [bold]{vault}[/bold] into [bold]{store.db_path}[/bold]...")
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Embedding chunks", total=None)

                def on_progress(state: QueryProgressState) -> None:
                    if isinstance(state, Indexing):
                        info = state.index_progress
                        description = (
                            "Waiting for rate limit" if info.waiting_for_rate_limit else "Embedding chunks"
                        )
                        progress.update(
                            task,
                            completed=info.completed_chunks,
                            total=info.total_chunks,
                            description=description,
                        )

                stats = engine.update_index(reindex_all=reindex_all, on_progress=on_progress)
    finally:
        store.close()

    console.print(
        f"Indexed files: {len(stats.indexed_files)}, chunks: {stats.embedded_chunks}, "
        f"deleted: {len(stats.deleted_files)}, skipped: {len(stats.skipped_files)}, "
        f"failed: {len(stats.failed_files)}"
    )
    for path, error in stats.failed_files.items():
        console.print(f"[red]{path}[/red]: {error}")


@app.command()
def query(
    vault: Path = typer.Argument(..., help="Vault directory with markdown notes.", resolve_path=True),
    text: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Embedding model name"),
    provider: str = typer.Option("local", help="Embedding provider: local or openai"),
    dimension: Optional[int] = typer.Option(None, help="Vector dimension for remote models"),
    file: List[str] = typer.Option([], "--file", help="Restrict results to this note"),
    folder: List[str] = typer.Option([], "--folder", help="Restrict results to this folder"),
    limit: int = typer.Option(AppConfig().limit, help="Number of results to display"),
    min_similarity: float = typer.Option(AppConfig().min_similarity, help="Minimum cosine similarity"),
    chunk_size: Optional[int] = typer.Option(
        None, help="Chunk size for the refresh (default: the one the index was built with)"
    ),
    include: List[str] = typer.Option([], "--include", help=_INCLUDE_HELP),
    exclude: List[str] = typer.Option([], "--exclude", help=_EXCLUDE_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Refresh the index and execute a semantic search.

    Without --chunk-size, --include or --exclude the refresh reuses the
    settings of the last ``index`` run for this model.
    """
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        vault_path=vault,
        model_name=model,
        limit=limit,
        min_similarity=min_similarity,
        chunk_size=chunk_size or AppConfig().chunk_size,
        include_patterns=include,
        exclude_patterns=exclude,
    )

    store = _open_store(config)
    try:
        with _provider_errors():
            embedder = _make_embedding_model(config.model_name, provider, dimension)
            engine = RAGEngine(store, FileSystemDocumentStore(vault), embedder, config.rag_options())
            if chunk_size is None and not include and not exclude:
                engine.use_saved_index_settings()
            results = engine.query(text, scope=SearchScope(files=file, folders=folder))
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Similarity")
    table.add_column("Note")
    table.add_column("Lines")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        lines = f"{result.metadata.start_line}-{result.metadata.end_line}"
        table.add_row(f"{result.similarity:.4f}", result.path, lines, snippet[:180])

    console.print(table)


_TOKEN_STYLES = {"unchanged": "", "removed": "bold red strike", "added": "bold green"}


def _render_side(value: str, tokens: Optional[List[Token]], prefix: str, base_style: str) -> Text:
    text = Text()
    if tokens is None:
        for line in value.split("\n"):
            text.append(f"{prefix} {line}\n", style=base_style)
        return text
    text.append(f"{prefix} ", style=base_style)
    for token in tokens:
        style = _TOKEN_STYLES[token.kind] or base_style
        text.append(token.text.replace("\n", f"\n{prefix} "), style=style)
    text.append("\n")
    return text


def _render_review(review: DiffReview) -> None:
    for index, block in enumerate(review.blocks):
        if isinstance(block, UnchangedBlock):
            for line in block.value.split("\n"):
                console.print(Text(f"  {line}", style="dim"))
            continue
        label = f"@@ block {index}" + (f" (moved #{block.move_id})" if block.move_id is not None else "")
        console.print(Text(label, style="cyan"))
        if block.original_value is not None:
            console.print(_render_side(block.original_value, block.original_tokens, "-", "red"), end="")
        if block.modified_value is not None:
            console.print(_render_side(block.modified_value, block.modified_tokens, "+", "green"), end="")


@app.command()
def diff(
    original: Path = typer.Argument(..., help="Current version of the note", exists=True),
    modified: Path = typer.Argument(..., help="Proposed version of the note", exists=True),
    accept_all: bool = typer.Option(False, "--accept-all", help="Accept every change"),
    reject_all: bool = typer.Option(False, "--reject-all", help="Reject every change"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result here"),
) -> None:
    """Show a structured diff between two notes and optionally resolve it."""
    if accept_all and reject_all:
        raise typer.BadParameter("--accept-all and --reject-all are mutually exclusive")

    review = DiffReview.from_texts(
        original.read_text(encoding="utf-8"), modified.read_text(encoding="utf-8")
    )
    _render_review(review)
    console.print(f"{review.pending_count} changed block(s).")

    if accept_all:
        result = review.accept_all()
    elif reject_all:
        result = review.reject_all()
    else:
        return

    target = output or original
    target.write_text(result, encoding="utf-8")
    console.print(f"Wrote [bold]{target}[/bold].")


@app.command()
def stats(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show per-model index statistics."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing indexed yet.[/yellow]")
        return

    store = SQLiteVectorStore(resolved_db)
    try:
        rows = store.get_stats()
    finally:
        store.close()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Model")
    table.add_column("Chunks")
    table.add_column("Size (bytes)")
    for row in rows:
        table.add_row(row.model, str(row.row_count), str(row.total_data_bytes))
    console.print(table)


@app.command()
def clear(
    model: str = typer.Argument(..., help="Embedding model whose index should be removed"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove every indexed chunk of one embedding model."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to clear.[/yellow]")
        return

    store = SQLiteVectorStore(resolved_db)
    try:
        store.drop_model(model)
        store.vacuum()
    finally:
        store.close()
    console.print(f"Removed index for {model}.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from vaultrag.web.app import app as web_app

    console.print(f"Starting API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
