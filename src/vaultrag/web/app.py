"""FastAPI application exposing vault search, indexing and diffs over HTTP."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from vaultrag.config import AppConfig
from vaultrag.diff.engine import DiffBlock, ModifiedBlock, Token
from vaultrag.diff.review import DiffReview
from vaultrag.embedding.encoder import EmbeddingConfig, EmbeddingModel, SentenceTransformerEmbeddingModel
from vaultrag.errors import IndexingError, ProviderConfigError, ProviderRateLimitError
from vaultrag.index.search import RAGEngine
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.vault import FileSystemDocumentStore
from vaultrag.models import SearchScope

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="vaultrag API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class QueryPayload(BaseModel):
    query: str
    vault: Path
    db: Path | None = None
    model: str | None = None
    files: List[str] = []
    folders: List[str] = []
    limit: int = 10
    min_similarity: float = 0.0
    chunk_size: int | None = None
    include: List[str] = []
    exclude: List[str] = []


class IndexPayload(BaseModel):
    vault: Path
    db: Path | None = None
    model: str | None = None
    chunk_size: int | None = None
    include: List[str] = []
    exclude: List[str] = []
    reindex_all: bool = False


class DiffPayload(BaseModel):
    original: str
    modified: str


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_embedding_model(model_name: str) -> EmbeddingModel:
    return SentenceTransformerEmbeddingModel(EmbeddingConfig(model_name=model_name))


def _validate_vault(vault: Path) -> Path:
    resolved = vault.expanduser().resolve()
    if not resolved.is_dir():
        raise HTTPException(status_code=404, detail=f"Vault not found: {vault}")
    return resolved


def _provider_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ProviderConfigError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ProviderRateLimitError):
        return HTTPException(status_code=429, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _run_query(payload: QueryPayload, config: AppConfig, vault: Path, resolved_db: Path) -> List[dict]:
    embedder = _load_embedding_model(config.model_name)
    store = SQLiteVectorStore(resolved_db)
    try:
        engine = RAGEngine(store, FileSystemDocumentStore(vault), embedder, config.rag_options())
        if payload.chunk_size is None and not payload.include and not payload.exclude:
            engine.use_saved_index_settings()
        results = engine.query(
            payload.query, scope=SearchScope(files=payload.files, folders=payload.folders)
        )
    finally:
        store.close()
    return [
        {
            "path": result.path,
            "content": result.content,
            "similarity": result.similarity,
            "metadata": result.metadata.to_dict(),
        }
        for result in results
    ]


@app.post("/query")
async def query_vault(payload: QueryPayload) -> dict[str, Any]:
    if not payload.query.strip():
        raise HTTPException(status_code=400, detail="Empty query")

    vault = _validate_vault(payload.vault)
    defaults = AppConfig()
    config = AppConfig(
        db_path=payload.db if payload.db is not None else defaults.db_path,
        vault_path=vault,
        model_name=payload.model or defaults.model_name,
        limit=max(1, min(payload.limit, 50)),
        min_similarity=payload.min_similarity,
        chunk_size=payload.chunk_size or defaults.chunk_size,
        include_patterns=payload.include,
        exclude_patterns=payload.exclude,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        results = await asyncio.to_thread(_run_query, payload, config, vault, resolved_db)
    except (ProviderConfigError, ProviderRateLimitError, IndexingError) as exc:
        raise _provider_http_error(exc) from exc
    return {"results": results}


def _run_index_job(config: AppConfig, vault: Path, resolved_db: Path, reindex_all: bool) -> dict[str, Any]:
    embedder = _load_embedding_model(config.model_name)
    store = SQLiteVectorStore(resolved_db)
    try:
        engine = RAGEngine(store, FileSystemDocumentStore(vault), embedder, config.rag_options())
        stats = engine.update_index(reindex_all=reindex_all)
    finally:
        store.close()

    return {
        "indexed_files": stats.indexed_files,
        "deleted_files": stats.deleted_files,
        "skipped_files": stats.skipped_files,
        "failed_files": stats.failed_files,
        "total_chunks": stats.total_chunks,
        "embedded_chunks": stats.embedded_chunks,
    }


@app.post("/index")
async def index_vault(payload: IndexPayload) -> dict[str, Any]:
    vault = _validate_vault(payload.vault)
    defaults = AppConfig()
    config = AppConfig(
        db_path=payload.db if payload.db is not None else defaults.db_path,
        vault_path=vault,
        model_name=payload.model or defaults.model_name,
        chunk_size=payload.chunk_size or defaults.chunk_size,
        include_patterns=payload.include,
        exclude_patterns=payload.exclude,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        stats = await asyncio.to_thread(_run_index_job, config, vault, resolved_db, payload.reindex_all)
    except (ProviderConfigError, ProviderRateLimitError, IndexingError) as exc:
        LOGGER.error("Indexing failed: %s", exc)
        raise _provider_http_error(exc) from exc

    return {"status": "ok", "db": str(resolved_db), "stats": stats}


def _tokens_payload(tokens: List[Token] | None) -> List[dict[str, str]] | None:
    if tokens is None:
        return None
    return [{"text": token.text, "kind": token.kind} for token in tokens]


def _block_payload(block: DiffBlock) -> dict[str, Any]:
    if isinstance(block, ModifiedBlock):
        return {
            "type": block.type,
            "original_value": block.original_value,
            "modified_value": block.modified_value,
            "move_id": block.move_id,
            "original_tokens": _tokens_payload(block.original_tokens),
            "modified_tokens": _tokens_payload(block.modified_tokens),
        }
    return {"type": block.type, "value": block.value}


@app.post("/diff")
async def diff_texts(payload: DiffPayload) -> dict[str, Any]:
    review = DiffReview.from_texts(payload.original, payload.modified)
    return {
        "blocks": [_block_payload(block) for block in review.blocks],
        "changed_blocks": review.pending_count,
    }


@app.get("/stats")
async def index_stats(db: Path | None = None) -> dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"models": []}

    store = SQLiteVectorStore(resolved_db)
    try:
        rows = store.get_stats()
    finally:
        store.close()
    return {
        "models": [
            {"model": row.model, "row_count": row.row_count, "total_data_bytes": row.total_data_bytes}
            for row in rows
        ]
    }


@app.delete("/index/{model_id:path}")
async def clear_index(model_id: str, db: Path | None = None) -> dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        raise HTTPException(status_code=404, detail="Database not found")

    store = SQLiteVectorStore(resolved_db)
    try:
        store.drop_model(model_id)
    finally:
        store.close()
    return {"status": "ok", "model": model_id}
