"""FastAPI application exposing the documentation search endpoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_serializer

from docindex.config import AppConfig
from docindex.embedding.encoder import EmbeddingConfig, EmbeddingModel
from docindex.errors import StoreError, ValidationError
from docindex.index.search import Searcher, SearchResult
from docindex.index.storage import SQLiteVectorStore

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="DocIndex", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


class SearchHit(BaseModel):
    """One ranked section. Row ids are 64-bit and serialized as strings."""

    id: int
    page_id: int
    heading: str | None = None
    content: str
    similarity: float
    path: str

    @field_serializer("id", "page_id")
    def _serialize_id(self, value: int) -> str:
        return str(value)

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchHit":
        return cls(
            id=result.id,
            page_id=result.page_id,
            heading=result.heading,
            content=result.content,
            similarity=result.similarity,
            path=result.path,
        )


class SearchResponse(BaseModel):
    results: List[SearchHit]


def _app_config() -> AppConfig:
    """Configuration set by ``docindex web``, or the defaults."""
    config = getattr(app.state, "config", None)
    return config if config is not None else AppConfig()


def _run_search(query: str, config: AppConfig) -> List[SearchResult]:
    db_path = config.resolve_db_path(Path.cwd())
    if not db_path.exists():
        raise StoreError(f"Database not found at {db_path}")

    embedder = EmbeddingModel(
        EmbeddingConfig(model_name=config.model_name, backend=config.embedding_backend)  # type: ignore[arg-type]
    )
    store = SQLiteVectorStore(db_path, dimension=embedder.dimension)
    try:
        searcher = Searcher(
            embedder,
            store,
            match_threshold=config.match_threshold,
            min_content_length=config.min_content_length,
            match_count=config.match_count,
        )
        return searcher.search(query)
    finally:
        store.close()


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.get("/api/docs", response_model=SearchResponse)
async def search_docs(query: str | None = None) -> SearchResponse:
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="No query provided")

    try:
        results = await asyncio.to_thread(_run_search, query, _app_config())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        LOGGER.exception("Search failed: %s", exc)
        raise HTTPException(status_code=500, detail="Something went wrong") from exc

    return SearchResponse(results=[SearchHit.from_result(result) for result in results])
