"""Semantic search interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from docindex.embedding.encoder import EmbeddingModel
from docindex.errors import ValidationError
from docindex.index.storage import SQLiteVectorStore


@dataclass(slots=True)
class SearchResult:
    id: int
    page_id: int
    heading: Optional[str]
    content: str
    similarity: float
    path: str


class Searcher:
    """High-level API to query the vector store."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        match_threshold: float = 0.5,
        min_content_length: int = 50,
        match_count: int = 15,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.match_threshold = match_threshold
        self.min_content_length = min_content_length
        self.match_count = match_count

    def search(self, query: Optional[str]) -> List[SearchResult]:
        """Return the sections most similar to ``query``, best match first.

        Raises:
            ValidationError: if the query is missing or blank. The embedding
                provider is not called in that case.
        """
        if query is None or not query.strip():
            raise ValidationError("No query provided")

        embedding = self.embedder.embed_query(query)
        rows = self.store.search(
            embedding,
            match_threshold=self.match_threshold,
            min_content_length=self.min_content_length,
            match_count=self.match_count,
        )
        return [
            SearchResult(
                id=row["id"],
                page_id=row["page_id"],
                heading=row["heading"],
                content=row["content"],
                similarity=float(row["similarity"]),
                path=row["path"],
            )
            for row in rows
        ]
