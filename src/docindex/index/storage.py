"""SQLite page/section store with a cosine-distance vector operator."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np

from docindex.errors import StoreError
from docindex.models import DocumentSection, Meta, Page, Section


def _to_blob(vector: Sequence[float] | np.ndarray) -> bytes:
    return sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes())


def cosine_distance(left: Optional[bytes], right: Optional[bytes]) -> Optional[float]:
    """SQL function: ``1 - cos(left, right)`` for two float32 blobs.

    Returns NULL when either side is missing or a zero vector.
    """
    if left is None or right is None:
        return None
    a = np.frombuffer(left, dtype="float32")
    b = np.frombuffer(right, dtype="float32")
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape[0]} != {b.shape[0]}")
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return None
    return 1.0 - float(np.dot(a, b)) / norm


class SQLiteVectorStore:
    """Persistence layer for pages, their sections and section embeddings.

    Every public operation commits on its own. Failures are raised as
    :class:`StoreError`.
    """

    def __init__(self, db_path: Path, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        try:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys=ON;")
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.create_function("cosine_distance", 2, cosine_distance, deterministic=True)
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open database {self.db_path}: {exc}") from exc

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StoreError(str(exc)) from exc
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS page (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    parent_page_id INTEGER REFERENCES page(id) ON DELETE SET NULL,
                    path TEXT NOT NULL UNIQUE,
                    checksum TEXT,
                    meta TEXT,
                    type TEXT,
                    source TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS page_section (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    page_id INTEGER NOT NULL REFERENCES page(id) ON DELETE CASCADE,
                    content TEXT,
                    token_count INTEGER,
                    embedding BLOB,
                    slug TEXT,
                    heading TEXT
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_page_section_page_id
                    ON page_section(page_id)
                """
            )

    @staticmethod
    def _row_to_page(row: sqlite3.Row) -> Page:
        return Page(
            id=row["id"],
            path=row["path"],
            checksum=row["checksum"],
            parent_page_id=row["parent_page_id"],
            parent_path=row["parent_path"],
            meta=json.loads(row["meta"]) if row["meta"] else None,
            type=row["type"],
            source=row["source"],
        )

    def find_page_by_path(self, path: Optional[str]) -> Optional[Page]:
        """Look up a page by its canonical path, with its parent's path."""
        if path is None:
            return None
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT p.*, parent.path AS parent_path
                FROM page AS p
                LEFT JOIN page AS parent ON parent.id = p.parent_page_id
                WHERE p.path = ?
                """,
                (path,),
            ).fetchone()
        return self._row_to_page(row) if row else None

    def upsert_page(
        self,
        path: str,
        *,
        type: str,
        source: str,
        meta: Optional[Meta],
        parent_page_id: Optional[int],
    ) -> int:
        """Create or update the page at ``path`` and clear its checksum.

        Returns the page id.
        """
        meta_json = json.dumps(meta, ensure_ascii=True) if meta is not None else None
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO page(path, checksum, type, source, meta, parent_page_id)
                VALUES (?, NULL, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    checksum = NULL,
                    type = excluded.type,
                    source = excluded.source,
                    meta = excluded.meta,
                    parent_page_id = excluded.parent_page_id
                """,
                (path, type, source, meta_json, parent_page_id),
            )
            row = conn.execute("SELECT id FROM page WHERE path = ?", (path,)).fetchone()
        return int(row["id"])

    def update_page_parent(self, page_id: int, parent_page_id: Optional[int]) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE page SET parent_page_id = ? WHERE id = ?", (parent_page_id, page_id)
            )

    def update_page_checksum(self, page_id: int, checksum: Optional[str]) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE page SET checksum = ? WHERE id = ?", (checksum, page_id))

    def delete_sections(self, page_id: int) -> int:
        """Remove all sections of a page. Returns the number of rows deleted."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM page_section WHERE page_id = ?", (page_id,))
        return cursor.rowcount

    def insert_section(
        self, page_id: int, section: DocumentSection, *, token_count: int
    ) -> int:
        """Insert a section row without its embedding. Returns the section id."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO page_section(page_id, slug, heading, content, token_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                (page_id, section.slug, section.heading, section.content, token_count),
            )
        return int(cursor.lastrowid)

    def update_section_embedding(
        self, section_id: int, vector: Sequence[float] | np.ndarray
    ) -> None:
        vector = np.asarray(vector, dtype="float32")
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise StoreError(
                f"Embedding for section {section_id} has shape {vector.shape}, "
                f"expected ({self.dimension},)"
            )
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE page_section SET embedding = ? WHERE id = ?",
                (_to_blob(vector), section_id),
            )
            if cursor.rowcount == 0:
                raise StoreError(f"Section {section_id} does not exist")

    def list_sections(self, page_id: int) -> List[Section]:
        with self.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, page_id, content, token_count, slug, heading,
                       embedding IS NOT NULL AS has_embedding
                FROM page_section
                WHERE page_id = ?
                ORDER BY id
                """,
                (page_id,),
            ).fetchall()
        return [
            Section(
                id=row["id"],
                page_id=row["page_id"],
                content=row["content"],
                token_count=row["token_count"],
                slug=row["slug"],
                heading=row["heading"],
                has_embedding=bool(row["has_embedding"]),
            )
            for row in rows
        ]

    def search(
        self,
        embedding: Sequence[float] | np.ndarray,
        *,
        match_threshold: float = 0.5,
        min_content_length: int = 50,
        match_count: int = 15,
    ) -> List[Dict[str, Any]]:
        """Rank sections by cosine similarity to ``embedding``.

        Only sections with similarity above ``match_threshold`` and content
        longer than ``min_content_length`` characters are returned, best first.
        """
        query = _to_blob(embedding)
        with self.transaction() as conn:
            rows = conn.execute(
                """
                SELECT
                    ps.id AS id,
                    ps.page_id AS page_id,
                    ps.heading AS heading,
                    ps.content AS content,
                    1 - cosine_distance(ps.embedding, :query) AS similarity,
                    p.path AS path
                FROM page_section AS ps
                JOIN page AS p ON ps.page_id = p.id
                WHERE 1 - cosine_distance(ps.embedding, :query) > :threshold
                AND LENGTH(ps.content) > :min_length
                ORDER BY similarity DESC
                LIMIT :count
                """,
                {
                    "query": query,
                    "threshold": match_threshold,
                    "min_length": min_content_length,
                    "count": match_count,
                },
            ).fetchall()
        return [dict(row) for row in rows]

    def get_stats(self) -> Dict[str, int]:
        """Page, pending page (null checksum) and section counts."""
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM page) AS page_count,
                    (SELECT COUNT(*) FROM page WHERE checksum IS NULL) AS pending_count,
                    (SELECT COUNT(*) FROM page_section) AS section_count,
                    (SELECT COUNT(*) FROM page_section WHERE embedding IS NULL)
                        AS missing_embedding_count
                """
            ).fetchone()
        return dict(row)
