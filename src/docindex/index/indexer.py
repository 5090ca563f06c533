"""Incremental documentation indexing pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence

from docindex.embedding.encoder import EmbeddingModel
from docindex.index.storage import SQLiteVectorStore
from docindex.ingestion.sources import MarkdownSource
from docindex.utils.files import walk

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    discovered: int = 0
    reindexed: int = 0
    patched: int = 0
    skipped: int = 0
    failed: int = 0
    failed_paths: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "reindexed":
            self.reindexed += 1
        elif status == "patched":
            self.patched += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self.failed_paths.append(path)


class Indexer:
    """Keeps the page/section store in sync with the documentation sources.

    Only documents whose checksum changed (or whose previous run never
    completed) are re-embedded. A page's checksum is written last, so a
    ``NULL`` checksum marks it for a full rebuild on the next run.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        source: str = "guide",
        ignored: Sequence[str] = (),
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.source = source
        self.ignored = ignored

    def discover(self, root: Path) -> List[MarkdownSource]:
        """Walk ``root`` and wrap every document in a :class:`MarkdownSource`."""
        root = Path(root)
        return [
            MarkdownSource(
                self.source,
                entry.path,
                entry.parent_path,
                base_dir=root.parent,
            )
            for entry in walk(root, ignored=self.ignored)
        ]

    def index(self, root: Path, *, refresh: bool = False) -> IndexStats:
        """Discover all documents under ``root`` and sync them."""
        return self.sync(self.discover(root), refresh=refresh)

    def sync(self, sources: Iterable[MarkdownSource], *, refresh: bool = False) -> IndexStats:
        """Process each source independently; one failure never stops the batch."""
        sources = list(sources)
        stats = IndexStats(discovered=len(sources))
        LOGGER.info("Discovered %d pages", len(sources))

        if refresh:
            LOGGER.info("Refresh flag set, re-generating all pages")
        else:
            LOGGER.info("Checking which pages are new or have changed")

        for source in sources:
            path = source.path
            try:
                status = self._sync_single(source, refresh=refresh)
            except Exception as exc:
                LOGGER.error(
                    "Page '%s' or one of its sections failed to store properly (%s: %s). "
                    "Page has been marked with null checksum to indicate that it needs "
                    "to be re-generated.",
                    path,
                    type(exc).__name__,
                    exc,
                )
                LOGGER.debug("Traceback for '%s'", path, exc_info=True)
                status = "failed"
            stats.increment(status, path)

        LOGGER.info("Embedding generation complete")
        return stats

    def _sync_single(self, source: MarkdownSource, *, refresh: bool) -> str:
        path = source.path
        parent_path = source.parent_path
        document = source.load()

        existing = self.store.find_page_by_path(path)

        if not refresh and existing is not None and existing.checksum == document.checksum:
            if existing.parent_path != parent_path:
                LOGGER.info("[%s] Parent page has changed. Updating to '%s'...", path, parent_path)
                parent = self.store.find_page_by_path(parent_path)
                self.store.update_page_parent(existing.id, parent.id if parent else None)
                return "patched"
            return "skipped"

        if existing is not None:
            LOGGER.info("[%s] Removing old page sections and their embeddings", path)
            self.store.delete_sections(existing.id)

        parent = self.store.find_page_by_path(parent_path)
        page_id = self.store.upsert_page(
            path,
            type=source.type,
            source=source.source,
            meta=document.meta,
            parent_page_id=parent.id if parent else None,
        )

        LOGGER.info("[%s] Adding %d page sections (with embeddings)", path, len(document.sections))
        for section in document.sections:
            text = f"{section.heading} {section.content}" if section.heading else section.content
            try:
                embedding = self.embedder.embed(text)
                section_id = self.store.insert_section(
                    page_id, section, token_count=embedding.token_count
                )
                self.store.update_section_embedding(section_id, embedding.vector)
            except Exception:
                LOGGER.error(
                    "Failed to generate embeddings for '%s' page section starting with '%s...'",
                    path,
                    section.content[:40],
                )
                raise

        # Only now is the page complete
        self.store.update_page_checksum(page_id, document.checksum)
        return "reindexed"
