"""Tests for Indexer."""

from pathlib import Path
from unittest.mock import Mock, call

import numpy as np
import pytest

from docindex.embedding.encoder import Embedding
from docindex.errors import ParseError, ProviderError, StoreError
from docindex.index.indexer import Indexer, IndexStats
from docindex.index.storage import SQLiteVectorStore
from docindex.ingestion.sources import MarkdownSource
from docindex.models import DocumentSection, Page, ProcessedDocument


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def store(tmp_path):
    store = SQLiteVectorStore(tmp_path / "index.db", dimension=3)
    yield store
    store.close()


@pytest.fixture
def embedder():
    embedder = Mock()
    embedder.dimension = 3
    embedder.embed.return_value = Embedding(np.array([1.0, 0.0, 0.0], dtype="float32"), 7)
    return embedder


@pytest.fixture
def docs(tmp_path):
    """Documentation tree without index documents."""
    root = tmp_path / "docs"
    _write(root / "intro.mdx", "# Intro\n\nWelcome to the docs.\n\n## Setup\n\nInstall it.\n")
    _write(root / "guide.md", "# Guide\n\nRead this guide.\n")
    return root


def _page_count(store: SQLiteVectorStore) -> int:
    return store.connection.execute("SELECT COUNT(*) FROM page").fetchone()[0]


class TestIndexStats:
    """Test IndexStats tracking."""

    def test_init_defaults(self):
        """Test default initialization."""
        stats = IndexStats()
        assert stats.discovered == 0
        assert stats.reindexed == 0
        assert stats.patched == 0
        assert stats.skipped == 0
        assert stats.failed == 0
        assert stats.failed_paths == []

    @pytest.mark.parametrize("status", ["reindexed", "patched", "skipped"])
    def test_increment(self, status):
        stats = IndexStats()

        stats.increment(status, "docs/a")

        assert getattr(stats, status) == 1
        assert stats.failed == 0
        assert stats.failed_paths == []

    def test_increment_failed(self):
        stats = IndexStats()

        stats.increment("failed", "docs/a")

        assert stats.failed == 1
        assert stats.failed_paths == ["docs/a"]

    def test_increment_unknown_status_counts_as_failed(self):
        stats = IndexStats()

        stats.increment("unknown", "docs/a")

        assert stats.failed == 1


class TestDiscover:
    """Test source discovery."""

    def test_discover_builds_sources(self, tmp_path, embedder, store):
        root = tmp_path / "docs"
        _write(root / "index.mdx", "# Home\n")
        _write(root / "01-basics" / "index.mdx", "# Basics\n")
        _write(root / "01-basics" / "02-routing.mdx", "# Routing\n")

        sources = Indexer(embedder, store, source="guide").discover(root)

        by_path = {source.path: source for source in sources}
        assert set(by_path) == {"docs", "docs/basics", "docs/basics/routing"}
        assert by_path["docs"].parent_path is None
        assert by_path["docs/basics"].parent_path == "docs"
        assert by_path["docs/basics/routing"].parent_path == "docs/basics"
        assert all(source.source == "guide" for source in sources)
        assert all(source.type == "markdown" for source in sources)


class TestSync:
    """Test the incremental pipeline against a real store."""

    def test_first_run_indexes_everything(self, docs, embedder, store):
        stats = Indexer(embedder, store).index(docs)

        assert stats.discovered == 2
        assert stats.reindexed == 2
        assert stats.failed == 0

        intro = store.find_page_by_path("docs/intro")
        assert intro.checksum is not None
        assert intro.type == "markdown"
        assert intro.source == "guide"
        sections = store.list_sections(intro.id)
        assert [section.heading for section in sections] == ["Intro", "Setup"]
        assert all(section.has_embedding for section in sections)
        assert all(section.token_count == 7 for section in sections)

    def test_second_run_is_idempotent(self, docs, embedder, store):
        indexer = Indexer(embedder, store)
        indexer.index(docs)
        embedder.embed.reset_mock()

        stats = indexer.index(docs)

        assert stats.skipped == 2
        assert stats.reindexed == 0
        embedder.embed.assert_not_called()
        assert _page_count(store) == 2

    def test_changed_document_is_rebuilt(self, docs, embedder, store):
        indexer = Indexer(embedder, store)
        indexer.index(docs)
        page_id = store.find_page_by_path("docs/guide").id
        _write(docs / "guide.md", "# Guide\n\nUpdated.\n\n## More\n\nExtra.\n")
        embedder.embed.reset_mock()

        stats = indexer.index(docs)

        assert stats.reindexed == 1
        assert stats.skipped == 1
        assert embedder.embed.call_count == 2
        page = store.find_page_by_path("docs/guide")
        assert page.id == page_id
        assert [s.heading for s in store.list_sections(page_id)] == ["Guide", "More"]

    def test_refresh_rebuilds_unchanged_documents(self, docs, embedder, store):
        indexer = Indexer(embedder, store)
        indexer.index(docs)

        stats = indexer.index(docs, refresh=True)

        assert stats.reindexed == 2
        assert _page_count(store) == 2
        intro = store.find_page_by_path("docs/intro")
        assert len(store.list_sections(intro.id)) == 2

    def test_embedding_text_includes_heading(self, tmp_path, embedder, store):
        root = tmp_path / "docs"
        _write(root / "page.md", "Preamble text.\n\n# Title\n\nBody.\n")

        Indexer(embedder, store).index(root)

        texts = [c.args[0] for c in embedder.embed.call_args_list]
        assert texts == ["Preamble text.\n", "Title # Title\n\nBody.\n"]

    def test_store_failure_leaves_page_pending(self, docs, embedder, store, monkeypatch):
        """A page whose sections were not all stored keeps a null checksum."""
        original = store.update_section_embedding
        calls = {"n": 0}

        def flaky(section_id, vector):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StoreError("disk full")
            return original(section_id, vector)

        monkeypatch.setattr(store, "update_section_embedding", flaky)

        stats = Indexer(embedder, store).index(docs)

        # guide.md sorts first and succeeds; intro.mdx fails on its first section
        assert stats.reindexed == 1
        assert stats.failed == 1
        assert stats.failed_paths == ["docs/intro"]
        intro = store.find_page_by_path("docs/intro")
        assert intro.checksum is None
        [section] = store.list_sections(intro.id)
        assert section.has_embedding is False

    def test_pending_page_retried_on_next_run(self, docs, embedder, store):
        good = embedder.embed.return_value
        embedder.embed.side_effect = [good, ProviderError("rate limited"), good, good]
        indexer = Indexer(embedder, store)

        first = indexer.index(docs)
        assert first.failed == 1
        assert store.find_page_by_path("docs/intro").checksum is None

        embedder.embed.side_effect = None
        second = indexer.index(docs)

        assert second.reindexed == 1
        assert second.skipped == 1
        intro = store.find_page_by_path("docs/intro")
        assert intro.checksum is not None
        assert len(store.list_sections(intro.id)) == 2

    def test_parse_failure_is_isolated(self, tmp_path, embedder, store):
        root = tmp_path / "docs"
        _write(root / "bad.mdx", "# Bad\n\n<Note>\n\nNever closed\n")
        _write(root / "good.md", "# Good\n\nFine.\n")

        stats = Indexer(embedder, store).index(root)

        assert stats.failed == 1
        assert stats.failed_paths == ["docs/bad"]
        assert stats.reindexed == 1
        assert store.find_page_by_path("docs/bad") is None
        assert store.find_page_by_path("docs/good").checksum is not None

    def test_parent_linked_on_following_run(self, tmp_path, embedder, store):
        root = tmp_path / "docs"
        _write(root / "index.mdx", "# Home\n\nWelcome.\n")
        _write(root / "about.mdx", "# About\n\nUs.\n")
        indexer = Indexer(embedder, store)

        first = indexer.index(root)
        # about.mdx sorts before index.mdx, so its parent does not exist yet
        assert first.reindexed == 2
        assert store.find_page_by_path("docs/about").parent_path is None

        second = indexer.index(root)

        assert second.patched == 1
        assert second.skipped == 1
        about = store.find_page_by_path("docs/about")
        assert about.parent_path == "docs"
        assert store.find_page_by_path("docs").parent_page_id is None

        third = indexer.index(root)
        assert third.skipped == 2

    def test_meta_stored(self, tmp_path, embedder, store):
        root = tmp_path / "docs"
        _write(root / "page.mdx", "export const meta = { title: 'Page', draft: false }\n\n# Page\n")

        Indexer(embedder, store).index(root)

        assert store.find_page_by_path("docs/page").meta == {"title": "Page", "draft": False}


class TestSyncOrdering:
    """Test store call ordering with mocks."""

    def _source(self, document):
        source = Mock(spec=MarkdownSource)
        source.path = "docs/a"
        source.parent_path = None
        source.type = "markdown"
        source.source = "guide"
        source.load.return_value = document
        return source

    def test_checksum_written_last(self, embedder):
        document = ProcessedDocument(
            checksum="new",
            sections=[DocumentSection(content="one"), DocumentSection(content="two")],
        )
        store = Mock()
        store.find_page_by_path.side_effect = [Page(id=5, path="docs/a", checksum="old"), None]
        store.upsert_page.return_value = 5
        store.insert_section.side_effect = [10, 11]

        status = Indexer(embedder, store)._sync_single(self._source(document), refresh=False)

        assert status == "reindexed"
        names = [name for name, _, _ in store.mock_calls]
        assert names[-1] == "update_page_checksum"
        assert names.index("delete_sections") < names.index("upsert_page")
        assert names.index("upsert_page") < names.index("insert_section")
        store.update_page_checksum.assert_called_once_with(5, "new")
        store.update_section_embedding.assert_has_calls(
            [call(10, embedder.embed.return_value.vector), call(11, embedder.embed.return_value.vector)]
        )

    def test_unchanged_document_touches_nothing(self, embedder):
        document = ProcessedDocument(checksum="same", sections=[DocumentSection(content="x")])
        store = Mock()
        store.find_page_by_path.return_value = Page(id=5, path="docs/a", checksum="same")

        status = Indexer(embedder, store)._sync_single(self._source(document), refresh=False)

        assert status == "skipped"
        store.upsert_page.assert_not_called()
        store.delete_sections.assert_not_called()
        embedder.embed.assert_not_called()

    def test_load_failure_propagates_before_store(self, embedder):
        store = Mock()
        source = self._source(None)
        source.load.side_effect = ParseError("bad", path="a.mdx")

        stats = Indexer(embedder, store).sync([source])

        assert stats.failed == 1
        store.find_page_by_path.assert_not_called()
        store.upsert_page.assert_not_called()
