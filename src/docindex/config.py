"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from docindex.embedding.encoder import DEFAULT_MODEL

DEFAULT_DB_PATH = Path("data/docindex.db")


def _get_default_db_path() -> Path:
    """Database path from ``DOCINDEX_DB``, falling back to the local data/ folder."""
    env_path = os.environ.get("DOCINDEX_DB")
    if env_path:
        return Path(env_path)
    return DEFAULT_DB_PATH


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    docs_root: Path = Path("docs")
    source: str = "guide"
    embedding_backend: str = "openai"
    model_name: str = DEFAULT_MODEL
    match_threshold: float = 0.5
    min_content_length: int = 50
    match_count: int = 15

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
