"""Loadable documentation sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from docindex.errors import ParseError
from docindex.ingestion.markdown import process_markdown
from docindex.models import ProcessedDocument
from docindex.utils.text import format_path


@dataclass(slots=True)
class MarkdownSource:
    """A Markdown/MDX file on disk, addressed by its canonical page path."""

    source: str
    file_path: Path
    parent_file_path: Optional[Path] = None
    base_dir: Optional[Path] = None
    type: str = field(default="markdown", init=False)

    def _relative(self, path: Path) -> str:
        if self.base_dir is not None:
            try:
                path = path.relative_to(self.base_dir)
            except ValueError:
                pass
        return path.as_posix()

    @property
    def path(self) -> str:
        return format_path(self._relative(self.file_path))

    @property
    def parent_path(self) -> Optional[str]:
        if self.parent_file_path is None:
            return None
        return format_path(self._relative(self.parent_file_path))

    def load(self) -> ProcessedDocument:
        """Read the file and segment it into sections."""
        try:
            contents = self.file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ParseError(f"Unable to read file: {exc}", path=str(self.file_path)) from exc
        return process_markdown(contents)
