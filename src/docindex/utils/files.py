"""Utility helpers for discovering and fingerprinting documentation files."""

from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from docindex.errors import DiscoveryError

DOC_SUFFIXES = (".md", ".mdx")
INDEX_FILENAME = "index.mdx"


@dataclass(slots=True, frozen=True)
class WalkEntry:
    """A discovered document and the nearest ancestor index document."""

    path: Path
    parent_path: Optional[Path] = None


def walk(root: Path, *, ignored: Iterable[str] = ()) -> List[WalkEntry]:
    """Recursively list Markdown/MDX documents under ``root`` sorted by path.

    Each entry carries the ``index.mdx`` of the closest enclosing directory as
    its parent. An index document's parent is the index of an ancestor
    directory, never the document itself.
    """
    root = Path(root)
    if not root.is_dir():
        raise DiscoveryError(f"Documentation root not found: {root}")

    ignored_paths = {Path(item) for item in ignored}
    entries: List[WalkEntry] = []
    try:
        _walk_dir(root, None, entries, ignored_paths)
    except OSError as exc:
        raise DiscoveryError(f"Failed to traverse {root}: {exc}") from exc

    return sorted(entries, key=lambda entry: entry.path.as_posix())


def _walk_dir(
    directory: Path,
    parent_index: Optional[Path],
    entries: List[WalkEntry],
    ignored: set[Path],
) -> None:
    children = sorted(os.scandir(directory), key=lambda item: item.name)
    local_index = directory / INDEX_FILENAME
    has_index = any(child.name == INDEX_FILENAME and child.is_file() for child in children)

    for child in children:
        if child.name.startswith("."):
            continue
        path = Path(child.path)
        if child.is_dir():
            _walk_dir(path, local_index if has_index else parent_index, entries, ignored)
        elif child.is_file() and path.suffix.lower() in DOC_SUFFIXES:
            if path in ignored:
                continue
            if path == local_index:
                entries.append(WalkEntry(path=path, parent_path=parent_index))
            else:
                entries.append(
                    WalkEntry(path=path, parent_path=local_index if has_index else parent_index)
                )


def compute_checksum(text: str) -> str:
    """Return the base64 encoded SHA-256 digest of ``text``."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")
