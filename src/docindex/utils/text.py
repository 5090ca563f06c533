"""Text helpers: canonical page paths, heading slugs and embedding input."""

from __future__ import annotations

import re
from typing import Dict

_BACKSLASHES = re.compile(r"\\+")
_ORDERING_PREFIX = re.compile(r"(^|/)\d{2}-")
_DOC_EXTENSION = re.compile(r"\.mdx?$")
_TRAILING_INDEX = re.compile(r"(^|/)index$")

# Everything that is not a word character, a hyphen or a space is dropped
# from a slug, the same way GitHub renders heading anchors.
_SLUG_STRIP = re.compile(r"[^\w\- ]")


def format_path(path: str) -> str:
    """Convert a source file path into the canonical, URL friendly page path.

    ``docs\\02-app\\01-routing\\08-parallel-routes.mdx`` becomes
    ``docs/app/routing/parallel-routes`` and ``docs/guide/index.mdx`` becomes
    ``docs/guide``.
    """
    formatted = _BACKSLASHES.sub("/", path)
    formatted = _ORDERING_PREFIX.sub(r"\1", formatted)
    formatted = _DOC_EXTENSION.sub("", formatted)
    return _TRAILING_INDEX.sub("", formatted)


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("", text.lower()).replace(" ", "-")


class Slugger:
    """Stateful slug generator that keeps slugs unique within one document.

    Repeated headings get ``-1``, ``-2``, ... appended in the order they are
    seen, so a fresh instance must be used per document.
    """

    def __init__(self) -> None:
        self._occurrences: Dict[str, int] = {}

    def slug(self, text: str) -> str:
        original = slugify(text)
        result = original
        while result in self._occurrences:
            self._occurrences[original] += 1
            result = f"{original}-{self._occurrences[original]}"
        self._occurrences[result] = 0
        return result

    def reset(self) -> None:
        self._occurrences.clear()


def normalize_for_embedding(text: str) -> str:
    """Collapse newlines into spaces before sending text to an embedding API."""
    return text.replace("\r\n", " ").replace("\n", " ")
