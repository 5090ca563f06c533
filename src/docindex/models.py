"""Core DocIndex data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

MetaValue = Union[str, int, float, bool]
Meta = Dict[str, MetaValue]


@dataclass(slots=True)
class DocumentSection:
    """Heading-delimited fragment produced by the segmenter."""

    content: str
    heading: Optional[str] = None
    slug: Optional[str] = None


@dataclass(slots=True)
class ProcessedDocument:
    """Result of segmenting one source document."""

    checksum: str
    meta: Optional[Meta] = None
    sections: List[DocumentSection] = field(default_factory=list)


@dataclass(slots=True)
class Page:
    """Persisted representation of one source document.

    A ``checksum`` of ``None`` marks a page whose sections are incomplete and
    must be rebuilt on the next run.
    """

    id: int
    path: str
    checksum: Optional[str] = None
    parent_page_id: Optional[int] = None
    parent_path: Optional[str] = None
    meta: Optional[Meta] = None
    type: Optional[str] = None
    source: Optional[str] = None


@dataclass(slots=True)
class Section:
    """Persisted section row, without its embedding vector."""

    id: int
    page_id: int
    content: str
    token_count: Optional[int] = None
    slug: Optional[str] = None
    heading: Optional[str] = None
    has_embedding: bool = False
