"""Error taxonomy shared by the indexing pipeline and the query path."""

from __future__ import annotations


class DocIndexError(Exception):
    """Base class for all DocIndex failures."""


class DiscoveryError(DocIndexError):
    """The documentation tree could not be traversed. Fatal to an indexing run."""


class ParseError(DocIndexError):
    """A document could not be read or segmented."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class ProviderError(DocIndexError):
    """The embedding provider failed (quota, auth, network, bad response)."""


class StoreError(DocIndexError):
    """A read or write against the page/section store failed."""


class ValidationError(DocIndexError):
    """A query was rejected before reaching the provider or the store."""
