"""Embedding model management."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Literal

import numpy as np
from openai import OpenAI, OpenAIError
from sentence_transformers import SentenceTransformer

from docindex.errors import ProviderError
from docindex.utils.text import normalize_for_embedding

DEFAULT_MODEL = "text-embedding-ada-002"
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_DIMENSION = 1536

OPENAI_DIMENSIONS = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    backend: Literal["openai", "local"] = "openai"
    api_key: str | None = None
    normalize: bool = True
    device: str | None = None


@dataclass(slots=True)
class Embedding:
    """Vector for one input text plus the number of tokens it consumed."""

    vector: np.ndarray
    token_count: int


class EmbeddingModel:
    """Maps text to a fixed-length float32 vector.

    Two backends are supported:
    - ``openai``: the OpenAI embeddings API (``OPENAI_API_KEY`` required)
    - ``local``: a `SentenceTransformer` model running in-process

    Every backend failure surfaces as :class:`ProviderError`; nothing is retried.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

        if self.config.backend == "openai":
            self._client = self._load_client()
            self.dimension = OPENAI_DIMENSIONS.get(self.config.model_name, DEFAULT_DIMENSION)
        elif self.config.backend == "local":
            self._model = self._load_model()
            self.dimension = int(self._model.get_sentence_embedding_dimension())
        else:
            raise ValueError(f"Unknown embedding backend: {self.config.backend}")

        logger.info(
            "Backend: %s | Model: %s | Dimension: %d",
            self.config.backend,
            self.config.model_name,
            self.dimension,
        )

    def _load_client(self) -> OpenAI:
        api_key = self.config.api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ProviderError("OPENAI_API_KEY is not defined.")
        return OpenAI(api_key=api_key)

    def _load_model(self) -> SentenceTransformer:
        try:
            return SentenceTransformer(self.config.model_name, device=self.config.device)
        except Exception as exc:
            raise ProviderError(f"Failed to load model '{self.config.model_name}': {exc}") from exc

    def embed(self, text: str) -> Embedding:
        """Return the embedding and token count for ``text``.

        Newlines are collapsed to spaces before the text is submitted.
        """
        text = normalize_for_embedding(text)
        if self.config.backend == "openai":
            embedding = self._embed_openai(text)
        else:
            embedding = self._embed_local(text)

        if embedding.vector.shape[0] != self.dimension:
            raise ProviderError(
                f"Expected a {self.dimension}-dimensional vector, got {embedding.vector.shape[0]}"
            )
        return embedding

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed(text).vector

    def _embed_openai(self, text: str) -> Embedding:
        try:
            response = self._client.embeddings.create(model=self.config.model_name, input=text)
        except OpenAIError as exc:
            raise ProviderError(f"OpenAI embedding request failed: {exc}") from exc

        if not response.data:
            raise ProviderError("OpenAI returned no embedding data")
        vector = np.asarray(response.data[0].embedding, dtype="float32")
        return Embedding(vector=vector, token_count=int(response.usage.total_tokens))

    def _embed_local(self, text: str) -> Embedding:
        try:
            vectors = self._model.encode(
                [text],
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
            token_count = len(self._model.tokenizer.encode(text))
        except Exception as exc:
            raise ProviderError(f"Local embedding failed: {exc}") from exc
        return Embedding(vector=vectors[0].astype("float32", copy=False), token_count=token_count)
