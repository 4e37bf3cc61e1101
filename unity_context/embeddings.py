# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Embedding providers.

Providers map text to fixed-dimension vectors. The rest of the package only
sees the ``EmbeddingFn`` callable; heavy provider libraries are imported
lazily when a provider is constructed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Optional, Protocol, runtime_checkable

import numpy as np

from .errors import NotConfigured, UpstreamFailure

logger = logging.getLogger(__name__)

# Takes a sequence of texts, returns an (N, dim) float32 array
EmbeddingFn = Callable[[Sequence[str]], np.ndarray]

DEFAULT_MODELS = {
    "sentence-transformers": "sentence-transformers/all-mpnet-base-v2",
    "openai": "text-embedding-3-small",
}


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding model providers."""

    @property
    def dimension(self) -> int:
        ...

    @property
    def model_name(self) -> str:
        ...

    def embed(self, texts: list[str]) -> np.ndarray:
        """Return an array of shape (len(texts), dimension)."""
        ...


class SentenceTransformerProvider:
    """Local embeddings through the sentence-transformers library."""

    def __init__(self, model: str, dimension: int, cache_dir: Optional[str] = None, **_kwargs):
        from sentence_transformers import SentenceTransformer

        self._model_name = model
        self._model = SentenceTransformer(model, cache_folder=cache_dir)
        actual = self._model.get_sentence_embedding_dimension()
        if actual and int(actual) != dimension:
            logger.warning(
                "Model %s produces %s-dim vectors but embeddings.dimension=%s",
                model,
                actual,
                dimension,
            )
        self._dimension = int(actual or dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension), dtype="float32")
        out = self._model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(out, dtype="float32")


class OpenAIProvider:
    """Hosted embeddings through the OpenAI API."""

    def __init__(self, model: str, dimension: int, api_key: Optional[str] = None, **kwargs):
        if not api_key:
            raise NotConfigured(
                "OpenAI embeddings require embeddings.api_key or OPENAI_API_KEY"
            )
        from openai import OpenAI

        self._client = OpenAI(api_key=api_key, base_url=kwargs.get("base_url"))
        self._model_name = model
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension), dtype="float32")
        response = self._client.embeddings.create(
            model=self._model_name,
            input=list(texts),
            dimensions=self._dimension,
        )
        return np.asarray([item.embedding for item in response.data], dtype="float32")


def create_embedding_provider(
    provider: str,
    model: Optional[str],
    dimension: int,
    **kwargs: Any,
) -> EmbeddingProvider:
    """Build a provider by name, raising NotConfigured for unknown names."""
    name = (provider or "").lower()
    if name not in DEFAULT_MODELS:
        raise NotConfigured(f"Unknown embeddings provider: {provider!r}")
    model = model or DEFAULT_MODELS[name]

    if name == "openai":
        return OpenAIProvider(model, dimension, **kwargs)
    return SentenceTransformerProvider(model, dimension, **kwargs)


def embed_fn_from_provider(provider: EmbeddingProvider) -> EmbeddingFn:
    """Adapt a provider to the plain callable used by the indexer and RAG engine."""

    def _embed(texts: Sequence[str]) -> np.ndarray:
        try:
            out = provider.embed(list(texts))
        except NotConfigured:
            raise
        except Exception as exc:
            raise UpstreamFailure("embedding", str(exc)) from exc
        arr = np.asarray(out, dtype="float32")
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        return arr

    return _embed


def embed_fn_from_config(config) -> EmbeddingFn:
    """Create the configured provider and wrap it as an ``EmbeddingFn``."""
    kwargs = dict(config.embeddings_kwargs)
    if config.embeddings_provider == "openai":
        kwargs["api_key"] = config.embeddings_api_key

    provider = create_embedding_provider(
        provider=config.embeddings_provider,
        model=config.embeddings_model,
        dimension=config.embeddings_dimension,
        **kwargs,
    )
    logger.info(
        "Initialized embedding provider: provider=%s model=%s dim=%s",
        config.embeddings_provider,
        provider.model_name,
        provider.dimension,
    )
    return embed_fn_from_provider(provider)
