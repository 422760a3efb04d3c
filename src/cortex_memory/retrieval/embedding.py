# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding providers.

The search engine only depends on the ``EmbeddingProvider`` protocol. The
default implementation wraps sentence-transformers, which is an optional
dependency and is loaded on first use.

Model: all-MiniLM-L6-v2 (384-dim, fast, good quality)
"""

import logging
import threading
from typing import Optional, Protocol, cast

import numpy as np
from numpy.typing import NDArray

from cortex_memory.errors import EmbeddingDimensionError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-length vector."""

    dimension: int

    def embed(self, text: str) -> list[float]: ...


class EmbeddingModel(Protocol):
    """Subset of the SentenceTransformer interface used here."""

    def encode(
        self,
        sentences: list[str] | str,
        batch_size: int = 32,
        show_progress_bar: bool = False,
        normalize_embeddings: bool = True,
    ) -> NDArray[np.float32]: ...


class SentenceTransformerEmbedder:
    """Embedding provider backed by sentence-transformers.

    Example:
        >>> embedder = SentenceTransformerEmbedder()
        >>> len(embedder.embed("database configuration"))
        384
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    DEFAULT_EMBEDDING_DIM = 384

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimension: int = DEFAULT_EMBEDDING_DIM,
        lazy_load: bool = True,
    ):
        """Initialize the embedder.

        Args:
            model_name: Sentence-transformers model name.
            dimension: Expected embedding dimension.
            lazy_load: If True, load the model on first use.
        """
        self.model_name = model_name
        self.dimension = dimension
        self._model: Optional[EmbeddingModel] = None
        self._load_lock = threading.Lock()

        if not lazy_load:
            self._load_model()

    def _load_model(self) -> EmbeddingModel:
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ImportError(
                    "sentence-transformers is required for SentenceTransformerEmbedder. "
                    "Install with: pip install cortex-memory[embeddings]"
                ) from e

            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = cast(EmbeddingModel, SentenceTransformer(self.model_name))
            logger.info("Embedding model loaded successfully")
            return self._model

    @property
    def model(self) -> EmbeddingModel:
        """Get the embedding model, loading if necessary."""
        if self._model is None:
            return self._load_model()
        return self._model

    def embed(self, text: str) -> list[float]:
        """Embed a single text as an L2-normalized vector.

        Raises:
            EmbeddingDimensionError: The model produced an unexpected length.
        """
        vector = self.model.encode(
            [text],
            batch_size=32,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        vector = vector[0] if vector.ndim == 2 else vector
        if vector.shape[0] != self.dimension:
            raise EmbeddingDimensionError(self.dimension, int(vector.shape[0]))
        return vector.astype(float).tolist()
