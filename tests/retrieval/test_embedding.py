# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the sentence-transformers embedding provider.

A stub model is injected so no weights are downloaded.
"""

import numpy as np
import pytest

from cortex_memory.errors import EmbeddingDimensionError
from cortex_memory.retrieval.embedding import SentenceTransformerEmbedder


class StubModel:
    def __init__(self, dimension: int):
        self.dimension = dimension
        self.calls: list[list[str]] = []

    def encode(self, sentences, batch_size=32, show_progress_bar=False, normalize_embeddings=True):
        self.calls.append(list(sentences))
        vectors = np.zeros((len(sentences), self.dimension), dtype=np.float32)
        vectors[:, 0] = 1.0
        return vectors


class TestSentenceTransformerEmbedder:
    def test_lazy_by_default(self) -> None:
        embedder = SentenceTransformerEmbedder(dimension=4)
        assert embedder._model is None

    def test_embed_returns_floats(self) -> None:
        embedder = SentenceTransformerEmbedder(dimension=4)
        embedder._model = StubModel(4)

        vector = embedder.embed("database configuration")

        assert vector == [1.0, 0.0, 0.0, 0.0]
        assert all(isinstance(v, float) for v in vector)
        assert embedder._model.calls == [["database configuration"]]

    def test_wrong_dimension_rejected(self) -> None:
        embedder = SentenceTransformerEmbedder(dimension=4)
        embedder._model = StubModel(3)

        with pytest.raises(EmbeddingDimensionError):
            embedder.embed("x")
