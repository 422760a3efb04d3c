# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""In-memory cosine vector index.

Embeddings are stored L2-normalized in a single matrix, so cosine
similarity is a dot product. Distances are ``1 - similarity`` and results
come back ordered by ascending distance.
"""

import logging
import threading
from typing import Iterable, Optional

import numpy as np
from numpy.typing import NDArray

from cortex_memory.errors import EmbeddingDimensionError

logger = logging.getLogger(__name__)


def _normalize(vector: NDArray[np.float32]) -> NDArray[np.float32]:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


class VectorIndex:
    """Cosine nearest-neighbour index over record embeddings.

    Example:
        >>> index = VectorIndex(dimension=3)
        >>> index.add("a", [1.0, 0.0, 0.0])
        >>> index.search([1.0, 0.0, 0.0], k=1)
        [('a', 0.0)]
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._lock = threading.RLock()
        self._ids: list[str] = []
        self._positions: dict[str, int] = {}
        self._matrix: Optional[NDArray[np.float32]] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._positions

    def _as_vector(self, embedding: Iterable[float]) -> NDArray[np.float32]:
        vector = np.asarray(list(embedding), dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise EmbeddingDimensionError(self.dimension, int(vector.size))
        return _normalize(vector)

    def add(self, record_id: str, embedding: Iterable[float]) -> None:
        """Add or replace the embedding for record_id."""
        vector = self._as_vector(embedding)
        with self._lock:
            position = self._positions.get(record_id)
            if position is not None:
                self._matrix[position] = vector
                return
            self._positions[record_id] = len(self._ids)
            self._ids.append(record_id)
            if self._matrix is None:
                self._matrix = vector.reshape(1, -1)
            else:
                self._matrix = np.vstack([self._matrix, vector])

    def remove(self, record_id: str) -> bool:
        with self._lock:
            position = self._positions.pop(record_id, None)
            if position is None:
                return False
            self._ids.pop(position)
            if self._ids:
                self._matrix = np.delete(self._matrix, position, axis=0)
            else:
                self._matrix = None
            self._positions = {rid: i for i, rid in enumerate(self._ids)}
            return True

    def rebuild(self, items: Iterable[tuple[str, Iterable[float]]]) -> int:
        """Replace the index contents. Returns the number of vectors indexed."""
        with self._lock:
            self._ids = []
            self._positions = {}
            self._matrix = None
            for record_id, embedding in items:
                self.add(record_id, embedding)
            return len(self._ids)

    def search(self, vector: Iterable[float], k: int) -> list[tuple[str, float]]:
        """Return up to k (id, distance) pairs, nearest first."""
        query = self._as_vector(vector)
        with self._lock:
            if self._matrix is None or k <= 0:
                return []
            similarities = self._matrix @ query
            ids = list(self._ids)

        if len(similarities) <= k:
            top = np.argsort(-similarities, kind="stable")
        else:
            top = np.argpartition(-similarities, k - 1)[:k]
            top = top[np.argsort(-similarities[top], kind="stable")]

        return [(ids[i], float(max(0.0, 1.0 - similarities[i]))) for i in top]

