# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Retrieval: lexical and vector candidate paths, fusion, hybrid search."""

from cortex_memory.retrieval.embedding import EmbeddingProvider, SentenceTransformerEmbedder
from cortex_memory.retrieval.fusion import (
    FusedResult,
    RankedCandidate,
    RRFFusion,
    apply_decay,
    calculate_decay,
    rrf_score,
)
from cortex_memory.retrieval.hybrid import HybridSearchEngine, SearchMode, SearchOptions
from cortex_memory.retrieval.lexical import sanitize_fts_query
from cortex_memory.retrieval.vector_index import VectorIndex

__all__ = [
    "EmbeddingProvider",
    "FusedResult",
    "HybridSearchEngine",
    "RRFFusion",
    "RankedCandidate",
    "SearchMode",
    "SearchOptions",
    "SentenceTransformerEmbedder",
    "VectorIndex",
    "apply_decay",
    "calculate_decay",
    "rrf_score",
    "sanitize_fts_query",
]
