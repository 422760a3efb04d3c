# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Lexical (BM25) retrieval path.

User queries are sanitised before reaching FTS5: operator characters are
replaced by spaces, whitespace is collapsed, and each remaining term is
wrapped in double quotes so it is matched as a plain string.
"""

import logging
import re
from datetime import datetime
from typing import Optional, Protocol

from cortex_memory.errors import LexicalSyntaxError
from cortex_memory.retrieval.fusion import RankedCandidate
from cortex_memory.storage.sqlite_store import MetadataFilter

logger = logging.getLogger(__name__)

# Characters with meaning in FTS5 query syntax
_FTS_OPERATORS = re.compile(r'["^$*():+\-{}\[\]]')
_WHITESPACE = re.compile(r"\s+")


class LexicalIndex(Protocol):
    def lexical_search(
        self,
        fts_query: str,
        metadata_filter: Optional[MetadataFilter] = None,
        limit: int = 30,
    ) -> list[tuple[str, float, datetime]]: ...


def sanitize_fts_query(query: str) -> str:
    """Neutralise FTS5 syntax in a free-text query.

    Args:
        query: Raw user query.

    Returns:
        Space-separated quoted terms, or "" if nothing searchable remains.

    Example:
        >>> sanitize_fts_query('auth* "token" ^refresh')
        '"auth" "token" "refresh"'
    """
    cleaned = _WHITESPACE.sub(" ", _FTS_OPERATORS.sub(" ", query)).strip()
    if not cleaned:
        return ""
    return " ".join(f'"{term}"' for term in cleaned.split(" ") if term)


def lexical_candidates(
    index: LexicalIndex,
    query: str,
    metadata_filter: MetadataFilter,
    limit: int,
) -> list[RankedCandidate]:
    """Run the lexical path and convert hits to ranked candidates.

    A syntax error from the text index yields an empty list.
    """
    fts_query = sanitize_fts_query(query)
    if not fts_query:
        return []
    try:
        hits = index.lexical_search(fts_query, metadata_filter, limit)
    except LexicalSyntaxError as e:
        logger.warning(f"Lexical query rejected by full-text index: {e}")
        return []
    return [
        RankedCandidate(
            record_id=record_id,
            raw_score=-bm25,
            rank=rank,
            created_at=created_at,
            path="lexical",
        )
        for rank, (record_id, bm25, created_at) in enumerate(hits)
    ]
