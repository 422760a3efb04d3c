# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the lexical path: query sanitising and BM25 candidates."""

import pytest

from cortex_memory.errors import LexicalSyntaxError
from cortex_memory.retrieval.lexical import lexical_candidates, sanitize_fts_query
from cortex_memory.storage.sqlite_store import MetadataFilter


class TestSanitizeQuery:
    """Operator characters must never reach FTS5."""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("sqlite locking", '"sqlite" "locking"'),
            ('auth* "token" ^refresh', '"auth" "token" "refresh"'),
            ("a:b (c) {d} [e] +f -g $h", '"a" "b" "c" "d" "e" "f" "g" "h"'),
            ("  spaced\t\nout  ", '"spaced" "out"'),
        ],
    )
    def test_operators_replaced_and_terms_quoted(self, query: str, expected: str) -> None:
        assert sanitize_fts_query(query) == expected

    def test_only_operators_yields_empty(self) -> None:
        assert sanitize_fts_query('"*()"') == ""


class TestLexicalCandidates:
    """Tests for converting index hits to ranked candidates."""

    def test_hits_ranked_from_zero_with_negated_bm25(self, record_store, make_record) -> None:
        record_store.add(make_record("sqlite wal mode keeps readers unblocked"))
        record_store.add(make_record("sqlite sqlite sqlite busy timeout"))
        record_store.add(make_record("unrelated note about css"))
        record_store.add(make_record("grid layout in the dashboard"))
        record_store.add(make_record("pytest fixtures for tmp paths"))
        record_store.add(make_record("release notes template"))

        candidates = lexical_candidates(record_store, "sqlite", MetadataFilter(), 10)

        assert [c.rank for c in candidates] == [0, 1]
        assert all(c.path == "lexical" for c in candidates)
        assert all(c.raw_score > 0 for c in candidates)
        assert candidates[0].raw_score >= candidates[1].raw_score

    def test_operator_heavy_query_still_matches(self, record_store, make_record) -> None:
        record = record_store.add(make_record("retry with exponential backoff"))

        candidates = lexical_candidates(
            record_store, "(retry) backoff*", MetadataFilter(), 10
        )

        assert [c.record_id for c in candidates] == [record.id]

    def test_syntax_error_degrades_to_empty(self) -> None:
        """An index that rejects the query yields no lexical results."""

        class RejectingIndex:
            def lexical_search(self, fts_query, metadata_filter=None, limit=30):
                raise LexicalSyntaxError("fts5: syntax error near \"\"")

        assert lexical_candidates(RejectingIndex(), "anything", MetadataFilter(), 10) == []

    def test_filter_applied_in_index(self, record_store, make_record) -> None:
        record_store.add(make_record("deploy checklist", provenance={"project_hash": "p1"}))
        other = record_store.add(
            make_record("deploy runbook", provenance={"project_hash": "p2"})
        )

        candidates = lexical_candidates(
            record_store,
            "deploy",
            MetadataFilter(project_hash="p2", include_global=False),
            10,
        )

        assert [c.record_id for c in candidates] == [other.id]
