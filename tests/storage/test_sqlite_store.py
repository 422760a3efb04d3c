# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the SQLite record store and its FTS5 index."""

import pytest

from cortex_memory.errors import EmbeddingDimensionError, StoreError, StoreUnavailableError
from cortex_memory.schemas.memory_types import MemoryStatus, MemoryType
from cortex_memory.storage.sqlite_store import MetadataFilter, SQLiteRecordStore


class TestRecordCrud:
    def test_add_and_get_round_trip(self, record_store, make_record) -> None:
        record = make_record(
            "use WAL",
            tags=["sqlite", "perf"],
            memory_type=MemoryType.FACT,
            provenance={"source": "episodic", "session_id": "s1", "project_hash": "p1"},
            embedding=[0.5] * 8,
        )
        record_store.add(record)

        loaded = record_store.get(record.id)

        assert loaded.content == "use WAL"
        assert loaded.tags == ["sqlite", "perf"]
        assert loaded.memory_type == MemoryType.FACT
        assert loaded.provenance.session_id == "s1"
        assert loaded.project_hash == "p1"
        assert loaded.embedding == pytest.approx([0.5] * 8)
        assert loaded.created_at == record.created_at

    def test_duplicate_id_rejected(self, record_store, make_record) -> None:
        record = record_store.add(make_record())
        with pytest.raises(StoreError):
            record_store.add(record)

    def test_embedding_dimension_checked(self, record_store, make_record) -> None:
        with pytest.raises(EmbeddingDimensionError):
            record_store.add(make_record(embedding=[1.0, 0.0]))

    def test_update_bumps_version_and_timestamp(self, record_store, make_record) -> None:
        record = record_store.add(make_record(age_days=2))

        updated = record_store.update(record.model_copy(update={"summary": "short"}))

        assert updated.version == record.version + 1
        assert updated.updated_at > record.updated_at
        assert record_store.get(record.id).summary == "short"

    def test_update_missing_record(self, record_store, make_record) -> None:
        with pytest.raises(StoreError):
            record_store.update(make_record())

    def test_soft_delete_keeps_row(self, record_store, make_record) -> None:
        record = record_store.add(make_record("obsolete"))

        assert record_store.soft_delete(record.id, reason="stale") is True

        loaded = record_store.get(record.id)
        assert loaded.status == MemoryStatus.DELETED
        assert loaded.deleted_reason == "stale"
        assert loaded.version == 2
        assert record_store.soft_delete("missing") is False

    def test_hard_delete_removes_from_index(self, record_store, make_record) -> None:
        record = record_store.add(make_record("ephemeral token"))

        assert record_store.hard_delete(record.id) is True

        assert record_store.get(record.id) is None
        assert record_store.lexical_search('"ephemeral"') == []

    def test_get_many_omits_missing(self, record_store, make_record) -> None:
        a = record_store.add(make_record("a"))
        found = record_store.get_many([a.id, "missing"])
        assert list(found) == [a.id]

    def test_record_usage_blends_success_rate(self, record_store, make_record) -> None:
        record = record_store.add(make_record(usage_success_rate=0.5))

        updated = record_store.record_usage(record.id, success=True, blend=0.2)

        assert updated.usage_count == 1
        assert updated.usage_success_rate == pytest.approx(0.6)
        assert record_store.record_usage("missing", True) is None

    def test_closed_store_unavailable(self, tmp_path, make_record) -> None:
        store = SQLiteRecordStore(tmp_path / "closed.db")
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.get("anything")


class TestFiltering:
    @pytest.fixture
    def mixed(self, record_store, make_record):
        records = {
            "p1_fact": make_record("alpha", memory_type="fact", provenance={"project_hash": "p1"}),
            "p2_fact": make_record("alpha", memory_type="fact", provenance={"project_hash": "p2"}),
            "global_skill": make_record("alpha", memory_type="skill"),
            "kg": make_record("alpha", provenance={"source": "knowledge-graph"}),
        }
        for record in records.values():
            record_store.add(record)
        record_store.soft_delete(records["kg"].id)
        return records

    def test_project_scope_with_globals(self, record_store, mixed) -> None:
        found = record_store.list_records(MetadataFilter(project_hash="p1"))
        assert {r.id for r in found} == {mixed["p1_fact"].id, mixed["global_skill"].id}

    def test_project_scope_without_globals(self, record_store, mixed) -> None:
        found = record_store.list_records(MetadataFilter(project_hash="p1", include_global=False))
        assert [r.id for r in found] == [mixed["p1_fact"].id]

    def test_type_filter(self, record_store, mixed) -> None:
        found = record_store.list_records(MetadataFilter(memory_type=MemoryType.SKILL))
        assert [r.id for r in found] == [mixed["global_skill"].id]

    def test_status_filter_and_counts(self, record_store, mixed) -> None:
        assert record_store.count() == 4
        assert record_store.count(MetadataFilter()) == 3
        deleted = record_store.list_records(
            MetadataFilter(status=MemoryStatus.DELETED, source="knowledge-graph")
        )
        assert [r.id for r in deleted] == [mixed["kg"].id]

    def test_matches_agrees_with_sql(self, record_store, mixed) -> None:
        """The in-memory predicate and the SQL fragment select the same rows."""
        filters = [
            MetadataFilter(),
            MetadataFilter(status=None),
            MetadataFilter(project_hash="p2"),
            MetadataFilter(project_hash="p2", include_global=False),
            MetadataFilter(memory_type=MemoryType.FACT, status=None),
            MetadataFilter(source="knowledge-graph", status=None),
        ]
        everything = record_store.list_records(MetadataFilter(status=None))
        for metadata_filter in filters:
            via_sql = {r.id for r in record_store.list_records(metadata_filter)}
            via_matches = {r.id for r in everything if metadata_filter.matches(r)}
            assert via_sql == via_matches, metadata_filter


class TestLexicalSearch:
    def test_ranks_best_match_first(self, record_store, make_record) -> None:
        for filler in ["css grid", "helm chart", "pytest marks", "docker layers"]:
            record_store.add(make_record(filler))
        strong = record_store.add(make_record("retry retry retry backoff"))
        weak = record_store.add(make_record("retry once then give up after a long wait"))

        hits = record_store.lexical_search('"retry"')

        assert [h[0] for h in hits] == [strong.id, weak.id]
        assert hits[0][1] <= hits[1][1]

    def test_summary_and_tags_indexed(self, record_store, make_record) -> None:
        by_summary = record_store.add(make_record("x", summary="postgres vacuum"))
        by_tag = record_store.add(make_record("y", tags=["vacuum"]))

        ids = {h[0] for h in record_store.lexical_search('"vacuum"')}

        assert ids == {by_summary.id, by_tag.id}

    def test_iter_embeddings_skips_deleted_and_missing(self, record_store, make_record) -> None:
        kept = record_store.add(make_record("a", embedding=[1.0] + [0.0] * 7))
        gone = record_store.add(make_record("b", embedding=[0.0, 1.0] + [0.0] * 6))
        record_store.add(make_record("c"))
        record_store.soft_delete(gone.id)

        assert [rid for rid, _ in record_store.iter_embeddings()] == [kept.id]
