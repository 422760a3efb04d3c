# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the append-only JSONL tier stores."""

import pytest

from cortex_memory.errors import StoreError
from cortex_memory.schemas.memory_types import MemoryStatus, Tier
from cortex_memory.storage.tier_store import TIER_FILE_NAMES, TierStore, open_tier_stores


@pytest.fixture
def working(tmp_path) -> TierStore:
    return TierStore(tmp_path / "working.jsonl", Tier.WORKING)


class TestTierStore:
    def test_open_tier_stores_creates_one_file_per_tier(self, tmp_path) -> None:
        stores = open_tier_stores(tmp_path / "tiers")

        assert set(stores) == set(Tier)
        for tier, store in stores.items():
            assert store.file_path.name == TIER_FILE_NAMES[tier]
            assert store.tier == tier

    def test_append_persists_across_reload(self, working, make_record) -> None:
        record = working.append(make_record("persist me"))

        reloaded = TierStore(working.file_path, Tier.WORKING)

        assert reloaded.get(record.id).content == "persist me"

    def test_update_appends_new_version(self, working, make_record) -> None:
        record = working.append(make_record())

        updated = working.update(record.id, decay_score=0.42)

        assert updated.version == 2
        lines = working.file_path.read_text().splitlines()
        assert len(lines) == 2
        assert TierStore(working.file_path, Tier.WORKING).get(record.id).decay_score == 0.42

    def test_update_missing_record(self, working) -> None:
        with pytest.raises(StoreError):
            working.update("missing", decay_score=0.1)

    def test_soft_delete_hides_from_active(self, working, make_record) -> None:
        record = working.append(make_record())

        assert working.soft_delete(record.id, reason="promoted") is True

        assert working.active() == []
        assert working.get(record.id).status == MemoryStatus.DELETED
        assert working.get(record.id).deleted_reason == "promoted"
        assert working.soft_delete("missing") is False

    def test_compact_drops_deleted_and_superseded_lines(self, working, make_record) -> None:
        keep = working.append(make_record("keep"))
        drop = working.append(make_record("drop"))
        working.update(keep.id, decay_score=0.9)
        working.soft_delete(drop.id)

        result = working.compact()

        assert result == {"before": 4, "after": 1}
        reloaded = TierStore(working.file_path, Tier.WORKING)
        assert [r.id for r in reloaded.all()] == [keep.id]
        assert reloaded.get(keep.id).decay_score == 0.9

    def test_corrupted_lines_skipped(self, working, make_record) -> None:
        record = working.append(make_record())
        with open(working.file_path, "a", encoding="utf-8") as f:
            f.write("{not json\n")

        reloaded = TierStore(working.file_path, Tier.WORKING)

        assert [r.id for r in reloaded.all()] == [record.id]
        assert reloaded.get_stats()["corrupted"] == 1
