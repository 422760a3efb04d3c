# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Append-only JSONL tier stores.

Each tier lives in its own ``<tier>.jsonl`` file. Every write appends one
JSON line; a later line with the same id supersedes earlier ones, so an
update or soft-delete never rewrites existing bytes. ``compact()`` rewrites
the file through a temporary file and an atomic rename, dropping
superseded lines and soft-deleted records.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from cortex_memory.errors import StoreError
from cortex_memory.schemas.memory_types import MemoryRecord, MemoryStatus, Tier, utc_now

logger = logging.getLogger(__name__)

TIER_FILE_NAMES: dict[Tier, str] = {
    Tier.WORKING: "working.jsonl",
    Tier.SHORT_TERM: "short-term.jsonl",
    Tier.LONG_TERM: "long-term.jsonl",
}


class TierStore:
    """One tier's records, loaded into memory and persisted as JSONL.

    Example:
        >>> store = TierStore(Path("/tmp/memories/working.jsonl"), Tier.WORKING)
        >>> store.append(MemoryRecord(content="prefer ruff over flake8"))
        >>> len(store.active())
        1
    """

    def __init__(self, file_path: Path, tier: Tier, autoload: bool = True):
        self.file_path = Path(file_path).expanduser()
        self.tier = tier
        self._lock = threading.RLock()
        self._records: dict[str, MemoryRecord] = {}
        self._line_count = 0
        self._loaded = False
        self._stats = {"appends": 0, "compactions": 0, "corrupted": 0, "errors": 0}
        if autoload:
            self.load()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def load(self) -> dict[str, int]:
        """Read the file, replaying lines in order.

        Corrupted lines are logged and skipped.

        Returns:
            Dict with live record count and corrupted line count.
        """
        with self._lock:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self._records.clear()
            self._line_count = 0
            corrupted = 0
            if self.file_path.exists():
                with open(self.file_path, "r", encoding="utf-8") as f:
                    for line_no, line in enumerate(f, start=1):
                        if not line.strip():
                            continue
                        try:
                            record = MemoryRecord.model_validate_json(line)
                        except ValidationError as e:
                            corrupted += 1
                            logger.warning(
                                f"Skipping corrupted line {line_no} in {self.file_path}: {e}"
                            )
                            continue
                        self._records[record.id] = record
                        self._line_count += 1
            self._stats["corrupted"] = corrupted
            self._loaded = True
            return {"count": len(self._records), "corrupted": corrupted}

    def _write_line(self, record: MemoryRecord) -> None:
        try:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self._stats["errors"] += 1
            raise StoreError(f"Failed to append to {self.file_path}: {e}") from e

    def append(self, record: MemoryRecord) -> MemoryRecord:
        """Append a record, superseding any earlier line with the same id."""
        with self._lock:
            self._write_line(record)
            self._records[record.id] = record
            self._line_count += 1
            self._stats["appends"] += 1
            return record

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            return self._records.get(record_id)

    def all(self) -> list[MemoryRecord]:
        """Latest version of every record, including soft-deleted ones."""
        with self._lock:
            return list(self._records.values())

    def active(self) -> list[MemoryRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.status == MemoryStatus.ACTIVE]

    def count_active(self) -> int:
        return len(self.active())

    def update(self, record_id: str, **updates: Any) -> MemoryRecord:
        """Append a modified copy of a record.

        Raises:
            StoreError: The record is not in this tier.
        """
        with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                raise StoreError(f"Record {record_id} not found in {self.tier.value}")
            updates.setdefault("updated_at", utc_now())
            updates["version"] = existing.version + 1
            return self.append(existing.model_copy(update=updates))

    def soft_delete(self, record_id: str, reason: Optional[str] = None) -> bool:
        """Mark a record deleted. Returns False if it is not in this tier."""
        with self._lock:
            if record_id not in self._records:
                return False
            self.update(record_id, status=MemoryStatus.DELETED, deleted_reason=reason)
            return True

    def compact(self) -> dict[str, int]:
        """Rewrite the file with only the latest line of each active record.

        Returns:
            Dict with line counts before and after.
        """
        with self._lock:
            before = self._line_count
            keep = [r for r in self._records.values() if r.status != MemoryStatus.DELETED]
            tmp_path = self.file_path.with_name(f"{self.file_path.name}.tmp.{os.getpid()}")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    for record in keep:
                        f.write(record.model_dump_json() + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.file_path)
            except OSError as e:
                self._stats["errors"] += 1
                if tmp_path.exists():
                    tmp_path.unlink()
                raise StoreError(f"Compaction of {self.file_path} failed: {e}") from e
            self._records = {r.id: r for r in keep}
            self._line_count = len(keep)
            self._stats["compactions"] += 1
            logger.debug(f"Compacted {self.tier.value}: {before} -> {len(keep)} lines")
            return {"before": before, "after": len(keep)}

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            size = self.file_path.stat().st_size if self.file_path.exists() else 0
            return {
                **self._stats,
                "tier": self.tier.value,
                "active": self.count_active(),
                "records": len(self._records),
                "lines": self._line_count,
                "file_size_bytes": size,
            }


def open_tier_stores(base_dir: Path) -> dict[Tier, TierStore]:
    """Open (creating if needed) the three tier files under base_dir."""
    base = Path(base_dir).expanduser()
    return {tier: TierStore(base / name, tier) for tier, name in TIER_FILE_NAMES.items()}

