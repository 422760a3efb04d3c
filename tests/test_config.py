# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for configuration loading and clamping."""

from pathlib import Path

import pytest
import yaml

from cortex_memory.config import (
    DEFAULT_OPERATION_LIMITS,
    MAX_RETRY_ATTEMPTS,
    MAX_SEARCH_LIMIT,
    CortexConfig,
    config_from_dict,
    load_config,
)


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "cortex.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_defaults_match_documented_values(self) -> None:
        config = CortexConfig()

        assert config.search.rrf_k == 60
        assert config.search.vector_weight == 0.5
        assert config.search.decay_base == 0.9
        assert config.search.decay_exponent == 0.5
        assert config.tiers.working_max_age_hours == 24
        assert config.tiers.working_max_items == 50
        assert config.tiers.short_term_max_age_days == 7
        assert config.tiers.short_term_max_items == 200
        assert config.tiers.promote_threshold == 0.6
        assert config.tiers.delete_threshold == 0.3
        assert config.rate_limit.burst_multiplier == 1.5
        assert config.rate_limit.cooldown_seconds == 60
        assert config.circuit_breaker.threshold == 5
        assert config.circuit_breaker.reset_timeout_ms == 30000
        assert config.circuit_breaker.half_open_requests == 3
        assert config.retry.max_attempts == 3
        assert config.retry.initial_delay_ms == 100
        assert config.retry.max_delay_ms == 5000
        assert config.scheduler.promotion_interval_seconds == 3600
        assert config.scheduler.decay_interval_seconds == 6 * 3600

    def test_default_limits_cover_tool_names(self) -> None:
        assert set(DEFAULT_OPERATION_LIMITS) == {
            "cortex__query",
            "cortex__recall",
            "cortex__reflect",
            "cortex__infer",
            "cortex__learn",
            "cortex__consolidate",
        }

    def test_storage_paths_derive_from_base(self, tmp_path) -> None:
        config = config_from_dict({"storage": {"base_path": str(tmp_path)}})

        assert config.storage.database_path == tmp_path / "memories.db"
        assert config.storage.tiers_path == tmp_path / "data" / "memories"


class TestLoadConfig:
    def test_none_and_missing_file_give_defaults(self, tmp_path) -> None:
        assert load_config(None) == CortexConfig()
        assert load_config(tmp_path / "absent.yaml") == CortexConfig()

    def test_invalid_yaml_gives_defaults(self, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("search: [unclosed")

        assert load_config(path) == CortexConfig()

    def test_non_mapping_gives_defaults(self, tmp_path) -> None:
        assert load_config(_write(tmp_path, ["a", "b"])) == CortexConfig()

    def test_values_read_from_file(self, tmp_path) -> None:
        path = _write(
            tmp_path,
            {
                "search": {"rrf_k": 30, "vector_weight": 0.7},
                "tiers": {"working_max_items": 10},
                "rate_limit": {"limits": {"custom_op": {"per_minute": 2}}},
                "scheduler": {"run_on_start": False},
            },
        )

        config = load_config(path)

        assert config.search.rrf_k == 30
        assert config.search.vector_weight == 0.7
        assert config.tiers.working_max_items == 10
        assert config.rate_limit.limits["custom_op"].per_minute == 2
        assert config.rate_limit.limits["custom_op"].per_hour == 300
        assert "cortex__query" in config.rate_limit.limits
        assert config.scheduler.run_on_start is False


class TestClamping:
    """Hostile or sloppy values are clamped or ignored."""

    @pytest.mark.parametrize(
        "section,key,value,attr,expected",
        [
            ("search", "vector_weight", 3.0, "vector_weight", 1.0),
            ("search", "vector_weight", -1.0, "vector_weight", 0.0),
            ("search", "default_limit", 10**9, "default_limit", MAX_SEARCH_LIMIT),
            ("retry", "max_attempts", 500, "max_attempts", MAX_RETRY_ATTEMPTS),
            ("retry", "max_attempts", 0, "max_attempts", 1),
            ("circuit_breaker", "threshold", -3, "threshold", 1),
            ("scheduler", "promotion_interval_seconds", 0, "promotion_interval_seconds", 1.0),
        ],
    )
    def test_out_of_range_values_clamped(self, section, key, value, attr, expected) -> None:
        config = config_from_dict({section: {key: value}})
        assert getattr(getattr(config, section), attr) == expected

    @pytest.mark.parametrize("value", ["sixty", True, None, [60]])
    def test_wrong_type_falls_back_to_default(self, value) -> None:
        config = config_from_dict({"search": {"rrf_k": value}})
        assert config.search.rrf_k == 60

    def test_inverted_thresholds_fall_back_to_defaults(self) -> None:
        config = config_from_dict({"tiers": {"promote_threshold": 0.2, "delete_threshold": 0.5}})

        assert config.tiers.promote_threshold == 0.6
        assert config.tiers.delete_threshold == 0.3

    def test_non_mapping_section_ignored(self) -> None:
        config = config_from_dict({"search": "fast please"})
        assert config.search == CortexConfig().search
