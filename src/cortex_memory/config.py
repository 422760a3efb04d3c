# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Configuration for the memory core.

This module provides:
- Dataclasses with defaults for every subsystem
- load_config() to parse a YAML config file
- Hard limits that a config file cannot override

Numeric values from the file are validated and clamped; values of the
wrong type fall back to the defaults.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "~/.claude/memory"

# Hard limits to keep a hostile config from exhausting resources
MAX_SEARCH_LIMIT = 1000
MAX_TIER_ITEMS = 100_000
MIN_INTERVAL_SECONDS = 1.0
MAX_RETRY_ATTEMPTS = 10
MAX_RETRY_DELAY_MS = 60_000


@dataclass
class OperationLimits:
    """Calls allowed per rolling window for one operation."""

    per_minute: int
    per_hour: int
    per_day: int


# Default limits per tool name. Cheap recall tools get higher limits than
# the expensive reasoning tools.
DEFAULT_OPERATION_LIMITS: dict[str, OperationLimits] = {
    "cortex__query": OperationLimits(per_minute=30, per_hour=300, per_day=1000),
    "cortex__recall": OperationLimits(per_minute=30, per_hour=300, per_day=1000),
    "cortex__reflect": OperationLimits(per_minute=10, per_hour=60, per_day=200),
    "cortex__infer": OperationLimits(per_minute=10, per_hour=60, per_day=200),
    "cortex__learn": OperationLimits(per_minute=15, per_hour=100, per_day=300),
    "cortex__consolidate": OperationLimits(per_minute=5, per_hour=20, per_day=50),
}


@dataclass
class SearchConfig:
    """Hybrid search parameters.

    Attributes:
        rrf_k: RRF constant.
        vector_weight: Share of the vector path in fusion (0-1).
        decay_base: Temporal decay base (retention after one day).
        decay_exponent: Power-law exponent of the forgetting curve.
        default_limit: Results returned when no limit is given.
        embedding_dim: Expected embedding dimensionality.
    """

    rrf_k: int = 60
    vector_weight: float = 0.5
    decay_base: float = 0.9
    decay_exponent: float = 0.5
    default_limit: int = 10
    embedding_dim: int = 384


@dataclass
class TierThresholds:
    """Bounds for the working and short-term tiers."""

    working_max_age_hours: float = 24.0
    working_max_items: int = 50
    short_term_max_age_days: float = 7.0
    short_term_max_items: int = 200
    promote_threshold: float = 0.6
    delete_threshold: float = 0.3


@dataclass
class RateLimitConfig:
    """Sliding-window rate limiting settings."""

    enabled: bool = True
    burst_multiplier: float = 1.5
    cooldown_seconds: float = 60.0
    limits: dict[str, OperationLimits] = field(
        default_factory=lambda: dict(DEFAULT_OPERATION_LIMITS)
    )


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker settings, shared by every component breaker."""

    threshold: int = 5
    reset_timeout_ms: float = 30_000
    half_open_requests: int = 3


@dataclass
class RetryConfig:
    """Exponential backoff settings."""

    max_attempts: int = 3
    initial_delay_ms: float = 100
    max_delay_ms: float = 5_000
    backoff_multiplier: float = 2.0


@dataclass
class SchedulerConfig:
    """Maintenance cadence."""

    promotion_interval_seconds: float = 3600.0
    decay_interval_seconds: float = 6 * 3600.0
    run_on_start: bool = True


@dataclass
class StorageConfig:
    """Where the record store and tier files live."""

    base_path: str = DEFAULT_BASE_PATH
    database_name: str = "memories.db"
    tiers_dir: str = "data/memories"

    @property
    def root(self) -> Path:
        return Path(self.base_path).expanduser()

    @property
    def database_path(self) -> Path:
        return self.root / self.database_name

    @property
    def tiers_path(self) -> Path:
        return self.root / self.tiers_dir


@dataclass
class CortexConfig:
    """Top-level configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    tiers: TierThresholds = field(default_factory=TierThresholds)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    usage_blend: float = 0.2


def _number(
    section: dict[str, Any],
    key: str,
    default: float,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    """Read a numeric value, falling back to default and clamping."""
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        logger.warning(f"Ignoring non-numeric config value {key}={raw!r}")
        raw = default
    if minimum is not None:
        raw = max(minimum, raw)
    if maximum is not None:
        raw = min(maximum, raw)
    return raw


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


def _parse_limits(raw: Any) -> dict[str, OperationLimits]:
    limits = dict(DEFAULT_OPERATION_LIMITS)
    if not isinstance(raw, dict):
        return limits
    for name, values in raw.items():
        if not isinstance(name, str) or not isinstance(values, dict):
            continue
        base = limits.get(name, OperationLimits(per_minute=30, per_hour=300, per_day=1000))
        limits[name] = OperationLimits(
            per_minute=int(_number(values, "per_minute", base.per_minute, 1)),
            per_hour=int(_number(values, "per_hour", base.per_hour, 1)),
            per_day=int(_number(values, "per_day", base.per_day, 1)),
        )
    return limits


def config_from_dict(data: dict[str, Any]) -> CortexConfig:
    """Build a CortexConfig from parsed YAML data.

    Args:
        data: Mapping as produced by yaml.safe_load.

    Returns:
        Validated configuration.
    """
    defaults = CortexConfig()

    storage = _section(data, "storage")
    base_path = storage.get("base_path", defaults.storage.base_path)
    if not isinstance(base_path, str) or not base_path:
        base_path = defaults.storage.base_path

    search = _section(data, "search")
    tiers = _section(data, "tiers")
    rate = _section(data, "rate_limit")
    breaker = _section(data, "circuit_breaker")
    retry = _section(data, "retry")
    scheduler = _section(data, "scheduler")

    d_search = defaults.search
    d_tiers = defaults.tiers
    d_breaker = defaults.circuit_breaker
    d_retry = defaults.retry
    d_sched = defaults.scheduler

    promote_threshold = _number(tiers, "promote_threshold", d_tiers.promote_threshold, 0.0, 1.0)
    delete_threshold = _number(tiers, "delete_threshold", d_tiers.delete_threshold, 0.0, 1.0)
    if delete_threshold > promote_threshold:
        logger.warning("delete_threshold above promote_threshold; using defaults")
        promote_threshold = d_tiers.promote_threshold
        delete_threshold = d_tiers.delete_threshold

    return CortexConfig(
        storage=StorageConfig(base_path=base_path),
        search=SearchConfig(
            rrf_k=int(_number(search, "rrf_k", d_search.rrf_k, 0)),
            vector_weight=_number(search, "vector_weight", d_search.vector_weight, 0.0, 1.0),
            decay_base=_number(search, "decay_base", d_search.decay_base, 0.0, 1.0),
            decay_exponent=_number(search, "decay_exponent", d_search.decay_exponent, 0.0),
            default_limit=int(
                _number(search, "default_limit", d_search.default_limit, 1, MAX_SEARCH_LIMIT)
            ),
            embedding_dim=int(_number(search, "embedding_dim", d_search.embedding_dim, 1)),
        ),
        tiers=TierThresholds(
            working_max_age_hours=_number(
                tiers, "working_max_age_hours", d_tiers.working_max_age_hours, 0.0
            ),
            working_max_items=int(
                _number(tiers, "working_max_items", d_tiers.working_max_items, 1, MAX_TIER_ITEMS)
            ),
            short_term_max_age_days=_number(
                tiers, "short_term_max_age_days", d_tiers.short_term_max_age_days, 0.0
            ),
            short_term_max_items=int(
                _number(
                    tiers, "short_term_max_items", d_tiers.short_term_max_items, 1, MAX_TIER_ITEMS
                )
            ),
            promote_threshold=promote_threshold,
            delete_threshold=delete_threshold,
        ),
        rate_limit=RateLimitConfig(
            enabled=bool(rate.get("enabled", True)),
            burst_multiplier=_number(rate, "burst_multiplier", 1.5, 1.0),
            cooldown_seconds=_number(rate, "cooldown_seconds", 60.0, 0.0),
            limits=_parse_limits(rate.get("limits")),
        ),
        circuit_breaker=CircuitBreakerConfig(
            threshold=int(_number(breaker, "threshold", d_breaker.threshold, 1)),
            reset_timeout_ms=_number(breaker, "reset_timeout_ms", d_breaker.reset_timeout_ms, 0.0),
            half_open_requests=int(
                _number(breaker, "half_open_requests", d_breaker.half_open_requests, 1)
            ),
        ),
        retry=RetryConfig(
            max_attempts=int(
                _number(retry, "max_attempts", d_retry.max_attempts, 1, MAX_RETRY_ATTEMPTS)
            ),
            initial_delay_ms=_number(
                retry, "initial_delay_ms", d_retry.initial_delay_ms, 0.0, MAX_RETRY_DELAY_MS
            ),
            max_delay_ms=_number(
                retry, "max_delay_ms", d_retry.max_delay_ms, 0.0, MAX_RETRY_DELAY_MS
            ),
            backoff_multiplier=_number(
                retry, "backoff_multiplier", d_retry.backoff_multiplier, 1.0
            ),
        ),
        scheduler=SchedulerConfig(
            promotion_interval_seconds=_number(
                scheduler,
                "promotion_interval_seconds",
                d_sched.promotion_interval_seconds,
                MIN_INTERVAL_SECONDS,
            ),
            decay_interval_seconds=_number(
                scheduler,
                "decay_interval_seconds",
                d_sched.decay_interval_seconds,
                MIN_INTERVAL_SECONDS,
            ),
            run_on_start=bool(scheduler.get("run_on_start", True)),
        ),
        usage_blend=_number(data, "usage_blend", defaults.usage_blend, 0.0, 1.0),
    )


def load_config(config_path: Optional[Path] = None) -> CortexConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file. None returns defaults.

    Returns:
        CortexConfig with settings from the file or defaults.
    """
    if config_path is None:
        return CortexConfig()

    path = Path(config_path).expanduser()
    if not path.exists():
        return CortexConfig()

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError) as e:
        logger.warning(f"Could not read config {path}: {e}; using defaults")
        return CortexConfig()

    if not isinstance(data, dict):
        return CortexConfig()

    return config_from_dict(data)
