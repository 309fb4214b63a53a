from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """Parse an int env var with a default."""
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    """Parse a float env var with a default."""
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)


def _env_bool(name: str, default: bool = False) -> bool:
    """Parse a bool env var (true/false/1/0/yes/no/on/off)."""
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "y", "on"):
        return True
    if val in ("0", "false", "no", "n", "off"):
        return False
    return bool(default)


def _clamp(v: float, lo: float, hi: float) -> float:
    """Clamp a number to [lo, hi]."""
    return max(lo, min(hi, v))


@dataclass(frozen=True)
class EngineConfig:
    """Alert engine tuning. Durations are in seconds."""

    enable_deduplication: bool = True
    deduplication_window_sec: float = 300.0

    enable_auto_resolve: bool = True
    # Used when a rule asks for auto-resolve without its own delay.
    auto_resolve_timeout_sec: float = 3600.0

    # Reserved: accepted and reported, not acted on.
    enable_grouping: bool = True
    grouping_window_sec: float = 600.0

    max_alerts_per_rule: int = 1000

    # Background clearing of resolved/closed alerts; 0 disables it.
    retention_sec: float = 0.0
    retention_interval_sec: float = 60.0

    # Size of the in-memory lifecycle event feed.
    event_feed_size: int = 1000

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


# PUBLIC_INTERFACE
def load_config() -> EngineConfig:
    """Load EngineConfig from env vars, falling back to defaults for anything unset or unparseable."""
    defaults = EngineConfig()

    dedup_window = _env_float("ALERT_DEDUP_WINDOW_SEC", defaults.deduplication_window_sec)
    auto_resolve_timeout = _env_float("ALERT_AUTO_RESOLVE_TIMEOUT_SEC", defaults.auto_resolve_timeout_sec)
    grouping_window = _env_float("ALERT_GROUPING_WINDOW_SEC", defaults.grouping_window_sec)
    max_per_rule = _env_int("ALERT_MAX_PER_RULE", defaults.max_alerts_per_rule)
    retention = _env_float("ALERT_RETENTION_SEC", defaults.retention_sec)
    retention_interval = _env_float("ALERT_RETENTION_INTERVAL_SEC", defaults.retention_interval_sec)
    feed_size = _env_int("ALERT_EVENT_FEED_SIZE", defaults.event_feed_size)

    # Windows and timeouts: non-negative, capped at 30 days.
    dedup_window = _clamp(dedup_window, 0.0, 30 * 24 * 3600.0)
    auto_resolve_timeout = _clamp(auto_resolve_timeout, 0.0, 30 * 24 * 3600.0)
    grouping_window = _clamp(grouping_window, 0.0, 30 * 24 * 3600.0)

    # Retention: 0 means "disabled"; otherwise at least a minute.
    if retention != 0:
        retention = _clamp(retention, 60.0, 365 * 24 * 3600.0)
    retention_interval = _clamp(retention_interval, 1.0, 3600.0)

    max_per_rule = int(_clamp(max_per_rule, 1, 1_000_000))
    feed_size = int(_clamp(feed_size, 1, 100_000))

    config = EngineConfig(
        enable_deduplication=_env_bool("ALERT_DEDUP_ENABLED", defaults.enable_deduplication),
        deduplication_window_sec=dedup_window,
        enable_auto_resolve=_env_bool("ALERT_AUTO_RESOLVE_ENABLED", defaults.enable_auto_resolve),
        auto_resolve_timeout_sec=auto_resolve_timeout,
        enable_grouping=_env_bool("ALERT_GROUPING_ENABLED", defaults.enable_grouping),
        grouping_window_sec=grouping_window,
        max_alerts_per_rule=max_per_rule,
        retention_sec=retention,
        retention_interval_sec=retention_interval,
        event_feed_size=feed_size,
    )
    logger.info(
        "Loaded alert engine config dedup=%s window=%ss autoResolve=%s timeout=%ss maxPerRule=%s retention=%ss",
        config.enable_deduplication,
        config.deduplication_window_sec,
        config.enable_auto_resolve,
        config.auto_resolve_timeout_sec,
        config.max_alerts_per_rule,
        config.retention_sec,
    )
    return config
