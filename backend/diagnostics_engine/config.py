"""Configuration module: frozen dataclass loaded from environment variables."""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import FrozenSet, Iterable, Optional

from diagnostics_engine.models.data_models import LogLevel

logger = logging.getLogger(__name__)

DEFAULT_LOG_LEVELS: FrozenSet[LogLevel] = frozenset({LogLevel.WARN, LogLevel.ERROR})


def parse_levels(levels: Iterable) -> FrozenSet[LogLevel]:
    """Accepts LogLevel members or their string values; unknown names raise ValueError."""
    if isinstance(levels, str):
        levels = [levels]
    return frozenset(LogLevel(str(getattr(lv, "value", lv)).strip().lower()) for lv in levels)


@dataclass(frozen=True)
class DiagnosticsConfig:
    log_levels: FrozenSet[LogLevel] = DEFAULT_LOG_LEVELS
    log_retention_days: float = 7
    enable_performance_monitoring: bool = True
    enable_network_monitoring: bool = True
    max_log_entries: int = 1000
    error_reporting_endpoint: Optional[str] = None
    app_version: str = "unknown"
    summary_refresh_interval_sec: float = 60.0
    long_task_threshold_ms: float = 50.0
    max_long_tasks: int = 100
    initial_route: str = "/"
    mirror_to_console: bool = False

    def __post_init__(self):
        object.__setattr__(self, "log_levels", parse_levels(self.log_levels))
        self._clamp("max_log_entries", lambda v: v >= 1)
        self._clamp("log_retention_days", lambda v: v >= 0)
        self._clamp("max_long_tasks", lambda v: v >= 1)
        self._clamp("summary_refresh_interval_sec", lambda v: v > 0)
        self._clamp("long_task_threshold_ms", lambda v: v > 0)

    def _clamp(self, name: str, valid) -> None:
        value = getattr(self, name)
        if not valid(value):
            default = next(f.default for f in fields(self) if f.name == name)
            logger.warning("Invalid %s=%r, using default %r", name, value, default)
            object.__setattr__(self, name, default)

    def with_overrides(self, **overrides) -> "DiagnosticsConfig":
        return replace(self, **overrides) if overrides else self


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> DiagnosticsConfig:
    """Build DiagnosticsConfig from environment variables with sensible defaults."""
    levels = os.environ.get("DIAGNOSTICS_LOG_LEVELS")
    return DiagnosticsConfig(
        log_levels=(
            parse_levels(lv for lv in levels.split(",") if lv.strip())
            if levels is not None
            else DEFAULT_LOG_LEVELS
        ),
        log_retention_days=float(
            os.environ.get("DIAGNOSTICS_LOG_RETENTION_DAYS", DiagnosticsConfig.log_retention_days)
        ),
        enable_performance_monitoring=_env_bool(
            "DIAGNOSTICS_PERFORMANCE_MONITORING", DiagnosticsConfig.enable_performance_monitoring
        ),
        enable_network_monitoring=_env_bool(
            "DIAGNOSTICS_NETWORK_MONITORING", DiagnosticsConfig.enable_network_monitoring
        ),
        max_log_entries=int(
            os.environ.get("DIAGNOSTICS_MAX_LOG_ENTRIES", DiagnosticsConfig.max_log_entries)
        ),
        error_reporting_endpoint=os.environ.get("DIAGNOSTICS_ERROR_REPORTING_ENDPOINT") or None,
        app_version=os.environ.get("APP_VERSION", DiagnosticsConfig.app_version),
        summary_refresh_interval_sec=float(
            os.environ.get(
                "DIAGNOSTICS_SUMMARY_REFRESH_SEC", DiagnosticsConfig.summary_refresh_interval_sec
            )
        ),
        long_task_threshold_ms=float(
            os.environ.get("DIAGNOSTICS_LONG_TASK_THRESHOLD_MS", DiagnosticsConfig.long_task_threshold_ms)
        ),
        max_long_tasks=int(
            os.environ.get("DIAGNOSTICS_MAX_LONG_TASKS", DiagnosticsConfig.max_long_tasks)
        ),
        initial_route=os.environ.get("DIAGNOSTICS_INITIAL_ROUTE", DiagnosticsConfig.initial_route),
        mirror_to_console=_env_bool("DIAGNOSTICS_MIRROR_TO_CONSOLE", DiagnosticsConfig.mirror_to_console),
    )
