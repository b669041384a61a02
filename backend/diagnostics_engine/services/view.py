"""
DiagnosticsView - reactive state for panels

Keeps a filtered copy of the logs, the derived summary and the connectivity
flag up to date from engine events and a periodic refresh.
"""

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from diagnostics_engine.config import parse_levels
from diagnostics_engine.models.data_models import (
    DiagnosticsExport,
    DiagnosticsSummary,
    ErrorContext,
    ErrorDetails,
    ErrorReport,
    LogEntry,
    LogLevel,
    MeasureTarget,
    NetworkDiagnostics,
    PerformanceMetrics,
    SystemInfo,
)
from diagnostics_engine.services.engine import DiagnosticsEngine
from diagnostics_engine.services.event_bus import (
    EVENT_DISPOSED,
    EVENT_LOG,
    EVENT_LOGS_CLEARED,
    EVENT_NETWORK_STATUS_CHANGE,
    EVENT_SUMMARY_UPDATED,
)

logger = logging.getLogger(__name__)

MAX_VIEW_LOGS = 1000


class DiagnosticsView:
    """
    Subscribes to the engine and maintains:
    - logs: entries matching the view's levels, newest last, capped
    - summary: recomputed on error logs, log clears, connectivity changes,
      refresh() and every refresh interval
    - is_online: last reported connectivity
    """

    def __init__(
        self,
        engine: DiagnosticsEngine,
        log_levels: Optional[Iterable[Union[LogLevel, str]]] = None,
        auto_subscribe: bool = True,
        refresh_interval_sec: Optional[float] = None,
        max_logs: int = MAX_VIEW_LOGS,
    ):
        self.engine = engine
        self.log_levels = parse_levels(log_levels) if log_levels is not None else None
        self.auto_subscribe = auto_subscribe
        self.refresh_interval_sec = refresh_interval_sec or engine.config.summary_refresh_interval_sec
        self.max_logs = max_logs

        self.logs: List[LogEntry] = []
        self.summary = DiagnosticsSummary()
        self.is_online = engine.is_online
        self.system_info: Optional[SystemInfo] = None
        self.network_diagnostics: Optional[NetworkDiagnostics] = None
        self.performance_metrics: Optional[PerformanceMetrics] = None

        self._unsubscribers: List[Callable[[], None]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._attached = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def attach(self) -> "DiagnosticsView":
        if self._attached:
            return self
        self._attached = True

        self._unsubscribers = [self.engine.subscribe(EVENT_DISPOSED, self._on_engine_disposed)]
        if self.auto_subscribe:
            self._unsubscribers += [
                self.engine.subscribe(EVENT_LOG, self._on_log),
                self.engine.subscribe(EVENT_LOGS_CLEARED, self._on_logs_cleared),
                self.engine.subscribe(EVENT_NETWORK_STATUS_CHANGE, self._on_network_change),
            ]

        self.refresh_all()
        self._schedule()
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._attached = False

    def __enter__(self) -> "DiagnosticsView":
        return self.attach()

    def __exit__(self, *exc_info) -> None:
        self.detach()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; periodic summary refresh disabled")
            return
        self._timer = loop.call_later(self.refresh_interval_sec, self._tick)

    def _tick(self) -> None:
        self._timer = None
        if not self._attached:
            return
        self.calculate_summary()
        self._schedule()

    # ── Event handlers ───────────────────────────────────────────────────────

    def _accepts(self, entry: LogEntry) -> bool:
        return self.log_levels is None or entry.level in self.log_levels

    def _on_log(self, entry: LogEntry) -> None:
        if self._accepts(entry):
            self.logs.append(entry)
            if len(self.logs) > self.max_logs:
                self.logs = self.logs[-self.max_logs:]
        if entry.level is LogLevel.ERROR:
            self.calculate_summary()

    def _on_logs_cleared(self, _payload: Any) -> None:
        self.logs = []
        self.calculate_summary()

    def _on_network_change(self, online: bool) -> None:
        self.is_online = online
        self.refresh_all()

    def _on_engine_disposed(self, _payload: Any) -> None:
        self.detach()

    # ── Derived state ────────────────────────────────────────────────────────

    def calculate_summary(self) -> DiagnosticsSummary:
        self.summary = self.engine.compute_summary()
        self.engine.bus.emit(EVENT_SUMMARY_UPDATED, self.summary)
        return self.summary

    def refresh_system_info(self) -> SystemInfo:
        self.system_info = self.engine.get_system_info()
        return self.system_info

    def refresh_all(self) -> None:
        export = self.engine.export_diagnostics()
        self.logs = [e for e in export.logs if self._accepts(e)][-self.max_logs:]
        self.network_diagnostics = export.network_diagnostics
        self.performance_metrics = export.performance_metrics
        self.system_info = export.system_info
        self.calculate_summary()

    def refresh(self) -> DiagnosticsSummary:
        return self.calculate_summary()

    # ── Forwarded operations ─────────────────────────────────────────────────

    def export_diagnostics(self) -> DiagnosticsExport:
        return self.engine.export_diagnostics()

    def create_error_report(
        self,
        error: Union[BaseException, ErrorDetails],
        context: Union[ErrorContext, Mapping[str, Any]],
    ) -> ErrorReport:
        return self.engine.create_error_report(error, context)

    def clear_logs(self) -> None:
        self.engine.clear_logs()

    def reset_performance_metrics(self) -> None:
        self.engine.reset_performance_metrics()

    def measure_performance(self, target: MeasureTarget) -> Callable[[], float]:
        return self.engine.measure_performance(target)

    def log_error(self, module: str, message: str, data: Any = None) -> str:
        return self.engine.log(LogLevel.ERROR, module, message, data)

    def log_warning(self, module: str, message: str, data: Any = None) -> str:
        return self.engine.log(LogLevel.WARN, module, message, data)

    def log_info(self, module: str, message: str, data: Any = None) -> str:
        return self.engine.log(LogLevel.INFO, module, message, data)

    def log_debug(self, module: str, message: str, data: Any = None) -> str:
        return self.engine.log(LogLevel.DEBUG, module, message, data)
