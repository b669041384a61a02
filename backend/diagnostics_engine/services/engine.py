"""
DiagnosticsEngine - the integration surface

One engine is created at process start and passed to every consumer. It
owns the event bus, the log store, the monitors and the report assembler,
and installs host hooks through an InstrumentationSource.
"""

import logging
from typing import Any, Callable, List, Mapping, Optional, Union

from diagnostics_engine.config import DiagnosticsConfig
from diagnostics_engine.models.data_models import (
    CapturedError,
    DiagnosticsExport,
    DiagnosticsSummary,
    EndpointStat,
    ErrorContext,
    ErrorDetails,
    ErrorReport,
    LifecycleState,
    LogEntry,
    LogLevel,
    MeasureTarget,
    SystemInfo,
)
from diagnostics_engine.services.aggregator import Aggregator
from diagnostics_engine.services.event_bus import (
    EVENT_DISPOSED,
    EVENT_ERROR,
    EVENT_UNHANDLED_REJECTION,
    Callback,
    EventBus,
)
from diagnostics_engine.services.instrumentation import (
    AsyncioInstrumentation,
    Disposer,
    InstrumentationSource,
)
from diagnostics_engine.services.network import NetworkMonitor
from diagnostics_engine.services.performance import PerformanceMonitor
from diagnostics_engine.services.reporter import ErrorReportAssembler
from diagnostics_engine.services.storage import LogStore
from diagnostics_engine.services.system_info import SystemInfoProvider
from diagnostics_engine.utils.helpers import now_ms

logger = logging.getLogger(__name__)


class DiagnosticsEngine:
    """
    Lifecycle: UNINITIALIZED -> INITIALIZED -> DISPOSED (and back to
    INITIALIZED on a later initialize()). Intake and query calls work in
    every state; hooks and observers exist only while initialized.
    """

    def __init__(
        self,
        config: Optional[DiagnosticsConfig] = None,
        instrumentation: Optional[InstrumentationSource] = None,
        clock: Callable[[], int] = now_ms,
        local_storage: Optional[Mapping[str, str]] = None,
        session_storage: Optional[Mapping[str, str]] = None,
    ):
        self.config = config or DiagnosticsConfig()
        self.clock = clock
        self.instrumentation = instrumentation
        self.state = LifecycleState.UNINITIALIZED
        self.is_online = True

        self.bus = EventBus()
        self.logs = LogStore(
            self.bus,
            clock=clock,
            accepted_levels=self.config.log_levels,
            max_entries=self.config.max_log_entries,
            mirror_to_console=self.config.mirror_to_console,
        )
        self.network = NetworkMonitor(self.logs, self.bus, clock=clock)
        self.performance = PerformanceMonitor(self.logs, max_long_tasks=self.config.max_long_tasks)
        self.system = SystemInfoProvider(self.config.app_version, local_storage, session_storage)
        self.reporter = ErrorReportAssembler(self.logs, self.system, clock=clock)
        self.aggregator = Aggregator()

        self._disposers: List[Disposer] = []

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def initialize(self, config: Optional[DiagnosticsConfig] = None, **overrides: Any) -> bool:
        """
        Apply configuration, purge expired logs and install hooks/observers.
        Returns False (and changes nothing) when already initialized.
        """
        if self.state is LifecycleState.INITIALIZED:
            logger.debug("Diagnostics engine already initialized; ignoring initialize()")
            return False

        self._apply_config((config or self.config).with_overrides(**overrides))
        purged = self.logs.purge_older_than(self.config.log_retention_days)
        if purged:
            logger.debug("Purged %d expired log entries", purged)

        if self.instrumentation is None:
            self.instrumentation = AsyncioInstrumentation(
                long_task_threshold_ms=self.config.long_task_threshold_ms,
                initial_route=self.config.initial_route,
            )
        source = self.instrumentation

        self._install("install uncaught error hook", lambda: source.on_uncaught_error(self._handle_uncaught_error))
        self._install(
            "install unhandled rejection hook",
            lambda: source.on_unhandled_rejection(self._handle_unhandled_rejection),
        )
        self._install("observe connectivity", lambda: source.on_connectivity_change(self._handle_network_change))

        if self.config.enable_performance_monitoring:
            self._install("observe long tasks", lambda: source.on_long_task(self.performance.record_long_task))
            self._install(
                "observe navigation timing",
                lambda: source.on_navigation_timing(self.performance.record_navigation),
            )

        if self.config.enable_network_monitoring:
            self._install("intercept requests", lambda: source.intercept_request(self.network.handle_outcome))

        self.state = LifecycleState.INITIALIZED
        logger.info("Diagnostics engine initialized")
        return True

    def dispose(self) -> None:
        """Remove hooks, stop observers and drop subscribers. Safe to repeat."""
        if self.state is LifecycleState.DISPOSED:
            return

        while self._disposers:
            disposer = self._disposers.pop()
            try:
                disposer()
            except Exception:
                logger.exception("Failed to remove diagnostics hook")

        # Attached views release their timers before subscribers are dropped
        self.bus.emit(EVENT_DISPOSED, None)
        self.bus.clear()
        self.state = LifecycleState.DISPOSED
        logger.info("Diagnostics engine disposed")

    def _apply_config(self, config: DiagnosticsConfig) -> None:
        self.config = config
        self.logs.configure(config.log_levels, config.max_log_entries, config.mirror_to_console)
        self.performance.max_long_tasks = config.max_long_tasks
        self.system.app_version = config.app_version

    def _install(self, what: str, install: Callable[[], Disposer]) -> None:
        """Setup failures degrade the engine instead of failing initialize()"""
        try:
            self._disposers.append(install())
        except Exception as exc:
            logger.warning("Diagnostics could not %s: %s", what, exc)
            self.logs.log_internal(LogLevel.ERROR, "diagnostics", f"Failed to {what}", {"error": str(exc)})

    # ── Host hook handlers ───────────────────────────────────────────────────

    def _handle_uncaught_error(self, captured: CapturedError) -> None:
        self.logs.log_internal(
            LogLevel.ERROR,
            "global",
            captured.message,
            {"type": captured.type, "location": captured.location, "stack": captured.stack},
        )
        self.bus.emit(EVENT_ERROR, captured)

    def _handle_unhandled_rejection(self, captured: CapturedError) -> None:
        self.logs.log_internal(
            LogLevel.ERROR,
            "asyncio",
            f"Unhandled task exception: {captured.message}",
            {"type": captured.type, "stack": captured.stack},
        )
        self.bus.emit(EVENT_UNHANDLED_REJECTION, captured)

    def _handle_network_change(self, online: bool) -> None:
        if online == self.is_online:
            return
        self.is_online = online
        self.network.handle_network_change(online)

    # ── Intake ───────────────────────────────────────────────────────────────

    def log(self, level: Union[LogLevel, str], module: str, message: str, data: Any = None) -> str:
        return self.logs.log(level, module, message, data)

    def record_api_latency(self, url: str, latency_ms: float) -> None:
        self.network.record_api_latency(url, latency_ms)

    def record_failed_request(self, url: str, method: str, status: int, error: Optional[str] = None) -> None:
        self.network.record_failed_request(url, method, status, error)

    def record_ws_reconnect(self) -> int:
        return self.network.record_ws_reconnect()

    def record_page_load(self, page: str, duration_ms: float) -> None:
        self.performance.record_page_load(page, duration_ms)

    def record_component_render(self, component: str, duration_ms: float) -> None:
        self.performance.record_component_render(component, duration_ms)

    def record_api_call(self, endpoint: str, duration_ms: float) -> None:
        self.performance.record_api_call(endpoint, duration_ms)

    def measure_performance(self, target: MeasureTarget) -> Callable[[], float]:
        return self.performance.measure(target)

    def set_online(self, online: bool) -> None:
        """Report a connectivity transition observed by a collaborator"""
        if self.state is LifecycleState.INITIALIZED and isinstance(self.instrumentation, AsyncioInstrumentation):
            self.instrumentation.report_connectivity(online)
        else:
            self._handle_network_change(bool(online))

    # ── Query / export ───────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(event, callback)

    def get_system_info(self) -> SystemInfo:
        return self.system.get_system_info()

    def create_error_report(
        self,
        error: Union[BaseException, ErrorDetails],
        context: Union[ErrorContext, Mapping[str, Any]],
    ) -> ErrorReport:
        return self.reporter.create_error_report(error, context)

    def export_diagnostics(self) -> DiagnosticsExport:
        return DiagnosticsExport(
            logs=self.logs.entries(),
            performance_metrics=self.performance.snapshot(),
            network_diagnostics=self.network.snapshot(),
            system_info=self.get_system_info(),
        )

    def compute_summary(self) -> DiagnosticsSummary:
        return self.aggregator.compute_summary(
            self.logs.entries(),
            self.network.snapshot(),
            self.performance.snapshot(),
            self.clock(),
        )

    def endpoint_stats(self, limit: int = 10, sort_by: str = "count", order: str = "desc") -> List[EndpointStat]:
        return self.aggregator.compute_endpoints(self.network.snapshot(), limit, sort_by, order)

    def filter_logs(
        self,
        level: Optional[Union[LogLevel, str]] = None,
        search: Optional[str] = None,
        since: Optional[int] = None,
    ) -> List[LogEntry]:
        return self.logs.filter(level, search, since)

    def build_download_report(self, environment: str = "production") -> dict:
        return self.reporter.build_download_report(
            self.compute_summary(),
            self.performance.snapshot(),
            self.network.snapshot(),
            self.is_online,
            environment,
        )

    # ── Maintenance ──────────────────────────────────────────────────────────

    def clear_logs(self) -> None:
        self.logs.clear()

    def reset_performance_metrics(self) -> None:
        self.performance.reset()
