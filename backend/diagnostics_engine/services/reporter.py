"""
ErrorReportAssembler Class - Point-in-time error bundles

Reports combine the error, caller context, a fresh system snapshot and the
most recent log entries, copied at creation time.
"""

import re
import traceback
import uuid
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union

from diagnostics_engine.models.data_models import (
    DiagnosticsSummary,
    ErrorContext,
    ErrorDetails,
    ErrorReport,
    NetworkDiagnostics,
    PerformanceMetrics,
)
from diagnostics_engine.services.storage import LogStore
from diagnostics_engine.services.system_info import SystemInfoProvider
from diagnostics_engine.utils.helpers import now_ms

MAX_REPORT_LOGS = 100

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def format_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def context_from_mapping(context: Mapping[str, Any]) -> ErrorContext:
    """
    Build an ErrorContext from snake_case or camelCase keys (`userInput`).
    Unknown keys raise ValueError.
    """
    known = {f.name for f in fields(ErrorContext)}
    values: Dict[str, Any] = {}
    for key, value in context.items():
        name = _CAMEL.sub("_", key).lower()
        if name not in known:
            raise ValueError(f"Unknown error context field: {key}")
        values[name] = value
    return ErrorContext(**values)


class ErrorReportAssembler:
    def __init__(
        self,
        logs: LogStore,
        system: SystemInfoProvider,
        clock: Callable[[], int] = now_ms,
        max_logs: int = MAX_REPORT_LOGS,
    ):
        self.logs = logs
        self.system = system
        self.clock = clock
        self.max_logs = max_logs

    def create_error_report(
        self,
        error: Union[BaseException, ErrorDetails],
        context: Union[ErrorContext, Mapping[str, Any]],
    ) -> ErrorReport:
        """Errors reported by remote collaborators arrive already as ErrorDetails"""
        if not isinstance(context, ErrorContext):
            context = context_from_mapping(context)
        if not isinstance(error, ErrorDetails):
            error = ErrorDetails(
                message=str(error),
                stack=format_stack(error),
                type=type(error).__name__,
            )

        return ErrorReport(
            id=str(uuid.uuid4()),
            timestamp=self.clock(),
            error=error,
            context=context,
            system_info=self.system.get_system_info(),
            # Entries are frozen; the tuple detaches the report from the live buffer
            logs=tuple(self.logs.recent(self.max_logs)),
        )

    def build_download_report(
        self,
        summary: DiagnosticsSummary,
        performance: PerformanceMetrics,
        network: NetworkDiagnostics,
        is_online: bool,
        environment: str = "production",
    ) -> Dict[str, Any]:
        """Bundle offered to users as a downloadable JSON document"""
        return {
            "app_info": {
                "version": self.system.app_version,
                "environment": environment,
                "generated_at": datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc).isoformat(),
            },
            "system_info": self.system.get_system_info().to_dict(),
            "summary": summary.to_dict(),
            "performance": performance.to_dict(),
            "connection": {
                "is_online": is_online,
                "last_network_change_time": network.last_network_change_time,
                "ws_reconnects": network.ws_reconnects,
            },
            "logs": [e.to_dict() for e in self.logs.recent(self.max_logs)],
        }
