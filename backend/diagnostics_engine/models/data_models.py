"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the engine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    DISPOSED = "disposed"


class MeasureKind(str, Enum):
    """Bucket a measured duration is recorded into"""
    API = "api"
    COMPONENT = "component"
    PAGE = "page"


@dataclass(frozen=True)
class MeasureTarget:
    kind: MeasureKind
    name: str


@dataclass(frozen=True)
class LogEntry:
    """Represents a single structured log record"""
    id: str
    timestamp: int
    level: LogLevel
    message: str
    module: str
    data: Any = None
    stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "module": self.module,
            "data": self.data,
            "stack": self.stack,
        }


@dataclass
class StorageUsage:
    local: int
    session: int


@dataclass
class MemoryUsage:
    rss: int
    vms: int
    total_system: Optional[int] = None


@dataclass
class SystemInfo:
    """Host/runtime snapshot, computed fresh on every call"""
    app_version: str
    user_agent: str
    platform: str
    language: str
    screen_resolution: str
    time_zone: str
    storage_usage: StorageUsage
    memory_usage: Optional[MemoryUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FailedRequest:
    url: str
    method: str
    status: int
    timestamp: int
    error: Optional[str] = None


@dataclass(frozen=True)
class LongTask:
    duration: float
    start_time: float
    name: Optional[str] = None


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one intercepted outbound request"""
    url: str
    method: str
    latency_ms: float
    status: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 0 < self.status < 400


@dataclass(frozen=True)
class CapturedError:
    """An uncaught exception or unhandled task failure observed by a host hook"""
    message: str
    type: Optional[str] = None
    stack: Optional[str] = None
    location: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NavigationTiming:
    name: str
    duration: float


@dataclass
class NetworkDiagnostics:
    api_latency: Dict[str, List[float]] = field(default_factory=dict)
    failed_requests: List[FailedRequest] = field(default_factory=list)
    ws_reconnects: int = 0
    last_network_change_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PerformanceMetrics:
    page_loads: Dict[str, List[float]] = field(default_factory=dict)
    component_renders: Dict[str, List[float]] = field(default_factory=dict)
    api_calls: Dict[str, List[float]] = field(default_factory=dict)
    long_tasks: List[LongTask] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ErrorDetails:
    message: str
    stack: Optional[str] = None
    type: Optional[str] = None


@dataclass(frozen=True)
class ErrorContext:
    url: str
    component: Optional[str] = None
    action: Optional[str] = None
    user_input: Any = None


@dataclass(frozen=True)
class ErrorReport:
    """Point-in-time error bundle; independent of later log mutations"""
    id: str
    timestamp: int
    error: ErrorDetails
    context: ErrorContext
    system_info: SystemInfo
    logs: Tuple[LogEntry, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "error": asdict(self.error),
            "context": asdict(self.context),
            "system_info": self.system_info.to_dict(),
            "logs": [e.to_dict() for e in self.logs],
        }


@dataclass
class DiagnosticsSummary:
    """Derived statistics"""
    recent_errors: int = 0
    failed_requests: int = 0
    avg_api_latency: Optional[float] = None
    long_tasks: int = 0
    ws_reconnects: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EndpointStat:
    """Per-endpoint latency statistics"""
    path: str
    count: int
    avg_latency: float
    p95_latency: float
    failures: int


@dataclass
class DiagnosticsExport:
    logs: List[LogEntry]
    performance_metrics: PerformanceMetrics
    network_diagnostics: NetworkDiagnostics
    system_info: SystemInfo

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logs": [e.to_dict() for e in self.logs],
            "performance_metrics": self.performance_metrics.to_dict(),
            "network_diagnostics": self.network_diagnostics.to_dict(),
            "system_info": self.system_info.to_dict(),
        }
