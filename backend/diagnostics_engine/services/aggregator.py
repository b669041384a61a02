"""
Aggregator Class - Computes summaries and statistics

This module derives the diagnostics summary and per-endpoint statistics from
snapshots of the collected data.
"""

from typing import Dict, List

from diagnostics_engine.models.data_models import (
    DiagnosticsSummary,
    EndpointStat,
    LogEntry,
    LogLevel,
    NetworkDiagnostics,
    PerformanceMetrics,
)
from diagnostics_engine.utils.helpers import mean, quantile

RECENT_ERROR_WINDOW_MS = 24 * 60 * 60 * 1000


class Aggregator:
    """
    Aggregates diagnostics snapshots into derived statistics.
    Responsibilities:
    - Count recent errors in the 24h window
    - Average API latency across every stored sample
    - Per-endpoint latency statistics
    """

    def filter_by_window(self, entries: List[LogEntry], now: int, window_ms: int) -> List[LogEntry]:
        """Entries strictly newer than now - window_ms"""
        start = now - window_ms
        return [e for e in entries if e.timestamp > start]

    def compute_summary(
        self,
        logs: List[LogEntry],
        network: NetworkDiagnostics,
        performance: PerformanceMetrics,
        now: int,
    ) -> DiagnosticsSummary:
        recent = self.filter_by_window(logs, now, RECENT_ERROR_WINDOW_MS)

        return DiagnosticsSummary(
            recent_errors=sum(1 for e in recent if e.level is LogLevel.ERROR),
            failed_requests=len(network.failed_requests),
            avg_api_latency=self.average_latency(network),
            long_tasks=len(performance.long_tasks),
            ws_reconnects=network.ws_reconnects,
        )

    @staticmethod
    def average_latency(network: NetworkDiagnostics):
        return mean(s for samples in network.api_latency.values() for s in samples)

    def compute_endpoints(
        self,
        network: NetworkDiagnostics,
        limit: int = 10,
        sort_by: str = "count",
        order: str = "desc",
    ) -> List[EndpointStat]:
        """Compute per-endpoint latency statistics"""
        failures: Dict[str, int] = {}
        for f in network.failed_requests:
            failures[f.url] = failures.get(f.url, 0) + 1

        stats: List[EndpointStat] = []
        for path in set(network.api_latency) | set(failures):
            durs = sorted(network.api_latency.get(path, []))
            stats.append(
                EndpointStat(
                    path=path,
                    count=len(durs),
                    avg_latency=(sum(durs) / len(durs)) if durs else 0.0,
                    p95_latency=quantile(durs, 0.95),
                    failures=failures.get(path, 0),
                )
            )

        # Sort
        reverse = order.lower() != "asc"
        key_fn = {
            "p95": lambda x: x.p95_latency,
            "avg": lambda x: x.avg_latency,
            "failures": lambda x: x.failures,
        }.get(sort_by.lower(), lambda x: x.count)
        stats.sort(key=lambda x: (key_fn(x), x.path), reverse=reverse)

        return stats[:limit]
