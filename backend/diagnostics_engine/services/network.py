"""
NetworkMonitor Class - Request latency, failures and connectivity

Outbound requests are observed through httpx transport decorators
registered on a client the application owns; nothing global is patched.
"""

import copy
import logging
import time
from typing import Callable, List, Optional

import httpx

from diagnostics_engine.models.data_models import (
    FailedRequest,
    LogLevel,
    NetworkDiagnostics,
    RequestOutcome,
)
from diagnostics_engine.services.event_bus import EVENT_NETWORK_STATUS_CHANGE, EventBus
from diagnostics_engine.services.storage import LogStore
from diagnostics_engine.utils.helpers import append_capped, append_sample, now_ms, simplify_url

logger = logging.getLogger(__name__)

MAX_LATENCY_SAMPLES = 100
MAX_FAILED_REQUESTS = 100

OutcomeHandler = Callable[[RequestOutcome], None]


class NetworkMonitor:
    """
    Aggregates network call outcomes.
    Responsibilities:
    - Per-path latency samples (simplified path keys, capped)
    - Failed request history (capped)
    - WebSocket reconnect counter
    - Connectivity transitions
    """

    def __init__(
        self,
        logs: LogStore,
        bus: EventBus,
        clock: Callable[[], int] = now_ms,
        max_latency_samples: int = MAX_LATENCY_SAMPLES,
        max_failed_requests: int = MAX_FAILED_REQUESTS,
    ):
        self.logs = logs
        self.bus = bus
        self.clock = clock
        self.max_latency_samples = max_latency_samples
        self.max_failed_requests = max_failed_requests
        self._diagnostics = NetworkDiagnostics()

    def record_api_latency(self, url: str, latency_ms: float) -> None:
        append_sample(
            self._diagnostics.api_latency,
            simplify_url(url),
            float(latency_ms),
            self.max_latency_samples,
        )

    def record_failed_request(
        self,
        url: str,
        method: str,
        status: int,
        error: Optional[str] = None,
    ) -> None:
        append_capped(
            self._diagnostics.failed_requests,
            FailedRequest(
                url=simplify_url(url),
                method=method,
                status=status,
                timestamp=self.clock(),
                error=error,
            ),
            self.max_failed_requests,
        )
        # Raw URL stays out of the message; only the simplified path is logged
        self.logs.log_internal(
            LogLevel.WARN,
            "network",
            f"API request failed: {method} {simplify_url(url)}",
            {"status": status, "error": error},
        )

    def record_ws_reconnect(self) -> int:
        self._diagnostics.ws_reconnects += 1
        self.logs.log_internal(
            LogLevel.INFO,
            "websocket",
            "WebSocket attempting to reconnect",
            {"reconnect_count": self._diagnostics.ws_reconnects},
        )
        return self._diagnostics.ws_reconnects

    def handle_network_change(self, online: bool) -> None:
        self._diagnostics.last_network_change_time = self.clock()
        self.logs.log_internal(
            LogLevel.INFO,
            "network",
            f"Network status changed: {'online' if online else 'offline'}",
        )
        self.bus.emit(EVENT_NETWORK_STATUS_CHANGE, online)

    def handle_outcome(self, outcome: RequestOutcome) -> None:
        """Interceptor entry point for a settled request"""
        if outcome.error is not None:
            self.record_failed_request(outcome.url, outcome.method, outcome.status, outcome.error)
            return
        self.record_api_latency(outcome.url, outcome.latency_ms)
        if not outcome.ok:
            self.record_failed_request(outcome.url, outcome.method, outcome.status)

    @property
    def ws_reconnects(self) -> int:
        return self._diagnostics.ws_reconnects

    def snapshot(self) -> NetworkDiagnostics:
        """Deep copy, safe to hand to collaborators"""
        return copy.deepcopy(self._diagnostics)

    def reset(self) -> None:
        self._diagnostics = NetworkDiagnostics()


class RequestInterceptor:
    """Fan-out of request outcomes to registered handlers"""

    def __init__(self):
        self._handlers: List[OutcomeHandler] = []

    def add(self, handler: OutcomeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def remove() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return remove

    def dispatch(self, outcome: RequestOutcome) -> None:
        for handler in list(self._handlers):
            try:
                handler(outcome)
            except Exception:
                logger.exception("Request interceptor failed for %s %s", outcome.method, outcome.url)

    def __len__(self) -> int:
        return len(self._handlers)


def _outcome(
    request: httpx.Request,
    started: float,
    status: int,
    error: Optional[BaseException] = None,
) -> RequestOutcome:
    return RequestOutcome(
        url=str(request.url),
        method=request.method,
        latency_ms=(time.perf_counter() - started) * 1000.0,
        status=status,
        error=str(error) if error is not None else None,
    )


class InstrumentedTransport(httpx.BaseTransport):
    """Times every request of a sync httpx.Client and reports the outcome"""

    def __init__(self, interceptor: RequestInterceptor, transport: Optional[httpx.BaseTransport] = None):
        self._interceptor = interceptor
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        started = time.perf_counter()
        try:
            response = self._transport.handle_request(request)
        except Exception as exc:
            self._interceptor.dispatch(_outcome(request, started, 0, exc))
            raise
        self._interceptor.dispatch(_outcome(request, started, response.status_code))
        return response

    def close(self) -> None:
        self._transport.close()


class InstrumentedAsyncTransport(httpx.AsyncBaseTransport):
    """Times every request of an httpx.AsyncClient and reports the outcome"""

    def __init__(
        self,
        interceptor: RequestInterceptor,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._interceptor = interceptor
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # Local start time per request; concurrent requests never share it
        started = time.perf_counter()
        try:
            response = await self._transport.handle_async_request(request)
        except Exception as exc:
            self._interceptor.dispatch(_outcome(request, started, 0, exc))
            raise
        self._interceptor.dispatch(_outcome(request, started, response.status_code))
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()
