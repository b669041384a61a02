"""
Instrumentation sources - host hooks feeding the engine

InstrumentationSource is the capability the engine consumes; the asyncio
adapter implements it for a Python process running an event loop.
"""

import asyncio
import logging
import sys
import threading
import time
import traceback
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import httpx
import psutil

from diagnostics_engine.models.data_models import CapturedError, LongTask, NavigationTiming
from diagnostics_engine.services.network import (
    InstrumentedAsyncTransport,
    InstrumentedTransport,
    OutcomeHandler,
    RequestInterceptor,
)

logger = logging.getLogger(__name__)

Disposer = Callable[[], None]


class InstrumentationSource(ABC):
    """
    Host capability used by the engine. Each on_* method installs one
    observer and returns a function that removes it. Installation may raise
    when the host cannot provide the signal.
    """

    @abstractmethod
    def on_long_task(self, callback: Callable[[LongTask], None]) -> Disposer:
        ...

    @abstractmethod
    def on_navigation_timing(self, callback: Callable[[NavigationTiming], None]) -> Disposer:
        ...

    @abstractmethod
    def intercept_request(self, handler: OutcomeHandler) -> Disposer:
        ...

    @abstractmethod
    def on_uncaught_error(self, callback: Callable[[CapturedError], None]) -> Disposer:
        ...

    @abstractmethod
    def on_unhandled_rejection(self, callback: Callable[[CapturedError], None]) -> Disposer:
        ...

    @abstractmethod
    def on_connectivity_change(self, callback: Callable[[bool], None]) -> Disposer:
        ...


def capture_exception(
    exc_type: type,
    exc: Optional[BaseException],
    tb: Any,
    location: Optional[str] = None,
) -> CapturedError:
    stack = "".join(traceback.format_exception(exc_type, exc, tb)) if tb is not None else None
    if location is None and tb is not None:
        frames = traceback.extract_tb(tb)
        if frames:
            last = frames[-1]
            location = f"{last.filename}:{last.lineno}"
    return CapturedError(
        message=str(exc) if exc is not None else exc_type.__name__,
        type=exc_type.__name__,
        stack=stack,
        location=location,
    )


def _notify(callback: Callable[[Any], None], payload: Any) -> None:
    try:
        callback(payload)
    except Exception:
        logger.exception("Diagnostics hook callback failed")


class AsyncioInstrumentation(InstrumentationSource):
    """
    Instrumentation for an asyncio process.
    Responsibilities:
    - Long tasks: event loop stalls detected by a lag watchdog task
    - Navigation timing: process start to observer installation, once
    - Request interception: httpx transports built by client()/sync_client()
    - Uncaught errors: sys.excepthook and threading.excepthook, chained
    - Unhandled rejections: the loop's exception handler, chained
    - Connectivity: transitions reported through report_connectivity()
    """

    def __init__(
        self,
        long_task_threshold_ms: float = 50.0,
        poll_interval_sec: float = 0.1,
        initial_route: str = "/",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.long_task_threshold_ms = long_task_threshold_ms
        self.poll_interval_sec = poll_interval_sec
        self.initial_route = initial_route
        self.interceptor = RequestInterceptor()
        self.online = True
        self._loop = loop
        self._connectivity: List[Callable[[bool], None]] = []

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        # Raises RuntimeError outside a running loop
        return self._loop or asyncio.get_running_loop()

    def on_long_task(self, callback: Callable[[LongTask], None]) -> Disposer:
        loop = self._get_loop()
        task = loop.create_task(self._watch_lag(callback))
        return task.cancel

    async def _watch_lag(self, callback: Callable[[LongTask], None]) -> None:
        loop = asyncio.get_running_loop()
        interval = self.poll_interval_sec
        while True:
            started = loop.time()
            await asyncio.sleep(interval)
            lag_ms = (loop.time() - started - interval) * 1000.0
            if lag_ms >= self.long_task_threshold_ms:
                _notify(
                    callback,
                    LongTask(
                        duration=lag_ms,
                        start_time=(started + interval) * 1000.0,
                        name="event-loop-blocked",
                    ),
                )

    def on_navigation_timing(self, callback: Callable[[NavigationTiming], None]) -> Disposer:
        created = psutil.Process().create_time()
        duration = max(0.0, (time.time() - created) * 1000.0)
        _notify(callback, NavigationTiming(name=self.initial_route, duration=duration))
        return lambda: None

    def intercept_request(self, handler: OutcomeHandler) -> Disposer:
        return self.interceptor.add(handler)

    def client(self, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs) -> httpx.AsyncClient:
        """AsyncClient whose requests are reported to the interceptors"""
        return httpx.AsyncClient(transport=InstrumentedAsyncTransport(self.interceptor, transport), **kwargs)

    def sync_client(self, transport: Optional[httpx.BaseTransport] = None, **kwargs) -> httpx.Client:
        return httpx.Client(transport=InstrumentedTransport(self.interceptor, transport), **kwargs)

    def on_uncaught_error(self, callback: Callable[[CapturedError], None]) -> Disposer:
        previous_hook = sys.excepthook
        previous_thread_hook = threading.excepthook
        try:
            loop: Optional[asyncio.AbstractEventLoop] = self._get_loop()
        except RuntimeError:
            loop = None

        def excepthook(exc_type, exc, tb):
            _notify(callback, capture_exception(exc_type, exc, tb))
            previous_hook(exc_type, exc, tb)

        def thread_excepthook(args):
            if args.exc_type is not SystemExit:
                captured = capture_exception(args.exc_type, args.exc_value, args.exc_traceback)
                if args.thread is not None:
                    captured = replace(captured, location=f"{args.thread.name}: {captured.location}")
                # Worker-thread failures are delivered on the loop thread when one is running
                if loop is not None and loop.is_running() and not loop.is_closed():
                    loop.call_soon_threadsafe(_notify, callback, captured)
                else:
                    _notify(callback, captured)
            previous_thread_hook(args)

        sys.excepthook = excepthook
        threading.excepthook = thread_excepthook

        def dispose() -> None:
            if sys.excepthook is excepthook:
                sys.excepthook = previous_hook
            if threading.excepthook is thread_excepthook:
                threading.excepthook = previous_thread_hook

        return dispose

    def on_unhandled_rejection(self, callback: Callable[[CapturedError], None]) -> Disposer:
        loop = self._get_loop()
        previous = loop.get_exception_handler()

        def handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
            exc = context.get("exception")
            if exc is not None:
                captured = capture_exception(type(exc), exc, exc.__traceback__)
            else:
                captured = CapturedError(message=str(context.get("message", "Unknown error")))
            _notify(callback, captured)
            if previous is not None:
                previous(loop, context)
            else:
                loop.default_exception_handler(context)

        loop.set_exception_handler(handler)

        def dispose() -> None:
            if loop.get_exception_handler() is handler:
                loop.set_exception_handler(previous)

        return dispose

    def on_connectivity_change(self, callback: Callable[[bool], None]) -> Disposer:
        self._connectivity.append(callback)

        def dispose() -> None:
            if callback in self._connectivity:
                self._connectivity.remove(callback)

        return dispose

    def report_connectivity(self, online: bool) -> None:
        """Called by collaborators (probes, socket clients) on a connectivity transition"""
        self.online = bool(online)
        for callback in list(self._connectivity):
            _notify(callback, self.online)
