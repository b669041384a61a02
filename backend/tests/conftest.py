"""Shared fixtures: a controllable clock and an in-memory instrumentation source."""

from typing import Callable, List

import pytest

from diagnostics_engine.config import DiagnosticsConfig
from diagnostics_engine.models.data_models import CapturedError, LongTask, NavigationTiming
from diagnostics_engine.services.engine import DiagnosticsEngine
from diagnostics_engine.services.instrumentation import InstrumentationSource

START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeInstrumentation(InstrumentationSource):
    """Records installed callbacks so tests can fire host signals directly."""

    def __init__(self, fail: tuple = ()):
        self.fail = set(fail)
        self.long_task: List[Callable] = []
        self.navigation: List[Callable] = []
        self.requests: List[Callable] = []
        self.errors: List[Callable] = []
        self.rejections: List[Callable] = []
        self.connectivity: List[Callable] = []
        self.disposed: List[str] = []

    def _install(self, name: str, bucket: List[Callable], callback: Callable):
        if name in self.fail:
            raise RuntimeError(f"{name} unsupported")
        bucket.append(callback)

        def dispose():
            bucket.remove(callback)
            self.disposed.append(name)

        return dispose

    def on_long_task(self, callback):
        return self._install("long_task", self.long_task, callback)

    def on_navigation_timing(self, callback):
        return self._install("navigation", self.navigation, callback)

    def intercept_request(self, handler):
        return self._install("requests", self.requests, handler)

    def on_uncaught_error(self, callback):
        return self._install("errors", self.errors, callback)

    def on_unhandled_rejection(self, callback):
        return self._install("rejections", self.rejections, callback)

    def on_connectivity_change(self, callback):
        return self._install("connectivity", self.connectivity, callback)

    # helpers for tests

    def fire_long_task(self, duration: float, start: float = 0.0, name: str = "task"):
        for cb in list(self.long_task):
            cb(LongTask(duration=duration, start_time=start, name=name))

    def fire_navigation(self, name: str, duration: float):
        for cb in list(self.navigation):
            cb(NavigationTiming(name=name, duration=duration))

    def fire_error(self, message: str, stack: str = "Traceback ..."):
        for cb in list(self.errors):
            cb(CapturedError(message=message, type="ValueError", stack=stack, location="app.py:1"))

    def fire_rejection(self, message: str):
        for cb in list(self.rejections):
            cb(CapturedError(message=message, type="RuntimeError"))

    def fire_connectivity(self, online: bool):
        for cb in list(self.connectivity):
            cb(online)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def instrumentation():
    return FakeInstrumentation()


@pytest.fixture
def engine(clock, instrumentation):
    eng = DiagnosticsEngine(
        DiagnosticsConfig(log_levels=["debug", "info", "warn", "error"]),
        instrumentation=instrumentation,
        clock=clock,
    )
    yield eng
    eng.dispose()
