"""
PerformanceMonitor Class - Operation durations and long tasks
"""

import copy
import functools
import inspect
import time
from typing import Callable, Optional

from diagnostics_engine.models.data_models import (
    LogLevel,
    LongTask,
    MeasureKind,
    MeasureTarget,
    NavigationTiming,
    PerformanceMetrics,
)
from diagnostics_engine.services.storage import LogStore
from diagnostics_engine.utils.helpers import append_capped, append_sample, simplify_url

MAX_SAMPLES = 50
MAX_LONG_TASKS = 100


class PerformanceMonitor:
    """
    Records page, component and API call durations into capped per-key
    sample lists, plus long-running task samples.
    """

    def __init__(
        self,
        logs: LogStore,
        max_samples: int = MAX_SAMPLES,
        max_long_tasks: int = MAX_LONG_TASKS,
    ):
        self.logs = logs
        self.max_samples = max_samples
        self.max_long_tasks = max_long_tasks
        self._metrics = PerformanceMetrics()

    def record_page_load(self, page: str, duration_ms: float) -> None:
        append_sample(self._metrics.page_loads, page, float(duration_ms), self.max_samples)

    def record_component_render(self, component: str, duration_ms: float) -> None:
        append_sample(self._metrics.component_renders, component, float(duration_ms), self.max_samples)

    def record_api_call(self, endpoint: str, duration_ms: float) -> None:
        append_sample(self._metrics.api_calls, simplify_url(endpoint), float(duration_ms), self.max_samples)

    def record_long_task(self, task: LongTask) -> None:
        append_capped(self._metrics.long_tasks, task, self.max_long_tasks)

    def record_navigation(self, timing: NavigationTiming) -> None:
        self.record_page_load(timing.name, timing.duration)

    def record(self, target: MeasureTarget, duration_ms: float) -> None:
        """Route a duration to the bucket named by the target's kind"""
        recorders = {
            MeasureKind.API: self.record_api_call,
            MeasureKind.COMPONENT: self.record_component_render,
            MeasureKind.PAGE: self.record_page_load,
        }
        recorders[MeasureKind(target.kind)](target.name, duration_ms)

    def measure(self, target: MeasureTarget) -> Callable[[], float]:
        """Start a measurement; the returned callable stops it and returns elapsed ms"""
        started = time.perf_counter()

        def stop() -> float:
            duration = (time.perf_counter() - started) * 1000.0
            self.record(target, duration)
            return duration

        return stop

    def measured(self, target: MeasureTarget, component: Optional[str] = None):
        """
        Decorator timing a sync or async callable into the target's bucket.
        Each call also leaves a debug entry (dropped unless debug is accepted).
        """

        def decorate(fn):
            def finish(stop: Callable[[], float]) -> None:
                duration = stop()
                self.logs.log(
                    LogLevel.DEBUG,
                    "performance",
                    f"Operation executed: {target.name}",
                    {"duration": duration, "component": component, "operation": target.name},
                )

            if inspect.iscoroutinefunction(fn):

                @functools.wraps(fn)
                async def async_wrapper(*args, **kwargs):
                    stop = self.measure(target)
                    try:
                        return await fn(*args, **kwargs)
                    finally:
                        finish(stop)

                return async_wrapper

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                stop = self.measure(target)
                try:
                    return fn(*args, **kwargs)
                finally:
                    finish(stop)

            return wrapper

        return decorate

    def snapshot(self) -> PerformanceMetrics:
        return copy.deepcopy(self._metrics)

    @property
    def long_task_count(self) -> int:
        return len(self._metrics.long_tasks)

    def reset(self) -> None:
        self._metrics = PerformanceMetrics()
