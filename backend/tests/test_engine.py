"""Tests for the engine facade: lifecycle, hooks, intake and export."""

import pytest

from conftest import FakeInstrumentation
from diagnostics_engine.config import DiagnosticsConfig
from diagnostics_engine.models.data_models import (
    LifecycleState,
    LogLevel,
    MeasureKind,
    MeasureTarget,
    RequestOutcome,
)
from diagnostics_engine.services.engine import DiagnosticsEngine
from diagnostics_engine.services.storage import DAY_MS


class TestLifecycle:
    def test_initial_state(self, engine):
        assert engine.state is LifecycleState.UNINITIALIZED

    def test_initialize_installs_every_hook(self, engine, instrumentation):
        assert engine.initialize() is True

        assert engine.state is LifecycleState.INITIALIZED
        for bucket in ("errors", "rejections", "connectivity", "long_task", "navigation", "requests"):
            assert len(getattr(instrumentation, bucket)) == 1, bucket

    def test_second_initialize_is_noop(self, engine, instrumentation):
        engine.initialize()
        assert engine.initialize(max_log_entries=5) is False

        assert len(instrumentation.errors) == 1
        assert engine.logs.max_entries != 5

    def test_dispose_removes_hooks_and_subscribers(self, engine, instrumentation):
        engine.initialize()
        calls = []
        engine.subscribe("log", calls.append)

        engine.dispose()

        assert engine.state is LifecycleState.DISPOSED
        assert instrumentation.errors == []
        assert instrumentation.requests == []
        engine.log("error", "m", "after dispose")
        assert calls == []

    def test_dispose_is_idempotent(self, engine, instrumentation):
        engine.initialize()
        engine.dispose()
        engine.dispose()
        assert instrumentation.disposed.count("errors") == 1

    def test_reinitialize_after_dispose(self, engine, instrumentation):
        engine.initialize()
        engine.dispose()
        assert engine.initialize() is True
        assert len(instrumentation.errors) == 1

    def test_monitoring_toggles(self, clock):
        source = FakeInstrumentation()
        engine = DiagnosticsEngine(instrumentation=source, clock=clock)
        engine.initialize(enable_performance_monitoring=False, enable_network_monitoring=False)

        assert source.long_task == []
        assert source.navigation == []
        assert source.requests == []
        assert len(source.errors) == 1

    def test_setup_failure_degrades(self, clock):
        source = FakeInstrumentation(fail=("long_task",))
        engine = DiagnosticsEngine(DiagnosticsConfig(log_levels=[]), instrumentation=source, clock=clock)

        assert engine.initialize() is True

        errors = [e for e in engine.logs.entries() if e.level is LogLevel.ERROR]
        assert [e.message for e in errors] == ["Failed to observe long tasks"]
        assert errors[0].data == {"error": "long_task unsupported"}
        assert len(source.navigation) == 1

    def test_retention_purge_on_initialize(self, engine, clock):
        engine.log("info", "m", "ancient")
        clock.advance(10 * DAY_MS)
        engine.log("info", "m", "fresh")

        engine.initialize(log_retention_days=7)

        assert [e.message for e in engine.logs.entries()] == ["fresh"]


class TestConfigScenario:
    def test_error_only_capacity_three(self, clock, instrumentation):
        engine = DiagnosticsEngine(instrumentation=instrumentation, clock=clock)
        engine.initialize(DiagnosticsConfig(log_levels=["error"], max_log_entries=3))

        for msg in ("e1", "e2", "e3", "e4"):
            engine.log("error", "m", msg)

        assert [e.message for e in engine.export_diagnostics().logs] == ["e2", "e3", "e4"]

    def test_filtered_level_leaves_buffer_unchanged(self, clock, instrumentation):
        engine = DiagnosticsEngine(instrumentation=instrumentation, clock=clock)
        engine.initialize(log_levels=["warn", "error"])
        before = engine.logs.entries()

        assert engine.log("debug", "m", "noise") == ""
        assert engine.logs.entries() == before


class TestCapturedFailures:
    def test_uncaught_error_always_logged_and_emitted(self, clock, instrumentation):
        engine = DiagnosticsEngine(DiagnosticsConfig(log_levels=[]), instrumentation=instrumentation, clock=clock)
        engine.initialize()
        emitted = []
        engine.subscribe("error", emitted.append)

        instrumentation.fire_error("division by zero", stack="Traceback: ...")

        entry = engine.logs.entries()[-1]
        assert entry.level is LogLevel.ERROR
        assert entry.module == "global"
        assert entry.message == "division by zero"
        assert entry.stack == "Traceback: ..."
        assert emitted[0].message == "division by zero"

    def test_unhandled_rejection_logged_and_emitted(self, clock, instrumentation):
        engine = DiagnosticsEngine(DiagnosticsConfig(log_levels=[]), instrumentation=instrumentation, clock=clock)
        engine.initialize()
        emitted = []
        engine.subscribe("unhandledRejection", emitted.append)

        instrumentation.fire_rejection("task exploded")

        entry = engine.logs.entries()[-1]
        assert entry.message == "Unhandled task exception: task exploded"
        assert emitted[0].message == "task exploded"


class TestSignals:
    def test_connectivity_change(self, engine, instrumentation, clock):
        engine.initialize()
        states = []
        engine.subscribe("networkStatusChange", states.append)

        instrumentation.fire_connectivity(False)
        instrumentation.fire_connectivity(False)
        instrumentation.fire_connectivity(True)

        assert states == [False, True]
        assert engine.is_online is True
        assert engine.export_diagnostics().network_diagnostics.last_network_change_time == clock.now

    def test_set_online_without_hooks(self, engine):
        states = []
        engine.subscribe("networkStatusChange", states.append)
        engine.set_online(False)
        assert states == [False]
        assert engine.is_online is False

    def test_long_task_and_navigation(self, engine, instrumentation):
        engine.initialize()
        instrumentation.fire_navigation("/", 350.0)
        instrumentation.fire_long_task(120.0, name="event-loop-blocked")

        metrics = engine.export_diagnostics().performance_metrics
        assert metrics.page_loads == {"/": [350.0]}
        assert metrics.long_tasks[0].duration == 120.0

    def test_intercepted_requests(self, engine, instrumentation):
        engine.initialize()
        for handler in instrumentation.requests:
            handler(RequestOutcome("https://h/api/x?q=1", "GET", 30.0, 500))

        network = engine.export_diagnostics().network_diagnostics
        assert network.api_latency == {"/api/x": [30.0]}
        assert network.failed_requests[0].url == "/api/x"


class TestIntakeAndExport:
    def test_intake_forwarding(self, engine):
        engine.record_api_latency("/api/a", 10)
        engine.record_failed_request("/api/a", "GET", 502)
        engine.record_ws_reconnect()
        engine.record_page_load("/home", 100)
        engine.record_component_render("Chart", 5)
        engine.record_api_call("/api/a", 12)

        export = engine.export_diagnostics()
        assert export.network_diagnostics.ws_reconnects == 1
        assert export.performance_metrics.page_loads == {"/home": [100.0]}
        assert export.performance_metrics.component_renders == {"Chart": [5.0]}
        assert export.performance_metrics.api_calls == {"/api/a": [12.0]}

    def test_export_is_snapshot(self, engine):
        engine.log("info", "m", "one")
        export = engine.export_diagnostics()
        engine.log("info", "m", "two")
        engine.record_page_load("/", 1)
        assert len(export.logs) == 1
        assert export.performance_metrics.page_loads == {}

    def test_clear_logs(self, engine):
        cleared = []
        engine.subscribe("logsCleared", cleared.append)
        engine.log("error", "m", "x")

        engine.clear_logs()

        assert cleared == [None]
        assert len(engine.export_diagnostics().logs) == 0

    def test_reset_performance_metrics(self, engine):
        engine.record_page_load("/", 1)
        engine.reset_performance_metrics()
        assert engine.export_diagnostics().performance_metrics.page_loads == {}

    def test_measure_performance(self, engine):
        stop = engine.measure_performance(MeasureTarget(MeasureKind.COMPONENT, "Table"))
        duration = stop()
        assert engine.export_diagnostics().performance_metrics.component_renders == {"Table": [duration]}

    def test_export_to_dict(self, engine):
        engine.log("warn", "m", "w")
        data = engine.export_diagnostics().to_dict()
        assert set(data) == {"logs", "performance_metrics", "network_diagnostics", "system_info"}
        assert data["logs"][0]["message"] == "w"


class TestSummary:
    def test_recent_errors_window(self, engine, clock):
        engine.log("error", "m", "old")
        clock.advance(25 * 60 * 60 * 1000)
        engine.log("error", "m", "new1")
        engine.log("error", "m", "new2")
        engine.log("warn", "m", "not an error")

        assert engine.compute_summary().recent_errors == 2

    def test_summary_counts(self, engine, instrumentation):
        engine.initialize()
        engine.record_api_latency("/a", 10)
        engine.record_api_latency("/b", 30)
        engine.record_api_latency("/b", 50)
        engine.record_failed_request("/a", "GET", 500)
        engine.record_ws_reconnect()
        instrumentation.fire_long_task(70)

        summary = engine.compute_summary()
        assert summary.avg_api_latency == pytest.approx(30.0)
        assert summary.failed_requests == 1
        assert summary.ws_reconnects == 1
        assert summary.long_tasks == 1

    def test_no_latency_means_none(self, engine):
        assert engine.compute_summary().avg_api_latency is None

    def test_download_report(self, engine):
        engine.log("info", "m", "hello")
        report = engine.build_download_report("test")
        assert report["app_info"]["environment"] == "test"
        assert report["connection"]["is_online"] is True
        assert report["logs"][0]["message"] == "hello"
        assert report["summary"]["recent_errors"] == 0
