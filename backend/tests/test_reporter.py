"""Tests for system info and error report assembly."""

import pytest

from diagnostics_engine.models.data_models import ErrorContext, ErrorDetails, LogLevel
from diagnostics_engine.services.event_bus import EventBus
from diagnostics_engine.services.reporter import ErrorReportAssembler
from diagnostics_engine.services.storage import LogStore
from diagnostics_engine.services.system_info import SystemInfoProvider, estimate_storage_size


@pytest.fixture
def store(clock):
    return LogStore(EventBus(), clock=clock, accepted_levels=list(LogLevel))


@pytest.fixture
def system():
    return SystemInfoProvider(
        app_version="1.2.3",
        local_storage={"token": "abcd"},
        session_storage={"tab": "1"},
    )


class TestSystemInfo:
    def test_snapshot_fields(self, system):
        info = system.get_system_info()

        assert info.app_version == "1.2.3"
        assert info.user_agent.startswith("python/")
        assert "x" in info.screen_resolution
        assert info.time_zone
        assert info.storage_usage.local == (5 + 4) * 2
        assert info.storage_usage.session == (3 + 1) * 2

    def test_fresh_every_call(self, system):
        first = system.get_system_info()
        system.local_storage["more"] = "data"
        second = system.get_system_info()

        assert first is not second
        assert second.storage_usage.local > first.storage_usage.local

    def test_memory_usage_reported(self, system):
        memory = system.get_system_info().memory_usage
        assert memory is None or memory.rss > 0

    def test_unreadable_storage_counts_zero(self):
        class Broken(dict):
            def items(self):
                raise OSError("storage unavailable")

        assert estimate_storage_size(Broken(), "local") == 0


class TestErrorReport:
    def _raise(self):
        try:
            raise ValueError("bad input")
        except ValueError as exc:
            return exc

    def test_report_contents(self, store, system, clock):
        store.log("info", "form", "submitted")
        assembler = ErrorReportAssembler(store, system, clock=clock)

        report = assembler.create_error_report(
            self._raise(),
            {"url": "/orders/new", "component": "OrderForm", "action": "submit"},
        )

        assert report.id
        assert report.timestamp == clock.now
        assert report.error.message == "bad input"
        assert report.error.type == "ValueError"
        assert "Traceback" in report.error.stack
        assert report.context == ErrorContext(url="/orders/new", component="OrderForm", action="submit")
        assert report.system_info.app_version == "1.2.3"
        assert [e.message for e in report.logs] == ["submitted"]

    def test_unraised_error_has_no_stack(self, store, system):
        report = ErrorReportAssembler(store, system).create_error_report(
            RuntimeError("never raised"), ErrorContext(url="/")
        )
        assert report.error.stack is None

    def test_accepts_error_details(self, store, system):
        details = ErrorDetails(message="remote failure", type="TypeError", stack="at x")
        report = ErrorReportAssembler(store, system).create_error_report(details, ErrorContext(url="/x"))
        assert report.error == details

    def test_at_most_last_hundred_logs(self, store, system):
        for i in range(150):
            store.log("info", "m", f"e{i}")

        report = ErrorReportAssembler(store, system).create_error_report(self._raise(), ErrorContext(url="/"))

        assert len(report.logs) == 100
        assert report.logs[0].message == "e50"
        assert report.logs[-1].message == "e149"

    def test_snapshot_isolation(self, store, system):
        store.log("error", "m", "before")
        report = ErrorReportAssembler(store, system).create_error_report(self._raise(), ErrorContext(url="/"))

        store.log("error", "m", "after")
        store.clear()

        assert [e.message for e in report.logs] == ["before"]

    def test_to_dict(self, store, system):
        store.log("warn", "m", "w")
        report = ErrorReportAssembler(store, system).create_error_report(self._raise(), ErrorContext(url="/"))
        data = report.to_dict()
        assert data["error"]["type"] == "ValueError"
        assert data["logs"][0]["level"] == "warn"
        assert data["system_info"]["storage_usage"]["local"] == 18

    def test_camel_case_context_keys(self, store, system):
        report = ErrorReportAssembler(store, system).create_error_report(
            self._raise(),
            {"url": "/checkout", "component": "Cart", "userInput": {"qty": 2}},
        )
        assert report.context == ErrorContext(url="/checkout", component="Cart", user_input={"qty": 2})

    def test_unknown_context_key_rejected(self, store, system):
        with pytest.raises(ValueError, match="sessionId"):
            ErrorReportAssembler(store, system).create_error_report(
                self._raise(), {"url": "/", "sessionId": "abc"}
            )
