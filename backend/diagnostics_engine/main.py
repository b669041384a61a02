from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from diagnostics_engine.config import load_config
from diagnostics_engine.models.data_models import (
    ErrorContext,
    ErrorDetails,
    LogLevel,
    MeasureKind,
    MeasureTarget,
)
from diagnostics_engine.services.engine import DiagnosticsEngine
from diagnostics_engine.utils.helpers import parse_ts, to_epoch_ms

# ──────────────────────────────────────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────────────────────────────────────

API_PREFIX = "/api/diagnostics"

# ──────────────────────────────────────────────────────────────────────────────
# Request bodies
# ──────────────────────────────────────────────────────────────────────────────


class LogIn(BaseModel):
    level: LogLevel
    module: str
    message: str
    data: Optional[Any] = None


class MeasurementIn(BaseModel):
    kind: MeasureKind
    name: str
    duration_ms: float


class FailedRequestIn(BaseModel):
    url: str
    method: str = "GET"
    status: int = 0
    error: Optional[str] = None


class ConnectivityIn(BaseModel):
    online: bool


class ErrorContextIn(BaseModel):
    url: str
    component: Optional[str] = None
    action: Optional[str] = None
    user_input: Optional[Any] = None


class ErrorReportIn(BaseModel):
    message: str
    type: Optional[str] = None
    stack: Optional[str] = None
    context: ErrorContextIn


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────


def create_app(engine: Optional[DiagnosticsEngine] = None) -> FastAPI:
    """
    HTTP query/export surface for diagnostics panels.
    The engine is initialized when the app starts and disposed on shutdown.
    """
    engine = engine or DiagnosticsEngine(load_config())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        engine.initialize()
        try:
            yield
        finally:
            engine.dispose()

    app = FastAPI(title="Diagnostics (Logs, Network, Performance)", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # dev OK; lock down in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Health ───────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "state": engine.state.value,
            "is_online": engine.is_online,
            "log_entries": len(engine.logs),
            "max_log_entries": engine.logs.max_entries,
            "log_counts": engine.logs.count_by_level(),
        }

    # ── Logs ─────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/logs")
    def logs(
        level: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        since: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
    ) -> Dict[str, Any]:
        if level is not None and level not in {lv.value for lv in LogLevel}:
            raise HTTPException(status_code=400, detail=f"Unknown level: {level}")

        since_ms = None
        if since is not None:
            ts = parse_ts(since)
            if ts is None:
                raise HTTPException(status_code=400, detail=f"Invalid timestamp: {since}")
            since_ms = to_epoch_ms(ts)

        rows = engine.filter_logs(level=level, search=search, since=since_ms)
        return {
            "total": len(rows),
            "logs": [e.to_dict() for e in rows[-limit:]],
        }

    @app.post(f"{API_PREFIX}/logs")
    def add_log(body: LogIn) -> Dict[str, Any]:
        log_id = engine.log(body.level, body.module, body.message, body.data)
        return {"id": log_id, "accepted": bool(log_id)}

    @app.delete(f"{API_PREFIX}/logs")
    def clear_logs() -> Dict[str, Any]:
        engine.clear_logs()
        return {"status": "ok"}

    # ── Summary ──────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/summary")
    def summary() -> Dict[str, Any]:
        return {"summary": engine.compute_summary().to_dict()}

    # ── Network ──────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/network")
    def network(
        limit: int = Query(10, ge=1, le=200),
        sort_by: str = Query("count"),  # "count", "avg", "p95" or "failures"
        order: str = Query("desc"),     # "asc" or "desc"
    ) -> Dict[str, Any]:
        return {
            "network": engine.network.snapshot().to_dict(),
            "endpoints": [asdict(s) for s in engine.endpoint_stats(limit, sort_by, order)],
        }

    @app.post(f"{API_PREFIX}/network/failures")
    def failed_request(body: FailedRequestIn) -> Dict[str, Any]:
        engine.record_failed_request(body.url, body.method, body.status, body.error)
        return {"status": "ok"}

    @app.post(f"{API_PREFIX}/network/reconnects")
    def ws_reconnect() -> Dict[str, Any]:
        return {"ws_reconnects": engine.record_ws_reconnect()}

    @app.post(f"{API_PREFIX}/network/status")
    def connectivity(body: ConnectivityIn) -> Dict[str, Any]:
        engine.set_online(body.online)
        return {"is_online": engine.is_online}

    # ── Performance ──────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/performance")
    def performance() -> Dict[str, Any]:
        return {"performance": engine.performance.snapshot().to_dict()}

    @app.post(f"{API_PREFIX}/performance")
    def record_measurement(body: MeasurementIn) -> Dict[str, Any]:
        engine.performance.record(MeasureTarget(body.kind, body.name), body.duration_ms)
        return {"status": "ok"}

    @app.delete(f"{API_PREFIX}/performance")
    def reset_performance() -> Dict[str, Any]:
        engine.reset_performance_metrics()
        return {"status": "ok"}

    # ── System / export / reports ────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/system")
    def system() -> Dict[str, Any]:
        return {"system_info": engine.get_system_info().to_dict()}

    @app.get(f"{API_PREFIX}/export")
    def export() -> Dict[str, Any]:
        return engine.export_diagnostics().to_dict()

    @app.post(f"{API_PREFIX}/error-report")
    def error_report(body: ErrorReportIn) -> Dict[str, Any]:
        report = engine.create_error_report(
            ErrorDetails(message=body.message, stack=body.stack, type=body.type),
            ErrorContext(**body.context.model_dump()),
        )
        return {
            "report": report.to_dict(),
            "endpoint": engine.config.error_reporting_endpoint,
        }

    @app.get(f"{API_PREFIX}/report")
    def download_report(environment: str = Query("production")) -> JSONResponse:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")
        return JSONResponse(
            jsonable_encoder(engine.build_download_report(environment)),
            headers={"Content-Disposition": f'attachment; filename="diagnostics-report-{stamp}.json"'},
        )

    return app


app = create_app()
