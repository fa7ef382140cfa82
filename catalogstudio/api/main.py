"""HTTP entrypoint: generation routes plus health, version and metrics endpoints."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.routing import Match

from catalogstudio.auth.middleware import AUTH_CONTEXT_KEY, resolve_request_auth_context
from catalogstudio.core.config import get_settings
from catalogstudio.core.logger import bind_request_context, clear_log_context, get_logger
from catalogstudio.core.metrics import record_http_request, render_prometheus_metrics
from catalogstudio.generation.router import router as generation_router
from catalogstudio.storage.db import load_models
from catalogstudio.storage.db import test_connection as test_db_connection


settings = get_settings()
logger = get_logger("catalogstudio.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.include_router(generation_router)


def _route_template(request: Request) -> str:
    # Labelled by route template so job and batch ids stay out of the label set.
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id") or str(uuid4())
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)
    bind_request_context(request_id, auth_context.tenant_id if auth_context else None)

    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=_route_template(request),
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )
        clear_log_context()

    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    logger.info(
        "application_startup",
        version=settings.app_version,
        inference_provider=settings.inference_provider,
        metering_enabled=settings.metering_enabled,
        metrics_enabled=settings.metrics_enabled,
        max_active_jobs_per_tenant=settings.generation_max_active_jobs_per_tenant,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    if not db_ok:
        logger.warning("health_database_unavailable", error=db_error)
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ok" if db_ok else "degraded",
            "env": settings.env,
            "services": {
                "database": {"ok": db_ok, "error": db_error},
                "inference": {"provider": settings.inference_provider},
                "metering": {"enabled": settings.metering_enabled},
            },
        },
    )


@app.get("/version")
def version() -> dict[str, str]:
    return {"name": settings.app_name, "version": settings.app_version, "env": settings.env}


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)
    return PlainTextResponse(
        render_prometheus_metrics(app_name=settings.app_name, app_version=settings.app_version, env=settings.env),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
