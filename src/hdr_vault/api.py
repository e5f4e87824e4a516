# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
# ==============================================================================
# File: api.py
# REST surface (FastAPI + Prometheus)
#
#   GET    /health
#   GET    /metrics                              Prometheus scrape
#   GET    /api/v1/status
#   POST   /api/v1/consciousness/create          {aiState}
#   POST   /api/v1/consciousness/restore         {nhdrData, targetAI}
#   POST   /api/v1/consciousness/merge           {nhdr1, nhdr2}
#   GET    /api/v1/acceleration/status
#   GET    /api/v1/states  |  /states/stats  |  /states/{id}  (DELETE too)
#   GET    /api/v1/dashboard  |  /dashboard/metrics/{metric_id}
#
# Every error body is {"error": "..."}.
# ==============================================================================
from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .app import VaultApplication
from .errors import (
    CapsuleError,
    IntegrityError,
    NotInitializedError,
    StateNotFoundError,
    UnsupportedFormatError,
    VaultError,
)

log = logging.getLogger("hdr_vault.api")

API_PREFIX = "/api/v1"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

# most specific first
_ERROR_STATUS = (
    (NotInitializedError, 503),
    (StateNotFoundError, 404),
    (IntegrityError, 422),
    (CapsuleError, 400),
    (UnsupportedFormatError, 400),
)


class CreateRequest(BaseModel):
    aiState: Optional[Dict[str, Any]] = None


class RestoreRequest(BaseModel):
    nhdrData: Optional[Dict[str, Any]] = None
    targetAI: Optional[Dict[str, Any]] = None


class MergeRequest(BaseModel):
    nhdr1: Optional[Dict[str, Any]] = None
    nhdr2: Optional[Dict[str, Any]] = None


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    log.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) or exc.__class__.__name__},
        headers=SECURITY_HEADERS,
    )


def _status_for(err: VaultError) -> int:
    for cls, status in _ERROR_STATUS:
        if isinstance(err, cls):
            return status
    return 500


def create_app(vault: Optional[VaultApplication] = None) -> FastAPI:
    vault = vault or VaultApplication()
    app = FastAPI(title="HDR Vault", version=__version__)
    app.state.vault = vault

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    @app.on_event("startup")
    def on_startup():
        vault.initialize()
        log.info(f"HDR Vault API {__version__} started")

    @app.on_event("shutdown")
    def on_shutdown():
        log.warning("HDR Vault API shutting down...")
        vault.shutdown()

    # ------------------------------------------------------------------
    # middleware + error mapping
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def instrument(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            response = _internal_error(request, exc)
        route = getattr(request.scope.get("route"), "path", "unmatched")
        vault.metrics.latency.labels(route=route).observe(time.perf_counter() - start)
        vault.metrics.requests.labels(route=route, status=str(response.status_code)).inc()
        for k, v in SECURITY_HEADERS.items():
            response.headers[k] = v
        return response

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        status = _status_for(exc)
        if status >= 500:
            log.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"error": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return _internal_error(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())})

    # ------------------------------------------------------------------
    # health + metrics
    # ------------------------------------------------------------------
    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    @app.get("/metrics")
    def metrics():
        return Response(content=vault.metrics.exposition(), media_type=vault.metrics.content_type)

    @app.get(f"{API_PREFIX}/status")
    def status():
        return vault.get_development_status()

    # ------------------------------------------------------------------
    # capsules
    # ------------------------------------------------------------------
    @app.post(f"{API_PREFIX}/consciousness/create")
    def create_capsule(req: CreateRequest):
        if req.aiState is None:
            raise HTTPException(status_code=400, detail="Missing aiState in request body")
        capsule = vault.create_capsule(req.aiState)
        return {"success": True, "nhdrFile": capsule}

    @app.post(f"{API_PREFIX}/consciousness/restore")
    def restore_capsule(req: RestoreRequest):
        if req.nhdrData is None or req.targetAI is None:
            raise HTTPException(status_code=400, detail="Missing nhdrData or targetAI in request body")
        restored = vault.restore_capsule(req.nhdrData, req.targetAI)
        return {"success": True, "restored": restored}

    @app.post(f"{API_PREFIX}/consciousness/merge")
    def merge_capsules(req: MergeRequest):
        if req.nhdr1 is None or req.nhdr2 is None:
            raise HTTPException(status_code=400, detail="Missing nhdr1 or nhdr2 in request body")
        merged = vault.merge_capsules(req.nhdr1, req.nhdr2)
        return {"success": True, "mergedFile": merged}

    @app.get(f"{API_PREFIX}/acceleration/status")
    def acceleration_status():
        return vault.get_acceleration_status()

    # ------------------------------------------------------------------
    # stored states
    # ------------------------------------------------------------------
    @app.get(f"{API_PREFIX}/states")
    def list_states():
        return {"states": vault.persistence.list_states()}

    @app.get(f"{API_PREFIX}/states/stats")
    def state_stats():
        return vault.persistence.get_statistics()

    @app.get(f"{API_PREFIX}/states/{{state_id}}")
    def get_state(state_id: str):
        return vault.persistence.load(state_id)

    @app.delete(f"{API_PREFIX}/states/{{state_id}}")
    def delete_state(state_id: str):
        if not vault.persistence.delete(state_id):
            raise StateNotFoundError(state_id)
        return {"success": True, "stateId": state_id}

    # ------------------------------------------------------------------
    # dashboard
    # ------------------------------------------------------------------
    @app.get(f"{API_PREFIX}/dashboard")
    def dashboard_status():
        return vault.dashboard.get_status()

    @app.get(f"{API_PREFIX}/dashboard/metrics/{{metric_id}}")
    def dashboard_metric(metric_id: str, limit: Optional[int] = None):
        current = vault.dashboard.get_metric(metric_id)
        if current is None:
            raise HTTPException(status_code=404, detail=f"Metric '{metric_id}' not found")
        return {
            "metricId": metric_id,
            "current": asdict(current),
            "history": [asdict(s) for s in vault.dashboard.get_metric_history(metric_id, limit)],
        }

    return app
