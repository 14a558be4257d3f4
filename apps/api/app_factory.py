# apps/api/app_factory.py
from __future__ import annotations

import logging
from typing import Any, Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from apps.api.extractions import create_extractions_router
from apps.api.rosters import create_rosters_router
from services.errors import (
    ExtractionNotReady,
    ModelCallFailed,
    PersistenceFailure,
    RosterConflict,
    RosterNotFound,
    RosterPipelineError,
    SessionNotFound,
    StaffNotFound,
    UnsupportedImage,
    VenueAccessDenied,
    VersionChainMismatch,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[Type[RosterPipelineError], int] = {
    SessionNotFound: 404,
    RosterNotFound: 404,
    VenueAccessDenied: 403,
    RosterConflict: 409,
    ExtractionNotReady: 409,
    UnsupportedImage: 415,
    VersionChainMismatch: 422,
    StaffNotFound: 422,
    ModelCallFailed: 502,
    PersistenceFailure: 500,
}


def status_for(exc: RosterPipelineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def error_payload(exc: RosterPipelineError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": exc.kind, "detail": str(exc)}
    if isinstance(exc, RosterConflict):
        body["existing_roster_id"] = exc.existing_roster_id
        body["week_start"] = exc.week_start
    return body


def create_app(*, pipeline: Any, max_concurrency: int = 4) -> FastAPI:
    app = FastAPI(title="Roster Extraction API")

    @app.exception_handler(RosterPipelineError)
    async def pipeline_error_handler(_: Request, exc: RosterPipelineError):
        status = status_for(exc)
        if status >= 500:
            logger.error("%s: %s", exc.kind, exc)
        return JSONResponse(status_code=status, content=error_payload(exc))

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(create_extractions_router(pipeline=pipeline, max_concurrency=max_concurrency))
    app.include_router(create_rosters_router(reconciler=pipeline.reconciler))
    return app
