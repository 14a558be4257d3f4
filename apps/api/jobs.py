from __future__ import annotations

from typing import Any
from uuid import uuid4

from celery.result import AsyncResult
from fastapi import APIRouter, File, Query, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apps.workers.celery_app import celery_app
from services.sessions.repository import EXTRACTED, FAILED


def _map_celery_state(state: str) -> str:
    s = (state or "").upper()
    if s in ("PENDING", "RECEIVED", "RETRY"):
        return "QUEUED"
    if s in ("STARTED",):
        return "RUNNING"
    if s in ("SUCCESS",):
        return "SUCCEEDED"
    if s in ("FAILURE", "REVOKED"):
        return "FAILED"
    return "UNKNOWN"


def create_jobs_router(*, pipeline: Any) -> APIRouter:
    router = APIRouter()

    @router.post("/jobs")
    async def submit_job(venue_id: str = Query(...), file: UploadFile = File(...)):
        blob = await file.read()
        session = await run_in_threadpool(
            pipeline.start_session, blob, venue_id=venue_id, file_name=file.filename or ""
        )

        # task id is recorded before enqueueing so the worker never races the write
        task_id = str(uuid4())
        pipeline.attach_task(session.id, task_id)
        celery_app.send_task("roster.extract_session", args=[session.id], task_id=task_id)

        return JSONResponse(status_code=202, content={"job_id": session.id, "task_id": task_id})

    @router.get("/jobs/{session_id}")
    def job_status(session_id: str):
        session = pipeline.get_session(session_id)
        if session.status == FAILED:
            return {"job_id": session_id, "status": "FAILED", "ok": False, "error": session.error or "job_failed"}

        if not session.task_id:
            return {"job_id": session_id, "status": "UNKNOWN", "error": "no_task"}

        r = AsyncResult(str(session.task_id), app=celery_app)
        status = _map_celery_state(r.status)

        if status == "SUCCEEDED":
            if session.status != EXTRACTED:
                # Celery says success but the session was never written
                return {"job_id": session_id, "status": "FAILED", "ok": False, "error": "missing_result_artifact"}
            return {"job_id": session_id, "status": "SUCCEEDED", "ok": True, "session": session.to_dict()}

        if status == "FAILED":
            return {"job_id": session_id, "status": "FAILED", "ok": False, "error": "job_failed"}

        return {"job_id": session_id, "status": status}

    return router
