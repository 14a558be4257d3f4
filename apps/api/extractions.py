# apps/api/extractions.py
from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, File, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool


class ManualMatchBody(BaseModel):
    extracted_name: str = Field(..., min_length=1)
    staff_id: str = Field(..., min_length=1)


class ConfirmBody(BaseModel):
    week_start: Optional[str] = None
    create_as_new_version: bool = False
    version_number: Optional[int] = Field(default=None, ge=1)
    created_by: Optional[str] = None


def create_extractions_router(*, pipeline: Any, max_concurrency: int = 4) -> APIRouter:
    router = APIRouter()
    # vision calls are slow; cap how many run at once
    sem = asyncio.Semaphore(max_concurrency)

    @router.post("/extractions")
    async def upload_and_extract(venue_id: str = Query(...), file: UploadFile = File(...)):
        contents = await file.read()
        async with sem:
            session = await run_in_threadpool(
                pipeline.upload_and_extract, contents, venue_id=venue_id, file_name=file.filename or ""
            )
        return session.to_dict()

    @router.get("/extractions/{session_id}")
    def get_extraction(session_id: str):
        return pipeline.get_session(session_id).to_dict()

    @router.delete("/extractions/{session_id}")
    def cancel_extraction(session_id: str):
        return {"session_id": session_id, "cancelled": pipeline.cancel(session_id)}

    @router.post("/extractions/{session_id}/matches")
    def manual_match(session_id: str, body: ManualMatchBody):
        session = pipeline.manual_match(session_id, body.extracted_name, body.staff_id)
        return session.matches.to_dict()

    @router.post("/extractions/{session_id}/confirm")
    def confirm_extraction(session_id: str, body: ConfirmBody):
        created = pipeline.confirm(
            session_id,
            week_start=body.week_start,
            create_as_new_version=body.create_as_new_version,
            version_number=body.version_number,
            created_by=body.created_by,
        )
        return JSONResponse(status_code=201, content=created.to_dict())

    return router
