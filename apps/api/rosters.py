# apps/api/rosters.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.rosters.reconciler import RosterReconciler


class RestoreBody(BaseModel):
    performed_by: Optional[str] = None


def create_rosters_router(*, reconciler: RosterReconciler) -> APIRouter:
    router = APIRouter()

    @router.get("/venues/{venue_id}/rosters/duplicate")
    def check_duplicate(venue_id: str, week_start: date = Query(...)):
        return reconciler.check_duplicate(venue_id, week_start).to_dict()

    @router.get("/rosters/diff")
    def diff_versions(source: str = Query(...), target: str = Query(...)):
        return reconciler.diff(source, target).to_dict()

    @router.get("/rosters/{roster_id}/versions")
    def list_versions(roster_id: str):
        return {"roster_id": roster_id, "versions": [v.to_dict() for v in reconciler.list_versions(roster_id)]}

    @router.get("/rosters/{roster_id}/history")
    def roster_history(roster_id: str):
        return {"roster_id": roster_id, "history": reconciler.history(roster_id)}

    @router.post("/rosters/{roster_id}/restore")
    def restore_version(roster_id: str, body: Optional[RestoreBody] = None):
        created = reconciler.restore_version(roster_id, performed_by=body.performed_by if body else None)
        return JSONResponse(status_code=201, content=created.to_dict())

    return router
