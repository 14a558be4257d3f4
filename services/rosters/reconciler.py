# services/rosters/reconciler.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from services.errors import (
    PersistenceFailure,
    RosterConflict,
    RosterNotFound,
    VersionChainMismatch,
    VersionNumberTaken,
)
from services.matching.staff_matcher import MatchedShift

from .db import Database
from .diff import ShiftSnapshot, VersionDiff, compute_diff
from .models import Roster, RosterHistory, RosterShift, UnmatchedRosterEntry
from .repository import RosterRepository

logger = logging.getLogger(__name__)

BREAK_NOTE = "Break included"


@dataclass
class RosterCreateRequest:
    venue_id: str
    week_start: date
    shifts: List[MatchedShift]
    create_as_new_version: bool = False
    version_number: Optional[int] = None
    created_by: Optional[str] = None
    source_file_url: Optional[str] = None
    source_file_name: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RosterCreated:
    roster_id: str
    chain_id: str
    version_number: int
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roster_id": self.roster_id,
            "chain_id": self.chain_id,
            "version_number": self.version_number,
            "parent_id": self.parent_id,
        }


@dataclass
class DuplicateCheck:
    exists: bool
    roster_id: Optional[str] = None
    roster_name: Optional[str] = None
    status: Optional[str] = None
    chain_id: Optional[str] = None
    version_number: Optional[int] = None
    next_version_number: int = 1
    shift_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VersionInfo:
    roster_id: str
    name: str
    version_number: int
    status: str
    is_active: bool
    created_at: str
    created_by: Optional[str]
    shift_count: int
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_date(v: str) -> date:
    return datetime.strptime(v, "%Y-%m-%d").date()


def _staff_name(shift: RosterShift) -> str:
    if shift.staff is not None:
        full = f"{shift.staff.first_name or ''} {shift.staff.last_name or ''}".strip()
        return full or shift.staff.email or ""
    return shift.original_name or "Unassigned"


def _snapshot(shift: RosterShift) -> ShiftSnapshot:
    return ShiftSnapshot(
        id=shift.id,
        staff_id=shift.staff_id,
        staff_name=_staff_name(shift),
        date=shift.date.isoformat(),
        start_time=shift.start_time,
        end_time=shift.end_time,
        position=shift.position,
        notes=shift.notes,
    )


class RosterReconciler:
    """
    Persists confirmed extractions as roster versions.

    Every write runs inside one transaction: either the new version, its shifts, its
    unmatched entries, its history record and the deactivation of its predecessor all
    land, or none of them do.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # --- creation ---

    def create_from_extraction(self, req: RosterCreateRequest) -> RosterCreated:
        try:
            with self.db.transaction() as session:
                created = self._create(session, req)
        except (SQLAlchemyError, ValueError) as e:
            logger.error("Roster transaction rolled back for venue %s: %s", req.venue_id, e)
            raise PersistenceFailure(f"Failed to save roster: {e}") from e

        logger.info(
            "Roster %s created (venue=%s week=%s chain=%s v%d)",
            created.roster_id, req.venue_id, req.week_start, created.chain_id, created.version_number,
        )
        return created

    def _create(self, session: Session, req: RosterCreateRequest) -> RosterCreated:
        existing = RosterRepository.find_active(session, req.venue_id, req.week_start)
        if existing is not None and not req.create_as_new_version:
            logger.info("Roster conflict: venue=%s week=%s existing=%s", req.venue_id, req.week_start, existing.id)
            raise RosterConflict(req.venue_id, req.week_start.isoformat(), existing.id)

        previous = existing or RosterRepository.find_latest(session, req.venue_id, req.week_start)
        chain_id, version_number = self._next_in_chain(session, previous, req.version_number)

        if existing is not None:
            # deactivate before insert so the partial unique index never sees two active rows
            session.execute(update(Roster).where(Roster.id == existing.id).values(is_active=False))
            session.flush()

        roster = Roster(
            id=str(uuid4()),
            venue_id=req.venue_id,
            name=req.name or f"Roster Week of {req.week_start.isoformat()}",
            start_date=req.week_start,
            end_date=req.week_start + timedelta(days=6),
            status="DRAFT",
            source_file_url=req.source_file_url,
            source_file_name=req.source_file_name,
            created_by=req.created_by,
            created_at=datetime.utcnow(),
            chain_id=chain_id,
            version_number=version_number,
            parent_id=previous.id if previous is not None else None,
            is_active=True,
        )
        session.add(roster)

        matched = [ms for ms in req.shifts if ms.staff_id]
        for ms in matched:
            s = ms.shift
            session.add(
                RosterShift(
                    roster_id=roster.id,
                    staff_id=ms.staff_id,
                    date=_parse_date(s.date),
                    start_time=s.start_time,
                    end_time=s.end_time,
                    position=s.role or None,
                    notes=BREAK_NOTE if s.has_break else None,
                    original_name=s.staff_name,
                )
            )

        unmatched: Dict[str, int] = {}
        for ms in req.shifts:
            if ms.staff_id:
                continue
            unmatched[ms.shift.staff_name] = unmatched.get(ms.shift.staff_name, 0) + 1
        for name, count in unmatched.items():
            session.add(UnmatchedRosterEntry(roster_id=roster.id, original_name=name, shift_count=count))

        session.add(
            RosterHistory(
                roster_id=roster.id,
                version=version_number,
                action="VERSION_CREATED" if previous is not None else "CREATED",
                performed_by=req.created_by,
                performed_at=datetime.utcnow(),
                changes={
                    "source": "image_extraction",
                    "file_name": req.source_file_name,
                    "shift_count": len(matched),
                    "unmatched_count": len(unmatched),
                    "previous_roster_id": previous.id if previous is not None else None,
                },
            )
        )
        session.flush()

        return RosterCreated(
            roster_id=roster.id,
            chain_id=chain_id,
            version_number=version_number,
            parent_id=roster.parent_id,
        )

    @staticmethod
    def _next_in_chain(session: Session, previous: Optional[Roster], requested: Optional[int]):
        if previous is None:
            return str(uuid4()), requested or 1

        chain_id = previous.chain_id
        if not chain_id:
            chain_id = str(uuid4())
            previous.chain_id = chain_id
            session.flush()

        latest = RosterRepository.max_version_in_chain(session, chain_id)
        if requested is not None and requested <= latest:
            # versions only ever append
            raise VersionNumberTaken(
                previous.venue_id, previous.start_date.isoformat(), previous.id, requested, latest
            )
        return chain_id, requested or latest + 1

    # --- queries ---

    def check_duplicate(self, venue_id: str, week_start: date) -> DuplicateCheck:
        session = self.db.get_session()
        try:
            roster = RosterRepository.find_latest(session, venue_id, week_start)
            if roster is None:
                return DuplicateCheck(exists=False)
            next_version = (
                RosterRepository.max_version_in_chain(session, roster.chain_id) + 1
                if roster.chain_id
                else roster.version_number + 1
            )
            return DuplicateCheck(
                exists=True,
                roster_id=roster.id,
                roster_name=roster.name,
                status=roster.status,
                chain_id=roster.chain_id,
                version_number=roster.version_number,
                next_version_number=next_version,
                shift_count=len(RosterRepository.shifts_for(session, roster.id)),
            )
        finally:
            session.close()

    def _require(self, session: Session, roster_id: str) -> Roster:
        roster = RosterRepository.get_by_id(session, roster_id)
        if roster is None:
            raise RosterNotFound(roster_id)
        return roster

    def list_versions(self, roster_id: str) -> List[VersionInfo]:
        """All versions in the roster's chain, newest first."""
        session = self.db.get_session()
        try:
            roster = self._require(session, roster_id)
            chain = RosterRepository.list_chain(session, roster.chain_id) if roster.chain_id else [roster]
            return [
                VersionInfo(
                    roster_id=r.id,
                    name=r.name,
                    version_number=r.version_number,
                    status=r.status,
                    is_active=bool(r.is_active),
                    created_at=r.created_at.isoformat(),
                    created_by=r.created_by,
                    shift_count=len(RosterRepository.shifts_for(session, r.id)),
                    parent_id=r.parent_id,
                )
                for r in chain
            ]
        finally:
            session.close()

    def history(self, roster_id: str) -> List[Dict[str, Any]]:
        session = self.db.get_session()
        try:
            self._require(session, roster_id)
            return [
                {
                    "id": h.id,
                    "roster_id": h.roster_id,
                    "version": h.version,
                    "action": h.action,
                    "performed_by": h.performed_by,
                    "performed_at": h.performed_at.isoformat(),
                    "changes": h.changes or {},
                }
                for h in RosterRepository.history_for(session, roster_id)
            ]
        finally:
            session.close()

    def diff(self, source_id: str, target_id: str) -> VersionDiff:
        session = self.db.get_session()
        try:
            source = self._require(session, source_id)
            target = self._require(session, target_id)
            if source.id != target.id and (not source.chain_id or source.chain_id != target.chain_id):
                raise VersionChainMismatch(
                    f"Rosters {source_id} and {target_id} are not versions of the same roster"
                )
            before = [_snapshot(s) for s in RosterRepository.shifts_for(session, source.id)]
            after = [_snapshot(s) for s in RosterRepository.shifts_for(session, target.id)]
        finally:
            session.close()
        return compute_diff(before, after)

    # --- restore ---

    def restore_version(self, roster_id: str, performed_by: Optional[str] = None) -> RosterCreated:
        """Append a new active version whose shifts copy those of `roster_id`."""
        try:
            with self.db.transaction() as session:
                created = self._restore(session, roster_id, performed_by)
        except SQLAlchemyError as e:
            logger.error("Restore of roster %s rolled back: %s", roster_id, e)
            raise PersistenceFailure(f"Failed to restore roster: {e}") from e

        logger.info("Roster %s restored as %s (v%d)", roster_id, created.roster_id, created.version_number)
        return created

    def _restore(self, session: Session, roster_id: str, performed_by: Optional[str]) -> RosterCreated:
        source = self._require(session, roster_id)
        active = RosterRepository.find_active(session, source.venue_id, source.start_date)
        parent = active or source
        chain_id, version_number = self._next_in_chain(session, parent, None)
        if not source.chain_id:
            source.chain_id = chain_id

        if active is not None:
            session.execute(update(Roster).where(Roster.id == active.id).values(is_active=False))
            session.flush()

        roster = Roster(
            id=str(uuid4()),
            venue_id=source.venue_id,
            name=f"{source.name} (restored from v{source.version_number})",
            start_date=source.start_date,
            end_date=source.end_date,
            status="DRAFT",
            source_file_url=source.source_file_url,
            source_file_name=source.source_file_name,
            created_by=performed_by,
            created_at=datetime.utcnow(),
            chain_id=chain_id,
            version_number=version_number,
            parent_id=parent.id,
            is_active=True,
        )
        session.add(roster)

        shifts: Sequence[RosterShift] = RosterRepository.shifts_for(session, source.id)
        for s in shifts:
            session.add(
                RosterShift(
                    roster_id=roster.id,
                    staff_id=s.staff_id,
                    date=s.date,
                    start_time=s.start_time,
                    end_time=s.end_time,
                    position=s.position,
                    notes=s.notes,
                    original_name=s.original_name,
                )
            )
        for e in source.unmatched_entries:
            session.add(UnmatchedRosterEntry(roster_id=roster.id, original_name=e.original_name, shift_count=e.shift_count))

        session.add(
            RosterHistory(
                roster_id=roster.id,
                version=version_number,
                action="RESTORED",
                performed_by=performed_by,
                performed_at=datetime.utcnow(),
                changes={
                    "restored_from_roster_id": source.id,
                    "restored_from_version": source.version_number,
                    "shift_count": len(shifts),
                },
            )
        )
        session.flush()
        return RosterCreated(roster_id=roster.id, chain_id=chain_id, version_number=version_number, parent_id=parent.id)
