"""Query helpers for staff and roster tables."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from services.matching.staff_matcher import StaffIdentity

from .db import Database
from .models import Roster, RosterHistory, RosterShift, StaffMember, Venue


def _identity(member: StaffMember) -> StaffIdentity:
    return StaffIdentity(
        id=member.id,
        first_name=member.first_name,
        last_name=member.last_name,
        email=member.email or "",
    )


class StaffDirectory:
    """Read-only view of a venue's known staff."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def venue_exists(self, venue_id: str) -> bool:
        session = self.db.get_session()
        try:
            return session.query(Venue).filter(Venue.id == venue_id).first() is not None
        finally:
            session.close()

    def list_venue_staff(self, venue_id: str) -> List[StaffIdentity]:
        """Active staff of the venue."""
        session = self.db.get_session()
        try:
            rows = (
                session.query(StaffMember)
                .filter(StaffMember.venue_id == venue_id, StaffMember.active.is_(True))
                .all()
            )
            return [_identity(r) for r in rows]
        finally:
            session.close()

    def get_staff(self, venue_id: str, staff_id: str) -> Optional[StaffIdentity]:
        session = self.db.get_session()
        try:
            row = (
                session.query(StaffMember)
                .filter(StaffMember.venue_id == venue_id, StaffMember.id == staff_id)
                .first()
            )
            return _identity(row) if row is not None else None
        finally:
            session.close()


class RosterRepository:
    """Repository for roster data access."""

    @staticmethod
    def get_by_id(session: Session, roster_id: str) -> Optional[Roster]:
        return session.query(Roster).filter(Roster.id == roster_id).first()

    @staticmethod
    def find_active(session: Session, venue_id: str, start_date: date) -> Optional[Roster]:
        return (
            session.query(Roster)
            .filter(
                Roster.venue_id == venue_id,
                Roster.start_date == start_date,
                Roster.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def find_latest(session: Session, venue_id: str, start_date: date) -> Optional[Roster]:
        """Active version first, then the highest version number."""
        return (
            session.query(Roster)
            .filter(Roster.venue_id == venue_id, Roster.start_date == start_date)
            .order_by(Roster.is_active.desc(), Roster.version_number.desc())
            .first()
        )

    @staticmethod
    def max_version_in_chain(session: Session, chain_id: str) -> int:
        value = session.query(func.max(Roster.version_number)).filter(Roster.chain_id == chain_id).scalar()
        return int(value or 0)

    @staticmethod
    def list_chain(session: Session, chain_id: str) -> List[Roster]:
        return (
            session.query(Roster)
            .filter(Roster.chain_id == chain_id)
            .order_by(Roster.version_number.desc())
            .all()
        )

    @staticmethod
    def shifts_for(session: Session, roster_id: str) -> List[RosterShift]:
        return (
            session.query(RosterShift)
            .filter(RosterShift.roster_id == roster_id)
            .order_by(RosterShift.date, RosterShift.start_time)
            .all()
        )

    @staticmethod
    def history_for(session: Session, roster_id: str) -> List[RosterHistory]:
        return (
            session.query(RosterHistory)
            .filter(RosterHistory.roster_id == roster_id)
            .order_by(RosterHistory.performed_at.desc(), RosterHistory.id.desc())
            .all()
        )
