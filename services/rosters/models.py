"""SQLAlchemy models for venues, staff and versioned rosters."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)

    staff = relationship("StaffMember", back_populates="venue")

    def __repr__(self) -> str:
        return f"<Venue(id={self.id}, name='{self.name}')>"


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(String(36), primary_key=True, default=_uuid)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(200), nullable=False, default="")
    active = Column(Boolean, nullable=False, default=True)

    venue = relationship("Venue", back_populates="staff")

    def __repr__(self) -> str:
        return f"<StaffMember(id={self.id}, name='{self.first_name} {self.last_name}')>"


class Roster(Base):
    """
    One version of a venue's weekly roster.

    Versions of the same venue/week share `chain_id`; `version_number` orders them and
    `parent_id` points at the version that was active when this one was created.
    Past versions are never edited, only deactivated.
    """

    __tablename__ = "rosters"
    __table_args__ = (
        # at most one active version per venue and week
        Index(
            "uq_rosters_active_week",
            "venue_id",
            "start_date",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        UniqueConstraint("chain_id", "version_number", name="uq_rosters_chain_version"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT")  # DRAFT, PUBLISHED, ARCHIVED
    source_file_url = Column(Text, nullable=True)
    source_file_name = Column(String(255), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Version chain
    chain_id = Column(String(36), nullable=True, index=True)
    version_number = Column(Integer, nullable=False, default=1)
    parent_id = Column(String(36), ForeignKey("rosters.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    shifts = relationship("RosterShift", back_populates="roster", cascade="all, delete-orphan")
    unmatched_entries = relationship("UnmatchedRosterEntry", back_populates="roster", cascade="all, delete-orphan")
    history = relationship("RosterHistory", back_populates="roster", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Roster(id={self.id}, venue={self.venue_id}, start={self.start_date}, v{self.version_number}, active={self.is_active})>"


class RosterShift(Base):
    __tablename__ = "roster_shifts"

    id = Column(String(36), primary_key=True, default=_uuid)
    roster_id = Column(String(36), ForeignKey("rosters.id"), nullable=False, index=True)
    staff_id = Column(String(36), ForeignKey("staff_members.id"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    position = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    original_name = Column(String(200), nullable=True)  # name as read off the roster image

    roster = relationship("Roster", back_populates="shifts")
    staff = relationship("StaffMember")

    def __repr__(self) -> str:
        return f"<RosterShift(id={self.id}, staff={self.staff_id}, {self.date} {self.start_time}-{self.end_time})>"


class UnmatchedRosterEntry(Base):
    __tablename__ = "unmatched_roster_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    roster_id = Column(String(36), ForeignKey("rosters.id"), nullable=False, index=True)
    original_name = Column(String(200), nullable=False)
    shift_count = Column(Integer, nullable=False, default=0)

    roster = relationship("Roster", back_populates="unmatched_entries")


class RosterHistory(Base):
    """Append-only audit trail."""

    __tablename__ = "roster_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    roster_id = Column(String(36), ForeignKey("rosters.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    action = Column(String(30), nullable=False)  # CREATED, VERSION_CREATED, RESTORED
    performed_by = Column(String(36), nullable=True)
    performed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    changes = Column(JSON, nullable=True)

    roster = relationship("Roster", back_populates="history")
