from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from services.errors import (
    PersistenceFailure,
    RosterConflict,
    RosterNotFound,
    VersionChainMismatch,
    VersionNumberTaken,
)
from services.extraction.domain import ExtractedShift
from services.matching.staff_matcher import MatchedShift
from services.rosters.models import Roster, RosterShift, UnmatchedRosterEntry
from services.rosters.reconciler import RosterCreateRequest, RosterReconciler
from tests.helpers import VENUE_ID

WEEK = date(2024, 3, 4)


def ms(name, staff_id, day="2024-03-04", start="09:00", end="17:00", has_break=False):
    s = ExtractedShift(date=day, day="", role="Bar", staff_name=name, start_time=start, end_time=end, has_break=has_break)
    return MatchedShift(shift=s, staff_id=staff_id, match_confidence=100 if staff_id else 0)


def request(shifts, **kw):
    return RosterCreateRequest(venue_id=VENUE_ID, week_start=WEEK, shifts=shifts, **kw)


def test_create_first_version(db):
    rec = RosterReconciler(db)
    created = rec.create_from_extraction(
        request([ms("John Smith", "s-john", has_break=True), ms("Ghost", None), ms("Ghost", None, day="2024-03-05")], created_by="u1")
    )
    assert created.version_number == 1
    assert created.chain_id

    s = db.get_session()
    roster = s.get(Roster, created.roster_id)
    assert roster.is_active and roster.status == "DRAFT"
    assert roster.end_date == date(2024, 3, 10)
    shifts = s.query(RosterShift).filter_by(roster_id=roster.id).all()
    assert [(x.staff_id, x.notes, x.original_name) for x in shifts] == [("s-john", "Break included", "John Smith")]
    unmatched = s.query(UnmatchedRosterEntry).filter_by(roster_id=roster.id).all()
    assert [(u.original_name, u.shift_count) for u in unmatched] == [("Ghost", 2)]
    s.close()

    history = rec.history(created.roster_id)
    assert history[0]["action"] == "CREATED"
    assert history[0]["changes"]["unmatched_count"] == 1


def test_conflict_leaves_existing_version_untouched(db):
    rec = RosterReconciler(db)
    first = rec.create_from_extraction(request([ms("John Smith", "s-john")]))

    with pytest.raises(RosterConflict) as ei:
        rec.create_from_extraction(request([ms("Alice Brown", "s-alice")]))
    assert ei.value.existing_roster_id == first.roster_id

    versions = rec.list_versions(first.roster_id)
    assert len(versions) == 1
    assert versions[0].is_active
    assert versions[0].shift_count == 1


def test_new_version_deactivates_previous_and_extends_chain(db):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john")]))
    v2 = rec.create_from_extraction(request([ms("John Smith", "s-john", end="18:00")], create_as_new_version=True))

    assert v2.chain_id == v1.chain_id
    assert v2.version_number == 2
    assert v2.parent_id == v1.roster_id

    versions = rec.list_versions(v1.roster_id)
    assert [(v.version_number, v.is_active) for v in versions] == [(2, True), (1, False)]
    assert rec.history(v2.roster_id)[0]["action"] == "VERSION_CREATED"

    dup = rec.check_duplicate(VENUE_ID, WEEK)
    assert dup.exists and dup.roster_id == v2.roster_id
    assert dup.next_version_number == 3


def test_duplicate_check_for_empty_week(db):
    assert RosterReconciler(db).check_duplicate(VENUE_ID, date(2030, 1, 7)).exists is False


def test_diff_between_versions(db):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john"), ms("Alice Brown", "s-alice", day="2024-03-05")]))
    v2 = rec.create_from_extraction(
        request([ms("John Smith", "s-john", end="18:00"), ms("Maria Lopez", "s-maria", day="2024-03-05")], create_as_new_version=True)
    )

    diff = rec.diff(v1.roster_id, v2.roster_id)
    assert diff.summary["modified_count"] == 1
    assert diff.summary["reassigned_count"] == 1
    assert diff.reassigned[0].previous_staff_name == "Alice Brown"
    assert diff.reassigned[0].new_staff_name == "Maria Lopez"

    same = rec.diff(v1.roster_id, v1.roster_id)
    assert same.summary["total_changes"] == 0


def test_diff_rejects_rosters_from_different_chains(db):
    rec = RosterReconciler(db)
    a = rec.create_from_extraction(request([ms("John Smith", "s-john")]))
    b = rec.create_from_extraction(
        RosterCreateRequest(venue_id=VENUE_ID, week_start=date(2024, 3, 11), shifts=[ms("John Smith", "s-john", day="2024-03-11")])
    )
    with pytest.raises(VersionChainMismatch):
        rec.diff(a.roster_id, b.roster_id)
    with pytest.raises(RosterNotFound):
        rec.diff(a.roster_id, "missing")


def test_restore_copies_older_version_as_new_active_one(db):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john"), ms("Alice Brown", "s-alice")]))
    rec.create_from_extraction(request([ms("John Smith", "s-john")], create_as_new_version=True))

    v3 = rec.restore_version(v1.roster_id, performed_by="u9")
    assert v3.version_number == 3
    assert v3.chain_id == v1.chain_id

    assert rec.diff(v1.roster_id, v3.roster_id).summary["total_changes"] == 0
    h = rec.history(v3.roster_id)[0]
    assert h["action"] == "RESTORED"
    assert h["changes"]["restored_from_version"] == 1
    active = [v for v in rec.list_versions(v1.roster_id) if v.is_active]
    assert [v.roster_id for v in active] == [v3.roster_id]


def test_failed_transaction_rolls_back_everything(db, monkeypatch):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john")]))

    def broken(*_a, **_k):
        raise SQLAlchemyError("disk full")

    # fails after the previous version was deactivated and the new one added
    monkeypatch.setattr("services.rosters.reconciler._parse_date", broken)
    with pytest.raises(PersistenceFailure):
        rec.create_from_extraction(request([ms("John Smith", "s-john")], create_as_new_version=True))

    versions = rec.list_versions(v1.roster_id)
    assert [(v.version_number, v.is_active) for v in versions] == [(1, True)]


@pytest.mark.parametrize("requested", [1, 2])
def test_requested_version_must_come_after_chain_max(db, requested):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john")]))
    rec.create_from_extraction(request([ms("John Smith", "s-john")], create_as_new_version=True))

    with pytest.raises(VersionNumberTaken) as ei:
        rec.create_from_extraction(
            request([ms("Alice Brown", "s-alice")], create_as_new_version=True, version_number=requested)
        )
    assert ei.value.latest == 2

    assert [v.version_number for v in rec.list_versions(v1.roster_id)] == [2, 1]
    v5 = rec.create_from_extraction(request([ms("John Smith", "s-john")], create_as_new_version=True, version_number=5))
    assert v5.version_number == 5


def test_chain_version_pairs_are_unique_in_the_table(db):
    rec = RosterReconciler(db)
    v1 = rec.create_from_extraction(request([ms("John Smith", "s-john")]))

    s = db.get_session()
    s.add(
        Roster(
            venue_id=VENUE_ID,
            name="copy",
            start_date=date(2024, 3, 11),
            end_date=date(2024, 3, 17),
            chain_id=v1.chain_id,
            version_number=1,
            is_active=False,
        )
    )
    with pytest.raises(IntegrityError):
        s.commit()
    s.rollback()
    s.close()
