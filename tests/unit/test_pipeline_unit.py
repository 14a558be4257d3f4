from __future__ import annotations

import pytest

from services.errors import (
    ExtractionNotReady,
    ModelCallFailed,
    RosterConflict,
    SessionNotFound,
    StaffNotFound,
    UnsupportedImage,
    VenueAccessDenied,
)
from services.ingestion.storage import uri_to_path
from services.sessions.repository import EXTRACTED, FAILED
from tests.helpers import VENUE_ID, extraction, png_bytes, shift

SHIFTS = [
    shift("John Smith", "2024-03-04", "09:00", "17:00"),
    shift("Jon Smyth", "2024-03-05", "09:00", "17:00"),
    shift("Zed Unknown", "2024-03-06", "10:00", "14:00"),
]


def test_upload_and_extract_matches_staff(make_pipeline):
    pipe = make_pipeline([extraction(SHIFTS, score=92)])
    session = pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID, file_name="week.png")

    assert session.status == EXTRACTED
    assert session.model == "fake-vision"
    assert session.image_width == 1000
    assert len(session.attempts) == 1
    by_name = {m.extracted_name: m for m in session.matches.matches}
    assert by_name["John Smith"].match_type == "exact_name"
    assert by_name["Jon Smyth"].match_type == "fuzzy_name"
    assert by_name["Zed Unknown"].staff_id is None
    assert pipe.vision_client.calls[0]["mime_type"] == "image/png"


def test_start_session_rejects_bad_input(make_pipeline):
    pipe = make_pipeline([])
    with pytest.raises(UnsupportedImage):
        pipe.start_session(b"%PDF-1.7", venue_id=VENUE_ID)
    with pytest.raises(VenueAccessDenied):
        pipe.start_session(png_bytes(), venue_id="elsewhere")


def test_failed_inline_extraction_cleans_up(make_pipeline, tmp_path):
    pipe = make_pipeline([ModelCallFailed("down")] * 3)
    with pytest.raises(ModelCallFailed):
        pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID)
    assert not any(p.is_file() for p in (tmp_path / "uploads").rglob("*"))


def test_run_extraction_marks_failure_on_session(make_pipeline):
    pipe = make_pipeline(["garbage"] * 3)
    session = pipe.start_session(png_bytes(), venue_id=VENUE_ID)
    out = pipe.run_extraction(session.id)
    assert out.status == FAILED
    assert out.error
    assert pipe.get_session(session.id).status == FAILED


def test_manual_match_then_confirm_persists_and_drops_session(make_pipeline):
    pipe = make_pipeline([extraction(SHIFTS, score=92)])
    session = pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID)

    with pytest.raises(StaffNotFound):
        pipe.manual_match(session.id, "Zed Unknown", "nope")
    updated = pipe.manual_match(session.id, "zed unknown", "s-maria")
    assert updated.matches.unmatched_count == 0

    created = pipe.confirm(session.id, created_by="mgr")
    assert created.version_number == 1
    with pytest.raises(SessionNotFound):
        pipe.get_session(session.id)

    versions = pipe.reconciler.list_versions(created.roster_id)
    assert versions[0].shift_count == 3


def test_confirm_conflict_keeps_session(make_pipeline):
    pipe = make_pipeline([extraction(SHIFTS, score=92), extraction(SHIFTS, score=92)])
    first = pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID)
    pipe.confirm(first.id)

    second = pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID)
    with pytest.raises(RosterConflict):
        pipe.confirm(second.id)
    assert pipe.get_session(second.id).status == EXTRACTED

    created = pipe.confirm(second.id, create_as_new_version=True)
    assert created.version_number == 2


def test_confirm_requires_extraction_and_week(make_pipeline):
    pipe = make_pipeline([])
    pending = pipe.start_session(png_bytes(), venue_id=VENUE_ID)
    with pytest.raises(ExtractionNotReady):
        pipe.confirm(pending.id)
    with pytest.raises(ExtractionNotReady):
        pipe._week_start("04/03/2024")


def test_cancel_deletes_blob_then_session_and_is_idempotent(make_pipeline):
    pipe = make_pipeline([])
    session = pipe.start_session(png_bytes(), venue_id=VENUE_ID, file_name="r.png")
    path = uri_to_path(session.file_url)
    assert path.exists()

    assert pipe.cancel(session.id) is True
    assert not path.exists()
    assert pipe.cancel(session.id) is False


def test_evict_expired_releases_uploads(make_pipeline):
    pipe = make_pipeline([], session_ttl_s=60)
    old = pipe.start_session(png_bytes(), venue_id=VENUE_ID)
    path = uri_to_path(old.file_url)

    assert pipe.evict_expired(now=old.created_at + 30) == []
    assert pipe.evict_expired(now=old.created_at + 61) == [old.id]
    assert not path.exists()


def test_unexpected_error_during_inline_extraction_releases_upload(make_pipeline, tmp_path, monkeypatch):
    pipe = make_pipeline([])

    def boom(*_a, **_k):
        raise KeyError("bad layout")

    monkeypatch.setattr(pipe, "extract_image", boom)
    with pytest.raises(KeyError):
        pipe.upload_and_extract(png_bytes(), venue_id=VENUE_ID)
    assert not any(p.is_file() for p in (tmp_path / "uploads").rglob("*"))
    assert pipe.sessions.list_expired(now=float("inf"), ttl_s=0) == []
