# tests/integration/test_api_contract.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from apps.api.app_factory import create_app
from services.errors import ModelCallFailed
from tests.helpers import VENUE_ID, extraction, png_bytes, shift

SHIFTS = [
    shift("John Smith", "2024-03-04", "09:00", "17:00"),
    shift("Alice Brown", "2024-03-05", "12:00", "20:00"),
    shift("Zed Unknown", "2024-03-06", "10:00", "14:00"),
]


@pytest.fixture
def client_for(make_pipeline):
    def _client(responses, **config):
        pipeline = make_pipeline(responses, **config)
        return TestClient(create_app(pipeline=pipeline, max_concurrency=2)), pipeline

    return _client


def _upload(client, venue_id=VENUE_ID, blob=None):
    return client.post(
        f"/extractions?venue_id={venue_id}",
        files={"file": ("roster.png", blob or png_bytes(), "image/png")},
    )


def test_health(client_for):
    client, _ = client_for([])
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_upload_returns_extracted_session(client_for):
    client, _ = client_for([extraction(SHIFTS, score=92)])
    r = _upload(client)
    assert r.status_code == 200

    j = r.json()
    assert j["status"] == "EXTRACTED"
    assert j["venue_id"] == VENUE_ID
    assert j["file_name"] == "roster.png"
    assert len(j["data"]["shifts"]) == 3
    assert j["validation"]["label"] in ("excellent", "good", "fair", "poor", "reject")
    assert j["matches"]["matched_count"] == 2
    assert j["matches"]["unmatched_count"] == 1

    again = client.get(f"/extractions/{j['id']}")
    assert again.status_code == 200
    assert again.json()["id"] == j["id"]


def test_upload_error_statuses(client_for):
    client, _ = client_for([ModelCallFailed("model offline")] * 3)

    r = _upload(client, blob=b"not an image at all")
    assert r.status_code == 415
    assert r.json()["error"] == "unsupported_image"

    r = _upload(client, venue_id="other-venue")
    assert r.status_code == 403

    r = _upload(client)
    assert r.status_code == 502
    assert r.json()["error"] == "model_call_failed"


def test_unknown_session_is_404_with_error_payload(client_for):
    client, _ = client_for([])
    r = client.get("/extractions/nope")
    assert r.status_code == 404
    body = r.json()
    assert set(body) == {"error", "detail"}
    assert body["error"] == "session_not_found"


def test_manual_match_and_confirm(client_for):
    client, _ = client_for([extraction(SHIFTS, score=92)])
    sid = _upload(client).json()["id"]

    r = client.post(f"/extractions/{sid}/matches", json={"extracted_name": "Zed Unknown", "staff_id": "missing"})
    assert r.status_code == 422
    assert r.json()["error"] == "staff_not_found"

    r = client.post(f"/extractions/{sid}/matches", json={"extracted_name": "Zed Unknown", "staff_id": "s-maria"})
    assert r.status_code == 200
    assert r.json()["unmatched_count"] == 0

    r = client.post(f"/extractions/{sid}/confirm", json={"created_by": "manager"})
    assert r.status_code == 201
    created = r.json()
    assert created["version_number"] == 1
    assert created["parent_id"] is None

    assert client.get(f"/extractions/{sid}").status_code == 404


def test_second_confirm_for_same_week_conflicts(client_for):
    client, _ = client_for([extraction(SHIFTS, score=92), extraction(SHIFTS, score=92)])
    first = client.post(f"/extractions/{_upload(client).json()['id']}/confirm", json={}).json()

    sid = _upload(client).json()["id"]
    r = client.post(f"/extractions/{sid}/confirm", json={})
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "roster_conflict"
    assert body["existing_roster_id"] == first["roster_id"]
    assert body["week_start"] == "2024-03-04"

    r = client.post(f"/extractions/{sid}/confirm", json={"create_as_new_version": True})
    assert r.status_code == 201
    assert r.json()["parent_id"] == first["roster_id"]


def test_cancel_is_idempotent(client_for):
    client, _ = client_for([extraction(SHIFTS, score=92)])
    sid = _upload(client).json()["id"]

    assert client.delete(f"/extractions/{sid}").json() == {"session_id": sid, "cancelled": True}
    assert client.delete(f"/extractions/{sid}").json() == {"session_id": sid, "cancelled": False}


def test_roster_version_endpoints(client_for):
    changed = [shift("John Smith", "2024-03-04", "09:00", "18:00"), SHIFTS[1]]
    client, _ = client_for([extraction(SHIFTS, score=92), extraction(changed, score=92)])

    v1 = client.post(f"/extractions/{_upload(client).json()['id']}/confirm", json={}).json()

    dup = client.get(f"/venues/{VENUE_ID}/rosters/duplicate?week_start=2024-03-04").json()
    assert dup["exists"] is True
    assert dup["roster_id"] == v1["roster_id"]
    assert dup["next_version_number"] == 2

    sid = _upload(client).json()["id"]
    v2 = client.post(f"/extractions/{sid}/confirm", json={"create_as_new_version": True}).json()

    versions = client.get(f"/rosters/{v2['roster_id']}/versions").json()["versions"]
    assert [v["version_number"] for v in versions] == [2, 1]

    diff = client.get(f"/rosters/diff?source={v1['roster_id']}&target={v2['roster_id']}").json()
    assert diff["summary"]["modified_count"] == 1
    assert diff["modified"][0]["changes"] == ["End time: 17:00 → 18:00"]

    r = client.post(f"/rosters/{v1['roster_id']}/restore", json={"performed_by": "manager"})
    assert r.status_code == 201
    v3 = r.json()
    assert v3["version_number"] == 3
    assert v3["parent_id"] == v2["roster_id"]

    history = client.get(f"/rosters/{v3['roster_id']}/history").json()["history"]
    assert history[0]["action"] == "RESTORED"
    assert history[0]["performed_by"] == "manager"

    assert client.get("/rosters/missing/versions").status_code == 404


def test_confirm_with_stale_version_number_is_409(client_for):
    client, _ = client_for([extraction(SHIFTS, score=92), extraction(SHIFTS, score=92)])
    first = client.post(f"/extractions/{_upload(client).json()['id']}/confirm", json={}).json()

    sid = _upload(client).json()["id"]
    r = client.post(f"/extractions/{sid}/confirm", json={"create_as_new_version": True, "version_number": 1})
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "version_number_taken"
    assert body["existing_roster_id"] == first["roster_id"]
    assert client.get(f"/extractions/{sid}").status_code == 200
