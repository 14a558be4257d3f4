from __future__ import annotations

from typing import Any, List

import pytest

from services.ingestion.storage import LocalBlobStore
from services.pipeline import PipelineConfig, RosterPipeline
from services.rosters.db import Database
from services.rosters.models import StaffMember, Venue
from services.rosters.reconciler import RosterReconciler
from services.rosters.repository import StaffDirectory
from services.sessions.repository import InMemorySessionRepository
from tests.helpers import VENUE_ID, FakeVisionClient


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_tables()
    with database.transaction() as s:
        s.add(Venue(id=VENUE_ID, name="The Local"))
        s.add(StaffMember(id="s-john", venue_id=VENUE_ID, first_name="John", last_name="Smith", email="john@x.io"))
        s.add(StaffMember(id="s-alice", venue_id=VENUE_ID, first_name="Alice", last_name="Brown", email="alice@x.io"))
        s.add(StaffMember(id="s-maria", venue_id=VENUE_ID, first_name="Maria", last_name="Lopez", email="maria@x.io"))
    yield database
    database.drop_tables()


@pytest.fixture
def make_pipeline(db, tmp_path):
    def _make(responses: List[Any], **config: Any) -> RosterPipeline:
        return RosterPipeline(
            vision_client=FakeVisionClient(responses),
            sessions=InMemorySessionRepository(),
            blobs=LocalBlobStore(root_dir=str(tmp_path / "uploads")),
            staff=StaffDirectory(db),
            reconciler=RosterReconciler(db),
            config=PipelineConfig(**config),
        )

    return _make
