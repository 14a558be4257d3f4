# services/pipeline.py
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, List, Optional, Tuple
from uuid import uuid4

from services.errors import (
    ExtractionNotReady,
    ModelCallFailed,
    SessionNotFound,
    StaffNotFound,
    UnsupportedImage,
    VenueAccessDenied,
)
from services.extraction.retry import DEFAULT_MAX_RETRIES, RetryController, RetryOutcome
from services.ingestion.storage import BlobStore
from services.matching.staff_matcher import MatchedShift, apply_manual_match, match_shifts
from services.preprocessing.image import PreprocessedImage, PreprocessOptions, detect_mime_type, preprocess_image
from services.rosters.reconciler import RosterCreated, RosterCreateRequest, RosterReconciler
from services.rosters.repository import StaffDirectory
from services.sessions.repository import EXTRACTED, FAILED, ExtractionSession, SessionRepository
from services.validation.extraction_validator import ExtractionValidator

logger = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class PipelineConfig:
    max_retries: int = DEFAULT_MAX_RETRIES
    allow_overnight: bool = False
    session_ttl_s: float = 24 * 3600.0
    preprocess: PreprocessOptions = field(default_factory=PreprocessOptions)


def _persistable(ms: MatchedShift) -> bool:
    s = ms.shift
    return bool(s.date) and bool(_HHMM_RE.match(s.start_time or "")) and bool(_HHMM_RE.match(s.end_time or ""))


class RosterPipeline:
    """
    Session orchestration: upload -> extract -> match -> (manual fixes) -> confirm | cancel.

    Collaborators are injected so the API, the Celery worker and the tests can each wire
    their own vision client, blob store, session store and database.
    """

    def __init__(
        self,
        *,
        vision_client: Any,
        sessions: SessionRepository,
        blobs: BlobStore,
        staff: StaffDirectory,
        reconciler: RosterReconciler,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.vision_client = vision_client
        self.sessions = sessions
        self.blobs = blobs
        self.staff = staff
        self.reconciler = reconciler
        self.config = config or PipelineConfig()

    def extract_image(self, blob: bytes) -> Tuple[PreprocessedImage, RetryOutcome]:
        pre = preprocess_image(blob, self.config.preprocess)
        controller = RetryController(
            client=self.vision_client,
            validator=ExtractionValidator(allow_overnight=self.config.allow_overnight),
            max_retries=self.config.max_retries,
        )
        return pre, controller.run(pre.data, pre.mime_type)

    # --- session lifecycle ---

    def start_session(self, blob: bytes, *, venue_id: str, file_name: str = "") -> ExtractionSession:
        mime_type = detect_mime_type(blob)
        if mime_type is None:
            raise UnsupportedImage("Unsupported image format. Upload a PNG, JPEG, WebP or GIF.")
        if not self.staff.venue_exists(venue_id):
            raise VenueAccessDenied(venue_id)

        url = self.blobs.upload(blob, venue_id, file_name)
        session = ExtractionSession(
            id=str(uuid4()),
            venue_id=venue_id,
            file_url=url,
            file_name=file_name,
            mime_type=mime_type,
        )
        self.sessions.create(session)
        logger.info("Session %s created for venue %s (%s, %d bytes)", session.id, venue_id, mime_type, len(blob))
        return session

    def run_extraction(self, session_id: str) -> ExtractionSession:
        """Extract and match the stored upload; the session ends EXTRACTED or FAILED."""
        session = self.sessions.get(session_id)
        blob = self.blobs.download(session.file_url)

        started = time.perf_counter()
        pre, outcome = self.extract_image(blob)

        session.attempts = [a.to_dict() for a in outcome.attempts]
        session.image_width, session.image_height = pre.width, pre.height
        session.degraded_steps = list(pre.degraded_steps)
        session.model = getattr(self.vision_client, "model_name", None)
        session.processing_time_ms = int((time.perf_counter() - started) * 1000)

        if outcome.data is None:
            errors = [a.error for a in outcome.attempts if a.error]
            session.status = FAILED
            session.error = errors[-1] if errors else "No usable model output"
            self.sessions.save(session)
            logger.warning("Session %s failed after %d attempts: %s", session_id, outcome.attempt_count, session.error)
            return session

        staff = self.staff.list_venue_staff(session.venue_id)
        session.data = outcome.data
        session.validation = outcome.validation
        session.matches = match_shifts(outcome.data.shifts, staff)
        session.status = EXTRACTED
        session.error = None
        self.sessions.save(session)

        logger.info(
            "Session %s extracted: %d shifts, %.0f%% confidence, %d/%d names matched, %d attempts",
            session_id,
            len(outcome.data.shifts),
            outcome.validation.confidence,
            session.matches.matched_count,
            len(session.matches.matches),
            outcome.attempt_count,
        )
        return session

    def upload_and_extract(self, blob: bytes, *, venue_id: str, file_name: str = "") -> ExtractionSession:
        """Inline variant: a run that yields nothing usable is discarded and reported as ModelCallFailed."""
        session = self.start_session(blob, venue_id=venue_id, file_name=file_name)
        try:
            session = self.run_extraction(session.id)
        except Exception:
            self.cancel(session.id)
            raise
        if session.status == FAILED:
            self.cancel(session.id)
            raise ModelCallFailed(f"Extraction failed: {session.error}")
        return session

    def get_session(self, session_id: str) -> ExtractionSession:
        return self.sessions.get(session_id)

    def attach_task(self, session_id: str, task_id: str) -> ExtractionSession:
        session = self.sessions.get(session_id)
        session.task_id = task_id
        self.sessions.save(session)
        return session

    def manual_match(self, session_id: str, extracted_name: str, staff_id: str) -> ExtractionSession:
        session = self.sessions.get(session_id)
        if session.matches is None:
            raise ExtractionNotReady(f"Session {session_id} has no extraction to match against")

        member = self.staff.get_staff(session.venue_id, staff_id)
        if member is None:
            raise StaffNotFound(staff_id)

        apply_manual_match(session.matches, extracted_name, member)
        self.sessions.save(session)
        logger.info("Session %s: '%s' manually matched to staff %s", session_id, extracted_name, staff_id)
        return session

    def confirm(
        self,
        session_id: str,
        *,
        week_start: Optional[str] = None,
        create_as_new_version: bool = False,
        version_number: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> RosterCreated:
        """
        Persist the session's matched shifts as a roster version. The session is deleted
        only once the roster transaction has committed.
        """
        session = self.sessions.get(session_id)
        if session.status != EXTRACTED or session.data is None or session.matches is None:
            raise ExtractionNotReady(f"Session {session_id} has no completed extraction (status {session.status})")

        week = self._week_start(week_start or session.data.week_start)
        shifts = [ms for ms in session.matches.shifts if _persistable(ms)]
        skipped = len(session.matches.shifts) - len(shifts)
        if skipped:
            logger.warning("Session %s: %d shifts without a valid date/time were not saved", session_id, skipped)

        created = self.reconciler.create_from_extraction(
            RosterCreateRequest(
                venue_id=session.venue_id,
                week_start=week,
                shifts=shifts,
                create_as_new_version=create_as_new_version,
                version_number=version_number,
                created_by=created_by,
                source_file_url=session.file_url,
                source_file_name=session.file_name,
            )
        )
        self.sessions.delete(session_id)
        logger.info("Session %s confirmed as roster %s", session_id, created.roster_id)
        return created

    @staticmethod
    def _week_start(value: Optional[str]) -> date:
        if not value:
            raise ExtractionNotReady("Week start is unknown; supply week_start to confirm")
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError as e:
            raise ExtractionNotReady(f"Week start must be YYYY-MM-DD, got '{value}'") from e

    def cancel(self, session_id: str) -> bool:
        """Delete the uploaded file, then the session. Cancelling twice is a no-op."""
        try:
            session = self.sessions.get(session_id)
        except SessionNotFound:
            return False
        self.blobs.delete(session.file_url)
        removed = self.sessions.delete(session_id)
        logger.info("Session %s cancelled", session_id)
        return removed

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions older than the TTL together with their uploads. Returns evicted ids."""
        now = time.time() if now is None else now
        evicted: List[str] = []
        for session in self.sessions.list_expired(now, self.config.session_ttl_s):
            try:
                self.blobs.delete(session.file_url)
            except (OSError, ValueError) as e:
                logger.warning("Could not delete upload for expired session %s: %s", session.id, e)
            if self.sessions.delete(session.id):
                evicted.append(session.id)
        if evicted:
            logger.info("Evicted %d expired sessions", len(evicted))
        return evicted
