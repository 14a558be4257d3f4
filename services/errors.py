# services/errors.py
from __future__ import annotations


class RosterPipelineError(RuntimeError):
    """Base class for user-actionable pipeline failures."""

    kind = "pipeline_error"


class ModelCallFailed(RosterPipelineError):
    """Vision model call failed or returned something that is not a JSON object. Retriable."""

    kind = "model_call_failed"


class SessionNotFound(RosterPipelineError):
    """Extraction session missing or expired; the caller must re-upload."""

    kind = "session_not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Extraction session not found: {session_id}. Please re-upload the file.")
        self.session_id = session_id


class VenueAccessDenied(RosterPipelineError):
    kind = "venue_access_denied"

    def __init__(self, venue_id: str) -> None:
        super().__init__(f"Venue not found or access denied: {venue_id}")
        self.venue_id = venue_id


class RosterConflict(RosterPipelineError):
    """An active roster already exists for the venue/week and no new version was requested."""

    kind = "roster_conflict"

    def __init__(self, venue_id: str, week_start: str, existing_roster_id: str) -> None:
        super().__init__(
            f"A roster already exists for venue {venue_id}, week of {week_start} "
            f"(roster {existing_roster_id})"
        )
        self.venue_id = venue_id
        self.week_start = week_start
        self.existing_roster_id = existing_roster_id


class VersionNumberTaken(RosterConflict):
    """A requested version number does not come after the latest version in its chain."""

    kind = "version_number_taken"

    def __init__(self, venue_id: str, week_start: str, existing_roster_id: str, requested: int, latest: int) -> None:
        RosterPipelineError.__init__(
            self, f"Version {requested} is not after the latest version {latest} for venue {venue_id}, week of {week_start}"
        )
        self.venue_id = venue_id
        self.week_start = week_start
        self.existing_roster_id = existing_roster_id
        self.requested = requested
        self.latest = latest


class PersistenceFailure(RosterPipelineError):
    """Roster transaction rolled back; nothing was left active."""

    kind = "persistence_failure"


class RosterNotFound(RosterPipelineError):
    kind = "roster_not_found"

    def __init__(self, roster_id: str) -> None:
        super().__init__(f"Roster not found: {roster_id}")
        self.roster_id = roster_id


class VersionChainMismatch(RosterPipelineError):
    kind = "version_chain_mismatch"


class UnsupportedImage(RosterPipelineError):
    kind = "unsupported_image"


class StaffNotFound(RosterPipelineError):
    kind = "staff_not_found"

    def __init__(self, staff_id: str) -> None:
        super().__init__(f"Staff member not found for this venue: {staff_id}")
        self.staff_id = staff_id


class ExtractionNotReady(RosterPipelineError):
    """Session exists but holds no usable extraction (still pending, failed, or no week start)."""

    kind = "extraction_not_ready"
