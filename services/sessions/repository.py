# services/sessions/repository.py
from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from services.errors import SessionNotFound
from services.extraction.domain import ExtractionData
from services.ingestion.storage import write_json_atomic
from services.matching.staff_matcher import MatchReport
from services.validation.extraction_validator import ValidationResult

logger = logging.getLogger(__name__)

PENDING = "PENDING"
EXTRACTED = "EXTRACTED"
FAILED = "FAILED"


@dataclass
class ExtractionSession:
    """State of one uploaded roster image between upload and confirm/cancel."""

    id: str
    venue_id: str
    file_url: str
    file_name: str
    mime_type: str
    status: str = PENDING
    created_at: float = field(default_factory=time.time)
    error: Optional[str] = None
    data: Optional[ExtractionData] = None
    validation: Optional[ValidationResult] = None
    matches: Optional[MatchReport] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)
    image_width: int = 0
    image_height: int = 0
    degraded_steps: List[str] = field(default_factory=list)
    model: Optional[str] = None
    processing_time_ms: Optional[int] = None
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "status": self.status,
            "created_at": self.created_at,
            "error": self.error,
            "data": self.data.to_dict() if self.data is not None else None,
            "validation": self.validation.to_dict() if self.validation is not None else None,
            "matches": self.matches.to_dict() if self.matches is not None else None,
            "attempts": list(self.attempts),
            "image_width": self.image_width,
            "image_height": self.image_height,
            "degraded_steps": list(self.degraded_steps),
            "model": self.model,
            "processing_time_ms": self.processing_time_ms,
            "task_id": self.task_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExtractionSession":
        return cls(
            id=d["id"],
            venue_id=d["venue_id"],
            file_url=d.get("file_url") or "",
            file_name=d.get("file_name") or "",
            mime_type=d.get("mime_type") or "",
            status=d.get("status") or PENDING,
            created_at=float(d.get("created_at") or 0.0),
            error=d.get("error"),
            data=ExtractionData.from_dict(d["data"]) if d.get("data") else None,
            validation=ValidationResult.from_dict(d["validation"]) if d.get("validation") else None,
            matches=MatchReport.from_dict(d["matches"]) if d.get("matches") else None,
            attempts=list(d.get("attempts") or []),
            image_width=int(d.get("image_width") or 0),
            image_height=int(d.get("image_height") or 0),
            degraded_steps=list(d.get("degraded_steps") or []),
            model=d.get("model"),
            processing_time_ms=d.get("processing_time_ms"),
            task_id=d.get("task_id"),
        )


class SessionRepository(Protocol):
    def create(self, session: ExtractionSession) -> ExtractionSession: ...
    def get(self, session_id: str) -> ExtractionSession: ...
    def save(self, session: ExtractionSession) -> None: ...
    def delete(self, session_id: str) -> bool: ...
    def list_expired(self, now: float, ttl_s: float) -> List[ExtractionSession]: ...


class InMemorySessionRepository:
    """Process-local sessions; callers get copies so concurrent edits never alias."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, ExtractionSession] = {}

    def create(self, session: ExtractionSession) -> ExtractionSession:
        with self._lock:
            self._items[session.id] = copy.deepcopy(session)
        return session

    def get(self, session_id: str) -> ExtractionSession:
        with self._lock:
            item = self._items.get(session_id)
            if item is None:
                raise SessionNotFound(session_id)
            return copy.deepcopy(item)

    def save(self, session: ExtractionSession) -> None:
        with self._lock:
            if session.id not in self._items:
                raise SessionNotFound(session.id)
            self._items[session.id] = copy.deepcopy(session)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None

    def list_expired(self, now: float, ttl_s: float) -> List[ExtractionSession]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._items.values() if now - s.created_at > ttl_s]


class FileSessionRepository:
    """
    One JSON file per session under `root_dir`, replaced atomically on every write.
    Lets the API process and the Celery workers share sessions.
    """

    def __init__(self, root_dir: str) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> Path:
        safe = "".join(c for c in session_id if c.isalnum() or c in "-_")
        return self.root / f"{safe}.json"

    def _read(self, path: Path) -> Optional[ExtractionSession]:
        try:
            return ExtractionSession.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError) as e:
            # truncated or hand-edited file; treated as missing
            logger.warning("Unreadable session file %s: %s", path, e)
            return None

    def create(self, session: ExtractionSession) -> ExtractionSession:
        with self._lock:
            write_json_atomic(self._path(session.id), session.to_dict())
        return session

    def get(self, session_id: str) -> ExtractionSession:
        item = self._read(self._path(session_id))
        if item is None:
            raise SessionNotFound(session_id)
        return item

    def save(self, session: ExtractionSession) -> None:
        path = self._path(session.id)
        with self._lock:
            if not path.exists():
                raise SessionNotFound(session.id)
            write_json_atomic(path, session.to_dict())

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink(missing_ok=True)
            return True

    def list_expired(self, now: float, ttl_s: float) -> List[ExtractionSession]:
        out: List[ExtractionSession] = []
        for path in sorted(self.root.glob("*.json")):
            item = self._read(path)
            if item is not None and now - item.created_at > ttl_s:
                out.append(item)
        return out
