from __future__ import annotations

from celery.utils.log import get_task_logger

from apps.workers.celery_app import celery_app
from apps.workers.pipeline_loader import get_pipeline
from services.errors import SessionNotFound
from services.pipeline import RosterPipeline
from services.sessions.repository import EXTRACTED, FAILED

logger = get_task_logger(__name__)


class TransientWorkerError(RuntimeError):
    """Retriable."""


def _mark_failed(pipe: RosterPipeline, session_id: str, detail: str) -> None:
    try:
        session = pipe.get_session(session_id)
    except SessionNotFound:
        return
    session.status = FAILED
    session.error = detail
    pipe.sessions.save(session)


@celery_app.task(
    name="roster.extract_session",
    bind=True,
    autoretry_for=(TransientWorkerError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def extract_session(self, session_id: str) -> dict:
    pipe = get_pipeline()
    try:
        try:
            session = pipe.run_extraction(session_id)
        except OSError as e:
            # upload not readable yet (shared volume lag, NFS hiccup)
            raise TransientWorkerError(str(e)) from e

        logger.info("Session %s finished with status %s", session_id, session.status)
        if session.status == EXTRACTED:
            return {"ok": True, "session_id": session_id, "status": session.status}
        return {"ok": False, "session_id": session_id, "status": session.status, "error": session.error}

    except SessionNotFound as e:
        logger.warning("Session %s vanished before extraction: %s", session_id, e)
        return {"ok": False, "error": e.kind, "detail": str(e)[:300]}

    except TransientWorkerError:
        raise

    except Exception as e:
        logger.exception("Extraction job for session %s failed", session_id)
        detail = str(e)[:300]
        _mark_failed(pipe, session_id, detail)
        return {"ok": False, "session_id": session_id, "status": FAILED, "error": "job_failed", "detail": detail}


@celery_app.task(name="roster.evict_expired_sessions")
def evict_expired_sessions() -> dict:
    evicted = get_pipeline().evict_expired()
    logger.info("Evicted %d expired sessions", len(evicted))
    return {"evicted": evicted}
