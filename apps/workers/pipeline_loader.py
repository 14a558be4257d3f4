from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from apps.common.settings import AppSettings, load_settings
from services.extraction.vision_client import VisionClient, VisionClientConfig
from services.ingestion.storage import LocalBlobStore
from services.pipeline import PipelineConfig, RosterPipeline
from services.preprocessing.image import options_from_dict
from services.rosters.db import Database
from services.rosters.reconciler import RosterReconciler
from services.rosters.repository import StaffDirectory
from services.sessions.repository import FileSessionRepository

SQLITE_FILE_PREFIX = "sqlite:///"


def build_pipeline(settings: AppSettings) -> RosterPipeline:
    url = settings.database_url
    if url.startswith(SQLITE_FILE_PREFIX) and url != SQLITE_FILE_PREFIX + ":memory:":
        Path(url[len(SQLITE_FILE_PREFIX):]).expanduser().parent.mkdir(parents=True, exist_ok=True)

    db = Database(url)
    db.create_tables()

    vision_client = VisionClient(
        VisionClientConfig(
            base_url=settings.vision_url,
            model=settings.vision_model,
            timeout_s=settings.vision_timeout_s,
        )
    )

    return RosterPipeline(
        vision_client=vision_client,
        sessions=FileSessionRepository(root_dir=str(settings.sessions_dir)),
        blobs=LocalBlobStore(root_dir=str(settings.upload_dir)),
        staff=StaffDirectory(db),
        reconciler=RosterReconciler(db),
        config=PipelineConfig(
            max_retries=settings.max_retries,
            allow_overnight=settings.allow_overnight,
            session_ttl_s=settings.session_ttl_s,
            preprocess=options_from_dict(settings.preprocessing),
        ),
    )


@lru_cache(maxsize=1)
def get_pipeline() -> RosterPipeline:
    return build_pipeline(load_settings())
