# apps/api/main.py
from apps.api.app_factory import create_app
from apps.api.jobs import create_jobs_router
from apps.common.settings import load_settings
from apps.workers.pipeline_loader import get_pipeline

settings = load_settings()
pipeline = get_pipeline()

app = create_app(pipeline=pipeline, max_concurrency=settings.max_concurrency)
app.include_router(create_jobs_router(pipeline=pipeline))
