"""
Celery Application Configuration

Configures Celery with Redis broker and result backend, the payroll sync
queue and the periodic schedule check.
"""

import os

from celery import Celery
from celery.schedules import crontab

from backend.config import get_settings

settings = get_settings()

RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", settings.redis_url)

app = Celery(
    "payroll_sync",
    broker=settings.redis_url,
    backend=RESULT_BACKEND,
    include=["workers.tasks.sync_tasks"],
)

app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    # Result expiry
    result_expires=86400,  # 24 hours

    # Routing
    task_routes={
        "workers.tasks.sync_tasks.*": {"queue": "sync"},
    },
    task_default_queue="default",

    worker_concurrency=4,

    # Provider APIs are rate limited per account
    task_annotations={
        "workers.tasks.sync_tasks.sync_payroll_provider": {
            "rate_limit": "10/m",
        },
    },
)

app.conf.beat_schedule = {
    # Enqueue configurations whose sync interval has elapsed
    "sync-due-payroll-providers": {
        "task": "workers.tasks.sync_tasks.sync_due_payroll_providers",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "sync"},
    },
}

# Initialize Sentry for error monitoring in workers
if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"payroll-sync-worker@{settings.app_version}",
        traces_sample_rate=0.1,
        integrations=[CeleryIntegration()],
    )
