"""
Sync Tasks

Background tasks that run payroll provider syncs. Expected provider failures
are recorded in the sync log by the service; only unexpected exceptions are
retried here.
"""

import asyncio
import logging
from datetime import date
from uuid import UUID

from workers.celery_app import app

logger = logging.getLogger(__name__)


@app.task(bind=True, max_retries=3, default_retry_delay=60)
def sync_payroll_provider(
    self,
    tenant_id: str,
    provider_type: str,
    sync_type: str = "full",
    start_date: str | None = None,
    end_date: str | None = None,
):
    """
    Run a sync for one tenant's payroll provider.

    ``start_date``/``end_date`` are ISO dates; hours are only pushed when
    both are given.
    """
    logger.info(f"Starting {sync_type} sync for {provider_type} (tenant={tenant_id})")
    try:
        results = asyncio.run(
            _async_sync_provider(UUID(tenant_id), provider_type, sync_type, start_date, end_date)
        )
    except Exception as exc:
        logger.error(f"Sync failed for {provider_type} (tenant={tenant_id}): {exc}")
        raise self.retry(exc=exc)

    logger.info(
        f"Sync completed for {provider_type} (tenant={tenant_id}): "
        f"{sum(r['records_synced'] for r in results)} records synced"
    )
    return results


@app.task
def sync_due_payroll_providers():
    """Enqueue a full sync for every configuration whose interval has elapsed."""
    logger.info("Checking payroll configurations due for sync")
    due = asyncio.run(_async_due_configs())
    for tenant_id, provider_type in due:
        sync_payroll_provider.delay(tenant_id, provider_type, "full")
    logger.info(f"Enqueued {len(due)} payroll sync(s)")
    return len(due)


async def _async_sync_provider(
    tenant_id: UUID,
    provider_type: str,
    sync_type: str,
    start_date: str | None,
    end_date: str | None,
) -> list[dict]:
    from backend.db.session import engine, get_async_session
    from backend.services.payroll_sync import build_payroll_sync_service
    from integrations.base import DateRange

    date_range = None
    if start_date and end_date:
        date_range = DateRange(start=date.fromisoformat(start_date), end=date.fromisoformat(end_date))

    try:
        async with get_async_session() as db:
            service = build_payroll_sync_service(db)
            results = await service.run_sync(tenant_id, provider_type, sync_type, date_range)
    finally:
        # Pooled connections belong to this event loop
        await engine.dispose()

    return [result.model_dump(mode="json") for result in results]


async def _async_due_configs() -> list[tuple[str, str]]:
    from backend.db.session import engine, get_async_session
    from backend.repositories.sql import SqlProviderConfigRepository
    from integrations.base import utcnow

    now = utcnow()
    try:
        async with get_async_session() as db:
            configs = await SqlProviderConfigRepository(db).list_enabled()
    finally:
        await engine.dispose()

    return [
        (str(config.tenant_id), config.provider_type)
        for config in configs
        if config.is_sync_due(now)
    ]
