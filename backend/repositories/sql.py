"""
SQLAlchemy Repositories

Async SQLAlchemy implementations of the payroll sync repositories. All of
them share the caller's ``AsyncSession``.

Commit points: a new pending sync log is committed immediately (it is the
cross-process run lock), and finalizing a run commits the employee updates
made during reconciliation together with the terminal log row.
"""

import logging
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from backend.models.employee import Employee
from backend.models.integration import PayrollProviderConfig
from backend.models.sync_log import PayrollSyncLog
from backend.models.timesheet import Timesheet, TimesheetStatus
from backend.models.user import User
from backend.repositories.base import (
    EmployeeRepository,
    ProviderConfigRepository,
    SyncLogRepository,
    TimesheetRepository,
)
from integrations.base import SyncStatus
from integrations.exceptions import RecordError

logger = logging.getLogger(__name__)


class SqlProviderConfigRepository(ProviderConfigRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _where(self, tenant_id: UUID, provider_type: str):
        return (
            PayrollProviderConfig.tenant_id == tenant_id,
            PayrollProviderConfig.provider_type == provider_type,
        )

    async def get(self, tenant_id: UUID, provider_type: str) -> PayrollProviderConfig | None:
        result = await self.session.execute(
            select(PayrollProviderConfig).where(*self._where(tenant_id, provider_type))
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: UUID) -> list[PayrollProviderConfig]:
        result = await self.session.execute(
            select(PayrollProviderConfig)
            .where(PayrollProviderConfig.tenant_id == tenant_id)
            .order_by(PayrollProviderConfig.provider_type)
        )
        return list(result.scalars().all())

    async def list_enabled(self) -> list[PayrollProviderConfig]:
        result = await self.session.execute(
            select(PayrollProviderConfig).where(
                PayrollProviderConfig.sync_enabled.is_(True),
                PayrollProviderConfig.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        tenant_id: UUID,
        provider_type: str,
        create_values: dict[str, Any],
        update_values: dict[str, Any],
    ) -> PayrollProviderConfig:
        config = await self.get(tenant_id, provider_type)
        if config is None:
            config = PayrollProviderConfig(
                id=uuid4(),
                tenant_id=tenant_id,
                provider_type=provider_type,
                **create_values,
            )
            self.session.add(config)
        else:
            for name, value in update_values.items():
                setattr(config, name, value)

        await self.session.commit()
        await self.session.refresh(config)
        return config

    async def update(self, tenant_id: UUID, provider_type: str, **values) -> None:
        await self.session.execute(
            update(PayrollProviderConfig)
            .where(*self._where(tenant_id, provider_type))
            .values(**values)
        )
        await self.session.commit()

    async def delete(self, tenant_id: UUID, provider_type: str) -> bool:
        result = await self.session.execute(
            delete(PayrollProviderConfig).where(*self._where(tenant_id, provider_type))
        )
        await self.session.commit()
        return result.rowcount > 0


class SqlSyncLogRepository(SyncLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def start(
        self,
        tenant_id: UUID,
        provider_type: str,
        sync_type: str,
        started_at: datetime,
    ) -> PayrollSyncLog | None:
        running = await self.session.execute(
            select(PayrollSyncLog.id)
            .where(
                PayrollSyncLog.tenant_id == tenant_id,
                PayrollSyncLog.provider_type == provider_type,
                PayrollSyncLog.status == SyncStatus.PENDING.value,
            )
            .limit(1)
        )
        if running.first() is not None:
            logger.info(f"Sync already running for {provider_type} (tenant={tenant_id})")
            return None

        log = PayrollSyncLog(
            id=uuid4(),
            tenant_id=tenant_id,
            provider_type=provider_type,
            sync_type=sync_type,
            status=SyncStatus.PENDING.value,
            started_at=started_at,
            records_synced=0,
            records_failed=0,
            error_details=[],
        )
        self.session.add(log)
        try:
            await self.session.commit()
        except IntegrityError:
            # Another worker committed its pending row between check and insert
            await self.session.rollback()
            return None
        return log

    async def finalize(
        self,
        log_id: UUID,
        *,
        status: str,
        records_synced: int,
        records_failed: int,
        error_message: str | None,
        error_details: list[dict],
        completed_at: datetime,
    ) -> bool:
        result = await self.session.execute(
            update(PayrollSyncLog)
            .where(
                PayrollSyncLog.id == log_id,
                PayrollSyncLog.status == SyncStatus.PENDING.value,
            )
            .values(
                status=status,
                records_synced=records_synced,
                records_failed=records_failed,
                error_message=error_message,
                error_details=error_details,
                completed_at=completed_at,
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.session.commit()
        return result.rowcount == 1

    async def expire_stale(
        self,
        tenant_id: UUID,
        provider_type: str,
        started_before: datetime,
        completed_at: datetime,
    ) -> int:
        result = await self.session.execute(
            update(PayrollSyncLog)
            .where(
                PayrollSyncLog.tenant_id == tenant_id,
                PayrollSyncLog.provider_type == provider_type,
                PayrollSyncLog.status == SyncStatus.PENDING.value,
                PayrollSyncLog.started_at < started_before,
            )
            .values(
                status=SyncStatus.ERROR.value,
                error_message="Sync run abandoned before completion",
                completed_at=completed_at,
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.session.commit()
        return result.rowcount

    async def history(
        self,
        tenant_id: UUID,
        provider_type: str | None = None,
        limit: int = 10,
    ) -> list[PayrollSyncLog]:
        query = select(PayrollSyncLog).where(PayrollSyncLog.tenant_id == tenant_id)
        if provider_type:
            query = query.where(PayrollSyncLog.provider_type == provider_type)
        query = (
            query.order_by(PayrollSyncLog.started_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())


class SqlEmployeeRepository(EmployeeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_match(
        self,
        tenant_id: UUID,
        employee_number: str | None,
        email: str | None,
    ) -> Employee | None:
        try:
            async with self.session.begin_nested():
                return await self._lookup(tenant_id, employee_number, email)
        except SQLAlchemyError as exc:
            raise RecordError(f"Employee lookup failed: {exc}") from exc

    async def _lookup(
        self,
        tenant_id: UUID,
        employee_number: str | None,
        email: str | None,
    ) -> Employee | None:
        if employee_number:
            result = await self.session.execute(
                select(Employee)
                .options(selectinload(Employee.user))
                .where(
                    Employee.tenant_id == tenant_id,
                    Employee.employee_number == employee_number,
                )
                .limit(1)
            )
            employee = result.scalars().first()
            if employee is not None:
                return employee

        if email and email.strip():
            result = await self.session.execute(
                select(Employee)
                .join(Employee.user)
                .options(contains_eager(Employee.user))
                .where(
                    Employee.tenant_id == tenant_id,
                    func.lower(User.email) == email.strip().lower(),
                )
                .limit(1)
            )
            return result.scalars().first()
        return None

    async def apply_update(
        self,
        employee: Employee,
        changes: dict[str, Any],
        user_changes: dict[str, Any] | None = None,
    ) -> None:
        label = employee.employee_number or employee.id
        record = str(employee.id)
        try:
            async with self.session.begin_nested():
                for name, value in changes.items():
                    setattr(employee, name, value)
                if user_changes and employee.user is not None:
                    for name, value in user_changes.items():
                        setattr(employee.user, name, value)
                await self.session.flush()
        except SQLAlchemyError as exc:
            raise RecordError(
                f"Updating employee {label} failed: {exc}",
                record=record,
            ) from exc


class SqlTimesheetRepository(TimesheetRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def approved_between(
        self,
        tenant_id: UUID,
        start: date,
        end: date,
    ) -> list[tuple[Timesheet, str | None]]:
        result = await self.session.execute(
            select(Timesheet, Employee.employee_number)
            .outerjoin(Employee, Employee.user_id == Timesheet.user_id)
            .where(
                Timesheet.tenant_id == tenant_id,
                Timesheet.status == TimesheetStatus.APPROVED.value,
                Timesheet.work_date >= start,
                Timesheet.work_date <= end,
            )
            .order_by(Timesheet.work_date)
        )
        return [(timesheet, number) for timesheet, number in result.all()]
