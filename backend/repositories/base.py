"""
Repository Interfaces

The sync orchestrator reads and writes all persistent state through these
interfaces. ``backend.repositories.sql`` implements them on SQLAlchemy; tests
use in-memory implementations.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any
from uuid import UUID

from backend.models.employee import Employee
from backend.models.integration import PayrollProviderConfig
from backend.models.sync_log import PayrollSyncLog
from backend.models.timesheet import Timesheet


class ProviderConfigRepository(ABC):
    """Storage for one ``PayrollProviderConfig`` per (tenant, provider)."""

    @abstractmethod
    async def get(self, tenant_id: UUID, provider_type: str) -> PayrollProviderConfig | None:
        pass

    @abstractmethod
    async def list_for_tenant(self, tenant_id: UUID) -> list[PayrollProviderConfig]:
        pass

    @abstractmethod
    async def list_enabled(self) -> list[PayrollProviderConfig]:
        """Active configurations with scheduled syncing switched on."""
        pass

    @abstractmethod
    async def upsert(
        self,
        tenant_id: UUID,
        provider_type: str,
        create_values: dict[str, Any],
        update_values: dict[str, Any],
    ) -> PayrollProviderConfig:
        """
        Create the row with ``create_values`` or apply ``update_values`` to
        the existing one.
        """
        pass

    @abstractmethod
    async def update(self, tenant_id: UUID, provider_type: str, **values) -> None:
        pass

    @abstractmethod
    async def delete(self, tenant_id: UUID, provider_type: str) -> bool:
        pass


class SyncLogRepository(ABC):
    """Append-only sync audit log; the pending row is the run lock."""

    @abstractmethod
    async def start(
        self,
        tenant_id: UUID,
        provider_type: str,
        sync_type: str,
        started_at: datetime,
    ) -> PayrollSyncLog | None:
        """
        Create a ``pending`` row and make it visible to other workers.

        Returns None, without writing, when a pending row already exists for
        the (tenant, provider) key.
        """
        pass

    @abstractmethod
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
        """Move a pending row to a terminal status. False if it was not pending."""
        pass

    @abstractmethod
    async def expire_stale(
        self,
        tenant_id: UUID,
        provider_type: str,
        started_before: datetime,
        completed_at: datetime,
    ) -> int:
        """Finalize pending rows started before ``started_before`` as errors."""
        pass

    @abstractmethod
    async def history(
        self,
        tenant_id: UUID,
        provider_type: str | None = None,
        limit: int = 10,
    ) -> list[PayrollSyncLog]:
        """Most recent runs first."""
        pass


class EmployeeRepository(ABC):
    """Internal employee records. Never creates rows."""

    @abstractmethod
    async def find_match(
        self,
        tenant_id: UUID,
        employee_number: str | None,
        email: str | None,
    ) -> Employee | None:
        """Match by employee number first, then by linked user e-mail."""
        pass

    @abstractmethod
    async def apply_update(
        self,
        employee: Employee,
        changes: dict[str, Any],
        user_changes: dict[str, Any] | None = None,
    ) -> None:
        """
        Apply field changes to an employee (and its user).

        Raises:
            RecordError: the update could not be stored
        """
        pass


class TimesheetRepository(ABC):

    @abstractmethod
    async def approved_between(
        self,
        tenant_id: UUID,
        start: date,
        end: date,
    ) -> list[tuple[Timesheet, str | None]]:
        """Approved timesheets in range with the owner's employee number."""
        pass
