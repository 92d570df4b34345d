"""
Payroll Sync Service

Orchestrates payroll provider integrations for a tenant: stores provider
configurations with encrypted credentials, tests connections, reconciles
provider employees into internal records and pushes approved hours.

Every sync run is recorded in ``payroll_sync_logs``. The run's ``pending``
row is created before anything else happens and doubles as the run lock;
it is finalized exactly once to success, partial or error.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from backend.config import get_settings
from backend.models.employee import Employee
from backend.models.integration import PayrollProviderConfig
from backend.models.sync_log import PayrollSyncLog
from backend.models.timesheet import Timesheet
from backend.repositories.base import (
    EmployeeRepository,
    ProviderConfigRepository,
    SyncLogRepository,
    TimesheetRepository,
)
from integrations.base import (
    DEFAULT_TIMEOUT,
    ConnectionStatus,
    ConnectionTestResult,
    DateRange,
    HourType,
    PayrollAdapter,
    PayrollCredentials,
    PayrollEmployee,
    PayrollHourEntry,
    PayrollProviderType,
    RecordStatus,
    SupportedFeatures,
    SyncError,
    SyncResult,
    SyncStatus,
    SyncType,
    utcnow,
)
from integrations.exceptions import (
    ConfigurationError,
    PayrollIntegrationError,
    RecordError,
)
from integrations.registry import (
    PROVIDER_CATALOG,
    AdapterRegistry,
    default_registry,
    resolve_provider_type,
)
from integrations.vault import CredentialVault, FernetCredentialVault, SettingsKeyProvider

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_MINUTES = 1440
DEFAULT_STALE_RUN_AFTER = timedelta(minutes=60)


# =============================================================================
# Schemas
# =============================================================================

class SaveConfigOptions(BaseModel):
    """Optional settings for ``save_config``. Unset fields keep their value."""

    display_name: str | None = None
    sync_employees: bool | None = None
    sync_hours: bool | None = None
    sync_leave: bool | None = None
    sync_enabled: bool | None = None
    sync_interval_minutes: int | None = Field(default=None, gt=0)


class ProviderConfigView(BaseModel):
    """A tenant's provider configuration with decrypted credentials."""

    provider_type: PayrollProviderType
    configured: bool = True
    display_name: str | None = None
    credentials: PayrollCredentials | None = None
    sync_employees: bool = True
    sync_hours: bool = True
    sync_leave: bool = True
    sync_enabled: bool = False
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    connection_status: ConnectionStatus = ConnectionStatus.UNCONFIGURED
    last_sync_at: datetime | None = None
    last_sync_error: str | None = None
    is_active: bool = True

    @classmethod
    def not_configured(cls, provider_type: PayrollProviderType) -> "ProviderConfigView":
        return cls(provider_type=provider_type, configured=False)

    @classmethod
    def from_config(
        cls,
        config: PayrollProviderConfig,
        credentials: PayrollCredentials,
    ) -> "ProviderConfigView":
        return cls(
            provider_type=config.provider_type,
            display_name=config.display_name,
            credentials=credentials,
            sync_employees=config.sync_employees,
            sync_hours=config.sync_hours,
            sync_leave=config.sync_leave,
            sync_enabled=config.sync_enabled,
            sync_interval_minutes=config.sync_interval_minutes,
            connection_status=config.connection_status,
            last_sync_at=config.last_sync_at,
            last_sync_error=config.last_sync_error,
            is_active=config.is_active,
        )


class ProviderOverview(BaseModel):
    """Catalog entry merged with the tenant's state. Never holds credentials."""

    provider_type: PayrollProviderType
    name: str
    description: str
    required_fields: list[str]
    features: SupportedFeatures
    coming_soon: bool = False
    configured: bool = False
    display_name: str | None = None
    connection_status: ConnectionStatus = ConnectionStatus.UNCONFIGURED
    sync_enabled: bool = False
    last_sync_at: datetime | None = None


class SyncLogView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_type: str
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    completed_at: datetime | None = None
    records_synced: int = 0
    records_failed: int = 0
    error_message: str | None = None
    error_details: list[SyncError] = Field(default_factory=list)


RunStep = Callable[[PayrollAdapter, SyncResult], Awaitable[None]]


# =============================================================================
# Service
# =============================================================================

class PayrollSyncService:
    """
    Payroll integration operations for any tenant.

    Expected failures (bad credentials, provider down, malformed payloads,
    per-record problems) are reported in the returned results and the sync
    log; they never escape as exceptions. Anything else finalizes the run as
    an error and propagates.
    """

    def __init__(
        self,
        configs: ProviderConfigRepository,
        sync_logs: SyncLogRepository,
        employees: EmployeeRepository,
        timesheets: TimesheetRepository,
        vault: CredentialVault,
        registry: AdapterRegistry,
        *,
        request_timeout: float = DEFAULT_TIMEOUT,
        stale_run_after: timedelta = DEFAULT_STALE_RUN_AFTER,
        default_sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
    ):
        self.configs = configs
        self.sync_logs = sync_logs
        self.employees = employees
        self.timesheets = timesheets
        self.vault = vault
        self.registry = registry
        self.request_timeout = request_timeout
        self.stale_run_after = stale_run_after
        self.default_sync_interval_minutes = default_sync_interval_minutes

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def get_config(self, tenant_id: UUID, provider_type: str) -> ProviderConfigView:
        """
        Get a provider configuration with decrypted credentials.

        A tenant without a row for the provider gets a view with
        ``configured=False``.
        """
        provider = resolve_provider_type(provider_type)
        config = await self.configs.get(tenant_id, provider.value)
        if config is None:
            return ProviderConfigView.not_configured(provider)
        return ProviderConfigView.from_config(config, self.vault.decrypt_fields(config.credentials))

    async def list_providers(self, tenant_id: UUID) -> list[ProviderOverview]:
        """All known providers with this tenant's connection state."""
        configs = {c.provider_type: c for c in await self.configs.list_for_tenant(tenant_id)}

        overview = []
        for provider, info in PROVIDER_CATALOG.items():
            entry = ProviderOverview(**info.model_dump())
            config = configs.get(provider.value)
            if config is not None:
                entry.configured = True
                entry.display_name = config.display_name
                entry.connection_status = ConnectionStatus(config.connection_status)
                entry.sync_enabled = config.sync_enabled
                entry.last_sync_at = config.last_sync_at
            overview.append(entry)
        return overview

    async def save_config(
        self,
        tenant_id: UUID,
        provider_type: str,
        credentials: PayrollCredentials | dict,
        options: SaveConfigOptions | None = None,
    ) -> ProviderConfigView:
        """
        Create or update a provider configuration.

        Raises:
            ConfigurationError: unknown or unavailable provider, or required
                credential fields are missing
        """
        provider = resolve_provider_type(provider_type)
        info = PROVIDER_CATALOG[provider]
        if info.coming_soon or not self.registry.is_registered(provider):
            raise ConfigurationError(
                f"{info.name} integration is not available yet",
                code="provider_not_implemented",
            )

        if not isinstance(credentials, PayrollCredentials):
            credentials = PayrollCredentials.model_validate(credentials)
        missing = self.registry.validate_credentials(provider, credentials)
        if missing:
            raise ConfigurationError(
                f"Missing required credentials: {', '.join(missing)}",
                code="missing_credentials",
            )

        stored = self.vault.encrypt_fields(credentials)
        explicit = (options or SaveConfigOptions()).model_dump(exclude_none=True)

        create_values = {
            "display_name": info.name,
            "sync_employees": True,
            "sync_hours": True,
            "sync_leave": True,
            "sync_enabled": False,
            "sync_interval_minutes": self.default_sync_interval_minutes,
            "connection_status": ConnectionStatus.UNCONFIGURED.value,
            **explicit,
            "credentials": stored,
        }
        update_values = {**explicit, "credentials": stored}

        config = await self.configs.upsert(tenant_id, provider.value, create_values, update_values)
        logger.info(f"Saved {provider.value} configuration for tenant {tenant_id}")
        return ProviderConfigView.from_config(config, credentials)

    async def delete_config(self, tenant_id: UUID, provider_type: str) -> bool:
        provider = resolve_provider_type(provider_type)
        deleted = await self.configs.delete(tenant_id, provider.value)
        if deleted:
            logger.info(f"Deleted {provider.value} configuration for tenant {tenant_id}")
        return deleted

    # -------------------------------------------------------------------------
    # Connection test
    # -------------------------------------------------------------------------

    async def test_connection(self, tenant_id: UUID, provider_type: str) -> ConnectionTestResult:
        """
        Check the provider with the stored credentials.

        Updates ``connection_status`` and ``last_sync_error`` only. No sync
        log is written and ``last_sync_at`` is left alone.
        """
        try:
            provider = resolve_provider_type(provider_type)
        except ConfigurationError as e:
            return ConnectionTestResult(success=False, message=e.message)

        config = await self.configs.get(tenant_id, provider.value)
        if config is None:
            return ConnectionTestResult(success=False, message="Configuration not found")

        try:
            async with self._adapter(provider, config) as adapter:
                result = await adapter.test_connection()
        except PayrollIntegrationError as e:
            result = ConnectionTestResult(success=False, message=e.message)

        if not result.success:
            logger.warning(
                f"Connection test failed for {provider.value} (tenant={tenant_id}): {result.message}"
            )

        await self.configs.update(
            tenant_id,
            provider.value,
            connection_status=(
                ConnectionStatus.CONNECTED.value if result.success else ConnectionStatus.ERROR.value
            ),
            last_sync_error=None if result.success else result.message,
        )
        return result

    # -------------------------------------------------------------------------
    # Sync runs
    # -------------------------------------------------------------------------

    async def sync_employees(self, tenant_id: UUID, provider_type: str) -> SyncResult:
        """
        Pull employees from the provider and update matching internal records.

        Employees are matched by employee number, then by the linked user's
        e-mail address. Unmatched provider employees are reported as warnings;
        no internal records are created.
        """
        async def step(adapter: PayrollAdapter, result: SyncResult) -> None:
            await self._reconcile_employees(tenant_id, adapter, result)

        return await self._run(tenant_id, provider_type, SyncType.EMPLOYEES, step)

    async def push_hours(
        self,
        tenant_id: UUID,
        provider_type: str,
        date_range: DateRange,
    ) -> SyncResult:
        """Push approved timesheets in ``date_range`` to the provider."""
        async def step(adapter: PayrollAdapter, result: SyncResult) -> None:
            await self._push_timesheets(tenant_id, date_range, adapter, result)

        return await self._run(tenant_id, provider_type, SyncType.HOURS, step)

    async def run_sync(
        self,
        tenant_id: UUID,
        provider_type: str,
        sync_type: SyncType | str,
        date_range: DateRange | None = None,
    ) -> list[SyncResult]:
        """
        Run one or more syncs by type.

        ``employees`` and ``full`` sync employees; ``hours`` and ``full``
        push hours when a date range is given. A ``full`` run skips the
        parts switched off in the configuration.
        """
        try:
            sync_type = SyncType(sync_type)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown sync type: {sync_type}", code="unknown_sync_type") from exc

        do_employees = sync_type in (SyncType.EMPLOYEES, SyncType.FULL)
        do_hours = sync_type in (SyncType.HOURS, SyncType.FULL)

        if sync_type == SyncType.FULL:
            config = await self.configs.get(tenant_id, resolve_provider_type(provider_type).value)
            if config is not None:
                do_employees = config.sync_employees
                do_hours = config.sync_hours

        results = []
        if do_employees:
            results.append(await self.sync_employees(tenant_id, provider_type))

        if do_hours and date_range is not None:
            results.append(await self.push_hours(tenant_id, provider_type, date_range))
        elif sync_type == SyncType.HOURS:
            results.append(SyncResult(
                success=False,
                sync_type=SyncType.HOURS,
                errors=[SyncError(message="A date range is required to push hours", code="date_range_required")],
            ))

        if sync_type == SyncType.LEAVE:
            results.append(SyncResult(
                success=False,
                sync_type=SyncType.LEAVE,
                errors=[SyncError(message="Leave sync is not supported yet", code="unsupported_operation")],
            ))
        return results

    async def get_sync_history(
        self,
        tenant_id: UUID,
        provider_type: str | None = None,
        limit: int = 10,
    ) -> list[SyncLogView]:
        """Most recent sync runs, newest first."""
        provider = resolve_provider_type(provider_type).value if provider_type else None
        logs = await self.sync_logs.history(tenant_id, provider, limit)
        return [SyncLogView.model_validate(log) for log in logs]

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def _run(
        self,
        tenant_id: UUID,
        provider_type: str,
        sync_type: SyncType,
        step: RunStep,
    ) -> SyncResult:
        try:
            provider = resolve_provider_type(provider_type)
        except ConfigurationError as e:
            return SyncResult(
                success=False,
                sync_type=sync_type,
                errors=[SyncError(message=e.message, code=e.code)],
            )

        log = await self._start_log(tenant_id, provider, sync_type)
        if log is None:
            return SyncResult(
                success=False,
                sync_type=sync_type,
                errors=[SyncError(
                    message=f"A {provider.value} sync is already running",
                    code="sync_in_progress",
                )],
            )

        logger.info(f"Starting {sync_type.value} sync for {provider.value} (tenant={tenant_id})")
        result = SyncResult(success=False, sync_type=sync_type, log_id=log.id)

        try:
            config = await self.configs.get(tenant_id, provider.value)
            if config is None:
                raise ConfigurationError("Configuration not found", code="config_not_found")

            async with self._adapter(provider, config) as adapter:
                try:
                    await step(adapter, result)
                finally:
                    result.warnings.extend(adapter.warnings)

        except PayrollIntegrationError as e:
            logger.error(f"{sync_type.value} sync for {provider.value} failed (tenant={tenant_id}): {e.message}")
            result.success = False
            result.records_synced = 0
            result.records_failed = 0
            result.errors.insert(0, SyncError(message=e.message, code=e.code))
            await self._finalize(log, result, SyncStatus.ERROR)
            await self.configs.update(
                tenant_id,
                provider.value,
                connection_status=ConnectionStatus.ERROR.value,
                last_sync_error=e.message,
            )
            return result

        except Exception as e:
            logger.exception(f"Unexpected error in {sync_type.value} sync for {provider.value}")
            message = f"Unexpected error: {e}"
            result.success = False
            result.records_synced = 0
            result.records_failed = 0
            result.errors.insert(0, SyncError(message=message, code="unexpected_error"))
            await self._finalize(log, result, SyncStatus.ERROR)
            await self.configs.update(
                tenant_id,
                provider.value,
                connection_status=ConnectionStatus.ERROR.value,
                last_sync_error=message,
            )
            raise

        status = _run_status(result)
        result.success = result.records_failed == 0
        await self._finalize(log, result, status)
        await self.configs.update(
            tenant_id,
            provider.value,
            connection_status=(
                ConnectionStatus.CONNECTED.value if result.success else ConnectionStatus.ERROR.value
            ),
            last_sync_at=utcnow(),
            last_sync_error=result.first_error,
        )
        logger.info(
            f"Finished {sync_type.value} sync for {provider.value} (tenant={tenant_id}): "
            f"{status.value}, {result.records_synced} synced, {result.records_failed} failed"
        )
        return result

    async def _start_log(
        self,
        tenant_id: UUID,
        provider: PayrollProviderType,
        sync_type: SyncType,
    ) -> PayrollSyncLog | None:
        now = utcnow()
        expired = await self.sync_logs.expire_stale(
            tenant_id, provider.value, now - self.stale_run_after, now
        )
        if expired:
            logger.warning(f"Expired {expired} abandoned {provider.value} sync run(s) for tenant {tenant_id}")
        return await self.sync_logs.start(tenant_id, provider.value, sync_type.value, now)

    async def _finalize(self, log: PayrollSyncLog, result: SyncResult, status: SyncStatus) -> None:
        finalized = await self.sync_logs.finalize(
            log.id,
            status=status.value,
            records_synced=result.records_synced,
            records_failed=result.records_failed,
            error_message=result.first_error,
            error_details=[error.model_dump() for error in result.errors],
            completed_at=utcnow(),
        )
        if not finalized:
            logger.warning(f"Sync log {log.id} was already finalized")

    def _adapter(self, provider: PayrollProviderType, config: PayrollProviderConfig) -> PayrollAdapter:
        credentials = self.vault.decrypt_fields(config.credentials)
        return self.registry.create(provider, credentials, timeout=self.request_timeout)

    # -------------------------------------------------------------------------
    # Run steps
    # -------------------------------------------------------------------------

    async def _reconcile_employees(
        self,
        tenant_id: UUID,
        adapter: PayrollAdapter,
        result: SyncResult,
    ) -> None:
        remote_employees = await adapter.fetch_employees()

        for remote in remote_employees:
            try:
                local = await self.employees.find_match(tenant_id, remote.employee_number, remote.email)
                if local is None:
                    message = f"No matching employee for {remote.display_name} ({remote.external_id})"
                    logger.warning(message)
                    result.warnings.append(message)
                    continue

                changes, user_changes = _employee_changes(local, remote)
                await self.employees.apply_update(local, changes, user_changes)
                result.records_synced += 1

            except PayrollIntegrationError as e:
                if e.fatal:
                    raise
                logger.warning(f"Employee {remote.external_id} failed: {e.message}")
                result.records_failed += 1
                result.errors.append(SyncError(record=remote.external_id, message=e.message, code=e.code))

    async def _push_timesheets(
        self,
        tenant_id: UUID,
        date_range: DateRange,
        adapter: PayrollAdapter,
        result: SyncResult,
    ) -> None:
        if not adapter.supported_features.push_hours:
            raise ConfigurationError(
                f"{adapter.display_name} does not support pushing hours",
                code="unsupported_operation",
            )

        rows = await self.timesheets.approved_between(tenant_id, date_range.start, date_range.end)

        entries = []
        for timesheet, employee_number in rows:
            try:
                entries.append(_hour_entry(timesheet, employee_number))
            except RecordError as e:
                result.records_failed += 1
                result.errors.append(SyncError(record=e.record, message=e.message, code=e.code))

        if not entries:
            return

        pushed = await adapter.push_hours(entries)
        result.records_synced += pushed.records_synced
        result.records_failed += pushed.records_failed
        result.errors.extend(pushed.errors)
        result.warnings.extend(pushed.warnings)


def _run_status(result: SyncResult) -> SyncStatus:
    if result.records_failed == 0:
        return SyncStatus.SUCCESS
    if result.records_synced > 0:
        return SyncStatus.PARTIAL
    return SyncStatus.ERROR


def _employee_changes(local: Employee, remote: PayrollEmployee) -> tuple[dict, dict]:
    changes = {}
    if remote.position is not None:
        changes["position"] = remote.position
    if remote.end_date is not None:
        changes["end_date"] = remote.end_date
    if remote.employee_number:
        changes["employee_number"] = remote.employee_number
    if remote.hours_per_week is not None:
        changes["hours_per_week"] = remote.hours_per_week
    if remote.contract_type is not None:
        changes["contract_type"] = remote.contract_type.value
    changes["start_date"] = remote.start_date or local.start_date

    user_changes = {}
    if remote.bsn_number:
        user_changes["bsn_number"] = remote.bsn_number
    if remote.bank_account_number:
        user_changes["bank_account_number"] = remote.bank_account_number
    return changes, user_changes


def _hour_entry(timesheet: Timesheet, employee_number: str | None) -> PayrollHourEntry:
    """Map an approved timesheet to an hour entry."""
    if timesheet.total_hours is None or timesheet.total_hours <= 0:
        raise RecordError(f"Timesheet {timesheet.id} has no hours", record=str(timesheet.id))

    return PayrollHourEntry(
        external_id=str(timesheet.id),
        employee_external_id=employee_number or str(timesheet.user_id),
        work_date=timesheet.work_date,
        hours=timesheet.total_hours,
        type=HourType.REGULAR,
        description=timesheet.description,
        status=RecordStatus.APPROVED,
    )


def build_payroll_sync_service(session, settings=None) -> PayrollSyncService:
    """Wire the service to SQL repositories on ``session``."""
    from backend.repositories.sql import (
        SqlEmployeeRepository,
        SqlProviderConfigRepository,
        SqlSyncLogRepository,
        SqlTimesheetRepository,
    )

    settings = settings or get_settings()
    return PayrollSyncService(
        configs=SqlProviderConfigRepository(session),
        sync_logs=SqlSyncLogRepository(session),
        employees=SqlEmployeeRepository(session),
        timesheets=SqlTimesheetRepository(session),
        vault=FernetCredentialVault(SettingsKeyProvider(settings)),
        registry=default_registry(),
        request_timeout=settings.payroll_request_timeout,
        stale_run_after=timedelta(minutes=settings.sync_stale_run_minutes),
        default_sync_interval_minutes=settings.default_sync_interval_minutes,
    )
