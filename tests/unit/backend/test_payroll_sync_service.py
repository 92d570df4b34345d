"""
Payroll Sync Service Unit Tests

Runs the orchestrator against in-memory repositories and a scripted fake
provider: configuration storage, connection tests, employee reconciliation,
hour pushes, the run lock and the sync log lifecycle.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from backend.services.payroll_sync import SaveConfigOptions
from integrations.base import (
    ConnectionTestResult,
    ContractType,
    DateRange,
    PayrollCredentials,
    SyncStatus,
    SyncType,
)
from integrations.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
)
from integrations.payroll.nmbrs import NmbrsAdapter
from tests.factories import (
    make_credentials,
    make_employee,
    make_payroll_employee,
    make_sync_log,
    make_timesheet,
    make_user,
)

MARCH = DateRange(start=date(2026, 3, 1), end=date(2026, 3, 31))


async def _configure(service, tenant_id, **options):
    return await service.save_config(
        tenant_id,
        "nmbrs",
        make_credentials(),
        SaveConfigOptions(**options) if options else None,
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestSaveConfig:

    @pytest.mark.asyncio
    async def test_saved_token_is_returned_decrypted(self, service, tenant_id):
        await service.save_config(
            tenant_id,
            "nmbrs",
            {"api_token": "secret123", "domain": "acme.nmbrs.nl", "company_id": "42"},
            SaveConfigOptions(sync_enabled=True),
        )

        view = await service.get_config(tenant_id, "nmbrs")

        assert view.configured is True
        assert view.credentials.secret("api_token") == "secret123"
        assert view.sync_enabled is True

    @pytest.mark.asyncio
    async def test_round_trip_preserves_every_field(self, service, tenant_id):
        credentials = make_credentials(
            api_token="tok-Ω-1",
            domain="acme.nmbrs.nl",
            company_id="42",
            environment="sandbox",
        )
        await service.save_config(tenant_id, "nmbrs", credentials)

        view = await service.get_config(tenant_id, "nmbrs")

        for field in PayrollCredentials.model_fields:
            assert view.credentials.secret(field) == credentials.secret(field), field
        assert view.credentials.secret("api_token") == "tok-Ω-1"

    @pytest.mark.asyncio
    async def test_secrets_are_encrypted_at_rest(self, service, configs, tenant_id):
        await _configure(service, tenant_id)

        stored = configs.rows[0].credentials
        assert stored["api_token"] != "secret123"
        assert "secret123" not in str(stored)
        assert stored["domain"] == "acme"
        assert stored["company_id"] == "42"

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, service, tenant_id):
        view = await _configure(service, tenant_id)

        assert view.display_name == "Nmbrs"
        assert view.sync_employees is True
        assert view.sync_hours is True
        assert view.sync_leave is True
        assert view.sync_enabled is False
        assert view.sync_interval_minutes == 1440
        assert view.connection_status == "unconfigured"

    @pytest.mark.asyncio
    async def test_update_keeps_unset_options(self, service, tenant_id):
        await _configure(service, tenant_id, sync_enabled=True, sync_interval_minutes=60, sync_leave=False)

        view = await service.save_config(
            tenant_id,
            "nmbrs",
            make_credentials(api_token="rotated"),
            SaveConfigOptions(display_name="Payroll NL"),
        )

        assert view.display_name == "Payroll NL"
        assert view.sync_enabled is True
        assert view.sync_interval_minutes == 60
        assert view.sync_leave is False
        assert view.credentials.secret("api_token") == "rotated"

    @pytest.mark.asyncio
    async def test_one_row_per_tenant_and_provider(self, service, configs, tenant_id):
        await _configure(service, tenant_id)
        await _configure(service, tenant_id)
        await _configure(service, uuid4())

        assert len(configs.rows) == 2

    @pytest.mark.asyncio
    async def test_missing_required_fields_rejected(self, service, configs, tenant_id):
        with pytest.raises(ConfigurationError) as exc_info:
            await service.save_config(tenant_id, "nmbrs", {"api_token": "t", "domain": "  "})

        assert exc_info.value.code == "missing_credentials"
        assert "domain" in exc_info.value.message
        assert "company_id" in exc_info.value.message
        assert configs.rows == []

    @pytest.mark.asyncio
    async def test_coming_soon_provider_rejected(self, service, tenant_id):
        with pytest.raises(ConfigurationError) as exc_info:
            await service.save_config(tenant_id, "afas", {"api_token": "t", "environment": "production"})

        assert exc_info.value.code == "provider_not_implemented"

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self, service, tenant_id):
        with pytest.raises(ConfigurationError) as exc_info:
            await service.save_config(tenant_id, "visma", make_credentials())

        assert exc_info.value.code == "unknown_provider"


class TestGetConfig:

    @pytest.mark.asyncio
    async def test_missing_config_returns_not_configured_view(self, service, tenant_id):
        view = await service.get_config(tenant_id, "nmbrs")

        assert view.configured is False
        assert view.credentials is None
        assert view.connection_status == "unconfigured"

    @pytest.mark.asyncio
    async def test_configs_are_tenant_scoped(self, service, tenant_id):
        await _configure(service, tenant_id)

        view = await service.get_config(uuid4(), "nmbrs")

        assert view.configured is False


class TestListAndDelete:

    @pytest.mark.asyncio
    async def test_list_providers_merges_catalog_and_state(self, service, tenant_id):
        await _configure(service, tenant_id, sync_enabled=True)

        overview = {entry.provider_type.value: entry for entry in await service.list_providers(tenant_id)}

        assert set(overview) == {"nmbrs", "afas", "loket", "exact"}
        assert overview["nmbrs"].configured is True
        assert overview["nmbrs"].sync_enabled is True
        assert overview["nmbrs"].coming_soon is False
        assert overview["afas"].configured is False
        assert overview["afas"].coming_soon is True
        assert "credentials" not in overview["nmbrs"].model_dump()

    @pytest.mark.asyncio
    async def test_delete_config(self, service, tenant_id):
        await _configure(service, tenant_id)

        assert await service.delete_config(tenant_id, "nmbrs") is True
        assert await service.delete_config(tenant_id, "nmbrs") is False
        assert (await service.get_config(tenant_id, "nmbrs")).configured is False


# ---------------------------------------------------------------------------
# Connection test
# ---------------------------------------------------------------------------

class TestConnection:

    @pytest.mark.asyncio
    async def test_success_marks_connected(self, service, configs, sync_logs, tenant_id):
        await _configure(service, tenant_id)

        result = await service.test_connection(tenant_id, "nmbrs")

        assert result.success is True
        row = configs.rows[0]
        assert row.connection_status == "connected"
        assert row.last_sync_error is None
        assert sync_logs.logs == []

    @pytest.mark.asyncio
    async def test_failure_records_message(self, service, provider, configs, tenant_id):
        await _configure(service, tenant_id)
        provider.connection = ConnectionTestResult(success=False, message="SOAP fault: Invalid token")

        result = await service.test_connection(tenant_id, "nmbrs")

        assert result.success is False
        assert "Invalid token" in result.message
        assert configs.rows[0].connection_status == "error"
        assert configs.rows[0].last_sync_error == "SOAP fault: Invalid token"

    @pytest.mark.asyncio
    async def test_raised_integration_error_is_reported(self, service, provider, configs, tenant_id):
        await _configure(service, tenant_id)
        provider.connection = NetworkError("Nmbrs CompanyService.Company_GetCurrent timed out")

        result = await service.test_connection(tenant_id, "nmbrs")

        assert result.success is False
        assert "timed out" in result.message
        assert configs.rows[0].connection_status == "error"

    @pytest.mark.asyncio
    async def test_never_touches_last_sync_at(self, service, provider, configs, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        last_sync = datetime(2026, 1, 1, tzinfo=timezone.utc)
        configs.rows[0].last_sync_at = last_sync

        await service.test_connection(tenant_id, "nmbrs")
        provider.connection = ConnectionTestResult(success=False, message="down")
        await service.test_connection(tenant_id, "nmbrs")

        assert configs.rows[0].last_sync_at == last_sync
        assert all("last_sync_at" not in update for update in configs.updates)
        assert sync_logs.logs == []

    @pytest.mark.asyncio
    async def test_missing_config(self, service, provider, tenant_id):
        result = await service.test_connection(tenant_id, "nmbrs")

        assert result.success is False
        assert result.message == "Configuration not found"
        assert provider.adapters == []

    @pytest.mark.asyncio
    async def test_adapter_is_closed(self, service, provider, tenant_id):
        await _configure(service, tenant_id)

        await service.test_connection(tenant_id, "nmbrs")

        assert provider.adapters[0].closed is True
        assert provider.last_options == {"timeout": 5.0}
        assert provider.last_credentials.secret("api_token") == "secret123"


# ---------------------------------------------------------------------------
# Employee sync
# ---------------------------------------------------------------------------

class TestSyncEmployees:

    @pytest.mark.asyncio
    async def test_matches_by_employee_number_and_updates(self, service, provider, employees, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        local = employees.add(make_employee(tenant_id, employee_number="E10001", end_date=None))
        provider.employees = [
            make_payroll_employee(
                employee_number="E10001",
                position="Dispatcher",
                hours_per_week=Decimal("24"),
                contract_type=ContractType.PARTTIME,
                end_date=date(2026, 12, 31),
                bsn_number="123456782",
                bank_account_number="NL91ABNA0417164300",
            )
        ]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True
        assert result.records_synced == 1
        assert result.records_failed == 0
        assert local.position == "Dispatcher"
        assert local.hours_per_week == Decimal("24")
        assert local.contract_type == "PARTTIME"
        assert local.end_date == date(2026, 12, 31)
        assert local.user.bsn_number == "123456782"
        assert local.user.bank_account_number == "NL91ABNA0417164300"
        assert sync_logs.logs[0].status == SyncStatus.SUCCESS.value
        assert result.log_id == sync_logs.logs[0].id

    @pytest.mark.asyncio
    async def test_matches_by_email_case_insensitively(self, service, provider, employees, tenant_id):
        await _configure(service, tenant_id)
        user = make_user(tenant_id, email="Piet@Example.nl")
        local = employees.add(make_employee(tenant_id, user=user, employee_number=None))
        provider.employees = [make_payroll_employee(employee_number="E777", email="piet@example.NL")]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.records_synced == 1
        assert local.employee_number == "E777"

    @pytest.mark.asyncio
    async def test_keeps_start_date_when_provider_has_none(self, service, provider, employees, tenant_id):
        await _configure(service, tenant_id)
        local = employees.add(make_employee(tenant_id, employee_number="E1", start_date=date(2020, 5, 1)))
        provider.employees = [make_payroll_employee(employee_number="E1", start_date=None)]

        await service.sync_employees(tenant_id, "nmbrs")

        assert local.start_date == date(2020, 5, 1)

    @pytest.mark.asyncio
    async def test_fields_missing_at_provider_are_left_alone(self, service, provider, employees, tenant_id):
        await _configure(service, tenant_id)
        local = employees.add(
            make_employee(
                tenant_id,
                employee_number="E1",
                position="Planner",
                hours_per_week=Decimal("36"),
                contract_type="FULLTIME",
                end_date=date(2027, 1, 31),
            )
        )
        provider.employees = [
            make_payroll_employee(
                employee_number="E1",
                position=None,
                end_date=None,
                hours_per_week=None,
                contract_type=None,
            )
        ]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.records_synced == 1
        assert local.position == "Planner"
        assert local.end_date == date(2027, 1, 31)
        assert local.hours_per_week == Decimal("36")
        assert local.contract_type == "FULLTIME"

    @pytest.mark.asyncio
    async def test_invalid_provider_record_does_not_abort_run(
        self, service, registry, employees, sync_logs, tenant_id
    ):
        await _configure(service, tenant_id)
        local = employees.add(make_employee(tenant_id, employee_number="E2", position="Planner"))
        payload = (
            '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
            '<Employee_GetAllResponse xmlns="https://api.nmbrs.nl/soap/v3/EmployeeService">'
            "<Employee_GetAllResult>"
            "<Employee><Id>1</Id><EmployeeNumber>E1</EmployeeNumber>"
            "<Email><Primary>a@b.nl</Primary></Email></Employee>"
            "<Employee><Id>2</Id><EmployeeNumber>E2</EmployeeNumber><Function>Driver</Function>"
            "<ContractType>Fulltime</ContractType></Employee>"
            "</Employee_GetAllResult></Employee_GetAllResponse>"
            "</soap:Body></soap:Envelope>"
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=payload))
        registry.register(
            "nmbrs",
            lambda credentials, **options: NmbrsAdapter(credentials, transport=transport, **options),
        )

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True
        assert result.records_synced == 1
        assert local.position == "Driver"
        assert any("1 skipped" in warning for warning in result.warnings)
        assert sync_logs.logs[0].status == SyncStatus.SUCCESS.value

    @pytest.mark.asyncio
    async def test_unmatched_employee_is_warning_not_failure(self, service, provider, employees, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        employees.add(make_employee(tenant_id, employee_number="E1"))
        provider.employees = [
            make_payroll_employee(employee_number="E1"),
            make_payroll_employee(employee_number="E404", first_name="Onbekend", last_name="Persoon"),
        ]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True
        assert result.records_synced == 1
        assert result.records_failed == 0
        assert any("Onbekend Persoon" in warning for warning in result.warnings)
        assert len(employees.employees) == 1
        assert sync_logs.logs[0].status == SyncStatus.SUCCESS.value

    @pytest.mark.asyncio
    async def test_one_failing_record_gives_partial(self, service, provider, employees, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        numbers = [f"E{i}" for i in range(1, 6)]
        for number in numbers:
            employees.add(make_employee(tenant_id, employee_number=number))
        employees.failing = {"E3"}
        provider.employees = [make_payroll_employee(employee_number=number) for number in numbers]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is False
        assert result.records_synced == 4
        assert result.records_failed == 1
        assert result.errors[0].record == provider.employees[2].external_id
        log = sync_logs.logs[0]
        assert log.status == SyncStatus.PARTIAL.value
        assert log.records_synced == 4
        assert log.records_failed == 1
        assert log.error_details[0]["code"] == "record_error"

    @pytest.mark.asyncio
    async def test_all_records_failing_gives_error(self, service, provider, employees, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        employees.add(make_employee(tenant_id, employee_number="E1"))
        employees.failing = {"E1"}
        provider.employees = [make_payroll_employee(employee_number="E1")]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is False
        assert sync_logs.logs[0].status == SyncStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_counts_cover_only_matched_employees(self, service, provider, employees, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        for number in ("E1", "E2", "E3"):
            employees.add(make_employee(tenant_id, employee_number=number))
        employees.failing = {"E2"}
        provider.employees = [
            make_payroll_employee(employee_number=number) for number in ("E1", "E2", "E3", "X1", "X2")
        ]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.records_synced + result.records_failed == 3
        assert len(sync_logs.logs) == 1
        assert sync_logs.finalize_calls == [sync_logs.logs[0].id]

    @pytest.mark.asyncio
    async def test_fatal_fetch_gives_error_with_zero_counts(
        self, service, provider, employees, configs, sync_logs, tenant_id
    ):
        await _configure(service, tenant_id)
        last_sync = datetime(2026, 1, 1, tzinfo=timezone.utc)
        configs.rows[0].last_sync_at = last_sync
        provider.fetch_error = AuthenticationError("Nmbrs rejected the credentials (401)")

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is False
        assert result.records_synced == 0
        assert result.records_failed == 0
        assert result.errors[0].code == "authentication_error"
        log = sync_logs.logs[0]
        assert log.status == SyncStatus.ERROR.value
        assert log.records_synced == 0
        assert log.records_failed == 0
        assert log.error_message == "Nmbrs rejected the credentials (401)"
        assert configs.rows[0].connection_status == "error"
        assert configs.rows[0].last_sync_error == "Nmbrs rejected the credentials (401)"
        assert configs.rows[0].last_sync_at == last_sync

    @pytest.mark.asyncio
    async def test_completed_run_updates_config(self, service, provider, employees, configs, tenant_id):
        await _configure(service, tenant_id)
        employees.add(make_employee(tenant_id, employee_number="E1"))
        provider.employees = [make_payroll_employee(employee_number="E1")]

        await service.sync_employees(tenant_id, "nmbrs")

        row = configs.rows[0]
        assert row.connection_status == "connected"
        assert row.last_sync_at is not None
        assert row.last_sync_error is None

    @pytest.mark.asyncio
    async def test_run_with_failures_marks_connection_error(self, service, provider, employees, configs, tenant_id):
        await _configure(service, tenant_id)
        for number in ("E1", "E2"):
            employees.add(make_employee(tenant_id, employee_number=number))
        employees.failing = {"E2"}
        provider.employees = [make_payroll_employee(employee_number=n) for n in ("E1", "E2")]

        result = await service.sync_employees(tenant_id, "nmbrs")

        row = configs.rows[0]
        assert result.records_synced == 1
        assert row.connection_status == "error"
        assert row.last_sync_at is not None
        assert row.last_sync_error == result.errors[0].message

    @pytest.mark.asyncio
    async def test_missing_config_finalizes_error(self, service, provider, sync_logs, tenant_id):
        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is False
        assert result.errors[0].message == "Configuration not found"
        assert len(sync_logs.logs) == 1
        assert sync_logs.logs[0].status == SyncStatus.ERROR.value
        assert provider.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_adapter_warnings_are_reported(self, service, provider, tenant_id):
        await _configure(service, tenant_id)
        provider.mapping_warnings = ["Fake Payroll: Unmapped contract type value 'Zzp', using 'FULLTIME'"]

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True
        assert result.warnings == provider.mapping_warnings

    @pytest.mark.asyncio
    async def test_unexpected_error_finalizes_then_propagates(self, service, provider, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        provider.fetch_error = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await service.sync_employees(tenant_id, "nmbrs")

        log = sync_logs.logs[0]
        assert log.status == SyncStatus.ERROR.value
        assert "boom" in log.error_message
        assert provider.adapters[0].closed is True

    @pytest.mark.asyncio
    async def test_unexpected_error_mid_run_resets_counts_and_marks_config(
        self, service, provider, employees, configs, sync_logs, tenant_id
    ):
        await _configure(service, tenant_id)
        employees.add(make_employee(tenant_id, employee_number="E1"))
        provider.employees = [make_payroll_employee(employee_number=n) for n in ("E1", "E2")]
        find_match = employees.find_match

        async def find_then_crash(tenant, employee_number, email):
            if employee_number == "E2":
                raise RuntimeError("lookup crashed")
            return await find_match(tenant, employee_number, email)

        employees.find_match = find_then_crash

        with pytest.raises(RuntimeError):
            await service.sync_employees(tenant_id, "nmbrs")

        log = sync_logs.logs[0]
        assert log.status == SyncStatus.ERROR.value
        assert log.records_synced == 0
        assert log.records_failed == 0
        row = configs.rows[0]
        assert row.connection_status == "error"
        assert "lookup crashed" in row.last_sync_error
        assert row.last_sync_at is None


# ---------------------------------------------------------------------------
# Run lock
# ---------------------------------------------------------------------------

class TestRunLock:

    @pytest.mark.asyncio
    async def test_pending_run_blocks_second_run(self, service, provider, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        sync_logs.logs.append(make_sync_log(tenant_id))

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is False
        assert result.errors[0].code == "sync_in_progress"
        assert result.log_id is None
        pending = [log for log in sync_logs.logs if log.status == SyncStatus.PENDING.value]
        assert len(pending) == 1
        assert provider.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_lock_is_per_tenant_and_provider(self, service, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        sync_logs.logs.append(make_sync_log(uuid4()))

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True

    @pytest.mark.asyncio
    async def test_stale_pending_run_is_expired(self, service, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        stale = make_sync_log(tenant_id, started_at=datetime.now(timezone.utc) - timedelta(hours=3))
        sync_logs.logs.append(stale)

        result = await service.sync_employees(tenant_id, "nmbrs")

        assert result.success is True
        assert stale.status == SyncStatus.ERROR.value
        assert stale.completed_at is not None
        assert len(sync_logs.logs) == 2

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, service, sync_logs, tenant_id):
        await _configure(service, tenant_id)

        first = await service.sync_employees(tenant_id, "nmbrs")
        second = await service.sync_employees(tenant_id, "nmbrs")

        assert first.success is True
        assert second.success is True
        assert [log.status for log in sync_logs.logs] == ["success", "success"]


# ---------------------------------------------------------------------------
# Hour push
# ---------------------------------------------------------------------------

class TestPushHours:

    @pytest.mark.asyncio
    async def test_two_of_five_rejected(self, service, provider, timesheets, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        user_id = uuid4()
        sheets = [
            timesheets.add(make_timesheet(tenant_id, user_id, work_date=date(2026, 3, day)), "E1")
            for day in range(2, 7)
        ]
        provider.push_failures = {str(sheets[1].id), str(sheets[3].id)}

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.records_synced == 3
        assert result.records_failed == 2
        assert result.success is False
        assert sync_logs.logs[0].status == SyncStatus.PARTIAL.value
        assert sync_logs.logs[0].sync_type == SyncType.HOURS.value

    @pytest.mark.asyncio
    async def test_maps_timesheets_to_hour_entries(self, service, provider, timesheets, tenant_id):
        await _configure(service, tenant_id)
        user_id = uuid4()
        with_number = timesheets.add(
            make_timesheet(tenant_id, user_id, total_hours=Decimal("7.5"), description="Route 12"),
            "E1",
        )
        without_number = timesheets.add(make_timesheet(tenant_id, user_id), None)

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.success is True
        first, second = provider.pushed
        assert first.external_id == str(with_number.id)
        assert first.employee_external_id == "E1"
        assert first.hours == Decimal("7.5")
        assert first.type == "regular"
        assert first.status == "approved"
        assert first.description == "Route 12"
        assert second.employee_external_id == str(without_number.user_id)

    @pytest.mark.asyncio
    async def test_only_approved_in_range(self, service, provider, timesheets, tenant_id):
        await _configure(service, tenant_id)
        user_id = uuid4()
        timesheets.add(make_timesheet(tenant_id, user_id, status="SUBMITTED"), "E1")
        timesheets.add(make_timesheet(tenant_id, user_id, work_date=date(2026, 4, 1)), "E1")
        timesheets.add(make_timesheet(uuid4(), user_id), "E1")

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.success is True
        assert result.records_synced == 0
        assert provider.pushed == []

    @pytest.mark.asyncio
    async def test_timesheet_without_hours_fails_alone(self, service, provider, timesheets, tenant_id):
        await _configure(service, tenant_id)
        user_id = uuid4()
        timesheets.add(make_timesheet(tenant_id, user_id), "E1")
        empty = timesheets.add(make_timesheet(tenant_id, user_id, total_hours=None), "E1")

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.records_synced == 1
        assert result.records_failed == 1
        assert result.errors[0].record == str(empty.id)
        assert len(provider.pushed) == 1

    @pytest.mark.asyncio
    async def test_provider_without_push_is_fatal(self, service, provider, timesheets, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        provider.supported_features = provider.supported_features.model_copy(update={"push_hours": False})
        timesheets.add(make_timesheet(tenant_id, uuid4()), "E1")

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.success is False
        assert result.errors[0].code == "unsupported_operation"
        assert sync_logs.logs[0].status == SyncStatus.ERROR.value
        assert provider.pushed == []

    @pytest.mark.asyncio
    async def test_fatal_push_error(self, service, provider, timesheets, sync_logs, tenant_id):
        await _configure(service, tenant_id)
        timesheets.add(make_timesheet(tenant_id, uuid4()), "E1")
        provider.push_error = NetworkError("Nmbrs HourService.Hour_Insert timed out")

        result = await service.push_hours(tenant_id, "nmbrs", MARCH)

        assert result.success is False
        assert result.records_synced == 0
        assert sync_logs.logs[0].status == SyncStatus.ERROR.value


# ---------------------------------------------------------------------------
# Dispatcher and history
# ---------------------------------------------------------------------------

class TestRunSync:

    @pytest.mark.asyncio
    async def test_full_runs_employees_and_hours(self, service, tenant_id):
        await _configure(service, tenant_id)

        results = await service.run_sync(tenant_id, "nmbrs", "full", MARCH)

        assert [r.sync_type for r in results] == [SyncType.EMPLOYEES, SyncType.HOURS]

    @pytest.mark.asyncio
    async def test_full_without_range_skips_hours(self, service, tenant_id):
        await _configure(service, tenant_id)

        results = await service.run_sync(tenant_id, "nmbrs", SyncType.FULL)

        assert [r.sync_type for r in results] == [SyncType.EMPLOYEES]

    @pytest.mark.asyncio
    async def test_full_respects_disabled_parts(self, service, tenant_id):
        await _configure(service, tenant_id, sync_employees=False)

        results = await service.run_sync(tenant_id, "nmbrs", "full", MARCH)

        assert [r.sync_type for r in results] == [SyncType.HOURS]

    @pytest.mark.asyncio
    async def test_hours_requires_range(self, service, sync_logs, tenant_id):
        await _configure(service, tenant_id)

        results = await service.run_sync(tenant_id, "nmbrs", "hours")

        assert results[0].success is False
        assert results[0].errors[0].code == "date_range_required"
        assert sync_logs.logs == []

    @pytest.mark.asyncio
    async def test_unknown_sync_type(self, service, tenant_id):
        with pytest.raises(ConfigurationError):
            await service.run_sync(tenant_id, "nmbrs", "payslips")


class TestSyncHistory:

    @pytest.mark.asyncio
    async def test_newest_first_and_limited(self, service, sync_logs, tenant_id):
        now = datetime.now(timezone.utc)
        for hours_ago in (5, 1, 3):
            sync_logs.logs.append(
                make_sync_log(
                    tenant_id,
                    status="success",
                    started_at=now - timedelta(hours=hours_ago),
                    completed_at=now - timedelta(hours=hours_ago) + timedelta(minutes=1),
                )
            )

        history = await service.get_sync_history(tenant_id, "nmbrs", limit=2)

        assert len(history) == 2
        assert history[0].started_at > history[1].started_at
        assert history[0].status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_history_includes_error_details(self, service, provider, employees, tenant_id):
        await _configure(service, tenant_id)
        employees.add(make_employee(tenant_id, employee_number="E1"))
        employees.failing = {"E1"}
        provider.employees = [make_payroll_employee(employee_number="E1", external_id="nm-1")]

        await service.sync_employees(tenant_id, "nmbrs")
        history = await service.get_sync_history(tenant_id)

        assert history[0].error_details[0].record == "nm-1"
        assert history[0].records_failed == 1
