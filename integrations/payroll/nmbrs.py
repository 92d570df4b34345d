"""
Nmbrs Payroll Integration

Connects to the Nmbrs SOAP API (v3) for the employee roster, hour
registrations and absences, and pushes approved hours back.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from xml.etree.ElementTree import Element

import httpx
from pydantic import ValidationError

from integrations.base import (
    ContractType,
    ConnectionTestResult,
    DateRange,
    HourType,
    LeaveType,
    PayrollAdapter,
    PayrollEmployee,
    PayrollHourEntry,
    PayrollLeaveEntry,
    PayrollProviderType,
    RecordStatus,
    SupportedFeatures,
    SyncError,
    SyncResult,
    SyncType,
)
from integrations.exceptions import (
    AuthenticationError,
    NetworkError,
    PayrollIntegrationError,
    ProtocolError,
)
from integrations.soap import build_envelope, extract_fault, parse_response, records

logger = logging.getLogger(__name__)

NMBRS_API_BASE = "https://api.nmbrs.nl/soap/v3"
NMBRS_SANDBOX_API_BASE = "https://sandbox-api.nmbrs.nl/soap/v3"
NMBRS_NAMESPACE_BASE = "https://api.nmbrs.nl/soap/v3"

FULL_TIME_HOURS = Decimal("40")

HOUR_TYPES = {
    "Regular": HourType.REGULAR,
    "Overtime": HourType.OVERTIME,
    "Sick": HourType.SICK,
    "Vacation": HourType.VACATION,
    "Holiday": HourType.VACATION,
}

HOUR_TYPES_OUT = {
    HourType.REGULAR: "Regular",
    HourType.OVERTIME: "Overtime",
    HourType.SICK: "Sick",
    HourType.VACATION: "Vacation",
    HourType.OTHER: "Other",
}

ABSENCE_TYPES = {
    "Vacation": LeaveType.VACATION,
    "Holiday": LeaveType.VACATION,
    "Sick": LeaveType.SICK,
    "Special": LeaveType.SPECIAL,
    "Unpaid": LeaveType.UNPAID,
}

CONTRACT_TYPES = {
    "Fulltime": ContractType.FULLTIME,
    "Parttime": ContractType.PARTTIME,
    "Flex": ContractType.FLEX,
    "Temporary": ContractType.TEMPORARY,
    "Intern": ContractType.INTERN,
}

STATUSES = {
    "Pending": RecordStatus.PENDING,
    "Approved": RecordStatus.APPROVED,
    "Rejected": RecordStatus.REJECTED,
}


class NmbrsAdapter(PayrollAdapter):
    """Nmbrs payroll integration."""

    provider_type = PayrollProviderType.NMBRS
    display_name = "Nmbrs"
    required_credentials = ("api_token", "domain", "company_id")
    supported_features = SupportedFeatures(
        sync_employees=True,
        sync_hours=True,
        sync_leave=True,
        push_hours=True,
        push_leave=False,  # not offered by the Nmbrs API
    )

    @property
    def base_url(self) -> str:
        if self.credentials.environment == "sandbox":
            return NMBRS_SANDBOX_API_BASE
        return NMBRS_API_BASE

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "text/xml; charset=utf-8"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _call(self, service: str, method: str, params: dict[str, Any] | None = None) -> Element:
        """Invoke one SOAP method and return its ``{method}Result`` element."""
        namespace = f"{NMBRS_NAMESPACE_BASE}/{service}"
        envelope = build_envelope(
            namespace,
            method,
            auth={
                "Token": self.credentials.secret("api_token"),
                "Domain": self.credentials.domain or "",
            },
            params={"CompanyId": self.credentials.company_id or "", **(params or {})},
        )

        try:
            response = await self.client.post(
                f"/{service}.asmx",
                content=envelope,
                headers={"SOAPAction": f"{namespace}/{method}"},
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Nmbrs {service}.{method} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Nmbrs {service}.{method} unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Nmbrs rejected the credentials ({response.status_code})"
            )
        if response.status_code >= 400:
            fault = extract_fault(response.content)
            if fault is not None:
                raise ProtocolError(f"SOAP fault: {fault}", code="soap_fault")
            raise ProtocolError(
                f"Nmbrs API error: {response.status_code} {response.reason_phrase}"
            )

        return parse_response(response.content, method)

    async def test_connection(self) -> ConnectionTestResult:
        try:
            await self._call("CompanyService", "Company_GetCurrent")
        except PayrollIntegrationError as e:
            logger.error(f"Nmbrs connection test failed: {e.message}")
            return ConnectionTestResult(success=False, message=e.message)
        return ConnectionTestResult(success=True, message="Connection to Nmbrs successful")

    async def fetch_employees(self) -> list[PayrollEmployee]:
        result = await self._call("EmployeeService", "Employee_GetAll")

        employees = []
        for emp in records(result, "Employee"):
            employee = self._build("employee", emp, self._employee)
            if employee is not None:
                employees.append(employee)

        logger.info(f"Fetched {len(employees)} employees from Nmbrs")
        return employees

    async def fetch_hours(self, date_range: DateRange) -> list[PayrollHourEntry]:
        result = await self._call(
            "HourService",
            "Hour_GetAll",
            {"StartDate": date_range.start, "EndDate": date_range.end},
        )

        entries = []
        for record in records(result, "HourEntry"):
            entry = self._build("hour entry", record, self._hour_entry)
            if entry is not None:
                entries.append(entry)
        return entries

    async def fetch_leave(self, date_range: DateRange) -> list[PayrollLeaveEntry]:
        result = await self._call(
            "AbsenceService",
            "Absence_GetAll",
            {"StartDate": date_range.start, "EndDate": date_range.end},
        )

        absences = []
        for record in records(result, "Absence"):
            absence = self._build("absence", record, self._absence)
            if absence is not None:
                absences.append(absence)
        return absences

    def _build(self, kind: str, record: dict[str, Any], factory: Callable[[dict], Any]) -> Any:
        """Map one record; a record that does not validate is skipped with a warning."""
        try:
            return factory(record)
        except ValidationError as exc:
            fields = ", ".join(str(error["loc"][0]) for error in exc.errors() if error["loc"])
            self._skip(kind, record, f"invalid {fields or 'record'}")
            return None

    def _employee(self, emp: dict[str, Any]) -> PayrollEmployee:
        part_time = _to_decimal(emp.get("PartTimePercentage"))
        return PayrollEmployee(
            external_id=str(emp.get("Id") or ""),
            employee_number=emp.get("EmployeeNumber"),
            first_name=emp.get("FirstName") or "",
            last_name=emp.get("LastName") or "",
            email=emp.get("Email"),
            date_of_birth=_parse_date(emp.get("DateOfBirth")),
            start_date=_parse_date(emp.get("StartDate")),
            end_date=_parse_date(emp.get("EndDate")),
            department=emp.get("Department"),
            position=emp.get("Function"),
            hours_per_week=part_time / 100 * FULL_TIME_HOURS if part_time else FULL_TIME_HOURS,
            contract_type=self.map_value(
                CONTRACT_TYPES, emp.get("ContractType"), "contract type", ContractType.FULLTIME
            ),
            bsn_number=emp.get("BSN"),
            bank_account_number=emp.get("BankAccountNumber"),
            raw_data=emp,
        )

    def _hour_entry(self, entry: dict[str, Any]) -> PayrollHourEntry | None:
        work_date = _parse_date(entry.get("Date"))
        if work_date is None:
            self._skip("hour entry", entry, "missing or invalid Date")
            return None
        return PayrollHourEntry(
            external_id=str(entry.get("Id") or ""),
            employee_external_id=str(entry.get("EmployeeId") or ""),
            work_date=work_date,
            hours=_to_decimal(entry.get("Hours")) or Decimal("0"),
            type=self.map_value(HOUR_TYPES, entry.get("HourType"), "hour type", HourType.OTHER),
            description=entry.get("Description"),
            status=self.map_value(STATUSES, entry.get("Status"), "status", None),
        )

    def _absence(self, absence: dict[str, Any]) -> PayrollLeaveEntry | None:
        start = _parse_date(absence.get("StartDate"))
        end = _parse_date(absence.get("EndDate")) or start
        if start is None:
            self._skip("absence", absence, "missing or invalid StartDate")
            return None
        return PayrollLeaveEntry(
            external_id=str(absence.get("Id") or ""),
            employee_external_id=str(absence.get("EmployeeId") or ""),
            type=self.map_value(
                ABSENCE_TYPES, absence.get("AbsenceType"), "absence type", LeaveType.VACATION
            ),
            start_date=start,
            end_date=end,
            hours=_to_decimal(absence.get("Hours")),
            days=_to_decimal(absence.get("Days")),
            status=self.map_value(STATUSES, absence.get("Status"), "status", None),
            description=absence.get("Description"),
        )

    async def push_hours(self, entries: list[PayrollHourEntry]) -> SyncResult:
        """Insert hour entries one call at a time; failures are collected per entry."""
        result = SyncResult(success=True, sync_type=SyncType.HOURS)

        for entry in entries:
            try:
                await self._call(
                    "HourService",
                    "Hour_Insert",
                    {
                        "EmployeeId": entry.employee_external_id,
                        "Date": entry.work_date,
                        "Hours": entry.hours,
                        "HourType": HOUR_TYPES_OUT.get(entry.type, "Other"),
                        "Description": entry.description or "",
                    },
                )
                result.records_synced += 1
            except PayrollIntegrationError as e:
                logger.error(f"Nmbrs hour insert failed for {entry.external_id}: {e.message}")
                result.records_failed += 1
                result.errors.append(
                    SyncError(record=entry.external_id, message=e.message, code=e.code)
                )

        result.success = result.records_failed == 0
        return result

    def _skip(self, kind: str, record: dict, reason: str):
        message = f"Nmbrs {kind} {record.get('Id') or '?'} skipped: {reason}"
        logger.warning(message)
        self.warnings.append(message)


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except (ValueError, TypeError):
        return None


def _to_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None
