"""
Base Integration Classes

Abstract adapter contract and canonical data models shared by all payroll
provider integrations. Every adapter returns these DTOs regardless of the
provider's native schema.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from integrations.exceptions import ConfigurationError, MappingError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class PayrollProviderType(str, Enum):
    """Known payroll providers."""

    NMBRS = "nmbrs"
    AFAS = "afas"
    LOKET = "loket"
    EXACT = "exact"


class ConnectionStatus(str, Enum):
    """Connection state stored on a provider configuration."""

    UNCONFIGURED = "unconfigured"
    CONNECTED = "connected"
    ERROR = "error"


class SyncType(str, Enum):
    """What a sync run covers."""

    EMPLOYEES = "employees"
    HOURS = "hours"
    LEAVE = "leave"
    FULL = "full"


class SyncStatus(str, Enum):
    """Lifecycle of a sync log row. Only PENDING is non-terminal."""

    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class HourType(str, Enum):
    REGULAR = "regular"
    OVERTIME = "overtime"
    SICK = "sick"
    VACATION = "vacation"
    OTHER = "other"


class LeaveType(str, Enum):
    VACATION = "vacation"
    SICK = "sick"
    SPECIAL = "special"
    UNPAID = "unpaid"


class RecordStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContractType(str, Enum):
    FULLTIME = "FULLTIME"
    PARTTIME = "PARTTIME"
    FLEX = "FLEX"
    TEMPORARY = "TEMPORARY"
    INTERN = "INTERN"


# Fields the credential vault encrypts at rest
SECRET_CREDENTIAL_FIELDS = ("api_token", "client_secret", "access_token", "refresh_token")


class PayrollCredentials(BaseModel):
    """
    Loosely-typed credential bag.

    Which fields are required is declared by each adapter through
    ``required_credentials``. Secret fields are ``SecretStr`` so they are
    masked in reprs and log output.
    """

    model_config = ConfigDict(extra="ignore")

    # Token based (Nmbrs)
    api_token: SecretStr | None = None
    domain: str | None = None
    company_id: str | None = None

    # Generic OAuth
    client_id: str | None = None
    client_secret: SecretStr | None = None
    access_token: SecretStr | None = None
    refresh_token: SecretStr | None = None
    token_expiry: str | None = None

    environment: Literal["sandbox", "production"] | None = None

    def secret(self, field: str) -> str:
        """Plain value of a secret field, empty string when unset."""
        value = getattr(self, field)
        if value is None:
            return ""
        if isinstance(value, SecretStr):
            return value.get_secret_value()
        return str(value)

    def missing_fields(self, required: tuple[str, ...] | list[str]) -> list[str]:
        """Return the required fields that are unset or blank."""
        return [name for name in required if not self.secret(name).strip()]


class PayrollEmployee(BaseModel):
    """Normalized employee from any payroll provider."""

    external_id: str = Field(..., description="ID in external system")
    employee_number: str | None = None
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    date_of_birth: date | None = None
    start_date: date | None = None
    end_date: date | None = None
    department: str | None = None
    position: str | None = None
    hours_per_week: Decimal | None = None
    contract_type: ContractType | None = None

    # Dutch citizen service number and IBAN
    bsn_number: str | None = None
    bank_account_number: str | None = None

    raw_data: dict = Field(default_factory=dict, repr=False)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.external_id


class PayrollHourEntry(BaseModel):
    """Normalized hour registration."""

    external_id: str
    employee_external_id: str
    work_date: date
    hours: Decimal
    type: HourType = HourType.REGULAR
    description: str | None = None
    status: RecordStatus | None = None


class PayrollLeaveEntry(BaseModel):
    """Normalized absence/leave registration."""

    external_id: str
    employee_external_id: str
    type: LeaveType
    start_date: date
    end_date: date
    hours: Decimal | None = None
    days: Decimal | None = None
    status: RecordStatus | None = None
    description: str | None = None


class DateRange(BaseModel):
    """Inclusive date range for hour/leave operations."""

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class SyncError(BaseModel):
    """One failed record (or the fatal cause) of a sync run."""

    record: str | None = None
    message: str
    code: str | None = None


class SyncResult(BaseModel):
    """Result of a sync or push operation."""

    success: bool
    sync_type: SyncType
    records_synced: int = 0
    records_failed: int = 0
    errors: list[SyncError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    log_id: Any = None

    @property
    def first_error(self) -> str | None:
        return self.errors[0].message if self.errors else None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str


class SupportedFeatures(BaseModel):
    """Capabilities an adapter declares."""

    model_config = ConfigDict(frozen=True)

    sync_employees: bool = False
    sync_hours: bool = False
    sync_leave: bool = False
    push_hours: bool = False
    push_leave: bool = False


class PayrollAdapter(ABC):
    """
    Abstract base class for payroll provider adapters.

    An adapter translates canonical DTOs to and from one provider's wire
    protocol. It owns a single ``httpx.AsyncClient`` and is used as an async
    context manager so the client is always closed.
    """

    provider_type: PayrollProviderType
    display_name: str
    required_credentials: tuple[str, ...] = ()
    supported_features: SupportedFeatures = SupportedFeatures()

    def __init__(
        self,
        credentials: PayrollCredentials,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.warnings: list[str] = []

    async def __aenter__(self) -> "PayrollAdapter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Check the provider connection without mutating anything."""
        pass

    @abstractmethod
    async def fetch_employees(self) -> list[PayrollEmployee]:
        pass

    @abstractmethod
    async def fetch_hours(self, date_range: DateRange) -> list[PayrollHourEntry]:
        pass

    @abstractmethod
    async def fetch_leave(self, date_range: DateRange) -> list[PayrollLeaveEntry]:
        pass

    async def push_hours(self, entries: list[PayrollHourEntry]) -> SyncResult:
        """
        Submit hour entries to the provider.

        Each entry is submitted independently; a failing entry must be
        recorded in the result and must not stop the remaining entries.
        """
        raise ConfigurationError(
            f"{self.display_name} does not support pushing hours",
            code="unsupported_operation",
        )

    async def push_leave(self, entries: list[PayrollLeaveEntry]) -> SyncResult:
        raise ConfigurationError(
            f"{self.display_name} does not support pushing leave",
            code="unsupported_operation",
        )

    def map_value(self, mapping: dict[str, Any], value: str | None, field: str, default: Any) -> Any:
        """
        Map a provider enum value to its canonical counterpart.

        Unknown values fall back to ``default`` and are recorded in
        ``self.warnings`` instead of failing the payload.
        """
        try:
            if not isinstance(value, str) or value not in mapping:
                raise MappingError(field, value)
            return mapping[value]
        except MappingError as exc:
            if value is not None:
                message = f"{self.display_name}: {exc.message}, using {_label(default)}"
                logger.warning(message)
                self.warnings.append(message)
            return default


def _label(value: Any) -> str:
    if value is None:
        return "no value"
    if isinstance(value, Enum):
        return repr(value.value)
    return repr(value)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
