"""
Payroll Integration Errors

Typed failures raised by adapters, the credential vault, repositories and the
sync orchestrator. Fatal errors abort a sync run; recoverable errors only
affect the record they were raised for.

    PayrollIntegrationError
    |
    +-- ConfigurationError    (fatal)
    +-- AuthenticationError   (fatal)
    +-- NetworkError          (fatal)
    +-- ProtocolError         (fatal)
    +-- MappingError          (recoverable, reported as warning)
    +-- RecordError           (recoverable, counted as failed record)
"""


class PayrollIntegrationError(Exception):
    """Base class for all payroll integration failures."""

    code: str = "payroll_error"
    fatal: bool = True

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(PayrollIntegrationError):
    """Provider configuration is missing, incomplete or unusable."""

    code = "configuration_error"


class AuthenticationError(PayrollIntegrationError):
    """Provider rejected the stored credentials."""

    code = "authentication_error"


class NetworkError(PayrollIntegrationError):
    """Provider unreachable or request timed out."""

    code = "network_error"


class ProtocolError(PayrollIntegrationError):
    """Malformed provider response or provider-side fault."""

    code = "protocol_error"


class MappingError(PayrollIntegrationError):
    """Provider value without a canonical mapping."""

    code = "mapping_error"
    fatal = False

    def __init__(self, field: str, value: str | None):
        super().__init__(f"Unmapped {field} value {value!r}")
        self.field = field
        self.value = value


class RecordError(PayrollIntegrationError):
    """Matching or updating a single internal record failed."""

    code = "record_error"
    fatal = False

    def __init__(self, message: str, record: str | None = None):
        super().__init__(message)
        self.record = record
