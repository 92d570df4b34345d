"""
Payroll Provider Integrations

Adapters, credential vault and registry for external payroll systems.
"""

from integrations.base import (
    DateRange,
    PayrollAdapter,
    PayrollCredentials,
    PayrollEmployee,
    PayrollHourEntry,
    PayrollLeaveEntry,
    PayrollProviderType,
    SyncResult,
)

__all__ = [
    "DateRange",
    "PayrollAdapter",
    "PayrollCredentials",
    "PayrollEmployee",
    "PayrollHourEntry",
    "PayrollLeaveEntry",
    "PayrollProviderType",
    "SyncResult",
]
