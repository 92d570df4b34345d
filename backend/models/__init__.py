"""SQLAlchemy ORM Models for the payroll sync engine."""

from backend.models.base import Base, TimestampMixin
from backend.models.employee import Employee
from backend.models.integration import PayrollProviderConfig
from backend.models.sync_log import PayrollSyncLog
from backend.models.timesheet import Timesheet, TimesheetStatus
from backend.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "Employee",
    "PayrollProviderConfig",
    "PayrollSyncLog",
    "Timesheet",
    "TimesheetStatus",
    "User",
]
