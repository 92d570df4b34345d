"""
Employee Model

Employment records owned by the workforce application. Payroll syncs update
matching rows; they never create new ones, so employees only enter the
system through onboarding.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from backend.models.user import User


class Employee(TimestampMixin, Base):
    """Employment details linked to a user account."""

    __tablename__ = "employees"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Identifier shared with the payroll provider
    employee_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Personnel number as known by the payroll provider",
    )

    position: Mapped[str | None] = mapped_column(String(100), nullable=True)
    hours_per_week: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    contract_type: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="FULLTIME|PARTTIME|FLEX|TEMPORARY|INTERN",
    )
    start_date: Mapped[date | None] = mapped_column(nullable=True)
    end_date: Mapped[date | None] = mapped_column(nullable=True)

    user: Mapped["User"] = relationship(
        back_populates="employee",
    )

    __table_args__ = (
        Index("ix_employees_tenant_employee_number", "tenant_id", "employee_number"),
    )

    def __repr__(self) -> str:
        return f"<Employee {self.employee_number or self.id} tenant={self.tenant_id}>"
