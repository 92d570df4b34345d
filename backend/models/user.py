"""
User Model

Account records owned by the workforce application. The payroll sync engine
reads them to match provider employees by e-mail and writes back the payroll
identifiers (BSN, bank account) it receives.
"""

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from backend.models.employee import Employee


class User(TimestampMixin, Base):
    """Tenant user account."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    # Identity
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Payroll identifiers
    bsn_number: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Dutch citizen service number",
    )
    bank_account_number: Mapped[str | None] = mapped_column(
        String(34),
        nullable=True,
        comment="IBAN",
    )

    employee: Mapped["Employee | None"] = relationship(
        back_populates="user",
        uselist=False,
    )

    __table_args__ = (
        Index("ix_users_tenant_email", "tenant_id", "email"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
