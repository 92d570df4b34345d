"""Payroll system integrations."""

from integrations.payroll.nmbrs import NmbrsAdapter

__all__ = [
    "NmbrsAdapter",
]
