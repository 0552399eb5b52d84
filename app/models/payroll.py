"""
ERP Payroll Engine - Payroll Models

Processed payroll records. One immutable row per employee per
(month, year, frequency, scope); the unique constraint on that tuple is the
final guard against processing the same period twice.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, Numeric,
    String, UniqueConstraint, Uuid, func
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, AuditMixin

# One record per employee, period, frequency and scope
PAYROLL_RECORD_UNIQUE = "uq_payroll_records_employee_period"


# ===========================================
# ENUMS
# ===========================================

class PayrollFrequency(str, Enum):
    """
    Payroll run frequency. Compensation items use the same values for how
    often they may be paid.
    """
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class PayrollScope(str, Enum):
    """Who a payroll run (or a compensation item) applies to."""
    COMPANY = "company"
    DEPARTMENT = "department"
    INDIVIDUAL = "individual"


# ===========================================
# PAYROLL RECORD
# ===========================================

class PayrollRecord(BaseModel, AuditMixin):
    """
    Immutable per-employee payroll result.

    Line items are stored as JSON lists of
    ``{"item_id", "name", "category", "amount", "taxable", ...}`` with money
    rendered as strings.
    """

    __tablename__ = "payroll_records"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True,
    )
    salary_grade_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    # Period
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(SQLEnum(PayrollFrequency), nullable=False)
    scope: Mapped[PayrollScope] = mapped_column(SQLEnum(PayrollScope), nullable=False)

    # Base salary
    base_salary: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False,
        comment="Base before step increment",
    )
    effective_base_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    step_increment: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    salary_step: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    grade_allowances: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Line items
    allowances: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    bonuses: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    deductions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    paye_breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # Totals
    total_allowances: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    taxable_allowances: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    total_bonuses: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    taxable_bonuses: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    statutory_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    voluntary_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    pension_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    nhis_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    paye_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    payroll_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
        comment="Groups the records committed by one batch",
    )
    processed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    processing_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "month", "year", "frequency", "scope",
            name=PAYROLL_RECORD_UNIQUE,
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="valid_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayrollRecord(employee_id={self.employee_id}, period={self.month}/{self.year}, "
            f"frequency={self.frequency}, net={self.net_pay})>"
        )
