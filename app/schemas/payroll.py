"""
ERP Payroll Engine - Payroll Schemas

Pydantic schemas for payroll calculation, preview and processing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.config import settings
from app.models.payroll import PayrollFrequency, PayrollScope


# ===========================================
# ENUMS AS LITERALS
# ===========================================

PayrollScopeEnum = Literal["company", "department", "individual"]

PayrollFrequencyEnum = Literal["monthly", "quarterly", "yearly", "one_time"]


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class PayrollPeriodBase(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    frequency: PayrollFrequencyEnum = Field(default_factory=lambda: settings.default_payroll_frequency)


class PayrollRunRequest(PayrollPeriodBase):
    """
    Preview or process payroll for a scope.

    ``target_ids`` holds department ids for department scope and employee
    ids for individual scope; it must be empty for company scope.
    """
    scope: PayrollScopeEnum
    target_ids: List[UUID] = []

    @model_validator(mode="after")
    def check_targets(self):
        if self.scope == "company" and self.target_ids:
            raise ValueError("Company scope takes no target_ids")
        if self.scope != "company" and not self.target_ids:
            raise ValueError(f"{self.scope} scope requires target_ids")
        return self


class EmployeePayrollRequest(PayrollPeriodBase):
    """Calculate payroll for a single employee."""
    scope: PayrollScopeEnum = "individual"
    mark_as_used: bool = False


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class PayrollErrorEntry(BaseModel):
    employee_id: UUID
    employee_name: str
    step: str
    code: str
    message: str


class PayrollDuplicateEntry(BaseModel):
    employee_id: UUID
    employee_name: str


class ProcessingSummaryResponse(BaseModel):
    """Outcome of a processed payroll run."""
    run_id: UUID
    month: int
    year: int
    frequency: PayrollFrequency
    scope: PayrollScope
    total_employees: int
    successful: int
    failed: int
    duplicates: List[PayrollDuplicateEntry]
    errors: List[PayrollErrorEntry]
    payroll_ids: List[UUID]
    total_gross_pay: Decimal
    total_net_pay: Decimal
    total_deductions: Decimal


class PayrollRecordResponse(BaseModel):
    """Persisted payroll record."""
    id: UUID
    employee_id: UUID
    department_id: Optional[UUID] = None
    salary_grade_id: Optional[UUID] = None
    month: int
    year: int
    frequency: PayrollFrequency
    scope: PayrollScope

    base_salary: Decimal
    effective_base_salary: Decimal
    step_increment: Decimal
    salary_step: Optional[str] = None
    grade_allowances: Dict[str, Any]

    allowances: List[Dict[str, Any]]
    bonuses: List[Dict[str, Any]]
    deductions: List[Dict[str, Any]]
    paye_breakdown: List[Dict[str, Any]]

    total_allowances: Decimal
    taxable_allowances: Decimal
    total_bonuses: Decimal
    taxable_bonuses: Decimal
    statutory_deductions: Decimal
    voluntary_deductions: Decimal
    pension_amount: Decimal
    nhis_amount: Decimal
    paye_amount: Decimal
    total_deductions: Decimal
    taxable_income: Decimal
    gross_pay: Decimal
    net_pay: Decimal

    payroll_run_id: UUID
    processed_by_id: Optional[UUID] = None
    processing_date: datetime

    class Config:
        from_attributes = True


class PayrollRecordSummary(BaseModel):
    """Compact record for history listings."""
    id: UUID
    month: int
    year: int
    frequency: PayrollFrequency
    scope: PayrollScope
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    processing_date: datetime

    class Config:
        from_attributes = True
