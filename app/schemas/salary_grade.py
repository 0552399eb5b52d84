"""
ERP Payroll Engine - Salary Grade Schemas

Pydantic schemas for salary grades and role mappings.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ===========================================
# GRADE COMPONENTS
# ===========================================

class SalaryStep(BaseModel):
    """Seniority step inside a grade."""
    step: str = Field(..., min_length=1, max_length=20)
    increment_percent: Decimal = Field(..., ge=0, le=100)
    years_of_service_threshold: Decimal = Field(..., ge=0)


class CustomAllowance(BaseModel):
    """Named fixed allowance attached to a grade."""
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0)


# ===========================================
# SALARY GRADE SCHEMAS
# ===========================================

class SalaryGradeBase(BaseModel):
    """Base salary grade schema."""
    grade: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    min_gross_salary: Decimal = Field(..., ge=0)
    max_gross_salary: Decimal = Field(..., gt=0)

    # Fixed allowances
    housing_allowance: Decimal = Field(Decimal("0"), ge=0)
    transport_allowance: Decimal = Field(Decimal("0"), ge=0)
    meal_allowance: Decimal = Field(Decimal("0"), ge=0)
    other_allowance: Decimal = Field(Decimal("0"), ge=0)

    custom_allowances: List[CustomAllowance] = []
    steps: List[SalaryStep] = []
    is_active: bool = True


class SalaryGradeCreate(SalaryGradeBase):
    """Create salary grade request."""

    @model_validator(mode="after")
    def check_salary_range(self):
        if self.min_gross_salary >= self.max_gross_salary:
            raise ValueError("min_gross_salary must be less than max_gross_salary")
        return self


class SalaryGradeUpdate(BaseModel):
    """Update salary grade request. Only set fields are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    min_gross_salary: Optional[Decimal] = Field(None, ge=0)
    max_gross_salary: Optional[Decimal] = Field(None, gt=0)
    housing_allowance: Optional[Decimal] = Field(None, ge=0)
    transport_allowance: Optional[Decimal] = Field(None, ge=0)
    meal_allowance: Optional[Decimal] = Field(None, ge=0)
    other_allowance: Optional[Decimal] = Field(None, ge=0)
    custom_allowances: Optional[List[CustomAllowance]] = None
    steps: Optional[List[SalaryStep]] = None
    is_active: Optional[bool] = None


class SalaryGradeResponse(SalaryGradeBase):
    """Salary grade response."""
    id: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ===========================================
# ROLE MAPPING SCHEMAS
# ===========================================

class RoleGradeAssignment(BaseModel):
    """Point a role at a salary grade."""
    salary_grade_id: UUID


class RoleMappingResponse(BaseModel):
    """Role to salary grade mapping response."""
    id: UUID
    role_id: UUID
    salary_grade_id: UUID
    is_active: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class SalaryValidationRequest(BaseModel):
    gross_salary: Decimal = Field(..., ge=0)


class SalaryValidationResponse(BaseModel):
    """Whether a salary fits the role's grade band."""
    is_valid: bool
    message: str
    grade: str
    min_gross_salary: Decimal
    max_gross_salary: Decimal
