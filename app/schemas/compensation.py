"""
ERP Payroll Engine - Compensation Item Schemas

Pydantic schemas for allowances, bonuses and deductions.
Scope/target consistency and PAYE rules are enforced by the service.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.compensation import (
    AllowanceCategory,
    BonusType,
    CalculationType,
    DeductionCategory,
    DeductionType,
    ItemStatus,
    PercentageBase,
)
from app.models.payroll import PayrollFrequency, PayrollScope


# ===========================================
# ENUMS AS LITERALS
# ===========================================

ScopeEnum = Literal["company", "department", "individual"]

FrequencyEnum = Literal["monthly", "quarterly", "yearly", "one_time"]

CalculationTypeEnum = Literal["fixed", "percentage", "tax_brackets"]

PercentageBaseEnum = Literal["base_salary", "gross_salary"]

AllowanceCategoryEnum = Literal[
    "performance", "special", "hardship", "transport", "housing",
    "meal", "medical", "education", "other"
]

BonusTypeEnum = Literal[
    "personal", "performance", "thirteenth_month", "special",
    "achievement", "retention", "project", "year_end"
]

DeductionTypeEnum = Literal["statutory", "voluntary"]

DeductionCategoryEnum = Literal[
    "paye", "pension", "nhis", "loan_repayment", "insurance", "association_dues",
    "savings", "transport", "cooperative", "training_fund", "welfare", "penalty", "general"
]


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class CompensationItemBase(BaseModel):
    """Fields shared by all compensation items."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None

    scope: ScopeEnum
    department_ids: List[UUID] = []
    employee_ids: List[UUID] = []

    calculation_type: CalculationTypeEnum = "fixed"
    percentage_base: Optional[PercentageBaseEnum] = None
    amount: Optional[Decimal] = Field(None, ge=0, description="Naira amount, or percent for percentage items")
    taxable: Optional[bool] = Field(None, description="Defaults from the category when omitted")

    frequency: Optional[FrequencyEnum] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_percentage(self):
        if self.calculation_type == "percentage" and self.amount is not None and self.amount > 100:
            raise ValueError("Percentage amount must be between 0 and 100")
        return self


class AllowanceCreate(CompensationItemBase):
    """Create allowance request."""
    category: AllowanceCategoryEnum = "other"


class BonusCreate(CompensationItemBase):
    """Create bonus request."""
    bonus_type: BonusTypeEnum = "personal"


class DeductionCreate(CompensationItemBase):
    """Create deduction request. PAYE deductions take no amount."""
    deduction_type: Optional[DeductionTypeEnum] = None
    category: DeductionCategoryEnum = "general"


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class CompensationItemResponse(BaseModel):
    """Compensation item response, including usage tracking."""
    id: UUID
    name: str
    description: Optional[str] = None
    scope: PayrollScope
    department_ids: List[str]
    employee_ids: List[str]
    calculation_type: CalculationType
    percentage_base: PercentageBase
    amount: Optional[Decimal] = None
    taxable: bool
    frequency: PayrollFrequency
    start_date: date
    end_date: Optional[date] = None
    status: ItemStatus

    is_used: bool
    usage_count: int
    last_used_date: Optional[date] = None
    last_used_at: Optional[datetime] = None
    last_used_in_payroll_id: Optional[UUID] = None
    version: int
    created_at: datetime

    class Config:
        from_attributes = True


class AllowanceResponse(CompensationItemResponse):
    category: AllowanceCategory


class BonusResponse(CompensationItemResponse):
    bonus_type: BonusType


class DeductionResponse(CompensationItemResponse):
    deduction_type: DeductionType
    category: DeductionCategory


class ExpireItemsResponse(BaseModel):
    expired: int
