"""
ERP Payroll Engine - Tax Bracket Schemas

Pydantic schemas for PAYE brackets and ad-hoc PAYE calculation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class TaxBracketInput(BaseModel):
    """One band of a bracket set."""
    name: str = Field(..., min_length=1, max_length=100)
    order: int = Field(..., ge=1)
    min_amount: Decimal = Field(..., ge=0)
    max_amount: Optional[Decimal] = Field(None, description="Null for the open top band")
    tax_rate: Decimal = Field(..., ge=0, le=100)
    additional_tax: Decimal = Field(Decimal("0"), ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.max_amount is not None and self.max_amount <= self.min_amount:
            raise ValueError("max_amount must be greater than min_amount")
        return self


class TaxBracketReplace(BaseModel):
    """Replace the whole active bracket set."""
    brackets: List[TaxBracketInput] = Field(..., min_length=1)


class TaxBracketResponse(BaseModel):
    id: UUID
    name: str
    order: int
    min_amount: Decimal
    max_amount: Optional[Decimal] = None
    tax_rate: Decimal
    additional_tax: Decimal
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PAYECalculationRequest(BaseModel):
    """PAYE for a period income, using the active brackets."""
    income: Decimal = Field(..., ge=0)
    frequency: Literal["monthly", "quarterly", "yearly", "one_time"] = "monthly"


class PAYECalculationResponse(BaseModel):
    frequency: str
    period_income: Decimal
    annual_income: Decimal
    annual_tax: Decimal
    period_tax: Decimal
    breakdown: List[Dict[str, Any]]
