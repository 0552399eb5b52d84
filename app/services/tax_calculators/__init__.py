"""
ERP Payroll Engine - Tax Calculators Package

Modules:
- paye_service: progressive PAYE over configurable brackets, annualized by
  payroll frequency
"""

from decimal import Decimal

from app.models.payroll import PayrollFrequency
from app.services.tax_calculators.paye_service import (
    DEFAULT_PAYE_BANDS,
    FREQUENCY_MULTIPLIERS,
    PAYECalculator,
    PAYEService,
    PAYETaxBand,
    TaxComputation,
    frequency_multiplier,
    round_money,
    validate_tax_bands,
)


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def calculate_paye(
    period_income: Decimal,
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
) -> Decimal:
    """
    Calculate PAYE for one payroll period using the default bands.

    Args:
        period_income: Taxable income for the period
        frequency: Payroll frequency the income belongs to

    Returns:
        Period PAYE rounded to kobo
    """
    return PAYECalculator().calculate_tax(period_income, frequency).period_tax


def calculate_annual_paye(annual_income: Decimal) -> Decimal:
    """Annual PAYE on an annual income using the default bands."""
    tax, _ = PAYECalculator().calculate_annual_tax(annual_income)
    return round_money(tax)


__all__ = [
    "DEFAULT_PAYE_BANDS",
    "FREQUENCY_MULTIPLIERS",
    "PAYECalculator",
    "PAYEService",
    "PAYETaxBand",
    "TaxComputation",
    "frequency_multiplier",
    "round_money",
    "validate_tax_bands",
    "calculate_paye",
    "calculate_annual_paye",
]
