"""
ERP Payroll Engine - PAYE Calculator Service

Progressive PAYE (Pay As You Earn) computation from the configured tax
brackets.

Period income is annualized by the payroll frequency, taxed bracket by
bracket, and the annual tax is divided back down to the period:

- monthly: x12
- quarterly: x4
- yearly: x1
- one_time: x12 (treated as a monthly-equivalent payment)

Default brackets (Nigerian PAYE, annual):
- First ₦300,000: 7%
- Next ₦300,000: 11% + ₦21,000
- Next ₦500,000: 15% + ₦54,000
- Next ₦500,000: 19% + ₦129,000
- Next ₦1,600,000: 21% + ₦224,000
- Above ₦3,200,000: 24% + ₦560,000
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payroll import PayrollFrequency
from app.models.tax_bracket import TaxBracket
from app.utils.error_handling import ErrorCode, ValidationException

logger = logging.getLogger(__name__)


KOBO = Decimal("0.01")
ZERO = Decimal("0")

FREQUENCY_MULTIPLIERS: Dict[PayrollFrequency, int] = {
    PayrollFrequency.MONTHLY: 12,
    PayrollFrequency.QUARTERLY: 4,
    PayrollFrequency.YEARLY: 1,
    PayrollFrequency.ONE_TIME: 12,
}


def round_money(value: Any) -> Decimal:
    """Round to kobo, half up."""
    return Decimal(str(value)).quantize(KOBO, rounding=ROUND_HALF_UP)


def frequency_multiplier(frequency: PayrollFrequency) -> int:
    return FREQUENCY_MULTIPLIERS[PayrollFrequency(frequency)]


@dataclass
class PAYETaxBand:
    """Tax band definition."""
    name: str
    order: int
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal
    additional_tax: Decimal = ZERO

    @classmethod
    def from_model(cls, bracket: TaxBracket) -> "PAYETaxBand":
        return cls(
            name=bracket.name,
            order=bracket.order,
            lower=Decimal(bracket.min_amount),
            upper=Decimal(bracket.max_amount) if bracket.max_amount is not None else None,
            rate=Decimal(bracket.tax_rate),
            additional_tax=Decimal(bracket.additional_tax or 0),
        )

    @property
    def width(self) -> Optional[Decimal]:
        """None for the open-ended top band."""
        if self.upper is None:
            return None
        return self.upper - self.lower

    def taxable_portion(self, remaining_income: Decimal) -> Decimal:
        """How much of the remaining income falls in this band."""
        if self.width is None:
            return remaining_income
        return min(remaining_income, self.width)

    def calculate_tax(self, taxable_in_band: Decimal) -> Decimal:
        """Tax for the portion of income in this band, flat charge included."""
        return taxable_in_band * (self.rate / 100) + self.additional_tax


DEFAULT_PAYE_BANDS = [
    PAYETaxBand("First ₦300,000", 1, Decimal("0"), Decimal("300000"), Decimal("7")),
    PAYETaxBand("Next ₦300,000", 2, Decimal("300000"), Decimal("600000"), Decimal("11"), Decimal("21000")),
    PAYETaxBand("Next ₦500,000", 3, Decimal("600000"), Decimal("1100000"), Decimal("15"), Decimal("54000")),
    PAYETaxBand("Next ₦500,000", 4, Decimal("1100000"), Decimal("1600000"), Decimal("19"), Decimal("129000")),
    PAYETaxBand("Next ₦1,600,000", 5, Decimal("1600000"), Decimal("3200000"), Decimal("21"), Decimal("224000")),
    PAYETaxBand("Above ₦3,200,000", 6, Decimal("3200000"), None, Decimal("24"), Decimal("560000")),
]


@dataclass
class TaxComputation:
    """Result of a PAYE computation for one payroll period."""
    frequency: PayrollFrequency
    period_income: Decimal
    annual_income: Decimal
    annual_tax: Decimal
    period_tax: Decimal
    breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "period_income": str(self.period_income),
            "annual_income": str(self.annual_income),
            "annual_tax": str(self.annual_tax),
            "period_tax": str(self.period_tax),
            "breakdown": self.breakdown,
        }


def validate_tax_bands(bands: Sequence[PAYETaxBand]) -> None:
    """
    Check that bands, ordered ascending, partition [0, infinity).

    Raises:
        ValidationException: on gaps, overlaps, a non-zero start, an open
            band that is not last, or a rate outside 0-100.
    """
    def invalid(message: str, details: Optional[Dict[str, Any]] = None):
        return ValidationException(
            message, field="brackets", details=details, code=ErrorCode.INVALID_TAX_BRACKETS,
        )

    if not bands:
        raise invalid("At least one tax bracket is required")

    ordered = sorted(bands, key=lambda b: b.order)
    orders = [b.order for b in ordered]
    if len(set(orders)) != len(orders):
        raise invalid("Tax bracket order values must be unique", {"orders": orders})

    if ordered[0].lower != 0:
        raise invalid("The first tax bracket must start at 0", {"min_amount": str(ordered[0].lower)})

    for index, band in enumerate(ordered):
        if band.rate < 0 or band.rate > 100:
            raise invalid(f"Tax rate for '{band.name}' must be between 0 and 100")
        if band.additional_tax < 0:
            raise invalid(f"Additional tax for '{band.name}' cannot be negative")

        is_last = index == len(ordered) - 1
        if band.upper is None:
            if not is_last:
                raise invalid(f"Only the last bracket may be open ended, not '{band.name}'")
            continue
        if band.upper <= band.lower:
            raise invalid(f"Bracket '{band.name}' must have max_amount above min_amount")
        if not is_last and ordered[index + 1].lower != band.upper:
            raise invalid(
                f"Gap or overlap between '{band.name}' and '{ordered[index + 1].name}'",
                {"upper": str(band.upper), "next_lower": str(ordered[index + 1].lower)},
            )

    if ordered[-1].upper is not None:
        raise invalid("The last tax bracket must be open ended")


class PAYECalculator:
    """
    Progressive bracket calculator.

    Walks the bands in ascending order, taking
    ``min(remaining, upper - lower)`` from each band and charging
    ``portion * rate / 100 + additional_tax`` for every band the income
    reaches.
    """

    def __init__(self, tax_bands: Optional[Iterable[PAYETaxBand]] = None):
        bands = list(tax_bands) if tax_bands is not None else list(DEFAULT_PAYE_BANDS)
        self.tax_bands = sorted(bands, key=lambda b: b.order)

    @classmethod
    def from_brackets(cls, brackets: Iterable[TaxBracket]) -> "PAYECalculator":
        return cls([PAYETaxBand.from_model(b) for b in brackets])

    @staticmethod
    def annualize(period_income: Decimal, frequency: PayrollFrequency) -> Decimal:
        return Decimal(period_income) * frequency_multiplier(frequency)

    @staticmethod
    def to_period(annual_amount: Decimal, frequency: PayrollFrequency) -> Decimal:
        return Decimal(annual_amount) / frequency_multiplier(frequency)

    def calculate_annual_tax(self, annual_income: Decimal) -> Tuple[Decimal, List[Dict[str, Any]]]:
        """
        Calculate tax on an annual income.

        Returns:
            Tuple of (annual_tax, band_breakdown)
        """
        total_tax = ZERO
        breakdown: List[Dict[str, Any]] = []
        remaining = Decimal(annual_income)

        for band in self.tax_bands:
            if remaining <= 0:
                break

            taxable_in_band = band.taxable_portion(remaining)
            if taxable_in_band <= 0:
                continue

            band_tax = band.calculate_tax(taxable_in_band)
            total_tax += band_tax
            breakdown.append({
                "bracket": band.name,
                "rate": f"{band.rate}%",
                "taxable_amount": str(round_money(taxable_in_band)),
                "tax_amount": str(round_money(band_tax)),
            })
            remaining -= taxable_in_band

        return total_tax, breakdown

    def calculate_tax(
        self,
        period_income: Decimal,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
    ) -> TaxComputation:
        """PAYE for one payroll period of the given frequency."""
        frequency = PayrollFrequency(frequency)
        period_income = Decimal(period_income)

        if period_income <= 0:
            return TaxComputation(
                frequency=frequency,
                period_income=round_money(max(period_income, ZERO)),
                annual_income=ZERO,
                annual_tax=ZERO,
                period_tax=round_money(ZERO),
            )

        annual_income = self.annualize(period_income, frequency)
        annual_tax, breakdown = self.calculate_annual_tax(annual_income)

        return TaxComputation(
            frequency=frequency,
            period_income=round_money(period_income),
            annual_income=round_money(annual_income),
            annual_tax=round_money(annual_tax),
            period_tax=round_money(self.to_period(annual_tax, frequency)),
            breakdown=breakdown,
        )


class PAYEService:
    """Service for tax bracket management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_brackets(self) -> List[TaxBracket]:
        result = await self.db.execute(
            select(TaxBracket)
            .where(TaxBracket.is_active.is_(True))
            .order_by(TaxBracket.order)
        )
        return list(result.scalars().all())

    async def get_calculator(self) -> PAYECalculator:
        """Calculator over the active brackets. No brackets means no PAYE."""
        brackets = await self.get_active_brackets()
        if not brackets:
            logger.warning("No active tax brackets configured; PAYE will be zero")
        return PAYECalculator.from_brackets(brackets)

    async def replace_brackets(
        self,
        bands: Sequence[PAYETaxBand],
        actor_id: Optional[uuid.UUID] = None,
    ) -> List[TaxBracket]:
        """Validate a new bracket set and make it the active one."""
        validate_tax_bands(bands)

        await self.db.execute(
            update(TaxBracket)
            .where(TaxBracket.is_active.is_(True))
            .values(is_active=False, updated_by_id=actor_id)
        )

        created = []
        for band in sorted(bands, key=lambda b: b.order):
            bracket = TaxBracket(
                name=band.name,
                order=band.order,
                min_amount=band.lower,
                max_amount=band.upper,
                tax_rate=band.rate,
                additional_tax=band.additional_tax,
                is_active=True,
                created_by_id=actor_id,
            )
            self.db.add(bracket)
            created.append(bracket)

        await self.db.flush()
        logger.info(f"Replaced active tax brackets with {len(created)} bands")
        return created

    async def seed_default_brackets(self, actor_id: Optional[uuid.UUID] = None) -> List[TaxBracket]:
        """Install the default bands if none are active."""
        existing = await self.get_active_brackets()
        if existing:
            return existing
        return await self.replace_brackets(DEFAULT_PAYE_BANDS, actor_id=actor_id)
