"""
ERP Payroll Engine - Compensation Item Eligibility

Pure checks deciding whether an allowance, bonus or deduction applies to an
employee for a payroll period. Nothing here touches the database.

An item is eligible when it targets the employee (scope match) and is
available for the period:
- status is active
- its validity window overlaps the period month
- it has not already been consumed in the period by another payroll run
  (one_time items are never paid twice)
- the run frequency admits the item's frequency
"""

import calendar
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, Optional

from app.models.compensation import ItemStatus
from app.models.payroll import PayrollFrequency
from app.utils.error_handling import InvalidPeriodException


# Item frequencies each run frequency may pay out
RUN_FREQUENCY_ADMITS: Dict[PayrollFrequency, FrozenSet[PayrollFrequency]] = {
    PayrollFrequency.MONTHLY: frozenset(PayrollFrequency),
    PayrollFrequency.QUARTERLY: frozenset({PayrollFrequency.QUARTERLY, PayrollFrequency.YEARLY}),
    PayrollFrequency.YEARLY: frozenset({PayrollFrequency.YEARLY}),
    PayrollFrequency.ONE_TIME: frozenset({PayrollFrequency.ONE_TIME}),
}


@dataclass(frozen=True)
class PayrollPeriod:
    """Calendar month a payroll run pays for."""
    month: int
    year: int

    def __post_init__(self):
        if not isinstance(self.month, int) or not 1 <= self.month <= 12:
            raise InvalidPeriodException(self.month, self.year)
        if not isinstance(self.year, int) or not 1900 <= self.year <= 9999:
            raise InvalidPeriodException(self.month, self.year)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def quarter(self) -> int:
        """Zero-based quarter index."""
        return (self.month - 1) // 3

    def same_period(self, other: date, frequency: PayrollFrequency) -> bool:
        """Whether ``other`` falls in this period at the granularity of ``frequency``."""
        if other.year != self.year:
            return False
        if frequency == PayrollFrequency.YEARLY:
            return True
        if frequency == PayrollFrequency.QUARTERLY:
            return (other.month - 1) // 3 == self.quarter
        return other.month == self.month

    def label(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"


def matches_scope(item, employee_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> bool:
    return item.target.includes(employee_id, department_id)


def within_validity_window(item, period: PayrollPeriod) -> bool:
    if item.start_date and item.start_date > period.end:
        return False
    if item.end_date and item.end_date < period.start:
        return False
    return True


def consumed_for_period(item, period: PayrollPeriod, run_id: Optional[uuid.UUID] = None) -> bool:
    """
    Whether a previous payroll run already paid this item for the period.

    Usage by ``run_id`` itself does not count, so one batch can pay a shared
    item to every employee it targets.
    """
    if not item.is_used:
        return False
    if run_id is not None and item.last_used_run_id == run_id:
        return False
    if item.frequency == PayrollFrequency.ONE_TIME:
        return True
    if item.last_used_date is None:
        return False
    return period.same_period(item.last_used_date, PayrollFrequency(item.frequency))


def admitted_by_run(item_frequency: PayrollFrequency, run_frequency: PayrollFrequency) -> bool:
    return PayrollFrequency(item_frequency) in RUN_FREQUENCY_ADMITS[PayrollFrequency(run_frequency)]


def is_available(
    item,
    period: PayrollPeriod,
    run_frequency: PayrollFrequency,
    run_id: Optional[uuid.UUID] = None,
) -> bool:
    if item.status != ItemStatus.ACTIVE:
        return False
    if not within_validity_window(item, period):
        return False
    if consumed_for_period(item, period, run_id):
        return False
    return admitted_by_run(item.frequency, run_frequency)


def is_eligible(
    item,
    period: PayrollPeriod,
    run_frequency: PayrollFrequency,
    employee_id: uuid.UUID,
    department_id: Optional[uuid.UUID],
    run_id: Optional[uuid.UUID] = None,
) -> bool:
    """Scope match and availability, both required."""
    return (
        matches_scope(item, employee_id, department_id)
        and is_available(item, period, run_frequency, run_id)
    )
