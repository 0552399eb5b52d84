"""
ERP Payroll Engine - Eligibility Tests

Scope matching, validity windows and per-period consumption of
compensation items. Items are built in memory; nothing is persisted.
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from app.models.compensation import (
    Allowance,
    CalculationType,
    ItemStatus,
    build_target,
)
from app.models.payroll import PayrollFrequency, PayrollScope
from app.services.eligibility import (
    PayrollPeriod,
    admitted_by_run,
    consumed_for_period,
    is_available,
    is_eligible,
)
from app.utils.error_handling import InvalidPeriodException, InvalidScopeException


EMPLOYEE_ID = uuid.uuid4()
DEPARTMENT_ID = uuid.uuid4()


def make_item(**overrides) -> Allowance:
    values = dict(
        id=uuid.uuid4(),
        name="Hardship",
        scope=PayrollScope.COMPANY,
        department_ids=[],
        employee_ids=[],
        calculation_type=CalculationType.FIXED,
        amount=Decimal("10000"),
        taxable=True,
        frequency=PayrollFrequency.MONTHLY,
        start_date=date(2025, 1, 1),
        end_date=None,
        status=ItemStatus.ACTIVE,
        is_used=False,
        usage_count=0,
        last_used_date=None,
        last_used_run_id=None,
        version=1,
    )
    values.update(overrides)
    return Allowance(**values)


def used_in(item_period: PayrollPeriod, run_id=None, **overrides) -> Allowance:
    return make_item(
        is_used=True,
        usage_count=1,
        last_used_date=item_period.start,
        last_used_run_id=run_id or uuid.uuid4(),
        **overrides,
    )


class TestPayrollPeriod:
    """Month/year validation and period granularity."""

    @pytest.mark.parametrize("month, year", [(0, 2025), (13, 2025), (6, 1800)])
    def test_invalid_period(self, month, year):
        with pytest.raises(InvalidPeriodException):
            PayrollPeriod(month, year)

    def test_bounds(self):
        period = PayrollPeriod(2, 2024)

        assert period.start == date(2024, 2, 1)
        assert period.end == date(2024, 2, 29)

    def test_same_quarter(self):
        period = PayrollPeriod(5, 2025)

        assert period.same_period(date(2025, 4, 1), PayrollFrequency.QUARTERLY)
        assert not period.same_period(date(2025, 3, 1), PayrollFrequency.QUARTERLY)
        assert not period.same_period(date(2024, 5, 1), PayrollFrequency.QUARTERLY)


class TestScopeMatching:
    """Which employees an item targets."""

    def test_company_scope_matches_everyone(self):
        item = make_item()
        assert is_eligible(item, PayrollPeriod(3, 2025), PayrollFrequency.MONTHLY, EMPLOYEE_ID, None)

    def test_department_scope(self):
        item = make_item(scope=PayrollScope.DEPARTMENT, department_ids=[str(DEPARTMENT_ID)])
        period = PayrollPeriod(3, 2025)

        assert is_eligible(item, period, PayrollFrequency.MONTHLY, EMPLOYEE_ID, DEPARTMENT_ID)
        assert not is_eligible(item, period, PayrollFrequency.MONTHLY, EMPLOYEE_ID, uuid.uuid4())
        assert not is_eligible(item, period, PayrollFrequency.MONTHLY, EMPLOYEE_ID, None)

    def test_individual_scope(self):
        item = make_item(scope=PayrollScope.INDIVIDUAL, employee_ids=[str(EMPLOYEE_ID)])
        period = PayrollPeriod(3, 2025)

        assert is_eligible(item, period, PayrollFrequency.MONTHLY, EMPLOYEE_ID, DEPARTMENT_ID)
        assert not is_eligible(item, period, PayrollFrequency.MONTHLY, uuid.uuid4(), DEPARTMENT_ID)

    def test_mismatched_target_set_rejected(self):
        with pytest.raises(InvalidScopeException):
            build_target(PayrollScope.DEPARTMENT, employee_ids=[EMPLOYEE_ID])
        with pytest.raises(InvalidScopeException):
            build_target(PayrollScope.COMPANY, department_ids=[DEPARTMENT_ID])
        with pytest.raises(InvalidScopeException):
            build_target(PayrollScope.INDIVIDUAL)


class TestAvailability:
    """Status, validity window and run frequency."""

    def test_inactive_item_not_available(self):
        item = make_item(status=ItemStatus.INACTIVE)
        assert not is_available(item, PayrollPeriod(3, 2025), PayrollFrequency.MONTHLY)

    def test_validity_window_overlaps_period(self):
        item = make_item(start_date=date(2025, 3, 20), end_date=date(2025, 5, 10))

        assert not is_available(item, PayrollPeriod(2, 2025), PayrollFrequency.MONTHLY)
        assert is_available(item, PayrollPeriod(3, 2025), PayrollFrequency.MONTHLY)
        assert is_available(item, PayrollPeriod(5, 2025), PayrollFrequency.MONTHLY)
        assert not is_available(item, PayrollPeriod(6, 2025), PayrollFrequency.MONTHLY)

    @pytest.mark.parametrize("item_frequency, run_frequency, admitted", [
        (PayrollFrequency.MONTHLY, PayrollFrequency.MONTHLY, True),
        (PayrollFrequency.YEARLY, PayrollFrequency.MONTHLY, True),
        (PayrollFrequency.MONTHLY, PayrollFrequency.QUARTERLY, False),
        (PayrollFrequency.YEARLY, PayrollFrequency.QUARTERLY, True),
        (PayrollFrequency.QUARTERLY, PayrollFrequency.YEARLY, False),
        (PayrollFrequency.ONE_TIME, PayrollFrequency.ONE_TIME, True),
        (PayrollFrequency.MONTHLY, PayrollFrequency.ONE_TIME, False),
    ])
    def test_run_frequency_gate(self, item_frequency, run_frequency, admitted):
        assert admitted_by_run(item_frequency, run_frequency) is admitted


class TestConsumption:
    """An item is paid at most once per period of its own frequency."""

    def test_monthly_item_consumed_in_same_month_only(self):
        march = PayrollPeriod(3, 2025)
        item = used_in(march)

        assert consumed_for_period(item, march)
        assert not consumed_for_period(item, PayrollPeriod(4, 2025))
        assert not is_available(item, march, PayrollFrequency.MONTHLY)
        assert is_available(item, PayrollPeriod(4, 2025), PayrollFrequency.MONTHLY)

    def test_quarterly_item_consumed_for_whole_quarter(self):
        item = used_in(PayrollPeriod(1, 2025), frequency=PayrollFrequency.QUARTERLY)

        assert consumed_for_period(item, PayrollPeriod(3, 2025))
        assert not consumed_for_period(item, PayrollPeriod(4, 2025))

    def test_yearly_item_consumed_for_whole_year(self):
        item = used_in(PayrollPeriod(2, 2025), frequency=PayrollFrequency.YEARLY)

        assert consumed_for_period(item, PayrollPeriod(11, 2025))
        assert not consumed_for_period(item, PayrollPeriod(1, 2026))

    def test_one_time_item_never_paid_again(self):
        item = used_in(PayrollPeriod(1, 2025), frequency=PayrollFrequency.ONE_TIME)

        assert consumed_for_period(item, PayrollPeriod(1, 2025))
        assert consumed_for_period(item, PayrollPeriod(8, 2027))

    def test_same_run_does_not_count_as_consumed(self):
        """A shared item stays payable to every employee of the run that used it."""
        run_id = uuid.uuid4()
        item = used_in(PayrollPeriod(3, 2025), run_id=run_id, frequency=PayrollFrequency.ONE_TIME)

        assert not consumed_for_period(item, PayrollPeriod(3, 2025), run_id)
        assert consumed_for_period(item, PayrollPeriod(3, 2025), uuid.uuid4())

    def test_unused_item_not_consumed(self):
        assert not consumed_for_period(make_item(), PayrollPeriod(3, 2025))
