"""
ERP Payroll Engine - Services Package

Business logic services.
"""

from app.services.audit_service import AuditService
from app.services.salary_grade_service import SalaryGradeService, SalaryResolution, resolve_salary
from app.services.compensation_service import CompensationService, AppliedItem, PoolResult
from app.services.payroll_service import PayrollService, PayrollBreakdown, ProcessingSummary
from app.services.eligibility import PayrollPeriod, is_eligible

# Tax Calculators
from app.services.tax_calculators.paye_service import PAYECalculator, PAYEService

__all__ = [
    "AuditService",
    "SalaryGradeService",
    "SalaryResolution",
    "resolve_salary",
    "CompensationService",
    "AppliedItem",
    "PoolResult",
    "PayrollService",
    "PayrollBreakdown",
    "ProcessingSummary",
    "PayrollPeriod",
    "is_eligible",
    "PAYECalculator",
    "PAYEService",
]
