"""
ERP Payroll Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin, VersionMixin
from app.models.employee import Department, Role, Employee
from app.models.salary_grade import SalaryGrade, RoleSalaryGradeMapping
from app.models.payroll import PayrollRecord, PayrollFrequency, PayrollScope
from app.models.compensation import (
    Allowance,
    Bonus,
    Deduction,
    CompensationItem,
    CalculationType,
    PercentageBase,
    ItemStatus,
    AllowanceCategory,
    BonusType,
    DeductionType,
    DeductionCategory,
    CompanyTarget,
    DepartmentTarget,
    IndividualTarget,
    ScopeTarget,
    build_target,
)
from app.models.tax_bracket import TaxBracket
from app.models.audit import AuditLog, AuditAction

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "VersionMixin",
    # Directory
    "Department",
    "Role",
    "Employee",
    # Salary grades
    "SalaryGrade",
    "RoleSalaryGradeMapping",
    # Payroll
    "PayrollRecord",
    "PayrollFrequency",
    "PayrollScope",
    # Compensation items
    "Allowance",
    "Bonus",
    "Deduction",
    "CompensationItem",
    "CalculationType",
    "PercentageBase",
    "ItemStatus",
    "AllowanceCategory",
    "BonusType",
    "DeductionType",
    "DeductionCategory",
    "CompanyTarget",
    "DepartmentTarget",
    "IndividualTarget",
    "ScopeTarget",
    "build_target",
    # Tax
    "TaxBracket",
    # Audit
    "AuditLog",
    "AuditAction",
]
