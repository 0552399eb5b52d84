"""
ERP Payroll Engine - Routers Package

FastAPI route handlers, all mounted under ``{api_prefix}/payroll``.

Routers:
- payroll: preview, process, per-employee calculation, payroll records
- salary_grades: salary grades and role mappings
- compensation: allowances, bonuses and deductions
- tax_brackets: PAYE brackets
"""

from app.routers import (
    payroll,
    salary_grades,
    compensation,
    tax_brackets,
)

__all__ = [
    "payroll",
    "salary_grades",
    "compensation",
    "tax_brackets",
]
