"""
ERP Payroll Engine - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.compensation import (
    AllowanceCreate,
    AllowanceResponse,
    BonusCreate,
    BonusResponse,
    DeductionCreate,
    DeductionResponse,
    ExpireItemsResponse,
)
from app.schemas.payroll import (
    EmployeePayrollRequest,
    PayrollRecordResponse,
    PayrollRecordSummary,
    PayrollRunRequest,
    ProcessingSummaryResponse,
)
from app.schemas.salary_grade import (
    RoleGradeAssignment,
    RoleMappingResponse,
    SalaryGradeCreate,
    SalaryGradeResponse,
    SalaryGradeUpdate,
    SalaryValidationRequest,
    SalaryValidationResponse,
)
from app.schemas.tax_bracket import (
    PAYECalculationRequest,
    PAYECalculationResponse,
    TaxBracketReplace,
    TaxBracketResponse,
)

__all__ = [
    "AllowanceCreate",
    "AllowanceResponse",
    "BonusCreate",
    "BonusResponse",
    "DeductionCreate",
    "DeductionResponse",
    "ExpireItemsResponse",
    "EmployeePayrollRequest",
    "PayrollRecordResponse",
    "PayrollRecordSummary",
    "PayrollRunRequest",
    "ProcessingSummaryResponse",
    "RoleGradeAssignment",
    "RoleMappingResponse",
    "SalaryGradeCreate",
    "SalaryGradeResponse",
    "SalaryGradeUpdate",
    "SalaryValidationRequest",
    "SalaryValidationResponse",
    "PAYECalculationRequest",
    "PAYECalculationResponse",
    "TaxBracketReplace",
    "TaxBracketResponse",
]
