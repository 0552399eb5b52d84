"""
Error Handling Module for the ERP Payroll Engine

Centralized error handling with:
- Custom exception hierarchy for payroll operations
- Standardized error responses
- Error logging
- Database error translation
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("payroll.errors")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_SCOPE = "INVALID_SCOPE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_TAX_BRACKETS = "INVALID_TAX_BRACKETS"
    INVALID_SALARY_GRADE = "INVALID_SALARY_GRADE"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    SALARY_GRADE_NOT_FOUND = "SALARY_GRADE_NOT_FOUND"
    ROLE_MAPPING_NOT_FOUND = "ROLE_MAPPING_NOT_FOUND"
    PAYROLL_RECORD_NOT_FOUND = "PAYROLL_RECORD_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    CANNOT_MODIFY = "CANNOT_MODIFY"
    OVERLAPPING_SALARY_RANGE = "OVERLAPPING_SALARY_RANGE"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.timestamp = _utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidScopeException(ValidationException):
    """Scope and target set disagree"""

    def __init__(self, scope: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid target set for scope '{scope}'",
            field="scope",
            code=ErrorCode.INVALID_SCOPE,
            details={"scope": scope},
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount or percentage"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a non-negative number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class InvalidPeriodException(ValidationException):
    """Invalid payroll month/year"""

    def __init__(self, month: Any, year: Any):
        super().__init__(
            message=f"Invalid payroll period: {month}/{year}",
            field="month",
            code=ErrorCode.INVALID_PERIOD,
            details={"month": month, "year": year},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class EmployeeNotFoundException(NotFoundException):
    """Employee not found"""

    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            resource_type="Employee",
            resource_id=employee_id,
            code=ErrorCode.EMPLOYEE_NOT_FOUND,
        )


class SalaryGradeNotFoundException(NotFoundException):
    """Salary grade not found, or no active grade mapped to a role"""

    def __init__(self, grade_id: Optional[Union[str, UUID]] = None, message: Optional[str] = None):
        super().__init__(
            resource_type="SalaryGrade",
            resource_id=grade_id,
            message=message,
            code=ErrorCode.SALARY_GRADE_NOT_FOUND,
        )


class RoleMappingNotFoundException(NotFoundException):
    """No active role to salary grade mapping"""

    def __init__(self, role_id: Optional[Union[str, UUID]] = None):
        super().__init__(
            resource_type="RoleSalaryGradeMapping",
            message=(
                f"No active salary grade mapping for role '{role_id}'"
                if role_id else "Employee has no role assigned"
            ),
            code=ErrorCode.ROLE_MAPPING_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class DuplicateEntryException(ConflictException):
    """Duplicate entry exception"""

    def __init__(
        self,
        resource_type: str,
        field: str,
        value: str,
    ):
        super().__init__(
            message=f"{resource_type} with {field} '{value}' already exists",
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_ENTRY,
            details={"field": field, "value": value},
        )


class DuplicateProcessingException(ConflictException):
    """Payroll already processed for (employee, month, year, frequency, scope)"""

    def __init__(
        self,
        employee_id: Union[str, UUID],
        month: int,
        year: int,
        frequency: str,
        scope: str,
    ):
        super().__init__(
            message=(
                f"Payroll already processed for employee {employee_id} "
                f"for {month}/{year} ({frequency}, {scope})"
            ),
            resource_type="PayrollRecord",
            code=ErrorCode.ALREADY_PROCESSED,
            details={
                "employee_id": str(employee_id),
                "month": month,
                "year": year,
                "frequency": frequency,
                "scope": scope,
            },
        )


class ConcurrencyConflictException(ConflictException):
    """Optimistic-lock failure while updating a versioned row"""

    def __init__(self, resource_type: str, resource_id: Union[str, UUID], expected_version: int):
        super().__init__(
            message=f"{resource_type} '{resource_id}' was modified concurrently",
            resource_type=resource_type,
            code=ErrorCode.VERSION_CONFLICT,
            details={"resource_id": str(resource_id), "expected_version": expected_version},
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class GradeInUseException(BusinessRuleException):
    """Salary grade already referenced by processed payroll"""

    def __init__(self, grade_code: str):
        super().__init__(
            message=f"Salary grade '{grade_code}' is referenced by processed payroll and cannot be modified",
            rule="GRADE_IMMUTABLE_ONCE_USED",
            code=ErrorCode.CANNOT_MODIFY,
            details={"grade": grade_code},
        )


class OverlappingSalaryRangeException(BusinessRuleException):
    """Active salary grade ranges may not overlap"""

    def __init__(self, grade_code: str, overlapping: list):
        super().__init__(
            message=f"Salary range of grade '{grade_code}' overlaps {', '.join(overlapping)}",
            rule="NON_OVERLAPPING_GRADE_RANGES",
            code=ErrorCode.OVERLAPPING_SALARY_RANGE,
            details={"grade": grade_code, "overlapping_grades": overlapping},
        )


# ============================================================================
# Exception Handlers
# ============================================================================

# Status codes raised by the framework itself (unknown routes, bad methods)
HTTP_ERROR_CODES = {
    400: ErrorCode.INVALID_INPUT,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.INVALID_INPUT,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Build the {"detail": {"code", "message", ...}} body every error uses"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": _utcnow().isoformat() + "Z",
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render payroll errors as {"detail": {...}}"""
    logger.warning(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code.value}: {exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_code = HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {message}")

    return create_error_response(code=error_code, message=message, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query failed schema validation"""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    logger.warning(f"{request.method} {request.url.path} -> 422: {len(errors)} validation error(s)")

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Translate database errors that escaped the services"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "payroll_records" in error_str and ("unique" in error_str or "duplicate" in error_str):
            error_message = "Payroll already processed for this employee and period"
            error_code = ErrorCode.ALREADY_PROCESSED
            status_code = status.HTTP_409_CONFLICT
        elif "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "check constraint" in error_str:
            error_message = "Value violates a payroll data constraint"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"{request.method} {request.url.path} -> {status_code} {type(exc).__name__}: {exc}",
        exc_info=True,
    )

    return create_error_response(code=error_code, message=error_message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        f"{request.method} {request.url.path} -> unhandled {type(exc).__name__}: {exc}",
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
