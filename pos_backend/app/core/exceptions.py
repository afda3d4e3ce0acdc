"""
Custom exceptions and error handlers for consistent error responses.

Provides the ledger error taxonomy, standardized error codes and global
exception handlers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError

logger = logging.getLogger("pos_ledger.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.operation: Optional[str] = None
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Message naming the failed operation, e.g. 'Failed to record payment: ...'."""
        if self.operation:
            return f"Failed to {self.operation}: {self.message}"
        return self.message


class InvalidAmountError(AppException):
    """Raised when an amount or discount is outside its allowed range."""

    def __init__(self, message: str = "Amount must be greater than zero", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_AMOUNT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidPaymentMethodError(AppException):
    """Raised when a payment method is not acceptable for the requested flow."""

    def __init__(self, method: str, reason: str = "not allowed here"):
        super().__init__(
            message=f"Payment method '{method}' is {reason}",
            error_code="ERR_PAYMENT_METHOD",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"payment_method": method}
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, error_code: str = "ERR_NOT_FOUND_001"):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class CustomerNotFoundError(ResourceNotFoundError):
    """Customer missing or not owned by the tenant."""

    def __init__(self, customer_id: Any = None):
        super().__init__("Customer", customer_id, error_code="ERR_CUSTOMER_NOT_FOUND")


class OrderNotFoundError(ResourceNotFoundError):
    """Order missing or not owned by the tenant."""

    def __init__(self, order_id: Any = None):
        super().__init__("Order", order_id, error_code="ERR_ORDER_NOT_FOUND")


class PaymentNotFoundError(ResourceNotFoundError):
    """Payment missing or not owned by the tenant."""

    def __init__(self, payment_id: Any = None):
        super().__init__("Payment", payment_id, error_code="ERR_PAYMENT_NOT_FOUND")


class LedgerReadError(AppException):
    """Storage failure while reading ledger data."""

    def __init__(self, message: str = "Could not read the customer ledger", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_READ",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class LedgerWriteError(AppException):
    """Storage failure while writing ledger data. Never degraded."""

    def __init__(self, message: str = "Could not write to the customer ledger", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_WRITE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class ConcurrentModificationError(AppException):
    """Another writer changed the customer's balance between read and write."""

    def __init__(self, customer_id: Any = None):
        super().__init__(
            message="Customer balance was modified concurrently, retry with a fresh read",
            error_code="ERR_LEDGER_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"customer_id": customer_id}
        )


class OfflineUnavailableError(AppException):
    """Network-dependent ledger operation attempted without connectivity."""

    def __init__(self, message: str = "Ledger storage is unreachable, operation unavailable offline"):
        super().__init__(
            message=message,
            error_code="ERR_OFFLINE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class CreditLimitExceededError(AppException):
    """Posting the debit would take the customer past their credit limit."""

    def __init__(self, customer_id: Any, credit_limit: Any, new_balance: Any):
        super().__init__(
            message=f"Credit limit of {credit_limit} exceeded (balance would be {new_balance})",
            error_code="ERR_CREDIT_LIMIT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={
                "customer_id": customer_id,
                "credit_limit": str(credit_limit),
                "new_balance": str(new_balance)
            }
        )


class InvalidStatusTransitionError(AppException):
    """Order status change not permitted from the current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot move order from {current} to {requested}",
            error_code="ERR_ORDER_STATUS",
            status_code=status.HTTP_409_CONFLICT,
            details={"current": current, "requested": requested}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


def is_connectivity_error(exc: BaseException) -> bool:
    """True when a storage error means the database could not be reached."""
    if isinstance(exc, DisconnectionError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError))


@asynccontextmanager
async def operation_failure(operation: str, write: bool = True):
    """
    Stamp ledger errors with the operation that failed.

    Raw storage errors become LedgerWriteError/LedgerReadError, or
    OfflineUnavailableError when the database is unreachable.

    Usage:
        async with operation_failure("record payment"):
            ...
    """
    try:
        yield
    except AppException as exc:
        if exc.operation is None:
            exc.operation = operation
        raise
    except (SQLAlchemyError, ConnectionError, OSError) as exc:
        if is_connectivity_error(exc):
            wrapped: AppException = OfflineUnavailableError()
        elif write:
            wrapped = LedgerWriteError(details={"reason": str(exc)})
        else:
            wrapped = LedgerReadError(details={"reason": str(exc)})
        wrapped.operation = operation
        logger.error("%s failed: %s", operation, exc)
        raise wrapped from exc


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.user_message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception objects (e.g. ValueError from validators)
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
