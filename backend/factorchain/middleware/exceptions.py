"""Application exceptions and the handlers that render them.

Every failure leaves the API in the same envelope:

    {"error": {"code": "ERROR_CODE", "message": "...", "details": {...}}}

Chain errors, persistence errors and partial successes are distinct classes
because the remedy differs: a chain failure left nothing behind and may be
re-triggered by the user, a persistence failure with no chain side effect
may simply be retried, and a partial success must be reconciled by hand.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FactorChainException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


# ── Local (no side effect) ───────────────────────────────────

class ValidationError(FactorChainException):
    """Missing or invalid input, rejected before any side effect."""

    def __init__(
        self,
        message: str,
        error_code: str = "VALIDATION_ERROR",
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
        details: dict | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class InvalidTransitionError(ValidationError):
    """The invoice is not in a state that allows the requested action."""

    def __init__(self, action: str, current_status: str):
        super().__init__(
            message=f"Cannot {action} an invoice in status {current_status}",
            error_code="INVALID_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details={"action": action, "status": current_status},
        )


class OperationInProgress(FactorChainException):
    """Another transition for the same invoice has not finished yet."""

    def __init__(self, invoice_id: str):
        super().__init__(
            message="Another operation on this invoice is still in progress",
            status_code=status.HTTP_409_CONFLICT,
            error_code="OPERATION_IN_PROGRESS",
            details={"invoice_id": invoice_id},
        )


class AuthorizationError(FactorChainException):
    """Wrong role, or wrong identity for the record."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
        )


class ProfileExists(FactorChainException):
    """The token's user id or email already has a profile."""

    def __init__(self):
        super().__init__(
            message="Profile already exists",
            status_code=status.HTTP_409_CONFLICT,
            error_code="PROFILE_EXISTS",
        )


class ResourceNotFoundError(FactorChainException):
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


# ── Chain ────────────────────────────────────────────────────

class ChainError(FactorChainException):
    """Base class for failures at the wallet / contract boundary."""


class WalletUnavailable(ChainError):
    def __init__(self, message: str = "No wallet provider is available"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="WALLET_UNAVAILABLE",
        )


class WrongNetwork(ChainError):
    def __init__(self, expected_chain_id: int, actual_chain_id: int | None = None):
        detail = f" (wallet is on {actual_chain_id})" if actual_chain_id else ""
        super().__init__(
            message=f"Wallet must be on network {expected_chain_id}{detail}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="WRONG_NETWORK",
            details={
                "expected_chain_id": expected_chain_id,
                "actual_chain_id": actual_chain_id,
            },
        )


class UserRejected(ChainError):
    def __init__(self, message: str = "Transaction rejected in wallet"):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="USER_REJECTED",
        )


class Reverted(ChainError):
    def __init__(self, message: str = "Transaction reverted by the contract", tx_hash: str | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="REVERTED",
            details={"tx_hash": tx_hash} if tx_hash else None,
        )


class ChainTimeout(ChainError):
    def __init__(self, operation: str, seconds: float):
        super().__init__(
            message=f"Chain call {operation} did not complete within {seconds:g}s",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_code="TIMEOUT",
            details={"operation": operation},
        )


# ── Store ────────────────────────────────────────────────────

class PersistenceError(FactorChainException):
    """Store write failed; nothing happened on-chain."""

    def __init__(self, message: str = "Could not save the invoice record"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PERSISTENCE_ERROR",
        )


class StoreTimeout(PersistenceError):
    def __init__(self, seconds: float):
        super().__init__(f"Database did not respond within {seconds:g}s")
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT
        self.error_code = "TIMEOUT"


class ConcurrentUpdate(PersistenceError):
    """The record left the expected status before this write landed."""

    def __init__(self, invoice_id: str, expected_status: str):
        super().__init__(f"Invoice {invoice_id} is no longer {expected_status}")
        self.status_code = status.HTTP_409_CONFLICT
        self.error_code = "CONCURRENT_UPDATE"
        self.details = {"invoice_id": invoice_id, "expected_status": expected_status}


class PartialSuccess(FactorChainException):
    """Chain call succeeded, store write failed.  Needs manual reconciliation."""

    def __init__(
        self,
        action: str,
        invoice_id: str,
        tx_hash: str | None,
        token_id: str | None,
    ):
        super().__init__(
            message=(
                f"The {action} transaction succeeded on chain but the invoice "
                "record could not be updated. Do not retry; the record will be "
                "reconciled manually."
            ),
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="PARTIAL_SUCCESS",
            details={
                "action": action,
                "invoice_id": invoice_id,
                "tx_hash": tx_hash,
                "token_id": token_id,
            },
        )


# ── Rendering ────────────────────────────────────────────────

# Unique constraints whose violation means "this caller already has a profile"
_PROFILE_CONSTRAINTS = ("profiles.email", "profiles.id", "ix_profiles_email", "profiles_pkey")


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    headers: dict | None = None,
) -> JSONResponse:
    error = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


def _request_extra(request: Request, **extra) -> dict:
    return {"path": request.url.path, "method": request.method, **extra}


async def factorchain_exception_handler(
    request: Request,
    exc: FactorChainException,
) -> JSONResponse:
    # Partial successes are already logged at ERROR with the tx hash
    log = logger.warning
    if exc.status_code >= 500 and not isinstance(exc, PartialSuccess):
        log = logger.error
    log(
        "%s on %s: %s",
        exc.error_code,
        request.url.path,
        exc.message,
        extra=_request_extra(request, error_code=exc.error_code),
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail,
                     extra=_request_extra(request))
    # Keeps WWW-Authenticate on 401s from the bearer-token dependency
    return create_error_response(
        exc.status_code,
        str(exc.detail),
        f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, PydanticValidationError],
) -> JSONResponse:
    """Request bodies and form fields that fail schema validation.

    Field paths drop the "body" / "query" prefix so an upload form error
    reads `amount`, not `body -> amount`.
    """
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error["loc"]]
        if len(loc) > 1 and loc[0] in ("body", "query", "path", "form"):
            loc = loc[1:]
        errors.append({"field": ".".join(loc), "message": error["msg"], "type": error["type"]})

    logger.warning("Invalid request on %s: %s", request.url.path,
                   ", ".join(e["field"] for e in errors), extra=_request_extra(request))
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": errors},
    )


async def integrity_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Constraint violations that slipped past the explicit checks.

    Two sign-ups racing for the same profile both pass the existence check
    in the profile route; the loser lands here and gets the same answer.
    """
    error_msg = str(exc.orig) if exc.orig is not None else str(exc)
    logger.warning("Integrity error on %s: %s", request.url.path, error_msg,
                   extra=_request_extra(request))

    lowered = error_msg.lower()
    if "unique" in lowered or "duplicate" in lowered:
        if any(name in lowered for name in _PROFILE_CONSTRAINTS):
            return factorchain_response(ProfileExists())
        return create_error_response(
            status.HTTP_409_CONFLICT, "A record with this value already exists", "DUPLICATE_RECORD"
        )
    if "not null" in lowered:
        return create_error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "Required field is missing", "NULL_VALUE_NOT_ALLOWED"
        )
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Database constraint violation", "INTEGRITY_ERROR"
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Database unreachable outside a transition (views, profile routes).

    Transitions never get here: the store turns these into
    PersistenceError inside the lifecycle.
    """
    logger.error("Database unavailable on %s: %s", request.url.path, exc,
                 extra=_request_extra(request))
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Invoice database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.error("Unhandled exception on %s: %s", request.url.path, exc,
                 extra=_request_extra(request), exc_info=exc)
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def factorchain_response(exc: FactorChainException) -> JSONResponse:
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(FactorChainException, factorchain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
