"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError

BASE_ERROR_URI = "https://leave-engine.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Configuration errors (fatal for the request being created) ──────

class NoApplicableWorkflow(AppException):
    """422 — no workflow matches and no default exists for the leave type."""

    def __init__(self, leave_type: str) -> None:
        super().__init__(
            status_code=422,
            error_type="no-applicable-workflow",
            title="No Applicable Workflow",
            detail=(
                f"No approval workflow matches this request and no default "
                f"workflow is configured for leave type '{leave_type}'."
            ),
        )
        self.leave_type = leave_type


class InvalidWorkflowConfiguration(AppException):
    """422 — the selected workflow has no usable steps."""

    def __init__(self, workflow_name: str, reason: str) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-workflow-configuration",
            title="Invalid Workflow Configuration",
            detail=f"Workflow '{workflow_name}' cannot be used: {reason}.",
        )


class PolicyNotFound(AppException):
    """422 — leave type is not configured for the employee's region."""

    def __init__(self, leave_type: str, region: str) -> None:
        super().__init__(
            status_code=422,
            error_type="policy-not-found",
            title="Policy Not Found",
            detail=f"Leave type '{leave_type}' is not configured for region '{region}'.",
        )
        self.leave_type = leave_type
        self.region = region


class NoApproverAvailable(AppException):
    """422 — an approval step resolves to nobody."""

    def __init__(self, level: int, approver_role: str) -> None:
        super().__init__(
            status_code=422,
            error_type="no-approver-available",
            title="No Approver Available",
            detail=f"No active approver found for level {level} (role '{approver_role}').",
        )


# ── State errors (rejected operations, chain untouched) ─────────────

class InvalidApprover(AppException):
    """409 — the actor is not assigned to this approval step."""

    def __init__(self, approver_id: Any, level: int) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-approver",
            title="Invalid Approver",
            detail=f"Approver '{approver_id}' is not assigned to approval level {level}.",
        )


class InvalidLevel(AppException):
    """409 — the level is not awaiting a decision."""

    def __init__(self, level: int, reason: str) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-level",
            title="Invalid Level",
            detail=f"Approval level {level} cannot be decided: {reason}.",
        )


class AlreadyDecided(AppException):
    """409 — the request already reached a terminal state."""

    def __init__(self, request_id: Any, status: str) -> None:
        super().__init__(
            status_code=409,
            error_type="already-decided",
            title="Already Decided",
            detail=f"Leave request '{request_id}' is already {status}.",
        )


class ConcurrentModification(AppException):
    """409 — another writer updated the same row first."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="concurrent-modification",
            title="Concurrent Modification",
            detail=f"{entity_type} '{entity_id}' was modified concurrently; retry the operation.",
        )


# ── Balance errors ──────────────────────────────────────────────────

class InsufficientBalance(AppException):
    """409 — a debit would push the balance below the allowed floor."""

    def __init__(
        self,
        leave_type: str,
        year: int,
        available: Decimal,
        requested: Decimal,
    ) -> None:
        super().__init__(
            status_code=409,
            error_type="insufficient-balance",
            title="Insufficient Leave Balance",
            detail=(
                f"Insufficient {leave_type} balance for {year}. "
                f"Available: {available}, Requested: {requested}."
            ),
            errors={"balance": [f"available={available}", f"requested={requested}"]},
        )
        self.available = available
        self.requested = requested


class LedgerInvariantError(AppException):
    """500 — a credit would reverse more than was ever debited."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            error_type="ledger-invariant",
            title="Ledger Invariant Violated",
            detail=detail,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_stale_data(
    request: Request,
    exc: StaleDataError,
) -> JSONResponse:
    return await _handle_app_exception(
        request, ConcurrentModification("Resource", request.url.path),
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(StaleDataError, _handle_stale_data)            # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
