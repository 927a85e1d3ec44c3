"""
Domain exceptions for the dockout workflow.

Services raise these; routers never catch them. The global handler in
``dockout.main`` turns any that escape into a structured JSON error via
``to_http_exception``. Orchestrators catch the upstream family themselves and
record the failure on the affected delivery-order group instead.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class DockoutException(Exception):
    code = "DOCKOUT_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


# ── Upstream (SAP OData / TEG) ────────────────────────────────────────────────

class SessionError(DockoutException):
    """CSRF token or session cookies could not be acquired."""

    code = "SESSION_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY


class UpstreamHttpError(DockoutException):
    code = "UPSTREAM_HTTP_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, details=body)
        self.status_code = status_code
        self.body = body


class UpstreamTimeoutError(UpstreamHttpError):
    code = "UPSTREAM_TIMEOUT"
    http_status = status.HTTP_504_GATEWAY_TIMEOUT


class UpstreamDomainError(DockoutException):
    """2xx response whose business message reports a failure."""

    code = "UPSTREAM_DOMAIN_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY


class ParseError(DockoutException):
    code = "PARSE_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message, details=raw_text)
        self.raw_text = raw_text


# ── Workflow ──────────────────────────────────────────────────────────────────

class WorkflowValidationError(DockoutException):
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidTransitionError(DockoutException):
    code = "INVALID_TRANSITION"
    http_status = status.HTTP_409_CONFLICT


class EntityNotFoundException(DockoutException):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, identifier: Any, message: Optional[str] = None):
        super().__init__(message or f"{entity} {identifier} not found.")
        self.entity = entity
        self.identifier = identifier


def to_http_exception(exc: DockoutException) -> HTTPException:
    detail = {"code": exc.code, "message": exc.message}
    if exc.details is not None:
        detail["details"] = exc.details
    return HTTPException(status_code=exc.http_status, detail=detail)
