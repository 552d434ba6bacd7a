# site_dispatch/core/visits/errors.py
"""
Typed errors for the site-visit workflow.

Each error maps to a specific HTTP status code.  The transport layer
catches ``DispatchError`` subtypes and converts them to ``HTTPException``
so the detail reaches the user verbatim.
"""
from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Base class for all site-visit workflow errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.detail}


class ValidationError(DispatchError):
    """Malformed or missing input (400). ``field`` names the offending input."""

    status_code = 400

    def __init__(self, detail: str, *, field: str | None = None):
        self.field = field
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class AuthorizationError(DispatchError):
    """Actor role or ownership does not permit the operation (403)."""

    status_code = 403


class NotFoundError(DispatchError):
    """Visit or driver profile missing, or driver inactive (404)."""

    status_code = 404


class IllegalTransitionError(DispatchError):
    """Operation not valid from the record's current status (409)."""

    status_code = 409

    def __init__(self, detail: str, *, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.current_status:
            body["current_status"] = self.current_status
        return body


class InfrastructureError(DispatchError):
    """Record store or notifier unreachable (503). Callers may retry."""

    status_code = 503
