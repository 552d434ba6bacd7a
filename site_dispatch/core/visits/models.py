# site_dispatch/core/visits/models.py
"""
Pydantic payload models for visit creation and transitions.

These live *outside* the transport layer so the engine can validate
payloads without depending on FastAPI.  Shape checks happen here; the
workflow guards (word limits, odometer ordering, driver lookup) live in
the engine and its helper modules.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


def _check_iso_date(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        date.fromisoformat(v)
    except ValueError:
        raise ValueError("visit_date must be an ISO date (YYYY-MM-DD)")
    return v


def _check_project_ids(v: Optional[list[str]]) -> Optional[list[str]]:
    if v is None:
        return v
    cleaned = [p.strip() for p in v if p and p.strip()]
    if not cleaned:
        raise ValueError("at least one project is required")
    return cleaned


# ---------------------------------------------------------------------------
# Requester payloads
# ---------------------------------------------------------------------------

class CreateVisitRequest(_Payload):
    """Create a new site-visit request."""

    customer_name: str = Field(..., min_length=1, max_length=256)
    customer_phone: str = Field(..., min_length=1, max_length=64)
    pickup_location: Optional[str] = Field(default=None, max_length=512)
    project_ids: list[str] = Field(..., min_length=1)
    visit_date: str
    visit_time: str = Field(..., min_length=1, max_length=32)
    is_public: bool = False
    notes: Optional[str] = None

    @field_validator("visit_date")
    @classmethod
    def visit_date_must_be_iso(cls, v: str) -> str:
        return _check_iso_date(v)

    @field_validator("project_ids")
    @classmethod
    def project_ids_must_be_nonblank(cls, v: list[str]) -> list[str]:
        return _check_project_ids(v)


class _LogisticsAmendment(_Payload):
    """Contact/logistics fields a requester may change before approval."""

    customer_name: Optional[str] = Field(default=None, min_length=1, max_length=256)
    customer_phone: Optional[str] = Field(default=None, min_length=1, max_length=64)
    pickup_location: Optional[str] = Field(default=None, max_length=512)
    project_ids: Optional[list[str]] = Field(default=None, min_length=1)
    visit_date: Optional[str] = None
    visit_time: Optional[str] = Field(default=None, min_length=1, max_length=32)

    @field_validator("visit_date")
    @classmethod
    def visit_date_must_be_iso(cls, v: Optional[str]) -> Optional[str]:
        return _check_iso_date(v)

    @field_validator("project_ids")
    @classmethod
    def project_ids_must_be_nonblank(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _check_project_ids(v)

    def field_changes(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"notes", "response"})


class EditVisitRequest(_LogisticsAmendment):
    """Partial update of a pending request by its owner."""

    notes: Optional[str] = None

    def has_updates(self) -> bool:
        return bool(self.model_dump(exclude_none=True))


class SubmitClarificationRequest(_LogisticsAmendment):
    """Requester's answer to a clarification request, with optional amendments."""

    response: str = ""


# ---------------------------------------------------------------------------
# Approver payloads
# ---------------------------------------------------------------------------

class ApproveVisitRequest(_Payload):
    driver_id: str = Field(..., min_length=1)
    note: Optional[str] = None
    assigned_vehicle: Optional[str] = Field(default=None, max_length=128)


class DeclineVisitRequest(_Payload):
    reason: str = Field(..., min_length=1)


class RequestClarificationRequest(_Payload):
    note: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Driver payloads
# ---------------------------------------------------------------------------

class OdometerReadingRequest(_Payload):
    reading: float = Field(..., allow_inf_nan=False)

    @field_validator("reading", mode="before")
    @classmethod
    def reading_must_be_numeric(cls, v):
        if isinstance(v, bool):
            raise ValueError("reading must be a number")
        return v
