# site_dispatch/core/visits/domain.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, NewType, Optional


VisitId = NewType("VisitId", str)
ProfileId = NewType("ProfileId", str)
OdometerReading = NewType("OdometerReading", float)


# ============================================================================
# STATUS / OPERATION ENUMS
# ============================================================================

class VisitStatus(str, Enum):
    """
    Lifecycle status of a site visit.

    ``CANCELLED`` exists in stored data but no transition of this workflow
    produces it.
    """
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    PENDING_CLARIFICATION = "pending_clarification"
    TRIP_STARTED = "trip_started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


REVIEWABLE_STATUSES = frozenset({VisitStatus.PENDING, VisitStatus.PENDING_CLARIFICATION})
DRIVER_ASSIGNED_STATUSES = frozenset({
    VisitStatus.APPROVED,
    VisitStatus.TRIP_STARTED,
    VisitStatus.COMPLETED,
})


class VisitOperation(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    DECLINE = "decline"
    REQUEST_CLARIFICATION = "request_clarification"
    SUBMIT_CLARIFICATION = "submit_clarification"
    START_TRIP = "start_trip"
    COMPLETE_TRIP = "complete_trip"
    DELETE = "delete"


# ============================================================================
# ROLES
# ============================================================================

DRIVER_ROLE = "driver"
APPROVER_ROLES = frozenset({"super_admin", "admin"})
REQUESTER_ROLES = frozenset({"sales_executive", "team_leader"})
VIEW_ALL_ROLES = frozenset({"super_admin", "admin", "director"})


@dataclass(frozen=True)
class Profile:
    """Read-only identity record used for driver validation and addressing."""
    id: ProfileId
    role: str
    is_active: bool = True
    full_name: str = ""

    @property
    def is_active_driver(self) -> bool:
        return self.role == DRIVER_ROLE and self.is_active


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class NotificationCategory(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


RELATED_ENTITY_TYPE = "site_visit"


@dataclass(frozen=True)
class NotificationMessage:
    recipient_id: ProfileId
    title: str
    message: str
    category: NotificationCategory
    related_entity_id: VisitId
    created_at: datetime
    related_entity_type: str = RELATED_ENTITY_TYPE

    def to_record(self) -> dict[str, Any]:
        """Persisted shape expected by the notification sink."""
        return {
            "user_id": self.recipient_id,
            "title": self.title,
            "message": self.message,
            "type": self.category.value,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "created_at": self.created_at.isoformat(),
        }


# ============================================================================
# VISIT
# ============================================================================

def _parse_ts(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    ts = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Visit:
    """
    A customer site-visit request and its full lifecycle record.

    Field names match the persisted record shape so existing stored data
    round-trips without translation.
    """
    id: VisitId
    requested_by: ProfileId
    customer_name: str
    customer_phone: str
    visit_date: str
    visit_time: str
    created_at: datetime
    updated_at: datetime
    status: VisitStatus = VisitStatus.PENDING
    pickup_location: Optional[str] = None
    project_ids: list[str] = field(default_factory=list)
    is_public: bool = False

    # Assignment
    assigned_vehicle: Optional[str] = None
    driver_id: Optional[ProfileId] = None
    approved_by: Optional[ProfileId] = None
    approved_at: Optional[datetime] = None

    # Narrative
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    clarification_note: Optional[str] = None

    # Telemetry
    start_odometer: Optional[float] = None
    end_odometer: Optional[float] = None

    @property
    def trip_distance(self) -> Optional[float]:
        """Distance covered, derived from the odometer pair (never stored)."""
        if self.start_odometer is None or self.end_odometer is None:
            return None
        return self.end_odometer - self.start_odometer

    def is_owned_by(self, profile_id: str) -> bool:
        return self.requested_by == profile_id

    def is_assigned_to(self, profile_id: str) -> bool:
        return self.driver_id is not None and self.driver_id == profile_id

    def invariant_violations(self) -> list[str]:
        """Return a description of every field invariant this record breaks."""
        problems: list[str] = []
        status = self.status

        has_start = self.start_odometer is not None
        if has_start != (status in (VisitStatus.TRIP_STARTED, VisitStatus.COMPLETED)):
            problems.append(f"start_odometer presence does not match status {status.value}")

        has_end = self.end_odometer is not None
        if has_end != (status == VisitStatus.COMPLETED):
            problems.append(f"end_odometer presence does not match status {status.value}")

        if has_start and has_end and self.end_odometer <= self.start_odometer:
            problems.append("end_odometer must exceed start_odometer")

        if (self.driver_id is not None) != (status in DRIVER_ASSIGNED_STATUSES):
            problems.append(f"driver_id presence does not match status {status.value}")

        if (self.rejection_reason is not None) != (status == VisitStatus.DECLINED):
            problems.append(f"rejection_reason presence does not match status {status.value}")

        if (self.clarification_note is not None) != (status == VisitStatus.PENDING_CLARIFICATION):
            problems.append(f"clarification_note presence does not match status {status.value}")

        return problems

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted record shape (ISO timestamps, plain status)."""
        record: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, VisitStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            record[f.name] = value
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Visit":
        """Build a Visit from a stored record; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in record.items() if k in known}

        data["id"] = VisitId(str(data["id"]))
        data["status"] = VisitStatus(data.get("status") or VisitStatus.PENDING.value)
        data["project_ids"] = list(data.get("project_ids") or [])
        for ts_field in ("created_at", "updated_at", "approved_at"):
            data[ts_field] = _parse_ts(data.get(ts_field))
        for odo_field in ("start_odometer", "end_odometer"):
            if data.get(odo_field) is not None:
                data[odo_field] = float(data[odo_field])
        return cls(**data)


@dataclass
class VisitFilter:
    """Record-store query for listing visits (newest first)."""
    status: Optional[VisitStatus] = None
    requested_by: Optional[str] = None
    driver_id: Optional[str] = None
    visit_date_from: Optional[str] = None  # ISO date, inclusive
    limit: int = 50

    def matches(self, visit: Visit) -> bool:
        if self.status is not None and visit.status != self.status:
            return False
        if self.requested_by is not None and visit.requested_by != self.requested_by:
            return False
        if self.driver_id is not None and visit.driver_id != self.driver_id:
            return False
        if self.visit_date_from is not None and visit.visit_date < self.visit_date_from:
            return False
        return True
