# site_dispatch/transport/schemas.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from site_dispatch.core.visits.domain import Profile, Visit
from site_dispatch.infra.notifiers import StoredNotification


class VisitOut(BaseModel):
    id: str
    requested_by: str
    requester_name: Optional[str] = None
    customer_name: str
    customer_phone: str
    pickup_location: Optional[str] = None
    project_ids: list[str]
    visit_date: str
    visit_time: str
    is_public: bool
    status: str
    assigned_vehicle: Optional[str] = None
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    clarification_note: Optional[str] = None
    start_odometer: Optional[float] = None
    end_odometer: Optional[float] = None
    trip_distance: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_visit(cls, visit: Visit, names: dict[str, Profile] | None = None) -> "VisitOut":
        names = names or {}
        requester = names.get(visit.requested_by)
        driver = names.get(visit.driver_id) if visit.driver_id else None
        return cls(
            **visit.to_record(),
            requester_name=requester.full_name if requester else None,
            driver_name=driver.full_name if driver else None,
            trip_distance=visit.trip_distance,
        )


class VisitCreatedOut(BaseModel):
    id: str
    status: str


class NotificationOut(BaseModel):
    id: str
    title: str
    message: str
    type: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    is_read: bool
    created_at: datetime

    @classmethod
    def from_stored(cls, item: StoredNotification) -> "NotificationOut":
        return cls(
            id=item.id,
            title=item.title,
            message=item.message,
            type=item.type,
            related_entity_type=item.related_entity_type,
            related_entity_id=item.related_entity_id,
            is_read=item.is_read,
            created_at=item.created_at,
        )
