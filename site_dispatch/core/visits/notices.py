# site_dispatch/core/visits/notices.py
"""
Notification messages derived from visit transitions.

Pure builders: each takes the committed visit snapshot and returns the
messages to hand to the notifier.  Sending is the engine's job.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from site_dispatch.core.visits.domain import (
    NotificationCategory,
    NotificationMessage,
    ProfileId,
    Visit,
)
from site_dispatch.core.visits.telemetry import format_distance


def _format_visit_date(raw: str) -> str:
    try:
        return date.fromisoformat(raw).strftime("%d %b %Y")
    except ValueError:
        return raw


def _with_note(text: str, note: Optional[str]) -> str:
    return f"{text} Note: {note}" if note else text


def _message(
    visit: Visit,
    recipient_id: str,
    title: str,
    text: str,
    category: NotificationCategory,
    at: datetime,
) -> NotificationMessage:
    return NotificationMessage(
        recipient_id=ProfileId(recipient_id),
        title=title,
        message=text,
        category=category,
        related_entity_id=visit.id,
        created_at=at,
    )


def approval_notices(visit: Visit, note: Optional[str], at: datetime) -> list[NotificationMessage]:
    """Requester learns of the approval; the assigned driver learns of the trip."""
    messages = [
        _message(
            visit,
            visit.requested_by,
            "Site Visit Approved",
            _with_note(f"Your request for {visit.customer_name} has been approved.", note),
            NotificationCategory.SUCCESS,
            at,
        )
    ]
    if visit.driver_id:
        when = _format_visit_date(visit.visit_date)
        if visit.visit_time:
            when = f"{when} at {visit.visit_time}"
        messages.append(
            _message(
                visit,
                visit.driver_id,
                "New Site Visit Assigned",
                f"You have been assigned a site visit for {visit.customer_name} on {when}.",
                NotificationCategory.INFO,
                at,
            )
        )
    return messages


def decline_notice(visit: Visit, at: datetime) -> NotificationMessage:
    return _message(
        visit,
        visit.requested_by,
        "Site Visit Declined",
        _with_note(f"Your request for {visit.customer_name} has been declined.", visit.rejection_reason),
        NotificationCategory.ERROR,
        at,
    )


def clarification_notice(visit: Visit, at: datetime) -> NotificationMessage:
    return _message(
        visit,
        visit.requested_by,
        "Site Visit Needs Clarification",
        _with_note(
            f"Your request for {visit.customer_name} has been returned for clarification.",
            visit.clarification_note,
        ),
        NotificationCategory.WARNING,
        at,
    )


def trip_started_notice(visit: Visit, at: datetime) -> NotificationMessage:
    return _message(
        visit,
        visit.requested_by,
        "Site Visit Trip Started",
        f"The site visit for {visit.customer_name} has been marked as Trip Started.",
        NotificationCategory.INFO,
        at,
    )


def trip_completed_notice(visit: Visit, distance: float, at: datetime) -> NotificationMessage:
    return _message(
        visit,
        visit.requested_by,
        "Site Visit Completed",
        f"The site visit for {visit.customer_name} has been marked as Completed. "
        f"Total distance: {format_distance(distance)}",
        NotificationCategory.INFO,
        at,
    )
