# site_dispatch/infra/notifiers.py
"""
Notifier adapters shared by the Postgres and in-memory backends.

The engine only needs ``send()``.  Recipients read their notifications back
through the inbox half of the adapter (list / mark read), which the
transport layer exposes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from site_dispatch.core.visits.domain import NotificationMessage
from site_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class StoredNotification:
    """A persisted notification as returned to its recipient."""
    id: str
    user_id: str
    title: str
    message: str
    type: str
    related_entity_type: str | None
    related_entity_id: str | None
    is_read: bool
    created_at: datetime


class NotificationInbox(Protocol):
    async def send(self, message: NotificationMessage) -> None: ...
    async def list_for_recipient(self, user_id: str, limit: int = 50) -> list[StoredNotification]: ...
    async def mark_read(self, notification_id: str, user_id: str) -> bool: ...
    async def mark_all_read(self, user_id: str) -> int: ...


class DisabledNotifier:
    """Drops every message (notifications_enabled=False)."""

    async def send(self, message: NotificationMessage) -> None:
        logger.debug(
            f"Notifications disabled, dropping: recipient={message.recipient_id}, title={message.title!r}"
        )
