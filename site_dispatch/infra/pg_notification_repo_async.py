# site_dispatch/infra/pg_notification_repo_async.py
"""
Async PostgreSQL notification sink and inbox.
"""
from __future__ import annotations

import asyncpg

from site_dispatch.core.visits.domain import NotificationMessage
from site_dispatch.infra.db_async import db_conn
from site_dispatch.infra.db_resilience_async import retry_on_transient_error
from site_dispatch.infra.logging_config import get_logger
from site_dispatch.infra.notifiers import StoredNotification

logger = get_logger(__name__)


def _row_to_notification(row: asyncpg.Record) -> StoredNotification:
    return StoredNotification(
        id=str(row["id"]),
        user_id=row["user_id"],
        title=row["title"],
        message=row["message"],
        type=row["type"],
        related_entity_type=row["related_entity_type"],
        related_entity_id=row["related_entity_id"],
        is_read=row["is_read"],
        created_at=row["created_at"],
    )


class AsyncPostgresNotificationInbox:
    @retry_on_transient_error()
    async def send(self, message: NotificationMessage) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO notifications
                  (user_id, title, message, type, related_entity_type, related_entity_id, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                message.recipient_id,
                message.title,
                message.message,
                message.category.value,
                message.related_entity_type,
                message.related_entity_id,
                message.created_at,
            )
        logger.debug(f"Notification stored: recipient={message.recipient_id}, title={message.title!r}")

    @retry_on_transient_error()
    async def list_for_recipient(self, user_id: str, limit: int = 50) -> list[StoredNotification]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM notifications
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [_row_to_notification(r) for r in rows]

    @retry_on_transient_error()
    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        try:
            numeric_id = int(notification_id)
        except ValueError:
            return False
        async with db_conn() as conn:
            result = await conn.execute(
                "UPDATE notifications SET is_read = true WHERE id = $1 AND user_id = $2",
                numeric_id,
                user_id,
            )
        return int(result.split()[-1]) > 0

    @retry_on_transient_error()
    async def mark_all_read(self, user_id: str) -> int:
        async with db_conn() as conn:
            result = await conn.execute(
                "UPDATE notifications SET is_read = true WHERE user_id = $1 AND is_read = false",
                user_id,
            )
        return int(result.split()[-1])
