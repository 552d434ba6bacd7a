# site_dispatch/infra/memory_store.py
"""
In-process record store, profile directory and notification inbox.

Used by the dev server (``STORE_BACKEND=memory``) and the test-suite.
Semantics match the Postgres adapters: per-record conditional writes are
serialized by a single ``asyncio.Lock``, and every read hands out a copy
so callers never alias stored state.
"""
from __future__ import annotations

import asyncio
import copy
import itertools
import json
from datetime import datetime
from typing import Any, Iterable, Optional

from site_dispatch.core.visits.domain import (
    NotificationMessage,
    Profile,
    ProfileId,
    Visit,
    VisitFilter,
    VisitStatus,
)
from site_dispatch.infra.logging_config import get_logger
from site_dispatch.infra.notifiers import StoredNotification

logger = get_logger(__name__)


class InMemoryVisitStore:
    """Dict-backed visit store with compare-and-swap patching."""

    def __init__(self) -> None:
        self._visits: dict[str, Visit] = {}
        self._lock = asyncio.Lock()

    async def get(self, visit_id: str) -> Optional[Visit]:
        async with self._lock:
            visit = self._visits.get(visit_id)
            return copy.deepcopy(visit) if visit else None

    async def list(self, flt: VisitFilter) -> list[Visit]:
        async with self._lock:
            matches = [v for v in self._visits.values() if flt.matches(v)]
        matches.sort(key=lambda v: v.created_at, reverse=True)
        return [copy.deepcopy(v) for v in matches[: flt.limit]]

    async def insert(self, visit: Visit) -> Visit:
        async with self._lock:
            if visit.id in self._visits:
                raise KeyError(f"Visit '{visit.id}' already exists")
            self._visits[visit.id] = copy.deepcopy(visit)
            return copy.deepcopy(visit)

    async def patch_if_unchanged(
        self,
        visit_id: str,
        expected_status: VisitStatus,
        expected_updated_at: datetime,
        changes: dict[str, Any],
    ) -> Optional[Visit]:
        async with self._lock:
            current = self._visits.get(visit_id)
            if current is None:
                return None
            if current.status != expected_status or current.updated_at != expected_updated_at:
                return None

            updated = copy.deepcopy(current)
            for name, value in changes.items():
                if not hasattr(updated, name):
                    raise KeyError(f"Unknown visit field '{name}'")
                setattr(updated, name, copy.deepcopy(value))
            self._visits[visit_id] = updated
            return copy.deepcopy(updated)

    async def delete_if_status(self, visit_id: str, expected_status: VisitStatus) -> bool:
        async with self._lock:
            current = self._visits.get(visit_id)
            if current is None or current.status != expected_status:
                return False
            del self._visits[visit_id]
            return True


class InMemoryProfileDirectory:
    def __init__(self, profiles: Iterable[Profile] = ()) -> None:
        self._profiles: dict[str, Profile] = {p.id: p for p in profiles}

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryProfileDirectory":
        """
        Seed a directory from a JSON list of profiles:
        ``[{"id": "A1", "role": "admin", "full_name": "...", "is_active": true}]``
        """
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, list):
            raise ValueError(f"Profiles file {path} must contain a JSON list")

        profiles = [
            Profile(
                id=ProfileId(str(item["id"])),
                role=item["role"],
                is_active=bool(item.get("is_active", True)),
                full_name=item.get("full_name", ""),
            )
            for item in raw
        ]
        logger.info(f"Seeded {len(profiles)} profiles from {path}")
        return cls(profiles)

    def add(self, profile: Profile) -> None:
        self._profiles[profile.id] = profile

    async def get(self, profile_id: str) -> Optional[Profile]:
        return self._profiles.get(profile_id)

    async def get_many(self, profile_ids: list[str]) -> dict[str, Profile]:
        return {pid: self._profiles[pid] for pid in set(profile_ids) if pid in self._profiles}


class InMemoryNotificationInbox:
    """Notifier + per-recipient inbox kept in a list."""

    def __init__(self) -> None:
        self._items: list[StoredNotification] = []
        self._ids = itertools.count(1)

    @property
    def sent(self) -> list[StoredNotification]:
        return list(self._items)

    def for_recipient(self, user_id: str) -> list[StoredNotification]:
        return [n for n in self._items if n.user_id == user_id]

    async def send(self, message: NotificationMessage) -> None:
        self._items.append(
            StoredNotification(
                id=str(next(self._ids)),
                user_id=message.recipient_id,
                title=message.title,
                message=message.message,
                type=message.category.value,
                related_entity_type=message.related_entity_type,
                related_entity_id=message.related_entity_id,
                is_read=False,
                created_at=message.created_at,
            )
        )

    async def list_for_recipient(self, user_id: str, limit: int = 50) -> list[StoredNotification]:
        items = sorted(self.for_recipient(user_id), key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        for item in self._items:
            if item.id == notification_id and item.user_id == user_id:
                item.is_read = True
                return True
        return False

    async def mark_all_read(self, user_id: str) -> int:
        count = 0
        for item in self._items:
            if item.user_id == user_id and not item.is_read:
                item.is_read = True
                count += 1
        return count
