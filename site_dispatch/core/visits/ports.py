# site_dispatch/core/visits/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Optional, Protocol

from site_dispatch.core.visits.domain import (
    NotificationMessage,
    Profile,
    Visit,
    VisitFilter,
    VisitStatus,
)


class AsyncVisitStore(Protocol):
    async def get(self, visit_id: str) -> Optional[Visit]: ...
    async def list(self, flt: VisitFilter) -> list[Visit]: ...
    async def insert(self, visit: Visit) -> Visit: ...

    async def patch_if_unchanged(
        self,
        visit_id: str,
        expected_status: VisitStatus,
        expected_updated_at: datetime,
        changes: dict[str, Any],
    ) -> Optional[Visit]:
        """
        Apply ``changes`` only if the stored record still has the expected
        status and updated_at.

        Visit  => write committed, returns the new record
        None   => stale guard (record changed or vanished), nothing written
        """
        ...

    async def delete_if_status(self, visit_id: str, expected_status: VisitStatus) -> bool:
        """True if the record was deleted, False if missing or status moved on."""
        ...


class AsyncProfileDirectory(Protocol):
    async def get(self, profile_id: str) -> Optional[Profile]: ...
    async def get_many(self, profile_ids: list[str]) -> dict[str, Profile]: ...


class AsyncNotifier(Protocol):
    async def send(self, message: NotificationMessage) -> None: ...
