# site_dispatch/infra/pg_profile_repo_async.py
"""
Async PostgreSQL profile directory (read-only).
"""
from __future__ import annotations
from typing import Optional

import asyncpg

from site_dispatch.core.visits.domain import Profile, ProfileId
from site_dispatch.infra.db_async import db_conn
from site_dispatch.infra.db_resilience_async import retry_on_transient_error


def _row_to_profile(row: asyncpg.Record) -> Profile:
    return Profile(
        id=ProfileId(row["id"]),
        role=row["role"],
        is_active=row["is_active"],
        full_name=row["full_name"] or "",
    )


class AsyncPostgresProfileDirectory:
    @retry_on_transient_error()
    async def get(self, profile_id: str) -> Optional[Profile]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, role, is_active, full_name FROM profiles WHERE id = $1",
                profile_id,
            )
        return _row_to_profile(row) if row else None

    @retry_on_transient_error()
    async def get_many(self, profile_ids: list[str]) -> dict[str, Profile]:
        if not profile_ids:
            return {}
        async with db_conn() as conn:
            rows = await conn.fetch(
                "SELECT id, role, is_active, full_name FROM profiles WHERE id = ANY($1::text[])",
                list(set(profile_ids)),
            )
        return {row["id"]: _row_to_profile(row) for row in rows}
