# tests/test_concurrency.py
"""Tests for optimistic concurrency on visit writes"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from site_dispatch.core.visits.domain import VisitStatus
from site_dispatch.core.visits.engine import VisitLifecycleEngine
from site_dispatch.core.visits.errors import IllegalTransitionError, NotFoundError
from site_dispatch.infra.memory_store import InMemoryVisitStore
from site_dispatch.infra.metrics import get_metrics_collector
from conftest import APPROVER, DRIVER, REQUESTER, SECOND_APPROVER, SECOND_DRIVER, TickingClock


class InterleavingVisitStore(InMemoryVisitStore):
    """Yields to the event loop after every read so racing callers share a snapshot"""

    async def get(self, visit_id: str):
        visit = await super().get(visit_id)
        await asyncio.sleep(0)
        return visit


class LostAckVisitStore(InMemoryVisitStore):
    """Applies the conditional patch but reports a guard miss, as a retried write would"""

    async def patch_if_unchanged(self, *args, **kwargs):
        await super().patch_if_unchanged(*args, **kwargs)
        return None


@pytest.fixture
def racing_engine(profiles, notifier):
    return VisitLifecycleEngine(
        visits=InterleavingVisitStore(),
        profiles=profiles,
        notifier=notifier,
        clock=TickingClock(),
    )


class TestConcurrentApproval:
    @pytest.mark.asyncio
    async def test_exactly_one_approval_wins(self, racing_engine, notifier, visit_fields):
        visit_id = await racing_engine.create_visit(REQUESTER, visit_fields)

        results = await asyncio.gather(
            racing_engine.approve(visit_id, APPROVER, driver_id=DRIVER),
            racing_engine.approve(visit_id, SECOND_APPROVER, driver_id=SECOND_DRIVER),
            return_exceptions=True,
        )
        await racing_engine.drain_notifications()

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], IllegalTransitionError)
        assert losers[0].current_status == "approved"

        stored = await racing_engine.get_visit(visit_id)
        assert stored.status is VisitStatus.APPROVED
        assert stored.driver_id == winners[0].driver_id

        # Only the winner's driver hears about it
        assigned = [n for n in notifier.sent if n.title == "New Site Visit Assigned"]
        assert [n.user_id for n in assigned] == [stored.driver_id]
        assert get_metrics_collector().get_counter("visit_stale_writes_total", operation="approve") == 1

    @pytest.mark.asyncio
    async def test_approve_races_decline(self, racing_engine, visit_fields):
        visit_id = await racing_engine.create_visit(REQUESTER, visit_fields)

        results = await asyncio.gather(
            racing_engine.decline(visit_id, SECOND_APPROVER, reason="Duplicate request"),
            racing_engine.approve(visit_id, APPROVER, driver_id=DRIVER),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, IllegalTransitionError)) == 1
        stored = await racing_engine.get_visit(visit_id)
        assert stored.status is VisitStatus.DECLINED
        assert stored.driver_id is None
        assert stored.invariant_violations() == []

    @pytest.mark.asyncio
    async def test_delete_races_approve(self, racing_engine, visit_fields):
        visit_id = await racing_engine.create_visit(REQUESTER, visit_fields)

        results = await asyncio.gather(
            racing_engine.approve(visit_id, APPROVER, driver_id=DRIVER),
            racing_engine.delete_visit(visit_id, REQUESTER),
            return_exceptions=True,
        )

        assert isinstance(results[1], IllegalTransitionError)
        assert results[1].current_status == "approved"
        assert (await racing_engine.get_visit(visit_id)).status is VisitStatus.APPROVED


class TestStaleWrite:
    @pytest.mark.asyncio
    async def test_stale_guard_reports_current_status(self, engine, visit_store, make_visit):
        visit_id = await make_visit()
        visit_store.patch_if_unchanged = AsyncMock(return_value=None)

        with pytest.raises(IllegalTransitionError) as exc_info:
            await engine.approve(visit_id, APPROVER, driver_id=DRIVER)

        assert exc_info.value.current_status == "pending"

    @pytest.mark.asyncio
    async def test_stale_guard_on_vanished_record(self, engine, visit_store, make_visit):
        visit_id = await make_visit()
        original_get = visit_store.get
        visit_store.get = AsyncMock(side_effect=[await original_get(visit_id), None])
        visit_store.patch_if_unchanged = AsyncMock(return_value=None)

        with pytest.raises(NotFoundError):
            await engine.approve(visit_id, APPROVER, driver_id=DRIVER)

    @pytest.mark.asyncio
    async def test_updated_at_advances_even_if_clock_does_not(self, profiles, notifier, visit_fields):
        frozen = TickingClock()
        frozen_now = frozen()
        engine = VisitLifecycleEngine(
            visits=InMemoryVisitStore(),
            profiles=profiles,
            notifier=notifier,
            clock=lambda: frozen_now,
        )
        visit_id = await engine.create_visit(REQUESTER, visit_fields)
        created = await engine.get_visit(visit_id)

        edited = await engine.edit_visit(visit_id, REQUESTER, visit_time="11:00")

        assert edited.updated_at > created.updated_at

    @pytest.mark.asyncio
    async def test_write_applied_but_unacknowledged_counts_as_committed(self, profiles, notifier, visit_fields):
        engine = VisitLifecycleEngine(
            visits=LostAckVisitStore(),
            profiles=profiles,
            notifier=notifier,
            clock=TickingClock(),
        )
        visit_id = await engine.create_visit(REQUESTER, visit_fields)

        approved = await engine.approve(visit_id, APPROVER, driver_id=DRIVER)
        await engine.drain_notifications()

        assert approved.status is VisitStatus.APPROVED
        assert approved.driver_id == DRIVER
        assert sorted(n.user_id for n in notifier.sent) == sorted([REQUESTER, DRIVER])
        assert get_metrics_collector().get_counter("visit_stale_writes_total", operation="approve") == 0
