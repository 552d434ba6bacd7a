# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from site_dispatch.core.visits.domain import Profile
from site_dispatch.core.visits.engine import VisitLifecycleEngine
from site_dispatch.infra.memory_store import (
    InMemoryNotificationInbox,
    InMemoryProfileDirectory,
    InMemoryVisitStore,
)
from site_dispatch.infra.metrics import get_metrics_collector

REQUESTER = "R1"
OTHER_REQUESTER = "R2"
APPROVER = "A1"
SECOND_APPROVER = "A2"
DIRECTOR = "DIR1"
DRIVER = "D1"
SECOND_DRIVER = "D2"
INACTIVE_DRIVER = "D9"


def default_profiles() -> list[Profile]:
    return [
        Profile(id=REQUESTER, role="sales_executive", full_name="Ravi Kumar"),
        Profile(id=OTHER_REQUESTER, role="team_leader", full_name="Neha Shah"),
        Profile(id=APPROVER, role="admin", full_name="Anil Mehta"),
        Profile(id=SECOND_APPROVER, role="super_admin", full_name="Priya Iyer"),
        Profile(id=DIRECTOR, role="director", full_name="Vikram Rao"),
        Profile(id=DRIVER, role="driver", full_name="Dinesh Driver"),
        Profile(id=SECOND_DRIVER, role="driver", full_name="Suresh Driver"),
        Profile(id=INACTIVE_DRIVER, role="driver", is_active=False, full_name="Old Driver"),
    ]


class TickingClock:
    """Deterministic clock: every read advances by one second"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def visit_store():
    return InMemoryVisitStore()


@pytest.fixture
def profiles():
    return InMemoryProfileDirectory(default_profiles())


@pytest.fixture
def notifier():
    """Recording notifier: every sent message lands in its inbox"""
    return InMemoryNotificationInbox()


@pytest.fixture
def engine(visit_store, profiles, notifier):
    return VisitLifecycleEngine(
        visits=visit_store,
        profiles=profiles,
        notifier=notifier,
        clock=TickingClock(),
    )


@pytest.fixture
def visit_fields():
    return {
        "customer_name": "Asha Rao",
        "customer_phone": "9990001111",
        "visit_date": "2025-03-10",
        "visit_time": "10:30",
        "pickup_location": "Head office",
        "project_ids": ["P1"],
        "notes": "Customer prefers a morning slot.",
    }


@pytest.fixture
def make_visit(engine, visit_fields):
    """Create a pending visit as REQUESTER (async factory)"""
    async def _make(requester_id: str = REQUESTER, **overrides):
        return await engine.create_visit(requester_id, {**visit_fields, **overrides})
    return _make


@pytest.fixture
def approved_visit(engine, make_visit):
    """Create and approve a visit with DRIVER assigned (async factory)"""
    async def _make(driver_id: str = DRIVER):
        visit_id = await make_visit()
        await engine.approve(visit_id, APPROVER, driver_id=driver_id)
        return visit_id
    return _make
