# tests/test_domain.py
"""Tests for domain models"""
from datetime import datetime, timezone

from site_dispatch.core.visits.domain import (
    NotificationCategory,
    NotificationMessage,
    Profile,
    Visit,
    VisitFilter,
    VisitStatus,
)

NOW = datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def _visit(**overrides) -> Visit:
    fields = dict(
        id="v1",
        requested_by="R1",
        customer_name="Asha Rao",
        customer_phone="9990001111",
        visit_date="2025-03-10",
        visit_time="10:30",
        created_at=NOW,
        updated_at=NOW,
        project_ids=["P1"],
    )
    fields.update(overrides)
    return Visit(**fields)


class TestProfile:
    def test_active_driver(self):
        assert Profile(id="D1", role="driver").is_active_driver
        assert not Profile(id="D1", role="driver", is_active=False).is_active_driver
        assert not Profile(id="A1", role="admin").is_active_driver


class TestVisit:
    def test_defaults(self):
        visit = _visit()
        assert visit.status is VisitStatus.PENDING
        assert visit.driver_id is None
        assert visit.trip_distance is None
        assert visit.invariant_violations() == []

    def test_trip_distance_derived(self):
        visit = _visit(
            status=VisitStatus.COMPLETED,
            driver_id="D1",
            start_odometer=1200.0,
            end_odometer=1240.0,
        )
        assert visit.trip_distance == 40.0
        assert visit.invariant_violations() == []

    def test_ownership_and_assignment(self):
        visit = _visit(status=VisitStatus.APPROVED, driver_id="D1")
        assert visit.is_owned_by("R1")
        assert not visit.is_owned_by("R2")
        assert visit.is_assigned_to("D1")
        assert not visit.is_assigned_to("D2")

    def test_invariant_violations_reported(self):
        visit = _visit(status=VisitStatus.PENDING, driver_id="D1", end_odometer=10.0)
        problems = visit.invariant_violations()
        assert any("driver_id" in p for p in problems)
        assert any("end_odometer" in p for p in problems)

    def test_end_not_above_start_reported(self):
        visit = _visit(
            status=VisitStatus.COMPLETED,
            driver_id="D1",
            start_odometer=1200.0,
            end_odometer=1100.0,
        )
        assert "end_odometer must exceed start_odometer" in visit.invariant_violations()


class TestVisitRecord:
    def test_record_shape(self):
        record = _visit().to_record()
        assert record["status"] == "pending"
        assert record["created_at"] == NOW.isoformat()
        assert record["project_ids"] == ["P1"]
        assert "trip_distance" not in record

    def test_from_record_parses_strings(self):
        record = _visit(status=VisitStatus.APPROVED, driver_id="D1", approved_at=NOW).to_record()
        visit = Visit.from_record(record)
        assert visit.status is VisitStatus.APPROVED
        assert visit.approved_at == NOW
        assert visit.created_at == NOW

    def test_from_record_ignores_unknown_keys_and_naive_timestamps(self):
        record = _visit().to_record()
        record["_creationTime"] = 12345
        record["created_at"] = "2025-03-01T08:00:00"
        visit = Visit.from_record(record)
        assert visit.created_at == NOW

    def test_from_record_legacy_cancelled(self):
        record = _visit().to_record()
        record["status"] = "cancelled"
        assert Visit.from_record(record).status is VisitStatus.CANCELLED


class TestVisitFilter:
    def test_matches(self):
        visit = _visit(status=VisitStatus.APPROVED, driver_id="D1")
        assert VisitFilter().matches(visit)
        assert VisitFilter(status=VisitStatus.APPROVED, driver_id="D1").matches(visit)
        assert not VisitFilter(status=VisitStatus.PENDING).matches(visit)
        assert not VisitFilter(requested_by="R2").matches(visit)
        assert VisitFilter(visit_date_from="2025-03-10").matches(visit)
        assert not VisitFilter(visit_date_from="2025-03-11").matches(visit)


class TestNotificationMessage:
    def test_record_shape(self):
        msg = NotificationMessage(
            recipient_id="R1",
            title="Site Visit Approved",
            message="ok",
            category=NotificationCategory.SUCCESS,
            related_entity_id="v1",
            created_at=NOW,
        )
        record = msg.to_record()
        assert record["user_id"] == "R1"
        assert record["type"] == "success"
        assert record["related_entity_type"] == "site_visit"
        assert record["related_entity_id"] == "v1"
