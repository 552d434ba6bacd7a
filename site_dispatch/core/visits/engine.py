# site_dispatch/core/visits/engine.py
"""
Visit lifecycle engine: the single entry point for every site-visit
state change.

Workflow for each transition:
    load actor -> load visit -> authorize (policy) -> guard payload
    -> conditional write (status + updated_at must still match the snapshot)
    -> audit -> fire-and-forget notifications

The conditional write is what stops two approvers from both winning:
the loser's write matches zero rows and surfaces IllegalTransitionError
with the status the winner left behind.

Notifications are scheduled only after the write commits. A failed send
is logged and counted, never raised; state is authoritative.
"""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, NoReturn, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from site_dispatch.core.visits import clarification, notices, telemetry
from site_dispatch.core.visits.domain import (
    NotificationMessage,
    Profile,
    ProfileId,
    Visit,
    VisitFilter,
    VisitId,
    VisitOperation,
    VisitStatus,
)
from site_dispatch.core.visits.errors import (
    AuthorizationError,
    DispatchError,
    IllegalTransitionError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from site_dispatch.core.visits.models import (
    ApproveVisitRequest,
    CreateVisitRequest,
    DeclineVisitRequest,
    EditVisitRequest,
    OdometerReadingRequest,
    RequestClarificationRequest,
    SubmitClarificationRequest,
)
from site_dispatch.core.visits.policy import DenialKind, authorize, target_status
from site_dispatch.core.visits.ports import AsyncNotifier, AsyncProfileDirectory, AsyncVisitStore
from site_dispatch.infra.audit_log import audit_event
from site_dispatch.infra.logging_config import LogContext, get_logger, mask_phone
from site_dispatch.infra.metrics import VisitMetrics

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)
Payload = Union[BaseModel, dict, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_visit_id() -> VisitId:
    return VisitId(uuid.uuid4().hex)


def _no_notices(_visit: Visit) -> list[NotificationMessage]:
    return []


@dataclass
class _Plan:
    """Field changes for one transition plus the notices to send once committed."""
    changes: dict[str, Any]
    notices: Callable[[Visit], list[NotificationMessage]] = _no_notices


class VisitLifecycleEngine:
    """
    Owns the Visit state machine.

    Stateless apart from the set of in-flight notification sends, so one
    instance can serve every request.
    """

    def __init__(
        self,
        *,
        visits: AsyncVisitStore,
        profiles: AsyncProfileDirectory,
        notifier: AsyncNotifier,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], VisitId] | None = None,
    ) -> None:
        self.visits = visits
        self.profiles = profiles
        self.notifier = notifier
        self._clock = clock or _utcnow
        self._new_id = id_factory or _new_visit_id
        self._pending_sends: set[asyncio.Task] = set()

        self._handlers: dict[VisitOperation, Callable[[Visit, Profile, Payload, datetime], Awaitable[_Plan]]] = {
            VisitOperation.EDIT: self._plan_edit,
            VisitOperation.APPROVE: self._plan_approve,
            VisitOperation.DECLINE: self._plan_decline,
            VisitOperation.REQUEST_CLARIFICATION: self._plan_request_clarification,
            VisitOperation.SUBMIT_CLARIFICATION: self._plan_submit_clarification,
            VisitOperation.START_TRIP: self._plan_start_trip,
            VisitOperation.COMPLETE_TRIP: self._plan_complete_trip,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_visit(self, visit_id: str) -> Visit:
        async with self._store_errors("get"):
            visit = await self.visits.get(visit_id)
        if visit is None:
            raise NotFoundError(f"Site visit '{visit_id}' not found")
        return visit

    async def list_visits(self, flt: VisitFilter | None = None) -> list[Visit]:
        """
        List visits newest first.

        Role scoping is the caller's concern; this only clamps the limit.
        """
        from site_dispatch.config import settings

        flt = flt or VisitFilter(limit=settings.visit_list_default_limit)
        flt = replace(flt, limit=max(1, min(flt.limit, settings.visit_list_max_limit)))
        async with self._store_errors("list"):
            return await self.visits.list(flt)

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    async def create_visit(self, requester_id: str, fields: Payload) -> VisitId:
        """Create a request in ``pending`` owned by ``requester_id``."""
        actor = await self.load_actor(requester_id)
        decision = authorize(actor.role, None, VisitOperation.CREATE)
        if not decision.allowed:
            VisitMetrics.transition_rejected(VisitOperation.CREATE.value, decision.kind.value)
            raise AuthorizationError(decision.reason)

        req = self._parse(CreateVisitRequest, fields)
        notes = clarification.check_request_notes(req.notes)

        now = self._clock()
        visit = Visit(
            id=self._new_id(),
            requested_by=ProfileId(actor.id),
            customer_name=req.customer_name,
            customer_phone=req.customer_phone,
            pickup_location=req.pickup_location or None,
            project_ids=list(req.project_ids),
            visit_date=req.visit_date,
            visit_time=req.visit_time,
            is_public=req.is_public,
            notes=notes,
            status=VisitStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        async with self._store_errors("insert"):
            created = await self.visits.insert(visit)

        VisitMetrics.visit_created()
        audit_event(
            "visit.create",
            visit_id=created.id,
            actor_id=actor.id,
            to_status=created.status.value,
        )
        LogContext(logger, visit_id=created.id, actor_id=actor.id).info(
            f"Site visit created: customer_phone={mask_phone(created.customer_phone)}, "
            f"visit_date={created.visit_date}"
        )
        return created.id

    async def delete_visit(self, visit_id: str, actor_id: str) -> None:
        """Remove a still-pending request; owner only."""
        actor = await self.load_actor(actor_id)
        visit = await self.get_visit(visit_id)
        self._authorize(actor, visit, VisitOperation.DELETE)

        async with self._store_errors("delete"):
            deleted = await self.visits.delete_if_status(visit.id, VisitStatus.PENDING)
        if not deleted:
            self._raise_stale(visit, VisitOperation.DELETE, await self._reread(visit.id))

        VisitMetrics.visit_deleted()
        audit_event(
            "visit.delete",
            visit_id=visit.id,
            actor_id=actor.id,
            from_status=visit.status.value,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        visit_id: str,
        actor_id: str,
        operation: Union[VisitOperation, str],
        payload: Payload = None,
    ) -> Visit:
        """
        Apply a named transition and return the committed visit.

        Raises:
            ValidationError: payload guard failed
            AuthorizationError: actor role / ownership mismatch
            IllegalTransitionError: operation not valid from the current status
            NotFoundError: visit or driver missing
            InfrastructureError: record store unreachable
        """
        try:
            op = VisitOperation(operation)
        except ValueError:
            raise ValidationError(f"Unknown operation '{operation}'", field="operation")

        handler = self._handlers.get(op)
        if handler is None:
            raise ValidationError(
                f"'{op.value}' is not a transition; use the dedicated operation",
                field="operation",
            )

        with VisitMetrics.track_transition_time(op.value):
            actor = await self.load_actor(actor_id)
            visit = await self.get_visit(visit_id)
            self._authorize(actor, visit, op)

            now = self._clock()
            plan = await handler(visit, actor, payload, now)
            committed = await self._commit(visit, op, plan.changes, now)

        VisitMetrics.transition_committed(op.value)
        audit_event(
            f"visit.{op.value}",
            visit_id=committed.id,
            actor_id=actor.id,
            from_status=visit.status.value,
            to_status=committed.status.value,
        )
        LogContext(logger, visit_id=committed.id, actor_id=actor.id, operation=op.value).info(
            f"Site visit transition committed: {visit.status.value} -> {committed.status.value}"
        )

        self._dispatch(plan.notices(committed))
        return committed

    async def edit_visit(self, visit_id: str, actor_id: str, **fields: Any) -> Visit:
        return await self.transition(visit_id, actor_id, VisitOperation.EDIT, fields)

    async def approve(
        self,
        visit_id: str,
        actor_id: str,
        *,
        driver_id: str,
        note: str | None = None,
        assigned_vehicle: str | None = None,
    ) -> Visit:
        payload = {"driver_id": driver_id, "note": note, "assigned_vehicle": assigned_vehicle}
        return await self.transition(visit_id, actor_id, VisitOperation.APPROVE, payload)

    async def decline(self, visit_id: str, actor_id: str, *, reason: str) -> Visit:
        return await self.transition(visit_id, actor_id, VisitOperation.DECLINE, {"reason": reason})

    async def request_clarification(self, visit_id: str, actor_id: str, *, note: str) -> Visit:
        return await self.transition(
            visit_id, actor_id, VisitOperation.REQUEST_CLARIFICATION, {"note": note}
        )

    async def submit_clarification(
        self, visit_id: str, actor_id: str, *, response: str, **amendments: Any
    ) -> Visit:
        payload = {"response": response, **amendments}
        return await self.transition(visit_id, actor_id, VisitOperation.SUBMIT_CLARIFICATION, payload)

    async def start_trip(self, visit_id: str, actor_id: str, *, odometer: float) -> Visit:
        return await self.transition(visit_id, actor_id, VisitOperation.START_TRIP, {"reading": odometer})

    async def complete_trip(self, visit_id: str, actor_id: str, *, odometer: float) -> Visit:
        return await self.transition(visit_id, actor_id, VisitOperation.COMPLETE_TRIP, {"reading": odometer})

    # ------------------------------------------------------------------
    # Transition plans (guards + field changes)
    # ------------------------------------------------------------------

    async def _plan_edit(self, visit: Visit, actor: Profile, payload: Payload, now: datetime) -> _Plan:
        req = self._parse(EditVisitRequest, payload)
        if not req.has_updates():
            raise ValidationError("No fields to update")

        changes = req.field_changes()
        if req.notes is not None:
            if clarification.has_response_history(visit.notes):
                raise ValidationError(
                    "Notes include clarification responses and can no longer be rewritten.",
                    field="notes",
                )
            changes["notes"] = clarification.check_request_notes(req.notes)
        return _Plan(changes)

    async def _plan_approve(self, visit: Visit, actor: Profile, payload: Payload, now: datetime) -> _Plan:
        req = self._parse(ApproveVisitRequest, payload)

        async with self._store_errors("driver_lookup"):
            driver = await self.profiles.get(req.driver_id)
        if driver is None or not driver.is_active_driver:
            raise NotFoundError(f"Driver '{req.driver_id}' not found or not an active driver")

        changes: dict[str, Any] = {
            "driver_id": ProfileId(driver.id),
            "approved_by": ProfileId(actor.id),
            "approved_at": now,
            "clarification_note": None,
        }
        if req.assigned_vehicle:
            changes["assigned_vehicle"] = req.assigned_vehicle
        if req.note:
            changes["notes"] = clarification.append_approval_note(visit.notes, req.note)

        return _Plan(changes, lambda committed: notices.approval_notices(committed, req.note, now))

    async def _plan_decline(self, visit: Visit, actor: Profile, payload: Payload, now: datetime) -> _Plan:
        req = self._parse(DeclineVisitRequest, payload)
        changes = {
            "rejection_reason": req.reason,
            "approved_by": ProfileId(actor.id),
            "approved_at": now,
            "clarification_note": None,
        }
        return _Plan(changes, lambda committed: [notices.decline_notice(committed, now)])

    async def _plan_request_clarification(
        self, visit: Visit, actor: Profile, payload: Payload, now: datetime
    ) -> _Plan:
        req = self._parse(RequestClarificationRequest, payload)
        changes = {
            "clarification_note": req.note,
            "approved_by": ProfileId(actor.id),
            "approved_at": now,
        }
        return _Plan(changes, lambda committed: [notices.clarification_notice(committed, now)])

    async def _plan_submit_clarification(
        self, visit: Visit, actor: Profile, payload: Payload, now: datetime
    ) -> _Plan:
        req = self._parse(SubmitClarificationRequest, payload)
        response = clarification.check_response(req.response)

        changes = req.field_changes()
        changes["notes"] = clarification.append_response(visit.notes, response, now)
        changes["clarification_note"] = None
        return _Plan(changes)

    async def _plan_start_trip(self, visit: Visit, actor: Profile, payload: Payload, now: datetime) -> _Plan:
        req = self._parse(OdometerReadingRequest, payload)
        reading = telemetry.check_start_reading(req.reading)
        return _Plan(
            {"start_odometer": reading},
            lambda committed: [notices.trip_started_notice(committed, now)],
        )

    async def _plan_complete_trip(self, visit: Visit, actor: Profile, payload: Payload, now: datetime) -> _Plan:
        req = self._parse(OdometerReadingRequest, payload)
        reading = telemetry.check_end_reading(req.reading, visit.start_odometer)
        distance = telemetry.trip_distance(visit.start_odometer, reading)
        return _Plan(
            {"end_odometer": reading},
            lambda committed: [notices.trip_completed_notice(committed, distance, now)],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _store_errors(self, operation: str):
        """Surface record-store failures as InfrastructureError."""
        try:
            yield
        except DispatchError:
            raise
        except Exception as exc:
            VisitMetrics.store_error(operation)
            logger.error(f"Record store failure during {operation}: {exc}", exc_info=True)
            raise InfrastructureError(f"Record store unavailable ({operation})") from exc

    async def load_actor(self, actor_id: str) -> Profile:
        """Resolve an active actor profile; unknown or inactive actors are rejected."""
        async with self._store_errors("actor_lookup"):
            actor = await self.profiles.get(actor_id)
        if actor is None or not actor.is_active:
            raise AuthorizationError("Unknown or inactive actor")
        return actor

    def _authorize(self, actor: Profile, visit: Visit, operation: VisitOperation) -> None:
        decision = authorize(
            actor.role,
            visit.status,
            operation,
            is_owner=visit.is_owned_by(actor.id),
            is_assigned_driver=visit.is_assigned_to(actor.id),
        )
        if decision.allowed:
            return

        VisitMetrics.transition_rejected(operation.value, decision.kind.value)
        if decision.kind is DenialKind.STATE:
            raise IllegalTransitionError(decision.reason, current_status=visit.status.value)
        raise AuthorizationError(decision.reason)

    @staticmethod
    def _parse(model: Type[M], payload: Payload) -> M:
        if isinstance(payload, model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_none=True)
        data = {k: v for k, v in (payload or {}).items() if v is not None}
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(first.get("msg", "Invalid input"), field=loc or None) from exc

    async def _commit(
        self,
        visit: Visit,
        operation: VisitOperation,
        changes: dict[str, Any],
        now: datetime,
    ) -> Visit:
        # updated_at doubles as the concurrency token, so it must move forward
        if now <= visit.updated_at:
            now = visit.updated_at + timedelta(microseconds=1)
        changes = {**changes, "status": target_status(operation), "updated_at": now}

        async with self._store_errors("patch"):
            committed = await self.visits.patch_if_unchanged(
                visit.id, visit.status, visit.updated_at, changes
            )
        if committed is not None:
            return committed

        # A retried write whose first attempt landed misses its own guard
        current = await self._reread(visit.id)
        if current is not None and all(getattr(current, k) == v for k, v in changes.items()):
            LogContext(logger, visit_id=visit.id, operation=operation.value).warning(
                "Conditional write already applied; treating it as committed"
            )
            return current
        self._raise_stale(visit, operation, current)

    async def _reread(self, visit_id: str) -> Visit | None:
        async with self._store_errors("get"):
            return await self.visits.get(visit_id)

    def _raise_stale(self, snapshot: Visit, operation: VisitOperation, current: Visit | None) -> NoReturn:
        VisitMetrics.stale_write(operation.value)
        if current is None:
            raise NotFoundError(f"Site visit '{snapshot.id}' not found")

        LogContext(logger, visit_id=snapshot.id, operation=operation.value).warning(
            f"Stale write rejected: expected status={snapshot.status.value}, "
            f"current status={current.status.value}"
        )
        raise IllegalTransitionError(
            f"Site visit was modified concurrently and is now '{current.status.value}'",
            current_status=current.status.value,
        )

    # ------------------------------------------------------------------
    # Notifications (best-effort, after commit)
    # ------------------------------------------------------------------

    def _dispatch(self, messages: list[NotificationMessage]) -> None:
        for message in messages:
            task = asyncio.create_task(
                self._send(message),
                name=f"notify:{message.related_entity_id}:{message.recipient_id}",
            )
            self._pending_sends.add(task)
            task.add_done_callback(self._pending_sends.discard)

    async def _send(self, message: NotificationMessage) -> None:
        try:
            await self.notifier.send(message)
        except Exception:
            VisitMetrics.notification_failed()
            LogContext(logger, visit_id=message.related_entity_id).error(
                f"Notification send failed: recipient={message.recipient_id}, title={message.title!r}",
                exc_info=True,
            )
            return
        VisitMetrics.notification_sent(message.category.value)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending_sends)

    async def drain_notifications(self) -> None:
        """Wait for every scheduled send to finish (shutdown, tests)."""
        while self._pending_sends:
            await asyncio.gather(*list(self._pending_sends), return_exceptions=True)
