# site_dispatch/core/visits/policy.py
"""
Dispatch authorization policy.

A pure rule table mapping (actor role, current status, operation, ownership,
driver assignment) to allow / deny.  No persistence, no I/O: the engine asks
this module before every mutation, and tests can walk the full truth table.

Checks run in a fixed order so the caller gets the most useful denial:
role first, then ownership / assignment, then the status precondition.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from site_dispatch.core.visits.domain import (
    APPROVER_ROLES,
    DRIVER_ROLE,
    REQUESTER_ROLES,
    REVIEWABLE_STATUSES,
    VisitOperation,
    VisitStatus,
)


class DenialKind(str, Enum):
    ROLE = "role"
    OWNERSHIP = "ownership"
    STATE = "state"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str = ""
    kind: Optional[DenialKind] = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, kind: DenialKind, reason: str) -> "PolicyDecision":
        return cls(allowed=False, reason=reason, kind=kind)


@dataclass(frozen=True)
class TransitionRule:
    roles: frozenset[str]
    from_statuses: frozenset[VisitStatus]
    to_status: Optional[VisitStatus]
    owner_only: bool = False
    assigned_driver_only: bool = False


_PENDING = frozenset({VisitStatus.PENDING})

TRANSITION_RULES: dict[VisitOperation, TransitionRule] = {
    VisitOperation.CREATE: TransitionRule(
        roles=REQUESTER_ROLES,
        from_statuses=frozenset(),
        to_status=VisitStatus.PENDING,
    ),
    VisitOperation.EDIT: TransitionRule(
        roles=REQUESTER_ROLES,
        from_statuses=_PENDING,
        to_status=VisitStatus.PENDING,
        owner_only=True,
    ),
    VisitOperation.APPROVE: TransitionRule(
        roles=APPROVER_ROLES,
        from_statuses=REVIEWABLE_STATUSES,
        to_status=VisitStatus.APPROVED,
    ),
    VisitOperation.DECLINE: TransitionRule(
        roles=APPROVER_ROLES,
        from_statuses=REVIEWABLE_STATUSES,
        to_status=VisitStatus.DECLINED,
    ),
    VisitOperation.REQUEST_CLARIFICATION: TransitionRule(
        roles=APPROVER_ROLES,
        from_statuses=_PENDING,
        to_status=VisitStatus.PENDING_CLARIFICATION,
    ),
    VisitOperation.SUBMIT_CLARIFICATION: TransitionRule(
        roles=REQUESTER_ROLES,
        from_statuses=frozenset({VisitStatus.PENDING_CLARIFICATION}),
        to_status=VisitStatus.PENDING,
        owner_only=True,
    ),
    VisitOperation.START_TRIP: TransitionRule(
        roles=frozenset({DRIVER_ROLE}),
        from_statuses=frozenset({VisitStatus.APPROVED}),
        to_status=VisitStatus.TRIP_STARTED,
        assigned_driver_only=True,
    ),
    VisitOperation.COMPLETE_TRIP: TransitionRule(
        roles=frozenset({DRIVER_ROLE}),
        from_statuses=frozenset({VisitStatus.TRIP_STARTED}),
        to_status=VisitStatus.COMPLETED,
        assigned_driver_only=True,
    ),
    # Not a transition: the record is removed while still pending.
    VisitOperation.DELETE: TransitionRule(
        roles=REQUESTER_ROLES,
        from_statuses=_PENDING,
        to_status=None,
        owner_only=True,
    ),
}


def _label(operation: VisitOperation) -> str:
    return operation.value.replace("_", " ")


def authorize(
    actor_role: str,
    current_status: Optional[VisitStatus],
    operation: VisitOperation,
    *,
    is_owner: bool = False,
    is_assigned_driver: bool = False,
) -> PolicyDecision:
    """
    Decide whether ``operation`` is permitted.

    ``current_status`` is None only for CREATE (no record yet).
    """
    rule = TRANSITION_RULES[operation]

    if actor_role not in rule.roles:
        return PolicyDecision.deny(
            DenialKind.ROLE,
            f"Role '{actor_role}' may not {_label(operation)} site visits",
        )

    if rule.owner_only and not is_owner:
        return PolicyDecision.deny(
            DenialKind.OWNERSHIP,
            f"Only the requester who created this visit may {_label(operation)} it",
        )

    if rule.assigned_driver_only and not is_assigned_driver:
        return PolicyDecision.deny(
            DenialKind.OWNERSHIP,
            f"Only the assigned driver may {_label(operation)}",
        )

    if operation is VisitOperation.CREATE:
        if current_status is not None:
            return PolicyDecision.deny(DenialKind.STATE, "Visit already exists")
        return PolicyDecision.allow()

    if current_status not in rule.from_statuses:
        status_label = current_status.value if current_status is not None else "none"
        return PolicyDecision.deny(
            DenialKind.STATE,
            f"Cannot {_label(operation)} a visit in status '{status_label}'",
        )

    return PolicyDecision.allow()


def target_status(operation: VisitOperation) -> Optional[VisitStatus]:
    """Status a permitted operation moves the visit to (None for DELETE)."""
    return TRANSITION_RULES[operation].to_status
