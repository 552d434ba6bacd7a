# site_dispatch/infra/audit_log.py
"""
Audit logging for site-visit state changes.

Every committed transition and every deletion is recorded on a logger
named "audit" (separate from the application log) so it can be routed to
its own sink via logging configuration.
"""
from __future__ import annotations

import logging
from typing import Any

_audit_logger = logging.getLogger("audit")


def audit_event(
    action: str,
    *,
    visit_id: str | None = None,
    actor_id: str | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an audit event.

    Args:
        action: Action name (e.g., "visit.approve", "visit.delete")
        visit_id: Visit affected
        actor_id: Profile that performed the action
        from_status: Status before the change
        to_status: Status after the change (None for deletions)
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "visit_id": visit_id or "",
        "actor_id": actor_id or "",
        "from_status": from_status or "",
        "to_status": to_status or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} visit={visit_id or '-'} actor={actor_id or '-'} "
        f"{from_status or '-'}->{to_status or '-'} {detail}",
        extra=record,
    )
