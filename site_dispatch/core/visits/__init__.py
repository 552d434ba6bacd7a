# site_dispatch/core/visits/__init__.py
"""
Site-visit dispatch workflow -- provider-agnostic domain logic.

This package contains the Visit domain model, the async ports the engine
depends on (record store, profile directory, notifier), the authorization
rule table, the clarification and telemetry guards, and the lifecycle
engine that ties them together.

Canonical imports:
    from site_dispatch.core.visits import VisitLifecycleEngine
    from site_dispatch.core.visits.domain import Visit, VisitStatus
    from site_dispatch.core.visits.ports import AsyncVisitStore
"""
from site_dispatch.core.visits.domain import (  # noqa: F401
    NotificationCategory,
    NotificationMessage,
    OdometerReading,
    Profile,
    ProfileId,
    Visit,
    VisitFilter,
    VisitId,
    VisitOperation,
    VisitStatus,
)
from site_dispatch.core.visits.errors import (  # noqa: F401
    AuthorizationError,
    DispatchError,
    IllegalTransitionError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from site_dispatch.core.visits.ports import (  # noqa: F401
    AsyncNotifier,
    AsyncProfileDirectory,
    AsyncVisitStore,
)
from site_dispatch.core.visits.policy import authorize, PolicyDecision, DenialKind  # noqa: F401
from site_dispatch.core.visits.engine import VisitLifecycleEngine  # noqa: F401
