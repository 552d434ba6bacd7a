# site_dispatch/transport/http_app.py
"""
HTTP surface of the site-visit dispatch service.

Identity comes from the upstream identity collaborator as the
``X-Actor-Id`` header; every route resolves it to an active profile
through the engine before doing anything else.

Typed workflow errors (``DispatchError``) are rendered as
``{"error", "field"?, "current_status"?}`` with their own status code.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from site_dispatch.config import settings
from site_dispatch.core.visits.domain import (
    DRIVER_ROLE,
    VIEW_ALL_ROLES,
    Profile,
    Visit,
    VisitFilter,
    VisitStatus,
)
from site_dispatch.core.visits.engine import VisitLifecycleEngine
from site_dispatch.core.visits.errors import (
    AuthorizationError,
    DispatchError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from site_dispatch.infra.db_async import close_pool, init_pool
from site_dispatch.infra.logging_config import get_logger, setup_logging
from site_dispatch.infra.memory_store import (
    InMemoryNotificationInbox,
    InMemoryProfileDirectory,
    InMemoryVisitStore,
)
from site_dispatch.infra.metrics import VisitMetrics, get_metrics_collector
from site_dispatch.infra.notifiers import DisabledNotifier, NotificationInbox
from site_dispatch.infra.pg_notification_repo_async import AsyncPostgresNotificationInbox
from site_dispatch.infra.pg_profile_repo_async import AsyncPostgresProfileDirectory
from site_dispatch.infra.pg_visit_repo_async import AsyncPostgresVisitStore
from site_dispatch.infra.schema_validator import validate_schema_version
from site_dispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from site_dispatch.transport.schemas import NotificationOut, VisitCreatedOut, VisitOut

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: wire backends on startup, drain sends on shutdown"""
    logger.info(f"Starting application: env={settings.app_env}, store_backend={settings.store_backend}")

    missing = settings.validate_required_for_production()
    if missing:
        logger.critical(f"Missing required production settings: {missing}")
        raise RuntimeError(f"Missing production config: {missing}")

    if settings.store_backend == "postgres":
        await init_pool()
        try:
            await validate_schema_version()
        except Exception:
            await close_pool()
            raise
        visits = AsyncPostgresVisitStore()
        profiles = AsyncPostgresProfileDirectory()
        inbox = AsyncPostgresNotificationInbox()
    else:
        visits = InMemoryVisitStore()
        if settings.memory_profiles_file:
            profiles = InMemoryProfileDirectory.from_json_file(settings.memory_profiles_file)
        else:
            profiles = InMemoryProfileDirectory()
        inbox = InMemoryNotificationInbox()

    notifier = inbox if settings.notifications_enabled else DisabledNotifier()

    engine = VisitLifecycleEngine(visits=visits, profiles=profiles, notifier=notifier)
    fastapi_app.state.engine = engine
    fastapi_app.state.profiles = profiles
    fastapi_app.state.inbox = inbox

    logger.info("Application ready")

    yield

    logger.info("Shutting down application")
    await engine.drain_notifications()
    if settings.store_backend == "postgres":
        await close_pool()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Site Visit Dispatch",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "X-Actor-Id", "X-Request-ID"],
)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    # Drop the "body"/"query" prefix so the field reads like the engine's
    loc = [str(part) for part in first.get("loc", ())[1:]]
    err = ValidationError(first.get("msg", "Invalid request"), field=".".join(loc) or None)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_engine(request: Request) -> VisitLifecycleEngine:
    return request.app.state.engine


def get_inbox(request: Request) -> NotificationInbox:
    return request.app.state.inbox


def get_actor_id(x_actor_id: Optional[str] = Header(default=None)) -> str:
    if not x_actor_id or not x_actor_id.strip():
        raise AuthorizationError("Missing X-Actor-Id header")
    return x_actor_id.strip()


async def get_actor(
    actor_id: str = Depends(get_actor_id),
    engine: VisitLifecycleEngine = Depends(get_engine),
) -> Profile:
    return await engine.load_actor(actor_id)


async def _names_for(engine: VisitLifecycleEngine, visits: list[Visit]) -> dict[str, Profile]:
    ids: list[str] = []
    for v in visits:
        ids.append(v.requested_by)
        if v.driver_id:
            ids.append(v.driver_id)
    if not ids:
        return {}
    return await engine.profiles.get_many(ids)


@asynccontextmanager
async def _inbox_errors(operation: str):
    """Surface notification-store failures as InfrastructureError."""
    try:
        yield
    except DispatchError:
        raise
    except Exception as exc:
        VisitMetrics.store_error(operation)
        logger.error(f"Notification store failure during {operation}: {exc}", exc_info=True)
        raise InfrastructureError(f"Notification store unavailable ({operation})") from exc


def _scoped_filter(actor: Profile, flt: VisitFilter) -> VisitFilter:
    """Narrow a listing query to what the actor's role may see."""
    if actor.role in VIEW_ALL_ROLES:
        return flt

    if actor.role == DRIVER_ROLE:
        flt.driver_id = actor.id
        return flt

    cutoff = (
        datetime.now(timezone.utc).date() - timedelta(days=settings.non_manager_visibility_days)
    ).isoformat()
    if flt.visit_date_from is None or flt.visit_date_from < cutoff:
        flt.visit_date_from = cutoff
    return flt


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    if not settings.enable_metrics:
        raise HTTPException(status_code=404, detail="Not found")
    return get_metrics_collector().get_metrics()


# ============================================================================
# SITE VISITS
# ============================================================================

@app.post("/visits", status_code=201, response_model=VisitCreatedOut)
async def create_visit(
    payload: Optional[dict[str, Any]] = Body(default=None),
    actor_id: str = Depends(get_actor_id),
    engine: VisitLifecycleEngine = Depends(get_engine),
):
    visit_id = await engine.create_visit(actor_id, payload)
    return VisitCreatedOut(id=visit_id, status=VisitStatus.PENDING.value)


@app.get("/visits", response_model=list[VisitOut])
async def list_visits(
    status: Optional[str] = Query(default=None),
    requested_by: Optional[str] = Query(default=None),
    driver_id: Optional[str] = Query(default=None),
    visit_date_from: Optional[str] = Query(default=None),
    limit: int = Query(default=settings.visit_list_default_limit),
    actor: Profile = Depends(get_actor),
    engine: VisitLifecycleEngine = Depends(get_engine),
):
    status_filter = None
    if status:
        try:
            status_filter = VisitStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status '{status}'", field="status")

    flt = _scoped_filter(actor, VisitFilter(
        status=status_filter,
        requested_by=requested_by,
        driver_id=driver_id,
        visit_date_from=visit_date_from,
        limit=limit,
    ))
    visits = await engine.list_visits(flt)
    names = await _names_for(engine, visits)
    return [VisitOut.from_visit(v, names) for v in visits]


@app.get("/visits/{visit_id}", response_model=VisitOut)
async def get_visit(
    visit_id: str,
    actor: Profile = Depends(get_actor),
    engine: VisitLifecycleEngine = Depends(get_engine),
):
    visit = await engine.get_visit(visit_id)
    if actor.role == DRIVER_ROLE and not visit.is_assigned_to(actor.id):
        raise AuthorizationError("Drivers may only view visits assigned to them")
    names = await _names_for(engine, [visit])
    return VisitOut.from_visit(visit, names)


@app.post("/visits/{visit_id}/transitions/{operation}", response_model=VisitOut)
async def transition_visit(
    visit_id: str,
    operation: str,
    payload: Optional[dict[str, Any]] = Body(default=None),
    actor_id: str = Depends(get_actor_id),
    engine: VisitLifecycleEngine = Depends(get_engine),
):
    visit = await engine.transition(visit_id, actor_id, operation, payload)
    names = await _names_for(engine, [visit])
    return VisitOut.from_visit(visit, names)


@app.delete("/visits/{visit_id}", status_code=204)
async def delete_visit(
    visit_id: str,
    actor_id: str = Depends(get_actor_id),
    engine: VisitLifecycleEngine = Depends(get_engine),
):
    await engine.delete_visit(visit_id, actor_id)
    return Response(status_code=204)


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@app.get("/notifications", response_model=list[NotificationOut])
async def list_notifications(
    actor: Profile = Depends(get_actor),
    inbox: NotificationInbox = Depends(get_inbox),
):
    async with _inbox_errors("notifications_list"):
        items = await inbox.list_for_recipient(actor.id, limit=settings.notification_list_limit)
    return [NotificationOut.from_stored(n) for n in items]


@app.post("/notifications/read-all")
async def mark_all_notifications_read(
    actor: Profile = Depends(get_actor),
    inbox: NotificationInbox = Depends(get_inbox),
):
    async with _inbox_errors("notifications_mark_all_read"):
        count = await inbox.mark_all_read(actor.id)
    return {"ok": True, "marked": count}


@app.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    actor: Profile = Depends(get_actor),
    inbox: NotificationInbox = Depends(get_inbox),
):
    async with _inbox_errors("notifications_mark_read"):
        marked = await inbox.mark_read(notification_id, actor.id)
    if not marked:
        raise NotFoundError(f"Notification '{notification_id}' not found")
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "site_dispatch.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # request logging middleware covers prod
        server_header=False,
        date_header=False,
    )
