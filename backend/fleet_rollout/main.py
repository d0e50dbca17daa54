from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from sqlalchemy.orm import Session

from fleet_rollout.api.devices import router as devices_router
from fleet_rollout.api.executions import router as executions_router
from fleet_rollout.api.packages import router as packages_router
from fleet_rollout.api.plans import router as plans_router
from fleet_rollout.api.updates import router as updates_router
from fleet_rollout.core.config import Settings, get_settings
from fleet_rollout.core.logging import configure_logging
from fleet_rollout.db.session import SessionLocal, check_db_connection, get_db
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.execution_engine import ExecutionEngine
from fleet_rollout.services.pending_updates import PendingUpdateQuery
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_monitor import RolloutMonitorService
from fleet_rollout.services.rollout_planner import RolloutPlanner
from fleet_rollout.services.update_catalog import UpdateCatalogService


def build_services(settings: Settings, session_factory) -> dict[str, object]:
    resolver = AffectedDeviceResolver(session_factory=session_factory)
    engine = ExecutionEngine(settings=settings, session_factory=session_factory)
    return {
        "update_catalog_service": UpdateCatalogService(session_factory=session_factory),
        "affected_device_resolver": resolver,
        "rollout_planner": RolloutPlanner(
            settings=settings,
            session_factory=session_factory,
            resolver=resolver,
        ),
        "plan_lifecycle_service": PlanLifecycleService(session_factory=session_factory, resolver=resolver),
        "execution_engine": engine,
        "pending_update_query": PendingUpdateQuery(session_factory=session_factory),
        "rollout_monitor_service": RolloutMonitorService(
            settings=settings,
            session_factory=session_factory,
            engine=engine,
        ),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings, SessionLocal)

    app.state.settings = settings
    for name, service in services.items():
        setattr(app.state, name, service)

    monitor: RolloutMonitorService = services["rollout_monitor_service"]
    if settings.rollout_monitor_enabled:
        monitor.start()
    try:
        yield
    finally:
        monitor.stop()


app = FastAPI(title="Fleet Rollout Backend", lifespan=lifespan)
app.include_router(devices_router)
app.include_router(packages_router)
app.include_router(updates_router)
app.include_router(plans_router)
app.include_router(executions_router)


@app.get("/health")
def health():
    return {"status": "ok", "service": "fleet-rollout"}


@app.get("/status")
def status(request: Request, db: Session = Depends(get_db)):
    db_ok, db_error = check_db_connection(db)
    monitor: RolloutMonitorService | None = getattr(request.app.state, "rollout_monitor_service", None)
    settings: Settings | None = getattr(request.app.state, "settings", None)

    db_status: dict[str, object] = {"ok": db_ok}
    if db_error:
        db_status["error"] = db_error

    if monitor is None:
        monitor_status: dict[str, object] = {
            "enabled": False,
            "running": False,
            "last_run_ts": None,
            "last_error": "Rollout monitor not initialized",
        }
    else:
        monitor_status = monitor.get_status_snapshot()

    return {
        "status": "working",
        "service": "fleet-rollout",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_status,
        "rollout_monitor": monitor_status,
        "config": {
            "default_monitoring_period_hours": (
                settings.default_monitoring_period_hours if settings else None
            ),
            "rollout_monitor_enabled": settings.rollout_monitor_enabled if settings else None,
            "rollout_monitor_poll_seconds": settings.rollout_monitor_poll_seconds if settings else None,
            "rollout_halt_on_failure": settings.rollout_halt_on_failure if settings else None,
        },
    }
