from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

from fleet_rollout.core.config import Settings

if TYPE_CHECKING:
    from fleet_rollout.services.affected_devices import AffectedDeviceResolver
    from fleet_rollout.services.execution_engine import ExecutionEngine
    from fleet_rollout.services.pending_updates import PendingUpdateQuery
    from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
    from fleet_rollout.services.rollout_monitor import RolloutMonitorService
    from fleet_rollout.services.rollout_planner import RolloutPlanner
    from fleet_rollout.services.update_catalog import UpdateCatalogService


def _require_state(request: Request, attribute: str, label: str):
    value = getattr(request.app.state, attribute, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} is not initialized")
    return value


def get_settings_from_app(request: Request) -> Settings:
    return _require_state(request, "settings", "Application settings")


def get_update_catalog_service(request: Request) -> "UpdateCatalogService":
    return _require_state(request, "update_catalog_service", "Update catalog service")


def get_affected_device_resolver(request: Request) -> "AffectedDeviceResolver":
    return _require_state(request, "affected_device_resolver", "Affected device resolver")


def get_rollout_planner(request: Request) -> "RolloutPlanner":
    return _require_state(request, "rollout_planner", "Rollout planner")


def get_plan_lifecycle_service(request: Request) -> "PlanLifecycleService":
    return _require_state(request, "plan_lifecycle_service", "Plan lifecycle service")


def get_execution_engine(request: Request) -> "ExecutionEngine":
    return _require_state(request, "execution_engine", "Execution engine")


def get_pending_update_query(request: Request) -> "PendingUpdateQuery":
    return _require_state(request, "pending_update_query", "Pending update query")


def get_rollout_monitor_service(request: Request) -> "RolloutMonitorService":
    return _require_state(request, "rollout_monitor_service", "Rollout monitor")
