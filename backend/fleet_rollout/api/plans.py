from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from fleet_rollout.api.common import to_http_exception
from fleet_rollout.core.errors import RolloutError
from fleet_rollout.db.enums import PlanStatus
from fleet_rollout.db.session import get_db
from fleet_rollout.dependencies import get_plan_lifecycle_service, get_rollout_planner
from fleet_rollout.repositories.plans import list_plans
from fleet_rollout.schemas.catalog import DeviceResponse
from fleet_rollout.schemas.rollouts import (
    BatchDeviceRequest,
    BatchResponse,
    MoveDeviceRequest,
    PlanGenerateRequest,
    PlanResponse,
)
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_planner import RolloutPlanner


router = APIRouter(prefix="/api", tags=["plans"])


@router.get("/plans", response_model=list[PlanResponse])
def get_plans(
    update_id: str | None = None,
    status_filter: PlanStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[PlanResponse]:
    return [
        PlanResponse.model_validate(plan)
        for plan in list_plans(db, update_id=update_id, status=status_filter)
    ]


@router.post("/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
def post_plan(
    payload: PlanGenerateRequest,
    planner: RolloutPlanner = Depends(get_rollout_planner),
) -> PlanResponse:
    try:
        plan = planner.generate(payload.update_id, payload.device_ids)
    except RolloutError as exc:
        raise to_http_exception(exc)
    return PlanResponse.model_validate(plan)


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(
    plan_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> PlanResponse:
    try:
        return PlanResponse.model_validate(lifecycle.get_plan(plan_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/plans/{plan_id}/batches", response_model=list[BatchResponse])
def get_plan_batches(
    plan_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> list[BatchResponse]:
    try:
        return [BatchResponse.model_validate(batch) for batch in lifecycle.get_batches(plan_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/plans/{plan_id}/batches/{batch_id}/devices", response_model=list[DeviceResponse])
def get_plan_batch_devices(
    plan_id: str,
    batch_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> list[DeviceResponse]:
    try:
        return [DeviceResponse.model_validate(device) for device in lifecycle.get_batch_devices(plan_id, batch_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/plans/{plan_id}/approve", response_model=PlanResponse)
def post_plan_approve(
    plan_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> PlanResponse:
    try:
        return PlanResponse.model_validate(lifecycle.approve(plan_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/plans/{plan_id}/reject", response_model=PlanResponse)
def post_plan_reject(
    plan_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> PlanResponse:
    try:
        return PlanResponse.model_validate(lifecycle.reject(plan_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/plans/{plan_id}/batches/{batch_id}/devices", status_code=status.HTTP_204_NO_CONTENT)
def post_plan_batch_device(
    plan_id: str,
    batch_id: str,
    payload: BatchDeviceRequest,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> Response:
    try:
        lifecycle.add_device_to_batch(plan_id, batch_id, payload.device_id)
    except RolloutError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/plans/{plan_id}/batches/{batch_id}/devices/{device_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_plan_batch_device(
    plan_id: str,
    batch_id: str,
    device_id: str,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> Response:
    try:
        lifecycle.remove_device_from_batch(plan_id, batch_id, device_id)
    except RolloutError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/plans/{plan_id}/move-device", status_code=status.HTTP_204_NO_CONTENT)
def post_plan_move_device(
    plan_id: str,
    payload: MoveDeviceRequest,
    lifecycle: PlanLifecycleService = Depends(get_plan_lifecycle_service),
) -> Response:
    try:
        lifecycle.move_device_between_batches(
            plan_id,
            payload.from_batch_id,
            payload.to_batch_id,
            payload.device_id,
        )
    except RolloutError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
