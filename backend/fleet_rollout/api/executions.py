from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from fleet_rollout.api.common import to_http_exception
from fleet_rollout.core.errors import RolloutError
from fleet_rollout.db.enums import ExecutionStatus
from fleet_rollout.db.session import get_db
from fleet_rollout.dependencies import get_execution_engine
from fleet_rollout.repositories.executions import list_executions
from fleet_rollout.schemas.rollouts import (
    BatchCompletionResponse,
    BatchDispatchResponse,
    DeviceResultRequest,
    ExecutionBatchResponse,
    ExecutionCreateRequest,
    ExecutionDeviceStatusResponse,
    ExecutionResponse,
    MonitoringOutcomeResponse,
    NextBatchResponse,
)
from fleet_rollout.services.execution_engine import ExecutionEngine


router = APIRouter(prefix="/api", tags=["executions"])


@router.get("/executions", response_model=list[ExecutionResponse])
def get_executions(
    plan_id: str | None = None,
    status_filter: ExecutionStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[ExecutionResponse]:
    return [
        ExecutionResponse.model_validate(execution)
        for execution in list_executions(db, plan_id=plan_id, status=status_filter)
    ]


@router.post("/executions", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED)
def post_execution(
    payload: ExecutionCreateRequest,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionResponse:
    try:
        return ExecutionResponse.model_validate(engine.create_from_plan(payload.plan_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/executions/{execution_id}", response_model=ExecutionResponse)
def get_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionResponse:
    try:
        return ExecutionResponse.model_validate(engine.get_execution(execution_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/executions/{execution_id}/batches", response_model=list[ExecutionBatchResponse])
def get_execution_batches(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> list[ExecutionBatchResponse]:
    try:
        return [ExecutionBatchResponse.model_validate(item) for item in engine.get_execution_batches(execution_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/executions/{execution_id}/start", response_model=BatchDispatchResponse)
def post_execution_start(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> BatchDispatchResponse:
    try:
        return BatchDispatchResponse.model_validate(engine.start_batch(execution_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/executions/{execution_id}/device-results", response_model=ExecutionDeviceStatusResponse)
def post_execution_device_result(
    execution_id: str,
    payload: DeviceResultRequest,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionDeviceStatusResponse:
    try:
        device_status = engine.record_device_update_result(execution_id, payload.device_id, payload.success)
    except RolloutError as exc:
        raise to_http_exception(exc)
    return ExecutionDeviceStatusResponse.model_validate(device_status)


@router.post("/executions/{execution_id}/complete", response_model=ExecutionResponse)
def post_execution_complete(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionResponse:
    try:
        return ExecutionResponse.model_validate(engine.complete_execution(execution_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/executions/{execution_id}/abandon", response_model=ExecutionResponse)
def post_execution_abandon(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionResponse:
    try:
        return ExecutionResponse.model_validate(engine.abandon_execution(execution_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/execution-batches/{execution_batch_id}", response_model=ExecutionBatchResponse)
def get_execution_batch(
    execution_batch_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> ExecutionBatchResponse:
    try:
        return ExecutionBatchResponse.model_validate(engine.get_execution_batch(execution_batch_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get(
    "/execution-batches/{execution_batch_id}/devices",
    response_model=list[ExecutionDeviceStatusResponse],
)
def get_execution_batch_devices(
    execution_batch_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> list[ExecutionDeviceStatusResponse]:
    try:
        return [
            ExecutionDeviceStatusResponse.model_validate(item)
            for item in engine.get_device_statuses(execution_batch_id)
        ]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/execution-batches/{execution_batch_id}/check", response_model=BatchCompletionResponse)
def post_execution_batch_check(
    execution_batch_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> BatchCompletionResponse:
    try:
        return BatchCompletionResponse.model_validate(engine.check_batch_completion(execution_batch_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post(
    "/execution-batches/{execution_batch_id}/end-monitoring",
    response_model=MonitoringOutcomeResponse,
)
def post_execution_batch_end_monitoring(
    execution_batch_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> MonitoringOutcomeResponse:
    try:
        return MonitoringOutcomeResponse.model_validate(engine.end_monitoring_period(execution_batch_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/execution-batches/{execution_batch_id}/next", response_model=NextBatchResponse)
def post_execution_batch_next(
    execution_batch_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine),
) -> NextBatchResponse:
    try:
        dispatch = engine.start_next_batch(execution_batch_id)
    except RolloutError as exc:
        raise to_http_exception(exc)
    if dispatch is None:
        return NextBatchResponse(started=False, dispatch=None)
    return NextBatchResponse(started=True, dispatch=BatchDispatchResponse.model_validate(dispatch))
