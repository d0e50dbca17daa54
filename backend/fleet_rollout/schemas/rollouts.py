from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fleet_rollout.db.enums import (
    BatchStatus,
    BatchType,
    ExecutionBatchResult,
    ExecutionBatchStatus,
    ExecutionStatus,
    PlanStatus,
)


class PlanGenerateRequest(BaseModel):
    update_id: str = Field(min_length=1)
    device_ids: list[str] | None = None


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    update_id: str
    status: PlanStatus
    created_at: datetime
    updated_at: datetime


class BatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    plan_id: str
    sequence: int
    type: BatchType
    monitoring_period: int
    status: BatchStatus


class BatchDeviceRequest(BaseModel):
    device_id: str = Field(min_length=1)


class MoveDeviceRequest(BaseModel):
    device_id: str = Field(min_length=1)
    from_batch_id: str = Field(min_length=1)
    to_batch_id: str = Field(min_length=1)


class ExecutionCreateRequest(BaseModel):
    plan_id: str = Field(min_length=1)


class ExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    status: ExecutionStatus
    created_at: datetime
    updated_at: datetime


class ExecutionBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    execution_id: str
    batch_id: str | None
    sequence: int
    status: ExecutionBatchStatus
    result: ExecutionBatchResult | None
    monitoring_end_time: datetime | None


class ExecutionDeviceStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    execution_batch_id: str
    device_id: str
    update_sent: bool
    update_completed: bool
    succeeded: bool | None


class BatchDispatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    execution_batch_id: str
    update_id: str
    monitoring_end_time: datetime
    device_ids: list[str]
    skipped_device_ids: list[str]
    devices_dispatched: int


class NextBatchResponse(BaseModel):
    started: bool
    dispatch: BatchDispatchResponse | None = None


class DeviceResultRequest(BaseModel):
    device_id: str = Field(min_length=1)
    success: bool


class BatchCompletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_complete: bool
    result: ExecutionBatchResult | None


class MonitoringOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_complete: bool
    result: ExecutionBatchResult | None
    devices_reported: int
    total_devices: int


class PendingUpdateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    update_id: str
    update_name: str
    execution_batch_id: str
    batch_id: str | None
    batch_name: str | None
    execution_id: str
    plan_id: str
    plan_name: str
