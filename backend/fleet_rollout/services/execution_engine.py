from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, sessionmaker

from fleet_rollout.core.config import Settings
from fleet_rollout.core.errors import (
    AlreadyInProgressError,
    BatchConfigMissingError,
    CurrentBatchNotCompleteError,
    CurrentBatchNotFoundError,
    DeviceNotInBatchError,
    ExecutionBatchNotFoundError,
    ExecutionNotFoundError,
    InvalidStateError,
    NoBatchesError,
    NoExecutingBatchError,
    PlanNotApprovedError,
    PlanNotFoundError,
)
from fleet_rollout.db.enums import (
    DeviceStatus,
    ExecutionBatchResult,
    ExecutionBatchStatus,
    ExecutionStatus,
    PlanStatus,
)
from fleet_rollout.db.models import Execution, ExecutionBatch, ExecutionDeviceStatus
from fleet_rollout.repositories.devices import list_devices_by_ids
from fleet_rollout.repositories.executions import (
    add_device_status,
    add_execution,
    add_execution_batch,
    claim_execution_batch,
    complete_execution_batch,
    get_device_status,
    get_executing_batch,
    get_execution_batch_by_id,
    get_execution_by_id,
    get_execution_batch_by_sequence,
    list_device_statuses,
    list_execution_batches,
    transition_execution_status,
)
from fleet_rollout.repositories.plans import (
    get_batch_by_id,
    get_plan_by_id,
    list_batch_device_ids,
    list_batches,
    transition_plan_status,
)
from fleet_rollout.services.dispatch import DeviceDispatcher, DispatchRequest, LoggingDeviceDispatcher


@dataclass(frozen=True)
class BatchDispatch:
    execution_id: str
    execution_batch_id: str
    update_id: str
    monitoring_end_time: datetime
    device_ids: tuple[str, ...]
    skipped_device_ids: tuple[str, ...]

    @property
    def devices_dispatched(self) -> int:
        return len(self.device_ids)


@dataclass(frozen=True)
class BatchCompletion:
    is_complete: bool
    result: ExecutionBatchResult | None


@dataclass(frozen=True)
class MonitoringOutcome:
    batch_complete: bool
    result: ExecutionBatchResult | None
    devices_reported: int
    total_devices: int


class ExecutionEngine:
    """Drives an approved plan through its batches.

    Execution: CREATED -> EXECUTING -> COMPLETED | ABANDONED.
    Execution batch: PENDING -> EXECUTING -> COMPLETED, with the result fixed
    at the moment of completion.

    Status changes that can race (starting a batch, completing a batch,
    finishing an execution) are compare-and-set updates, so a second caller
    either fails with InvalidStateError or observes the stored outcome.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        session_factory: sessionmaker,
        dispatcher: DeviceDispatcher | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._dispatcher: DeviceDispatcher = dispatcher or LoggingDeviceDispatcher()
        self._logger = logging.getLogger("fleet_rollout.execution_engine")

    def get_execution(self, execution_id: str) -> Execution:
        with self._session_factory() as db:
            return _require_execution(db, execution_id)

    def get_execution_batches(self, execution_id: str) -> list[ExecutionBatch]:
        with self._session_factory() as db:
            _require_execution(db, execution_id)
            return list_execution_batches(db, execution_id)

    def get_execution_batch(self, execution_batch_id: str) -> ExecutionBatch:
        with self._session_factory() as db:
            return _require_execution_batch(db, execution_batch_id)

    def get_device_statuses(self, execution_batch_id: str) -> list[ExecutionDeviceStatus]:
        with self._session_factory() as db:
            _require_execution_batch(db, execution_batch_id)
            return list_device_statuses(db, execution_batch_id)

    def create_from_plan(self, plan_id: str) -> Execution:
        with self._session_factory() as db:
            plan = get_plan_by_id(db, plan_id)
            if plan is None:
                raise PlanNotFoundError(plan_id)
            if plan.status != PlanStatus.APPROVED:
                raise PlanNotApprovedError(plan.id, plan.status.value)

            if not transition_plan_status(
                db,
                plan_id=plan.id,
                from_statuses=(PlanStatus.APPROVED,),
                to_status=PlanStatus.EXECUTING,
            ):
                raise PlanNotApprovedError(plan.id, "changed concurrently")

            execution = add_execution(db, plan_id=plan.id)
            batches = list_batches(db, plan.id)
            for batch in batches:
                add_execution_batch(db, execution_id=execution.id, batch=batch)
            db.commit()
            db.refresh(execution)

        self._logger.info(
            "execution created execution_id=%s plan_id=%s batches=%s",
            execution.id,
            plan_id,
            len(batches),
        )
        return execution

    def start_batch(self, execution_id: str) -> BatchDispatch:
        with self._session_factory() as db:
            execution = _require_execution(db, execution_id)
            if execution.status != ExecutionStatus.CREATED:
                raise AlreadyInProgressError(execution.id, execution.status.value)

            execution_batches = list_execution_batches(db, execution.id)
            if not execution_batches:
                raise NoBatchesError(execution.id)

            dispatch = self._dispatch_batch(db, execution, execution_batches[0])
            if not transition_execution_status(
                db,
                execution_id=execution.id,
                from_statuses=(ExecutionStatus.CREATED,),
                to_status=ExecutionStatus.EXECUTING,
            ):
                raise AlreadyInProgressError(execution.id, "changed concurrently")
            db.commit()

        self._logger.info(
            "execution started execution_id=%s execution_batch_id=%s dispatched=%s skipped_offline=%s",
            execution_id,
            dispatch.execution_batch_id,
            dispatch.devices_dispatched,
            len(dispatch.skipped_device_ids),
        )
        self._notify_dispatcher(dispatch)
        return dispatch

    def record_device_update_result(
        self,
        execution_id: str,
        device_id: str,
        success: bool,
    ) -> ExecutionDeviceStatus:
        with self._session_factory() as db:
            _require_execution(db, execution_id)
            executing = get_executing_batch(db, execution_id)
            if executing is None:
                raise NoExecutingBatchError(execution_id)

            device_status = get_device_status(db, execution_batch_id=executing.id, device_id=device_id)
            if device_status is None:
                raise DeviceNotInBatchError(device_id, executing.id)

            device_status.update_completed = True
            device_status.succeeded = bool(success)
            db.add(device_status)
            db.commit()
            db.refresh(device_status)

        self._logger.info(
            "device result recorded execution_id=%s execution_batch_id=%s device_id=%s success=%s",
            execution_id,
            device_status.execution_batch_id,
            device_id,
            bool(success),
        )
        return device_status

    def check_batch_completion(self, execution_batch_id: str) -> BatchCompletion:
        with self._session_factory() as db:
            execution_batch = _require_execution_batch(db, execution_batch_id)
            if execution_batch.status == ExecutionBatchStatus.COMPLETED:
                return BatchCompletion(is_complete=True, result=execution_batch.result)

            statuses = list_device_statuses(db, execution_batch.id)
            if not statuses:
                return BatchCompletion(is_complete=False, result=None)
            if not all(status.update_completed for status in statuses):
                return BatchCompletion(is_complete=False, result=None)

            result = _result_for(statuses)
            if not complete_execution_batch(db, execution_batch_id=execution_batch.id, result=result):
                db.rollback()
                db.refresh(execution_batch)
                return BatchCompletion(is_complete=True, result=execution_batch.result)
            db.commit()

        self._logger.info(
            "batch completed execution_batch_id=%s result=%s devices=%s",
            execution_batch_id,
            result.value,
            len(statuses),
        )
        return BatchCompletion(is_complete=True, result=result)

    def end_monitoring_period(self, execution_batch_id: str) -> MonitoringOutcome:
        with self._session_factory() as db:
            execution_batch = _require_execution_batch(db, execution_batch_id)
            end_time = execution_batch.monitoring_end_time
            if end_time is None or _to_utc(end_time) > _utc_now():
                return MonitoringOutcome(
                    batch_complete=False,
                    result=None,
                    devices_reported=0,
                    total_devices=0,
                )

            statuses = list_device_statuses(db, execution_batch.id)
            total_devices = len(statuses)
            devices_reported = sum(1 for status in statuses if status.update_completed)

            if execution_batch.status == ExecutionBatchStatus.COMPLETED:
                return MonitoringOutcome(
                    batch_complete=True,
                    result=execution_batch.result,
                    devices_reported=devices_reported,
                    total_devices=total_devices,
                )

            if not complete_execution_batch(
                db,
                execution_batch_id=execution_batch.id,
                result=ExecutionBatchResult.INCOMPLETE,
            ):
                db.rollback()
                db.refresh(execution_batch)
                return MonitoringOutcome(
                    batch_complete=True,
                    result=execution_batch.result,
                    devices_reported=devices_reported,
                    total_devices=total_devices,
                )
            db.commit()

        self._logger.warning(
            "monitoring period elapsed execution_batch_id=%s result=INCOMPLETE reported=%s total=%s",
            execution_batch_id,
            devices_reported,
            total_devices,
        )
        return MonitoringOutcome(
            batch_complete=True,
            result=ExecutionBatchResult.INCOMPLETE,
            devices_reported=devices_reported,
            total_devices=total_devices,
        )

    def start_next_batch(self, current_execution_batch_id: str) -> BatchDispatch | None:
        with self._session_factory() as db:
            current = get_execution_batch_by_id(db, current_execution_batch_id)
            if current is None:
                raise CurrentBatchNotFoundError(current_execution_batch_id)
            if current.status != ExecutionBatchStatus.COMPLETED:
                raise CurrentBatchNotCompleteError(current.id, current.status.value)

            next_batch = get_execution_batch_by_sequence(
                db,
                execution_id=current.execution_id,
                sequence=current.sequence + 1,
            )
            if next_batch is None:
                self._logger.info(
                    "no further batches execution_id=%s last_sequence=%s",
                    current.execution_id,
                    current.sequence,
                )
                return None
            if next_batch.status != ExecutionBatchStatus.PENDING:
                raise InvalidStateError(
                    f"Cannot start next batch: batch {next_batch.id} after {current.id} "
                    f"is already {next_batch.status.value}"
                )

            execution = _require_execution(db, current.execution_id)
            if execution.status != ExecutionStatus.EXECUTING:
                raise InvalidStateError(
                    f"Cannot start next batch: execution {execution.id} is {execution.status.value}"
                )
            dispatch = self._dispatch_batch(db, execution, next_batch)
            db.commit()

        self._logger.info(
            "next batch started execution_id=%s execution_batch_id=%s sequence=%s dispatched=%s skipped_offline=%s",
            dispatch.execution_id,
            dispatch.execution_batch_id,
            current.sequence + 1,
            dispatch.devices_dispatched,
            len(dispatch.skipped_device_ids),
        )
        self._notify_dispatcher(dispatch)
        return dispatch

    def complete_execution(self, execution_id: str) -> Execution:
        return self._finish_execution(
            execution_id,
            from_statuses=(ExecutionStatus.EXECUTING,),
            to_status=ExecutionStatus.COMPLETED,
            plan_status=PlanStatus.COMPLETED,
        )

    def abandon_execution(self, execution_id: str) -> Execution:
        return self._finish_execution(
            execution_id,
            from_statuses=(ExecutionStatus.CREATED, ExecutionStatus.EXECUTING),
            to_status=ExecutionStatus.ABANDONED,
            plan_status=PlanStatus.CANCELLED,
        )

    def _finish_execution(
        self,
        execution_id: str,
        *,
        from_statuses: tuple[ExecutionStatus, ...],
        to_status: ExecutionStatus,
        plan_status: PlanStatus,
    ) -> Execution:
        with self._session_factory() as db:
            execution = _require_execution(db, execution_id)
            previous = execution.status
            if not transition_execution_status(
                db,
                execution_id=execution.id,
                from_statuses=from_statuses,
                to_status=to_status,
            ):
                raise InvalidStateError(
                    f"Cannot move execution {execution.id} from {previous.value} to {to_status.value}"
                )
            transition_plan_status(
                db,
                plan_id=execution.plan_id,
                from_statuses=(PlanStatus.EXECUTING,),
                to_status=plan_status,
            )
            db.commit()
            db.refresh(execution)

        self._logger.info(
            "execution finished execution_id=%s from=%s to=%s",
            execution_id,
            previous.value,
            to_status.value,
        )
        return execution

    def _dispatch_batch(
        self,
        db: Session,
        execution: Execution,
        execution_batch: ExecutionBatch,
    ) -> BatchDispatch:
        batch = get_batch_by_id(db, execution_batch.batch_id) if execution_batch.batch_id else None
        if batch is None:
            raise BatchConfigMissingError(execution_batch.batch_id or execution_batch.id)

        hours = batch.monitoring_period or self._settings.default_monitoring_period_hours
        monitoring_end_time = _utc_now() + timedelta(hours=hours)
        if not claim_execution_batch(
            db,
            execution_batch_id=execution_batch.id,
            monitoring_end_time=monitoring_end_time,
        ):
            raise InvalidStateError(f"Execution batch {execution_batch.id} was already started")

        member_ids = list_batch_device_ids(db, batch.id)
        dispatched: list[str] = []
        skipped: list[str] = []
        for device in list_devices_by_ids(db, member_ids):
            if device.status != DeviceStatus.ONLINE:
                skipped.append(device.id)
                continue
            add_device_status(db, execution_batch_id=execution_batch.id, device_id=device.id)
            dispatched.append(device.id)
        db.flush()

        if skipped:
            self._logger.info(
                "skipping offline devices execution_batch_id=%s device_ids=%s",
                execution_batch.id,
                ",".join(skipped),
            )

        return BatchDispatch(
            execution_id=execution.id,
            execution_batch_id=execution_batch.id,
            update_id=execution.plan.update_id,
            monitoring_end_time=monitoring_end_time,
            device_ids=tuple(dispatched),
            skipped_device_ids=tuple(skipped),
        )

    def _notify_dispatcher(self, dispatch: BatchDispatch) -> None:
        for device_id in dispatch.device_ids:
            try:
                self._dispatcher.dispatch(
                    DispatchRequest(
                        execution_id=dispatch.execution_id,
                        execution_batch_id=dispatch.execution_batch_id,
                        update_id=dispatch.update_id,
                        device_id=device_id,
                    )
                )
            except Exception:
                self._logger.exception(
                    "dispatcher failed execution_batch_id=%s device_id=%s",
                    dispatch.execution_batch_id,
                    device_id,
                )


def _require_execution(db: Session, execution_id: str) -> Execution:
    execution = get_execution_by_id(db, execution_id)
    if execution is None:
        raise ExecutionNotFoundError(execution_id)
    return execution


def _require_execution_batch(db: Session, execution_batch_id: str) -> ExecutionBatch:
    execution_batch = get_execution_batch_by_id(db, execution_batch_id)
    if execution_batch is None:
        raise ExecutionBatchNotFoundError(execution_batch_id)
    return execution_batch


def _result_for(statuses: list[ExecutionDeviceStatus]) -> ExecutionBatchResult:
    if any(status.succeeded is False for status in statuses):
        return ExecutionBatchResult.FAILED
    return ExecutionBatchResult.SUCCESSFUL


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
