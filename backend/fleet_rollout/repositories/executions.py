from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fleet_rollout.db.enums import (
    ExecutionBatchResult,
    ExecutionBatchStatus,
    ExecutionStatus,
)
from fleet_rollout.db.models import (
    Batch,
    Execution,
    ExecutionBatch,
    ExecutionDeviceStatus,
    Plan,
    Update,
)


@dataclass(frozen=True)
class PendingUpdateRow:
    update_id: str
    update_name: str
    execution_batch_id: str
    batch_id: str | None
    batch_name: str | None
    execution_id: str
    plan_id: str
    plan_name: str


def get_execution_by_id(db: Session, execution_id: str) -> Execution | None:
    return db.get(Execution, execution_id)


def list_executions(
    db: Session,
    *,
    plan_id: str | None = None,
    status: ExecutionStatus | None = None,
) -> list[Execution]:
    statement = select(Execution)
    if plan_id is not None:
        statement = statement.where(Execution.plan_id == plan_id)
    if status is not None:
        statement = statement.where(Execution.status == status)
    statement = statement.order_by(Execution.created_at.asc(), Execution.id.asc())
    return list(db.scalars(statement))


def add_execution(db: Session, *, plan_id: str) -> Execution:
    execution = Execution(plan_id=plan_id, status=ExecutionStatus.CREATED)
    db.add(execution)
    db.flush()
    return execution


def add_execution_batch(db: Session, *, execution_id: str, batch: Batch) -> ExecutionBatch:
    execution_batch = ExecutionBatch(
        execution_id=execution_id,
        batch_id=batch.id,
        sequence=batch.sequence,
        status=ExecutionBatchStatus.PENDING,
        result=None,
        monitoring_end_time=None,
    )
    db.add(execution_batch)
    db.flush()
    return execution_batch


def transition_execution_status(
    db: Session,
    *,
    execution_id: str,
    from_statuses: tuple[ExecutionStatus, ...],
    to_status: ExecutionStatus,
) -> bool:
    """Compare-and-set on the execution status; False when another caller won."""
    result = db.execute(
        update(Execution)
        .where(Execution.id == execution_id, Execution.status.in_(from_statuses))
        .values(status=to_status, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_execution_batches(db: Session, execution_id: str) -> list[ExecutionBatch]:
    statement = (
        select(ExecutionBatch)
        .where(ExecutionBatch.execution_id == execution_id)
        .order_by(ExecutionBatch.sequence.asc())
    )
    return list(db.scalars(statement))


def get_execution_batch_by_id(db: Session, execution_batch_id: str) -> ExecutionBatch | None:
    return db.get(ExecutionBatch, execution_batch_id)


def get_executing_batch(db: Session, execution_id: str) -> ExecutionBatch | None:
    return db.scalars(
        select(ExecutionBatch)
        .where(
            ExecutionBatch.execution_id == execution_id,
            ExecutionBatch.status == ExecutionBatchStatus.EXECUTING,
        )
        .order_by(ExecutionBatch.sequence.asc())
    ).first()


def get_execution_batch_by_sequence(
    db: Session,
    *,
    execution_id: str,
    sequence: int,
) -> ExecutionBatch | None:
    return db.scalars(
        select(ExecutionBatch).where(
            ExecutionBatch.execution_id == execution_id,
            ExecutionBatch.sequence == sequence,
        )
    ).first()


def claim_execution_batch(
    db: Session,
    *,
    execution_batch_id: str,
    monitoring_end_time: datetime,
) -> bool:
    """Move a PENDING batch to EXECUTING; False when it was already claimed."""
    result = db.execute(
        update(ExecutionBatch)
        .where(
            ExecutionBatch.id == execution_batch_id,
            ExecutionBatch.status == ExecutionBatchStatus.PENDING,
        )
        .values(
            status=ExecutionBatchStatus.EXECUTING,
            monitoring_end_time=monitoring_end_time,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def complete_execution_batch(
    db: Session,
    *,
    execution_batch_id: str,
    result: ExecutionBatchResult,
) -> bool:
    """Set COMPLETED and the result once; False when the batch was already completed."""
    outcome = db.execute(
        update(ExecutionBatch)
        .where(
            ExecutionBatch.id == execution_batch_id,
            ExecutionBatch.status != ExecutionBatchStatus.COMPLETED,
        )
        .values(
            status=ExecutionBatchStatus.COMPLETED,
            result=result,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return outcome.rowcount == 1


def add_device_status(db: Session, *, execution_batch_id: str, device_id: str) -> ExecutionDeviceStatus:
    status = ExecutionDeviceStatus(
        execution_batch_id=execution_batch_id,
        device_id=device_id,
        update_sent=True,
        update_completed=False,
        succeeded=None,
    )
    db.add(status)
    return status


def list_device_statuses(db: Session, execution_batch_id: str) -> list[ExecutionDeviceStatus]:
    statement = (
        select(ExecutionDeviceStatus)
        .where(ExecutionDeviceStatus.execution_batch_id == execution_batch_id)
        .order_by(ExecutionDeviceStatus.created_at.asc(), ExecutionDeviceStatus.id.asc())
    )
    return list(db.scalars(statement))


def get_device_status(
    db: Session,
    *,
    execution_batch_id: str,
    device_id: str,
) -> ExecutionDeviceStatus | None:
    return db.scalars(
        select(ExecutionDeviceStatus).where(
            ExecutionDeviceStatus.execution_batch_id == execution_batch_id,
            ExecutionDeviceStatus.device_id == device_id,
        )
    ).first()


def list_pending_update_rows(db: Session, device_id: str) -> list[PendingUpdateRow]:
    statement = (
        select(
            Update.id,
            Update.name,
            ExecutionBatch.id,
            Batch.id,
            Batch.name,
            Execution.id,
            Plan.id,
            Plan.name,
        )
        .select_from(ExecutionDeviceStatus)
        .join(ExecutionBatch, ExecutionBatch.id == ExecutionDeviceStatus.execution_batch_id)
        .join(Execution, Execution.id == ExecutionBatch.execution_id)
        .join(Plan, Plan.id == Execution.plan_id)
        .join(Update, Update.id == Plan.update_id)
        .outerjoin(Batch, Batch.id == ExecutionBatch.batch_id)
        .where(
            ExecutionDeviceStatus.device_id == device_id,
            ExecutionDeviceStatus.update_sent.is_(True),
            ExecutionDeviceStatus.update_completed.is_(False),
        )
        .order_by(ExecutionDeviceStatus.created_at.asc(), ExecutionDeviceStatus.id.asc())
    )
    return [
        PendingUpdateRow(
            update_id=row[0],
            update_name=row[1],
            execution_batch_id=row[2],
            batch_id=row[3],
            batch_name=row[4],
            execution_id=row[5],
            plan_id=row[6],
            plan_name=row[7],
        )
        for row in db.execute(statement)
    ]
