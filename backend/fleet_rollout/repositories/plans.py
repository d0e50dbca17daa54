from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from fleet_rollout.db.enums import BatchType, PlanStatus
from fleet_rollout.db.models import Batch, Device, DeviceBatch, Plan


def list_plans(
    db: Session,
    *,
    update_id: str | None = None,
    status: PlanStatus | None = None,
) -> list[Plan]:
    statement = select(Plan)
    if update_id is not None:
        statement = statement.where(Plan.update_id == update_id)
    if status is not None:
        statement = statement.where(Plan.status == status)
    statement = statement.order_by(Plan.created_at.asc(), Plan.id.asc())
    return list(db.scalars(statement))


def get_plan_by_id(db: Session, plan_id: str) -> Plan | None:
    return db.get(Plan, plan_id)


def add_plan(db: Session, *, name: str, description: str | None, update_id: str) -> Plan:
    plan = Plan(name=name, description=description, update_id=update_id, status=PlanStatus.DRAFT)
    db.add(plan)
    db.flush()
    return plan


def set_plan_status(db: Session, plan: Plan, status: PlanStatus) -> Plan:
    plan.status = status
    db.add(plan)
    db.flush()
    return plan


def transition_plan_status(
    db: Session,
    *,
    plan_id: str,
    from_statuses: tuple[PlanStatus, ...],
    to_status: PlanStatus,
) -> bool:
    result = db.execute(
        update(Plan)
        .where(Plan.id == plan_id, Plan.status.in_(from_statuses))
        .values(status=to_status, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_batches(db: Session, plan_id: str) -> list[Batch]:
    statement = select(Batch).where(Batch.plan_id == plan_id).order_by(Batch.sequence.asc())
    return list(db.scalars(statement))


def count_batches(db: Session, plan_id: str) -> int:
    return int(db.scalar(select(func.count(Batch.id)).where(Batch.plan_id == plan_id)) or 0)


def get_batch_by_id(db: Session, batch_id: str) -> Batch | None:
    return db.get(Batch, batch_id)


def get_plan_batch(db: Session, *, plan_id: str, batch_id: str) -> Batch | None:
    batch = db.get(Batch, batch_id)
    if batch is None or batch.plan_id != plan_id:
        return None
    return batch


def add_batch_with_devices(
    db: Session,
    *,
    plan_id: str,
    name: str,
    sequence: int,
    batch_type: BatchType,
    monitoring_period: int,
    device_ids: list[str],
) -> Batch:
    """Stage a batch and its device memberships in the caller's transaction."""
    batch = Batch(
        name=name,
        description=f"{batch_type.value} batch with {len(device_ids)} devices",
        plan_id=plan_id,
        sequence=sequence,
        type=batch_type,
        monitoring_period=monitoring_period,
    )
    db.add(batch)
    db.flush()
    for device_id in device_ids:
        db.add(DeviceBatch(plan_id=plan_id, batch_id=batch.id, device_id=device_id))
    db.flush()
    return batch


def list_batch_device_ids(db: Session, batch_id: str) -> list[str]:
    statement = (
        select(DeviceBatch.device_id)
        .where(DeviceBatch.batch_id == batch_id)
        .order_by(DeviceBatch.created_at.asc(), DeviceBatch.id.asc())
    )
    return list(db.scalars(statement))


def list_batch_devices(db: Session, batch_id: str) -> list[Device]:
    statement = (
        select(Device)
        .join(DeviceBatch, DeviceBatch.device_id == Device.id)
        .where(DeviceBatch.batch_id == batch_id)
        .order_by(DeviceBatch.created_at.asc(), DeviceBatch.id.asc())
    )
    return list(db.scalars(statement))


def get_plan_membership(db: Session, *, plan_id: str, device_id: str) -> DeviceBatch | None:
    return db.scalars(
        select(DeviceBatch).where(
            DeviceBatch.plan_id == plan_id,
            DeviceBatch.device_id == device_id,
        )
    ).first()


def get_batch_membership(db: Session, *, batch_id: str, device_id: str) -> DeviceBatch | None:
    return db.scalars(
        select(DeviceBatch).where(
            DeviceBatch.batch_id == batch_id,
            DeviceBatch.device_id == device_id,
        )
    ).first()


def add_membership(db: Session, *, plan_id: str, batch_id: str, device_id: str) -> DeviceBatch:
    membership = DeviceBatch(plan_id=plan_id, batch_id=batch_id, device_id=device_id)
    db.add(membership)
    db.flush()
    return membership


def remove_membership(db: Session, membership: DeviceBatch) -> None:
    db.delete(membership)
    db.flush()
