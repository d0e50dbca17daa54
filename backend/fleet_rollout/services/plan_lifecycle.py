from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from fleet_rollout.core.errors import (
    BatchNotFoundError,
    DeviceNotInBatchError,
    EmptyPlanError,
    InvalidStateError,
    MembershipConflictError,
    PlanNotFoundError,
)
from fleet_rollout.db.enums import PlanStatus
from fleet_rollout.db.models import Batch, Device, Plan
from fleet_rollout.repositories.plans import (
    add_membership,
    count_batches,
    get_batch_membership,
    get_plan_batch,
    get_plan_by_id,
    get_plan_membership,
    list_batch_devices,
    list_batches,
    remove_membership,
    set_plan_status,
)
from fleet_rollout.services.affected_devices import AffectedDeviceResolver


class PlanLifecycleService:
    def __init__(self, *, session_factory: sessionmaker, resolver: AffectedDeviceResolver):
        self._session_factory = session_factory
        self._resolver = resolver
        self._logger = logging.getLogger("fleet_rollout.plan_lifecycle")

    def get_plan(self, plan_id: str) -> Plan:
        with self._session_factory() as db:
            return _require_plan(db, plan_id)

    def approve(self, plan_id: str) -> Plan:
        with self._session_factory() as db:
            plan = _require_plan(db, plan_id)
            _require_draft(plan, action="approved")
            if count_batches(db, plan.id) == 0:
                raise EmptyPlanError(plan.id)
            set_plan_status(db, plan, PlanStatus.APPROVED)
            db.commit()
            db.refresh(plan)
        self._logger.info("plan approved plan_id=%s", plan_id)
        return plan

    def reject(self, plan_id: str) -> Plan:
        with self._session_factory() as db:
            plan = _require_plan(db, plan_id)
            _require_draft(plan, action="rejected")
            set_plan_status(db, plan, PlanStatus.REJECTED)
            db.commit()
            db.refresh(plan)
        self._logger.info("plan rejected plan_id=%s", plan_id)
        return plan

    def get_batches(self, plan_id: str) -> list[Batch]:
        with self._session_factory() as db:
            _require_plan(db, plan_id)
            return list_batches(db, plan_id)

    def get_batch_devices(self, plan_id: str, batch_id: str) -> list[Device]:
        with self._session_factory() as db:
            _require_plan(db, plan_id)
            _require_batch(db, plan_id=plan_id, batch_id=batch_id)
            return list_batch_devices(db, batch_id)

    def add_device_to_batch(self, plan_id: str, batch_id: str, device_id: str) -> None:
        with self._session_factory() as db:
            plan = _require_plan(db, plan_id)
            _require_modifiable(plan)
            _require_batch(db, plan_id=plan_id, batch_id=batch_id)

            affected_ids = {device.id for device in self._resolver.resolve_in_session(db, plan.update_id)}
            if device_id not in affected_ids:
                raise MembershipConflictError(f"Device {device_id} is not affected by this update")
            if get_plan_membership(db, plan_id=plan_id, device_id=device_id) is not None:
                raise MembershipConflictError(f"Device {device_id} is already part of plan {plan_id}")

            add_membership(db, plan_id=plan_id, batch_id=batch_id, device_id=device_id)
            db.commit()
        self._logger.info("device added plan_id=%s batch_id=%s device_id=%s", plan_id, batch_id, device_id)

    def remove_device_from_batch(self, plan_id: str, batch_id: str, device_id: str) -> None:
        with self._session_factory() as db:
            plan = _require_plan(db, plan_id)
            _require_modifiable(plan)
            membership = get_batch_membership(db, batch_id=batch_id, device_id=device_id)
            if membership is None or membership.plan_id != plan_id:
                raise DeviceNotInBatchError(device_id, batch_id)
            remove_membership(db, membership)
            db.commit()
        self._logger.info("device removed plan_id=%s batch_id=%s device_id=%s", plan_id, batch_id, device_id)

    def move_device_between_batches(
        self,
        plan_id: str,
        from_batch_id: str,
        to_batch_id: str,
        device_id: str,
    ) -> None:
        with self._session_factory() as db:
            plan = _require_plan(db, plan_id)
            _require_modifiable(plan)
            _require_batch(db, plan_id=plan_id, batch_id=from_batch_id)
            _require_batch(db, plan_id=plan_id, batch_id=to_batch_id)

            membership = get_batch_membership(db, batch_id=from_batch_id, device_id=device_id)
            if membership is None:
                raise DeviceNotInBatchError(device_id, from_batch_id)

            remove_membership(db, membership)
            add_membership(db, plan_id=plan_id, batch_id=to_batch_id, device_id=device_id)
            db.commit()
        self._logger.info(
            "device moved plan_id=%s from_batch_id=%s to_batch_id=%s device_id=%s",
            plan_id,
            from_batch_id,
            to_batch_id,
            device_id,
        )


def _require_plan(db: Session, plan_id: str) -> Plan:
    plan = get_plan_by_id(db, plan_id)
    if plan is None:
        raise PlanNotFoundError(plan_id)
    return plan


def _require_batch(db: Session, *, plan_id: str, batch_id: str) -> Batch:
    batch = get_plan_batch(db, plan_id=plan_id, batch_id=batch_id)
    if batch is None:
        raise BatchNotFoundError(batch_id, plan_id=plan_id)
    return batch


def _require_draft(plan: Plan, *, action: str) -> None:
    if plan.status != PlanStatus.DRAFT:
        raise InvalidStateError(f"Only draft plans can be {action} (plan {plan.id} is {plan.status.value})")


def _require_modifiable(plan: Plan) -> None:
    if plan.status != PlanStatus.DRAFT:
        raise InvalidStateError(f"Can only modify draft plans (plan {plan.id} is {plan.status.value})")
