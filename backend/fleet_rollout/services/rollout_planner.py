from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.orm import sessionmaker

from fleet_rollout.core.config import Settings
from fleet_rollout.core.errors import NoAffectedDevicesError, UpdateNotFoundError
from fleet_rollout.db.enums import BatchType
from fleet_rollout.db.models import Plan
from fleet_rollout.repositories.plans import add_batch_with_devices, add_plan
from fleet_rollout.repositories.updates import get_update_by_id
from fleet_rollout.services.affected_devices import AffectedDeviceResolver


@dataclass(frozen=True)
class BatchSpec:
    name: str
    sequence: int
    batch_type: BatchType
    device_ids: tuple[str, ...]


def partition_devices(device_ids: Sequence[str]) -> list[BatchSpec]:
    """Split devices into canary and mass batches.

    One device goes straight to a mass batch. Two to four devices get a single
    one-device test batch. Five or more get two one-device test batches; the
    canary count does not grow with the fleet.
    """
    ids = tuple(device_ids)
    total = len(ids)
    if total == 0:
        return []
    if total == 1:
        return [BatchSpec(name="Mass Batch", sequence=1, batch_type=BatchType.MASS, device_ids=ids)]
    if total < 5:
        return [
            BatchSpec(name="Test Batch", sequence=1, batch_type=BatchType.TEST, device_ids=ids[:1]),
            BatchSpec(name="Mass Batch", sequence=2, batch_type=BatchType.MASS, device_ids=ids[1:]),
        ]
    return [
        BatchSpec(name="Test Batch 1", sequence=1, batch_type=BatchType.TEST, device_ids=ids[:1]),
        BatchSpec(name="Test Batch 2", sequence=2, batch_type=BatchType.TEST, device_ids=ids[1:2]),
        BatchSpec(name="Mass Batch", sequence=3, batch_type=BatchType.MASS, device_ids=ids[2:]),
    ]


def plan_name_for(update_name: str, update_version: str) -> str:
    return f"Plan for {update_name} v{update_version}"


def plan_description_for(update_name: str, update_version: str) -> str:
    return f"Automatically generated plan for update {update_name} v{update_version}"


class RolloutPlanner:
    def __init__(
        self,
        *,
        settings: Settings,
        session_factory: sessionmaker,
        resolver: AffectedDeviceResolver,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._resolver = resolver
        self._logger = logging.getLogger("fleet_rollout.rollout_planner")

    def generate(self, update_id: str, device_ids: Sequence[str] | None = None) -> Plan:
        with self._session_factory() as db:
            update = get_update_by_id(db, update_id)
            if update is None:
                raise UpdateNotFoundError(update_id)

            affected = self._resolver.resolve_in_session(db, update_id)
            if device_ids:
                wanted = set(device_ids)
                affected = [device for device in affected if device.id in wanted]
            if not affected:
                raise NoAffectedDevicesError(update_id)

            plan = add_plan(
                db,
                name=plan_name_for(update.name, update.version),
                description=plan_description_for(update.name, update.version),
                update_id=update.id,
            )
            specs = partition_devices([device.id for device in affected])
            for spec in specs:
                add_batch_with_devices(
                    db,
                    plan_id=plan.id,
                    name=spec.name,
                    sequence=spec.sequence,
                    batch_type=spec.batch_type,
                    monitoring_period=self._settings.default_monitoring_period_hours,
                    device_ids=list(spec.device_ids),
                )
            db.commit()
            db.refresh(plan)

        self._logger.info(
            "generated plan plan_id=%s update_id=%s devices=%s batches=%s",
            plan.id,
            update_id,
            len(affected),
            ",".join(f"{spec.batch_type.value}:{len(spec.device_ids)}" for spec in specs),
        )
        return plan
