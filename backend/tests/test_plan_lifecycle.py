from __future__ import annotations

from unittest import TestCase

from rollout_fixtures import make_session_factory, make_settings, seed_device, seed_fleet

from fleet_rollout.core.errors import (
    BatchNotFoundError,
    DeviceNotInBatchError,
    EmptyPlanError,
    InvalidStateError,
    MembershipConflictError,
    PlanNotFoundError,
)
from fleet_rollout.db.enums import DeviceStatus, PlanStatus
from fleet_rollout.repositories.plans import add_plan
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_planner import RolloutPlanner


class PlanLifecycleTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        resolver = AffectedDeviceResolver(session_factory=self.session_factory)
        self.planner = RolloutPlanner(
            settings=make_settings(),
            session_factory=self.session_factory,
            resolver=resolver,
        )
        self.lifecycle = PlanLifecycleService(session_factory=self.session_factory, resolver=resolver)
        self.update, self.devices = seed_fleet(self.session_factory, 5)

    def _device_ids(self, plan_id: str, batch_id: str) -> list[str]:
        return [device.id for device in self.lifecycle.get_batch_devices(plan_id, batch_id)]

    def test_approve_moves_draft_plan_to_approved(self) -> None:
        plan = self.planner.generate(self.update.id)

        approved = self.lifecycle.approve(plan.id)

        self.assertEqual(approved.status, PlanStatus.APPROVED)
        self.assertEqual(self.lifecycle.get_plan(plan.id).status, PlanStatus.APPROVED)

    def test_approve_requires_draft(self) -> None:
        plan = self.planner.generate(self.update.id)
        self.lifecycle.approve(plan.id)

        with self.assertRaises(InvalidStateError):
            self.lifecycle.approve(plan.id)
        with self.assertRaises(InvalidStateError):
            self.lifecycle.reject(plan.id)

    def test_approve_requires_batches(self) -> None:
        with self.session_factory() as db:
            plan = add_plan(db, name="empty", description=None, update_id=self.update.id)
            db.commit()

        with self.assertRaises(EmptyPlanError) as ctx:
            self.lifecycle.approve(plan.id)

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(self.lifecycle.get_plan(plan.id).status, PlanStatus.DRAFT)

    def test_reject_moves_draft_plan_to_rejected(self) -> None:
        plan = self.planner.generate(self.update.id)

        rejected = self.lifecycle.reject(plan.id)

        self.assertEqual(rejected.status, PlanStatus.REJECTED)

    def test_missing_plan_raises_not_found(self) -> None:
        with self.assertRaises(PlanNotFoundError):
            self.lifecycle.approve("missing-plan")
        with self.assertRaises(PlanNotFoundError):
            self.lifecycle.get_batches("missing-plan")

    def test_add_device_to_batch(self) -> None:
        plan = self.planner.generate(self.update.id, [device.id for device in self.devices[:3]])
        mass = self.lifecycle.get_batches(plan.id)[-1]

        self.lifecycle.add_device_to_batch(plan.id, mass.id, self.devices[4].id)

        self.assertIn(self.devices[4].id, self._device_ids(plan.id, mass.id))

    def test_add_device_rejects_double_assignment(self) -> None:
        plan = self.planner.generate(self.update.id)
        test_batch, _, mass = self.lifecycle.get_batches(plan.id)
        member = self._device_ids(plan.id, test_batch.id)[0]

        with self.assertRaises(MembershipConflictError):
            self.lifecycle.add_device_to_batch(plan.id, mass.id, member)

    def test_add_device_rejects_unaffected_device(self) -> None:
        plan = self.planner.generate(self.update.id)
        mass = self.lifecycle.get_batches(plan.id)[-1]
        outsider = seed_device(self.session_factory, "offline", status=DeviceStatus.OFFLINE)

        with self.assertRaises(MembershipConflictError):
            self.lifecycle.add_device_to_batch(plan.id, mass.id, outsider.id)

    def test_add_device_to_foreign_batch_raises_not_found(self) -> None:
        plan = self.planner.generate(self.update.id, [self.devices[0].id])
        other = self.planner.generate(self.update.id, [self.devices[1].id])
        foreign_batch = self.lifecycle.get_batches(other.id)[0]

        with self.assertRaises(BatchNotFoundError):
            self.lifecycle.add_device_to_batch(plan.id, foreign_batch.id, self.devices[2].id)

    def test_remove_device_from_batch(self) -> None:
        plan = self.planner.generate(self.update.id)
        mass = self.lifecycle.get_batches(plan.id)[-1]
        member = self._device_ids(plan.id, mass.id)[0]

        self.lifecycle.remove_device_from_batch(plan.id, mass.id, member)

        self.assertNotIn(member, self._device_ids(plan.id, mass.id))

    def test_remove_device_not_in_batch_raises(self) -> None:
        plan = self.planner.generate(self.update.id)
        test_batch, _, mass = self.lifecycle.get_batches(plan.id)
        member = self._device_ids(plan.id, mass.id)[0]

        with self.assertRaises(DeviceNotInBatchError):
            self.lifecycle.remove_device_from_batch(plan.id, test_batch.id, member)

    def test_move_device_between_batches(self) -> None:
        plan = self.planner.generate(self.update.id)
        test_batch, _, mass = self.lifecycle.get_batches(plan.id)
        member = self._device_ids(plan.id, mass.id)[0]

        self.lifecycle.move_device_between_batches(plan.id, mass.id, test_batch.id, member)

        self.assertIn(member, self._device_ids(plan.id, test_batch.id))
        self.assertNotIn(member, self._device_ids(plan.id, mass.id))

    def test_move_device_missing_from_source_raises(self) -> None:
        plan = self.planner.generate(self.update.id)
        test_batch, second, mass = self.lifecycle.get_batches(plan.id)
        member = self._device_ids(plan.id, mass.id)[0]

        with self.assertRaises(DeviceNotInBatchError):
            self.lifecycle.move_device_between_batches(plan.id, test_batch.id, second.id, member)

    def test_membership_edits_require_draft_plan(self) -> None:
        plan = self.planner.generate(self.update.id)
        test_batch, _, mass = self.lifecycle.get_batches(plan.id)
        member = self._device_ids(plan.id, mass.id)[0]
        self.lifecycle.approve(plan.id)

        with self.assertRaises(InvalidStateError):
            self.lifecycle.remove_device_from_batch(plan.id, mass.id, member)
        with self.assertRaises(InvalidStateError):
            self.lifecycle.move_device_between_batches(plan.id, mass.id, test_batch.id, member)
