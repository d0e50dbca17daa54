from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import patch

from rollout_fixtures import make_session_factory, make_settings, seed_device, seed_package, seed_update

from fleet_rollout.db.enums import (
    BatchType,
    ExecutionBatchResult,
    ExecutionBatchStatus,
    ExecutionStatus,
    PackageAction,
)
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.execution_engine import ExecutionEngine
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_planner import RolloutPlanner

CLOCK = "fleet_rollout.services.execution_engine._utc_now"
T0 = datetime(2026, 5, 4, 7, 30, tzinfo=timezone.utc)


class RolloutScenarioTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        settings = make_settings()
        self.resolver = AffectedDeviceResolver(session_factory=self.session_factory)
        self.planner = RolloutPlanner(settings=settings, session_factory=self.session_factory, resolver=self.resolver)
        self.lifecycle = PlanLifecycleService(session_factory=self.session_factory, resolver=self.resolver)
        self.engine = ExecutionEngine(settings=settings, session_factory=self.session_factory)

    def test_twenty_device_rollout_completes(self) -> None:
        installed = seed_package(self.session_factory, "agent", "1.0.0")
        target = seed_package(self.session_factory, "agent", "2.0.0")
        for index in range(10):
            seed_device(self.session_factory, f"legacy-{index:02d}", installed=[installed])
        for index in range(10):
            seed_device(self.session_factory, f"fresh-{index:02d}")
        update = seed_update(self.session_factory, [(target, PackageAction.INSTALL, False)])

        self.assertEqual(len(self.resolver.resolve(update.id)), 20)

        plan = self.planner.generate(update.id)
        batches = self.lifecycle.get_batches(plan.id)
        self.assertEqual(
            [(batch.type, len(self.lifecycle.get_batch_devices(plan.id, batch.id))) for batch in batches],
            [(BatchType.TEST, 1), (BatchType.TEST, 1), (BatchType.MASS, 18)],
        )

        self.lifecycle.approve(plan.id)
        execution = self.engine.create_from_plan(plan.id)
        self.assertEqual(execution.status, ExecutionStatus.CREATED)
        execution_batches = self.engine.get_execution_batches(execution.id)
        self.assertEqual([item.status for item in execution_batches], [ExecutionBatchStatus.PENDING] * 3)

        dispatch = self.engine.start_batch(execution.id)
        self.assertEqual(dispatch.devices_dispatched, 1)
        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.EXECUTING)

        sequences_seen = []
        while dispatch is not None:
            batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
            self.assertEqual(batch.status, ExecutionBatchStatus.EXECUTING)
            sequences_seen.append(batch.sequence)
            for device_id in dispatch.device_ids:
                self.engine.record_device_update_result(execution.id, device_id, True)

            completion = self.engine.check_batch_completion(dispatch.execution_batch_id)
            self.assertTrue(completion.is_complete)
            self.assertEqual(completion.result, ExecutionBatchResult.SUCCESSFUL)
            dispatch = self.engine.start_next_batch(batch.id)

        self.assertEqual(sequences_seen, [1, 2, 3])
        self.assertEqual(self.engine.complete_execution(execution.id).status, ExecutionStatus.COMPLETED)

    def test_monitoring_timeout_with_partial_reports(self) -> None:
        installed = seed_package(self.session_factory, "agent", "1.0.0")
        target = seed_package(self.session_factory, "agent", "2.0.0")
        for index in range(3):
            seed_device(self.session_factory, f"edge-{index}", installed=[installed])
        update = seed_update(self.session_factory, [(target, PackageAction.INSTALL, False)])
        plan = self.lifecycle.approve(self.planner.generate(update.id).id)
        execution = self.engine.create_from_plan(plan.id)

        canary = self.engine.start_batch(execution.id)
        self.engine.record_device_update_result(execution.id, canary.device_ids[0], True)
        self.engine.check_batch_completion(canary.execution_batch_id)
        with patch(CLOCK, return_value=T0):
            mass = self.engine.start_next_batch(canary.execution_batch_id)
        self.assertEqual(mass.devices_dispatched, 2)
        self.engine.record_device_update_result(execution.id, mass.device_ids[0], True)

        with patch(CLOCK, return_value=T0 + timedelta(hours=25)):
            outcome = self.engine.end_monitoring_period(mass.execution_batch_id)

        self.assertTrue(outcome.batch_complete)
        self.assertEqual(outcome.result, ExecutionBatchResult.INCOMPLETE)
        self.assertEqual((outcome.devices_reported, outcome.total_devices), (1, 2))
        stored = self.engine.get_execution_batch(mass.execution_batch_id)
        self.assertEqual((stored.status, stored.result), (ExecutionBatchStatus.COMPLETED, ExecutionBatchResult.INCOMPLETE))

    def test_uninstall_targets_only_devices_with_the_package(self) -> None:
        nginx = seed_package(self.session_factory, "nginx", "1.24")
        with_nginx = seed_device(self.session_factory, "web", installed=[nginx])
        seed_device(self.session_factory, "db")
        update = seed_update(self.session_factory, [(nginx, PackageAction.UNINSTALL, False)])

        affected = self.resolver.resolve(update.id)

        self.assertEqual([device.id for device in affected], [with_nginx.id])
