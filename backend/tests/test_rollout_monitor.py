from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import patch

from rollout_fixtures import make_session_factory, make_settings, seed_fleet

from fleet_rollout.db.enums import ExecutionBatchResult, ExecutionBatchStatus, ExecutionStatus, PlanStatus
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.execution_engine import ExecutionEngine
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_monitor import RolloutMonitorService
from fleet_rollout.services.rollout_planner import RolloutPlanner

CLOCK = "fleet_rollout.services.execution_engine._utc_now"
T0 = datetime(2026, 4, 1, 6, 0, tzinfo=timezone.utc)


class RolloutMonitorTests(TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.update, self.devices = seed_fleet(self.session_factory, 4)

    def _build(self, **settings_overrides) -> None:
        settings = make_settings(**settings_overrides)
        resolver = AffectedDeviceResolver(session_factory=self.session_factory)
        self.planner = RolloutPlanner(settings=settings, session_factory=self.session_factory, resolver=resolver)
        self.lifecycle = PlanLifecycleService(session_factory=self.session_factory, resolver=resolver)
        self.engine = ExecutionEngine(settings=settings, session_factory=self.session_factory)
        self.monitor = RolloutMonitorService(
            settings=settings,
            session_factory=self.session_factory,
            engine=self.engine,
        )

    def _start(self, device_ids: list[str] | None = None):
        plan = self.lifecycle.approve(self.planner.generate(self.update.id, device_ids).id)
        execution = self.engine.create_from_plan(plan.id)
        with patch(CLOCK, return_value=T0):
            dispatch = self.engine.start_batch(execution.id)
        return execution, dispatch

    def _report_all(self, execution_id: str, device_ids, success: bool = True) -> None:
        for device_id in device_ids:
            self.engine.record_device_update_result(execution_id, device_id, success)

    def _run(self, at: datetime) -> dict[str, int]:
        with patch(CLOCK, return_value=at):
            return self.monitor.run_once()

    def test_open_batch_is_left_alone(self) -> None:
        self._build()
        execution, dispatch = self._start()

        summary = self._run(T0 + timedelta(hours=1))

        self.assertEqual(summary["checked"], 1)
        self.assertEqual(summary["advanced"], 0)
        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.EXECUTING)

    def test_successful_batches_advance_until_completion(self) -> None:
        self._build()
        execution, dispatch = self._start()
        self._report_all(execution.id, dispatch.device_ids)

        self.assertEqual(self._run(T0 + timedelta(hours=1))["advanced"], 1)
        mass = self.engine.get_execution_batches(execution.id)[1]
        self.assertEqual(mass.status, ExecutionBatchStatus.EXECUTING)

        self._report_all(execution.id, [status.device_id for status in self.engine.get_device_statuses(mass.id)])
        self.assertEqual(self._run(T0 + timedelta(hours=2))["completed"], 1)

        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.COMPLETED)
        self.assertEqual(self.lifecycle.get_plan(execution.plan_id).status, PlanStatus.COMPLETED)

    def test_failed_batch_halts_execution(self) -> None:
        self._build(rollout_halt_on_failure=True)
        execution, dispatch = self._start()
        self._report_all(execution.id, dispatch.device_ids, success=False)

        summary = self._run(T0 + timedelta(hours=1))

        self.assertEqual(summary["abandoned"], 1)
        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.ABANDONED)
        pending = self.engine.get_execution_batches(execution.id)[1]
        self.assertEqual(pending.status, ExecutionBatchStatus.PENDING)

    def test_failed_batch_advances_when_halt_disabled(self) -> None:
        self._build(rollout_halt_on_failure=False)
        execution, dispatch = self._start()
        self._report_all(execution.id, dispatch.device_ids, success=False)

        summary = self._run(T0 + timedelta(hours=1))

        self.assertEqual(summary["advanced"], 1)
        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.EXECUTING)

    def test_elapsed_monitoring_period_halts_execution(self) -> None:
        self._build()
        execution, dispatch = self._start()

        summary = self._run(T0 + timedelta(hours=24))

        self.assertEqual(summary["abandoned"], 1)
        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.result, ExecutionBatchResult.INCOMPLETE)

    def test_failure_in_one_execution_does_not_stop_others(self) -> None:
        self._build()
        self._start([self.devices[0].id, self.devices[1].id])
        self._start([self.devices[2].id, self.devices[3].id])

        with patch.object(self.monitor, "_advance", side_effect=[RuntimeError("boom"), "advanced"]):
            with self.assertLogs("fleet_rollout.rollout_monitor", level="ERROR"):
                summary = self.monitor.run_once()

        self.assertEqual(summary["checked"], 2)
        self.assertEqual(summary["failed"], 1)
        self.assertEqual(summary["advanced"], 1)

    def test_status_snapshot_reports_last_run(self) -> None:
        self._build(rollout_monitor_poll_seconds=30)
        self.assertIsNone(self.monitor.get_status_snapshot()["last_run_ts"])

        self._start()
        self._run(T0 + timedelta(hours=1))

        snapshot = self.monitor.get_status_snapshot()
        self.assertEqual(snapshot["poll_seconds"], 30)
        self.assertFalse(snapshot["running"])
        self.assertIsNotNone(snapshot["last_run_ts"])
        self.assertEqual(snapshot["last_run_summary"]["checked"], 1)

    def test_start_and_stop_background_thread(self) -> None:
        self._build()

        self.monitor.start()
        self.assertTrue(self.monitor.get_status_snapshot()["running"])
        self.monitor.stop()

        self.assertFalse(self.monitor.get_status_snapshot()["running"])
