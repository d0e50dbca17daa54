from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import delete

from rollout_fixtures import make_session_factory, make_settings, seed_fleet

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
from fleet_rollout.db.models import Batch
from fleet_rollout.repositories.devices import get_device_by_id, set_device_status
from fleet_rollout.repositories.executions import add_execution, add_execution_batch, list_executions
from fleet_rollout.repositories.plans import add_plan, list_batch_device_ids, list_batches
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.dispatch import DispatchRequest
from fleet_rollout.services.execution_engine import ExecutionEngine, _to_utc
from fleet_rollout.services.plan_lifecycle import PlanLifecycleService
from fleet_rollout.services.rollout_planner import RolloutPlanner

CLOCK = "fleet_rollout.services.execution_engine._utc_now"
T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class _RecordingDispatcher:
    def __init__(self, *, fail: bool = False) -> None:
        self.requests: list[DispatchRequest] = []
        self._fail = fail

    def dispatch(self, request: DispatchRequest) -> None:
        self.requests.append(request)
        if self._fail:
            raise RuntimeError("transport down")


class ExecutionEngineTestCase(TestCase):
    device_count = 5

    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        settings = make_settings()
        resolver = AffectedDeviceResolver(session_factory=self.session_factory)
        self.planner = RolloutPlanner(settings=settings, session_factory=self.session_factory, resolver=resolver)
        self.lifecycle = PlanLifecycleService(session_factory=self.session_factory, resolver=resolver)
        self.dispatcher = _RecordingDispatcher()
        self.engine = ExecutionEngine(
            settings=settings,
            session_factory=self.session_factory,
            dispatcher=self.dispatcher,
        )
        self.update, self.devices = seed_fleet(self.session_factory, self.device_count)

    def approved_plan(self):
        plan = self.planner.generate(self.update.id)
        return self.lifecycle.approve(plan.id)

    def started_execution(self):
        execution = self.engine.create_from_plan(self.approved_plan().id)
        with patch(CLOCK, return_value=T0):
            dispatch = self.engine.start_batch(execution.id)
        return execution, dispatch

    def batch_members(self, plan_id: str, sequence: int) -> list[str]:
        with self.session_factory() as db:
            batch = list_batches(db, plan_id)[sequence - 1]
            return list_batch_device_ids(db, batch.id)

    def set_offline(self, device_id: str) -> None:
        with self.session_factory() as db:
            set_device_status(db, get_device_by_id(db, device_id), DeviceStatus.OFFLINE)


class CreateFromPlanTests(ExecutionEngineTestCase):
    def test_creates_execution_mirroring_plan_batches(self) -> None:
        plan = self.approved_plan()

        execution = self.engine.create_from_plan(plan.id)

        self.assertEqual(execution.status, ExecutionStatus.CREATED)
        batches = self.engine.get_execution_batches(execution.id)
        self.assertEqual([item.sequence for item in batches], [1, 2, 3])
        self.assertTrue(all(item.status == ExecutionBatchStatus.PENDING for item in batches))
        self.assertTrue(all(item.result is None and item.monitoring_end_time is None for item in batches))
        self.assertEqual(self.lifecycle.get_plan(plan.id).status, PlanStatus.EXECUTING)

    def test_requires_approved_plan(self) -> None:
        plan = self.planner.generate(self.update.id)

        with self.assertRaises(PlanNotApprovedError) as ctx:
            self.engine.create_from_plan(plan.id)

        self.assertEqual(ctx.exception.status_code, 409)

    def test_plan_can_only_be_executed_once(self) -> None:
        plan = self.approved_plan()
        self.engine.create_from_plan(plan.id)

        with self.assertRaises(PlanNotApprovedError):
            self.engine.create_from_plan(plan.id)

    def test_missing_plan_raises_not_found(self) -> None:
        with self.assertRaises(PlanNotFoundError):
            self.engine.create_from_plan("missing-plan")

    def test_failure_while_copying_batches_leaves_nothing_behind(self) -> None:
        plan = self.approved_plan()
        calls = []

        def _fail_on_second(db, **kwargs):
            calls.append(kwargs["batch"].sequence)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return add_execution_batch(db, **kwargs)

        with patch("fleet_rollout.services.execution_engine.add_execution_batch", side_effect=_fail_on_second):
            with self.assertRaises(RuntimeError):
                self.engine.create_from_plan(plan.id)

        self.assertEqual(calls, [1, 2])
        with self.session_factory() as db:
            self.assertEqual(list_executions(db, plan_id=plan.id), [])
        self.assertEqual(self.lifecycle.get_plan(plan.id).status, PlanStatus.APPROVED)


class StartBatchTests(ExecutionEngineTestCase):
    def test_starts_first_batch_and_dispatches_online_members(self) -> None:
        execution, dispatch = self.started_execution()

        first = self.engine.get_execution_batches(execution.id)[0]
        self.assertEqual(first.status, ExecutionBatchStatus.EXECUTING)
        self.assertEqual(_to_utc(first.monitoring_end_time), T0 + timedelta(hours=24))
        self.assertEqual(dispatch.monitoring_end_time, T0 + timedelta(hours=24))
        self.assertEqual(dispatch.devices_dispatched, 1)
        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.EXECUTING)

        statuses = self.engine.get_device_statuses(first.id)
        self.assertEqual([status.device_id for status in statuses], list(dispatch.device_ids))
        self.assertTrue(all(status.update_sent and not status.update_completed for status in statuses))
        self.assertTrue(all(status.succeeded is None for status in statuses))
        self.assertEqual([request.device_id for request in self.dispatcher.requests], list(dispatch.device_ids))
        self.assertEqual(self.dispatcher.requests[0].update_id, self.update.id)

    def test_offline_members_are_skipped(self) -> None:
        plan = self.approved_plan()
        first_member = self.batch_members(plan.id, 1)[0]
        self.set_offline(first_member)
        execution = self.engine.create_from_plan(plan.id)

        dispatch = self.engine.start_batch(execution.id)

        self.assertEqual(dispatch.device_ids, ())
        self.assertEqual(dispatch.skipped_device_ids, (first_member,))
        self.assertEqual(self.engine.get_device_statuses(dispatch.execution_batch_id), [])

    def test_second_start_raises_already_in_progress(self) -> None:
        execution, _ = self.started_execution()

        with self.assertRaises(AlreadyInProgressError):
            self.engine.start_batch(execution.id)

    def test_execution_without_batches_raises(self) -> None:
        with self.session_factory() as db:
            plan = add_plan(db, name="empty", description=None, update_id=self.update.id)
            execution = add_execution(db, plan_id=plan.id)
            db.commit()

        with self.assertRaises(NoBatchesError):
            self.engine.start_batch(execution.id)

    def test_missing_execution_raises_not_found(self) -> None:
        with self.assertRaises(ExecutionNotFoundError):
            self.engine.start_batch("missing-execution")

    def test_deleted_batch_configuration_raises(self) -> None:
        plan = self.approved_plan()
        execution = self.engine.create_from_plan(plan.id)
        with self.session_factory() as db:
            db.execute(delete(Batch).where(Batch.plan_id == plan.id, Batch.sequence == 1))
            db.commit()

        with self.assertRaises(BatchConfigMissingError):
            self.engine.start_batch(execution.id)

        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.CREATED)

    def test_dispatcher_failures_do_not_fail_the_start(self) -> None:
        engine = ExecutionEngine(
            settings=make_settings(),
            session_factory=self.session_factory,
            dispatcher=_RecordingDispatcher(fail=True),
        )
        execution = engine.create_from_plan(self.approved_plan().id)

        with self.assertLogs("fleet_rollout.execution_engine", level="ERROR"):
            dispatch = engine.start_batch(execution.id)

        self.assertEqual(dispatch.devices_dispatched, 1)


class DeviceResultTests(ExecutionEngineTestCase):
    def test_records_device_result(self) -> None:
        execution, dispatch = self.started_execution()

        status = self.engine.record_device_update_result(execution.id, dispatch.device_ids[0], False)

        self.assertTrue(status.update_completed)
        self.assertFalse(status.succeeded)

    def test_requires_executing_batch(self) -> None:
        execution = self.engine.create_from_plan(self.approved_plan().id)

        with self.assertRaises(NoExecutingBatchError):
            self.engine.record_device_update_result(execution.id, self.devices[0].id, True)

    def test_device_outside_current_batch_raises(self) -> None:
        execution, dispatch = self.started_execution()
        outsider = next(device.id for device in self.devices if device.id not in dispatch.device_ids)

        with self.assertRaises(DeviceNotInBatchError):
            self.engine.record_device_update_result(execution.id, outsider, True)

    def test_missing_execution_raises_not_found(self) -> None:
        with self.assertRaises(ExecutionNotFoundError):
            self.engine.record_device_update_result("missing-execution", self.devices[0].id, True)


class BatchCompletionTests(ExecutionEngineTestCase):
    device_count = 4

    def test_incomplete_until_every_device_reports(self) -> None:
        execution, _ = self.started_execution()
        first = self.engine.get_execution_batches(execution.id)[0]

        completion = self.engine.check_batch_completion(first.id)

        self.assertFalse(completion.is_complete)
        self.assertIsNone(completion.result)

    def test_all_successes_complete_as_successful(self) -> None:
        execution, dispatch = self.started_execution()
        for device_id in dispatch.device_ids:
            self.engine.record_device_update_result(execution.id, device_id, True)

        completion = self.engine.check_batch_completion(dispatch.execution_batch_id)

        self.assertTrue(completion.is_complete)
        self.assertEqual(completion.result, ExecutionBatchResult.SUCCESSFUL)
        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.COMPLETED)

    def test_any_failure_completes_as_failed(self) -> None:
        execution, dispatch = self.started_execution()
        self.engine.record_device_update_result(execution.id, dispatch.device_ids[0], False)

        completion = self.engine.check_batch_completion(dispatch.execution_batch_id)

        self.assertEqual(completion.result, ExecutionBatchResult.FAILED)

    def test_completion_is_idempotent(self) -> None:
        execution, dispatch = self.started_execution()
        self.engine.record_device_update_result(execution.id, dispatch.device_ids[0], True)
        first = self.engine.check_batch_completion(dispatch.execution_batch_id)

        second = self.engine.check_batch_completion(dispatch.execution_batch_id)

        self.assertEqual(first, second)

    def test_batch_without_device_rows_is_not_complete(self) -> None:
        plan = self.approved_plan()
        self.set_offline(self.batch_members(plan.id, 1)[0])
        execution = self.engine.create_from_plan(plan.id)
        dispatch = self.engine.start_batch(execution.id)

        completion = self.engine.check_batch_completion(dispatch.execution_batch_id)

        self.assertFalse(completion.is_complete)

    def test_missing_execution_batch_raises(self) -> None:
        with self.assertRaises(ExecutionBatchNotFoundError):
            self.engine.check_batch_completion("missing-batch")


class MonitoringPeriodTests(ExecutionEngineTestCase):
    def test_open_period_leaves_batch_running(self) -> None:
        _, dispatch = self.started_execution()

        with patch(CLOCK, return_value=T0 + timedelta(hours=23, minutes=59)):
            outcome = self.engine.end_monitoring_period(dispatch.execution_batch_id)

        self.assertFalse(outcome.batch_complete)
        self.assertIsNone(outcome.result)
        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.EXECUTING)

    def test_elapsed_period_completes_as_incomplete(self) -> None:
        _, dispatch = self.started_execution()

        with patch(CLOCK, return_value=T0 + timedelta(hours=24)):
            outcome = self.engine.end_monitoring_period(dispatch.execution_batch_id)

        self.assertTrue(outcome.batch_complete)
        self.assertEqual(outcome.result, ExecutionBatchResult.INCOMPLETE)
        self.assertEqual((outcome.devices_reported, outcome.total_devices), (0, 1))
        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.COMPLETED)
        self.assertEqual(batch.result, ExecutionBatchResult.INCOMPLETE)

    def test_elapsed_period_keeps_result_of_completed_batch(self) -> None:
        execution, dispatch = self.started_execution()
        self.engine.record_device_update_result(execution.id, dispatch.device_ids[0], True)
        self.engine.check_batch_completion(dispatch.execution_batch_id)

        with patch(CLOCK, return_value=T0 + timedelta(days=2)):
            outcome = self.engine.end_monitoring_period(dispatch.execution_batch_id)

        self.assertTrue(outcome.batch_complete)
        self.assertEqual(outcome.result, ExecutionBatchResult.SUCCESSFUL)
        self.assertEqual((outcome.devices_reported, outcome.total_devices), (1, 1))

    def test_pending_batch_has_no_monitoring_window(self) -> None:
        execution, _ = self.started_execution()
        pending = self.engine.get_execution_batches(execution.id)[1]

        outcome = self.engine.end_monitoring_period(pending.id)

        self.assertFalse(outcome.batch_complete)


class StartNextBatchTests(ExecutionEngineTestCase):
    def _complete_current(self, execution_id: str, execution_batch_id: str, device_ids) -> None:
        for device_id in device_ids:
            self.engine.record_device_update_result(execution_id, device_id, True)
        self.engine.check_batch_completion(execution_batch_id)

    def test_starts_following_batch(self) -> None:
        execution, dispatch = self.started_execution()
        self._complete_current(execution.id, dispatch.execution_batch_id, dispatch.device_ids)

        with patch(CLOCK, return_value=T0 + timedelta(hours=1)):
            following = self.engine.start_next_batch(dispatch.execution_batch_id)

        self.assertIsNotNone(following)
        batches = self.engine.get_execution_batches(execution.id)
        self.assertEqual(following.execution_batch_id, batches[1].id)
        self.assertEqual(batches[1].status, ExecutionBatchStatus.EXECUTING)
        self.assertEqual(following.monitoring_end_time, T0 + timedelta(hours=25))
        self.assertEqual(following.devices_dispatched, 1)

    def test_returns_none_after_last_batch(self) -> None:
        execution, dispatch = self.started_execution()
        current_id, device_ids = dispatch.execution_batch_id, dispatch.device_ids
        for _ in range(2):
            self._complete_current(execution.id, current_id, device_ids)
            following = self.engine.start_next_batch(current_id)
            current_id, device_ids = following.execution_batch_id, following.device_ids
        self._complete_current(execution.id, current_id, device_ids)

        self.assertIsNone(self.engine.start_next_batch(current_id))

    def test_second_advance_from_same_batch_is_rejected(self) -> None:
        execution, dispatch = self.started_execution()
        self._complete_current(execution.id, dispatch.execution_batch_id, dispatch.device_ids)
        following = self.engine.start_next_batch(dispatch.execution_batch_id)

        with self.assertRaises(InvalidStateError):
            self.engine.start_next_batch(dispatch.execution_batch_id)

        batch = self.engine.get_execution_batch(following.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.EXECUTING)
        self.assertEqual(self.engine.get_execution(execution.id).status, ExecutionStatus.EXECUTING)

    def test_requires_completed_current_batch(self) -> None:
        _, dispatch = self.started_execution()

        with self.assertRaises(CurrentBatchNotCompleteError):
            self.engine.start_next_batch(dispatch.execution_batch_id)

    def test_missing_current_batch_raises(self) -> None:
        with self.assertRaises(CurrentBatchNotFoundError):
            self.engine.start_next_batch("missing-batch")

    def test_abandoned_execution_does_not_advance(self) -> None:
        execution, dispatch = self.started_execution()
        self._complete_current(execution.id, dispatch.execution_batch_id, dispatch.device_ids)
        self.engine.abandon_execution(execution.id)

        with self.assertRaises(InvalidStateError):
            self.engine.start_next_batch(dispatch.execution_batch_id)


class FinishExecutionTests(ExecutionEngineTestCase):
    def test_complete_requires_executing(self) -> None:
        execution = self.engine.create_from_plan(self.approved_plan().id)

        with self.assertRaises(InvalidStateError):
            self.engine.complete_execution(execution.id)

    def test_complete_marks_execution_and_plan(self) -> None:
        execution, _ = self.started_execution()

        completed = self.engine.complete_execution(execution.id)

        self.assertEqual(completed.status, ExecutionStatus.COMPLETED)
        self.assertEqual(self.lifecycle.get_plan(execution.plan_id).status, PlanStatus.COMPLETED)

    def test_abandon_from_created_or_executing(self) -> None:
        created = self.engine.create_from_plan(self.approved_plan().id)

        abandoned = self.engine.abandon_execution(created.id)

        self.assertEqual(abandoned.status, ExecutionStatus.ABANDONED)
        self.assertEqual(self.lifecycle.get_plan(created.plan_id).status, PlanStatus.CANCELLED)

    def test_abandon_leaves_batch_rows_untouched(self) -> None:
        execution, dispatch = self.started_execution()

        self.engine.abandon_execution(execution.id)

        batch = self.engine.get_execution_batch(dispatch.execution_batch_id)
        self.assertEqual(batch.status, ExecutionBatchStatus.EXECUTING)

    def test_finished_execution_cannot_change_again(self) -> None:
        execution, _ = self.started_execution()
        self.engine.complete_execution(execution.id)

        with self.assertRaises(InvalidStateError):
            self.engine.abandon_execution(execution.id)
        with self.assertRaises(InvalidStateError):
            self.engine.complete_execution(execution.id)

    def test_missing_execution_raises_not_found(self) -> None:
        with self.assertRaises(ExecutionNotFoundError):
            self.engine.complete_execution("missing-execution")
        with self.assertRaises(ExecutionNotFoundError):
            self.engine.abandon_execution("missing-execution")

