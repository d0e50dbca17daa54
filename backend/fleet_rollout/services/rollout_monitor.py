from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event, Lock, Thread

from sqlalchemy.orm import sessionmaker

from fleet_rollout.core.config import Settings
from fleet_rollout.db.enums import ExecutionBatchResult, ExecutionBatchStatus, ExecutionStatus
from fleet_rollout.db.models import ExecutionBatch
from fleet_rollout.repositories.executions import list_execution_batches, list_executions
from fleet_rollout.services.execution_engine import ExecutionEngine


class RolloutMonitorService:
    """Polls EXECUTING executions and advances them batch by batch."""

    def __init__(self, *, settings: Settings, session_factory: sessionmaker, engine: ExecutionEngine):
        self._settings = settings
        self._session_factory = session_factory
        self._engine = engine
        self._logger = logging.getLogger("fleet_rollout.rollout_monitor")
        self._stop_event = Event()
        self._thread: Thread | None = None
        self._lock = Lock()
        self._running = False
        self._last_run_ts: datetime | None = None
        self._last_error: str | None = None
        self._last_run_summary: dict[str, int] = {}

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="rollout-monitor", daemon=True)
        self._thread.start()
        self._logger.info(
            "started rollout monitor poll_seconds=%s halt_on_failure=%s",
            self._settings.rollout_monitor_poll_seconds,
            self._settings.rollout_halt_on_failure,
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        with self._lock:
            self._running = False

    def run_once(self) -> dict[str, int]:
        summary = {"checked": 0, "advanced": 0, "completed": 0, "abandoned": 0, "failed": 0}
        with self._session_factory() as db:
            execution_ids = [
                execution.id for execution in list_executions(db, status=ExecutionStatus.EXECUTING)
            ]

        for execution_id in execution_ids:
            summary["checked"] += 1
            try:
                outcome = self._advance(execution_id)
            except Exception:
                self._logger.exception("rollout monitor failed execution_id=%s", execution_id)
                summary["failed"] += 1
                continue
            if outcome is not None:
                summary[outcome] += 1

        with self._lock:
            self._last_run_ts = datetime.now(timezone.utc)
            self._last_run_summary = dict(summary)
        return summary

    def get_status_snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "enabled": self._settings.rollout_monitor_enabled,
                "running": self._running and not self._stop_event.is_set(),
                "poll_seconds": self._settings.rollout_monitor_poll_seconds,
                "halt_on_failure": self._settings.rollout_halt_on_failure,
                "last_run_ts": _to_iso(self._last_run_ts),
                "last_run_summary": dict(self._last_run_summary),
                "last_error": self._last_error,
            }

    def _advance(self, execution_id: str) -> str | None:
        with self._session_factory() as db:
            current = _current_batch(list_execution_batches(db, execution_id))
        if current is None:
            return None

        result = current.result
        if current.status == ExecutionBatchStatus.EXECUTING:
            completion = self._engine.check_batch_completion(current.id)
            if completion.is_complete:
                result = completion.result
            else:
                outcome = self._engine.end_monitoring_period(current.id)
                if not outcome.batch_complete:
                    return None
                result = outcome.result

        if result != ExecutionBatchResult.SUCCESSFUL and self._settings.rollout_halt_on_failure:
            self._engine.abandon_execution(execution_id)
            self._logger.warning(
                "execution halted execution_id=%s execution_batch_id=%s result=%s",
                execution_id,
                current.id,
                result.value if result else None,
            )
            return "abandoned"

        dispatch = self._engine.start_next_batch(current.id)
        if dispatch is None:
            self._engine.complete_execution(execution_id)
            return "completed"
        return "advanced"

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
                with self._lock:
                    self._last_error = None
            except Exception as exc:
                self._logger.exception("rollout monitor loop iteration failed")
                with self._lock:
                    self._last_error = str(exc)

            self._stop_event.wait(float(self._settings.rollout_monitor_poll_seconds))


def _current_batch(execution_batches: list[ExecutionBatch]) -> ExecutionBatch | None:
    # The executing batch if there is one, else the last completed batch whose
    # successor was never started.
    for execution_batch in execution_batches:
        if execution_batch.status == ExecutionBatchStatus.EXECUTING:
            return execution_batch
    completed = [
        execution_batch
        for execution_batch in execution_batches
        if execution_batch.status == ExecutionBatchStatus.COMPLETED
    ]
    return completed[-1] if completed else None


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
