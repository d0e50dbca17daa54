from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DispatchRequest:
    execution_id: str
    execution_batch_id: str
    update_id: str
    device_id: str


class DeviceDispatcher(Protocol):
    def dispatch(self, request: DispatchRequest) -> None:
        ...


class LoggingDeviceDispatcher:
    """Records dispatch obligations in the log; delivery happens out of band."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("fleet_rollout.dispatch")

    def dispatch(self, request: DispatchRequest) -> None:
        self._logger.info(
            "dispatch requested execution_id=%s execution_batch_id=%s update_id=%s device_id=%s",
            request.execution_id,
            request.execution_batch_id,
            request.update_id,
            request.device_id,
        )
