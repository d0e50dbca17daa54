from __future__ import annotations

import logging

from sqlalchemy.orm import sessionmaker

from fleet_rollout.repositories.executions import PendingUpdateRow, list_pending_update_rows


class PendingUpdateQuery:
    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger("fleet_rollout.pending_updates")

    def get_pending_updates(self, device_id: str) -> list[PendingUpdateRow]:
        with self._session_factory() as db:
            rows = list_pending_update_rows(db, device_id)
        self._logger.debug("pending updates device_id=%s count=%s", device_id, len(rows))
        return rows
