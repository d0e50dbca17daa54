from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from functools import cmp_to_key
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from fleet_rollout.core.errors import UpdateNotFoundError
from fleet_rollout.db.enums import PackageAction
from fleet_rollout.db.models import Device, UpdatePackage
from fleet_rollout.repositories.devices import list_online_devices_with_packages
from fleet_rollout.repositories.updates import get_update_with_packages
from fleet_rollout.services.versions import compare_versions


class AffectedDeviceResolver:
    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger("fleet_rollout.affected_devices")

    def resolve(self, update_id: str) -> list[Device]:
        with self._session_factory() as db:
            return self.resolve_in_session(db, update_id)

    def resolve_in_session(self, db: Session, update_id: str) -> list[Device]:
        update = get_update_with_packages(db, update_id)
        if update is None:
            raise UpdateNotFoundError(update_id)

        entries = list(update.packages)
        if not entries:
            self._logger.info("update has no packages update_id=%s affected=0", update_id)
            return []

        affected: list[Device] = []
        for device in list_online_devices_with_packages(db):
            installed = _installed_versions_by_name(
                (item.package.name, item.package.version) for item in device.installed_packages
            )
            if any(_entry_affects(entry, installed) for entry in entries):
                affected.append(device)

        self._logger.info(
            "resolved affected devices update_id=%s packages=%s affected=%s",
            update_id,
            len(entries),
            len(affected),
        )
        return affected


def _installed_versions_by_name(items: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    versions: dict[str, list[str]] = {}
    for name, version in items:
        versions.setdefault(name, []).append(version)
    return versions


def _entry_affects(entry: UpdatePackage | Any, installed: Mapping[str, list[str]]) -> bool:
    if entry.forced:
        return True

    target = entry.package
    installed_versions = installed.get(target.name)
    action = _normalize_action(entry.action)

    if action == PackageAction.INSTALL:
        if not installed_versions:
            return True
        newest = max(installed_versions, key=cmp_to_key(compare_versions))
        return compare_versions(newest, target.version) < 0

    if action == PackageAction.UNINSTALL:
        return bool(installed_versions)

    return False


def _normalize_action(value: object) -> PackageAction | None:
    if isinstance(value, PackageAction):
        return value
    try:
        return PackageAction(str(value))
    except ValueError:
        return None
