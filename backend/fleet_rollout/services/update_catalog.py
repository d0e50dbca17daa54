from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.orm import Session, sessionmaker

from fleet_rollout.core.errors import (
    EmptyCollectionError,
    InvalidStateError,
    NotFoundError,
    PackageNotFoundError,
    UpdateNotFoundError,
)
from fleet_rollout.db.enums import PackageAction, UpdateStatus
from fleet_rollout.db.models import Package, Update, UpdatePackage
from fleet_rollout.repositories.packages import get_package_by_id
from fleet_rollout.repositories.updates import (
    UpdatePackageInput,
    add_update,
    add_update_package,
    count_update_packages,
    get_update_by_id,
    get_update_package,
    list_packages_for_update,
    list_update_packages,
    list_updates,
    modify_update,
    modify_update_package,
    remove_update,
    remove_update_package,
    set_update_status,
    update_requires_reboot,
)

# action -> (allowed source statuses, target status)
UPDATE_TRANSITIONS: dict[str, tuple[tuple[UpdateStatus, ...], UpdateStatus]] = {
    "publish": ((UpdateStatus.DRAFT,), UpdateStatus.PUBLISHED),
    "test": ((UpdateStatus.PUBLISHED,), UpdateStatus.TESTING),
    "deploy": ((UpdateStatus.TESTING,), UpdateStatus.DEPLOYING),
    "complete": ((UpdateStatus.DEPLOYING,), UpdateStatus.COMPLETED),
    "fail": ((UpdateStatus.TESTING, UpdateStatus.DEPLOYING), UpdateStatus.FAILED),
    "cancel": (
        (UpdateStatus.DRAFT, UpdateStatus.PUBLISHED, UpdateStatus.TESTING),
        UpdateStatus.CANCELLED,
    ),
}


class UpdateCatalogService:
    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger("fleet_rollout.update_catalog")

    def list_updates(self, *, status: UpdateStatus | None = None) -> list[Update]:
        with self._session_factory() as db:
            return list_updates(db, status=status)

    def get_update(self, update_id: str) -> Update:
        with self._session_factory() as db:
            return _require_update(db, update_id)

    def create_update(
        self,
        *,
        name: str,
        version: str,
        description: str | None = None,
        packages: Sequence[UpdatePackageInput] = (),
    ) -> Update:
        with self._session_factory() as db:
            for package_input in packages:
                _require_package(db, package_input.package_id)
            update = add_update(
                db,
                name=name,
                version=version,
                description=description,
                packages=list(packages),
            )
            db.commit()
            db.refresh(update)
        self._logger.info(
            "update created update_id=%s name=%s version=%s packages=%s",
            update.id,
            name,
            version,
            len(packages),
        )
        return update

    def modify_update(
        self,
        update_id: str,
        *,
        name: str | None = None,
        version: str | None = None,
        description: str | None = None,
    ) -> Update:
        with self._session_factory() as db:
            update = _require_update(db, update_id)
            modify_update(db, update, name=name, version=version, description=description)
            db.commit()
            db.refresh(update)
        return update

    def delete_update(self, update_id: str) -> None:
        with self._session_factory() as db:
            update = _require_update(db, update_id)
            remove_update(db, update)
            db.commit()
        self._logger.info("update deleted update_id=%s", update_id)

    def add_packages(self, update_id: str, packages: Sequence[UpdatePackageInput]) -> list[UpdatePackage]:
        with self._session_factory() as db:
            _require_update(db, update_id)
            entries: list[UpdatePackage] = []
            for package_input in packages:
                _require_package(db, package_input.package_id)
                entries.append(add_update_package(db, update_id=update_id, package_input=package_input))
            db.commit()
            for entry in entries:
                db.refresh(entry)
        self._logger.info("packages added update_id=%s count=%s", update_id, len(entries))
        return entries

    def update_package_options(
        self,
        update_id: str,
        package_id: str,
        *,
        action: PackageAction | None = None,
        forced: bool | None = None,
        requires_reboot: bool | None = None,
    ) -> UpdatePackage:
        with self._session_factory() as db:
            entry = _require_update_package(db, update_id=update_id, package_id=package_id)
            modify_update_package(
                db,
                entry,
                action=action,
                forced=forced,
                requires_reboot=requires_reboot,
            )
            db.commit()
            db.refresh(entry)
        return entry

    def remove_packages(self, update_id: str, package_ids: Sequence[str]) -> None:
        with self._session_factory() as db:
            _require_update(db, update_id)
            for package_id in package_ids:
                entry = _require_update_package(db, update_id=update_id, package_id=package_id)
                remove_update_package(db, entry)
            db.commit()
        self._logger.info("packages removed update_id=%s count=%s", update_id, len(package_ids))

    def get_packages(self, update_id: str) -> list[Package]:
        with self._session_factory() as db:
            _require_update(db, update_id)
            return list_packages_for_update(db, update_id)

    def get_update_packages(self, update_id: str) -> list[UpdatePackage]:
        with self._session_factory() as db:
            _require_update(db, update_id)
            return list_update_packages(db, update_id)

    def requires_reboot(self, update_id: str) -> bool:
        with self._session_factory() as db:
            _require_update(db, update_id)
            return update_requires_reboot(db, update_id)

    def transition(self, update_id: str, action: str) -> Update:
        if action not in UPDATE_TRANSITIONS:
            raise ValueError(f"Unsupported update action: {action}")
        allowed, target = UPDATE_TRANSITIONS[action]

        with self._session_factory() as db:
            update = _require_update(db, update_id)
            if update.status not in allowed:
                expected = ", ".join(status.value for status in allowed)
                raise InvalidStateError(
                    f"Cannot {action} update {update.id}: status is {update.status.value}, expected {expected}"
                )
            if action == "publish" and count_update_packages(db, update.id) == 0:
                raise EmptyCollectionError(f"Cannot publish update {update.id} without packages")
            previous = update.status
            set_update_status(db, update, target)
            db.commit()
            db.refresh(update)

        self._logger.info(
            "update transitioned update_id=%s action=%s from=%s to=%s",
            update_id,
            action,
            previous.value,
            target.value,
        )
        return update

    def publish(self, update_id: str) -> Update:
        return self.transition(update_id, "publish")

    def test(self, update_id: str) -> Update:
        return self.transition(update_id, "test")

    def deploy(self, update_id: str) -> Update:
        return self.transition(update_id, "deploy")

    def complete(self, update_id: str) -> Update:
        return self.transition(update_id, "complete")

    def fail(self, update_id: str) -> Update:
        return self.transition(update_id, "fail")

    def cancel(self, update_id: str) -> Update:
        return self.transition(update_id, "cancel")


def _require_update(db: Session, update_id: str) -> Update:
    update = get_update_by_id(db, update_id)
    if update is None:
        raise UpdateNotFoundError(update_id)
    return update


def _require_package(db: Session, package_id: str) -> Package:
    package = get_package_by_id(db, package_id)
    if package is None:
        raise PackageNotFoundError(package_id)
    return package


def _require_update_package(db: Session, *, update_id: str, package_id: str) -> UpdatePackage:
    entry = get_update_package(db, update_id=update_id, package_id=package_id)
    if entry is None:
        raise NotFoundError(f"Package {package_id} is not part of update {update_id}")
    return entry
