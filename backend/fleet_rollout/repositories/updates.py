from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from fleet_rollout.db.enums import PackageAction, UpdateStatus
from fleet_rollout.db.models import Package, Update, UpdatePackage


@dataclass(frozen=True)
class UpdatePackageInput:
    package_id: str
    action: PackageAction = PackageAction.INSTALL
    forced: bool = False
    requires_reboot: bool = False


def list_updates(db: Session, *, status: UpdateStatus | None = None) -> list[Update]:
    statement = select(Update)
    if status is not None:
        statement = statement.where(Update.status == status)
    statement = statement.order_by(Update.created_at.asc(), Update.id.asc())
    return list(db.scalars(statement))


def get_update_by_id(db: Session, update_id: str) -> Update | None:
    return db.get(Update, update_id)


def get_update_with_packages(db: Session, update_id: str) -> Update | None:
    return db.scalars(
        select(Update)
        .where(Update.id == update_id)
        .options(selectinload(Update.packages).selectinload(UpdatePackage.package))
    ).first()


def add_update(
    db: Session,
    *,
    name: str,
    version: str,
    description: str | None = None,
    status: UpdateStatus = UpdateStatus.DRAFT,
    packages: list[UpdatePackageInput] | None = None,
) -> Update:
    """Stage an update and its package entries; the caller commits."""
    update = Update(name=name, version=version, description=description, status=status)
    db.add(update)
    db.flush()
    for package_input in packages or []:
        add_update_package(db, update_id=update.id, package_input=package_input)
    return update


def add_update_package(db: Session, *, update_id: str, package_input: UpdatePackageInput) -> UpdatePackage:
    entry = UpdatePackage(
        update_id=update_id,
        package_id=package_input.package_id,
        action=package_input.action,
        forced=package_input.forced,
        requires_reboot=package_input.requires_reboot,
    )
    db.add(entry)
    db.flush()
    return entry


def get_update_package(db: Session, *, update_id: str, package_id: str) -> UpdatePackage | None:
    return db.scalars(
        select(UpdatePackage).where(
            UpdatePackage.update_id == update_id,
            UpdatePackage.package_id == package_id,
        )
    ).first()


def list_update_packages(db: Session, update_id: str) -> list[UpdatePackage]:
    statement = (
        select(UpdatePackage)
        .where(UpdatePackage.update_id == update_id)
        .options(selectinload(UpdatePackage.package))
        .order_by(UpdatePackage.created_at.asc(), UpdatePackage.id.asc())
    )
    return list(db.scalars(statement))


def list_packages_for_update(db: Session, update_id: str) -> list[Package]:
    statement = (
        select(Package)
        .join(UpdatePackage, UpdatePackage.package_id == Package.id)
        .where(UpdatePackage.update_id == update_id)
        .order_by(Package.name.asc(), Package.version.asc())
    )
    return list(db.scalars(statement))


def count_update_packages(db: Session, update_id: str) -> int:
    return int(
        db.scalar(select(func.count(UpdatePackage.id)).where(UpdatePackage.update_id == update_id))
        or 0
    )


def update_requires_reboot(db: Session, update_id: str) -> bool:
    flags = db.scalars(
        select(UpdatePackage.requires_reboot).where(UpdatePackage.update_id == update_id)
    )
    return any(flags)


def modify_update(
    db: Session,
    update: Update,
    *,
    name: str | None = None,
    version: str | None = None,
    description: str | None = None,
) -> Update:
    if name is not None:
        update.name = name
    if version is not None:
        update.version = version
    if description is not None:
        update.description = description
    db.add(update)
    db.flush()
    return update


def set_update_status(db: Session, update: Update, status: UpdateStatus) -> Update:
    update.status = status
    db.add(update)
    db.flush()
    return update


def modify_update_package(
    db: Session,
    entry: UpdatePackage,
    *,
    action: PackageAction | None = None,
    forced: bool | None = None,
    requires_reboot: bool | None = None,
) -> UpdatePackage:
    if action is not None:
        entry.action = action
    if forced is not None:
        entry.forced = forced
    if requires_reboot is not None:
        entry.requires_reboot = requires_reboot
    db.add(entry)
    db.flush()
    return entry


def remove_update_package(db: Session, entry: UpdatePackage) -> None:
    db.delete(entry)
    db.flush()


def remove_update(db: Session, update: Update) -> None:
    db.delete(update)
    db.flush()
