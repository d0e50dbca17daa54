from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleet_rollout.db.enums import PackageStatus
from fleet_rollout.db.models import Package


def list_packages(db: Session, *, status: PackageStatus | None = None) -> list[Package]:
    statement = select(Package)
    if status is not None:
        statement = statement.where(Package.status == status)
    statement = statement.order_by(Package.name.asc(), Package.version.asc())
    return list(db.scalars(statement))


def get_package_by_id(db: Session, package_id: str) -> Package | None:
    return db.get(Package, package_id)


def get_package_by_name_version(db: Session, *, name: str, version: str) -> Package | None:
    return db.scalars(
        select(Package).where(Package.name == name, Package.version == version)
    ).first()


def create_package(
    db: Session,
    *,
    name: str,
    version: str,
    vendor: str | None = None,
    description: str | None = None,
    status: PackageStatus = PackageStatus.DRAFT,
) -> Package:
    package = Package(
        name=name,
        version=version,
        vendor=vendor,
        description=description,
        status=status,
    )
    db.add(package)
    db.commit()
    db.refresh(package)
    return package


def update_package(
    db: Session,
    package: Package,
    *,
    name: str | None = None,
    version: str | None = None,
    vendor: str | None = None,
    description: str | None = None,
    status: PackageStatus | None = None,
) -> Package:
    if name is not None:
        package.name = name
    if version is not None:
        package.version = version
    if vendor is not None:
        package.vendor = vendor
    if description is not None:
        package.description = description
    if status is not None:
        package.status = status

    db.add(package)
    db.commit()
    db.refresh(package)
    return package


def set_package_status(db: Session, package: Package, status: PackageStatus) -> Package:
    return update_package(db, package, status=status)


def delete_package(db: Session, package: Package) -> None:
    db.delete(package)
    db.commit()
