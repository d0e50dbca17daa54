from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fleet_rollout.db.enums import DeviceStatus
from fleet_rollout.db.models import Device, InstalledPackage, Package


def list_devices(db: Session, *, status: DeviceStatus | None = None) -> list[Device]:
    statement = select(Device)
    if status is not None:
        statement = statement.where(Device.status == status)
    statement = statement.order_by(Device.created_at.asc(), Device.id.asc())
    return list(db.scalars(statement))


def list_online_devices_with_packages(db: Session) -> list[Device]:
    statement = (
        select(Device)
        .where(Device.status == DeviceStatus.ONLINE)
        .options(selectinload(Device.installed_packages).selectinload(InstalledPackage.package))
        .order_by(Device.created_at.asc(), Device.id.asc())
    )
    return list(db.scalars(statement))


def list_devices_by_ids(db: Session, device_ids: list[str]) -> list[Device]:
    if not device_ids:
        return []
    statement = (
        select(Device)
        .where(Device.id.in_(device_ids))
        .order_by(Device.created_at.asc(), Device.id.asc())
    )
    return list(db.scalars(statement))


def get_device_by_id(db: Session, device_id: str) -> Device | None:
    return db.get(Device, device_id)


def create_device(
    db: Session,
    *,
    name: str,
    type: str,
    ip_address: str | None = None,
    status: DeviceStatus = DeviceStatus.ONLINE,
) -> Device:
    device = Device(name=name, type=type, ip_address=ip_address, status=status)
    db.add(device)
    db.commit()
    db.refresh(device)
    return device


def update_device(
    db: Session,
    device: Device,
    *,
    name: str | None = None,
    type: str | None = None,
    ip_address: str | None = None,
    status: DeviceStatus | None = None,
) -> Device:
    if name is not None:
        device.name = name
    if type is not None:
        device.type = type
    if ip_address is not None:
        device.ip_address = ip_address
    if status is not None:
        device.status = status

    db.add(device)
    db.commit()
    db.refresh(device)
    return device


def set_device_status(db: Session, device: Device, status: DeviceStatus) -> Device:
    return update_device(db, device, status=status)


def delete_device(db: Session, device: Device) -> None:
    db.delete(device)
    db.commit()


def list_installed_packages(db: Session, device_id: str) -> list[InstalledPackage]:
    statement = (
        select(InstalledPackage)
        .where(InstalledPackage.device_id == device_id)
        .options(selectinload(InstalledPackage.package))
        .join(Package, Package.id == InstalledPackage.package_id)
        .order_by(Package.name.asc(), Package.version.asc())
    )
    return list(db.scalars(statement))


def get_installed_package(db: Session, *, device_id: str, package_id: str) -> InstalledPackage | None:
    return db.scalars(
        select(InstalledPackage).where(
            InstalledPackage.device_id == device_id,
            InstalledPackage.package_id == package_id,
        )
    ).first()


def install_package(db: Session, *, device_id: str, package_id: str) -> InstalledPackage:
    installed = InstalledPackage(device_id=device_id, package_id=package_id)
    db.add(installed)
    db.commit()
    db.refresh(installed)
    return installed


def uninstall_package(db: Session, installed: InstalledPackage) -> None:
    db.delete(installed)
    db.commit()
