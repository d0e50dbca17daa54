from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_rollout.api.common import conflict_from_integrity
from fleet_rollout.db.enums import DeviceStatus
from fleet_rollout.db.models import Device
from fleet_rollout.db.session import get_db
from fleet_rollout.dependencies import get_pending_update_query
from fleet_rollout.repositories.devices import (
    create_device,
    delete_device,
    get_device_by_id,
    get_installed_package,
    install_package,
    list_devices,
    list_installed_packages,
    set_device_status,
    uninstall_package,
    update_device,
)
from fleet_rollout.repositories.packages import get_package_by_id
from fleet_rollout.schemas.catalog import (
    DeviceCreateRequest,
    DeviceResponse,
    DeviceStatusRequest,
    DeviceUpdateRequest,
    InstalledPackageResponse,
    InstallPackageRequest,
)
from fleet_rollout.schemas.rollouts import PendingUpdateResponse
from fleet_rollout.services.pending_updates import PendingUpdateQuery


router = APIRouter(prefix="/api", tags=["devices"])


@router.get("/devices", response_model=list[DeviceResponse])
def get_devices(
    status_filter: DeviceStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[DeviceResponse]:
    return [DeviceResponse.model_validate(device) for device in list_devices(db, status=status_filter)]


@router.post("/devices", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
def post_device(payload: DeviceCreateRequest, db: Session = Depends(get_db)) -> DeviceResponse:
    try:
        device = create_device(
            db,
            name=payload.name,
            type=payload.type,
            ip_address=payload.ip_address,
            status=payload.status,
        )
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Device")
    return DeviceResponse.model_validate(device)


@router.get("/devices/{device_id}", response_model=DeviceResponse)
def get_device(device_id: str, db: Session = Depends(get_db)) -> DeviceResponse:
    return DeviceResponse.model_validate(_require_device(db, device_id))


@router.put("/devices/{device_id}", response_model=DeviceResponse)
def put_device(
    device_id: str,
    payload: DeviceUpdateRequest,
    db: Session = Depends(get_db),
) -> DeviceResponse:
    device = _require_device(db, device_id)
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field must be provided",
        )
    updated = update_device(
        db,
        device,
        name=updates.get("name"),
        type=updates.get("type"),
        ip_address=updates.get("ip_address"),
        status=updates.get("status"),
    )
    return DeviceResponse.model_validate(updated)


@router.put("/devices/{device_id}/status", response_model=DeviceResponse)
def put_device_status(
    device_id: str,
    payload: DeviceStatusRequest,
    db: Session = Depends(get_db),
) -> DeviceResponse:
    device = _require_device(db, device_id)
    return DeviceResponse.model_validate(set_device_status(db, device, payload.status))


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device_endpoint(device_id: str, db: Session = Depends(get_db)) -> Response:
    device = _require_device(db, device_id)
    try:
        delete_device(db, device)
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Device")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/devices/{device_id}/packages", response_model=list[InstalledPackageResponse])
def get_device_packages(device_id: str, db: Session = Depends(get_db)) -> list[InstalledPackageResponse]:
    _require_device(db, device_id)
    return [InstalledPackageResponse.model_validate(item) for item in list_installed_packages(db, device_id)]


@router.post(
    "/devices/{device_id}/packages",
    response_model=InstalledPackageResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_device_package(
    device_id: str,
    payload: InstallPackageRequest,
    db: Session = Depends(get_db),
) -> InstalledPackageResponse:
    _require_device(db, device_id)
    package = get_package_by_id(db, payload.package_id)
    if package is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
    try:
        installed = install_package(db, device_id=device_id, package_id=package.id)
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Installed package")
    return InstalledPackageResponse.model_validate(installed)


@router.delete("/devices/{device_id}/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device_package(device_id: str, package_id: str, db: Session = Depends(get_db)) -> Response:
    _require_device(db, device_id)
    installed = get_installed_package(db, device_id=device_id, package_id=package_id)
    if installed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package is not installed")
    uninstall_package(db, installed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/devices/{device_id}/pending-updates", response_model=list[PendingUpdateResponse])
def get_device_pending_updates(
    device_id: str,
    query: PendingUpdateQuery = Depends(get_pending_update_query),
) -> list[PendingUpdateResponse]:
    return [PendingUpdateResponse.model_validate(row) for row in query.get_pending_updates(device_id)]


def _require_device(db: Session, device_id: str) -> Device:
    device = get_device_by_id(db, device_id)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return device
