from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError

from fleet_rollout.api.common import to_http_exception
from fleet_rollout.core.errors import RolloutError
from fleet_rollout.db.enums import UpdateStatus
from fleet_rollout.dependencies import get_affected_device_resolver, get_update_catalog_service
from fleet_rollout.repositories.updates import UpdatePackageInput
from fleet_rollout.schemas.catalog import (
    DeviceResponse,
    PackageResponse,
    RequiresRebootResponse,
    UpdateAddPackagesRequest,
    UpdateCreateRequest,
    UpdateModifyRequest,
    UpdatePackageOptionsRequest,
    UpdatePackageRequest,
    UpdatePackageResponse,
    UpdateRemovePackagesRequest,
    UpdateResponse,
)
from fleet_rollout.services.affected_devices import AffectedDeviceResolver
from fleet_rollout.services.update_catalog import UPDATE_TRANSITIONS, UpdateCatalogService


router = APIRouter(prefix="/api", tags=["updates"])


@router.get("/updates", response_model=list[UpdateResponse])
def get_updates(
    status_filter: UpdateStatus | None = Query(default=None, alias="status"),
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> list[UpdateResponse]:
    return [UpdateResponse.model_validate(update) for update in catalog.list_updates(status=status_filter)]


@router.post("/updates", response_model=UpdateResponse, status_code=status.HTTP_201_CREATED)
def post_update(
    payload: UpdateCreateRequest,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> UpdateResponse:
    try:
        update = catalog.create_update(
            name=payload.name,
            version=payload.version,
            description=payload.description,
            packages=[_to_package_input(item) for item in payload.packages],
        )
    except RolloutError as exc:
        raise to_http_exception(exc)
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Update conflict: {exc.orig}")
    return UpdateResponse.model_validate(update)


@router.get("/updates/{update_id}", response_model=UpdateResponse)
def get_update(
    update_id: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> UpdateResponse:
    try:
        return UpdateResponse.model_validate(catalog.get_update(update_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.put("/updates/{update_id}", response_model=UpdateResponse)
def put_update(
    update_id: str,
    payload: UpdateModifyRequest,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> UpdateResponse:
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field must be provided",
        )
    try:
        update = catalog.modify_update(
            update_id,
            name=updates.get("name"),
            version=updates.get("version"),
            description=updates.get("description"),
        )
    except RolloutError as exc:
        raise to_http_exception(exc)
    return UpdateResponse.model_validate(update)


@router.delete("/updates/{update_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_update(
    update_id: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> Response:
    try:
        catalog.delete_update(update_id)
    except RolloutError as exc:
        raise to_http_exception(exc)
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Update conflict: {exc.orig}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/updates/{update_id}/packages", response_model=list[PackageResponse])
def get_update_packages(
    update_id: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> list[PackageResponse]:
    try:
        return [PackageResponse.model_validate(package) for package in catalog.get_packages(update_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/updates/{update_id}/entries", response_model=list[UpdatePackageResponse])
def get_update_entries(
    update_id: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> list[UpdatePackageResponse]:
    try:
        return [UpdatePackageResponse.model_validate(entry) for entry in catalog.get_update_packages(update_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post(
    "/updates/{update_id}/packages",
    response_model=list[UpdatePackageResponse],
    status_code=status.HTTP_201_CREATED,
)
def post_update_packages(
    update_id: str,
    payload: UpdateAddPackagesRequest,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> list[UpdatePackageResponse]:
    try:
        entries = catalog.add_packages(update_id, [_to_package_input(item) for item in payload.packages])
    except RolloutError as exc:
        raise to_http_exception(exc)
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Update package conflict: {exc.orig}")
    return [UpdatePackageResponse.model_validate(entry) for entry in entries]


@router.put("/updates/{update_id}/packages/{package_id}", response_model=UpdatePackageResponse)
def put_update_package(
    update_id: str,
    package_id: str,
    payload: UpdatePackageOptionsRequest,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> UpdatePackageResponse:
    try:
        entry = catalog.update_package_options(
            update_id,
            package_id,
            action=payload.action,
            forced=payload.forced,
            requires_reboot=payload.requires_reboot,
        )
    except RolloutError as exc:
        raise to_http_exception(exc)
    return UpdatePackageResponse.model_validate(entry)


@router.post("/updates/{update_id}/packages/remove", status_code=status.HTTP_204_NO_CONTENT)
def post_update_packages_remove(
    update_id: str,
    payload: UpdateRemovePackagesRequest,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> Response:
    try:
        catalog.remove_packages(update_id, payload.package_ids)
    except RolloutError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/updates/{update_id}/requires-reboot", response_model=RequiresRebootResponse)
def get_update_requires_reboot(
    update_id: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> RequiresRebootResponse:
    try:
        return RequiresRebootResponse(update_id=update_id, requires_reboot=catalog.requires_reboot(update_id))
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.get("/updates/{update_id}/affected-devices", response_model=list[DeviceResponse])
def get_update_affected_devices(
    update_id: str,
    resolver: AffectedDeviceResolver = Depends(get_affected_device_resolver),
) -> list[DeviceResponse]:
    try:
        return [DeviceResponse.model_validate(device) for device in resolver.resolve(update_id)]
    except RolloutError as exc:
        raise to_http_exception(exc)


@router.post("/updates/{update_id}/{action}", response_model=UpdateResponse)
def post_update_transition(
    update_id: str,
    action: str,
    catalog: UpdateCatalogService = Depends(get_update_catalog_service),
) -> UpdateResponse:
    if action not in UPDATE_TRANSITIONS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown update action: {action}")
    try:
        return UpdateResponse.model_validate(catalog.transition(update_id, action))
    except RolloutError as exc:
        raise to_http_exception(exc)


def _to_package_input(item: UpdatePackageRequest) -> UpdatePackageInput:
    return UpdatePackageInput(
        package_id=item.package_id,
        action=item.action,
        forced=item.forced,
        requires_reboot=item.requires_reboot,
    )
