from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_rollout.api.common import conflict_from_integrity
from fleet_rollout.db.enums import PackageStatus
from fleet_rollout.db.models import Package
from fleet_rollout.db.session import get_db
from fleet_rollout.repositories.packages import (
    create_package,
    delete_package,
    get_package_by_id,
    get_package_by_name_version,
    list_packages,
    set_package_status,
    update_package,
)
from fleet_rollout.schemas.catalog import PackageCreateRequest, PackageResponse, PackageUpdateRequest


router = APIRouter(prefix="/api", tags=["packages"])

# action -> (allowed source statuses, target status)
PACKAGE_TRANSITIONS: dict[str, tuple[tuple[PackageStatus, ...], PackageStatus]] = {
    "publish": ((PackageStatus.DRAFT,), PackageStatus.PUBLISHED),
    "deprecate": ((PackageStatus.PUBLISHED,), PackageStatus.DEPRECATED),
    "archive": (
        (PackageStatus.DRAFT, PackageStatus.PUBLISHED, PackageStatus.DEPRECATED),
        PackageStatus.ARCHIVED,
    ),
}


@router.get("/packages", response_model=list[PackageResponse])
def get_packages(
    status_filter: PackageStatus | None = Query(default=None, alias="status"),
    name: str | None = None,
    version: str | None = None,
    db: Session = Depends(get_db),
) -> list[PackageResponse]:
    if name is not None and version is not None:
        package = get_package_by_name_version(db, name=name, version=version)
        return [PackageResponse.model_validate(package)] if package else []
    return [PackageResponse.model_validate(package) for package in list_packages(db, status=status_filter)]


@router.post("/packages", response_model=PackageResponse, status_code=status.HTTP_201_CREATED)
def post_package(payload: PackageCreateRequest, db: Session = Depends(get_db)) -> PackageResponse:
    try:
        package = create_package(
            db,
            name=payload.name,
            version=payload.version,
            vendor=payload.vendor,
            description=payload.description,
        )
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Package")
    return PackageResponse.model_validate(package)


@router.get("/packages/{package_id}", response_model=PackageResponse)
def get_package(package_id: str, db: Session = Depends(get_db)) -> PackageResponse:
    return PackageResponse.model_validate(_require_package(db, package_id))


@router.put("/packages/{package_id}", response_model=PackageResponse)
def put_package(
    package_id: str,
    payload: PackageUpdateRequest,
    db: Session = Depends(get_db),
) -> PackageResponse:
    package = _require_package(db, package_id)
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field must be provided",
        )
    try:
        updated = update_package(
            db,
            package,
            name=updates.get("name"),
            version=updates.get("version"),
            vendor=updates.get("vendor"),
            description=updates.get("description"),
        )
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Package")
    return PackageResponse.model_validate(updated)


@router.delete("/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_package_endpoint(package_id: str, db: Session = Depends(get_db)) -> Response:
    package = _require_package(db, package_id)
    try:
        delete_package(db, package)
    except IntegrityError as exc:
        raise conflict_from_integrity(db, exc, label="Package")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/packages/{package_id}/{action}", response_model=PackageResponse)
def post_package_transition(
    package_id: str,
    action: str,
    db: Session = Depends(get_db),
) -> PackageResponse:
    if action not in PACKAGE_TRANSITIONS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown package action: {action}")
    allowed, target = PACKAGE_TRANSITIONS[action]

    package = _require_package(db, package_id)
    if package.status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {action} package {package.id}: status is {package.status.value}",
        )
    return PackageResponse.model_validate(set_package_status(db, package, target))


def _require_package(db: Session, package_id: str) -> Package:
    package = get_package_by_id(db, package_id)
    if package is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
    return package
