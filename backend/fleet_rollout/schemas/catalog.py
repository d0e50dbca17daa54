from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleet_rollout.core.errors import MalformedVersionError
from fleet_rollout.db.enums import DeviceStatus, PackageAction, PackageStatus, UpdateStatus
from fleet_rollout.services.versions import parse_version


def _trim_required(value: str) -> str:
    trimmed = value.strip()
    if trimmed == "":
        raise ValueError("value must not be empty")
    return trimmed


def _dotted_version(value: str) -> str:
    try:
        parse_version(value)
    except MalformedVersionError as exc:
        raise ValueError(exc.detail) from exc
    return value


class DeviceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = Field(min_length=1, max_length=64)
    ip_address: str | None = Field(default=None, max_length=64)
    status: DeviceStatus = DeviceStatus.ONLINE

    @field_validator("name", "type", mode="before")
    @classmethod
    def _trim_text(cls, value: str) -> str:
        return _trim_required(value)


class DeviceUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: str | None = Field(default=None, min_length=1, max_length=64)
    ip_address: str | None = Field(default=None, max_length=64)
    status: DeviceStatus | None = None


class DeviceStatusRequest(BaseModel):
    status: DeviceStatus


class DeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    ip_address: str | None
    type: str
    status: DeviceStatus
    created_at: datetime
    updated_at: datetime


class PackageCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    version: str = Field(min_length=1, max_length=64)
    vendor: str | None = Field(default=None, max_length=255)
    description: str | None = None

    @field_validator("name", "version", mode="before")
    @classmethod
    def _trim_text(cls, value: str) -> str:
        return _trim_required(value)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        return _dotted_version(value)


class PackageUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    version: str | None = Field(default=None, min_length=1, max_length=64)
    vendor: str | None = Field(default=None, max_length=255)
    description: str | None = None

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _dotted_version(value.strip())


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    version: str
    vendor: str | None
    description: str | None
    status: PackageStatus
    created_at: datetime
    updated_at: datetime


class InstallPackageRequest(BaseModel):
    package_id: str = Field(min_length=1)


class InstalledPackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str
    package_id: str
    installed_at: datetime
    package: PackageResponse


class UpdatePackageRequest(BaseModel):
    package_id: str = Field(min_length=1)
    action: PackageAction = PackageAction.INSTALL
    forced: bool = False
    requires_reboot: bool = False


class UpdatePackageOptionsRequest(BaseModel):
    action: PackageAction | None = None
    forced: bool | None = None
    requires_reboot: bool | None = None


class UpdatePackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    update_id: str
    package_id: str
    action: PackageAction
    forced: bool
    requires_reboot: bool
    created_at: datetime


class UpdateCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    version: str = Field(min_length=1, max_length=64)
    description: str | None = None
    packages: list[UpdatePackageRequest] = Field(default_factory=list)

    @field_validator("name", "version", mode="before")
    @classmethod
    def _trim_text(cls, value: str) -> str:
        return _trim_required(value)


class UpdateModifyRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    version: str | None = Field(default=None, min_length=1, max_length=64)
    description: str | None = None


class UpdateAddPackagesRequest(BaseModel):
    packages: list[UpdatePackageRequest] = Field(min_length=1)


class UpdateRemovePackagesRequest(BaseModel):
    package_ids: list[str] = Field(min_length=1)


class UpdateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    version: str
    description: str | None
    status: UpdateStatus
    created_at: datetime
    updated_at: datetime


class RequiresRebootResponse(BaseModel):
    update_id: str
    requires_reboot: bool
