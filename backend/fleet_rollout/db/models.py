import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleet_rollout.db.base import Base
from fleet_rollout.db.enums import (
    BatchStatus,
    BatchType,
    DeviceStatus,
    ExecutionBatchResult,
    ExecutionBatchStatus,
    ExecutionStatus,
    PackageAction,
    PackageStatus,
    PlanStatus,
    UpdateStatus,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_type(enum_cls: type[PyEnum], *, name: str) -> Enum:
    # persisted as the literal member strings with a CHECK constraint
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=24,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
        onupdate=_utc_now,
    )


class Device(Base):
    __tablename__ = "devices"
    __table_args__ = (Index("ix_devices_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[DeviceStatus] = mapped_column(
        _enum_type(DeviceStatus, name="ck_devices_status"),
        nullable=False,
        default=DeviceStatus.ONLINE,
        server_default=DeviceStatus.ONLINE.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    installed_packages: Mapped[list["InstalledPackage"]] = relationship(
        back_populates="device",
        cascade="all, delete-orphan",
    )


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (UniqueConstraint("name", "version", name="uq_packages_name_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[PackageStatus] = mapped_column(
        _enum_type(PackageStatus, name="ck_packages_status"),
        nullable=False,
        default=PackageStatus.DRAFT,
        server_default=PackageStatus.DRAFT.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class InstalledPackage(Base):
    __tablename__ = "device_packages"
    __table_args__ = (
        UniqueConstraint("device_id", "package_id", name="uq_device_packages_device_package"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    device_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False,
    )
    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = _updated_at()

    device: Mapped["Device"] = relationship(back_populates="installed_packages")
    package: Mapped["Package"] = relationship()


class Update(Base):
    __tablename__ = "updates"
    __table_args__ = (Index("ix_updates_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[UpdateStatus] = mapped_column(
        _enum_type(UpdateStatus, name="ck_updates_status"),
        nullable=False,
        default=UpdateStatus.DRAFT,
        server_default=UpdateStatus.DRAFT.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    packages: Mapped[list["UpdatePackage"]] = relationship(
        back_populates="update",
        cascade="all, delete-orphan",
        order_by="UpdatePackage.created_at",
    )


class UpdatePackage(Base):
    __tablename__ = "update_packages"
    __table_args__ = (
        UniqueConstraint("update_id", "package_id", name="uq_update_packages_update_package"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    update_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("updates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action: Mapped[PackageAction] = mapped_column(
        _enum_type(PackageAction, name="ck_update_packages_action"),
        nullable=False,
        default=PackageAction.INSTALL,
        server_default=PackageAction.INSTALL.value,
    )
    forced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    requires_reboot: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    created_at: Mapped[datetime] = _created_at()

    update: Mapped["Update"] = relationship(back_populates="packages")
    package: Mapped["Package"] = relationship()


class Plan(Base):
    __tablename__ = "plans"
    __table_args__ = (Index("ix_plans_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    update_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("updates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[PlanStatus] = mapped_column(
        _enum_type(PlanStatus, name="ck_plans_status"),
        nullable=False,
        default=PlanStatus.DRAFT,
        server_default=PlanStatus.DRAFT.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    update: Mapped["Update"] = relationship()
    batches: Mapped[list["Batch"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Batch.sequence",
    )


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (UniqueConstraint("plan_id", "sequence", name="uq_batches_plan_sequence"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    plan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[BatchType] = mapped_column(
        _enum_type(BatchType, name="ck_batches_type"),
        nullable=False,
        default=BatchType.MASS,
        server_default=BatchType.MASS.value,
    )
    monitoring_period: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=24,
        server_default="24",
    )
    status: Mapped[BatchStatus] = mapped_column(
        _enum_type(BatchStatus, name="ck_batches_status"),
        nullable=False,
        default=BatchStatus.PENDING,
        server_default=BatchStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    plan: Mapped["Plan"] = relationship(back_populates="batches")
    devices: Mapped[list["DeviceBatch"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
    )


class DeviceBatch(Base):
    __tablename__ = "device_batches"
    __table_args__ = (
        # a device belongs to at most one batch of a plan
        UniqueConstraint("plan_id", "device_id", name="uq_device_batches_plan_device"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("devices.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = _created_at()

    batch: Mapped["Batch"] = relationship(back_populates="devices")
    device: Mapped["Device"] = relationship()


class Execution(Base):
    __tablename__ = "executions"
    __table_args__ = (Index("ix_executions_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[ExecutionStatus] = mapped_column(
        _enum_type(ExecutionStatus, name="ck_executions_status"),
        nullable=False,
        default=ExecutionStatus.CREATED,
        server_default=ExecutionStatus.CREATED.value,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    plan: Mapped["Plan"] = relationship()
    batches: Mapped[list["ExecutionBatch"]] = relationship(
        back_populates="execution",
        order_by="ExecutionBatch.sequence",
    )


class ExecutionBatch(Base):
    __tablename__ = "execution_batches"
    __table_args__ = (
        UniqueConstraint("execution_id", "sequence", name="uq_execution_batches_execution_sequence"),
        Index("ix_execution_batches_execution_status", "execution_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    execution_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ExecutionBatchStatus] = mapped_column(
        _enum_type(ExecutionBatchStatus, name="ck_execution_batches_status"),
        nullable=False,
        default=ExecutionBatchStatus.PENDING,
        server_default=ExecutionBatchStatus.PENDING.value,
    )
    result: Mapped[ExecutionBatchResult | None] = mapped_column(
        _enum_type(ExecutionBatchResult, name="ck_execution_batches_result"),
        nullable=True,
    )
    monitoring_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    execution: Mapped["Execution"] = relationship(back_populates="batches")
    batch: Mapped["Batch | None"] = relationship()
    device_statuses: Mapped[list["ExecutionDeviceStatus"]] = relationship(
        back_populates="execution_batch",
        cascade="all, delete-orphan",
    )


class ExecutionDeviceStatus(Base):
    __tablename__ = "execution_device_statuses"
    __table_args__ = (
        UniqueConstraint(
            "execution_batch_id",
            "device_id",
            name="uq_execution_device_statuses_batch_device",
        ),
        Index("ix_execution_device_statuses_device", "device_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    execution_batch_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("execution_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    device_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("devices.id", ondelete="RESTRICT"),
        nullable=False,
    )
    update_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    update_completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )
    succeeded: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    execution_batch: Mapped["ExecutionBatch"] = relationship(back_populates="device_statuses")
    device: Mapped["Device"] = relationship()
