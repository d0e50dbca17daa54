"""initial fleet rollout schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _status(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=24)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            _status("ck_devices_status", "ONLINE", "OFFLINE", "MAINTENANCE", "DECOMMISSIONED"),
            server_default="ONLINE",
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_devices_status", "devices", ["status"])

    op.create_table(
        "packages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("vendor", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            _status("ck_packages_status", "DRAFT", "PUBLISHED", "DEPRECATED", "ARCHIVED"),
            server_default="DRAFT",
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", "version", name="uq_packages_name_version"),
    )

    op.create_table(
        "device_packages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("package_id", sa.String(length=36), nullable=False),
        sa.Column("installed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id", "package_id", name="uq_device_packages_device_package"),
    )
    op.create_index("ix_device_packages_device_id", "device_packages", ["device_id"])

    op.create_table(
        "updates",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            _status(
                "ck_updates_status",
                "DRAFT",
                "PUBLISHED",
                "TESTING",
                "DEPLOYING",
                "COMPLETED",
                "FAILED",
                "CANCELLED",
            ),
            server_default="DRAFT",
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_updates_status", "updates", ["status"])

    op.create_table(
        "update_packages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("update_id", sa.String(length=36), nullable=False),
        sa.Column("package_id", sa.String(length=36), nullable=False),
        sa.Column(
            "action",
            _status("ck_update_packages_action", "INSTALL", "UNINSTALL"),
            server_default="INSTALL",
            nullable=False,
        ),
        sa.Column("forced", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("requires_reboot", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["update_id"], ["updates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("update_id", "package_id", name="uq_update_packages_update_package"),
    )
    op.create_index("ix_update_packages_update_id", "update_packages", ["update_id"])

    op.create_table(
        "plans",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("update_id", sa.String(length=36), nullable=False),
        sa.Column(
            "status",
            _status(
                "ck_plans_status",
                "DRAFT",
                "APPROVED",
                "REJECTED",
                "READY",
                "EXECUTING",
                "COMPLETED",
                "FAILED",
                "CANCELLED",
            ),
            server_default="DRAFT",
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["update_id"], ["updates.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_plans_status", "plans", ["status"])
    op.create_index("ix_plans_update_id", "plans", ["update_id"])

    op.create_table(
        "batches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("plan_id", sa.String(length=36), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("type", _status("ck_batches_type", "TEST", "MASS"), server_default="MASS", nullable=False),
        sa.Column("monitoring_period", sa.Integer(), server_default="24", nullable=False),
        sa.Column(
            "status",
            _status("ck_batches_status", "PENDING", "EXECUTING", "COMPLETED", "FAILED", "CANCELLED"),
            server_default="PENDING",
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "sequence", name="uq_batches_plan_sequence"),
    )
    op.create_index("ix_batches_plan_id", "batches", ["plan_id"])

    op.create_table(
        "device_batches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("plan_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "device_id", name="uq_device_batches_plan_device"),
    )
    op.create_index("ix_device_batches_batch_id", "device_batches", ["batch_id"])

    op.create_table(
        "executions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("plan_id", sa.String(length=36), nullable=False),
        sa.Column(
            "status",
            _status("ck_executions_status", "CREATED", "EXECUTING", "COMPLETED", "ABANDONED"),
            server_default="CREATED",
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_executions_status", "executions", ["status"])
    op.create_index("ix_executions_plan_id", "executions", ["plan_id"])

    op.create_table(
        "execution_batches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("execution_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _status("ck_execution_batches_status", "PENDING", "EXECUTING", "COMPLETED"),
            server_default="PENDING",
            nullable=False,
        ),
        sa.Column(
            "result",
            _status("ck_execution_batches_result", "SUCCESSFUL", "FAILED", "INCOMPLETE"),
            nullable=True,
        ),
        sa.Column("monitoring_end_time", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["execution_id"], ["executions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("execution_id", "sequence", name="uq_execution_batches_execution_sequence"),
    )
    op.create_index(
        "ix_execution_batches_execution_status",
        "execution_batches",
        ["execution_id", "status"],
    )

    op.create_table(
        "execution_device_statuses",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("execution_batch_id", sa.String(length=36), nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("update_sent", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("update_completed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("succeeded", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["execution_batch_id"], ["execution_batches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "execution_batch_id",
            "device_id",
            name="uq_execution_device_statuses_batch_device",
        ),
    )
    op.create_index("ix_execution_device_statuses_device", "execution_device_statuses", ["device_id"])


def downgrade() -> None:
    op.drop_index("ix_execution_device_statuses_device", table_name="execution_device_statuses")
    op.drop_table("execution_device_statuses")

    op.drop_index("ix_execution_batches_execution_status", table_name="execution_batches")
    op.drop_table("execution_batches")

    op.drop_index("ix_executions_plan_id", table_name="executions")
    op.drop_index("ix_executions_status", table_name="executions")
    op.drop_table("executions")

    op.drop_index("ix_device_batches_batch_id", table_name="device_batches")
    op.drop_table("device_batches")

    op.drop_index("ix_batches_plan_id", table_name="batches")
    op.drop_table("batches")

    op.drop_index("ix_plans_update_id", table_name="plans")
    op.drop_index("ix_plans_status", table_name="plans")
    op.drop_table("plans")

    op.drop_index("ix_update_packages_update_id", table_name="update_packages")
    op.drop_table("update_packages")

    op.drop_index("ix_updates_status", table_name="updates")
    op.drop_table("updates")

    op.drop_index("ix_device_packages_device_id", table_name="device_packages")
    op.drop_table("device_packages")

    op.drop_table("packages")

    op.drop_index("ix_devices_status", table_name="devices")
    op.drop_table("devices")
