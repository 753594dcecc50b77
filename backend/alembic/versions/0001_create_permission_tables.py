"""Create users, clinics, permission and audit tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

clinic_permissions.role stays nullable so rows written before grants were
tagged with a role can be loaded and migrated on the next write.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("clinic_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("uq_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_clinic_id", "users", ["clinic_id"])

    op.create_table(
        "clinics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_clinics_owner_id", "clinics", ["owner_id"])

    # users <-> clinics reference each other
    op.create_foreign_key(
        "fk_users_clinic_id_clinics",
        "users",
        "clinics",
        ["clinic_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "clinic_permissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "clinic_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(32), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "granted_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("last_modified"),
        _timestamp("created_at"),
        sa.UniqueConstraint("clinic_id", "role", name="uq_clinic_permissions_clinic_id_role"),
    )
    op.create_index("ix_clinic_permissions_clinic_id", "clinic_permissions", ["clinic_id"])
    op.create_index("ix_clinic_permissions_role", "clinic_permissions", ["role"])

    op.create_table(
        "staff_permissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "staff_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "clinic_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clinics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "granted_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("last_modified"),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "staff_id", "clinic_id", name="uq_staff_permissions_staff_id_clinic_id"
        ),
    )
    op.create_index("ix_staff_permissions_staff_id", "staff_permissions", ["staff_id"])
    op.create_index("ix_staff_permissions_clinic_id", "staff_permissions", ["clinic_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "actor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_table("audit_logs")
    op.drop_table("staff_permissions")
    op.drop_table("clinic_permissions")
    op.drop_constraint("fk_users_clinic_id_clinics", "users", type_="foreignkey")
    op.drop_table("clinics")
    op.drop_table("users")
