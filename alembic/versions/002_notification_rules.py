"""Notification rules, defaults and the notification log.

Revision ID: 002
Revises: 001
Create Date: 2026-10-01
"""

import uuid
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SEED_DAYS = [14, 7, 3, 1]


def upgrade() -> None:
    op.create_table(
        "notification_rules",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "document_id",
            UUID(as_uuid=True),
            sa.ForeignKey("machine_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("days_before", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("document_id", "days_before", name="uq_rule_document_days"),
    )
    op.create_index("ix_notification_rules_document_id", "notification_rules", ["document_id"])
    op.create_index("idx_rules_days_before", "notification_rules", ["days_before"])

    defaults = op.create_table(
        "notification_defaults",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("document_type", sa.String(20), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(255), server_default=""),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    default_days = op.create_table(
        "notification_default_days",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "default_id",
            UUID(as_uuid=True),
            sa.ForeignKey("notification_defaults.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("days_before", sa.Integer, nullable=False),
        sa.UniqueConstraint("default_id", "days_before", name="uq_default_days"),
    )

    op.create_table(
        "notification_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "document_id",
            UUID(as_uuid=True),
            sa.ForeignKey("machine_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("days_before", sa.Integer, nullable=False),
        sa.Column("notification_date", sa.Date, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("document_id", "days_before", "notification_date", name="uq_notification_log"),
    )
    op.create_index("idx_notification_logs_date", "notification_logs", ["notification_date"])

    # Fleet-wide default so new documents get reminders before anyone configures them
    all_id = uuid.uuid4()
    op.bulk_insert(defaults, [{"id": all_id, "document_type": "ALL", "is_active": True, "created_by": "migration"}])
    op.bulk_insert(
        default_days,
        [
            {"id": uuid.uuid4(), "default_id": all_id, "position": position, "days_before": days}
            for position, days in enumerate(SEED_DAYS)
        ],
    )


def downgrade() -> None:
    op.drop_index("idx_notification_logs_date", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_table("notification_default_days")
    op.drop_table("notification_defaults")
    op.drop_index("idx_rules_days_before", table_name="notification_rules")
    op.drop_index("ix_notification_rules_document_id", table_name="notification_rules")
    op.drop_table("notification_rules")
