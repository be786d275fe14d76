"""Email job queue.

Revision ID: 003
Revises: 002
Create Date: 2026-10-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "email_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.Enum("document_expiry", name="email_job_type"), nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "processing", "completed", "failed", name="email_job_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_email_jobs_status_scheduled", "email_jobs", ["status", "scheduled_for"])
    op.create_index("idx_email_jobs_entity", "email_jobs", ["job_type", "entity_id"])
    op.create_index("idx_email_jobs_created", "email_jobs", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_email_jobs_created", table_name="email_jobs")
    op.drop_index("idx_email_jobs_entity", table_name="email_jobs")
    op.drop_index("idx_email_jobs_status_scheduled", table_name="email_jobs")
    op.drop_table("email_jobs")
    sa.Enum(name="email_job_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="email_job_type").drop(op.get_bind(), checkfirst=True)
