"""Machines, machine documents and audit logs.

Revision ID: 001
Revises:
Create Date: 2026-10-01
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DOCUMENT_TYPES = ("RC_Book", "PUC", "Fitness", "Insurance")


def upgrade() -> None:
    op.create_table(
        "machines",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("machine_number", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_machines_is_active", "machines", ["is_active"])

    op.create_table(
        "machine_documents",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "machine_id", UUID(as_uuid=True), sa.ForeignKey("machines.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("document_type", sa.Enum(*DOCUMENT_TYPES, name="document_type"), nullable=False),
        sa.Column("expiry_date", sa.Date, nullable=False),
        sa.Column("last_renewed_date", sa.Date, nullable=True),
        sa.Column("remarks", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("machine_id", "document_type", name="uq_machine_document_type"),
    )
    op.create_index("idx_documents_expiry", "machine_documents", ["expiry_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("actor", sa.String(255), server_default=""),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("detail", sa.Text, server_default=""),
        sa.Column("ip_address", sa.String(45), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_documents_expiry", table_name="machine_documents")
    op.drop_table("machine_documents")
    op.drop_index("ix_machines_is_active", table_name="machines")
    op.drop_table("machines")
    sa.Enum(name="document_type").drop(op.get_bind(), checkfirst=True)
