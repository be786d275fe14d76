"""Persisted outbound email work items."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, Text
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class EmailJobType(enum.StrEnum):
    DOCUMENT_EXPIRY = "document_expiry"


class EmailJobStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmailJob(Base):
    __tablename__ = "email_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type = Column(
        SQLEnum(EmailJobType, values_callable=lambda e: [s.value for s in e], name="email_job_type"),
        nullable=False,
    )
    entity_id = Column(UUID(as_uuid=True), nullable=True)  # e.g. the machine document
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SQLEnum(EmailJobStatus, values_callable=lambda e: [s.value for s in e], name="email_job_status"),
        nullable=False,
        default=EmailJobStatus.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error = Column(Text, nullable=True)

    scheduled_for = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_email_jobs_status_scheduled", "status", "scheduled_for"),
        Index("idx_email_jobs_entity", "job_type", "entity_id"),
        Index("idx_email_jobs_created", "created_at"),
    )
