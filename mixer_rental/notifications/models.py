"""Notification rules, per-type defaults and the dedup log."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base

ALL_DOCUMENT_TYPES = "ALL"


class NotificationRule(Base):
    """One reminder threshold configured on one document."""

    __tablename__ = "notification_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(
        UUID(as_uuid=True),
        ForeignKey("machine_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    days_before = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    document = relationship("MachineDocument", back_populates="rules")

    __table_args__ = (
        UniqueConstraint("document_id", "days_before", name="uq_rule_document_days"),
        Index("idx_rules_days_before", "days_before"),
    )


class NotificationDefault(Base):
    """Template day list for a document type, or for every type ("ALL")."""

    __tablename__ = "notification_defaults"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_type = Column(String(20), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255), default="")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    days = relationship(
        "NotificationDefaultDay",
        back_populates="default",
        cascade="all, delete-orphan",
        order_by="NotificationDefaultDay.position",
    )

    @property
    def days_before(self) -> list[int]:
        return [d.days_before for d in self.days]


class NotificationDefaultDay(Base):
    __tablename__ = "notification_default_days"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    default_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notification_defaults.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = Column(Integer, nullable=False)
    days_before = Column(Integer, nullable=False)

    default = relationship("NotificationDefault", back_populates="days")

    __table_args__ = (UniqueConstraint("default_id", "days_before", name="uq_default_days"),)


class NotificationLog(Base):
    """Claim marker: a threshold already fired for a document on a given day.

    The unique constraint is what keeps two overlapping evaluator runs from
    both dispatching the same reminder.
    """

    __tablename__ = "notification_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(
        UUID(as_uuid=True),
        ForeignKey("machine_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    days_before = Column(Integer, nullable=False)
    notification_date = Column(Date, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    document = relationship("MachineDocument", back_populates="logs")

    __table_args__ = (
        UniqueConstraint("document_id", "days_before", "notification_date", name="uq_notification_log"),
        Index("idx_notification_logs_date", "notification_date"),
    )
