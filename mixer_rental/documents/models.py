"""Compliance document model and derived expiry status."""

import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base


class DocumentType(enum.StrEnum):
    RC_BOOK = "RC_Book"
    PUC = "PUC"
    FITNESS = "Fitness"
    INSURANCE = "Insurance"


class ExpiryStatus(enum.StrEnum):
    """Urgency band derived from days until expiry."""

    EXPIRED = "EXPIRED"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    NOTICE = "NOTICE"
    OK = "OK"


# Inclusive (low, high) day ranges per band; None means unbounded
STATUS_BANDS: dict[ExpiryStatus, tuple[int | None, int | None]] = {
    ExpiryStatus.EXPIRED: (None, 0),
    ExpiryStatus.CRITICAL: (1, 3),
    ExpiryStatus.WARNING: (4, 7),
    ExpiryStatus.NOTICE: (8, 14),
    ExpiryStatus.OK: (15, None),
}


def status_for_days(days_until_expiry: int) -> ExpiryStatus:
    if days_until_expiry <= 0:
        return ExpiryStatus.EXPIRED
    if days_until_expiry <= 3:
        return ExpiryStatus.CRITICAL
    if days_until_expiry <= 7:
        return ExpiryStatus.WARNING
    if days_until_expiry <= 14:
        return ExpiryStatus.NOTICE
    return ExpiryStatus.OK


class MachineDocument(Base):
    __tablename__ = "machine_documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    machine_id = Column(
        UUID(as_uuid=True),
        ForeignKey("machines.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_type = Column(
        SQLEnum(DocumentType, values_callable=lambda e: [s.value for s in e], name="document_type"),
        nullable=False,
    )
    expiry_date = Column(Date, nullable=False)
    last_renewed_date = Column(Date, nullable=True)
    remarks = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    machine = relationship("Machine", back_populates="documents")
    rules = relationship("NotificationRule", back_populates="document", cascade="all, delete-orphan")
    logs = relationship("NotificationLog", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("machine_id", "document_type", name="uq_machine_document_type"),
        Index("idx_documents_expiry", "expiry_date"),
    )

    def days_until_expiry(self, today: date) -> int:
        return (self.expiry_date - today).days

    def status(self, today: date) -> ExpiryStatus:
        return status_for_days(self.days_until_expiry(today))
