"""Notification rule store: per-document thresholds and per-type defaults."""

import logging
from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from sqlalchemy import exists
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..documents.models import DocumentType, MachineDocument
from ..documents.service import get_document, parse_document_type
from ..errors import ConfigParseError, NotFoundError, ValidationError
from ..machines.models import Machine
from .models import ALL_DOCUMENT_TYPES, NotificationDefault, NotificationDefaultDay, NotificationLog, NotificationRule

logger = logging.getLogger(__name__)

BUILTIN_FALLBACK_DAYS = [14, 7, 3, 1]


def parse_day_list(values: Iterable, *, positive_only: bool = False) -> list[int]:
    """Validate a list of day thresholds, dropping duplicates but keeping order."""
    if values is None or isinstance(values, (str, bytes)):
        raise ValidationError("Days before must be a list of integers")

    days: list[int] = []
    errors: list[str] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{value!r} is not an integer")
            continue
        if positive_only and value <= 0:
            errors.append(f"{value} must be a positive integer")
            continue
        if value not in days:
            days.append(value)
    if errors:
        raise ValidationError("Invalid days before values", details=errors)
    return days


def parse_day_string(raw: str) -> list[int]:
    """Parse a comma separated day list such as "14,7,3,1"."""
    try:
        days = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise ConfigParseError(f"Unparsable day list {raw!r}") from exc
    if not days or any(d <= 0 for d in days):
        raise ConfigParseError(f"Day list {raw!r} must hold positive integers")
    return days


# ── Per-document rules ────────────────────────────────────────────────


def configure_notifications(db: Session, document_id: UUID | str, days_before: Iterable) -> list[int]:
    """Replace every rule of a document with the given thresholds.

    Zero and negative thresholds are allowed so expired documents can still
    be targeted.
    """
    days = parse_day_list(days_before)
    doc = get_document(db, document_id)

    doc.rules.clear()
    # Deletes must reach the database before re-inserting the same days
    db.flush()
    for d in days:
        doc.rules.append(NotificationRule(days_before=d, is_active=True))
    db.flush()

    logger.info("Configured notifications %s for document %s", days, doc.id)
    return days


def get_notification_settings(db: Session, document_id: UUID | str) -> list[NotificationRule]:
    doc = get_document(db, document_id)
    return (
        db.query(NotificationRule)
        .filter(NotificationRule.document_id == doc.id)
        .order_by(NotificationRule.days_before.desc())
        .all()
    )


# ── Defaults ──────────────────────────────────────────────────────────


class ConfigurationSource(Protocol):
    """Resolves the default thresholds for a document type."""

    def resolve(self, document_type: str) -> list[int]: ...


def _find_default(db: Session, document_type: str) -> NotificationDefault | None:
    return (
        db.query(NotificationDefault)
        .options(joinedload(NotificationDefault.days))
        .filter(
            NotificationDefault.document_type == str(document_type),
            NotificationDefault.is_active.is_(True),
        )
        .first()
    )


def _stored_days(default: NotificationDefault) -> list[int]:
    days = default.days_before
    if not days or any(d is None or d <= 0 for d in days):
        raise ConfigParseError(f"Default for {default.document_type} holds an invalid day list: {days}")
    return days


class DatabaseConfigurationSource:
    """Type-specific default, then the ALL default, then the configured fallback."""

    def __init__(self, db: Session, fallback: str | None = None) -> None:
        self.db = db
        self.fallback = fallback if fallback is not None else settings.default_notification_days

    def fallback_days(self) -> list[int]:
        try:
            return parse_day_string(self.fallback)
        except ConfigParseError as exc:
            logger.warning("%s, using %s", exc.message, BUILTIN_FALLBACK_DAYS)
            return list(BUILTIN_FALLBACK_DAYS)

    def resolve(self, document_type: str) -> list[int]:
        for key in (str(document_type), ALL_DOCUMENT_TYPES):
            default = _find_default(self.db, key)
            if default is None:
                continue
            try:
                return _stored_days(default)
            except ConfigParseError as exc:
                logger.warning("%s, skipping", exc.message)
        return self.fallback_days()


def get_notification_defaults(db: Session, document_type: str | None = None) -> list[NotificationDefault]:
    q = (
        db.query(NotificationDefault)
        .options(joinedload(NotificationDefault.days))
        .filter(NotificationDefault.is_active.is_(True))
    )
    if document_type:
        q = q.filter(NotificationDefault.document_type == str(document_type))
    return q.order_by(NotificationDefault.document_type.asc()).all()


def _parse_default_key(document_type: str | None) -> str:
    if document_type == ALL_DOCUMENT_TYPES:
        return ALL_DOCUMENT_TYPES
    if not document_type:
        raise ValidationError("Document type is required")
    return parse_document_type(document_type).value


def update_notification_defaults(
    db: Session,
    document_type: str,
    days_before: Iterable,
    actor: str = "system",
) -> NotificationDefault:
    """Create or replace the default day list for a type (or ALL)."""
    key = _parse_default_key(document_type)
    days = parse_day_list(days_before, positive_only=True)
    if not days:
        raise ValidationError("Days before must be a non-empty array")

    default = db.query(NotificationDefault).filter(NotificationDefault.document_type == key).first()
    if default is None:
        default = NotificationDefault(document_type=key, is_active=True)
        db.add(default)
    else:
        default.days.clear()
        db.flush()

    default.is_active = True
    default.created_by = actor
    for position, d in enumerate(days):
        default.days.append(NotificationDefaultDay(position=position, days_before=d))
    db.flush()

    logger.info("Notification defaults for %s set to %s by %s", key, days, actor)
    return default


def _rule_less_documents(db: Session, document_type: DocumentType) -> list[MachineDocument]:
    has_rules = exists().where(NotificationRule.document_id == MachineDocument.id)
    return (
        db.query(MachineDocument)
        .filter(MachineDocument.document_type == document_type, ~has_rules)
        .all()
    )


def _seed(db: Session, docs: list[MachineDocument], days: list[int]) -> int:
    for doc in docs:
        for d in days:
            db.add(NotificationRule(document_id=doc.id, days_before=d, is_active=True))
    db.flush()
    return len(docs)


def apply_default_notifications(
    db: Session,
    document_type: str,
    source: ConfigurationSource | None = None,
) -> int:
    """Give every rule-less document of a type the resolved default thresholds.

    Documents that already have rules are left alone. A malformed stored list
    is skipped with a warning and resolution moves on to the next default.
    Returns how many documents were configured.
    """
    doc_type = parse_document_type(document_type)
    if _find_default(db, doc_type.value) is None and _find_default(db, ALL_DOCUMENT_TYPES) is None:
        raise NotFoundError("No default settings found for this document type")
    days = (source or DatabaseConfigurationSource(db)).resolve(doc_type.value)

    count = _seed(db, _rule_less_documents(db, doc_type), days)
    logger.info("Applied default notifications %s to %d %s documents", days, count, doc_type)
    return count


def initialize_default_notifications(
    db: Session,
    document_type: str | None = None,
    source: ConfigurationSource | None = None,
) -> dict[str, int]:
    """Seed rule-less documents of every type (or one type) from resolved defaults."""
    source = source or DatabaseConfigurationSource(db)
    types = [parse_document_type(document_type)] if document_type else list(DocumentType)

    configured: dict[str, int] = {}
    for doc_type in types:
        days = source.resolve(doc_type.value)
        configured[doc_type.value] = _seed(db, _rule_less_documents(db, doc_type), days)
    logger.info("Initialized default notifications: %s", configured)
    return configured


# ── History ───────────────────────────────────────────────────────────


def get_notification_history(
    db: Session,
    document_id: UUID | str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict]:
    q = (
        db.query(NotificationLog, MachineDocument, Machine)
        .join(MachineDocument, NotificationLog.document_id == MachineDocument.id)
        .join(Machine, MachineDocument.machine_id == Machine.id)
    )
    if document_id:
        q = q.filter(NotificationLog.document_id == get_document(db, document_id).id)
    rows = (
        q.order_by(NotificationLog.notification_date.desc(), NotificationLog.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": str(log.id),
            "document_id": str(doc.id),
            "machine_number": machine.machine_number,
            "document_type": DocumentType(doc.document_type).value,
            "days_before": log.days_before,
            "notification_date": log.notification_date.isoformat(),
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log, doc, machine in rows
    ]
