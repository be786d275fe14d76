"""Document registry: machine compliance documents and their expiry status.

Status and days-until-expiry are computed against the caller's "today" on
every read; nothing derived from the date is stored.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session, joinedload, selectinload

from .. import clock
from ..errors import NotFoundError, ValidationError
from ..machines.models import Machine
from .models import STATUS_BANDS, DocumentType, ExpiryStatus, MachineDocument

logger = logging.getLogger(__name__)

STATUS_FILTERS = {status.value.lower(): status for status in ExpiryStatus}
EXPIRING_SOON = "expiring_soon"


@dataclass(frozen=True)
class UpsertResult:
    id: UUID
    action: str  # "created" | "updated"


@dataclass(frozen=True)
class BulkRenewResult:
    renewed: int
    not_found: list[str]


def _to_uuid(value: UUID | str | None) -> UUID | None:
    """Convert string to UUID, returning None on failure."""
    if isinstance(value, UUID):
        return value
    if not value:
        return None
    try:
        return UUID(str(value))
    except (ValueError, AttributeError):
        return None


def parse_date(value: date | str | None, field: str, errors: list[str] | None = None) -> date | None:
    """Parse an ISO date. Appends to ``errors`` when given, otherwise raises."""
    problem = None
    parsed = None
    if value is None or value == "":
        problem = f"{field} is required"
    elif isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    else:
        text = str(value).strip()
        try:
            # Full timestamps are accepted, trailing text is not
            parsed = date.fromisoformat(text) if len(text) <= 10 else datetime.fromisoformat(text).date()
        except ValueError:
            problem = f"Valid {field} is required (YYYY-MM-DD)"

    if problem:
        if errors is None:
            raise ValidationError(problem, details=[problem])
        errors.append(problem)
    return parsed


def parse_document_type(value: str | DocumentType | None, errors: list[str] | None = None) -> DocumentType | None:
    try:
        return DocumentType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in DocumentType)
        problem = f"Invalid document type. Must be one of: {allowed}"
        if errors is None:
            raise ValidationError(problem, details=[problem]) from None
        errors.append(problem)
        return None


def get_machine(db: Session, machine_id: UUID | str) -> Machine:
    uid = _to_uuid(machine_id)
    machine = db.query(Machine).filter(Machine.id == uid).first() if uid else None
    if not machine:
        raise NotFoundError("Machine not found")
    return machine


def get_document(db: Session, document_id: UUID | str) -> MachineDocument:
    uid = _to_uuid(document_id)
    doc = (
        db.query(MachineDocument)
        .options(joinedload(MachineDocument.machine), selectinload(MachineDocument.rules))
        .filter(MachineDocument.id == uid)
        .first()
        if uid
        else None
    )
    if not doc:
        raise NotFoundError("Document not found")
    return doc


def describe_document(doc: MachineDocument, today: date) -> dict:
    """Stored fields plus the live expiry status for API responses."""
    days = doc.days_until_expiry(today)
    return {
        "id": str(doc.id),
        "machine_id": str(doc.machine_id),
        "machine_number": doc.machine.machine_number if doc.machine else None,
        "machine_name": doc.machine.name if doc.machine else None,
        "document_type": DocumentType(doc.document_type).value,
        "expiry_date": doc.expiry_date.isoformat(),
        "last_renewed_date": doc.last_renewed_date.isoformat() if doc.last_renewed_date else None,
        "remarks": doc.remarks,
        "days_until_expiry": days,
        "status": doc.status(today).value,
        "notification_days": sorted(r.days_before for r in doc.rules if r.is_active),
        "created_at": doc.created_at.isoformat() if doc.created_at else None,
        "updated_at": doc.updated_at.isoformat() if doc.updated_at else None,
    }


def upsert_document(
    db: Session,
    machine_id: UUID | str,
    document_type: str | DocumentType,
    expiry_date: date | str | None,
    last_renewed_date: date | str | None = None,
    remarks: str | None = None,
) -> UpsertResult:
    """Create the (machine, type) document or update the existing one."""
    errors: list[str] = []
    doc_type = parse_document_type(document_type, errors)
    expiry = parse_date(expiry_date, "expiry date", errors)
    renewed = None
    if last_renewed_date not in (None, ""):
        renewed = parse_date(last_renewed_date, "last renewed date", errors)
    if expiry and renewed and renewed > expiry:
        errors.append("Last renewed date cannot be after the expiry date")
    if errors:
        raise ValidationError("Validation failed", details=errors)

    machine = get_machine(db, machine_id)
    remarks = (remarks or "").strip() or None

    doc = (
        db.query(MachineDocument)
        .filter(MachineDocument.machine_id == machine.id, MachineDocument.document_type == doc_type)
        .first()
    )
    if doc:
        doc.expiry_date = expiry
        doc.last_renewed_date = renewed
        doc.remarks = remarks
        db.flush()
        logger.info("Updated %s for machine %s (expires %s)", doc_type, machine.machine_number, expiry)
        return UpsertResult(id=doc.id, action="updated")

    doc = MachineDocument(
        machine_id=machine.id,
        document_type=doc_type,
        expiry_date=expiry,
        last_renewed_date=renewed,
        remarks=remarks,
    )
    db.add(doc)
    db.flush()
    logger.info("Created %s for machine %s (expires %s)", doc_type, machine.machine_number, expiry)
    return UpsertResult(id=doc.id, action="created")


def renew_document(
    db: Session,
    document_id: UUID | str,
    new_expiry_date: date | str | None,
    remarks: str | None = None,
    today: date | None = None,
) -> MachineDocument:
    """Start a new renewal cycle and forget which thresholds already fired.

    The expiry update and the log purge are flushed together; the caller's
    commit makes them one transaction.
    """
    today = today or clock.today()
    new_expiry = parse_date(new_expiry_date, "new expiry date")

    doc = get_document(db, document_id)
    doc.expiry_date = new_expiry
    doc.last_renewed_date = today
    if remarks is not None:
        doc.remarks = remarks.strip() or None
    purged = len(doc.logs)
    doc.logs.clear()
    db.flush()
    logger.info("Renewed document %s until %s (%d notification logs cleared)", doc.id, new_expiry, purged)
    return doc


def bulk_renew(
    db: Session,
    document_ids: list[str],
    new_expiry_dates: list[str],
    remarks: str | None = None,
    today: date | None = None,
) -> BulkRenewResult:
    """Renew many documents: dates pair up by index, or the first date applies to all."""
    if not document_ids:
        raise ValidationError("Document IDs are required")
    if not new_expiry_dates:
        raise ValidationError("New expiry dates are required")

    errors: list[str] = []
    dates = [parse_date(value, "new expiry date", errors) for value in new_expiry_dates]
    if errors:
        raise ValidationError("Validation failed", details=errors)

    renewed = 0
    not_found: list[str] = []
    for idx, document_id in enumerate(document_ids):
        expiry = dates[idx] if idx < len(dates) else dates[0]
        try:
            renew_document(db, document_id, expiry, remarks, today=today)
        except NotFoundError:
            not_found.append(str(document_id))
            continue
        renewed += 1
    return BulkRenewResult(renewed=renewed, not_found=not_found)


def delete_document(db: Session, document_id: UUID | str) -> None:
    """Delete a document together with its rules and notification logs."""
    doc = get_document(db, document_id)
    db.delete(doc)
    db.flush()


def list_documents(
    db: Session,
    *,
    machine_id: UUID | str | None = None,
    document_type: str | None = None,
    status: str | None = None,
    expiring_within_days: int | None = None,
    limit: int | None = None,
    offset: int = 0,
    today: date | None = None,
) -> list[dict]:
    today = today or clock.today()
    q = db.query(MachineDocument).options(
        joinedload(MachineDocument.machine), selectinload(MachineDocument.rules)
    )

    if machine_id:
        uid = _to_uuid(machine_id)
        if uid is None:
            raise ValidationError("Valid machine ID is required")
        q = q.filter(MachineDocument.machine_id == uid)
    if document_type:
        q = q.filter(MachineDocument.document_type == parse_document_type(document_type))
    if status:
        key = status.strip().lower()
        if key == EXPIRING_SOON:
            q = q.filter(MachineDocument.expiry_date <= today + timedelta(days=14))
        elif key in STATUS_FILTERS:
            low, high = STATUS_BANDS[STATUS_FILTERS[key]]
            if low is not None:
                q = q.filter(MachineDocument.expiry_date >= today + timedelta(days=low))
            if high is not None:
                q = q.filter(MachineDocument.expiry_date <= today + timedelta(days=high))
        else:
            allowed = ", ".join([*STATUS_FILTERS, EXPIRING_SOON])
            raise ValidationError(f"Invalid status filter. Must be one of: {allowed}")
    if expiring_within_days is not None:
        q = q.filter(MachineDocument.expiry_date <= today + timedelta(days=expiring_within_days))

    q = q.order_by(MachineDocument.expiry_date.asc(), MachineDocument.id.asc())
    if offset:
        q = q.offset(offset)
    if limit:
        q = q.limit(limit)
    return [describe_document(doc, today) for doc in q.all()]


def get_expiring_documents(db: Session, days_ahead: int = 14, today: date | None = None) -> list[MachineDocument]:
    """Documents of active machines expiring between today and today + days_ahead."""
    today = today or clock.today()
    return (
        db.query(MachineDocument)
        .join(Machine, MachineDocument.machine_id == Machine.id)
        .options(joinedload(MachineDocument.machine), selectinload(MachineDocument.rules))
        .filter(
            Machine.is_active.is_(True),
            MachineDocument.expiry_date >= today,
            MachineDocument.expiry_date <= today + timedelta(days=days_ahead),
        )
        .order_by(MachineDocument.expiry_date.asc())
        .all()
    )


def get_document_stats(db: Session, today: date | None = None) -> dict:
    today = today or clock.today()
    rows = (
        db.query(MachineDocument.expiry_date)
        .join(Machine, MachineDocument.machine_id == Machine.id)
        .filter(Machine.is_active.is_(True))
        .all()
    )
    days = [(expiry - today).days for (expiry,) in rows]
    return {
        "total_documents": len(days),
        "expired_documents": sum(1 for d in days if d <= 0),
        "expiring_this_week": sum(1 for d in days if 1 <= d <= 7),
        "expiring_this_month": sum(1 for d in days if 8 <= d <= 30),
        "average_days_until_expiry": round(sum(days) / len(days)) if days else 0,
    }
