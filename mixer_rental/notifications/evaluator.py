"""Due-notification evaluator.

A reminder is due when a document's days-until-expiry equals one of its
active thresholds exactly and no log row exists for that threshold today.
Matches are claimed by writing the log row before they are returned, so a
reminder is handed out at most once per document, threshold and day.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import and_, exists, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..documents.models import DocumentType, MachineDocument
from ..machines.models import Machine
from .models import NotificationLog, NotificationRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueNotification:
    document_id: UUID
    machine_id: UUID
    machine_number: str
    machine_name: str
    document_type: str
    expiry_date: date
    days_before: int
    days_until_expiry: int

    def payload(self) -> dict:
        return {
            "document_id": str(self.document_id),
            "machine_number": self.machine_number,
            "machine_name": self.machine_name,
            "document_type": self.document_type,
            "expiry_date": self.expiry_date.isoformat(),
            "days_until_expiry": self.days_until_expiry,
            "days_before": self.days_before,
        }


def claim_notification(db: Session, document_id: UUID, days_before: int, notification_date: date) -> bool:
    """Insert the log row for one threshold. False when it was already claimed."""
    try:
        with db.begin_nested():
            db.add(NotificationLog(
                document_id=document_id,
                days_before=days_before,
                notification_date=notification_date,
            ))
    except IntegrityError:
        logger.debug("Notification %s/%sd already claimed for %s", document_id, days_before, notification_date)
        return False
    return True


def release_claim(db: Session, document_id: UUID, days_before: int, notification_date: date) -> None:
    """Drop an uncommitted claim so a later tick can hand the reminder out again."""
    db.query(NotificationLog).filter(
        NotificationLog.document_id == document_id,
        NotificationLog.days_before == days_before,
        NotificationLog.notification_date == notification_date,
    ).delete()


def check_notifications_due(db: Session, today: date) -> list[DueNotification]:
    """Find and claim every reminder due today.

    The caller commits; until then the claims are only visible to this
    session.
    """
    thresholds = [
        d for (d,) in db.query(NotificationRule.days_before)
        .filter(NotificationRule.is_active.is_(True))
        .distinct()
        .all()
    ]
    if not thresholds:
        return []

    already_logged = exists().where(
        NotificationLog.document_id == MachineDocument.id,
        NotificationLog.days_before == NotificationRule.days_before,
        NotificationLog.notification_date == today,
    )
    # Equality on dates keeps the comparison portable across backends
    expiry_matches = or_(*[
        and_(NotificationRule.days_before == d, MachineDocument.expiry_date == today + timedelta(days=d))
        for d in thresholds
    ])

    rows = (
        db.query(MachineDocument, Machine, NotificationRule.days_before)
        .join(Machine, MachineDocument.machine_id == Machine.id)
        .join(NotificationRule, NotificationRule.document_id == MachineDocument.id)
        .filter(
            Machine.is_active.is_(True),
            NotificationRule.is_active.is_(True),
            expiry_matches,
            ~already_logged,
        )
        .order_by(MachineDocument.expiry_date.asc(), NotificationRule.days_before.desc())
        .all()
    )

    due: list[DueNotification] = []
    for doc, machine, days_before in rows:
        try:
            if not claim_notification(db, doc.id, days_before, today):
                continue
        except SQLAlchemyError:
            logger.exception("Could not claim %sd notification for document %s", days_before, doc.id)
            continue
        due.append(DueNotification(
            document_id=doc.id,
            machine_id=machine.id,
            machine_number=machine.machine_number,
            machine_name=machine.name or "",
            document_type=DocumentType(doc.document_type).value,
            expiry_date=doc.expiry_date,
            days_before=days_before,
            days_until_expiry=doc.days_until_expiry(today),
        ))

    if due:
        logger.info("%d notification(s) due on %s", len(due), today)
    return due
