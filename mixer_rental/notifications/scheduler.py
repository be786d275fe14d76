"""Expiry notification cycle and the background loop that drives it."""

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime

from sqlalchemy.orm import Session

from .. import clock
from ..config import settings
from ..database.base import SessionLocal
from ..documents.models import DocumentType, MachineDocument
from ..documents.service import get_document, get_expiring_documents
from ..email_jobs import service as email_jobs
from ..email_jobs.models import EmailJob, EmailJobType
from ..errors import JobUnavailableError, NotFoundError
from ..integrations.mailer import MailSender
from .evaluator import DueNotification, check_notifications_due, release_claim

logger = logging.getLogger(__name__)


def run_expiry_cycle(
    db: Session,
    mailer: MailSender,
    today: date | None = None,
    now: datetime | None = None,
) -> dict:
    """Evaluate, claim, enqueue and deliver today's reminders.

    Claims and their jobs are committed together before any mail goes out, so
    a crash during delivery leaves pending jobs rather than lost reminders.
    """
    today = today or clock.today()
    now = now or clock.utc_now()

    due = check_notifications_due(db, today)
    queued: list[tuple[DueNotification, EmailJob]] = []
    for notification in due:
        try:
            with db.begin_nested():
                job = email_jobs.enqueue(
                    db,
                    EmailJobType.DOCUMENT_EXPIRY,
                    notification.payload(),
                    entity_id=notification.document_id,
                    scheduled_for=now,
                )
        except Exception:
            logger.exception(
                "Could not queue %sd reminder for document %s, releasing its claim",
                notification.days_before, notification.document_id,
            )
            release_claim(db, notification.document_id, notification.days_before, today)
            continue
        queued.append((notification, job))
    db.commit()
    skipped = len(due) - len(queued)
    due = [notification for notification, _ in queued]

    sent = failed = 0
    for notification, job in queued:
        try:
            result = email_jobs.attempt_job(db, job, mailer, now=now)
        except JobUnavailableError:
            logger.info("Reminder job %s was picked up by another worker", job.id)
            continue
        if result.success:
            sent += 1
        else:
            failed += 1
            logger.warning(
                "Reminder for %s %s (%sd) not delivered yet: %s",
                notification.machine_number, notification.document_type, notification.days_before, result.error,
            )

    retried = email_jobs.process_pending_jobs(db, mailer, EmailJobType.DOCUMENT_EXPIRY, now=now)
    released = email_jobs.release_stale_jobs(db, now=now)
    db.commit()

    logger.info(
        "Expiry cycle for %s: %d due, %d sent, %d failed, %d skipped, %d retried",
        today, len(due), sent, failed, skipped, retried["total"],
    )
    return {
        "due": due,
        "sent": sent,
        "failed": failed,
        "skipped": skipped,
        "total": len(due),
        "retried": retried,
        "released": released,
    }


def _alert_payload(doc: MachineDocument, today: date) -> dict:
    return {
        "document_id": str(doc.id),
        "machine_number": doc.machine.machine_number,
        "machine_name": doc.machine.name or "",
        "document_type": DocumentType(doc.document_type).value,
        "expiry_date": doc.expiry_date.isoformat(),
        "days_until_expiry": doc.days_until_expiry(today),
    }


def send_expiry_alerts(
    db: Session,
    mailer: MailSender,
    document_ids: list[str] | None = None,
    force_send: bool = False,
    today: date | None = None,
    now: datetime | None = None,
) -> dict:
    """Operator-triggered alerts, outside the threshold rules.

    Every attempt is recorded as a single-shot job. Unless ``force_send`` is
    set, a document that already had an alert delivered today is skipped.
    """
    today = today or clock.today()
    now = now or clock.utc_now()

    not_found: list[str] = []
    if document_ids is not None:
        docs = []
        for document_id in document_ids:
            try:
                docs.append(get_document(db, document_id))
            except NotFoundError:
                not_found.append(str(document_id))
    else:
        docs = get_expiring_documents(db, settings.expiring_window_days, today=today)

    sent = failed = skipped = 0
    for doc in docs:
        if not force_send and email_jobs.has_completed_job_today(db, EmailJobType.DOCUMENT_EXPIRY, doc.id, today):
            skipped += 1
            continue
        job = email_jobs.enqueue(
            db,
            EmailJobType.DOCUMENT_EXPIRY,
            _alert_payload(doc, today),
            entity_id=doc.id,
            max_attempts=1,
            scheduled_for=now,
        )
        db.commit()
        try:
            result = email_jobs.attempt_job(db, job, mailer, now=now)
        except JobUnavailableError:
            logger.info("Alert job %s was picked up by another worker", job.id)
            continue
        if result.success:
            sent += 1
        else:
            failed += 1

    logger.info(
        "Manual expiry alerts: %d sent, %d failed, %d skipped, %d not found",
        sent, failed, skipped, len(not_found),
    )
    return {
        "sent": sent,
        "failed": failed,
        "skipped": skipped,
        "not_found": not_found,
        "total": len(docs),
    }


class ExpiryScheduler:
    """Runs the expiry cycle on a fixed interval inside the application's event loop.

    Each tick runs in a worker thread with its own session. A failing tick is
    logged and the loop waits for the next one.
    """

    def __init__(
        self,
        mailer: MailSender,
        interval_seconds: int | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.mailer = mailer
        self.interval_seconds = interval_seconds or settings.scheduler_interval_seconds
        self.session_factory = session_factory
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._last_cleanup: date | None = None

    def run_once(self, today: date | None = None, now: datetime | None = None) -> dict:
        today = today or clock.today()
        db = self.session_factory()
        try:
            result = run_expiry_cycle(db, self.mailer, today=today, now=now)
            if self._last_cleanup != today:
                email_jobs.cleanup_old_jobs(db, now=now)
                db.commit()
                self._last_cleanup = today
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _loop(self) -> None:
        assert self._stop_event is not None
        logger.info("Expiry scheduler started (every %ds)", self.interval_seconds)
        while not self._stop_event.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Expiry scheduler tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue
        logger.info("Expiry scheduler stopped")

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="expiry-scheduler")

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


def due_notifications_to_dicts(due: list[DueNotification]) -> list[dict]:
    return [
        {**n.payload(), "machine_id": str(n.machine_id)}
        for n in due
    ]
