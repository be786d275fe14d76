"""Durable outbound email queue.

Jobs are rows in ``email_jobs``. Delivery goes through a MailSender; a failed
attempt is rescheduled with exponential back-off until ``max_attempts`` is
reached, after which the job is parked as failed and never picked again.
"""

import logging
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import clock
from ..config import settings
from ..errors import JobUnavailableError, NotFoundError, TransientDeliveryError, ValidationError
from ..integrations.mailer import DeliveryResult, MailSender
from .models import EmailJob, EmailJobStatus, EmailJobType
from .payloads import parse_payload

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 4000


def enqueue(
    db: Session,
    job_type: EmailJobType | str,
    payload: dict,
    entity_id: UUID | None = None,
    max_attempts: int | None = None,
    scheduled_for: datetime | None = None,
) -> EmailJob:
    """Validate the payload for its job type and persist a pending job."""
    job_type = EmailJobType(job_type)
    model = parse_payload(job_type, payload)
    job = EmailJob(
        job_type=job_type,
        entity_id=entity_id,
        payload=model.model_dump(mode="json"),
        status=EmailJobStatus.PENDING,
        attempts=0,
        max_attempts=max_attempts or settings.email_job_max_attempts,
        scheduled_for=scheduled_for or clock.utc_now(),
    )
    db.add(job)
    db.flush()
    return job


def retry_delay(attempts: int) -> timedelta:
    return timedelta(minutes=settings.email_job_retry_backoff_minutes * 2 ** max(attempts - 1, 0))


def _mark_job_sent(db: Session, job: EmailJob, now: datetime) -> None:
    job.status = EmailJobStatus.COMPLETED
    job.error = None
    job.processed_at = now
    db.commit()


def _mark_job_failure(db: Session, job: EmailJob, error: str, now: datetime, permanent: bool = False) -> None:
    job.error = error[:_MAX_ERROR_LENGTH]
    if permanent or job.attempts >= job.max_attempts:
        job.status = EmailJobStatus.FAILED
        job.processed_at = now
        logger.error("Email job %s failed permanently after %d attempt(s): %s", job.id, job.attempts, error)
    else:
        job.status = EmailJobStatus.PENDING
        job.scheduled_for = now + retry_delay(job.attempts)
        logger.warning(
            "Email job %s attempt %d/%d failed, retrying at %s: %s",
            job.id, job.attempts, job.max_attempts, job.scheduled_for, error,
        )
    db.commit()


def _claim_job(db: Session, job: EmailJob) -> bool:
    """Flip one job from pending to processing, guarded on its stored status."""
    claimed = (
        db.query(EmailJob)
        .filter(EmailJob.id == job.id, EmailJob.status == EmailJobStatus.PENDING)
        .update(
            {EmailJob.status: EmailJobStatus.PROCESSING, EmailJob.attempts: EmailJob.attempts + 1},
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed == 1


def attempt_job(
    db: Session,
    job: EmailJob,
    mailer: MailSender,
    recipients: list[str] | None = None,
    now: datetime | None = None,
) -> DeliveryResult:
    """Deliver one pending job.

    The processing mark is committed before the mail call and the outcome is
    committed after it, so a crash in between leaves a stale ``processing``
    row for release_stale_jobs to pick up. Raises JobUnavailableError when the
    job is not pending or another worker claimed it first.
    """
    if job.status != EmailJobStatus.PENDING or not _claim_job(db, job):
        raise JobUnavailableError(f"Email job {job.id} is {job.status}, only pending jobs can be attempted")

    now = now or clock.utc_now()

    recipients = recipients if recipients is not None else settings.admin_emails_list
    try:
        rendered = parse_payload(job.job_type, job.payload).render()
    except ValidationError as exc:
        _mark_job_failure(db, job, f"{exc.message}: {'; '.join(exc.details)}", now, permanent=True)
        return DeliveryResult(success=False, error=exc.message)

    try:
        if not recipients:
            raise TransientDeliveryError("No admin emails configured")
        result = mailer.send(recipients, rendered.subject, rendered.body)
        if not result.success:
            raise TransientDeliveryError(result.error or "Mail delivery failed")
    except TransientDeliveryError as exc:
        _mark_job_failure(db, job, exc.message, now)
        return DeliveryResult(success=False, error=exc.message)
    except Exception as exc:
        logger.exception("Unexpected error delivering email job %s", job.id)
        _mark_job_failure(db, job, str(exc) or exc.__class__.__name__, now)
        return DeliveryResult(success=False, error=str(exc))

    _mark_job_sent(db, job, now)
    logger.info("Email job %s delivered (%s)", job.id, rendered.subject)
    return result


def process_pending_jobs(
    db: Session,
    mailer: MailSender,
    job_type: EmailJobType | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Retry pending jobs whose back-off has elapsed."""
    now = now or clock.utc_now()
    q = db.query(EmailJob).filter(
        EmailJob.status == EmailJobStatus.PENDING,
        EmailJob.scheduled_for <= now,
    )
    if job_type:
        q = q.filter(EmailJob.job_type == EmailJobType(job_type))
    jobs = (
        q.order_by(EmailJob.scheduled_for.asc(), EmailJob.created_at.asc())
        .limit(limit or settings.email_job_batch_size)
        .with_for_update(skip_locked=True)
        .all()
    )

    counts = {"sent": 0, "failed": 0, "total": 0}
    for job in jobs:
        try:
            result = attempt_job(db, job, mailer, now=now)
        except JobUnavailableError:
            logger.info("Email job %s was claimed by another worker, skipping", job.id)
            continue
        counts["sent" if result.success else "failed"] += 1
        counts["total"] += 1
    return counts


def get_job(db: Session, job_id: UUID | str) -> EmailJob:
    try:
        key = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
    except ValueError as exc:
        raise NotFoundError("Email job not found") from exc
    job = db.query(EmailJob).filter(EmailJob.id == key).first()
    if job is None:
        raise NotFoundError("Email job not found")
    return job


def retry_failed_job(db: Session, job_id: UUID | str, now: datetime | None = None) -> EmailJob:
    """Put a failed job back in the queue with a fresh attempt budget."""
    job = get_job(db, job_id)
    if job.status != EmailJobStatus.FAILED:
        raise ValidationError(f"Only failed jobs can be retried, this one is {EmailJobStatus(job.status).value}")
    job.status = EmailJobStatus.PENDING
    job.attempts = 0
    job.error = None
    job.processed_at = None
    job.scheduled_for = now or clock.utc_now()
    db.flush()
    logger.info("Email job %s queued for retry", job.id)
    return job


def release_stale_jobs(db: Session, now: datetime | None = None, stale_minutes: int | None = None) -> int:
    """Put jobs left in ``processing`` by a crashed worker back in the queue."""
    now = now or clock.utc_now()
    cutoff = now - timedelta(minutes=stale_minutes or settings.email_job_stale_minutes)
    stale = (
        db.query(EmailJob)
        .filter(EmailJob.status == EmailJobStatus.PROCESSING, EmailJob.updated_at < cutoff)
        .all()
    )
    for job in stale:
        if job.attempts >= job.max_attempts:
            job.status = EmailJobStatus.FAILED
            job.processed_at = now
            job.error = job.error or "Abandoned while processing"
        else:
            job.status = EmailJobStatus.PENDING
            job.scheduled_for = now
    db.flush()
    if stale:
        logger.warning("Released %d stale email job(s)", len(stale))
    return len(stale)


def cleanup_old_jobs(db: Session, retention_days: int | None = None, now: datetime | None = None) -> int:
    now = now or clock.utc_now()
    cutoff = now - timedelta(days=retention_days or settings.email_job_retention_days)
    deleted = (
        db.query(EmailJob)
        .filter(
            EmailJob.created_at < cutoff,
            EmailJob.status.in_([EmailJobStatus.COMPLETED, EmailJobStatus.FAILED]),
        )
        .delete(synchronize_session=False)
    )
    db.flush()
    logger.info("Cleaned up %d email job(s) older than %s", deleted, cutoff.date())
    return deleted


def has_completed_job_today(db: Session, job_type: EmailJobType, entity_id: UUID, today: date) -> bool:
    start, end = clock.day_bounds_utc(today)
    return (
        db.query(EmailJob.id)
        .filter(
            EmailJob.job_type == EmailJobType(job_type),
            EmailJob.entity_id == entity_id,
            EmailJob.status == EmailJobStatus.COMPLETED,
            EmailJob.processed_at >= start,
            EmailJob.processed_at < end,
        )
        .first()
        is not None
    )


def list_jobs(
    db: Session,
    job_type: EmailJobType | str | None = None,
    status: EmailJobStatus | str | None = None,
    entity_id: UUID | None = None,
    limit: int = 50,
) -> list[EmailJob]:
    q = db.query(EmailJob)
    try:
        if job_type:
            q = q.filter(EmailJob.job_type == EmailJobType(job_type))
        if status:
            q = q.filter(EmailJob.status == EmailJobStatus(status))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if entity_id:
        q = q.filter(EmailJob.entity_id == entity_id)
    return q.order_by(EmailJob.created_at.desc()).limit(limit).all()


def get_email_stats(db: Session, now: datetime | None = None) -> dict:
    """Job counts by status over the last 7 days, plus the last 24 hours."""
    now = now or clock.utc_now()
    week_ago = now - timedelta(days=7)
    rows = (
        db.query(EmailJob.status, func.count(EmailJob.id))
        .filter(EmailJob.created_at >= week_ago)
        .group_by(EmailJob.status)
        .all()
    )
    by_status = {s.value: 0 for s in EmailJobStatus}
    for status, count in rows:
        by_status[EmailJobStatus(status).value] = count

    last_24h = db.query(func.count(EmailJob.id)).filter(EmailJob.created_at >= now - timedelta(hours=24)).scalar()
    return {"last_7_days": by_status, "total_last_7_days": sum(by_status.values()), "last_24_hours": last_24h or 0}


def job_to_dict(job: EmailJob) -> dict:
    return {
        "id": str(job.id),
        "job_type": EmailJobType(job.job_type).value,
        "entity_id": str(job.entity_id) if job.entity_id else None,
        "status": EmailJobStatus(job.status).value,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "error": job.error,
        "payload": job.payload,
        "scheduled_for": job.scheduled_for.isoformat() if job.scheduled_for else None,
        "processed_at": job.processed_at.isoformat() if job.processed_at else None,
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }
