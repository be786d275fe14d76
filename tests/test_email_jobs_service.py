"""Tests for the email job queue."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import update

from mixer_rental.config import settings
from mixer_rental.email_jobs.models import EmailJob, EmailJobStatus, EmailJobType
from mixer_rental.email_jobs.payloads import DocumentExpiryPayload, parse_payload
from mixer_rental.email_jobs.service import (
    attempt_job,
    cleanup_old_jobs,
    enqueue,
    get_email_stats,
    has_completed_job_today,
    list_jobs,
    process_pending_jobs,
    release_stale_jobs,
    retry_failed_job,
)
from mixer_rental.errors import JobUnavailableError, NotFoundError, ValidationError

from conftest import NOW, TODAY, FakeMailSender


def _payload(**overrides) -> dict:
    data = {
        "document_id": str(uuid.uuid4()),
        "machine_number": "MX-101",
        "machine_name": "Transit Mixer",
        "document_type": "Insurance",
        "expiry_date": "2026-03-17",
        "days_until_expiry": 7,
        "days_before": 7,
    }
    data.update(overrides)
    return data


class TestPayloads:
    def test_render_subject_and_body(self):
        rendered = DocumentExpiryPayload.model_validate(_payload()).render()
        assert rendered.subject == "Document Expiry Alert - MX-101 (Insurance)"
        assert "expires in 7 days" in rendered.body
        assert "17/03/2026" in rendered.body

    def test_render_expired(self):
        rendered = DocumentExpiryPayload.model_validate(_payload(days_until_expiry=-2)).render()
        assert "EXPIRED" in rendered.body

    def test_escapes_html(self):
        rendered = DocumentExpiryPayload.model_validate(_payload(machine_name="<b>Pump</b>")).render()
        assert "<b>Pump</b>" not in rendered.body
        assert "&lt;b&gt;Pump&lt;/b&gt;" in rendered.body

    def test_invalid_payload(self):
        with pytest.raises(ValidationError) as exc:
            parse_payload(EmailJobType.DOCUMENT_EXPIRY, {"machine_number": "MX-1"})
        assert any(d.startswith("document_id") for d in exc.value.details)


class TestEnqueue:
    def test_creates_pending_job(self, db_session):
        entity = uuid.uuid4()
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), entity_id=entity)
        db_session.commit()

        assert job.status == EmailJobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == settings.email_job_max_attempts
        assert job.entity_id == entity
        assert job.payload["machine_number"] == "MX-101"

    def test_rejects_invalid_payload(self, db_session):
        with pytest.raises(ValidationError):
            enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, {"nope": 1})
        assert db_session.query(EmailJob).count() == 0


class TestAttemptJob:
    def test_success_completes(self, db_session, mailer):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()

        result = attempt_job(db_session, job, mailer, now=NOW)

        assert result.success
        assert job.status == EmailJobStatus.COMPLETED
        assert job.attempts == 1
        assert job.error is None
        assert mailer.sent[0]["to"] == ["ops@rental.test", "fleet@rental.test"]
        assert mailer.sent[0]["subject"] == "Document Expiry Alert - MX-101 (Insurance)"

    def test_failure_reschedules_with_backoff(self, db_session, failing_mailer, monkeypatch):
        monkeypatch.setattr(settings, "email_job_retry_backoff_minutes", 15)
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()

        result = attempt_job(db_session, job, failing_mailer, now=NOW)

        assert not result.success
        assert job.status == EmailJobStatus.PENDING
        assert job.attempts == 1
        assert job.error == "SMTP connection refused"
        assert process_pending_jobs(db_session, failing_mailer, now=NOW)["total"] == 0
        assert process_pending_jobs(db_session, failing_mailer, now=NOW + timedelta(minutes=15))["total"] == 1
        assert job.attempts == 2

    def test_three_failures_end_failed_and_are_not_picked_again(self, db_session, failing_mailer):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), max_attempts=3)
        db_session.commit()

        later = NOW
        attempt_job(db_session, job, failing_mailer, now=later)
        for _ in range(2):
            later += timedelta(days=1)
            process_pending_jobs(db_session, failing_mailer, now=later)

        assert job.status == EmailJobStatus.FAILED
        assert job.attempts == 3
        assert job.processed_at is not None
        assert process_pending_jobs(db_session, failing_mailer, now=later + timedelta(days=30))["total"] == 0
        assert failing_mailer.calls == 3

    def test_missing_recipients_is_a_failed_attempt(self, db_session, mailer, monkeypatch):
        monkeypatch.setattr(settings, "admin_emails", "")
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()

        result = attempt_job(db_session, job, mailer, now=NOW)

        assert result.error == "No admin emails configured"
        assert job.status == EmailJobStatus.PENDING
        assert mailer.calls == 0

    def test_only_pending_jobs_can_be_attempted(self, db_session, mailer):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()
        attempt_job(db_session, job, mailer, now=NOW)

        with pytest.raises(ValidationError):
            attempt_job(db_session, job, mailer, now=NOW)

    def test_job_claimed_elsewhere_is_not_sent(self, db_session, mailer):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()
        assert job.status == EmailJobStatus.PENDING
        # Another worker flips the row while this session still holds it as pending
        table = EmailJob.__table__
        db_session.connection().execute(
            update(table).where(table.c.id == job.id).values(status=EmailJobStatus.PROCESSING, attempts=1)
        )

        with pytest.raises(JobUnavailableError):
            attempt_job(db_session, job, mailer, now=NOW)

        assert mailer.calls == 0
        db_session.refresh(job)
        assert job.attempts == 1

    def test_mailer_exception_is_recorded(self, db_session):
        class ExplodingMailer:
            def send(self, to, subject, html_body):
                raise RuntimeError("socket closed")

        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()

        result = attempt_job(db_session, job, ExplodingMailer(), now=NOW)

        assert not result.success
        assert job.error == "socket closed"
        assert job.status == EmailJobStatus.PENDING

    def test_corrupt_payload_fails_permanently(self, db_session, mailer):
        job = EmailJob(job_type=EmailJobType.DOCUMENT_EXPIRY, payload={"broken": True}, scheduled_for=NOW)
        db_session.add(job)
        db_session.commit()

        attempt_job(db_session, job, mailer, now=NOW)

        assert job.status == EmailJobStatus.FAILED
        assert mailer.calls == 0


class TestRetryFailedJob:
    def test_failed_job_goes_back_to_the_queue(self, db_session, failing_mailer, mailer):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), max_attempts=1)
        db_session.commit()
        attempt_job(db_session, job, failing_mailer, now=NOW)
        assert job.status == EmailJobStatus.FAILED

        retry_failed_job(db_session, str(job.id), now=NOW + timedelta(hours=1))
        db_session.commit()

        assert (job.status, job.attempts, job.error, job.processed_at) == (EmailJobStatus.PENDING, 0, None, None)
        assert process_pending_jobs(db_session, mailer, now=NOW + timedelta(hours=1))["sent"] == 1
        assert job.status == EmailJobStatus.COMPLETED

    def test_only_failed_jobs_can_be_retried(self, db_session):
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()
        with pytest.raises(ValidationError):
            retry_failed_job(db_session, job.id)

    def test_unknown_job(self, db_session):
        with pytest.raises(NotFoundError):
            retry_failed_job(db_session, uuid.uuid4())
        with pytest.raises(NotFoundError):
            retry_failed_job(db_session, "not-a-uuid")


class TestMaintenance:
    def test_release_stale_processing_jobs(self, db_session):
        stuck = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        exhausted = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), max_attempts=1)
        for job in (stuck, exhausted):
            job.status = EmailJobStatus.PROCESSING
            job.attempts = 1
        db_session.commit()
        old = NOW - timedelta(hours=2)
        db_session.query(EmailJob).update({"updated_at": old}, synchronize_session=False)
        db_session.commit()

        released = release_stale_jobs(db_session, now=NOW, stale_minutes=30)
        db_session.commit()

        assert released == 2
        db_session.refresh(stuck)
        db_session.refresh(exhausted)
        assert stuck.status == EmailJobStatus.PENDING
        assert exhausted.status == EmailJobStatus.FAILED

    def test_cleanup_removes_only_old_finished_jobs(self, db_session):
        old_done = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        old_pending = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        fresh_done = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        old_done.status = EmailJobStatus.COMPLETED
        fresh_done.status = EmailJobStatus.COMPLETED
        old_done.created_at = NOW - timedelta(days=45)
        old_pending.created_at = NOW - timedelta(days=45)
        fresh_done.created_at = NOW - timedelta(days=2)
        db_session.commit()

        assert cleanup_old_jobs(db_session, retention_days=30, now=NOW) == 1
        db_session.commit()
        assert db_session.query(EmailJob).count() == 2

    def test_completed_today_lookup(self, db_session, mailer):
        entity = uuid.uuid4()
        job = enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), entity_id=entity)
        db_session.commit()
        assert not has_completed_job_today(db_session, EmailJobType.DOCUMENT_EXPIRY, entity, TODAY)

        attempt_job(db_session, job, mailer, now=NOW)

        assert has_completed_job_today(db_session, EmailJobType.DOCUMENT_EXPIRY, entity, TODAY)
        assert not has_completed_job_today(db_session, EmailJobType.DOCUMENT_EXPIRY, entity, TODAY + timedelta(days=1))

    def test_list_and_stats(self, db_session):
        entity = uuid.uuid4()
        enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload(), entity_id=entity)
        enqueue(db_session, EmailJobType.DOCUMENT_EXPIRY, _payload())
        db_session.commit()

        assert len(list_jobs(db_session, entity_id=entity)) == 1
        assert len(list_jobs(db_session, status="pending")) == 2
        assert list_jobs(db_session, status="completed") == []
        with pytest.raises(ValidationError):
            list_jobs(db_session, status="lost")

        stats = get_email_stats(db_session)
        assert stats["last_7_days"]["pending"] == 2
        assert stats["total_last_7_days"] == 2
        assert stats["last_24_hours"] == 2

    def test_fake_sender_records(self):
        sender = FakeMailSender()
        assert sender.send(["a@b.c"], "s", "b").success
        assert sender.sent[0]["to"] == ["a@b.c"]
