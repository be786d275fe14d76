"""Shared test fixtures."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mixer_rental.audit.models import AuditLog
from mixer_rental.config import settings
from mixer_rental.database.base import Base
from mixer_rental.documents.models import DocumentType, MachineDocument
from mixer_rental.email_jobs.models import EmailJob
from mixer_rental.integrations.mailer import DeliveryResult
from mixer_rental.machines.models import Machine
from mixer_rental.notifications.models import NotificationDefault, NotificationLog, NotificationRule

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, EmailJob, Machine, MachineDocument, NotificationDefault, NotificationLog, NotificationRule]

# 08:30 in Asia/Kolkata on TODAY
TODAY = date(2026, 3, 10)
NOW = datetime(2026, 3, 10, 3, 0, tzinfo=UTC)


class FakeMailSender:
    """Records deliveries instead of talking to SMTP."""

    def __init__(self, fail: bool = False, error: str = "SMTP connection refused"):
        self.fail = fail
        self.error = error
        self.sent: list[dict] = []
        self.calls = 0

    def send(self, to, subject, html_body):
        self.calls += 1
        if self.fail:
            return DeliveryResult(success=False, error=self.error)
        self.sent.append({"to": list(to), "subject": subject, "body": html_body})
        return DeliveryResult(success=True, message_id=f"<{self.calls}@test>")


def make_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory():
    engine = make_engine()
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    """In-memory SQLite database.

    SQLite stores the PostgreSQL UUID columns as strings and has no native
    enums, which is fine for service logic.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def admin_recipients(monkeypatch):
    monkeypatch.setattr(settings, "admin_emails", "ops@rental.test, fleet@rental.test")
    monkeypatch.setattr(settings, "business_timezone", "Asia/Kolkata")
    monkeypatch.setattr(settings, "default_notification_days", "14,7,3,1")


@pytest.fixture
def mailer():
    return FakeMailSender()


@pytest.fixture
def failing_mailer():
    return FakeMailSender(fail=True)


@pytest.fixture
def machine(db_session):
    m = Machine(machine_number="MX-101", name="Transit Mixer 6 m3", is_active=True)
    db_session.add(m)
    db_session.commit()
    return m


@pytest.fixture
def make_machine(db_session):
    counter = {"n": 200}

    def _make(is_active: bool = True, number: str | None = None) -> Machine:
        counter["n"] += 1
        m = Machine(machine_number=number or f"MX-{counter['n']}", name="Concrete Pump", is_active=is_active)
        db_session.add(m)
        db_session.commit()
        return m

    return _make


@pytest.fixture
def make_document(db_session, machine):
    """Create a document expiring ``days`` after TODAY with the given rule thresholds."""

    def _make(
        days: int = 30,
        document_type: DocumentType = DocumentType.INSURANCE,
        rules: list[int] | None = None,
        owner: Machine | None = None,
        **fields,
    ) -> MachineDocument:
        doc = MachineDocument(
            machine_id=(owner or machine).id,
            document_type=document_type,
            expiry_date=TODAY + timedelta(days=days),
            **fields,
        )
        db_session.add(doc)
        db_session.flush()
        for d in rules or []:
            db_session.add(NotificationRule(document_id=doc.id, days_before=d, is_active=True))
        db_session.commit()
        return doc

    return _make
