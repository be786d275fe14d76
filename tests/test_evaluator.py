"""Tests for due-notification evaluation and claiming."""

from datetime import timedelta

from mixer_rental.documents.models import DocumentType
from mixer_rental.documents.service import renew_document
from mixer_rental.notifications.evaluator import check_notifications_due, claim_notification
from mixer_rental.notifications.models import NotificationLog, NotificationRule

from conftest import TODAY

STANDARD = [14, 7, 3, 1]


class TestCheckNotificationsDue:
    def test_fires_on_exact_threshold(self, db_session, make_document):
        doc = make_document(days=7, rules=STANDARD)

        due = check_notifications_due(db_session, TODAY)
        db_session.commit()

        assert len(due) == 1
        assert due[0].document_id == doc.id
        assert due[0].days_before == 7
        assert due[0].days_until_expiry == 7
        assert due[0].machine_number == "MX-101"
        log = db_session.query(NotificationLog).one()
        assert (log.document_id, log.days_before, log.notification_date) == (doc.id, 7, TODAY)

    def test_nothing_between_thresholds(self, db_session, make_document):
        make_document(days=5, rules=STANDARD)
        assert check_notifications_due(db_session, TODAY) == []

    def test_second_run_same_day_returns_nothing(self, db_session, make_document):
        make_document(days=7, rules=STANDARD)
        assert len(check_notifications_due(db_session, TODAY)) == 1
        db_session.commit()

        assert check_notifications_due(db_session, TODAY) == []
        assert db_session.query(NotificationLog).count() == 1

    def test_walks_down_thresholds_over_the_week(self, db_session, make_document):
        make_document(days=7, rules=STANDARD)

        fired = []
        for offset in range(8):
            for n in check_notifications_due(db_session, TODAY + timedelta(days=offset)):
                fired.append((offset, n.days_before))
            db_session.commit()

        assert fired == [(0, 7), (4, 3), (6, 1)]

    def test_expired_document_needs_explicit_rule(self, db_session, make_document):
        make_document(days=-1, rules=STANDARD, document_type=DocumentType.PUC)
        make_document(days=0, rules=[0], document_type=DocumentType.FITNESS)
        make_document(days=-2, rules=[-2], document_type=DocumentType.RC_BOOK)

        due = check_notifications_due(db_session, TODAY)

        assert sorted(n.document_type for n in due) == ["Fitness", "RC_Book"]

    def test_inactive_machine_is_ignored(self, db_session, make_document, make_machine):
        parked = make_machine(is_active=False)
        make_document(days=3, rules=STANDARD, owner=parked)
        assert check_notifications_due(db_session, TODAY) == []

    def test_inactive_rule_is_ignored(self, db_session, make_document):
        doc = make_document(days=3, rules=[3])
        db_session.query(NotificationRule).filter(NotificationRule.document_id == doc.id).update(
            {"is_active": False}
        )
        db_session.commit()
        assert check_notifications_due(db_session, TODAY) == []

    def test_several_documents_due_together(self, db_session, make_document, make_machine):
        make_document(days=14, rules=STANDARD, document_type=DocumentType.PUC)
        make_document(days=1, rules=STANDARD, document_type=DocumentType.INSURANCE)
        make_document(days=3, rules=STANDARD, owner=make_machine())

        due = check_notifications_due(db_session, TODAY)

        assert [n.days_before for n in due] == [1, 3, 14]

    def test_renewal_rearms_thresholds(self, db_session, make_document):
        doc = make_document(days=7, rules=STANDARD)
        assert len(check_notifications_due(db_session, TODAY)) == 1
        db_session.commit()

        # Corrected paperwork lands on the same cycle length
        renew_document(db_session, doc.id, TODAY + timedelta(days=7), today=TODAY)
        db_session.commit()

        assert len(check_notifications_due(db_session, TODAY)) == 1


class TestClaimNotification:
    def test_second_claim_loses(self, db_session, make_document):
        doc = make_document(days=7)

        assert claim_notification(db_session, doc.id, 7, TODAY) is True
        assert claim_notification(db_session, doc.id, 7, TODAY) is False
        db_session.commit()

        assert db_session.query(NotificationLog).count() == 1

    def test_other_day_is_a_separate_claim(self, db_session, make_document):
        doc = make_document(days=7)
        assert claim_notification(db_session, doc.id, 7, TODAY) is True
        assert claim_notification(db_session, doc.id, 7, TODAY + timedelta(days=1)) is True

    def test_claim_survives_a_lost_race(self, db_session, make_document):
        first = make_document(days=7, document_type=DocumentType.PUC)
        second = make_document(days=7, document_type=DocumentType.FITNESS)

        claim_notification(db_session, first.id, 7, TODAY)
        claim_notification(db_session, first.id, 7, TODAY)
        claim_notification(db_session, second.id, 7, TODAY)
        db_session.commit()

        assert db_session.query(NotificationLog).count() == 2
