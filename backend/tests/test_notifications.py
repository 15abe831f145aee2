"""
Notification emitter tests.

Verifies:
- Recipient rules per event type
- Emission happens after the mutation commits and a failing emitter never
  fails or rolls back the transition
- Only the recipient can mark a notification read
"""

from datetime import timedelta

import pytest

from catering.models import Department, Notification, ServiceRequest
from catering.services import invoice_service, notification_service, request_service
from catering.services.notification_service import EMITTER_EXTENSION_KEY
from catering.time_utils import utcnow
from catering.validation import ConflictError, NotFoundError

from conftest import make_user, request_payload
from test_billing import invoice_payload, pay


class ExplodingEmitter:
    def __init__(self):
        self.calls = 0

    def emit(self, event):
        self.calls += 1
        raise RuntimeError("delivery backend down")


def inbox(db_session, user):
    return db_session.query(Notification).filter_by(user_id=user.id).order_by(Notification.id).all()


class TestRecipients:

    def test_created_goes_to_department_approver(self, db_session, finance_officer, approver, submitted_request):
        notes = inbox(db_session, approver)
        assert [n.type for n in notes] == ["REQUEST_CREATED"]
        assert notes[0].request_id == submitted_request.id
        assert submitted_request.request_no in notes[0].message
        assert inbox(db_session, finance_officer) == []

    def test_created_without_designated_approver_broadcasts(self, db_session, requester, approver, finance_officer, finance_clerk):
        dept = Department(name="Music", code="MUS")
        db_session.add(dept)
        db_session.commit()
        request_service.create_request(requester, request_payload(dept.id))

        assert len(inbox(db_session, approver)) == 1
        assert len(inbox(db_session, finance_officer)) == 1
        assert inbox(db_session, finance_clerk) == []
        assert inbox(db_session, requester) == []

    def test_draft_creation_is_silent(self, db_session, requester, approver, department):
        request_service.create_request(requester, request_payload(department.id, submit=False))
        assert inbox(db_session, approver) == []

    def test_approved_goes_to_requester_and_finance(self, db_session, finance_officer, requester, approver, approved_request):
        assert [n.type for n in inbox(db_session, requester)] == ["REQUEST_APPROVED"]
        assert [n.type for n in inbox(db_session, finance_officer)] == ["REQUEST_APPROVED"]
        # the approver only has the creation notice, never their own action
        assert [n.type for n in inbox(db_session, approver)] == ["REQUEST_CREATED"]

    @pytest.mark.parametrize(
        "action,expected",
        [
            ("reject", "REQUEST_REJECTED"),
            ("revision", "REQUEST_NEEDS_REVISION"),
        ],
    )
    def test_review_outcomes_go_to_requester(self, db_session, submitted_request, requester, approver, action, expected):
        if action == "reject":
            request_service.reject_request(approver, submitted_request.id, "Too costly")
        else:
            request_service.request_revision(approver, submitted_request.id, "Fewer guests")
        notes = inbox(db_session, requester)
        assert [n.type for n in notes] == [expected]

    def test_billing_events_go_to_requester(self, db_session, finance_officer, requester, approved_request):
        invoice = invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))
        payment = pay(finance_officer, invoice.id, 1150)
        request_service.fulfill_request(finance_officer, approved_request.id)

        types = [n.type for n in inbox(db_session, requester)]
        assert types == ["REQUEST_APPROVED", "INVOICE_CREATED", "PAYMENT_RECORDED", "REQUEST_FULFILLED"]
        payment_note = inbox(db_session, requester)[2]
        assert payment_note.invoice_id == invoice.id
        assert payment_note.payment_id == payment.id


class TestBestEffortEmission:

    def test_failing_emitter_does_not_fail_transition(self, app, db_session, submitted_request, approver, monkeypatch):
        emitter = ExplodingEmitter()
        monkeypatch.setitem(app.extensions, EMITTER_EXTENSION_KEY, emitter)

        approved = request_service.approve_request(approver, submitted_request.id)

        assert emitter.calls == 1
        assert approved.status == "APPROVED"
        db_session.expire_all()
        assert db_session.get(ServiceRequest, submitted_request.id).status == "APPROVED"

    def test_failing_emitter_on_create(self, app, db_session, requester, department, monkeypatch):
        monkeypatch.setitem(app.extensions, EMITTER_EXTENSION_KEY, ExplodingEmitter())
        created = request_service.create_request(requester, request_payload(department.id))
        assert db_session.get(ServiceRequest, created.id) is not None
        assert db_session.query(Notification).count() == 0

    def test_failed_transition_emits_nothing(self, db_session, submitted_request, approver, requester):
        request_service.reject_request(approver, submitted_request.id, "No")
        before = db_session.query(Notification).count()
        with pytest.raises(ConflictError):
            request_service.approve_request(approver, submitted_request.id)
        assert db_session.query(Notification).count() == before


class TestInbox:

    def test_mark_read_by_recipient(self, db_session, submitted_request, approver):
        note = inbox(db_session, approver)[0]
        assert notification_service.unread_count(approver) == 1

        marked = notification_service.mark_read(approver, note.id)
        assert marked.is_read is True
        assert marked.read_at is not None
        assert notification_service.unread_count(approver) == 0

    def test_mark_read_by_someone_else(self, db_session, submitted_request, approver, requester):
        note = inbox(db_session, approver)[0]
        with pytest.raises(NotFoundError):
            notification_service.mark_read(requester, note.id)
        db_session.refresh(note)
        assert note.is_read is False

    def test_mark_all_read(self, db_session, requester, approver, department):
        request_service.create_request(requester, request_payload(department.id))
        request_service.create_request(requester, request_payload(department.id))
        assert notification_service.mark_all_read(approver) == 2
        assert notification_service.unread_count(approver) == 0
        assert notification_service.mark_all_read(approver) == 0

    def test_list_newest_first_and_unread_filter(self, db_session, requester, approver, department):
        first = request_service.create_request(requester, request_payload(department.id))
        second = request_service.create_request(requester, request_payload(department.id))
        listed = notification_service.list_notifications(approver)
        assert [n.request_id for n in listed] == [second.id, first.id]

        notification_service.mark_read(approver, listed[0].id)
        unread = notification_service.list_notifications(approver, unread_only=True)
        assert [n.request_id for n in unread] == [first.id]

    def test_cleanup_removes_old_read_only(self, db_session, submitted_request, approver):
        other = make_user(db_session, name="Ola Old")
        old_read = Notification(user_id=other.id, type="REQUEST_CREATED", title="t", message="m",
                                is_read=True, created_at=utcnow() - timedelta(days=40))
        old_unread = Notification(user_id=other.id, type="REQUEST_CREATED", title="t", message="m",
                                  is_read=False, created_at=utcnow() - timedelta(days=40))
        db_session.add_all([old_read, old_unread])
        db_session.commit()
        old_read_id, old_unread_id = old_read.id, old_unread.id

        assert notification_service.cleanup_read_notifications(30) == 1
        remaining = {n.id for n in db_session.query(Notification)}
        assert old_unread_id in remaining
        assert old_read_id not in remaining
