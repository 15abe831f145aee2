"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Two racing approvals produce exactly one APPROVED transition; the loser
  gets a ConflictError
- Two racing payments never push the invoice past its net amount
- Document numbers stay unique under parallel creation
- Racing creators of the same new department share one row
"""

import threading

import pytest

from catering import create_app
from catering.config import TestingConfig
from catering.extensions import db
from catering.models import AuditLog, Department, Invoice, Payment, ServiceRequest, User
from catering.services import invoice_service, payment_service, request_service
from catering.validation import ConflictError, OverPaymentError

from conftest import request_payload


@pytest.fixture
def file_app(tmp_path):
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        requester = User(external_id="ext-req", email="req@university.edu", name="Rita", role="REQUESTER", phone="0241234567")
        approver = User(external_id="ext-app", email="app@university.edu", name="Ada", role="APPROVER")
        finance = User(external_id="ext-fin", email="fin@university.edu", name="Fiona", role="FINANCE_OFFICER")
        db.session.add_all([requester, approver, finance])
        db.session.commit()

        dept = Department(name="Computer Science", code="CS", approver_id=approver.id)
        db.session.add(dept)
        db.session.commit()

        svc_request = request_service.create_request(requester, request_payload(dept.id))
        ids = {
            "requester": requester.id,
            "approver": approver.id,
            "finance": finance.id,
            "department": dept.id,
            "request": svc_request.id,
        }
        db.session.remove()
    return ids


def run_parallel(app, target, args_list):
    """Run target(*args) in one thread per args tuple, each in its own app context."""
    results = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(args_list))

    def worker(args):
        with app.app_context():
            try:
                barrier.wait()
                value = target(*args)
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(args,)) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_double_approval_has_one_winner(file_app, seeded):
    def approve(approver_id, request_id):
        actor = db.session.get(User, approver_id)
        return request_service.approve_request(actor, request_id).status

    results, errors = run_parallel(
        file_app,
        approve,
        [(seeded["approver"], seeded["request"]), (seeded["approver"], seeded["request"])],
    )

    assert results == ["APPROVED"]
    assert len(errors) == 1
    assert isinstance(errors[0], ConflictError)
    assert errors[0].details["current_status"] == "APPROVED"

    with file_app.app_context():
        assert db.session.get(ServiceRequest, seeded["request"]).status == "APPROVED"
        approvals = db.session.query(AuditLog).filter_by(action="APPROVED_REQUEST").count()
        assert approvals == 1


def test_racing_payments_never_overpay(file_app, seeded):
    with file_app.app_context():
        approver = db.session.get(User, seeded["approver"])
        finance = db.session.get(User, seeded["finance"])
        request_service.approve_request(approver, seeded["request"])
        invoice = invoice_service.create_invoice(finance, {
            "request_id": seeded["request"],
            "invoice_date": "2026-11-21",
            "due_date": "2026-12-21",
            "gross_amount_cents": 1000,
            "tax_amount_cents": 150,
        })
        invoice_id = invoice.id
        db.session.remove()

    def pay(finance_id, amount):
        actor = db.session.get(User, finance_id)
        return payment_service.create_payment(actor, {
            "invoice_id": invoice_id,
            "amount_cents": amount,
            "method": "TRANSFER",
            "payment_date": "2026-11-25",
        }).amount_cents

    results, errors = run_parallel(file_app, pay, [(seeded["finance"], 1000), (seeded["finance"], 1000)])

    assert results == [1000]
    assert len(errors) == 1
    assert isinstance(errors[0], OverPaymentError)

    with file_app.app_context():
        invoice = db.session.get(Invoice, invoice_id)
        assert invoice.paid_amount_cents == 1000
        assert invoice.status == "PARTIALLY_PAID"
        assert db.session.query(Payment).filter_by(invoice_id=invoice_id).count() == 1


def test_request_numbers_unique_under_load(file_app, seeded):
    def create(requester_id, department_id):
        actor = db.session.get(User, requester_id)
        return request_service.create_request(actor, request_payload(department_id)).request_no

    args = [(seeded["requester"], seeded["department"])] * 4
    results, errors = run_parallel(file_app, create, args)

    assert errors == []
    assert len(results) == 4
    assert len(set(results)) == 4


def test_same_new_department_created_once(file_app, seeded):
    def create(requester_id):
        actor = db.session.get(User, requester_id)
        req = request_service.create_request(actor, request_payload(None, department_name="Marine Biology"))
        return req.department_id

    results, errors = run_parallel(file_app, create, [(seeded["requester"],)] * 4)

    assert errors == []
    assert len(set(results)) == 1
    with file_app.app_context():
        assert db.session.query(Department).filter_by(name="Marine Biology").count() == 1
