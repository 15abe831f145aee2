"""
Billing engine tests.

Verifies:
- Invoices are only issued for APPROVED requests
- net_amount_cents == gross + tax after every create and update
- Finance status edits must agree with the payments on record
- Approve-for-payment transition
"""

import pytest

from catering.models import AuditLog, Invoice
from catering.services import invoice_service, payment_service, request_service
from catering.validation import (
    ConflictError,
    ForbiddenError,
    NotEligibleError,
    NotFoundError,
    OverPaymentError,
    ValidationError,
)

from conftest import set_status


def invoice_payload(request_id, **overrides) -> dict:
    payload = {
        "request_id": request_id,
        "invoice_date": "2026-11-21",
        "due_date": "2026-12-21",
        "gross_amount_cents": 1000,
        "tax_amount_cents": 150,
    }
    payload.update(overrides)
    return payload


def pay(actor, invoice_id, amount, **overrides):
    payload = {
        "invoice_id": invoice_id,
        "amount_cents": amount,
        "method": "TRANSFER",
        "payment_date": "2026-11-25",
    }
    payload.update(overrides)
    return payment_service.create_payment(actor, payload)


class TestCreateInvoice:

    def test_scenario_b(self, db_session, approved_request, finance_officer):
        invoice = invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))
        assert invoice.net_amount_cents == 1150
        assert invoice.status == "SUBMITTED"
        assert invoice.paid_amount_cents == 0
        assert invoice.invoice_no.startswith("INV-")
        assert invoice.created_by_user_id == finance_officer.id

    @pytest.mark.parametrize("status", ["DRAFT", "SUBMITTED", "NEEDS_REVISION", "REJECTED", "FULFILLED", "CLOSED"])
    def test_not_eligible_unless_approved(self, db_session, submitted_request, finance_officer, status):
        set_status(db_session, submitted_request, status)
        with pytest.raises(NotEligibleError) as exc:
            invoice_service.create_invoice(finance_officer, invoice_payload(submitted_request.id))
        assert exc.value.details["current_status"] == status
        assert exc.value.details["required_status"] == "APPROVED"
        assert db_session.query(Invoice).count() == 0

    def test_tax_defaults_to_zero(self, db_session, approved_request, finance_clerk):
        payload = invoice_payload(approved_request.id)
        del payload["tax_amount_cents"]
        invoice = invoice_service.create_invoice(finance_clerk, payload)
        assert invoice.net_amount_cents == 1000

    def test_multiple_invoices_per_request(self, db_session, approved_request, finance_officer):
        invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))
        invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id, gross_amount_cents=500))
        assert len(invoice_service.list_invoices(finance_officer, request_id=approved_request.id)) == 2

    def test_client_net_amount_rejected(self, db_session, approved_request, finance_officer):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                finance_officer, invoice_payload(approved_request.id, net_amount_cents=99)
            )

    @pytest.mark.parametrize(
        "overrides",
        [
            {"gross_amount_cents": 0},
            {"gross_amount_cents": -10},
            {"tax_amount_cents": -1},
            {"due_date": "2026-11-01"},
        ],
    )
    def test_invalid_amounts_and_dates(self, db_session, approved_request, finance_officer, overrides):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id, **overrides))

    @pytest.mark.parametrize("role_fixture", ["requester", "approver"])
    def test_requires_invoice_capability(self, request, db_session, approved_request, role_fixture):
        actor = request.getfixturevalue(role_fixture)
        with pytest.raises(ForbiddenError):
            invoice_service.create_invoice(actor, invoice_payload(approved_request.id))

    def test_unknown_request(self, db_session, finance_officer):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(finance_officer, invoice_payload(99999))

    def test_audit_written(self, db_session, approved_request, finance_officer):
        invoice = invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))
        entry = db_session.query(AuditLog).filter_by(entity_type="INVOICE", entity_id=invoice.id).one()
        assert entry.action == "CREATE_INVOICE"


@pytest.fixture
def invoice(db_session, approved_request, finance_officer):
    return invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))


class TestUpdateInvoice:

    def test_amount_change_recomputes_net(self, db_session, invoice, finance_officer):
        updated = invoice_service.update_invoice(finance_officer, invoice.id, {"gross_amount_cents": 2000})
        assert updated.net_amount_cents == 2150

        updated = invoice_service.update_invoice(finance_officer, invoice.id, {"tax_amount_cents": 0})
        assert updated.net_amount_cents == 2000

    @pytest.mark.parametrize("status", ["DRAFT", "VERIFIED", "APPROVED_FOR_PAYMENT", "DISPUTED", "CLOSED"])
    def test_finance_sets_status_freely_without_payments(self, db_session, invoice, finance_officer, status):
        assert invoice_service.update_invoice(finance_officer, invoice.id, {"status": status}).status == status

    @pytest.mark.parametrize("status", ["PAID", "PARTIALLY_PAID"])
    def test_payment_status_cannot_be_claimed_without_payments(self, db_session, invoice, finance_officer, status):
        with pytest.raises(ConflictError):
            invoice_service.update_invoice(finance_officer, invoice.id, {"status": status})
        assert db_session.get(Invoice, invoice.id).status == "SUBMITTED"

    def test_invalid_status(self, db_session, invoice, finance_officer):
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(finance_officer, invoice.id, {"status": "SETTLED"})

    def test_status_must_match_partial_payments(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 500)
        with pytest.raises(ConflictError) as exc:
            invoice_service.update_invoice(finance_officer, invoice.id, {"status": "DISPUTED"})
        assert exc.value.details["ledger_status"] == "PARTIALLY_PAID"

        with pytest.raises(ConflictError):
            invoice_service.update_invoice(finance_officer, invoice.id, {"status": "CLOSED"})

    def test_fully_paid_invoice_can_close(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1150)
        closed = invoice_service.update_invoice(finance_officer, invoice.id, {"status": "CLOSED"})
        assert closed.status == "CLOSED"

    def test_net_below_paid_is_over_payment(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1000)
        with pytest.raises(OverPaymentError):
            invoice_service.update_invoice(finance_officer, invoice.id, {"gross_amount_cents": 500, "tax_amount_cents": 0})
        stored = db_session.get(Invoice, invoice.id)
        assert stored.net_amount_cents == 1150
        assert stored.gross_amount_cents == 1000

    def test_amount_reduction_to_paid_marks_paid(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1000)
        updated = invoice_service.update_invoice(finance_officer, invoice.id, {"tax_amount_cents": 0})
        assert updated.net_amount_cents == 1000
        assert updated.status == "PAID"

    def test_amount_increase_reopens_partial(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1150)
        updated = invoice_service.update_invoice(finance_officer, invoice.id, {"gross_amount_cents": 2000})
        assert updated.status == "PARTIALLY_PAID"

    def test_clerk_cannot_edit_without_capability(self, db_session, invoice, approver):
        with pytest.raises(ForbiddenError):
            invoice_service.update_invoice(approver, invoice.id, {"status": "VERIFIED"})

    def test_missing_invoice(self, db_session, finance_officer):
        with pytest.raises(NotFoundError):
            invoice_service.update_invoice(finance_officer, 777, {"status": "VERIFIED"})


class TestApproveForPayment:

    @pytest.mark.parametrize("status", ["SUBMITTED", "VERIFIED"])
    def test_approve(self, db_session, invoice, finance_clerk, status):
        set_status(db_session, invoice, status)
        assert invoice_service.approve_invoice_for_payment(finance_clerk, invoice.id).status == "APPROVED_FOR_PAYMENT"

    @pytest.mark.parametrize("status", ["DRAFT", "DISPUTED", "APPROVED_FOR_PAYMENT", "CLOSED"])
    def test_conflict(self, db_session, invoice, finance_clerk, status):
        set_status(db_session, invoice, status)
        with pytest.raises(ConflictError):
            invoice_service.approve_invoice_for_payment(finance_clerk, invoice.id)
        assert db_session.get(Invoice, invoice.id).status == status


class TestInvoiceReads:

    def test_requester_sees_own_invoices_only(self, db_session, invoice, requester, other_requester):
        assert [i.id for i in invoice_service.list_invoices(requester)] == [invoice.id]
        assert invoice_service.list_invoices(other_requester) == []
        with pytest.raises(ForbiddenError):
            invoice_service.get_invoice(other_requester, invoice.id)

    def test_summary(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 400)
        summary = invoice_service.payment_summary(finance_officer, invoice.id)
        assert summary["net_amount_cents"] == 1150
        assert summary["paid_amount_cents"] == 400
        assert summary["remaining_cents"] == 750
        assert summary["payment_count"] == 1
        assert summary["status"] == "PARTIALLY_PAID"

    def test_request_status_unaffected(self, db_session, invoice, approved_request):
        assert request_service.get_request(approved_request.requester, approved_request.id).status == "APPROVED"
