"""
Payment ledger tests.

Verifies:
- Invoice status is PAID iff counted payments equal net, PARTIALLY_PAID
  iff 0 < counted < net
- Over-payment is refused on create and on every edit that would cause it
- Cancelling / failing payments re-derives the invoice status downward
- Only payable invoice statuses accept new payments
"""

import pytest

from catering.models import Invoice, Payment
from catering.services import invoice_service, payment_service
from catering.validation import (
    ConflictError,
    ForbiddenError,
    NotEligibleError,
    OverPaymentError,
    ValidationError,
)

from conftest import set_status
from test_billing import invoice_payload, pay


@pytest.fixture
def invoice(db_session, approved_request, finance_officer):
    return invoice_service.create_invoice(finance_officer, invoice_payload(approved_request.id))


def assert_ledger_invariant(db_session, invoice_id):
    db_session.expire_all()
    invoice = db_session.get(Invoice, invoice_id)
    counted = sum(
        p.amount_cents
        for p in db_session.query(Payment).filter_by(invoice_id=invoice_id)
        if p.status not in ("CANCELLED", "FAILED")
    )
    assert counted <= invoice.net_amount_cents
    assert invoice.paid_amount_cents == counted
    assert (invoice.status == "PAID") == (counted == invoice.net_amount_cents)
    assert (invoice.status == "PARTIALLY_PAID") == (0 < counted < invoice.net_amount_cents)


class TestCreatePayment:

    def test_scenario_c_full_payment_then_over_payment(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 1150)
        assert payment.status == "PROCESSED"
        assert payment.payment_no.startswith("PAY-")
        assert db_session.get(Invoice, invoice.id).status == "PAID"

        with pytest.raises(OverPaymentError) as exc:
            pay(finance_officer, invoice.id, 1)
        assert exc.value.details["remaining_cents"] == 0
        assert db_session.query(Payment).count() == 1
        assert_ledger_invariant(db_session, invoice.id)

    def test_over_payment_on_payable_invoice(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1000)
        with pytest.raises(OverPaymentError) as exc:
            pay(finance_officer, invoice.id, 151)
        assert exc.value.details["remaining_cents"] == 150
        assert exc.value.details["attempted_cents"] == 151
        assert_ledger_invariant(db_session, invoice.id)

    def test_single_payment_above_net(self, db_session, invoice, finance_officer):
        with pytest.raises(OverPaymentError):
            pay(finance_officer, invoice.id, 1151)
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Invoice, invoice.id).status == "SUBMITTED"

    def test_scenario_d_split_payment(self, db_session, invoice, finance_clerk):
        pay(finance_clerk, invoice.id, 500)
        assert db_session.get(Invoice, invoice.id).status == "PARTIALLY_PAID"
        assert_ledger_invariant(db_session, invoice.id)

        pay(finance_clerk, invoice.id, 650, method="MOBILE_MONEY")
        assert db_session.get(Invoice, invoice.id).status == "PAID"
        assert_ledger_invariant(db_session, invoice.id)

    @pytest.mark.parametrize("status", ["SUBMITTED", "VERIFIED", "APPROVED_FOR_PAYMENT", "PARTIALLY_PAID"])
    def test_payable_statuses(self, db_session, invoice, finance_officer, status):
        set_status(db_session, invoice, status)
        pay(finance_officer, invoice.id, 100)
        assert db_session.get(Invoice, invoice.id).status == "PARTIALLY_PAID"

    @pytest.mark.parametrize("status", ["DRAFT", "DISPUTED", "PAID", "CLOSED"])
    def test_not_eligible_statuses(self, db_session, invoice, finance_officer, status):
        set_status(db_session, invoice, status)
        with pytest.raises(NotEligibleError) as exc:
            pay(finance_officer, invoice.id, 100)
        assert exc.value.details["current_status"] == status
        assert db_session.query(Payment).count() == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount_cents": 0},
            {"amount_cents": -5},
            {"method": "BITCOIN"},
            {"status": "CANCELLED"},
            {"payment_date": "not-a-date"},
        ],
    )
    def test_invalid_payment_input(self, db_session, invoice, finance_officer, overrides):
        with pytest.raises(ValidationError):
            pay(finance_officer, invoice.id, overrides.pop("amount_cents", 100), **overrides)

    def test_missing_invoice_id(self, db_session, finance_officer):
        with pytest.raises(ValidationError):
            payment_service.create_payment(finance_officer, {"amount_cents": 100, "method": "CASH", "payment_date": "2026-11-25"})

    def test_requires_payment_capability(self, db_session, invoice, approver):
        with pytest.raises(ForbiddenError):
            pay(approver, invoice.id, 100)

    def test_method_case_insensitive(self, db_session, invoice, finance_officer):
        assert pay(finance_officer, invoice.id, 100, method="cheque").method == "CHEQUE"

    def test_draft_payment_counts(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 1150, status="DRAFT")
        assert db_session.get(Invoice, invoice.id).status == "PAID"


class TestUpdatePayment:

    def test_cancel_downgrades_paid_to_partial(self, db_session, invoice, finance_officer):
        pay(finance_officer, invoice.id, 500)
        second = pay(finance_officer, invoice.id, 650)
        assert db_session.get(Invoice, invoice.id).status == "PAID"

        payment_service.update_payment(finance_officer, second.id, {"status": "CANCELLED"})
        assert db_session.get(Invoice, invoice.id).status == "PARTIALLY_PAID"
        assert_ledger_invariant(db_session, invoice.id)

    def test_failing_last_payment_returns_to_approved_for_payment(self, db_session, invoice, finance_officer):
        only = pay(finance_officer, invoice.id, 1150)
        payment_service.update_payment(finance_officer, only.id, {"status": "FAILED"})
        stored = db_session.get(Invoice, invoice.id)
        assert stored.status == "APPROVED_FOR_PAYMENT"
        assert stored.paid_amount_cents == 0
        assert_ledger_invariant(db_session, invoice.id)

    def test_reinstating_cancelled_payment_checks_balance(self, db_session, invoice, finance_officer):
        first = pay(finance_officer, invoice.id, 1000)
        payment_service.update_payment(finance_officer, first.id, {"status": "CANCELLED"})
        pay(finance_officer, invoice.id, 1150)

        with pytest.raises(OverPaymentError):
            payment_service.update_payment(finance_officer, first.id, {"status": "PROCESSED"})
        assert db_session.get(Payment, first.id).status == "CANCELLED"
        assert_ledger_invariant(db_session, invoice.id)

    def test_amount_increase_checks_balance(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 500)
        pay(finance_officer, invoice.id, 600)
        with pytest.raises(OverPaymentError):
            payment_service.update_payment(finance_officer, payment.id, {"amount_cents": 600})
        assert db_session.get(Payment, payment.id).amount_cents == 500

    def test_amount_change_rederives_status(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 500)
        payment_service.update_payment(finance_officer, payment.id, {"amount_cents": 1150})
        assert db_session.get(Invoice, invoice.id).status == "PAID"

        payment_service.update_payment(finance_officer, payment.id, {"amount_cents": 100})
        stored = db_session.get(Invoice, invoice.id)
        assert stored.status == "PARTIALLY_PAID"
        assert stored.paid_amount_cents == 100

    def test_recompute_is_idempotent(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 500)
        payment_service.update_payment(finance_officer, payment.id, {"reference": "TRX-1"})
        payment_service.update_payment(finance_officer, payment.id, {"reference": "TRX-1"})
        stored = db_session.get(Invoice, invoice.id)
        assert stored.paid_amount_cents == 500
        assert stored.status == "PARTIALLY_PAID"

    def test_method_and_status_edit(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 500)
        updated = payment_service.update_payment(finance_officer, payment.id, {"method": "cash", "status": "CLEARED"})
        assert updated.method == "CASH"
        assert updated.status == "CLEARED"

    def test_closed_invoice_payments_frozen(self, db_session, invoice, finance_officer):
        payment = pay(finance_officer, invoice.id, 1150)
        invoice_service.update_invoice(finance_officer, invoice.id, {"status": "CLOSED"})
        with pytest.raises(ConflictError):
            payment_service.update_payment(finance_officer, payment.id, {"status": "CANCELLED"})
        assert db_session.get(Payment, payment.id).status == "PROCESSED"

    def test_requires_payment_capability(self, db_session, invoice, finance_officer, requester):
        payment = pay(finance_officer, invoice.id, 100)
        with pytest.raises(ForbiddenError):
            payment_service.update_payment(requester, payment.id, {"status": "CANCELLED"})


class TestPaymentReads:

    def test_list_by_invoice(self, db_session, invoice, finance_officer, requester):
        pay(finance_officer, invoice.id, 100)
        pay(finance_officer, invoice.id, 200)
        assert len(payment_service.list_payments(finance_officer, invoice_id=invoice.id)) == 2
        assert len(payment_service.list_payments(requester, invoice_id=invoice.id)) == 2

    def test_requester_cannot_list_all(self, db_session, requester):
        with pytest.raises(ForbiddenError):
            payment_service.list_payments(requester)

    def test_other_requester_cannot_view(self, db_session, invoice, finance_officer, other_requester):
        payment = pay(finance_officer, invoice.id, 100)
        with pytest.raises(ForbiddenError):
            payment_service.get_payment(other_requester, payment.id)
