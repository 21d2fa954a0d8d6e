"""
Payment installment tests.

Verifies:
- partial installments move the payment to 'verifying'
- settling the balance marks it 'paid'
- amounts above the remaining balance are rejected
- every installment is booked as an approved order income
- marking 'paid' settles the outstanding balance
"""

import pytest

from shopbot.models import Customer, Income, PaymentInstallment
from shopbot.services import orders_service, payment_service
from shopbot.services.payment_service import PaymentError


@pytest.fixture
def order(db_session, product):
    customer = Customer(wa_id="255722000222", name="Juma", phone="255722000222", lang="en")
    db_session.add(customer)
    db_session.commit()
    return orders_service.create_order_with_payment(
        customer=customer,
        items=[{"sku": product.sku, "name": product.name, "qty": 2,
                "unit_price_tzs": product.price_tzs, "product_id": product.id}],
        delivery_mode="delivery",
        fee_tzs=2000,
    )


class TestInstallments:

    def test_partial_then_full(self, order):
        first = payment_service.record_installment(order_id=order.id, amount_tzs=12_000, notify=False)
        assert first["payment"]["status"] == "verifying"
        assert first["summary"]["remaining_tzs"] == 20_000

        second = payment_service.record_installment(order_id=order.id, amount_tzs=20_000, notify=False)
        assert second["payment"]["status"] == "paid"
        assert second["summary"]["remaining_tzs"] == 0
        assert second["summary"]["paid_tzs"] == 32_000

    def test_overpayment_rejected(self, order):
        with pytest.raises(PaymentError, match="exceeds remaining"):
            payment_service.record_installment(order_id=order.id, amount_tzs=32_001, notify=False)
        assert payment_service.payment_summary(order.id)["paid_tzs"] == 0

    @pytest.mark.parametrize("amount", [0, -5, True, "100"])
    def test_invalid_amount(self, order, amount):
        with pytest.raises(PaymentError):
            payment_service.record_installment(order_id=order.id, amount_tzs=amount, notify=False)

    def test_cancelled_order_rejected(self, order):
        orders_service.change_status(order.id, "cancelled", notify=False)
        with pytest.raises(PaymentError, match="cancelled"):
            payment_service.record_installment(order_id=order.id, amount_tzs=1000, notify=False)

    def test_income_booked_per_installment(self, order, db_session):
        payment_service.record_installment(order_id=order.id, amount_tzs=5000, notify=False)
        payment_service.record_installment(order_id=order.id, amount_tzs=7000, notify=False)

        incomes = db_session.query(Income).filter_by(order_id=order.id).order_by(Income.id).all()
        assert [i.amount_tzs for i in incomes] == [5000, 7000]
        assert {i.status for i in incomes} == {"approved"}
        assert {i.source for i in incomes} == {"order"}

    def test_customer_told_remaining_balance(self, order, whatsapp):
        payment_service.record_installment(order_id=order.id, amount_tzs=2000)
        sent = whatsapp.last("text")
        assert sent["to"] == "255722000222"
        assert "30,000" in sent["body"]


class TestPaymentStatus:

    def test_mark_paid_settles_balance(self, order, db_session):
        payment_service.record_installment(order_id=order.id, amount_tzs=2000, notify=False)
        payment_id = order.payment.id

        result = payment_service.set_payment_status(payment_id=payment_id, status="paid", notify=False)

        assert result["payment"]["status"] == "paid"
        assert result["summary"]["remaining_tzs"] == 0
        installments = db_session.query(PaymentInstallment).filter_by(payment_id=payment_id).all()
        assert sorted(i.amount_tzs for i in installments) == [2000, 30_000]

    def test_invalid_status(self, order):
        with pytest.raises(PaymentError):
            payment_service.set_payment_status(payment_id=order.payment.id, status="awaiting")

    def test_proof_moves_to_verifying(self, order):
        payment = payment_service.mark_proof_received(order_id=order.id, reference="Asha Juma", method="Lipa Namba")
        assert payment.status == "verifying"
        assert payment.reference == "Asha Juma"
        assert payment.method == "Lipa Namba"

    def test_remaining_is_total_minus_paid(self, order):
        payment_service.record_installment(order_id=order.id, amount_tzs=9_999, notify=False)
        s = payment_service.payment_summary(order.id)
        assert s["total_tzs"] - s["paid_tzs"] == s["remaining_tzs"]
