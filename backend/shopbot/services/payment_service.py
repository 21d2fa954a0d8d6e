# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Service

WHY: Customers pay by mobile money outside the system and send proof;
staff confirm amounts by hand, sometimes in several installments. Each
order has one aggregated payment row whose amount_tzs is the running
total of confirmed installments.

DESIGN PRINCIPLES:
- remaining balance = order.total_tzs - payment.amount_tzs, never below 0
- installments cannot exceed the remaining balance
- every confirmed installment is kept (payment_installments) and booked
  as an approved 'order' income
- customer notifications are best effort and never roll back a payment
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Income, Order, Payment, PaymentInstallment
from ..time_utils import utcnow
from . import realtime_service
from .concurrency import lock_for_update, run_with_retry


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_AWAITING = "awaiting"
PAYMENT_STATUS_VERIFYING = "verifying"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"

ADMIN_SETTABLE_STATUSES = (PAYMENT_STATUS_VERIFYING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED)


def ensure_payment(order: Order) -> Payment:
    """Return the order's payment row, creating an 'awaiting' one if missing."""
    payment = db.session.query(Payment).filter_by(order_id=order.id).first()
    if payment is None:
        payment = Payment(order_id=order.id, status=PAYMENT_STATUS_AWAITING, amount_tzs=0)
        db.session.add(payment)
        db.session.flush()
    return payment


def payment_summary(order_id: int) -> dict:
    """
    Totals for an order.

    Returns:
        order_id, total_tzs, paid_tzs, remaining_tzs, payment_status
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise PaymentError(f"Order {order_id} not found")
    payment = db.session.query(Payment).filter_by(order_id=order_id).first()

    total = order.total_tzs or 0
    paid = payment.amount_tzs if payment else 0
    return {
        "order_id": order.id,
        "payment_id": payment.id if payment else None,
        "total_tzs": total,
        "paid_tzs": paid,
        "remaining_tzs": max(0, total - paid),
        "payment_status": payment.status if payment else PAYMENT_STATUS_AWAITING,
    }


def _book_income(order: Order, amount: int, note: str | None) -> None:
    now = utcnow()
    db.session.add(Income(
        order_id=order.id,
        amount_tzs=amount,
        status="approved",
        source="order",
        description=note or f"Payment for order {order.order_code or order.id}",
        recorded_at=now,
        approved_at=now,
        created_at=now,
    ))


def record_installment(*, order_id: int, amount_tzs: int, note: str | None = None,
                       notify: bool = True) -> dict:
    """
    Confirm an installment received for an order.

    Raises:
        PaymentError: order missing/cancelled/deleted, non-positive amount,
            or amount above the remaining balance
    """
    if not isinstance(amount_tzs, int) or isinstance(amount_tzs, bool) or amount_tzs <= 0:
        raise PaymentError("amount_tzs must be a positive integer")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise PaymentError(f"Order {order_id} not found")
        if order.status == "cancelled":
            raise PaymentError("Cannot record a payment on a cancelled order")

        payment = ensure_payment(order)
        remaining = max(0, (order.total_tzs or 0) - (payment.amount_tzs or 0))
        if amount_tzs > remaining:
            raise PaymentError(f"Amount exceeds remaining balance of {remaining} TZS")

        payment.amount_tzs = (payment.amount_tzs or 0) + amount_tzs
        payment.status = PAYMENT_STATUS_PAID if amount_tzs == remaining else PAYMENT_STATUS_VERIFYING
        payment.updated_at = utcnow()
        installment = PaymentInstallment(payment_id=payment.id, amount_tzs=amount_tzs, note=note, created_at=utcnow())
        db.session.add(installment)
        _book_income(order, amount_tzs, note)
        db.session.commit()
        return order, payment, installment

    order, payment, installment = run_with_retry(_op, label=f"installment order {order_id}")
    summary = payment_summary(order.id)

    if notify:
        _notify_installment(order, amount_tzs, summary)

    realtime_service.emit(realtime_service.PAYMENT_UPDATED, {"order_id": order.id, "payment": payment.to_dict()})
    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id})
    return {"installment": installment.to_dict(), "payment": payment.to_dict(), "summary": summary}


def set_payment_status(*, payment_id: int, status: str, notify: bool = True) -> dict:
    """
    Admin status change. Marking 'paid' settles the outstanding balance
    (booked as one final installment) and tells the customer.
    """
    if status not in ADMIN_SETTABLE_STATUSES:
        raise PaymentError(f"Invalid status: {status}. Must be one of {list(ADMIN_SETTABLE_STATUSES)}")

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise PaymentError(f"Payment {payment_id} not found")
        order = payment.order

        settled = 0
        if status == PAYMENT_STATUS_PAID:
            settled = max(0, (order.total_tzs or 0) - (payment.amount_tzs or 0))
            if settled:
                payment.amount_tzs = (payment.amount_tzs or 0) + settled
                db.session.add(PaymentInstallment(
                    payment_id=payment.id, amount_tzs=settled, note="Marked paid", created_at=utcnow(),
                ))
                _book_income(order, settled, "Marked paid")
        payment.status = status
        payment.updated_at = utcnow()
        db.session.commit()
        return payment, order

    payment, order = run_with_retry(_op, label=f"payment {payment_id} -> {status}")

    if notify and status == PAYMENT_STATUS_PAID:
        from . import bot_messaging
        from .document_service import display_code
        from .messages import t

        customer = order.customer
        try:
            bot_messaging.send_text(customer.wa_id, t(customer.lang, "payment.confirmed", orderCode=display_code(order)))
        except Exception:
            current_app.logger.exception("Failed to notify payment confirmation for order %s", order.id)

    realtime_service.emit(realtime_service.PAYMENT_UPDATED, {"order_id": order.id, "payment": payment.to_dict()})
    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id})
    return {"payment": payment.to_dict(), "summary": payment_summary(order.id)}


def mark_proof_received(*, order_id: int, reference: str | None = None, proof_url: str | None = None,
                        method: str | None = None) -> Payment | None:
    """Customer sent a screenshot or payer names: move an unpaid payment to 'verifying'."""
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    payment = ensure_payment(order)
    if reference:
        payment.reference = reference[:255]
    if proof_url:
        payment.proof_url = proof_url[:512]
    if method:
        payment.method = method
    if payment.status in (PAYMENT_STATUS_AWAITING, PAYMENT_STATUS_FAILED):
        payment.status = PAYMENT_STATUS_VERIFYING
    payment.updated_at = utcnow()
    db.session.commit()
    realtime_service.emit(realtime_service.PAYMENT_UPDATED, {"order_id": order.id, "payment": payment.to_dict()})
    return payment


def list_installments(order_id: int) -> list[dict]:
    payment = db.session.query(Payment).filter_by(order_id=order_id).first()
    if payment is None:
        return []
    rows = (
        db.session.query(PaymentInstallment)
        .filter_by(payment_id=payment.id)
        .order_by(PaymentInstallment.created_at.asc(), PaymentInstallment.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


def _notify_installment(order: Order, amount: int, summary: dict) -> None:
    from . import bot_messaging
    from .document_service import display_code
    from .messages import format_tzs, t

    customer = order.customer
    text = t(
        customer.lang,
        "payment.confirm_with_remaining",
        paid=format_tzs(amount),
        orderCode=display_code(order),
        paidSoFar=format_tzs(summary["paid_tzs"]),
        remaining=format_tzs(summary["remaining_tzs"]),
        total=format_tzs(summary["total_tzs"]),
    )
    try:
        bot_messaging.send_text(customer.wa_id, text)
    except Exception:
        current_app.logger.exception("Failed to notify installment for order %s", order.id)
