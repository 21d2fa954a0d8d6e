# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Orders Service

WHY: Orders are created by the chatbot checkout and by staff (manual
orders), then driven through fulfilment from the admin console.

LIFECYCLE:
    pending -> preparing -> out_for_delivery -> delivered
    pending | preparing | out_for_delivery -> cancelled

STOCK:
- stock is taken once, the first time an order moves from pending into a
  fulfilment status (normally 'preparing')
- stock is given back once, when an order that took stock is cancelled
  or sent back to pending
- both happen in the same transaction as the status change, with the
  product rows locked

SOFT DELETE: deleted_at is set; deleted orders are hidden everywhere.
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Order, OrderItem, Payment, Product
from ..time_utils import utcnow
from ..validation import DELIVERY_MODES, ORDER_STATUSES, PAYMENT_MODES
from . import realtime_service
from .concurrency import lock_for_update, run_with_retry
from .delivery_service import fee_for_dar_distance, outside_dar_fee
from .document_service import display_code, next_order_code
from .payment_service import (
    PAYMENT_STATUS_AWAITING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_VERIFYING,
    ensure_payment,
)

ORDER_LIST_DEFAULT_LIMIT = 200
ORDER_LIST_MAX_LIMIT = 1000

STATUS_PENDING = "pending"
STATUS_PREPARING = "preparing"
STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

FULFILMENT_STATUSES = {STATUS_PREPARING, STATUS_OUT_FOR_DELIVERY, STATUS_DELIVERED}

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PREPARING, STATUS_OUT_FOR_DELIVERY, STATUS_DELIVERED, STATUS_CANCELLED},
    STATUS_PREPARING: {STATUS_PENDING, STATUS_OUT_FOR_DELIVERY, STATUS_DELIVERED, STATUS_CANCELLED},
    STATUS_OUT_FOR_DELIVERY: {STATUS_PREPARING, STATUS_DELIVERED, STATUS_CANCELLED},
    STATUS_DELIVERED: set(),
    STATUS_CANCELLED: set(),
}

NOTIFY_MESSAGES = {
    STATUS_PREPARING: "order.preparing_message",
    STATUS_OUT_FOR_DELIVERY: "order.out_for_delivery_message",
    STATUS_DELIVERED: "order.delivered_message",
}

ORDER_MUTABLE_FIELDS = {"phone", "region", "delivery_mode", "payment_mode", "km", "fee_tzs", "delivery_agent_phone"}

MAX_CODE_COLLISIONS = 3


class OrderError(Exception):
    """Raised for order operations that violate business rules (409)."""
    pass


class OrderNotFound(OrderError):
    """Raised when an order does not exist or was soft-deleted (404)."""
    pass


def normalize_phone(raw: str | None) -> str | None:
    """
    Normalize a Tanzanian phone number to 255XXXXXXXXX.

    Accepts 07XXXXXXXX, 7XXXXXXXX, +2557XXXXXXXX, 2557XXXXXXXX (spaces/dashes ignored).
    Returns None when the input does not look like a phone number.
    """
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith("255") and len(digits) == 12:
        return digits
    if digits.startswith("0") and len(digits) == 10:
        return "255" + digits[1:]
    if len(digits) == 9 and digits[0] in "67":
        return "255" + digits
    if 10 <= len(digits) <= 15:
        return digits
    return None


def _live_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        raise OrderNotFound("Order not found")
    return order


# =============================================================================
# CREATION
# =============================================================================

def create_order_with_payment(
    *,
    customer: Customer,
    items: list[dict],
    delivery_mode: str,
    fee_tzs: int = 0,
    km: float | None = None,
    phone: str | None = None,
    region: str | None = None,
    lat: float | None = None,
    lon: float | None = None,
    payment_mode: str | None = None,
) -> Order:
    """
    Create an order, its item snapshots and an 'awaiting' payment in one transaction.

    items: [{"sku", "name", "qty", "unit_price_tzs", "product_id"?}]
    total_tzs = sum(qty * unit_price_tzs) + fee_tzs
    """
    if not items:
        raise OrderError("Order must contain at least one item")
    if delivery_mode not in DELIVERY_MODES:
        raise OrderError(f"Invalid delivery_mode: {delivery_mode}")
    if payment_mode is not None and payment_mode not in PAYMENT_MODES:
        raise OrderError(f"Invalid payment_mode: {payment_mode}")

    clean_items = []
    for it in items:
        qty = int(it.get("qty") or 0)
        price = int(it.get("unit_price_tzs") or 0)
        if qty <= 0:
            raise OrderError(f"Invalid quantity for {it.get('sku')}")
        if price < 0:
            raise OrderError(f"Invalid price for {it.get('sku')}")
        clean_items.append({
            "sku": it["sku"],
            "name": it.get("name") or it["sku"],
            "qty": qty,
            "unit_price_tzs": price,
            "product_id": it.get("product_id"),
        })

    subtotal = sum(i["qty"] * i["unit_price_tzs"] for i in clean_items)
    fee = max(0, int(fee_tzs or 0))

    for attempt in range(MAX_CODE_COLLISIONS):
        now = utcnow()
        order = Order(
            customer_id=customer.id,
            order_code=next_order_code(now=now),
            status=STATUS_PENDING,
            delivery_mode=delivery_mode,
            payment_mode=payment_mode,
            km=km,
            fee_tzs=fee,
            total_tzs=subtotal + fee,
            phone=phone,
            region=region,
            lat=lat,
            lon=lon,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError:
            # Concurrent insert took the same code
            db.session.rollback()
            if attempt >= MAX_CODE_COLLISIONS - 1:
                raise OrderError("Could not allocate an order code")
            continue

        for i in clean_items:
            db.session.add(OrderItem(order_id=order.id, **i))
        db.session.add(Payment(order_id=order.id, status=PAYMENT_STATUS_AWAITING, amount_tzs=0))
        db.session.commit()
        break

    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id})
    return order


def create_manual_order(payload: dict) -> Order:
    """
    Staff-entered order.

    payload:
        customer_name, phone (required)
        location_type: within | outside (Dar es Salaam)
        delivery_mode: delivery | pickup (within only; outside is always delivery)
        region, km, fee_tzs (optional; km prices a Dar delivery)
        items: [{sku, qty}]
    """
    name = (payload.get("customer_name") or "").strip()
    phone = normalize_phone(payload.get("phone"))
    if not name:
        raise OrderError("customer_name is required")
    if not phone:
        raise OrderError("A valid phone is required")

    location_type = payload.get("location_type") or "within"
    if location_type not in ("within", "outside"):
        raise OrderError("location_type must be 'within' or 'outside'")
    delivery_mode = payload.get("delivery_mode") or "delivery"
    if location_type == "outside":
        delivery_mode = "delivery"
    if delivery_mode not in DELIVERY_MODES:
        raise OrderError(f"Invalid delivery_mode: {delivery_mode}")

    raw_items = payload.get("items") or []
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderError("items must be a non-empty list")

    items = []
    for raw in raw_items:
        sku = str((raw or {}).get("sku") or "").strip().upper()
        try:
            qty = int((raw or {}).get("qty") or 0)
        except (TypeError, ValueError):
            raise OrderError(f"Invalid quantity for {sku}")
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product is None:
            raise OrderError(f"Unknown product: {sku}")
        if qty <= 0:
            raise OrderError(f"Invalid quantity for {sku}")
        items.append({
            "sku": product.sku,
            "name": product.name,
            "qty": qty,
            "unit_price_tzs": product.effective_price_tzs(),
            "product_id": product.id,
        })

    km = payload.get("km")
    km = float(km) if km not in (None, "") else None
    if location_type == "outside":
        fee = outside_dar_fee()
    elif delivery_mode == "pickup":
        fee = 0
    elif payload.get("fee_tzs") not in (None, ""):
        fee = int(payload["fee_tzs"])
    elif km is not None:
        fee = fee_for_dar_distance(km)
    else:
        fee = 0

    from .customer_service import upsert_customer
    customer = upsert_customer(phone, name=name, phone=phone)
    db.session.commit()

    return create_order_with_payment(
        customer=customer,
        items=items,
        delivery_mode=delivery_mode,
        fee_tzs=fee,
        km=km if location_type == "within" and delivery_mode == "delivery" else None,
        phone=phone,
        region=(payload.get("region") or ("Dar es Salaam" if location_type == "within" else None)),
        payment_mode=payload.get("payment_mode"),
    )


# =============================================================================
# QUERIES
# =============================================================================

def _order_row(order: Order, customer: Customer, payment: Payment | None) -> dict:
    row = order.to_dict()
    paid = payment.amount_tzs if payment else 0
    row.update({
        "order_code": order.order_code or display_code(order),
        "customer_name": customer.name,
        "customer_wa_id": customer.wa_id,
        "payment_id": payment.id if payment else None,
        "paid_amount": paid,
        "remaining_tzs": max(0, (order.total_tzs or 0) - paid),
        "payment_status": payment.status if payment else PAYMENT_STATUS_AWAITING,
    })
    return row


def list_orders(
    *,
    q: str | None = None,
    status: str | None = None,
    product: str | None = None,
    phone: str | None = None,
    min_total: int | None = None,
    max_total: int | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """
    Filtered order listing, newest first. Soft-deleted orders are excluded.

    q matches order code, customer name, phone or region.
    product matches an item sku or name.
    """
    query = (
        db.session.query(Order, Customer, Payment)
        .join(Customer, Customer.id == Order.customer_id)
        .outerjoin(Payment, Payment.order_id == Order.id)
        .filter(Order.deleted_at.is_(None))
    )

    if status:
        if status not in ORDER_STATUSES:
            raise OrderError(f"Invalid status filter: {status}")
        query = query.filter(Order.status == status)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(
            Order.order_code.ilike(like),
            Customer.name.ilike(like),
            Order.phone.ilike(like),
            Customer.phone.ilike(like),
            Order.region.ilike(like),
        ))
    if phone:
        like = f"%{re.sub(r'[^0-9]', '', phone) or phone}%"
        query = query.filter(or_(Order.phone.ilike(like), Customer.phone.ilike(like), Customer.wa_id.ilike(like)))
    if product:
        like = f"%{product.strip()}%"
        item_sq = (
            db.session.query(OrderItem.order_id)
            .filter(or_(OrderItem.sku.ilike(like), OrderItem.name.ilike(like)))
        )
        query = query.filter(Order.id.in_(item_sq))
    if min_total is not None:
        query = query.filter(Order.total_tzs >= min_total)
    if max_total is not None:
        query = query.filter(Order.total_tzs <= max_total)

    total = query.count()
    limit = min(max(1, limit or ORDER_LIST_DEFAULT_LIMIT), ORDER_LIST_MAX_LIMIT)
    offset = max(0, offset or 0)

    rows = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    items = [_order_row(o, c, p) for o, c, p in rows]
    return {"items": items, "count": len(items), "total": total}


def get_order_detail(order_id: int) -> dict:
    from .payment_service import list_installments, payment_summary

    order = _live_order(order_id)
    row = _order_row(order, order.customer, order.payment)
    row["items"] = [i.to_dict() for i in order.items]
    row["subtotal_tzs"] = order.subtotal_tzs
    row["summary"] = payment_summary(order.id)
    row["installments"] = list_installments(order.id)
    return row


def get_order_items(order_id: int) -> list[dict]:
    order = _live_order(order_id)
    return [i.to_dict() for i in order.items]


def orders_for_customer(customer_id: int, *, limit: int = 10) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.customer_id == customer_id, Order.deleted_at.is_(None))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )


def latest_order_for_name(name: str) -> Order | None:
    """Most recent live order whose customer name matches (case-insensitive)."""
    name = (name or "").strip()
    if not name:
        return None
    return (
        db.session.query(Order)
        .join(Customer, Customer.id == Order.customer_id)
        .filter(func.lower(Customer.name) == name.lower(), Order.deleted_at.is_(None))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )


# =============================================================================
# UPDATES
# =============================================================================

def update_order(order_id: int, patch: dict) -> dict:
    """
    Edit delivery details; total is recomputed when the fee changes.

    The payment follows the new total: covered -> paid, a reopened balance
    moves paid back to verifying, and a total below the amount already
    paid is refused.
    """
    order = _live_order(order_id)
    if order.status in (STATUS_DELIVERED, STATUS_CANCELLED):
        raise OrderError(f"Cannot edit a {order.status} order")

    for k, v in patch.items():
        if k not in ORDER_MUTABLE_FIELDS:
            continue
        setattr(order, k, v)

    if "km" in patch and "fee_tzs" not in patch and order.delivery_mode == "delivery" and order.km is not None:
        order.fee_tzs = fee_for_dar_distance(order.km)
    if order.delivery_mode == "pickup" and "fee_tzs" not in patch:
        order.fee_tzs = 0

    order.total_tzs = order.subtotal_tzs + (order.fee_tzs or 0)
    _reconcile_payment(order)
    order.updated_at = utcnow()
    db.session.commit()

    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id})
    return get_order_detail(order.id)


def _reconcile_payment(order: Order) -> None:
    """Keep the payment status in line with the balance after a total change."""
    payment = order.payment
    paid = (payment.amount_tzs or 0) if payment is not None else 0
    if paid > order.total_tzs:
        db.session.rollback()
        raise OrderError(
            f"New total {order.total_tzs} is below the {paid} already paid for order {order.id}"
        )
    if payment is None or paid == 0:
        return
    if paid == order.total_tzs:
        payment.status = PAYMENT_STATUS_PAID
    elif payment.status == PAYMENT_STATUS_PAID:
        payment.status = PAYMENT_STATUS_VERIFYING
    payment.updated_at = utcnow()


def _locked_products(order: Order) -> dict[int, Product]:
    product_ids = sorted({i.product_id for i in order.items if i.product_id})
    if not product_ids:
        return {}
    rows = lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids))).all()
    return {p.id: p for p in rows}


def _deduct_stock(order: Order) -> None:
    products = _locked_products(order)
    for item in order.items:
        p = products.get(item.product_id)
        if p is None:
            continue
        if (p.stock_qty or 0) < item.qty:
            raise OrderError(f"Insufficient stock for {p.sku}: have {p.stock_qty}, need {item.qty}")
    for item in order.items:
        p = products.get(item.product_id)
        if p is not None:
            p.stock_qty = (p.stock_qty or 0) - item.qty
            p.updated_at = utcnow()
    order.stock_deducted = True


def _restore_stock(order: Order) -> None:
    products = _locked_products(order)
    for item in order.items:
        p = products.get(item.product_id)
        if p is not None:
            p.stock_qty = (p.stock_qty or 0) + item.qty
            p.updated_at = utcnow()
    order.stock_deducted = False


def change_status(order_id: int, new_status: str, *, delivery_agent_phone: str | None = None,
                  notify: bool = True) -> dict:
    """
    Move an order to new_status, adjusting stock in the same transaction.

    Raises:
        OrderNotFound: missing or deleted order
        OrderError: invalid status/transition, missing rider phone, insufficient stock
    """
    if new_status not in ORDER_STATUSES:
        raise OrderError(f"Invalid status: {new_status}")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise OrderNotFound("Order not found")

        old_status = order.status
        if new_status == old_status:
            if delivery_agent_phone:
                order.delivery_agent_phone = delivery_agent_phone
                order.updated_at = utcnow()
                db.session.commit()
            return order, old_status, False

        if new_status not in ALLOWED_TRANSITIONS.get(old_status, set()):
            raise OrderError(f"Cannot change status from {old_status} to {new_status}")

        if delivery_agent_phone:
            order.delivery_agent_phone = delivery_agent_phone
        if new_status == STATUS_OUT_FOR_DELIVERY and not order.delivery_agent_phone:
            raise OrderError("delivery_agent_phone is required for out_for_delivery")

        stock_changed = False
        if new_status in FULFILMENT_STATUSES and not order.stock_deducted:
            _deduct_stock(order)
            stock_changed = True
        elif new_status in (STATUS_CANCELLED, STATUS_PENDING) and order.stock_deducted:
            _restore_stock(order)
            stock_changed = True

        order.status = new_status
        order.updated_at = utcnow()
        db.session.commit()
        return order, old_status, stock_changed

    order, old_status, stock_changed = run_with_retry(_op, label=f"order {order_id} -> {new_status}")

    if notify and old_status != new_status and new_status in NOTIFY_MESSAGES:
        _notify_status(order)

    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id, "status": order.status})
    if stock_changed:
        realtime_service.emit(realtime_service.PRODUCTS_UPDATED, {"order_id": order.id})
    return get_order_detail(order.id)


def _notify_status(order: Order) -> None:
    from . import bot_messaging
    from .messages import t

    customer = order.customer
    text = t(
        customer.lang,
        NOTIFY_MESSAGES[order.status],
        orderCode=display_code(order),
        deliveryAgentPhone=order.delivery_agent_phone or "",
    )
    try:
        bot_messaging.send_text(customer.wa_id, text)
    except Exception:
        current_app.logger.exception("Failed to notify status change for order %s", order.id)


def soft_delete_order(order_id: int) -> bool:
    order = _live_order(order_id)
    order.deleted_at = utcnow()
    order.updated_at = order.deleted_at
    db.session.commit()
    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id, "deleted": True})
    return True


def set_payment_mode(order_id: int, mode: str) -> Order:
    if mode not in PAYMENT_MODES:
        raise OrderError(f"Invalid payment_mode: {mode}")
    order = _live_order(order_id)
    order.payment_mode = mode
    order.updated_at = utcnow()
    ensure_payment(order)
    db.session.commit()
    realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": order.id})
    return order
