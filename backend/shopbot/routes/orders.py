# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order management routes (admin console).

LIFECYCLE: pending -> preparing -> out_for_delivery -> delivered, or cancelled.
Stock is adjusted by the status endpoint in the same transaction as the
status change. Deleting an order is a soft delete.
"""

from flask import Blueprint, current_app, request

from ..decorators import require_inbox_auth
from ..extensions import db
from ..models import Order
from ..services import orders_service
from ..services.orders_service import OrderError, OrderNotFound
from ..services.payment_service import (
    PaymentError,
    list_installments,
    payment_summary,
    record_installment,
)
from ..validation import (
    ORDER_STATUSES,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_order_patch,
    validate_payload,
)

ORDER_PATCH_POLICY = ModelValidationPolicy(
    writable_fields=set(orders_service.ORDER_MUTABLE_FIELDS),
    required_on_create=set(),
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _live_order_or_none(order_id: int) -> Order | None:
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        return None
    return order


@orders_bp.get("")
@require_inbox_auth
def list_orders_route():
    """
    Query params: q, status, product, phone, min_total, max_total, limit, offset
    """
    try:
        return orders_service.list_orders(
            q=request.args.get("q") or None,
            status=request.args.get("status") or None,
            product=request.args.get("product") or None,
            phone=request.args.get("phone") or None,
            min_total=request.args.get("min_total", type=int),
            max_total=request.args.get("max_total", type=int),
            limit=request.args.get("limit", type=int),
            offset=request.args.get("offset", type=int),
        )
    except OrderError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return {"error": "Internal server error"}, 500


@orders_bp.get("/<int:order_id>")
@require_inbox_auth
def get_order_route(order_id: int):
    try:
        return orders_service.get_order_detail(order_id)
    except OrderNotFound as e:
        return {"error": str(e)}, 404


@orders_bp.get("/<int:order_id>/items")
@require_inbox_auth
def get_order_items_route(order_id: int):
    try:
        return {"items": orders_service.get_order_items(order_id)}
    except OrderNotFound as e:
        return {"error": str(e)}, 404


@orders_bp.post("/manual")
@require_inbox_auth
def create_manual_order_route():
    """
    Staff-entered order.

    Body: customer_name, phone, location_type (within|outside),
    delivery_mode (delivery|pickup), region?, km?, fee_tzs?, payment_mode?,
    items: [{sku, qty}]
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = orders_service.create_manual_order(payload)
    except (OrderError, ValueError) as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create manual order")
        return {"error": "Internal server error"}, 500
    return orders_service.get_order_detail(order.id), 201


@orders_bp.patch("/<int:order_id>")
@require_inbox_auth
def update_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_PATCH_POLICY, partial=True)
        enforce_rules_order_patch(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return orders_service.update_order(order_id, patch)
    except OrderNotFound as e:
        return {"error": str(e)}, 404
    except OrderError as e:
        return {"error": str(e)}, 409


@orders_bp.post("/<int:order_id>/status")
@require_inbox_auth
def change_status_route(order_id: int):
    """
    Body: {"status": ..., "delivery_agent_phone": "..."?}

    delivery_agent_phone is required when moving to out_for_delivery
    (unless already set on the order).
    """
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if status not in ORDER_STATUSES:
        return {"error": f"status must be one of {', '.join(ORDER_STATUSES)}"}, 400

    rider_phone = (data.get("delivery_agent_phone") or "").strip() or None

    try:
        return orders_service.change_status(order_id, status, delivery_agent_phone=rider_phone)
    except OrderNotFound as e:
        return {"error": str(e)}, 404
    except OrderError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to change status of order %s", order_id)
        return {"error": "Internal server error"}, 500


@orders_bp.delete("/<int:order_id>")
@require_inbox_auth
def delete_order_route(order_id: int):
    try:
        orders_service.soft_delete_order(order_id)
    except OrderNotFound as e:
        return {"error": str(e)}, 404
    return {"ok": True}


@orders_bp.get("/<int:order_id>/payments")
@require_inbox_auth
def get_order_payments_route(order_id: int):
    order = _live_order_or_none(order_id)
    if order is None:
        return {"error": "Order not found"}, 404
    return {
        "payment": order.payment.to_dict() if order.payment else None,
        "summary": payment_summary(order.id),
        "installments": list_installments(order.id),
    }


@orders_bp.post("/<int:order_id>/payments")
@require_inbox_auth
def record_payment_route(order_id: int):
    """
    Record a confirmed installment.

    Body: {"amount_tzs": int (alias "amount"), "note": str?}
    """
    data = request.get_json(silent=True) or {}
    amount = data.get("amount_tzs", data.get("amount"))
    if isinstance(amount, str) and amount.strip().isdigit():
        amount = int(amount.strip())
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        return {"error": "amount_tzs must be a positive integer"}, 400

    if _live_order_or_none(order_id) is None:
        return {"error": "Order not found"}, 404

    note = (data.get("note") or "").strip() or None
    try:
        return record_installment(order_id=order_id, amount_tzs=amount, note=note), 201
    except PaymentError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to record payment for order %s", order_id)
        return {"error": "Internal server error"}, 500
