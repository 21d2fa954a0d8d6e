# Overview: Flask API routes for payment status changes.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_inbox_auth
from ..extensions import db
from ..models import Payment
from ..services.payment_service import ADMIN_SETTABLE_STATUSES, PaymentError, set_payment_status

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/<int:payment_id>/status")
@require_inbox_auth
def set_payment_status_route(payment_id: int):
    """
    Body: {"status": "verifying" | "paid" | "failed"}

    'paid' settles any remaining balance and notifies the customer.
    """
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if status not in ADMIN_SETTABLE_STATUSES:
        return jsonify({"error": f"status must be one of {', '.join(ADMIN_SETTABLE_STATUSES)}"}), 400

    if db.session.get(Payment, payment_id) is None:
        return jsonify({"error": "Payment not found"}), 404

    try:
        result = set_payment_status(payment_id=payment_id, status=status)
        return jsonify(result), 200
    except PaymentError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500
