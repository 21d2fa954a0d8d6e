# Overview: Flask API routes for expenses; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import require_inbox_auth
from ..models import Expense
from ..services import finance_service
from ..services.finance_service import FinanceError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_expense,
    validate_payload,
)

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields=set(finance_service.EXPENSE_MUTABLE_FIELDS),
    required_on_create={"incurred_on", "category", "amount_tzs"},
)

expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
@require_inbox_auth
def list_expenses_route():
    """Query params: from, to (YYYY-MM-DD), category"""
    try:
        return finance_service.list_expenses(
            start=request.args.get("from") or None,
            end=request.args.get("to") or None,
            category=request.args.get("category") or None,
        )
    except FinanceError as e:
        return {"error": str(e)}, 400


@expenses_bp.post("")
@require_inbox_auth
def create_expense_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)
        enforce_rules_expense(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return finance_service.create_expense(patch=patch), 201


@expenses_bp.put("/<int:expense_id>")
@require_inbox_auth
def update_expense_route(expense_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=True)
        enforce_rules_expense(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = finance_service.update_expense(expense_id=expense_id, patch=patch)
    if updated is None:
        return {"error": "Expense not found"}, 404
    return updated


@expenses_bp.delete("/<int:expense_id>")
@require_inbox_auth
def delete_expense_route(expense_id: int):
    if not finance_service.delete_expense(expense_id=expense_id):
        return {"error": "Expense not found"}, 404
    return {"ok": True}
