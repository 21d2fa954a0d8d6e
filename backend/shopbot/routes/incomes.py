# Overview: Flask API routes for incomes; manual income entries and their approval.

"""
Income routes.

Confirmed order payments are booked automatically as approved 'order'
incomes. Staff add other income by hand; manual entries start as
'pending' and must be approved or rejected.
"""

from flask import Blueprint, request

from ..decorators import require_inbox_auth
from ..models import Income
from ..services import finance_service
from ..services.finance_service import FinanceError
from ..validation import (
    INCOME_SOURCES,
    INCOME_STATUSES,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_income,
    validate_payload,
)

INCOME_POLICY = ModelValidationPolicy(
    writable_fields=set(finance_service.INCOME_MUTABLE_FIELDS),
    required_on_create={"amount_tzs"},
)

incomes_bp = Blueprint("incomes", __name__, url_prefix="/api/incomes")


@incomes_bp.get("")
@require_inbox_auth
def list_incomes_route():
    """Query params: status, source, from, to (YYYY-MM-DD)"""
    status = request.args.get("status") or None
    source = request.args.get("source") or None
    if status and status not in INCOME_STATUSES:
        return {"error": f"status must be one of {', '.join(INCOME_STATUSES)}"}, 400
    if source and source not in INCOME_SOURCES:
        return {"error": f"source must be one of {', '.join(INCOME_SOURCES)}"}, 400

    try:
        return finance_service.list_incomes(
            status=status,
            source=source,
            start=request.args.get("from") or None,
            end=request.args.get("to") or None,
        )
    except FinanceError as e:
        return {"error": str(e)}, 400


@incomes_bp.post("")
@require_inbox_auth
def create_income_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Income, payload=payload, policy=INCOME_POLICY, partial=False)
        enforce_rules_income(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        return finance_service.create_income(patch=patch), 201
    except FinanceError as e:
        return {"error": str(e)}, 404


@incomes_bp.put("/<int:income_id>")
@require_inbox_auth
def update_income_route(income_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Income, payload=payload, policy=INCOME_POLICY, partial=True)
        enforce_rules_income(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = finance_service.update_income(income_id=income_id, patch=patch)
    except FinanceError as e:
        return {"error": str(e)}, 409
    if updated is None:
        return {"error": "Income not found"}, 404
    return updated


@incomes_bp.delete("/<int:income_id>")
@require_inbox_auth
def delete_income_route(income_id: int):
    if not finance_service.delete_income(income_id=income_id):
        return {"error": "Income not found"}, 404
    return {"ok": True}


def _decide(income_id: int, status: str):
    try:
        decided = finance_service.set_income_status(income_id=income_id, status=status)
    except FinanceError as e:
        return {"error": str(e)}, 409
    if decided is None:
        return {"error": "Income not found"}, 404
    return decided


@incomes_bp.post("/<int:income_id>/approve")
@require_inbox_auth
def approve_income_route(income_id: int):
    return _decide(income_id, "approved")


@incomes_bp.post("/<int:income_id>/reject")
@require_inbox_auth
def reject_income_route(income_id: int):
    return _decide(income_id, "rejected")
