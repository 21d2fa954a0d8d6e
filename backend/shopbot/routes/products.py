# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes.

Products are what the chatbot sells; the main menu lists active products
and refuses those with no stock.
"""
from flask import Blueprint, request

from ..decorators import require_inbox_auth
from ..models import Product
from ..services import products_service
from ..services.products_service import ProductError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=set(products_service.PRODUCT_MUTABLE_FIELDS),
    required_on_create={"sku", "name", "price_tzs"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_inbox_auth
def list_products():
    """
    Query params:
    - q: search in name/sku
    - active: "true" to list active products only
    - page / per_page: optional pagination (per_page max 100)
    """
    return products_service.list_products(
        q=request.args.get("q") or None,
        active_only=request.args.get("active", "false").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@require_inbox_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    return created, 201


@products_bp.get("/<int:product_id>")
@require_inbox_auth
def get_product_route(product_id: int):
    p = products_service.get_product(product_id)
    if p is None:
        return {"error": "Product not found"}, 404
    return p.to_dict()


@products_bp.put("/<int:product_id>")
@require_inbox_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if updated is None:
        return {"error": "Product not found"}, 404
    return updated


@products_bp.delete("/<int:product_id>")
@require_inbox_auth
def delete_product_route(product_id: int):
    """Products referenced by orders are deactivated instead of deleted."""
    result = products_service.delete_product(product_id=product_id)
    if result is None:
        return {"error": "Product not found"}, 404
    return result, 200


@products_bp.post("/<int:product_id>/stock")
@require_inbox_auth
def adjust_stock_route(product_id: int):
    """Body: {"delta": int}; positive adds stock, negative removes it."""
    data = request.get_json(silent=True) or {}
    delta = data.get("delta")
    if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
        return {"error": "delta must be a non-zero integer"}, 400

    if products_service.get_product(product_id) is None:
        return {"error": "Product not found"}, 404

    try:
        return products_service.adjust_stock(product_id=product_id, delta=delta)
    except ProductError as e:
        return {"error": str(e)}, 409
