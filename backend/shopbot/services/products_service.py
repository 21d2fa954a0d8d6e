# backend/shopbot/services/products_service.py
"""
Products Service

Catalog CRUD for the admin console, catalog reads for the chatbot, stock
adjustments, and restock notifications for customers who asked to be
told when a product comes back.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, OrderItem, Product, RestockSubscription
from ..validation import ConflictError
from ..time_utils import utcnow
from . import realtime_service
from .concurrency import lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "price_tzs", "stock_qty", "is_active",
    "short_description", "description", "usage_instructions", "warnings", "image_url",
    "discount_type", "discount_amount", "discount_starts_at", "discount_ends_at",
}


class ProductError(Exception):
    """Raised for product lookups and stock operations that cannot proceed."""
    pass


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(
    *,
    q: str | None = None,
    active_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    if q:
        like = f"%{q.strip()}%"
        base_query = base_query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def catalog_for_menu() -> list[Product]:
    """Active products in display order, as shown in the chatbot main menu."""
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def get_product_by_sku(sku: str) -> Product | None:
    if not sku:
        return None
    return db.session.query(Product).filter(Product.sku == sku.strip().upper()).first()


def create_product(*, patch: dict) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If SKU already exists
    """
    sku = (patch.get("sku") or "").strip().upper()
    if not sku:
        raise ValueError("sku is required")
    patch = {**patch, "sku": sku}

    if get_product_by_sku(sku):
        raise ConflictError("SKU already exists.")

    p = Product()
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.commit()

    realtime_service.emit(realtime_service.PRODUCTS_UPDATED, {"product_id": p.id})
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict | None:
    p = get_product(product_id)
    if p is None:
        return None

    if "sku" in patch and patch["sku"]:
        patch = {**patch, "sku": patch["sku"].strip().upper()}
        existing = get_product_by_sku(patch["sku"])
        if existing and existing.id != p.id:
            raise ConflictError("SKU already exists.")

    was_out_of_stock = (p.stock_qty or 0) <= 0
    apply_product_patch(p, patch)
    p.updated_at = utcnow()
    db.session.commit()

    if was_out_of_stock and (p.stock_qty or 0) > 0:
        notify_restock_subscribers(p)

    realtime_service.emit(realtime_service.PRODUCTS_UPDATED, {"product_id": p.id})
    return p.to_dict()


def delete_product(*, product_id: int) -> dict | None:
    """
    Delete a product. Products referenced by past orders are deactivated
    instead so order history keeps its link.
    """
    p = get_product(product_id)
    if p is None:
        return None

    referenced = db.session.query(OrderItem.id).filter(OrderItem.product_id == p.id).first() is not None
    if referenced:
        p.is_active = False
        p.updated_at = utcnow()
        result = {"ok": True, "deleted": False, "deactivated": True}
    else:
        db.session.query(RestockSubscription).filter_by(product_id=p.id).delete(synchronize_session=False)
        db.session.delete(p)
        result = {"ok": True, "deleted": True, "deactivated": False}
    db.session.commit()

    realtime_service.emit(realtime_service.PRODUCTS_UPDATED, {"product_id": product_id})
    return result


def adjust_stock(*, product_id: int, delta: int) -> dict:
    """
    Add (or remove, with a negative delta) stock.

    Raises:
        ProductError: product missing, zero delta, or stock would go negative
    """
    if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
        raise ProductError("delta must be a non-zero integer")

    def _op():
        p = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise ProductError("Product not found")
        before = p.stock_qty or 0
        if before + delta < 0:
            raise ProductError(f"Insufficient stock: have {before}, cannot remove {-delta}")
        p.stock_qty = before + delta
        p.updated_at = utcnow()
        db.session.commit()
        return p, before

    p, before = run_with_retry(_op, label=f"stock adjust product {product_id}")

    if before <= 0 < p.stock_qty:
        notify_restock_subscribers(p)
    realtime_service.emit(realtime_service.PRODUCTS_UPDATED, {"product_id": p.id, "stock_qty": p.stock_qty})
    return p.to_dict()


# =============================================================================
# RESTOCK SUBSCRIPTIONS
# =============================================================================

def subscribe_restock(*, customer: Customer, product: Product, lang: str) -> RestockSubscription:
    sub = (
        db.session.query(RestockSubscription)
        .filter_by(customer_id=customer.id, product_id=product.id)
        .first()
    )
    if sub is None:
        sub = RestockSubscription(customer_id=customer.id, product_id=product.id, lang=lang)
        db.session.add(sub)
    sub.status = "subscribed"
    sub.lang = lang
    sub.notified_at = None
    db.session.commit()
    return sub


def notify_restock_subscribers(product: Product) -> int:
    """Message every subscribed customer once; returns how many were notified."""
    from . import bot_messaging
    from .messages import t

    subs = (
        db.session.query(RestockSubscription)
        .filter_by(product_id=product.id, status="subscribed")
        .all()
    )
    for sub in subs:
        bot_messaging.send_text(sub.customer.wa_id, t(sub.lang, "product.restock_available", name=product.name))
        sub.status = "notified"
        sub.notified_at = utcnow()
    db.session.commit()
    return len(subs)
