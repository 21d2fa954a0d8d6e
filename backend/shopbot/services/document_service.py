# Overview: Service-layer operations for order codes; allocates human-readable unique identifiers.

from __future__ import annotations

import re
import secrets

from ..extensions import db
from ..models import Order
from ..time_utils import utcnow

ORDER_CODE_PREFIX = "UJ"
# Crockford base32 (no I, L, O, U) to keep codes easy to read aloud
CODE_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
CODE_SUFFIX_LEN = 4
MAX_CODE_ATTEMPTS = 10

_LEGACY_CODE_RE = re.compile(r"^UJ-(\d+)$", re.IGNORECASE)


class DocumentSequenceError(Exception):
    """Raised when a unique code cannot be allocated."""
    pass


def _random_suffix(length: int = CODE_SUFFIX_LEN) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_order_code(*, now=None, suffix_fn=None) -> str:
    now = now or utcnow()
    suffix = (suffix_fn or _random_suffix)()
    return f"{ORDER_CODE_PREFIX}-{now:%y%m%d}-{suffix}"


def code_exists(code: str) -> bool:
    return db.session.query(Order.id).filter(Order.order_code == code).first() is not None


def next_order_code(*, now=None, suffix_fn=None, attempts: int = MAX_CODE_ATTEMPTS) -> str:
    """
    Allocate an order code that no existing order uses.

    Retries with a fresh random suffix on collision. The unique index on
    orders.order_code stays the final guard against concurrent inserts.
    """
    for _ in range(attempts):
        candidate = generate_order_code(now=now, suffix_fn=suffix_fn)
        if not code_exists(candidate):
            return candidate
    raise DocumentSequenceError(f"Could not allocate a unique order code after {attempts} attempts")


def display_code(order: Order) -> str:
    """Code shown to customers; orders without a stored code fall back to UJ-<id>."""
    return order.order_code or f"{ORDER_CODE_PREFIX}-{order.id}"


def find_order_by_code(code: str) -> Order | None:
    """Resolve a customer-typed code: exact order_code first, then legacy UJ-<id>."""
    code = (code or "").strip().upper()
    if not code:
        return None
    order = (
        db.session.query(Order)
        .filter(Order.order_code == code, Order.deleted_at.is_(None))
        .first()
    )
    if order:
        return order
    m = _LEGACY_CODE_RE.match(code)
    if m:
        return (
            db.session.query(Order)
            .filter(Order.id == int(m.group(1)), Order.deleted_at.is_(None))
            .first()
        )
    return None
