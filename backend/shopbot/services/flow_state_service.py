# Overview: Persisted per-customer chatbot state (flow step, cart, contact details).

"""
Conversation State

One conversation_states row per wa_id holds everything the bot needs to
resume a customer's checkout after a restart: the current step, the
language, the cart, a pending single-item purchase, an item waiting for
a quantity, and the contact details collected so far.

JSON columns are always reassigned (never mutated in place) so the ORM
sees the change.
"""

from __future__ import annotations

from ..extensions import db
from ..models import ConversationState
from ..time_utils import utcnow
from .messages import normalize_lang

# Flow steps
IDLE = "IDLE"
ASK_IF_DAR = "ASK_IF_DAR"
ASK_IN_DAR_MODE = "ASK_IN_DAR_MODE"
ASK_NAME_IN = "ASK_NAME_IN"
ASK_PHONE_IN = "ASK_PHONE_IN"
ASK_GPS = "ASK_GPS"
ASK_NAME_OUT = "ASK_NAME_OUT"
ASK_PHONE_OUT = "ASK_PHONE_OUT"
ASK_REGION_OUT = "ASK_REGION_OUT"
TRACK_ASK_NAME = "TRACK_ASK_NAME"
WAIT_PROOF = "WAIT_PROOF"

FLOW_STEPS = (
    IDLE, ASK_IF_DAR, ASK_IN_DAR_MODE, ASK_NAME_IN, ASK_PHONE_IN, ASK_GPS,
    ASK_NAME_OUT, ASK_PHONE_OUT, ASK_REGION_OUT,
    TRACK_ASK_NAME, WAIT_PROOF,
)


def load_state(wa_id: str, *, default_lang: str | None = None) -> ConversationState:
    state = db.session.query(ConversationState).filter_by(wa_id=wa_id).first()
    if state is None:
        state = ConversationState(
            wa_id=wa_id,
            step=IDLE,
            lang=normalize_lang(default_lang),
            cart=[],
            contact={},
        )
        db.session.add(state)
        db.session.flush()
    return state


def save_state(state: ConversationState) -> None:
    state.updated_at = utcnow()
    db.session.commit()


def set_step(state: ConversationState, step: str) -> None:
    if step not in FLOW_STEPS:
        raise ValueError(f"Unknown flow step: {step}")
    state.step = step
    save_state(state)


def reset_flow(state: ConversationState) -> None:
    """Back to IDLE; the cart and language are kept."""
    state.step = IDLE
    state.pending_item = None
    state.pending_qty_item = None
    state.contact = {}
    state.payment_option = None
    save_state(state)


def clear_after_order(state: ConversationState, *, order_id: int | None = None) -> None:
    """Drop whatever was just ordered (the pending item, or else the whole cart)."""
    if state.pending_item:
        state.pending_item = None
    else:
        state.cart = []
    if order_id is not None:
        state.last_order_id = order_id
    save_state(state)


def update_contact(state: ConversationState, **fields) -> None:
    contact = dict(state.contact or {})
    contact.update({k: v for k, v in fields.items() if v is not None})
    state.contact = contact
    save_state(state)


def add_to_cart(state: ConversationState, item: dict) -> list[dict]:
    """
    Add {sku, name, qty, unit_price_tzs, product_id}; a line with the same
    sku and unit price is merged by summing quantities.
    """
    cart = [dict(line) for line in (state.cart or [])]
    for line in cart:
        if line["sku"] == item["sku"] and line["unit_price_tzs"] == item["unit_price_tzs"]:
            line["qty"] += item["qty"]
            break
    else:
        cart.append(dict(item))
    state.cart = cart
    save_state(state)
    return cart


def checkout_items(state: ConversationState) -> list[dict]:
    """Items to order now: the pending BUY item if any, else the cart."""
    if state.pending_item:
        return [dict(state.pending_item)]
    return [dict(line) for line in (state.cart or [])]


def cart_total(items: list[dict]) -> int:
    return sum(int(i["qty"]) * int(i["unit_price_tzs"]) for i in items)
