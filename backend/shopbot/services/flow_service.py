# Overview: Chatbot dispatcher; turns inbound WhatsApp messages into menu, cart, checkout and tracking steps.

"""
Flow Service

WHY: A webhook delivery carries messages from many customers; each one is
logged for the inbox and then, unless a human agent has taken over the
conversation, answered by the bot.

DISPATCH ORDER (per message):
    1. interactive reply id            -> on_interactive
    2. text containing "(#<order id>)" -> order details
    3. a quantity is pending           -> add to cart
    4. greeting / empty text while idle -> main menu
    5. active flow step                -> step handler
    6. otherwise                       -> main menu

State between messages lives in conversation_states (flow_state_service),
so a restart does not lose a half-finished checkout.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Order
from . import bot_messaging, customer_service, menu_service as menus
from . import flow_state_service as flow
from .delivery_service import (
    distance_from_office_km,
    fee_for_dar_distance,
    is_outside_service_radius,
    outside_dar_fee,
)
from .document_service import DocumentSequenceError, display_code, find_order_by_code
from .messages import format_tzs, t
from .orders_service import (
    OrderError,
    change_status,
    create_order_with_payment,
    latest_order_for_name,
    normalize_phone,
    orders_for_customer,
    set_payment_mode,
    soft_delete_order,
)
from .payment_service import mark_proof_received, payment_summary
from .products_service import get_product_by_sku, subscribe_restock, catalog_for_menu

GREETINGS = {"hi", "hello", "mambo", "start", "anza", "menu", "menyu"}
MEDIA_TYPES = ("image", "video", "audio", "document")

_ORDER_REF_RE = re.compile(r"#(\d+)\)")


# =============================================================================
# INBOUND PARSING
# =============================================================================

@dataclass
class InboundMessage:
    wa_id: str
    wa_message_id: str | None
    type: str
    text: str | None = None
    interactive_id: str | None = None
    interactive_title: str | None = None
    lat: float | None = None
    lon: float | None = None
    media_kind: str | None = None
    media_id: str | None = None

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def stored_body(self) -> str:
        """Body written to the message log (text, choice label, or a marker)."""
        if self.text:
            return self.text
        if self.interactive_id:
            return (self.interactive_title or "").strip() or f"[interactive:{self.interactive_id}]"
        if self.has_location:
            return f"LOCATION {self.lat},{self.lon}"
        if self.media_id:
            return f"MEDIA:{self.media_kind}:{self.media_id}"
        return ""


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_message(msg: dict) -> InboundMessage:
    msg_type = msg.get("type") or "text"
    inbound = InboundMessage(wa_id=msg.get("from") or "", wa_message_id=msg.get("id"), type=msg_type)

    if msg_type == "text":
        inbound.text = (msg.get("text") or {}).get("body")
    elif msg_type == "interactive":
        interactive = msg.get("interactive") or {}
        reply = interactive.get(interactive.get("type") or "") or {}
        inbound.interactive_id = reply.get("id")
        inbound.interactive_title = reply.get("title")
    elif msg_type == "button":
        # Quick-reply buttons on templates
        button = msg.get("button") or {}
        inbound.interactive_id = button.get("payload")
        inbound.interactive_title = button.get("text")
    elif msg_type == "location":
        location = msg.get("location") or {}
        inbound.lat = _to_float(location.get("latitude"))
        inbound.lon = _to_float(location.get("longitude"))
    elif msg_type in MEDIA_TYPES:
        media = msg.get(msg_type) or {}
        inbound.media_kind = msg_type
        inbound.media_id = media.get("id")
        inbound.text = media.get("caption") if msg_type != "image" else None
    return inbound


# =============================================================================
# WEBHOOK ENTRY POINT
# =============================================================================

def handle_webhook_payload(payload: dict) -> int:
    """
    Process one webhook delivery: apply delivery receipts, then dispatch
    every inbound message. Per-message failures are logged and skipped.

    Returns the number of inbound messages seen.
    """
    handled = 0
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            profiles = {
                c.get("wa_id"): (c.get("profile") or {}).get("name")
                for c in value.get("contacts") or []
            }

            for status in value.get("statuses") or []:
                try:
                    customer_service.update_message_status(status.get("id"), status.get("status"))
                except SQLAlchemyError:
                    db.session.rollback()
                    current_app.logger.exception("Failed to apply status %s", status.get("id"))

            for msg in value.get("messages") or []:
                handled += 1
                try:
                    handle_message(parse_message(msg), profile_name=profiles.get(msg.get("from")))
                except Exception:
                    db.session.rollback()
                    current_app.logger.exception("Failed to handle inbound message %s", msg.get("id"))
    return handled


def handle_message(inbound: InboundMessage, *, profile_name: str | None = None) -> None:
    if not inbound.wa_id:
        return

    customer = None
    try:
        customer, _conv, _message = customer_service.record_inbound(
            wa_id=inbound.wa_id,
            profile_name=profile_name,
            wa_message_id=inbound.wa_message_id,
            msg_type=inbound.type,
            body=inbound.stored_body,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to persist inbound message from %s", inbound.wa_id)

    if inbound.wa_message_id:
        bot_messaging.mark_read(inbound.wa_message_id)

    conv = customer_service.active_conversation_for(inbound.wa_id)
    if conv is not None and conv.agent_allowed and inbound.interactive_id != menus.ACTION_RETURN_TO_BOT:
        current_app.logger.info("Agent mode for %s; bot stays silent", inbound.wa_id)
        return

    ctx = FlowContext.load(inbound.wa_id, customer)
    dispatch(ctx, inbound)


# =============================================================================
# CONTEXT
# =============================================================================

class FlowContext:
    """One customer's view while handling a message: wa_id, persisted state, customer row."""

    def __init__(self, wa_id: str, state, customer: Customer | None):
        self.wa_id = wa_id
        self.state = state
        self._customer = customer

    @classmethod
    def load(cls, wa_id: str, customer: Customer | None = None) -> "FlowContext":
        if customer is None:
            customer = db.session.query(Customer).filter_by(wa_id=wa_id).first()
        state = flow.load_state(wa_id, default_lang=customer.lang if customer else None)
        db.session.commit()
        return cls(wa_id, state, customer)

    @property
    def lang(self) -> str:
        return self.state.lang

    @property
    def customer(self) -> Customer:
        if self._customer is None:
            self._customer = customer_service.upsert_customer(self.wa_id, lang=self.lang)
            db.session.commit()
        return self._customer

    def conversation(self):
        conv = customer_service.get_or_create_conversation(self.customer.id)
        db.session.commit()
        return conv

    def say(self, key: str, **params) -> None:
        bot_messaging.send_text(self.wa_id, t(self.lang, key, **params))

    def send_text(self, text: str) -> None:
        bot_messaging.send_text(self.wa_id, text)

    def send_list(self, menu: dict) -> None:
        bot_messaging.send_list(self.wa_id, **menu)

    def send_buttons(self, menu: dict) -> None:
        bot_messaging.send_buttons(self.wa_id, **menu)


def dispatch(ctx: FlowContext, inbound: InboundMessage) -> None:
    if inbound.interactive_id:
        on_interactive(ctx, inbound.interactive_id)
        return

    raw_text = (inbound.text or "").strip()

    if raw_text:
        match = _ORDER_REF_RE.search(raw_text)
        if match:
            show_order_details(ctx, int(match.group(1)))
            return

    if raw_text and ctx.state.pending_qty_item:
        on_quantity(ctx, raw_text)
        return

    if ctx.state.step == flow.IDLE and (not raw_text or raw_text.lower() in GREETINGS):
        show_main_menu(ctx)
        return

    if ctx.state.step != flow.IDLE:
        on_step(ctx, inbound)
        return

    show_main_menu(ctx)


# =============================================================================
# SCREENS
# =============================================================================

def show_main_menu(ctx: FlowContext) -> None:
    ctx.send_list(menus.main_menu(ctx.lang, catalog_for_menu()))


def show_cart(ctx: FlowContext) -> None:
    ctx.send_buttons(menus.cart_buttons(ctx.lang, list(ctx.state.cart or [])))


def ask_dar_choice(ctx: FlowContext) -> None:
    ctx.state.contact = {}
    flow.set_step(ctx.state, flow.ASK_IF_DAR)
    ctx.send_buttons(menus.dar_choice_buttons(ctx.lang))


def show_payment_options(ctx: FlowContext) -> None:
    options = menus.payment_options()
    if not options:
        ctx.say("payment.none")
        return
    ctx.send_buttons(menus.payment_done_buttons(ctx.lang))
    ctx.send_list(menus.payment_options_list(ctx.lang, options))


def _order_detail_text(lang: str, order: Order) -> str:
    summary = payment_summary(order.id)
    items = "\n".join(f"• {i.name} ×{i.qty}" for i in order.items)
    return t(
        lang,
        "order.detail",
        code=display_code(order),
        items=items,
        total=format_tzs(summary["total_tzs"]),
        paid=format_tzs(summary["paid_tzs"]),
        remaining=format_tzs(summary["remaining_tzs"]),
        status=t(lang, f"status.{order.status}"),
        date=order.created_at.strftime("%Y-%m-%d") if order.created_at else "",
    )


def _own_order(ctx: FlowContext, order_id: int) -> Order | None:
    """A live order belonging to this customer, else None."""
    order = db.session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        return None
    if order.customer is None or order.customer.wa_id != ctx.wa_id:
        return None
    return order


def show_order_details(ctx: FlowContext, order_id: int) -> None:
    order = _own_order(ctx, order_id)
    if order is None:
        ctx.say("order.not_found")
        return
    ctx.send_list(menus.order_actions_list(ctx.lang, order, _order_detail_text(ctx.lang, order)))


def _tracking_text(lang: str, order: Order) -> str:
    summary = payment_summary(order.id)
    lines = [
        t(lang, "track.header"),
        t(lang, "track.line_code", code=display_code(order)),
        t(lang, "track.line_status_payment", paymentStatus=t(lang, f"payment_status.{summary['payment_status']}")),
        t(lang, "track.line_status_order", orderStatus=t(lang, f"status.{order.status}")),
        t(
            lang,
            "track.line_amounts",
            total=format_tzs(summary["total_tzs"]),
            paid=format_tzs(summary["paid_tzs"]),
            remaining=format_tzs(summary["remaining_tzs"]),
        ),
    ]
    if order.delivery_agent_phone:
        lines.append(t(lang, "track.line_agent_phone", agentPhone=order.delivery_agent_phone))
    return "\n".join(lines)


# =============================================================================
# INTERACTIVE REPLIES
# =============================================================================

def on_interactive(ctx: FlowContext, reply_id: str) -> None:
    handler = _EXACT_HANDLERS.get(reply_id)
    if handler is not None:
        handler(ctx)
        return
    for prefix, prefixed_handler in _PREFIX_HANDLERS:
        if reply_id.startswith(prefix):
            prefixed_handler(ctx, reply_id[len(prefix):])
            return
    current_app.logger.info("Unknown interactive id %r from %s", reply_id, ctx.wa_id)
    show_main_menu(ctx)


def _on_back(ctx: FlowContext) -> None:
    flow.reset_flow(ctx.state)
    show_main_menu(ctx)


def _on_view_cart(ctx: FlowContext) -> None:
    show_cart(ctx)


def _on_checkout(ctx: FlowContext) -> None:
    ctx.state.pending_item = None
    if not ctx.state.cart:
        flow.save_state(ctx.state)
        ctx.say("flow.nothing_to_checkout")
        show_main_menu(ctx)
        return
    ask_dar_choice(ctx)


def _on_track_by_name(ctx: FlowContext) -> None:
    orders = orders_for_customer(ctx.customer.id)
    if not orders:
        ctx.say("track.none_found")
        _on_track_by_code(ctx)
        return
    ctx.send_list(menus.orders_list(ctx.lang, orders))


def _on_track_by_code(ctx: FlowContext) -> None:
    flow.set_step(ctx.state, flow.TRACK_ASK_NAME)
    ctx.say("track.ask_name")


def _on_faq(ctx: FlowContext) -> None:
    ctx.say("faq.text", outsideFee=format_tzs(outside_dar_fee()))
    show_main_menu(ctx)


def _on_talk_to_agent(ctx: FlowContext) -> None:
    conv = ctx.conversation()
    customer_service.set_agent_allowed(conv.id, True)
    flow.reset_flow(ctx.state)
    ctx.send_buttons(menus.agent_buttons(ctx.lang))
    agent_phone = current_app.config.get("AGENT_PHONE")
    if agent_phone:
        ctx.say("agent.call", phone=agent_phone)


def _on_return_to_bot(ctx: FlowContext) -> None:
    conv = ctx.conversation()
    customer_service.set_agent_allowed(conv.id, False)
    ctx.say("agent.returned")
    show_main_menu(ctx)


def _on_change_language(ctx: FlowContext) -> None:
    new_lang = "en" if ctx.lang == "sw" else "sw"
    ctx.state.lang = new_lang
    ctx.customer.lang = new_lang
    flow.save_state(ctx.state)
    ctx.say("language.changed")
    show_main_menu(ctx)


def _on_payment_done(ctx: FlowContext) -> None:
    flow.set_step(ctx.state, flow.WAIT_PROOF)
    ctx.say("proof.ask")


def _on_dar_inside(ctx: FlowContext) -> None:
    flow.set_step(ctx.state, flow.ASK_IN_DAR_MODE)
    ctx.send_buttons(menus.in_dar_mode_buttons(ctx.lang))


def _on_dar_outside(ctx: FlowContext) -> None:
    ctx.state.contact = {}
    flow.set_step(ctx.state, flow.ASK_NAME_OUT)
    ctx.say("flow.ask_name")


def _on_in_dar_delivery(ctx: FlowContext) -> None:
    ctx.state.contact = {}
    flow.set_step(ctx.state, flow.ASK_NAME_IN)
    ctx.say("flow.ask_name")


def _on_in_dar_pickup(ctx: FlowContext) -> None:
    key = "PICKUP_INFO_EN" if ctx.lang == "en" else "PICKUP_INFO_SW"
    flow.reset_flow(ctx.state)
    ctx.say("flow.pickup_info", info=current_app.config.get(key, ""))


def _on_paymode_phone(ctx: FlowContext) -> None:
    if ctx.state.last_order_id:
        try:
            set_payment_mode(ctx.state.last_order_id, "prepay")
        except OrderError:
            current_app.logger.warning("Could not set prepay on order %s", ctx.state.last_order_id)
    show_payment_options(ctx)


def _on_paymode_cod(ctx: FlowContext) -> None:
    if ctx.state.last_order_id:
        try:
            set_payment_mode(ctx.state.last_order_id, "cod")
        except OrderError:
            current_app.logger.warning("Could not set cod on order %s", ctx.state.last_order_id)
    ctx.say("payment.cod_confirm")


_EXACT_HANDLERS = {
    menus.ACTION_BACK: _on_back,
    menus.ACTION_VIEW_CART: _on_view_cart,
    menus.ACTION_CHECKOUT: _on_checkout,
    menus.ACTION_TRACK_BY_NAME: _on_track_by_name,
    menus.ACTION_TRACK_BY_CODE: _on_track_by_code,
    menus.ACTION_FAQ: _on_faq,
    menus.ACTION_TALK_TO_AGENT: _on_talk_to_agent,
    menus.ACTION_RETURN_TO_BOT: _on_return_to_bot,
    menus.ACTION_CHANGE_LANGUAGE: _on_change_language,
    menus.ACTION_PAYMENT_DONE: _on_payment_done,
    menus.DAR_INSIDE: _on_dar_inside,
    menus.DAR_OUTSIDE: _on_dar_outside,
    menus.IN_DAR_DELIVERY: _on_in_dar_delivery,
    menus.IN_DAR_PICKUP: _on_in_dar_pickup,
    menus.PAYMODE_PHONE: _on_paymode_phone,
    menus.PAYMODE_COD: _on_paymode_cod,
}


# -- product ids ---------------------------------------------------------------

def _available_product(ctx: FlowContext, sku: str):
    """
    The active product for sku, or None after telling the customer why
    (unknown product, or out of stock with a restock offer).
    """
    product = get_product_by_sku(sku)
    if product is None or not product.is_active:
        ctx.say("product.not_found")
        return None
    if (product.stock_qty or 0) <= 0:
        ctx.send_buttons(menus.unavailable_buttons(ctx.lang, product))
        return None
    return product


def _line_item(product, qty: int) -> dict:
    return {
        "sku": product.sku,
        "name": product.name,
        "qty": qty,
        "unit_price_tzs": product.effective_price_tzs(),
        "product_id": product.id,
    }


def _on_product(ctx: FlowContext, sku: str) -> None:
    product = _available_product(ctx, sku)
    if product is not None:
        ctx.send_list(menus.product_menu(ctx.lang, product))


def _on_add(ctx: FlowContext, sku: str) -> None:
    product = _available_product(ctx, sku)
    if product is None:
        return
    ctx.state.pending_qty_item = _line_item(product, 1)
    flow.save_state(ctx.state)
    ctx.say("cart.ask_qty", name=product.name)


def _on_buy(ctx: FlowContext, sku: str) -> None:
    product = _available_product(ctx, sku)
    if product is None:
        return
    ctx.state.pending_item = _line_item(product, 1)
    ask_dar_choice(ctx)


def _on_details(ctx: FlowContext, sku: str) -> None:
    product = get_product_by_sku(sku)
    if product is None:
        ctx.say("product.not_found")
        return
    ctx.send_buttons(menus.details_buttons(ctx.lang, product))


def _on_details_section(ctx: FlowContext, rest: str) -> None:
    sku, _, section = rest.rpartition("_")
    product = get_product_by_sku(sku)
    if product is None or section not in menus.DETAIL_SECTIONS:
        ctx.say("product.not_found")
        return
    label_key, field = menus.DETAIL_SECTIONS[section]
    body = getattr(product, field) or t(ctx.lang, "product.details_missing")
    ctx.send_text(f"ℹ️ *{product.name}* · {t(ctx.lang, label_key)}\n\n{body}")
    ctx.send_list(menus.product_menu(ctx.lang, product))


def _on_restock(ctx: FlowContext, sku: str) -> None:
    product = get_product_by_sku(sku)
    if product is None:
        ctx.say("product.not_found")
        return
    subscribe_restock(customer=ctx.customer, product=product, lang=ctx.lang)
    ctx.say("product.restock_subscribed", name=product.name)


def _on_pay_option(ctx: FlowContext, option_key: str) -> None:
    option_id = f"{menus.PAY_PREFIX}{option_key}"
    choice = next((o for o in menus.payment_options() if o["id"] == option_id), None)
    if choice is None:
        ctx.say("payment.none")
        return
    ctx.state.payment_option = choice["label"]
    flow.set_step(ctx.state, flow.WAIT_PROOF)
    ctx.say("payment.selected", label=choice["label"], value=choice["value"])
    ctx.say("proof.ask")


# -- order ids -----------------------------------------------------------------

def _parse_order_id(raw: str) -> int | None:
    return int(raw) if raw.isdigit() else None


def _on_order_detail(ctx: FlowContext, raw_id: str) -> None:
    order_id = _parse_order_id(raw_id)
    if order_id is None:
        ctx.say("order.not_found")
        return
    show_order_details(ctx, order_id)


def _with_own_order(handler):
    def wrapper(ctx: FlowContext, raw_id: str) -> None:
        order_id = _parse_order_id(raw_id)
        order = _own_order(ctx, order_id) if order_id is not None else None
        if order is None:
            ctx.say("order.not_found")
            return
        handler(ctx, order)
    return wrapper


@_with_own_order
def _on_order_pay(ctx: FlowContext, order: Order) -> None:
    if order.status != "pending":
        ctx.say("order.cannot_pay")
        return
    summary = payment_summary(order.id)
    if summary["remaining_tzs"] <= 0:
        ctx.say("payment.nothing_due")
        return
    ctx.state.last_order_id = order.id
    flow.save_state(ctx.state)
    ctx.say("order.pay_header", code=display_code(order), remaining=format_tzs(summary["remaining_tzs"]))
    show_payment_options(ctx)


@_with_own_order
def _on_order_cancel(ctx: FlowContext, order: Order) -> None:
    if order.status != "pending":
        ctx.say("order.cannot_cancel")
        return
    try:
        change_status(order.id, "cancelled", notify=False)
    except OrderError:
        current_app.logger.exception("Failed to cancel order %s from WhatsApp", order.id)
        ctx.say("order.cannot_cancel")
        return
    ctx.say("order.cancelled", code=display_code(order))


@_with_own_order
def _on_order_modify(ctx: FlowContext, order: Order) -> None:
    ctx.say("order.modify_handoff", code=display_code(order))
    conv = ctx.conversation()
    customer_service.set_agent_allowed(conv.id, True)
    ctx.send_buttons(menus.agent_buttons(ctx.lang))


@_with_own_order
def _on_order_delete(ctx: FlowContext, order: Order) -> None:
    if order.status == "pending":
        ctx.say("order.cannot_delete")
        return
    soft_delete_order(order.id)
    ctx.say("order.deleted", code=display_code(order))


# Longer prefixes first where one prefix extends another.
_PREFIX_HANDLERS = (
    (menus.PRODUCT_PREFIX, _on_product),
    (menus.ADD_PREFIX, _on_add),
    (menus.BUY_PREFIX, _on_buy),
    (menus.DETAILS2_PREFIX, _on_details_section),
    (menus.DETAILS_PREFIX, _on_details),
    (menus.RESTOCK_PREFIX, _on_restock),
    (menus.PAY_PREFIX, _on_pay_option),
    (menus.ORDER_DETAIL_PREFIX, _on_order_detail),
    (menus.ORDER_PAY_PREFIX, _on_order_pay),
    (menus.ORDER_CANCEL_PREFIX, _on_order_cancel),
    (menus.ORDER_MODIFY_PREFIX, _on_order_modify),
    (menus.ORDER_DELETE_PREFIX, _on_order_delete),
)


# =============================================================================
# TEXT REPLIES
# =============================================================================

def on_quantity(ctx: FlowContext, raw_text: str) -> None:
    pending = dict(ctx.state.pending_qty_item)
    qty = int(raw_text) if raw_text.isdigit() else 0
    if qty <= 0:
        ctx.say("cart.invalid_qty")
        return

    product = get_product_by_sku(pending["sku"])
    in_cart = sum(int(line["qty"]) for line in (ctx.state.cart or []) if line["sku"] == pending["sku"])
    available = max(0, (product.stock_qty or 0) - in_cart) if product is not None else 0
    if qty > available:
        ctx.say("cart.insufficient_stock", name=pending["name"], available=available)
        return

    pending["qty"] = qty
    ctx.state.pending_qty_item = None
    flow.add_to_cart(ctx.state, pending)
    ctx.say("cart.added", name=pending["name"], qty=qty)
    show_cart(ctx)


def on_step(ctx: FlowContext, inbound: InboundMessage) -> None:
    handler = _STEP_HANDLERS.get(ctx.state.step)
    if handler is None:
        current_app.logger.warning("Unknown flow step %r for %s; resetting", ctx.state.step, ctx.wa_id)
        flow.reset_flow(ctx.state)
        show_main_menu(ctx)
        return
    handler(ctx, inbound)


def _text_of(inbound: InboundMessage) -> str:
    return (inbound.text or "").strip()


def _step_ask_if_dar(ctx: FlowContext, inbound: InboundMessage) -> None:
    ctx.send_buttons(menus.dar_choice_buttons(ctx.lang))


def _step_ask_in_dar_mode(ctx: FlowContext, inbound: InboundMessage) -> None:
    ctx.send_buttons(menus.in_dar_mode_buttons(ctx.lang))


def _ask_name_step(next_step: str):
    def handler(ctx: FlowContext, inbound: InboundMessage) -> None:
        name = _text_of(inbound)
        if not name:
            ctx.say("flow.ask_name")
            return
        flow.update_contact(ctx.state, name=name[:255])
        flow.set_step(ctx.state, next_step)
        ctx.say("flow.ask_phone")
    return handler


def _ask_phone_step(next_step: str, prompt_key: str):
    def handler(ctx: FlowContext, inbound: InboundMessage) -> None:
        phone = normalize_phone(_text_of(inbound))
        if not phone:
            ctx.say("flow.invalid_phone")
            return
        flow.update_contact(ctx.state, phone=phone)
        flow.set_step(ctx.state, next_step)
        ctx.say(prompt_key)
    return handler


def _place_order(ctx: FlowContext, **order_fields) -> Order | None:
    """Create the order for the pending item (or cart); None when nothing was ordered."""
    items = flow.checkout_items(ctx.state)
    if not items:
        flow.reset_flow(ctx.state)
        ctx.say("flow.nothing_to_checkout")
        return None

    contact = ctx.state.contact or {}
    customer = customer_service.upsert_customer(ctx.wa_id, name=contact.get("name"), phone=contact.get("phone"))
    db.session.commit()

    try:
        order = create_order_with_payment(customer=customer, items=items, phone=contact.get("phone"), **order_fields)
    except (OrderError, DocumentSequenceError, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Failed to create WhatsApp order for %s", ctx.wa_id)
        flow.reset_flow(ctx.state)
        ctx.say("flow.order_failed")
        return None

    flow.clear_after_order(ctx.state, order_id=order.id)
    flow.reset_flow(ctx.state)
    ctx.say("flow.order_created", code=display_code(order), total=format_tzs(order.total_tzs))
    return order


def _step_ask_gps(ctx: FlowContext, inbound: InboundMessage) -> None:
    if not inbound.has_location:
        ctx.say("flow.ask_gps")
        return

    km = distance_from_office_km(inbound.lat, inbound.lon)
    if is_outside_service_radius(km):
        flow.set_step(ctx.state, flow.ASK_IN_DAR_MODE)
        ctx.send_buttons(menus.outside_radius_buttons(ctx.lang, km))
        return

    fee = fee_for_dar_distance(km)
    subtotal = flow.cart_total(flow.checkout_items(ctx.state))
    ctx.say(
        "flow.delivery_quote",
        km=f"{km:.1f}",
        fee=format_tzs(fee),
        total=format_tzs(subtotal + fee),
    )

    order = _place_order(
        ctx,
        delivery_mode="delivery",
        fee_tzs=fee,
        km=round(km, 2),
        region="Dar es Salaam",
        lat=inbound.lat,
        lon=inbound.lon,
    )
    if order is not None:
        ctx.send_buttons(menus.payment_mode_buttons(ctx.lang))


def _step_ask_region_out(ctx: FlowContext, inbound: InboundMessage) -> None:
    region = _text_of(inbound)
    if not region:
        ctx.say("flow.ask_region")
        return

    fee = outside_dar_fee()
    subtotal = flow.cart_total(flow.checkout_items(ctx.state))
    ctx.say("flow.outside_quote", region=region, fee=format_tzs(fee), total=format_tzs(subtotal + fee))

    order = _place_order(
        ctx,
        delivery_mode="delivery",
        fee_tzs=fee,
        region=region[:128],
        payment_mode="prepay",
    )
    if order is not None:
        show_payment_options(ctx)


def _step_track(ctx: FlowContext, inbound: InboundMessage) -> None:
    query = _text_of(inbound)
    if not query:
        ctx.say("track.ask_name")
        return
    order = find_order_by_code(query) or latest_order_for_name(query)
    flow.reset_flow(ctx.state)
    if order is None:
        ctx.say("track.not_found", query=query)
        return
    ctx.send_text(_tracking_text(ctx.lang, order))


def _step_wait_proof(ctx: FlowContext, inbound: InboundMessage) -> None:
    order_id = ctx.state.last_order_id
    method = ctx.state.payment_option

    if inbound.media_kind == "image" and inbound.media_id:
        if order_id:
            mark_proof_received(order_id=order_id, proof_url=f"MEDIA:image:{inbound.media_id}", method=method)
        flow.reset_flow(ctx.state)
        ctx.say("proof.ok_image")
        return

    names = _text_of(inbound)
    if len(names.split()) >= 2:
        if order_id:
            mark_proof_received(order_id=order_id, reference=names, method=method)
        flow.reset_flow(ctx.state)
        ctx.say("proof.ok_names", names=names)
        return

    ctx.say("proof.invalid")


_STEP_HANDLERS = {
    flow.ASK_IF_DAR: _step_ask_if_dar,
    flow.ASK_IN_DAR_MODE: _step_ask_in_dar_mode,
    flow.ASK_NAME_IN: _ask_name_step(flow.ASK_PHONE_IN),
    flow.ASK_PHONE_IN: _ask_phone_step(flow.ASK_GPS, "flow.ask_gps"),
    flow.ASK_GPS: _step_ask_gps,
    flow.ASK_NAME_OUT: _ask_name_step(flow.ASK_PHONE_OUT),
    flow.ASK_PHONE_OUT: _ask_phone_step(flow.ASK_REGION_OUT, "flow.ask_region"),
    flow.ASK_REGION_OUT: _step_ask_region_out,
    flow.TRACK_ASK_NAME: _step_track,
    flow.WAIT_PROOF: _step_wait_proof,
}
