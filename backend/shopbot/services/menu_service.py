# Overview: Builders for the chatbot's lists and reply buttons.

"""
Menu builders return plain dicts ready for bot_messaging.send_list /
send_buttons. Interactive ids are stable; the dispatcher in flow_service
routes on them.
"""

from __future__ import annotations

from flask import current_app

from ..models import Order, Product
from .bot_messaging import LIST_ROWS_MAX
from .document_service import display_code
from .messages import format_tzs, t

# Interactive ids
ACTION_BACK = "ACTION_BACK"
ACTION_VIEW_CART = "ACTION_VIEW_CART"
ACTION_CHECKOUT = "ACTION_CHECKOUT"
ACTION_TRACK_BY_NAME = "ACTION_TRACK_BY_NAME"
ACTION_TRACK_BY_CODE = "ACTION_TRACK_BY_CODE"
ACTION_FAQ = "ACTION_FAQ"
ACTION_TALK_TO_AGENT = "ACTION_TALK_TO_AGENT"
ACTION_RETURN_TO_BOT = "ACTION_RETURN_TO_BOT"
ACTION_CHANGE_LANGUAGE = "ACTION_CHANGE_LANGUAGE"
ACTION_PAYMENT_DONE = "ACTION_PAYMENT_DONE"

DAR_INSIDE = "DAR_INSIDE"
DAR_OUTSIDE = "DAR_OUTSIDE"
IN_DAR_DELIVERY = "IN_DAR_DELIVERY"
IN_DAR_PICKUP = "IN_DAR_PICKUP"
PAYMODE_PHONE = "PAYMODE_PHONE"
PAYMODE_COD = "PAYMODE_COD"

PRODUCT_PREFIX = "PRODUCT_"
ADD_PREFIX = "ADD_"
BUY_PREFIX = "BUY_"
DETAILS_PREFIX = "DETAILS_"
DETAILS2_PREFIX = "DETAILS2_"
RESTOCK_PREFIX = "RESTOCK_"
PAY_PREFIX = "PAY_"
ORDER_DETAIL_PREFIX = "ORDER_DETAIL_"
ORDER_PAY_PREFIX = "ORDER_PAY_"
ORDER_CANCEL_PREFIX = "ORDER_CANCEL_"
ORDER_MODIFY_PREFIX = "ORDER_MODIFY_"
ORDER_DELETE_PREFIX = "ORDER_DELETE_"

DETAIL_SECTIONS = {
    "ABOUT": ("product.details_about", "description"),
    "USAGE": ("product.details_usage", "usage_instructions"),
    "WARN": ("product.details_warn", "warnings"),
}

MAIN_MENU_ACTIONS = (
    (ACTION_VIEW_CART, "menu.view_cart"),
    (ACTION_CHECKOUT, "menu.checkout"),
    (ACTION_TRACK_BY_NAME, "menu.track_by_name"),
    (ACTION_FAQ, "menu.faq"),
    (ACTION_TALK_TO_AGENT, "menu.talk_to_agent"),
    (ACTION_CHANGE_LANGUAGE, "menu.change_language"),
)


def main_menu(lang: str, products: list[Product]) -> dict:
    product_slots = LIST_ROWS_MAX - len(MAIN_MENU_ACTIONS)
    product_rows = [
        {
            "id": f"{PRODUCT_PREFIX}{p.sku}",
            "title": p.name,
            "description": f"{format_tzs(p.effective_price_tzs())} TZS"
            + (f" · {p.short_description}" if p.short_description else ""),
        }
        for p in products[:product_slots]
    ]
    sections = []
    if product_rows:
        sections.append({"title": t(lang, "menu.products_section"), "rows": product_rows})
    sections.append({
        "title": t(lang, "menu.actions_section"),
        "rows": [{"id": action_id, "title": t(lang, key)} for action_id, key in MAIN_MENU_ACTIONS],
    })
    return {
        "header": t(lang, "menu.header"),
        "body": t(lang, "menu.body"),
        "footer": t(lang, "menu.footer"),
        "button": t(lang, "menu.button"),
        "sections": sections,
    }


def product_menu(lang: str, product: Product) -> dict:
    body = t(
        lang,
        "product.actions",
        name=product.name,
        price=format_tzs(product.effective_price_tzs()),
        short=product.short_description or "",
    ).strip()
    rows = [
        {"id": f"{BUY_PREFIX}{product.sku}", "title": t(lang, "menu.buy_now")},
        {"id": f"{ADD_PREFIX}{product.sku}", "title": t(lang, "menu.add_to_cart")},
        {"id": f"{DETAILS_PREFIX}{product.sku}", "title": t(lang, "menu.more_details")},
        {"id": ACTION_VIEW_CART, "title": t(lang, "menu.view_cart")},
        {"id": ACTION_CHECKOUT, "title": t(lang, "menu.checkout")},
        {"id": ACTION_BACK, "title": t(lang, "menu.back_to_menu")},
    ]
    return {
        "header": product.name,
        "body": body,
        "footer": None,
        "button": t(lang, "generic.choose"),
        "sections": [{"title": t(lang, "menu.actions_section"), "rows": rows}],
    }


def unavailable_buttons(lang: str, product: Product) -> dict:
    return {
        "body": t(lang, "product.unavailable", name=product.name),
        "buttons": [
            {"id": f"{RESTOCK_PREFIX}{product.sku}", "title": t(lang, "menu.notify_restock")},
            {"id": ACTION_BACK, "title": t(lang, "menu.back_to_menu")},
        ],
    }


def details_buttons(lang: str, product: Product) -> dict:
    return {
        "body": t(lang, "product.details_choose", name=product.name),
        "buttons": [
            {"id": f"{DETAILS2_PREFIX}{product.sku}_{section}", "title": t(lang, key)}
            for section, (key, _field) in DETAIL_SECTIONS.items()
        ],
    }


def cart_text(lang: str, items: list[dict]) -> str:
    if not items:
        return t(lang, "cart.empty")
    lines = [t(lang, "cart.summary_header")]
    for i in items:
        lines.append(t(lang, "cart.summary_line", name=i["name"], qty=i["qty"],
                       price=format_tzs(i["qty"] * i["unit_price_tzs"])))
    total = sum(i["qty"] * i["unit_price_tzs"] for i in items)
    lines.append(t(lang, "cart.summary_total", total=format_tzs(total)))
    return "\n".join(lines)


def cart_buttons(lang: str, items: list[dict]) -> dict:
    buttons = [{"id": ACTION_BACK, "title": t(lang, "menu.back_to_menu")}]
    if items:
        buttons.insert(0, {"id": ACTION_CHECKOUT, "title": t(lang, "menu.checkout")})
    return {"body": cart_text(lang, items), "buttons": buttons}


def dar_choice_buttons(lang: str) -> dict:
    return {
        "body": t(lang, "flow.choose_dar"),
        "buttons": [
            {"id": DAR_INSIDE, "title": t(lang, "flow.option_inside_dar")},
            {"id": DAR_OUTSIDE, "title": t(lang, "flow.option_outside_dar")},
            {"id": ACTION_BACK, "title": t(lang, "generic.back")},
        ],
    }


def in_dar_mode_buttons(lang: str) -> dict:
    return {
        "body": t(lang, "flow.choose_in_dar_mode"),
        "buttons": [
            {"id": IN_DAR_DELIVERY, "title": t(lang, "flow.in_dar_delivery")},
            {"id": IN_DAR_PICKUP, "title": t(lang, "flow.in_dar_pickup")},
            {"id": ACTION_BACK, "title": t(lang, "generic.back")},
        ],
    }


def outside_radius_buttons(lang: str, km: float) -> dict:
    return {
        "body": t(lang, "flow.outside_radius", km=f"{km:.1f}"),
        "buttons": [
            {"id": IN_DAR_PICKUP, "title": t(lang, "flow.in_dar_pickup")},
            {"id": ACTION_TALK_TO_AGENT, "title": t(lang, "menu.talk_to_agent")},
            {"id": ACTION_BACK, "title": t(lang, "generic.back")},
        ],
    }


def payment_mode_buttons(lang: str) -> dict:
    return {
        "body": t(lang, "payment.mode_choose"),
        "buttons": [
            {"id": PAYMODE_PHONE, "title": t(lang, "payment.method_phone")},
            {"id": PAYMODE_COD, "title": t(lang, "payment.method_cod")},
        ],
    }


def payment_done_buttons(lang: str) -> dict:
    return {
        "body": t(lang, "payment.done_cta"),
        "buttons": [{"id": ACTION_PAYMENT_DONE, "title": t(lang, "payment.done_button")}],
    }


def agent_buttons(lang: str) -> dict:
    return {
        "body": t(lang, "agent.reply"),
        "buttons": [{"id": ACTION_RETURN_TO_BOT, "title": t(lang, "agent.return_button")}],
    }


def payment_options(config=None) -> list[dict]:
    """
    Configured manual payment channels as [{"id", "label", "value"}].

    Options with no number configured are skipped.
    """
    config = config if config is not None else current_app.config
    options = []

    def _add(option_id: str, label: str, number: str | None, name: str | None = None):
        if not number:
            return
        value = f"{number} ({name})" if name else number
        options.append({"id": f"{PAY_PREFIX}{option_id}", "label": label, "value": value})

    _add("LIPA", "Lipa Namba", config.get("LIPA_NAMBA_TILL"), config.get("LIPA_NAMBA_NAME"))
    _add("VODA_LNM", "M-Pesa Lipa Namba", config.get("VODA_LNM_TILL"), config.get("VODA_LNM_NAME"))
    _add("VODA_P2P", "M-Pesa", config.get("VODA_P2P_MSISDN"), config.get("VODA_P2P_NAME"))
    for n, (label, number) in enumerate(config.get("PAYMENT_OPTIONS_EXTRA") or [], start=1):
        if label and number:
            _add(str(n), label, number)
    return options


def payment_options_list(lang: str, options: list[dict]) -> dict:
    return {
        "header": None,
        "body": t(lang, "payment.choose"),
        "footer": None,
        "button": t(lang, "generic.choose"),
        "sections": [{
            "title": t(lang, "payment.choose"),
            "rows": [{"id": o["id"], "title": o["label"], "description": o["value"]} for o in options],
        }],
    }


def orders_list(lang: str, orders: list[Order]) -> dict:
    rows = [
        {
            "id": f"{ORDER_DETAIL_PREFIX}{o.id}",
            "title": f"{display_code(o)} (#{o.id})",
            "description": f"{format_tzs(o.total_tzs)} TZS · {t(lang, 'status.' + o.status)}",
        }
        for o in orders[: LIST_ROWS_MAX - 1]
    ]
    rows.append({"id": ACTION_TRACK_BY_CODE, "title": t(lang, "menu.track_by_code")})
    return {
        "header": None,
        "body": t(lang, "track.list_header"),
        "footer": None,
        "button": t(lang, "track.list_button"),
        "sections": [{"title": t(lang, "menu.track_by_name"), "rows": rows}],
    }


def order_actions_list(lang: str, order: Order, detail_text: str) -> dict:
    if order.status == "pending":
        rows = [
            {"id": f"{ORDER_PAY_PREFIX}{order.id}", "title": t(lang, "order.pay")},
            {"id": f"{ORDER_MODIFY_PREFIX}{order.id}", "title": t(lang, "order.modify")},
            {"id": f"{ORDER_CANCEL_PREFIX}{order.id}", "title": t(lang, "order.cancel")},
        ]
    else:
        rows = [{"id": f"{ORDER_DELETE_PREFIX}{order.id}", "title": t(lang, "order.delete")}]
    rows.append({"id": ACTION_BACK, "title": t(lang, "menu.back_to_menu")})
    return {
        "header": None,
        "body": detail_text,
        "footer": None,
        "button": t(lang, "generic.choose"),
        "sections": [{"title": display_code(order), "rows": rows}],
    }
