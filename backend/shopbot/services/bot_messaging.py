# Overview: Outbound bot messages; clamps interactive payloads, sends, and logs to the inbox.

"""
Bot Messaging

WHY: The WhatsApp API rejects interactive payloads that exceed its limits,
and the admin inbox must show exactly what the bot said. Every outbound
message therefore goes through here: clamp -> send -> log -> emit.

Send failures are logged and swallowed (no retry); the caller's flow
continues as if the message had been sent.
"""

from __future__ import annotations

import json

from flask import current_app

from ..extensions import db
from ..models import Customer
from . import customer_service
from .whatsapp_service import WhatsAppError, get_client, message_id_from_response

# WhatsApp interactive limits
LIST_ROW_TITLE_MAX = 24
LIST_ROW_DESCRIPTION_MAX = 72
LIST_SECTION_TITLE_MAX = 24
LIST_BUTTON_MAX = 20
LIST_ROWS_MAX = 10
BUTTON_TITLE_MAX = 20
BUTTONS_MAX = 3
HEADER_MAX = 60
BODY_MAX = 1024
FOOTER_MAX = 60

MENU_PREFIX = "[MENU]"


def _clip(text: str | None, limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def clamp_sections(sections: list[dict]) -> list[dict]:
    """Trim titles/descriptions and keep at most 10 rows across all sections."""
    remaining = LIST_ROWS_MAX
    clamped = []
    for section in sections:
        if remaining <= 0:
            break
        rows = []
        for row in section.get("rows", [])[:remaining]:
            item = {"id": row["id"], "title": _clip(row.get("title"), LIST_ROW_TITLE_MAX)}
            if row.get("description"):
                item["description"] = _clip(row["description"], LIST_ROW_DESCRIPTION_MAX)
            rows.append(item)
        if not rows:
            continue
        remaining -= len(rows)
        clamped.append({"title": _clip(section.get("title"), LIST_SECTION_TITLE_MAX), "rows": rows})
    return clamped


def clamp_buttons(buttons: list[dict]) -> list[dict]:
    return [
        {"id": b["id"], "title": _clip(b.get("title"), BUTTON_TITLE_MAX)}
        for b in buttons[:BUTTONS_MAX]
    ]


def _conversation_id_for(wa_id: str) -> int | None:
    conv = customer_service.active_conversation_for(wa_id)
    if conv is not None:
        return conv.id
    customer = db.session.query(Customer).filter_by(wa_id=wa_id).first()
    if customer is None:
        return None
    conv = customer_service.get_or_create_conversation(customer.id)
    db.session.commit()
    return conv.id


def _log(wa_id: str, body: str, msg_type: str, result: dict | None, conversation_id: int | None):
    if conversation_id is None:
        conversation_id = _conversation_id_for(wa_id)
    if conversation_id is None:
        return None
    return customer_service.record_outbound(
        conversation_id=conversation_id,
        body=body,
        msg_type=msg_type,
        wa_message_id=message_id_from_response(result),
    )


def send_text(wa_id: str, text: str, *, conversation_id: int | None = None):
    try:
        result = get_client().send_text(wa_id, text)
    except WhatsAppError:
        current_app.logger.exception("Failed to send text to %s", wa_id)
        return None
    return _log(wa_id, text, "text", result, conversation_id)


def send_list(wa_id: str, *, body: str, button: str, sections: list[dict],
              header: str | None = None, footer: str | None = None,
              conversation_id: int | None = None):
    sections = clamp_sections(sections)
    payload = {
        "header": _clip(header, HEADER_MAX) or None,
        "body": _clip(body, BODY_MAX),
        "footer": _clip(footer, FOOTER_MAX) or None,
        "button": _clip(button, LIST_BUTTON_MAX),
        "sections": sections,
    }
    try:
        result = get_client().send_list(wa_id, **payload)
    except WhatsAppError:
        current_app.logger.exception("Failed to send list to %s", wa_id)
        return None
    logged = MENU_PREFIX + json.dumps({"subtype": "list", **payload}, ensure_ascii=False)
    return _log(wa_id, logged, "menu", result, conversation_id)


def send_buttons(wa_id: str, *, body: str, buttons: list[dict], conversation_id: int | None = None):
    payload = {"body": _clip(body, BODY_MAX), "buttons": clamp_buttons(buttons)}
    try:
        result = get_client().send_buttons(wa_id, **payload)
    except WhatsAppError:
        current_app.logger.exception("Failed to send buttons to %s", wa_id)
        return None
    logged = MENU_PREFIX + json.dumps({"subtype": "buttons", **payload}, ensure_ascii=False)
    return _log(wa_id, logged, "menu", result, conversation_id)


def send_template(wa_id: str, *, name: str, language: str = "en", components: list | None = None,
                  conversation_id: int | None = None):
    """Templates are the only way to reach a customer outside the 24h window; errors propagate."""
    result = get_client().send_template(wa_id, name=name, language=language, components=components)
    return _log(wa_id, f"[template:{name}]", "template", result, conversation_id)


def mark_read(wa_message_id: str) -> None:
    """Blue ticks for an inbound message; failures only logged."""
    try:
        get_client().mark_read(wa_message_id)
    except WhatsAppError:
        current_app.logger.warning("Failed to mark %s as read", wa_message_id)
