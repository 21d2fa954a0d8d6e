# Overview: Broadcasts admin console update events over Socket.IO.

"""
Realtime notifications for the admin console.

Events are fire-and-forget broadcasts to every connected client; a
failed emit is logged and never interrupts the caller.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import socketio

MESSAGE_CREATED = "message.created"
CONVERSATION_UPDATED = "conversation.updated"
ORDERS_UPDATED = "orders.updated"
PRODUCTS_UPDATED = "products.updated"
PAYMENT_UPDATED = "payment.updated"


def emit(event: str, payload: dict | None = None) -> None:
    try:
        socketio.emit(event, payload or {})
    except Exception:
        current_app.logger.exception("Realtime emit failed for %s", event)
