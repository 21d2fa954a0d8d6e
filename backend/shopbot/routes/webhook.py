# Overview: WhatsApp Cloud API webhook; subscription handshake and inbound message delivery.

"""
WhatsApp webhook

GET  /webhook  Meta's subscription handshake (hub.mode / hub.verify_token / hub.challenge)
POST /webhook  message and status deliveries

SECURITY: POST bodies are authenticated with X-Hub-Signature-256 when
WHATSAPP_APP_SECRET is configured. After that check the endpoint always
answers 200 so Meta does not retry deliveries the bot failed to handle.
"""

from flask import Blueprint, current_app, request

from ..services import flow_service
from ..services.whatsapp_service import verify_signature

webhook_bp = Blueprint("webhook", __name__)


@webhook_bp.get("/webhook")
def verify_webhook():
    mode = request.args.get("hub.mode")
    token = request.args.get("hub.verify_token")
    challenge = request.args.get("hub.challenge", "")

    expected = current_app.config.get("WHATSAPP_VERIFY_TOKEN") or ""
    if mode == "subscribe" and expected and token == expected:
        return challenge, 200, {"Content-Type": "text/plain"}
    return "Forbidden", 403, {"Content-Type": "text/plain"}


@webhook_bp.post("/webhook")
def receive_webhook():
    raw_body = request.get_data(cache=True)
    app_secret = current_app.config.get("WHATSAPP_APP_SECRET") or ""

    if not app_secret:
        current_app.logger.warning("WHATSAPP_APP_SECRET is not set; webhook signature not verified")
    elif not verify_signature(raw_body, request.headers.get("X-Hub-Signature-256"), app_secret):
        current_app.logger.warning("Webhook signature mismatch from %s", request.remote_addr)
        return {"error": "Invalid signature"}, 401

    payload = request.get_json(silent=True) or {}
    try:
        handled = flow_service.handle_webhook_payload(payload)
        current_app.logger.info("Webhook delivery processed (%d messages)", handled)
    except Exception:
        current_app.logger.exception("Failed to process webhook delivery")

    return {"ok": True}, 200
