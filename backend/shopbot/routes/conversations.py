# Overview: Flask API routes for the admin inbox; conversations, messages and agent replies.

"""
Inbox routes

The admin console lists conversations, reads message threads, takes a
conversation over from the bot (agent_allowed) and replies as an agent.

WhatsApp only accepts free-form messages within 24 hours of the
customer's last message; outside that window only a template can be sent.
"""

from flask import Blueprint, Response, current_app, request

from ..decorators import require_inbox_auth
from ..services import bot_messaging, customer_service
from ..services.customer_service import ConversationError
from ..services.whatsapp_service import WhatsAppError, get_client

conversations_bp = Blueprint("conversations", __name__, url_prefix="/api")


@conversations_bp.get("/conversations")
@require_inbox_auth
def list_conversations_route():
    try:
        return {"items": customer_service.list_conversations()}
    except Exception:
        current_app.logger.exception("Failed to list conversations")
        return {"error": "Internal server error"}, 500


@conversations_bp.get("/conversations/<int:conversation_id>/messages")
@require_inbox_auth
def list_messages_route(conversation_id: int):
    limit = request.args.get("limit", type=int) or customer_service.MESSAGE_LIST_LIMIT
    try:
        items = customer_service.list_messages(conversation_id, limit=min(max(limit, 1), 1000))
    except ConversationError as e:
        return {"error": str(e)}, 404
    return {"items": items}


@conversations_bp.get("/conversations/<int:conversation_id>/summary")
@require_inbox_auth
def conversation_summary_route(conversation_id: int):
    try:
        return customer_service.conversation_summary(conversation_id)
    except ConversationError as e:
        return {"error": str(e)}, 404


@conversations_bp.post("/conversations/<int:conversation_id>/agent-allow")
@require_inbox_auth
def agent_allow_route(conversation_id: int):
    """Body: {"agent_allowed": bool} (alias "allowed"); defaults to true."""
    data = request.get_json(silent=True) or {}
    raw = data.get("agent_allowed", data.get("allowed", True))
    if not isinstance(raw, bool):
        return {"error": "agent_allowed must be a boolean"}, 400

    try:
        conv = customer_service.set_agent_allowed(conversation_id, raw)
    except ConversationError as e:
        return {"error": str(e)}, 404
    return {"ok": True, "agent_allowed": bool(conv.agent_allowed)}


@conversations_bp.post("/conversations/<int:conversation_id>/read")
@require_inbox_auth
def mark_read_route(conversation_id: int):
    try:
        count = customer_service.mark_conversation_read(conversation_id)
    except ConversationError as e:
        return {"error": str(e)}, 404
    return {"ok": True, "marked": count}


@conversations_bp.post("/send")
@require_inbox_auth
def send_route():
    """
    Agent reply.

    Body:
        conversationId (or conversation_id): int
        text: str                          free-form reply, 24h window only
        template: {name, language?, components?}  allowed any time
        templateId / variables: shorthand for a body-parameter template
    """
    data = request.get_json(silent=True) or {}
    conversation_id = data.get("conversationId", data.get("conversation_id"))
    text = (data.get("text") or "").strip()
    template = data.get("template")
    if template is None and data.get("templateId"):
        variables = data.get("variables")
        template = {
            "name": data["templateId"],
            "components": [{"type": "body", "parameters": variables}] if variables else None,
        }

    if isinstance(conversation_id, str) and conversation_id.isdigit():
        conversation_id = int(conversation_id)
    if not isinstance(conversation_id, int) or isinstance(conversation_id, bool):
        return {"error": "conversationId is required"}, 400
    if not text and not template:
        return {"error": "text or template is required"}, 400
    if template is not None and (not isinstance(template, dict) or not template.get("name")):
        return {"error": "template.name is required"}, 400

    try:
        conv = customer_service.get_conversation(conversation_id)
    except ConversationError as e:
        return {"error": str(e)}, 404

    if not conv.agent_allowed:
        return {"error": "Bot active"}, 403

    wa_id = conv.customer.wa_id

    if template:
        try:
            message = bot_messaging.send_template(
                wa_id,
                name=template["name"],
                language=template.get("language") or "en",
                components=template.get("components"),
                conversation_id=conv.id,
            )
        except WhatsAppError as e:
            current_app.logger.exception("Failed to send template to %s", wa_id)
            return {"error": str(e)}, 502
        return {"ok": True, "message": message.to_dict() if message else None}

    if not customer_service.within_service_window(conv):
        return {"error": "Outside the 24h window; send a template instead"}, 403

    message = bot_messaging.send_text(wa_id, text, conversation_id=conv.id)
    if message is None:
        return {"error": "Failed to send message"}, 502
    return {"ok": True, "message": message.to_dict()}


@conversations_bp.get("/media/<media_id>")
@require_inbox_auth
def media_route(media_id: str):
    """Stream an inbound attachment (logged as MEDIA:<kind>:<media_id>), e.g. a payment screenshot."""
    try:
        content, content_type = get_client().download_media(media_id)
    except WhatsAppError as e:
        current_app.logger.warning("Media %s unavailable: %s", media_id, e)
        return {"error": "Media not available"}, 502
    return Response(content, mimetype=content_type, headers={"Cache-Control": "private, max-age=300"})
