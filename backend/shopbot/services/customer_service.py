# Overview: Service-layer operations for customers, conversations and the message log.

"""
Customer & Conversation Service

WHY: Every inbound WhatsApp message lands here first: the sender is
upserted, the active conversation is found or opened, and the message is
appended to the log. The admin inbox reads the same tables.

DESIGN:
- customers are keyed by wa_id and never deleted
- the most recent conversation per customer is the active one
- messages are append-only; only status changes after insert
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Conversation, Message, Order, Payment
from ..time_utils import utcnow, hours_since
from . import realtime_service

MESSAGE_LIST_LIMIT = 500
CUSTOMER_SERVICE_WINDOW_HOURS = 24

DIRECTION_IN = "in"
DIRECTION_OUT = "out"

STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_READ = "read"
_STATUS_RANK = {STATUS_SENT: 1, STATUS_DELIVERED: 2, STATUS_READ: 3}


class ConversationError(Exception):
    """Raised for missing conversations or disallowed inbox actions."""
    pass


def upsert_customer(wa_id: str, *, name: str | None = None, phone: str | None = None,
                    lang: str | None = None) -> Customer:
    """Create the customer on first contact; refresh name/phone/lang when new values arrive."""
    customer = db.session.query(Customer).filter_by(wa_id=wa_id).first()
    if customer is None:
        customer = Customer(wa_id=wa_id, name=name or None, phone=phone or wa_id, lang=lang or "sw")
        db.session.add(customer)
        db.session.flush()
        return customer

    if name and name != customer.name:
        customer.name = name
    if phone and phone != customer.phone:
        customer.phone = phone
    if lang and lang != customer.lang:
        customer.lang = lang
    return customer


def get_or_create_conversation(customer_id: int) -> Conversation:
    conv = (
        db.session.query(Conversation)
        .filter_by(customer_id=customer_id)
        .order_by(Conversation.id.desc())
        .first()
    )
    if conv is None:
        conv = Conversation(customer_id=customer_id, agent_allowed=False)
        db.session.add(conv)
        db.session.flush()
    return conv


def _message_payload(message: Message) -> dict:
    return message.to_dict()


def record_inbound(*, wa_id: str, profile_name: str | None, wa_message_id: str | None,
                   msg_type: str, body: str) -> tuple[Customer, Conversation, Message]:
    """
    Persist one inbound message and notify the console.

    Returns (customer, conversation, message). Commits.
    """
    customer = upsert_customer(wa_id)
    # profile name only fills a blank; names given at checkout win
    if profile_name and not customer.name:
        customer.name = profile_name
    conv = get_or_create_conversation(customer.id)

    message = Message(
        conversation_id=conv.id,
        wa_message_id=wa_message_id,
        direction=DIRECTION_IN,
        type=msg_type,
        body=body,
        status=STATUS_DELIVERED,
        created_at=utcnow(),
    )
    db.session.add(message)
    conv.last_user_message_at = utcnow()
    db.session.commit()

    realtime_service.emit(realtime_service.MESSAGE_CREATED, {
        "conversation_id": conv.id,
        "message": _message_payload(message),
    })
    realtime_service.emit(realtime_service.CONVERSATION_UPDATED, {"conversation_id": conv.id})
    return customer, conv, message


def record_outbound(*, conversation_id: int, body: str, msg_type: str = "text",
                    wa_message_id: str | None = None) -> Message:
    message = Message(
        conversation_id=conversation_id,
        wa_message_id=wa_message_id,
        direction=DIRECTION_OUT,
        type=msg_type,
        body=body,
        status=STATUS_SENT,
        created_at=utcnow(),
    )
    db.session.add(message)
    db.session.commit()

    realtime_service.emit(realtime_service.MESSAGE_CREATED, {
        "conversation_id": conversation_id,
        "message": _message_payload(message),
    })
    return message


def update_message_status(wa_message_id: str, status: str) -> bool:
    """
    Apply a delivery receipt. Status only moves forward (sent -> delivered -> read).
    Returns True when a row changed.
    """
    if status not in _STATUS_RANK:
        return False
    message = db.session.query(Message).filter_by(wa_message_id=wa_message_id).first()
    if message is None:
        return False
    if _STATUS_RANK.get(message.status or "", 0) >= _STATUS_RANK[status]:
        return False
    message.status = status
    db.session.commit()
    realtime_service.emit(realtime_service.CONVERSATION_UPDATED, {"conversation_id": message.conversation_id})
    return True


def active_conversation_for(wa_id: str) -> Conversation | None:
    customer = db.session.query(Customer).filter_by(wa_id=wa_id).first()
    if customer is None:
        return None
    return (
        db.session.query(Conversation)
        .filter_by(customer_id=customer.id)
        .order_by(Conversation.id.desc())
        .first()
    )


def get_conversation(conversation_id: int) -> Conversation:
    conv = db.session.get(Conversation, conversation_id)
    if conv is None:
        raise ConversationError("Conversation not found")
    return conv


# =============================================================================
# INBOX QUERIES
# =============================================================================

def list_conversations() -> list[dict]:
    """
    Conversations for the inbox, most recently active first.

    unread_count = inbound messages still in 'delivered' status.
    """
    unread_sq = (
        db.session.query(
            Message.conversation_id.label("conversation_id"),
            func.count(Message.id).label("unread"),
        )
        .filter(Message.direction == DIRECTION_IN, Message.status == STATUS_DELIVERED)
        .group_by(Message.conversation_id)
        .subquery()
    )

    rows = (
        db.session.query(Conversation, Customer, func.coalesce(unread_sq.c.unread, 0))
        .join(Customer, Customer.id == Conversation.customer_id)
        .outerjoin(unread_sq, unread_sq.c.conversation_id == Conversation.id)
        .order_by(
            Conversation.last_user_message_at.is_(None),
            Conversation.last_user_message_at.desc(),
            Conversation.id.desc(),
        )
        .all()
    )

    result = []
    for conv, customer, unread in rows:
        result.append({
            "id": conv.id,
            "name": customer.name,
            "phone": customer.phone or customer.wa_id,
            "wa_id": customer.wa_id,
            "lang": customer.lang,
            "agent_allowed": bool(conv.agent_allowed),
            "last_user_message_at": conv.to_dict()["last_user_message_at"],
            "unread_count": int(unread or 0),
        })
    return result


def list_messages(conversation_id: int, *, limit: int = MESSAGE_LIST_LIMIT) -> list[dict]:
    get_conversation(conversation_id)
    messages = (
        db.session.query(Message)
        .filter_by(conversation_id=conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .limit(limit)
        .all()
    )
    return [m.to_dict() for m in messages]


def mark_conversation_read(conversation_id: int) -> int:
    get_conversation(conversation_id)
    count = (
        db.session.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.direction == DIRECTION_IN,
            Message.status == STATUS_DELIVERED,
        )
        .update({Message.status: STATUS_READ}, synchronize_session=False)
    )
    db.session.commit()
    realtime_service.emit(realtime_service.CONVERSATION_UPDATED, {"conversation_id": conversation_id})
    return count


def set_agent_allowed(conversation_id: int, allowed: bool) -> Conversation:
    conv = get_conversation(conversation_id)
    conv.agent_allowed = bool(allowed)
    db.session.commit()
    realtime_service.emit(realtime_service.CONVERSATION_UPDATED, {
        "conversation_id": conv.id,
        "agent_allowed": bool(conv.agent_allowed),
    })
    return conv


def within_service_window(conv: Conversation) -> bool:
    """WhatsApp allows free-form replies only within 24h of the customer's last message."""
    elapsed = hours_since(conv.last_user_message_at)
    return elapsed is not None and elapsed <= CUSTOMER_SERVICE_WINDOW_HOURS


def conversation_summary(conversation_id: int) -> dict:
    """
    Customer card for the inbox side panel: the customer, and delivery and
    payment info from their most recent non-deleted order.
    """
    from .payment_service import payment_summary

    conv = get_conversation(conversation_id)
    customer = conv.customer

    order = (
        db.session.query(Order)
        .filter(Order.customer_id == customer.id, Order.deleted_at.is_(None))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )

    delivery = None
    payment = None
    if order is not None:
        delivery = {
            "order_id": order.id,
            "order_code": order.order_code,
            "mode": order.delivery_mode,
            "km": order.km,
            "fee_tzs": order.fee_tzs,
            "region": order.region,
            "status": order.status,
        }
        summary = payment_summary(order.id)
        pay = db.session.query(Payment).filter_by(order_id=order.id).first()
        payment = {
            "id": pay.id if pay else None,
            "method": pay.method if pay else None,
            "status": summary["payment_status"],
            "amount_tzs": summary["total_tzs"],
            "paid_tzs": summary["paid_tzs"],
            "remaining_tzs": summary["remaining_tzs"],
        }

    return {
        "customer": {
            "id": customer.id,
            "name": customer.name,
            "phone": customer.phone or customer.wa_id,
            "wa_id": customer.wa_id,
            "lang": customer.lang,
        },
        "delivery": delivery,
        "payment": payment,
    }
