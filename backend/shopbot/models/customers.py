from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    WhatsApp customer, keyed by the sender's wa_id.

    Upserted on every inbound message; never deleted.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    wa_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    lang = db.Column(db.String(8), nullable=False, default="sw")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wa_id": self.wa_id,
            "name": self.name,
            "phone": self.phone,
            "lang": self.lang,
            "created_at": to_utc_z(self.created_at),
        }


class Conversation(db.Model):
    """
    Chat thread for a customer. The most recent row per customer is the active one.

    agent_allowed=True means a human agent owns the thread and the bot stays silent.
    """
    __tablename__ = "conversations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    agent_allowed = db.Column(db.Boolean, nullable=False, default=False)
    last_user_message_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("conversations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "agent_allowed": bool(self.agent_allowed),
            "last_user_message_at": to_utc_z(self.last_user_message_at),
            "created_at": to_utc_z(self.created_at),
        }


class Message(db.Model):
    """
    Append-only message log. Only status is ever updated.

    BODY ENCODING:
    - plain text
    - MEDIA:<kind>:<media_id>
    - LOCATION <lat>,<lon>
    - [interactive:<id>] when a reply carries no title
    - [MENU]<json> for bot lists/buttons
    - [template:<name>]
    """
    __tablename__ = "messages"
    __table_args__ = (
        db.Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id"), nullable=False)
    wa_message_id = db.Column(db.String(128), nullable=True, index=True)
    direction = db.Column(db.String(8), nullable=False)  # in, out
    type = db.Column(db.String(32), nullable=False, default="text")
    body = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=True)  # sent, delivered, read

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    conversation = db.relationship("Conversation", backref=db.backref("messages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "wa_message_id": self.wa_message_id,
            "direction": self.direction,
            "type": self.type,
            "body": self.body,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class ConversationState(db.Model):
    """
    Persisted chatbot state for one customer (one row per wa_id).

    step is the current position in the checkout/tracking flow; IDLE when
    no flow is active. cart/pending/contact are small JSON documents.
    """
    __tablename__ = "conversation_states"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    wa_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    step = db.Column(db.String(32), nullable=False, default="IDLE")
    lang = db.Column(db.String(8), nullable=False, default="sw")

    cart = db.Column(db.JSON, nullable=False, default=list)
    pending_item = db.Column(db.JSON, nullable=True)      # BUY_ single item checkout
    pending_qty_item = db.Column(db.JSON, nullable=True)  # ADD_ waiting for a quantity
    contact = db.Column(db.JSON, nullable=False, default=dict)

    last_order_id = db.Column(db.Integer, nullable=True)
    payment_option = db.Column(db.String(32), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
