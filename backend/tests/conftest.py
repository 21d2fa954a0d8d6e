"""
Pytest fixtures for shopbot backend tests.

Provides an in-memory database, a recording WhatsApp client, a recorded
realtime emitter, and helpers for signed webhook deliveries.
"""

import hashlib
import hmac
import itertools
import json

import pytest

from shopbot import create_app
from shopbot.extensions import db
from shopbot.models import Product
from shopbot.services import realtime_service
from shopbot.services.auth_service import create_user
from shopbot.services.whatsapp_service import WhatsAppError

INBOX_KEY = "test-inbox-key"
VERIFY_TOKEN = "verify-me"
APP_SECRET = "test-app-secret"
CUSTOMER_WA_ID = "255700000001"


class FakeWhatsAppClient:
    """Records every outbound call instead of talking to the Graph API."""

    def __init__(self):
        self.calls = []
        self.read_ids = []
        self.media = {}
        self._ids = itertools.count(1)

    def _ok(self) -> dict:
        return {"messages": [{"id": f"wamid.test.{next(self._ids)}"}]}

    def send_text(self, to, body):
        self.calls.append({"kind": "text", "to": to, "body": body})
        return self._ok()

    def send_list(self, to, *, header, body, footer, button, sections):
        self.calls.append({"kind": "list", "to": to, "header": header, "body": body,
                           "footer": footer, "button": button, "sections": sections})
        return self._ok()

    def send_buttons(self, to, *, body, buttons):
        self.calls.append({"kind": "buttons", "to": to, "body": body, "buttons": buttons})
        return self._ok()

    def send_template(self, to, *, name, language="en", components=None):
        self.calls.append({"kind": "template", "to": to, "name": name,
                           "language": language, "components": components})
        return self._ok()

    def mark_read(self, message_id):
        self.read_ids.append(message_id)
        return {"success": True}

    def download_media(self, media_id):
        if media_id not in self.media:
            raise WhatsAppError(f"WhatsApp API error 404: unknown media {media_id}")
        return self.media[media_id], "image/jpeg"

    # -- helpers for assertions --

    def of_kind(self, kind):
        return [c for c in self.calls if c["kind"] == kind]

    def last(self, kind=None):
        calls = self.of_kind(kind) if kind else self.calls
        return calls[-1] if calls else None

    def row_ids(self, call):
        return [row["id"] for section in call["sections"] for row in section["rows"]]

    def button_ids(self, call):
        return [b["id"] for b in call["buttons"]]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INBOX_ACCESS_KEY': INBOX_KEY,
        'WHATSAPP_VERIFY_TOKEN': VERIFY_TOKEN,
        'WHATSAPP_APP_SECRET': APP_SECRET,
        'DELIVERY_RATE_PER_KM': 1000.0,
        'DELIVERY_ROUND_TO': 500,
        'SERVICE_RADIUS_KM': 0.0,
        'OUTSIDE_DAR_FEE_TZS': 10_000,
        'LIPA_NAMBA_TILL': '555111',
        'LIPA_NAMBA_NAME': 'UJ Shop',
        'VODA_LNM_TILL': '',
        'VODA_P2P_MSISDN': '',
        'PAYMENT_OPTIONS_EXTRA': [],
        'AGENT_PHONE': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh database contents for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def whatsapp(app):
    """Swap the app's WhatsApp client for a recording fake."""
    original = app.extensions["whatsapp"]
    fake = FakeWhatsAppClient()
    app.extensions["whatsapp"] = fake
    yield fake
    app.extensions["whatsapp"] = original


@pytest.fixture(scope='function', autouse=True)
def realtime(monkeypatch):
    """Record realtime events instead of broadcasting them."""
    events = []
    monkeypatch.setattr(realtime_service, "emit", lambda event, payload=None: events.append((event, payload or {})))
    return events


@pytest.fixture
def inbox_headers():
    return {"X-Inbox-Key": INBOX_KEY}


@pytest.fixture
def make_product(db_session):
    def _make(sku="OIL-100", name="Hair Oil", price_tzs=15000, stock_qty=10, **extra):
        extra.setdefault("is_active", True)
        product = Product(sku=sku, name=name, price_tzs=price_tzs, stock_qty=stock_qty, **extra)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def admin_user(db_session):
    return create_user(email="admin@shop.local", password="Password123", role="admin", full_name="Admin")


# =============================================================================
# WEBHOOK HELPERS
# =============================================================================

_message_ids = itertools.count(1)


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def webhook_payload(*messages, statuses=None, contacts=None) -> dict:
    value = {"messaging_product": "whatsapp", "messages": list(messages)}
    if statuses:
        value["statuses"] = statuses
    if contacts:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": value}]}]}


def text_message(body: str, wa_id: str = CUSTOMER_WA_ID) -> dict:
    return {"from": wa_id, "id": f"wamid.in.{next(_message_ids)}", "type": "text", "text": {"body": body}}


def reply_message(reply_id: str, title: str = "", wa_id: str = CUSTOMER_WA_ID, kind: str = "button_reply") -> dict:
    return {
        "from": wa_id,
        "id": f"wamid.in.{next(_message_ids)}",
        "type": "interactive",
        "interactive": {"type": kind, kind: {"id": reply_id, "title": title}},
    }


def location_message(lat: float, lon: float, wa_id: str = CUSTOMER_WA_ID) -> dict:
    return {
        "from": wa_id,
        "id": f"wamid.in.{next(_message_ids)}",
        "type": "location",
        "location": {"latitude": lat, "longitude": lon},
    }


def image_message(media_id: str, wa_id: str = CUSTOMER_WA_ID) -> dict:
    return {"from": wa_id, "id": f"wamid.in.{next(_message_ids)}", "type": "image", "image": {"id": media_id}}


def post_webhook(client, payload: dict, secret: str = APP_SECRET):
    body = json.dumps(payload).encode("utf-8")
    return client.post(
        "/webhook",
        data=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": sign(body, secret)},
    )


@pytest.fixture
def send(client):
    """Deliver one or more inbound messages through the signed webhook."""
    def _send(*messages, **kwargs):
        resp = post_webhook(client, webhook_payload(*messages, **kwargs))
        assert resp.status_code == 200
        return resp
    return _send
