"""
WhatsApp webhook and chatbot flow tests.

Verifies:
- subscription handshake and signature checks
- inbound messages are logged and delivery receipts applied
- greeting -> main menu, product browsing, cart quantities
- checkout inside Dar (GPS priced) and outside Dar (flat fee, proof)
- agent takeover silences the bot until the customer returns
- order tracking by code and WhatsApp-side order actions
"""

import json

from shopbot.models import Conversation, ConversationState, Message, Order, RestockSubscription
from shopbot.services import menu_service as menus
from shopbot.services.delivery_service import distance_from_office_km, fee_for_dar_distance

from conftest import (
    APP_SECRET,
    CUSTOMER_WA_ID,
    VERIFY_TOKEN,
    image_message,
    location_message,
    post_webhook,
    reply_message,
    text_message,
    webhook_payload,
)

NEAR_LAT, NEAR_LON = -6.8000, 39.2800


def _state(db_session, wa_id=CUSTOMER_WA_ID):
    return db_session.query(ConversationState).filter_by(wa_id=wa_id).first()


class TestWebhookEndpoint:

    def test_verify_handshake(self, client):
        resp = client.get("/webhook", query_string={
            "hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "12345",
        })
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "12345"

    def test_verify_wrong_token(self, client):
        resp = client.get("/webhook", query_string={
            "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345",
        })
        assert resp.status_code == 403

    def test_bad_signature_rejected(self, client, db_session, whatsapp):
        resp = post_webhook(client, webhook_payload(text_message("hi")), secret="wrong-secret")
        assert resp.status_code == 401
        assert db_session.query(Message).count() == 0
        assert whatsapp.calls == []

    def test_missing_signature_rejected(self, client):
        body = json.dumps(webhook_payload(text_message("hi")))
        resp = client.post("/webhook", data=body, headers={"Content-Type": "application/json"})
        assert resp.status_code == 401

    def test_unsigned_accepted_when_secret_unset(self, app, client, db_session):
        app.config["WHATSAPP_APP_SECRET"] = ""
        try:
            body = json.dumps(webhook_payload(text_message("hi")))
            resp = client.post("/webhook", data=body, headers={"Content-Type": "application/json"})
        finally:
            app.config["WHATSAPP_APP_SECRET"] = APP_SECRET
        assert resp.status_code == 200
        assert db_session.query(Message).count() >= 1

    def test_always_200_after_signature(self, client):
        resp = post_webhook(client, {"entry": [{"changes": [{"value": {"messages": [{"type": "text"}]}}]}]})
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}


class TestInboundLogging:

    def test_message_logged_with_profile_name(self, send, db_session, realtime):
        send(text_message("hi"), contacts=[{"wa_id": CUSTOMER_WA_ID, "profile": {"name": "Asha"}}])

        inbound = db_session.query(Message).filter_by(direction="in").one()
        assert inbound.body == "hi"
        assert inbound.conversation.customer.name == "Asha"
        assert inbound.conversation.last_user_message_at is not None
        assert any(event == "message.created" for event, _ in realtime)

    def test_inbound_marked_read(self, send, whatsapp):
        msg = text_message("hi")
        send(msg)
        assert whatsapp.read_ids == [msg["id"]]

    def test_location_and_media_bodies(self, send, db_session):
        send(location_message(-6.8, 39.28), image_message("MEDIA123"))
        bodies = [m.body for m in db_session.query(Message).filter_by(direction="in").order_by(Message.id)]
        assert bodies == ["LOCATION -6.8,39.28", "MEDIA:image:MEDIA123"]

    def test_status_receipts_only_move_forward(self, send, db_session, whatsapp):
        send(text_message("hi"))
        outbound = db_session.query(Message).filter_by(direction="out").first()
        wamid = outbound.wa_message_id

        send(statuses=[{"id": wamid, "status": "read"}])
        send(statuses=[{"id": wamid, "status": "delivered"}])

        db_session.refresh(outbound)
        assert outbound.status == "read"


class TestMenuAndCart:

    def test_greeting_shows_main_menu(self, send, whatsapp, product):
        send(text_message("Mambo"))
        menu = whatsapp.last("list")
        ids = whatsapp.row_ids(menu)
        assert f"PRODUCT_{product.sku}" in ids
        assert menus.ACTION_TALK_TO_AGENT in ids
        assert len(ids) <= 10

    def test_main_menu_caps_products(self, send, whatsapp, make_product):
        for n in range(8):
            make_product(sku=f"P-{n}", name=f"Product {n}")
        send(text_message("hi"))
        ids = whatsapp.row_ids(whatsapp.last("list"))
        assert len(ids) == 10
        assert sum(1 for i in ids if i.startswith("PRODUCT_")) == 4

    def test_out_of_stock_offers_restock(self, send, whatsapp, make_product, db_session):
        empty = make_product(sku="EMPTY-1", name="Empty", stock_qty=0)
        send(reply_message(f"PRODUCT_{empty.sku}", kind="list_reply"))
        buttons = whatsapp.last("buttons")
        assert whatsapp.button_ids(buttons) == [f"RESTOCK_{empty.sku}", menus.ACTION_BACK]

        send(reply_message(f"RESTOCK_{empty.sku}"))
        assert db_session.query(RestockSubscription).filter_by(product_id=empty.id).count() == 1

    def test_add_to_cart_with_quantity(self, send, whatsapp, product, db_session):
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("3"))
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("2"))

        state = _state(db_session)
        assert state.pending_qty_item is None
        assert state.cart == [{
            "sku": product.sku, "name": product.name, "qty": 5,
            "unit_price_tzs": 15000, "product_id": product.id,
        }]
        assert menus.ACTION_CHECKOUT in whatsapp.button_ids(whatsapp.last("buttons"))

    def test_quantity_above_stock_refused(self, send, product, db_session):
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("11"))
        state = _state(db_session)
        assert state.cart == []
        assert state.pending_qty_item is not None

    def test_quantity_counts_what_is_already_in_cart(self, send, whatsapp, product, db_session):
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("8"))
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("8"))

        state = _state(db_session)
        assert [line["qty"] for line in state.cart] == [8]
        assert state.pending_qty_item is not None
        assert "imebaki 2" in whatsapp.last("text")["body"]

    def test_checkout_with_empty_cart(self, send, whatsapp, product, db_session):
        send(reply_message(menus.ACTION_CHECKOUT))
        assert _state(db_session).step == "IDLE"
        assert whatsapp.last("list") is not None

    def test_details_section(self, send, whatsapp, make_product):
        p = make_product(sku="OIL_X", name="Oil X", usage_instructions="Twice a week.")
        send(reply_message(f"DETAILS_{p.sku}", kind="list_reply"))
        assert f"DETAILS2_{p.sku}_USAGE" in whatsapp.button_ids(whatsapp.last("buttons"))

        send(reply_message(f"DETAILS2_{p.sku}_USAGE"))
        assert "Twice a week." in whatsapp.last("text")["body"]

    def test_change_language(self, send, db_session):
        send(text_message("hi"))
        send(reply_message(menus.ACTION_CHANGE_LANGUAGE, kind="list_reply"))
        assert _state(db_session).lang == "en"


class TestCheckoutInsideDar:

    def test_full_delivery_checkout(self, send, whatsapp, product, db_session):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        assert _state(db_session).step == "ASK_IF_DAR"

        send(reply_message(menus.DAR_INSIDE))
        send(reply_message(menus.IN_DAR_DELIVERY))
        send(text_message("Asha Juma"))
        send(text_message("0712 345 678"))
        assert _state(db_session).step == "ASK_GPS"

        send(location_message(NEAR_LAT, NEAR_LON))

        order = db_session.query(Order).one()
        expected_fee = fee_for_dar_distance(distance_from_office_km(NEAR_LAT, NEAR_LON))
        assert order.fee_tzs == expected_fee
        assert order.total_tzs == 15000 + expected_fee
        assert order.delivery_mode == "delivery"
        assert order.region == "Dar es Salaam"
        assert order.phone == "255712345678"
        assert order.customer.name == "Asha Juma"
        assert order.payment.status == "awaiting"

        state = _state(db_session)
        assert state.step == "IDLE"
        assert state.pending_item is None
        assert state.last_order_id == order.id
        assert whatsapp.button_ids(whatsapp.last("buttons")) == [menus.PAYMODE_PHONE, menus.PAYMODE_COD]

        send(reply_message(menus.PAYMODE_COD))
        db_session.refresh(order)
        assert order.payment_mode == "cod"

    def test_invalid_phone_reprompts(self, send, product, db_session):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        send(reply_message(menus.DAR_INSIDE))
        send(reply_message(menus.IN_DAR_DELIVERY))
        send(text_message("Asha"))
        send(text_message("not a phone"))
        assert _state(db_session).step == "ASK_PHONE_IN"

    def test_gps_step_needs_location(self, send, product, db_session):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        send(reply_message(menus.DAR_INSIDE))
        send(reply_message(menus.IN_DAR_DELIVERY))
        send(text_message("Asha"))
        send(text_message("0712345678"))
        send(text_message("Kariakoo"))
        assert _state(db_session).step == "ASK_GPS"
        assert db_session.query(Order).count() == 0

    def test_outside_radius_offers_pickup(self, app, send, whatsapp, product, db_session):
        app.config["SERVICE_RADIUS_KM"] = 1.0
        try:
            send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
            send(reply_message(menus.DAR_INSIDE))
            send(reply_message(menus.IN_DAR_DELIVERY))
            send(text_message("Asha"))
            send(text_message("0712345678"))
            send(location_message(NEAR_LAT, NEAR_LON))
        finally:
            app.config["SERVICE_RADIUS_KM"] = 0.0

        assert db_session.query(Order).count() == 0
        assert menus.IN_DAR_PICKUP in whatsapp.button_ids(whatsapp.last("buttons"))

    def test_cart_checkout_clears_cart(self, send, product, db_session):
        send(reply_message(f"ADD_{product.sku}", kind="list_reply"))
        send(text_message("2"))
        send(reply_message(menus.ACTION_CHECKOUT))
        send(reply_message(menus.DAR_INSIDE))
        send(reply_message(menus.IN_DAR_DELIVERY))
        send(text_message("Asha"))
        send(text_message("0712345678"))
        send(location_message(NEAR_LAT, NEAR_LON))

        order = db_session.query(Order).one()
        assert order.items[0].qty == 2
        assert _state(db_session).cart == []

    def test_pickup_sends_info_only(self, app, send, whatsapp, product, db_session):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        send(reply_message(menus.DAR_INSIDE))
        send(reply_message(menus.IN_DAR_PICKUP))
        assert app.config["PICKUP_INFO_SW"] in whatsapp.last("text")["body"]
        assert db_session.query(Order).count() == 0
        assert _state(db_session).step == "IDLE"


class TestCheckoutOutsideDar:

    def _checkout(self, send, product):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        send(reply_message(menus.DAR_OUTSIDE))
        send(text_message("Baraka Mushi"))
        send(text_message("0755123456"))
        send(text_message("Arusha"))

    def test_flat_fee_and_payment_options(self, send, whatsapp, product, db_session):
        self._checkout(send, product)

        order = db_session.query(Order).one()
        assert order.fee_tzs == 10_000
        assert order.total_tzs == 25_000
        assert order.region == "Arusha"
        assert order.payment_mode == "prepay"
        assert whatsapp.row_ids(whatsapp.last("list")) == ["PAY_LIPA"]

    def test_proof_image_marks_verifying(self, send, product, db_session):
        self._checkout(send, product)
        send(reply_message("PAY_LIPA", kind="list_reply"))
        assert _state(db_session).step == "WAIT_PROOF"

        send(image_message("IMG-77"))

        order = db_session.query(Order).one()
        assert order.payment.status == "verifying"
        assert order.payment.proof_url == "MEDIA:image:IMG-77"
        assert order.payment.method == "Lipa Namba"
        assert _state(db_session).step == "IDLE"

    def test_proof_names(self, send, product, db_session):
        self._checkout(send, product)
        send(reply_message("PAY_LIPA", kind="list_reply"))
        send(text_message("Hi"))
        assert _state(db_session).step == "WAIT_PROOF"

        send(text_message("Baraka Mushi"))
        order = db_session.query(Order).one()
        assert order.payment.reference == "Baraka Mushi"
        assert order.payment.status == "verifying"


class TestAgentMode:

    def test_bot_silent_while_agent_allowed(self, send, whatsapp, db_session):
        send(text_message("hi"))
        send(reply_message(menus.ACTION_TALK_TO_AGENT, kind="list_reply"))
        conv = db_session.query(Conversation).one()
        assert conv.agent_allowed is True

        before = len(whatsapp.calls)
        send(text_message("I need help with my order"))
        assert len(whatsapp.calls) == before
        assert db_session.query(Message).filter_by(direction="in").count() == 3

    def test_return_to_bot(self, send, whatsapp, db_session):
        send(text_message("hi"))
        send(reply_message(menus.ACTION_TALK_TO_AGENT, kind="list_reply"))
        send(reply_message(menus.ACTION_RETURN_TO_BOT))

        conv = db_session.query(Conversation).one()
        assert conv.agent_allowed is False
        assert whatsapp.last("list") is not None


class TestTrackingAndOrderActions:

    def _place(self, send, product):
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"))
        send(reply_message(menus.DAR_OUTSIDE))
        send(text_message("Baraka Mushi"))
        send(text_message("0755123456"))
        send(text_message("Arusha"))

    def test_track_by_code(self, send, whatsapp, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(reply_message(menus.ACTION_TRACK_BY_CODE, kind="list_reply"))
        assert _state(db_session).step == "TRACK_ASK_NAME"
        send(text_message(order.order_code.lower()))

        assert order.order_code in whatsapp.last("text")["body"]
        assert _state(db_session).step == "IDLE"

    def test_track_by_checkout_name_with_profile_alias(self, send, whatsapp, product, db_session):
        """Verifies: a WhatsApp profile name never replaces the name given at checkout."""
        contacts = [{"wa_id": CUSTOMER_WA_ID, "profile": {"name": "AJ"}}]
        send(reply_message(f"BUY_{product.sku}", kind="list_reply"), contacts=contacts)
        send(reply_message(menus.DAR_OUTSIDE), contacts=contacts)
        send(text_message("Baraka Mushi"), contacts=contacts)
        send(text_message("0755123456"), contacts=contacts)
        send(text_message("Arusha"), contacts=contacts)
        order = db_session.query(Order).one()

        send(reply_message(menus.ACTION_TRACK_BY_CODE, kind="list_reply"), contacts=contacts)
        assert order.customer.name == "Baraka Mushi"

        send(text_message("baraka mushi"), contacts=contacts)
        assert order.order_code in whatsapp.last("text")["body"]

    def test_my_orders_list(self, send, whatsapp, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(reply_message(menus.ACTION_TRACK_BY_NAME, kind="list_reply"))
        ids = whatsapp.row_ids(whatsapp.last("list"))
        assert ids == [f"ORDER_DETAIL_{order.id}", menus.ACTION_TRACK_BY_CODE]

    def test_order_reference_in_text_opens_details(self, send, whatsapp, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(text_message(f"{order.order_code} (#{order.id})"))
        ids = whatsapp.row_ids(whatsapp.last("list"))
        assert f"ORDER_CANCEL_{order.id}" in ids

    def test_cancel_pending_order(self, send, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(reply_message(f"ORDER_CANCEL_{order.id}", kind="list_reply"))
        db_session.refresh(order)
        assert order.status == "cancelled"

    def test_cannot_touch_other_customers_order(self, send, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(reply_message(f"ORDER_CANCEL_{order.id}", wa_id="255799999999", kind="list_reply"))
        db_session.refresh(order)
        assert order.status == "pending"

    def test_delete_requires_non_pending(self, send, product, db_session):
        self._place(send, product)
        order = db_session.query(Order).one()

        send(reply_message(f"ORDER_DELETE_{order.id}", kind="list_reply"))
        db_session.refresh(order)
        assert order.deleted_at is None

        send(reply_message(f"ORDER_CANCEL_{order.id}", kind="list_reply"))
        send(reply_message(f"ORDER_DELETE_{order.id}", kind="list_reply"))
        db_session.refresh(order)
        assert order.deleted_at is not None
