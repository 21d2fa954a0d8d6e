"""
Conversation state tests.

Verifies:
- one state row per wa_id, created IDLE on first load
- cart lines with the same sku and price merge
- reset keeps the cart and language
- the pending BUY item takes precedence over the cart at checkout
"""

import pytest

from shopbot.services import flow_state_service as flow


def _item(sku="OIL-100", qty=1, price=15000):
    return {"sku": sku, "name": sku.title(), "qty": qty, "unit_price_tzs": price, "product_id": None}


@pytest.fixture
def state(db_session):
    s = flow.load_state("255700000099", default_lang="en")
    db_session.commit()
    return s


class TestState:

    def test_created_idle(self, state):
        assert state.step == flow.IDLE
        assert state.lang == "en"
        assert state.cart == []

    def test_load_is_idempotent(self, state):
        assert flow.load_state("255700000099").id == state.id

    def test_unknown_language_falls_back(self, db_session):
        assert flow.load_state("255700000098", default_lang="fr").lang == "sw"

    def test_set_step_rejects_unknown(self, state):
        with pytest.raises(ValueError):
            flow.set_step(state, "DANCING")
        assert state.step == flow.IDLE


class TestCart:

    def test_same_line_merges(self, state):
        flow.add_to_cart(state, _item(qty=2))
        cart = flow.add_to_cart(state, _item(qty=3))
        assert len(cart) == 1
        assert cart[0]["qty"] == 5

    def test_different_price_is_new_line(self, state):
        flow.add_to_cart(state, _item(qty=1))
        cart = flow.add_to_cart(state, _item(qty=1, price=12000))
        assert [line["unit_price_tzs"] for line in cart] == [15000, 12000]

    def test_cart_total(self):
        assert flow.cart_total([_item(qty=2), _item("SOAP", qty=1, price=5000)]) == 35000


class TestResetAndCheckout:

    def test_reset_keeps_cart_and_language(self, state):
        flow.add_to_cart(state, _item())
        flow.update_contact(state, name="Asha")
        state.pending_item = _item("SOAP")
        flow.set_step(state, flow.ASK_GPS)

        flow.reset_flow(state)

        assert state.step == flow.IDLE
        assert state.pending_item is None
        assert state.contact == {}
        assert len(state.cart) == 1
        assert state.lang == "en"

    def test_contact_updates_merge(self, state):
        flow.update_contact(state, name="Asha")
        flow.update_contact(state, phone="255712345678")
        assert state.contact == {"name": "Asha", "phone": "255712345678"}

    def test_pending_item_wins_and_cart_survives(self, state):
        flow.add_to_cart(state, _item())
        state.pending_item = _item("SOAP", price=5000)

        assert [i["sku"] for i in flow.checkout_items(state)] == ["SOAP"]
        flow.clear_after_order(state, order_id=7)

        assert state.pending_item is None
        assert len(state.cart) == 1
        assert state.last_order_id == 7

    def test_cart_cleared_after_cart_order(self, state):
        flow.add_to_cart(state, _item())
        flow.clear_after_order(state, order_id=8)
        assert state.cart == []
