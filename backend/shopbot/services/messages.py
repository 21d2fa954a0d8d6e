# Overview: Customer-facing bot strings in Swahili and English with {param} interpolation.

from __future__ import annotations

import re

DEFAULT_LANG = "sw"
SUPPORTED_LANGS = ("sw", "en")

_PARAM_RE = re.compile(r"\{(\w+)\}")

CATALOG: dict[str, dict[str, str]] = {
    "sw": {
        "menu.header": "Karibu dukani kwetu 🌿",
        "menu.body": "Chagua kutoka kwenye menyu hapa chini.",
        "menu.footer": "Tupo hapa kukusaidia.",
        "menu.button": "Fungua menyu",
        "menu.products_section": "Bidhaa zetu",
        "menu.actions_section": "Vitendo",
        "menu.view_cart": "Angalia kikapu",
        "menu.checkout": "Kamilisha oda",
        "menu.track_by_name": "Oda zangu",
        "menu.track_by_code": "Fuatilia oda",
        "menu.faq": "Maswali (FAQ)",
        "menu.talk_to_agent": "Ongea na muhudumu",
        "menu.change_language": "Change language",
        "menu.buy_now": "Nunua sasa",
        "menu.add_to_cart": "Ongeza kikapuni",
        "menu.more_details": "Maelezo zaidi",
        "menu.back_to_menu": "Rudi kwenye menyu",
        "menu.notify_restock": "Nijulishe ikirudi",

        "product.unavailable": "Pole, *{name}* kwa sasa imeisha stock. Bonyeza hapa chini tukujulishe ikirudi.",
        "product.actions": "*{name}*\nBei: {price} TZS\n{short}",
        "product.details_choose": "Chagua maelezo ya *{name}*:",
        "product.details_about": "Kuhusu",
        "product.details_usage": "Matumizi",
        "product.details_warn": "Tahadhari",
        "product.details_missing": "Maelezo haya hayajawekwa bado.",
        "product.not_found": "Bidhaa hiyo haipatikani.",
        "product.restock_subscribed": "✅ Tutakujulisha *{name}* ikirudi stock.",
        "product.restock_available": "🎉 *{name}* imerudi stock! Andika *menu* kuagiza.",

        "cart.ask_qty": "Andika idadi ya *{name}* unayotaka (mf. 2).",
        "cart.invalid_qty": "Tafadhali andika namba sahihi (mf. 1, 2, 3).",
        "cart.added": "✅ *{name}* ×{qty} imeongezwa kwenye kikapu.",
        "cart.summary_header": "🧺 Kikapu chako:",
        "cart.summary_line": "• {name} ×{qty} · {price} TZS",
        "cart.summary_total": "Jumla ya bidhaa: *{total} TZS*",
        "cart.empty": "Kikapu chako kipo tupu.",
        "cart.choose_action": "Endelea na hatua:",
        "cart.insufficient_stock": "Pole, *{name}* imebaki {available} tu.",

        "flow.choose_dar": "Mahali ulipo sasa:",
        "flow.option_inside_dar": "Ndani ya Dar",
        "flow.option_outside_dar": "Nje ya Dar",
        "flow.choose_in_dar_mode": "Chagua huduma:",
        "flow.in_dar_delivery": "Niletewe",
        "flow.in_dar_pickup": "Nitakuja ofisini",
        "flow.ask_name": "Andika *jina kamili* la mpokeaji.",
        "flow.ask_phone": "Weka namba ya simu ya mawasiliano.",
        "flow.invalid_phone": "Namba ya simu si sahihi. Jaribu tena (mf. 0712345678).",
        "flow.ask_gps": "Tuma *location* yako ya WhatsApp (📎 → Location) ili tukadirie gharama ya delivery.",
        "flow.ask_region": "Andika *MKOA* wa kupokea mzigo.",
        "flow.outside_radius": "Samahani, eneo lako liko nje ya eneo letu la delivery (~{km} km). Chagua kuja ofisini au ongea na muhudumu.",
        "flow.delivery_quote": "Umbali: ~*{km} km*\nGharama ya delivery: *{fee} TZS*\nJumla: *{total} TZS*",
        "flow.outside_quote": "Mkoa: *{region}*\nAda ya kusafirisha: *{fee} TZS*\nJumla: *{total} TZS*",
        "flow.order_created": "✅ Oda yako *{code}* imepokelewa.\nJumla ya kulipa: *{total} TZS*",
        "flow.pickup_info": "{info}",
        "flow.nothing_to_checkout": "Kikapu chako kipo tupu. Chagua bidhaa kwanza.",
        "flow.order_failed": "Samahani, hatukuweza kuhifadhi oda yako. Tafadhali jaribu tena au ongea na muhudumu.",

        "payment.mode_choose": "Chagua namna ya kulipa:",
        "payment.method_phone": "Lipa kwa simu",
        "payment.method_cod": "Lipa ukipokea",
        "payment.cod_confirm": "✅ Tumepokea oda yako. Tutaiandaa na utalipa ukipokea mzigo.",
        "payment.choose": "Chagua njia ya kulipa:",
        "payment.selected": "Lipa kupitia *{label}*: {value}\nBaada ya kulipa, tuma *screenshot* au *majina matatu ya mtumaji*.",
        "payment.none": "Namba za malipo hazijawekwa. Tafadhali ongea na muhudumu.",
        "payment.done_cta": "Ukishalipa, bonyeza kitufe hapa chini kuthibitisha.",
        "payment.done_button": "Nimemaliza kulipa",
        "payment.confirm_with_remaining": (
            "Tumethibitisha umelipa {paid} TZS kwa oda {orderCode}.\n"
            "Mpaka sasa umelipa {paidSoFar} TZS; deni ni {remaining} TZS (jumla ya oda ni {total} TZS)."
        ),
        "payment.confirmed": "✅ Malipo ya oda {orderCode} yamethibitishwa. Asante!",
        "payment.nothing_due": "Oda hii haina deni.",

        "proof.ask": "Tuma *screenshot ya muamala* au *majina matatu ya mtumaji* kuthibitisha.",
        "proof.ok_image": "✅ Tumepokea screenshot. Tunathibitisha malipo yako, tafadhali subiri.",
        "proof.ok_names": "✅ Tumepokea majina ya mtumaji: *{names}*. Tunathibitisha, tafadhali subiri.",
        "proof.invalid": "Tuma *screenshot* au *majina mawili au matatu* ya mtumaji.",

        "agent.reply": "Tafadhali andika ujumbe wako; muhudumu atakujibu haraka.",
        "agent.return_button": "Rudi kwa bot",
        "agent.returned": "Umerudi kwa msaidizi wa kidijitali.",
        "agent.call": "Unaweza pia kupiga simu: {phone}",

        "track.ask_name": "Andika *jina ulilotumia* au *namba ya oda* (mf. UJ-1) kufuatilia oda yako.",
        "track.not_found": "Hatukupata oda inayolingana na *{query}*.",
        "track.none_found": "Huna oda bado.",
        "track.list_header": "Oda zako:",
        "track.list_button": "Chagua oda",
        "track.header": "📦 Taarifa ya oda yako:",
        "track.line_code": "• Namba ya oda: *{code}*",
        "track.line_status_payment": "• Hali ya malipo: *{paymentStatus}*",
        "track.line_status_order": "• Hali ya oda: *{orderStatus}*",
        "track.line_amounts": "• Jumla: {total} TZS | Umelipa: {paid} TZS | Deni: {remaining} TZS",
        "track.line_agent_phone": "• Namba ya mpeleka mzigo: *{agentPhone}*",

        "order.detail": (
            "📦 Oda *{code}*\n{items}\nJumla: {total} TZS\nUmelipa: {paid} TZS\n"
            "Deni: {remaining} TZS\nHali: {status}\nTarehe: {date}"
        ),
        "order.not_found": "Oda hiyo haipatikani.",
        "order.pay": "Lipa",
        "order.modify": "Badilisha",
        "order.cancel": "Sitisha oda",
        "order.delete": "Futa",
        "order.cancelled": "Oda *{code}* imesitishwa.",
        "order.cannot_cancel": "Oda hii haiwezi kusitishwa kwa sasa.",
        "order.cannot_pay": "Oda hii haiwezi kulipiwa kwa sasa.",
        "order.pay_header": "Unalipia oda *{code}*. Kiasi kilichobaki: *{remaining} TZS*.",
        "order.deleted": "Oda *{code}* imefutwa kwenye orodha yako.",
        "order.cannot_delete": "Oda inayosubiri haiwezi kufutwa; isitishe kwanza.",
        "order.modify_handoff": "Muhudumu atakusaidia kubadilisha oda *{code}*. Andika mabadiliko unayotaka.",
        "order.preparing_message": "Oda yako {orderCode} ipo kwenye maandalizi. Tutakujulisha ikitoka.",
        "order.out_for_delivery_message": (
            "Oda yako {orderCode} iko njiani. Namba ya mpeleka mzigo ni {deliveryAgentPhone}."
        ),
        "order.delivered_message": "Oda yako {orderCode} imewasilishwa. Asante kwa kununua kwetu 🌿.",

        "status.pending": "Inasubiri",
        "status.preparing": "Inaandaliwa",
        "status.out_for_delivery": "Iko njiani",
        "status.delivered": "Imewasilishwa",
        "status.cancelled": "Imesitishwa",
        "payment_status.awaiting": "Haijalipwa",
        "payment_status.verifying": "Inathibitishwa",
        "payment_status.paid": "Imelipwa",
        "payment_status.failed": "Imeshindikana",

        "faq.text": (
            "Maswali ya mara kwa mara:\n"
            "1) *Delivery inachukua muda gani?* Ndani ya Dar ni siku hiyo hiyo au kesho.\n"
            "2) *Mnatuma mikoani?* Ndiyo, kwa ada ya {outsideFee} TZS.\n"
            "3) *Nalipaje?* Kwa simu au ukipokea mzigo (ndani ya Dar)."
        ),
        "language.changed": "Lugha imebadilishwa kuwa Kiswahili.",
        "generic.back": "Rudi",
        "generic.choose": "Chagua",
        "generic.unknown": "Samahani, sijaelewa. Andika *menu* kuona menyu.",
    },
    "en": {
        "menu.header": "Welcome to our shop 🌿",
        "menu.body": "Choose from the menu below.",
        "menu.footer": "We are here to help.",
        "menu.button": "Open menu",
        "menu.products_section": "Our products",
        "menu.actions_section": "Actions",
        "menu.view_cart": "View cart",
        "menu.checkout": "Checkout",
        "menu.track_by_name": "My orders",
        "menu.track_by_code": "Track an order",
        "menu.faq": "FAQ",
        "menu.talk_to_agent": "Talk to an agent",
        "menu.change_language": "Badili lugha",
        "menu.buy_now": "Buy now",
        "menu.add_to_cart": "Add to cart",
        "menu.more_details": "More details",
        "menu.back_to_menu": "Back to menu",
        "menu.notify_restock": "Notify me",

        "product.unavailable": "Sorry, *{name}* is out of stock. Tap below and we will tell you when it is back.",
        "product.actions": "*{name}*\nPrice: {price} TZS\n{short}",
        "product.details_choose": "Choose details for *{name}*:",
        "product.details_about": "About",
        "product.details_usage": "Usage",
        "product.details_warn": "Warnings",
        "product.details_missing": "These details are not available yet.",
        "product.not_found": "That product is not available.",
        "product.restock_subscribed": "✅ We will tell you when *{name}* is back in stock.",
        "product.restock_available": "🎉 *{name}* is back in stock! Type *menu* to order.",

        "cart.ask_qty": "Type the quantity of *{name}* you want (e.g. 2).",
        "cart.invalid_qty": "Please type a valid number (e.g. 1, 2, 3).",
        "cart.added": "✅ *{name}* ×{qty} added to your cart.",
        "cart.summary_header": "🧺 Your cart:",
        "cart.summary_line": "• {name} ×{qty} · {price} TZS",
        "cart.summary_total": "Items total: *{total} TZS*",
        "cart.empty": "Your cart is empty.",
        "cart.choose_action": "Next step:",
        "cart.insufficient_stock": "Sorry, only {available} of *{name}* left.",

        "flow.choose_dar": "Where are you now?",
        "flow.option_inside_dar": "Inside Dar",
        "flow.option_outside_dar": "Outside Dar",
        "flow.choose_in_dar_mode": "Choose a service:",
        "flow.in_dar_delivery": "Delivery",
        "flow.in_dar_pickup": "Office pickup",
        "flow.ask_name": "Type the recipient's *full name*.",
        "flow.ask_phone": "Type a contact phone number.",
        "flow.invalid_phone": "That phone number is not valid. Try again (e.g. 0712345678).",
        "flow.ask_gps": "Send your WhatsApp *location* (📎 → Location) so we can quote delivery.",
        "flow.ask_region": "Type the *REGION* for delivery.",
        "flow.outside_radius": "Sorry, your location is outside our delivery area (~{km} km). Choose office pickup or talk to an agent.",
        "flow.delivery_quote": "Distance: ~*{km} km*\nDelivery fee: *{fee} TZS*\nTotal: *{total} TZS*",
        "flow.outside_quote": "Region: *{region}*\nShipping fee: *{fee} TZS*\nTotal: *{total} TZS*",
        "flow.order_created": "✅ Your order *{code}* has been received.\nAmount due: *{total} TZS*",
        "flow.pickup_info": "{info}",
        "flow.nothing_to_checkout": "Your cart is empty. Pick a product first.",
        "flow.order_failed": "Sorry, we could not save your order. Please try again or talk to an agent.",

        "payment.mode_choose": "How would you like to pay?",
        "payment.method_phone": "Pay by phone",
        "payment.method_cod": "Cash on delivery",
        "payment.cod_confirm": "✅ Order received. We will prepare it and you pay on delivery.",
        "payment.choose": "Choose a payment method:",
        "payment.selected": "Pay via *{label}*: {value}\nAfter paying, send a *screenshot* or the *sender's full names*.",
        "payment.none": "Payment numbers are not configured. Please talk to an agent.",
        "payment.done_cta": "Once you have paid, tap the button below.",
        "payment.done_button": "I have paid",
        "payment.confirm_with_remaining": (
            "We confirmed your payment of {paid} TZS for order {orderCode}.\n"
            "Paid so far: {paidSoFar} TZS; balance: {remaining} TZS (order total {total} TZS)."
        ),
        "payment.confirmed": "✅ Payment for order {orderCode} is confirmed. Thank you!",
        "payment.nothing_due": "This order has no balance due.",

        "proof.ask": "Send a *transaction screenshot* or the *sender's full names* to confirm.",
        "proof.ok_image": "✅ Screenshot received. We are verifying your payment, please wait.",
        "proof.ok_names": "✅ Sender names received: *{names}*. We are verifying, please wait.",
        "proof.invalid": "Send a *screenshot* or *two or three names* of the sender.",

        "agent.reply": "Please type your message; an agent will reply shortly.",
        "agent.return_button": "Back to bot",
        "agent.returned": "You are back with the digital assistant.",
        "agent.call": "You can also call: {phone}",

        "track.ask_name": "Type the *name you used* or the *order number* (e.g. UJ-1) to track your order.",
        "track.not_found": "No order matches *{query}*.",
        "track.none_found": "You have no orders yet.",
        "track.list_header": "Your orders:",
        "track.list_button": "Choose order",
        "track.header": "📦 Your order status:",
        "track.line_code": "• Order number: *{code}*",
        "track.line_status_payment": "• Payment status: *{paymentStatus}*",
        "track.line_status_order": "• Order status: *{orderStatus}*",
        "track.line_amounts": "• Total: {total} TZS | Paid: {paid} TZS | Balance: {remaining} TZS",
        "track.line_agent_phone": "• Rider phone: *{agentPhone}*",

        "order.detail": (
            "📦 Order *{code}*\n{items}\nTotal: {total} TZS\nPaid: {paid} TZS\n"
            "Balance: {remaining} TZS\nStatus: {status}\nDate: {date}"
        ),
        "order.not_found": "That order was not found.",
        "order.pay": "Pay",
        "order.modify": "Modify",
        "order.cancel": "Cancel order",
        "order.delete": "Delete",
        "order.cancelled": "Order *{code}* has been cancelled.",
        "order.cannot_cancel": "This order can no longer be cancelled.",
        "order.cannot_pay": "This order cannot be paid right now.",
        "order.pay_header": "You are paying for order *{code}*. Balance due: *{remaining} TZS*.",
        "order.deleted": "Order *{code}* was removed from your list.",
        "order.cannot_delete": "A pending order cannot be deleted; cancel it first.",
        "order.modify_handoff": "An agent will help you change order *{code}*. Type the changes you need.",
        "order.preparing_message": "Your order {orderCode} is being prepared. We will tell you when it ships.",
        "order.out_for_delivery_message": (
            "Your order {orderCode} is on the way. The rider's phone is {deliveryAgentPhone}."
        ),
        "order.delivered_message": "Your order {orderCode} has been delivered. Thank you for shopping with us 🌿.",

        "status.pending": "Pending",
        "status.preparing": "Preparing",
        "status.out_for_delivery": "Out for delivery",
        "status.delivered": "Delivered",
        "status.cancelled": "Cancelled",
        "payment_status.awaiting": "Not paid",
        "payment_status.verifying": "Verifying",
        "payment_status.paid": "Paid",
        "payment_status.failed": "Failed",

        "faq.text": (
            "Frequently asked questions:\n"
            "1) *How long is delivery?* Same or next day inside Dar.\n"
            "2) *Do you ship to other regions?* Yes, for a {outsideFee} TZS fee.\n"
            "3) *How do I pay?* By phone, or cash on delivery inside Dar."
        ),
        "language.changed": "Language changed to English.",
        "generic.back": "Back",
        "generic.choose": "Choose",
        "generic.unknown": "Sorry, I did not understand. Type *menu* to see the menu.",
    },
}


def normalize_lang(lang: str | None) -> str:
    lang = (lang or "").strip().lower()
    return lang if lang in SUPPORTED_LANGS else DEFAULT_LANG


def t(lang: str | None, key: str, **params) -> str:
    """
    Look up key in lang, then Swahili, then return the key itself.
    Unknown {param} placeholders are left as-is.
    """
    text = CATALOG.get(normalize_lang(lang), {}).get(key)
    if text is None:
        text = CATALOG[DEFAULT_LANG].get(key, key)
    if not params:
        return text
    return _PARAM_RE.sub(lambda m: str(params[m.group(1)]) if m.group(1) in params else m.group(0), text)


def format_tzs(amount) -> str:
    """1234567 -> '1,234,567'"""
    try:
        return f"{int(round(float(amount))):,}"
    except (TypeError, ValueError):
        return "0"
