# backend/shopbot/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopbot.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopbot.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Admin console access. Unset means the API is open (dev only).
    INBOX_ACCESS_KEY = os.environ.get("INBOX_ACCESS_KEY", "")
    FRONTEND_ORIGIN = os.environ.get("FRONTEND_ORIGIN", "http://localhost:3000")

    # WhatsApp Cloud API
    WHATSAPP_TOKEN = os.environ.get("WHATSAPP_TOKEN", "")
    WHATSAPP_PHONE_NUMBER_ID = os.environ.get("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_VERIFY_TOKEN = os.environ.get("WHATSAPP_VERIFY_TOKEN", "")
    WHATSAPP_APP_SECRET = os.environ.get("WHATSAPP_APP_SECRET", "")
    WHATSAPP_API_VERSION = os.environ.get("WHATSAPP_API_VERSION", "v19.0")
    WHATSAPP_TIMEOUT_SECONDS = _env_float("WHATSAPP_TIMEOUT_SECONDS", 10.0)

    # Delivery pricing (amounts in TZS)
    DELIVERY_RATE_PER_KM = _env_float("DELIVERY_RATE_PER_KM", 1000.0)
    DELIVERY_ROUND_TO = _env_int("DELIVERY_ROUND_TO", 500)
    SERVICE_RADIUS_KM = _env_float("SERVICE_RADIUS_KM", 0.0)
    OUTSIDE_DAR_FEE_TZS = _env_int("OUTSIDE_DAR_FEE_TZS", 10_000)
    OFFICE_LAT = _env_float("OFFICE_LAT", -6.8357)
    OFFICE_LON = _env_float("OFFICE_LON", 39.2724)

    # Manual payment options shown to customers
    LIPA_NAMBA_TILL = os.environ.get("LIPA_NAMBA_TILL", "")
    LIPA_NAMBA_NAME = os.environ.get("LIPA_NAMBA_NAME", "")
    VODA_LNM_TILL = os.environ.get("VODA_LNM_TILL", "")
    VODA_LNM_NAME = os.environ.get("VODA_LNM_NAME", "")
    VODA_P2P_MSISDN = os.environ.get("VODA_P2P_MSISDN", "")
    VODA_P2P_NAME = os.environ.get("VODA_P2P_NAME", "")
    PAYMENT_OPTIONS_EXTRA = [
        (os.environ.get(f"PAYMENT_{n}_LABEL", ""), os.environ.get(f"PAYMENT_{n}_NUMBER", ""))
        for n in range(1, 6)
    ]

    PICKUP_INFO_SW = os.environ.get(
        "PICKUP_INFO_SW",
        "Unaweza kuchukua mzigo ofisini kwetu Keko, Dar es Salaam, saa 3 asubuhi hadi saa 12 jioni.",
    )
    PICKUP_INFO_EN = os.environ.get(
        "PICKUP_INFO_EN",
        "You can pick up your order at our office in Keko, Dar es Salaam, 9am to 6pm.",
    )
    AGENT_PHONE = os.environ.get("AGENT_PHONE", "")
