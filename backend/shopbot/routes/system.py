# backend/shopbot/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the WhatsApp client is
configured, for deployment debugging.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Conversation, Order, Product
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "products": db.session.query(Product).count(),
            "orders": db.session.query(Order).count(),
            "conversations": db.session.query(Conversation).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_whatsapp_config() -> dict:
    """Degraded (not unhealthy) when outbound messaging is not configured."""
    cfg = current_app.config
    missing = [k for k in ("WHATSAPP_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_VERIFY_TOKEN") if not cfg.get(k)]
    if missing:
        return {"status": "degraded", "warning": f"Missing settings: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    database_health = check_database_health()
    whatsapp_health = check_whatsapp_config()

    all_checks = [database_health, whatsapp_health]
    if any(c["status"] == "unhealthy" for c in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "whatsapp": whatsapp_health,
        },
    }, http_status
