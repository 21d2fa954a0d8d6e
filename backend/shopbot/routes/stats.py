from flask import Blueprint, jsonify, request

from ..decorators import require_inbox_auth
from ..services import reporting_service


stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.get("/overview")
@require_inbox_auth
def overview():
    try:
        report = reporting_service.overview(
            start=request.args.get("from") or None,
            end=request.args.get("to") or None,
        )
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@stats_bp.get("/trend")
@require_inbox_auth
def trend():
    days = request.args.get("days", default=7, type=int)
    try:
        series = reporting_service.profit_trend(days=days)
        return jsonify({"days": days, "items": series}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
