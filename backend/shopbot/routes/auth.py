# Overview: Flask API routes for admin console login, logout and identity.

"""
Authentication API routes

SECURITY FEATURES:
- bcrypt password verification
- Session tokens stored hashed; plaintext returned once at login
- Idle and absolute session expiry (session_service)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import auth_service
from ..services import session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included as `Authorization: Bearer <token>` on admin routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            current_app.logger.info("Failed login for %s", email)
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
            "message": "Login successful",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """WHY: Explicit logout prevents token reuse."""
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
