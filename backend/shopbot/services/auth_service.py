# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Admin console actions (confirming payments, dispatching riders)
must be attributable to a person. Passwords are hashed with bcrypt.

SECURITY NOTES:
- bcrypt cost factor 12
- minimum 8 characters with upper, lower and a digit
- session tokens are handled in session_service.py
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..time_utils import utcnow

VALID_ROLES = ("admin", "staff")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Raised for user management problems (duplicate email, bad role)."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password or "") < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def create_user(*, email: str, password: str, role: str = "staff", full_name: str | None = None) -> User:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise AuthError("A valid email is required")
    if role not in VALID_ROLES:
        raise AuthError(f"role must be one of {', '.join(VALID_ROLES)}")
    if db.session.query(User).filter_by(email=email).first():
        raise AuthError("A user with this email already exists")

    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    email = (email or "").strip().lower()
    user = db.session.query(User).filter_by(email=email).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user
