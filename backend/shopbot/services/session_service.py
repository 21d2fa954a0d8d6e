# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

Tokens are 32 random bytes (hex), stored only as SHA-256 hashes, with a
24-hour absolute and 2-hour idle timeout.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow

SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, user_agent: str | None = None,
                   ip_address: str | None = None) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token); only the hash is stored."""
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, else None.

    Idle sessions and sessions of deactivated users are revoked on sight.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None

    now = utcnow()
    if session.expires_at.replace(tzinfo=None) < now:
        return None
    if now - session.last_used_at.replace(tzinfo=None) > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if user is None or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return False
    _revoke(session, reason)
    return True
