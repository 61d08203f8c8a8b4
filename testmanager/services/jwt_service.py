"""
JWT Service — token pairs for the test manager API and their sessions.

Both tokens are HS256 JWTs signed with JWT_SECRET_KEY (falls back to
SECRET_KEY) and share one claim layout; ``type`` tells them apart:

    sub    user id (string)
    type   "access" | "refresh"
    iat / exp / jti

Access tokens also carry ``email`` and ``roles`` so the permission
decorators can log who was denied without a DB hit. Lifetimes come from
JWT_ACCESS_EXPIRES (15 min) and JWT_REFRESH_EXPIRES (7 days).

A refresh token is never stored; its SHA-256 lives in the sessions table
and the session is replaced on every refresh.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from testmanager.models import db
from testmanager.models.auth import Session

ALGORITHM = "HS256"
TOKEN_LIFETIMES = {
    "access": ("JWT_ACCESS_EXPIRES", 900),
    "refresh": ("JWT_REFRESH_EXPIRES", 604800),
}


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def token_lifetime(token_type: str) -> int:
    key, default = TOKEN_LIFETIMES[token_type]
    return int(current_app.config.get(key) or default)


def _encode(user_id: int, token_type: str, **claims) -> tuple[str, datetime]:
    issued = datetime.now(timezone.utc)
    expires = issued + timedelta(seconds=token_lifetime(token_type))
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": issued,
        "exp": expires,
        "jti": uuid.uuid4().hex,
        **claims,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM), expires


def generate_token_pair(user, roles: list[str]) -> dict:
    """Access + refresh token for user; the caller persists the session."""
    access_token, _ = _encode(user.id, "access", email=user.email, roles=list(roles))
    refresh_token, expires_at = _encode(user.id, "refresh")
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_hash": hash_token(refresh_token),
        "expires_at": expires_at,
        "token_type": "Bearer",
        "expires_in": token_lifetime("access"),
    }


def decode_token(token: str, expected_type: str) -> dict:
    """
    Verify signature and expiry and check the token type.

    Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError.
    """
    payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, "access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, "refresh")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Sessions (flush only; the route commits)
# ═══════════════════════════════════════════════════════════════
def create_session(user_id, token_hash, ip_address, user_agent, expires_at) -> Session:
    session = Session(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(session)
    db.session.flush()
    return session


def get_active_session_by_token(user_id: int, token_hash: str) -> Session | None:
    return Session.query.filter_by(user_id=user_id, token_hash=token_hash, is_active=True).first()


def rotate_session(old_session, user_id, new_token_hash, new_expires_at, ip_address, user_agent) -> Session:
    """Close old_session and open its replacement."""
    old_session.is_active = False
    old_session.last_used_at = datetime.now(timezone.utc)
    return create_session(user_id, new_token_hash, ip_address, user_agent, new_expires_at)


def revoke_session_by_token(token_hash: str) -> bool:
    revoked = Session.query.filter_by(token_hash=token_hash, is_active=True).update({"is_active": False})
    db.session.flush()
    return bool(revoked)
