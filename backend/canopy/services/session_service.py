# Overview: Service-layer operations for bearer sessions; issue, validate and revoke tokens.

"""
Bearer Session Service

A session pins the org and site of the user at login. Routes never take
an org id from the request; they read it from the validated session.

Only the SHA-256 of a token is stored. A session dies 24h after login,
after 2h without use, on logout, or as soon as its user or organization
is found deactivated.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from canopy.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)
TOKEN_BYTES = 32


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    org_id: int
    site_id: int | None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a token for user_id. Returns (session, plaintext token).

    Raises ValueError for an unknown user or an inactive organization.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.organization.is_active:
        raise ValueError("Organization is not active")

    token = secrets.token_hex(TOKEN_BYTES)
    issued_at = utcnow()
    session = SessionToken(
        user_id=user.id,
        org_id=user.org_id,
        site_id=user.site_id,
        token_hash=hash_token(token),
        created_at=issued_at,
        last_used_at=issued_at,
        expires_at=issued_at + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def _revocation_reason(session: SessionToken, now) -> str | None:
    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        return "Idle timeout"
    if not session.user.is_active:
        return "User account deactivated"
    if not session.organization.is_active:
        return "Organization deactivated"
    return None


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its SessionContext, or None.

    Expired tokens are simply rejected; idle ones and ones whose user or
    organization is deactivated are revoked on the spot. A successful
    check refreshes last_used_at.
    """
    session = _live_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    reason = _revocation_reason(session, now)
    if reason:
        revoke(session, reason)
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(
        user=session.user,
        session=session,
        org_id=session.org_id,
        site_id=session.site_id,
    )


def revoke_session(token: str, reason: str = "Logout") -> bool:
    """Revoke by plaintext token. False when the token is unknown or already dead."""
    session = _live_session(token)
    if session is None:
        return False
    revoke(session, reason)
    return True
