"""Verification of storefront portal session tokens.

The storefront's sign-in flow mints these; the credits API only checks the
signature and reads which account a request is scoped to.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from config import settings


PORTAL_TOKEN_TYPE = "vs_session"


@dataclass(frozen=True)
class PortalClaims:
    user_id: str
    email: Optional[str] = None
    expires_at: Optional[datetime] = None


def verify_portal_token(token: str) -> PortalClaims:
    """Return the claims of a valid portal token, else raise ValueError."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ValueError("Portal session expired. Sign in again.") from exc
    except JWTError as exc:
        raise ValueError("Invalid portal session token.") from exc

    if payload.get("type") != PORTAL_TOKEN_TYPE:
        raise ValueError("Token is not a portal session.")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise ValueError("Portal session has no account.")

    exp = payload.get("exp")
    email = str(payload.get("email") or "").strip().lower()
    return PortalClaims(
        user_id=user_id,
        email=email or None,
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc) if exp is not None else None,
    )
