"""Authentication dependencies for portal users and internal callers."""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from services.portal_tokens import verify_portal_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def ensure_user_scope(auth_user_id: str, supplied_user_id: Optional[str]) -> str:
    """Return authenticated user_id and reject cross-user attempts."""
    if supplied_user_id and supplied_user_id != auth_user_id:
        raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the portal user from a Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = verify_portal_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(user_id=claims.user_id, email=claims.email)


async def require_purchase_events_token(
    x_purchase_events_token: Optional[str] = Header(default=None),
) -> None:
    """Guard for the internal purchase-event intake (already verified upstream)."""
    expected = (settings.PURCHASE_EVENTS_TOKEN or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Purchase event intake is not configured.")
    if not x_purchase_events_token or not hmac.compare_digest(x_purchase_events_token, expected):
        raise HTTPException(status_code=401, detail="Invalid purchase events token.")
