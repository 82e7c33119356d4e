

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from settings import settings

RELEASE_GRANT_TYPE = "document_release"


# -----------------------
# Access tokens (JWT), issued by the auth service; minted locally for dev/tests
# -----------------------
def create_access_token(sub: str, minutes: Optional[int] = None) -> str:
    exp_minutes = minutes or settings.JWT_ACCESS_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return {}

# -----------------------
# Document release grants
# -----------------------
def create_release_grant(
    *,
    deposit_id: str,
    session_id: str,
    plan: str,
    minutes: Optional[int] = None,
) -> tuple[str, datetime]:
    ttl = minutes or settings.RELEASE_GRANT_MINUTES
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=ttl)
    payload = {
        "type": RELEASE_GRANT_TYPE,
        "sub": session_id,
        "deposit_id": deposit_id,
        "plan": plan,
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG), expires

def decode_release_grant(token: str) -> Optional[Dict[str, Any]]:
    payload = decode_token(token)
    if payload.get("type") != RELEASE_GRANT_TYPE:
        return None
    return payload
