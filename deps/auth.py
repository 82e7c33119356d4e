

# deps/auth.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from security import decode_token

bearer = HTTPBearer(auto_error=False)

class CurrentUser:
    def __init__(self, user_id: str, token: str):
        self.user_id = user_id
        # forwarded to the payment gateway on the user's behalf
        self.token = token

    @property
    def session_id(self) -> str:
        return self.user_id

def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> CurrentUser:
    if not creds:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    # must be "Bearer"
    if (creds.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    payload = decode_token(creds.credentials)
    sub = payload.get("sub")
    # release grants are signed with the same key but are not access tokens
    if not sub or not isinstance(sub, str) or payload.get("type"):
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    return CurrentUser(user_id=sub, token=creds.credentials)
