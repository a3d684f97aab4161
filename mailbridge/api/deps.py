"""
Shared endpoint dependencies: the authenticated user and the Gmail sender.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from mailbridge.config import get_settings
from mailbridge.models.gmail_credential import GmailCredential
from mailbridge.services.gmail_service import GmailSender, build_credentials
from mailbridge.services.security import decode_access_token, InvalidSessionToken

# auto_error=False so a missing header is a 401, not FastAPI's default 403
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: int
    email: str


def get_current_user(
    token: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if token is None or not token.credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token.credentials)
    except InvalidSessionToken as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(id=payload["user_id"], email=payload["email"])


def build_gmail_sender(credential: GmailCredential) -> GmailSender:
    return GmailSender(build_credentials(credential, get_settings()))


def get_sender_factory():
    """Dependency returning a callable that turns a stored credential into a sender."""
    return build_gmail_sender
