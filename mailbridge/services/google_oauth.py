"""
Google OAuth bridge.

Turns authorization codes, access tokens and ID tokens into a Google
identity and Gmail tokens. Two code flows are supported:

1. Popup sign-in: the frontend gets a code with redirect "postmessage" and
   posts it to /api/auth/google/callback.
2. Redirect linking: /api/gmail/auth-url builds a consent URL whose `state`
   carries the user id; Google redirects back to /api/gmail/callback.

The `state` value is a plain "user_<id>_<timestamp>" string with no
signature. It identifies the user but does not protect against CSRF.
"""

import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2 import id_token
from google_auth_oauthlib.flow import Flow

from mailbridge.config import Settings
from mailbridge.database import utcnow

# Google may grant more (or fewer) scopes than requested in the popup flow
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

logger = logging.getLogger(__name__)

GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"

LINK_SCOPES = [GMAIL_SEND_SCOPE]

SIGN_IN_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    GMAIL_SEND_SCOPE,
]

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

STATE_PATTERN = re.compile(r"^user_(\d+)_(\d+)$")


class OAuthExchangeError(Exception):
    """Google rejected a code exchange or a profile lookup failed."""


class InvalidGoogleToken(Exception):
    """An ID token failed verification."""


@dataclass
class TokenGrant:
    """Tokens returned by a successful code exchange."""
    access_token: str
    refresh_token: str
    token_type: str
    expires_at: Optional[datetime]
    scope: str


@dataclass
class GoogleProfile:
    email: str
    name: str = ""
    id: str = ""


def build_flow(settings: Settings, scopes=None, redirect_uri: Optional[str] = None) -> Flow:
    """Create an OAuth flow from the configured web client."""
    return Flow.from_client_config(
        settings.oauth_client_config(),
        scopes=scopes or LINK_SCOPES,
        redirect_uri=redirect_uri or settings.oauth_redirect_url,
        # auth-url and callback are separate requests, so no PKCE verifier survives between them
        autogenerate_code_verifier=False,
    )


def make_state(user_id: int, now: Optional[float] = None) -> str:
    return f"user_{user_id}_{int(now if now is not None else time.time())}"


def parse_state(state: Optional[str]) -> Optional[int]:
    """Return the user id embedded in a state string, or None if it is malformed."""
    if not state:
        return None
    match = STATE_PATTERN.match(state)
    if not match:
        return None
    return int(match.group(1))


def authorization_url(settings: Settings, state: str) -> str:
    """Consent screen URL that asks for offline Gmail send access."""
    flow = build_flow(settings)
    url, _ = flow.authorization_url(
        access_type="offline",  # Get refresh token
        prompt="consent",  # Force consent so a refresh token is always returned
        state=state,
    )
    return url


def exchange_code(settings: Settings, code: str, scopes=None, redirect_uri: Optional[str] = None) -> TokenGrant:
    """
    Exchange an authorization code for Gmail tokens.

    Raises:
        OAuthExchangeError: Google rejected the code
    """
    flow = build_flow(settings, scopes=scopes, redirect_uri=redirect_uri)
    try:
        token = flow.fetch_token(code=code)
    except Exception as e:
        logger.error("Token exchange failed: %s", e)
        raise OAuthExchangeError(str(e)) from e

    expires_at = None
    if token.get("expires_in"):
        expires_at = utcnow() + timedelta(seconds=int(token["expires_in"]))

    scope = token.get("scope") or ""
    if isinstance(scope, (list, tuple)):
        scope = " ".join(scope)

    logger.info("Token exchange successful (refresh token: %s)", bool(token.get("refresh_token")))
    return TokenGrant(
        access_token=token["access_token"],
        refresh_token=token.get("refresh_token") or "",
        token_type=token.get("token_type") or "Bearer",
        expires_at=expires_at,
        scope=scope,
    )


def fetch_userinfo(access_token: str) -> GoogleProfile:
    """
    Look up the Google account behind an access token.

    Raises:
        OAuthExchangeError: the request failed or returned no email
    """
    try:
        response = requests.get(
            USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=10,
        )
        response.raise_for_status()
        info = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("Failed to get user info: %s", e)
        raise OAuthExchangeError(f"Failed to get user info: {e}") from e

    if not info.get("email"):
        raise OAuthExchangeError("Google profile has no email address")

    return GoogleProfile(
        email=info["email"],
        name=info.get("name") or "",
        id=str(info.get("id") or ""),
    )


def verify_id_token(credential: str, client_id: str) -> GoogleProfile:
    """
    Verify a Google Sign-In ID token (the `credential` of the JS button).

    Raises:
        InvalidGoogleToken: signature, audience, or expiry check failed
    """
    try:
        claims = id_token.verify_oauth2_token(
            credential,
            GoogleRequest(),
            audience=client_id or None,
        )
    except ValueError as e:
        raise InvalidGoogleToken(str(e)) from e

    email = claims.get("email")
    if not email:
        raise InvalidGoogleToken("ID token has no email claim")

    return GoogleProfile(
        email=email,
        name=claims.get("name") or "",
        id=str(claims.get("sub") or ""),
    )
