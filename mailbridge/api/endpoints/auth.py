"""
Account endpoints: password registration/login and Google sign-in.

Flow for Google:
1. POST /auth/google with an ID token (`credential`) or an access token
   -> signs in, creating a password-less user on first sight
2. POST /auth/google/callback with an authorization code
   -> signs in AND links Gmail send access in one step
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailbridge.config import get_settings
from mailbridge.database import get_db
from mailbridge.services import credential_service, user_service
from mailbridge.services.google_oauth import (
    SIGN_IN_SCOPES,
    InvalidGoogleToken,
    OAuthExchangeError,
    exchange_code,
    fetch_userinfo,
    verify_id_token,
)
from mailbridge.services.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ============ Request Schemas ============

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class GoogleAuthRequest(BaseModel):
    """Either the Sign-In button's ID token or a popup access token."""
    credential: Optional[str] = None
    access_token: Optional[str] = None
    id_token: Optional[str] = None


class GoogleCallbackRequest(BaseModel):
    code: str = Field(min_length=1)
    scope: str = ""


def _auth_response(user) -> dict:
    return {
        "token": create_access_token(user.id, user.email),
        "user": user.to_dict(),
    }


# ============ PASSWORD AUTH ============

@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """
    Create a password account.

    **Returns:**
    - 201: `{token, user}`
    - 400: missing name, bad email, or password shorter than 6 characters
    - 409: email already registered
    """
    if user_service.get_user_by_email(db, payload.email):
        raise HTTPException(status_code=409, detail="User already exists")

    try:
        user = user_service.create_user(
            db,
            name=payload.name,
            email=payload.email,
            password_hash=hash_password(payload.password),
        )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="User already exists")

    logger.info("Registered user %s", user.email)
    return _auth_response(user)


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = user_service.get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _auth_response(user)


# ============ GOOGLE SIGN-IN ============

@router.post("/google")
def google_auth(payload: GoogleAuthRequest, db: Session = Depends(get_db)):
    """
    Sign in with Google.

    `access_token` is resolved through the userinfo endpoint; `credential`
    (or `id_token`) is verified locally as a Google ID token.
    """
    if payload.access_token:
        try:
            profile = fetch_userinfo(payload.access_token)
        except OAuthExchangeError:
            raise HTTPException(status_code=500, detail="Failed to get user info")
    elif payload.credential or payload.id_token:
        try:
            profile = verify_id_token(
                payload.credential or payload.id_token,
                get_settings().GOOGLE_CLIENT_ID,
            )
        except InvalidGoogleToken as e:
            logger.warning("Rejected Google ID token: %s", e)
            raise HTTPException(status_code=401, detail="Invalid Google token")
    else:
        raise HTTPException(status_code=400, detail="No valid Google token provided")

    user = user_service.get_or_create_oauth_user(db, profile.email, profile.name)
    return _auth_response(user)


@router.post("/google/callback")
def google_callback(payload: GoogleCallbackRequest, db: Session = Depends(get_db)):
    """
    Exchange a popup authorization code, sign the user in, and link Gmail.

    **Returns:**
    - 200: `{token, user, message, gmail_connected: true}`
    - 500: Google rejected the code or the profile lookup failed
    """
    settings = get_settings()

    try:
        grant = exchange_code(settings, payload.code, scopes=SIGN_IN_SCOPES)
    except OAuthExchangeError as e:
        raise HTTPException(status_code=500, detail=f"Failed to exchange code for token: {e}")

    try:
        profile = fetch_userinfo(grant.access_token)
    except OAuthExchangeError:
        raise HTTPException(status_code=500, detail="Failed to get user info")

    user = user_service.get_or_create_oauth_user(db, profile.email, profile.name)

    credential_service.upsert_gmail_credential(
        db,
        user_id=user.id,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        token_type=grant.token_type,
        expires_at=grant.expires_at,
        scope=payload.scope or grant.scope,
    )

    logger.info("Google sign-in and Gmail link complete for %s", user.email)
    return {
        **_auth_response(user),
        "message": "Gmail authentication and connection successful",
        "gmail_connected": True,
    }
