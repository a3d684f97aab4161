"""
Linked Gmail credential storage.

Each user has at most one credential row. `upsert_gmail_credential` updates
the existing row when there is one and inserts otherwise, so calling it twice
for the same user never produces a second row.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from mailbridge.models.gmail_credential import GmailCredential

logger = logging.getLogger(__name__)


def get_gmail_credential(db: Session, user_id: int) -> Optional[GmailCredential]:
    return db.query(GmailCredential).filter(
        GmailCredential.user_id == user_id
    ).first()


def _apply(
    credential: GmailCredential,
    access_token: str,
    refresh_token: Optional[str],
    token_type: Optional[str],
    expires_at: Optional[datetime],
    scope: Optional[str],
) -> None:
    credential.access_token = access_token
    # Google only returns a refresh token on first consent; keep the old one otherwise
    if refresh_token:
        credential.refresh_token = refresh_token
    elif credential.refresh_token is None:
        credential.refresh_token = ""
    credential.token_type = token_type or "Bearer"
    credential.expires_at = expires_at
    credential.scope = scope or ""


def upsert_gmail_credential(
    db: Session,
    user_id: int,
    access_token: str,
    refresh_token: Optional[str] = None,
    token_type: Optional[str] = "Bearer",
    expires_at: Optional[datetime] = None,
    scope: Optional[str] = "",
) -> GmailCredential:
    """
    Insert or update the Gmail credential for a user.

    Args:
        db: Database session
        user_id: Owner of the credential
        access_token: Current OAuth access token
        refresh_token: Refresh token, if Google returned one
        token_type: Usually "Bearer"
        expires_at: Access token expiry (naive UTC)
        scope: Granted scope string

    Returns:
        GmailCredential: The single row for this user
    """
    existing = get_gmail_credential(db, user_id)
    if existing:
        logger.info("Updating existing Gmail credential for user %s", user_id)
        _apply(existing, access_token, refresh_token, token_type, expires_at, scope)
        db.commit()
        db.refresh(existing)
        return existing

    logger.info("Creating new Gmail credential for user %s", user_id)
    credential = GmailCredential(user_id=user_id)
    _apply(credential, access_token, refresh_token, token_type, expires_at, scope)
    db.add(credential)

    try:
        db.commit()
        db.refresh(credential)
        return credential
    except IntegrityError:
        # Race condition - another request inserted it first
        db.rollback()
        existing = get_gmail_credential(db, user_id)
        _apply(existing, access_token, refresh_token, token_type, expires_at, scope)
        db.commit()
        db.refresh(existing)
        return existing


def delete_gmail_credential(db: Session, user_id: int) -> bool:
    """Remove the user's credential. Returns whether one existed."""
    deleted = db.query(GmailCredential).filter(
        GmailCredential.user_id == user_id
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0


def save_refreshed_token(db: Session, credential: GmailCredential, credentials) -> bool:
    """
    Persist an access token that google-auth refreshed during a send.

    Args:
        credential: The stored row the credentials were built from
        credentials: google.oauth2.credentials.Credentials used for the send

    Returns:
        True if the row changed
    """
    if not credentials.token or credentials.token == credential.access_token:
        return False

    credential.access_token = credentials.token
    credential.expires_at = credentials.expiry
    if credentials.refresh_token:
        credential.refresh_token = credentials.refresh_token
    db.commit()
    logger.info("Stored refreshed Gmail access token for user %s", credential.user_id)
    return True
