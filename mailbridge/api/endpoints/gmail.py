"""
Gmail linking and sending endpoints.

Linking:
1. GET /gmail/auth-url -> consent URL with state "user_<id>_<ts>"
2. Google redirects to GET /gmail/callback with code + state
3. GET /gmail/status, DELETE /gmail/disconnect manage the link

Sending:
- POST /gmail/send: one message, history row always written
- POST /gmail/process-csv: upload -> validated recipient list
- POST /gmail/send-bulk: up to 100 personalized messages
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from mailbridge.api.deps import CurrentUser, get_current_user, get_sender_factory
from mailbridge.config import get_settings
from mailbridge.database import get_db
from mailbridge.models.email_history import EmailType, SendStatus
from mailbridge.services import credential_service, history_service
from mailbridge.services.bulk_sender import BulkDispatcher, BulkRequestError, check_batch_size
from mailbridge.services.csv_ingest import (
    MAX_CSV_BYTES,
    CSVInputError,
    Recipient,
    parse_recipients,
    validate_upload,
)
from mailbridge.services.gmail_service import MailSendError
from mailbridge.services.google_oauth import (
    OAuthExchangeError,
    authorization_url,
    exchange_code,
    make_state,
    parse_state,
)
from mailbridge.services.history_service import HistoryEntry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gmail", tags=["Gmail"])

NOT_CONNECTED = "Gmail account not connected"


# ============ Request Schemas ============

class SendEmailRequest(BaseModel):
    to: EmailStr
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


class BulkRecipient(BaseModel):
    # Plain str: malformed addresses become per-recipient failures, not a 400
    email: str
    name: str = ""


class BulkEmailRequest(BaseModel):
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    emails: List[BulkRecipient] = []


def _require_credential(db: Session, user_id: int):
    credential = credential_service.get_gmail_credential(db, user_id)
    if not credential:
        raise HTTPException(status_code=404, detail=NOT_CONNECTED)
    return credential


def _persist_refresh(db: Session, credential, sender) -> None:
    credentials = getattr(sender, "credentials", None)
    if credentials is None:
        return
    try:
        credential_service.save_refreshed_token(db, credential, credentials)
    except Exception:
        db.rollback()
        logger.exception("Could not store refreshed token for user %s", credential.user_id)


# ============ LINKING ============

@router.get("/auth-url")
def get_auth_url(current_user: CurrentUser = Depends(get_current_user)):
    """
    Build the Google consent URL for linking Gmail.

    The state is not signed; it only carries the user id back to /gmail/callback.
    """
    state = make_state(current_user.id)
    return {
        "auth_url": authorization_url(get_settings(), state),
        "state": state,
    }


@router.get("/callback")
def gmail_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """
    OAuth redirect target for the auth-url flow.

    The user is identified by the state parameter only.
    """
    if error:
        raise HTTPException(status_code=400, detail=f"Authentication was denied or failed: {error}")
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code not provided")

    user_id = parse_state(state)
    if user_id is None:
        raise HTTPException(status_code=400, detail="Invalid state parameter")

    try:
        grant = exchange_code(get_settings(), code)
    except OAuthExchangeError:
        raise HTTPException(status_code=500, detail="Failed to exchange code for token")

    credential = credential_service.upsert_gmail_credential(
        db,
        user_id=user_id,
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        token_type=grant.token_type,
        expires_at=grant.expires_at,
        scope="gmail.send",
    )

    return {
        "message": "Gmail account connected successfully",
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
    }


@router.get("/status")
def gmail_status(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Whether Gmail is linked.

    `expired` is false unless GMAIL_STATUS_CHECK_EXPIRY is enabled: a stored
    refresh token renews the access token on the next send.
    """
    credential = credential_service.get_gmail_credential(db, current_user.id)
    if not credential:
        return {"connected": False, "message": NOT_CONNECTED}

    expired = credential.is_expired() if get_settings().GMAIL_STATUS_CHECK_EXPIRY else False
    return {
        "connected": True,
        "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
        "expired": expired,
        "scope": credential.scope,
    }


@router.delete("/disconnect")
def disconnect_gmail(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not credential_service.delete_gmail_credential(db, current_user.id):
        return {"message": "No Gmail account was connected", "connected": False}

    logger.info("User %s disconnected Gmail", current_user.id)
    return {"message": "Gmail account disconnected successfully", "connected": False}


# ============ SENDING ============

@router.post("/send")
def send_email(
    payload: SendEmailRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    sender_factory=Depends(get_sender_factory),
):
    """
    Send one message as the signed-in user.

    **Returns:**
    - 200: sent
    - 404: Gmail not linked
    - 500: Gmail API failure (the attempt is still recorded in history)
    """
    credential = _require_credential(db, current_user.id)
    sender = sender_factory(credential)

    entry = HistoryEntry(
        user_id=current_user.id,
        email_type=EmailType.SINGLE.value,
        recipient_email=payload.to,
        subject=payload.subject,
        body=payload.body,
        status=SendStatus.SENT.value,
    )

    try:
        sender.send(payload.to, payload.subject, payload.body)
    except MailSendError as e:
        entry.status = SendStatus.FAILED.value
        entry.error_message = str(e)
        history_service.record(db, entry)
        # google-auth may have refreshed the token before the send itself failed
        _persist_refresh(db, credential, sender)
        raise HTTPException(status_code=500, detail=f"Failed to send email: {e}")

    history_service.record(db, entry)
    _persist_refresh(db, credential, sender)

    return {
        "message": "Email sent successfully",
        "to": payload.to,
        "subject": payload.subject,
        "from": current_user.email,
    }


@router.post("/process-csv")
async def process_csv(
    csv_file: UploadFile = File(...),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Parse an uploaded recipient list.

    Header must have an email column (email, email_address, to) and may have
    a name column (name, full_name, recipient_name). Bad rows are reported in
    `errors`; at most 100 recipients are returned.
    """
    # Read one byte past the limit so oversize uploads are detectable
    content = await csv_file.read(MAX_CSV_BYTES + 1)

    try:
        validate_upload(csv_file.filename, len(content))
        result = parse_recipients(content)
    except CSVInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "User %s processed CSV: %d total records, %d valid emails, %d errors",
        current_user.id, result.total_records, len(result.valid_emails), len(result.errors),
    )
    return result.to_dict()


@router.post("/send-bulk")
def send_bulk(
    payload: BulkEmailRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    sender_factory=Depends(get_sender_factory),
):
    """
    Send personalized messages to up to 100 recipients.

    `{{name}}` / `{{Name}}` in subject and body are replaced per recipient.
    Individual failures are reported in `results`; the response is 200 once
    sending starts.
    """
    recipients = [Recipient(email=r.email.strip(), name=r.name.strip()) for r in payload.emails]

    try:
        check_batch_size(recipients)
    except BulkRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    credential = _require_credential(db, current_user.id)
    sender = sender_factory(credential)

    dispatcher = BulkDispatcher(sender, history_service.record_async)
    result = dispatcher.dispatch(current_user.id, payload.subject, payload.body, recipients)

    _persist_refresh(db, credential, sender)
    return result.to_dict()


# ============ HISTORY ============

@router.get("/history")
def get_history(
    type: Optional[str] = Query(None, description="single, bulk, or empty for all"),
    page: Optional[str] = Query(None, description="Page number (default 1)"),
    page_size: Optional[str] = Query(None, description="Rows per page, 1-100 (default 20)"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Paginated send history, newest first.

    Invalid paging values fall back to the defaults instead of failing.
    """
    return history_service.list_history(
        db,
        user_id=current_user.id,
        email_type=type,
        page=page,
        page_size=page_size,
    )


@router.get("/history/stats")
def get_history_stats(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return history_service.history_stats(db, current_user.id)
