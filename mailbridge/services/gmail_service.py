import base64
import logging
from email.message import EmailMessage
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailbridge.config import Settings, GOOGLE_TOKEN_URI
from mailbridge.models.gmail_credential import GmailCredential
from mailbridge.services.google_oauth import GMAIL_SEND_SCOPE

logger = logging.getLogger(__name__)


class MailSendError(Exception):
    """The Gmail API refused or failed to deliver a message."""


def build_credentials(credential: GmailCredential, settings: Settings) -> Credentials:
    """
    Build google-auth credentials from a stored row.

    Including the refresh token and client secret lets the API client
    refresh an expired access token on its own.
    """
    return Credentials(
        token=credential.access_token,
        refresh_token=credential.refresh_token or None,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID or None,
        client_secret=settings.GOOGLE_CLIENT_SECRET or None,
        scopes=[GMAIL_SEND_SCOPE],
        expiry=credential.expires_at,
    )


def build_raw_message(to: str, subject: str, body: str, sender: Optional[str] = None) -> str:
    """
    Encode a plain-text message the way users.messages.send expects.

    Returns:
        base64url encoded RFC 2822 message
    """
    message = EmailMessage()
    message["To"] = to
    if sender:
        message["From"] = sender
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


class GmailSender:
    """Sends messages as one user through the Gmail API."""

    def __init__(self, credentials: Credentials, sender: Optional[str] = None):
        self.credentials = credentials
        self.sender = sender

    def _service(self):
        # httplib2 connections are not thread safe, so every send gets its own client
        return build("gmail", "v1", credentials=self.credentials, cache_discovery=False)

    def send(self, to: str, subject: str, body: str) -> dict:
        """
        Send one message.

        Returns:
            The Gmail API response ({"id", "threadId", "labelIds"})

        Raises:
            MailSendError: the API call failed for any reason
        """
        raw = build_raw_message(to, subject, body, sender=self.sender)
        try:
            return self._service().users().messages().send(
                userId="me",
                body={"raw": raw}
            ).execute()
        except HttpError as e:
            reason = getattr(e, "reason", None) or str(e)
            logger.warning("Gmail API rejected message to %s: %s", to, reason)
            raise MailSendError(reason) from e
        except GoogleAuthError as e:
            logger.warning("Gmail credentials for %s could not be used: %s", to, e)
            raise MailSendError(str(e)) from e
        except Exception as e:
            # Transport errors (httplib2, socket) do not share a base class
            logger.warning("Gmail send to %s failed: %s", to, e)
            raise MailSendError(str(e) or type(e).__name__) from e
