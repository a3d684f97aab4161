"""
SQLAlchemy models for the mail bridge.

This package contains:
- User: people who can sign in (password or Google)
- GmailCredential: the linked Gmail OAuth tokens, one per user
- EmailHistory: one audit row per send attempt
"""

from mailbridge.models.user import User
from mailbridge.models.gmail_credential import GmailCredential
from mailbridge.models.email_history import EmailHistory, EmailType, SendStatus

__all__ = ["User", "GmailCredential", "EmailHistory", "EmailType", "SendStatus"]
