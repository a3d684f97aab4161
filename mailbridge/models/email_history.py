"""
EmailHistory model - audit trail of send attempts.

Append-only. Every call to the Gmail sender produces exactly one row,
whether it succeeded or not. Rows from one bulk request share a batch_id;
single sends leave it empty.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index

from mailbridge.database import Base, utcnow


class EmailType(str, enum.Enum):
    SINGLE = "single"
    BULK = "bulk"


class SendStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


class EmailHistory(Base):
    __tablename__ = "email_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    email_type = Column(String(16), nullable=False)  # single, bulk
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255), default="")
    subject = Column(String(998), nullable=False)
    body = Column(Text)

    status = Column(String(16), nullable=False)  # sent, failed
    error_message = Column(Text, default="")
    batch_id = Column(String(36), default="", index=True)

    sent_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_history_user_sent_at", "user_id", "sent_at"),
    )

    def __repr__(self):
        return f"<EmailHistory(id={self.id}, to={self.recipient_email}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email_type": self.email_type,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "body": self.body,
            "status": self.status,
            "error_message": self.error_message,
            "batch_id": self.batch_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
