"""
GmailCredential model - the OAuth tokens that let us send as a user.

One row per user at most (unique user_id). Writes go through
`credential_service.upsert_gmail_credential`, which updates in place.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from mailbridge.database import Base, utcnow


class GmailCredential(Base):
    __tablename__ = "gmail_credentials"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)

    # Token data (never serialized)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False, default="")
    token_type = Column(String(32), default="Bearer")
    expires_at = Column(DateTime)
    scope = Column(String(512), default="")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="gmail_credentials")

    def __repr__(self):
        return f"<GmailCredential(user_id={self.user_id}, expires_at={self.expires_at})>"

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "token_type": self.token_type,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scope": self.scope,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
