"""
User model - one row per person who can sign in.

An empty password_hash marks an account created through Google sign-in.
Rows are never hard-deleted; `deleted_at` hides them from every lookup.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from mailbridge.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)  # soft delete

    # At most one row, enforced by the unique user_id on gmail_credentials
    gmail_credentials = relationship(
        "GmailCredential",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def to_dict(self, include_credentials: bool = False) -> dict:
        """Public view of the user; the password hash is never included."""
        data = {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_credentials:
            data["gmail_tokens"] = [cred.to_dict() for cred in self.gmail_credentials]
        return data
