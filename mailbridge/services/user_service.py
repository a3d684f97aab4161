"""
User lookups and creation. Soft-deleted users are invisible here.
"""

from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from mailbridge.models.user import User


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(
        User.email == email,
        User.deleted_at.is_(None)
    ).first()


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(
        User.id == user_id,
        User.deleted_at.is_(None)
    ).first()


def create_user(db: Session, name: str, email: str, password_hash: str = "") -> User:
    """
    Insert a new user.

    Raises:
        IntegrityError: the email is already taken
    """
    user = User(name=name, email=email, password_hash=password_hash)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(user)
    return user


def get_or_create_oauth_user(db: Session, email: str, name: str = "") -> User:
    """
    Find the user for a Google identity, creating a password-less one on first sight.

    The name falls back to the local part of the email.
    """
    existing = get_user_by_email(db, email)
    if existing:
        return existing

    try:
        return create_user(db, name=name or email.split("@")[0], email=email)
    except IntegrityError:
        # Race condition - another request created it
        return get_user_by_email(db, email)
