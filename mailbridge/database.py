from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from mailbridge.config import get_settings

settings = get_settings()

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Bulk history writes happen on worker threads
    connect_args["check_same_thread"] = False

# Create engine with connection pooling
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,  # Set True for SQL debugging
    pool_pre_ping=True,  # Verify connections before use
    connect_args=connect_args,
)

# Session factory for request-scoped sessions
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def init_db():
    """Create any missing tables."""
    # Import models so they register on Base.metadata
    import mailbridge.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    """
    FastAPI dependency to get a database session.

    Usage:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...

    Yields:
        Session: Database session that auto-closes after request
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp; google-auth and the DB columns both use naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
