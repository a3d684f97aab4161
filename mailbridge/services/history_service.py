"""
Email history recording and queries.

Single sends record synchronously through the request session. Bulk
workers call `record_async`, which writes on a background thread with its
own session; a failed write is logged and otherwise lost.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Optional, Tuple, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from mailbridge.database import SessionLocal, utcnow
from mailbridge.models.email_history import EmailHistory, EmailType, SendStatus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
STATS_WINDOW_DAYS = 7

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="history-writer")
_pending: set = set()
_pending_lock = threading.Lock()


@dataclass
class HistoryEntry:
    """
    One send attempt, success or failure.

    For bulk sends `subject` and `body` hold the personalized text that was
    actually sent, not the `{{name}}` template.
    """
    user_id: int
    email_type: str
    recipient_email: str
    subject: str
    body: str
    status: str
    recipient_name: str = ""
    error_message: str = ""
    batch_id: str = ""
    sent_at: datetime = field(default_factory=utcnow)

    def to_model(self) -> EmailHistory:
        return EmailHistory(**asdict(self))


def record(db: Session, entry: HistoryEntry) -> EmailHistory:
    row = entry.to_model()
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _write(entry: HistoryEntry) -> None:
    db = SessionLocal()
    try:
        db.add(entry.to_model())
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to record history for %s (batch %s)",
            entry.recipient_email, entry.batch_id or "-",
        )
    finally:
        db.close()


def _forget(future: Future) -> None:
    with _pending_lock:
        _pending.discard(future)


def record_async(entry: HistoryEntry) -> Future:
    """Queue a history write without waiting for it."""
    future = _executor.submit(_write, entry)
    with _pending_lock:
        _pending.add(future)
    future.add_done_callback(_forget)
    return future


def wait_pending(timeout: Optional[float] = None) -> bool:
    """
    Block until queued history writes finish.

    Returns:
        True if nothing is left pending
    """
    with _pending_lock:
        futures = list(_pending)
    if not futures:
        return True
    _, not_done = wait(futures, timeout=timeout)
    return not not_done


def _parse_positive_int(value, default: int, upper: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 1 or (upper is not None and number > upper):
        return default
    return number


def normalize_paging(page, page_size) -> Tuple[int, int]:
    """Out-of-range or unparsable values fall back to page 1 / 20 per page."""
    return (
        _parse_positive_int(page, 1),
        _parse_positive_int(page_size, DEFAULT_PAGE_SIZE, upper=MAX_PAGE_SIZE),
    )


def list_history(
    db: Session,
    user_id: int,
    email_type: Optional[str] = None,
    page=1,
    page_size=DEFAULT_PAGE_SIZE
) -> dict:
    """
    Paginated history for one user, newest first.

    Args:
        email_type: "single", "bulk", or empty for all
        page, page_size: raw query values; see normalize_paging
    """
    page, page_size = normalize_paging(page, page_size)

    query = db.query(EmailHistory).filter(EmailHistory.user_id == user_id)
    if email_type:
        query = query.filter(EmailHistory.email_type == email_type)

    total_count = query.count()
    rows: List[EmailHistory] = (
        query.order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "history": [row.to_dict() for row in rows],
        "total_count": total_count,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total_count / page_size),
    }


def _count(db: Session, user_id: int, *criteria) -> int:
    return db.query(func.count(EmailHistory.id)).filter(
        EmailHistory.user_id == user_id,
        *criteria
    ).scalar()


def history_stats(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
    since = (now or utcnow()) - timedelta(days=STATS_WINDOW_DAYS)
    sent = EmailHistory.status == SendStatus.SENT.value
    failed = EmailHistory.status == SendStatus.FAILED.value

    return {
        "total_sent": _count(db, user_id, sent),
        "total_failed": _count(db, user_id, failed),
        "single_emails": _count(db, user_id, EmailHistory.email_type == EmailType.SINGLE.value),
        "bulk_emails": _count(db, user_id, EmailHistory.email_type == EmailType.BULK.value),
        "last_7_days_sent": _count(db, user_id, sent, EmailHistory.sent_at >= since),
        "last_7_days_failed": _count(db, user_id, failed, EmailHistory.sent_at >= since),
    }
