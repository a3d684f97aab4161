"""
Bulk email dispatcher.

Sends one personalized message per recipient:
1. Personalize subject/body ({{name}} / {{Name}})
2. Validate the address (bad syntax never reaches Gmail)
3. Send through a semaphore that allows MAX_CONCURRENT calls at once
4. Record one history row per recipient (fire-and-forget)
5. Collect results in input order once every worker has finished

A failure for one recipient never stops the batch, and nothing is retried.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from mailbridge.models.email_history import EmailType, SendStatus
from mailbridge.services.csv_ingest import Recipient, is_valid_email, MAX_RECIPIENTS
from mailbridge.services.history_service import HistoryEntry

logger = logging.getLogger(__name__)

MAX_CONCURRENT = 5
SEND_DELAY_SECONDS = 0.1

PLACEHOLDERS = ("{{name}}", "{{Name}}")


class BulkRequestError(ValueError):
    """The batch is rejected before anything is sent."""


@dataclass
class RecipientResult:
    email: str
    success: bool
    error: str = ""

    def to_dict(self) -> dict:
        data = {"email": self.email, "success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BulkSendResult:
    batch_id: str
    total_emails: int
    success_count: int
    failure_count: int
    results: List[RecipientResult] = field(default_factory=list)
    processing_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "total_emails": self.total_emails,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [r.to_dict() for r in self.results],
            "processing_time": f"{self.processing_time:.3f}s",
        }


def personalize(template: str, name: str) -> str:
    """Substitute the recipient name; with no name the template is returned as-is."""
    if not name:
        return template
    for placeholder in PLACEHOLDERS:
        template = template.replace(placeholder, name)
    return template


def check_batch_size(recipients: Sequence) -> None:
    if len(recipients) == 0:
        raise BulkRequestError("No emails provided")
    if len(recipients) > MAX_RECIPIENTS:
        raise BulkRequestError(f"Maximum {MAX_RECIPIENTS} emails allowed per batch")


class BulkDispatcher:
    """
    Fans a batch out over worker threads with bounded concurrency.

    Args:
        sender: object with `send(to, subject, body)`; raises on failure
        record_history: called once per recipient with a HistoryEntry;
            expected to return immediately (see history_service.record_async)
        max_concurrent: simultaneous send calls allowed
        send_delay: pause before each send except the first recipient's
    """

    def __init__(
        self,
        sender,
        record_history: Callable[[HistoryEntry], object],
        max_concurrent: int = MAX_CONCURRENT,
        send_delay: float = SEND_DELAY_SECONDS,
    ):
        self.sender = sender
        self.record_history = record_history
        self.max_concurrent = max_concurrent
        self.send_delay = send_delay

    def dispatch(
        self,
        user_id: int,
        subject: str,
        body: str,
        recipients: Sequence[Recipient],
        batch_id: Optional[str] = None,
    ) -> BulkSendResult:
        """
        Send the batch and block until every recipient has a result.

        Raises:
            BulkRequestError: empty batch or more than MAX_RECIPIENTS
        """
        check_batch_size(recipients)

        started = time.monotonic()
        batch_id = batch_id or str(uuid.uuid4())

        slots = threading.BoundedSemaphore(self.max_concurrent)
        lock = threading.Lock()
        results: List[Optional[RecipientResult]] = [None] * len(recipients)
        counts = {"success": 0, "failure": 0}

        def worker(index: int, recipient: Recipient) -> None:
            with slots:
                # Space out calls to stay under Gmail's per-user rate limits
                if index > 0 and self.send_delay:
                    time.sleep(self.send_delay)
                result, entry = self._send_one(user_id, subject, body, recipient, batch_id)

            self._record(entry)

            with lock:
                results[index] = result
                if result.success:
                    counts["success"] += 1
                else:
                    counts["failure"] += 1

        # One thread per recipient; the semaphore, not the pool, limits sends
        with ThreadPoolExecutor(
            max_workers=len(recipients),
            thread_name_prefix=f"bulk-{batch_id[:8]}",
        ) as pool:
            futures = [
                pool.submit(worker, index, recipient)
                for index, recipient in enumerate(recipients)
            ]
        for future in futures:
            # Surface programming errors; send failures are already captured
            future.result()

        elapsed = time.monotonic() - started
        logger.info(
            "User %s sent bulk batch %s: %d total, %d success, %d failed, took %.3fs",
            user_id, batch_id, len(recipients), counts["success"], counts["failure"], elapsed,
        )

        return BulkSendResult(
            batch_id=batch_id,
            total_emails=len(recipients),
            success_count=counts["success"],
            failure_count=counts["failure"],
            results=list(results),
            processing_time=elapsed,
        )

    def _send_one(self, user_id: int, subject: str, body: str, recipient: Recipient, batch_id: str):
        personalized_subject = personalize(subject, recipient.name)
        personalized_body = personalize(body, recipient.name)

        error = ""
        if not is_valid_email(recipient.email):
            error = "Invalid email format"
        else:
            try:
                self.sender.send(recipient.email, personalized_subject, personalized_body)
            except Exception as e:
                error = f"Failed to send: {e}"

        success = not error
        entry = HistoryEntry(
            user_id=user_id,
            email_type=EmailType.BULK.value,
            recipient_email=recipient.email,
            recipient_name=recipient.name,
            subject=personalized_subject,
            body=personalized_body,
            status=SendStatus.SENT.value if success else SendStatus.FAILED.value,
            error_message=error,
            batch_id=batch_id,
        )
        return RecipientResult(email=recipient.email, success=success, error=error), entry

    def _record(self, entry: HistoryEntry) -> None:
        try:
            self.record_history(entry)
        except Exception:
            logger.exception("Could not queue history for %s", entry.recipient_email)
