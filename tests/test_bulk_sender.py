import threading
import time

import pytest

from mailbridge.services.bulk_sender import (
    BulkDispatcher,
    BulkRequestError,
    check_batch_size,
    personalize,
)
from mailbridge.services.csv_ingest import Recipient
from mailbridge.services.gmail_service import MailSendError
from tests.fakes import FakeSender


class HistorySink:
    def __init__(self):
        self.entries = []
        self._lock = threading.Lock()

    def __call__(self, entry):
        with self._lock:
            self.entries.append(entry)


def make_recipients(count, name_prefix="User"):
    return [Recipient(email=f"user{i}@example.com", name=f"{name_prefix} {i}") for i in range(count)]


def make_dispatcher(sender, sink, **kwargs):
    kwargs.setdefault("send_delay", 0)
    return BulkDispatcher(sender, sink, **kwargs)


def test_personalize_replaces_every_placeholder():
    assert personalize("Hi {{name}}, {{Name}}! Bye {{name}}", "Al") == "Hi Al, Al! Bye Al"


def test_personalize_leaves_template_when_name_empty():
    assert personalize("Hi {{name}}", "") == "Hi {{name}}"


def test_check_batch_size_bounds():
    with pytest.raises(BulkRequestError, match="No emails provided"):
        check_batch_size([])
    with pytest.raises(BulkRequestError, match="Maximum 100"):
        check_batch_size(make_recipients(101))
    check_batch_size(make_recipients(100))


@pytest.mark.parametrize("count", [0, 101])
def test_rejected_batches_make_no_remote_calls(count):
    sender, sink = FakeSender(), HistorySink()

    with pytest.raises(BulkRequestError):
        make_dispatcher(sender, sink).dispatch(1, "Hi", "Body", make_recipients(count))

    assert sender.calls == []
    assert sink.entries == []


def test_all_success():
    sender, sink = FakeSender(), HistorySink()

    result = make_dispatcher(sender, sink).dispatch(7, "Hello {{name}}", "Dear {{Name}}", make_recipients(3))

    assert result.total_emails == 3
    assert result.success_count == 3
    assert result.failure_count == 0
    assert [r.email for r in result.results] == [f"user{i}@example.com" for i in range(3)]
    assert all(r.success and r.error == "" for r in result.results)
    assert sorted(sender.calls) == sorted(
        (f"user{i}@example.com", f"Hello User {i}", f"Dear User {i}") for i in range(3)
    )


def test_results_follow_input_order_not_completion_order():
    class SlowFirstSender(FakeSender):
        def send(self, to, subject, body):
            # Earlier recipients finish last
            index = int(to[len("user"):to.index("@")])
            time.sleep(0.02 * (10 - index))
            return super().send(to, subject, body)

    recipients = make_recipients(10)
    result = make_dispatcher(SlowFirstSender(), HistorySink(), max_concurrent=10).dispatch(
        1, "s", "b", recipients
    )

    assert [r.email for r in result.results] == [r.email for r in recipients]


def test_invalid_addresses_fail_without_remote_call():
    sender, sink = FakeSender(), HistorySink()
    recipients = [
        Recipient(email="good@example.com", name="Good"),
        Recipient(email="not-an-email", name="Bad"),
    ]

    result = make_dispatcher(sender, sink).dispatch(1, "s", "b", recipients)

    assert [call[0] for call in sender.calls] == ["good@example.com"]
    assert result.results[1].success is False
    assert result.results[1].error == "Invalid email format"
    assert result.success_count == 1
    assert result.failure_count == 1


def test_send_failure_is_captured_and_batch_continues():
    sender = FakeSender(fail_for={"user1@example.com"})

    result = make_dispatcher(sender, HistorySink()).dispatch(1, "s", "b", make_recipients(3))

    assert [r.success for r in result.results] == [True, False, True]
    assert result.results[1].error == "Failed to send: Quota exceeded"
    assert result.results[1].to_dict() == {
        "email": "user1@example.com",
        "success": False,
        "error": "Failed to send: Quota exceeded",
    }
    assert len(sender.calls) == 3


def test_unexpected_sender_exception_is_a_failure_not_a_crash():
    class BrokenSender:
        def send(self, to, subject, body):
            raise RuntimeError("socket closed")

    result = make_dispatcher(BrokenSender(), HistorySink()).dispatch(1, "s", "b", make_recipients(2))

    assert result.failure_count == 2
    assert result.results[0].error == "Failed to send: socket closed"


def test_counts_always_add_up():
    sender = FakeSender(fail_for={f"user{i}@example.com" for i in range(0, 40, 3)})
    recipients = make_recipients(40) + [Recipient(email="broken", name="")]

    result = make_dispatcher(sender, HistorySink()).dispatch(1, "s", "b", recipients)

    assert result.total_emails == 41
    assert len(result.results) == 41
    assert result.success_count + result.failure_count == result.total_emails
    assert result.failure_count == 14 + 1


def test_concurrency_is_capped():
    sender = FakeSender(delay=0.05)

    make_dispatcher(sender, HistorySink(), max_concurrent=5).dispatch(1, "s", "b", make_recipients(20))

    assert 1 < sender.max_active <= 5


def test_every_send_but_the_first_waits_for_the_delay():
    sender = FakeSender()
    dispatcher = BulkDispatcher(sender, HistorySink(), max_concurrent=1, send_delay=0.05)

    started = time.monotonic()
    dispatcher.dispatch(1, "s", "b", make_recipients(4))

    # Slots are serialized, so three delays run back to back
    assert time.monotonic() - started >= 0.15


def test_one_history_entry_per_recipient_sharing_a_batch_id():
    sender = FakeSender(fail_for={"user2@example.com"})
    sink = HistorySink()
    recipients = make_recipients(5) + [Recipient(email="nope", name="X")]

    result = make_dispatcher(sender, sink).dispatch(42, "Hi {{name}}", "Body for {{name}}", recipients)

    assert len(sink.entries) == 6
    assert {e.batch_id for e in sink.entries} == {result.batch_id}
    assert all(e.user_id == 42 and e.email_type == "bulk" for e in sink.entries)

    by_email = {e.recipient_email: e for e in sink.entries}
    assert by_email["user2@example.com"].status == "failed"
    assert by_email["user2@example.com"].error_message == "Failed to send: Quota exceeded"
    assert by_email["nope"].status == "failed"
    assert by_email["user0@example.com"].status == "sent"
    assert by_email["user0@example.com"].subject == "Hi User 0"
    assert by_email["user0@example.com"].body == "Body for User 0"
    assert by_email["user0@example.com"].recipient_name == "User 0"


def test_history_failure_does_not_affect_results():
    def broken_sink(entry):
        raise RuntimeError("database is down")

    result = make_dispatcher(FakeSender(), broken_sink).dispatch(1, "s", "b", make_recipients(3))

    assert result.success_count == 3


def test_each_dispatch_gets_a_new_batch_id():
    dispatcher = make_dispatcher(FakeSender(), HistorySink())

    first = dispatcher.dispatch(1, "s", "b", make_recipients(1))
    second = dispatcher.dispatch(1, "s", "b", make_recipients(1))

    assert first.batch_id != second.batch_id


def test_to_dict_shape():
    sender = FakeSender(fail_for={"user1@example.com"})
    data = make_dispatcher(sender, HistorySink()).dispatch(1, "s", "b", make_recipients(2)).to_dict()

    assert set(data) == {
        "batch_id", "total_emails", "success_count", "failure_count", "results", "processing_time",
    }
    assert data["results"][0] == {"email": "user0@example.com", "success": True}
    assert data["processing_time"].endswith("s")


def test_mail_send_error_message_is_kept():
    class QuotaSender:
        def send(self, to, subject, body):
            raise MailSendError("User-rate limit exceeded")

    result = make_dispatcher(QuotaSender(), HistorySink()).dispatch(1, "s", "b", make_recipients(1))

    assert result.results[0].error == "Failed to send: User-rate limit exceeded"
