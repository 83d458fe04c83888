from __future__ import annotations

from datetime import datetime, timedelta, timezone

from rent_reminders.config import Settings
from rent_reminders.dispatcher import DispatchResult, MultiChannelDispatcher
from rent_reminders.notifier import StubEmailSender, StubSmsSender
from rent_reminders.queue_drain import (
    BOOKING_REMINDER,
    UNREAD_MESSAGE,
    QueueDrainProcessor,
    schedule_booking_reminder,
    schedule_unread_message_reminder,
)
from rent_reminders.store import Booking, InMemoryRentalStore, Message, Profile

NOW = datetime(2026, 3, 12, 6, 0, tzinfo=timezone.utc)


class _AllFailDispatcher:
    def __init__(self) -> None:
        self.calls = 0

    def dispatch(self, target, payload, *, now=None, channels=None) -> DispatchResult:
        self.calls += 1
        return DispatchResult(email_ok=False, sms_ok=False, in_app_ok=False)


def _processor(store: InMemoryRentalStore, dispatcher=None) -> tuple[QueueDrainProcessor, StubEmailSender]:
    email = StubEmailSender()
    dispatcher = dispatcher or MultiChannelDispatcher(email_sender=email, sms_sender=StubSmsSender(), store=store)
    return QueueDrainProcessor(store=store, dispatcher=dispatcher, settings=Settings()), email


def _seed_message(store: InMemoryRentalStore, message_id: str = "msg-1") -> Message:
    store.add_profile(Profile(id="tenant-1", first_name="Ana", email="ana@example.com"))
    store.add_profile(Profile(id="landlord-1", first_name="Jose", last_name="Reyes"))
    return store.add_message(
        Message(id=message_id, sender_id="landlord-1", receiver_id="tenant-1", created_at=NOW - timedelta(hours=7))
    )


def test_producers_compute_send_times() -> None:
    store = InMemoryRentalStore()
    unread = schedule_unread_message_reminder(store, "msg-1", NOW)
    upcoming = schedule_booking_reminder(store, "bk-1", NOW + timedelta(days=2), now=NOW)
    imminent = schedule_booking_reminder(store, "bk-2", NOW + timedelta(hours=3), now=NOW)

    assert (unread.type, unread.send_at) == (UNREAD_MESSAGE, NOW + timedelta(hours=6))
    assert (upcoming.type, upcoming.send_at) == (BOOKING_REMINDER, NOW + timedelta(hours=36))
    assert imminent.send_at == NOW


def test_due_message_reminder_is_delivered_and_marked() -> None:
    store = InMemoryRentalStore()
    message = _seed_message(store)
    item = schedule_unread_message_reminder(store, message.id, message.created_at)
    processor, email = _processor(store)

    report = processor.drain(NOW)

    assert report.as_dict() == {
        "processed": 1,
        "messages": 1,
        "bookings": 0,
        "suppressed": 0,
        "errors": 0,
        "throttled": False,
    }
    assert store.list_scheduled_reminders()[0].sent is True
    assert store.get_message(message.id).reminder_sent is True  # type: ignore[union-attr]
    assert email.outbox[0].subject == "Unread message from Jose Reyes"
    assert [entry.type for entry in store.list_notifications("tenant-1")] == ["unread_message_reminder"]
    assert item.id == store.list_scheduled_reminders()[0].id


def test_read_message_is_suppressed_without_dispatch() -> None:
    store = InMemoryRentalStore()
    message = _seed_message(store)
    schedule_unread_message_reminder(store, message.id, message.created_at)
    store.mark_message_read(message.id)
    processor, email = _processor(store)

    report = processor.drain(NOW)

    assert report.suppressed == 1
    assert report.processed == 0
    assert email.outbox == []
    assert store.list_scheduled_reminders()[0].sent is True


def test_inactive_booking_and_unknown_type_are_suppressed() -> None:
    store = InMemoryRentalStore()
    store.add_booking(
        Booking(
            id="bk-1",
            tenant_id="tenant-1",
            property_title="Unit A",
            booking_date=NOW + timedelta(hours=4),
            status="cancelled",
        )
    )
    store.enqueue_scheduled_reminder(type=BOOKING_REMINDER, target_id="bk-1", send_at=NOW - timedelta(minutes=5))
    store.enqueue_scheduled_reminder(type="legacy_digest", target_id="x", send_at=NOW - timedelta(minutes=5))
    processor, _ = _processor(store)

    report = processor.drain(NOW)

    assert report.suppressed == 2
    assert all(item.sent for item in store.list_scheduled_reminders())


def test_accepted_booking_reminder_flips_source_flag() -> None:
    store = InMemoryRentalStore()
    store.add_profile(Profile(id="tenant-1", email="ana@example.com"))
    store.add_booking(
        Booking(
            id="bk-1",
            tenant_id="tenant-1",
            property_title="Unit A",
            booking_date=NOW + timedelta(hours=10),
            status="accepted",
        )
    )
    schedule_booking_reminder(store, "bk-1", NOW + timedelta(hours=10), now=NOW)
    processor, email = _processor(store)

    report = processor.drain(NOW)

    assert report.bookings == 1
    assert report.processed == 1
    assert store.get_booking("bk-1").reminder_sent is True  # type: ignore[union-attr]
    assert len(email.outbox) == 1


def test_future_items_are_left_alone() -> None:
    store = InMemoryRentalStore()
    message = _seed_message(store)
    store.enqueue_scheduled_reminder(type=UNREAD_MESSAGE, target_id=message.id, send_at=NOW + timedelta(hours=1))
    processor, _ = _processor(store)

    report = processor.drain(NOW)

    assert report.processed == 0
    assert store.list_scheduled_reminders()[0].sent is False


def test_failed_dispatch_still_consumes_item_but_keeps_source_unreminded() -> None:
    store = InMemoryRentalStore()
    message = _seed_message(store)
    schedule_unread_message_reminder(store, message.id, message.created_at)
    dispatcher = _AllFailDispatcher()
    processor, _ = _processor(store, dispatcher)

    report = processor.drain(NOW)
    again = processor.drain(NOW + timedelta(hours=1))

    assert report.processed == 1
    assert again.processed == 0
    assert dispatcher.calls == 1
    assert store.list_scheduled_reminders()[0].sent is True
    assert store.get_message(message.id).reminder_sent is False  # type: ignore[union-attr]


def test_concurrent_drain_counts_item_once() -> None:
    store = InMemoryRentalStore()
    message = _seed_message(store)
    schedule_unread_message_reminder(store, message.id, message.created_at)
    stale_batch = store.list_due_scheduled_reminders(NOW, limit=50)
    processor, _ = _processor(store)

    first = processor.drain(NOW, respect_throttle=False)
    store.list_due_scheduled_reminders = lambda now, *, limit: stale_batch  # type: ignore[method-assign]
    second = processor.drain(NOW, respect_throttle=False)

    assert first.processed == 1
    assert second.processed == 0
    assert second.suppressed == 0
    assert second.errors == 0


def test_throttle_limits_drain_frequency() -> None:
    store = InMemoryRentalStore()
    processor, _ = _processor(store)

    first = processor.drain(NOW)
    second = processor.drain(NOW + timedelta(seconds=120))
    forced = processor.drain(NOW + timedelta(seconds=150), respect_throttle=False)
    later = processor.drain(NOW + timedelta(seconds=301))

    assert first.throttled is False
    assert second.throttled is True
    assert forced.throttled is False
    assert later.throttled is False
    assert [entry.type for entry in store.list_notifications("system")] == [
        "scheduled_reminder_check",
        "scheduled_reminder_check",
    ]
