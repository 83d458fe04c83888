from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from . import templates
from .config import Settings
from .dispatcher import MultiChannelDispatcher, resolve_delivery_target
from .store import RentalStore, ScheduledReminder

logger = logging.getLogger(__name__)

UNREAD_MESSAGE = "unread_message"
BOOKING_REMINDER = "booking_reminder"
SCHEDULED_REMINDER_TYPES = frozenset({UNREAD_MESSAGE, BOOKING_REMINDER})
ACTIVE_BOOKING_STATUSES = frozenset({"pending", "approved", "accepted"})
THROTTLE_SENTINEL = "scheduled_reminder_check"


@dataclass
class QueueDrainReport:
    processed: int = 0
    messages: int = 0
    bookings: int = 0
    suppressed: int = 0
    errors: int = 0
    throttled: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def schedule_unread_message_reminder(
    store: RentalStore,
    message_id: str,
    created_at: datetime,
    *,
    delay_hours: int = 6,
) -> ScheduledReminder:
    return store.enqueue_scheduled_reminder(
        type=UNREAD_MESSAGE,
        target_id=message_id,
        send_at=created_at + timedelta(hours=delay_hours),
    )


def schedule_booking_reminder(
    store: RentalStore,
    booking_id: str,
    booking_date: datetime,
    *,
    lead_hours: int = 12,
    now: datetime | None = None,
) -> ScheduledReminder:
    current = now or datetime.now(timezone.utc)
    send_at = max(booking_date - timedelta(hours=lead_hours), current)
    return store.enqueue_scheduled_reminder(type=BOOKING_REMINDER, target_id=booking_id, send_at=send_at)


class QueueDrainProcessor:
    """Delivers due one-shot reminders from the scheduled queue.

    Every item is marked sent once handled, whether it was delivered or its
    condition no longer holds, so nothing is retried forever.
    """

    def __init__(self, *, store: RentalStore, dispatcher: MultiChannelDispatcher, settings: Settings) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._settings = settings

    def drain(self, now: datetime | None = None, *, respect_throttle: bool = True) -> QueueDrainReport:
        run_at = now or datetime.now(timezone.utc)
        report = QueueDrainReport()
        if respect_throttle and self._throttled(run_at):
            report.throttled = True
            logger.info("queue drain throttled")
            return report

        items = self._store.list_due_scheduled_reminders(run_at, limit=self._settings.queue_drain_batch_size)
        for item in items:
            try:
                self._process(item, run_at, report)
            except Exception:
                logger.exception("scheduled reminder %s failed", item.id)
                report.errors += 1
        logger.info("queue drain finished: %s", report.as_dict())
        return report

    def _throttled(self, now: datetime) -> bool:
        actor = self._settings.system_actor_id
        since = now - timedelta(seconds=self._settings.queue_drain_min_interval_seconds)
        if self._store.find_notification(recipient=actor, type=THROTTLE_SENTINEL, since=since) is not None:
            return True
        self._store.insert_notification(
            recipient=actor,
            type=THROTTLE_SENTINEL,
            message="Scheduled reminder check",
            created_at=now,
            actor=actor,
        )
        return False

    def _suppress(self, item: ScheduledReminder, report: QueueDrainReport, reason: str) -> None:
        if self._store.mark_scheduled_reminder_sent(item.id):
            report.suppressed += 1
            logger.info("suppressed scheduled reminder %s: %s", item.id, reason)

    def _process(self, item: ScheduledReminder, now: datetime, report: QueueDrainReport) -> None:
        if item.type == UNREAD_MESSAGE:
            self._process_message(item, now, report)
        elif item.type == BOOKING_REMINDER:
            self._process_booking(item, now, report)
        else:
            self._suppress(item, report, f"unknown type {item.type}")

    def _process_message(self, item: ScheduledReminder, now: datetime, report: QueueDrainReport) -> None:
        message = self._store.get_message(item.target_id)
        if message is None or message.read or message.reminder_sent:
            self._suppress(item, report, "message read or already reminded")
            return
        sender = self._store.get_profile(message.sender_id)
        payload = templates.unread_messages_reminder(
            1,
            self._settings,
            sender_name=(sender.display_name or None) if sender is not None else None,
        )
        target = resolve_delivery_target(message.receiver_id, self._store.get_profile(message.receiver_id))
        result = self._dispatcher.dispatch(target, payload, now=now)
        if not self._store.mark_scheduled_reminder_sent(item.id):
            return
        if result.any_ok:
            self._store.mark_messages_reminded([message.id])
        report.processed += 1
        report.messages += 1

    def _process_booking(self, item: ScheduledReminder, now: datetime, report: QueueDrainReport) -> None:
        booking = self._store.get_booking(item.target_id)
        if booking is None or booking.status not in ACTIVE_BOOKING_STATUSES or booking.reminder_sent:
            self._suppress(item, report, "booking inactive or already reminded")
            return
        target = resolve_delivery_target(booking.tenant_id, self._store.get_profile(booking.tenant_id))
        result = self._dispatcher.dispatch(target, templates.booking_reminder(booking, self._settings), now=now)
        if not self._store.mark_scheduled_reminder_sent(item.id):
            return
        if result.any_ok:
            self._store.mark_booking_reminded(booking.id)
        report.processed += 1
        report.bookings += 1
