from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Literal
from zoneinfo import ZoneInfo

from .store import NotificationEntry, RentalStore

Window = Literal["today", "this_month"]


def local_today(now: datetime, zone: ZoneInfo) -> date:
    return now.astimezone(zone).date()


def window_start(window: Window, now: datetime, zone: ZoneInfo) -> datetime:
    """UTC instant at which ``window`` began, measured in local time."""
    today = local_today(now, zone)
    if window == "this_month":
        today = today.replace(day=1)
    elif window != "today":
        raise ValueError(f"unsupported window: {window}")
    return datetime.combine(today, time.min, tzinfo=zone).astimezone(timezone.utc)


class IdempotencyGuard:
    """Answers "already sent?" from the notification log.

    Check and write are separate calls, so two runs racing each other can
    both see "not sent" and both send.
    """

    def __init__(self, store: RentalStore, *, zone: ZoneInfo | str) -> None:
        self._store = store
        self.zone = zone if isinstance(zone, ZoneInfo) else ZoneInfo(zone)

    def has_been_sent(
        self,
        recipient: str,
        type: str,
        *,
        now: datetime,
        window: Window = "today",
        reference_id: str | None = None,
    ) -> bool:
        entry = self._store.find_notification(
            recipient=recipient,
            type=type,
            since=window_start(window, now, self.zone),
            reference_id=reference_id,
        )
        return entry is not None

    def mark_sent(
        self,
        recipient: str,
        type: str,
        message: str,
        *,
        now: datetime,
        reference_id: str | None = None,
        link: str | None = None,
        actor: str | None = None,
    ) -> NotificationEntry:
        return self._store.insert_notification(
            recipient=recipient,
            type=type,
            message=message,
            created_at=now,
            actor=actor,
            link=link,
            reference_id=reference_id,
        )

    def today(self, now: datetime) -> date:
        return local_today(now, self.zone)
