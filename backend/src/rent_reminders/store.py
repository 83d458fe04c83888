from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import count
from threading import Lock
from typing import Iterable, Protocol

OPEN_BILL_STATUSES = frozenset({"pending", "pending_confirmation"})
PAID_BILL_STATUSES = frozenset({"paid", "confirmed", "completed"})
ZERO = Decimal("0")


class StoreError(RuntimeError):
    """Raised when a store query or mutation fails."""


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached at all."""


class RecordNotFoundError(KeyError):
    """Raised when an operation references a row that does not exist."""


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Profile:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    phone_verified: bool = False
    email_opt_in: bool = True
    sms_opt_in: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Occupancy:
    id: str
    tenant_id: str
    landlord_id: str
    property_id: str
    property_title: str
    start_date: date
    rent_amount: Decimal
    status: str = "active"
    contract_end_date: date | None = None
    wifi_due_day: int | None = None
    late_payment_fee: Decimal = ZERO


@dataclass(frozen=True)
class PaymentRequest:
    id: str
    occupancy_id: str
    tenant_id: str
    landlord_id: str
    property_id: str
    due_date: date
    status: str = "pending"
    rent_amount: Decimal = ZERO
    water_bill: Decimal = ZERO
    electrical_bill: Decimal = ZERO
    wifi_bill: Decimal = ZERO
    other_bills: Decimal = ZERO
    security_deposit_amount: Decimal = ZERO
    advance_amount: Decimal = ZERO
    bills_description: str = ""
    late_fee_applied: bool = False
    late_fee_amount: Decimal = ZERO
    created_at: datetime | None = None

    @property
    def total_amount(self) -> Decimal:
        return (
            self.rent_amount
            + self.water_bill
            + self.electrical_bill
            + self.wifi_bill
            + self.other_bills
            + self.security_deposit_amount
            + self.advance_amount
        )


@dataclass(frozen=True)
class Booking:
    id: str
    tenant_id: str
    property_title: str
    booking_date: datetime
    status: str = "approved"
    reminder_sent: bool = False


@dataclass(frozen=True)
class Message:
    id: str
    sender_id: str
    receiver_id: str
    created_at: datetime
    read: bool = False
    reminder_sent: bool = False


@dataclass(frozen=True)
class NotificationEntry:
    id: str
    recipient: str
    type: str
    message: str
    created_at: datetime
    actor: str | None = None
    link: str | None = None
    reference_id: str | None = None
    is_read: bool = False


@dataclass(frozen=True)
class ScheduledReminder:
    id: str
    type: str
    target_id: str
    send_at: datetime
    sent: bool = False
    created_at: datetime | None = None


class RentalStore(Protocol):
    def ping(self) -> None: ...

    def reset(self) -> None: ...

    def get_profile(self, user_id: str) -> Profile | None: ...

    def list_active_occupancies(self) -> list[Occupancy]: ...

    def get_occupancy(self, occupancy_id: str) -> Occupancy | None: ...

    def latest_paid_rent_bill(self, occupancy_id: str) -> PaymentRequest | None: ...

    def find_open_rent_bill(self, occupancy_id: str, start: date, end: date) -> PaymentRequest | None: ...

    def create_payment_request(
        self,
        *,
        occupancy: Occupancy,
        rent_amount: Decimal,
        bills_description: str,
        due_date: date,
    ) -> PaymentRequest: ...

    def list_overdue_rent_bills(self, before: date) -> list[PaymentRequest]: ...

    def apply_late_fee(self, bill_id: str, *, amount: Decimal, marker: str) -> bool: ...

    def get_payment_request(self, bill_id: str) -> PaymentRequest | None: ...

    def list_upcoming_bookings(self, start: datetime, end: datetime) -> list[Booking]: ...

    def get_booking(self, booking_id: str) -> Booking | None: ...

    def mark_booking_reminded(self, booking_id: str) -> None: ...

    def list_unread_messages(self, created_before: datetime) -> list[Message]: ...

    def get_message(self, message_id: str) -> Message | None: ...

    def mark_messages_reminded(self, message_ids: Iterable[str]) -> None: ...

    def find_notification(
        self,
        *,
        recipient: str,
        type: str,
        since: datetime,
        reference_id: str | None = None,
    ) -> NotificationEntry | None: ...

    def insert_notification(
        self,
        *,
        recipient: str,
        type: str,
        message: str,
        created_at: datetime,
        actor: str | None = None,
        link: str | None = None,
        reference_id: str | None = None,
    ) -> NotificationEntry: ...

    def list_notifications(self, recipient: str | None = None) -> list[NotificationEntry]: ...

    def enqueue_scheduled_reminder(self, *, type: str, target_id: str, send_at: datetime) -> ScheduledReminder: ...

    def list_due_scheduled_reminders(self, now: datetime, *, limit: int) -> list[ScheduledReminder]: ...

    def mark_scheduled_reminder_sent(self, reminder_id: str) -> bool: ...

    def get_setting(self, key: str, default: bool) -> bool: ...

    def set_setting(self, key: str, value: bool) -> None: ...


class InMemoryRentalStore:
    """Lock-guarded in-memory store used for local runs and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._bill_counter = count(1)
        self._notification_counter = count(1)
        self._reminder_counter = count(1)
        self._profiles: dict[str, Profile] = {}
        self._occupancies: dict[str, Occupancy] = {}
        self._bills: dict[str, PaymentRequest] = {}
        self._bookings: dict[str, Booking] = {}
        self._messages: dict[str, Message] = {}
        self._notifications: list[NotificationEntry] = []
        self._scheduled: dict[str, ScheduledReminder] = {}
        self._settings: dict[str, bool] = {}

    def ping(self) -> None:
        return None

    def reset(self) -> None:
        with self._lock:
            self._bill_counter = count(1)
            self._notification_counter = count(1)
            self._reminder_counter = count(1)
            self._profiles.clear()
            self._occupancies.clear()
            self._bills.clear()
            self._bookings.clear()
            self._messages.clear()
            self._notifications.clear()
            self._scheduled.clear()
            self._settings.clear()

    # Seeding helpers used by scripts and tests.

    def add_profile(self, profile: Profile) -> Profile:
        with self._lock:
            self._profiles[profile.id] = profile
            return profile

    def add_occupancy(self, occupancy: Occupancy) -> Occupancy:
        with self._lock:
            self._occupancies[occupancy.id] = occupancy
            return occupancy

    def add_payment_request(self, bill: PaymentRequest) -> PaymentRequest:
        with self._lock:
            self._bills[bill.id] = bill
            return bill

    def add_booking(self, booking: Booking) -> Booking:
        with self._lock:
            self._bookings[booking.id] = booking
            return booking

    def add_message(self, message: Message) -> Message:
        with self._lock:
            self._messages[message.id] = message
            return message

    def mark_message_read(self, message_id: str) -> None:
        with self._lock:
            row = self._messages.get(message_id)
            if row is None:
                raise RecordNotFoundError(message_id)
            self._messages[message_id] = Message(**{**row.__dict__, "read": True})

    def list_payment_requests(self, occupancy_id: str | None = None) -> list[PaymentRequest]:
        with self._lock:
            rows = [
                value
                for value in self._bills.values()
                if occupancy_id is None or value.occupancy_id == occupancy_id
            ]
            return sorted(rows, key=lambda value: (value.due_date, value.id))

    def list_scheduled_reminders(self) -> list[ScheduledReminder]:
        with self._lock:
            return sorted(self._scheduled.values(), key=lambda value: value.id)

    # RentalStore operations.

    def get_profile(self, user_id: str) -> Profile | None:
        with self._lock:
            return self._profiles.get(user_id)

    def list_active_occupancies(self) -> list[Occupancy]:
        with self._lock:
            rows = [value for value in self._occupancies.values() if value.status == "active"]
            return sorted(rows, key=lambda value: value.id)

    def get_occupancy(self, occupancy_id: str) -> Occupancy | None:
        with self._lock:
            return self._occupancies.get(occupancy_id)

    def latest_paid_rent_bill(self, occupancy_id: str) -> PaymentRequest | None:
        with self._lock:
            paid = [
                value
                for value in self._bills.values()
                if value.occupancy_id == occupancy_id
                and value.status in PAID_BILL_STATUSES
                and value.rent_amount > 0
            ]
            if not paid:
                return None
            return max(paid, key=lambda value: value.due_date)

    def find_open_rent_bill(self, occupancy_id: str, start: date, end: date) -> PaymentRequest | None:
        with self._lock:
            for value in self._bills.values():
                if value.occupancy_id != occupancy_id:
                    continue
                if value.status not in OPEN_BILL_STATUSES or value.rent_amount <= 0:
                    continue
                if start <= value.due_date <= end:
                    return value
            return None

    def create_payment_request(
        self,
        *,
        occupancy: Occupancy,
        rent_amount: Decimal,
        bills_description: str,
        due_date: date,
    ) -> PaymentRequest:
        with self._lock:
            bill = PaymentRequest(
                id=f"pr_{next(self._bill_counter):06d}",
                occupancy_id=occupancy.id,
                tenant_id=occupancy.tenant_id,
                landlord_id=occupancy.landlord_id,
                property_id=occupancy.property_id,
                due_date=due_date,
                status="pending",
                rent_amount=rent_amount,
                bills_description=bills_description,
                created_at=_now_utc(),
            )
            self._bills[bill.id] = bill
            return bill

    def list_overdue_rent_bills(self, before: date) -> list[PaymentRequest]:
        with self._lock:
            rows = [
                value
                for value in self._bills.values()
                if value.status == "pending"
                and value.due_date < before
                and value.rent_amount > 0
                and not value.late_fee_applied
            ]
            return sorted(rows, key=lambda value: (value.due_date, value.id))

    def apply_late_fee(self, bill_id: str, *, amount: Decimal, marker: str) -> bool:
        with self._lock:
            row = self._bills.get(bill_id)
            if row is None:
                raise RecordNotFoundError(bill_id)
            if row.late_fee_applied or row.status != "pending":
                return False
            description = f"{row.bills_description} {marker}".strip()
            self._bills[bill_id] = PaymentRequest(
                **{
                    **row.__dict__,
                    "other_bills": row.other_bills + amount,
                    "late_fee_applied": True,
                    "late_fee_amount": amount,
                    "bills_description": description,
                }
            )
            return True

    def get_payment_request(self, bill_id: str) -> PaymentRequest | None:
        with self._lock:
            return self._bills.get(bill_id)

    def list_upcoming_bookings(self, start: datetime, end: datetime) -> list[Booking]:
        lower = _coerce_utc(start)
        upper = _coerce_utc(end)
        with self._lock:
            rows = [
                value
                for value in self._bookings.values()
                if value.status == "approved"
                and not value.reminder_sent
                and lower < _coerce_utc(value.booking_date) <= upper
            ]
            return sorted(rows, key=lambda value: (value.booking_date, value.id))

    def get_booking(self, booking_id: str) -> Booking | None:
        with self._lock:
            return self._bookings.get(booking_id)

    def mark_booking_reminded(self, booking_id: str) -> None:
        with self._lock:
            row = self._bookings.get(booking_id)
            if row is None:
                raise RecordNotFoundError(booking_id)
            self._bookings[booking_id] = Booking(**{**row.__dict__, "reminder_sent": True})

    def list_unread_messages(self, created_before: datetime) -> list[Message]:
        cutoff = _coerce_utc(created_before)
        with self._lock:
            rows = [
                value
                for value in self._messages.values()
                if not value.read and not value.reminder_sent and _coerce_utc(value.created_at) <= cutoff
            ]
            return sorted(rows, key=lambda value: (value.created_at, value.id))

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            return self._messages.get(message_id)

    def mark_messages_reminded(self, message_ids: Iterable[str]) -> None:
        with self._lock:
            for message_id in message_ids:
                row = self._messages.get(message_id)
                if row is None:
                    continue
                self._messages[message_id] = Message(**{**row.__dict__, "reminder_sent": True})

    def find_notification(
        self,
        *,
        recipient: str,
        type: str,
        since: datetime,
        reference_id: str | None = None,
    ) -> NotificationEntry | None:
        lower = _coerce_utc(since)
        with self._lock:
            for entry in reversed(self._notifications):
                if entry.recipient != recipient or entry.type != type:
                    continue
                if reference_id is not None and entry.reference_id != reference_id:
                    continue
                if entry.created_at >= lower:
                    return entry
            return None

    def insert_notification(
        self,
        *,
        recipient: str,
        type: str,
        message: str,
        created_at: datetime,
        actor: str | None = None,
        link: str | None = None,
        reference_id: str | None = None,
    ) -> NotificationEntry:
        with self._lock:
            entry = NotificationEntry(
                id=f"ntf_{next(self._notification_counter):06d}",
                recipient=recipient,
                type=type,
                message=message,
                created_at=_coerce_utc(created_at),
                actor=actor,
                link=link,
                reference_id=reference_id,
            )
            self._notifications.append(entry)
            return entry

    def list_notifications(self, recipient: str | None = None) -> list[NotificationEntry]:
        with self._lock:
            return [
                entry
                for entry in self._notifications
                if recipient is None or entry.recipient == recipient
            ]

    def enqueue_scheduled_reminder(self, *, type: str, target_id: str, send_at: datetime) -> ScheduledReminder:
        with self._lock:
            item = ScheduledReminder(
                id=f"srm_{next(self._reminder_counter):06d}",
                type=type,
                target_id=target_id,
                send_at=_coerce_utc(send_at),
                sent=False,
                created_at=_now_utc(),
            )
            self._scheduled[item.id] = item
            return item

    def list_due_scheduled_reminders(self, now: datetime, *, limit: int) -> list[ScheduledReminder]:
        cutoff = _coerce_utc(now)
        with self._lock:
            rows = [value for value in self._scheduled.values() if not value.sent and value.send_at <= cutoff]
            rows.sort(key=lambda value: (value.send_at, value.id))
            return rows[:limit]

    def mark_scheduled_reminder_sent(self, reminder_id: str) -> bool:
        with self._lock:
            row = self._scheduled.get(reminder_id)
            if row is None:
                raise RecordNotFoundError(reminder_id)
            if row.sent:
                return False
            self._scheduled[reminder_id] = ScheduledReminder(**{**row.__dict__, "sent": True})
            return True

    def get_setting(self, key: str, default: bool) -> bool:
        with self._lock:
            return self._settings.get(key, default)

    def set_setting(self, key: str, value: bool) -> None:
        with self._lock:
            self._settings[key] = value
