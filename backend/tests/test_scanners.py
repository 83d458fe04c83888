from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from rent_reminders.config import Settings
from rent_reminders.dispatcher import DeliveryTarget, DispatchResult, MultiChannelDispatcher, ReminderPayload
from rent_reminders.idempotency import IdempotencyGuard
from rent_reminders.notifier import StubEmailSender, StubSmsSender
from rent_reminders.scanners import (
    BookingReminderScanner,
    ContractExpiryScanner,
    ElectricityBillScanner,
    LateFeeScanner,
    ObligationScanner,
    RentBillScanner,
    UnreadMessageScanner,
    WifiBillScanner,
)
from rent_reminders.store import (
    Booking,
    InMemoryRentalStore,
    Message,
    Occupancy,
    PaymentRequest,
    Profile,
    StoreError,
)

MANILA = ZoneInfo("Asia/Manila")
NOW = datetime(2026, 3, 12, 8, 0, tzinfo=MANILA)


class _Harness:
    def __init__(self, store: InMemoryRentalStore | None = None) -> None:
        self.settings = Settings()
        self.store = store or InMemoryRentalStore()
        self.email = StubEmailSender()
        self.sms = StubSmsSender()
        self.dispatcher = MultiChannelDispatcher(email_sender=self.email, sms_sender=self.sms, store=self.store)
        self.guard = IdempotencyGuard(self.store, zone=self.settings.reminder_timezone)

    def scanner(self, kind: type[ObligationScanner], dispatcher=None) -> ObligationScanner:
        return kind(
            store=self.store,
            dispatcher=dispatcher or self.dispatcher,
            guard=self.guard,
            settings=self.settings,
        )


class _FixedDispatcher:
    def __init__(self, result: DispatchResult) -> None:
        self.result = result
        self.calls: list[tuple[DeliveryTarget, ReminderPayload]] = []

    def dispatch(self, target, payload, *, now=None, channels=None) -> DispatchResult:
        self.calls.append((target, payload))
        return self.result


def _tenant(store: InMemoryRentalStore, tenant_id: str = "tenant-1") -> Profile:
    return store.add_profile(
        Profile(
            id=tenant_id,
            first_name="Maria",
            last_name="Santos",
            email=f"{tenant_id}@example.com",
            phone="09171234567",
            phone_verified=True,
        )
    )


def _occupancy(store: InMemoryRentalStore, **overrides) -> Occupancy:
    values = {
        "id": "occ-1",
        "tenant_id": "tenant-1",
        "landlord_id": "landlord-1",
        "property_id": "prop-1",
        "property_title": "Sunrise Apartment 3B",
        "start_date": date(2026, 1, 15),
        "rent_amount": Decimal("12000"),
        "late_payment_fee": Decimal("500"),
    }
    values.update(overrides)
    return store.add_occupancy(Occupancy(**values))


def test_rent_scanner_twice_in_one_day_sends_once_and_creates_one_bill() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    scanner = harness.scanner(RentBillScanner)

    first = scanner.scan(NOW)
    second = scanner.scan(NOW + timedelta(minutes=20))

    assert (first.sent, first.bills_created, first.errors) == (1, 1, 0)
    assert (second.sent, second.bills_created, second.errors) == (0, 0, 0)
    assert len(harness.email.outbox) == 1
    assert len(harness.sms.outbox) == 1
    entries = harness.store.list_notifications("tenant-1")
    assert [entry.type for entry in entries] == ["rent_bill_reminder"]
    assert entries[0].reference_id == "occ-1"
    assert entries[0].link == "/payments"

    bills = harness.store.list_payment_requests("occ-1")
    assert len(bills) == 1
    assert bills[0].due_date == date(2026, 3, 15)
    assert bills[0].status == "pending"
    assert bills[0].rent_amount == Decimal("12000")
    assert bills[0].bills_description == "Monthly Rent for March 2026"
    assert "late payment fee" in harness.sms.outbox[0].body


def test_rent_scanner_does_not_duplicate_pending_bill_in_target_month() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    harness.store.add_payment_request(
        PaymentRequest(
            id="pr-existing",
            occupancy_id="occ-1",
            tenant_id="tenant-1",
            landlord_id="landlord-1",
            property_id="prop-1",
            due_date=date(2026, 3, 15),
            status="pending_confirmation",
            rent_amount=Decimal("12000"),
        )
    )

    outcome = harness.scanner(RentBillScanner).scan(NOW)

    assert outcome.sent == 1
    assert outcome.bills_created == 0
    assert [bill.id for bill in harness.store.list_payment_requests("occ-1")] == ["pr-existing"]


def test_rent_scanner_reminds_without_creating_bill_inside_window() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)

    outcome = harness.scanner(RentBillScanner).scan(datetime(2026, 3, 14, 8, 0, tzinfo=MANILA))

    assert outcome.sent == 1
    assert outcome.bills_created == 0


def test_rent_scanner_ignores_due_dates_outside_window() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)

    outcome = harness.scanner(RentBillScanner).scan(datetime(2026, 3, 10, 8, 0, tzinfo=MANILA))

    assert outcome.sent == 0
    assert harness.store.list_notifications() == []


def test_rent_scanner_respects_advance_payment() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    harness.store.add_payment_request(
        PaymentRequest(
            id="pr-paid",
            occupancy_id="occ-1",
            tenant_id="tenant-1",
            landlord_id="landlord-1",
            property_id="prop-1",
            due_date=date(2026, 2, 15),
            status="paid",
            rent_amount=Decimal("12000"),
            advance_amount=Decimal("12000"),
        )
    )

    outcome = harness.scanner(RentBillScanner).scan(NOW)

    assert outcome.sent == 0
    assert outcome.bills_created == 0


def test_one_channel_success_marks_guard_when_in_app_failed() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    dispatcher = _FixedDispatcher(DispatchResult(email_ok=True, sms_ok=False, in_app_ok=False))
    scanner = harness.scanner(RentBillScanner, dispatcher=dispatcher)

    first = scanner.scan(NOW)
    second = scanner.scan(NOW)

    assert first.sent == 1
    assert second.sent == 0
    assert len(dispatcher.calls) == 1
    assert len(harness.store.list_notifications("tenant-1")) == 1


def test_all_channels_failing_leaves_obligation_unmarked() -> None:
    harness = _Harness()
    _tenant(harness.store)
    harness.store.add_booking(
        Booking(
            id="bk-1",
            tenant_id="tenant-1",
            property_title="Sunrise Apartment 3B",
            booking_date=NOW + timedelta(hours=5),
        )
    )
    dispatcher = _FixedDispatcher(DispatchResult(email_ok=False, sms_ok=False, in_app_ok=False))
    scanner = harness.scanner(BookingReminderScanner, dispatcher=dispatcher)

    first = scanner.scan(NOW)
    second = scanner.scan(NOW)

    assert first.sent == 0
    assert second.sent == 0
    assert len(dispatcher.calls) == 2
    assert harness.store.list_notifications() == []
    booking = harness.store.get_booking("bk-1")
    assert booking is not None and booking.reminder_sent is False


def test_booking_scanner_reminds_within_lead_window_and_flips_flag() -> None:
    harness = _Harness()
    _tenant(harness.store)
    harness.store.add_booking(
        Booking(id="bk-soon", tenant_id="tenant-1", property_title="Unit A", booking_date=NOW + timedelta(hours=6))
    )
    harness.store.add_booking(
        Booking(id="bk-later", tenant_id="tenant-1", property_title="Unit B", booking_date=NOW + timedelta(hours=20))
    )
    harness.store.add_booking(
        Booking(
            id="bk-pending",
            tenant_id="tenant-1",
            property_title="Unit C",
            booking_date=NOW + timedelta(hours=3),
            status="pending",
        )
    )

    outcome = harness.scanner(BookingReminderScanner).scan(NOW)

    assert outcome.sent == 1
    assert harness.store.get_booking("bk-soon").reminder_sent is True  # type: ignore[union-attr]
    assert harness.store.get_booking("bk-later").reminder_sent is False  # type: ignore[union-attr]
    entries = harness.store.list_notifications("tenant-1")
    assert [(entry.type, entry.reference_id) for entry in entries] == [("booking_reminder", "bk-soon")]
    assert "Unit A" in harness.email.outbox[0].subject


def test_unread_scanner_groups_messages_per_receiver() -> None:
    harness = _Harness()
    _tenant(harness.store)
    harness.store.add_profile(Profile(id="landlord-1", first_name="Jose", last_name="Reyes"))
    for index in range(2):
        harness.store.add_message(
            Message(
                id=f"msg-{index}",
                sender_id="landlord-1",
                receiver_id="tenant-1",
                created_at=NOW - timedelta(hours=7 + index),
            )
        )
    harness.store.add_message(
        Message(id="msg-fresh", sender_id="landlord-1", receiver_id="tenant-1", created_at=NOW - timedelta(hours=2))
    )

    outcome = harness.scanner(UnreadMessageScanner).scan(NOW)

    assert outcome.sent == 2
    assert len(harness.email.outbox) == 1
    assert "2 unread message(s)" in harness.email.outbox[0].subject
    assert harness.store.get_message("msg-0").reminder_sent is True  # type: ignore[union-attr]
    assert harness.store.get_message("msg-1").reminder_sent is True  # type: ignore[union-attr]
    assert harness.store.get_message("msg-fresh").reminder_sent is False  # type: ignore[union-attr]


def test_wifi_scanner_uses_wifi_due_day() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store, wifi_due_day=14)
    _occupancy(harness.store, id="occ-2", tenant_id="tenant-2", wifi_due_day=25)

    outcome = harness.scanner(WifiBillScanner).scan(NOW)

    assert outcome.sent == 1
    assert [entry.recipient for entry in harness.store.list_notifications()] == ["tenant-1"]


def test_electricity_scanner_runs_only_early_in_month() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    scanner = harness.scanner(ElectricityBillScanner)

    early = scanner.scan(datetime(2026, 3, 2, 8, 0, tzinfo=MANILA))
    late = scanner.scan(datetime(2026, 3, 5, 8, 0, tzinfo=MANILA))

    assert early.sent == 1
    assert late.sent == 0


def test_contract_expiry_reminds_once_per_month() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store, contract_end_date=date(2026, 4, 1))
    _occupancy(harness.store, id="occ-2", tenant_id="tenant-2", contract_end_date=date(2026, 6, 30))
    scanner = harness.scanner(ContractExpiryScanner)

    first = scanner.scan(NOW)
    next_day = scanner.scan(NOW + timedelta(days=1))
    month_end = scanner.scan(datetime(2026, 3, 31, 8, 0, tzinfo=MANILA))

    assert first.sent == 1
    assert next_day.sent == 0
    assert month_end.sent == 0
    assert [entry.type for entry in harness.store.list_notifications("tenant-1")] == ["contract_expiry_reminder"]


def _overdue_bill(store: InMemoryRentalStore, **overrides) -> PaymentRequest:
    values = {
        "id": "pr-overdue",
        "occupancy_id": "occ-1",
        "tenant_id": "tenant-1",
        "landlord_id": "landlord-1",
        "property_id": "prop-1",
        "due_date": date(2026, 3, 1),
        "status": "pending",
        "rent_amount": Decimal("12000"),
        "bills_description": "Monthly Rent for March 2026",
    }
    values.update(overrides)
    return store.add_payment_request(PaymentRequest(**values))


def test_late_fee_applied_exactly_once() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store)
    _overdue_bill(harness.store)
    scanner = harness.scanner(LateFeeScanner)

    first = scanner.scan(NOW)
    second = scanner.scan(NOW + timedelta(days=1))

    assert first.sent == 1
    assert second.sent == 0
    bill = harness.store.get_payment_request("pr-overdue")
    assert bill is not None
    assert bill.late_fee_applied is True
    assert bill.late_fee_amount == Decimal("500")
    assert bill.other_bills == Decimal("500")
    assert bill.total_amount == Decimal("12500")
    assert bill.bills_description.count("[Late fee") == 1
    assert [entry.type for entry in harness.store.list_notifications("tenant-1")] == ["late_fee_applied"]


def test_late_fee_skips_paid_bills_and_occupancies_without_fee() -> None:
    harness = _Harness()
    _tenant(harness.store)
    _occupancy(harness.store, late_payment_fee=Decimal("0"))
    _occupancy(harness.store, id="occ-2", tenant_id="tenant-2")
    _overdue_bill(harness.store)
    _overdue_bill(harness.store, id="pr-paid", occupancy_id="occ-2", tenant_id="tenant-2", status="paid")
    _overdue_bill(harness.store, id="pr-future", occupancy_id="occ-2", tenant_id="tenant-2", due_date=date(2026, 3, 20))

    outcome = harness.scanner(LateFeeScanner).scan(NOW)

    assert outcome.sent == 0
    assert all(not bill.late_fee_applied for bill in harness.store.list_payment_requests())


class _ProfileExplodingStore(InMemoryRentalStore):
    def get_profile(self, user_id: str):
        if user_id == "tenant-bad":
            raise RuntimeError("corrupt profile row")
        return super().get_profile(user_id)


def test_one_candidate_failure_does_not_stop_the_others() -> None:
    harness = _Harness(_ProfileExplodingStore())
    _tenant(harness.store)
    _occupancy(harness.store, id="occ-0", tenant_id="tenant-bad")
    _occupancy(harness.store)

    outcome = harness.scanner(RentBillScanner).scan(NOW)

    assert outcome.errors == 1
    assert outcome.sent == 1
    assert [entry.recipient for entry in harness.store.list_notifications()] == ["tenant-1"]


class _BrokenOccupancyStore(InMemoryRentalStore):
    def list_active_occupancies(self):
        raise StoreError("tenant_occupancies query failed")


def test_candidate_query_failure_aborts_only_that_scanner() -> None:
    harness = _Harness(_BrokenOccupancyStore())

    outcome = harness.scanner(RentBillScanner).scan(NOW)

    assert outcome.aborted is True
    assert outcome.errors == 1
    assert outcome.sent == 0
