from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from . import templates
from .config import Settings
from .dispatcher import DispatchResult, MultiChannelDispatcher, ReminderPayload, resolve_delivery_target
from .due_dates import PaidRentBill, current_due_date, days_until_due, month_bounds, next_rent_due_date
from .idempotency import IdempotencyGuard, Window
from .store import Booking, Message, Occupancy, PaymentRequest, RentalStore, StoreError

logger = logging.getLogger(__name__)

BILL_REMINDER_WINDOW = (1, 3)
RENT_BILL_CREATION_DAY = 3


@dataclass
class ScanOutcome:
    scanner: str
    sent: int = 0
    bills_created: int = 0
    errors: int = 0
    aborted: bool = False


class ObligationScanner:
    """Shared candidate loop for one kind of reminder.

    Subclasses provide the structural store query and the per-candidate
    decision. A failing candidate is logged and counted without stopping the
    rest; a failing candidate query ends only this scanner.
    """

    name = "obligation"
    notification_type = ""
    window: Window = "today"
    gated = False

    def __init__(
        self,
        *,
        store: RentalStore,
        dispatcher: MultiChannelDispatcher,
        guard: IdempotencyGuard,
        settings: Settings,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.guard = guard
        self.settings = settings

    def fetch_candidates(self, now: datetime) -> Iterable[Any]:
        raise NotImplementedError

    def process(self, candidate: Any, now: datetime, outcome: ScanOutcome) -> None:
        raise NotImplementedError

    def scan(self, now: datetime) -> ScanOutcome:
        outcome = ScanOutcome(scanner=self.name)
        try:
            candidates = list(self.fetch_candidates(now))
        except StoreError:
            logger.exception("%s scanner aborted: candidate query failed", self.name)
            outcome.errors += 1
            outcome.aborted = True
            return outcome

        for candidate in candidates:
            try:
                self.process(candidate, now, outcome)
            except Exception:
                logger.exception("%s scanner failed for candidate %s", self.name, _candidate_id(candidate))
                outcome.errors += 1
        logger.info(
            "%s scanner finished: candidates=%d sent=%d errors=%d",
            self.name,
            len(candidates),
            outcome.sent,
            outcome.errors,
        )
        return outcome

    def already_sent(self, recipient: str, now: datetime, reference_id: str | None = None) -> bool:
        return self.guard.has_been_sent(
            recipient,
            self.notification_type,
            now=now,
            window=self.window,
            reference_id=reference_id,
        )

    def deliver(self, recipient: str, payload: ReminderPayload, now: datetime) -> DispatchResult:
        target = resolve_delivery_target(recipient, self.store.get_profile(recipient))
        result = self.dispatcher.dispatch(target, payload, now=now)
        if result.any_ok and not result.in_app_ok:
            self.guard.mark_sent(
                recipient,
                payload.type,
                payload.in_app_message,
                now=now,
                reference_id=payload.reference_id,
                link=payload.link,
            )
        return result


def _candidate_id(candidate: Any) -> str:
    if isinstance(candidate, tuple):
        return str(candidate[0])
    return str(getattr(candidate, "id", candidate))


def _in_window(days: int, window: tuple[int, int]) -> bool:
    return window[0] <= days <= window[1]


class BookingReminderScanner(ObligationScanner):
    name = "bookings"
    notification_type = templates.BOOKING_REMINDER

    def fetch_candidates(self, now: datetime) -> Iterable[Booking]:
        lead = timedelta(hours=self.settings.booking_reminder_lead_hours)
        return self.store.list_upcoming_bookings(now, now + lead)

    def process(self, candidate: Booking, now: datetime, outcome: ScanOutcome) -> None:
        if self.already_sent(candidate.tenant_id, now, reference_id=candidate.id):
            return
        result = self.deliver(candidate.tenant_id, templates.booking_reminder(candidate, self.settings), now)
        if result.any_ok:
            self.store.mark_booking_reminded(candidate.id)
            outcome.sent += 1


class UnreadMessageScanner(ObligationScanner):
    name = "messages"
    notification_type = templates.UNREAD_MESSAGE_REMINDER

    def fetch_candidates(self, now: datetime) -> Iterable[tuple[str, list[Message]]]:
        cutoff = now - timedelta(hours=self.settings.unread_message_delay_hours)
        grouped: dict[str, list[Message]] = {}
        for message in self.store.list_unread_messages(cutoff):
            grouped.setdefault(message.receiver_id, []).append(message)
        return list(grouped.items())

    def process(self, candidate: tuple[str, list[Message]], now: datetime, outcome: ScanOutcome) -> None:
        receiver_id, messages = candidate
        if self.already_sent(receiver_id, now):
            return
        sender_name = None
        if len(messages) == 1:
            sender = self.store.get_profile(messages[0].sender_id)
            sender_name = sender.display_name if sender is not None and sender.display_name else None
        payload = templates.unread_messages_reminder(len(messages), self.settings, sender_name=sender_name)
        result = self.deliver(receiver_id, payload, now)
        if result.any_ok:
            self.store.mark_messages_reminded([message.id for message in messages])
            outcome.sent += len(messages)


class RentBillScanner(ObligationScanner):
    name = "rent"
    notification_type = templates.RENT_BILL_REMINDER
    gated = True

    def fetch_candidates(self, now: datetime) -> Iterable[Occupancy]:
        return [row for row in self.store.list_active_occupancies() if row.rent_amount > 0]

    def due_date_for(self, occupancy: Occupancy, today: date) -> date:
        last_paid = self.store.latest_paid_rent_bill(occupancy.id)
        history = None
        if last_paid is not None:
            history = PaidRentBill(
                due_date=last_paid.due_date,
                rent_amount=last_paid.rent_amount,
                advance_amount=last_paid.advance_amount,
            )
        return next_rent_due_date(
            occupancy.start_date,
            today,
            base_rent=occupancy.rent_amount,
            last_paid_bill=history,
        )

    def process(self, candidate: Occupancy, now: datetime, outcome: ScanOutcome) -> None:
        today = self.guard.today(now)
        due = self.due_date_for(candidate, today)
        days = days_until_due(due, today)
        if not _in_window(days, BILL_REMINDER_WINDOW):
            return
        if self.already_sent(candidate.tenant_id, now, reference_id=candidate.id):
            return
        if days == RENT_BILL_CREATION_DAY:
            start, end = month_bounds(due)
            if self.store.find_open_rent_bill(candidate.id, start, end) is None:
                bill = self.store.create_payment_request(
                    occupancy=candidate,
                    rent_amount=candidate.rent_amount,
                    bills_description=templates.rent_bill_description(due),
                    due_date=due,
                )
                outcome.bills_created += 1
                logger.info("created rent bill %s for occupancy %s due %s", bill.id, candidate.id, due)
        payload = templates.rent_bill_reminder(candidate, due, days, self.settings)
        if self.deliver(candidate.tenant_id, payload, now).any_ok:
            outcome.sent += 1


class WifiBillScanner(ObligationScanner):
    name = "wifi"
    notification_type = templates.WIFI_BILL_REMINDER
    gated = True

    def fetch_candidates(self, now: datetime) -> Iterable[Occupancy]:
        return [row for row in self.store.list_active_occupancies() if row.wifi_due_day]

    def process(self, candidate: Occupancy, now: datetime, outcome: ScanOutcome) -> None:
        today = self.guard.today(now)
        due = current_due_date(int(candidate.wifi_due_day or 0), today)
        days = days_until_due(due, today)
        if not _in_window(days, BILL_REMINDER_WINDOW):
            return
        if self.already_sent(candidate.tenant_id, now, reference_id=candidate.id):
            return
        payload = templates.wifi_bill_reminder(candidate, due, days, self.settings)
        if self.deliver(candidate.tenant_id, payload, now).any_ok:
            outcome.sent += 1


class ElectricityBillScanner(ObligationScanner):
    name = "electricity"
    notification_type = templates.ELECTRICITY_BILL_REMINDER
    gated = True

    def fetch_candidates(self, now: datetime) -> Iterable[Occupancy]:
        if not _in_window(self.guard.today(now).day, BILL_REMINDER_WINDOW):
            return []
        return self.store.list_active_occupancies()

    def process(self, candidate: Occupancy, now: datetime, outcome: ScanOutcome) -> None:
        if self.already_sent(candidate.tenant_id, now, reference_id=candidate.id):
            return
        payload = templates.electricity_bill_reminder(candidate, self.guard.today(now), self.settings)
        if self.deliver(candidate.tenant_id, payload, now).any_ok:
            outcome.sent += 1


class ContractExpiryScanner(ObligationScanner):
    name = "contracts"
    notification_type = templates.CONTRACT_EXPIRY_REMINDER
    window: Window = "this_month"

    def fetch_candidates(self, now: datetime) -> Iterable[Occupancy]:
        return [row for row in self.store.list_active_occupancies() if row.contract_end_date is not None]

    def process(self, candidate: Occupancy, now: datetime, outcome: ScanOutcome) -> None:
        end_date = candidate.contract_end_date
        if end_date is None:
            return
        days = days_until_due(end_date, self.guard.today(now))
        if not _in_window(days, (1, self.settings.contract_expiry_lead_days)):
            return
        if self.already_sent(candidate.tenant_id, now, reference_id=candidate.id):
            return
        payload = templates.contract_expiry_reminder(candidate, end_date, days, self.settings)
        if self.deliver(candidate.tenant_id, payload, now).any_ok:
            outcome.sent += 1


class LateFeeScanner(ObligationScanner):
    """Adds the occupancy's late payment fee to overdue rent bills, once.

    The ``late_fee_applied`` flag on the bill is the only apply-once signal;
    the notification that follows is informational.
    """

    name = "late_fees"
    notification_type = templates.LATE_FEE_APPLIED
    gated = True

    def fetch_candidates(self, now: datetime) -> Iterable[PaymentRequest]:
        cutoff = self.guard.today(now) - timedelta(days=self.settings.late_fee_grace_days)
        return self.store.list_overdue_rent_bills(cutoff)

    def process(self, candidate: PaymentRequest, now: datetime, outcome: ScanOutcome) -> None:
        occupancy = self.store.get_occupancy(candidate.occupancy_id)
        if occupancy is None or occupancy.late_payment_fee <= 0:
            return
        fee = occupancy.late_payment_fee
        marker = templates.late_fee_marker(fee, self.guard.today(now))
        if not self.store.apply_late_fee(candidate.id, amount=fee, marker=marker):
            return
        outcome.sent += 1
        logger.info("applied late fee %s to bill %s", fee, candidate.id)
        payload = templates.late_fee_applied(candidate, fee, occupancy.property_title, self.settings)
        self.deliver(candidate.tenant_id, payload, now)


def build_scanners(
    *,
    store: RentalStore,
    dispatcher: MultiChannelDispatcher,
    guard: IdempotencyGuard,
    settings: Settings,
) -> list[ObligationScanner]:
    """Scanners in run order; rent bills are created before late fees run."""
    kinds: tuple[type[ObligationScanner], ...] = (
        BookingReminderScanner,
        UnreadMessageScanner,
        RentBillScanner,
        WifiBillScanner,
        ElectricityBillScanner,
        ContractExpiryScanner,
        LateFeeScanner,
    )
    return [kind(store=store, dispatcher=dispatcher, guard=guard, settings=settings) for kind in kinds]
