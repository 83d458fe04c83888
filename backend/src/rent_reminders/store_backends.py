from __future__ import annotations

import secrets
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Iterator

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    select,
    text,
    update,
)
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .store import (
    OPEN_BILL_STATUSES,
    PAID_BILL_STATUSES,
    Booking,
    InMemoryRentalStore,
    Message,
    NotificationEntry,
    Occupancy,
    PaymentRequest,
    Profile,
    RecordNotFoundError,
    RentalStore,
    ScheduledReminder,
    StoreError,
    StoreUnavailableError,
)

MONEY = Numeric(12, 2)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _money(value: Decimal | None) -> Decimal:
    return Decimal(value) if value is not None else Decimal("0")


class RentalStoreBase(DeclarativeBase):
    pass


class _ProfileRow(RentalStoreBase):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class _OccupancyRow(RentalStoreBase):
    __tablename__ = "tenant_occupancies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    landlord_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    contract_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    rent_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    wifi_due_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    late_payment_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)


class _PaymentRequestRow(RentalStoreBase):
    __tablename__ = "payment_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    occupancy_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    landlord_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    rent_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    water_bill: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    electrical_bill: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    wifi_bill: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    other_bills: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    security_deposit_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    advance_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    bills_description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    late_fee_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    late_fee_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _BookingRow(RentalStoreBase):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class _MessageRow(RentalStoreBase):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class _NotificationRow(RentalStoreBase):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    recipient: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class _ScheduledReminderRow(RentalStoreBase):
    __tablename__ = "scheduled_reminders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    send_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _SystemSettingRow(RentalStoreBase):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[bool] = mapped_column(Boolean, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _to_profile(row: _ProfileRow) -> Profile:
    return Profile(
        id=row.id,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email,
        phone=row.phone,
        phone_verified=row.phone_verified,
        email_opt_in=row.email_opt_in,
        sms_opt_in=row.sms_opt_in,
    )


def _to_occupancy(row: _OccupancyRow) -> Occupancy:
    return Occupancy(
        id=row.id,
        tenant_id=row.tenant_id,
        landlord_id=row.landlord_id,
        property_id=row.property_id,
        property_title=row.property_title or "",
        start_date=row.start_date,
        rent_amount=_money(row.rent_amount),
        status=row.status,
        contract_end_date=row.contract_end_date,
        wifi_due_day=row.wifi_due_day,
        late_payment_fee=_money(row.late_payment_fee),
    )


def _to_payment_request(row: _PaymentRequestRow) -> PaymentRequest:
    return PaymentRequest(
        id=row.id,
        occupancy_id=row.occupancy_id,
        tenant_id=row.tenant_id,
        landlord_id=row.landlord_id,
        property_id=row.property_id,
        due_date=row.due_date,
        status=row.status,
        rent_amount=_money(row.rent_amount),
        water_bill=_money(row.water_bill),
        electrical_bill=_money(row.electrical_bill),
        wifi_bill=_money(row.wifi_bill),
        other_bills=_money(row.other_bills),
        security_deposit_amount=_money(row.security_deposit_amount),
        advance_amount=_money(row.advance_amount),
        bills_description=row.bills_description or "",
        late_fee_applied=row.late_fee_applied,
        late_fee_amount=_money(row.late_fee_amount),
        created_at=_coerce_utc(row.created_at) if row.created_at is not None else None,
    )


def _to_booking(row: _BookingRow) -> Booking:
    return Booking(
        id=row.id,
        tenant_id=row.tenant_id,
        property_title=row.property_title or "",
        booking_date=_coerce_utc(row.booking_date),
        status=row.status,
        reminder_sent=row.reminder_sent,
    )


def _to_message(row: _MessageRow) -> Message:
    return Message(
        id=row.id,
        sender_id=row.sender_id,
        receiver_id=row.receiver_id,
        created_at=_coerce_utc(row.created_at),
        read=row.read,
        reminder_sent=row.reminder_sent,
    )


def _to_notification(row: _NotificationRow) -> NotificationEntry:
    return NotificationEntry(
        id=row.id,
        recipient=row.recipient,
        type=row.type,
        message=row.message,
        created_at=_coerce_utc(row.created_at),
        actor=row.actor,
        link=row.link,
        reference_id=row.reference_id,
        is_read=row.is_read,
    )


def _to_scheduled_reminder(row: _ScheduledReminderRow) -> ScheduledReminder:
    return ScheduledReminder(
        id=row.id,
        type=row.type,
        target_id=row.target_id,
        send_at=_coerce_utc(row.send_at),
        sent=row.sent,
        created_at=_coerce_utc(row.created_at),
    )


class SqlAlchemyRentalStore:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for RENTAL_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            RentalStoreBase.metadata.create_all(self._engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                with session.begin():
                    yield session
        except OperationalError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def ping(self) -> None:
        with self._transaction() as session:
            session.execute(text("SELECT 1"))

    def reset(self) -> None:
        with self._transaction() as session:
            for model in (
                _NotificationRow,
                _ScheduledReminderRow,
                _SystemSettingRow,
                _MessageRow,
                _BookingRow,
                _PaymentRequestRow,
                _OccupancyRow,
                _ProfileRow,
            ):
                session.query(model).delete()

    # Seeding helpers used by scripts and tests.

    def add_profile(self, profile: Profile) -> Profile:
        with self._transaction() as session:
            session.merge(
                _ProfileRow(
                    id=profile.id,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    email=profile.email,
                    phone=profile.phone,
                    phone_verified=profile.phone_verified,
                    email_opt_in=profile.email_opt_in,
                    sms_opt_in=profile.sms_opt_in,
                )
            )
        return profile

    def add_occupancy(self, occupancy: Occupancy) -> Occupancy:
        with self._transaction() as session:
            session.merge(
                _OccupancyRow(
                    id=occupancy.id,
                    tenant_id=occupancy.tenant_id,
                    landlord_id=occupancy.landlord_id,
                    property_id=occupancy.property_id,
                    property_title=occupancy.property_title,
                    status=occupancy.status,
                    start_date=occupancy.start_date,
                    contract_end_date=occupancy.contract_end_date,
                    rent_amount=occupancy.rent_amount,
                    wifi_due_day=occupancy.wifi_due_day,
                    late_payment_fee=occupancy.late_payment_fee,
                )
            )
        return occupancy

    def add_payment_request(self, bill: PaymentRequest) -> PaymentRequest:
        with self._transaction() as session:
            session.merge(
                _PaymentRequestRow(
                    id=bill.id,
                    occupancy_id=bill.occupancy_id,
                    tenant_id=bill.tenant_id,
                    landlord_id=bill.landlord_id,
                    property_id=bill.property_id,
                    due_date=bill.due_date,
                    status=bill.status,
                    rent_amount=bill.rent_amount,
                    water_bill=bill.water_bill,
                    electrical_bill=bill.electrical_bill,
                    wifi_bill=bill.wifi_bill,
                    other_bills=bill.other_bills,
                    security_deposit_amount=bill.security_deposit_amount,
                    advance_amount=bill.advance_amount,
                    bills_description=bill.bills_description,
                    late_fee_applied=bill.late_fee_applied,
                    late_fee_amount=bill.late_fee_amount,
                    created_at=bill.created_at or _now_utc(),
                )
            )
        return bill

    def add_booking(self, booking: Booking) -> Booking:
        with self._transaction() as session:
            session.merge(
                _BookingRow(
                    id=booking.id,
                    tenant_id=booking.tenant_id,
                    property_title=booking.property_title,
                    booking_date=_coerce_utc(booking.booking_date),
                    status=booking.status,
                    reminder_sent=booking.reminder_sent,
                )
            )
        return booking

    def add_message(self, message: Message) -> Message:
        with self._transaction() as session:
            session.merge(
                _MessageRow(
                    id=message.id,
                    sender_id=message.sender_id,
                    receiver_id=message.receiver_id,
                    created_at=_coerce_utc(message.created_at),
                    read=message.read,
                    reminder_sent=message.reminder_sent,
                )
            )
        return message

    # RentalStore operations.

    def get_profile(self, user_id: str) -> Profile | None:
        with self._transaction() as session:
            row = session.get(_ProfileRow, user_id)
            return _to_profile(row) if row is not None else None

    def list_active_occupancies(self) -> list[Occupancy]:
        with self._transaction() as session:
            rows = session.execute(
                select(_OccupancyRow).where(_OccupancyRow.status == "active").order_by(_OccupancyRow.id.asc())
            ).scalars()
            return [_to_occupancy(row) for row in rows]

    def get_occupancy(self, occupancy_id: str) -> Occupancy | None:
        with self._transaction() as session:
            row = session.get(_OccupancyRow, occupancy_id)
            return _to_occupancy(row) if row is not None else None

    def latest_paid_rent_bill(self, occupancy_id: str) -> PaymentRequest | None:
        with self._transaction() as session:
            row = session.execute(
                select(_PaymentRequestRow)
                .where(_PaymentRequestRow.occupancy_id == occupancy_id)
                .where(_PaymentRequestRow.status.in_(sorted(PAID_BILL_STATUSES)))
                .where(_PaymentRequestRow.rent_amount > 0)
                .order_by(_PaymentRequestRow.due_date.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_payment_request(row) if row is not None else None

    def find_open_rent_bill(self, occupancy_id: str, start: date, end: date) -> PaymentRequest | None:
        with self._transaction() as session:
            row = session.execute(
                select(_PaymentRequestRow)
                .where(_PaymentRequestRow.occupancy_id == occupancy_id)
                .where(_PaymentRequestRow.status.in_(sorted(OPEN_BILL_STATUSES)))
                .where(_PaymentRequestRow.rent_amount > 0)
                .where(_PaymentRequestRow.due_date >= start)
                .where(_PaymentRequestRow.due_date <= end)
                .limit(1)
            ).scalar_one_or_none()
            return _to_payment_request(row) if row is not None else None

    def create_payment_request(
        self,
        *,
        occupancy: Occupancy,
        rent_amount: Decimal,
        bills_description: str,
        due_date: date,
    ) -> PaymentRequest:
        row = _PaymentRequestRow(
            id=f"pr_{secrets.token_hex(8)}",
            occupancy_id=occupancy.id,
            tenant_id=occupancy.tenant_id,
            landlord_id=occupancy.landlord_id,
            property_id=occupancy.property_id,
            due_date=due_date,
            status="pending",
            rent_amount=rent_amount,
            water_bill=Decimal("0"),
            electrical_bill=Decimal("0"),
            wifi_bill=Decimal("0"),
            other_bills=Decimal("0"),
            security_deposit_amount=Decimal("0"),
            advance_amount=Decimal("0"),
            bills_description=bills_description,
            late_fee_applied=False,
            late_fee_amount=Decimal("0"),
            created_at=_now_utc(),
        )
        with self._transaction() as session:
            session.add(row)
            session.flush()
            return _to_payment_request(row)

    def list_overdue_rent_bills(self, before: date) -> list[PaymentRequest]:
        with self._transaction() as session:
            rows = session.execute(
                select(_PaymentRequestRow)
                .where(_PaymentRequestRow.status == "pending")
                .where(_PaymentRequestRow.due_date < before)
                .where(_PaymentRequestRow.rent_amount > 0)
                .where(_PaymentRequestRow.late_fee_applied.is_(False))
                .order_by(_PaymentRequestRow.due_date.asc(), _PaymentRequestRow.id.asc())
            ).scalars()
            return [_to_payment_request(row) for row in rows]

    def apply_late_fee(self, bill_id: str, *, amount: Decimal, marker: str) -> bool:
        with self._transaction() as session:
            row = session.get(_PaymentRequestRow, bill_id)
            if row is None:
                raise RecordNotFoundError(bill_id)
            description = f"{row.bills_description or ''} {marker}".strip()
            result = session.execute(
                update(_PaymentRequestRow)
                .where(_PaymentRequestRow.id == bill_id)
                .where(_PaymentRequestRow.status == "pending")
                .where(_PaymentRequestRow.late_fee_applied.is_(False))
                .values(
                    other_bills=_PaymentRequestRow.other_bills + amount,
                    late_fee_applied=True,
                    late_fee_amount=amount,
                    bills_description=description,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def get_payment_request(self, bill_id: str) -> PaymentRequest | None:
        with self._transaction() as session:
            row = session.get(_PaymentRequestRow, bill_id)
            return _to_payment_request(row) if row is not None else None

    def list_payment_requests(self, occupancy_id: str | None = None) -> list[PaymentRequest]:
        with self._transaction() as session:
            query = select(_PaymentRequestRow).order_by(_PaymentRequestRow.due_date.asc(), _PaymentRequestRow.id.asc())
            if occupancy_id is not None:
                query = query.where(_PaymentRequestRow.occupancy_id == occupancy_id)
            return [_to_payment_request(row) for row in session.execute(query).scalars()]

    def list_upcoming_bookings(self, start: datetime, end: datetime) -> list[Booking]:
        with self._transaction() as session:
            rows = session.execute(
                select(_BookingRow)
                .where(_BookingRow.status == "approved")
                .where(_BookingRow.reminder_sent.is_(False))
                .where(_BookingRow.booking_date > _coerce_utc(start))
                .where(_BookingRow.booking_date <= _coerce_utc(end))
                .order_by(_BookingRow.booking_date.asc(), _BookingRow.id.asc())
            ).scalars()
            return [_to_booking(row) for row in rows]

    def get_booking(self, booking_id: str) -> Booking | None:
        with self._transaction() as session:
            row = session.get(_BookingRow, booking_id)
            return _to_booking(row) if row is not None else None

    def mark_booking_reminded(self, booking_id: str) -> None:
        with self._transaction() as session:
            row = session.get(_BookingRow, booking_id)
            if row is None:
                raise RecordNotFoundError(booking_id)
            row.reminder_sent = True

    def list_unread_messages(self, created_before: datetime) -> list[Message]:
        with self._transaction() as session:
            rows = session.execute(
                select(_MessageRow)
                .where(_MessageRow.read.is_(False))
                .where(_MessageRow.reminder_sent.is_(False))
                .where(_MessageRow.created_at <= _coerce_utc(created_before))
                .order_by(_MessageRow.created_at.asc(), _MessageRow.id.asc())
            ).scalars()
            return [_to_message(row) for row in rows]

    def get_message(self, message_id: str) -> Message | None:
        with self._transaction() as session:
            row = session.get(_MessageRow, message_id)
            return _to_message(row) if row is not None else None

    def mark_messages_reminded(self, message_ids: Iterable[str]) -> None:
        ids = list(message_ids)
        if not ids:
            return
        with self._transaction() as session:
            session.execute(
                update(_MessageRow)
                .where(_MessageRow.id.in_(ids))
                .values(reminder_sent=True)
                .execution_options(synchronize_session=False)
            )

    def find_notification(
        self,
        *,
        recipient: str,
        type: str,
        since: datetime,
        reference_id: str | None = None,
    ) -> NotificationEntry | None:
        with self._transaction() as session:
            query = (
                select(_NotificationRow)
                .where(_NotificationRow.recipient == recipient)
                .where(_NotificationRow.type == type)
                .where(_NotificationRow.created_at >= _coerce_utc(since))
                .order_by(_NotificationRow.created_at.desc())
                .limit(1)
            )
            if reference_id is not None:
                query = query.where(_NotificationRow.reference_id == reference_id)
            row = session.execute(query).scalar_one_or_none()
            return _to_notification(row) if row is not None else None

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
        row = _NotificationRow(
            id=f"ntf_{secrets.token_hex(8)}",
            recipient=recipient,
            actor=actor,
            type=type,
            message=message,
            link=link,
            reference_id=reference_id,
            is_read=False,
            created_at=_coerce_utc(created_at),
        )
        with self._transaction() as session:
            session.add(row)
            session.flush()
            return _to_notification(row)

    def list_notifications(self, recipient: str | None = None) -> list[NotificationEntry]:
        with self._transaction() as session:
            query = select(_NotificationRow).order_by(_NotificationRow.created_at.asc(), _NotificationRow.id.asc())
            if recipient is not None:
                query = query.where(_NotificationRow.recipient == recipient)
            return [_to_notification(row) for row in session.execute(query).scalars()]

    def enqueue_scheduled_reminder(self, *, type: str, target_id: str, send_at: datetime) -> ScheduledReminder:
        row = _ScheduledReminderRow(
            id=f"srm_{secrets.token_hex(8)}",
            type=type,
            target_id=target_id,
            send_at=_coerce_utc(send_at),
            sent=False,
            created_at=_now_utc(),
        )
        with self._transaction() as session:
            session.add(row)
            session.flush()
            return _to_scheduled_reminder(row)

    def list_due_scheduled_reminders(self, now: datetime, *, limit: int) -> list[ScheduledReminder]:
        with self._transaction() as session:
            rows = session.execute(
                select(_ScheduledReminderRow)
                .where(_ScheduledReminderRow.sent.is_(False))
                .where(_ScheduledReminderRow.send_at <= _coerce_utc(now))
                .order_by(_ScheduledReminderRow.send_at.asc())
                .limit(limit)
            ).scalars()
            return [_to_scheduled_reminder(row) for row in rows]

    def mark_scheduled_reminder_sent(self, reminder_id: str) -> bool:
        with self._transaction() as session:
            result = session.execute(
                update(_ScheduledReminderRow)
                .where(_ScheduledReminderRow.id == reminder_id)
                .where(_ScheduledReminderRow.sent.is_(False))
                .values(sent=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def get_setting(self, key: str, default: bool) -> bool:
        with self._transaction() as session:
            row = session.get(_SystemSettingRow, key)
            return row.value if row is not None else default

    def set_setting(self, key: str, value: bool) -> None:
        with self._transaction() as session:
            row = session.get(_SystemSettingRow, key)
            if row is None:
                session.add(_SystemSettingRow(key=key, value=value, updated_at=_now_utc()))
                return
            row.value = value
            row.updated_at = _now_utc()


def create_rental_store(*, backend: str, database_url: str) -> RentalStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyRentalStore(database_url)
    if normalized == "inmemory":
        return InMemoryRentalStore()
    raise RuntimeError(f"unsupported RENTAL_STORE_BACKEND: {backend}")
