from __future__ import annotations

from datetime import date
from decimal import Decimal
from html import escape
from zoneinfo import ZoneInfo

from .config import Settings
from .dispatcher import ReminderPayload
from .store import Booking, Occupancy, PaymentRequest

BOOKING_REMINDER = "booking_reminder"
UNREAD_MESSAGE_REMINDER = "unread_message_reminder"
RENT_BILL_REMINDER = "rent_bill_reminder"
WIFI_BILL_REMINDER = "wifi_bill_reminder"
ELECTRICITY_BILL_REMINDER = "electricity_bill_reminder"
CONTRACT_EXPIRY_REMINDER = "contract_expiry_reminder"
LATE_FEE_APPLIED = "late_fee_applied"

SMS_PREFIX = "EaseRent"


def format_money(amount: Decimal) -> str:
    return f"₱{amount:,.2f}"


def format_date(value: date) -> str:
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def _days_phrase(days: int) -> str:
    return "tomorrow" if days == 1 else f"in {days} days"


def _html(heading: str, paragraphs: list[str], link: str | None, cta: str) -> str:
    body = "".join(f"<p>{escape(text)}</p>" for text in paragraphs)
    button = f'<p><a href="{escape(link, quote=True)}">{escape(cta)}</a></p>' if link else ""
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{escape(heading)}</h2>{body}{button}"
        "<p>Thank you,<br>EaseRent</p></div>"
    )


def booking_reminder(booking: Booking, settings: Settings) -> ReminderPayload:
    local_time = booking.booking_date.astimezone(ZoneInfo(settings.reminder_timezone))
    when = f"{format_date(local_time.date())} at {local_time.strftime('%I:%M %p').lstrip('0')}"
    link = settings.site_link("/bookings")
    text = f'Reminder: your viewing for "{booking.property_title}" is scheduled on {when}.'
    return ReminderPayload(
        type=BOOKING_REMINDER,
        subject=f"Reminder: Viewing for {booking.property_title}",
        html_body=_html("Upcoming viewing", [text, "Please arrive on time."], link, "View booking"),
        sms_text=f"{SMS_PREFIX}: {text}",
        in_app_message=text,
        link="/bookings",
        reference_id=booking.id,
    )


def unread_messages_reminder(count: int, settings: Settings, *, sender_name: str | None = None) -> ReminderPayload:
    link = settings.site_link("/messages")
    if sender_name:
        text = f"You have an unread message from {sender_name}."
    else:
        text = f"You have {count} unread message(s) waiting for you."
    return ReminderPayload(
        type=UNREAD_MESSAGE_REMINDER,
        subject=f"You have {count} unread message(s)" if not sender_name else f"Unread message from {sender_name}",
        html_body=_html("Unread messages", [text], link, "Open messages"),
        sms_text=f"{SMS_PREFIX}: {text} Log in to reply.",
        in_app_message=text,
        link="/messages",
    )


def rent_bill_reminder(
    occupancy: Occupancy,
    due_date: date,
    days_until: int,
    settings: Settings,
) -> ReminderPayload:
    amount = format_money(occupancy.rent_amount)
    text = (
        f"Your rent of {amount} for {occupancy.property_title} is due {_days_phrase(days_until)} "
        f"({format_date(due_date)})."
    )
    extra: list[str] = []
    if occupancy.late_payment_fee > 0:
        extra.append(
            f"A late payment fee of {format_money(occupancy.late_payment_fee)} applies after the due date."
        )
    link = settings.site_link("/payments")
    return ReminderPayload(
        type=RENT_BILL_REMINDER,
        subject=f"Rent due {format_date(due_date)}: {occupancy.property_title}",
        html_body=_html("Rent reminder", [text, *extra], link, "Pay now"),
        sms_text=" ".join([f"{SMS_PREFIX}: {text}", *extra]),
        in_app_message=" ".join([text, *extra]),
        link="/payments",
        reference_id=occupancy.id,
    )


def rent_bill_description(due_date: date) -> str:
    return f"Monthly Rent for {due_date.strftime('%B')} {due_date.year}"


def wifi_bill_reminder(occupancy: Occupancy, due_date: date, days_until: int, settings: Settings) -> ReminderPayload:
    text = (
        f"Your wifi bill for {occupancy.property_title} is due {_days_phrase(days_until)} "
        f"({format_date(due_date)})."
    )
    link = settings.site_link("/payments")
    return ReminderPayload(
        type=WIFI_BILL_REMINDER,
        subject=f"Wifi bill due {format_date(due_date)}",
        html_body=_html("Wifi bill reminder", [text], link, "View bills"),
        sms_text=f"{SMS_PREFIX}: {text}",
        in_app_message=text,
        link="/payments",
        reference_id=occupancy.id,
    )


def electricity_bill_reminder(occupancy: Occupancy, today: date, settings: Settings) -> ReminderPayload:
    month = f"{today.strftime('%B')} {today.year}"
    text = (
        f"Your electricity bill for {occupancy.property_title} is due this month ({month}). "
        "Please settle it with your landlord once the reading is posted."
    )
    link = settings.site_link("/payments")
    return ReminderPayload(
        type=ELECTRICITY_BILL_REMINDER,
        subject=f"Electricity bill for {month}",
        html_body=_html("Electricity bill reminder", [text], link, "View bills"),
        sms_text=f"{SMS_PREFIX}: {text}",
        in_app_message=text,
        link="/payments",
        reference_id=occupancy.id,
    )


def contract_expiry_reminder(
    occupancy: Occupancy,
    end_date: date,
    days_until: int,
    settings: Settings,
) -> ReminderPayload:
    text = (
        f"Your contract for {occupancy.property_title} ends {_days_phrase(days_until)} "
        f"({format_date(end_date)}). Contact your landlord if you wish to renew."
    )
    link = settings.site_link("/dashboard")
    return ReminderPayload(
        type=CONTRACT_EXPIRY_REMINDER,
        subject=f"Contract ending {format_date(end_date)}: {occupancy.property_title}",
        html_body=_html("Contract expiry", [text], link, "Open dashboard"),
        sms_text=f"{SMS_PREFIX}: {text}",
        in_app_message=text,
        link="/dashboard",
        reference_id=occupancy.id,
    )


def late_fee_marker(amount: Decimal, applied_on: date) -> str:
    return f"[Late fee {format_money(amount)} applied {applied_on.isoformat()}]"


def late_fee_applied(bill: PaymentRequest, amount: Decimal, property_title: str, settings: Settings) -> ReminderPayload:
    text = (
        f"A late payment fee of {format_money(amount)} was added to your rent bill for {property_title} "
        f"that was due {format_date(bill.due_date)}."
    )
    link = settings.site_link("/payments")
    return ReminderPayload(
        type=LATE_FEE_APPLIED,
        subject=f"Late fee applied: {property_title}",
        html_body=_html("Late payment fee", [text, "Please settle the bill as soon as possible."], link, "Pay now"),
        sms_text=f"{SMS_PREFIX}: {text}",
        in_app_message=text,
        link="/payments",
        reference_id=bill.id,
    )
