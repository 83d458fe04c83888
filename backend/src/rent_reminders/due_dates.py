from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class PaidRentBill:
    due_date: date
    rent_amount: Decimal
    advance_amount: Decimal


def clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day, last_day)))


def add_months(value: date, months: int, *, anchor_day: int | None = None) -> date:
    """Shift ``value`` by whole months, keeping ``anchor_day`` (or its own day).

    Days past the end of the target month clamp to its last day, so an anchor
    of 31 lands on Feb 28/29 and returns to the 31st in March.
    """
    index = value.year * 12 + (value.month - 1) + months
    year, month_zero = divmod(index, 12)
    return clamp_day(year, month_zero + 1, anchor_day if anchor_day is not None else value.day)


def month_bounds(value: date) -> tuple[date, date]:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return date(value.year, value.month, 1), date(value.year, value.month, last_day)


def current_due_date(anchor_day: int, today: date) -> date:
    candidate = clamp_day(today.year, today.month, anchor_day)
    if candidate >= today:
        return candidate
    return add_months(candidate, 1, anchor_day=anchor_day)


def days_until_due(due: date, today: date) -> int:
    return (due - today).days


def months_covered(rent_amount: Decimal, advance_amount: Decimal, base_rent: Decimal) -> int:
    if rent_amount <= 0 or advance_amount <= 0 or base_rent <= 0:
        return 1
    return 1 + int(advance_amount // base_rent)


def next_rent_due_date(
    anchor: date,
    today: date,
    *,
    base_rent: Decimal,
    last_paid_bill: PaidRentBill | None = None,
) -> date:
    """Due date of the next rent bill for a contract anchored on ``anchor``.

    A paid bill with an advance pushes the due date forward by the number of
    months the advance covers, counted from that bill's due date. The result
    never falls before the current billing cycle or before the contract start.
    """
    cycle = current_due_date(anchor.day, today)
    if last_paid_bill is None:
        return max(anchor, cycle)
    covered = months_covered(last_paid_bill.rent_amount, last_paid_bill.advance_amount, base_rent)
    shifted = add_months(last_paid_bill.due_date, covered, anchor_day=anchor.day)
    return max(anchor, cycle, shifted)
