from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .config import Settings
from .idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)

DAILY_CHECK_SENTINEL = "daily_reminder_check"


@dataclass(frozen=True)
class GateDecision:
    open: bool
    reason: str | None = None


class TimeWindowGate:
    """Lets the billing scanners run once per local day inside a fixed hour window.

    Opening the gate writes the daily sentinel before any gated scanner runs.
    """

    def __init__(self, *, guard: IdempotencyGuard, settings: Settings) -> None:
        self._guard = guard
        self._settings = settings

    def evaluate(self, now: datetime) -> GateDecision:
        local_hour = now.astimezone(self._guard.zone).hour
        start = self._settings.billing_window_start_hour
        end = self._settings.billing_window_end_hour
        if not start <= local_hour < end:
            return GateDecision(open=False, reason="outside_window")

        actor = self._settings.system_actor_id
        if self._guard.has_been_sent(actor, DAILY_CHECK_SENTINEL, now=now, window="today"):
            return GateDecision(open=False, reason="already_ran_today")

        self._guard.mark_sent(actor, DAILY_CHECK_SENTINEL, "Daily reminder check", now=now, actor=actor)
        logger.info("billing gate opened at local hour %d", local_hour)
        return GateDecision(open=True)
