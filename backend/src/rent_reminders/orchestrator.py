from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .config import Settings
from .dispatcher import MultiChannelDispatcher
from .gate import GateDecision, TimeWindowGate
from .idempotency import IdempotencyGuard
from .scanners import ObligationScanner, ScanOutcome, build_scanners
from .store import RentalStore

logger = logging.getLogger(__name__)

REMINDERS_ENABLED_KEY = "reminders_enabled"

_REPORT_FIELDS = {
    "bookings": "bookings_sent",
    "messages": "messages_sent",
    "rent": "rent_reminders_sent",
    "wifi": "wifi_reminders_sent",
    "electricity": "electricity_reminders_sent",
    "contracts": "contract_reminders_sent",
    "late_fees": "late_fees_applied",
}


class RunState(str, Enum):
    IDLE = "idle"
    GATING = "gating"
    SCANNING = "scanning"
    DONE = "done"


@dataclass
class ReminderReport:
    bookings_sent: int = 0
    messages_sent: int = 0
    rent_reminders_sent: int = 0
    rent_bills_created: int = 0
    wifi_reminders_sent: int = 0
    electricity_reminders_sent: int = 0
    contract_reminders_sent: int = 0
    late_fees_applied: int = 0
    errors: int = 0
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def record(self, outcome: ScanOutcome) -> None:
        report_field = _REPORT_FIELDS[outcome.scanner]
        setattr(self, report_field, getattr(self, report_field) + outcome.sent)
        self.rent_bills_created += outcome.bills_created
        self.errors += outcome.errors


class ReminderBatchOrchestrator:
    """Runs every scanner once in a fixed order and aggregates the counters.

    Only a store that cannot be reached at all raises out of ``run``.
    """

    def __init__(
        self,
        *,
        store: RentalStore,
        dispatcher: MultiChannelDispatcher,
        settings: Settings,
        scanners: list[ObligationScanner] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._guard = IdempotencyGuard(store, zone=settings.reminder_timezone)
        self._gate = TimeWindowGate(guard=self._guard, settings=settings)
        self._scanners = scanners or build_scanners(
            store=store,
            dispatcher=dispatcher,
            guard=self._guard,
            settings=settings,
        )
        self.state = RunState.IDLE

    def _transition(self, state: RunState, detail: str = "") -> None:
        self.state = state
        logger.debug("reminder batch state=%s %s", state.value, detail)

    def run(self, now: datetime | None = None) -> ReminderReport:
        run_at = now or datetime.now(timezone.utc)
        report = ReminderReport()
        self._transition(RunState.IDLE)
        self._store.ping()

        if not self._store.get_setting(REMINDERS_ENABLED_KEY, True):
            report.skipped.append("reminders_disabled")
            self._transition(RunState.DONE, "reminders disabled")
            logger.info("reminder batch skipped: reminders disabled")
            return report

        self._transition(RunState.GATING)
        decision = self._gate_decision(run_at, report)

        for scanner in self._scanners:
            if scanner.gated and not decision.open:
                report.skipped.append(f"{scanner.name}:{decision.reason}")
                continue
            self._transition(RunState.SCANNING, scanner.name)
            report.record(scanner.scan(run_at))

        self._transition(RunState.DONE)
        logger.info("reminder batch finished: %s", report.as_dict())
        return report

    def _gate_decision(self, now: datetime, report: ReminderReport) -> GateDecision:
        try:
            return self._gate.evaluate(now)
        except Exception:
            logger.exception("billing gate evaluation failed")
            report.errors += 1
            return GateDecision(open=False, reason="gate_error")
