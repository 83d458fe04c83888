from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

ScheduledReminderType = Literal["unread_message", "booking_reminder"]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BatchRunRequest(BaseModel):
    now_override: datetime | None = None

    @field_validator("now_override")
    @classmethod
    def _normalize_override(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class ReminderReportModel(BaseModel):
    bookings_sent: int = 0
    messages_sent: int = 0
    rent_reminders_sent: int = 0
    rent_bills_created: int = 0
    wifi_reminders_sent: int = 0
    electricity_reminders_sent: int = 0
    contract_reminders_sent: int = 0
    late_fees_applied: int = 0
    errors: int = 0
    skipped: list[str] = Field(default_factory=list)


class BatchRunResponse(BaseModel):
    success: bool
    report: ReminderReportModel


class QueueDrainRequest(BaseModel):
    now_override: datetime | None = None
    respect_throttle: bool = True

    @field_validator("now_override")
    @classmethod
    def _normalize_override(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class QueueDrainResults(BaseModel):
    processed: int = 0
    messages: int = 0
    bookings: int = 0
    suppressed: int = 0
    errors: int = 0
    throttled: bool = False


class QueueDrainResponse(BaseModel):
    success: bool
    results: QueueDrainResults


class ScheduledReminderCreateRequest(BaseModel):
    type: ScheduledReminderType
    target_id: str = Field(min_length=1, max_length=64)
    send_at: datetime | None = None

    @field_validator("target_id")
    @classmethod
    def _strip_target(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("target_id must not be blank")
        return stripped

    @field_validator("send_at")
    @classmethod
    def _normalize_send_at(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class ScheduledReminderResponse(BaseModel):
    id: str
    type: str
    target_id: str
    send_at: datetime
    sent: bool


class ReminderSettingsRequest(BaseModel):
    enabled: bool


class ReminderSettingsResponse(BaseModel):
    enabled: bool


class HealthResponse(BaseModel):
    status: Literal["ok"]
    store_backend: str
