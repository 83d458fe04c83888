from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .dispatcher import MultiChannelDispatcher
from .models import (
    BatchRunRequest,
    BatchRunResponse,
    HealthResponse,
    QueueDrainRequest,
    QueueDrainResponse,
    QueueDrainResults,
    ReminderReportModel,
    ReminderSettingsRequest,
    ReminderSettingsResponse,
    ScheduledReminderCreateRequest,
    ScheduledReminderResponse,
)
from .notifier import EmailSender, SmsSender, create_email_sender, create_sms_sender
from .orchestrator import REMINDERS_ENABLED_KEY, ReminderBatchOrchestrator
from .queue_drain import (
    BOOKING_REMINDER,
    QueueDrainProcessor,
    schedule_booking_reminder,
    schedule_unread_message_reminder,
)
from .store import RentalStore, StoreError
from .store_backends import create_rental_store

logger = logging.getLogger(__name__)

_settings = get_settings()
router = APIRouter(prefix=f"{_settings.api_prefix}/reminders", tags=["reminders"])


def _create_email_sender(settings: Settings) -> EmailSender:
    return create_email_sender(
        sender_type=settings.email_sender_type,
        enabled=settings.notifier_enabled,
        api_key=settings.brevo_api_key,
        base_url=settings.brevo_api_base_url,
        from_address=settings.email_from_address,
        from_name=settings.email_from_name,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )


def _create_sms_sender(settings: Settings) -> SmsSender:
    return create_sms_sender(
        sender_type=settings.sms_sender_type,
        enabled=settings.notifier_enabled,
        base_url=settings.sms_gateway_url,
        username=settings.sms_gateway_username,
        password=settings.sms_gateway_password,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )


rental_store: RentalStore = create_rental_store(
    backend=_settings.rental_store_backend,
    database_url=_settings.database_url,
)
email_sender: EmailSender = _create_email_sender(_settings)
sms_sender: SmsSender = _create_sms_sender(_settings)


def reset_runtime_state_for_tests() -> None:
    rental_store.reset()


def _dispatcher() -> MultiChannelDispatcher:
    return MultiChannelDispatcher(
        email_sender=email_sender,
        sms_sender=sms_sender,
        store=rental_store,
        actor_id=_settings.system_actor_id,
    )


def _unavailable(exc: Exception) -> JSONResponse:
    logger.error("reminder trigger failed: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": False, "error": str(exc) or exc.__class__.__name__},
    )


def _require_cron_secret(request: Request) -> None:
    expected = _settings.cron_secret.strip()
    if not expected:
        raise HTTPException(status_code=503, detail="cron secret is not configured")
    token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="invalid cron secret")


def _run_batch(now: datetime | None) -> BatchRunResponse | JSONResponse:
    orchestrator = ReminderBatchOrchestrator(store=rental_store, dispatcher=_dispatcher(), settings=_settings)
    try:
        report = orchestrator.run(now)
    except StoreError as exc:
        return _unavailable(exc)
    return BatchRunResponse(success=True, report=ReminderReportModel(**report.as_dict()))


@router.post("/cron/check-reminders", response_model=BatchRunResponse)
def check_reminders_cron(request: Request, payload: BatchRunRequest | None = None) -> BatchRunResponse | JSONResponse:
    _require_cron_secret(request)
    return _run_batch(payload.now_override if payload else None)


@router.post("/run", response_model=BatchRunResponse)
def run_reminders() -> BatchRunResponse | JSONResponse:
    return _run_batch(None)


@router.post("/scheduled/process", response_model=QueueDrainResponse)
def process_scheduled_reminders(
    request: Request,
    payload: QueueDrainRequest | None = None,
) -> QueueDrainResponse | JSONResponse:
    body = payload or QueueDrainRequest()
    # Clock overrides and throttle bypass are operator-only; the plain drain stays public.
    if body.now_override is not None or not body.respect_throttle:
        _require_cron_secret(request)
    processor = QueueDrainProcessor(store=rental_store, dispatcher=_dispatcher(), settings=_settings)
    try:
        report = processor.drain(body.now_override, respect_throttle=body.respect_throttle)
    except StoreError as exc:
        return _unavailable(exc)
    return QueueDrainResponse(success=True, results=QueueDrainResults(**report.as_dict()))


@router.post("/scheduled", response_model=ScheduledReminderResponse, status_code=status.HTTP_201_CREATED)
def create_scheduled_reminder(payload: ScheduledReminderCreateRequest) -> ScheduledReminderResponse:
    if payload.send_at is not None:
        item = rental_store.enqueue_scheduled_reminder(
            type=payload.type,
            target_id=payload.target_id,
            send_at=payload.send_at,
        )
    elif payload.type == BOOKING_REMINDER:
        booking = rental_store.get_booking(payload.target_id)
        if booking is None:
            raise HTTPException(status_code=404, detail=f"booking not found: {payload.target_id}")
        item = schedule_booking_reminder(
            rental_store,
            booking.id,
            booking.booking_date,
            lead_hours=_settings.booking_reminder_lead_hours,
            now=datetime.now(timezone.utc),
        )
    else:
        message = rental_store.get_message(payload.target_id)
        if message is None:
            raise HTTPException(status_code=404, detail=f"message not found: {payload.target_id}")
        item = schedule_unread_message_reminder(
            rental_store,
            message.id,
            message.created_at,
            delay_hours=_settings.unread_message_delay_hours,
        )
    return ScheduledReminderResponse(
        id=item.id,
        type=item.type,
        target_id=item.target_id,
        send_at=item.send_at,
        sent=item.sent,
    )


@router.get("/settings/reminders", response_model=ReminderSettingsResponse)
def get_reminder_settings() -> ReminderSettingsResponse:
    return ReminderSettingsResponse(enabled=rental_store.get_setting(REMINDERS_ENABLED_KEY, True))


@router.post("/settings/reminders", response_model=ReminderSettingsResponse)
def update_reminder_settings(request: Request, payload: ReminderSettingsRequest) -> ReminderSettingsResponse:
    _require_cron_secret(request)
    rental_store.set_setting(REMINDERS_ENABLED_KEY, payload.enabled)
    logger.info("reminders_enabled set to %s", payload.enabled)
    return ReminderSettingsResponse(enabled=payload.enabled)


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse | JSONResponse:
    try:
        rental_store.ping()
    except StoreError as exc:
        return _unavailable(exc)
    return HealthResponse(status="ok", store_backend=_settings.rental_store_backend)
