from __future__ import annotations

import os
from dataclasses import dataclass


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def _is_placeholder(value: str, *, defaults: set[str]) -> bool:
    normalized = value.strip()
    if not normalized:
        return True
    if normalized in defaults:
        return True
    lower = normalized.lower()
    return lower in {"change-me", "replace-me", "placeholder", "changeme"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "EaseRent Reminders"
    api_prefix: str = "/api/v1"
    reminder_timezone: str = "Asia/Manila"
    # Gated billing scanners only run inside [start, end) local hours.
    billing_window_start_hour: int = 7
    billing_window_end_hour: int = 9
    cron_secret: str = ""
    system_actor_id: str = "system"
    site_url: str = "https://easerent.vercel.app"
    notifier_enabled: bool = True
    email_sender_type: str = "stub"
    brevo_api_key: str = ""
    brevo_api_base_url: str = "https://api.brevo.com"
    email_from_address: str = "no-reply@easerent.app"
    email_from_name: str = "EaseRent"
    sms_sender_type: str = "stub"
    sms_gateway_url: str = "https://api.sms-gate.app"
    sms_gateway_username: str = ""
    sms_gateway_password: str = ""
    dispatch_timeout_seconds: int = 10
    rental_store_backend: str = "inmemory"
    database_url: str = ""
    queue_drain_batch_size: int = 50
    queue_drain_min_interval_seconds: int = 300
    booking_reminder_lead_hours: int = 12
    unread_message_delay_hours: int = 6
    contract_expiry_lead_days: int = 30
    late_fee_grace_days: int = 0
    runtime_secret_guard_mode: str = "warn"

    def site_link(self, path: str) -> str:
        return f"{self.site_url.rstrip('/')}/{path.lstrip('/')}"


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("REMINDERS_APP_NAME", "EaseRent Reminders"),
        api_prefix=os.getenv("REMINDERS_API_PREFIX", "/api/v1"),
        reminder_timezone=os.getenv("REMINDER_TIMEZONE", "Asia/Manila"),
        billing_window_start_hour=_as_int(os.getenv("BILLING_WINDOW_START_HOUR"), 7),
        billing_window_end_hour=_as_int(os.getenv("BILLING_WINDOW_END_HOUR"), 9),
        cron_secret=os.getenv("CRON_SECRET", ""),
        system_actor_id=os.getenv("SYSTEM_ACTOR_ID", "system"),
        site_url=os.getenv("SITE_URL", "https://easerent.vercel.app"),
        notifier_enabled=_as_bool(os.getenv("NOTIFIER_ENABLED"), True),
        email_sender_type=_normalize_mode(
            os.getenv("EMAIL_SENDER_TYPE"),
            default="stub",
            allowed={"stub", "brevo"},
        ),
        brevo_api_key=os.getenv("BREVO_API_KEY", ""),
        brevo_api_base_url=os.getenv("BREVO_API_BASE_URL", "https://api.brevo.com"),
        email_from_address=os.getenv("EMAIL_FROM_ADDRESS", "no-reply@easerent.app"),
        email_from_name=os.getenv("EMAIL_FROM_NAME", "EaseRent"),
        sms_sender_type=_normalize_mode(
            os.getenv("SMS_SENDER_TYPE"),
            default="stub",
            allowed={"stub", "gateway"},
        ),
        sms_gateway_url=os.getenv("SMS_GATEWAY_URL", "https://api.sms-gate.app"),
        sms_gateway_username=os.getenv("SMS_GATEWAY_USERNAME", ""),
        sms_gateway_password=os.getenv("SMS_GATEWAY_PASSWORD", ""),
        dispatch_timeout_seconds=_as_int(os.getenv("DISPATCH_TIMEOUT_SECONDS"), 10),
        rental_store_backend=os.getenv("RENTAL_STORE_BACKEND", "inmemory"),
        database_url=os.getenv("DATABASE_URL", ""),
        queue_drain_batch_size=_as_int(os.getenv("QUEUE_DRAIN_BATCH_SIZE"), 50),
        queue_drain_min_interval_seconds=_as_int(os.getenv("QUEUE_DRAIN_MIN_INTERVAL_SECONDS"), 300),
        booking_reminder_lead_hours=_as_int(os.getenv("BOOKING_REMINDER_LEAD_HOURS"), 12),
        unread_message_delay_hours=_as_int(os.getenv("UNREAD_MESSAGE_DELAY_HOURS"), 6),
        contract_expiry_lead_days=_as_int(os.getenv("CONTRACT_EXPIRY_LEAD_DAYS"), 30),
        late_fee_grace_days=_as_int(os.getenv("LATE_FEE_GRACE_DAYS"), 0),
        runtime_secret_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_SECRET_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_secret_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if _is_placeholder(settings.cron_secret, defaults={"dev-cron-secret", "change-me-in-production"}):
        issues.append("CRON_SECRET is empty or uses a placeholder value")
    if settings.email_sender_type == "brevo" and not settings.brevo_api_key.strip():
        issues.append("BREVO_API_KEY is required when EMAIL_SENDER_TYPE=brevo")
    if settings.sms_sender_type == "gateway" and (
        not settings.sms_gateway_username.strip() or not settings.sms_gateway_password.strip()
    ):
        issues.append(
            "SMS_GATEWAY_USERNAME and SMS_GATEWAY_PASSWORD are required when SMS_SENDER_TYPE=gateway"
        )
    if settings.rental_store_backend.strip().lower() == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when RENTAL_STORE_BACKEND=postgres")
    if not 0 <= settings.billing_window_start_hour < settings.billing_window_end_hour <= 24:
        issues.append("BILLING_WINDOW_START_HOUR must be before BILLING_WINDOW_END_HOUR within 0-24")
    return tuple(issues)
