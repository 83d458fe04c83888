from __future__ import annotations

import os

import pytest

from rent_reminders.main import create_app


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def _base_runtime_secret_env() -> dict[str, str | None]:
    return {
        "CRON_SECRET": "prod-cron-secret-001",
        "RUNTIME_SECRET_GUARD_MODE": "enforce",
        "EMAIL_SENDER_TYPE": "stub",
        "SMS_SENDER_TYPE": "stub",
        "RENTAL_STORE_BACKEND": "inmemory",
        "REMINDERS_APP_NAME": None,
    }


def test_create_app_starts_with_safe_configuration() -> None:
    previous = _set_env(_base_runtime_secret_env())
    try:
        app = create_app()
        assert app.title == "EaseRent Reminders"
    finally:
        _restore_env(previous)


def test_create_app_blocks_when_brevo_enabled_without_key() -> None:
    previous = _set_env({**_base_runtime_secret_env(), "EMAIL_SENDER_TYPE": "brevo", "BREVO_API_KEY": None})
    try:
        with pytest.raises(RuntimeError) as exc_info:
            create_app()
        message = str(exc_info.value)
        assert "BREVO_API_KEY is required" in message
        assert "switch unused senders back to stub" in message
    finally:
        _restore_env(previous)


def test_create_app_warn_mode_logs_instead_of_failing(caplog: pytest.LogCaptureFixture) -> None:
    previous = _set_env({**_base_runtime_secret_env(), "CRON_SECRET": None, "RUNTIME_SECRET_GUARD_MODE": "warn"})
    try:
        with caplog.at_level("WARNING"):
            create_app()
        assert any("CRON_SECRET" in record.getMessage() for record in caplog.records)
    finally:
        _restore_env(previous)
