#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rent_reminders.config import Settings, get_settings
from rent_reminders.dispatcher import MultiChannelDispatcher
from rent_reminders.notifier import create_email_sender, create_sms_sender
from rent_reminders.orchestrator import ReminderBatchOrchestrator
from rent_reminders.queue_drain import QueueDrainProcessor
from rent_reminders.store_backends import create_rental_store


def _load_dotenv(path: Path) -> None:
    if not path.is_file():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        parsed = value.strip()
        if parsed and (parsed[0] == parsed[-1]) and parsed[0] in {'"', "'"}:
            parsed = parsed[1:-1]
        os.environ[key] = parsed


def _resolve_api_base_url(explicit_value: str) -> str:
    candidate = explicit_value.strip()
    if candidate.endswith("/api/v1/reminders"):
        return candidate
    return f"{candidate.rstrip('/')}/api/v1/reminders"


def _request_json(
    method: str,
    base_url: str,
    path: str,
    *,
    payload: dict[str, Any] | None = None,
    token: str | None = None,
) -> dict[str, Any]:
    body = None if payload is None else json.dumps(payload).encode("utf-8")
    headers: dict[str, str] = {"Accept": "application/json"}
    if payload is not None:
        headers["Content-Type"] = "application/json"
    if token:
        headers["Authorization"] = f"Bearer {token}"

    request = urllib.request.Request(
        f"{base_url}/{path.lstrip('/')}",
        data=body,
        headers=headers,
        method=method,
    )
    try:
        with urllib.request.urlopen(request, timeout=120) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"{method} {path} failed with {exc.code}: {detail}") from exc


def _parse_now(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _build_dispatcher(settings: Settings, store: Any) -> MultiChannelDispatcher:
    email_sender = create_email_sender(
        sender_type=settings.email_sender_type,
        enabled=settings.notifier_enabled,
        api_key=settings.brevo_api_key,
        base_url=settings.brevo_api_base_url,
        from_address=settings.email_from_address,
        from_name=settings.email_from_name,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    sms_sender = create_sms_sender(
        sender_type=settings.sms_sender_type,
        enabled=settings.notifier_enabled,
        base_url=settings.sms_gateway_url,
        username=settings.sms_gateway_username,
        password=settings.sms_gateway_password,
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    return MultiChannelDispatcher(
        email_sender=email_sender,
        sms_sender=sms_sender,
        store=store,
        actor_id=settings.system_actor_id,
    )


def _run_local(command: str, now: datetime | None, respect_throttle: bool) -> dict[str, Any]:
    settings = get_settings()
    store = create_rental_store(backend=settings.rental_store_backend, database_url=settings.database_url)
    dispatcher = _build_dispatcher(settings, store)
    if command == "batch":
        report = ReminderBatchOrchestrator(store=store, dispatcher=dispatcher, settings=settings).run(now)
        return {"success": True, "report": report.as_dict()}
    results = QueueDrainProcessor(store=store, dispatcher=dispatcher, settings=settings).drain(
        now,
        respect_throttle=respect_throttle,
    )
    return {"success": True, "results": results.as_dict()}


def _run_remote(command: str, api_base_url: str, now: datetime | None, respect_throttle: bool) -> dict[str, Any]:
    base_url = _resolve_api_base_url(api_base_url)
    cron_secret = os.getenv("CRON_SECRET", "").strip()
    if command == "batch":
        if not cron_secret:
            raise SystemExit("CRON_SECRET is required to call the cron endpoint")
        payload = {"now_override": now.isoformat()} if now else {}
        return _request_json("POST", base_url, "cron/check-reminders", payload=payload, token=cron_secret)
    payload = {"respect_throttle": respect_throttle}
    if now:
        payload["now_override"] = now.isoformat()
    if (now or not respect_throttle) and not cron_secret:
        raise SystemExit("CRON_SECRET is required for --now or --ignore-throttle against a running service")
    return _request_json("POST", base_url, "scheduled/process", payload=payload, token=cron_secret or None)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the rent reminder batch or drain the scheduled reminder queue once.",
    )
    parser.add_argument("command", choices=("batch", "drain"), help="batch: scan all obligations; drain: process queue")
    parser.add_argument(
        "--api-base-url",
        default=None,
        help=(
            "Trigger a running service instead of running in-process. Accepts the host root "
            "(e.g. http://localhost:8000) or the full prefix (http://localhost:8000/api/v1/reminders)."
        ),
    )
    parser.add_argument(
        "--now",
        default=None,
        help="ISO-8601 timestamp to evaluate against instead of the current time.",
    )
    parser.add_argument(
        "--ignore-throttle",
        action="store_true",
        help="drain only: skip the minimum-interval throttle.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    return parser.parse_args()


def main() -> int:
    root_dir = Path(__file__).resolve().parents[1]
    _load_dotenv(root_dir / ".env")
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    now = _parse_now(args.now)
    respect_throttle = not args.ignore_throttle
    if args.api_base_url:
        result = _run_remote(args.command, args.api_base_url, now, respect_throttle)
    else:
        result = _run_local(args.command, now, respect_throttle)
    print(json.dumps(result, indent=2))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
