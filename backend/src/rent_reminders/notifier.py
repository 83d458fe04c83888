from __future__ import annotations

import base64
import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

ContactChannel = Literal["email", "sms"]


@dataclass(frozen=True)
class EmailResult:
    success: bool
    attempted_at: datetime
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SmsResult:
    success: bool
    attempted_at: datetime
    message_id: str | None = None


class SmsDeliveryError(Exception):
    """Raised when the SMS gateway rejects or cannot accept a message."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class EmailSender(Protocol):
    def send_email(self, to: str, subject: str, html_body: str) -> EmailResult: ...


class SmsSender(Protocol):
    def send_sms(self, phone: str, text: str) -> SmsResult: ...


@dataclass(frozen=True)
class OutboxItem:
    channel: ContactChannel
    target: str
    subject: str
    body: str
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class StubEmailSender:
    """Records outgoing email instead of delivering it."""

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self.outbox: list[OutboxItem] = []

    def send_email(self, to: str, subject: str, html_body: str) -> EmailResult:
        attempted_at = datetime.now(timezone.utc)
        if not self._enabled:
            return EmailResult(success=False, attempted_at=attempted_at, error="notifier_disabled")
        if "fail" in to.lower():
            return EmailResult(success=False, attempted_at=attempted_at, error="stub_delivery_failed")
        self.outbox.append(OutboxItem(channel="email", target=to, subject=subject, body=html_body))
        return EmailResult(
            success=True,
            attempted_at=attempted_at,
            message_id=f"stub-email-{len(self.outbox)}",
        )


class StubSmsSender:
    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self.outbox: list[OutboxItem] = []

    def send_sms(self, phone: str, text: str) -> SmsResult:
        attempted_at = datetime.now(timezone.utc)
        if not self._enabled:
            raise SmsDeliveryError("notifier_disabled", "SMS delivery is disabled")
        self.outbox.append(OutboxItem(channel="sms", target=phone, subject="", body=text))
        return SmsResult(success=True, attempted_at=attempted_at, message_id=f"stub-sms-{len(self.outbox)}")


class _HttpSendError(Exception):
    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def _post_json(url: str, body: dict[str, Any], headers: dict[str, str], timeout_seconds: int) -> dict[str, Any]:
    request = urllib.request.Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={"Content-Type": "application/json", "Accept": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raise _HttpSendError(f"http_{exc.code}", f"HTTP {exc.code}: {exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise _HttpSendError("connection_error", f"Connection error: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise _HttpSendError("timeout", f"Request timed out: {exc}") from exc
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise _HttpSendError("invalid_response", "Provider returned a non-JSON body") from exc
    return parsed if isinstance(parsed, dict) else {}


class BrevoEmailSender:
    """Transactional email through the Brevo SMTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        sender_email: str,
        sender_name: str,
        base_url: str = "https://api.brevo.com",
        timeout_seconds: int = 10,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must not be empty")
        if not sender_email.strip():
            raise ValueError("sender_email must not be empty")
        self._api_key = api_key.strip()
        self._sender = {"email": sender_email.strip(), "name": sender_name.strip() or sender_email.strip()}
        self._base_url = base_url.strip().rstrip("/")
        self._timeout_seconds = timeout_seconds

    def send_email(self, to: str, subject: str, html_body: str) -> EmailResult:
        attempted_at = datetime.now(timezone.utc)
        body = {
            "sender": self._sender,
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html_body,
        }
        try:
            response = _post_json(
                f"{self._base_url}/v3/smtp/email",
                body,
                {"api-key": self._api_key},
                self._timeout_seconds,
            )
        except _HttpSendError as exc:
            masked = mask_contact_target(to, "email")
            return EmailResult(
                success=False,
                attempted_at=attempted_at,
                error=f"{exc.error_code}: {exc.message} (recipient: {masked})",
            )
        message_id = response.get("messageId")
        return EmailResult(
            success=True,
            attempted_at=attempted_at,
            message_id=str(message_id) if message_id else None,
        )


class SmsGatewaySender:
    """SMS through an Android SMS gateway using its 3rd-party REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        password: str,
        timeout_seconds: int = 10,
        ttl_seconds: int = 3600,
    ) -> None:
        stripped_url = base_url.strip().rstrip("/")
        if not stripped_url:
            raise ValueError("base_url must not be empty")
        if not username.strip() or not password.strip():
            raise ValueError("username and password must not be empty")
        token = base64.b64encode(f"{username.strip()}:{password.strip()}".encode("utf-8")).decode("ascii")
        self._base_url = stripped_url
        self._auth_header = f"Basic {token}"
        self._timeout_seconds = timeout_seconds
        self._ttl_seconds = ttl_seconds

    def send_sms(self, phone: str, text: str) -> SmsResult:
        attempted_at = datetime.now(timezone.utc)
        body = {
            "textMessage": {"text": text},
            "phoneNumbers": [phone],
            "ttl": self._ttl_seconds,
            "withDeliveryReport": True,
        }
        try:
            response = _post_json(
                f"{self._base_url}/3rdparty/v1/messages",
                body,
                {"Authorization": self._auth_header},
                self._timeout_seconds,
            )
        except _HttpSendError as exc:
            raise SmsDeliveryError(
                exc.error_code,
                f"{exc.message} (recipient: {mask_contact_target(phone, 'sms')})",
            ) from exc
        message_id = response.get("id")
        return SmsResult(success=True, attempted_at=attempted_at, message_id=str(message_id) if message_id else None)


def mask_contact_target(contact_target: str, channel: ContactChannel) -> str:
    normalized = contact_target.strip()
    if not normalized:
        return "***"

    if channel == "email" and "@" in normalized:
        local, domain = normalized.split("@", 1)
        if len(local) <= 1:
            return f"*@{domain}"
        return f"{local[0]}***@{domain}"

    if channel == "sms":
        digits = "".join(ch for ch in normalized if ch.isdigit())
        if len(digits) >= 4:
            return f"***{digits[-4:]}"

    if len(normalized) <= 4:
        return "*" * len(normalized)

    return f"{normalized[:2]}***{normalized[-2:]}"


def create_email_sender(
    *,
    sender_type: str,
    enabled: bool,
    api_key: str,
    base_url: str,
    from_address: str,
    from_name: str,
    timeout_seconds: int,
) -> EmailSender:
    if sender_type == "brevo" and enabled:
        return BrevoEmailSender(
            api_key=api_key,
            sender_email=from_address,
            sender_name=from_name,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
    return StubEmailSender(enabled=enabled)


def create_sms_sender(
    *,
    sender_type: str,
    enabled: bool,
    base_url: str,
    username: str,
    password: str,
    timeout_seconds: int,
) -> SmsSender:
    if sender_type == "gateway" and enabled:
        return SmsGatewaySender(
            base_url=base_url,
            username=username,
            password=password,
            timeout_seconds=timeout_seconds,
        )
    return StubSmsSender(enabled=enabled)
