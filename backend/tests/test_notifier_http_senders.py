from __future__ import annotations

import base64
import json
import socket
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from rent_reminders.notifier import (
    BrevoEmailSender,
    SmsDeliveryError,
    SmsGatewaySender,
    StubEmailSender,
    StubSmsSender,
    create_email_sender,
    create_sms_sender,
    mask_contact_target,
)


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    """Create a mock HTTP response that works as a context manager."""
    response = MagicMock()
    response.status = status
    response.read.return_value = json.dumps(body).encode("utf-8")
    response.__enter__ = MagicMock(return_value=response)
    response.__exit__ = MagicMock(return_value=False)
    return response


def _brevo() -> BrevoEmailSender:
    return BrevoEmailSender(
        api_key="xkeysib-test-123",
        sender_email="no-reply@easerent.app",
        sender_name="EaseRent",
        base_url="https://api.brevo.test/",
        timeout_seconds=7,
    )


def _gateway() -> SmsGatewaySender:
    return SmsGatewaySender(
        base_url="https://sms.gateway.test",
        username="gw-user",
        password="gw-pass",
        timeout_seconds=5,
    )


@patch("rent_reminders.notifier.urllib.request.urlopen")
def test_brevo_sender_success(mock_urlopen: MagicMock) -> None:
    mock_urlopen.return_value = _mock_response({"messageId": "<brevo-1@smtp>"})

    result = _brevo().send_email("tenant@example.com", "Rent due", "<p>Rent due</p>")

    assert result.success is True
    assert result.message_id == "<brevo-1@smtp>"
    request_arg = mock_urlopen.call_args[0][0]
    assert request_arg.full_url == "https://api.brevo.test/v3/smtp/email"
    assert request_arg.get_header("Api-key") == "xkeysib-test-123"
    assert mock_urlopen.call_args[1]["timeout"] == 7
    sent_body = json.loads(request_arg.data.decode("utf-8"))
    assert sent_body["to"] == [{"email": "tenant@example.com"}]
    assert sent_body["sender"] == {"email": "no-reply@easerent.app", "name": "EaseRent"}
    assert sent_body["subject"] == "Rent due"
    assert sent_body["htmlContent"] == "<p>Rent due</p>"


@patch("rent_reminders.notifier.urllib.request.urlopen")
def test_brevo_sender_http_error_returns_failure(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = urllib.error.HTTPError(
        url="https://api.brevo.test/v3/smtp/email",
        code=401,
        msg="Unauthorized",
        hdrs={},  # type: ignore[arg-type]
        fp=None,
    )

    result = _brevo().send_email("tenant@example.com", "Rent due", "<p>Rent due</p>")

    assert result.success is False
    assert result.error is not None
    assert "http_401" in result.error
    assert "t***@example.com" in result.error
    assert "tenant@example.com" not in result.error


@patch("rent_reminders.notifier.urllib.request.urlopen")
def test_gateway_sender_success(mock_urlopen: MagicMock) -> None:
    mock_urlopen.return_value = _mock_response({"id": "sms-42", "state": "Pending"})

    result = _gateway().send_sms("+639171234567", "EaseRent: Rent due")

    assert result.success is True
    assert result.message_id == "sms-42"
    request_arg = mock_urlopen.call_args[0][0]
    assert request_arg.full_url == "https://sms.gateway.test/3rdparty/v1/messages"
    expected_auth = base64.b64encode(b"gw-user:gw-pass").decode("ascii")
    assert request_arg.get_header("Authorization") == f"Basic {expected_auth}"
    sent_body = json.loads(request_arg.data.decode("utf-8"))
    assert sent_body == {
        "textMessage": {"text": "EaseRent: Rent due"},
        "phoneNumbers": ["+639171234567"],
        "ttl": 3600,
        "withDeliveryReport": True,
    }


@patch("rent_reminders.notifier.urllib.request.urlopen")
def test_gateway_sender_connection_error_raises(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = urllib.error.URLError("Connection refused")

    with pytest.raises(SmsDeliveryError) as exc_info:
        _gateway().send_sms("+639171234567", "EaseRent: Rent due")

    assert exc_info.value.error_code == "connection_error"
    assert "***4567" in str(exc_info.value)


@patch("rent_reminders.notifier.urllib.request.urlopen")
def test_gateway_sender_timeout_raises(mock_urlopen: MagicMock) -> None:
    mock_urlopen.side_effect = socket.timeout("timed out")

    with pytest.raises(SmsDeliveryError) as exc_info:
        _gateway().send_sms("+639171234567", "EaseRent: Rent due")

    assert exc_info.value.error_code == "timeout"


def test_http_senders_reject_missing_credentials() -> None:
    with pytest.raises(ValueError):
        BrevoEmailSender(api_key=" ", sender_email="a@example.com", sender_name="A")
    with pytest.raises(ValueError):
        SmsGatewaySender(base_url="https://sms.gateway.test", username="", password="x")


def test_stub_senders_record_outbox_and_forced_failures() -> None:
    email = StubEmailSender()
    assert email.send_email("tenant@example.com", "Hi", "<p>Hi</p>").success is True
    assert email.send_email("fail@example.com", "Hi", "<p>Hi</p>").success is False
    assert [item.target for item in email.outbox] == ["tenant@example.com"]

    with pytest.raises(SmsDeliveryError):
        StubSmsSender(enabled=False).send_sms("+639171234567", "Hi")


def test_sender_factories_fall_back_to_stub() -> None:
    assert isinstance(
        create_email_sender(
            sender_type="brevo",
            enabled=False,
            api_key="",
            base_url="https://api.brevo.com",
            from_address="no-reply@easerent.app",
            from_name="EaseRent",
            timeout_seconds=10,
        ),
        StubEmailSender,
    )
    assert isinstance(
        create_sms_sender(
            sender_type="gateway",
            enabled=True,
            base_url="https://sms.gateway.test",
            username="u",
            password="p",
            timeout_seconds=10,
        ),
        SmsGatewaySender,
    )


def test_mask_contact_target() -> None:
    assert mask_contact_target("tenant@example.com", "email") == "t***@example.com"
    assert mask_contact_target("a@example.com", "email") == "*@example.com"
    assert mask_contact_target("+639171234567", "sms") == "***4567"
    assert mask_contact_target("  ", "sms") == "***"
