from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Collection, Literal

from .notifier import EmailSender, SmsSender, mask_contact_target
from .phone import normalize_phone
from .store import Profile, RentalStore

logger = logging.getLogger(__name__)

Channel = Literal["email", "sms", "in_app"]
ALL_CHANNELS: frozenset[Channel] = frozenset({"email", "sms", "in_app"})


@dataclass(frozen=True)
class DeliveryTarget:
    user_id: str
    email: str | None = None
    phone: str | None = None
    email_opt_in: bool = True
    sms_opt_in: bool = True


@dataclass(frozen=True)
class ReminderPayload:
    type: str
    subject: str
    html_body: str
    sms_text: str
    in_app_message: str
    link: str | None = None
    reference_id: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    email_ok: bool
    sms_ok: bool
    in_app_ok: bool

    @property
    def any_ok(self) -> bool:
        return self.email_ok or self.sms_ok or self.in_app_ok

    def as_dict(self) -> dict[str, bool]:
        return {"email": self.email_ok, "sms": self.sms_ok, "in_app": self.in_app_ok}


def resolve_delivery_target(user_id: str, profile: Profile | None) -> DeliveryTarget:
    """Build the per-channel addresses for a user from their profile.

    Only a verified phone number is used for SMS. A missing profile still
    yields a target so the in-app channel can be delivered.
    """
    if profile is None:
        return DeliveryTarget(user_id=user_id)
    email = (profile.email or "").strip() or None
    phone = normalize_phone(profile.phone) if profile.phone_verified else None
    return DeliveryTarget(
        user_id=user_id,
        email=email,
        phone=phone,
        email_opt_in=profile.email_opt_in,
        sms_opt_in=profile.sms_opt_in,
    )


class MultiChannelDispatcher:
    def __init__(
        self,
        *,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        store: RentalStore,
        actor_id: str | None = None,
    ) -> None:
        self._email_sender = email_sender
        self._sms_sender = sms_sender
        self._store = store
        self._actor_id = actor_id

    def dispatch(
        self,
        target: DeliveryTarget,
        payload: ReminderPayload,
        *,
        now: datetime | None = None,
        channels: Collection[Channel] = ALL_CHANNELS,
    ) -> DispatchResult:
        """Attempt every requested channel independently.

        Failures are logged and reported per channel; nothing raises. The
        in-app channel writes the notification log entry for ``payload.type``.
        """
        sent_at = now or datetime.now(timezone.utc)
        email_ok = self._send_email(target, payload) if "email" in channels else False
        sms_ok = self._send_sms(target, payload) if "sms" in channels else False
        in_app_ok = self._send_in_app(target, payload, sent_at) if "in_app" in channels else False
        result = DispatchResult(email_ok=email_ok, sms_ok=sms_ok, in_app_ok=in_app_ok)
        logger.info(
            "dispatched %s to user=%s result=%s",
            payload.type,
            target.user_id,
            result.as_dict(),
        )
        return result

    def _send_email(self, target: DeliveryTarget, payload: ReminderPayload) -> bool:
        if not target.email or not target.email_opt_in:
            return False
        masked = mask_contact_target(target.email, "email")
        try:
            result = self._email_sender.send_email(target.email, payload.subject, payload.html_body)
        except Exception:
            logger.exception("email channel raised for %s type=%s", masked, payload.type)
            return False
        if not result.success:
            logger.warning("email channel failed for %s type=%s error=%s", masked, payload.type, result.error)
        return result.success

    def _send_sms(self, target: DeliveryTarget, payload: ReminderPayload) -> bool:
        if not target.phone or not target.sms_opt_in:
            return False
        masked = mask_contact_target(target.phone, "sms")
        try:
            result = self._sms_sender.send_sms(target.phone, payload.sms_text)
        except Exception as exc:
            logger.warning("sms channel failed for %s type=%s error=%s", masked, payload.type, exc)
            return False
        return result.success

    def _send_in_app(self, target: DeliveryTarget, payload: ReminderPayload, sent_at: datetime) -> bool:
        try:
            self._store.insert_notification(
                recipient=target.user_id,
                type=payload.type,
                message=payload.in_app_message,
                created_at=sent_at,
                actor=self._actor_id,
                link=payload.link,
                reference_id=payload.reference_id,
            )
        except Exception:
            logger.exception("in-app channel failed for user=%s type=%s", target.user_id, payload.type)
            return False
        return True
