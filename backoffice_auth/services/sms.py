from __future__ import annotations

import base64
import logging
import re
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backoffice_auth.config import Settings
from backoffice_auth.errors import DeliveryError
from backoffice_auth.services.contacts import to_e164

LOGGER = logging.getLogger(__name__)

TWILIO_MESSAGES_ENDPOINT = (
    "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"
)


class SmsSendError(DeliveryError):
    pass


def build_sms_body(code: str, purpose: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your verification code is {code}."
        f" It expires in {minutes} minute(s)."
        f" Requested for {purpose_label(purpose)}."
    )


def purpose_label(purpose: str) -> str:
    if purpose == "BACKOFFICE_LOGIN":
        return "back office login"
    if purpose.endswith("LOGIN"):
        return "login"
    return purpose.replace("_", " ").lower()


class TwilioSmsSender:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, to_phone: str, code: str, purpose: str) -> None:
        settings = self._settings
        account_sid = settings.twilio_account_sid
        auth_token = settings.twilio_auth_token
        if not account_sid or not auth_token or not settings.twilio_phone_number:
            raise SmsSendError("Twilio is not configured")

        to_number = self.normalize_e164(to_phone)
        from_number = self.normalize_e164(settings.twilio_phone_number)
        body = build_sms_body(code, purpose, settings.otp_ttl_seconds)
        payload = urlencode({"To": to_number, "From": from_number, "Body": body})
        credentials = base64.b64encode(
            f"{account_sid}:{auth_token}".encode("utf-8")
        ).decode("ascii")
        request = Request(
            TWILIO_MESSAGES_ENDPOINT.format(account_sid=account_sid),
            data=payload.encode("utf-8"),
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        LOGGER.info("Sending OTP SMS to=%s purpose=%s", to_number, purpose)
        try:
            with urlopen(request, timeout=settings.dispatch_timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Twilio API error to=%s response=%s", to_number, error_body)
            raise SmsSendError("Failed to send OTP SMS") from exc
        except (URLError, TimeoutError) as exc:
            LOGGER.error("Twilio API unreachable to=%s error=%s", to_number, exc)
            raise SmsSendError("Failed to reach Twilio API") from exc

    def normalize_e164(self, phone_number: str) -> str:
        raw = phone_number.strip()
        digits = re.sub(r"\D", "", raw)
        if not digits:
            raise SmsSendError("Phone number is missing")
        default_code = self._settings.default_country_code
        if raw.startswith("+"):
            number = f"+{digits}"
        elif re.sub(r"\D", "", default_code):
            number = to_e164(digits, default_code)
        else:
            raise SmsSendError("Default country code is not configured")
        if len(number) - 1 < 8 or len(number) - 1 > 15:
            raise SmsSendError("Phone number must include a valid country code")
        return number
