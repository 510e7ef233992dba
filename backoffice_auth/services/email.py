from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backoffice_auth.config import Settings
from backoffice_auth.errors import DeliveryError
from backoffice_auth.services.sms import purpose_label

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"


class EmailSendError(DeliveryError):
    pass


def build_email_body(code: str, purpose: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your verification code is {code}.\n\n"
        f"It expires in {minutes} minute(s).\n"
        f"Requested for {purpose_label(purpose)}.\n\n"
        "If you did not request this code, you can ignore this email."
    )


def build_raw_message(sender: str, recipient: str, subject: str, body: str) -> str:
    message = "\r\n".join(
        [
            f"From: {sender}",
            f"To: {recipient}",
            f"Subject: {subject}",
            "MIME-Version: 1.0",
            "Content-Type: text/plain; charset=utf-8",
            "",
            body,
        ]
    )
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


class GmailSender:
    """Sends codes through the Gmail API using a stored OAuth refresh token."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, to_email: str, code: str, purpose: str) -> None:
        settings = self._settings
        if not settings.otp_email_sender:
            raise EmailSendError("OTP email sender is not configured")

        body = build_email_body(code, purpose, settings.otp_ttl_seconds)
        raw_message = build_raw_message(
            settings.otp_email_sender, to_email, settings.otp_email_subject, body
        )
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=json.dumps({"raw": raw_message}).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._access_token()}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        LOGGER.info("Sending OTP email to=%s purpose=%s", to_email, purpose)
        self._call(request, "Failed to send OTP email")

    def _access_token(self) -> str:
        token_path = self._path(self._settings.gmail_token_file, "token.json")
        token_data = _load_json(token_path)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")
        client_id, client_secret = self._client_details(token_data)
        payload = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")
        request = Request(
            token_data.get("token_uri") or GOOGLE_TOKEN_ENDPOINT,
            data=payload,
            method="POST",
        )
        data = json.loads(self._call(request, "Failed to refresh Gmail token"))
        access_token = data.get("access_token")
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")

        expires_in = int(data.get("expires_in", 3600))
        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        token_path.write_text(json.dumps(token_data), encoding="utf-8")
        return access_token

    def _client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret

        credentials = _load_json(
            self._path(self._settings.gmail_credentials_file, "credentials.json")
        )
        installed = credentials.get("installed", {})
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise EmailSendError("Gmail client credentials are missing")
        return client_id, client_secret

    def _call(self, request: Request, failure: str) -> str:
        try:
            with urlopen(request, timeout=self._settings.dispatch_timeout_seconds) as response:
                return response.read().decode("utf-8")
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error: %s", error_body)
            raise EmailSendError(failure) from exc
        except (URLError, TimeoutError) as exc:
            LOGGER.error("Gmail API unreachable: %s", exc)
            raise EmailSendError(failure) from exc

    @staticmethod
    def _path(configured: str, default_name: str) -> Path:
        if configured:
            return Path(configured)
        return Path.cwd() / "credentials" / default_name


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
