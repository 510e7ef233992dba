import base64
from dataclasses import replace
from datetime import datetime, timedelta, timezone
import io
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs

import pytest

from backoffice_auth.errors import DeliveryError
from backoffice_auth.services import email, sms
from backoffice_auth.services.contacts import ContactType
from backoffice_auth.services.dispatch import LogChannel, build_dispatcher
from backoffice_auth.services.email import EmailSendError, GmailSender
from backoffice_auth.services.sms import SmsSendError, TwilioSmsSender


class FakeResponse:
    def __init__(self, body: bytes = b"{}") -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class FakeUrlopen:
    """Stands in for ``urlopen``; replays queued responses or errors."""

    def __init__(self, *outcomes) -> None:
        self.calls = []
        self._outcomes = list(outcomes)

    def __call__(self, request, timeout=None):
        self.calls.append((request, timeout))
        outcome = self._outcomes.pop(0) if self._outcomes else FakeResponse()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _http_error(url: str) -> HTTPError:
    return HTTPError(url, 500, "Server Error", None, io.BytesIO(b'{"message": "boom"}'))


TRANSPORT_FAILURES = [
    pytest.param(lambda url: _http_error(url), id="http-error"),
    pytest.param(lambda url: URLError("name resolution failed"), id="url-error"),
    pytest.param(lambda url: TimeoutError("timed out"), id="timeout"),
]


@pytest.fixture()
def twilio_settings(settings):
    return replace(
        settings,
        otp_delivery="live",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-token",
        twilio_phone_number="+15005550006",
        dispatch_timeout_seconds=3.5,
    )


@pytest.fixture()
def gmail_settings(settings, tmp_path):
    token_file = tmp_path / "token.json"
    token_file.write_text(
        json.dumps(
            {
                "token": "cached-token",
                "expiry": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
            }
        ),
        encoding="utf-8",
    )
    return replace(
        settings,
        otp_delivery="live",
        otp_email_sender="noreply@example.com",
        gmail_token_file=str(token_file),
        dispatch_timeout_seconds=4,
    )


def test_twilio_send_posts_message_with_timeout(twilio_settings, monkeypatch):
    fake = FakeUrlopen()
    monkeypatch.setattr(sms, "urlopen", fake)

    TwilioSmsSender(twilio_settings).send("912 345 678", "123456", "LOGIN")

    [(request, timeout)] = fake.calls
    assert timeout == 3.5
    assert request.full_url.endswith("/Accounts/AC123/Messages.json")
    assert request.get_header("Authorization").startswith("Basic ")
    form = parse_qs(request.data.decode("utf-8"))
    assert form["To"] == ["+351912345678"]
    assert form["From"] == ["+15005550006"]
    assert "123456" in form["Body"][0]


@pytest.mark.parametrize("failure", TRANSPORT_FAILURES)
def test_twilio_transport_failures_become_delivery_errors(
    twilio_settings, monkeypatch, failure
):
    fake = FakeUrlopen(failure(sms.TWILIO_MESSAGES_ENDPOINT))
    monkeypatch.setattr(sms, "urlopen", fake)

    with pytest.raises(SmsSendError) as excinfo:
        TwilioSmsSender(twilio_settings).send("+351912345678", "123456", "LOGIN")

    assert isinstance(excinfo.value, DeliveryError)
    assert excinfo.value.code == "DELIVERY_FAILED"


def test_unconfigured_twilio_fails_without_calling_out(settings, monkeypatch):
    fake = FakeUrlopen()
    monkeypatch.setattr(sms, "urlopen", fake)
    unconfigured = replace(settings, twilio_account_sid="", twilio_auth_token="")

    with pytest.raises(SmsSendError, match="not configured"):
        TwilioSmsSender(unconfigured).send("+351912345678", "123456", "LOGIN")
    assert fake.calls == []


@pytest.mark.parametrize(
    "phone, expected",
    [
        ("+351912345678", "+351912345678"),
        ("912 345 678", "+351912345678"),
        ("351912345678", "+351912345678"),
        ("+1 (500) 555-0006", "+15005550006"),
    ],
)
def test_normalize_e164(twilio_settings, phone, expected):
    assert TwilioSmsSender(twilio_settings).normalize_e164(phone) == expected


@pytest.mark.parametrize("phone", ["", "12", "+1234567890123456"])
def test_normalize_e164_rejects_out_of_range_numbers(twilio_settings, phone):
    with pytest.raises(SmsSendError):
        TwilioSmsSender(twilio_settings).normalize_e164(phone)


def test_normalize_e164_needs_country_code_for_national_numbers(twilio_settings):
    sender = TwilioSmsSender(replace(twilio_settings, default_country_code=""))

    assert sender.normalize_e164("+351912345678") == "+351912345678"
    with pytest.raises(SmsSendError, match="country code"):
        sender.normalize_e164("912345678")


def test_gmail_send_uses_cached_token(gmail_settings, monkeypatch):
    fake = FakeUrlopen()
    monkeypatch.setattr(email, "urlopen", fake)

    GmailSender(gmail_settings).send("someone@example.com", "654321", "LOGIN")

    [(request, timeout)] = fake.calls
    assert timeout == 4
    assert request.full_url == email.GMAIL_SEND_ENDPOINT
    assert request.get_header("Authorization") == "Bearer cached-token"
    raw = json.loads(request.data.decode("utf-8"))["raw"]
    message = base64.urlsafe_b64decode(raw).decode("utf-8")
    assert "To: someone@example.com" in message
    assert "654321" in message


def test_gmail_refreshes_expired_token(gmail_settings, monkeypatch):
    token_path = gmail_settings.gmail_token_file
    with open(token_path, "w", encoding="utf-8") as handle:
        json.dump(
            {
                "token": "stale-token",
                "expiry": "2000-01-01T00:00:00Z",
                "refresh_token": "refresh-me",
                "client_id": "client-id",
                "client_secret": "client-secret",
            },
            handle,
        )
    fake = FakeUrlopen(
        FakeResponse(json.dumps({"access_token": "fresh-token", "expires_in": 3600}).encode()),
        FakeResponse(),
    )
    monkeypatch.setattr(email, "urlopen", fake)

    GmailSender(gmail_settings).send("someone@example.com", "654321", "LOGIN")

    refresh, send = fake.calls
    assert refresh[0].full_url == email.GOOGLE_TOKEN_ENDPOINT
    assert parse_qs(refresh[0].data.decode("utf-8"))["refresh_token"] == ["refresh-me"]
    assert send[0].get_header("Authorization") == "Bearer fresh-token"
    with open(token_path, encoding="utf-8") as handle:
        assert json.load(handle)["token"] == "fresh-token"


@pytest.mark.parametrize("failure", TRANSPORT_FAILURES)
def test_gmail_transport_failures_become_delivery_errors(
    gmail_settings, monkeypatch, failure
):
    fake = FakeUrlopen(failure(email.GMAIL_SEND_ENDPOINT))
    monkeypatch.setattr(email, "urlopen", fake)

    with pytest.raises(EmailSendError) as excinfo:
        GmailSender(gmail_settings).send("someone@example.com", "654321", "LOGIN")

    assert isinstance(excinfo.value, DeliveryError)


def test_gmail_without_sender_or_token_file_fails(gmail_settings, tmp_path, monkeypatch):
    fake = FakeUrlopen()
    monkeypatch.setattr(email, "urlopen", fake)

    with pytest.raises(EmailSendError, match="sender"):
        GmailSender(replace(gmail_settings, otp_email_sender="")).send(
            "someone@example.com", "654321", "LOGIN"
        )
    missing = replace(gmail_settings, gmail_token_file=str(tmp_path / "missing.json"))
    with pytest.raises(EmailSendError, match="Missing Gmail file"):
        GmailSender(missing).send("someone@example.com", "654321", "LOGIN")
    assert fake.calls == []


def test_log_delivery_selects_log_channels(settings, caplog):
    dispatcher = build_dispatcher(replace(settings, otp_delivery="log"))

    assert isinstance(dispatcher.channel_for(ContactType.EMAIL), LogChannel)
    assert isinstance(dispatcher.channel_for(ContactType.PHONE), LogChannel)

    with caplog.at_level(logging.WARNING, logger="backoffice_auth.services.dispatch"):
        dispatcher.dispatch("+351912345678", ContactType.PHONE, "246810", "LOGIN")
    assert "246810" in caplog.text


def test_live_delivery_selects_gmail_and_twilio(twilio_settings):
    dispatcher = build_dispatcher(twilio_settings)

    assert isinstance(dispatcher.channel_for(ContactType.EMAIL), GmailSender)
    assert isinstance(dispatcher.channel_for(ContactType.PHONE), TwilioSmsSender)


def test_dispatch_propagates_channel_failure(twilio_settings, monkeypatch):
    monkeypatch.setattr(sms, "urlopen", FakeUrlopen(URLError("down")))
    dispatcher = build_dispatcher(twilio_settings)

    with pytest.raises(DeliveryError):
        dispatcher.dispatch("+351912345678", ContactType.PHONE, "123456", "LOGIN")


def test_unknown_contact_type_has_no_channel(settings):
    dispatcher = build_dispatcher(replace(settings, otp_delivery="log"))

    with pytest.raises(DeliveryError):
        dispatcher.channel_for(ContactType.UNKNOWN)
