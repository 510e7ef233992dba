import logging
from typing import Protocol

from backoffice_auth.config import Settings
from backoffice_auth.errors import DeliveryError
from backoffice_auth.services.contacts import ContactType
from backoffice_auth.services.email import GmailSender
from backoffice_auth.services.sms import TwilioSmsSender

LOGGER = logging.getLogger(__name__)


class Channel(Protocol):
    def send(self, destination: str, code: str, purpose: str) -> None: ...


class LogChannel:
    """Development channel: writes the code to the log instead of sending it."""

    def __init__(self, name: str) -> None:
        self._name = name

    def send(self, destination: str, code: str, purpose: str) -> None:
        LOGGER.warning(
            "OTP delivery disabled channel=%s to=%s purpose=%s code=%s",
            self._name,
            destination,
            purpose,
            code,
        )


class Dispatcher:
    def __init__(self, email: Channel, sms: Channel) -> None:
        self._channels = {ContactType.EMAIL: email, ContactType.PHONE: sms}

    def channel_for(self, contact_type: ContactType) -> Channel:
        channel = self._channels.get(contact_type)
        if channel is None:
            raise DeliveryError(f"No delivery channel for contact type {contact_type}")
        return channel

    def dispatch(
        self, contact: str, contact_type: ContactType, code: str, purpose: str
    ) -> None:
        channel = self.channel_for(contact_type)
        try:
            channel.send(contact, code, purpose)
        except DeliveryError:
            LOGGER.error(
                "OTP delivery failed via %s to=%s purpose=%s",
                contact_type.value,
                contact,
                purpose,
            )
            raise
        LOGGER.info(
            "OTP sent via %s to=%s purpose=%s", contact_type.value, contact, purpose
        )


def build_dispatcher(settings: Settings) -> Dispatcher:
    if settings.otp_delivery == "log":
        return Dispatcher(email=LogChannel("email"), sms=LogChannel("sms"))
    return Dispatcher(email=GmailSender(settings), sms=TwilioSmsSender(settings))
