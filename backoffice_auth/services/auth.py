"""Authentication facade.

Each code instance for a (contact, purpose) pair moves through::

    NO_CODE -> CODE_ISSUED -> VERIFIED | EXPIRED | SUPERSEDED

``request_code`` issues a new instance and supersedes the outstanding one,
``verify_code`` moves it to VERIFIED, and expiry is implicit in time.
``login`` adds identity resolution, the flow gate and token issuance on top
of verification. Password reset runs the same machine under the
``PASSWORD_RESET`` purpose and ends in a password write instead of a token.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Optional

from backoffice_auth.config import Settings
from backoffice_auth.errors import (
    AuthenticationError,
    NotFoundError,
    ValidationError,
)
from backoffice_auth.services.contacts import ContactType, classify, normalize_contact
from backoffice_auth.services.dispatch import Dispatcher
from backoffice_auth.services.flows import LoginFlow, admits
from backoffice_auth.services.identity import Identity, IdentityResolver
from backoffice_auth.services.otp import OtpRecord, OtpStore
from backoffice_auth.services.passwords import hash_password, validate_password
from backoffice_auth.services.tokens import IssuedToken, SessionClaims, TokenIssuer

LOGGER = logging.getLogger(__name__)

PURPOSE_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{0,31}$")
PASSWORD_RESET = "PASSWORD_RESET"


@dataclass(frozen=True)
class OtpIssue:
    contact: str
    contact_type: ContactType
    purpose: str
    expires_at: datetime
    expires_in_seconds: int


@dataclass(frozen=True)
class LoginResult:
    identity: Identity
    token: IssuedToken


def normalize_purpose(purpose: Optional[str]) -> str:
    cleaned = (purpose or "").strip().upper()
    if not PURPOSE_PATTERN.match(cleaned):
        raise ValidationError("Invalid OTP purpose", code="INVALID_PURPOSE")
    return cleaned


class AuthService:
    def __init__(
        self,
        settings: Settings,
        store: OtpStore,
        dispatcher: Dispatcher,
        identities: IdentityResolver,
        tokens: TokenIssuer,
    ) -> None:
        self._settings = settings
        self._store = store
        self._dispatcher = dispatcher
        self._identities = identities
        self._tokens = tokens

    def request_code(self, contact: str, purpose: str) -> OtpIssue:
        contact_type, normalized = self._classify(contact)
        clean_purpose = normalize_purpose(purpose)

        record = self._store.issue(normalized, contact_type, clean_purpose)
        # The code is committed before dispatch; a failed send leaves it valid
        # until superseded or expired.
        self._dispatcher.dispatch(normalized, contact_type, record.code, clean_purpose)
        return OtpIssue(
            contact=normalized,
            contact_type=contact_type,
            purpose=clean_purpose,
            expires_at=record.expires_at,
            expires_in_seconds=self._store.ttl_seconds,
        )

    def verify_code(self, contact: str, code: str, purpose: str) -> OtpRecord:
        contact_type = classify(contact)
        clean_purpose = normalize_purpose(purpose)
        if contact_type is ContactType.UNKNOWN:
            LOGGER.info("OTP rejected: unrecognized contact purpose=%s", clean_purpose)
            raise AuthenticationError()
        normalized = normalize_contact(
            contact, contact_type, self._settings.default_country_code
        )
        record = self._store.consume(normalized, code, clean_purpose)
        if record is None:
            raise AuthenticationError()
        return record

    def start_login(
        self, flow: LoginFlow, contact: str, purpose: Optional[str] = None
    ) -> OtpIssue:
        return self.request_code(contact, self._flow_purpose(flow, purpose))

    def login(
        self, flow: LoginFlow, contact: str, code: str, purpose: Optional[str] = None
    ) -> LoginResult:
        record = self.verify_code(contact, code, self._flow_purpose(flow, purpose))
        try:
            identity = self._resolve(record.contact)
        except NotFoundError as exc:
            LOGGER.warning(
                "Login rejected flow=%s contact=%s reason=identity not found",
                flow.value,
                record.contact,
            )
            raise AuthenticationError() from exc
        if not admits(flow, identity):
            LOGGER.warning(
                "Login rejected flow=%s identity=%s account_type=%s roles=%s active=%s",
                flow.value,
                identity.id,
                identity.account_type,
                identity.role_names,
                identity.active,
            )
            raise AuthenticationError()

        token = self._tokens.issue(identity)
        LOGGER.info("Login succeeded flow=%s identity=%s", flow.value, identity.id)
        return LoginResult(identity=identity, token=token)

    def request_password_reset(self, contact: str) -> OtpIssue:
        # Issued for any well-formed contact so the reply never reveals
        # whether an account exists.
        return self.request_code(contact, PASSWORD_RESET)

    def reset_password(self, contact: str, code: str, new_password: str) -> Identity:
        password_hash = hash_password(validate_password(new_password))
        record = self.verify_code(contact, code, PASSWORD_RESET)
        try:
            identity = self._resolve(record.contact)
        except NotFoundError as exc:
            LOGGER.warning(
                "Password reset rejected contact=%s reason=identity not found",
                record.contact,
            )
            raise AuthenticationError() from exc
        if not identity.active:
            LOGGER.warning(
                "Password reset rejected identity=%s reason=inactive", identity.id
            )
            raise AuthenticationError()

        self._identities.set_password(identity.id, password_hash)
        LOGGER.info("Password reset succeeded identity=%s", identity.id)
        return identity

    def current_identity(self, token: str) -> SessionClaims:
        return self._tokens.decode(token)

    def sweep_expired(self) -> int:
        return self._store.sweep_expired(self._settings.otp_sweep_grace_seconds)

    def _classify(self, contact: str) -> tuple[ContactType, str]:
        contact_type = classify(contact)
        if contact_type is ContactType.UNKNOWN:
            raise ValidationError(
                "Contact must be an email address or a phone number",
                code="UNRECOGNIZED_CONTACT",
            )
        return contact_type, normalize_contact(
            contact, contact_type, self._settings.default_country_code
        )

    def _flow_purpose(self, flow: LoginFlow, purpose: Optional[str]) -> str:
        if purpose is None:
            return flow.purpose
        clean_purpose = normalize_purpose(purpose)
        if clean_purpose != flow.purpose:
            raise ValidationError(
                f"Purpose {clean_purpose} is not accepted by the {flow.value} login",
                code="INVALID_PURPOSE",
            )
        return clean_purpose

    def _resolve(self, contact: str) -> Identity:
        identity = self._identities.find_identity(contact)
        if identity is None:
            raise NotFoundError()
        return identity
