from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
from typing import Callable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from backoffice_auth.database import session_scope
from backoffice_auth.errors import ConflictError
from backoffice_auth.models.otp import OtpEntry
from backoffice_auth.services.contacts import ContactType

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]
CodeGenerator = Callable[[int], str]

ISSUE_ATTEMPTS = 2


@dataclass(frozen=True)
class OtpRecord:
    contact: str
    contact_type: ContactType
    code: str
    purpose: str
    expires_at: datetime
    used: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_numeric_code(length: int) -> str:
    value = secrets.randbelow(10**length)
    return str(value).zfill(length)


def _pair_lock_key(contact: str, purpose: str) -> int:
    digest = hashlib.blake2b(f"{contact}\x00{purpose}".encode("utf-8"), digest_size=8)
    return int.from_bytes(digest.digest(), "big", signed=True)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(entry: OtpEntry) -> OtpRecord:
    return OtpRecord(
        contact=entry.contact,
        contact_type=ContactType(entry.contact_type),
        code=entry.code,
        purpose=entry.purpose,
        expires_at=_as_utc(entry.expires_at),
        used=bool(entry.used),
    )


class OtpStore:
    """Persistent one-time codes.

    Two operations are atomic against the database and carry the security
    invariants: :meth:`issue` supersedes every outstanding code for the
    (contact, purpose) pair in the same transaction that inserts the new one,
    and :meth:`consume` flips ``used`` with a single conditional update so a
    code can be spent exactly once even under concurrent requests.

    On PostgreSQL concurrent issuers of one pair are serialised with a
    transaction-scoped advisory lock. Elsewhere the partial unique index
    rejects the loser of the race, and :meth:`issue` retries it once.
    """

    def __init__(
        self,
        ttl_seconds: int,
        code_length: int,
        session_factory: Optional[sessionmaker] = None,
        clock: Clock = utcnow,
        code_generator: CodeGenerator = generate_numeric_code,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._code_length = code_length
        self._session_factory = session_factory
        self._clock = clock
        self._code_generator = code_generator

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, contact: str, contact_type: ContactType, purpose: str) -> OtpRecord:
        now = self._clock()
        code = self._code_generator(self._code_length)
        expires_at = now + timedelta(seconds=self._ttl_seconds)

        for attempt in range(1, ISSUE_ATTEMPTS + 1):
            try:
                superseded = self._replace_outstanding(
                    contact, contact_type, purpose, code, expires_at, now
                )
                break
            except IntegrityError as exc:
                # A concurrent issue for the pair committed between our
                # supersede and insert; the retry supersedes that one.
                LOGGER.warning(
                    "OTP issue conflict contact=%s purpose=%s attempt=%s",
                    contact,
                    purpose,
                    attempt,
                )
                if attempt == ISSUE_ATTEMPTS:
                    raise ConflictError() from exc

        if superseded:
            LOGGER.info(
                "Superseded %s outstanding OTP(s) contact=%s purpose=%s",
                superseded,
                contact,
                purpose,
            )
        LOGGER.info(
            "Issued OTP contact=%s type=%s purpose=%s expires_at=%s",
            contact,
            contact_type.value,
            purpose,
            expires_at.isoformat(),
        )
        return OtpRecord(
            contact=contact,
            contact_type=contact_type,
            code=code,
            purpose=purpose,
            expires_at=expires_at,
            used=False,
        )

    def _replace_outstanding(
        self,
        contact: str,
        contact_type: ContactType,
        purpose: str,
        code: str,
        expires_at: datetime,
        now: datetime,
    ) -> int:
        with session_scope(self._session_factory) as session:
            if session.get_bind().dialect.name == "postgresql":
                # Serialises issuers of the same pair until commit.
                lock_key = _pair_lock_key(contact, purpose)
                session.execute(select(func.pg_advisory_xact_lock(lock_key)))
            superseded = session.execute(
                update(OtpEntry)
                .where(
                    OtpEntry.contact == contact,
                    OtpEntry.purpose == purpose,
                    OtpEntry.used.is_(False),
                )
                .values(used=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            session.add(
                OtpEntry(
                    contact=contact,
                    contact_type=contact_type.value,
                    code=code,
                    purpose=purpose,
                    expires_at=expires_at,
                    used=False,
                    created_at=now,
                )
            )
        return superseded

    def consume(self, contact: str, code: str, purpose: str) -> Optional[OtpRecord]:
        now = self._clock()
        clean_code = code.strip()
        matches = (
            OtpEntry.contact == contact,
            OtpEntry.code == clean_code,
            OtpEntry.purpose == purpose,
        )

        with session_scope(self._session_factory) as session:
            consumed = session.execute(
                update(OtpEntry)
                .where(*matches, OtpEntry.used.is_(False), OtpEntry.expires_at > now)
                .values(used=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if consumed > 1:
                session.rollback()
                LOGGER.error(
                    "Found %s outstanding OTPs for contact=%s purpose=%s; refusing",
                    consumed,
                    contact,
                    purpose,
                )
                return None
            if consumed == 0:
                self._log_rejection(session, matches, now, contact, purpose)
                return None
            entry = session.execute(
                select(OtpEntry)
                .where(*matches, OtpEntry.used.is_(True))
                .order_by(OtpEntry.id.desc())
                .limit(1)
            ).scalar_one()
            record = _to_record(entry)

        LOGGER.info("Consumed OTP contact=%s purpose=%s", contact, purpose)
        return record

    def sweep_expired(self, grace_seconds: int = 0) -> int:
        cutoff = self._clock() - timedelta(seconds=grace_seconds)
        with session_scope(self._session_factory) as session:
            deleted = session.execute(
                delete(OtpEntry)
                .where(OtpEntry.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount
        if deleted:
            LOGGER.info("Swept %s expired OTP(s)", deleted)
        return deleted

    def _log_rejection(self, session, matches, now, contact: str, purpose: str) -> None:
        entry = session.execute(
            select(OtpEntry).where(*matches).order_by(OtpEntry.id.desc()).limit(1)
        ).scalar_one_or_none()
        if entry is None:
            reason = "no matching code"
        elif entry.used:
            reason = "code already used or superseded"
        elif _as_utc(entry.expires_at) <= now:
            reason = "code expired"
        else:
            reason = "unknown"
        LOGGER.info(
            "OTP rejected contact=%s purpose=%s reason=%s", contact, purpose, reason
        )
