from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone
import itertools

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice_auth.config import Settings
from backoffice_auth.database import Base, build_session_factory
from backoffice_auth.errors import DeliveryError
from backoffice_auth.models import identity as _identity_models  # noqa: F401
from backoffice_auth.models.otp import OtpEntry
from backoffice_auth.services.auth import AuthService
from backoffice_auth.services.dispatch import Dispatcher
from backoffice_auth.services.identity import SqlIdentityResolver
from backoffice_auth.services.otp import OtpStore
from backoffice_auth.services.tokens import TokenIssuer

JWT_SECRET = "test-secret-key-with-at-least-32-bytes!!"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingChannel:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, destination: str, code: str, purpose: str) -> None:
        if self.fail:
            raise DeliveryError("channel down")
        self.sent.append((destination, code, purpose))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        jwt_secret=JWT_SECRET,
        jwt_algorithm="HS256",
        access_token_expire_minutes=15,
        otp_length=6,
        otp_ttl_seconds=300,
        otp_sweep_grace_seconds=60,
        otp_delivery="log",
        default_country_code="+351",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture()
def code_generator():
    counter = itertools.count(100001)

    def generate(length: int) -> str:
        return str(next(counter)).zfill(length)[-length:]

    return generate


@pytest.fixture()
def store(settings: Settings, session_factory, clock, code_generator) -> OtpStore:
    return OtpStore(
        settings.otp_ttl_seconds,
        settings.otp_length,
        session_factory=session_factory,
        clock=clock,
        code_generator=code_generator,
    )


@pytest.fixture()
def email_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def sms_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def identities(session_factory, settings: Settings) -> SqlIdentityResolver:
    resolver = SqlIdentityResolver(
        session_factory, default_country_code=settings.default_country_code
    )
    resolver.ensure_reference_data()
    return resolver


@pytest.fixture()
def service(
    settings: Settings,
    store: OtpStore,
    email_channel: RecordingChannel,
    sms_channel: RecordingChannel,
    identities: SqlIdentityResolver,
) -> AuthService:
    return AuthService(
        settings=settings,
        store=store,
        dispatcher=Dispatcher(email=email_channel, sms=sms_channel),
        identities=identities,
        tokens=TokenIssuer(settings),
    )


@pytest.fixture()
def seeded(identities: SqlIdentityResolver) -> dict:
    return {
        "admin": identities.create_identity(
            email="admin@example.com",
            username="admin",
            account_type="BACK_OFFICE",
            roles=["ADMIN"],
            contact="+351911111110",
        ),
        "agent": identities.create_identity(
            email="agent@example.com",
            username="agent",
            account_type="BACK_OFFICE",
            roles=["AGENT", "USER"],
        ),
        "manager": identities.create_identity(
            email="manager@example.com",
            username="manager",
            account_type="BACK_OFFICE",
            roles=["MANAGER", "AGENT"],
        ),
        "corporate": identities.create_identity(
            email="corp@example.com",
            username="corp",
            account_type="CORPORATE",
            roles=["USER", "MANAGER"],
        ),
        "user": identities.create_identity(
            email="user@example.com",
            username="plain.user",
            account_type="CORPORATE",
            roles=["USER"],
            contact="+351911111111",
        ),
        "inactive": identities.create_identity(
            email="gone@example.com",
            username="gone",
            account_type="CORPORATE",
            roles=["USER"],
            active=False,
        ),
    }


@pytest.fixture()
def otp_rows(session_factory):
    def rows(contact=None, purpose=None, outstanding=False) -> list:
        query = select(OtpEntry).order_by(OtpEntry.id)
        if contact is not None:
            query = query.where(OtpEntry.contact == contact)
        if purpose is not None:
            query = query.where(OtpEntry.purpose == purpose)
        if outstanding:
            query = query.where(OtpEntry.used.is_(False))
        with session_factory() as session:
            return session.execute(query).scalars().all()

    return rows
