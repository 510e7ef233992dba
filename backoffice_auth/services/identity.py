from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Optional, Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.orm import sessionmaker

from backoffice_auth.database import session_scope
from backoffice_auth.errors import NotFoundError
from backoffice_auth.models.identity import (
    AccountTypeEntry,
    AuthEntry,
    AuthRoleEntry,
    RoleEntry,
)
from backoffice_auth.services.contacts import ContactType, classify, normalize_contact

LOGGER = logging.getLogger(__name__)

BACK_OFFICE = "BACK_OFFICE"
CORPORATE = "CORPORATE"

ADMIN = "ADMIN"
USER = "USER"
AGENT = "AGENT"
MANAGER = "MANAGER"

ACCOUNT_TYPES = {
    1: (BACK_OFFICE, "Back office staff"),
    2: (CORPORATE, "Corporate users"),
}
ROLES = {
    1: (ADMIN, "Administrator"),
    2: (USER, "Regular user"),
    3: (AGENT, "Sales agent"),
    4: (MANAGER, "Manager"),
}


@dataclass(frozen=True)
class Role:
    id: int
    name: str


@dataclass(frozen=True)
class Identity:
    """An authenticated principal: one account type and an ordered role list.

    ``roles`` keeps the order in which roles were assigned; the first one is
    the primary role.
    """

    id: int
    email: str
    contact: Optional[str]
    username: str
    account_type_id: int
    account_type: str
    roles: tuple[Role, ...] = ()
    active: bool = True

    @property
    def role_ids(self) -> list[int]:
        return [role.id for role in self.roles]

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]

    @property
    def primary_role_id(self) -> Optional[int]:
        return self.roles[0].id if self.roles else None


@dataclass(frozen=True)
class IdentityFlags:
    is_back_office: bool
    is_corporate: bool
    is_admin: bool
    is_agent: bool
    is_manager: bool

    @property
    def is_staff(self) -> bool:
        return self.is_back_office or self.is_admin


def derive_flags(identity: Identity) -> IdentityFlags:
    account_type = identity.account_type.upper()
    role_names = {name.upper() for name in identity.role_names}
    return IdentityFlags(
        is_back_office=account_type == BACK_OFFICE,
        is_corporate=account_type == CORPORATE,
        is_admin=ADMIN in role_names,
        is_agent=AGENT in role_names,
        is_manager=MANAGER in role_names,
    )


class IdentityResolver(Protocol):
    def find_identity(self, contact_or_email: str) -> Optional[Identity]: ...

    def set_password(self, identity_id: int, password_hash: str) -> None: ...


def _to_identity(entry: AuthEntry) -> Identity:
    return Identity(
        id=entry.id,
        email=entry.email,
        contact=entry.contact,
        username=entry.username,
        account_type_id=entry.account_type_id,
        account_type=entry.account_type.type,
        roles=tuple(
            Role(id=link.role.id, name=link.role.role) for link in entry.auth_roles
        ),
        active=bool(entry.active),
    )


def _stored_contact(
    contact: Optional[str], default_country_code: Optional[str]
) -> Optional[str]:
    if not contact:
        return None
    if classify(contact) is not ContactType.PHONE:
        raise ValueError(f"Contact must be a phone number: {contact!r}")
    return normalize_contact(contact, ContactType.PHONE, default_country_code)


class SqlIdentityResolver:
    """Reads identities from the account tables owned by the CRUD modules.

    Phone contacts are stored and looked up in E.164 form, qualified with
    ``default_country_code`` when written without one.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        default_country_code: Optional[str] = None,
    ) -> None:
        self._session_factory = session_factory
        self._default_country_code = default_country_code

    def find_identity(self, contact_or_email: str) -> Optional[Identity]:
        key = contact_or_email.strip()
        contact_type = classify(key)
        if contact_type is not ContactType.UNKNOWN:
            key = normalize_contact(key, contact_type, self._default_country_code)
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                select(AuthEntry).where(
                    or_(AuthEntry.email == key, AuthEntry.contact == key)
                )
            ).unique().scalar_one_or_none()
            if entry is None:
                return None
            return _to_identity(entry)

    def set_password(self, identity_id: int, password_hash: str) -> None:
        with session_scope(self._session_factory) as session:
            updated = session.execute(
                update(AuthEntry)
                .where(AuthEntry.id == identity_id)
                .values(password_hash=password_hash)
                .execution_options(synchronize_session=False)
            ).rowcount
        if updated != 1:
            raise NotFoundError()
        LOGGER.info("Password updated identity=%s", identity_id)

    def ensure_reference_data(self) -> None:
        with session_scope(self._session_factory) as session:
            for type_id, (name, description) in ACCOUNT_TYPES.items():
                if session.get(AccountTypeEntry, type_id) is None:
                    session.add(
                        AccountTypeEntry(id=type_id, type=name, description=description)
                    )
            for role_id, (name, description) in ROLES.items():
                if session.get(RoleEntry, role_id) is None:
                    session.add(RoleEntry(id=role_id, role=name, description=description))

    def create_identity(
        self,
        *,
        email: str,
        username: str,
        account_type: str,
        roles: list[str],
        contact: Optional[str] = None,
        active: bool = True,
    ) -> Identity:
        with session_scope(self._session_factory) as session:
            type_entry = session.execute(
                select(AccountTypeEntry).where(AccountTypeEntry.type == account_type)
            ).scalar_one_or_none()
            if type_entry is None:
                raise ValueError(f"Unknown account type: {account_type}")
            entry = AuthEntry(
                email=email.strip().lower(),
                contact=_stored_contact(contact, self._default_country_code),
                username=username,
                account_type_id=type_entry.id,
                active=active,
                created_at=datetime.now(timezone.utc),
            )
            for name in roles:
                role_entry = session.execute(
                    select(RoleEntry).where(RoleEntry.role == name)
                ).scalar_one_or_none()
                if role_entry is None:
                    raise ValueError(f"Unknown role: {name}")
                entry.auth_roles.append(AuthRoleEntry(role=role_entry))
            entry.account_type = type_entry
            session.add(entry)
            session.flush()
            return _to_identity(entry)

    def ensure_seed_identity(
        self, email: str, username: str, contact: Optional[str] = None
    ) -> Optional[Identity]:
        if not email:
            return None
        existing = self.find_identity(email)
        if existing is not None:
            return existing
        LOGGER.info("Seeding back office administrator email=%s", email)
        return self.create_identity(
            email=email,
            username=username,
            account_type=BACK_OFFICE,
            roles=[ADMIN],
            contact=contact or None,
        )
