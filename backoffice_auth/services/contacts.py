from enum import Enum
import re

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^[+]?[0-9\s\-()]{7,15}$")
PHONE_DIGITS_PATTERN = re.compile(r"^[+]?[0-9]{7,15}$")
_PHONE_PUNCTUATION = re.compile(r"[\s\-()]")
# RFC 5321 path limit; fits the contact columns.
MAX_EMAIL_LENGTH = 254


class ContactType(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    UNKNOWN = "UNKNOWN"


def is_email(contact: str | None) -> bool:
    if contact is None:
        return False
    value = contact.strip()
    return len(value) <= MAX_EMAIL_LENGTH and EMAIL_PATTERN.match(value) is not None


def is_phone(contact: str | None) -> bool:
    if contact is None:
        return False
    compact = _PHONE_PUNCTUATION.sub("", contact)
    return (
        PHONE_PATTERN.match(contact.strip()) is not None
        and PHONE_DIGITS_PATTERN.match(compact) is not None
    )


def classify(contact: str | None) -> ContactType:
    if is_email(contact):
        return ContactType.EMAIL
    if is_phone(contact):
        return ContactType.PHONE
    return ContactType.UNKNOWN


def to_e164(compact: str, default_country_code: str | None) -> str:
    """Qualify a compact phone number with the default country code.

    Numbers that already carry ``+`` are kept. ``00`` is read as the
    international prefix. A bare number that already starts with the
    default country code digits is taken as international.
    """
    if compact.startswith("+"):
        return compact
    if compact.startswith("00"):
        return f"+{compact[2:]}"
    country_digits = re.sub(r"\D", "", default_country_code or "")
    if not country_digits:
        return compact
    if compact.startswith(country_digits):
        return f"+{compact}"
    return f"+{country_digits}{compact}"


def normalize_contact(
    contact: str, contact_type: ContactType, default_country_code: str | None = None
) -> str:
    """Return the form under which a contact is stored and looked up."""
    if contact_type is ContactType.EMAIL:
        return contact.strip().lower()
    if contact_type is ContactType.PHONE:
        return to_e164(_PHONE_PUNCTUATION.sub("", contact), default_country_code)
    raise ValueError(f"Cannot normalize unrecognized contact: {contact!r}")
