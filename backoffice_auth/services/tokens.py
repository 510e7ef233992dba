from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import jwt

from backoffice_auth.config import Settings
from backoffice_auth.services.identity import Identity, derive_flags
from backoffice_auth.services.otp import utcnow

ACCESS_TOKEN_TYPE = "access"
_REQUIRED_CLAIMS = ["sub", "iat", "exp"]


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class SessionClaims:
    id: int
    email: str
    contact: Optional[str]
    username: str
    role_id: Optional[int]
    role_ids: list[int]
    account_type_id: int
    account_type: str
    is_back_office: bool
    is_corporate: bool
    is_admin: bool
    is_agent: bool
    is_manager: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: SessionClaims
    expires_at: datetime
    expires_in_seconds: int


def build_claims(identity: Identity) -> SessionClaims:
    flags = derive_flags(identity)
    return SessionClaims(
        id=identity.id,
        email=identity.email,
        contact=identity.contact,
        username=identity.username,
        role_id=identity.primary_role_id,
        role_ids=identity.role_ids,
        account_type_id=identity.account_type_id,
        account_type=identity.account_type,
        is_back_office=flags.is_back_office,
        is_corporate=flags.is_corporate,
        is_admin=flags.is_admin,
        is_agent=flags.is_agent,
        is_manager=flags.is_manager,
    )


class TokenIssuer:
    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow) -> None:
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._ttl_seconds = settings.access_token_ttl_seconds
        self._clock = clock

    def issue(self, identity: Identity) -> IssuedToken:
        if not self._secret:
            raise TokenError("JWT secret is not configured")
        claims = build_claims(identity)
        now = self._clock()
        expires_at = now + timedelta(seconds=self._ttl_seconds)
        payload = {
            **claims.to_dict(),
            "sub": str(identity.id),
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedToken(
            token=token,
            claims=claims,
            expires_at=expires_at,
            expires_in_seconds=self._ttl_seconds,
        )

    def decode(self, token: str) -> SessionClaims:
        payload = self._decode_token(token)
        try:
            return SessionClaims(
                id=int(payload["id"]),
                email=payload["email"],
                contact=payload.get("contact"),
                username=payload["username"],
                role_id=payload.get("role_id"),
                role_ids=[int(role_id) for role_id in payload.get("role_ids", [])],
                account_type_id=int(payload["account_type_id"]),
                account_type=payload["account_type"],
                is_back_office=bool(payload["is_back_office"]),
                is_corporate=bool(payload["is_corporate"]),
                is_admin=bool(payload["is_admin"]),
                is_agent=bool(payload["is_agent"]),
                is_manager=bool(payload["is_manager"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenError("Token is missing identity claims") from exc

    def _decode_token(self, token: str) -> dict:
        if not token:
            raise TokenError("Token is missing")
        if not self._secret:
            raise TokenError("JWT secret is not configured")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Invalid token") from exc
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenError("Invalid token type")
        if payload.get("sub") != str(payload.get("id")):
            raise TokenError("Token subject does not match identity")
        return payload
