from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from backoffice_auth.config import settings
from backoffice_auth.services.auth import AuthService
from backoffice_auth.services.dispatch import build_dispatcher
from backoffice_auth.services.identity import SqlIdentityResolver
from backoffice_auth.services.otp import OtpStore
from backoffice_auth.services.tokens import SessionClaims, TokenError, TokenIssuer


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService(
        settings=settings,
        store=OtpStore(settings.otp_ttl_seconds, settings.otp_length),
        dispatcher=build_dispatcher(settings),
        identities=SqlIdentityResolver(
            default_country_code=settings.default_country_code
        ),
        tokens=TokenIssuer(settings),
    )


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "INVALID_TOKEN", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_claims(
    authorization: str | None = Header(default=None),
    service: AuthService = Depends(get_auth_service),
) -> SessionClaims:
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid Authorization header")
    try:
        return service.current_identity(token.strip())
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc
