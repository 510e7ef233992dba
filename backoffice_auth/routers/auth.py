import logging

from fastapi import APIRouter, Depends, HTTPException, status

from backoffice_auth.dependencies import get_auth_service, get_current_claims
from backoffice_auth.errors import (
    AuthenticationError,
    AuthError,
    ConflictError,
    DeliveryError,
    ValidationError,
)
from backoffice_auth.schemas.auth import (
    CurrentIdentityResponse,
    ErrorResponse,
    IdentityEcho,
    MessageResponse,
    OtpRequest,
    OtpResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
)
from backoffice_auth.services.auth import AuthService
from backoffice_auth.services.contacts import ContactType
from backoffice_auth.services.flows import LoginFlow
from backoffice_auth.services.tokens import SessionClaims, TokenError

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_FLOW_PREFIXES = {
    LoginFlow.GENERIC: "/login",
    LoginFlow.BACK_OFFICE: "/login/backoffice",
    LoginFlow.USER: "/login/user",
}

_REQUEST_ERRORS = {
    400: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}
_VERIFY_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
}


def _http_error(exc: AuthError) -> HTTPException:
    if isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, DeliveryError):
        status_code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, AuthenticationError):
        status_code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, ConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message},
    )


def _request_otp(
    flow: LoginFlow, payload: OtpRequest, service: AuthService
) -> OtpResponse:
    try:
        issued = service.start_login(flow, payload.contact, payload.purpose)
    except AuthError as exc:
        raise _http_error(exc) from exc
    channel = "email" if issued.contact_type is ContactType.EMAIL else "phone"
    return OtpResponse(
        message=f"OTP sent to your {channel}. Please check and enter the code.",
        channel=issued.contact_type.value,
        expires_in_seconds=issued.expires_in_seconds,
    )


def _verify_otp(
    flow: LoginFlow, payload: OtpVerifyRequest, service: AuthService
) -> OtpVerifyResponse:
    try:
        result = service.login(flow, payload.contact, payload.code, payload.purpose)
    except AuthError as exc:
        raise _http_error(exc) from exc
    except TokenError as exc:
        LOGGER.error("Token issuance failed flow=%s: %s", flow.value, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "TOKEN_ISSUE_FAILED", "message": str(exc)},
        ) from exc
    identity = result.identity
    return OtpVerifyResponse(
        message="OTP verified",
        access_token=result.token.token,
        token_type="bearer",
        expires_in_seconds=result.token.expires_in_seconds,
        user=IdentityEcho(
            id=identity.id,
            email=identity.email,
            contact=identity.contact,
            username=identity.username,
            account_type=identity.account_type,
            roles=identity.role_names,
        ),
    )


def _register_flow(flow: LoginFlow) -> None:
    prefix = _FLOW_PREFIXES[flow]

    def request_otp(
        payload: OtpRequest, service: AuthService = Depends(get_auth_service)
    ) -> OtpResponse:
        return _request_otp(flow, payload, service)

    def resend_otp(
        payload: OtpRequest, service: AuthService = Depends(get_auth_service)
    ) -> OtpResponse:
        # A new code supersedes whatever is outstanding for the contact.
        return _request_otp(flow, payload, service)

    def verify_otp(
        payload: OtpVerifyRequest, service: AuthService = Depends(get_auth_service)
    ) -> OtpVerifyResponse:
        return _verify_otp(flow, payload, service)

    name = flow.name.lower()
    router.add_api_route(
        f"{prefix}/request-otp",
        request_otp,
        methods=["POST"],
        response_model=OtpResponse,
        responses=_REQUEST_ERRORS,
        name=f"{name}_request_otp",
    )
    router.add_api_route(
        f"{prefix}/resend-otp",
        resend_otp,
        methods=["POST"],
        response_model=OtpResponse,
        responses=_REQUEST_ERRORS,
        name=f"{name}_resend_otp",
    )
    router.add_api_route(
        f"{prefix}/verify-otp",
        verify_otp,
        methods=["POST"],
        response_model=OtpVerifyResponse,
        responses=_VERIFY_ERRORS,
        name=f"{name}_verify_otp",
    )


@router.post(
    "/forgot-password", response_model=OtpResponse, responses=_REQUEST_ERRORS
)
def forgot_password(
    payload: PasswordResetRequest, service: AuthService = Depends(get_auth_service)
) -> OtpResponse:
    try:
        issued = service.request_password_reset(payload.contact)
    except AuthError as exc:
        raise _http_error(exc) from exc
    channel = "email" if issued.contact_type is ContactType.EMAIL else "phone"
    return OtpResponse(
        message=f"Recovery code sent to your {channel}. Please check and enter the code.",
        channel=issued.contact_type.value,
        expires_in_seconds=issued.expires_in_seconds,
    )


@router.post(
    "/reset-password", response_model=MessageResponse, responses=_VERIFY_ERRORS
)
def reset_password(
    payload: PasswordResetConfirm, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    try:
        service.reset_password(payload.contact, payload.code, payload.new_password)
    except AuthError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="Password changed. You can now sign in with it.")


for _flow in LoginFlow:
    _register_flow(_flow)


@router.get(
    "/me",
    response_model=CurrentIdentityResponse,
    responses={401: {"model": ErrorResponse}},
)
def current_identity(
    claims: SessionClaims = Depends(get_current_claims),
) -> CurrentIdentityResponse:
    return CurrentIdentityResponse(**claims.to_dict())
