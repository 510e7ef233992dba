"""Error taxonomy shared by the authentication services.

Every error carries a stable ``code`` that the HTTP layer exposes and a
public ``message``. The finer-grained cause of a failure only goes to the
log, never into the error itself.
"""


class AuthError(Exception):
    code = "AUTH_ERROR"
    default_message = "Authentication error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class DeliveryError(AuthError):
    code = "DELIVERY_FAILED"
    default_message = "Failed to deliver the verification code"


class AuthenticationError(AuthError):
    code = "INVALID_OR_EXPIRED_OTP"
    default_message = "Invalid or expired OTP"


class NotFoundError(AuthError):
    code = "NOT_FOUND"
    default_message = "Identity not found"


class ConflictError(AuthError):
    code = "OTP_ISSUE_CONFLICT"
    default_message = "Another code is being issued for this contact; try again"
