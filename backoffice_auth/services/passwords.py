from passlib.context import CryptContext

from backoffice_auth.errors import ValidationError

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def validate_password(password: str) -> str:
    if password is None or not password.strip():
        raise ValidationError("Password is required", code="INVALID_PASSWORD")
    if len(password) < MIN_PASSWORD_LENGTH or len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be between {MIN_PASSWORD_LENGTH} and"
            f" {MAX_PASSWORD_LENGTH} characters",
            code="INVALID_PASSWORD",
        )
    return password


def hash_password(password: str) -> str:
    return pwd_context.hash(password)
