from typing import Optional

from pydantic import BaseModel, field_validator

# Field shape is checked by the services so that a malformed contact or code
# gets the same typed error as any other bad value, not a framework 422.


class OtpRequest(BaseModel):
    contact: str
    purpose: Optional[str] = None

    @field_validator("contact")
    @classmethod
    def normalize_contact(cls, value: str) -> str:
        return value.strip()


class OtpResponse(BaseModel):
    message: str
    channel: str
    expires_in_seconds: int


class OtpVerifyRequest(OtpRequest):
    code: str

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip()


class PasswordResetRequest(BaseModel):
    contact: str

    @field_validator("contact")
    @classmethod
    def normalize_contact(cls, value: str) -> str:
        return value.strip()


class PasswordResetConfirm(PasswordResetRequest):
    code: str
    new_password: str

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip()


class MessageResponse(BaseModel):
    message: str


class IdentityEcho(BaseModel):
    id: int
    email: str
    contact: Optional[str] = None
    username: str
    account_type: str
    roles: list[str]


class OtpVerifyResponse(BaseModel):
    message: str
    access_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: IdentityEcho


class CurrentIdentityResponse(BaseModel):
    id: int
    email: str
    contact: Optional[str] = None
    username: str
    role_id: Optional[int] = None
    role_ids: list[int]
    account_type_id: int
    account_type: str
    is_back_office: bool
    is_corporate: bool
    is_admin: bool
    is_agent: bool
    is_manager: bool


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorDetail
