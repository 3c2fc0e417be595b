"""Authentication schemas (DTOs)."""

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.features.user.models import UserRole
from src.shared.validators.password import validate_no_whitespace, validate_password_strength


# Request schemas
class RegisterRequest(BaseModel):
    """Registration request.

    Note: Uses email-validator library via Pydantic's EmailStr for RFC 5322 compliant email validation.
    """

    name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    username: str = Field(..., min_length=4, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password (minimum 8 characters, must include uppercase, lowercase, and digit)")
    confirm_password: str = Field(..., min_length=8)
    role: UserRole = UserRole.CUSTOMER
    phone: str | None = Field(None, max_length=30)
    business_code: str | None = Field(None, max_length=50)

    @field_validator("name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("username")
    @classmethod
    def username_without_spaces(cls, value: str) -> str:
        return validate_no_whitespace(value, "Username")

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    """Login with either username or email in a single field."""

    username_or_email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("username_or_email", mode="before")
    @classmethod
    def strip_identifier(cls, value):
        return value.strip() if isinstance(value, str) else value


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    confirm_new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class ForgotPasswordRequest(BaseModel):
    """Forgot password request."""

    email: EmailStr

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class ResetPasswordRequest(BaseModel):
    """Reset password with the token sent by email."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)
    confirm_new_password: str = Field(..., min_length=8)

    @field_validator("token", mode="before")
    @classmethod
    def strip_token(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


# Response schemas
class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class MessageResponse(BaseModel):
    """Generic acknowledgment."""

    message: str
