"""Authentication exceptions.

Two families live here:

- The error taxonomy that leaves the core (``AuthCoreError`` and subclasses).
  Each class carries the HTTP status and machine-readable code the
  transport boundary renders, plus a deliberately generic public message.
- Ledger and codec errors raised by the lower layers. The session lifecycle
  manager reclassifies them and they never reach a caller.
"""

from uuid import UUID

from fastapi import status

GENERIC_STORAGE_MESSAGE = "Service temporarily unavailable, try again later"


class AuthCoreError(Exception):
    """Base class for every failure returned by the core."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "error"
    public_message: str = "Request failed"

    def __init__(self, detail: str | None = None):
        # detail is for logs; public_message is what callers see
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class ValidationFailure(AuthCoreError):
    """Client-correctable request failure."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"
    public_message = "Invalid request"


class PasswordMismatch(ValidationFailure):
    """Raised when a password and its confirmation differ."""

    public_message = "Passwords do not match"


class AuthFailure(AuthCoreError):
    """Authentication failed. Always generic to the caller."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "unauthorized"
    public_message = "Invalid credentials"


class InvalidCredentials(AuthFailure):
    """Raised for an unknown identifier or a wrong password alike."""


class InvalidToken(AuthFailure):
    """Raised when a presented token is unknown, expired, revoked or malformed."""

    public_message = "Invalid or expired token"


class TokenReuseDetected(InvalidToken):
    """Raised when an already rotated or revoked refresh token is presented again."""


class ConflictFailure(AuthCoreError):
    """Raised when a unique identifier is already taken (no field-level detail)."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "conflict"
    public_message = "Identifier already in use"


class TransientStorageFailure(AuthCoreError):
    """Storage kept reporting conflicts after every retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "storage_busy"
    public_message = GENERIC_STORAGE_MESSAGE


class PermanentStorageFailure(AuthCoreError):
    """Storage failed in a way retrying cannot fix (or with an unknown outcome)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "storage_unavailable"
    public_message = GENERIC_STORAGE_MESSAGE


# Ledger errors (internal)


class LedgerError(Exception):
    """Base class for refresh/reset ledger failures."""

    reason: str = "invalid"

    def __init__(self, user_id: int | None = None, lineage_id: UUID | None = None):
        super().__init__(self.reason)
        self.user_id = user_id
        self.lineage_id = lineage_id


class TokenNotFound(LedgerError):
    reason = "not_found"


class TokenAlreadyUsed(LedgerError):
    """The token was already redeemed (rotated or consumed)."""

    reason = "already_used"


class TokenExpired(LedgerError):
    reason = "expired"


class TokenRevoked(LedgerError):
    reason = "revoked"


# Access token codec errors (internal)


class AccessTokenError(Exception):
    """Base class for access token verification failures."""


class AccessTokenExpired(AccessTokenError):
    pass


class AccessTokenInvalidSignature(AccessTokenError):
    pass


class AccessTokenMalformed(AccessTokenError):
    pass
