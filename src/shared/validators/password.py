"""Password validation functions."""

from src.features.auth.exceptions import PasswordMismatch


def validate_password_strength(password: str) -> str:
    """Validate password strength requirements.

    Requirements:
    - At least 8 characters (should be enforced by Field min_length)
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)

    Args:
        password: Password string to validate

    Returns:
        The validated password string

    Raises:
        ValueError: If password doesn't meet strength requirements

    Examples:
        >>> validate_password_strength("SecurePass123")
        'SecurePass123'
        >>> validate_password_strength("weakpass")
        Traceback (most recent call last):
        ...
        ValueError: Password must contain at least one uppercase letter

    """
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one digit")
    return password


def validate_no_whitespace(value: str, field: str = "Value") -> str:
    """Reject values containing any whitespace character."""
    if any(c.isspace() for c in value):
        raise ValueError(f"{field} cannot contain spaces")
    return value


def ensure_passwords_match(password: str, confirmation: str) -> None:
    """Business rule check, re-verified by the core even after shape validation.

    Raises:
        PasswordMismatch: If the two values differ

    """
    if password != confirmation:
        raise PasswordMismatch()
