"""Credential store exceptions.

These stay inside the core; the session lifecycle manager reclassifies them
before anything reaches a caller.
"""


class UserStoreException(Exception):
    """Base credential store exception."""

    def __init__(self, detail: str = "User operation failed"):
        super().__init__(detail)
        self.detail = detail


class UserNotFound(UserStoreException):
    """Raised when user is not found."""

    def __init__(self):
        super().__init__(detail="User not found")


class UserAlreadyExists(UserStoreException):
    """Raised when trying to create a user that already exists."""

    def __init__(self, field: str = "user"):
        super().__init__(detail=f"{field.capitalize()} already registered")
        self.field = field


class DuplicateUsername(UserAlreadyExists):
    """Raised when username already exists."""

    def __init__(self):
        super().__init__(field="username")


class DuplicateEmail(UserAlreadyExists):
    """Raised when email already exists."""

    def __init__(self):
        super().__init__(field="email")
