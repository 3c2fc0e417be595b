"""Database-layer exceptions."""


class RetryExhaustedError(Exception):
    """Raised when a unit of work kept failing with transient conflicts."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Transaction failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
