"""Password reset notification collaborator."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PasswordResetNotifier(Protocol):
    """Delivers reset tokens to users. Delivery is fire-and-forget for the core."""

    async def send_password_reset_email(self, email: str, raw_token: str) -> None: ...


class LoggingPasswordResetNotifier:
    """Default notifier: records the delivery request without the token."""

    async def send_password_reset_email(self, email: str, raw_token: str) -> None:
        logger.info(f"Password reset email requested for {email}")
