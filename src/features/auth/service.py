"""Session lifecycle manager.

Orchestrates registration, login, refresh, logout and the password flows
over the credential store and the two token ledgers. Every storage
interaction runs as a retried unit of work; every lower-layer failure is
reclassified into the error taxonomy in ``exceptions`` before leaving.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import settings
from src.database.exceptions import RetryExhaustedError
from src.database.retry import RetryPolicy, run_in_transaction
from src.features.user.exceptions import UserAlreadyExists, UserNotFound
from src.features.user.models import UserRole
from src.features.user.schemas import UserResponse
from src.features.user.store import CredentialStore, UserCandidate
from src.shared.validators.password import ensure_passwords_match

from .exceptions import (
    AccessTokenError,
    ConflictFailure,
    InvalidCredentials,
    InvalidToken,
    LedgerError,
    PermanentStorageFailure,
    TokenAlreadyUsed,
    TokenReuseDetected,
    TokenRevoked,
    TransientStorageFailure,
)
from .jwt_utils import AccessTokenClaims, create_access_token, decode_access_token, generate_reset_secret
from .ledger import IssuedRefreshToken, RefreshTokenLedger
from .notifications import LoggingPasswordResetNotifier, PasswordResetNotifier
from .passwords import hash_password, verify_against_dummy, verify_password
from .reset_ledger import ResetTokenLedger
from .schemas import MessageResponse, RegisterRequest, TokenResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

FORGOT_PASSWORD_ACK = "If the email is registered, a password reset link has been sent"
PASSWORD_CHANGED_ACK = "Password updated, please log in again"
LOGOUT_ACK = "Successfully logged out"


class SessionLifecycleManager:
    """Credential and session lifecycle operations.

    Holds no locks and no per-user state: exclusivity comes from conditional
    updates and unique constraints in the database, so any number of
    instances and processes can run side by side.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        notifier: PasswordResetNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
        forgot_password_min_duration: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier or LoggingPasswordResetNotifier()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        if forgot_password_min_duration is None:
            forgot_password_min_duration = settings.forgot_password_min_duration_ms / 1000
        self.forgot_password_min_duration = forgot_password_min_duration
        self._pending_notifications: set[asyncio.Task] = set()

    # Registration and login

    async def register(self, data: RegisterRequest) -> UserResponse:
        """Create a user.

        Raises:
            PasswordMismatch: If password and confirmation differ
            ConflictFailure: If username or email is taken (which one is not revealed)

        """
        ensure_passwords_match(data.password, data.confirm_password)

        candidate = UserCandidate(
            name=data.name,
            last_name=data.last_name,
            username=data.username,
            email=data.email,
            hashed_password=hash_password(data.password),
            role=data.role,
            phone=data.phone,
            business_code=data.business_code,
        )

        async def work(session: AsyncSession) -> UserResponse:
            user = await CredentialStore(session).create_user(candidate)
            return UserResponse.model_validate(user)

        try:
            return await self._transaction(work)
        except UserAlreadyExists as err:
            logger.info(f"Registration rejected: {err.field} already in use")
            raise ConflictFailure(err.detail) from err

    async def login(self, username_or_email: str, password: str) -> TokenResponse:
        """Verify credentials and issue an access/refresh token pair.

        Raises:
            InvalidCredentials: For an unknown identifier and a wrong password alike

        """

        async def lookup(session: AsyncSession):
            return await CredentialStore(session).find_by_username_or_email(username_or_email)

        user = await self._transaction(lookup)

        if user is None:
            verify_against_dummy(password)
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials("unknown identifier")

        if not verify_password(password, user.hashed_password):
            logger.info(f"Login failed: wrong password for user id={user.id}")
            raise InvalidCredentials("wrong password")

        async def issue(session: AsyncSession) -> IssuedRefreshToken:
            return await RefreshTokenLedger(session).issue(user.id)

        issued = await self._transaction(issue)
        logger.info(f"User logged in: id={user.id} session={issued.record.lineage_id}")
        return self._token_response(user.id, user.role, issued)

    # Refresh and logout

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Rotate a refresh token and mint an access token for the new lineage member.

        Presenting an already rotated or revoked token revokes its whole lineage.

        Raises:
            TokenReuseDetected: If the token was already rotated or revoked
            InvalidToken: If the token is unknown or expired

        """

        async def work(session: AsyncSession) -> tuple[IssuedRefreshToken, str]:
            issued = await RefreshTokenLedger(session).rotate(refresh_token)
            user = await CredentialStore(session).get_by_id(issued.record.user_id)
            if user is None:
                raise UserNotFound()
            return issued, user.role

        try:
            issued, role = await self._transaction(work)
        except (TokenAlreadyUsed, TokenRevoked) as err:
            logger.warning(
                f"Refresh token reuse detected ({err.reason}): user id={err.user_id} lineage={err.lineage_id}"
            )
            if err.lineage_id is not None:
                revoked = await self._revoke_lineage(err.lineage_id)
                logger.warning(f"Lineage {err.lineage_id} revoked after reuse ({revoked} active token(s))")
            raise TokenReuseDetected(err.reason) from err
        except LedgerError as err:
            logger.info(f"Refresh rejected: {err.reason}")
            raise InvalidToken(err.reason) from err
        except UserNotFound as err:
            logger.info("Refresh rejected: token owner no longer exists")
            raise InvalidToken("owner not found") from err

        return self._token_response(issued.record.user_id, role, issued)

    async def logout(self, refresh_token: str) -> MessageResponse:
        """Revoke the session (lineage) of the presented refresh token.

        Unknown or already revoked tokens get the same acknowledgment.
        """

        async def work(session: AsyncSession):
            return await RefreshTokenLedger(session).revoke_token(refresh_token)

        record = await self._transaction(work)
        if record is not None:
            logger.info(f"User logged out: id={record.user_id} session={record.lineage_id}")
        return MessageResponse(message=LOGOUT_ACK)

    async def logout_all(self, user_id: int) -> int:
        """Revoke every active refresh token of a user. Returns how many were revoked."""
        revoked = await self._revoke_all_for_user(user_id)
        logger.info(f"All sessions revoked for user id={user_id} ({revoked} token(s))")
        return revoked

    async def authenticate(self, access_token: str) -> AccessTokenClaims:
        """Verify an access token.

        Raises:
            InvalidToken: If the token is expired, forged or malformed

        """
        try:
            return decode_access_token(access_token)
        except AccessTokenError as err:
            logger.info(f"Access token rejected: {type(err).__name__}")
            raise InvalidToken(type(err).__name__) from err

    # Password flows

    async def change_password(
        self, user_id: int, current_password: str, new_password: str, confirm_new_password: str
    ) -> MessageResponse:
        """Replace the password of an authenticated user and end all of their sessions.

        Raises:
            InvalidCredentials: If the current password is wrong
            PasswordMismatch: If the new password and its confirmation differ

        """

        async def lookup(session: AsyncSession):
            return await CredentialStore(session).get_by_id(user_id)

        user = await self._transaction(lookup)
        if user is None:
            verify_against_dummy(current_password)
            raise InvalidCredentials("unknown user")
        if not verify_password(current_password, user.hashed_password):
            logger.info(f"Password change rejected: wrong current password for user id={user_id}")
            raise InvalidCredentials("wrong current password")

        ensure_passwords_match(new_password, confirm_new_password)
        new_hash = hash_password(new_password)

        async def work(session: AsyncSession) -> int:
            await CredentialStore(session).update_password_hash(user_id, new_hash)
            return await RefreshTokenLedger(session).revoke_all_for_user(user_id)

        try:
            revoked = await self._transaction(work)
        except UserNotFound as err:
            raise InvalidCredentials("unknown user") from err

        logger.info(f"Password changed for user id={user_id}, {revoked} session token(s) revoked")
        return MessageResponse(message=PASSWORD_CHANGED_ACK)

    async def forgot_password(self, email: str) -> MessageResponse:
        """Start a password reset.

        Registered and unknown emails get the same acknowledgment and the same
        minimum response time. Notification failures never change the outcome.
        """
        started = time.monotonic()
        secret = generate_reset_secret()

        async def work(session: AsyncSession) -> str | None:
            user = await CredentialStore(session).find_by_email(email)
            if user is None:
                return None
            await ResetTokenLedger(session).issue(user.id, secret=secret)
            return user.email

        try:
            recipient = await self._transaction(work)
            if recipient is not None:
                self._dispatch_reset_email(recipient, secret[0])
            else:
                logger.info("Password reset requested for unknown email")
        finally:
            await self._pad_duration(started, self.forgot_password_min_duration)

        return MessageResponse(message=FORGOT_PASSWORD_ACK)

    async def reset_password(self, token: str, new_password: str, confirm_new_password: str) -> MessageResponse:
        """Consume a reset token, set the new password and end all sessions.

        Raises:
            PasswordMismatch: If the new password and its confirmation differ (token is not consumed)
            InvalidToken: If the token is unknown, expired or already used

        """
        ensure_passwords_match(new_password, confirm_new_password)
        new_hash = hash_password(new_password)

        async def work(session: AsyncSession) -> tuple[int, int]:
            user_id = await ResetTokenLedger(session).consume(token)
            await CredentialStore(session).update_password_hash(user_id, new_hash)
            revoked = await RefreshTokenLedger(session).revoke_all_for_user(user_id)
            return user_id, revoked

        try:
            user_id, revoked = await self._transaction(work)
        except LedgerError as err:
            logger.info(f"Password reset rejected: {err.reason}")
            raise InvalidToken(err.reason) from err
        except UserNotFound as err:
            raise InvalidToken("owner not found") from err

        logger.info(f"Password reset for user id={user_id}, {revoked} session token(s) revoked")
        return MessageResponse(message=PASSWORD_CHANGED_ACK)

    # Maintenance

    async def purge_expired_tokens(self) -> tuple[int, int]:
        """Delete expired refresh and reset tokens. Returns (refresh_deleted, reset_deleted)."""

        async def work(session: AsyncSession) -> tuple[int, int]:
            refresh_deleted = await RefreshTokenLedger(session).purge_expired()
            reset_deleted = await ResetTokenLedger(session).purge_expired()
            return refresh_deleted, reset_deleted

        refresh_deleted, reset_deleted = await self._transaction(work)
        logger.info(f"Purged {refresh_deleted} refresh token(s) and {reset_deleted} reset token(s)")
        return refresh_deleted, reset_deleted

    async def wait_for_notifications(self) -> None:
        """Wait for in-flight reset notifications (shutdown and tests)."""
        if self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications))

    # Internals

    async def _transaction(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run a unit of work and reclassify storage failures.

        Domain exceptions raised by the work propagate untouched.
        """
        try:
            return await run_in_transaction(self.session_factory, work, self.retry_policy)
        except RetryExhaustedError as err:
            raise TransientStorageFailure(str(err)) from err
        except TimeoutError as err:
            logger.error("Storage call timed out, outcome unknown")
            raise PermanentStorageFailure("timeout, outcome unknown") from err
        except (SQLAlchemyError, OSError) as err:
            logger.error(f"Storage failure: {err}")
            raise PermanentStorageFailure(str(err)) from err

    async def _revoke_lineage(self, lineage_id: uuid.UUID) -> int:
        async def work(session: AsyncSession) -> int:
            return await RefreshTokenLedger(session).revoke_lineage(lineage_id)

        return await self._transaction(work)

    async def _revoke_all_for_user(self, user_id: int) -> int:
        async def work(session: AsyncSession) -> int:
            return await RefreshTokenLedger(session).revoke_all_for_user(user_id)

        return await self._transaction(work)

    def _token_response(self, user_id: int, role: str, issued: IssuedRefreshToken) -> TokenResponse:
        access_token = create_access_token(user_id, UserRole(role).value, issued.record.lineage_id)
        return TokenResponse(
            access_token=access_token,
            refresh_token=issued.raw_token,
            expires_in=settings.access_token_expire_minutes * 60,
        )

    def _dispatch_reset_email(self, email: str, raw_token: str) -> None:
        task = asyncio.create_task(self._send_reset_email(email, raw_token))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _send_reset_email(self, email: str, raw_token: str) -> None:
        try:
            await self.notifier.send_password_reset_email(email, raw_token)
        except Exception:
            # Delivery is best effort; the caller already got the generic acknowledgment
            logger.exception("Password reset email delivery failed")

    @staticmethod
    async def _pad_duration(started: float, minimum: float) -> None:
        remaining = minimum - (time.monotonic() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
