"""Password reset token ledger."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import utcnow
from src.features.user.models import User

from .exceptions import TokenAlreadyUsed, TokenExpired, TokenNotFound
from .jwt_utils import generate_reset_secret, hash_token
from .models import ResetToken

logger = logging.getLogger(__name__)


class ResetTokenLedger:
    """Single-use reset tokens, at most one live per user."""

    def __init__(self, session: AsyncSession, ttl: timedelta | None = None):
        self.session = session
        self.ttl = ttl or timedelta(minutes=settings.reset_token_expire_minutes)

    async def issue(self, user_id: int, secret: tuple[str, str] | None = None) -> str:
        """Invalidate the user's unused tokens and create a new one.

        Args:
            user_id: Owner of the token
            secret: Optional pre-generated (raw, hash) pair

        Returns:
            The raw token (only the hash is stored)

        """
        # Concurrent issuers for one user queue on the owner row
        await self.session.execute(select(User.id).where(User.id == user_id).with_for_update())

        now = utcnow()
        invalidate = (
            update(ResetToken)
            .where(ResetToken.user_id == user_id, ResetToken.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(invalidate)
        if result.rowcount:
            logger.info(f"Invalidated {result.rowcount} previous reset token(s) for user id={user_id}")

        raw_token, token_hash = secret or generate_reset_secret()
        self.session.add(
            ResetToken(
                id=uuid.uuid4(),
                user_id=user_id,
                token_hash=token_hash,
                created_at=now,
                expires_at=now + self.ttl,
            )
        )
        await self.session.flush()
        return raw_token

    async def consume(self, raw_token: str) -> int:
        """Redeem a reset token exactly once.

        Returns:
            The id of the user the token belongs to

        Raises:
            TokenNotFound: If no record matches the presented token
            TokenAlreadyUsed: If it was consumed (or superseded) before, including by a concurrent caller
            TokenExpired: If it is past its expiry

        """
        stmt = select(ResetToken).where(ResetToken.token_hash == hash_token(raw_token))
        result = await self.session.execute(stmt)
        record = result.scalar_one_or_none()

        if record is None:
            raise TokenNotFound()

        now = utcnow()
        if record.used_at is not None:
            raise TokenAlreadyUsed(user_id=record.user_id)
        if record.is_expired(now):
            raise TokenExpired(user_id=record.user_id)

        consume = (
            update(ResetToken)
            .where(
                ResetToken.id == record.id,
                ResetToken.used_at.is_(None),
                ResetToken.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(consume)
        if result.rowcount == 0:
            raise TokenAlreadyUsed(user_id=record.user_id)

        return record.user_id

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Hard-delete reset tokens past their expiry. Returns the number deleted."""
        stmt = (
            delete(ResetToken)
            .where(ResetToken.expires_at <= (now or utcnow()))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
