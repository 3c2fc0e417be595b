"""Refresh token ledger: issuance, one-shot rotation and revocation."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import utcnow

from .exceptions import TokenAlreadyUsed, TokenExpired, TokenNotFound, TokenRevoked
from .jwt_utils import generate_refresh_secret, hash_token
from .models import RefreshToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedRefreshToken:
    """A freshly issued refresh token: the raw value exists only here."""

    raw_token: str
    record: RefreshToken


class RefreshTokenLedger:
    """Refresh token persistence bound to one session (one unit of work).

    Every state transition is a single conditional UPDATE that only matches
    still-active rows, so concurrent callers are linearized by the database.
    """

    def __init__(self, session: AsyncSession, ttl: timedelta | None = None):
        self.session = session
        self.ttl = ttl or timedelta(days=settings.refresh_token_expire_days)

    async def issue(self, user_id: int, lineage_id: uuid.UUID | None = None) -> IssuedRefreshToken:
        """Create a new active record; a new lineage is started when none is given."""
        raw_token, token_hash = generate_refresh_secret()
        now = utcnow()
        record = RefreshToken(
            id=uuid.uuid4(),
            user_id=user_id,
            lineage_id=lineage_id or uuid.uuid4(),
            token_hash=token_hash,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        self.session.add(record)
        await self.session.flush()
        return IssuedRefreshToken(raw_token=raw_token, record=record)

    async def find(self, raw_token: str) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def rotate(self, raw_token: str) -> IssuedRefreshToken:
        """Redeem a refresh token for its successor in the same lineage.

        Raises:
            TokenNotFound: If no record matches the presented token
            TokenAlreadyUsed: If the token was already rotated (including losing a concurrent race)
            TokenRevoked: If the token was revoked
            TokenExpired: If the token is past its expiry

        """
        current = await self.find(raw_token)
        if current is None:
            raise TokenNotFound()

        now = utcnow()
        if current.is_rotated:
            raise TokenAlreadyUsed(user_id=current.user_id, lineage_id=current.lineage_id)
        if current.is_revoked:
            raise TokenRevoked(user_id=current.user_id, lineage_id=current.lineage_id)
        if current.is_expired(now):
            raise TokenExpired(user_id=current.user_id, lineage_id=current.lineage_id)

        successor_id = uuid.uuid4()
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == current.id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .values(revoked_at=now, replaced_by_token_id=successor_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            # Another transaction redeemed or revoked it between our read and write
            raise TokenAlreadyUsed(user_id=current.user_id, lineage_id=current.lineage_id)

        raw_successor, successor_hash = generate_refresh_secret()
        successor = RefreshToken(
            id=successor_id,
            user_id=current.user_id,
            lineage_id=current.lineage_id,
            token_hash=successor_hash,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        self.session.add(successor)
        await self.session.flush()

        logger.debug(f"Refresh token rotated: lineage={current.lineage_id} user={current.user_id}")
        return IssuedRefreshToken(raw_token=raw_successor, record=successor)

    async def revoke_lineage(self, lineage_id: uuid.UUID) -> int:
        """Revoke every active record of a lineage. Returns the number revoked."""
        return await self._revoke_where(RefreshToken.lineage_id == lineage_id)

    async def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every active record of a user. Returns the number revoked."""
        return await self._revoke_where(RefreshToken.user_id == user_id)

    async def revoke_token(self, raw_token: str) -> RefreshToken | None:
        """Revoke the lineage of the presented token (logout of one session).

        Returns the matching record, or None when the token is unknown.
        """
        record = await self.find(raw_token)
        if record is None:
            return None
        await self.revoke_lineage(record.lineage_id)
        return record

    async def count_active(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > utcnow(),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Hard-delete records past their expiry. Returns the number deleted."""
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= (now or utcnow()))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def _revoke_where(self, condition) -> int:
        stmt = (
            update(RefreshToken)
            .where(condition, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount
