"""Authentication models (refresh and reset token ledgers)."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, as_utc


class RefreshToken(Base):
    """One record per issued refresh token.

    Lifecycle: active -> rotated (revoked_at and replaced_by_token_id set)
    | revoked (revoked_at set) | expired (expires_at passed). All three are
    terminal. Tokens minted by successive rotations share a lineage_id.
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (UniqueConstraint("token_hash", name="uq_refresh_tokens_token_hash"),)

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Token data (never the raw token)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lineage_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Terminal state markers
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    replaced_by_token_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    @property
    def is_rotated(self) -> bool:
        return self.revoked_at is not None and self.replaced_by_token_id is not None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None and self.replaced_by_token_id is None

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now


class ResetToken(Base):
    """Single-use, time-bounded password reset token.

    used_at, once set, is permanent.
    """

    __tablename__ = "reset_tokens"
    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_reset_tokens_token_hash"),
        # At most one unused token per user
        Index(
            "uq_reset_tokens_live_user",
            "user_id",
            unique=True,
            postgresql_where=text("used_at IS NULL"),
            sqlite_where=text("used_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now
