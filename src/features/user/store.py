"""Credential store: persistence access for user records."""

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.base import utcnow

from .exceptions import DuplicateEmail, DuplicateUsername, UserNotFound
from .models import User, UserRole

logger = logging.getLogger(__name__)


def canonical_email(email: str) -> str:
    """Canonical (trimmed, lower-cased) form used for storage and lookups."""
    return email.strip().lower()


@dataclass(frozen=True)
class UserCandidate:
    """Validated registration data with the password already hashed."""

    name: str
    last_name: str
    username: str
    email: str
    hashed_password: str
    role: UserRole = UserRole.CUSTOMER
    phone: str | None = None
    business_code: str | None = None


class CredentialStore:
    """Repository for users bound to one session (one unit of work)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_user(self, candidate: UserCandidate) -> User:
        """Insert a new user.

        Uniqueness is enforced by the table constraints, so two concurrent
        registrations with the same username cannot both succeed.

        Raises:
            DuplicateUsername: If the username is taken
            DuplicateEmail: If the email is taken

        """
        user = User(
            name=candidate.name,
            last_name=candidate.last_name,
            username=candidate.username,
            email=canonical_email(candidate.email),
            hashed_password=candidate.hashed_password,
            role=candidate.role.value,
            phone=candidate.phone,
            business_code=candidate.business_code,
        )

        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as err:
            raise _classify_integrity_error(err) from err

        logger.info(f"New user registered: id={user.id} username={user.username}")
        return user

    async def find_by_username_or_email(self, identifier: str) -> User | None:
        """Find a user by exact username or by canonical email."""
        stmt = select(User).where(
            or_(User.username == identifier, User.email == canonical_email(identifier))
        )
        result = await self.session.execute(stmt)
        # username and email namespaces can collide ("a@b.c" as a username); prefer the username match
        users = list(result.scalars().all())
        for user in users:
            if user.username == identifier:
                return user
        return users[0] if users else None

    async def find_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == canonical_email(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_password_hash(self, user_id: int, new_hash: str) -> None:
        """Replace the stored password hash.

        Raises:
            UserNotFound: If no user has this id

        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(hashed_password=new_hash, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise UserNotFound()
        logger.info(f"Password hash updated for user id={user_id}")


def _classify_integrity_error(err: IntegrityError) -> Exception:
    """Map a unique violation on users to the field that collided.

    PostgreSQL reports the constraint name, SQLite the column name; both
    contain the field name.
    """
    message = str(err.orig).lower()
    if "username" in message:
        return DuplicateUsername()
    if "email" in message:
        return DuplicateEmail()
    return err
