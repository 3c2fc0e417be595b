"""User domain models."""

from enum import StrEnum

from sqlalchemy import Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin


class UserRole(StrEnum):
    """User roles.

    ADMIN: Platform-level administrator.
    BUSINESS_OWNER: Owner of a business (tenant) and its bookings.
    STAFF: Employee attached to a business through its business code.
    CUSTOMER: End customer making bookings.
    """

    ADMIN = "admin"
    BUSINESS_OWNER = "business_owner"
    STAFF = "staff"
    CUSTOMER = "customer"


class User(Base, TimestampMixin):
    """User record owned by the credential store.

    Only registration and password changes write to it.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
        UniqueConstraint("email", name="uq_users_email"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (globally unique; username is case-sensitive, email is stored lower-cased)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Profile
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    business_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Authentication
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Authorization
    role: Mapped[str] = mapped_column(
        Enum(UserRole, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.CUSTOMER.value,
    )

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, username={self.username!r})"
