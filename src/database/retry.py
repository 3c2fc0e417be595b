"""Retry combinator for units of work that hit transient storage conflicts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import settings

from .exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes: serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})
TRANSIENT_MESSAGES = ("serialization", "could not serialize", "deadlock", "database is locked")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_base: Base delay in seconds
        backoff_max: Upper bound for a single delay
        timeout: Per-attempt timeout in seconds (None disables it)

    """

    max_attempts: int = 3
    backoff_base: float = 0.1
    backoff_max: float = 2.0
    timeout: float | None = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.backoff_base * (2**attempt), self.backoff_max)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.transaction_max_attempts,
            backoff_base=settings.transaction_backoff_base,
            backoff_max=settings.transaction_backoff_max,
            timeout=settings.transaction_timeout,
        )


def is_transient_error(exc: BaseException) -> bool:
    """Check whether an error is a serialization failure or deadlock.

    Integrity violations are permanent even though they are DBAPI errors.
    """
    if not isinstance(exc, DBAPIError) or isinstance(exc, IntegrityError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True

    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


async def with_retry(
    policy: RetryPolicy,
    unit_of_work: Callable[[], Awaitable[T]],
    *,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run a unit of work, retrying it on transient failures.

    Args:
        policy: Attempt bound, backoff and per-attempt timeout
        unit_of_work: Zero-argument coroutine factory, called once per attempt
        is_transient: Predicate selecting the errors worth retrying
        sleep: Awaitable used for backoff delays

    Returns:
        Whatever the unit of work returns

    Raises:
        RetryExhaustedError: If every attempt failed with a transient error
        TimeoutError: If an attempt exceeded the policy timeout (never retried,
            its outcome is unknown)

    """
    last_error: BaseException | None = None
    attempt = 0
    while True:
        attempt += 1
        try:
            if policy.timeout is None:
                return await unit_of_work()
            async with asyncio.timeout(policy.timeout):
                return await unit_of_work()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt >= policy.max_attempts:
                logger.error(f"Transaction failed after {policy.max_attempts} attempts: {exc}")
                raise RetryExhaustedError(policy.max_attempts, exc) from exc
            last_error = exc

        delay = policy.delay_for(attempt)
        logger.warning(
            f"Transaction failed (attempt {attempt}/{policy.max_attempts}), retrying in {delay:.2f}s: {last_error}"
        )
        await sleep(delay)


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """Run work(session) in its own transaction, retried per policy.

    Every attempt gets a fresh session so a rolled-back attempt leaves no state behind.
    """

    async def attempt() -> T:
        async with session_factory() as session:
            async with session.begin():
                return await work(session)

    return await with_retry(policy, attempt)
