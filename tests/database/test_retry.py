"""Tests for the transactional retry wrapper."""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from src.database.exceptions import RetryExhaustedError
from src.database.retry import RetryPolicy, is_transient_error, run_in_transaction, with_retry
from src.features.user.models import User


class FakeDriverError(Exception):
    """Stand-in for a driver exception carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def db_error(message: str, sqlstate: str | None = None, cls=OperationalError):
    return cls("UPDATE refresh_tokens SET revoked_at = ?", {}, FakeDriverError(message, sqlstate))


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyUnit:
    """Unit of work failing with the given errors before returning a value."""

    def __init__(self, errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


# is_transient_error


class TestIsTransientError:
    def test_serialization_failure_sqlstate(self):
        assert is_transient_error(db_error("could not serialize access", "40001")) is True

    def test_deadlock_sqlstate(self):
        assert is_transient_error(db_error("deadlock detected", "40P01")) is True

    def test_message_markers_without_sqlstate(self):
        assert is_transient_error(db_error("Serialization failure in transaction")) is True
        assert is_transient_error(db_error("Deadlock found when trying to get lock")) is True
        assert is_transient_error(db_error("database is locked")) is True

    def test_connection_loss_is_permanent(self):
        assert is_transient_error(db_error("connection refused", "08006")) is False

    def test_integrity_error_is_permanent(self):
        assert is_transient_error(db_error("deadlock-ish unique violation", "23505", IntegrityError)) is False

    def test_non_database_errors_are_permanent(self):
        assert is_transient_error(ValueError("serialization")) is False
        assert is_transient_error(TimeoutError()) is False


# RetryPolicy


class TestRetryPolicy:
    def test_exponential_delay(self):
        policy = RetryPolicy(backoff_base=0.1, backoff_max=10)
        assert policy.delay_for(1) == pytest.approx(0.2)
        assert policy.delay_for(2) == pytest.approx(0.4)
        assert policy.delay_for(3) == pytest.approx(0.8)

    def test_delay_is_capped(self):
        policy = RetryPolicy(backoff_base=1, backoff_max=1.5)
        assert policy.delay_for(5) == 1.5

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)


# with_retry


class TestWithRetry:
    async def test_returns_first_success_without_sleeping(self):
        unit = FlakyUnit([])
        sleep = SleepRecorder()

        result = await with_retry(RetryPolicy(), unit, sleep=sleep)

        assert result == "done"
        assert unit.calls == 1
        assert sleep.delays == []

    async def test_retries_transient_errors_then_succeeds(self):
        unit = FlakyUnit([db_error("could not serialize", "40001"), db_error("deadlock detected", "40P01")])
        sleep = SleepRecorder()

        result = await with_retry(RetryPolicy(max_attempts=3, backoff_base=0.1), unit, sleep=sleep)

        assert result == "done"
        assert unit.calls == 3
        assert sleep.delays == [pytest.approx(0.2), pytest.approx(0.4)]

    async def test_exhaustion_raises_retry_exhausted(self):
        last = db_error("deadlock detected", "40P01")
        unit = FlakyUnit([db_error("could not serialize", "40001"), db_error("deadlock", "40P01"), last])
        sleep = SleepRecorder()

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(RetryPolicy(max_attempts=3), unit, sleep=sleep)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert unit.calls == 3
        assert len(sleep.delays) == 2

    async def test_single_attempt_exhausts_without_sleeping(self):
        error = db_error("could not serialize", "40001")
        unit = FlakyUnit([error])
        sleep = SleepRecorder()

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(RetryPolicy(max_attempts=1), unit, sleep=sleep)

        assert exc_info.value.__cause__ is error
        assert unit.calls == 1
        assert sleep.delays == []

    async def test_permanent_error_is_not_retried(self):
        unit = FlakyUnit([ValueError("validation failed")])
        sleep = SleepRecorder()

        with pytest.raises(ValueError):
            await with_retry(RetryPolicy(max_attempts=5), unit, sleep=sleep)

        assert unit.calls == 1
        assert sleep.delays == []

    async def test_integrity_error_is_not_retried(self):
        unit = FlakyUnit([db_error("duplicate key", "23505", IntegrityError)])

        with pytest.raises(IntegrityError):
            await with_retry(RetryPolicy(max_attempts=5), unit, sleep=SleepRecorder())

        assert unit.calls == 1

    async def test_custom_predicate(self):
        unit = FlakyUnit([KeyError("flaky"), KeyError("flaky")])

        result = await with_retry(
            RetryPolicy(max_attempts=3),
            unit,
            is_transient=lambda exc: isinstance(exc, KeyError),
            sleep=SleepRecorder(),
        )

        assert result == "done"
        assert unit.calls == 3

    async def test_timeout_is_not_retried(self):
        calls = 0

        async def slow_unit():
            nonlocal calls
            calls += 1
            await asyncio.sleep(1)

        with pytest.raises(TimeoutError):
            await with_retry(RetryPolicy(max_attempts=3, timeout=0.01), slow_unit, sleep=SleepRecorder())

        assert calls == 1


# run_in_transaction


class TestRunInTransaction:
    async def test_failed_attempt_is_rolled_back(self, session_factory):
        attempts = 0

        async def work(session):
            nonlocal attempts
            attempts += 1
            session.add(
                User(
                    name="Ana",
                    last_name="Lopez",
                    username="alopez",
                    email="alopez@example.com",
                    hashed_password="x",
                    role="customer",
                )
            )
            await session.flush()
            if attempts == 1:
                raise db_error("could not serialize access", "40001")
            return "committed"

        result = await run_in_transaction(session_factory, work, RetryPolicy(max_attempts=3, backoff_base=0.001))

        assert result == "committed"
        assert attempts == 2
        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(User))).scalar_one()
        assert count == 1

    async def test_domain_error_rolls_back_and_propagates(self, session_factory):
        async def work(session):
            session.add(
                User(
                    name="Ana",
                    last_name="Lopez",
                    username="alopez",
                    email="alopez@example.com",
                    hashed_password="x",
                    role="customer",
                )
            )
            await session.flush()
            raise LookupError("not allowed")

        with pytest.raises(LookupError):
            await run_in_transaction(session_factory, work, RetryPolicy())

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(User))).scalar_one()
        assert count == 0
