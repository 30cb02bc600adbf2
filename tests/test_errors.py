"""Tests for store error classification and completion error phrasing."""
import pytest
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from app.core.errors import (
    AUTH_EXPIRED_MESSAGE,
    DUPLICATE_MESSAGE,
    NETWORK_MESSAGE,
    NOT_FOUND_MESSAGE,
    ErrorKind,
    ErrorSource,
    banner_title,
    classify_store_error,
    humanize_completion_error,
    is_retryable,
)


class UniqueViolation(Exception):
    sqlstate = "23505"


class TestClassifyStoreError:
    def test_no_rows(self):
        assert classify_store_error(NoResultFound()) == (ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    def test_unique_violation_by_sqlstate(self):
        exc = IntegrityError("INSERT INTO chat_messages", {}, UniqueViolation("conflict"))

        assert classify_store_error(exc) == (ErrorKind.DUPLICATE_ENTRY, DUPLICATE_MESSAGE)

    def test_unique_violation_by_message(self):
        exc = IntegrityError(
            "INSERT INTO chat_messages", {}, Exception("UNIQUE constraint failed: chat_messages.id")
        )

        assert classify_store_error(exc)[0] == ErrorKind.DUPLICATE_ENTRY

    def test_other_integrity_error_is_not_retried(self):
        exc = IntegrityError("INSERT INTO chat_messages", {}, Exception("NOT NULL constraint failed"))

        kind, message = classify_store_error(exc)

        assert kind == ErrorKind.CONSTRAINT_VIOLATION
        assert "NOT NULL" in message
        assert not is_retryable(kind)

    def test_expired_session(self):
        assert classify_store_error(Exception("JWT expired")) == (
            ErrorKind.AUTH_EXPIRED,
            AUTH_EXPIRED_MESSAGE,
        )

    @pytest.mark.parametrize(
        "exc",
        [
            OperationalError("SELECT 1", {}, Exception("server closed the connection")),
            ConnectionRefusedError("refused"),
            TimeoutError(),
            Exception("Failed to fetch: network unreachable"),
        ],
    )
    def test_connectivity_failures(self, exc):
        assert classify_store_error(exc) == (ErrorKind.NETWORK_ERROR, NETWORK_MESSAGE)

    def test_anything_else_keeps_raw_text(self):
        assert classify_store_error(ValueError("boom")) == (ErrorKind.UNKNOWN, "boom")


def test_retryable_kinds():
    assert is_retryable(ErrorKind.NETWORK_ERROR)
    assert is_retryable(ErrorKind.AUTH_EXPIRED)
    assert is_retryable(ErrorKind.UNKNOWN)
    assert not is_retryable(ErrorKind.DUPLICATE_ENTRY)
    assert not is_retryable(ErrorKind.NOT_FOUND)
    assert not is_retryable(None)


@pytest.mark.parametrize(
    "status_code, expected",
    [
        (429, "Too many requests"),
        (403, "Access denied"),
        (500, "temporarily unavailable"),
        (503, "temporarily unavailable"),
    ],
)
def test_humanize_completion_error(status_code, expected):
    assert expected in humanize_completion_error(status_code, "raw")


def test_humanize_completion_error_fallbacks():
    assert "offline" in humanize_completion_error(None, offline=True)
    assert humanize_completion_error(418, "teapot") == "teapot"
    assert humanize_completion_error(None) == "Something went wrong. Please try again."


def test_banner_titles():
    assert banner_title(ErrorSource.PERSISTENCE) == "Connection issue"
    assert banner_title(ErrorSource.AUTH) == "Sign-in required"
    assert banner_title(ErrorSource.COMPLETION) == "Message error"
