"""Tests for error classification and retry logic."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from orderfeed.data.repository import StoreError
from orderfeed.data.resilience import (
    PERMISSION_DENIED_HINT,
    ErrorCategory,
    FeedError,
    backoff_delays,
    classify_error,
    get_user_message,
    is_permission_denied,
    with_retry,
)


class TestPermissionDenied:
    """Test detection of access-control failures."""

    def test_insufficient_privilege_code(self):
        assert is_permission_denied(StoreError("denied", code="42501"))

    def test_asyncpg_style_sqlstate(self):
        err = Exception("boom")
        err.sqlstate = "42501"
        assert is_permission_denied(err)

    def test_permission_denied_message(self):
        assert is_permission_denied(StoreError("Permission denied for table orders"))

    def test_insufficient_privilege_message(self):
        assert is_permission_denied(Exception("INSUFFICIENT PRIVILEGE"))

    def test_other_code_is_not_permission_denied(self):
        assert not is_permission_denied(StoreError("relation does not exist", code="42P01"))


class TestClassifyError:
    """Test error classification for retry decisions."""

    def test_permission_denied_category(self):
        assert classify_error(StoreError("x", code="42501")) == ErrorCategory.PERMISSION_DENIED

    def test_connection_refused_is_transient(self):
        err = ConnectionRefusedError("Connection refused")
        assert classify_error(err) == ErrorCategory.TRANSIENT

    def test_timeout_error_is_transient(self):
        err = TimeoutError("Operation timed out")
        assert classify_error(err) == ErrorCategory.TRANSIENT

    def test_connection_closed_message_is_transient(self):
        err = Exception("connection is closed")
        assert classify_error(err) == ErrorCategory.TRANSIENT

    def test_auth_failure_is_permanent(self):
        err = Exception("password authentication failed for user")
        assert classify_error(err) == ErrorCategory.PERMANENT

    def test_missing_relation_is_permanent(self):
        err = StoreError('relation "orders" does not exist', code="42P01")
        assert classify_error(err) == ErrorCategory.PERMANENT

    def test_unknown_error_defaults_to_transient(self):
        err = Exception("something completely unexpected")
        assert classify_error(err) == ErrorCategory.TRANSIENT


class TestGetUserMessage:
    """Test operator-facing error messages."""

    def test_timeout_message(self):
        msg = get_user_message(TimeoutError("timed out"))
        assert "too long" in msg

    def test_connection_message(self):
        msg = get_user_message(ConnectionRefusedError("Connection refused"))
        assert "Unable to reach" in msg

    def test_permission_message_is_store_message(self):
        msg = get_user_message(StoreError("permission denied for table orders", code="42501"))
        assert msg == "permission denied for table orders"


class TestFeedError:
    """Test FeedError construction."""

    def test_permission_denied_has_fixed_hint(self):
        error = FeedError.from_exception(StoreError("denied", code="42501"))
        assert error.is_permission_denied
        assert error.hint == PERMISSION_DENIED_HINT
        assert not error.is_retryable

    def test_other_errors_have_no_hint(self):
        error = FeedError.from_exception(ConnectionResetError("Connection reset"))
        assert error.hint is None
        assert error.is_retryable


class TestWithRetry:
    """Test retry with exponential backoff."""

    async def test_success_on_first_try(self):
        op = AsyncMock(return_value="ok")
        assert await with_retry(op, max_retries=3) == "ok"
        assert op.call_count == 1

    async def test_retries_transient_then_succeeds(self):
        op = AsyncMock(side_effect=[ConnectionResetError("reset"), "ok"])
        on_retry = MagicMock()

        result = await with_retry(op, max_retries=3, initial_delay=0.001, on_retry=on_retry)

        assert result == "ok"
        assert op.call_count == 2
        on_retry.assert_called_once()

    async def test_permission_denied_not_retried(self):
        op = AsyncMock(side_effect=StoreError("denied", code="42501"))
        with pytest.raises(StoreError):
            await with_retry(op, max_retries=3, initial_delay=0.001)
        assert op.call_count == 1

    async def test_gives_up_after_max_retries(self):
        op = AsyncMock(side_effect=ConnectionResetError("reset"))
        with pytest.raises(ConnectionResetError):
            await with_retry(op, max_retries=2, initial_delay=0.001)
        assert op.call_count == 3


class TestBackoffDelays:
    """Test reconnect delay schedule."""

    def test_doubles_and_caps(self):
        assert backoff_delays(6, initial_delay=1.0, max_delay=16.0) == [1, 2, 4, 8, 16, 16]

    def test_zero_attempts(self):
        assert backoff_delays(0) == []
