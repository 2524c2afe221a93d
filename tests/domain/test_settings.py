"""Unit tests for AppSettings."""

import pytest
from pydantic import ValidationError
from orderfeed.domain.settings import AppSettings, FeedSettings, RealtimeSettings


class TestAppSettings:
    """Tests for AppSettings model."""

    def test_default_settings(self):
        """Default settings are created correctly."""
        settings = AppSettings()

        assert settings.feed.max_rows == 200
        assert settings.feed.table == "orders"
        assert settings.feed.server_side_status is True
        assert settings.realtime.enabled is True
        assert settings.realtime.max_reconnect_attempts == 5
        assert settings.session.actor_id is None
        assert settings.logging.level == "INFO"

    def test_max_rows_must_be_positive(self):
        settings = AppSettings()
        with pytest.raises(ValidationError):
            settings.feed.max_rows = 0

    def test_table_name_must_be_identifier(self):
        """Table names are interpolated into SQL, so only identifiers pass."""
        with pytest.raises(ValidationError):
            FeedSettings(table="orders; DROP TABLE orders")

    def test_reconnect_attempts_can_be_disabled(self):
        assert RealtimeSettings(max_reconnect_attempts=0).max_reconnect_attempts == 0

    def test_invalid_log_level(self):
        settings = AppSettings()
        with pytest.raises(ValidationError):
            settings.logging.level = "VERBOSE"

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            AppSettings.model_validate({"theme": {"mode": "dark"}})

    def test_round_trip_json(self):
        settings = AppSettings()
        settings.session.actor_id = "admin-1"
        settings.feed.server_side_status = False

        restored = AppSettings.model_validate_json(settings.model_dump_json())
        assert restored.session.actor_id == "admin-1"
        assert restored.feed.server_side_status is False
