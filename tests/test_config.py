"""
Tests for Configuration Module

Tests the Settings and configuration management.
"""

import os
import pytest
from unittest.mock import patch


class TestGetEnv:
    """Tests for environment variable helpers."""

    def test_get_env_with_default(self):
        """Test getting env var with default."""
        from medinterp.config import get_env

        result = get_env("NONEXISTENT_VAR", "default_value")
        assert result == "default_value"

    def test_get_env_existing(self):
        """Test getting existing env var."""
        from medinterp.config import get_env

        with patch.dict(os.environ, {"TEST_VAR": "test_value"}):
            result = get_env("TEST_VAR")
            assert result == "test_value"

    def test_get_env_required_missing(self):
        """Test required env var raises error when missing."""
        from medinterp.config import get_env

        with pytest.raises(ValueError):
            get_env("DEFINITELY_NOT_SET", required=True)


class TestGetEnvTyped:
    """Tests for typed environment variable helpers."""

    def test_get_env_int(self):
        """Test getting int from env."""
        from medinterp.config import get_env_int

        with patch.dict(os.environ, {"INT_VAR": "42"}):
            result = get_env_int("INT_VAR", 0)
            assert result == 42
            assert isinstance(result, int)

    def test_get_env_float(self):
        """Test getting float from env."""
        from medinterp.config import get_env_float

        with patch.dict(os.environ, {"FLOAT_VAR": "0.5"}):
            result = get_env_float("FLOAT_VAR", 0.0)
            assert result == 0.5
            assert isinstance(result, float)

    def test_get_env_bool_true(self):
        """Test getting bool true from env."""
        from medinterp.config import get_env_bool

        for true_value in ["true", "True", "TRUE", "1", "yes", "on"]:
            with patch.dict(os.environ, {"BOOL_VAR": true_value}):
                result = get_env_bool("BOOL_VAR", False)
                assert result is True

    def test_get_env_bool_false(self):
        """Test getting bool false from env."""
        from medinterp.config import get_env_bool

        for false_value in ["false", "False", "0", "no", "off"]:
            with patch.dict(os.environ, {"BOOL_VAR": false_value}):
                result = get_env_bool("BOOL_VAR", True)
                assert result is False


class TestRealtimeConfig:
    """Tests for realtime service configuration."""

    def test_defaults(self):
        """Test default negotiation settings."""
        from medinterp.config import RealtimeConfig

        with patch.dict(os.environ, {}, clear=True):
            config = RealtimeConfig()

        assert config.base_url == "https://api.openai.com/v1/realtime"
        assert config.voice == "ash"
        assert config.transcription_model == "whisper-1"
        assert config.is_configured is False

    def test_environment_override(self):
        """Test values are read from the environment."""
        from medinterp.config import RealtimeConfig

        with patch.dict(os.environ, {"REALTIME_VOICE": "verse", "OPENAI_API_KEY": "sk-x"}):
            config = RealtimeConfig()

        assert config.voice == "verse"
        assert config.is_configured is True

    def test_validate_missing_endpoint(self):
        """Test validation fails without a token endpoint."""
        from medinterp.config import RealtimeConfig

        config = RealtimeConfig(token_endpoint="")

        with pytest.raises(ValueError, match="TOKEN_ENDPOINT"):
            config.validate()


class TestAudioConfig:
    """Tests for audio configuration."""

    def test_meter_interval_seconds(self):
        """Test interval conversion."""
        from medinterp.config import AudioConfig

        config = AudioConfig(meter_interval_ms=100)
        assert config.meter_interval_s == 0.1

    def test_validate_fft_size(self):
        """Test validation rejects sizes that are not powers of two."""
        from medinterp.config import AudioConfig

        config = AudioConfig()
        config.fft_size = 300

        with pytest.raises(ValueError, match="power of two"):
            config.validate()

    def test_validate_interval(self):
        """Test validation rejects a non-positive interval."""
        from medinterp.config import AudioConfig

        config = AudioConfig()
        config.meter_interval_ms = 0

        with pytest.raises(ValueError, match="positive"):
            config.validate()


class TestSessionConfig:
    """Tests for session timing configuration."""

    def test_defaults(self):
        """Test default delays."""
        from medinterp.config import SessionConfig

        with patch.dict(os.environ, {}, clear=True):
            config = SessionConfig()

        assert config.language == "english"
        assert config.ending_delay_s == 1.0
        assert config.summary_fallback_delay_s == 2.0
        assert config.end_session_delay_s == 0.5
        assert config.settle_delay_s == 0.0

    def test_validate_negative_delay(self):
        """Test validation fails with a negative delay."""
        from medinterp.config import SessionConfig

        config = SessionConfig()
        config.ending_delay_s = -1

        with pytest.raises(ValueError, match="negative"):
            config.validate()


class TestWebhookConfig:
    """Tests for webhook configuration."""

    def test_unconfigured(self):
        from medinterp.config import WebhookConfig

        assert WebhookConfig(url="").is_configured is False
        assert WebhookConfig(url="https://hooks.test").is_configured is True


class TestSettings:
    """Tests for main Settings class."""

    def test_settings_singleton(self):
        """Test settings is accessible."""
        from medinterp.config import settings

        assert settings is not None
        assert hasattr(settings, "realtime")
        assert hasattr(settings, "audio")
        assert hasattr(settings, "session")
        assert hasattr(settings, "database")

    def test_is_development(self):
        """Test development mode detection."""
        from medinterp.config import Settings

        settings = Settings()
        settings.app_env = "development"
        assert settings.is_development is True
        assert settings.is_production is False

    def test_is_production(self):
        """Test production mode detection."""
        from medinterp.config import Settings

        settings = Settings()
        settings.app_env = "production"
        assert settings.is_production is True
        assert settings.is_development is False

    def test_validate_all(self):
        """Test full validation with defaults."""
        from medinterp.config import Settings

        assert Settings().validate_all() is True
