"""
Configuration Management Module

This module handles all application configuration using environment variables
with sensible defaults. It follows the 12-factor app methodology for configuration.

Usage:
    from medinterp.config import settings
    print(settings.realtime.model)

Environment variables are loaded from .env file (if present) and can be
overridden by system environment variables.

Runtime components (transport, protocol handler, session controller) take
their configuration as constructor arguments and only fall back to the
`settings` singleton when none is passed, so several sessions can run side
by side with independent configuration.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
# This should be called before accessing any environment variables
load_dotenv()


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as boolean."""
    value = get_env(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


@dataclass
class RealtimeConfig:
    """
    Realtime speech/translation service configuration.

    Attributes:
        api_key: Server-side API key, only used to mint ephemeral credentials
        base_url: SDP offer/answer negotiation endpoint
        sessions_url: Endpoint that issues ephemeral client secrets
        model: Realtime model identifier
        voice: Voice identifier for synthesized speech
        token_endpoint: Application endpoint the client asks for a credential
        transcription_model: Model used for input audio transcription
        http_timeout_s: Timeout for credential and negotiation requests
    """
    api_key: str = field(default_factory=lambda: get_env("OPENAI_API_KEY"))
    base_url: str = field(default_factory=lambda: get_env("REALTIME_BASE_URL", "https://api.openai.com/v1/realtime"))
    sessions_url: str = field(default_factory=lambda: get_env("REALTIME_SESSIONS_URL", "https://api.openai.com/v1/realtime/sessions"))
    model: str = field(default_factory=lambda: get_env("REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17"))
    voice: str = field(default_factory=lambda: get_env("REALTIME_VOICE", "ash"))
    token_endpoint: str = field(default_factory=lambda: get_env("REALTIME_TOKEN_ENDPOINT", "http://127.0.0.1:8000/api/session"))
    transcription_model: str = field(default_factory=lambda: get_env("REALTIME_TRANSCRIPTION_MODEL", "whisper-1"))
    http_timeout_s: float = field(default_factory=lambda: get_env_float("REALTIME_HTTP_TIMEOUT_S", 15.0))

    def validate(self) -> bool:
        """Validate the client-side realtime settings."""
        if not self.base_url:
            raise ValueError("REALTIME_BASE_URL is required")
        if not self.token_endpoint:
            raise ValueError("REALTIME_TOKEN_ENDPOINT is required")
        if not self.model:
            raise ValueError("REALTIME_MODEL is required")
        return True

    @property
    def is_configured(self) -> bool:
        """Check whether the server side can mint credentials."""
        return bool(self.api_key)


@dataclass
class AudioConfig:
    """
    Local audio device and metering configuration.

    Attributes:
        capture_device: Device name passed to the media capture backend
        capture_format: Capture backend (pulse, alsa, avfoundation, dshow)
        playback_file: Optional file the remote audio is recorded to
        fft_size: Analyser buffer size (frequency bins are half of it)
        meter_interval_ms: Volume sampling period
        speaking_threshold: Average frequency level above which the mic is "active"
    """
    capture_device: str = field(default_factory=lambda: get_env("AUDIO_CAPTURE_DEVICE", "default"))
    capture_format: str = field(default_factory=lambda: get_env("AUDIO_CAPTURE_FORMAT", "pulse"))
    playback_file: Optional[str] = field(default_factory=lambda: get_env("AUDIO_PLAYBACK_FILE") or None)
    fft_size: int = field(default_factory=lambda: get_env_int("AUDIO_FFT_SIZE", 256))
    meter_interval_ms: int = field(default_factory=lambda: get_env_int("AUDIO_METER_INTERVAL_MS", 100))
    speaking_threshold: float = field(default_factory=lambda: get_env_float("AUDIO_SPEAKING_THRESHOLD", 30.0))

    def validate(self) -> bool:
        """Validate metering settings."""
        if self.fft_size <= 0 or self.fft_size & (self.fft_size - 1):
            raise ValueError("AUDIO_FFT_SIZE must be a positive power of two")
        if self.meter_interval_ms <= 0:
            raise ValueError("AUDIO_METER_INTERVAL_MS must be positive")
        return True

    @property
    def meter_interval_s(self) -> float:
        """Sampling period in seconds."""
        return self.meter_interval_ms / 1000.0


@dataclass
class SessionConfig:
    """
    Session behaviour configuration.

    Attributes:
        language: Language the remote service must answer in (english/spanish)
        ending_delay_s: Delay before the end-of-conversation callback fires
        summary_fallback_delay_s: Delay before a local fallback summary is built
        end_session_delay_s: Delay before the endSession tool notifies the host
        settle_delay_s: Optional pause between teardown and re-acquisition
        max_log_entries: Cap for the raw diagnostic log (0 = unbounded)
    """
    language: str = field(default_factory=lambda: get_env("SESSION_LANGUAGE", "english"))
    ending_delay_s: float = field(default_factory=lambda: get_env_float("SESSION_ENDING_DELAY_S", 1.0))
    summary_fallback_delay_s: float = field(default_factory=lambda: get_env_float("SESSION_SUMMARY_FALLBACK_DELAY_S", 2.0))
    end_session_delay_s: float = field(default_factory=lambda: get_env_float("SESSION_END_DELAY_S", 0.5))
    settle_delay_s: float = field(default_factory=lambda: get_env_float("SESSION_SETTLE_DELAY_S", 0.0))
    max_log_entries: int = field(default_factory=lambda: get_env_int("SESSION_MAX_LOG_ENTRIES", 0))

    def validate(self) -> bool:
        """Validate session timing settings."""
        for name in ("ending_delay_s", "summary_fallback_delay_s", "end_session_delay_s", "settle_delay_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.max_log_entries < 0:
            raise ValueError("SESSION_MAX_LOG_ENTRIES cannot be negative")
        return True


@dataclass
class DatabaseConfig:
    """
    Conversation store configuration.

    Attributes:
        url: SQLAlchemy database URL
    """
    url: str = field(default_factory=lambda: get_env("DATABASE_URL", "sqlite:///./conversations.db"))


@dataclass
class WebhookConfig:
    """
    Outbound action webhook configuration.

    Attributes:
        url: Endpoint that receives scheduled appointments and lab orders
        timeout_s: Request timeout
    """
    url: str = field(default_factory=lambda: get_env("WEBHOOK_URL"))
    timeout_s: float = field(default_factory=lambda: get_env_float("WEBHOOK_TIMEOUT_S", 10.0))

    @property
    def is_configured(self) -> bool:
        return bool(self.url)


@dataclass
class ServerConfig:
    """HTTP host configuration for the API server."""
    host: str = field(default_factory=lambda: get_env("API_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: get_env_int("API_PORT", 8000))


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    This is the primary configuration interface for the application.
    Access via the singleton `settings` instance.

    Example:
        from medinterp.config import settings

        settings.realtime.validate()
        model = settings.realtime.model
    """
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application-level settings
    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.realtime.validate()
        self.audio.validate()
        self.session.validate()
        return True


# Singleton settings instance
# Import this in other modules: from medinterp.config import settings
settings = Settings()
