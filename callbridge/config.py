"""Configuration system for callbridge.

Supports loading from YAML files, dicts, or programmatic construction via
Pydantic models. Secrets are never read from YAML by default: they come
from the environment (or a ``.env`` file) through :class:`Credentials`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from callbridge.errors import ConfigError

SYSTEM_MESSAGE = (
    "You are an AI assistant making phone calls. Always be clear, professional, "
    "and focused on the conversation objective.\n"
    "When the conversation is complete or needs to end:\n"
    "1. Politely conclude the conversation\n"
    "2. Thank them for their time\n"
    "3. Say goodbye\n"
    "4. Add {marker} at the very end (do not say this out loud)"
)


class ServerConfig(BaseModel):
    """HTTP / WebSocket listener settings."""

    listen_host: str = "0.0.0.0"
    listen_port: int = 8765
    listen_path: str = "/media-stream"
    # Public base URL Twilio can reach, e.g. https://abc123.ngrok.app
    public_url: str = ""


class RealtimeConfig(BaseModel):
    """Speech service (OpenAI Realtime API) settings."""

    url: str = "wss://api.openai.com/v1/realtime"
    model: str = "gpt-4o-realtime-preview-2024-12-17"
    voice: str = "alloy"
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"
    vad_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    modalities: list[str] = Field(default_factory=lambda: ["text", "audio"])
    # Empty disables caller transcription (and with it the user turns)
    transcription_model: str = "whisper-1"

    @property
    def endpoint(self) -> str:
        return f"{self.url}?{urlencode({'model': self.model})}"


class RetryConfig(BaseModel):
    """Reconnection budget for the speech service socket."""

    max_attempts: int = Field(default=3, ge=0)
    backoff_seconds: float = Field(default=1.0, ge=0.0)


class CallConfig(BaseModel):
    """Conversation behaviour for every call."""

    end_call_marker: str = "[END_CALL]"
    grace_delay_seconds: float = Field(default=3.0, ge=0.0)
    system_message: str = SYSTEM_MESSAGE
    default_task: str = "No specific task provided."
    truncate_on_interrupt: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class Credentials(BaseSettings):
    """API keys and account settings, read from the environment or ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    def missing(self, *names: str) -> list[str]:
        """Return the environment variable names of every unset field."""
        return [name.upper() for name in names if not getattr(self, name)]

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named fields is empty."""
        missing = self.missing(*names)
        if missing:
            raise ConfigError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )


class BridgeConfig(BaseModel):
    """Top-level callbridge configuration.

    Examples:
        # Programmatic
        config = BridgeConfig(
            realtime=RealtimeConfig(voice="verse"),
            call=CallConfig(grace_delay_seconds=2.0),
        )

        # From YAML
        config = BridgeConfig.from_yaml("bridge.yaml")

        # Shorthand
        config = BridgeConfig.from_dict({
            "listen_port": 8765,
            "public_url": "https://abc123.ngrok.app",
            "voice": "alloy",
        })
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    call: CallConfig = Field(default_factory=CallConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    credentials: Credentials = Field(default_factory=Credentials)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BridgeConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"server": {"listen_port": 8765}, "realtime": {"voice": "alloy"}}

        Shorthand format:
            {"listen_port": 8765, "voice": "alloy", "grace_delay": 2.0}
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> BridgeConfig:
        """Normalize and construct config from a raw dict."""
        flat_mappings = {
            "listen_host": ("server", "listen_host"),
            "listen_port": ("server", "listen_port"),
            "listen_path": ("server", "listen_path"),
            "public_url": ("server", "public_url"),
            "model": ("realtime", "model"),
            "voice": ("realtime", "voice"),
            "vad_threshold": ("realtime", "vad_threshold"),
            "max_retries": ("retry", "max_attempts"),
            "retry_backoff": ("retry", "backoff_seconds"),
            "end_call_marker": ("call", "end_call_marker"),
            "grace_delay": ("call", "grace_delay_seconds"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                section_data = dict(data.get(section) or {})
                section_data[nested_key] = data.pop(flat_key)
                data[section] = section_data

        return cls(**data)


def load_config(source: str | Path | dict[str, Any] | BridgeConfig | None = None) -> BridgeConfig:
    """Load a BridgeConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, an existing BridgeConfig,
            or None for defaults.

    Returns:
        A BridgeConfig instance.
    """
    if source is None:
        return BridgeConfig()
    if isinstance(source, BridgeConfig):
        return source
    if isinstance(source, dict):
        return BridgeConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return BridgeConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `callbridge init`
DEFAULT_CONFIG_YAML = """\
# callbridge configuration
# Secrets (OPENAI_API_KEY, TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN,
# TWILIO_PHONE_NUMBER) are read from the environment or a .env file.

server:
  listen_host: 0.0.0.0
  listen_port: 8765
  listen_path: /media-stream
  public_url: ""          # e.g. https://abc123.ngrok.app

realtime:
  model: gpt-4o-realtime-preview-2024-12-17
  voice: alloy
  vad_threshold: 0.5      # server VAD sensitivity, 0.0 - 1.0
  transcription_model: whisper-1

retry:
  max_attempts: 3
  backoff_seconds: 1.0

call:
  end_call_marker: "[END_CALL]"
  grace_delay_seconds: 3.0
  truncate_on_interrupt: true

logging:
  level: INFO
"""
