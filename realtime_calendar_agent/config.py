from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the voice agent.

    Values are loaded from environment variables by default and may be
    overridden via CLI flags by the application entrypoint.
    """

    # Provider selection
    provider: Literal["openai", "azure"] = "openai"

    # OpenAI / API configuration
    # Note: allow empty by default so CLI/tests can run without a key.
    # Connection layers should validate presence when contacting the API.
    openai_api_key: str = ""
    openai_base_url: str | None = None

    # Azure OpenAI configuration
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str | None = None
    azure_openai_api_version: str = "2024-10-01-preview"
    azure_openai_deployment: str = "realtime"

    # Models, voice & turn taking
    realtime_model: str = "gpt-4o-realtime-preview"
    transcribe_model: str = "whisper-1"
    voice_name: str = "alloy"
    turn_detection: Literal["server_vad", "none"] = "server_vad"
    opening_message: str = "Hello!"

    # Audio
    sample_rate_hz: PositiveInt = 24_000
    chunk_ms: PositiveInt = 40
    input_device_id: int | None = None
    output_device_id: int | None = None
    # Server VAD mode keeps at least this much recent microphone audio
    input_audio_lookback_ms: PositiveInt = 5_000

    # Calendar
    calendar_base_url: str = "https://www.googleapis.com/calendar/v3/calendars/primary"
    calendar_token: str | None = None
    calendar_timezone: str = "UTC"
    http_timeout_s: PositiveFloat = 30.0

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
