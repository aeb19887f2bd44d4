from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Redis (signaling channel)
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)

    # Local participant
    USER_ID: str | None = Field(None)

    # ICE
    ICE_SERVERS: List[str] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    TURN_USERNAME: str | None = Field(None)
    TURN_CREDENTIAL: str | None = Field(None)

    # Capture devices (ffmpeg device name + input format)
    VIDEO_DEVICE: str | None = Field(None)
    VIDEO_FORMAT: str | None = Field(None)
    AUDIO_DEVICE: str = Field("default")
    AUDIO_FORMAT: str | None = Field(None)

    # App
    API_HOST: str = Field("127.0.0.1")
    API_PORT: int = Field(8000)
    DEBUG: bool = Field(True)

    # Metrics
    METRICS_ENABLED: bool = Field(False)
    METRICS_PORT: int = Field(8001)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
