# app/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Database (leave empty to run memory-only) ─────────────────────────
    DATABASE_URL: Optional[str] = None

    # ── Network ───────────────────────────────────────────────────────────
    BACKEND_IP: str = "0.0.0.0"
    BACKEND_PORT: int = 8080

    # ── Security ──────────────────────────────────────────────────────────
    API_KEY: Optional[str] = None   # Set in .env to enable auth on query endpoints

    # ── Relay (MQTT broker; leave MQTT_HOST empty for stream + polling only) ─
    MQTT_HOST: Optional[str] = None
    MQTT_PORT: int = 1883
    MQTT_USERNAME: Optional[str] = None
    MQTT_PASSWORD: Optional[str] = None
    MQTT_CLIENT_ID: str = "people-counter-backend"
    RELAY_CHANNEL: str = "counter-channel"
    RELAY_EVENT: str = "counter-update"

    # ── Live stream ───────────────────────────────────────────────────────
    STREAM_KEEPALIVE_SECONDS: float = 15.0   # Proxies drop idle streams at ~60s
    STREAM_QUEUE_SIZE: int = 100

    # ── History ───────────────────────────────────────────────────────────
    CURRENT_HISTORY_LIMIT: int = 100
    HISTORY_DEFAULT_LIMIT: int = 50
    HISTORY_MAX_LIMIT: int = 1000

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None            # Defaults to <repo>/logs

    @property
    def PERSISTENCE_ENABLED(self) -> bool:
        return bool(self.DATABASE_URL)

    @property
    def RELAY_ENABLED(self) -> bool:
        return bool(self.MQTT_HOST)

    @property
    def RELAY_TOPIC(self) -> str:
        return f"{self.RELAY_CHANNEL}/{self.RELAY_EVENT}"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
