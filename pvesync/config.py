"""
Configuration management for pvesync.

This module uses Pydantic's BaseSettings to manage process-level settings
through environment variables. The desired Proxmox configuration itself is
loaded from YAML by pvesync.inventory.loader.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings.

    These settings are loaded from environment variables prefixed PVESYNC_.
    """

    # Fingerprint store
    STATE_DB_PATH: str = "data/pvesync.db"

    # Worker pool
    MAX_WORKERS: int = 4

    # Remote execution
    CONNECT_TIMEOUT: int = 15  # seconds
    COMMAND_TIMEOUT: int = 120  # seconds
    CONNECT_RETRIES: int = 2
    RETRY_DELAY: float = 1.0
    KNOWN_HOSTS: str | None = None  # None uses ~/.ssh/known_hosts
    VERIFY_HOST_KEYS: bool = True

    # Probe unchanged resources before skipping them
    VERIFY_UNCHANGED: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        env_prefix="PVESYNC_",
        extra="ignore",
    )


settings = Settings()
