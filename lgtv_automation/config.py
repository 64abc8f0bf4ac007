import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".config" / "lgtv-automation"


class Settings(BaseSettings):
    """Runtime settings with validation.

    Values come from LGTV_* environment variables or a .env file in the
    working directory. The TV itself is described by TVConfiguration, which
    lives in the configuration store under data_dir.
    """

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Directory for configuration and pairing keys")
    log_level: str = Field(default="INFO", description="Console log level")
    log_dir: Path | None = Field(default=None, description="Directory for rotating JSON logs (disabled if unset)")

    # Protocol client
    connect_timeout: float = Field(gt=0, default=10.0, description="Per-transport connect + handshake timeout (s)")
    secure_port: int = Field(ge=1, le=65535, default=3001, description="TLS WebSocket port")
    plain_port: int = Field(ge=1, le=65535, default=3000, description="Plaintext WebSocket port")
    ping_interval: float | None = Field(default=20.0, description="WebSocket keepalive ping interval (s)")

    # Automation
    wake_settle_delay: float = Field(ge=0, default=3.0, description="Wait after the wake packet before connecting (s)")
    debounce_window: float = Field(ge=0, default=10.0, description="Minimum gap between two wake or sleep sequences (s)")
    auto_connect_attempts: int = Field(ge=1, default=3, description="Startup connect attempts")
    auto_connect_backoff: float = Field(ge=0, default=2.0, description="Backoff per attempt number (s)")

    # Diagnostics
    diagnostics_enabled: bool = False
    diagnostics_verbose: bool = False
    diagnostic_interval: float = Field(gt=0, default=60.0, description="Diagnostic snapshot period (s)")

    model_config = SettingsConfigDict(
        env_prefix="LGTV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log_level is a standard logging level name."""
        v = v.strip().upper()
        if v not in logging.getLevelNamesMapping():
            raise ValueError(f"log_level must be a logging level name, got '{v}'")
        return v

    @property
    def configuration_path(self) -> Path:
        return self.data_dir / "tv_configuration.json"

    @property
    def key_store_path(self) -> Path:
        return self.data_dir / "client_keys.json"


# Singleton settings instance (cached for performance)
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get singleton Settings instance.

    Returns:
        Cached Settings instance
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
