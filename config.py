from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Soundboard settings.

    Every field can be overridden with a SOUNDBOARD_ prefixed environment
    variable (e.g. SOUNDBOARD_PORT=9000) or a .env file next to the process.
    """

    model_config = SettingsConfigDict(
        env_prefix="SOUNDBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    media_base_url: str = "https://www.myinstants.com/media/sounds/"
    data_dir: Path = Path.home() / ".soundboard"
    max_recent_sounds: int = Field(default=1000, ge=1)

    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = Field(default=5, ge=1)
    rate_limit_window_minutes: int = Field(default=10, ge=1)

    player_command: str = "mpv"
    player_volume: int = Field(default=70, ge=0, le=100)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    ui_poll_interval_seconds: int = Field(default=3, ge=1)

    advertise_mdns: bool = True
    service_name: str = "Soundboard"

    headless: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @property
    def recent_sounds_file(self) -> Path:
        return self.data_dir / "recent_sounds.json"

    @property
    def rate_limit_window_ms(self) -> int:
        return self.rate_limit_window_minutes * 60 * 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached Settings instance; call get_settings.cache_clear() to reload."""
    return Settings()
