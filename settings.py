"""
Settings loaded from the environment (and .env) via pydantic-settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    app_host: str = "0.0.0.0"
    app_port: int = Field(default=8000, alias="PORT")

    # Database
    database_url: Optional[str] = None
    database_name: str = "mentormatch"

    # Matching
    exclude_left_swiped: bool = False
    discover_limit: int = 10
    intro_message_template: str = "Hi {mentor_name}! I'd like to connect with you."
    default_display_name: str = "User"
    default_avatar_url: str = "https://api.dicebear.com/7.x/avataaars/svg?seed=default"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = Path("./logs/app.log")


@lru_cache
def get_settings() -> Settings:
    return Settings()
