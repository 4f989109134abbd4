"""Application configuration loaded from environment variables or a `.env` file."""

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "mysecretkey"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Logistics API"
    app_env: str = Field("dev", pattern="^(dev|prod)$")
    port: int = 3000
    log_level: str = "INFO"

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    database_name: str = "logistics"

    # Auth
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(24 * 60, ge=1)
    bcrypt_rounds: int = Field(12, ge=4, le=31)

    @property
    def uses_default_secret(self) -> bool:
        return self.secret_key == DEFAULT_SECRET_KEY


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    if settings.app_env == "prod" and settings.uses_default_secret:
        logging.getLogger(__name__).warning("SECRET_KEY is not set; using the insecure development default")
    return settings
