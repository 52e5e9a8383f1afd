from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COUPON_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Coupon Management Service"
    environment: str = "local"
    log_level: str = "INFO"
    log_json: bool = False

    host: str = "127.0.0.1"
    port: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
