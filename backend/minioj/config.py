"""
Service configuration.

Values come from environment variables (or a .env file) via pydantic-settings;
field names map to upper-case variables, e.g. judge0_url -> JUDGE0_URL.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./test.db"

    # Judge0
    judge0_url: str = "http://localhost:2358"
    judge0_key: str = ""  # RapidAPI hosted Judge0
    judge0_host: str = ""
    judge0_timeout: float = 10.0
    judge0_dispatch_attempts: int = 3
    judge0_backoff_base: float = 0.5
    # Judge0 base64-encodes the text fields of callback bodies
    judge0_callback_base64: bool = True

    # Public address of the webhook route, handed to Judge0 as callback_url
    webhook_url: str = "http://localhost:8000/webhook"

    # Test-case corpus
    bucket_name: str = ""
    aws_region: str = "us-east-1"
    run_sample_size: int = 1

    # Stale submission sweep; 0 disables the background loop
    sweep_interval_seconds: float = 0
    stale_after_seconds: float = 600

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
