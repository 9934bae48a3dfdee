"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "HealthSync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | production

    # --- Database ---
    database_url: str = "postgresql://localhost:5432/healthsync"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # --- Push sync ---
    sync_secret: str = ""  # empty means every push is rejected

    # --- Tidepool (on-demand recent glucose pull only) ---
    tidepool_email: str = ""
    tidepool_password: str = ""

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
