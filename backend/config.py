from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./bank_core.db"
    secret_key: str
    algorithm: str = "HS256"

    # OAuth callback is built from this: {app_base_url}/api/accounting/bank-oauth/callback
    app_base_url: str = "http://localhost:3000"

    # Shared secret for the scheduled bank sync endpoint
    cron_secret: str = ""

    # Bank API settings
    bank_api_timeout_seconds: float = 30.0
    token_refresh_window_minutes: int = 5
    scheduled_sync_days: int = 7

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()
