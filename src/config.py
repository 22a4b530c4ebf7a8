from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Environment
    environment: str = "development"  # "development" or "production"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/marketpulse.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    api_rate_limit_requests: int = 100
    api_rate_limit_window_seconds: int = 60

    # Cron endpoints (Authorization: Bearer <secret>)
    cron_secret: str = ""
    worker_timeout_seconds: int = 540

    # Scheduler
    scheduler_enabled: bool = False  # in-process trigger; cron endpoints otherwise
    scheduler_interval_minutes: int = 15
    scheduler_batch_limit: int = 100
    trial_grace_period_days: int = 3

    # Crawler
    crawler_batch_size: int = 10
    crawler_max_workers: int = 1
    crawler_max_attempts: int = 3
    crawler_retry_base_minutes: int = 5
    crawler_retry_max_minutes: int = 60
    crawler_claim_timeout_seconds: int = 600
    crawler_timeout_ms: int = 30000
    crawler_use_browser: bool = False
    crawler_interval_minutes: int = 5
    rate_limit_requests_per_hour: int = 10

    # Email
    resend_api_key: str = ""
    email_from: str = "MarketPulse <alerts@marketpulse.com>"
    email_batch_size: int = 50
    email_max_attempts: int = 3
    email_send_delay_ms: int = 100
    email_claim_timeout_seconds: int = 300
    email_interval_minutes: int = 5
    digest_hour: int = 9
    dashboard_url: str = "http://localhost:3000"

    # Web push (VAPID)
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:support@getmarketpulse.com"

    # Ops notifications
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    discord_webhook_url: str = ""
    notification_enabled: bool = True

    # CORS (comma-separated origins, empty means localhost only)
    cors_origins: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def sync_database_url(self) -> str:
        return self.database_url.replace("+aiosqlite", "").replace("+asyncpg", "")


@lru_cache
def get_settings() -> Settings:
    return Settings()
