"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout_seconds: int = 30

    # Redis (alert cooldowns, readiness check)
    redis_url: str = "redis://localhost:6379/0"

    # Square
    square_access_token: str = ""
    square_environment: str = "sandbox"  # sandbox | production
    square_api_version: str = "2024-10-17"
    square_api_timeout_seconds: float = 15.0
    # Comma-separated: sandbox and production keys can both be active
    square_webhook_signature_keys: str = ""
    square_webhook_notification_url: str = ""

    # Persistence retry policy
    db_retry_max_attempts: int = 3
    db_retry_initial_delay_ms: int = 100
    db_retry_max_delay_ms: int = 2000
    db_retry_backoff_factor: float = 2.0

    # Catalog sync safety
    sync_require_confirmation: bool = True
    sync_confirmation_flag: str = "--confirm-sync"
    sync_min_source_items: int = 1
    sync_blocked_target_keywords: str = "production,prod"
    sync_allowed_targets: str = ""  # Comma-separated; empty disables the allow-list

    # Monitoring
    sentry_dsn: str = ""
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def webhook_signature_keys(self) -> list[str]:
        return _split_csv(self.square_webhook_signature_keys)

    @property
    def square_base_url(self) -> str:
        if self.square_environment.lower() == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    def retry_policy(self):
        """Default RetryPolicy for persistence operations."""
        from storefront.utils.retry import RetryPolicy
        return RetryPolicy(
            max_attempts=self.db_retry_max_attempts,
            initial_delay_ms=self.db_retry_initial_delay_ms,
            max_delay_ms=self.db_retry_max_delay_ms,
            backoff_factor=self.db_retry_backoff_factor,
        )

    def sync_safety_config(self):
        """SyncSafetyConfig snapshot for one sync invocation."""
        from storefront.services.safety_gate import SyncSafetyConfig
        return SyncSafetyConfig(
            require_confirmation=self.sync_require_confirmation,
            confirmation_flag=self.sync_confirmation_flag,
            min_source_items=self.sync_min_source_items,
            blocked_target_keywords=frozenset(
                kw.lower() for kw in _split_csv(self.sync_blocked_target_keywords)
            ),
            allowed_targets=frozenset(_split_csv(self.sync_allowed_targets)),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
