"""ADSYNC — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_access_token: str = ""
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_api_tier: str = "development"  # development | standard
    meta_account_id: str = ""  # account checked by the marketing ping
    meta_request_timeout: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    environment: str = "production"  # development | production
    cron_secret: Optional[str] = None
    scheduler_enabled: bool = True
    daily_metrics_hour: int = 3  # Daily metrics refresh at 3 AM UTC
    weekly_details_day: str = "sun"
    weekly_details_hour: int = 4

    # ── Rate Limiting (seconds unless noted) ──
    max_rate_limit_retries: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    min_call_delay: float = 1.0
    insights_call_delay: float = 3.0
    burst_delay: float = 2.0
    max_dynamic_delay: float = 5.0
    usage_threshold_pct: float = 80.0

    # ── Pagination ──
    page_limit: int = 100
    page_delay: float = 2.0
    max_pages: int = 500

    # ── Batching ──
    daily_batch_size: int = 5
    weekly_batch_size: int = 3
    batch_delay: float = 60.0
    api_call_delay: float = 2.0

    # ── Freshness ──
    stale_after_days: float = 3.0
    new_account_lookback_months: int = 12
    max_incremental_lookback_days: int = 30
    weekly_lookback_days: int = 7
    insights_timeout: float = 30.0

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adsync.db"
        return "sqlite:///./adsync.db"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def rate_limit_block_seconds(self) -> int:
        """Block time Meta applies once the tier's score is exhausted."""
        return 60 if self.meta_api_tier.lower() == "standard" else 300

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
