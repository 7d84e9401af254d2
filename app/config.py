"""ADSCOUT — Central Configuration via Pydantic Settings."""

import os
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Apify (scraper) ──
    apify_token: str = ""
    apify_base_url: str = "https://api.apify.com/v2"
    apify_actor_id: str = "curious_coder~facebook-ads-library-scraper"
    scrape_result_count: int = 300
    scrape_period: str = "last30d"
    webhook_base_url: Optional[str] = None  # e.g. https://adscout.example.com

    # ── Meta API ──
    meta_access_token: str = ""
    meta_ad_accounts: str = ""  # comma-separated act_ ids
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    insights_sync_hour: int = 3  # Daily sync at 3 AM
    insights_date_preset: str = "last_30d"

    # ── Scrape orchestration ──
    scrape_wait_seconds: int = 300
    scrape_overtime_seconds: int = 180
    scrape_poll_interval_seconds: float = 5.0
    scrape_fast_poll_interval_seconds: float = 3.0

    # ── Ingestion / insights ──
    placeholder_thumbnail_url: str = (
        "https://poetype.dk/wp-content/uploads/2023/04/POETYPE-LOGO.svg"
    )
    refresh_batch_limit: int = 50

    @property
    def meta_ad_account_ids(self) -> List[str]:
        """Configured ad accounts, blanks dropped."""
        return [a.strip() for a in self.meta_ad_accounts.split(",") if a.strip()]

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adscout.db"
        return "sqlite:///./adscout.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
