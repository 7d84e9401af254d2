"""ADSCOUT — Scrape Run Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field

from app.models.ad_models import NormalizedAd


class RunStatus(str, Enum):
    """Lifecycle of one external scraper run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Monotonic: nothing leaves a terminal status, RUNNING never goes back.
ALLOWED_RUN_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.PENDING: frozenset(
        {RunStatus.RUNNING, RunStatus.SUCCEEDED, RunStatus.FAILED}
    ),
    RunStatus.RUNNING: frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class ScrapeRun(SQLModel, table=True):
    """One Apify actor run triggered for a session."""

    __tablename__ = "scrape_runs"

    run_id: str = Field(primary_key=True)
    session_id: str = Field(index=True)
    status: RunStatus = Field(default=RunStatus.PENDING)
    dataset_id: Optional[str] = Field(default=None, description="Set on SUCCEEDED")
    status_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — Scrape status wire format
# ─────────────────────────────────────────────


class ScrapeStatus(str, Enum):
    """Status reported by GET /scrape-status."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class TriggerResult(BaseModel):
    run_id: str
    brands: List[str] = []


class ScrapeStatusResult(BaseModel):
    status: ScrapeStatus
    run_id: str
    ads: Optional[List[NormalizedAd]] = None
    count: Optional[int] = None
    message: Optional[str] = None
    provider_status: Optional[str] = None
