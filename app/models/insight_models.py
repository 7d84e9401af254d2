"""ADSCOUT — Performance Insight Models."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field


class PerformanceInsight(SQLModel, table=True):
    """Latest metrics snapshot for one ad in the insights namespace.

    Keyed by the insights API ad id; a re-fetch overwrites the row.
    """

    __tablename__ = "performance_insights"

    ad_id: str = Field(primary_key=True)
    account_id: Optional[str] = Field(default=None, index=True)
    name: Optional[str] = Field(default=None)
    spend: float = Field(default=0.0)
    impressions: int = Field(default=0)
    clicks: float = Field(default=0.0)
    purchases: float = Field(default=0.0)
    purchase_value: float = Field(default=0.0)
    roas: Optional[float] = Field(default=None, description="None when spend is 0")
    ctr: float = Field(default=0.0)
    cpc: float = Field(default=0.0)
    cpm: float = Field(default=0.0)
    currency: Optional[str] = Field(default=None)
    date_preset: str = Field(default="")
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncError(BaseModel):
    """One isolated failure inside an insights batch."""

    account: Optional[str] = None
    ad_id: Optional[str] = None
    error: str


class SyncResult(BaseModel):
    """Outcome of one page of POST /sync-insights."""

    synced: int = 0
    date_preset: str = ""
    total_accounts: int = 0
    processed_accounts: int = 0
    account_offset: int = 0
    has_more: bool = False
    message: Optional[str] = None
    errors: List[SyncError] = []


class RefreshResult(BaseModel):
    """Outcome of POST /refresh-insights."""

    refreshed: int = 0
    requested: int = 0
    date_preset: str = ""
    message: Optional[str] = None
    errors: List[SyncError] = []
