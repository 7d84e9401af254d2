"""ADSCOUT — Ad & Brand Models.

`Ad` and `Brand` are the stored tables. `NormalizedAd` is what the
normalizer produces from one raw scraper record; `AdView` is a stored ad
with derived metrics and any cached insight merged in.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field


# ─────────────────────────────────────────────
# DATABASE MODELS
# ─────────────────────────────────────────────


class Ad(SQLModel, table=True):
    """Canonical ad observed in the Ads Library.

    `first_seen` is written once; `last_seen` moves on every re-observation.
    """

    __tablename__ = "ads"

    id: str = Field(primary_key=True, description="Provider ad archive id or derived id")
    brand_name: str = Field(default="Unknown", index=True)
    reach: int = Field(default=0, ge=0)
    video_url: str = Field(default="")
    thumbnail_url: str = Field(default="")
    heading: str = Field(default="")
    ad_copy: str = Field(default="")
    ad_library_url: str = Field(default="")
    brand_ad_library_url: str = Field(default="", index=True)
    first_seen: Optional[str] = Field(default=None, description="ISO-8601")
    last_seen: Optional[str] = Field(default=None, description="ISO-8601")
    start_date_formatted: Optional[str] = Field(default=None)
    ad_id: Optional[str] = Field(
        default=None, index=True, description="Numeric id from the library URL"
    )


class Brand(SQLModel, table=True):
    """A tracked competitor page. Soft-deleted via `is_active`."""

    __tablename__ = "brands"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    name: str = Field(default="")
    ad_library_url: str = Field(description="Ads Library page URL")
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS
# ─────────────────────────────────────────────


class NormalizedAd(BaseModel):
    """Output of the raw record normalizer (wire shape, snake_case)."""

    id: str
    brand_name: str = "Unknown"
    reach: int = 0
    video_url: str = ""
    thumbnail_url: str = ""
    heading: str = ""
    ad_copy: str = ""
    ad_library_url: str = ""
    brand_ad_library_url: str = ""
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    start_date_formatted: Optional[str] = None
    ad_id: Optional[str] = None


class AdView(NormalizedAd):
    """Ad as served to readers: derived metrics plus cached insights."""

    days_active: int = 1
    viral_score: int = 0
    spend: Optional[float] = None
    impressions: Optional[int] = None
    clicks: Optional[float] = None
    cpm: Optional[float] = None
    cpc: Optional[float] = None
    ctr: Optional[float] = None
    roas: Optional[float] = None
    purchases: Optional[float] = None
    purchase_value: Optional[float] = None
    insights_currency: Optional[str] = None
    insights_date_preset: Optional[str] = None
