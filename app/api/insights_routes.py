"""ADSCOUT — Insights API Routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from app.analyzer.insights_sync import refresh_ad_insights, sync_insights
from app.config import settings
from app.connectors.meta.client import MetaClient
from app.core.logging import get_logger
from app.database import get_session
from app.ingestion.repository import AdRepository

logger = get_logger("api.insights")

router = APIRouter(tags=["Insights"])


async def get_meta_client():
    """Dependency — yields a Meta client, closed after the request."""
    client = MetaClient()
    try:
        yield client
    finally:
        await client.close()


# ── Request Models ──


class SyncInsightsRequest(BaseModel):
    """Request body for POST /sync-insights."""

    date_preset: Optional[str] = Field(default=None, alias="datePreset")
    account_offset: int = Field(default=0, alias="accountOffset")
    accounts_per_batch: int = Field(default=1, alias="accountsPerBatch")
    max_ads_per_account: int = Field(default=100, alias="maxAdsPerAccount")
    since: Optional[str] = None
    """Custom start date in YYYY-MM-DD format; needs `until` too."""
    until: Optional[str] = None

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {"datePreset": "last_30d", "accountOffset": 0, "accountsPerBatch": 2},
                {"since": "2026-02-01", "until": "2026-02-18"},
            ]
        },
    }


class RefreshInsightsRequest(BaseModel):
    """Request body for POST /refresh-insights."""

    date_preset: str = Field(default="last_7d", alias="datePreset")

    model_config = {"populate_by_name": True}


# ── Endpoints ──


@router.post("/sync-insights")
async def sync_meta_insights(
    request: SyncInsightsRequest,
    session: Session = Depends(get_session),
    meta: MetaClient = Depends(get_meta_client),
):
    """Sync one page of ad accounts into performance_insights.

    Call again with the returned `accountOffset` while `hasMore` is true.
    """
    result = await sync_insights(
        AdRepository(session),
        meta,
        date_preset=request.date_preset or settings.insights_date_preset,
        account_offset=request.account_offset,
        accounts_per_batch=request.accounts_per_batch,
        max_ads_per_account=request.max_ads_per_account,
        since=request.since,
        until=request.until,
    )
    body: Dict[str, Any] = {
        "success": True,
        "synced": result.synced,
        "datePreset": result.date_preset,
        "totalAccounts": result.total_accounts,
        "processedAccounts": result.processed_accounts,
        "accountOffset": result.account_offset,
        "hasMore": result.has_more,
    }
    if result.message:
        body["message"] = result.message
    if result.errors:
        body["errors"] = [e.model_dump(exclude_none=True) for e in result.errors]
    return body


@router.post("/refresh-insights")
async def refresh_insights(
    request: RefreshInsightsRequest,
    session: Session = Depends(get_session),
    meta: MetaClient = Depends(get_meta_client),
):
    """Re-fetch insights for stored ads that carry an ad_id."""
    result = await refresh_ad_insights(
        AdRepository(session), meta, date_preset=request.date_preset
    )
    body: Dict[str, Any] = {
        "success": True,
        "refreshed": result.refreshed,
        "datePreset": result.date_preset,
    }
    if result.message:
        body["message"] = result.message
    if result.errors:
        body["errors"] = [e.model_dump(exclude_none=True) for e in result.errors]
    return body
