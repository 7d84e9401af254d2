"""ADSCOUT — Ads API Routes."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from app.analyzer.metrics_engine import rank_ads
from app.core.logging import get_logger
from app.database import get_session
from app.ingestion.normalizer import parse_provider_date
from app.ingestion.repository import AdRepository
from app.ingestion.scrape_service import backfill_ad_ids

logger = get_logger("api.ads")

router = APIRouter(prefix="/ads", tags=["Ads"])


@router.get("")
async def get_ads(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    session: Session = Depends(get_session),
):
    """Stored ads for the session's brands, reach-desc, with derived metrics."""
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")

    repo = AdRepository(session)
    brand_urls = repo.list_active_brand_urls(session_id)
    if not brand_urls:
        return {"success": True, "ads": [], "count": 0, "lastUpdated": None}

    ads = repo.list_ads_for_brand_urls(brand_urls)
    insights = repo.insights_for([a.ad_id for a in ads if a.ad_id])
    views = rank_ads(ads, datetime.now(timezone.utc), insights)

    seen = [a.last_seen for a in ads if parse_provider_date(a.last_seen)]
    last_updated = max(seen, key=parse_provider_date) if seen else None

    return {
        "success": True,
        "ads": [v.model_dump() for v in views],
        "count": len(views),
        "lastUpdated": last_updated,
    }


@router.post("/backfill-ad-ids")
async def backfill(session: Session = Depends(get_session)):
    """Parse ad_id from library URLs for ads stored before it existed."""
    updated = backfill_ad_ids(AdRepository(session))
    return {"success": True, "updated": updated}
