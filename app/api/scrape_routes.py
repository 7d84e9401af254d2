"""ADSCOUT — Scrape API Routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from app.connectors.apify.client import ApifyAPIError, ApifyClient
from app.core.logging import get_logger
from app.database import get_session
from app.ingestion.errors import DatasetMissing, NoActiveTargets, RunNotFound
from app.ingestion.repository import AdRepository
from app.ingestion.scrape_service import check_scrape, ingest_webhook, trigger_scrape

logger = get_logger("api.scrape")

router = APIRouter(tags=["Scrape"])


async def get_apify_client():
    """Dependency — yields an Apify client, closed after the request."""
    client = ApifyClient()
    try:
        yield client
    finally:
        await client.close()


# ── Request Models ──


class ScrapeRequest(BaseModel):
    """Request body for POST /scrape."""

    session_id: Optional[str] = Field(default=None, alias="sessionId")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {"examples": [{"sessionId": "a1b2c3"}]},
    }


# ── Endpoints ──


@router.post("/scrape")
async def start_scrape(
    request: ScrapeRequest,
    session: Session = Depends(get_session),
    apify: ApifyClient = Depends(get_apify_client),
):
    """Start one scraper run for every active brand of the session."""
    if not request.session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")
    try:
        result = await trigger_scrape(AdRepository(session), apify, request.session_id)
    except NoActiveTargets as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ApifyAPIError as e:
        logger.error(f"Failed to start scrape: {e}", extra={"endpoint": "/scrape"})
        raise HTTPException(status_code=502, detail=f"Failed to start scrape: {str(e)}")
    return {
        "success": True,
        "runId": result.run_id,
        "message": f"Scraping started for {len(result.brands)} brand(s)",
        "brands": result.brands,
    }


@router.get("/scrape-status")
async def scrape_status(
    run_id: Optional[str] = Query(default=None, alias="runId"),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    session: Session = Depends(get_session),
    apify: ApifyClient = Depends(get_apify_client),
):
    """Current status of a run; ads are included once it has completed."""
    if not run_id:
        raise HTTPException(status_code=400, detail="runId is required")
    try:
        result = await check_scrape(AdRepository(session), apify, run_id, session_id or "")
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DatasetMissing as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ApifyAPIError as e:
        logger.error(
            f"Status check failed: {e}",
            extra={"endpoint": "/scrape-status", "run_id": run_id},
        )
        raise HTTPException(status_code=502, detail=f"Failed to check scrape: {str(e)}")

    body: Dict[str, Any] = {"status": result.status.value, "runId": result.run_id}
    if result.ads is not None:
        body["ads"] = [ad.model_dump() for ad in result.ads]
        body["count"] = result.count
    if result.message:
        body["message"] = result.message
    return body


@router.post("/webhooks/apify")
async def apify_webhook(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    session: Session = Depends(get_session),
    apify: ApifyClient = Depends(get_apify_client),
):
    """ACTOR.RUN.SUCCEEDED webhook: fetch and store the run's dataset."""
    payload = payload or {}
    resource = payload.get("resource") or {
        "id": payload.get("runId"),
        "defaultDatasetId": payload.get("datasetId"),
    }
    try:
        ads = await ingest_webhook(AdRepository(session), apify, resource, session_id or "")
    except (RunNotFound, DatasetMissing) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ApifyAPIError as e:
        logger.error(f"Webhook ingest failed: {e}", extra={"endpoint": "/webhooks/apify"})
        raise HTTPException(status_code=502, detail=f"Failed to fetch dataset: {str(e)}")
    return {
        "success": True,
        "count": len(ads),
        "message": f"Saved {len(ads)} ads" if ads else "No ads to save",
    }
