"""ADSCOUT — Scrape Service.

Server half of a scrape:
  trigger actor run → map run status on every poll → on success fetch the
  dataset, resolve brands, normalize, persist.

The Apify webhook and the status poll both end in `ingest_dataset`; the
upsert is idempotent so processing the same dataset twice is harmless.
"""

from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.connectors.apify.client import ApifyAPIError, ApifyClient
from app.core.logging import get_logger
from app.ingestion.brand_resolver import candidate_urls, resolve
from app.ingestion.errors import (
    DatasetMissing,
    InvalidStatusTransition,
    NoActiveTargets,
    RunNotFound,
)
from app.ingestion.normalizer import (
    NormalizationContext,
    extract_brand_name,
    normalize,
    parse_ad_id,
)
from app.ingestion.repository import AdRepository
from app.models.ad_models import NormalizedAd
from app.models.scrape_models import (
    RunStatus,
    ScrapeStatus,
    ScrapeStatusResult,
    TriggerResult,
)

logger = get_logger("ingestion.scrape")

# Apify run status → (tracked run status, reported scrape status)
_PROVIDER_STATUS_MAP = {
    "READY": (RunStatus.PENDING, ScrapeStatus.RUNNING),
    "RUNNING": (RunStatus.RUNNING, ScrapeStatus.RUNNING),
    "FAILED": (RunStatus.FAILED, ScrapeStatus.FAILED),
    "ABORTED": (RunStatus.FAILED, ScrapeStatus.FAILED),
    "TIMED-OUT": (RunStatus.FAILED, ScrapeStatus.FAILED),
}


def build_actor_input(brand_urls: List[str]) -> Dict[str, Any]:
    """Ads Library scraper input for a set of brand page URLs."""
    return {
        "count": settings.scrape_result_count,
        "period": settings.scrape_period,
        "scrapeAdDetails": True,
        "scrapePageAds.activeStatus": "all",
        "scrapePageAds.countryCode": "ALL",
        "urls": [{"url": url, "method": "GET"} for url in brand_urls],
    }


def webhook_url(session_id: str) -> Optional[str]:
    if not settings.webhook_base_url:
        return None
    base = settings.webhook_base_url.rstrip("/")
    return f"{base}/webhooks/apify?{urlencode({'sessionId': session_id})}"


def _is_valid_page_name(name: Optional[str]) -> bool:
    return bool(name) and name != "Unknown" and not name.isdigit()


def _track_run(
    repo: AdRepository,
    run_id: str,
    session_id: str,
    status: RunStatus,
    dataset_id: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    """Record the provider status on our ScrapeRun row, if we have one."""
    run = repo.get_run(run_id)
    if run is None:
        run = repo.create_run(run_id, session_id, RunStatus.PENDING)
    try:
        repo.update_run_status(run, status, dataset_id=dataset_id, message=message)
    except InvalidStatusTransition as e:
        # Provider answers can arrive out of order; the stored status stands
        logger.warning(str(e), extra={"run_id": run_id})


# ─────────────────────────────────────────────
# Trigger
# ─────────────────────────────────────────────


async def trigger_scrape(
    repo: AdRepository, apify: ApifyClient, session_id: str
) -> TriggerResult:
    """Start one actor run covering every active brand of the session."""
    brands = repo.list_active_brands(session_id)
    if not brands:
        raise NoActiveTargets(session_id)

    urls = [b.ad_library_url for b in brands]
    run = await apify.start_actor_run(build_actor_input(urls), webhook_url(session_id))
    run_id = run.get("id")
    if not run_id:
        raise ApifyAPIError("Apify did not return a run id")

    initial = RunStatus.RUNNING if run.get("status") == "RUNNING" else RunStatus.PENDING
    repo.create_run(run_id, session_id, initial)
    logger.info(
        f"Scrape started for {len(brands)} brand(s)",
        extra={"run_id": run_id, "session_id": session_id},
    )
    return TriggerResult(run_id=run_id, brands=[b.name or b.ad_library_url for b in brands])


# ─────────────────────────────────────────────
# Status
# ─────────────────────────────────────────────


async def check_scrape(
    repo: AdRepository,
    apify: ApifyClient,
    run_id: str,
    session_id: str,
    now: Optional[datetime] = None,
) -> ScrapeStatusResult:
    """Map the provider run status; ingest the dataset once it succeeded."""
    run = await apify.get_run(run_id)
    if run is None:
        raise RunNotFound(run_id)

    provider_status = run.get("status") or ""

    if provider_status == "SUCCEEDED":
        dataset_id = run.get("defaultDatasetId")
        if not dataset_id:
            raise DatasetMissing(run_id)
        items = await apify.list_dataset_items(dataset_id)
        ads = ingest_dataset(repo, items, session_id, now=now, run_id=run_id)
        _track_run(repo, run_id, session_id, RunStatus.SUCCEEDED, dataset_id=dataset_id)
        return ScrapeStatusResult(
            status=ScrapeStatus.COMPLETED,
            run_id=run_id,
            ads=ads,
            count=len(ads),
            provider_status=provider_status,
        )

    mapped = _PROVIDER_STATUS_MAP.get(provider_status)
    if mapped is None:
        logger.warning(
            f"Unrecognised provider status {provider_status!r}", extra={"run_id": run_id}
        )
        return ScrapeStatusResult(
            status=ScrapeStatus.UNKNOWN, run_id=run_id, provider_status=provider_status
        )

    run_status, scrape_status = mapped
    message = None
    if scrape_status == ScrapeStatus.FAILED:
        message = run.get("statusMessage") or "Scraping failed"
        logger.error(f"Scrape failed: {message}", extra={"run_id": run_id})
    _track_run(repo, run_id, session_id, run_status, message=message)
    return ScrapeStatusResult(
        status=scrape_status,
        run_id=run_id,
        message=message,
        provider_status=provider_status,
    )


async def ingest_webhook(
    repo: AdRepository,
    apify: ApifyClient,
    resource: Dict[str, Any],
    session_id: str,
    now: Optional[datetime] = None,
) -> List[NormalizedAd]:
    """Handle an ACTOR.RUN.SUCCEEDED webhook payload resource."""
    run_id = resource.get("id")
    dataset_id = resource.get("defaultDatasetId")
    if not dataset_id:
        if not run_id:
            raise RunNotFound("")
        run = await apify.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        dataset_id = run.get("defaultDatasetId")
        if not dataset_id:
            raise DatasetMissing(run_id)

    items = await apify.list_dataset_items(dataset_id)
    ads = ingest_dataset(repo, items, session_id, now=now, run_id=run_id)
    if run_id:
        _track_run(repo, run_id, session_id, RunStatus.SUCCEEDED, dataset_id=dataset_id)
    return ads


# ─────────────────────────────────────────────
# Ingest
# ─────────────────────────────────────────────


def ingest_dataset(
    repo: AdRepository,
    items: List[Dict[str, Any]],
    session_id: str,
    now: Optional[datetime] = None,
    run_id: Optional[str] = None,
) -> List[NormalizedAd]:
    """Normalize and persist a dataset; returns the ads that were stored.

    One bad record never sinks the batch: a failed upsert is logged and
    skipped.
    """
    now = now or datetime.now(timezone.utc)
    brands = repo.list_active_brands(session_id)
    known_urls = [b.ad_library_url for b in brands]
    context = NormalizationContext(run_id=run_id)
    page_names: Dict[str, Counter] = defaultdict(Counter)

    saved: List[NormalizedAd] = []
    failed = 0
    for raw in items:
        if not isinstance(raw, dict):
            failed += 1
            continue

        resolved = resolve(candidate_urls(raw), known_urls)
        ad = normalize(raw, resolved, now=now, context=context)

        if resolved in known_urls:
            name = extract_brand_name(raw)
            if _is_valid_page_name(name):
                page_names[resolved][name] += 1

        try:
            row = repo.upsert_ad(ad, now)
        except SQLAlchemyError as e:
            failed += 1
            logger.error(f"Failed to save ad {ad.id}: {e}", extra={"run_id": run_id})
            continue
        saved.append(NormalizedAd.model_validate(row, from_attributes=True))

    if page_names:
        most_common = {url: c.most_common(1)[0][0] for url, c in page_names.items()}
        repo.rename_brands(brands, most_common)

    logger.info(
        f"Ingested {len(saved)}/{len(items)} ads "
        f"({failed} failed, {context.placeholder_thumbnails} placeholder thumbnails, "
        f"{context.unparsable_dates} unparsable dates)",
        extra={"run_id": run_id, "session_id": session_id},
    )
    return saved


def backfill_ad_ids(repo: AdRepository) -> int:
    """Parse `ad_id` for stored ads that predate it."""
    updates: Dict[str, str] = {}
    for ad in repo.ads_missing_ad_id():
        parsed = parse_ad_id(ad.ad_library_url) or parse_ad_id(ad.brand_ad_library_url)
        if parsed:
            updates[ad.id] = parsed
    if not updates:
        return 0
    updated = repo.set_ad_ids(updates)
    logger.info(f"Backfilled ad_id on {updated} ads")
    return updated
