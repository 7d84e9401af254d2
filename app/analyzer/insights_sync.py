"""ADSCOUT — Insights Sync.

Pulls per-ad performance from the Meta insights API into
`performance_insights`. Accounts are walked in pages so a single request
stays short; every failure is recorded in `errors` and the batch carries on.
"""

import re
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.analyzer.metrics_engine import build_insight
from app.config import settings
from app.connectors.meta.client import MetaAPIError, MetaClient
from app.core.logging import get_logger
from app.ingestion.repository import AdRepository
from app.models.insight_models import RefreshResult, SyncError, SyncResult

logger = get_logger("analyzer.insights_sync")

MAX_ACCOUNTS_PER_BATCH = 10
MAX_ADS_PER_ACCOUNT = 500
DEFAULT_ADS_PER_ACCOUNT = 100

_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

NO_ADS_HINT = (
    "Meta API returned 0 ads. Check META_AD_ACCOUNTS (e.g. act_123) "
    "and token permissions (ads_read)."
)


def _clamp(value: Optional[int], low: int, high: int, default: int) -> int:
    if not value:
        return default
    return min(max(int(value), low), high)


def _valid_day(value: Optional[str]) -> Optional[str]:
    if value and _ISO_DAY.match(value.strip()):
        return value.strip()
    return None


async def sync_insights(
    repo: AdRepository,
    meta: MetaClient,
    date_preset: Optional[str] = None,
    account_offset: int = 0,
    accounts_per_batch: int = 1,
    max_ads_per_account: int = DEFAULT_ADS_PER_ACCOUNT,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> SyncResult:
    """Sync one page of ad accounts.

    Call again with the returned `account_offset` while `has_more` is set.
    """
    if not meta.is_configured:
        return SyncResult(message="No token/accounts configured")

    since, until = _valid_day(since), _valid_day(until)
    use_time_range = bool(since and until)
    preset = f"{since} - {until}" if use_time_range else (
        date_preset or settings.insights_date_preset
    )

    accounts = meta.ad_account_ids
    offset = max(0, account_offset or 0)
    per_batch = _clamp(accounts_per_batch, 1, MAX_ACCOUNTS_PER_BATCH, 1)
    max_ads = _clamp(max_ads_per_account, 1, MAX_ADS_PER_ACCOUNT, DEFAULT_ADS_PER_ACCOUNT)
    batch = accounts[offset : offset + per_batch]

    errors: List[SyncError] = []
    synced = 0
    ads_listed = 0

    for account_id in batch:
        try:
            ads = await meta.list_account_ads(account_id, max_ads=max_ads)
        except MetaAPIError as e:
            logger.error(f"Listing ads failed: {e}", extra={"account_id": account_id})
            errors.append(SyncError(account=account_id, error=str(e)))
            continue
        ads_listed += len(ads)

        for ad in ads:
            ad_id = str(ad.get("id") or "")
            if not ad_id:
                continue
            try:
                rows = await meta.fetch_ad_insights(
                    ad_id, date_preset=preset, since=since, until=until
                )
            except MetaAPIError as e:
                errors.append(
                    SyncError(
                        account=account_id,
                        ad_id=ad_id,
                        error=f"insights failed {e.status_code}: {str(e)[:200]}",
                    )
                )
                continue
            if not rows:
                errors.append(
                    SyncError(account=account_id, ad_id=ad_id, error="no insights data")
                )
                continue

            insight = build_insight(
                ad_id,
                ad.get("account_id") or account_id,
                rows,
                preset,
                name=ad.get("name"),
            )
            try:
                repo.upsert_insight(insight)
            except SQLAlchemyError as e:
                errors.append(
                    SyncError(account=account_id, ad_id=ad_id, error=f"upsert failed: {e}")
                )
                continue
            synced += 1

    message = None
    if synced > 0:
        message = f"Synced {synced} ad(s)."
    elif errors:
        message = errors[0].error
    elif ads_listed == 0:
        message = NO_ADS_HINT

    next_offset = offset + len(batch)
    logger.info(
        f"Insights sync: {synced} synced, {len(errors)} errors, "
        f"accounts {offset}..{next_offset} of {len(accounts)}"
    )
    return SyncResult(
        synced=synced,
        date_preset=preset,
        total_accounts=len(accounts),
        processed_accounts=len(batch),
        account_offset=next_offset,
        has_more=next_offset < len(accounts),
        message=message,
        errors=errors,
    )


async def refresh_ad_insights(
    repo: AdRepository,
    meta: MetaClient,
    date_preset: str = "last_7d",
    batch_limit: Optional[int] = None,
) -> RefreshResult:
    """Re-fetch insights for stored ads that carry an `ad_id`."""
    limit = batch_limit or settings.refresh_batch_limit
    if not meta.access_token:
        return RefreshResult(date_preset=date_preset, message="No token configured")

    ad_ids: List[str] = []
    for ad in repo.ads_with_ad_id(limit):
        if ad.ad_id and ad.ad_id not in ad_ids:
            ad_ids.append(ad.ad_id)
    if not ad_ids:
        return RefreshResult(
            date_preset=date_preset, message="No ads with ad_id to refresh."
        )

    errors: List[SyncError] = []
    refreshed = 0
    for ad_id in ad_ids:
        try:
            rows = await meta.fetch_ad_insights(ad_id, date_preset=date_preset)
        except MetaAPIError as e:
            logger.warning(f"Insights fetch failed: {e}", extra={"ad_id": ad_id})
            errors.append(SyncError(ad_id=ad_id, error=str(e)))
            continue
        if not rows:
            continue
        try:
            repo.upsert_insight(build_insight(ad_id, None, rows, date_preset))
        except SQLAlchemyError as e:
            errors.append(SyncError(ad_id=ad_id, error=f"upsert failed: {e}"))
            continue
        refreshed += 1

    logger.info(f"Refreshed insights for {refreshed}/{len(ad_ids)} ads")
    return RefreshResult(
        refreshed=refreshed,
        requested=len(ad_ids),
        date_preset=date_preset,
        errors=errors,
    )
