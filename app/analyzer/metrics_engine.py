"""ADSCOUT — Metrics Engine.

Derived per-ad fields (days active, viral score) and the insight merge rules:
purchase de-duplication, click-count resolution, and CTR / CPC / CPM / ROAS.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from app.core.logging import get_logger
from app.ingestion.normalizer import parse_provider_date
from app.models.ad_models import Ad, AdView, NormalizedAd
from app.models.insight_models import PerformanceInsight

logger = get_logger("analyzer.metrics")

SECONDS_PER_DAY = 86400

# Meta reports one conversion under several overlapping action types.
# Exactly one is read, in this order; summing them overcounts 2-3x.
PURCHASE_ACTION_PRIORITY = (
    "omni_purchase",
    "offsite_conversion.fb_pixel_purchase",
    "purchase",
)

CLICK_ACTION_TYPES = ("outbound_click", "link_click", "inline_link_click")

ActionList = Optional[Sequence[Mapping[str, Any]]]


def _finite(value: Any) -> Optional[float]:
    """Float for finite numbers and numeric strings, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    elif isinstance(value, str):
        try:
            n = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return n if math.isfinite(n) else None


def _action_type(entry: Any) -> str:
    if isinstance(entry, Mapping):
        return str(entry.get("action_type") or "").lower()
    return ""


# ─────────────────────────────────────────────
# Insight merge rules
# ─────────────────────────────────────────────


def select_purchase_metric(entries: ActionList) -> float:
    """Value of the single highest-priority purchase action type present."""
    if not entries or not isinstance(entries, (list, tuple)):
        return 0.0
    for canonical in PURCHASE_ACTION_PRIORITY:
        for entry in entries:
            if _action_type(entry) == canonical:
                value = entry.get("value")
                n = _finite(0 if value is None else value)
                return n if n is not None else 0.0
    return 0.0


def _outbound_from_list(items: List[Any]) -> Optional[float]:
    outbound = [a for a in items if "outbound" in _action_type(a)]
    total = 0.0
    for item in outbound or items:
        raw = item.get("value") if isinstance(item, Mapping) else item
        total += _finite(raw) or 0.0
    if total > 0:
        return total
    head = items[0]
    return _finite(head.get("value") if isinstance(head, Mapping) else head)


def resolve_click_count(row: Mapping[str, Any]) -> float:
    """Outbound clicks, falling back to link-type actions, inline link clicks, clicks."""
    outbound = row.get("outbound_clicks")
    if outbound is not None:
        if isinstance(outbound, list):
            if outbound:
                n = _outbound_from_list(outbound)
                if n is not None:
                    return n
        else:
            n = _finite(outbound)
            if n is not None:
                return n

    for entry in row.get("actions") or []:
        if _action_type(entry) in CLICK_ACTION_TYPES:
            value = entry.get("value")
            n = _finite(0 if value is None else value)
            if n is not None:
                return n
            break

    for key in ("inline_link_clicks", "clicks"):
        n = _finite(row.get(key))
        if n is not None:
            return n
    return 0.0


def derive_ratios(
    spend: float, impressions: float, clicks: float, purchase_value: float
) -> Dict[str, Optional[float]]:
    """CTR (%), CPC, CPM and ROAS. ROAS is None when there is no spend."""
    return {
        "ctr": (clicks / impressions * 100) if impressions > 0 else 0.0,
        "cpc": (spend / clicks) if clicks > 0 else 0.0,
        "cpm": (spend / impressions * 1000) if impressions > 0 else 0.0,
        "roas": (purchase_value / spend)
        if spend > 0 and math.isfinite(purchase_value)
        else None,
    }


def build_insight(
    ad_id: str,
    account_id: Optional[str],
    rows: Iterable[Mapping[str, Any]],
    date_preset: str,
    name: Optional[str] = None,
    fetched_at: Optional[datetime] = None,
) -> PerformanceInsight:
    """Fold the insight rows of one ad into a PerformanceInsight."""
    spend = 0.0
    impressions = 0.0
    clicks = 0.0
    purchases = 0.0
    purchase_value = 0.0
    currency = None

    for row in rows:
        spend += max(0.0, _finite(row.get("spend")) or 0.0)
        impressions += max(0.0, _finite(row.get("impressions")) or 0.0)
        clicks += resolve_click_count(row)
        purchases += select_purchase_metric(row.get("actions"))
        purchase_value += select_purchase_metric(row.get("action_values"))
        currency = currency or row.get("account_currency") or row.get("currency")

    ratios = derive_ratios(spend, impressions, clicks, purchase_value)
    return PerformanceInsight(
        ad_id=ad_id,
        account_id=account_id,
        name=name,
        spend=spend,
        impressions=int(impressions),
        clicks=clicks,
        purchases=purchases,
        purchase_value=purchase_value,
        roas=ratios["roas"],
        ctr=ratios["ctr"],
        cpc=ratios["cpc"],
        cpm=ratios["cpm"],
        currency=currency,
        date_preset=date_preset,
        fetched_at=fetched_at or datetime.now(timezone.utc),
    )


# ─────────────────────────────────────────────
# Per-ad derived fields
# ─────────────────────────────────────────────


def days_active(start_date: Any, now: datetime) -> int:
    """Whole days since start, never below 1 (also for bad or future dates)."""
    start = parse_provider_date(start_date)
    if start is None:
        return 1
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    days = math.floor((now - start).total_seconds() / SECONDS_PER_DAY)
    return max(1, days)


def viral_score(reach: int, active_days: int) -> int:
    """Reach per day, rounded half up."""
    return int(math.floor(reach / max(active_days, 1) + 0.5))


def ad_start_date(ad: Union[Ad, NormalizedAd]) -> Optional[str]:
    return ad.start_date_formatted or ad.first_seen


def enrich_ad(
    ad: Union[Ad, NormalizedAd],
    now: datetime,
    insight: Optional[PerformanceInsight] = None,
) -> AdView:
    """AdView with days_active / viral_score and any cached insight merged in."""
    active = days_active(ad_start_date(ad), now)
    data = NormalizedAd.model_validate(ad, from_attributes=True).model_dump(
        include=set(NormalizedAd.model_fields)
    )
    view = AdView(**data, days_active=active, viral_score=viral_score(ad.reach, active))
    if insight is not None:
        view.spend = insight.spend
        view.impressions = insight.impressions
        view.clicks = insight.clicks
        view.cpm = insight.cpm
        view.cpc = insight.cpc
        view.ctr = insight.ctr
        view.roas = insight.roas
        view.purchases = insight.purchases
        view.purchase_value = insight.purchase_value
        view.insights_currency = insight.currency
        view.insights_date_preset = insight.date_preset
    return view


def rank_ads(
    ads: Iterable[Union[Ad, NormalizedAd]],
    now: datetime,
    insights: Optional[Mapping[str, PerformanceInsight]] = None,
) -> List[AdView]:
    """Enrich and sort by reach, highest first."""
    insights = insights or {}
    views = [
        enrich_ad(ad, now, insights.get(ad.ad_id) if ad.ad_id else None) for ad in ads
    ]
    views.sort(key=lambda v: v.reach or 0, reverse=True)
    logger.info(f"Ranked {len(views)} ads by reach")
    return views
