"""ADSCOUT — Persistence Gateway.

All reads and writes of ads, brands, scrape runs and performance insights.
Upserts are keyed by their natural id and safe to repeat.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, select

from app.core.logging import get_logger
from app.ingestion.errors import InvalidStatusTransition
from app.ingestion.normalizer import parse_provider_date
from app.models.ad_models import Ad, Brand, NormalizedAd
from app.models.insight_models import PerformanceInsight
from app.models.scrape_models import ALLOWED_RUN_TRANSITIONS, RunStatus, ScrapeRun

logger = get_logger("ingestion.repository")

_AD_FIELDS = (
    "brand_name",
    "reach",
    "video_url",
    "thumbnail_url",
    "heading",
    "ad_copy",
    "ad_library_url",
    "brand_ad_library_url",
    "start_date_formatted",
    "ad_id",
)


def _latest(*stamps: Optional[str]) -> str:
    """The latest of several ISO timestamps; unparsable ones are ignored."""
    parsed = [parse_provider_date(s) for s in stamps if s]
    return max(p for p in parsed if p is not None).isoformat()


class AdRepository:
    """Thin gateway over the relational store."""

    def __init__(self, session: Session):
        self.session = session

    # ── Brands ──

    def list_active_brands(self, session_id: str) -> List[Brand]:
        return list(
            self.session.exec(
                select(Brand).where(
                    Brand.session_id == session_id,
                    Brand.is_active == True,  # noqa: E712
                )
            ).all()
        )

    def list_active_brand_urls(self, session_id: str) -> List[str]:
        return [b.ad_library_url for b in self.list_active_brands(session_id)]

    def rename_brands(self, brands: Iterable[Brand], names_by_url: Dict[str, str]) -> int:
        """Apply scraped page names to brands whose stored name differs."""
        updated = 0
        for brand in brands:
            name = names_by_url.get(brand.ad_library_url)
            if name and name != brand.name:
                logger.info(f"Renaming brand {brand.id} from {brand.name!r} to {name!r}")
                brand.name = name
                self.session.add(brand)
                updated += 1
        if updated:
            self.session.commit()
        return updated

    # ── Ads ──

    def upsert_ad(self, ad: NormalizedAd, now: Optional[datetime] = None) -> Ad:
        """Insert or update one ad.

        An existing `first_seen` is never touched; `last_seen` moves to `now`
        but never backwards, and never before `first_seen`. A first sighting
        dated in the future is clamped to `now`.
        """
        now = now or datetime.now(timezone.utc)
        now_iso = now.astimezone(timezone.utc).isoformat()

        existing = self.session.get(Ad, ad.id)
        if existing is not None and existing.first_seen:
            first_seen = existing.first_seen
        else:
            first_seen = ad.first_seen or now_iso
            parsed = parse_provider_date(first_seen)
            if parsed is None or parsed > now:
                first_seen = now_iso

        known_ad_id = existing.ad_id if existing is not None else None
        row = existing or Ad(id=ad.id)
        for field in _AD_FIELDS:
            setattr(row, field, getattr(ad, field))
        row.ad_id = ad.ad_id or known_ad_id
        row.first_seen = first_seen
        row.last_seen = _latest(
            now_iso, existing.last_seen if existing is not None else None, first_seen
        )

        try:
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(row)
        return row

    def list_ads_for_brand_urls(self, brand_urls: List[str]) -> List[Ad]:
        if not brand_urls:
            return []
        return list(
            self.session.exec(
                select(Ad)
                .where(Ad.brand_ad_library_url.in_(brand_urls))  # type: ignore
                .order_by(Ad.reach.desc())  # type: ignore
            ).all()
        )

    def ads_with_ad_id(self, limit: int) -> List[Ad]:
        return list(
            self.session.exec(
                select(Ad).where(Ad.ad_id.is_not(None)).limit(limit)  # type: ignore
            ).all()
        )

    def ads_missing_ad_id(self, limit: int = 1000) -> List[Ad]:
        return list(
            self.session.exec(
                select(Ad).where(Ad.ad_id.is_(None)).limit(limit)  # type: ignore
            ).all()
        )

    def set_ad_ids(self, updates: Dict[str, str]) -> int:
        for ad_key, ad_id in updates.items():
            row = self.session.get(Ad, ad_key)
            if row is not None:
                row.ad_id = ad_id
                self.session.add(row)
        self.session.commit()
        return len(updates)

    # ── Scrape runs ──

    def create_run(self, run_id: str, session_id: str, status: RunStatus) -> ScrapeRun:
        run = ScrapeRun(run_id=run_id, session_id=session_id, status=status)
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    def get_run(self, run_id: str) -> Optional[ScrapeRun]:
        return self.session.get(ScrapeRun, run_id)

    def update_run_status(
        self,
        run: ScrapeRun,
        status: RunStatus,
        dataset_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ScrapeRun:
        """Move a run forward. Repeating the current status is a no-op."""
        if run.status == status:
            return run
        if status not in ALLOWED_RUN_TRANSITIONS[run.status]:
            raise InvalidStatusTransition(run.run_id, run.status.value, status.value)
        run.status = status
        if status == RunStatus.SUCCEEDED:
            run.dataset_id = dataset_id
        if message:
            run.status_message = message
        run.updated_at = datetime.now(timezone.utc)
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    # ── Insights ──

    def upsert_insight(self, insight: PerformanceInsight) -> PerformanceInsight:
        """Last fetch wins; no history is kept."""
        existing = self.session.get(PerformanceInsight, insight.ad_id)
        if existing is None:
            row = insight
        else:
            row = existing
            for field, value in insight.model_dump(exclude={"ad_id"}).items():
                setattr(row, field, value)
        try:
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return row

    def insights_for(self, ad_ids: List[str]) -> Dict[str, PerformanceInsight]:
        if not ad_ids:
            return {}
        rows = self.session.exec(
            select(PerformanceInsight).where(
                PerformanceInsight.ad_id.in_(ad_ids)  # type: ignore
            )
        ).all()
        return {r.ad_id: r for r in rows}
