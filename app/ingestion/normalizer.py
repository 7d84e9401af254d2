"""ADSCOUT — Raw Scraper Record → NormalizedAd.

The scraper's item shape changes between actor versions: the same video URL
can live under `snapshot.cards[]`, `ad_snapshot_data.snapshot.cards[]`,
`cards[0]`, `videos[0]` or the top level. Every field is therefore read
through an ordered tuple of small extractors; the first non-empty value wins
and the tuple order is the precedence order. Nothing here raises on a
malformed record; absent fields fall back to explicit defaults.
"""

import hashlib
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.config import settings
from app.core.logging import get_logger
from app.models.ad_models import NormalizedAd

logger = get_logger("ingestion.normalizer")

Extractor = Callable[[Dict[str, Any]], Any]

_SPACE_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_AD_ID_PARAM = re.compile(r"[?&]id=(\d+)")
_EPOCH_MS_THRESHOLD = 1e11


@dataclass
class NormalizationContext:
    """Per-run bookkeeping, passed into every normalize() call of one batch."""

    run_id: Optional[str] = None
    sample_logged: bool = False
    records: int = 0
    placeholder_thumbnails: int = 0
    unparsable_dates: int = 0
    derived_ids: int = 0


# ─────────────────────────────────────────────
# Value helpers
# ─────────────────────────────────────────────


def _dig(obj: Any, *keys: Any) -> Any:
    """Walk nested dicts/lists; None as soon as a step is missing."""
    for key in keys:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
    return obj


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _identifier(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    return _text(value)


def _truthy(value: Any) -> Optional[Any]:
    if value is None or value is False or value == "" or value == 0:
        return None
    return value


def _first(raw: Dict[str, Any], extractors: Sequence[Extractor], coerce=_text) -> Any:
    for extract in extractors:
        value = coerce(extract(raw))
        if value is not None:
            return value
    return None


def _path(*keys: Any) -> Extractor:
    return lambda raw: _dig(raw, *keys)


def _body_text(*keys: Any) -> Extractor:
    """`body` may be a plain string or an object with a `text` member."""

    def extract(raw: Dict[str, Any]) -> Any:
        body = _dig(raw, *keys)
        if isinstance(body, dict):
            return body.get("text")
        return body

    return extract


def _cards(*keys: Any, first_only: bool = False) -> Callable[[Dict[str, Any]], List[Dict[str, Any]]]:
    def extract(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        cards = _dig(raw, *keys)
        if not isinstance(cards, list):
            return []
        cards = [c for c in cards if isinstance(c, dict)]
        return cards[:1] if first_only else cards

    return extract


# ─────────────────────────────────────────────
# Dates / numbers
# ─────────────────────────────────────────────


def parse_provider_date(value: Any) -> Optional[datetime]:
    """Parse the date shapes the scraper emits into an aware UTC datetime.

    Accepts ISO strings, "YYYY-MM-DD HH:MM:SS", and epoch numbers (seconds,
    or milliseconds above 1e11). Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000 if abs(value) > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.isdigit() and len(text) >= 9:
            return parse_provider_date(int(text))
        if _SPACE_DATETIME.match(text):
            text = text.replace(" ", "T")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_date(value: Any) -> Optional[str]:
    """ISO-8601 form of a provider date, or None. Idempotent on ISO input."""
    dt = parse_provider_date(value)
    return dt.isoformat() if dt else None


def coerce_reach(value: Any) -> int:
    """Leading-integer parse, clamped at 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        n = value
    elif isinstance(value, float):
        n = int(value) if math.isfinite(value) else 0
    elif isinstance(value, str):
        m = _LEADING_INT.match(value)
        n = int(m.group(1)) if m else 0
    else:
        return 0
    return max(n, 0)


def parse_ad_id(url: Optional[str]) -> Optional[str]:
    """Numeric `id=` query parameter of an Ads Library URL."""
    if not url or not isinstance(url, str):
        return None
    m = _AD_ID_PARAM.search(url)
    return m.group(1) if m else None


# ─────────────────────────────────────────────
# Field strategies
# ─────────────────────────────────────────────


def _video_in(obj: Dict[str, Any]) -> Optional[str]:
    for key in ("video_hd_url", "video_url", "videoUrl"):
        found = _text(obj.get(key))
        if found:
            return found
    video = obj.get("video")
    if isinstance(video, str):
        return _text(video)
    if isinstance(video, dict):
        for key in ("url", "video_hd_url", "video_url"):
            found = _text(video.get(key))
            if found:
                return found
    return None


def _first_video(raw: Dict[str, Any]) -> Optional[str]:
    video = _dig(raw, "videos", 0)
    if isinstance(video, str):
        return _text(video)
    if isinstance(video, dict):
        for key in ("url", "video_hd_url", "video_url"):
            found = _text(video.get(key))
            if found:
                return found
    return None


VIDEO_CARD_SOURCES = (
    _cards("snapshot", "cards"),
    _cards("ad_snapshot_data", "snapshot", "cards"),
    _cards("cards", first_only=True),
    _cards("ad_snapshot_data", "cards", first_only=True),
)


def extract_video_url(raw: Dict[str, Any]) -> str:
    for source in VIDEO_CARD_SOURCES:
        for card in source(raw):
            found = _video_in(card)
            if found:
                return found
    return _first_video(raw) or _video_in(raw) or ""


THUMBNAIL_TOP_LEVEL = (
    _path("thumbnail_url"),
    _path("thumbnailUrl"),
    _path("image_url"),
    _path("imageUrl"),
    _path("thumbnail"),
    _path("image"),
)

THUMBNAIL_CARD_SOURCES = (
    _cards("snapshot", "cards"),
    _cards("ad_snapshot_data", "snapshot", "cards"),
    _cards("cards"),
    _cards("ad_snapshot_data", "cards"),
)

# Resized beats original beats anything generic
THUMBNAIL_CARD_KEYS = (
    "resized_image_url",
    "original_image_url",
    "image_url",
    "imageUrl",
    "thumbnail_url",
    "thumbnailUrl",
    "thumbnail",
)


def _image_in_card(card: Dict[str, Any]) -> Optional[str]:
    for key in THUMBNAIL_CARD_KEYS:
        found = _text(card.get(key))
        if found:
            return found
    image = card.get("image")
    if isinstance(image, dict):
        return _text(image.get("url"))
    return _text(image)


def extract_thumbnail_url(raw: Dict[str, Any]) -> Optional[str]:
    found = _first(raw, THUMBNAIL_TOP_LEVEL)
    if found:
        return found
    for source in THUMBNAIL_CARD_SOURCES:
        for card in source(raw):
            found = _image_in_card(card)
            if found:
                return found
    return None


# Card text is the rendered copy; template-level fields can still hold
# unresolved placeholders such as "{{product.name}}".
HEADING_EXTRACTORS = (
    _path("snapshot", "cards", 0, "title"),
    _path("ad_snapshot_data", "snapshot", "cards", 0, "title"),
    _path("heading"),
    _path("title"),
    _path("adTitle"),
    _path("adText"),
    _path("headline"),
    _path("ad_snapshot_data", "title"),
    _path("ad_snapshot_data", "adTitle"),
    _path("ad_snapshot_data", "adText"),
    _path("ad_snapshot_data", "snapshot", "title"),
    _path("ad_snapshot_data", "snapshot", "adTitle"),
    _path("ad_snapshot_data", "snapshot", "adText"),
    _path("ad_snapshot_data", "body"),
    _path("snapshot", "title"),
    _path("snapshot", "adTitle"),
    _path("snapshot", "adText"),
    _body_text("snapshot", "body"),
)

AD_COPY_EXTRACTORS = (
    _path("snapshot", "cards", 0, "body"),
    _path("ad_snapshot_data", "snapshot", "cards", 0, "body"),
    _path("ad_copy"),
    _path("body"),
    _path("text"),
    _path("description"),
    _path("adBody"),
    _path("adText"),
    _path("ad_snapshot_data", "body"),
    _path("ad_snapshot_data", "text"),
    _path("ad_snapshot_data", "adBody"),
    _path("ad_snapshot_data", "adText"),
    _path("ad_snapshot_data", "snapshot", "body"),
    _path("ad_snapshot_data", "snapshot", "text"),
    _path("ad_snapshot_data", "snapshot", "adBody"),
    _path("ad_snapshot_data", "snapshot", "adText"),
    _body_text("snapshot", "body"),
    _path("snapshot", "text"),
    _path("snapshot", "adBody"),
    _path("snapshot", "adText"),
)

REACH_EXTRACTORS = (
    _path("aaa_info", "eu_total_reach"),
    _path("transparency_by_location", "eu_transparency", "eu_total_reach"),
    _path("reach_estimate"),
    _path("reach"),
    _path("reachLower"),
    _path("reachUpper"),
    _path("impressions"),
)

FIRST_SEEN_EXTRACTORS = (
    _path("first_seen"),
    _path("firstSeen"),
    _path("started_running"),
    _path("start_date_formatted"),
    _path("start_date"),
)

START_DATE_EXTRACTORS = (
    _path("start_date_formatted"),
    _path("start_date"),
)

AD_LIBRARY_URL_EXTRACTORS = (
    _path("ad_library_url"),
    _path("adSnapshotUrl"),
)

BRAND_NAME_EXTRACTORS = (
    _path("page_name"),
    _path("pageName"),
    _path("snapshot", "page_name"),
    _path("ad_snapshot_data", "page_name"),
    _path("advertiser", "page", "name"),
)

ID_EXTRACTORS = (
    _path("ad_archive_id"),
    _path("id"),
    _path("adId"),
    _path("ad_snapshot_url"),
)


def extract_brand_name(raw: Dict[str, Any]) -> Optional[str]:
    name = _first(raw, BRAND_NAME_EXTRACTORS)
    return name.strip() if name else None


def derive_id(raw: Dict[str, Any]) -> str:
    """Stable id for records the provider shipped without one."""
    canonical = json.dumps(raw, sort_keys=True, default=str)
    return "derived-" + hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def _start_date_string(raw: Dict[str, Any]) -> Optional[str]:
    value = _first(raw, START_DATE_EXTRACTORS, coerce=_truthy)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


# ─────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────


def normalize(
    raw: Dict[str, Any],
    resolved_brand_url: str,
    *,
    now: Optional[datetime] = None,
    context: Optional[NormalizationContext] = None,
) -> NormalizedAd:
    """Map one raw scraper record to a NormalizedAd."""
    if not isinstance(raw, dict):
        raw = {}
    now = now or datetime.now(timezone.utc)

    if context is not None:
        context.records += 1
        if not context.sample_logged:
            logger.debug(
                f"Sample scraper record keys: {sorted(raw.keys())}",
                extra={"run_id": context.run_id},
            )
            context.sample_logged = True

    ad_id_value = _first(raw, ID_EXTRACTORS, coerce=_identifier)
    if ad_id_value is None:
        ad_id_value = derive_id(raw)
        if context is not None:
            context.derived_ids += 1

    thumbnail = extract_thumbnail_url(raw)
    if not thumbnail:
        thumbnail = settings.placeholder_thumbnail_url
        if context is not None:
            context.placeholder_thumbnails += 1

    raw_first_seen = _first(raw, FIRST_SEEN_EXTRACTORS, coerce=_truthy)
    first_seen = normalize_date(raw_first_seen)
    if raw_first_seen is not None and first_seen is None:
        logger.warning(f"Unparsable first_seen {raw_first_seen!r} on ad {ad_id_value}")
        if context is not None:
            context.unparsable_dates += 1

    ad_library_url = _first(raw, AD_LIBRARY_URL_EXTRACTORS) or ""
    record_url = _text(raw.get("url"))
    brand_ad_library_url = record_url if record_url else (resolved_brand_url or "")

    return NormalizedAd(
        id=ad_id_value,
        brand_name=extract_brand_name(raw) or "Unknown",
        reach=coerce_reach(_first(raw, REACH_EXTRACTORS, coerce=_truthy)),
        video_url=extract_video_url(raw),
        thumbnail_url=thumbnail,
        heading=_first(raw, HEADING_EXTRACTORS) or "",
        ad_copy=_first(raw, AD_COPY_EXTRACTORS) or "",
        ad_library_url=ad_library_url,
        brand_ad_library_url=brand_ad_library_url,
        first_seen=first_seen,
        last_seen=now.astimezone(timezone.utc).isoformat(),
        start_date_formatted=_start_date_string(raw),
        ad_id=parse_ad_id(ad_library_url) or parse_ad_id(brand_ad_library_url),
    )
