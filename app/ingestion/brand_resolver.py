"""ADSCOUT — Brand Association Resolver.

Decides which tracked brand URL a raw scraper record belongs to. Records
rarely carry the exact brand URL we submitted, so matching is heuristic:
exact equality, then substring containment either way, then equality of
the `view_all_page_id` query parameter.
"""

from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

PAGE_ID_PARAM = "view_all_page_id"

# Record fields that may hold a URL pointing back at the brand page
RECORD_URL_FIELDS = ("ad_library_url", "url", "ad_snapshot_url")


def candidate_urls(raw: Dict[str, Any]) -> List[str]:
    """Non-blank URL strings on a raw record, in precedence order."""
    found: List[str] = []
    for key in RECORD_URL_FIELDS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            found.append(value.strip())
    return found


def page_id(url: str) -> Optional[str]:
    """Extract `view_all_page_id` from an Ads Library URL."""
    if PAGE_ID_PARAM not in url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get(PAGE_ID_PARAM)
    except ValueError:
        return None
    return values[0] if values else None


def resolve(raw_url_candidates: Iterable[str], known_brand_urls: Iterable[str]) -> str:
    """Return the brand URL a record belongs to.

    Falls back to the record's own URL, then to the first known brand URL,
    then to an empty string.
    """
    candidates = [c for c in raw_url_candidates if c]
    known = [u for u in known_brand_urls if u]

    for cand in candidates:
        for url in known:
            if cand == url:
                return url

    # Ambiguous when one brand URL contains another; first known wins.
    for cand in candidates:
        for url in known:
            if cand in url or url in cand:
                return url

    for cand in candidates:
        cand_page = page_id(cand)
        if not cand_page:
            continue
        for url in known:
            if page_id(url) == cand_page:
                return url

    if candidates:
        return candidates[0]
    if known:
        return known[0]
    return ""
