"""ADSCOUT — Meta API Client.

Handles authentication, retry logic, rate limiting, and pagination for the
ad listing and per-ad insights calls.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("meta.client")

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2  # seconds
PAGE_SIZE = 100

# Fields requested per ad; clicks come in several flavours, see metrics_engine
INSIGHT_FIELDS = (
    "spend,impressions,outbound_clicks,inline_link_clicks,clicks,"
    "actions,action_values,account_currency"
)
AD_FIELDS = "id,name,account_id"


class MetaAPIError(Exception):
    """Raised when Meta API returns an error."""

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class MetaClient:
    """Async HTTP client for Meta Marketing API."""

    def __init__(
        self,
        access_token: str | None = None,
        ad_account_ids: List[str] | None = None,
    ):
        self.access_token = access_token or settings.meta_access_token
        self.ad_account_ids = (
            ad_account_ids if ad_account_ids is not None else settings.meta_ad_account_ids
        )
        self.base = f"{settings.meta_base_url}/{settings.meta_api_version}"
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token) and bool(self.ad_account_ids)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request with retry + rate-limit handling."""
        params = dict(params or {})
        params["access_token"] = self.access_token

        client = await self._get_client()

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                resp = await client.request(method, url, params=params)

                # Rate limited
                if resp.status_code == 429:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Rate limited (429). Retrying in {wait}s (attempt {attempt}/{MAX_RETRIES})"
                    )
                    await asyncio.sleep(wait)
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as e:
                body = (
                    e.response.json()
                    if e.response.headers.get("content-type", "").startswith(
                        "application/json"
                    )
                    else {}
                )
                error_msg = body.get("error", {}).get("message", str(e))
                error_code = body.get("error", {}).get("code", 0)

                if attempt < MAX_RETRIES and e.response.status_code >= 500:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                raise MetaAPIError(error_msg, e.response.status_code, error_code) from e

            except httpx.RequestError as e:
                if attempt < MAX_RETRIES:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(f"Request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise MetaAPIError(
                    f"Connection failed after {MAX_RETRIES} retries: {e}"
                ) from e

        raise MetaAPIError("Max retries exhausted", 429)

    # ── Ads ──

    async def list_account_ads(
        self, ad_account_id: str, max_ads: int = 100
    ) -> List[Dict[str, Any]]:
        """List up to `max_ads` ads of an account, following paging links."""
        all_ads: List[Dict[str, Any]] = []
        url = f"{self.base}/{ad_account_id}/ads"
        params: Dict[str, Any] | None = {"fields": AD_FIELDS, "limit": PAGE_SIZE}

        while url and len(all_ads) < max_ads:
            result = await self._request("GET", url, params)
            page = result.get("data", [])
            all_ads.extend(page)
            next_url = result.get("paging", {}).get("next")
            # Paging links already carry the query string
            url = next_url if next_url and len(page) == PAGE_SIZE else None
            params = None

        logger.info(
            f"Listed {len(all_ads)} ads", extra={"account_id": ad_account_id}
        )
        return all_ads[:max_ads]

    # ── Insights ──

    async def fetch_ad_insights(
        self,
        ad_id: str,
        date_preset: str | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> List[Dict[str, Any]]:
        """Insight rows for one ad, by explicit time range or preset."""
        params: Dict[str, Any] = {"fields": INSIGHT_FIELDS}
        if since and until:
            params["time_range"] = json.dumps({"since": since, "until": until})
        else:
            params["date_preset"] = date_preset or settings.insights_date_preset
        result = await self._request("GET", f"{self.base}/{ad_id}/insights", params)
        return result.get("data", [])
