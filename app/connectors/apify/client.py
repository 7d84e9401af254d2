"""ADSCOUT — Apify API Client.

Starts the Ads Library scraper actor, reads run status, and lists the
items of a run's default dataset. Same retry policy as the Meta client.
"""

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("apify.client")

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2  # seconds


class ApifyAPIError(Exception):
    """Raised when the Apify API returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ApifyClient:
    """Async HTTP client for the Apify v2 REST API."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        actor_id: str | None = None,
    ):
        self.token = token or settings.apify_token
        self.base_url = (base_url or settings.apify_base_url).rstrip("/")
        self.actor_id = actor_id or settings.apify_actor_id
        self._client: Optional[httpx.AsyncClient] = None

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
        path: str,
        params: Dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Make a request with retry + rate-limit handling."""
        params = dict(params or {})
        params["token"] = self.token
        url = f"{self.base_url}{path}"

        client = await self._get_client()

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                resp = await client.request(method, url, params=params, json=json_body)

                if resp.status_code == 429:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Apify rate limited (429). Retrying in {wait}s (attempt {attempt}/{MAX_RETRIES})"
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
                error_msg = (body.get("error") or {}).get("message", str(e))

                if attempt < MAX_RETRIES and e.response.status_code >= 500:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(
                        f"Apify server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue

                raise ApifyAPIError(error_msg, e.response.status_code) from e

            except httpx.RequestError as e:
                if attempt < MAX_RETRIES:
                    wait = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning(f"Apify request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise ApifyAPIError(
                    f"Connection failed after {MAX_RETRIES} retries: {e}"
                ) from e

        raise ApifyAPIError("Max retries exhausted", 429)

    # ── Actor Runs ──

    async def start_actor_run(
        self,
        run_input: Dict[str, Any],
        webhook_url: str | None = None,
    ) -> Dict[str, Any]:
        """Start the scraper without waiting for it to finish."""
        params: Dict[str, Any] = {"waitForFinish": 0}
        if webhook_url:
            webhooks = [
                {"eventTypes": ["ACTOR.RUN.SUCCEEDED"], "requestUrl": webhook_url}
            ]
            params["webhooks"] = base64.b64encode(
                json.dumps(webhooks).encode("utf-8")
            ).decode("ascii")
        result = await self._request(
            "POST", f"/acts/{self.actor_id}/runs", params, json_body=run_input
        )
        run = result.get("data", {})
        logger.info(f"Started actor run {run.get('id')}", extra={"run_id": run.get("id")})
        return run

    async def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Run object, or None when Apify does not know the run."""
        try:
            result = await self._request("GET", f"/actor-runs/{run_id}")
        except ApifyAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return result.get("data") or None

    # ── Datasets ──

    async def list_dataset_items(
        self, dataset_id: str, limit: int | None = None
    ) -> List[Dict[str, Any]]:
        """All items of a dataset as raw dicts."""
        params: Dict[str, Any] = {"format": "json", "clean": "true"}
        if limit:
            params["limit"] = limit
        data = await self._request("GET", f"/datasets/{dataset_id}/items", params)
        items = data if isinstance(data, list) else []
        logger.info(f"Fetched {len(items)} items from dataset {dataset_id}")
        return [i for i in items if isinstance(i, dict)]
