"""ADSCOUT — Scrape Backend.

What the orchestrator talks to: the `/scrape` and `/scrape-status`
endpoints of this service, over HTTP.
"""

from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from app.core.logging import get_logger
from app.ingestion.errors import NoActiveTargets, RunNotFound
from app.models.scrape_models import ScrapeStatus, ScrapeStatusResult

logger = get_logger("orchestrator.backend")


class ScrapeBackendError(Exception):
    """Transient failure talking to the scrape service; retried on the next tick."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ScrapeBackend(Protocol):
    async def trigger(self, session_id: str) -> str:
        """Start a scrape; returns the run id."""
        ...

    async def check(self, run_id: str, session_id: str) -> ScrapeStatusResult:
        ...


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class HttpScrapeBackend:
    """ScrapeBackend over the service's own HTTP API."""

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise ScrapeBackendError(f"Scrape service unreachable: {e}") from e

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            raise ScrapeBackendError(
                f"Scrape service returned non-JSON body: {resp.text[:200]!r}", resp.status_code
            ) from e
        if not isinstance(body, dict):
            raise ScrapeBackendError("Scrape service returned a non-object body", resp.status_code)
        return body

    async def trigger(self, session_id: str) -> str:
        resp = await self._send("POST", "/scrape", json={"sessionId": session_id})
        if resp.status_code == 404:
            raise NoActiveTargets(session_id)
        if resp.status_code >= 400:
            raise ScrapeBackendError(_error_detail(resp), resp.status_code)
        body = self._json(resp)
        run_id = body.get("runId")
        if not run_id:
            raise ScrapeBackendError("Scrape service returned no runId", resp.status_code)
        return run_id

    async def check(self, run_id: str, session_id: str) -> ScrapeStatusResult:
        resp = await self._send(
            "GET", "/scrape-status", params={"runId": run_id, "sessionId": session_id}
        )
        if resp.status_code == 404:
            raise RunNotFound(run_id)
        if resp.status_code >= 400:
            raise ScrapeBackendError(_error_detail(resp), resp.status_code)
        body = self._json(resp)
        try:
            status = ScrapeStatus(body.get("status"))
        except ValueError:
            status = ScrapeStatus.UNKNOWN
        try:
            return ScrapeStatusResult(
                status=status,
                run_id=body.get("runId") or run_id,
                ads=body.get("ads"),
                count=body.get("count"),
                message=body.get("message"),
            )
        except ValidationError as e:
            raise ScrapeBackendError(f"Malformed status body: {e}", resp.status_code) from e
