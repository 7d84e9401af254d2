"""Pytest fixtures and fakes.

Tests bypass the app lifespan: tables are created on an in-memory SQLite
engine shared through StaticPool, and the session / Apify / Meta
dependencies are overridden per test.
"""

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Table classes must be registered before create_all
import app.models.ad_models  # noqa: F401
import app.models.insight_models  # noqa: F401
import app.models.scrape_models  # noqa: F401
from app.api.insights_routes import get_meta_client
from app.api.scrape_routes import get_apify_client
from app.connectors.meta.client import MetaAPIError
from app.database import get_session
from app.ingestion.repository import AdRepository
from app.main import app
from app.models.ad_models import Brand

BRAND_URL = (
    "https://www.facebook.com/ads/library/?active_status=all&ad_type=all"
    "&country=ALL&view_all_page_id=111"
)
OTHER_BRAND_URL = (
    "https://www.facebook.com/ads/library/?active_status=all&ad_type=all"
    "&country=ALL&view_all_page_id=222"
)


# ---------- Fakes ----------


class FakeApifyClient:
    """Stands in for ApifyClient.

    `runs[run_id]` is a list of run objects; each get_run() returns the next
    one and the last one repeats.
    """

    def __init__(self) -> None:
        self.runs: Dict[str, List[Dict[str, Any]]] = {}
        self.datasets: Dict[str, List[Any]] = {}
        self.started: List[Dict[str, Any]] = []
        self.get_run_calls = 0
        self.next_run_id = "run-1"

    async def start_actor_run(self, run_input, webhook_url=None):
        self.started.append({"input": run_input, "webhook_url": webhook_url})
        return {"id": self.next_run_id, "status": "READY"}

    async def get_run(self, run_id):
        self.get_run_calls += 1
        sequence = self.runs.get(run_id)
        if not sequence:
            return None
        return sequence.pop(0) if len(sequence) > 1 else sequence[0]

    async def list_dataset_items(self, dataset_id, limit=None):
        return list(self.datasets.get(dataset_id, []))

    async def close(self):
        pass


class FakeMetaClient:
    """Stands in for MetaClient with canned ads and insight rows."""

    def __init__(self) -> None:
        self.access_token = "test-token"
        self.ad_account_ids: List[str] = []
        self.ads_by_account: Dict[str, List[Dict[str, Any]]] = {}
        self.insights: Dict[str, List[Dict[str, Any]]] = {}
        self.failing_accounts: set = set()
        self.failing_ads: set = set()
        self.insight_calls: List[Dict[str, Optional[str]]] = []

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token) and bool(self.ad_account_ids)

    async def list_account_ads(self, ad_account_id, max_ads=100):
        if ad_account_id in self.failing_accounts:
            raise MetaAPIError("Invalid OAuth access token", 400, 190)
        return self.ads_by_account.get(ad_account_id, [])[:max_ads]

    async def fetch_ad_insights(self, ad_id, date_preset=None, since=None, until=None):
        self.insight_calls.append(
            {"ad_id": ad_id, "date_preset": date_preset, "since": since, "until": until}
        )
        if ad_id in self.failing_ads:
            raise MetaAPIError("Server error", 500)
        return self.insights.get(ad_id, [])

    async def close(self):
        pass


# ---------- Database ----------


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def db_session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def repo(db_session):
    return AdRepository(db_session)


@pytest.fixture()
def brand_factory(db_session):
    def _create(
        session_id: str = "s1",
        url: str = BRAND_URL,
        name: str = "",
        is_active: bool = True,
    ) -> Brand:
        brand = Brand(session_id=session_id, name=name, ad_library_url=url, is_active=is_active)
        db_session.add(brand)
        db_session.commit()
        db_session.refresh(brand)
        return brand

    return _create


# ---------- API ----------


@pytest.fixture()
def fake_apify():
    return FakeApifyClient()


@pytest.fixture()
def fake_meta():
    return FakeMetaClient()


@pytest.fixture()
def api_overrides(engine, fake_apify, fake_meta):
    def _override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[get_apify_client] = lambda: fake_apify
    app.dependency_overrides[get_meta_client] = lambda: fake_meta
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def client(api_overrides):
    return TestClient(api_overrides)


# ---------- Raw records ----------


def raw_record(
    archive_id: str = "1001",
    reach: Any = 5000,
    url: Optional[str] = BRAND_URL,
    page_name: str = "Acme Coffee",
    start_date: Any = "2025-10-01 08:00:00",
    **extra: Any,
) -> Dict[str, Any]:
    """A scraper item in the current actor's shape."""
    record: Dict[str, Any] = {
        "ad_archive_id": archive_id,
        "page_name": page_name,
        "ad_library_url": f"https://www.facebook.com/ads/library/?id={archive_id}",
        "start_date_formatted": start_date,
        "aaa_info": {"eu_total_reach": reach},
        "snapshot": {
            "cards": [
                {
                    "title": f"Heading {archive_id}",
                    "body": f"Copy {archive_id}",
                    "video_hd_url": f"https://video.example/{archive_id}.mp4",
                    "resized_image_url": f"https://img.example/{archive_id}.jpg",
                }
            ]
        },
    }
    if url is not None:
        record["url"] = url
    record.update(extra)
    return record
