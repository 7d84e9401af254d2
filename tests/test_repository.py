"""Persistence gateway: first_seen preservation, run status monotonicity."""

from datetime import datetime, timedelta, timezone

import pytest

from app.ingestion.errors import InvalidStatusTransition
from app.models.ad_models import NormalizedAd
from app.models.insight_models import PerformanceInsight
from app.models.scrape_models import RunStatus

from conftest import BRAND_URL, OTHER_BRAND_URL

T0 = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _ad(**overrides):
    data = dict(
        id="1001",
        brand_name="Acme",
        reach=100,
        brand_ad_library_url=BRAND_URL,
        first_seen="2026-09-20T00:00:00+00:00",
    )
    data.update(overrides)
    return NormalizedAd(**data)


def test_upsert_inserts_then_preserves_first_seen(repo):
    stored = repo.upsert_ad(_ad(), T0)
    assert stored.first_seen == "2026-09-20T00:00:00+00:00"
    assert stored.last_seen == T0.isoformat()

    later = T0 + timedelta(days=3)
    stored = repo.upsert_ad(_ad(reach=900, first_seen="2026-09-30T00:00:00+00:00"), later)
    assert stored.first_seen == "2026-09-20T00:00:00+00:00"
    assert stored.last_seen == later.isoformat()
    assert stored.reach == 900


def test_upsert_without_first_seen_uses_now(repo):
    stored = repo.upsert_ad(_ad(first_seen=None), T0)
    assert stored.first_seen == T0.isoformat()


def test_future_first_seen_is_clamped(repo):
    stored = repo.upsert_ad(_ad(first_seen="2027-01-01T00:00:00+00:00"), T0)
    assert stored.first_seen == T0.isoformat()
    assert stored.first_seen <= stored.last_seen


def test_last_seen_never_moves_backwards(repo):
    later = T0 + timedelta(days=2)
    repo.upsert_ad(_ad(), later)
    stored = repo.upsert_ad(_ad(), T0)
    assert stored.last_seen == later.isoformat()
    assert stored.first_seen <= stored.last_seen


def test_overlapping_run_after_clamp_keeps_order(repo):
    later = T0 + timedelta(hours=6)
    repo.upsert_ad(_ad(first_seen="2027-01-01T00:00:00+00:00"), later)
    stored = repo.upsert_ad(_ad(), T0)
    assert stored.first_seen == later.isoformat()
    assert stored.last_seen == later.isoformat()


def test_upsert_keeps_known_ad_id(repo):
    repo.upsert_ad(_ad(ad_id="555"), T0)
    stored = repo.upsert_ad(_ad(ad_id=None), T0 + timedelta(hours=1))
    assert stored.ad_id == "555"


def test_active_brand_urls_skip_inactive_and_other_sessions(repo, brand_factory):
    brand_factory(url=BRAND_URL)
    brand_factory(url=OTHER_BRAND_URL, is_active=False)
    brand_factory(session_id="s2", url="https://other-session")
    assert repo.list_active_brand_urls("s1") == [BRAND_URL]


def test_rename_brands(repo, brand_factory):
    brand = brand_factory(name="111")
    updated = repo.rename_brands([brand], {BRAND_URL: "Acme Coffee"})
    assert updated == 1
    assert repo.list_active_brands("s1")[0].name == "Acme Coffee"


def test_ads_for_brand_urls_reach_desc(repo):
    repo.upsert_ad(_ad(id="a", reach=5), T0)
    repo.upsert_ad(_ad(id="b", reach=50), T0)
    repo.upsert_ad(_ad(id="c", reach=500, brand_ad_library_url=OTHER_BRAND_URL), T0)
    ads = repo.list_ads_for_brand_urls([BRAND_URL])
    assert [a.id for a in ads] == ["b", "a"]
    assert repo.list_ads_for_brand_urls([]) == []


def test_run_status_moves_forward(repo):
    run = repo.create_run("run-1", "s1", RunStatus.PENDING)
    run = repo.update_run_status(run, RunStatus.RUNNING)
    run = repo.update_run_status(run, RunStatus.SUCCEEDED, dataset_id="ds-1")
    assert run.status == RunStatus.SUCCEEDED
    assert run.dataset_id == "ds-1"


def test_run_status_never_goes_back(repo):
    run = repo.create_run("run-1", "s1", RunStatus.RUNNING)
    with pytest.raises(InvalidStatusTransition):
        repo.update_run_status(run, RunStatus.PENDING)
    run = repo.update_run_status(run, RunStatus.FAILED, message="Actor crashed")
    with pytest.raises(InvalidStatusTransition):
        repo.update_run_status(run, RunStatus.SUCCEEDED)
    assert repo.get_run("run-1").status_message == "Actor crashed"


def test_repeating_status_is_a_no_op(repo):
    run = repo.create_run("run-1", "s1", RunStatus.RUNNING)
    assert repo.update_run_status(run, RunStatus.RUNNING).status == RunStatus.RUNNING


def test_insight_upsert_last_fetch_wins(repo):
    repo.upsert_insight(PerformanceInsight(ad_id="9", spend=1.0, date_preset="last_7d"))
    repo.upsert_insight(PerformanceInsight(ad_id="9", spend=7.0, date_preset="last_30d"))
    stored = repo.insights_for(["9"])["9"]
    assert stored.spend == 7.0
    assert stored.date_preset == "last_30d"


def test_backfill_queries(repo):
    repo.upsert_ad(_ad(id="a", ad_id="1"), T0)
    repo.upsert_ad(_ad(id="b", ad_id=None), T0)
    assert [a.id for a in repo.ads_with_ad_id(10)] == ["a"]
    assert [a.id for a in repo.ads_missing_ad_id()] == ["b"]
