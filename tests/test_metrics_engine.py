"""Metrics: purchase de-duplication, click resolution, ratios, derived ad fields."""

from datetime import datetime, timezone

import pytest

from app.analyzer.metrics_engine import (
    build_insight,
    days_active,
    derive_ratios,
    enrich_ad,
    rank_ads,
    resolve_click_count,
    select_purchase_metric,
    viral_score,
)
from app.models.ad_models import NormalizedAd
from app.models.insight_models import PerformanceInsight

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# ── Purchases ──


def test_duplicated_purchase_labels_are_not_summed():
    actions = [
        {"action_type": "purchase", "value": "10"},
        {"action_type": "omni_purchase", "value": "10"},
    ]
    assert select_purchase_metric(actions) == 10


def test_purchase_priority_order():
    actions = [
        {"action_type": "purchase", "value": "3"},
        {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "7"},
    ]
    assert select_purchase_metric(actions) == 7


def test_purchase_label_is_case_insensitive_and_non_finite_is_zero():
    assert select_purchase_metric([{"action_type": "OMNI_PURCHASE", "value": "4"}]) == 4
    assert select_purchase_metric([{"action_type": "purchase", "value": "abc"}]) == 0


def test_purchase_missing_or_malformed():
    assert select_purchase_metric(None) == 0
    assert select_purchase_metric("nope") == 0  # type: ignore[arg-type]
    assert select_purchase_metric([{"action_type": "add_to_cart", "value": "5"}]) == 0


# ── Clicks ──


def test_outbound_clicks_number_and_string():
    assert resolve_click_count({"outbound_clicks": 12}) == 12
    assert resolve_click_count({"outbound_clicks": "8"}) == 8


def test_outbound_clicks_action_list():
    row = {
        "outbound_clicks": [
            {"action_type": "outbound_click", "value": "5"},
            {"action_type": "outbound_click", "value": "2"},
        ]
    }
    assert resolve_click_count(row) == 7


def test_click_fallback_chain():
    assert resolve_click_count({"actions": [{"action_type": "link_click", "value": "9"}]}) == 9
    assert resolve_click_count({"inline_link_clicks": "6", "clicks": "50"}) == 6
    assert resolve_click_count({"clicks": 50}) == 50
    assert resolve_click_count({}) == 0


# ── Ratios ──


def test_roas_is_none_without_spend():
    ratios = derive_ratios(spend=0, impressions=1000, clicks=10, purchase_value=50)
    assert ratios["roas"] is None
    assert ratios["cpc"] == 0
    assert ratios["ctr"] == pytest.approx(1.0)


def test_ratios_with_spend():
    ratios = derive_ratios(spend=20, impressions=2000, clicks=40, purchase_value=50)
    assert ratios["roas"] == pytest.approx(2.5)
    assert ratios["cpm"] == pytest.approx(10.0)
    assert ratios["cpc"] == pytest.approx(0.5)
    assert ratios["ctr"] == pytest.approx(2.0)


def test_ratios_without_impressions():
    ratios = derive_ratios(spend=5, impressions=0, clicks=0, purchase_value=0)
    assert ratios["ctr"] == 0
    assert ratios["cpm"] == 0
    assert ratios["roas"] == 0


def test_build_insight_sums_rows():
    rows = [
        {
            "spend": "10",
            "impressions": "1000",
            "outbound_clicks": "20",
            "actions": [
                {"action_type": "purchase", "value": "2"},
                {"action_type": "omni_purchase", "value": "2"},
            ],
            "action_values": [{"action_type": "omni_purchase", "value": "30"}],
            "account_currency": "EUR",
        },
        {"spend": "10", "impressions": "-5", "clicks": "5"},
    ]
    insight = build_insight("ad-1", "act_1", rows, "last_30d", name="Spring")
    assert insight.spend == 20
    assert insight.impressions == 1000
    assert insight.clicks == 25
    assert insight.purchases == 2
    assert insight.purchase_value == 30
    assert insight.roas == pytest.approx(1.5)
    assert insight.currency == "EUR"
    assert insight.name == "Spring"
    assert insight.date_preset == "last_30d"


# ── Derived ad fields ──


def test_days_active_never_below_one():
    assert days_active(None, NOW) == 1
    assert days_active("garbage", NOW) == 1
    assert days_active("2026-10-19T11:00:00+00:00", NOW) == 1
    assert days_active("2026-12-01", NOW) == 1


def test_days_active_floor():
    assert days_active("2026-10-09 06:00:00", NOW) == 10


def test_viral_score_rounds_half_up():
    assert viral_score(1000, 10) == 100
    assert viral_score(5, 2) == 3
    assert viral_score(0, 1) == 0


def _ad(ad_id, reach, start=None, insight_id=None):
    return NormalizedAd(
        id=ad_id,
        reach=reach,
        start_date_formatted=start,
        first_seen="2026-10-09T12:00:00+00:00",
        ad_id=insight_id,
    )


def test_enrich_prefers_start_date_over_first_seen():
    view = enrich_ad(_ad("a", 1900, start="2026-09-29 12:00:00"), NOW)
    assert view.days_active == 20
    assert view.viral_score == 95


def test_enrich_merges_insight():
    insight = PerformanceInsight(ad_id="555", spend=12.5, roas=None, currency="USD", date_preset="last_7d")
    view = enrich_ad(_ad("a", 100, insight_id="555"), NOW, insight)
    assert view.spend == 12.5
    assert view.roas is None
    assert view.insights_currency == "USD"
    assert view.insights_date_preset == "last_7d"


def test_rank_ads_sorts_by_reach_desc():
    views = rank_ads([_ad("a", 10), _ad("b", 300), _ad("c", 20)], NOW)
    assert [v.id for v in views] == ["b", "c", "a"]
    assert views[0].days_active == 10
    assert views[0].viral_score == 30
