"""Insights sync: partial failure isolation, pagination, clamps, refresh."""

from datetime import datetime, timezone

from app.analyzer.insights_sync import NO_ADS_HINT, refresh_ad_insights, sync_insights
from app.models.ad_models import NormalizedAd

ROW = {
    "spend": "20",
    "impressions": "2000",
    "outbound_clicks": [{"action_type": "outbound_click", "value": "40"}],
    "actions": [
        {"action_type": "purchase", "value": "3"},
        {"action_type": "omni_purchase", "value": "3"},
    ],
    "action_values": [
        {"action_type": "purchase", "value": "50"},
        {"action_type": "omni_purchase", "value": "50"},
    ],
    "account_currency": "USD",
}


async def test_not_configured_is_a_successful_no_op(repo, fake_meta):
    fake_meta.access_token = ""
    result = await sync_insights(repo, fake_meta)
    assert result.synced == 0
    assert result.message == "No token/accounts configured"


async def test_partial_failure_keeps_successful_rows(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_1"]
    fake_meta.ads_by_account["act_1"] = [
        {"id": "a1", "name": "Ad one", "account_id": "1"},
        {"id": "a2", "name": "Ad two"},
        {"id": "a3"},
    ]
    fake_meta.insights = {"a1": [ROW], "a3": []}
    fake_meta.failing_ads = {"a2"}

    result = await sync_insights(repo, fake_meta, date_preset="last_30d")

    assert result.synced == 1
    assert result.message == "Synced 1 ad(s)."
    assert {(e.ad_id, e.account) for e in result.errors} == {("a2", "act_1"), ("a3", "act_1")}
    stored = repo.insights_for(["a1", "a2"])
    assert list(stored) == ["a1"]
    insight = stored["a1"]
    assert insight.purchases == 3
    assert insight.purchase_value == 50
    assert insight.roas == 2.5
    assert insight.clicks == 40
    assert insight.account_id == "1"
    assert insight.name == "Ad one"
    assert insight.currency == "USD"


async def test_account_failure_is_recorded_and_batch_continues(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_bad", "act_ok"]
    fake_meta.failing_accounts = {"act_bad"}
    fake_meta.ads_by_account["act_ok"] = [{"id": "b1"}]
    fake_meta.insights = {"b1": [ROW]}

    result = await sync_insights(repo, fake_meta, accounts_per_batch=2)

    assert result.synced == 1
    assert result.errors[0].account == "act_bad"
    assert result.errors[0].ad_id is None


async def test_first_error_becomes_message_when_nothing_synced(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_bad"]
    fake_meta.failing_accounts = {"act_bad"}
    result = await sync_insights(repo, fake_meta)
    assert result.message == "Invalid OAuth access token"


async def test_zero_ads_hint(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_empty"]
    result = await sync_insights(repo, fake_meta)
    assert result.message == NO_ADS_HINT


async def test_account_pagination(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_1", "act_2", "act_3"]

    page = await sync_insights(repo, fake_meta, account_offset=0, accounts_per_batch=2)
    assert page.processed_accounts == 2
    assert page.account_offset == 2
    assert page.has_more is True
    assert page.total_accounts == 3

    page = await sync_insights(repo, fake_meta, account_offset=page.account_offset, accounts_per_batch=2)
    assert page.processed_accounts == 1
    assert page.account_offset == 3
    assert page.has_more is False


async def test_batch_and_ads_are_clamped(repo, fake_meta):
    fake_meta.ad_account_ids = [f"act_{i}" for i in range(15)]
    fake_meta.ads_by_account["act_0"] = [{"id": f"x{i}"} for i in range(3)]
    result = await sync_insights(
        repo, fake_meta, accounts_per_batch=50, max_ads_per_account=-4
    )
    assert result.processed_accounts == 10
    # -4 clamps to 1 ad per account
    assert len(fake_meta.insight_calls) == 1


async def test_time_range_replaces_preset(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_1"]
    fake_meta.ads_by_account["act_1"] = [{"id": "a1"}]
    fake_meta.insights = {"a1": [ROW]}

    result = await sync_insights(repo, fake_meta, since="2026-09-01", until="2026-09-30")

    assert result.date_preset == "2026-09-01 - 2026-09-30"
    assert fake_meta.insight_calls[0]["since"] == "2026-09-01"
    assert repo.insights_for(["a1"])["a1"].date_preset == "2026-09-01 - 2026-09-30"


async def test_invalid_time_range_falls_back_to_preset(repo, fake_meta):
    fake_meta.ad_account_ids = ["act_1"]
    result = await sync_insights(
        repo, fake_meta, date_preset="last_7d", since="01/09/2026", until="2026-09-30"
    )
    assert result.date_preset == "last_7d"


async def test_refresh_uses_stored_ad_ids(repo, fake_meta):
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    repo.upsert_ad(NormalizedAd(id="s1", ad_id="900"), now)
    repo.upsert_ad(NormalizedAd(id="s2", ad_id="901"), now)
    repo.upsert_ad(NormalizedAd(id="s3"), now)
    fake_meta.insights = {"900": [ROW]}
    fake_meta.failing_ads = {"901"}

    result = await refresh_ad_insights(repo, fake_meta, date_preset="last_7d")

    assert result.requested == 2
    assert result.refreshed == 1
    assert result.errors[0].ad_id == "901"
    assert repo.insights_for(["900"])["900"].date_preset == "last_7d"


async def test_refresh_without_ad_ids(repo, fake_meta):
    result = await refresh_ad_insights(repo, fake_meta)
    assert result.refreshed == 0
    assert result.message == "No ads with ad_id to refresh."


def test_sync_endpoint_envelope(client, fake_meta):
    fake_meta.ad_account_ids = ["act_1", "act_2"]
    fake_meta.ads_by_account["act_1"] = [{"id": "a1"}]
    fake_meta.insights = {"a1": [ROW]}

    body = client.post(
        "/sync-insights", json={"datePreset": "last_30d", "accountOffset": 0, "accountsPerBatch": 1}
    ).json()

    assert body["success"] is True
    assert body["synced"] == 1
    assert body["hasMore"] is True
    assert body["accountOffset"] == 1
    assert body["totalAccounts"] == 2
    assert body["processedAccounts"] == 1
    assert body["datePreset"] == "last_30d"
    assert "errors" not in body


def test_refresh_endpoint(client, fake_meta):
    body = client.post("/refresh-insights", json={}).json()
    assert body["success"] is True
    assert body["refreshed"] == 0
    assert body["datePreset"] == "last_7d"
