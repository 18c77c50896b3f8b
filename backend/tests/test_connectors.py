from datetime import datetime, timezone

import pytest

from fakes import FakeResponse, FakeSession
from posthog_analytics import QUERY_TYPES, PostHogAPIError, PostHogConnector, build_query
from provider_config import ProviderConfig
from supabase_db import SupabaseAPIError, SupabaseConnector

CONFIG = ProviderConfig(
    posthog_api_key="phx_test",
    posthog_project_id="123",
    posthog_host="https://ph.example.com",
    supabase_url="https://db.example.com",
    supabase_key="anon",
    website_host="example.com",
)

START = datetime(2024, 3, 1, tzinfo=timezone.utc)
END = datetime(2024, 3, 8, tzinfo=timezone.utc)


# =============================================================================
# ProviderConfig
# =============================================================================

def test_config_from_env(monkeypatch):
    monkeypatch.setenv("POSTHOG_API_KEY", "phx_env")
    monkeypatch.setenv("POSTHOG_HOST", "https://eu.posthog.com/")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://proj.supabase.co/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "key")
    monkeypatch.setenv("PROVIDER_TIMEOUT", "nonsense")

    config = ProviderConfig.from_env()

    assert config.posthog_configured
    assert config.posthog_host == "https://eu.posthog.com"
    assert config.supabase_url == "https://proj.supabase.co"
    assert config.supabase_configured
    assert config.request_timeout == 30.0


def test_config_unconfigured_by_default():
    config = ProviderConfig()
    assert not config.posthog_configured
    assert not config.supabase_configured


# =============================================================================
# PostHog
# =============================================================================

@pytest.mark.parametrize("query_type", QUERY_TYPES)
def test_build_query_scopes_days(query_type):
    query = build_query(query_type, days=14)
    assert query["dateRange"] == {"date_from": "-14d"}
    assert query["kind"].endswith("Query")


def test_website_queries_filter_host():
    query = build_query("websiteTopPages", website_host="example.com")
    host_filter = query["properties"]["values"][0]["values"][0]
    assert host_filter["key"] == "$host"
    assert host_filter["value"] == "example.com"


def test_build_query_unknown_type():
    with pytest.raises(ValueError, match="Invalid query type"):
        build_query("revenue")


def test_run_query_posts_to_query_endpoint():
    session = FakeSession(FakeResponse({"results": []}))
    connector = PostHogConnector(CONFIG, session=session)

    assert connector.run_query("screenViews", 7) == {"results": []}

    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url == "https://ph.example.com/api/projects/123/query"
    assert kwargs["json"]["query"]["kind"] == "TrendsQuery"
    assert kwargs["headers"]["Authorization"] == "Bearer phx_test"


def test_get_events():
    session = FakeSession(FakeResponse({"results": [{"event": "$screen"}]}))
    connector = PostHogConnector(CONFIG, session=session)

    assert connector.get_events(limit=50)["results"][0]["event"] == "$screen"
    method, url, kwargs = session.calls[0]
    assert (method, url, kwargs["params"]) == ("GET", "https://ph.example.com/api/projects/123/events", {"limit": 50})


def test_posthog_error_status():
    connector = PostHogConnector(CONFIG, session=FakeSession(FakeResponse({}, status_code=403, text="forbidden")))
    with pytest.raises(PostHogAPIError) as exc:
        connector.run_query("totalEvents")
    assert exc.value.status_code == 403
    assert "forbidden" in str(exc.value)


def test_posthog_missing_key():
    session = FakeSession(FakeResponse({}))
    connector = PostHogConnector(ProviderConfig(), session=session)
    with pytest.raises(ValueError, match="POSTHOG_API_KEY"):
        connector.run_query("totalEvents")
    assert session.calls == []


# =============================================================================
# Supabase
# =============================================================================

def test_select_builds_range_filters():
    session = FakeSession(FakeResponse([{"id": 1}]))
    connector = SupabaseConnector(CONFIG, session=session)

    assert connector.get_installs(START, END, platform="iOS") == [{"id": 1}]

    method, url, kwargs = session.calls[0]
    assert url == "https://db.example.com/rest/v1/installs"
    assert ("created_at", f"gte.{START.isoformat()}") in kwargs["params"]
    assert ("created_at", f"lte.{END.isoformat()}") in kwargs["params"]
    assert ("platform", "eq.iOS") in kwargs["params"]
    assert kwargs["headers"]["apikey"] == "anon"


def test_select_all_platforms_has_no_platform_filter():
    session = FakeSession(FakeResponse([]))
    SupabaseConnector(CONFIG, session=session).get_impressions(START, END, platform="All")
    assert all(name != "platform" for name, _ in session.calls[0][2]["params"])


def test_sessions_filter_on_session_date():
    session = FakeSession(FakeResponse([]))
    SupabaseConnector(CONFIG, session=session).get_user_sessions(START, END)
    assert session.calls[0][1].endswith("/user_sessions")
    assert session.calls[0][2]["params"][1][0] == "session_date"


def test_rpc_queries():
    session = FakeSession(FakeResponse([{"date": "2024-03-01", "posts": 1}]))
    connector = SupabaseConnector(CONFIG, session=session)

    connector.run_rpc_query("engagementTrends", 14)
    connector.run_rpc_query("studioStats")

    assert session.calls[0][1] == "https://db.example.com/rest/v1/rpc/get_engagement_trends"
    assert session.calls[0][2]["json"] == {"days_back": 14}
    assert session.calls[1][1].endswith("/rpc/get_studio_stats")
    assert session.calls[1][2]["json"] == {}


def test_rpc_unknown_query_type():
    with pytest.raises(ValueError, match="Invalid query type"):
        SupabaseConnector(CONFIG, session=FakeSession(FakeResponse())).run_rpc_query("revenue")


def test_supabase_error_status():
    connector = SupabaseConnector(CONFIG, session=FakeSession(FakeResponse({}, status_code=401, text="bad key")))
    with pytest.raises(SupabaseAPIError) as exc:
        connector.run_rpc_query("overview")
    assert exc.value.status_code == 401


def test_supabase_not_configured():
    connector = SupabaseConnector(ProviderConfig(), session=FakeSession(FakeResponse([])))
    with pytest.raises(ValueError, match="Supabase not configured"):
        connector.get_funnel_events(START, END)
