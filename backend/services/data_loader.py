"""
Provider access for the dashboard API.

Wraps the PostHog and Supabase connectors:
- builds them from an explicit ProviderConfig
- validates every response before it reaches the aggregator
- falls back to sample rows when Supabase is not configured
- runs a page's independent fetches concurrently, degrading each failed
  fetch to an empty section instead of failing the page
"""

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

# Add connectors directory to path for provider access
CONNECTORS_DIR = Path(__file__).parent.parent.parent / "connectors"
sys.path.insert(0, str(CONNECTORS_DIR))

from posthog_analytics import PostHogConnector
from provider_config import ProviderConfig
from supabase_db import SupabaseConnector

from services.provider_models import (
    EventsResult,
    FunnelResult,
    ImpressionRow,
    InstallRow,
    RetentionResult,
    TrendsResult,
    UserEventRow,
    UserSessionRow,
    parse_posthog_result,
    validate_rows,
)
from services.sample_data import (
    generate_sample_funnel_events,
    generate_sample_impressions,
    generate_sample_installs,
)

DEFAULT_DAYS = 30
MAX_DAYS = 365


@dataclass
class Providers:
    """The two provider connectors, built from one config."""
    posthog: PostHogConnector
    supabase: SupabaseConnector


def build_providers(config: ProviderConfig) -> Providers:
    return Providers(
        posthog=PostHogConnector(config),
        supabase=SupabaseConnector(config),
    )


@lru_cache(maxsize=1)
def get_providers() -> Providers:
    """Connectors configured from the environment (built once per process)."""
    config = ProviderConfig.from_env()
    if not config.posthog_configured:
        print("[Providers] POSTHOG_API_KEY not set - PostHog sections will be empty")
    if not config.supabase_configured:
        print("[Providers] Supabase not configured - using sample data where available")
    return build_providers(config)


def lookback_window(days: int, now: datetime = None) -> tuple[datetime, datetime]:
    """(start, end) datetimes covering the last ``days`` days up to now."""
    end = now or datetime.now(timezone.utc)
    return end - timedelta(days=days), end


# =============================================================================
# POSTHOG
# =============================================================================

def fetch_posthog(providers: Providers, query_type: str, days: int = DEFAULT_DAYS):
    """Run a canned PostHog query and return the validated result."""
    if query_type == "events":
        payload = providers.posthog.get_events()
    else:
        payload = providers.posthog.run_query(query_type, days)
    return parse_posthog_result(query_type, payload)


# =============================================================================
# SUPABASE
# =============================================================================

def fetch_impressions(providers: Providers, days: int, now: datetime = None) -> list[ImpressionRow]:
    start, end = lookback_window(days, now)
    if providers.supabase.configured:
        rows = providers.supabase.get_impressions(start, end)
    else:
        rows = generate_sample_impressions(start, end)
    return validate_rows(ImpressionRow, rows)


def fetch_installs(providers: Providers, days: int, now: datetime = None) -> list[InstallRow]:
    start, end = lookback_window(days, now)
    if providers.supabase.configured:
        rows = providers.supabase.get_installs(start, end)
    else:
        rows = generate_sample_installs(start, end)
    return validate_rows(InstallRow, rows)


def fetch_user_events(providers: Providers, days: int, now: datetime = None) -> list[UserEventRow]:
    start, end = lookback_window(days, now)
    if providers.supabase.configured:
        rows = providers.supabase.get_funnel_events(start, end)
    else:
        rows = generate_sample_funnel_events(now=now)
    return validate_rows(UserEventRow, rows)


def fetch_user_sessions(providers: Providers, days: int, now: datetime = None) -> list[UserSessionRow]:
    """Sessions have no sample fallback; an unconfigured backend raises."""
    start, end = lookback_window(days, now)
    return validate_rows(UserSessionRow, providers.supabase.get_user_sessions(start, end))


def fetch_rpc(providers: Providers, query_type: str, days: int = DEFAULT_DAYS):
    return providers.supabase.run_rpc_query(query_type, days)


# =============================================================================
# CONCURRENT SECTION FETCHING
# =============================================================================

@dataclass
class Section:
    """One independent fetch of a dashboard page and its empty fallback."""
    fetch: Callable[[], Any]
    default: Callable[[], Any]


EMPTY_DEFAULTS = {
    "trends": TrendsResult,
    "funnel": FunnelResult,
    "retention": RetentionResult,
    "events": EventsResult,
    "rows": list,
    "object": dict,
}


async def gather_sections(sections: dict[str, Section]) -> tuple[dict[str, Any], list[str]]:
    """
    Run every section's fetch concurrently and wait for all of them.

    Returns (data, failed): data maps each section name to its result, or to
    its default when the fetch raised; failed lists the degraded sections in
    declaration order.
    """
    names = list(sections)
    results = await asyncio.gather(
        *(asyncio.to_thread(sections[name].fetch) for name in names),
        return_exceptions=True,
    )

    data = {}
    failed = []
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            print(f"[Dashboards] Section '{name}' unavailable: {result}")
            data[name] = sections[name].default()
            failed.append(name)
        elif isinstance(result, BaseException):
            raise result
        else:
            data[name] = result

    return data, failed
