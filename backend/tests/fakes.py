"""Provider doubles shared by the test modules."""

from datetime import datetime, timezone

from posthog_analytics import PostHogAPIError
from supabase_db import SupabaseAPIError

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    """Just enough of requests.Response for the connectors."""

    def __init__(self, payload=None, status_code=200, text=""):
        self.payload = payload
        self.status_code = status_code
        self.text = text
        self.content = b"" if payload is None else b"{}"

    def json(self):
        return self.payload


class FakeSession:
    """Returns one canned response and records every request."""

    def __init__(self, response: FakeResponse):
        self.response = response
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return self.response

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return self.response


class StubPostHog:
    """PostHog connector double answering canned query types."""

    def __init__(self, responses=None, events=None, fail=(), configured=True):
        self.responses = responses or {}
        self.events = events or []
        self.fail = set(fail)
        self.configured = configured
        self.queries = []

    def run_query(self, query_type, days=30):
        self.queries.append((query_type, days))
        if query_type in self.fail:
            raise PostHogAPIError(500, "upstream down")
        return self.responses.get(query_type, {"results": []})

    def get_events(self, limit=1000):
        if "events" in self.fail:
            raise PostHogAPIError(500, "upstream down")
        return {"results": self.events}


class StubSupabase:
    """Supabase connector double backed by in-memory tables and RPC results."""

    def __init__(self, tables=None, rpcs=None, fail=(), configured=True):
        self.tables = tables or {}
        self.rpcs = rpcs or {}
        self.fail = set(fail)
        self.configured = configured

    def _table(self, name):
        if not self.configured:
            raise ValueError("Supabase not configured")
        if name in self.fail:
            raise SupabaseAPIError(503, "unavailable")
        return list(self.tables.get(name, []))

    def get_impressions(self, start, end, platform=None):
        return self._table("impressions")

    def get_installs(self, start, end, platform=None):
        return self._table("installs")

    def get_funnel_events(self, start, end):
        return self._table("user_events")

    def get_user_sessions(self, start, end):
        return self._table("user_sessions")

    def run_rpc_query(self, query_type, days=30):
        if not self.configured:
            raise ValueError("Supabase not configured")
        if query_type in self.fail:
            raise SupabaseAPIError(503, "unavailable")
        return self.rpcs.get(query_type)


def screen_event(distinct_id, timestamp, screen="Home", event="$screen"):
    return {
        "id": f"{distinct_id}-{timestamp}",
        "distinct_id": distinct_id,
        "event": event,
        "timestamp": timestamp,
        "properties": {"$screen_name": screen},
    }


def user_event(user_id, event_type, created_at="2024-03-10T10:00:00Z"):
    return {"user_id": user_id, "event_type": event_type, "created_at": created_at}

