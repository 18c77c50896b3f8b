"""
Supabase Connector for the product metrics dashboard.

Reads from the Supabase REST (PostgREST) endpoint:
- impressions / installs (daily app store counts per platform)
- user_events (funnel stages)
- user_sessions (retention)
- aggregate RPC functions (overview, engagement trends, studio stats, member growth)
"""

from datetime import datetime

import requests

from provider_config import ProviderConfig


class SupabaseAPIError(Exception):
    """Raised when the Supabase REST API answers with an error status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        message = f"Supabase API error: {status_code}"
        if body:
            message = f"{message} - {body}"
        super().__init__(message)


# Aggregate functions exposed by the database. They only return counts,
# never raw member rows.
RPC_FUNCTIONS = {
    "overview": "get_dashboard_overview",
    "engagementTrends": "get_engagement_trends",
    "studioStats": "get_studio_stats",
    "memberGrowth": "get_member_growth",
}

# RPCs that take a lookback window
RPC_WITH_DAYS = {"get_engagement_trends", "get_member_growth"}


def _iso(value: datetime | str) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SupabaseConnector:
    """Connector for Supabase tables and RPC functions."""

    def __init__(self, config: ProviderConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        self.configured = config.supabase_configured

    @property
    def rest_url(self) -> str:
        return f"{self.config.supabase_url}/rest/v1"

    def _headers(self) -> dict:
        return {
            "apikey": self.config.supabase_key,
            "Authorization": f"Bearer {self.config.supabase_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _check_credentials(self):
        """Verify URL and key are present."""
        if not self.configured:
            raise ValueError("Supabase not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY in .env")
        return True

    def _handle_response(self, response: requests.Response):
        if response.status_code >= 300:
            raise SupabaseAPIError(response.status_code, response.text)
        if not response.content:
            return None
        return response.json()

    def select(
        self,
        table: str,
        start: datetime | str,
        end: datetime | str,
        date_column: str = "created_at",
        platform: str = None,
    ) -> list[dict]:
        """
        Select all rows of a table whose date column falls in [start, end].

        Args:
            table: Table name
            start: Inclusive lower bound (datetime or ISO string)
            end: Inclusive upper bound (datetime or ISO string)
            date_column: Column the range applies to
            platform: Optional platform filter; "All" means no filter
        """
        self._check_credentials()

        params = [
            ("select", "*"),
            (date_column, f"gte.{_iso(start)}"),
            (date_column, f"lte.{_iso(end)}"),
        ]
        if platform and platform != "All":
            params.append(("platform", f"eq.{platform}"))

        print(f"[Supabase] Selecting {table} ({_iso(start)} to {_iso(end)})")
        response = self.session.get(
            f"{self.rest_url}/{table}",
            headers=self._headers(),
            params=params,
            timeout=self.config.request_timeout,
        )
        return self._handle_response(response) or []

    def rpc(self, function: str, **params):
        """Call a database function and return its JSON result."""
        self._check_credentials()

        print(f"[Supabase] Calling {function}")
        response = self.session.post(
            f"{self.rest_url}/rpc/{function}",
            headers=self._headers(),
            json=params,
            timeout=self.config.request_timeout,
        )
        return self._handle_response(response)

    def run_rpc_query(self, query_type: str, days: int = 30):
        """Run the aggregate RPC behind a dashboard query type."""
        function = RPC_FUNCTIONS.get(query_type)
        if function is None:
            raise ValueError(f"Invalid query type: {query_type}")
        if function in RPC_WITH_DAYS:
            return self.rpc(function, days_back=days)
        return self.rpc(function)

    def get_impressions(self, start: datetime, end: datetime, platform: str = None) -> list[dict]:
        return self.select("impressions", start, end, platform=platform)

    def get_installs(self, start: datetime, end: datetime, platform: str = None) -> list[dict]:
        return self.select("installs", start, end, platform=platform)

    def get_funnel_events(self, start: datetime, end: datetime) -> list[dict]:
        return self.select("user_events", start, end)

    def get_user_sessions(self, start: datetime, end: datetime) -> list[dict]:
        return self.select("user_sessions", start, end, date_column="session_date")


def main():
    """Smoke-test the connector."""
    connector = SupabaseConnector(ProviderConfig.from_env())

    if not connector.configured:
        print("Supabase not configured. Add SUPABASE_URL and SUPABASE_ANON_KEY to .env")
        return

    try:
        overview = connector.run_rpc_query("overview")
        print(f"Connected. Overview keys: {sorted((overview or {}).keys())}")
    except (SupabaseAPIError, requests.RequestException) as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
