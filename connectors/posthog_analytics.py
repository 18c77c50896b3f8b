"""
PostHog Connector for the product metrics dashboard.

Runs canned insight queries against the PostHog query API:
- Screen views by screen name / by platform
- Daily active users and unique users
- Login funnel
- First-time retention
- Website page views, traffic sources, top pages, devices

Also fetches raw events for client-side grouping.
"""

import requests

from provider_config import ProviderConfig


class PostHogAPIError(Exception):
    """Raised when PostHog answers with a non-200 status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        message = f"PostHog API error: {status_code}"
        if body:
            message = f"{message} - {body}"
        super().__init__(message)


# Query types accepted by build_query (plus "events", which hits the events endpoint)
QUERY_TYPES = [
    "screenViews",
    "dailyActiveUsers",
    "loginFunnel",
    "retention",
    "eventsByPlatform",
    "totalEvents",
    "uniqueUsers",
    "websitePageViews",
    "websiteTrafficSources",
    "websiteTopPages",
    "websiteDevices",
]

SCREEN_EVENT = "$screen"
PAGEVIEW_EVENT = "$pageview"


def _date_range(days: int) -> dict:
    return {"date_from": f"-{days}d"}


def _screen_series(math: str = None) -> list:
    node = {"event": SCREEN_EVENT, "kind": "EventsNode"}
    if math:
        node["math"] = math
    return [node]


def _host_filter(host: str) -> dict:
    """Property filter restricting website queries to our own domain."""
    return {
        "type": "AND",
        "values": [
            {
                "type": "AND",
                "values": [
                    {"key": "$host", "value": host, "operator": "icontains", "type": "event"}
                ],
            }
        ],
    }


def build_query(query_type: str, days: int = 30, website_host: str = "potteryfriends.com") -> dict:
    """
    Build the canned query body for a dashboard query type.

    Args:
        query_type: One of QUERY_TYPES
        days: Lookback window in days
        website_host: Host used to scope website analytics queries

    Raises:
        ValueError: for an unknown query type
    """
    if query_type == "screenViews":
        return {
            "kind": "TrendsQuery",
            "series": _screen_series(),
            "interval": "day",
            "dateRange": _date_range(days),
            "breakdownFilter": {"breakdown": "$screen_name", "breakdown_type": "event"},
        }

    if query_type == "dailyActiveUsers":
        return {
            "kind": "TrendsQuery",
            "series": _screen_series(math="dau"),
            "interval": "day",
            "dateRange": _date_range(days),
        }

    if query_type == "loginFunnel":
        return {
            "kind": "FunnelsQuery",
            "series": [
                {"event": "login_started", "kind": "EventsNode"},
                {"event": "login_completed", "kind": "EventsNode"},
            ],
            "dateRange": _date_range(days),
            "funnelsFilter": {
                "funnelWindowInterval": 1,
                "funnelWindowIntervalUnit": "day",
            },
        }

    if query_type == "retention":
        return {
            "kind": "RetentionQuery",
            "retentionFilter": {
                "retentionType": "retention_first_time",
                "totalIntervals": 8,
                "period": "Day",
                "targetEntity": {"id": SCREEN_EVENT, "type": "events"},
                "returningEntity": {"id": SCREEN_EVENT, "type": "events"},
            },
            "dateRange": _date_range(days),
        }

    if query_type == "eventsByPlatform":
        return {
            "kind": "TrendsQuery",
            "series": _screen_series(),
            "interval": "day",
            "dateRange": _date_range(days),
            "breakdownFilter": {"breakdown": "$os", "breakdown_type": "event"},
        }

    if query_type == "totalEvents":
        return {
            "kind": "TrendsQuery",
            "series": _screen_series(),
            "dateRange": _date_range(days),
        }

    if query_type == "uniqueUsers":
        return {
            "kind": "TrendsQuery",
            "series": _screen_series(math="dau"),
            "dateRange": _date_range(days),
        }

    if query_type == "websitePageViews":
        return {
            "kind": "TrendsQuery",
            "series": [
                {"event": PAGEVIEW_EVENT, "kind": "EventsNode", "name": "Page Views"},
                {"event": PAGEVIEW_EVENT, "kind": "EventsNode", "math": "unique_session", "name": "Visitors"},
            ],
            "interval": "day",
            "dateRange": _date_range(days),
            "filterTestAccounts": True,
            "properties": _host_filter(website_host),
        }

    if query_type == "websiteTrafficSources":
        return {
            "kind": "TrendsQuery",
            "series": [{"event": PAGEVIEW_EVENT, "kind": "EventsNode", "math": "unique_session"}],
            "dateRange": _date_range(days),
            "breakdownFilter": {
                "breakdown": "$referring_domain",
                "breakdown_type": "event",
                "breakdown_limit": 10,
            },
            "filterTestAccounts": True,
            "properties": _host_filter(website_host),
        }

    if query_type == "websiteTopPages":
        return {
            "kind": "TrendsQuery",
            "series": [{"event": PAGEVIEW_EVENT, "kind": "EventsNode"}],
            "dateRange": _date_range(days),
            "breakdownFilter": {
                "breakdown": "$pathname",
                "breakdown_type": "event",
                "breakdown_limit": 15,
            },
            "filterTestAccounts": True,
            "properties": _host_filter(website_host),
        }

    if query_type == "websiteDevices":
        return {
            "kind": "TrendsQuery",
            "series": [{"event": PAGEVIEW_EVENT, "kind": "EventsNode", "math": "unique_session"}],
            "dateRange": _date_range(days),
            "breakdownFilter": {"breakdown": "$device_type", "breakdown_type": "event"},
            "filterTestAccounts": True,
            "properties": _host_filter(website_host),
        }

    raise ValueError(f"Invalid query type: {query_type}")


class PostHogConnector:
    """Connector for the PostHog query and events APIs."""

    def __init__(self, config: ProviderConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        self.configured = config.posthog_configured

    @property
    def project_url(self) -> str:
        return f"{self.config.posthog_host}/api/projects/{self.config.posthog_project_id}"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.posthog_api_key}",
            "Content-Type": "application/json",
        }

    def _check_credentials(self):
        """Verify the API key is present."""
        if not self.configured:
            raise ValueError("Missing POSTHOG_API_KEY in .env file")
        return True

    def _handle_response(self, response: requests.Response) -> dict:
        if response.status_code != 200:
            raise PostHogAPIError(response.status_code, response.text)
        return response.json()

    def run_query(self, query_type: str, days: int = 30) -> dict:
        """Run one of the canned insight queries and return the raw response."""
        query = build_query(query_type, days, website_host=self.config.website_host)
        self._check_credentials()

        print(f"[PostHog] Running {query_type} ({days}d)")
        response = self.session.post(
            f"{self.project_url}/query",
            headers=self._headers(),
            json={"query": query},
            timeout=self.config.request_timeout,
        )
        return self._handle_response(response)

    def get_events(self, limit: int = 1000) -> dict:
        """
        Fetch the most recent raw events.

        Returns the provider response as-is; events live under "results".
        """
        self._check_credentials()

        print(f"[PostHog] Fetching up to {limit} raw events")
        response = self.session.get(
            f"{self.project_url}/events",
            headers=self._headers(),
            params={"limit": limit},
            timeout=self.config.request_timeout,
        )
        return self._handle_response(response)


def setup_instructions():
    """Print setup instructions for PostHog."""
    print("""
================================================================================
POSTHOG API SETUP
================================================================================

1. Log in to PostHog and open Settings > Personal API Keys
2. Create a key with read access to Insights and Events
3. Add to .env:
   POSTHOG_API_KEY=phx_xxxxxxxxxxxxxxxxxxxxx
   POSTHOG_PROJECT_ID=304303
================================================================================
""")


def main():
    """Smoke-test the connector or show setup instructions."""
    connector = PostHogConnector(ProviderConfig.from_env())

    if not connector.configured:
        setup_instructions()
        return

    try:
        data = connector.run_query("totalEvents", days=7)
        print(f"Connected. {len(data.get('results', []))} series returned for the last 7 days.")
    except (PostHogAPIError, requests.RequestException) as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
