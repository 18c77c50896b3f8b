"""
Provider configuration for the product metrics dashboard.

Credentials and base URLs for both data providers live here and are passed
explicitly into the connectors. Nothing else reads the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_POSTHOG_HOST = "https://us.i.posthog.com"
DEFAULT_POSTHOG_PROJECT_ID = "304303"
DEFAULT_WEBSITE_HOST = "potteryfriends.com"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for PostHog and Supabase."""
    posthog_api_key: Optional[str] = None
    posthog_project_id: str = DEFAULT_POSTHOG_PROJECT_ID
    posthog_host: str = DEFAULT_POSTHOG_HOST
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    website_host: str = DEFAULT_WEBSITE_HOST
    request_timeout: float = DEFAULT_TIMEOUT

    @property
    def posthog_configured(self) -> bool:
        return bool(self.posthog_api_key)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Build the config from environment variables (and .env)."""
        # Accept the NEXT_PUBLIC_ names so an existing frontend .env can be reused
        supabase_url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")

        try:
            timeout = float(os.getenv("PROVIDER_TIMEOUT", DEFAULT_TIMEOUT))
        except ValueError:
            timeout = DEFAULT_TIMEOUT

        return cls(
            posthog_api_key=os.getenv("POSTHOG_API_KEY") or None,
            posthog_project_id=os.getenv("POSTHOG_PROJECT_ID", DEFAULT_POSTHOG_PROJECT_ID),
            posthog_host=os.getenv("POSTHOG_HOST", DEFAULT_POSTHOG_HOST).rstrip("/"),
            supabase_url=supabase_url.rstrip("/") if supabase_url else None,
            supabase_key=supabase_key or None,
            website_host=os.getenv("WEBSITE_HOST", DEFAULT_WEBSITE_HOST),
            request_timeout=timeout,
        )
