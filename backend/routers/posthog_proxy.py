"""
PostHog proxy endpoint.

Runs one canned PostHog query per request. Website query types come back
already transformed into dashboard tables; everything else is passed through
as PostHog returned it.
"""

import asyncio

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from services import data_loader
from services.provider_models import QUERY_RESULT_KINDS
from services.website import WEBSITE_TRANSFORMS

router = APIRouter()


class PostHogQueryRequest(BaseModel):
    """Request body: which canned query to run and over how many days."""
    model_config = ConfigDict(populate_by_name=True)

    query_type: str = Field(alias="queryType")
    days: int = data_loader.DEFAULT_DAYS


def run_posthog_query(query_type: str, days: int):
    providers = data_loader.get_providers()

    if query_type in WEBSITE_TRANSFORMS:
        result = data_loader.fetch_posthog(providers, query_type, days)
        return WEBSITE_TRANSFORMS[query_type](result.results)

    if query_type == "events":
        return providers.posthog.get_events()
    return providers.posthog.run_query(query_type, days)


@router.post("")
async def query_posthog(request: PostHogQueryRequest):
    """
    Proxy a canned PostHog query.

    Query types: screenViews, dailyActiveUsers, loginFunnel, retention,
    eventsByPlatform, totalEvents, uniqueUsers, events, websitePageViews,
    websiteTrafficSources, websiteTopPages, websiteDevices.
    """
    if request.query_type not in QUERY_RESULT_KINDS:
        raise HTTPException(status_code=400, detail="Invalid query type")

    try:
        return await asyncio.to_thread(run_posthog_query, request.query_type, request.days)
    except Exception as e:
        print(f"[PostHog] {request.query_type} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
