"""
Supabase proxy endpoint.

Aggregate RPC queries need a configured backend. Table queries (impressions,
installs, unifiedFunnel) fall back to sample data when it isn't.
"""

import asyncio

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from services import data_loader
from services.dashboards import unified_funnel

router = APIRouter()

# Response key wrapping each RPC result; None returns the object as-is
RPC_RESPONSE_KEYS = {
    "overview": None,
    "engagementTrends": "trends",
    "studioStats": "studios",
    "memberGrowth": "growth",
}

TABLE_QUERY_TYPES = ("impressions", "installs", "unifiedFunnel")


class SupabaseQueryRequest(BaseModel):
    """Request body: which query to run and over how many days."""
    model_config = ConfigDict(populate_by_name=True)

    query_type: str = Field(alias="queryType")
    days: int = data_loader.DEFAULT_DAYS


def _dump(rows) -> list[dict]:
    return [row.model_dump() for row in rows]


def run_supabase_query(query_type: str, days: int) -> dict:
    providers = data_loader.get_providers()

    if query_type in RPC_RESPONSE_KEYS:
        data = data_loader.fetch_rpc(providers, query_type, days)
        key = RPC_RESPONSE_KEYS[query_type]
        if key is None:
            return data or {}
        return {key: data or []}

    if query_type == "impressions":
        return {"impressions": _dump(data_loader.fetch_impressions(providers, days))}
    if query_type == "installs":
        return {"installs": _dump(data_loader.fetch_installs(providers, days))}
    return unified_funnel(data_loader.fetch_user_events(providers, days))


@router.post("")
async def query_supabase(request: SupabaseQueryRequest):
    """
    Run an aggregate Supabase query.

    Query types: overview, engagementTrends, studioStats, memberGrowth,
    impressions, installs, unifiedFunnel.
    """
    query_type = request.query_type
    if query_type not in RPC_RESPONSE_KEYS and query_type not in TABLE_QUERY_TYPES:
        raise HTTPException(status_code=400, detail="Invalid query type")

    if query_type in RPC_RESPONSE_KEYS and not data_loader.get_providers().supabase.configured:
        raise HTTPException(status_code=500, detail="Supabase not configured")

    try:
        return await asyncio.to_thread(run_supabase_query, query_type, request.days)
    except Exception as e:
        print(f"[Supabase] {query_type} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
