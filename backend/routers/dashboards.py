"""
Dashboard page endpoints.

One endpoint per page; each returns the fully aggregated payload for that
page. Sections whose provider failed are listed in ``sections_failed``.
"""

from fastapi import APIRouter, HTTPException

from services import data_loader
from services.dashboards import DASHBOARDS

router = APIRouter()


@router.get("")
async def list_dashboards():
    """Available dashboard pages."""
    return {"pages": list(DASHBOARDS)}


@router.get("/{page}")
async def get_dashboard(page: str, days: int = data_loader.DEFAULT_DAYS):
    """
    Get the aggregated data for one dashboard page.

    Query params:
        days: Lookback window in days (1-365, default: 30)
    """
    builder = DASHBOARDS.get(page)
    if builder is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown dashboard. Valid options: {list(DASHBOARDS)}"
        )

    if not 1 <= days <= data_loader.MAX_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid days. Must be between 1 and {data_loader.MAX_DAYS}"
        )

    return await builder(data_loader.get_providers(), days)
