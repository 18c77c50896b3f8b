"""
Website analytics transforms.

Turn PostHog trend series for the marketing website into the tables the
Website and Reach pages show: daily page views and visitors, traffic sources,
top pages and device split. Shares and changes are whole percentages.
"""

from services.derived_metrics import percent_change, percentage
from services.provider_models import TrendsSeries
from services.timeseries import to_date_key

MAX_TRAFFIC_SOURCES = 8
MAX_TOP_PAGES = 15


def _pair_series(results: list[TrendsSeries]) -> tuple[TrendsSeries, TrendsSeries]:
    empty = TrendsSeries()
    page_views = results[0] if len(results) > 0 else empty
    visitors = results[1] if len(results) > 1 else empty
    return page_views, visitors


def transform_page_views(results: list[TrendsSeries]) -> dict:
    """
    Daily page views and visitors plus half-over-half changes.

    The query returns two aligned series: page views first, visitors second.
    """
    page_views, visitors = _pair_series(results)

    dates = page_views.dates
    views_data = page_views.data
    visitors_data = visitors.data

    trend = []
    for i, raw_date in enumerate(dates):
        trend.append({
            "date": to_date_key(raw_date) or f"Day {i + 1}",
            "page_views": views_data[i] if i < len(views_data) else 0,
            "visitors": visitors_data[i] if i < len(visitors_data) else 0,
        })

    total_page_views = sum(views_data)
    unique_visitors = sum(visitors_data)

    # Split the window in two and compare the recent half with the earlier one
    midpoint = len(dates) // 2
    page_views_change = percent_change(sum(views_data[midpoint:]), sum(views_data[:midpoint]), precision=0)
    visitors_change = percent_change(sum(visitors_data[midpoint:]), sum(visitors_data[:midpoint]), precision=0)

    return {
        "trend": trend,
        "summary": {
            "total_page_views": total_page_views,
            "unique_visitors": unique_visitors,
            "page_views_change": page_views_change,
            "visitors_change": visitors_change,
            "web_users": unique_visitors,
        },
    }


def normalize_source_name(source: str) -> str:
    """Collapse referring domains into readable source names."""
    if not source or source == "$direct":
        return "Direct"
    lowered = source.lower()
    if "google" in lowered:
        return "Google"
    if any(name in lowered for name in ("facebook", "instagram", "twitter", "x.com")):
        return "Social"
    return source


def transform_traffic_sources(results: list[TrendsSeries]) -> dict:
    """Visitors per referring domain with their share, top sources first."""
    sources = []
    for series in results:
        raw_name = series.breakdown_value
        sources.append({
            "source": "" if raw_name is None else str(raw_name),
            "visitors": series.total,
        })

    total_visitors = sum(s["visitors"] for s in sources)
    for source in sources:
        source["percentage"] = percentage(source["visitors"], total_visitors, precision=0)
        source["source"] = normalize_source_name(source["source"])

    sources.sort(key=lambda s: s["visitors"], reverse=True)
    return {"sources": sources[:MAX_TRAFFIC_SOURCES]}


def transform_top_pages(results: list[TrendsSeries]) -> dict:
    """Total views per path, most viewed first."""
    pages = [
        {"path": str(series.breakdown_value) if series.breakdown_value not in (None, "") else "/", "views": series.total}
        for series in results
    ]
    pages.sort(key=lambda p: p["views"], reverse=True)
    return {"pages": pages[:MAX_TOP_PAGES]}


def normalize_device_name(device: str) -> str:
    lowered = device.lower()
    if "mobile" in lowered or "phone" in lowered:
        return "Mobile"
    if "tablet" in lowered or "ipad" in lowered:
        return "Tablet"
    if "desktop" in lowered or "pc" in lowered:
        return "Desktop"
    return device


def transform_devices(results: list[TrendsSeries]) -> dict:
    """Visitors per device class; duplicate classes are merged."""
    merged: dict[str, float] = {}
    for series in results:
        raw_name = series.breakdown_value
        device = normalize_device_name(str(raw_name) if raw_name not in (None, "") else "Unknown")
        merged[device] = merged.get(device, 0) + series.total

    total_visitors = sum(merged.values())
    devices = [
        {"device": device, "visitors": visitors, "percentage": percentage(visitors, total_visitors, precision=0)}
        for device, visitors in merged.items()
    ]
    devices.sort(key=lambda d: d["visitors"], reverse=True)
    return {"devices": devices}


WEBSITE_TRANSFORMS = {
    "websitePageViews": transform_page_views,
    "websiteTrafficSources": transform_traffic_sources,
    "websiteTopPages": transform_top_pages,
    "websiteDevices": transform_devices,
}
