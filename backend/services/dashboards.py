"""
Dashboard composition.

Each build_* function serves one dashboard page. It fetches its sections from
both providers concurrently, runs them through the shared aggregation
(normalize -> daily buckets -> derived ratios) and returns a JSON-ready dict.

Every payload carries ``sections_failed``: the sections whose provider fetch
failed and were rendered from empty defaults.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from services.cohorts import average_rates, retention_cohorts, sample_cohort_rows
from services.data_loader import (
    DEFAULT_DAYS,
    EMPTY_DEFAULTS,
    Providers,
    Section,
    fetch_impressions,
    fetch_installs,
    fetch_posthog,
    fetch_rpc,
    fetch_user_events,
    fetch_user_sessions,
    gather_sections,
    lookback_window,
)
from services.derived_metrics import (
    average,
    biggest_drop_off,
    conversion_rate,
    derive,
    engagement_rate,
    health_label,
    percent_change,
    percentage,
    safe_ratio,
    stage_transitions,
)
from services.provider_models import PostHogEvent, RetentionResult
from services.sample_data import PLATFORMS, generate_sample_retention
from services.timeseries import (
    FILL_ZERO,
    UNKNOWN_CATEGORY,
    aggregate,
    category_breakdown,
    daily_totals,
    normalize_records,
    normalize_series,
    parse_timestamp,
    to_date_key,
    window_category_totals,
    window_total,
)
from services.website import WEBSITE_TRANSFORMS, transform_page_views

SCREEN_EVENT = "$screen"

POSTHOG_FUNNEL = [
    ("Screen View", SCREEN_EVENT),
    ("Login Started", "login_started"),
    ("Login Completed", "login_completed"),
]

UNIFIED_FUNNEL = [
    ("App Open", "app_open"),
    ("Sign Up", "sign_up"),
    ("Onboarding Complete", "onboarding_complete"),
    ("First Action", "first_action"),
]

ENGAGEMENT_METRICS = ("posts", "likes", "comments")

WEEK = timedelta(days=7)

# Days of daily rows needed to compare this week with last week
WEEK_OVER_WEEK_DAYS = 14

# Breakdown name fragments identifying the key app screens
KEY_SCREENS = {
    "feed": ("feed", "home"),
    "profile": ("profile",),
    "post": ("post", "create"),
}

STUDIO_TABLE_SIZE = 10
ACTIVE_STUDIO_MEMBERS = 5

SAMPLE_RETENTION_WEEKS = 8


def _now(now: datetime = None) -> datetime:
    return now or datetime.now(timezone.utc)


def _window_keys(days: int, now: datetime) -> tuple[str, str]:
    start, end = lookback_window(days, now)
    return to_date_key(start), to_date_key(end)


def _week_keys(now: datetime) -> tuple[tuple[str, str], tuple[str, str]]:
    """
    Day-key ranges for the last 7 days and the 7 days before them.

    Calendar days, today included. Daily RPC rows carry no time of day, so
    weeks over them are whole days; raw events use _rolling_week_counts.
    """
    today = now.date()
    this_week = ((today - timedelta(days=6)).isoformat(), today.isoformat())
    last_week = ((today - timedelta(days=13)).isoformat(), (today - timedelta(days=7)).isoformat())
    return this_week, last_week


def _rolling_week_counts(events: list[PostHogEvent], event_name: str, now: datetime) -> tuple[int, int]:
    """
    Occurrences of ``event_name`` in the last 7x24 hours and the 7x24 hours before.

    This week is everything at or after now - 7 days; last week is
    [now - 14 days, now - 7 days).
    """
    week_start = now - WEEK
    previous_start = now - 2 * WEEK
    this_week = last_week = 0
    for event in events:
        if event.event != event_name:
            continue
        timestamp = parse_timestamp(event.timestamp)
        if timestamp is None:
            continue
        if timestamp >= week_start:
            this_week += 1
        elif timestamp >= previous_start:
            last_week += 1
    return this_week, last_week


def week_over_week(buckets, now: datetime, metrics) -> dict:
    """Per-metric totals for this week and last week with whole-percent changes."""
    (this_first, this_last), (prev_first, prev_last) = _week_keys(now)
    this_week = window_category_totals(buckets, this_first, this_last)
    last_week = window_category_totals(buckets, prev_first, prev_last)

    return {
        "this_week": {metric: this_week.get(metric, 0) for metric in metrics},
        "last_week": {metric: last_week.get(metric, 0) for metric in metrics},
        "changes": {
            metric: percent_change(this_week.get(metric, 0), last_week.get(metric, 0), precision=0)
            for metric in metrics
        },
    }


def _events_in_window(events: list[PostHogEvent], first: str, last: str) -> list[PostHogEvent]:
    in_window = []
    for event in events:
        day = to_date_key(event.timestamp)
        if day is not None and first <= day <= last:
            in_window.append(event)
    return in_window


def _distinct_users(events: list[PostHogEvent], event_name: str) -> int:
    return len({event.distinct_id for event in events if event.event == event_name})


def _funnel_payload(stages: list[tuple[str, int]]) -> dict:
    transitions = stage_transitions(stages)
    biggest = biggest_drop_off(transitions)
    return {
        "stages": [{"name": name, "count": count} for name, count in stages],
        "transitions": [t.as_dict() for t in transitions],
        "biggest_drop_off": biggest.as_dict() if biggest else None,
    }


def unified_funnel_stages(events) -> list[tuple[str, int]]:
    """Distinct users per unified funnel stage, in stage order."""
    users_by_type: dict[str, set] = {}
    for event in events:
        users_by_type.setdefault(event.event_type, set()).add(str(event.user_id))
    return [(name, len(users_by_type.get(event_type, ()))) for name, event_type in UNIFIED_FUNNEL]


def unified_funnel(events) -> dict:
    """Unified signup funnel with drop-offs and the signup -> first action activation rate."""
    stages = unified_funnel_stages(events)
    counts = dict(stages)
    payload = _funnel_payload(stages)
    payload["activation_rate"] = percentage(counts["First Action"], counts["Sign Up"])
    return payload


def _screen_rows(events: list[PostHogEvent]) -> list[dict]:
    return [
        {
            "timestamp": event.timestamp,
            "screen": event.properties.get("$screen_name"),
        }
        for event in events
        if event.event == SCREEN_EVENT
    ]


def _screen_breakdown(buckets) -> list[dict]:
    return [
        {"screen": row["category"], "views": row["value"], "percentage": row["percentage"]}
        for row in category_breakdown(buckets)
        if row["value"] > 0
    ]


def key_screens(breakdown: list[dict]) -> dict:
    """Most viewed screen matching each KEY_SCREENS entry, or None when nothing matches."""
    found = {}
    for key, fragments in KEY_SCREENS.items():
        found[key] = next(
            (row for row in breakdown if any(f in str(row["screen"]).lower() for f in fragments)),
            None,
        )
    return found


# =============================================================================
# IMPRESSIONS
# =============================================================================

async def build_impressions(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Screen views from raw PostHog events."""
    now = _now(now)
    data, failed = await gather_sections({
        "events": Section(lambda: fetch_posthog(providers, "events", days), EMPTY_DEFAULTS["events"]),
    })

    first, last = _window_keys(days, now)
    events = _events_in_window(data["events"].results, first, last)
    buckets = aggregate(normalize_records(_screen_rows(events), category_field="screen"), start=first, end=last)

    total_views = sum(bucket.total for bucket in buckets)
    unique_users = _distinct_users(events, SCREEN_EVENT)
    avg_views_per_user = round(safe_ratio(total_views, unique_users), 1)
    breakdown = _screen_breakdown(buckets)

    # Weeks come from every fetched event, not just those inside the window
    this_week, last_week = _rolling_week_counts(data["events"].results, SCREEN_EVENT, now)

    return {
        "days": days,
        "daily": daily_totals(buckets, "views"),
        "breakdown": breakdown,
        "summary": {
            "total_views": total_views,
            "unique_users": unique_users,
            "avg_views_per_user": avg_views_per_user,
            "top_screen": breakdown[0]["screen"] if breakdown else "N/A",
            "key_screens": key_screens(breakdown),
            "this_week_views": this_week,
            "last_week_views": last_week,
            "week_over_week_change": percent_change(this_week, last_week),
            "session_health": health_label(avg_views_per_user, healthy=5, okay=3),
        },
        "sections_failed": failed,
    }


# =============================================================================
# REACH
# =============================================================================

async def build_reach(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Website, app store and in-app reach, from both providers."""
    now = _now(now)
    data, failed = await gather_sections({
        "screen_views": Section(lambda: fetch_posthog(providers, "screenViews", days), EMPTY_DEFAULTS["trends"]),
        "unique_users": Section(lambda: fetch_posthog(providers, "uniqueUsers", days), EMPTY_DEFAULTS["trends"]),
        "events": Section(lambda: fetch_posthog(providers, "events", days), EMPTY_DEFAULTS["events"]),
        "page_views": Section(lambda: fetch_posthog(providers, "websitePageViews", days), EMPTY_DEFAULTS["trends"]),
        "impressions": Section(lambda: fetch_impressions(providers, days, now), EMPTY_DEFAULTS["rows"]),
        "installs": Section(lambda: fetch_installs(providers, days, now), EMPTY_DEFAULTS["rows"]),
        "user_events": Section(lambda: fetch_user_events(providers, days, now), EMPTY_DEFAULTS["rows"]),
    })

    first, last = _window_keys(days, now)

    # In-app screen views
    screen_buckets = aggregate(normalize_series(data["screen_views"].results), start=first, end=last)
    total_views = sum(bucket.total for bucket in screen_buckets)
    unique_series = data["unique_users"].results
    unique_users = unique_series[0].total if unique_series else 0
    breakdown = _screen_breakdown(screen_buckets)

    # App store funnel
    impression_buckets = aggregate(
        normalize_records(data["impressions"], category_field="platform", value_field="count", default_value=0),
        start=first, end=last,
    )
    install_buckets = aggregate(
        normalize_records(data["installs"], category_field="platform", value_field="count", default_value=0),
        start=first, end=last,
    )
    total_impressions = sum(bucket.total for bucket in impression_buckets)
    total_installs = sum(bucket.total for bucket in install_buckets)

    signup_events = [e for e in data["user_events"] if e.event_type == "sign_up"]
    signup_buckets = aggregate(normalize_records(signup_events), start=first, end=last)
    total_signups = len({str(e.user_id) for e in signup_events})
    install_rate = derive("install_rate", total_installs, total_impressions)
    install_signup_rate = derive("install_signup_rate", total_signups, total_installs)

    # Website
    website = transform_page_views(data["page_views"].results)
    unique_visitors = website["summary"]["unique_visitors"]

    # Login conversion from raw events
    events = _events_in_window(data["events"].results, first, last)
    login_started = _distinct_users(events, "login_started")
    login_completed = _distinct_users(events, "login_completed")

    return {
        "days": days,
        "screen_views": {
            "daily": daily_totals(screen_buckets, "views"),
            "breakdown": breakdown,
            "total_views": total_views,
            "unique_users": unique_users,
            "avg_views_per_user": round(safe_ratio(total_views, unique_users), 1),
            "top_screen": breakdown[0]["screen"] if breakdown else "N/A",
        },
        "app_store": {
            "impressions": [b.as_row(PLATFORMS) for b in impression_buckets],
            "installs": [b.as_row(PLATFORMS) for b in install_buckets],
            "total_impressions": total_impressions,
            "total_installs": total_installs,
            "install_rate": install_rate.ratio,
            "install_signup_rate": install_signup_rate.ratio,
            "conversions": [install_rate.as_dict(), install_signup_rate.as_dict()],
        },
        "signups": {
            "daily": daily_totals(signup_buckets, "signups"),
            "total": total_signups,
            "visitor_signup_rate": percentage(total_signups, unique_visitors),
        },
        "website": website,
        "login": {
            "started": login_started,
            "completed": login_completed,
            "conversion_rate": conversion_rate(login_started, login_completed),
        },
        "sections_failed": failed,
    }


# =============================================================================
# FUNNEL
# =============================================================================

async def build_funnel(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """PostHog login funnel and the unified signup funnel."""
    now = _now(now)
    data, failed = await gather_sections({
        "events": Section(lambda: fetch_posthog(providers, "events", days), EMPTY_DEFAULTS["events"]),
        "user_events": Section(lambda: fetch_user_events(providers, days, now), EMPTY_DEFAULTS["rows"]),
    })

    first, last = _window_keys(days, now)
    events = _events_in_window(data["events"].results, first, last)

    posthog_stages = [(name, _distinct_users(events, event_name)) for name, event_name in POSTHOG_FUNNEL]
    posthog_funnel = _funnel_payload(posthog_stages)
    counts = dict(posthog_stages)
    posthog_funnel["login_conversion"] = conversion_rate(counts["Login Started"], counts["Login Completed"])

    user_events = data["user_events"]
    daily = aggregate(normalize_records(user_events, category_field="event_type"), start=first, end=last)

    return {
        "days": days,
        "posthog": posthog_funnel,
        "unified": unified_funnel(user_events),
        "daily": [bucket.as_row([event_type for _, event_type in UNIFIED_FUNNEL]) for bucket in daily],
        "sections_failed": failed,
    }


# =============================================================================
# RETENTION
# =============================================================================

def _posthog_retention(result: RetentionResult) -> list[dict]:
    rows = []
    for cohort in result.results:
        size = cohort.size
        rows.append({
            "cohort": cohort.label or cohort.date or UNKNOWN_CATEGORY,
            "cohort_size": size,
            "rates": [percentage(value.count, size) for value in cohort.values],
        })
    return rows


async def build_retention(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Daily active users plus signup cohort retention."""
    now = _now(now)
    data, failed = await gather_sections({
        "daily_active_users": Section(
            lambda: fetch_posthog(providers, "dailyActiveUsers", days), EMPTY_DEFAULTS["trends"]
        ),
        "posthog_retention": Section(
            lambda: fetch_posthog(providers, "retention", days), EMPTY_DEFAULTS["retention"]
        ),
        "user_events": Section(lambda: fetch_user_events(providers, days, now), EMPTY_DEFAULTS["rows"]),
        "user_sessions": Section(lambda: fetch_user_sessions(providers, days, now), EMPTY_DEFAULTS["rows"]),
    })

    first, last = _window_keys(days, now)
    dau_buckets = aggregate(normalize_series(data["daily_active_users"].results), start=first, end=last)
    dau = daily_totals(dau_buckets, "dau")
    recent = [row["dau"] for row in dau[-7:]]

    if providers.supabase.configured:
        cohorts = retention_cohorts(data["user_events"], data["user_sessions"])
        cohort_source = "supabase"
    else:
        cohorts = sample_cohort_rows(generate_sample_retention(SAMPLE_RETENTION_WEEKS))
        cohort_source = "sample"

    return {
        "days": days,
        "daily_active_users": dau,
        "avg_dau_7d": average(recent, precision=0),
        "cohorts": cohorts,
        "cohort_source": cohort_source,
        "averages": average_rates(cohorts),
        "posthog_cohorts": _posthog_retention(data["posthog_retention"]),
        "sections_failed": failed,
    }


# =============================================================================
# ENGAGEMENT
# =============================================================================

def engagement_records(trend_rows: list[dict]):
    """One record per metric per engagement trends row, categorized by metric name."""
    records = []
    for metric in ENGAGEMENT_METRICS:
        for record in normalize_records(trend_rows, value_field=metric, default_value=0):
            records.append(replace(record, category=metric))
    return records


def engagement_buckets(trend_rows: list[dict], first: str = None, last: str = None):
    """Daily posts/likes/comments buckets from the engagement trends RPC rows."""
    return aggregate(engagement_records(trend_rows), start=first, end=last)


def _trend_rows(value) -> list[dict]:
    return [row for row in _as_list(value, "trends") if isinstance(row, dict)]


def top_studio(studios: list[dict]):
    """Studio with the most members; the first listed wins a tie."""
    best = None
    for studio in studios:
        if best is None or (studio.get("memberCount") or 0) > (best.get("memberCount") or 0):
            best = studio
    return best


def _as_list(value, key: str) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return value.get(key) or []
    return []


async def build_engagement(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Posts, likes and comments from the Supabase aggregate functions."""
    now = _now(now)
    data, failed = await gather_sections({
        "overview": Section(lambda: fetch_rpc(providers, "overview"), EMPTY_DEFAULTS["object"]),
        "trends": Section(
            lambda: fetch_rpc(providers, "engagementTrends", max(days, WEEK_OVER_WEEK_DAYS)),
            EMPTY_DEFAULTS["rows"],
        ),
        "studios": Section(lambda: fetch_rpc(providers, "studioStats"), EMPTY_DEFAULTS["rows"]),
    })

    overview = data["overview"] or {}
    total_posts = overview.get("totalPosts") or 0
    total_likes = overview.get("totalLikes") or 0
    total_comments = overview.get("totalComments") or 0
    total_follows = overview.get("totalFollows") or 0

    first, last = _window_keys(days, now)
    buckets = engagement_buckets(_trend_rows(data["trends"]))
    active_days = [
        b.as_row(ENGAGEMENT_METRICS) for b in buckets
        if b.total > 0 and first <= b.date <= last
    ]

    (this_first, this_last), (prev_first, prev_last) = _week_keys(now)
    this_week = window_total(buckets, this_first, this_last)
    last_week = window_total(buckets, prev_first, prev_last)

    rate = engagement_rate(total_likes, total_comments, total_posts)
    breakdown = [
        {"name": name, "value": value}
        for name, value in (("Likes", total_likes), ("Comments", total_comments), ("Follows", total_follows))
        if value > 0
    ]
    studios = [s for s in _as_list(data["studios"], "studios") if isinstance(s, dict)]

    return {
        "days": days,
        "totals": {
            "members": overview.get("totalMembers") or 0,
            "posts": total_posts,
            "likes": total_likes,
            "comments": total_comments,
            "follows": total_follows,
        },
        "engagement_rate": rate,
        "engagement_health": health_label(rate, healthy=5, okay=2),
        "daily": active_days,
        "this_week_activity": this_week,
        "last_week_activity": last_week,
        "weekly_trend": percent_change(this_week, last_week, precision=0),
        "week_over_week": week_over_week(buckets, now, ENGAGEMENT_METRICS),
        "breakdown": breakdown,
        "studios": studios,
        "top_studio": top_studio(studios),
        "sections_failed": failed,
    }


# =============================================================================
# OVERVIEW
# =============================================================================

async def build_overview(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Headline numbers: members, growth, activity and activation."""
    now = _now(now)
    data, failed = await gather_sections({
        "overview": Section(lambda: fetch_rpc(providers, "overview"), EMPTY_DEFAULTS["object"]),
        "member_growth": Section(
            lambda: fetch_rpc(providers, "memberGrowth", max(days, WEEK_OVER_WEEK_DAYS)),
            EMPTY_DEFAULTS["rows"],
        ),
        "engagement_trends": Section(
            lambda: fetch_rpc(providers, "engagementTrends", WEEK_OVER_WEEK_DAYS),
            EMPTY_DEFAULTS["rows"],
        ),
        "user_events": Section(lambda: fetch_user_events(providers, days, now), EMPTY_DEFAULTS["rows"]),
        "user_sessions": Section(lambda: fetch_user_sessions(providers, 7, now), EMPTY_DEFAULTS["rows"]),
    })

    overview = data["overview"] or {}
    total_members = overview.get("totalMembers") or 0

    first, last = _window_keys(days, now)
    growth_rows = [row for row in _as_list(data["member_growth"], "growth") if isinstance(row, dict)]
    growth_records = [
        replace(record, category="new_members")
        for record in normalize_records(growth_rows, value_field="new_members", default_value=0)
    ]
    growth_buckets = aggregate(growth_records, start=first, end=last, fill=FILL_ZERO)
    activity_buckets = aggregate(growth_records + engagement_records(_trend_rows(data["engagement_trends"])))

    active_members = len({str(s.user_id) for s in data["user_sessions"]})
    activity_rate = percentage(active_members, total_members)
    funnel = unified_funnel(data["user_events"])

    return {
        "days": days,
        "totals": overview,
        "member_growth": daily_totals(growth_buckets, "new_members"),
        "weekly_numbers": week_over_week(activity_buckets, now, ("new_members",) + ENGAGEMENT_METRICS),
        "active_members_7d": active_members,
        "activity_rate": activity_rate,
        "health": health_label(activity_rate, healthy=40, okay=20),
        "activation_rate": funnel["activation_rate"],
        "funnel": funnel,
        "sections_failed": failed,
    }


# =============================================================================
# STUDIOS
# =============================================================================

def studio_status(member_count: int) -> str:
    """active at ACTIVE_STUDIO_MEMBERS members or more, growing with any, otherwise new."""
    if member_count >= ACTIVE_STUDIO_MEMBERS:
        return "active"
    if member_count > 0:
        return "growing"
    return "new"


async def build_studios(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Studio pipeline: how many studios exist, how many have members, and the largest ones."""
    data, failed = await gather_sections({
        "overview": Section(lambda: fetch_rpc(providers, "overview"), EMPTY_DEFAULTS["object"]),
        "studios": Section(lambda: fetch_rpc(providers, "studioStats"), EMPTY_DEFAULTS["rows"]),
    })

    overview = data["overview"] or {}
    studios = [s for s in _as_list(data["studios"], "studios") if isinstance(s, dict)]
    active_studios = sum(1 for s in studios if (s.get("memberCount") or 0) > 0)

    # Stable sort, so equal member counts keep their provider order
    largest = sorted(studios, key=lambda s: s.get("memberCount") or 0, reverse=True)[:STUDIO_TABLE_SIZE]
    table = []
    for studio in largest:
        member_count = studio.get("memberCount") or 0
        table.append({
            "name": studio.get("name") or "Unnamed",
            "member_count": member_count,
            "post_count": studio.get("postCount") or 0,
            "status": studio_status(member_count),
        })

    return {
        "days": days,
        "total_studios": overview.get("totalStudios") or len(studios),
        "active_studios": active_studios,
        "active_rate": percentage(active_studios, len(studios)),
        "top_studios": table,
        "sections_failed": failed,
    }


# =============================================================================
# WEBSITE
# =============================================================================

async def build_website(providers: Providers, days: int = DEFAULT_DAYS, now: datetime = None) -> dict:
    """Marketing website traffic: page views, sources, pages, devices."""
    sections = {
        query_type: Section(
            lambda query_type=query_type: fetch_posthog(providers, query_type, days),
            EMPTY_DEFAULTS["trends"],
        )
        for query_type in WEBSITE_TRANSFORMS
    }
    data, failed = await gather_sections(sections)

    payload = {"days": days}
    for query_type, transform in WEBSITE_TRANSFORMS.items():
        payload.update(transform(data[query_type].results))
    payload["sections_failed"] = failed
    return payload


DASHBOARDS = {
    "overview": build_overview,
    "impressions": build_impressions,
    "reach": build_reach,
    "funnel": build_funnel,
    "retention": build_retention,
    "engagement": build_engagement,
    "studios": build_studios,
    "website": build_website,
}
