"""
Sample data generators.

Used when Supabase is not configured so the dashboards still have something
to show. Pass a seeded random.Random for repeatable output.
"""

import random
from datetime import datetime, timedelta, timezone

PLATFORMS = ["iOS", "Android", "Web"]

FUNNEL_EVENT_TYPES = ["app_open", "sign_up", "onboarding_complete", "first_action"]

# Probability that a user who reached the previous stage reaches this one
FUNNEL_REACH_PROBABILITIES = [1, 0.7, 0.5, 0.35]

# Day 0..7 retention curve (percent) the sample cohorts scatter around
BASE_RETENTION = [100, 45, 35, 30, 27, 25, 23, 22]


def _daily_platform_counts(
    prefix: str,
    start: datetime,
    end: datetime,
    base: int,
    growth: int,
    jitter: int,
    rng: random.Random,
) -> list[dict]:
    rows = []
    current = start
    day_index = 0

    while current <= end:
        for platform in PLATFORMS:
            rows.append({
                "id": f"{prefix}-{day_index}-{platform}",
                "created_at": current.isoformat(),
                "platform": platform,
                "count": int(base + day_index * growth + rng.random() * jitter),
            })
        current += timedelta(days=1)
        day_index += 1

    return rows


def generate_sample_impressions(start: datetime, end: datetime, rng: random.Random = None) -> list[dict]:
    """One impressions row per day per platform, trending upward."""
    return _daily_platform_counts("imp", start, end, base=800, growth=20, jitter=200, rng=rng or random.Random())


def generate_sample_installs(start: datetime, end: datetime, rng: random.Random = None) -> list[dict]:
    """One installs row per day per platform, trending upward."""
    return _daily_platform_counts("inst", start, end, base=80, growth=2, jitter=20, rng=rng or random.Random())


def generate_sample_funnel_events(num_users: int = 100, now: datetime = None, rng: random.Random = None) -> list[dict]:
    """
    Funnel events for ``num_users`` users.

    Each user walks the stages in order and stops at the first stage they
    fail to reach.
    """
    rng = rng or random.Random()
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    events = []

    for user_id in range(num_users):
        for i, event_type in enumerate(FUNNEL_EVENT_TYPES):
            if rng.random() >= FUNNEL_REACH_PROBABILITIES[i]:
                break
            events.append({
                "id": f"evt-{user_id}-{i}",
                "user_id": f"user-{user_id}",
                "event_type": event_type,
                "created_at": created_at,
            })

    return events


def generate_sample_retention(num_weeks: int, rng: random.Random = None) -> list[dict]:
    """
    Weekly cohorts with an 8-point retention curve each.

    Older cohorts sit slightly above the base curve; every point stays in
    [0, 100].
    """
    rng = rng or random.Random()
    cohorts = []

    for week in range(num_weeks):
        week_bonus = (num_weeks - week - 1) * 0.5
        retention = []
        for base in BASE_RETENTION:
            variance = (rng.random() - 0.5) * 6
            retention.append(max(0, min(100, base + variance + week_bonus)))

        cohorts.append({
            "cohort": f"Week {week + 1}",
            "cohort_size": int(500 + rng.random() * 1500),
            "retention": retention,
        })

    return cohorts
