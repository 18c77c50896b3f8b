"""
Signup cohorts and day-N retention.

A cohort is every user whose first sign_up event falls on the same day. A
user counts as retained on day N when they have a session exactly N days
after their signup day.
"""

from datetime import date, timedelta

from services.derived_metrics import average, percentage
from services.provider_models import UserEventRow, UserSessionRow
from services.timeseries import to_date_key

RETENTION_DAYS = (1, 3, 7)
SIGNUP_EVENT = "sign_up"


def _shift(day_key: str, days: int) -> str:
    return (date.fromisoformat(day_key) + timedelta(days=days)).isoformat()


def signup_days(events: list[UserEventRow]) -> dict[str, str]:
    """First signup day per user."""
    first_seen: dict[str, str] = {}
    for event in events:
        if event.event_type != SIGNUP_EVENT:
            continue
        day = to_date_key(event.created_at)
        if day is None:
            continue
        user = str(event.user_id)
        if user not in first_seen or day < first_seen[user]:
            first_seen[user] = day
    return first_seen


def session_days(sessions: list[UserSessionRow]) -> dict[str, set[str]]:
    """Days each user had at least one session."""
    days: dict[str, set[str]] = {}
    for session in sessions:
        day = to_date_key(session.session_date)
        if day is None:
            continue
        days.setdefault(str(session.user_id), set()).add(day)
    return days


def retention_cohorts(
    events: list[UserEventRow],
    sessions: list[UserSessionRow],
    retention_days: tuple[int, ...] = RETENTION_DAYS,
) -> list[dict]:
    """
    Day-N retention per signup cohort, oldest cohort first.

    Each row has the cohort day, its size, and a ``d<N>_rate`` percentage for
    every N in ``retention_days``.
    """
    signups = signup_days(events)
    active = session_days(sessions)

    members: dict[str, list[str]] = {}
    for user, day in signups.items():
        members.setdefault(day, []).append(user)

    cohorts = []
    for day in sorted(members):
        users = members[day]
        row = {"cohort": day, "cohort_size": len(users)}
        for offset in retention_days:
            target = _shift(day, offset)
            retained = sum(1 for user in users if target in active.get(user, ()))
            row[f"d{offset}_rate"] = percentage(retained, len(users))
        cohorts.append(row)

    return cohorts


def sample_cohort_rows(sample_cohorts: list[dict], retention_days: tuple[int, ...] = RETENTION_DAYS) -> list[dict]:
    """Reshape generated sample cohorts into the same rows as retention_cohorts."""
    rows = []
    for cohort in sample_cohorts:
        curve = cohort["retention"]
        row = {"cohort": cohort["cohort"], "cohort_size": cohort["cohort_size"]}
        for offset in retention_days:
            row[f"d{offset}_rate"] = round(curve[offset], 1) if offset < len(curve) else 0
        rows.append(row)
    return rows


def average_rates(cohorts: list[dict], retention_days: tuple[int, ...] = RETENTION_DAYS) -> dict:
    """Unweighted mean of each day-N rate across cohorts."""
    return {
        f"avg_d{offset}": average(c.get(f"d{offset}_rate", 0) for c in cohorts)
        for offset in retention_days
    }
