"""
Time-series aggregation shared by every dashboard.

Two steps:
1. Normalize provider records (Supabase rows, PostHog events, PostHog trend
   series) into TimestampedRecord triples of (date_key, category, value).
2. Fold the triples into per-day buckets of per-category sums.

Date keys are calendar days ("YYYY-MM-DD") in the bucket timezone (UTC unless
told otherwise). Records without a usable timestamp contribute nothing;
records without a category are counted under UNKNOWN_CATEGORY.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, Optional

from services.derived_metrics import percentage

UNKNOWN_CATEGORY = "unknown"

# Timestamp fields in the order they are looked up on a record
TIMESTAMP_FIELDS = ("created_at", "timestamp", "joined_at", "session_date", "day", "date")

FILL_SPARSE = "sparse"
FILL_ZERO = "zero"
FILL_POLICIES = (FILL_SPARSE, FILL_ZERO)


@dataclass(frozen=True)
class TimestampedRecord:
    """One normalized contribution to a daily bucket."""
    timestamp: str
    date_key: str
    category: Optional[str] = None
    value: float = 1


@dataclass
class DailyBucket:
    """Per-category totals for a single calendar day."""
    date: str
    per_category_totals: dict[str, float] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return sum(self.per_category_totals.values())

    def get(self, category: str) -> float:
        return self.per_category_totals.get(category, 0)

    def as_row(self, categories: Iterable[str] = None) -> dict:
        """Flatten into a chart row: {"date": ..., "<category>": total, ...}."""
        row = {"date": self.date}
        if categories is None:
            row.update(self.per_category_totals)
        else:
            for category in categories:
                row[category] = self.per_category_totals.get(category, 0)
        return row


def parse_timestamp(value: Any, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """
    Parse a timestamp into an aware datetime in ``tz``, or None if it can't be parsed.

    Offset-aware timestamps are converted to ``tz``. Naive timestamps are
    taken to already be in ``tz``; dates and date-only strings become
    midnight.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            if len(text) == 10:
                day = date.fromisoformat(text)
                parsed = datetime(day.year, day.month, day.day)
            else:
                parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def to_date_key(value: Any, tz: tzinfo = timezone.utc) -> Optional[str]:
    """Convert a timestamp into a "YYYY-MM-DD" key in ``tz``, or None if it can't be parsed."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    parsed = parse_timestamp(value, tz)
    return parsed.date().isoformat() if parsed else None


def _read(record: Any, name: str) -> Any:
    """Read a field from a dict-like row or an attribute-style model."""
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _coerce_value(raw: Any, default: float = 1) -> Optional[float]:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


def normalize_records(
    records: Iterable[Any],
    category_field: str = None,
    value_field: str = None,
    default_value: float = 1,
    timestamp_fields: Iterable[str] = TIMESTAMP_FIELDS,
    tz: tzinfo = timezone.utc,
) -> list[TimestampedRecord]:
    """
    Normalize flat provider rows into TimestampedRecords.

    Args:
        records: Rows (dicts or models) from either provider
        category_field: Dimension to split by (platform, event_type, ...)
        value_field: Numeric column to sum; each row counts as 1 when omitted
        default_value: Value used when a row lacks ``value_field``
        timestamp_fields: Candidate timestamp columns, first present one wins
        tz: Bucket timezone

    Rows with a missing or malformed timestamp, or a non-numeric value, are
    skipped.
    """
    timestamp_fields = tuple(timestamp_fields)
    normalized = []

    for record in records:
        raw_timestamp = None
        for name in timestamp_fields:
            raw_timestamp = _read(record, name)
            if raw_timestamp is not None:
                break

        date_key = to_date_key(raw_timestamp, tz)
        if date_key is None:
            continue

        value = _coerce_value(_read(record, value_field), default_value) if value_field else 1
        if value is None:
            continue

        category = _read(record, category_field) if category_field else None
        normalized.append(TimestampedRecord(
            timestamp=str(raw_timestamp),
            date_key=date_key,
            category=str(category) if category not in (None, "") else None,
            value=value,
        ))

    return normalized


def normalize_series(series_list: Iterable[Any], tz: tzinfo = timezone.utc) -> list[TimestampedRecord]:
    """
    Normalize PostHog trend series into TimestampedRecords.

    Each series carries a date array and a value array of the same length;
    index i of one pairs with index i of the other. The series category is
    its breakdown value, falling back to its label.
    """
    normalized = []

    for series in series_list:
        dates = _read(series, "dates")
        if dates is None:
            dates = _read(series, "days") or _read(series, "labels") or []
        values = _read(series, "data") or []
        category = _read(series, "category")
        if category is None:
            category = _read(series, "breakdown_value") or _read(series, "label")

        for raw_date, raw_value in zip(dates, values):
            date_key = to_date_key(raw_date, tz)
            # Gaps in a provider series are zero, not "one occurrence"
            value = 0 if raw_value is None else _coerce_value(raw_value)
            if date_key is None or value is None:
                continue
            normalized.append(TimestampedRecord(
                timestamp=str(raw_date),
                date_key=date_key,
                category=str(category) if category not in (None, "") else None,
                value=value,
            ))

    return normalized


def _range_key(value: Any) -> Optional[str]:
    if value is None:
        return None
    key = to_date_key(value)
    if key is None:
        raise ValueError(f"Invalid date range bound: {value!r}")
    return key


def _date_keys_between(start: str, end: str) -> list[str]:
    current = date.fromisoformat(start)
    last = date.fromisoformat(end)
    keys = []
    while current <= last:
        keys.append(current.isoformat())
        current += timedelta(days=1)
    return keys


def aggregate(
    records: Iterable[TimestampedRecord],
    start: Any = None,
    end: Any = None,
    fill: str = FILL_SPARSE,
) -> list[DailyBucket]:
    """
    Fold records into daily buckets sorted by date.

    Args:
        records: Normalized records, in any order
        start: Optional inclusive first day (date, datetime or "YYYY-MM-DD")
        end: Optional inclusive last day
        fill: "sparse" keeps only days that received a record; "zero" emits
            every day in the range with 0 for each category seen in the input.
            Without an explicit range, "zero" spans the observed days.

    Identical records accumulate; nothing is de-duplicated.
    """
    if fill not in FILL_POLICIES:
        raise ValueError(f"Unknown fill policy: {fill}. Valid options: {FILL_POLICIES}")

    start_key = _range_key(start)
    end_key = _range_key(end)
    buckets: dict[str, DailyBucket] = {}
    categories: dict[str, None] = {}

    for record in records:
        key = record.date_key
        # Zero-padded ISO days compare correctly as strings
        if start_key is not None and key < start_key:
            continue
        if end_key is not None and key > end_key:
            continue

        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = DailyBucket(date=key)

        category = record.category or UNKNOWN_CATEGORY
        totals = bucket.per_category_totals
        totals[category] = totals.get(category, 0) + record.value
        categories[category] = None

    if fill == FILL_ZERO:
        first = start_key or (min(buckets) if buckets else None)
        last = end_key or (max(buckets) if buckets else None)
        if first is not None and last is not None:
            for key in _date_keys_between(first, last):
                bucket = buckets.get(key)
                if bucket is None:
                    bucket = buckets[key] = DailyBucket(date=key)
                for category in categories:
                    bucket.per_category_totals.setdefault(category, 0)

    return [buckets[key] for key in sorted(buckets)]


def category_totals(buckets: Iterable[DailyBucket]) -> dict[str, float]:
    """Sum each category across all buckets."""
    totals: dict[str, float] = {}
    for bucket in buckets:
        for category, value in bucket.per_category_totals.items():
            totals[category] = totals.get(category, 0) + value
    return totals


def daily_totals(buckets: Iterable[DailyBucket], name: str = "value") -> list[dict]:
    """Collapse categories into one {"date", name} row per day."""
    return [{"date": bucket.date, name: bucket.total} for bucket in buckets]


def category_breakdown(buckets: Iterable[DailyBucket], precision: int = 1) -> list[dict]:
    """
    Per-category totals with their share of the grand total, largest first.

    Shares are percentages; a zero grand total gives every category 0.
    """
    totals = category_totals(buckets)
    grand_total = sum(totals.values())
    rows = [
        {"category": category, "value": value, "percentage": percentage(value, grand_total, precision)}
        for category, value in totals.items()
    ]
    rows.sort(key=lambda r: r["value"], reverse=True)
    return rows


def window_total(buckets: Iterable[DailyBucket], first: str, last: str) -> float:
    """Grand total of the buckets dated within [first, last]."""
    return sum(bucket.total for bucket in buckets if first <= bucket.date <= last)


def window_category_totals(buckets: Iterable[DailyBucket], first: str, last: str) -> dict[str, float]:
    """Per-category totals of the buckets dated within [first, last]."""
    return category_totals(bucket for bucket in buckets if first <= bucket.date <= last)
