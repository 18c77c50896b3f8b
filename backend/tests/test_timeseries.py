import random
from datetime import date, datetime, timedelta, timezone

import pytest

from services.timeseries import (
    FILL_ZERO,
    UNKNOWN_CATEGORY,
    TimestampedRecord,
    aggregate,
    category_breakdown,
    category_totals,
    daily_totals,
    normalize_records,
    normalize_series,
    to_date_key,
    window_total,
)


def record(day, category="iOS", value=1):
    return TimestampedRecord(timestamp=f"{day}T10:00:00Z", date_key=day, category=category, value=value)


def as_map(buckets):
    return {b.date: dict(b.per_category_totals) for b in buckets}


# =============================================================================
# to_date_key
# =============================================================================

def test_date_key_truncates_utc_timestamp():
    assert to_date_key("2024-01-05T23:59:59Z") == "2024-01-05"
    assert to_date_key("2024-01-05T23:59:59.123456+00:00") == "2024-01-05"


def test_date_key_converts_offset_timestamps_to_utc():
    # 23:30 at -05:00 is already the next day in UTC
    assert to_date_key("2024-01-05T23:30:00-05:00") == "2024-01-06"
    assert to_date_key("2024-01-06T01:00:00+02:00") == "2024-01-05"


def test_date_key_respects_bucket_timezone():
    tz = timezone(timedelta(hours=-5))
    assert to_date_key("2024-01-06T02:00:00Z", tz) == "2024-01-05"


def test_date_key_naive_and_date_values():
    assert to_date_key("2024-01-05T08:00:00") == "2024-01-05"
    assert to_date_key("2024-01-05") == "2024-01-05"
    assert to_date_key(date(2024, 1, 5)) == "2024-01-05"
    assert to_date_key(datetime(2024, 1, 5, 8, tzinfo=timezone.utc)) == "2024-01-05"


@pytest.mark.parametrize("bad", [None, "", "not-a-date", "2024-13-45", 12345, "   "])
def test_date_key_rejects_malformed(bad):
    assert to_date_key(bad) is None


# =============================================================================
# normalize_records / normalize_series
# =============================================================================

def test_normalize_records_reads_alternate_timestamp_fields():
    rows = [
        {"created_at": "2024-01-01T10:00:00Z", "platform": "iOS"},
        {"timestamp": "2024-01-02T10:00:00Z", "platform": "Android"},
        {"joined_at": "2024-01-03T10:00:00Z", "platform": "Web"},
    ]
    normalized = normalize_records(rows, category_field="platform")

    assert [r.date_key for r in normalized] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert [r.category for r in normalized] == ["iOS", "Android", "Web"]
    assert all(r.value == 1 for r in normalized)


def test_normalize_records_sums_value_field():
    rows = [
        {"created_at": "2024-01-01T10:00:00Z", "platform": "iOS", "count": 12},
        {"created_at": "2024-01-01T11:00:00Z", "platform": "iOS", "count": "3"},
        {"created_at": "2024-01-01T12:00:00Z", "platform": "iOS"},
    ]
    normalized = normalize_records(rows, category_field="platform", value_field="count", default_value=0)

    assert [r.value for r in normalized] == [12, 3.0, 0]


def test_normalize_records_drops_non_numeric_values():
    rows = [
        {"created_at": "2024-01-01T10:00:00Z", "count": "lots"},
        {"created_at": "2024-01-01T10:00:00Z", "count": True},
        {"created_at": "2024-01-01T10:00:00Z", "count": 2},
    ]
    assert [r.value for r in normalize_records(rows, value_field="count")] == [2]


def test_normalize_records_keeps_missing_category_as_none():
    rows = [{"created_at": "2024-01-01T10:00:00Z", "platform": ""}, {"created_at": "2024-01-01T10:00:00Z"}]
    assert [r.category for r in normalize_records(rows, category_field="platform")] == [None, None]


def test_normalize_series_pairs_dates_with_values():
    series = [
        {"label": "Home", "days": ["2024-01-01", "2024-01-02", "2024-01-03"], "data": [5, None, 2]},
        {"label": "$screen", "breakdown_value": "Profile", "labels": ["2024-01-01"], "data": [4]},
    ]
    normalized = normalize_series(series)

    assert [(r.date_key, r.category, r.value) for r in normalized] == [
        ("2024-01-01", "Home", 5),
        ("2024-01-02", "Home", 0),
        ("2024-01-03", "Home", 2),
        ("2024-01-01", "Profile", 4),
    ]


def test_normalize_series_ignores_unpaired_tail():
    series = [{"label": "Home", "days": ["2024-01-01", "2024-01-02"], "data": [1, 2, 3]}]
    assert len(normalize_series(series)) == 2


# =============================================================================
# aggregate
# =============================================================================

def test_aggregate_conserves_counts_per_category():
    records = [record("2024-01-01")] * 3 + [record("2024-01-02")]
    buckets = aggregate(records)

    assert as_map(buckets) == {"2024-01-01": {"iOS": 3}, "2024-01-02": {"iOS": 1}}
    assert category_totals(buckets) == {"iOS": 4}


def test_aggregate_sorts_dates_ascending():
    records = [record("2024-01-03"), record("2024-01-01"), record("2024-01-02")]
    assert [b.date for b in aggregate(records)] == ["2024-01-01", "2024-01-02", "2024-01-03"]


def test_aggregate_is_order_independent():
    records = [
        record(f"2024-01-{day:02d}", category, value)
        for day in range(1, 8)
        for category, value in (("iOS", 1), ("Android", 2.5), ("Web", 3))
    ]
    shuffled = list(records)
    random.Random(7).shuffle(shuffled)

    assert as_map(aggregate(records)) == as_map(aggregate(shuffled))


def test_aggregate_tolerates_malformed_records():
    rows = [{"created_at": f"2024-01-{day:02d}T09:00:00Z", "platform": "iOS"} for day in range(1, 11)]
    with_bad = rows + [{"created_at": "yesterday-ish", "platform": "iOS"}]

    clean = aggregate(normalize_records(rows, category_field="platform"))
    noisy = aggregate(normalize_records(with_bad, category_field="platform"))

    assert as_map(noisy) == as_map(clean)
    assert category_totals(noisy) == {"iOS": 10}


def test_aggregate_assigns_unknown_category():
    buckets = aggregate([record("2024-01-01", category=None), record("2024-01-01", category="iOS")])
    assert buckets[0].per_category_totals == {UNKNOWN_CATEGORY: 1, "iOS": 1}
    assert buckets[0].total == 2


def test_aggregate_empty_input():
    assert aggregate([]) == []
    assert aggregate([], start="2024-01-01", end="2024-01-03") == []


def test_aggregate_sparse_has_no_empty_days():
    buckets = aggregate([record("2024-01-01"), record("2024-01-04")], start="2024-01-01", end="2024-01-05")
    assert [b.date for b in buckets] == ["2024-01-01", "2024-01-04"]


def test_aggregate_zero_fill_spans_explicit_range():
    records = [record("2024-01-02", "iOS"), record("2024-01-04", "Web", 2)]
    buckets = aggregate(records, start="2024-01-01", end="2024-01-05", fill=FILL_ZERO)

    assert [b.date for b in buckets] == ["2024-01-01", "2024-01-02", "2024-01-03", "2024-01-04", "2024-01-05"]
    assert buckets[0].per_category_totals == {"iOS": 0, "Web": 0}
    assert buckets[3].per_category_totals == {"iOS": 0, "Web": 2}
    assert category_totals(buckets) == {"iOS": 1, "Web": 2}


def test_aggregate_zero_fill_spans_observed_range():
    buckets = aggregate([record("2024-01-01"), record("2024-01-03")], fill=FILL_ZERO)
    assert [b.date for b in buckets] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert buckets[1].total == 0


def test_aggregate_range_filter_is_inclusive():
    records = [record(f"2024-01-{day:02d}") for day in range(1, 6)]
    buckets = aggregate(records, start=date(2024, 1, 2), end=datetime(2024, 1, 4, 23, tzinfo=timezone.utc))
    assert [b.date for b in buckets] == ["2024-01-02", "2024-01-03", "2024-01-04"]


def test_aggregate_rejects_unknown_fill_policy():
    with pytest.raises(ValueError):
        aggregate([], fill="dense")


def test_aggregate_rejects_bad_range_bound():
    with pytest.raises(ValueError):
        aggregate([], start="sometime")


# =============================================================================
# Bucket helpers
# =============================================================================

def test_bucket_as_row_with_fixed_categories():
    bucket = aggregate([record("2024-01-01", "iOS", 4)])[0]
    assert bucket.as_row(["iOS", "Android"]) == {"date": "2024-01-01", "iOS": 4, "Android": 0}
    assert bucket.as_row() == {"date": "2024-01-01", "iOS": 4}


def test_daily_totals_and_window_total():
    buckets = aggregate([record("2024-01-01", "iOS", 2), record("2024-01-01", "Web", 3), record("2024-01-02")])

    assert daily_totals(buckets, "views") == [
        {"date": "2024-01-01", "views": 5},
        {"date": "2024-01-02", "views": 1},
    ]
    assert window_total(buckets, "2024-01-02", "2024-01-07") == 1


def test_category_breakdown_shares():
    buckets = aggregate([record("2024-01-01", "Home", 3), record("2024-01-01", "Profile", 1)])
    assert category_breakdown(buckets) == [
        {"category": "Home", "value": 3, "percentage": 75.0},
        {"category": "Profile", "value": 1, "percentage": 25.0},
    ]


def test_category_breakdown_zero_total():
    buckets = aggregate([record("2024-01-01", "Home", 0)])
    assert category_breakdown(buckets) == [{"category": "Home", "value": 0, "percentage": 0}]
