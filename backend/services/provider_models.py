"""
Validated shapes for provider responses.

PostHog answers every canned query with one of four result shapes (trends,
funnel, retention, raw events). Supabase returns flat rows. Both are checked
here before anything is aggregated; items that fail validation are dropped
individually so one bad row never blanks a chart.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from services.timeseries import UNKNOWN_CATEGORY


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================================
# POSTHOG
# =============================================================================

class TrendsSeries(_ProviderModel):
    """One breakdown series: a label plus values aligned with a date array."""
    label: Optional[str] = None
    breakdown_value: Optional[Any] = None
    days: Optional[list[str]] = None
    labels: Optional[list[str]] = None
    data: list[float] = Field(default_factory=list)
    count: Optional[float] = None

    @field_validator("data", mode="before")
    @classmethod
    def _fill_gaps(cls, value):
        if value is None:
            return []
        return [0 if v is None else v for v in value]

    @field_validator("breakdown_value", mode="before")
    @classmethod
    def _flatten_breakdown(cls, value):
        # Multi-property breakdowns come back as a list of values
        if isinstance(value, list):
            return value[0] if value else None
        return value

    @property
    def dates(self) -> list[str]:
        return self.days or self.labels or []

    @property
    def category(self) -> str:
        if self.breakdown_value not in (None, ""):
            return str(self.breakdown_value)
        return self.label or UNKNOWN_CATEGORY

    @property
    def total(self) -> float:
        return sum(self.data)


class TrendsResult(_ProviderModel):
    kind: Literal["trends"] = "trends"
    results: list[TrendsSeries] = Field(default_factory=list)


class FunnelStep(_ProviderModel):
    name: str
    count: int = 0
    custom_name: Optional[str] = None
    order: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.custom_name or self.name


class FunnelResult(_ProviderModel):
    kind: Literal["funnel"] = "funnel"
    results: list[FunnelStep] = Field(default_factory=list)

    def stages(self) -> list[tuple[str, int]]:
        return [(step.display_name, step.count) for step in self.results]


class RetentionValue(_ProviderModel):
    count: int = 0


class RetentionCohort(_ProviderModel):
    date: Optional[str] = None
    label: Optional[str] = None
    values: list[RetentionValue] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return self.values[0].count if self.values else 0


class RetentionResult(_ProviderModel):
    kind: Literal["retention"] = "retention"
    results: list[RetentionCohort] = Field(default_factory=list)


class PostHogEvent(_ProviderModel):
    id: Optional[str] = None
    distinct_id: str
    event: str
    timestamp: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _default_properties(cls, value):
        return value or {}


class EventsResult(_ProviderModel):
    kind: Literal["events"] = "events"
    results: list[PostHogEvent] = Field(default_factory=list)


ProviderResult = Annotated[
    Union[TrendsResult, FunnelResult, RetentionResult, EventsResult],
    Field(discriminator="kind"),
]

_RESULT_ADAPTER = TypeAdapter(ProviderResult)

_ITEM_MODELS = {
    "trends": TrendsSeries,
    "funnel": FunnelStep,
    "retention": RetentionCohort,
    "events": PostHogEvent,
}

# Result shape returned for each canned query type
QUERY_RESULT_KINDS = {
    "screenViews": "trends",
    "dailyActiveUsers": "trends",
    "eventsByPlatform": "trends",
    "totalEvents": "trends",
    "uniqueUsers": "trends",
    "websitePageViews": "trends",
    "websiteTrafficSources": "trends",
    "websiteTopPages": "trends",
    "websiteDevices": "trends",
    "loginFunnel": "funnel",
    "retention": "retention",
    "events": "events",
}


def _validate_items(model: type[BaseModel], items: list) -> list:
    valid = []
    dropped = 0
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError:
            dropped += 1
    if dropped:
        print(f"[Providers] Dropped {dropped} malformed {model.__name__} item(s)")
    return valid


def parse_posthog_result(query_type: str, payload: Optional[dict]) -> ProviderResult:
    """
    Validate a PostHog response for a canned query.

    Raises:
        ValueError: for a query type with no known result shape
    """
    kind = QUERY_RESULT_KINDS.get(query_type)
    if kind is None:
        raise ValueError(f"Invalid query type: {query_type}")

    payload = payload or {}
    items = payload.get("results")
    if items is None:
        items = payload.get("result") or []
    # Funnels with a breakdown nest one step list per breakdown value
    if kind == "funnel" and items and isinstance(items[0], list):
        items = items[0]

    valid = _validate_items(_ITEM_MODELS[kind], items)
    return _RESULT_ADAPTER.validate_python({"kind": kind, "results": valid})


# =============================================================================
# SUPABASE
# =============================================================================

class PlatformCountRow(_ProviderModel):
    """Daily impression or install count for one platform."""
    id: Optional[Union[int, str]] = None
    created_at: str
    platform: Optional[str] = None
    count: float = 0


class ImpressionRow(PlatformCountRow):
    pass


class InstallRow(PlatformCountRow):
    pass


class UserEventRow(_ProviderModel):
    id: Optional[Union[int, str]] = None
    user_id: Union[str, int]
    event_type: str
    created_at: str


class UserSessionRow(_ProviderModel):
    id: Optional[Union[int, str]] = None
    user_id: Union[str, int]
    session_date: str


def validate_rows(model: type[BaseModel], rows: Optional[list]) -> list:
    """Validate Supabase rows, dropping the ones that don't fit ``model``."""
    return _validate_items(model, rows or [])
