from __future__ import annotations

import datetime as dt
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


HORIZONS: Tuple[str, ...] = (
    "1 month",
    "1 year",
    "2 years",
    "3 years",
    "4 years",
    "5 years",
    "6 years",
    "7 years",
    "8 years",
    "9 years",
    "10 years",
)

MIN_SCENARIOS = 3
MAX_SCENARIOS = 5


class Visibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    PREMIUM = "premium"


class EventType(str, Enum):
    PUMP = "pump"
    DUMP = "dump"
    BULL_MARKET_START = "bull_market_start"
    BULL_MARKET_END = "bull_market_end"
    BEAR_MARKET_START = "bear_market_start"
    BEAR_MARKET_END = "bear_market_end"
    MAJOR_EVENT = "major_event"


EVENT_TYPE_LABELS = {
    EventType.PUMP: "Major Pump",
    EventType.DUMP: "Major Dump",
    EventType.BULL_MARKET_START: "Bull Market Start",
    EventType.BULL_MARKET_END: "Bull Market End",
    EventType.BEAR_MARKET_START: "Bear Market Start",
    EventType.BEAR_MARKET_END: "Bear Market End",
    EventType.MAJOR_EVENT: "Major Event",
}


def event_type_label(event_type: Optional[str]) -> str:
    try:
        return EVENT_TYPE_LABELS[EventType(event_type)]
    except ValueError:
        return "Event"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimelineEntry(CamelModel):
    date: dt.date
    value: float
    value_label: str
    summary: str = ""
    sources: List[str] = Field(default_factory=list)


class PredictionScenario(CamelModel):
    id: str
    title: str
    summary: str = ""
    sources: List[str] = Field(default_factory=list)
    confidence_score: float = Field(default=50, ge=0, le=100)
    predicted_value: Optional[float] = None


class Prediction(CamelModel):
    timeline: str
    scenarios: List[PredictionScenario] = Field(min_length=1, max_length=MAX_SCENARIOS)

    @field_validator("timeline")
    @classmethod
    def known_horizon(cls, v: str) -> str:
        if v not in HORIZONS:
            raise ValueError(f"unknown horizon: {v!r}")
        return v


def order_predictions(predictions: List[Prediction]) -> List[Prediction]:
    """Sort predictions into HORIZONS order (unknown horizons cannot exist past validation)."""
    return sorted(predictions, key=lambda p: HORIZONS.index(p.timeline))


def missing_horizons(predictions: List[Prediction]) -> List[str]:
    present = {p.timeline for p in predictions}
    return [h for h in HORIZONS if h not in present]


class TimelineResult(CamelModel):
    """
    Output of one synthesis run. Not persisted by itself; the caller decides
    whether to hand it to the store.
    """
    topic: str
    value_label: str
    past_entries: List[TimelineEntry] = Field(default_factory=list)
    present_entry: TimelineEntry
    predictions: List[Prediction] = Field(default_factory=list)
    strategy: str = ""

    @property
    def missing_horizons(self) -> List[str]:
        return missing_horizons(self.predictions)

    @property
    def is_complete(self) -> bool:
        if self.missing_horizons:
            return False
        return all(len(p.scenarios) >= MIN_SCENARIOS for p in self.predictions)


class ValueDelta(CamelModel):
    previous: float
    current: float

    @property
    def absolute(self) -> float:
        return self.current - self.previous

    @property
    def percent(self) -> float:
        if self.previous == 0:
            return 0.0
        return self.absolute / self.previous * 100

    def absolute_text(self) -> str:
        sign = "+" if self.absolute > 0 else ""
        return f"{sign}{format_number(self.absolute)}"

    def percent_text(self) -> str:
        if self.previous == 0:
            return "0%"
        sign = "+" if self.percent > 0 else ""
        return f"{sign}{self.percent:.2f}%"

    def describe(self) -> str:
        return f"{self.absolute_text()} ({self.percent_text()})"


def format_number(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


class ReprocessResult(CamelModel):
    present_entry: TimelineEntry
    predictions: List[Prediction] = Field(default_factory=list)
    previous_value: float
    new_value: float

    @property
    def delta(self) -> ValueDelta:
        return ValueDelta(previous=self.previous_value, current=self.new_value)

    @property
    def missing_horizons(self) -> List[str]:
        return missing_horizons(self.predictions)


class TimelineVersion(CamelModel):
    slug: str
    version: int = Field(ge=1)
    topic: str
    value_label: str
    past_entries: List[TimelineEntry] = Field(default_factory=list)
    present_entry: TimelineEntry
    predictions: List[Prediction] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    view_count: int = 0


class VersionSummary(CamelModel):
    version: int
    created_at: datetime
    present_value: float
