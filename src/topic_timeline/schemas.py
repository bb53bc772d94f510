"""
Response shape contracts.

Each contract is a pydantic model. The same model is
  1) rendered to JSON Schema and sent with the request (response_format), and
  2) used to validate the parsed reply before anything downstream trusts it.

Item models are lenient where the pipeline can repair a value locally
(confidence is clamped, sources are filtered through the source validator,
an unreadable predictedValue becomes null). Everything else is a violation.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import HORIZONS, MAX_SCENARIOS, MIN_SCENARIOS, EventType
from .sources import validate_sources


MAX_HISTORICAL_EVENTS = 40

_URI_LIST = {"items": {"type": "string", "format": "uri"}}


class ShapeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CurrentShape(ShapeModel):
    value: float = Field(description="The current value of the metric")
    summary: str = Field(default="", description="Brief summary of current conditions (2-3 sentences)")
    sources: List[str] = Field(
        default_factory=list,
        description="Array of valid HTTP/HTTPS URLs from reputable sources",
        json_schema_extra=_URI_LIST,
    )

    @field_validator("sources", mode="before")
    @classmethod
    def valid_urls(cls, v: Any) -> List[str]:
        return validate_sources(v)

    @field_validator("summary", mode="before")
    @classmethod
    def text_or_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("value")
    @classmethod
    def finite_value(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be finite")
        return v


class HistoricalEventShape(CurrentShape):
    date: str = Field(
        description="Date in YYYY-MM-DD format",
        json_schema_extra={"pattern": r"^\d{4}-\d{2}-\d{2}$"},
    )
    value: float = Field(description="The value at that point in time")
    event_type: Optional[str] = Field(
        default=None,
        description="Type of event that occurred",
        json_schema_extra={"enum": [e.value for e in EventType]},
    )
    summary: str = Field(default="", description="What happened, why, and the impact (3-4 sentences)")


class ScenarioShape(ShapeModel):
    title: str = Field(default="", description="Descriptive title for the scenario")
    predicted_value: Optional[float] = Field(default=None, description="Specific predicted value")
    summary: str = Field(min_length=1, description="Drivers, supporting evidence and logic (3-4 sentences)")
    sources: List[str] = Field(
        default_factory=list,
        description="Array of valid HTTP/HTTPS URLs from recent news or analyst reports",
        json_schema_extra=_URI_LIST,
    )
    confidence_score: float = Field(
        default=50,
        description="Confidence score (0-100)",
        json_schema_extra={"minimum": 0, "maximum": 100},
    )

    @field_validator("sources", mode="before")
    @classmethod
    def valid_urls(cls, v: Any) -> List[str]:
        return validate_sources(v)

    @field_validator("title", "summary", mode="before")
    @classmethod
    def text_or_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return 50.0
        try:
            f = float(v)
        except (TypeError, ValueError):
            return 50.0
        if math.isnan(f):
            return 50.0
        return max(0.0, min(100.0, f))

    @field_validator("predicted_value", mode="before")
    @classmethod
    def numeric_or_none(cls, v: Any) -> Optional[float]:
        if v is None or isinstance(v, bool):
            return None
        try:
            f = float(v)
        except (TypeError, ValueError):
            return None
        return f if math.isfinite(f) else None


class ScenarioListShape(ShapeModel):
    scenarios: List[ScenarioShape] = Field(
        min_length=MIN_SCENARIOS,
        max_length=MAX_SCENARIOS,
        description="Array of 3-5 prediction scenarios",
    )


class PredictionShape(ScenarioListShape):
    timeline: str = Field(
        description="Time interval",
        json_schema_extra={"enum": list(HORIZONS)},
    )


class PredictionsBatchShape(ShapeModel):
    predictions: List[PredictionShape] = Field(
        min_length=len(HORIZONS),
        description="One entry per time interval",
    )


class PresentDataShape(CurrentShape):
    pass


class CombinedResearchShape(ShapeModel):
    current: CurrentShape
    historical: List[HistoricalEventShape] = Field(
        default_factory=list,
        max_length=MAX_HISTORICAL_EVENTS,
        description="Historical events, maximum 4 per year",
    )


class HistoricalEntriesShape(ShapeModel):
    entries: List[HistoricalEventShape] = Field(default_factory=list, max_length=MAX_HISTORICAL_EVENTS)


class TimelineAnalysisShape(CombinedResearchShape):
    value_label: str = Field(description='Label for the tracked value, e.g. "Price (USD)"')
    predictions: List[PredictionShape] = Field(
        min_length=len(HORIZONS),
        description="Predictions for all 11 intervals",
    )


def json_schema(shape: Type[BaseModel]) -> Dict[str, Any]:
    return shape.model_json_schema(by_alias=True)


def response_format(shape: Type[BaseModel]) -> Dict[str, Any]:
    """OpenAI structured-output payload for *shape*."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": shape.__name__,
            "schema": json_schema(shape),
            "strict": False,
        },
    }
