"""
Turn completion replies into validated records.

Reply text is read as strict JSON first, then as JSON wrapped in a code fence
or embedded in prose. What comes out is checked against the matching shape
model from schemas.py. A reply that fails the whole-shape check is salvaged
item by item: good intervals, scenarios and events are kept, bad ones are
logged and dropped. Nothing is ever filled in with made-up data.

Failure classes:
  CompletionError      no JSON could be read at all
  ShapeViolationError  JSON was read but a critical part is missing or invalid
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError

from .curation import MAX_EVENTS_PER_YEAR, limit_events_per_year
from .errors import CompletionError, ShapeViolationError
from .models import (
    HORIZONS,
    MAX_SCENARIOS,
    MIN_SCENARIOS,
    Prediction,
    PredictionScenario,
    TimelineEntry,
    event_type_label,
    order_predictions,
)
from .schemas import (
    CombinedResearchShape,
    CurrentShape,
    HistoricalEventShape,
    PredictionsBatchShape,
    ScenarioListShape,
    ScenarioShape,
    TimelineAnalysisShape,
)
from .slugify import new_id

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y")


def try_extract_json(text: str) -> Optional[Any]:
    """Best-effort JSON read: strict, then fenced, then embedded in prose."""
    if not text or not text.strip():
        return None
    cleaned = text.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidates: List[str] = []
    unfenced = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", cleaned))
    if unfenced != cleaned:
        candidates.append(unfenced)
    candidates.extend(m.group(1) for m in _FENCED_BLOCK_RE.finditer(cleaned))

    for c in candidates:
        try:
            return json.loads(c)
        except json.JSONDecodeError:
            continue

    # embedded in prose: every top-level {...} or [...] in order, an object wins
    # over a list so that a citation like [1] before the payload is skipped
    return _embedded_json(cleaned)


_DECODER = json.JSONDecoder()


def _embedded_json(text: str) -> Optional[Any]:
    lists: List[Any] = []
    i = 0
    while True:
        starts = [p for p in (text.find("{", i), text.find("[", i)) if p >= 0]
        if not starts:
            break
        start = min(starts)
        try:
            value, end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            i = start + 1
            continue
        if isinstance(value, dict):
            return value
        lists.append(value)
        i = end
    if not lists:
        return None
    # the longest list is the payload, short ones are citations
    return max(lists, key=lambda v: len(json.dumps(v)))


def extract_json(text: str) -> Any:
    data = try_extract_json(text)
    if data is None:
        raise CompletionError(f"reply is not JSON: {(text or '')[:200]!r}")
    return data


def check_shape(data: Any, shape: Type[BaseModel], what: str) -> bool:
    """Whole-reply contract check. A failure is logged, not raised; callers salvage."""
    try:
        shape.model_validate(data)
        return True
    except ValidationError as e:
        logger.warning("%s: shape violation (%d errors), salvaging what validates", what, e.error_count())
        logger.debug("%s: %s", what, e)
        return False


def _as_list(data: Any, *keys: str) -> Optional[List[Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for k in keys:
            v = data.get(k)
            if isinstance(v, list):
                return v
    return None


def parse_event_date(raw: Any) -> Optional[date]:
    """
    "2021-11-10" / "2021-11" / "2021" / "2021-11-10T08:00:00Z" -> date.
    A month or year alone maps to its first day.
    """
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None


# ---------------------------------------------------------------------
# present value
# ---------------------------------------------------------------------


def present_entry_from(data: Any, value_label: str, today: date, what: str = "present") -> TimelineEntry:
    if isinstance(data, dict) and isinstance(data.get("current"), dict):
        data = data["current"]
    if not isinstance(data, dict):
        raise ShapeViolationError(f"{what}: expected an object with a value")
    try:
        current = CurrentShape.model_validate(data)
    except ValidationError as e:
        raise ShapeViolationError(f"{what}: present value missing or invalid ({e.error_count()} errors)") from e
    return TimelineEntry(
        date=today,
        value=current.value,
        value_label=value_label,
        summary=current.summary,
        sources=current.sources,
    )


def parse_present(text: str, value_label: str, today: date) -> TimelineEntry:
    return present_entry_from(extract_json(text), value_label, today)


# ---------------------------------------------------------------------
# historical events
# ---------------------------------------------------------------------


def historical_entries_from(
    items: Optional[Sequence[Any]],
    value_label: str,
    years_back: int = 10,
    max_per_year: int = MAX_EVENTS_PER_YEAR,
) -> List[TimelineEntry]:
    """Validate each raw event, drop what fails, prefix the event label, then curate."""
    entries: List[TimelineEntry] = []
    dropped = 0
    for raw in items or []:
        try:
            ev = HistoricalEventShape.model_validate(raw)
        except ValidationError:
            dropped += 1
            continue
        d = parse_event_date(ev.date)
        if d is None:
            dropped += 1
            continue
        summary = ev.summary
        if ev.event_type:
            summary = f"[{event_type_label(ev.event_type)}] {summary}"
        entries.append(
            TimelineEntry(date=d, value=ev.value, value_label=value_label, summary=summary, sources=ev.sources)
        )

    if dropped:
        logger.info("historical: dropped %d unusable events", dropped)
    curated = limit_events_per_year(entries, years_back=years_back, max_per_year=max_per_year)
    if len(curated) < len(entries):
        logger.info("historical: curated %d -> %d events (max %d/year)", len(entries), len(curated), max_per_year)
    return curated


def parse_historical(
    text: str,
    value_label: str,
    years_back: int = 10,
    max_per_year: int = MAX_EVENTS_PER_YEAR,
) -> List[TimelineEntry]:
    data = extract_json(text)
    items = _as_list(data, "entries", "historical")
    if items is None:
        raise ShapeViolationError("historical: no entries array in reply")
    return historical_entries_from(items, value_label, years_back, max_per_year)


# ---------------------------------------------------------------------
# predictions
# ---------------------------------------------------------------------


def scenarios_from(items: Optional[Sequence[Any]], horizon: str) -> List[PredictionScenario]:
    out: List[PredictionScenario] = []
    dropped = 0
    for raw in items or []:
        try:
            s = ScenarioShape.model_validate(raw)
        except ValidationError:
            dropped += 1
            continue
        out.append(
            PredictionScenario(
                id=new_id(),
                title=s.title.strip() or f"Scenario {len(out) + 1}",
                summary=s.summary,
                sources=s.sources,
                confidence_score=s.confidence_score,
                predicted_value=s.predicted_value,
            )
        )

    if dropped:
        logger.info("%s: dropped %d invalid scenarios", horizon, dropped)
    if len(out) > MAX_SCENARIOS:
        logger.info("%s: truncating %d scenarios to %d", horizon, len(out), MAX_SCENARIOS)
        out = out[:MAX_SCENARIOS]
    if 0 < len(out) < MIN_SCENARIOS:
        logger.warning("%s: only %d scenarios (expected %d-%d)", horizon, len(out), MIN_SCENARIOS, MAX_SCENARIOS)
    return out


def predictions_from(items: Optional[Sequence[Any]]) -> List[Prediction]:
    """
    One Prediction per known horizon, in HORIZONS order. Unknown or repeated
    horizons and intervals without a single valid scenario are omitted.
    """
    by_horizon: Dict[str, Prediction] = {}
    for raw in items or []:
        if not isinstance(raw, dict):
            continue
        horizon = raw.get("timeline")
        if horizon not in HORIZONS:
            logger.warning("predictions: skipping unknown interval %r", horizon)
            continue
        if horizon in by_horizon:
            logger.info("predictions: duplicate interval %r ignored", horizon)
            continue
        scenarios = scenarios_from(raw.get("scenarios") if isinstance(raw.get("scenarios"), list) else None, horizon)
        if not scenarios:
            logger.warning("predictions: interval %r has no valid scenarios, omitted", horizon)
            continue
        by_horizon[horizon] = Prediction(timeline=horizon, scenarios=scenarios)
    return order_predictions(list(by_horizon.values()))


def parse_predictions_batch(text: str) -> List[Prediction]:
    """
    Raises ShapeViolationError when the reply holds no usable interval at all,
    so the caller can fall back to per-interval requests.
    """
    data = extract_json(text)
    items = _as_list(data, "predictions")
    if items is None:
        raise ShapeViolationError("predictions: no predictions array in reply")
    check_shape({"predictions": items}, PredictionsBatchShape, "predictions batch")
    predictions = predictions_from(items)
    if not predictions:
        raise ShapeViolationError("predictions: no usable interval in reply")
    return predictions


def parse_interval(text: str, horizon: str) -> Optional[Prediction]:
    data = extract_json(text)
    items = _as_list(data, "scenarios")
    if items is None:
        raise ShapeViolationError(f"{horizon}: no scenarios array in reply")
    check_shape({"scenarios": items}, ScenarioListShape, horizon)
    scenarios = scenarios_from(items, horizon)
    if not scenarios:
        return None
    return Prediction(timeline=horizon, scenarios=scenarios)


# ---------------------------------------------------------------------
# multi-part replies
# ---------------------------------------------------------------------


@dataclass
class ParsedResearch:
    present: TimelineEntry
    past_entries: List[TimelineEntry] = field(default_factory=list)
    raw_historical: int = 0


@dataclass
class ParsedAnalysis:
    value_label: str
    present: TimelineEntry
    past_entries: List[TimelineEntry] = field(default_factory=list)
    predictions: List[Prediction] = field(default_factory=list)


def parse_combined_research(
    text: str,
    value_label: str,
    today: date,
    years_back: int = 10,
    max_per_year: int = MAX_EVENTS_PER_YEAR,
) -> ParsedResearch:
    data = extract_json(text)
    if not isinstance(data, dict):
        raise ShapeViolationError("combined research: expected a JSON object")
    check_shape(data, CombinedResearchShape, "combined research")
    present = present_entry_from(data.get("current"), value_label, today, "combined research")
    items = _as_list(data, "historical", "entries") or []
    return ParsedResearch(
        present=present,
        past_entries=historical_entries_from(items, value_label, years_back, max_per_year),
        raw_historical=len(items),
    )


def parse_timeline_analysis(
    text: str,
    today: date,
    years_back: int = 10,
    max_per_year: int = MAX_EVENTS_PER_YEAR,
) -> ParsedAnalysis:
    data = extract_json(text)
    if not isinstance(data, dict):
        raise ShapeViolationError("timeline analysis: expected a JSON object")
    check_shape(data, TimelineAnalysisShape, "timeline analysis")

    value_label = data.get("valueLabel") or data.get("value_label")
    if not isinstance(value_label, str) or not value_label.strip():
        logger.warning("timeline analysis: no value label in reply, using 'Value'")
        value_label = "Value"
    value_label = value_label.strip()

    present = present_entry_from(data.get("current"), value_label, today, "timeline analysis")
    return ParsedAnalysis(
        value_label=value_label,
        present=present,
        past_entries=historical_entries_from(_as_list(data, "historical"), value_label, years_back, max_per_year),
        predictions=predictions_from(_as_list(data, "predictions")),
    )


def clean_label(text: str) -> Optional[str]:
    """First non-empty line of a label reply, without quotes or a "Value Label:" prefix."""
    for line in (text or "").splitlines():
        s = line.strip().strip("\"'`").strip()
        if s.lower().startswith("value label:"):
            s = s.split(":", 1)[1].strip().strip("\"'`").strip()
        if s:
            return s[:60]
    return None
