"""
Prompt builders for every completion the pipeline makes.

Each builder returns the user message. The matching system message lives in
SYSTEM_MESSAGES so callers can pair them without string literals.
"""
from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional, Sequence

from .models import HORIZONS, Prediction, TimelineEntry, ValueDelta, format_number


SYSTEM_MESSAGES: Dict[str, str] = {
    "label": "You are a data analyst. Reply with the value label only, nothing else.",
    "researcher": (
        "You are a financial and data analyst with access to current market data, "
        "historical archives and reputable news. Report verifiable figures from official "
        "sources and return valid JSON only."
    ),
    "market_data": (
        "You are a market data specialist. Find the most current and accurate value "
        "from official sources and return valid JSON only."
    ),
    "forecaster": (
        "You are a senior analyst. Produce evidence-based forecast scenarios from current "
        "indicators, news and historical patterns. Return valid JSON only."
    ),
    "extractor": (
        "You are a data extraction specialist. Turn the text into dated, valued historical "
        "events and return valid JSON only."
    ),
    "comprehensive": (
        "You are an expert analyst. Complete the whole timeline analysis in one reply with "
        "verifiable data and real source URLs. Return valid JSON only."
    ),
    "reviser": (
        "You are a senior analyst revising earlier forecasts after the tracked value moved. "
        "Adjust the previous scenarios to the new data. Return valid JSON only."
    ),
}

_EVENT_TYPES = '"pump", "dump", "bull_market_start", "bull_market_end", "bear_market_start", "bear_market_end", "major_event"'

_SCENARIO_RULES = """For each scenario give:
1. a descriptive title ("Strong Bull Market Recovery", "Regulatory Crackdown Impact", ...)
2. a specific predicted {label} value
3. a 3-4 sentence analysis of the drivers, the supporting evidence and the logic
4. 2-3 valid http(s) URLs from recent news, analyst reports or official data
5. a confidence score from 0 to 100"""


def messages(system_key: str, prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_MESSAGES[system_key]},
        {"role": "user", "content": prompt},
    ]


def horizons_list(horizons: Sequence[str] = HORIZONS) -> str:
    return "\n".join(f"{i}. {h}" for i, h in enumerate(horizons, start=1))


def historical_summary(entries: Sequence[TimelineEntry], last: int = 5) -> str:
    """The most recent *last* entries as "YYYY-MM-DD: <label> = <value>" lines."""
    tail = list(entries)[-last:] if last else []
    if not tail:
        return "No historical data available"
    return "\n".join(f"{e.date.isoformat()}: {e.value_label} = {format_number(e.value)}" for e in tail)


def _state_block(title: str, entry: TimelineEntry, with_summary: bool = True) -> str:
    lines = [
        f"{title} ({entry.date.isoformat()}):",
        f"{entry.value_label} = {format_number(entry.value)}",
    ]
    if with_summary and entry.summary:
        lines.append(entry.summary)
    return "\n".join(lines)


def _scenario_line(s, full_summary: bool) -> str:
    summary = s.summary if full_summary else f"{s.summary[:100]}..."
    return (
        f"  - {s.title}: Predicted {format_number(s.predicted_value)} "
        f"({format_number(s.confidence_score)}% confidence) - {summary}"
    )


def previous_predictions_context(
    predictions: Sequence[Prediction],
    previous_value: float,
    horizons: Sequence[str] = HORIZONS,
    full_summary: bool = False,
) -> str:
    """
    One block per horizon that has prior scenarios. Summaries are cut to
    100 chars unless *full_summary* is set.
    """
    by_horizon = {p.timeline: p for p in predictions}
    blocks: List[str] = []
    for h in horizons:
        prev = by_horizon.get(h)
        if prev is None:
            continue
        lines = [f"{h} - previous predictions (when value was {format_number(previous_value)}):"]
        lines.extend(_scenario_line(s, full_summary) for s in prev.scenarios)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _change_line(delta: ValueDelta) -> str:
    if delta.absolute == 0:
        return ""
    return f"Value change: {delta.describe()}"


def detect_value_label(topic: str) -> str:
    return f"""Which value or metric is most relevant to track over time for the topic "{topic}"?

Reply with a short label of 2-5 words and nothing else. Examples:
- "Bitcoin" -> "Price (USD)"
- "New York City" -> "Population"
- "Tesla stock" -> "Stock Price (USD)"
- "Global CO2 emissions" -> "CO2 Emissions (Mt)"
- "US Inflation Rate" -> "Inflation Rate (%)"

Topic: "{topic}"
Value Label:"""


def combined_research(topic: str, value_label: str, today: date, years_back: int = 10) -> str:
    start_year = today.year - years_back
    return f"""Research "{topic}" with a focus on {value_label}.

CURRENT STATE (as of {today.isoformat()}):
- the exact current {value_label} from market data, official sources or current news
- a 2-3 sentence summary of current conditions and the recent trend
- valid http(s) URLs from reputable sources

HISTORICAL EVENTS from {start_year} to {today.year}:
Find the events with the biggest impact on {value_label}, at most 4 per year ({years_back * 4} total):
1. major price movements (pumps and dumps) with their catalysts and percentage changes
2. market cycle turning points (bull and bear market starts and ends)
3. regulatory, fundamental and global events that moved the value

For each event give:
- the date as YYYY-MM-DD (YYYY-MM when the day is unknown)
- the {value_label} value at that time
- the event type, one of {_EVENT_TYPES}
- a 3-4 sentence summary of what happened, why, and the impact
- valid http(s) URLs from news, official announcements or data providers

Return JSON:
{{
  "current": {{"value": number, "summary": string, "sources": ["https://..."]}},
  "historical": [
    {{"date": "2021-11-10", "value": 69000, "eventType": "pump", "summary": "...", "sources": ["https://..."]}}
  ]
}}"""


def research_present(topic: str, value_label: str, today: date) -> str:
    return f"""Find the exact current {value_label} for "{topic}" as of {today.isoformat()}.

Check official sources, market data providers and current news, and use the most recent figure.

Provide:
1. the current {value_label} value
2. a 2-3 sentence summary of current conditions and recent movement
3. 2-3 valid http(s) URLs from reputable current data sources

Return JSON: {{"value": number, "summary": string, "sources": ["https://..."]}}"""


def extract_historical_entries(value_label: str, text: str) -> str:
    return f"""Extract the biggest historical {value_label} events from the text below.

For each event identify:
- the date as YYYY-MM-DD
- the {value_label} value (a number)
- the event type, one of {_EVENT_TYPES}
- a 3-4 sentence summary of what happened, why, and the impact
- 2-3 valid http(s) URLs from reputable sources

Keep at most 4 events per year.

Text:
{text[:4000]}

Return JSON: {{"entries": [{{"date": "YYYY-MM-DD", "value": number, "eventType": "...", "summary": "...", "sources": ["https://..."]}}]}}"""


def predictions_batch(
    topic: str,
    value_label: str,
    past_entries: Sequence[TimelineEntry],
    present: TimelineEntry,
    horizons: Sequence[str] = HORIZONS,
) -> str:
    return f"""Generate forecast scenarios for "{topic}" for EACH of these time intervals:
{horizons_list(horizons)}

Historical data (recent):
{historical_summary(past_entries)}

{_state_block("Current state", present)}

For EACH interval create 3-5 realistic scenarios grounded in market sentiment, economic data,
industry and regulatory news, historical cycles and risk factors. Cover bullish and bearish cases.

{_SCENARIO_RULES.format(label=value_label)}

Return JSON:
{{
  "predictions": [
    {{
      "timeline": "1 month",
      "scenarios": [
        {{"title": "...", "predictedValue": number, "summary": "...", "sources": ["https://..."], "confidenceScore": 75}}
      ]
    }}
  ]
}}"""


def prediction_for_interval(
    topic: str,
    value_label: str,
    horizon: str,
    past_entries: Sequence[TimelineEntry],
    present: TimelineEntry,
) -> str:
    return f"""Generate forecast scenarios for "{topic}" for {horizon} from now.

Historical data (recent):
{historical_summary(past_entries)}

{_state_block("Current state", present)}

Create 3-5 realistic scenarios grounded in market sentiment, economic data, industry and
regulatory news, historical cycles and risk factors. Cover bullish and bearish cases.

{_SCENARIO_RULES.format(label=value_label)}

Return JSON:
{{"scenarios": [{{"title": "...", "predictedValue": number, "summary": "...", "sources": ["https://..."], "confidenceScore": 75}}]}}"""


def timeline_analysis(topic: str, today: date, years_back: int = 10, horizons: Sequence[str] = HORIZONS) -> str:
    start_year = today.year - years_back
    return f"""Complete a full timeline analysis for "{topic}" in a single reply.

Every field is required. "historical" must hold 10-{years_back * 4} events (at most 4 per year) and
"predictions" must cover ALL {len(horizons)} intervals below with 3 scenarios each.

TASK 1: VALUE LABEL
The metric most relevant to track for "{topic}", 2-5 words ("Price (USD)", "Population", ...).

TASK 2: CURRENT STATE as of {today.isoformat()}
The current value, a 2-3 sentence summary, and 2-3 valid http(s) URLs.

TASK 3: HISTORICAL EVENTS from {start_year} to {today.year}
The biggest movements, cycle turning points and regulatory or fundamental events. For each:
date (YYYY-MM-DD), value, event type ({_EVENT_TYPES}), a 3-4 sentence summary and 2-3 URLs.

TASK 4: PREDICTIONS for these intervals:
{horizons_list(horizons)}

{_SCENARIO_RULES.format(label="tracked")}

Return JSON:
{{
  "valueLabel": "Price (USD)",
  "current": {{"value": number, "summary": "...", "sources": ["https://..."]}},
  "historical": [{{"date": "2021-11-10", "value": number, "eventType": "pump", "summary": "...", "sources": ["https://..."]}}],
  "predictions": [{{"timeline": "1 month", "scenarios": [{{"title": "...", "predictedValue": number, "summary": "...", "sources": ["https://..."], "confidenceScore": 75}}]}}]
}}"""


def predictions_batch_with_context(
    topic: str,
    value_label: str,
    past_entries: Sequence[TimelineEntry],
    previous_present: TimelineEntry,
    new_present: TimelineEntry,
    previous_predictions: Sequence[Prediction],
    horizons: Sequence[str] = HORIZONS,
) -> str:
    delta = ValueDelta(previous=previous_present.value, current=new_present.value)
    context = previous_predictions_context(previous_predictions, previous_present.value, horizons)
    return f"""Revise the forecast for "{topic}" for EACH of these time intervals:
{horizons_list(horizons)}

Historical data (recent):
{historical_summary(past_entries)}

{_state_block("PREVIOUS state", previous_present, with_summary=False)}

{_state_block("CURRENT state", new_present)}
{_change_line(delta)}

PREVIOUS PREDICTIONS:
{context or "No previous predictions available"}

The value moved from {format_number(previous_present.value)} to {format_number(new_present.value)} ({delta.percent_text()} change).
For EACH interval adjust the previous scenarios to this new information and give 3-5 scenarios.

{_SCENARIO_RULES.format(label=value_label)}

Return JSON:
{{"predictions": [{{"timeline": "1 month", "scenarios": [{{"title": "...", "predictedValue": number, "summary": "...", "sources": ["https://..."], "confidenceScore": number}}]}}]}}"""


def prediction_for_interval_with_context(
    topic: str,
    value_label: str,
    horizon: str,
    past_entries: Sequence[TimelineEntry],
    previous_present: TimelineEntry,
    new_present: TimelineEntry,
    previous_prediction: Optional[Prediction],
) -> str:
    delta = ValueDelta(previous=previous_present.value, current=new_present.value)
    context = ""
    if previous_prediction is not None:
        context = previous_predictions_context(
            [previous_prediction], previous_present.value, [horizon], full_summary=True
        )
    return f"""Revise the forecast for "{topic}" for {horizon} from now.

Historical data (recent):
{historical_summary(past_entries)}

{_state_block("PREVIOUS state", previous_present, with_summary=False)}

{_state_block("CURRENT state", new_present)}
{_change_line(delta)}

{context}

The value moved from {format_number(previous_present.value)} to {format_number(new_present.value)} ({delta.percent_text()} change).
Create 3-5 updated scenarios that account for the direction and size of the change.

{_SCENARIO_RULES.format(label=value_label)}

Return JSON:
{{"scenarios": [{{"title": "...", "predictedValue": number, "summary": "...", "sources": ["https://..."], "confidenceScore": number}}]}}"""
