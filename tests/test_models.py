from datetime import date

import pytest
from pydantic import ValidationError

from topic_timeline.models import (
    HORIZONS,
    Prediction,
    PredictionScenario,
    TimelineEntry,
    TimelineResult,
    ValueDelta,
    event_type_label,
    format_number,
)


def test_value_delta_formatting():
    d = ValueDelta(previous=100, current=120)
    assert d.absolute == 20
    assert d.absolute_text() == "+20"
    assert d.percent_text() == "+20.00%"
    assert d.describe() == "+20 (+20.00%)"

    down = ValueDelta(previous=100, current=90)
    assert down.describe() == "-10 (-10.00%)"


def test_value_delta_from_zero():
    d = ValueDelta(previous=0, current=5)
    assert d.percent == 0
    assert d.percent_text() == "0%"


def test_format_number():
    assert format_number(None) == "N/A"
    assert format_number(2.0) == "2"
    assert format_number(1.5) == "1.5"
    assert format_number(-10.0) == "-10"


def test_event_type_labels():
    assert event_type_label("pump") == "Major Pump"
    assert event_type_label("bear_market_end") == "Bear Market End"
    assert event_type_label("sideways") == "Event"
    assert event_type_label(None) == "Event"


def _scenario(i: int) -> PredictionScenario:
    return PredictionScenario(id=f"id{i}", title=f"t{i}", summary="s")


def test_prediction_rejects_unknown_horizon():
    with pytest.raises(ValidationError):
        Prediction(timeline="3 months", scenarios=[_scenario(0)])


def test_prediction_caps_scenarios_at_five():
    with pytest.raises(ValidationError):
        Prediction(timeline="1 year", scenarios=[_scenario(i) for i in range(6)])


def test_timeline_result_reports_gaps():
    present = TimelineEntry(date=date(2025, 1, 1), value=1, value_label="V")
    full = [Prediction(timeline=h, scenarios=[_scenario(i) for i in range(3)]) for h in HORIZONS]
    r = TimelineResult(topic="t", value_label="V", present_entry=present, predictions=full)
    assert r.missing_horizons == []
    assert r.is_complete

    r2 = TimelineResult(topic="t", value_label="V", present_entry=present, predictions=full[:-1])
    assert r2.missing_horizons == ["10 years"]
    assert not r2.is_complete

    thin = full[:-1] + [Prediction(timeline="10 years", scenarios=[_scenario(0)])]
    r3 = TimelineResult(topic="t", value_label="V", present_entry=present, predictions=thin)
    assert r3.missing_horizons == []
    assert not r3.is_complete


def test_camel_case_dump():
    e = TimelineEntry(date=date(2025, 1, 1), value=1, value_label="Price (USD)")
    dumped = e.model_dump(mode="json", by_alias=True)
    assert dumped["valueLabel"] == "Price (USD)"
    assert dumped["date"] == "2025-01-01"
