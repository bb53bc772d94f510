import json
from datetime import date

import pytest

from topic_timeline.errors import CompletionError, ShapeViolationError
from topic_timeline.parser import (
    clean_label,
    extract_json,
    historical_entries_from,
    parse_event_date,
    parse_interval,
    parse_predictions_batch,
    parse_present,
    parse_timeline_analysis,
    try_extract_json,
)

from fakes import all_predictions, current, event, prediction, scenario

TODAY = date(2025, 1, 15)


def test_json_is_read_strict_fenced_or_embedded():
    assert try_extract_json('{"a": 1}') == {"a": 1}
    assert try_extract_json('```json\n{"a": 2}\n```') == {"a": 2}
    assert try_extract_json('Here is the data:\n```\n{"a": 3}\n```\nHope it helps.') == {"a": 3}
    assert try_extract_json('Sure! {"a": {"b": [1, 2]}} Let me know.') == {"a": {"b": [1, 2]}}
    assert try_extract_json("Result: [1, 2, 3]") == [1, 2, 3]


def test_citation_markers_before_the_object_are_skipped():
    text = 'According to recent data [1], the figures are: {"value": 105.5, "summary": "Now."} See [2].'
    assert try_extract_json(text) == {"value": 105.5, "summary": "Now."}

    e = parse_present(text, "Index Points", TODAY)
    assert e.value == 105.5
    assert e.summary == "Now."

    # lists alone: the payload, not the citation
    assert try_extract_json('Per [3], the events are [{"date": "2021"}, {"date": "2022"}].') == [
        {"date": "2021"},
        {"date": "2022"},
    ]


def test_unreadable_reply_is_a_completion_error():
    assert try_extract_json("I could not find any data.") is None
    assert try_extract_json("") is None
    with pytest.raises(CompletionError):
        extract_json("{not json at all")


def test_event_dates():
    assert parse_event_date("2021-11-10") == date(2021, 11, 10)
    assert parse_event_date("2021-06") == date(2021, 6, 1)
    assert parse_event_date("2019") == date(2019, 1, 1)
    assert parse_event_date("2021-11-10T08:00:00Z") == date(2021, 11, 10)
    assert parse_event_date("2021-13-01") is None
    assert parse_event_date("last spring") is None
    assert parse_event_date(None) is None


def test_parse_present():
    e = parse_present(json.dumps(current(120)), "Price (USD)", TODAY)
    assert e.value == 120
    assert e.date == TODAY
    assert e.value_label == "Price (USD)"
    assert e.sources == ["https://data.example.com/"]

    wrapped = parse_present(json.dumps({"current": current(7)}), "V", TODAY)
    assert wrapped.value == 7


def test_parse_present_failures():
    with pytest.raises(ShapeViolationError):
        parse_present('{"summary": "no number here"}', "V", TODAY)
    with pytest.raises(ShapeViolationError):
        parse_present('{"value": "unknown"}', "V", TODAY)
    with pytest.raises(CompletionError):
        parse_present("The price is about 100.", "V", TODAY)


def test_historical_entries_are_cleaned_and_sorted():
    items = [
        event("2022-05-01", 30, "dump", "Crash after collapse."),
        event("2021-11-10", 69000, "pump", "All-time high."),
        event("2021-06", 35000, None, "Mid-year."),
        {"date": "2020-01-01", "value": "n/a", "summary": "no value"},
        {"date": "sometime", "value": 5, "summary": "bad date"},
        "not an object",
    ]
    out = historical_entries_from(items, "Price (USD)")
    assert [e.date for e in out] == [date(2021, 6, 1), date(2021, 11, 10), date(2022, 5, 1)]
    assert out[0].summary == "Mid-year."
    assert out[1].summary == "[Major Pump] All-time high."
    assert out[2].summary == "[Major Dump] Crash after collapse."
    assert all(e.value_label == "Price (USD)" for e in out)


def test_batch_salvages_what_validates():
    items = [
        prediction("2 years"),
        {"timeline": "3 months", "scenarios": [scenario(0)]},
        {"timeline": "1 year", "scenarios": [scenario(i) for i in range(7)]},
        {"timeline": "1 month", "scenarios": [scenario(0), {"title": "no summary"}, scenario(1), scenario(2)]},
        {"timeline": "5 years", "scenarios": []},
        {"timeline": "6 years", "scenarios": ["junk", {"title": "x"}]},
        prediction("2 years", n=4),
    ]
    preds = parse_predictions_batch(json.dumps({"predictions": items}))

    assert [p.timeline for p in preds] == ["1 month", "1 year", "2 years"]
    by = {p.timeline: p for p in preds}
    assert len(by["1 month"].scenarios) == 3
    assert len(by["1 year"].scenarios) == 5
    assert len(by["2 years"].scenarios) == 3

    ids = [s.id for p in preds for s in p.scenarios]
    assert len(ids) == len(set(ids))


def test_batch_with_nothing_usable_raises():
    with pytest.raises(ShapeViolationError):
        parse_predictions_batch('{"result": "none"}')
    with pytest.raises(ShapeViolationError):
        parse_predictions_batch(json.dumps({"predictions": [{"timeline": "1 month", "scenarios": []}]}))


def test_full_batch_keeps_all_horizons():
    preds = parse_predictions_batch(json.dumps({"predictions": all_predictions()}))
    assert len(preds) == 11


def test_scenarios_get_default_titles():
    p = parse_interval(json.dumps({"scenarios": [{"summary": "a"}, {"title": "  ", "summary": "b"}]}), "1 month")
    assert [s.title for s in p.scenarios] == ["Scenario 1", "Scenario 2"]


def test_interval_without_valid_scenarios_is_none():
    assert parse_interval('{"scenarios": []}', "1 year") is None
    with pytest.raises(ShapeViolationError):
        parse_interval('{"answer": 3}', "1 year")


def test_timeline_analysis():
    reply = {
        "valueLabel": "Price (USD)",
        "current": current(65000),
        "historical": [event("2021-11-10", 69000, "pump")],
        "predictions": all_predictions(),
    }
    parsed = parse_timeline_analysis("Analysis follows.\n" + json.dumps(reply), TODAY)
    assert parsed.value_label == "Price (USD)"
    assert parsed.present.value == 65000
    assert len(parsed.past_entries) == 1
    assert len(parsed.predictions) == 11


def test_timeline_analysis_label_and_present():
    reply = {"current": current(1), "historical": [], "predictions": []}
    assert parse_timeline_analysis(json.dumps(reply), TODAY).value_label == "Value"

    with pytest.raises(ShapeViolationError):
        parse_timeline_analysis(json.dumps({"valueLabel": "X", "historical": []}), TODAY)


def test_clean_label():
    assert clean_label('"Price (USD)"') == "Price (USD)"
    assert clean_label("Value Label: Population\n") == "Population"
    assert clean_label("\n\n") is None
