from datetime import date

import pytest

from topic_timeline.config import default_config
from topic_timeline.errors import CompletionError, GenerationError
from topic_timeline.models import HORIZONS, Prediction, PredictionScenario, TimelineEntry
from topic_timeline.reprocess import TimelineReprocessor
from topic_timeline.service import TimelineService
from topic_timeline.store import TimelineStore
from topic_timeline.synthesis import TimelineSynthesizer

from fakes import Clock, FakeClient, all_predictions, current, scenario

TODAY = date(2025, 6, 1)
LONG_SUMMARY = "Momentum carries the index higher as inflows continue. " * 4


def previous_predictions():
    return [
        Prediction(
            timeline=h,
            scenarios=[
                PredictionScenario(id=f"{h}-{i}", title=f"Old {i}", summary=LONG_SUMMARY, confidence_score=50, predicted_value=110 + i)
                for i in range(3)
            ],
        )
        for h in HORIZONS
    ]


def previous_present():
    return TimelineEntry(date=date(2025, 1, 1), value=100, value_label="Index Points", summary="Then.")


def reprocessor(client: FakeClient) -> TimelineReprocessor:
    synth = TimelineSynthesizer(client, default_config(), today=lambda: TODAY)
    return TimelineReprocessor(client, synthesizer=synth)


def test_delta_and_previous_scenarios_reach_the_batch_prompt():
    client = FakeClient(
        {
            "PresentDataShape": current(120),
            "PredictionsBatchShape": {"predictions": all_predictions()},
        }
    )
    result = reprocessor(client).reprocess(
        "example-metric-abcd1234", "Example Metric", "Index Points", [], previous_present(), previous_predictions()
    )

    assert client.keys() == ["PresentDataShape", "PredictionsBatchShape"]
    assert result.previous_value == 100
    assert result.new_value == 120
    assert result.delta.absolute == 20
    assert result.delta.percent_text() == "+20.00%"
    assert result.present_entry.date == TODAY
    assert len(result.predictions) == 11

    prompt = client.prompt("PredictionsBatchShape")
    assert "Value change: +20 (+20.00%)" in prompt
    assert "from 100 to 120" in prompt
    # prior scenarios are condensed in the batch prompt
    assert LONG_SUMMARY[:100] + "..." in prompt
    assert LONG_SUMMARY not in prompt
    assert "Old 0: Predicted 110 (50% confidence)" in prompt


def test_per_interval_fallback_gets_full_previous_context():
    client = FakeClient(
        {
            "PresentDataShape": current(120),
            "PredictionsBatchShape": CompletionError("timeout"),
            "ScenarioListShape": [{"scenarios": [scenario(i) for i in range(3)]} for _ in HORIZONS],
        }
    )
    result = reprocessor(client).reprocess(
        "s", "Example Metric", "Index Points", [], previous_present(), previous_predictions()
    )

    assert client.keys().count("ScenarioListShape") == 11
    assert len(result.predictions) == 11
    first = client.prompt("ScenarioListShape", 0)
    assert "1 month from now" in first
    assert LONG_SUMMARY.strip() in first
    assert "Value change: +20 (+20.00%)" in first


def test_present_failure_is_a_generation_error():
    client = FakeClient({"PresentDataShape": '{"summary": "unknown"}'})
    with pytest.raises(GenerationError):
        reprocessor(client).reprocess("s", "t", "V", [], previous_present(), previous_predictions())
    assert client.keys() == ["PresentDataShape"]


def test_unchanged_value_has_no_change_line():
    client = FakeClient(
        {
            "PresentDataShape": current(100),
            "PredictionsBatchShape": {"predictions": all_predictions()},
        }
    )
    reprocessor(client).reprocess("s", "t", "V", [], previous_present(), previous_predictions())
    assert "Value change:" not in client.prompt("PredictionsBatchShape")


def test_reprocess_does_not_persist_until_committed(tmp_path):
    store = TimelineStore(tmp_path / "t.db", now=Clock())
    v1 = store.save(
        "Example Metric", "Index Points", [], previous_present(), previous_predictions(), user_id="alice"
    )

    client = FakeClient(
        {
            "PresentDataShape": current(120),
            "PredictionsBatchShape": {"predictions": all_predictions()},
        }
    )
    service = TimelineService(store, reprocessor(client).synthesizer)

    result = service.reprocess(v1.slug, "alice")
    assert result.new_value == 120

    latest = store.get_by_slug(v1.slug, count_view=False)
    assert latest.version == 1
    assert latest.present_entry.value == 100
    assert len(store.list_versions(v1.slug)) == 1

    v2 = service.commit_version(v1.slug, "alice", result.present_entry, result.predictions)
    assert v2.version == 2
    assert v2.present_entry.value == 120
    assert v2.created_at == v1.created_at
    assert [v.present_value for v in store.list_versions(v1.slug)] == [120, 100]
    store.close()
