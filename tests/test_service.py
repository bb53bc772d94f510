from datetime import date

import pytest

from topic_timeline.config import default_config
from topic_timeline.errors import CompletionError, GenerationError, OwnershipError
from topic_timeline.models import TimelineEntry, Visibility
from topic_timeline.service import TimelineService, validate_topic
from topic_timeline.store import TimelineStore
from topic_timeline.synthesis import TimelineSynthesizer

from fakes import Clock, FakeClient, all_predictions, current, event


def analysis():
    return {
        "valueLabel": "Price (USD)",
        "current": current(65000),
        "historical": [event("2021-11-10", 69000, "pump")],
        "predictions": all_predictions(),
    }


def make_service(tmp_path, replies=None) -> TimelineService:
    client = FakeClient(replies if replies is not None else {"TimelineAnalysisShape": analysis()})
    synth = TimelineSynthesizer(client, default_config(), today=lambda: date(2025, 1, 15))
    return TimelineService(TimelineStore(tmp_path / "t.db", now=Clock()), synth)


def test_validate_topic():
    assert validate_topic("  Bitcoin ") == "Bitcoin"
    with pytest.raises(ValueError):
        validate_topic("   ")
    with pytest.raises(ValueError):
        validate_topic(None)
    with pytest.raises(ValueError):
        validate_topic("x" * 201)
    assert validate_topic("x" * 200)


def test_generate_saves_version_one(tmp_path):
    service = make_service(tmp_path)
    tv = service.generate("Bitcoin", user_id="alice", visibility=Visibility.PUBLIC)

    assert tv.version == 1
    assert tv.topic == "Bitcoin"
    assert tv.value_label == "Price (USD)"
    assert tv.present_entry.value == 65000
    assert tv.visibility == Visibility.PUBLIC
    assert len(tv.predictions) == 11
    assert service.store.exists(tv.slug)


def test_generate_failure_saves_nothing(tmp_path):
    service = make_service(tmp_path, {"TimelineAnalysisShape": CompletionError("down")})
    with pytest.raises(GenerationError):
        service.generate("Bitcoin", user_id="alice")
    assert service.store.counts() == {"timelines": 0, "versions": 0}


def test_private_timelines_are_owner_only(tmp_path):
    service = make_service(tmp_path)
    tv = service.generate("Bitcoin", user_id="alice")

    assert service.get(tv.slug, user_id="alice").slug == tv.slug
    with pytest.raises(OwnershipError):
        service.get(tv.slug, user_id="mallory")
    with pytest.raises(OwnershipError):
        service.get(tv.slug)

    service.set_visibility(tv.slug, "alice", Visibility.PREMIUM)
    assert service.get(tv.slug).visibility == Visibility.PREMIUM


def test_missing_timeline(tmp_path):
    service = make_service(tmp_path)
    with pytest.raises(LookupError):
        service.get("nothing-aaaaaaaa")
    with pytest.raises(LookupError):
        service.set_visibility("nothing-aaaaaaaa", "alice", Visibility.PUBLIC)


def test_only_owner_reprocesses_or_commits(tmp_path):
    service = make_service(tmp_path)
    tv = service.generate("Bitcoin", user_id="alice")
    anon = service.generate("Ethereum")
    entry = TimelineEntry(date=date(2025, 2, 1), value=1, value_label="Price (USD)")

    with pytest.raises(OwnershipError):
        service.reprocess(tv.slug, "mallory")
    with pytest.raises(OwnershipError):
        service.commit_version(tv.slug, "mallory", entry, [])
    with pytest.raises(OwnershipError):
        service.reprocess(anon.slug, None)
    assert len(service.versions(tv.slug)) == 1


def test_set_visibility_and_delete_rules(tmp_path):
    service = make_service(tmp_path)
    tv = service.generate("Bitcoin", user_id="alice", visibility=Visibility.PUBLIC)

    with pytest.raises(OwnershipError):
        service.set_visibility(tv.slug, "mallory", Visibility.PRIVATE)
    with pytest.raises(OwnershipError):
        service.delete(tv.slug, "alice")

    service.set_visibility(tv.slug, "alice", Visibility.PRIVATE)
    with pytest.raises(OwnershipError):
        service.delete(tv.slug, "mallory")
    service.delete(tv.slug, "alice")
    assert not service.store.exists(tv.slug)


def test_listings(tmp_path):
    service = make_service(tmp_path)
    a = service.generate("Bitcoin", user_id="alice", visibility=Visibility.PUBLIC)
    service.generate("Bitcoin Cash", user_id="bob")

    found, total = service.search("bitcoin")
    assert total == 2
    assert found[0].slug == a.slug
    assert [t.slug for t in service.popular()] == [a.slug]
    assert [t.slug for t in service.user_timelines("alice")] == [a.slug]


def test_read_only_service_cannot_generate(tmp_path):
    service = TimelineService(TimelineStore(tmp_path / "t.db"))
    with pytest.raises(RuntimeError):
        service.generate("Bitcoin")
