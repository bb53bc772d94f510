from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from .errors import OwnershipError
from .models import Prediction, ReprocessResult, TimelineEntry, TimelineVersion, Visibility, VersionSummary
from .reprocess import TimelineReprocessor
from .store import SHARED_VISIBILITIES, TimelineStore
from .synthesis import TimelineSynthesizer

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 200


def validate_topic(topic: Optional[str]) -> str:
    t = (topic or "").strip()
    if not t:
        raise ValueError("topic is required")
    if len(t) > MAX_TOPIC_LENGTH:
        raise ValueError(f"topic must be at most {MAX_TOPIC_LENGTH} characters")
    return t


class TimelineService:
    """
    What a request handler does with the three core pieces: synthesize and
    save, reprocess for review, commit a reviewed result as a new version,
    and the ownership checks around each.

    Read-only use (show, search, listings) needs only the store.
    """

    def __init__(
        self,
        store: TimelineStore,
        synthesizer: Optional[TimelineSynthesizer] = None,
        reprocessor: Optional[TimelineReprocessor] = None,
    ):
        self.store = store
        self.synthesizer = synthesizer
        self.reprocessor = reprocessor
        if reprocessor is None and synthesizer is not None:
            self.reprocessor = TimelineReprocessor(synthesizer.client, synthesizer.config, synthesizer)

    def _latest_or_raise(self, slug: str) -> TimelineVersion:
        tv = self.store.get_by_slug(slug, count_view=False)
        if tv is None:
            raise LookupError(f"timeline not found: {slug}")
        return tv

    def _require_owner(self, tv: TimelineVersion, user_id: Optional[str], action: str) -> None:
        if user_id is None or tv.user_id != user_id:
            raise OwnershipError(f"only the owner can {action} {tv.slug}")

    def generate(
        self,
        topic: str,
        user_id: Optional[str] = None,
        visibility: Visibility = Visibility.PRIVATE,
    ) -> TimelineVersion:
        topic = validate_topic(topic)
        if self.synthesizer is None:
            raise RuntimeError("TimelineService was built without a synthesizer")
        result = self.synthesizer.synthesize(topic)
        if result.missing_horizons:
            logger.warning("generate %r: saving with %d missing horizons", topic, len(result.missing_horizons))
        tv = self.store.save(
            topic=result.topic,
            value_label=result.value_label,
            past_entries=result.past_entries,
            present_entry=result.present_entry,
            predictions=result.predictions,
            user_id=user_id,
            visibility=visibility,
        )
        logger.info("generate %r -> %s (strategy=%s)", topic, tv.slug, result.strategy)
        return tv

    def get(self, slug: str, version: Optional[int] = None, user_id: Optional[str] = None) -> TimelineVersion:
        """Shared timelines are readable by anyone, private ones by their owner only."""
        latest = self._latest_or_raise(slug)
        if latest.visibility.value not in SHARED_VISIBILITIES:
            self._require_owner(latest, user_id, "view")
        tv = self.store.get_by_slug(slug, version)
        if tv is None:
            raise LookupError(f"timeline not found: {slug} v{version}")
        return tv

    def versions(self, slug: str) -> List[VersionSummary]:
        return self.store.list_versions(slug)

    def reprocess(self, slug: str, user_id: Optional[str]) -> ReprocessResult:
        tv = self._latest_or_raise(slug)
        self._require_owner(tv, user_id, "reprocess")
        if self.reprocessor is None:
            raise RuntimeError("TimelineService was built without a reprocessor")
        return self.reprocessor.reprocess_version(tv)

    def commit_version(
        self,
        slug: str,
        user_id: Optional[str],
        present_entry: TimelineEntry,
        predictions: Sequence[Prediction],
    ) -> TimelineVersion:
        """Append a reviewed reprocess result. History, topic, label and visibility carry over."""
        tv = self._latest_or_raise(slug)
        self._require_owner(tv, user_id, "save versions of")
        return self.store.save_version(
            slug,
            tv.topic,
            tv.value_label,
            tv.past_entries,
            present_entry,
            predictions,
            user_id=tv.user_id,
            visibility=tv.visibility,
        )

    def search(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[TimelineVersion], int]:
        return self.store.search(query, limit=limit, offset=offset)

    def popular(self, limit: int = 20) -> List[TimelineVersion]:
        return self.store.list_popular(limit)

    def user_timelines(self, user_id: str) -> List[TimelineVersion]:
        return self.store.list_by_user(user_id)

    def set_visibility(self, slug: str, user_id: Optional[str], visibility: Visibility) -> TimelineVersion:
        tv = self.store.update_visibility(slug, user_id, visibility)
        if tv is None:
            self._latest_or_raise(slug)
            raise OwnershipError(f"only the owner can change visibility of {slug}")
        return tv

    def delete(self, slug: str, user_id: Optional[str]) -> None:
        if self.store.delete(slug, user_id):
            return
        tv = self._latest_or_raise(slug)
        self._require_owner(tv, user_id, "delete")
        raise OwnershipError(f"{slug} is {tv.visibility.value}; make it private before deleting")
