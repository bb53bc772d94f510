from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from . import prompts
from .config import AppConfig
from .errors import CompletionError, GenerationError, ShapeViolationError
from .models import Prediction, ReprocessResult, TimelineEntry, TimelineVersion
from .parser import parse_interval, parse_predictions_batch, parse_present
from .schemas import PredictionsBatchShape, PresentDataShape, ScenarioListShape
from .synthesis import TimelineSynthesizer, predictions_chain, report_coverage

logger = logging.getLogger(__name__)


class TimelineReprocessor:
    """
    Re-observe the present value of an existing timeline and regenerate its
    predictions as adjustments of the previous ones.

    Nothing is persisted here. The caller decides whether the result becomes
    a new version.
    """

    def __init__(self, client: Any, config: Optional[AppConfig] = None, synthesizer: Optional[TimelineSynthesizer] = None):
        self.synthesizer = synthesizer or TimelineSynthesizer(client, config)
        self.config = self.synthesizer.config

    def reprocess_version(self, tv: TimelineVersion) -> ReprocessResult:
        return self.reprocess(
            tv.slug,
            tv.topic,
            tv.value_label,
            tv.past_entries,
            tv.present_entry,
            tv.predictions,
        )

    def reprocess(
        self,
        slug: str,
        topic: str,
        value_label: str,
        past_entries: Sequence[TimelineEntry],
        previous_present: TimelineEntry,
        previous_predictions: Sequence[Prediction],
    ) -> ReprocessResult:
        logger.info("reprocess %s: re-observing present value", slug)
        present = self.observe_present(topic, value_label)

        result = ReprocessResult(
            present_entry=present,
            predictions=[],
            previous_value=previous_present.value,
            new_value=present.value,
        )
        logger.info("reprocess %s: value change %s", slug, result.delta.describe())

        try:
            result.predictions = self.regenerate(
                topic, value_label, list(past_entries), previous_present, present, list(previous_predictions)
            )
        except CompletionError as e:
            raise GenerationError("reprocess failed", detail=str(e)) from e
        report_coverage(result.predictions, what=f"reprocess {slug}")
        return result

    def observe_present(self, topic: str, value_label: str) -> TimelineEntry:
        s = self.synthesizer
        today = s.context(topic).today
        try:
            text = s.call(
                "present",
                "market_data",
                prompts.research_present(topic, value_label, today),
                shape=PresentDataShape,
                research=True,
            )
            return parse_present(text, value_label, today)
        except (CompletionError, ShapeViolationError) as e:
            raise GenerationError("reprocess failed", detail=f"present value: {e}") from e

    def regenerate(
        self,
        topic: str,
        value_label: str,
        past_entries: List[TimelineEntry],
        previous_present: TimelineEntry,
        new_present: TimelineEntry,
        previous_predictions: List[Prediction],
    ) -> List[Prediction]:
        s = self.synthesizer
        by_horizon = {p.timeline: p for p in previous_predictions}

        def batch() -> List[Prediction]:
            text = s.call(
                "predictions_batch",
                "reviser",
                prompts.predictions_batch_with_context(
                    topic, value_label, past_entries, previous_present, new_present, previous_predictions
                ),
                shape=PredictionsBatchShape,
            )
            return parse_predictions_batch(text)

        def interval(horizon: str) -> Optional[Prediction]:
            text = s.call(
                "prediction_interval",
                "reviser",
                prompts.prediction_for_interval_with_context(
                    topic, value_label, horizon, past_entries, previous_present, new_present, by_horizon.get(horizon)
                ),
                shape=ScenarioListShape,
            )
            return parse_interval(text, horizon)

        return predictions_chain(batch, interval)
