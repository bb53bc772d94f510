"""
Research & synthesis: topic -> TimelineResult.

Generation runs as an ordered list of strategies. Each strategy takes a
SynthesisContext and either returns a TimelineResult or raises
CompletionError / ShapeViolationError, which hands control to the next one:

  single_call   one request for label, present value, history and all horizons
  multi_call    label -> combined present+history research -> predictions,
                where predictions are one batch request, or one request per
                horizon if the batch request raises

A strategy that returns, even with gaps, ends the chain. Gaps are logged and
left visible on the result (missing_horizons / is_complete). An auth failure
stops everything at once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from . import prompts
from .config import AppConfig, default_config
from .errors import CompletionError, GenerationError, ShapeViolationError, UpstreamAuthError
from .models import HORIZONS, MIN_SCENARIOS, Prediction, TimelineEntry, TimelineResult, order_predictions, utc_now
from .parser import (
    clean_label,
    parse_combined_research,
    parse_historical,
    parse_interval,
    parse_predictions_batch,
    parse_timeline_analysis,
)
from .schemas import (
    CombinedResearchShape,
    HistoricalEntriesShape,
    PredictionsBatchShape,
    ScenarioListShape,
    TimelineAnalysisShape,
)

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Value"

# the two ways a tier can fail and hand over to the next one
RECOVERABLE = (CompletionError, ShapeViolationError)


@dataclass(frozen=True)
class SynthesisContext:
    topic: str
    today: date
    years_back: int = 10
    max_per_year: int = 4


Strategy = Callable[[SynthesisContext], TimelineResult]


def run_strategies(strategies: Sequence[Tuple[str, Strategy]], ctx: SynthesisContext) -> TimelineResult:
    last_error: Optional[Exception] = None
    for name, strategy in strategies:
        logger.info("synthesis[%s]: %r", name, ctx.topic)
        try:
            result = strategy(ctx)
        except UpstreamAuthError as e:
            logger.error("synthesis[%s]: completion service rejected credentials", name)
            raise GenerationError(detail=str(e)) from e
        except RECOVERABLE as e:
            logger.warning("synthesis[%s] failed: %s", name, e)
            last_error = e
            continue
        result.strategy = name
        report_coverage(result.predictions, what=f"synthesis[{name}]")
        return result

    raise GenerationError(detail=str(last_error) if last_error else "no strategy available")


def report_coverage(predictions: Sequence[Prediction], what: str) -> None:
    present = {p.timeline for p in predictions}
    missing = [h for h in HORIZONS if h not in present]
    if missing:
        logger.warning("%s: partial coverage, %d/%d horizons (missing: %s)",
                       what, len(present), len(HORIZONS), ", ".join(missing))
    thin = [p.timeline for p in predictions if len(p.scenarios) < MIN_SCENARIOS]
    if thin:
        logger.warning("%s: fewer than %d scenarios for: %s", what, MIN_SCENARIOS, ", ".join(thin))


def predictions_chain(
    batch: Callable[[], List[Prediction]],
    interval: Callable[[str], Optional[Prediction]],
    horizons: Sequence[str] = HORIZONS,
) -> List[Prediction]:
    """Batch request first; only if it raises, one request per horizon."""
    try:
        return batch()
    except UpstreamAuthError:
        raise
    except RECOVERABLE as e:
        logger.warning("batch predictions failed (%s), falling back to per-interval requests", e)

    out: List[Prediction] = []
    for h in horizons:
        try:
            p = interval(h)
        except UpstreamAuthError:
            raise
        except RECOVERABLE as e:
            logger.warning("%s: prediction request failed, horizon omitted: %s", h, e)
            continue
        if p is None:
            logger.warning("%s: no valid scenarios, horizon omitted", h)
            continue
        out.append(p)
    return order_predictions(out)


class TimelineSynthesizer:
    def __init__(
        self,
        client: Any,
        config: Optional[AppConfig] = None,
        *,
        today: Optional[Callable[[], date]] = None,
    ):
        self.client = client
        self.config = config or default_config()
        self._today = today or (lambda: utc_now().date())
        self.strategies: List[Tuple[str, Strategy]] = [
            ("single_call", self.single_call),
            ("multi_call", self.multi_call),
        ]

    def context(self, topic: str) -> SynthesisContext:
        return SynthesisContext(
            topic=topic,
            today=self._today(),
            years_back=self.config.years_back,
            max_per_year=self.config.max_events_per_year,
        )

    def synthesize(self, topic: str) -> TimelineResult:
        return run_strategies(self.strategies, self.context(topic))

    def call(
        self,
        name: str,
        system_key: str,
        prompt: str,
        *,
        shape: Optional[Type[BaseModel]] = None,
        research: bool = False,
    ) -> str:
        params = self.config.call_settings(name)
        return self.client.complete(
            prompts.messages(system_key, prompt),
            shape=shape,
            temperature=params["temperature"],
            max_tokens=params["max_tokens"],
            model=self.config.openai_research_model if research else None,
        )

    # --- strategies -------------------------------------------------

    def single_call(self, ctx: SynthesisContext) -> TimelineResult:
        text = self.call(
            "timeline_analysis",
            "comprehensive",
            prompts.timeline_analysis(ctx.topic, ctx.today, ctx.years_back),
            shape=TimelineAnalysisShape,
            research=True,
        )
        parsed = parse_timeline_analysis(text, ctx.today, ctx.years_back, ctx.max_per_year)
        return TimelineResult(
            topic=ctx.topic,
            value_label=parsed.value_label,
            past_entries=parsed.past_entries,
            present_entry=parsed.present,
            predictions=parsed.predictions,
        )

    def multi_call(self, ctx: SynthesisContext) -> TimelineResult:
        label = self.detect_label(ctx.topic)

        text = self.call(
            "combined_research",
            "researcher",
            prompts.combined_research(ctx.topic, label, ctx.today, ctx.years_back),
            shape=CombinedResearchShape,
            research=True,
        )
        research = parse_combined_research(text, label, ctx.today, ctx.years_back, ctx.max_per_year)
        past = research.past_entries
        if not past:
            past = self.extract_historical(ctx, label, text)

        predictions = self.predictions(ctx, label, past, research.present)
        return TimelineResult(
            topic=ctx.topic,
            value_label=label,
            past_entries=past,
            present_entry=research.present,
            predictions=predictions,
        )

    # --- steps ------------------------------------------------------

    def detect_label(self, topic: str) -> str:
        try:
            text = self.call("label", "label", prompts.detect_value_label(topic))
        except UpstreamAuthError:
            raise
        except CompletionError as e:
            logger.warning("label detection failed (%s), using %r", e, DEFAULT_LABEL)
            return DEFAULT_LABEL
        label = clean_label(text)
        if not label:
            logger.warning("label detection returned nothing usable, using %r", DEFAULT_LABEL)
            return DEFAULT_LABEL
        return label

    def extract_historical(self, ctx: SynthesisContext, label: str, text: str) -> List[TimelineEntry]:
        """Second chance for history: ask for the events in `text` as structured entries."""
        logger.info("no usable historical events in research reply, running extraction")
        try:
            reply = self.call(
                "extract_historical",
                "extractor",
                prompts.extract_historical_entries(label, text),
                shape=HistoricalEntriesShape,
            )
            return parse_historical(reply, label, ctx.years_back, ctx.max_per_year)
        except UpstreamAuthError:
            raise
        except RECOVERABLE as e:
            logger.warning("historical extraction failed: %s", e)
            return []

    def predictions(
        self,
        ctx: SynthesisContext,
        label: str,
        past: List[TimelineEntry],
        present: TimelineEntry,
    ) -> List[Prediction]:
        def batch() -> List[Prediction]:
            text = self.call(
                "predictions_batch",
                "forecaster",
                prompts.predictions_batch(ctx.topic, label, past, present),
                shape=PredictionsBatchShape,
            )
            return parse_predictions_batch(text)

        def interval(horizon: str) -> Optional[Prediction]:
            text = self.call(
                "prediction_interval",
                "forecaster",
                prompts.prediction_for_interval(ctx.topic, label, horizon, past, present),
                shape=ScenarioListShape,
            )
            return parse_interval(text, horizon)

        return predictions_chain(batch, interval)
