from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Sequence, Tuple

from .models import TimelineEntry


MAX_EVENTS_PER_YEAR = 4

# (terms, bonus): the bonus is applied once per group when any term is present
SIGNIFICANCE_BONUSES: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("pump", "surge", "rally"), 100),
    (("dump", "crash", "plunge"), 100),
    (("bull market", "bull run"), 150),
    (("bear market", "bear run"), 150),
    (("%", "percent"), 50),
)


def significance_score(entry: TimelineEntry) -> int:
    """Summary length plus keyword bonuses. Longer, more specific summaries rank higher."""
    summary = entry.summary or ""
    text = summary.lower()
    score = len(summary)
    for terms, bonus in SIGNIFICANCE_BONUSES:
        if any(t in text for t in terms):
            score += bonus
    return score


def limit_events_per_year(
    entries: Sequence[TimelineEntry],
    years_back: int = 10,
    max_per_year: int = MAX_EVENTS_PER_YEAR,
) -> List[TimelineEntry]:
    """
    Keep at most *max_per_year* entries per calendar year, chosen by descending
    significance score, and return the union sorted by date.

    Ties keep input order (both sorts are stable), so running this on its own
    output returns the same list.

    *years_back* is informational: entries outside the window are still kept.
    """
    by_year: Dict[int, List[TimelineEntry]] = OrderedDict()
    for e in entries:
        by_year.setdefault(e.date.year, []).append(e)

    kept: List[TimelineEntry] = []
    for year_entries in by_year.values():
        ranked = sorted(year_entries, key=significance_score, reverse=True)
        kept.extend(ranked[:max_per_year])

    return sorted(kept, key=lambda e: e.date)
