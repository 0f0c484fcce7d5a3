"""Run-level signals: market pulse, topic tallies and IPO mentions."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence

from finpulse.aggregates import topic_key
from finpulse.models import Enrichment, MarketPulse, PulseLabel, RawNewsItem

logger = logging.getLogger(__name__)

# Label thresholds (strict: exactly ±0.5 is Neutral).
_BULLISH_ABOVE = 0.5
_BEARISH_BELOW = -0.5

_IPO_NEEDLE = "ipo"


def pulse_score(sentiments: Sequence[int]) -> float:
    """Average sentiment dampened by ``ln(1 + n)``; 0.0 for no articles."""
    count = len(sentiments)
    if count == 0:
        return 0.0
    average = sum(sentiments) / count
    return average * math.log1p(count)


def pulse_label(score: float) -> PulseLabel:
    if score > _BULLISH_ABOVE:
        return "Bullish"
    if score < _BEARISH_BELOW:
        return "Bearish"
    return "Neutral"


def market_pulse(sentiments: Sequence[int]) -> MarketPulse | None:
    """Pulse for one run's new articles, or None when there were none."""
    if not sentiments:
        return None
    score = pulse_score(sentiments)
    return MarketPulse(score=score, label=pulse_label(score), based_on_count=len(sentiments))


def is_ipo_related(item: RawNewsItem, enrichment: Enrichment) -> bool:
    """Plain substring match on topics, headline and raw summary, not whole words."""
    haystacks = [*enrichment.topics, item.headline, item.summary]
    return any(_IPO_NEEDLE in text.lower() for text in haystacks)


def count_ipo_mentions(pairs: Iterable[tuple[RawNewsItem, Enrichment]]) -> int:
    return sum(1 for item, enrichment in pairs if is_ipo_related(item, enrichment))


def tally_topics(enrichments: Iterable[Enrichment]) -> dict[str, tuple[str, int]]:
    """Sum topic mentions by storage key → ``(display name, count)``.

    Repeats across articles add up; the first spelling seen is kept as the
    display name.
    """
    tally: dict[str, tuple[str, int]] = {}
    for enrichment in enrichments:
        for topic in enrichment.topics:
            key = topic_key(topic)
            if not key:
                logger.debug("Dropping topic with no usable key: %r", topic)
                continue
            display, count = tally.get(key, (topic, 0))
            tally[key] = (display, count + 1)
    return tally
