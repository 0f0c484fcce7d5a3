"""Domain models used across the pipeline."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Sentiment = Literal[-1, 0, 1]
PulseLabel = Literal["Bullish", "Neutral", "Bearish"]

FALLBACK_TOPICS: list[str] = ["General"]
MAX_TOPICS = 3


class RawNewsItem(BaseModel):
    """One item as returned by the news feed, before enrichment."""

    article_id: str
    headline: str
    summary: str = ""
    source: str = ""
    category: str = ""
    url: str = ""
    published_at: datetime | None = None


class Enrichment(BaseModel):
    """AI-derived structured fields for one article."""

    summary: str = Field(min_length=1)
    sentiment: Sentiment
    topics: list[str]

    @field_validator("summary", mode="before")
    @classmethod
    def _strip_summary(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, v: Any) -> Any:
        # Models sometimes answer 0.8 or "-1"; keep only the sign.
        if isinstance(v, bool):
            raise ValueError("sentiment must be numeric")
        if isinstance(v, str):
            try:
                v = float(v.strip())
            except ValueError as exc:
                raise ValueError(f"sentiment is not numeric: {v!r}") from exc
        if isinstance(v, (int, float)):
            if math.isnan(v):
                raise ValueError("sentiment is NaN")
            return (v > 0) - (v < 0)
        return v

    @field_validator("topics", mode="before")
    @classmethod
    def _repair_topics(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return v
        cleaned = [t.strip() for t in v if isinstance(t, str) and t.strip()]
        return cleaned[:MAX_TOPICS] or list(FALLBACK_TOPICS)

    @classmethod
    def fallback(cls, raw_summary: str) -> Enrichment:
        """Neutral enrichment that keeps the source summary untouched."""
        return cls.model_construct(
            summary=raw_summary,
            sentiment=0,
            topics=list(FALLBACK_TOPICS),
        )


class Extracted(BaseModel):
    kind: Literal["extracted"] = "extracted"
    enrichment: Enrichment


class ExtractionFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str


ExtractionResult = Extracted | ExtractionFailed


def enrichment_or_fallback(result: ExtractionResult, raw_summary: str) -> Enrichment:
    """Unwrap an extraction result, substituting the fallback on failure."""
    if isinstance(result, Extracted):
        return result.enrichment
    return Enrichment.fallback(raw_summary)


class Explanation(BaseModel):
    """Deep-analysis payload cached on an article."""

    model_config = ConfigDict(populate_by_name=True)

    bullets: list[str] = Field(min_length=1)
    short_term_impact: str = Field(alias="shortTermImpact", min_length=1)
    long_term_impact: str = Field(alias="longTermImpact", min_length=1)

    @field_validator("bullets", mode="before")
    @classmethod
    def _drop_blank_bullets(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [b.strip() for b in v if isinstance(b, str) and b.strip()]
        return v


class Article(BaseModel):
    article_id: str
    title: str
    source: str = ""
    category: str = ""
    url: str = ""
    summary: str = ""
    sentiment: Sentiment = 0
    topics: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    explanation: Explanation | None = None


class TopicStat(BaseModel):
    key: str  # normalised storage key, e.g. "federal-reserve"
    topic: str
    frequency: int = 0
    last_updated: datetime | None = None


class MarketPulse(BaseModel):
    score: float
    label: PulseLabel
    based_on_count: int
    updated_at: datetime | None = None


class IpoHeat(BaseModel):
    frequency: int = 0
    level: Literal["Low", "Medium", "High"] = "Low"
    last_updated: datetime | None = None


class RunReport(BaseModel):
    """Outcome of one ingestion run."""

    fetched: int = 0
    new: int = 0
    enrichment_failures: int = 0
    topic_increments: dict[str, int] = Field(default_factory=dict)
    ipo_mentions: int = 0
    pulse: MarketPulse | None = None
    committed: bool = False
    error: str = ""
