"""Derived aggregates: per-topic counters and the market-pulse singleton."""

from __future__ import annotations

import logging
import re

from finpulse.models import IpoHeat, MarketPulse, TopicStat
from finpulse.store import Database, WriteBatch

logger = logging.getLogger(__name__)

IPO_HEAT_KEY = "ipo-heat"
IPO_HEAT_LABEL = "IPO Heat"
PULSE_KEY = "latest"

_NON_ALNUM_RE = re.compile(r"[\W_]+")

# IPO heat intensity thresholds (strictly greater than).
_HEAT_HIGH = 10
_HEAT_MEDIUM = 5


def topic_key(topic: str) -> str:
    """Normalise a display topic into its storage key.

    ``"S&P 500"`` → ``"s-p-500"``; non-ASCII letters are kept, so
    ``"日本銀行"`` stays as is. Returns ``""`` when nothing alphanumeric
    is left. A topic that would land on the reserved IPO key is moved aside
    so only the run-level IPO count ever feeds that counter.
    """
    key = _NON_ALNUM_RE.sub("-", topic.lower()).strip("-")
    if key == IPO_HEAT_KEY:
        return f"{key}-topic"
    return key


def heat_level(frequency: int) -> str:
    if frequency > _HEAT_HIGH:
        return "High"
    if frequency > _HEAT_MEDIUM:
        return "Medium"
    return "Low"


class AggregateStore:
    """Topic counters and the market pulse.

    Writes go through a :class:`WriteBatch`. When none is given, a
    one-write batch is created and committed on the spot.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ── writes ──────────────────────────────────────────────────────────

    def increment_topic(
        self,
        key: str,
        display_name: str,
        amount: int = 1,
        batch: WriteBatch | None = None,
    ) -> None:
        own = batch is None
        if batch is None:
            batch = self._db.batch()
        batch.increment_topic(key, display_name, amount)
        if own:
            batch.commit()

    def set_market_pulse(
        self,
        score: float,
        label: str,
        count: int,
        batch: WriteBatch | None = None,
    ) -> None:
        own = batch is None
        if batch is None:
            batch = self._db.batch()
        batch.set_market_pulse(PULSE_KEY, score, label, count)
        if own:
            batch.commit()

    # ── reads ───────────────────────────────────────────────────────────

    def get_topic(self, key: str) -> TopicStat | None:
        con = self._db.connect()
        try:
            row = con.execute(
                "SELECT key, topic, frequency, last_updated FROM topic_stats WHERE key = ?",
                (key,),
            ).fetchone()
        finally:
            con.close()
        if row is None:
            return None
        return TopicStat(
            key=row["key"],
            topic=row["topic"],
            frequency=row["frequency"],
            last_updated=row["last_updated"],
        )

    def trending_topics(self, limit: int = 10) -> list[TopicStat]:
        """Most frequent topics, leaving out the IPO counter and IPO topics."""
        con = self._db.connect()
        try:
            rows = con.execute(
                """
                SELECT key, topic, frequency, last_updated FROM topic_stats
                WHERE key != ? AND instr(lower(topic), 'ipo') = 0
                ORDER BY frequency DESC, last_updated DESC
                LIMIT ?
                """,
                (IPO_HEAT_KEY, limit),
            ).fetchall()
        finally:
            con.close()
        return [
            TopicStat(
                key=r["key"],
                topic=r["topic"],
                frequency=r["frequency"],
                last_updated=r["last_updated"],
            )
            for r in rows
        ]

    def ipo_heat(self) -> IpoHeat:
        stat = self.get_topic(IPO_HEAT_KEY)
        if stat is None:
            return IpoHeat()
        return IpoHeat(
            frequency=stat.frequency,
            level=heat_level(stat.frequency),
            last_updated=stat.last_updated,
        )

    def market_pulse(self) -> MarketPulse | None:
        con = self._db.connect()
        try:
            row = con.execute(
                "SELECT score, label, based_on_count, updated_at FROM market_pulse WHERE key = ?",
                (PULSE_KEY,),
            ).fetchone()
        finally:
            con.close()
        if row is None:
            return None
        return MarketPulse(
            score=row["score"],
            label=row["label"],
            based_on_count=row["based_on_count"],
            updated_at=row["updated_at"],
        )
