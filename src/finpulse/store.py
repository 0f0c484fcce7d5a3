"""SQLite-backed article store and the atomic write batch used by each run."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from finpulse.models import Article, Enrichment, Explanation, RawNewsItem

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    article_id  TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    source      TEXT NOT NULL DEFAULT '',
    category    TEXT NOT NULL DEFAULT '',
    url         TEXT NOT NULL DEFAULT '',
    summary     TEXT NOT NULL DEFAULT '',
    sentiment   INTEGER NOT NULL DEFAULT 0,
    topics      TEXT NOT NULL DEFAULT '[]',
    created_at  TEXT NOT NULL,
    explanation TEXT
);
CREATE INDEX IF NOT EXISTS idx_articles_created_at ON articles (created_at);

CREATE TABLE IF NOT EXISTS topic_stats (
    key          TEXT PRIMARY KEY,
    topic        TEXT NOT NULL,
    frequency    INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS market_pulse (
    key            TEXT PRIMARY KEY,
    score          REAL NOT NULL,
    label          TEXT NOT NULL,
    based_on_count INTEGER NOT NULL,
    updated_at     TEXT NOT NULL
);
"""

# SQLite caps bound parameters per statement; stay well below it.
_IN_CHUNK = 500

Clock = Callable[[], datetime]


class StoreError(Exception):
    """Raised when a batch cannot be committed."""


class BatchConflict(StoreError):
    """Another writer stored some of the batch's articles first."""

    def __init__(self, article_ids: set[str]) -> None:
        super().__init__(f"{len(article_ids)} article(s) already stored: {sorted(article_ids)}")
        self.article_ids = article_ids


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Database:
    """Owns the SQLite file and hands out connections and batches."""

    def __init__(self, db_path: Path, clock: Clock = _utcnow) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._clock = clock
        self._init_db()

    @property
    def path(self) -> Path:
        return self._db_path

    def now(self) -> datetime:
        return self._clock()

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self._db_path), timeout=30)
        con.row_factory = sqlite3.Row
        return con

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _init_db(self) -> None:
        con = self.connect()
        try:
            con.executescript(_SCHEMA)
        finally:
            con.close()


class WriteBatch:
    """Queued writes applied in a single transaction.

    Nothing touches the database until :meth:`commit`. Every write in the
    batch shares one server timestamp, taken at commit time.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._ops: list[tuple[str, Callable[[datetime], tuple[Any, ...]]]] = []
        self._article_ids: list[str] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def create_article(self, item: RawNewsItem, enrichment: Enrichment) -> None:
        """Insert-if-absent; an existing row with the same id is left alone."""
        self._article_ids.append(item.article_id)
        self._ops.append(
            (
                """
                INSERT OR IGNORE INTO articles
                    (article_id, title, source, category, url, summary,
                     sentiment, topics, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                lambda now: (
                    item.article_id,
                    item.headline,
                    item.source,
                    item.category,
                    item.url,
                    enrichment.summary,
                    enrichment.sentiment,
                    json.dumps(enrichment.topics),
                    now.isoformat(),
                ),
            )
        )

    def increment_topic(self, key: str, display_name: str, amount: int) -> None:
        """Add *amount* to a topic counter, creating it at *amount* if new."""
        if amount <= 0:
            raise ValueError(f"topic increment must be positive, got {amount}")
        self._ops.append(
            (
                """
                INSERT INTO topic_stats (key, topic, frequency, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    topic        = excluded.topic,
                    frequency    = topic_stats.frequency + excluded.frequency,
                    last_updated = excluded.last_updated
                """,
                lambda now: (key, display_name, amount, now.isoformat()),
            )
        )

    def set_market_pulse(self, key: str, score: float, label: str, count: int) -> None:
        """Overwrite the pulse record stored under *key*."""
        self._ops.append(
            (
                """
                INSERT OR REPLACE INTO market_pulse
                    (key, score, label, based_on_count, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                lambda now: (key, score, label, count, now.isoformat()),
            )
        )

    def commit(self) -> datetime:
        """Apply every queued write, or none of them. Returns the commit time.

        Raises :class:`BatchConflict`, writing nothing, if any queued article
        was stored by someone else since it was deduped.
        """
        if self._committed:
            raise StoreError("batch already committed")

        now = self._db.now()
        con = self._db.connect()
        try:
            with con:
                con.execute("BEGIN IMMEDIATE")
                taken = _existing_ids(con, self._article_ids)
                if taken:
                    raise BatchConflict(taken)
                for sql, params in self._ops:
                    con.execute(sql, params(now))
        except sqlite3.Error as exc:
            raise StoreError(f"batch of {len(self._ops)} writes rolled back: {exc}") from exc
        finally:
            con.close()

        self._committed = True
        logger.debug("Committed batch of %d writes", len(self._ops))
        return now


class ArticleStore:
    """Articles keyed by the feed's own article id."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ── public ──────────────────────────────────────────────────────────

    def exists(self, article_id: str) -> bool:
        return bool(self.existing_ids([article_id]))

    def existing_ids(self, article_ids: Iterable[str]) -> set[str]:
        """Return the subset of *article_ids* already stored."""
        con = self._db.connect()
        try:
            return _existing_ids(con, article_ids)
        finally:
            con.close()

    def get(self, article_id: str) -> Article | None:
        con = self._db.connect()
        try:
            row = con.execute(
                "SELECT * FROM articles WHERE article_id = ?", (article_id,)
            ).fetchone()
        finally:
            con.close()
        return _row_to_article(row) if row else None

    def recent(self, limit: int = 10) -> list[Article]:
        """Newest articles first."""
        con = self._db.connect()
        try:
            rows = con.execute(
                "SELECT * FROM articles ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            con.close()
        return [_row_to_article(r) for r in rows]

    def count(self) -> int:
        con = self._db.connect()
        try:
            return con.execute("SELECT COUNT(*) FROM articles").fetchone()[0]  # type: ignore[no-any-return]
        finally:
            con.close()

    def set_explanation(self, article_id: str, explanation: Explanation) -> bool:
        """Store *explanation* on the article; False if the article is unknown."""
        payload = json.dumps(explanation.model_dump(by_alias=True))
        con = self._db.connect()
        try:
            with con:
                cur = con.execute(
                    "UPDATE articles SET explanation = ? WHERE article_id = ?",
                    (payload, article_id),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"could not store explanation for {article_id}: {exc}") from exc
        finally:
            con.close()
        return cur.rowcount > 0


def _existing_ids(con: sqlite3.Connection, article_ids: Iterable[str]) -> set[str]:
    ids = list(dict.fromkeys(article_ids))
    found: set[str] = set()
    for start in range(0, len(ids), _IN_CHUNK):
        chunk = ids[start : start + _IN_CHUNK]
        marks = ", ".join("?" for _ in chunk)
        cur = con.execute(
            f"SELECT article_id FROM articles WHERE article_id IN ({marks})",
            chunk,
        )
        found.update(row[0] for row in cur.fetchall())
    return found


def _read_explanation(row: sqlite3.Row) -> Explanation | None:
    """Decode the cached explanation; an unreadable one counts as absent."""
    if not row["explanation"]:
        return None
    try:
        return Explanation.model_validate(json.loads(row["explanation"]))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Unreadable cached explanation on article %s; ignoring it", row["article_id"])
        return None


def _row_to_article(row: sqlite3.Row) -> Article:
    explanation = _read_explanation(row)
    return Article(
        article_id=row["article_id"],
        title=row["title"],
        source=row["source"],
        category=row["category"],
        url=row["url"],
        summary=row["summary"],
        sentiment=row["sentiment"],
        topics=json.loads(row["topics"]),
        created_at=row["created_at"],
        explanation=explanation,
    )
