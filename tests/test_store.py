"""Unit tests for the SQLite stores and the atomic write batch."""

import sqlite3

import pytest

from finpulse.aggregates import IPO_HEAT_KEY, AggregateStore, heat_level, topic_key
from finpulse.models import Enrichment, Explanation
from finpulse.store import ArticleStore, BatchConflict, StoreError


def _enr(sentiment: int = 0, *topics: str) -> Enrichment:
    return Enrichment(summary="AI summary", sentiment=sentiment, topics=list(topics) or ["General"])


def _fail_on_pulse_write(db) -> None:
    con = db.connect()
    con.execute(
        """
        CREATE TRIGGER fail_pulse BEFORE INSERT ON market_pulse
        BEGIN SELECT RAISE(ABORT, 'simulated storage failure'); END
        """
    )
    con.commit()
    con.close()


class TestWriteBatch:
    def test_nothing_written_before_commit(self, db, make_item) -> None:
        batch = db.batch()
        batch.create_article(make_item("1"), _enr())
        assert len(batch) == 1
        assert ArticleStore(db).count() == 0

    def test_commit_writes_everything(self, db, make_item, fixed_now) -> None:
        batch = db.batch()
        batch.create_article(make_item("1"), _enr(1, "Apple"))
        batch.increment_topic("apple", "Apple", 1)
        batch.set_market_pulse("latest", 0.69, "Bullish", 1)
        assert batch.commit() == fixed_now

        article = ArticleStore(db).get("1")
        assert article is not None
        assert article.sentiment == 1
        assert article.topics == ["Apple"]
        assert article.created_at == fixed_now
        assert AggregateStore(db).get_topic("apple").frequency == 1

    def test_failure_rolls_back_whole_batch(self, db, make_item) -> None:
        _fail_on_pulse_write(db)
        batch = db.batch()
        batch.create_article(make_item("1"), _enr())
        batch.increment_topic("general", "General", 1)
        batch.set_market_pulse("latest", 0.0, "Neutral", 1)

        with pytest.raises(StoreError):
            batch.commit()

        assert ArticleStore(db).count() == 0
        assert AggregateStore(db).get_topic("general") is None

    def test_batch_commits_once(self, db) -> None:
        batch = db.batch()
        batch.commit()
        with pytest.raises(StoreError):
            batch.commit()

    def test_non_positive_increment_rejected(self, db) -> None:
        with pytest.raises(ValueError):
            db.batch().increment_topic("apple", "Apple", 0)

    def test_existing_article_not_overwritten(self, db, make_item) -> None:
        first = db.batch()
        first.create_article(make_item("1", headline="Original"), _enr(1))
        first.commit()

        second = db.batch()
        second.create_article(make_item("1", headline="Rewritten"), _enr(-1))
        with pytest.raises(BatchConflict):
            second.commit()

        article = ArticleStore(db).get("1")
        assert article.title == "Original"
        assert article.sentiment == 1

    def test_conflict_writes_nothing(self, db, make_item) -> None:
        late = db.batch()
        late.create_article(make_item("1"), _enr(-1, "Apple"))
        late.create_article(make_item("2"), _enr(-1, "Oil"))
        late.increment_topic("apple", "Apple", 1)
        late.set_market_pulse("latest", -0.5, "Bearish", 2)

        early = db.batch()
        early.create_article(make_item("1"), _enr(1, "Apple"))
        early.increment_topic("apple", "Apple", 1)
        early.commit()

        with pytest.raises(BatchConflict) as exc_info:
            late.commit()

        assert exc_info.value.article_ids == {"1"}
        assert isinstance(exc_info.value, StoreError)
        store = ArticleStore(db)
        assert not store.exists("2")
        assert store.get("1").sentiment == 1
        agg = AggregateStore(db)
        assert agg.get_topic("apple").frequency == 1
        assert agg.market_pulse() is None


class TestArticleStore:
    def test_existing_ids(self, db, make_item) -> None:
        batch = db.batch()
        batch.create_article(make_item("1"), _enr())
        batch.create_article(make_item("2"), _enr())
        batch.commit()

        store = ArticleStore(db)
        assert store.existing_ids(["1", "2", "3"]) == {"1", "2"}
        assert store.exists("1")
        assert not store.exists("3")
        assert store.existing_ids([]) == set()

    def test_explanation_round_trip(self, db, make_item) -> None:
        batch = db.batch()
        batch.create_article(make_item("7"), _enr())
        batch.commit()

        store = ArticleStore(db)
        assert store.get("7").explanation is None

        expl = Explanation(bullets=["One"], shortTermImpact="Up", longTermImpact="Flat")
        assert store.set_explanation("7", expl)
        assert store.get("7").explanation == expl

    def test_corrupt_explanation_reads_as_absent(self, db, make_item) -> None:
        batch = db.batch()
        batch.create_article(make_item("7"), _enr())
        batch.commit()
        con = db.connect()
        con.execute("UPDATE articles SET explanation = '{not json' WHERE article_id = '7'")
        con.commit()
        con.close()

        assert ArticleStore(db).get("7").explanation is None

    def test_explanation_for_unknown_article(self, db) -> None:
        expl = Explanation(bullets=["One"], shortTermImpact="Up", longTermImpact="Flat")
        assert not ArticleStore(db).set_explanation("missing", expl)

    def test_recent_newest_first(self, db, make_item) -> None:
        for article_id in ("a", "b"):
            batch = db.batch()
            batch.create_article(make_item(article_id), _enr())
            batch.commit()
        assert [a.article_id for a in ArticleStore(db).recent(5)] == ["b", "a"]


class TestAggregateStore:
    def test_increment_is_additive(self, db) -> None:
        agg = AggregateStore(db)
        agg.increment_topic("apple", "Apple", 2)
        agg.increment_topic("apple", "Apple", 3)
        assert agg.get_topic("apple").frequency == 5

    def test_same_key_twice_in_one_batch(self, db, fixed_now) -> None:
        agg = AggregateStore(db)
        batch = db.batch()
        agg.increment_topic("apple", "Apple", 1, batch=batch)
        agg.increment_topic("apple", "apple", 1, batch=batch)
        batch.commit()
        stat = agg.get_topic("apple")
        assert stat.frequency == 2
        assert stat.last_updated == fixed_now

    def test_market_pulse_overwritten(self, db) -> None:
        agg = AggregateStore(db)
        assert agg.market_pulse() is None
        agg.set_market_pulse(0.9, "Bullish", 3)
        agg.set_market_pulse(-0.1, "Neutral", 2)
        pulse = agg.market_pulse()
        assert pulse.score == pytest.approx(-0.1)
        assert pulse.label == "Neutral"
        assert pulse.based_on_count == 2

    def test_trending_excludes_ipo(self, db) -> None:
        agg = AggregateStore(db)
        agg.increment_topic("apple", "Apple", 3)
        agg.increment_topic("oil", "Oil", 5)
        agg.increment_topic("ipos", "IPOs", 9)
        agg.increment_topic(IPO_HEAT_KEY, "IPO Heat", 12)
        assert [t.key for t in agg.trending_topics(10)] == ["oil", "apple"]
        assert [t.key for t in agg.trending_topics(1)] == ["oil"]

    def test_ipo_heat(self, db) -> None:
        agg = AggregateStore(db)
        assert agg.ipo_heat().frequency == 0
        agg.increment_topic(IPO_HEAT_KEY, "IPO Heat", 6)
        heat = agg.ipo_heat()
        assert heat.frequency == 6
        assert heat.level == "Medium"


class TestTopicKey:
    def test_normalises(self) -> None:
        assert topic_key("Federal Reserve") == "federal-reserve"
        assert topic_key("  S&P 500!! ") == "s-p-500"
        assert topic_key("???") == ""

    def test_non_ascii_letters_kept(self) -> None:
        assert topic_key("日本銀行") == "日本銀行"
        assert topic_key("Société Générale") == "société-générale"
        assert topic_key("Banco do Brasil_SA") == "banco-do-brasil-sa"

    def test_reserved_key_moved_aside(self) -> None:
        assert topic_key("IPO Heat") == "ipo-heat-topic"

    def test_heat_levels(self) -> None:
        assert heat_level(5) == "Low"
        assert heat_level(6) == "Medium"
        assert heat_level(10) == "Medium"
        assert heat_level(11) == "High"


def test_sqlite_error_is_wrapped(db) -> None:
    _fail_on_pulse_write(db)
    batch = db.batch()
    batch.set_market_pulse("latest", 0.0, "Neutral", 1)
    with pytest.raises(StoreError) as excinfo:
        batch.commit()
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
