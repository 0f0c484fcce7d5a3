"""Pipeline orchestration — wires fetch → dedupe → enrich → aggregate → commit."""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable

from finpulse import config
from finpulse.aggregates import IPO_HEAT_KEY, IPO_HEAT_LABEL, AggregateStore
from finpulse.dedupe import dedupe
from finpulse.extractor import StructuredExtractor
from finpulse.finnhub_client import FinnhubClient
from finpulse.llm import LLMClient
from finpulse.models import (
    Enrichment,
    ExtractionFailed,
    ExtractionResult,
    RawNewsItem,
    RunReport,
    enrichment_or_fallback,
)
from finpulse.signals import count_ipo_mentions, market_pulse, tally_topics
from finpulse.sources import load_categories
from finpulse.store import ArticleStore, BatchConflict, Database, StoreError, WriteBatch

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def run_ingestion(
    *,
    client: FinnhubClient,
    extractor: StructuredExtractor,
    db: Database,
    categories: dict[str, int],
    dry_run: bool = False,
) -> RunReport:
    """Execute one ingestion run and report what it did.

    All article, topic and pulse writes of the run go out in one batch; if
    that commit fails nothing is persisted and the same feed items are
    picked up again next run.
    """
    report = RunReport()
    articles = ArticleStore(db)
    aggregates = AggregateStore(db)

    # ── 1. Fetch (per-category failures come back empty) ──────────────
    results = client.fetch_all_categories(categories)
    candidates: list[RawNewsItem] = []
    for category, items in results.items():
        logger.info("  [%s] fetched %d items", category, len(items))
        candidates.extend(items)
    report.fetched = len(candidates)
    logger.info("Total fetched: %d", report.fetched)

    if not candidates:
        logger.warning("No news fetched — nothing to do.")
        return report

    # ── 2. Dedupe against stored article ids ──────────────────────────
    new_items = dedupe(candidates, articles)
    report.new = len(new_items)
    if not new_items:
        logger.info("All items already ingested — nothing new this run.")
        return report

    # ── 3. Enrich ─────────────────────────────────────────────────────
    pairs: list[tuple[RawNewsItem, Enrichment]] = []
    for item in new_items:
        result = _extract(extractor, item)
        if isinstance(result, ExtractionFailed):
            report.enrichment_failures += 1
        pairs.append((item, enrichment_or_fallback(result, item.summary)))
    if report.enrichment_failures:
        logger.warning(
            "%d of %d articles fell back to raw summaries",
            report.enrichment_failures,
            len(pairs),
        )

    # ── 4. Aggregate into one batch, 5. commit ────────────────────────
    while True:
        batch = _queue_writes(db, aggregates, pairs, report)

        if dry_run:
            logger.info("Dry-run mode — %d writes not committed.", len(batch))
            for item, enrichment in pairs[:10]:
                logger.info(
                    "  [%+d] %s — %s", enrichment.sentiment, item.headline[:80], ", ".join(enrichment.topics)
                )
            return report

        try:
            committed_at = batch.commit()
        except BatchConflict as exc:
            # Drop what an overlapping run stored and rebuild from the rest.
            logger.warning("%s; rebuilding batch without them", exc)
            pairs = [(i, e) for i, e in pairs if i.article_id not in exc.article_ids]
            report.new = len(pairs)
            if not pairs:
                logger.info("Every new item was stored by an overlapping run.")
                report.topic_increments = {}
                report.pulse = None
                report.ipo_mentions = 0
                return report
            continue
        except StoreError as exc:
            logger.exception("Commit failed — run discarded, will retry next tick")
            report.error = str(exc)
            return report
        break

    report.committed = True
    pulse = report.pulse
    if pulse is not None:
        pulse.updated_at = committed_at
    logger.info(
        "Stored %d new articles, %d topic updates, %d IPO mentions, pulse=%s",
        report.new,
        len(report.topic_increments),
        report.ipo_mentions,
        f"{pulse.score:.3f} ({pulse.label})" if pulse else "unchanged",
    )
    return report


def _queue_writes(
    db: Database,
    aggregates: AggregateStore,
    pairs: list[tuple[RawNewsItem, Enrichment]],
    report: RunReport,
) -> WriteBatch:
    """Build the run's batch from *pairs* and record its totals on *report*."""
    batch = db.batch()
    for item, enrichment in pairs:
        batch.create_article(item, enrichment)

    report.topic_increments = {}
    for key, (display, amount) in tally_topics(e for _, e in pairs).items():
        aggregates.increment_topic(key, display, amount, batch=batch)
        report.topic_increments[key] = amount

    report.pulse = market_pulse([e.sentiment for _, e in pairs])
    if report.pulse is not None:
        aggregates.set_market_pulse(
            report.pulse.score, report.pulse.label, report.pulse.based_on_count, batch=batch
        )

    report.ipo_mentions = count_ipo_mentions(pairs)
    if report.ipo_mentions > 0:
        aggregates.increment_topic(
            IPO_HEAT_KEY, IPO_HEAT_LABEL, report.ipo_mentions, batch=batch
        )
    return batch


def _extract(extractor: StructuredExtractor, item: RawNewsItem) -> ExtractionResult:
    try:
        return extractor.extract(item.headline, item.summary)
    except Exception as exc:
        logger.exception("Unexpected extraction error for article %s", item.article_id)
        return ExtractionFailed(reason=f"unexpected error: {exc}")


# ── Wiring from config ─────────────────────────────────────────────────────


def build_llm() -> LLMClient:
    return LLMClient(
        provider=config.LLM_PROVIDER,
        api_key=config.LLM_API_KEY,
        model=config.LLM_MODEL,
        timeout=config.LLM_TIMEOUT,
    )


def build_database() -> Database:
    return Database(db_path=config.DB_PATH)


def run_pipeline(dry_run: bool = False) -> RunReport:
    """Execute one run using clients built from configuration."""
    logger.info("=== finpulse ingestion start ===")
    report = run_ingestion(
        client=FinnhubClient(
            api_key=config.FINNHUB_API_KEY,
            base_url=config.FINNHUB_BASE_URL,
            timeout=config.HTTP_TIMEOUT,
        ),
        extractor=StructuredExtractor(
            build_llm(),
            temperature=config.EXTRACT_TEMPERATURE,
            language=config.TARGET_LANGUAGE,
        ),
        db=build_database(),
        categories=load_categories(config.FEEDS_FILE, config.PER_CATEGORY),
        dry_run=dry_run,
    )
    logger.info(
        "=== finpulse ingestion done — fetched=%d new=%d committed=%s ===",
        report.fetched,
        report.new,
        report.committed,
    )
    return report


def run_schedule(
    run_once: Callable[[], object] = run_pipeline,
    interval: float = config.INTERVAL_SECONDS,
    max_runs: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call *run_once* every *interval* seconds; return the number of runs.

    A run that raises is logged and the loop carries on.
    """
    runs = 0
    while max_runs is None or runs < max_runs:
        started = time.monotonic()
        try:
            run_once()
        except Exception:
            logger.exception("Scheduled run failed")
        runs += 1
        if max_runs is not None and runs >= max_runs:
            break
        sleep(max(0.0, interval - (time.monotonic() - started)))
    return runs
