"""CLI entry-point: ``python -m finpulse run|schedule|explain|status``."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from finpulse import config
from finpulse.aggregates import AggregateStore
from finpulse.explain import ExplainError, ExplanationService, explain_trend
from finpulse.pipeline import (
    build_database,
    build_llm,
    run_pipeline,
    run_schedule,
    setup_logging,
)
from finpulse.store import ArticleStore

logger = logging.getLogger(__name__)


def _explain(article_id: str, text: str | None, user: str | None) -> None:
    db = build_database()
    articles = ArticleStore(db)
    if text is None:
        article = articles.get(article_id)
        text = article.summary if article else ""

    service = ExplanationService(
        build_llm(),
        articles,
        temperature=config.EXPLAIN_TEMPERATURE,
        language=config.TARGET_LANGUAGE,
    )
    try:
        result = explain_trend(
            service, {"articleId": article_id, "textToExplain": text}, caller_uid=user
        )
    except ExplainError as exc:
        print(json.dumps({"error": exc.to_dict()}, indent=2))
        sys.exit(1)
    print(json.dumps(result, indent=2, ensure_ascii=False))


def _status(limit: int) -> None:
    db = build_database()
    aggregates = AggregateStore(db)

    pulse = aggregates.market_pulse()
    if pulse is None:
        print("Market pulse: (no data yet)")
    else:
        print(
            f"Market pulse: {pulse.label} ({pulse.score:+.3f}) "
            f"from {pulse.based_on_count} articles at {pulse.updated_at}"
        )

    heat = aggregates.ipo_heat()
    print(f"IPO heat: {heat.frequency} mentions — {heat.level}")

    print("\nTrending topics:")
    for stat in aggregates.trending_topics(limit):
        print(f"  {stat.frequency:>5}  {stat.topic}")

    print("\nLatest articles:")
    for article in ArticleStore(db).recent(limit):
        marker = {1: "▲", -1: "▼"}.get(article.sentiment, "■")
        print(f"  {marker} [{article.category}] {article.title} ({article.source})")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="finpulse",
        description="AI-enriched financial news ingestion and market signals.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── run ────────────────────────────────────────────────────────────
    run_parser = sub.add_parser("run", help="Execute one ingestion run.")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch, dedupe and enrich but commit nothing.",
    )

    # ── schedule ───────────────────────────────────────────────────────
    schedule_parser = sub.add_parser(
        "schedule", help="Run ingestion every FINPULSE_INTERVAL_SECONDS (hourly)."
    )
    schedule_parser.add_argument(
        "--max-runs",
        type=int,
        default=None,
        help="Stop after this many runs (default: run forever).",
    )

    # ── explain ────────────────────────────────────────────────────────
    explain_parser = sub.add_parser("explain", help="Explain one stored article.")
    explain_parser.add_argument("article_id", help="Feed article id.")
    explain_parser.add_argument(
        "--text",
        default=None,
        help="Text to analyse (default: the stored summary).",
    )
    explain_parser.add_argument("--user", default=None, help="Authenticated caller id.")

    # ── status ─────────────────────────────────────────────────────────
    status_parser = sub.add_parser("status", help="Print the dashboard signals.")
    status_parser.add_argument("--limit", type=int, default=10)

    args = parser.parse_args(argv)
    setup_logging()

    if args.command == "run":
        report = run_pipeline(dry_run=args.dry_run)
        if report.error:
            sys.exit(1)
    elif args.command == "schedule":
        run_schedule(interval=config.INTERVAL_SECONDS, max_runs=args.max_runs)
    elif args.command == "explain":
        _explain(args.article_id, args.text, args.user)
    elif args.command == "status":
        _status(args.limit)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
