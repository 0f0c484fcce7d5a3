"""Minimal Finnhub market-news client (read-only)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import requests

from finpulse.models import RawNewsItem

logger = logging.getLogger(__name__)

_NEWS_PATH = "/news"


class FinnhubError(Exception):
    """Raised when Finnhub returns an unexpected response."""


class FinnhubClient:
    """Thin wrapper around ``GET /news?category=...``.

    No retries: a failed category is reported to the caller, and the next
    scheduled run is the retry.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://finnhub.io/api/v1",
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("FINNHUB_API_KEY is required but was empty.")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"X-Finnhub-Token": api_key})

    # ── public ──────────────────────────────────────────────────────────
    def fetch_category(self, category: str, limit: int) -> list[RawNewsItem]:
        """Fetch the newest *limit* items for one category."""
        data = self._get({"category": category})
        if not isinstance(data, list):
            raise FinnhubError(f"Expected a list for category '{category}', got {type(data).__name__}")

        items: list[RawNewsItem] = []
        for raw in data:
            if len(items) >= limit:
                break
            item = _parse_item(raw, category)
            if item is not None:
                items.append(item)

        logger.info("Fetched %d items for category: %s", len(items), category)
        return items

    def fetch_all_categories(
        self, categories: dict[str, int]
    ) -> dict[str, list[RawNewsItem]]:
        """Fetch every category, keyed by name.

        A category that fails is logged and comes back empty; the others
        still run.
        """
        results: dict[str, list[RawNewsItem]] = {}
        for category, limit in categories.items():
            try:
                results[category] = self.fetch_category(category, limit)
            except (requests.RequestException, FinnhubError, ValueError, OverflowError):
                logger.exception("Fetch failed for category '%s'; treating as empty", category)
                results[category] = []
        return results

    # ── private ─────────────────────────────────────────────────────────
    def _get(self, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{_NEWS_PATH}"
        resp = self._session.get(url, params=params, timeout=self._timeout)
        if resp.status_code != 200:
            raise FinnhubError(
                f"Finnhub returned {resp.status_code}: {resp.text[:500]}"
            )
        return resp.json()


def _parse_item(raw: Any, requested_category: str) -> RawNewsItem | None:
    if not isinstance(raw, dict):
        logger.warning("Skipping non-object feed item: %r", raw)
        return None
    if raw.get("id") in (None, "") or not raw.get("headline"):
        logger.warning("Skipping feed item without id/headline: %s", raw.get("url", ""))
        return None

    published_at = None
    ts = raw.get("datetime")
    if isinstance(ts, (int, float)) and not isinstance(ts, bool) and ts > 0:
        try:
            published_at = datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError):
            logger.warning("Bad timestamp %r on feed item %s; leaving it unset", ts, raw["id"])

    return RawNewsItem(
        article_id=str(raw["id"]),
        headline=str(raw["headline"]),
        summary=str(raw.get("summary") or ""),
        source=str(raw.get("source") or ""),
        category=str(raw.get("category") or requested_category),
        url=str(raw.get("url") or ""),
        published_at=published_at,
    )
