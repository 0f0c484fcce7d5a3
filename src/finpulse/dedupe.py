"""Deduplication logic — drop feed items already stored in a prior run."""

from __future__ import annotations

import logging

from finpulse.models import RawNewsItem
from finpulse.store import ArticleStore

logger = logging.getLogger(__name__)


def dedupe(items: list[RawNewsItem], store: ArticleStore) -> list[RawNewsItem]:
    """Return only items whose article id is not already in the store.

    The same id showing up under two categories in one run is kept once.
    """
    seen = store.existing_ids(item.article_id for item in items)
    new_items: list[RawNewsItem] = []
    for item in items:
        if item.article_id in seen:
            continue
        seen.add(item.article_id)
        new_items.append(item)
    logger.info(
        "Dedupe: %d total → %d new (filtered %d seen)",
        len(items),
        len(new_items),
        len(items) - len(new_items),
    )
    return new_items
