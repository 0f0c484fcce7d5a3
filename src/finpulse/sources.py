"""Load the feed-category configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Finnhub market-news categories, in fetch order.
CATEGORIES: tuple[str, ...] = ("general", "crypto", "forex", "merger")

_MIN_CAP = 1
_MAX_CAP = 50


def _clamp(cap: int) -> int:
    return min(max(cap, _MIN_CAP), _MAX_CAP)


def default_categories(per_category: int) -> dict[str, int]:
    """Every known category with the same item cap."""
    return {name: _clamp(per_category) for name in CATEGORIES}


def load_categories(path: str | Path, per_category: int = 10) -> dict[str, int]:
    """Return ``{category: cap}`` from *path*, or the defaults if it is absent.

    The file looks like::

        categories:
          general: 10
          crypto: 5

    A category given without a number (``- crypto`` list form or ``crypto:``)
    gets *per_category*.
    """
    p = Path(path)
    if not p.exists():
        logger.info("Feeds file not found, using defaults: %s", p)
        return default_categories(per_category)

    with open(p, encoding="utf-8") as fh:
        data: dict[str, Any] = yaml.safe_load(fh) or {}

    raw = data.get("categories")
    if isinstance(raw, list):
        raw = {name: None for name in raw}
    if not isinstance(raw, dict) or not raw:
        logger.warning("No categories in %s, using defaults", p)
        return default_categories(per_category)

    categories: dict[str, int] = {}
    for name, cap in raw.items():
        key = str(name).strip().lower()
        if key not in CATEGORIES:
            logger.warning("Unknown feed category '%s' in %s, skipping", name, p)
            continue
        categories[key] = _clamp(int(cap) if cap is not None else per_category)

    if not categories:
        logger.warning("No usable categories in %s, using defaults", p)
        return default_categories(per_category)
    return categories
