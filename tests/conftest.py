"""Shared fixtures: a throwaway database and fake AI / feed clients."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import Mock

import pytest

from finpulse.finnhub_client import FinnhubClient
from finpulse.llm import LLMClient
from finpulse.models import RawNewsItem
from finpulse.store import Database

FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "finpulse.sqlite3", clock=lambda: FIXED_NOW)


@pytest.fixture
def make_llm() -> Callable[..., tuple[LLMClient, Mock]]:
    """Build an LLMClient over a mocked OpenAI client.

    Each reply is either a dict (sent back as JSON), a raw string, or an
    exception to raise.
    """

    def _factory(*replies: Any) -> tuple[LLMClient, Mock]:
        openai_client = Mock()
        effects: list[Any] = []
        for reply in replies:
            if isinstance(reply, BaseException):
                effects.append(reply)
            elif isinstance(reply, dict):
                effects.append(_completion(json.dumps(reply)))
            else:
                effects.append(_completion(reply))
        openai_client.chat.completions.create.side_effect = effects
        llm = LLMClient(provider="openai", api_key="test-key", model="test-model", client=openai_client)
        return llm, openai_client

    return _factory


@pytest.fixture
def make_item() -> Callable[..., RawNewsItem]:
    def _factory(
        article_id: str,
        headline: str = "Markets drift higher",
        summary: str = "Stocks edged up in quiet trading.",
        category: str = "general",
    ) -> RawNewsItem:
        return RawNewsItem(
            article_id=article_id,
            headline=headline,
            summary=summary,
            source="Reuters",
            category=category,
            url=f"https://example.com/{article_id}",
        )

    return _factory


@pytest.fixture
def make_feed() -> Callable[..., Mock]:
    """A FinnhubClient stand-in returning the given items under 'general'."""

    def _factory(items: list[RawNewsItem]) -> Mock:
        feed = Mock(spec=FinnhubClient)
        feed.fetch_all_categories.return_value = {"general": list(items)}
        return feed

    return _factory
