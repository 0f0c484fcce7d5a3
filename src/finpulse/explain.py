"""On-demand "explain this trend" analysis, cached on the article record."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from pydantic import ValidationError

from finpulse.llm import LLMClient, LLMError
from finpulse.models import Explanation
from finpulse.store import ArticleStore, StoreError

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
INVALID_ARGUMENT = "invalid-argument"
INTERNAL = "internal"

_SYSTEM_PROMPT = (
    "You are a senior financial advisor explaining a market news item to a "
    "retail investor. Return JSON ONLY, strictly matching this schema:\n"
    "{\n"
    '  "bullets": ["3-5 short key takeaways"],\n'
    '  "shortTermImpact": "likely market impact over the coming days or weeks",\n'
    '  "longTermImpact": "likely impact over the coming months or years"\n'
    "}\n"
    "Write everything in {language}. Be factual and flag speculation.\n"
    "No markdown, only raw JSON."
)


class ExplainError(Exception):
    """Explanation request failure with a caller-facing error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ExplanationService:
    """Cache-or-compute explanations for single articles."""

    def __init__(
        self,
        llm: LLMClient,
        articles: ArticleStore,
        temperature: float = 0.4,
        language: str = "English",
    ) -> None:
        self._llm = llm
        self._articles = articles
        self._temperature = temperature
        self._system = _SYSTEM_PROMPT.replace("{language}", language)

    def explain(
        self,
        article_id: str,
        text_to_explain: str,
        caller_uid: str | None,
    ) -> Explanation:
        """Return the article's explanation, computing and caching it on a miss.

        Raises :class:`ExplainError` on every failure; nothing is written
        unless the model produced a valid explanation.
        """
        if not caller_uid:
            raise ExplainError(UNAUTHENTICATED, "You must be signed in to explain a trend.")
        if not article_id or not article_id.strip() or not text_to_explain or not text_to_explain.strip():
            raise ExplainError(INVALID_ARGUMENT, "articleId and textToExplain are required.")

        try:
            article = self._articles.get(article_id)
        except sqlite3.Error as exc:
            logger.exception("Could not read article %s", article_id)
            raise ExplainError(INTERNAL, "Could not load the article.") from exc

        if article is not None and article.explanation is not None:
            logger.info("Explanation cache hit for article %s", article_id)
            return article.explanation

        explanation = self._compute(article_id, text_to_explain)

        try:
            stored = self._articles.set_explanation(article_id, explanation)
        except StoreError as exc:
            logger.exception("Could not cache explanation for article %s", article_id)
            raise ExplainError(INTERNAL, "Could not save the explanation.") from exc
        if not stored:
            logger.warning("Article %s not stored; explanation not cached", article_id)
        return explanation

    def _compute(self, article_id: str, text: str) -> Explanation:
        if not self._llm.available:
            raise ExplainError(INTERNAL, "AI analysis is not configured.")
        try:
            data = self._llm.complete_json(self._system, text, self._temperature)
            return Explanation.model_validate(data)
        except LLMError as exc:
            logger.error("Explanation request failed for article %s: %s", article_id, exc)
            raise ExplainError(INTERNAL, "AI analysis failed. Please try again.") from exc
        except ValidationError as exc:
            logger.error(
                "Explanation for article %s did not match schema: %d error(s)",
                article_id,
                exc.error_count(),
            )
            raise ExplainError(INTERNAL, "AI analysis failed. Please try again.") from exc


def explain_trend(
    service: ExplanationService,
    payload: dict[str, Any],
    caller_uid: str | None,
) -> dict[str, Any]:
    """Request/response entry point: ``{articleId, textToExplain}`` in, schema out."""
    if not caller_uid:
        raise ExplainError(UNAUTHENTICATED, "You must be signed in to explain a trend.")
    if not isinstance(payload, dict):
        raise ExplainError(INVALID_ARGUMENT, "Request body must be an object.")
    article_id = payload.get("articleId")
    text = payload.get("textToExplain")
    if isinstance(article_id, bool) or not isinstance(article_id, (str, int)) or not isinstance(text, str):
        raise ExplainError(INVALID_ARGUMENT, "articleId and textToExplain are required.")
    explanation = service.explain(str(article_id), text, caller_uid)
    return explanation.model_dump(by_alias=True)
