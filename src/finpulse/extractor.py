"""Structured extraction — summary, sentiment and topics for one article."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from finpulse.llm import LLMClient, LLMError
from finpulse.models import (
    MAX_TOPICS,
    Enrichment,
    Extracted,
    ExtractionFailed,
    ExtractionResult,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are an expert financial analyst. Analyze the following news article text.\n"
    "Return JSON ONLY, strictly matching this schema:\n"
    "{\n"
    '  "summary": "1-2 sentence concise summary of the actual news event",\n'
    '  "sentiment": -1 for bearish/negative, 0 for neutral, 1 for bullish/positive,\n'
    f'  "topics": ["Keyword1", "Keyword2", "Keyword3"] (at most {MAX_TOPICS} core financial/company topics)\n'
    "}\n"
    "Write the summary and topics in {language}, translating if the article "
    "is in another language.\n"
    "No markdown, no explanation, only raw JSON."
)


class StructuredExtractor:
    """Turns (headline, body) into an :class:`Enrichment`, or says why it could not."""

    def __init__(
        self,
        llm: LLMClient,
        temperature: float = 0.1,
        language: str = "English",
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._system = _SYSTEM_PROMPT.replace("{language}", language)

    def extract(self, headline: str, body: str) -> ExtractionResult:
        """Never raises; failures come back as :class:`ExtractionFailed`."""
        if not self._llm.available:
            return ExtractionFailed(reason="no LLM configured")

        user_msg = f"Headline: {headline}\nContent: {body}"
        try:
            data = self._llm.complete_json(self._system, user_msg, self._temperature)
            return Extracted(enrichment=Enrichment.model_validate(data))
        except LLMError as exc:
            logger.warning("Extraction failed for %r: %s", headline[:80], exc)
            return ExtractionFailed(reason=str(exc))
        except ValidationError as exc:
            logger.warning(
                "Extraction schema mismatch for %r: %d error(s)",
                headline[:80],
                exc.error_count(),
            )
            return ExtractionFailed(reason=f"schema mismatch: {exc.error_count()} error(s)")
