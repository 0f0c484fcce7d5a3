"""JSON-mode chat client shared by the extractor and the explanation service."""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the model cannot produce a usable JSON object."""


class LLMClient:
    """Provider-agnostic JSON completion client. Ships with OpenAI."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        client: Any = None,
    ) -> None:
        self._provider = provider.lower()
        self._model = model
        self._client: Any = client

        if self._client is not None:
            return

        if not api_key:
            logger.warning("LLM_API_KEY not set — AI enrichment disabled.")
            return

        if self._provider == "openai":
            self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        else:
            logger.warning("Unknown LLM_PROVIDER '%s'; AI enrichment disabled.", provider)

    @property
    def available(self) -> bool:
        return self._client is not None

    # ── public ──────────────────────────────────────────────────────────

    def complete_json(self, system: str, user: str, temperature: float) -> dict[str, Any]:
        """Send one chat request in JSON mode and return the parsed object."""
        if self._client is None:
            raise LLMError("no LLM client configured")

        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc

        text = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not text:
            raise LLMError("LLM returned an empty response")
        return _parse_json_object(text)


def _parse_json_object(text: str) -> dict[str, Any]:
    # Some models still wrap JSON mode output in a ```json fence.
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMError(f"LLM response is not JSON: {text[:200]!r}") from exc
    if not isinstance(data, dict):
        raise LLMError(f"LLM response is not a JSON object: {type(data).__name__}")
    return data
