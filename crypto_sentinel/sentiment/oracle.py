"""Sentiment classification oracle.

The engine treats classification as an opaque capability: text in,
``SentimentResult`` out. The concrete oracle asks an LLM behind the
OpenRouter chat-completions API for a strict JSON verdict.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from crypto_sentinel.config import OracleConfig
from crypto_sentinel.core.errors import ClassificationFailure
from crypto_sentinel.core.models import SentimentResult
from crypto_sentinel.core.types import SentimentLabel
from crypto_sentinel.core.utils import clamp
from crypto_sentinel.ratelimit import RateLimitTracker

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a crypto sentiment analyzer. Analyze the given text and return ONLY "
    "a valid JSON object (no markdown, no code blocks) with:\n"
    '- sentiment: "positive", "negative", or "neutral"\n'
    "- confidence: number between 0 and 1\n"
    "- sentiment_score: number between 0 and 1 "
    "(0=very negative, 0.5=neutral, 1=very positive)\n"
    "- explanation: brief explanation of the sentiment\n"
    "- key_phrases: array of important phrases that influenced the sentiment"
)

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")

_LABEL_ALIASES = {
    "very positive": SentimentLabel.POSITIVE,
    "very_positive": SentimentLabel.POSITIVE,
    "extremely positive": SentimentLabel.POSITIVE,
    "bullish": SentimentLabel.POSITIVE,
    "very negative": SentimentLabel.NEGATIVE,
    "very_negative": SentimentLabel.NEGATIVE,
    "extremely negative": SentimentLabel.NEGATIVE,
    "bearish": SentimentLabel.NEGATIVE,
}


def normalize_label(raw: Any) -> SentimentLabel:
    text = str(raw or "").strip().lower()
    if text in _LABEL_ALIASES:
        return _LABEL_ALIASES[text]
    try:
        return SentimentLabel(text)
    except ValueError:
        return SentimentLabel.NEUTRAL


def _unit(value: Any, default: float = 0.5) -> float:
    try:
        return clamp(float(value))
    except (TypeError, ValueError):
        return default


def parse_classification(content: str) -> SentimentResult:
    """Parse the model's JSON answer, tolerating markdown fences."""
    cleaned = _FENCE_RE.sub("", content.strip()).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ClassificationFailure(f"Oracle returned non-JSON content: {exc}") from exc
    if not isinstance(payload, dict):
        raise ClassificationFailure("Oracle returned a non-object payload")

    phrases = payload.get("key_phrases") or []
    if not isinstance(phrases, list):
        phrases = [str(phrases)]

    return SentimentResult(
        label=normalize_label(payload.get("sentiment")),
        confidence=_unit(payload.get("confidence")),
        score=_unit(payload.get("sentiment_score")),
        explanation=str(payload.get("explanation") or "No explanation available"),
        key_phrases=tuple(str(p) for p in phrases),
    )


class BaseClassifier(ABC):
    """Contract for sentiment oracles."""

    def __init__(self, max_text_length: int = 500) -> None:
        self.max_text_length = max_text_length

    def prepare(self, text: str) -> str:
        """Truncate instead of failing on long input."""
        return text[: self.max_text_length]

    @abstractmethod
    async def classify(self, text: str) -> SentimentResult:
        """Classify one text.

        Raises
        ------
        ClassificationFailure
            When the oracle cannot produce a verdict.
        """
        ...

    async def close(self) -> None:
        """Release network resources, if any."""


class OpenRouterClassifier(BaseClassifier):
    """LLM-backed oracle speaking the OpenAI-compatible chat API."""

    def __init__(
        self,
        config: OracleConfig,
        rate_limits: RateLimitTracker | None = None,
    ) -> None:
        super().__init__(max_text_length=config.max_text_length)
        self._config = config
        self._rate_limits = rate_limits
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._config.api_key}"},
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def classify(self, text: str) -> SentimentResult:
        if self._rate_limits and not self._rate_limits.try_reserve("openrouter", "chat"):
            raise ClassificationFailure("Oracle request budget exhausted")

        body = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": f'Analyze: "{self.prepare(text)}"'},
            ],
            "temperature": 0.1,
            "max_tokens": 200,
        }
        try:
            session = await self._get_session()
            async with session.post(self._config.api_url, json=body) as resp:
                if resp.status != 200:
                    detail = await resp.text()
                    raise ClassificationFailure(
                        f"Oracle HTTP {resp.status}: {detail[:200]}"
                    )
                data = await resp.json()
        except aiohttp.ClientError as exc:
            raise ClassificationFailure(f"Oracle request failed: {exc}") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ClassificationFailure("Oracle response missing content") from exc
        return parse_classification(content)
