"""Sentiment analysis for customer feedback.

Learn: The feedback endpoint asks Claude to classify a comment before it
decides whether to alert staff. The call is best-effort: with no API key,
a network error, or an unparseable answer we fall back to a neutral
verdict, and the feedback is still stored (just never alerted on).
"""

import json
import re
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from snapserve.config import settings

logger = structlog.get_logger()

ANTHROPIC_VERSION = "2023-06-01"

SYSTEM_PROMPT = (
    "You are a sentiment analysis expert for restaurant feedback. Analyze the "
    "sentiment and identify specific issues. Respond with JSON only, in this "
    'format: {"sentiment": "positive|negative|neutral", "score": number between '
    '-1 and 1, "confidence": number between 0 and 1, "issues": ["issue1", "issue2"]}'
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class SentimentAnalysis(BaseModel):
    sentiment: str = "neutral"
    score: float = 0.0
    confidence: float = 0.0
    issues: list[str] = Field(default_factory=list)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _known_sentiment(cls, v):
        v = str(v or "neutral").lower()
        return v if v in ("positive", "negative", "neutral") else "neutral"

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v):
        return max(-1.0, min(1.0, float(v or 0)))

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return max(0.0, min(1.0, float(v or 0)))

    @field_validator("issues", mode="before")
    @classmethod
    def _issue_list(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            return [v]
        return [str(i) for i in v]

    @property
    def is_negative(self) -> bool:
        return self.sentiment == "negative"


NEUTRAL = SentimentAnalysis()


class SentimentAnalyzer:
    """Classifies feedback text via the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.anthropic_api_key if api_key is None else api_key
        self.model = model or settings.sentiment_model
        self.api_url = api_url or settings.anthropic_api_url
        self.timeout = timeout or settings.sentiment_timeout_seconds
        self._transport = transport

    async def analyze(self, text: str) -> SentimentAnalysis:
        """Return a sentiment verdict; never raises."""
        if not self.api_key or not text.strip():
            return NEUTRAL.model_copy()

        try:
            answer = await self._complete(text)
            return self._parse(answer)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            logger.warning("snapserve.sentiment.failed", error=str(e))
            return NEUTRAL.model_copy()

    async def _complete(self, text: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await client.post(
                self.api_url,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": 500,
                    "system": SYSTEM_PROMPT,
                    "messages": [
                        {
                            "role": "user",
                            "content": f'Analyze the sentiment of this restaurant feedback: "{text}"',
                        }
                    ],
                },
            )
            r.raise_for_status()
            data = r.json()
        return "".join(
            block.get("text", "") for block in data["content"] if block.get("type") == "text"
        )

    @staticmethod
    def _parse(answer: str) -> SentimentAnalysis:
        match = _JSON_OBJECT.search(answer)
        if not match:
            raise ValueError("no JSON object in model answer")
        return SentimentAnalysis.model_validate(json.loads(match.group(0)))
