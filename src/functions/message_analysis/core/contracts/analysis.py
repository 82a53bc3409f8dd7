"""Structured analysis result contract.

Scores are clamped to [0, 1] and absent or null fields fall back to fixed
defaults, so downstream consumers never see ``None`` for a result field.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

Sentiment = Literal["positive", "neutral", "negative"]
Urgency = Literal["low", "medium", "high", "critical"]

_SENTIMENTS = {"positive", "neutral", "negative"}
_URGENCIES = {"low", "medium", "high", "critical"}


def _clamp_score(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError("score must be numeric")
    numeric = float(value)
    return max(0.0, min(1.0, numeric))


class ExtractedEntity(BaseModel):
    """A typed entity mentioned in the message (container, route, company...)."""

    type: str = Field(default="other")
    value: str
    confidence: float = Field(default=0.0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text or "other"

    @field_validator("value", mode="before")
    @classmethod
    def _normalise_value(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return _clamp_score(value, 0.0)


class MessageAnalysis(BaseModel):
    """Fields returned by the analyzer for one message."""

    language: str = Field(default="en")
    sentiment: Sentiment = Field(default="neutral")
    sentiment_score: float = Field(default=0.5)
    intent: str = Field(default="unknown")
    intent_confidence: float = Field(default=0.0)
    urgency: Urgency = Field(default="low")
    entities: List[ExtractedEntity] = Field(default_factory=list)
    key_phrases: List[str] = Field(default_factory=list)

    @field_validator("language", mode="before")
    @classmethod
    def _normalise_language(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text[:5] or "en"

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalise_sentiment(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in _SENTIMENTS else "neutral"

    @field_validator("urgency", mode="before")
    @classmethod
    def _normalise_urgency(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in _URGENCIES else "low"

    @field_validator("intent", mode="before")
    @classmethod
    def _normalise_intent(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text or "unknown"

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _clamp_sentiment(cls, value: Any) -> float:
        return _clamp_score(value, 0.5)

    @field_validator("intent_confidence", mode="before")
    @classmethod
    def _clamp_intent(cls, value: Any) -> float:
        return _clamp_score(value, 0.0)

    @field_validator("entities", mode="before")
    @classmethod
    def _drop_blank_entities(cls, value: Any) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("entities must be a list")
        return [
            entry for entry in value
            if isinstance(entry, dict) and str(entry.get("value") or "").strip()
        ]

    @field_validator("key_phrases", mode="before")
    @classmethod
    def _clean_phrases(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("key_phrases must be a list")
        return [str(phrase).strip() for phrase in value if str(phrase or "").strip()]

    def to_record(self, message_id: str, batch_id: str) -> Dict[str, Any]:
        """Build the analytics row upserted for ``message_id``."""
        return {
            "email_id": message_id,
            "language": self.language,
            "sentiment": self.sentiment,
            "sentiment_score": self.sentiment_score,
            "intent": self.intent,
            "intent_confidence": self.intent_confidence,
            "urgency": self.urgency,
            "entities": [entity.model_dump() for entity in self.entities],
            "key_phrases": list(self.key_phrases),
            "batch_id": batch_id,
            "analysis_timestamp": datetime.now(timezone.utc).isoformat(),
        }
