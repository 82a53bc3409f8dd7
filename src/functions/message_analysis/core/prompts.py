"""Prompt templates for message analysis."""

from __future__ import annotations

MESSAGE_ANALYSIS_PROMPT_TEMPLATE = """Analyze this shipping/logistics email and extract the following information in JSON format:

1. Language (de, en, fr, nl, or other)
2. Sentiment (positive, neutral, negative) with score 0-1
3. Intent (price_inquiry, order, complaint, follow_up, general_inquiry, spam) with confidence 0-1
4. Urgency level (low, medium, high, critical)
5. Key entities (container types, routes, quantities, dates, companies, people)
6. Key phrases (important terms or phrases)

Email content:
{message_text}

Respond only with valid JSON in this exact format:
{{
  "language": "en",
  "sentiment": "neutral",
  "sentiment_score": 0.5,
  "intent": "price_inquiry",
  "intent_confidence": 0.8,
  "urgency": "medium",
  "entities": [
    {{"type": "container", "value": "20ft", "confidence": 0.9}},
    {{"type": "route", "value": "Hamburg to Rotterdam", "confidence": 0.8}}
  ],
  "key_phrases": ["urgent delivery", "best price", "container shipping"]
}}
"""

_MAX_MESSAGE_CHARS = 12000


def build_analysis_prompt(message_text: str) -> str:
    """Render the analysis prompt for one message, truncating oversized bodies."""
    text = (message_text or "").strip() or "(empty message)"
    if len(text) > _MAX_MESSAGE_CHARS:
        text = text[:_MAX_MESSAGE_CHARS] + "\n[truncated]"
    return MESSAGE_ANALYSIS_PROMPT_TEMPLATE.format(message_text=text)
