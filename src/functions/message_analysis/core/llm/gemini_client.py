"""Async Gemini client that turns one message into a structured analysis.

The client makes exactly one model call per ``analyze`` invocation. Failures
surface as ``ExternalServiceError`` (the service did not answer
successfully) or ``MalformedResponseError`` (it answered with something that
is not the expected JSON object). Retrying is left to the caller.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Callable, Dict, Optional

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError
from pydantic import ValidationError

from src.shared.utils.logging import get_logger

from ..config import LLMConfig
from ..contracts.analysis import MessageAnalysis
from ..prompts import build_analysis_prompt
from .rate_limiter import RateLimitExceeded, RateLimiter

LOGGER = get_logger(__name__)

_JSON_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


class AnalyzerError(RuntimeError):
    """Base class for item-local analyzer failures."""


class ExternalServiceError(AnalyzerError):
    """Raised when the analysis service call does not succeed."""


class MalformedResponseError(AnalyzerError):
    """Raised when the service reply cannot be parsed into ``MessageAnalysis``."""


class GeminiAnalyzerClient:
    """Thin async wrapper around Gemini for message classification."""

    def __init__(
        self,
        config: LLMConfig,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        model_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config
        self._rate_limiter = rate_limiter or RateLimiter(
            max_requests_per_minute=config.requests_per_minute
        )
        self._request_timeout = config.timeout_seconds
        if model_factory is None:
            genai.configure(api_key=config.api_key)
            model_factory = genai.GenerativeModel
        self._model = model_factory(
            model_name=config.model,
            generation_config={
                "temperature": config.temperature,
                "max_output_tokens": config.max_output_tokens,
            },
        )

    async def analyze(self, text: str) -> MessageAnalysis:
        """Analyze ``text`` and return the normalised structured result.

        Raises:
            ExternalServiceError: API error, timeout or local rate limit exhaustion
            MalformedResponseError: Empty, non-JSON or wrongly typed reply
        """
        raw = await self._invoke_model(build_analysis_prompt(text))
        payload = self._extract_json(raw)
        try:
            return MessageAnalysis.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"Analysis response failed validation: {exc}") from exc

    async def _invoke_model(self, prompt_text: str) -> str:
        try:
            await self._rate_limiter.acquire(timeout=self._request_timeout)
        except RateLimitExceeded as exc:
            LOGGER.warning("Local rate limiter timed out waiting for analyzer quota")
            raise ExternalServiceError("Analyzer rate limit exhausted") from exc

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._model.generate_content, prompt_text),
                timeout=self._request_timeout,
            )
        except GoogleAPIError as exc:
            raise ExternalServiceError(f"Gemini API error: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError(
                f"Gemini request timed out after {self._request_timeout}s"
            ) from exc

        try:
            text = response.text or ""
        except ValueError as exc:
            # .text raises when the candidate was blocked or has no parts
            raise MalformedResponseError(f"Gemini returned no text: {exc}") from exc

        if not text.strip():
            raise MalformedResponseError("Gemini returned an empty response")
        return text

    @staticmethod
    def _extract_json(raw_text: str) -> Dict[str, Any]:
        cleaned = raw_text.strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[7:].lstrip()
        elif cleaned.startswith("```"):
            cleaned = cleaned[3:].lstrip()
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3].rstrip()

        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError:
            match = _JSON_PATTERN.search(cleaned)
            if not match:
                raise MalformedResponseError(
                    f"No JSON object in analyzer response: {cleaned[:200]!r}"
                ) from None
            try:
                payload = json.loads(match.group(0))
            except json.JSONDecodeError as exc:
                raise MalformedResponseError(f"Invalid JSON in analyzer response: {exc}") from exc

        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Analyzer response must be a JSON object, got {type(payload).__name__}"
            )
        return payload
