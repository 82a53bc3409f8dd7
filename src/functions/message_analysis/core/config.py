"""Configuration models for the message analysis module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

_LLM_TIMEOUT_RANGE = (5, 300)
_BATCH_SIZE_RANGE = (1, 500)
_CHUNK_SIZE_RANGE = (1, 50)


def _ensure_non_empty(value: Optional[str], field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be provided")
    return value.strip()


def _ensure_int_range(value: int, field_name: str, bounds: tuple[int, int]) -> int:
    minimum, maximum = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer")
    if value < minimum or value > maximum:
        raise ValueError(f"{field_name} must be between {minimum} and {maximum}")
    return value


def _ensure_positive(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field_name} must be a positive integer")
    return value


def _ensure_non_negative_float(value: float, field_name: str) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be numeric") from exc
    if numeric < 0.0:
        raise ValueError(f"{field_name} must not be negative")
    return numeric


@dataclass
class LLMConfig:
    """Configuration for the Gemini analyzer."""

    model: str = "gemini-2.5-flash-lite"
    api_key: Optional[str] = None
    timeout_seconds: int = 60
    requests_per_minute: int = 60
    temperature: float = 0.1
    max_output_tokens: int = 1000

    def validate(self) -> None:
        self.model = _ensure_non_empty(self.model, "model")
        self.api_key = _ensure_non_empty(self.api_key, "api_key")
        self.timeout_seconds = _ensure_int_range(
            self.timeout_seconds,
            "timeout_seconds",
            _LLM_TIMEOUT_RANGE,
        )
        self.requests_per_minute = _ensure_positive(self.requests_per_minute, "requests_per_minute")
        self.max_output_tokens = _ensure_positive(self.max_output_tokens, "max_output_tokens")


@dataclass
class AnalysisSettings:
    """Behaviour controls for batch analysis runs."""

    batch_size: int = 20
    chunk_size: int = 5
    chunk_delay_seconds: float = 1.0
    max_chain_depth: int = 10
    error_detail_limit: int = 10
    force_reanalysis: bool = False

    def validate(self) -> None:
        self.batch_size = _ensure_int_range(self.batch_size, "batch_size", _BATCH_SIZE_RANGE)
        self.chunk_size = _ensure_int_range(self.chunk_size, "chunk_size", _CHUNK_SIZE_RANGE)
        self.chunk_delay_seconds = _ensure_non_negative_float(
            self.chunk_delay_seconds,
            "chunk_delay_seconds",
        )
        if isinstance(self.max_chain_depth, bool) or not isinstance(self.max_chain_depth, int):
            raise ValueError("max_chain_depth must be an integer")
        if self.max_chain_depth < 0:
            raise ValueError("max_chain_depth must not be negative")
        self.error_detail_limit = _ensure_positive(self.error_detail_limit, "error_detail_limit")
        if not isinstance(self.force_reanalysis, bool):
            raise ValueError("force_reanalysis must be a boolean value")


@dataclass
class GmailOAuthConfig:
    """OAuth client used to refresh mailbox access tokens."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token_url: str = "https://oauth2.googleapis.com/token"
    refresh_window_minutes: int = 30
    default_expires_in: int = 3600

    def validate(self) -> None:
        self.client_id = _ensure_non_empty(self.client_id, "gmail.client_id")
        self.client_secret = _ensure_non_empty(self.client_secret, "gmail.client_secret")
        self.token_url = _ensure_non_empty(self.token_url, "gmail.token_url")
        self.refresh_window_minutes = _ensure_positive(
            self.refresh_window_minutes,
            "gmail.refresh_window_minutes",
        )
        self.default_expires_in = _ensure_positive(self.default_expires_in, "gmail.default_expires_in")


@dataclass
class SyncSettings:
    """Mailbox synchronisation limits."""

    max_results: int = 50
    account_delay_seconds: float = 2.0
    overlap_minutes: int = 60
    quota_ceiling: int = 800_000_000
    max_sync_errors: int = 5
    api_base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me"

    def validate(self) -> None:
        self.max_results = _ensure_int_range(self.max_results, "sync.max_results", (1, 500))
        self.account_delay_seconds = _ensure_non_negative_float(
            self.account_delay_seconds,
            "sync.account_delay_seconds",
        )
        self.overlap_minutes = _ensure_positive(self.overlap_minutes, "sync.overlap_minutes")
        self.quota_ceiling = _ensure_positive(self.quota_ceiling, "sync.quota_ceiling")
        self.max_sync_errors = _ensure_positive(self.max_sync_errors, "sync.max_sync_errors")
        self.api_base_url = _ensure_non_empty(self.api_base_url, "sync.api_base_url").rstrip("/")


@dataclass
class PipelineSettings:
    """Controls for the full refresh -> sync -> analyze -> aggregate chain."""

    batch_size: int = 50
    profile_function: str = "customer-intelligence"
    profile_lookback_hours: int = 24
    function_timeout_seconds: float = 120.0

    def validate(self) -> None:
        self.batch_size = _ensure_int_range(self.batch_size, "pipeline.batch_size", _BATCH_SIZE_RANGE)
        self.profile_function = _ensure_non_empty(self.profile_function, "pipeline.profile_function")
        self.profile_lookback_hours = _ensure_positive(
            self.profile_lookback_hours,
            "pipeline.profile_lookback_hours",
        )
        self.function_timeout_seconds = _ensure_non_negative_float(
            self.function_timeout_seconds,
            "pipeline.function_timeout_seconds",
        )
