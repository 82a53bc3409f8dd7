"""Settings factory: request payload overrides -> environment -> defaults."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from src.shared.utils.env import get_env
from src.shared.utils.logging import get_logger

from .config import AnalysisSettings, GmailOAuthConfig, LLMConfig, PipelineSettings, SyncSettings

LOGGER = get_logger(__name__)

_BOOL_TRUE = {"true", "1", "yes", "on"}
_BOOL_FALSE = {"false", "0", "no", "off"}

_DEFAULT_LLM_MODEL = "gemini-2.5-flash-lite"


def build_analysis_settings(payload: Optional[Mapping[str, Any]] = None) -> AnalysisSettings:
    """Build batch settings from a start-batch payload.

    Accepts both ``batch_size`` and the camelCase ``batchSize`` used by the
    dashboard callers.
    """

    data = _mapping_or_none(payload, "payload") or {}
    defaults = AnalysisSettings()

    settings = AnalysisSettings(
        batch_size=_coerce_int(
            _first_non_none(
                data.get("batch_size"),
                data.get("batchSize"),
                get_env("ANALYSIS_BATCH_SIZE"),
                defaults.batch_size,
            ),
            field_name="batch_size",
        ),
        chunk_size=_coerce_int(
            _first_non_none(data.get("chunk_size"), get_env("ANALYSIS_CHUNK_SIZE"), defaults.chunk_size),
            field_name="chunk_size",
        ),
        chunk_delay_seconds=_coerce_float(
            _first_non_none(
                data.get("chunk_delay_seconds"),
                get_env("ANALYSIS_CHUNK_DELAY_SECONDS"),
                defaults.chunk_delay_seconds,
            ),
            field_name="chunk_delay_seconds",
        ),
        max_chain_depth=_coerce_int(
            _first_non_none(get_env("ANALYSIS_MAX_CHAIN_DEPTH"), defaults.max_chain_depth),
            field_name="max_chain_depth",
        ),
        error_detail_limit=_coerce_int(
            _first_non_none(get_env("ANALYSIS_ERROR_DETAIL_LIMIT"), defaults.error_detail_limit),
            field_name="error_detail_limit",
        ),
        force_reanalysis=_coerce_bool(
            _first_non_none(data.get("force_reanalysis"), data.get("forceReanalysis"), False),
            field_name="force_reanalysis",
        ),
    )
    settings.validate()
    return settings


def build_llm_config(block: Any = None) -> LLMConfig:
    data = _mapping_or_none(block, "llm") or {}
    api_key = _first_non_empty(
        data.get("api_key"),
        get_env("GEMINI_API_KEY"),
        get_env("GOOGLE_API_KEY"),
    )
    if not api_key:
        raise ValueError(
            "Gemini API key must be provided via `llm.api_key` or GEMINI_API_KEY/GOOGLE_API_KEY env"
        )

    config = LLMConfig(
        model=_first_non_empty(data.get("model"), get_env("GEMINI_MODEL"), _DEFAULT_LLM_MODEL),
        api_key=api_key,
        timeout_seconds=_coerce_int(
            _first_non_none(data.get("timeout_seconds"), get_env("GEMINI_TIMEOUT_SECONDS"), 60),
            field_name="llm.timeout_seconds",
        ),
        requests_per_minute=_coerce_int(
            _first_non_none(
                data.get("requests_per_minute"),
                get_env("ANALYZER_REQUESTS_PER_MINUTE"),
                60,
            ),
            field_name="llm.requests_per_minute",
        ),
    )
    config.validate()
    return config


def build_oauth_config(block: Any = None) -> GmailOAuthConfig:
    data = _mapping_or_none(block, "gmail") or {}
    config = GmailOAuthConfig(
        client_id=_first_non_empty(data.get("client_id"), get_env("GMAIL_CLIENT_ID")),
        client_secret=_first_non_empty(data.get("client_secret"), get_env("GMAIL_CLIENT_SECRET")),
        refresh_window_minutes=_coerce_int(
            _first_non_none(
                data.get("refresh_window_minutes"),
                get_env("TOKEN_REFRESH_WINDOW_MINUTES"),
                30,
            ),
            field_name="gmail.refresh_window_minutes",
        ),
    )
    config.validate()
    return config


def build_sync_settings(block: Any = None) -> SyncSettings:
    data = _mapping_or_none(block, "sync") or {}
    defaults = SyncSettings()
    settings = SyncSettings(
        max_results=_coerce_int(
            _first_non_none(data.get("max_results"), get_env("SYNC_MAX_RESULTS"), defaults.max_results),
            field_name="sync.max_results",
        ),
        account_delay_seconds=_coerce_float(
            _first_non_none(
                data.get("account_delay_seconds"),
                get_env("SYNC_ACCOUNT_DELAY_SECONDS"),
                defaults.account_delay_seconds,
            ),
            field_name="sync.account_delay_seconds",
        ),
    )
    settings.validate()
    return settings


def build_pipeline_settings(block: Any = None) -> PipelineSettings:
    data = _mapping_or_none(block, "pipeline") or {}
    defaults = PipelineSettings()
    settings = PipelineSettings(
        batch_size=_coerce_int(
            _first_non_none(data.get("batch_size"), get_env("PIPELINE_BATCH_SIZE"), defaults.batch_size),
            field_name="pipeline.batch_size",
        ),
        profile_function=_first_non_empty(
            data.get("profile_function"),
            get_env("PROFILE_FUNCTION_NAME"),
            defaults.profile_function,
        ),
    )
    settings.validate()
    return settings


def _mapping_or_none(value: Any, label: str) -> Optional[Mapping[str, Any]]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value
    raise ValueError(f"`{label}` block must be a mapping when provided")


def _first_non_empty(*values: Optional[Any]) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_non_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _coerce_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _BOOL_TRUE:
            return True
        if lowered in _BOOL_FALSE:
            return False
    raise ValueError(f"{field_name} must be a boolean value")


def _coerce_int(value: Any, field_name: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer") from exc


def _coerce_float(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be numeric") from exc
