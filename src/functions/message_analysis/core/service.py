"""Wiring for the message analysis engine.

Builds the dispatcher, batch job and pipeline orchestrator from settings.
Every collaborator can be injected; anything not supplied is created from
the environment.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from src.shared.batch import JobTracker
from src.shared.db import SupabaseConfig, get_supabase_client
from src.shared.utils.logging import get_logger

from .aggregation import ProfileUpdater
from .config import AnalysisSettings, PipelineSettings
from .db import AccountStore, AnalysisWriter, MessageStore
from .factory import (
    build_analysis_settings,
    build_llm_config,
    build_oauth_config,
    build_pipeline_settings,
    build_sync_settings,
)
from .llm import GeminiAnalyzerClient
from .monitoring import MetricsRecorder
from .pipelines import BatchAnalysisJob, ChunkedDispatcher, PipelineOrchestrator
from .sync import MailboxSync, TokenRefresher

LOGGER = get_logger(__name__)


def build_batch_job(
    settings: AnalysisSettings,
    *,
    client: Any = None,
    analyzer: Any = None,
    sleep: Any = None,
) -> BatchAnalysisJob:
    """Assemble a ``BatchAnalysisJob`` sharing one Supabase client."""
    client = client if client is not None else get_supabase_client()
    analyzer = analyzer if analyzer is not None else GeminiAnalyzerClient(build_llm_config())
    store = MessageStore(client)

    dispatcher_kwargs = {}
    if sleep is not None:
        dispatcher_kwargs["sleep"] = sleep
    dispatcher = ChunkedDispatcher(
        analyzer,
        store,
        AnalysisWriter(client),
        chunk_size=settings.chunk_size,
        chunk_delay_seconds=settings.chunk_delay_seconds,
        error_detail_limit=settings.error_detail_limit,
        **dispatcher_kwargs,
    )
    return BatchAnalysisJob(
        dispatcher,
        JobTracker(client),
        store,
        settings,
        metrics=MetricsRecorder(client),
    )


def build_orchestrator(
    payload: Optional[Mapping[str, Any]] = None,
    *,
    client: Any = None,
    analyzer: Any = None,
) -> PipelineOrchestrator:
    """Assemble the full pipeline from a run-pipeline payload and the environment."""
    data = payload or {}
    pipeline_settings: PipelineSettings = build_pipeline_settings(data.get("pipeline"))
    analysis_settings = build_analysis_settings({"batch_size": pipeline_settings.batch_size})

    supabase_config = SupabaseConfig.from_env()
    client = client if client is not None else get_supabase_client(supabase_config)
    accounts = AccountStore(client)
    messages = MessageStore(client)
    metrics = MetricsRecorder(client)

    LOGGER.info(
        "Building pipeline (analysis batch_size=%d, profile function=%s)",
        pipeline_settings.batch_size,
        pipeline_settings.profile_function,
    )

    return PipelineOrchestrator(
        # Built when the refresh stage runs; missing OAuth credentials fail that stage only
        token_refresher=TokenRefresher(
            lambda: build_oauth_config(data.get("gmail")),
            accounts,
            metrics=metrics,
        ),
        mailbox_sync=MailboxSync(build_sync_settings(data.get("sync")), accounts, messages),
        batch_job=build_batch_job(analysis_settings, client=client, analyzer=analyzer),
        profile_updater=ProfileUpdater(pipeline_settings, supabase_config, messages),
        metrics=metrics,
        analysis_batch_size=pipeline_settings.batch_size,
    )
