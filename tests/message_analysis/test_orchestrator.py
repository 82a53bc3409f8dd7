import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx

from src.shared.batch import JobTracker
from src.shared.db import SupabaseConfig
from src.functions.message_analysis.core import service
from src.functions.message_analysis.core.aggregation import ProfileUpdater
from src.functions.message_analysis.core.config import AnalysisSettings, PipelineSettings
from src.functions.message_analysis.core.db import AnalysisWriter, MessageStore
from src.functions.message_analysis.core.monitoring import MetricsRecorder
from src.functions.message_analysis.core.pipelines import (
    BatchAnalysisJob,
    ChunkedDispatcher,
    PipelineOrchestrator,
)
from tests.message_analysis.fakes import (
    FakeAnalyzer,
    FakeSupabaseClient,
    RecordingSleep,
    make_messages,
)

MESSAGES = "email_history"
JOBS = "email_processing_jobs"
METRICS = "ai_performance_metrics"


class _StubStage:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"success": True}
        self.error = error
        self.calls = 0

    async def run(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def _batch_job(client, batch_size=10):
    store = MessageStore(client)
    dispatcher = ChunkedDispatcher(
        FakeAnalyzer(),
        store,
        AnalysisWriter(client),
        sleep=RecordingSleep(),
    )
    return BatchAnalysisJob(
        dispatcher,
        JobTracker(client),
        store,
        AnalysisSettings(batch_size=batch_size),
        metrics=MetricsRecorder(client),
    )


def _orchestrator(client, *, refresher=None, sync=None, profiles=None, batch_size=10):
    return PipelineOrchestrator(
        token_refresher=refresher or _StubStage({"processed": 0}),
        mailbox_sync=sync or _StubStage({"accounts_processed": 1}),
        batch_job=_batch_job(client, batch_size),
        profile_updater=profiles or _StubStage({"customers": 0}),
        metrics=MetricsRecorder(client),
        analysis_batch_size=batch_size,
    )


def _metrics(client, metric_type):
    return [row for row in client.rows(METRICS) if row["metric_type"] == metric_type]


def test_pipeline_runs_all_stages_and_records_summary():
    client = FakeSupabaseClient({MESSAGES: make_messages(3)})
    profiles = _StubStage({"customers": 2, "updated": 2})

    run = asyncio.run(_orchestrator(client, profiles=profiles).run())

    assert run.success is True
    assert [stage.name for stage in run.stages] == ["token_refresh", "email_sync", "analysis", "profiles"]
    assert profiles.calls == 1
    response = run.to_response()
    assert response["analysis"]["processed"] == 3
    assert response["profiles"] == {"customers": 2, "updated": 2}
    summary = _metrics(client, "cron_job_completed")
    assert len(summary) == 1
    assert summary[0]["context"]["success"] is True
    assert _metrics(client, "cron_job_error") == []


def test_refresh_failure_is_recorded_and_later_stages_still_run():
    client = FakeSupabaseClient({MESSAGES: make_messages(2)})
    sync = _StubStage({"accounts_processed": 0})

    run = asyncio.run(
        _orchestrator(client, refresher=_StubStage(error=RuntimeError("oauth endpoint down")), sync=sync).run()
    )

    assert run.success is True
    assert run.stage("token_refresh").success is False
    assert run.to_response()["token_refresh"] == {"success": False, "error": "oauth endpoint down"}
    assert sync.calls == 1
    errors = _metrics(client, "cron_job_error")
    assert [row["context"]["stage"] for row in errors] == ["token_refresh"]
    assert errors[0]["context"]["error"] == "oauth endpoint down"


def test_analysis_failure_skips_profiles_and_fails_run():
    client = FakeSupabaseClient({MESSAGES: make_messages(2)})
    client.failures[(MESSAGES, "select")] = ConnectionError("database unavailable")
    profiles = _StubStage()

    run = asyncio.run(_orchestrator(client, profiles=profiles).run())

    assert run.success is False
    assert profiles.calls == 0
    assert run.stage("profiles").skipped is True
    assert run.to_response()["profiles"]["skipped"] is True
    assert client.rows(JOBS)[0]["status"] == "failed"
    assert [row["context"]["stage"] for row in _metrics(client, "cron_job_error")] == ["analysis"]
    assert _metrics(client, "cron_job_completed")[0]["context"]["success"] is False


def test_analysis_stage_waits_for_continuations():
    client = FakeSupabaseClient({MESSAGES: make_messages(25)})

    run = asyncio.run(_orchestrator(client, batch_size=10).run())

    analysis = run.to_response()["analysis"]
    assert analysis["continuation_scheduled"] is True
    assert [entry["processed"] for entry in analysis["continuation_runs"]] == [10, 5]
    assert len(client.rows(JOBS)) == 3
    assert {row["analysis_status"] for row in client.rows(MESSAGES)} == {"completed"}


def test_profile_updater_posts_each_recent_customer_once_and_continues_after_failure():
    now = datetime.now(timezone.utc)
    recent = (now - timedelta(hours=1)).isoformat()
    client = FakeSupabaseClient(
        {
            MESSAGES: [
                {"id": "m1", "analysis_status": "completed", "customer_id": "cust-a", "last_analyzed": recent},
                {"id": "m2", "analysis_status": "completed", "customer_id": "cust-a", "last_analyzed": recent},
                {"id": "m3", "analysis_status": "completed", "customer_id": "cust-b", "last_analyzed": recent},
                {"id": "m4", "analysis_status": "completed", "customer_id": None, "last_analyzed": recent},
                {"id": "m5", "analysis_status": "failed", "customer_id": "cust-c", "last_analyzed": recent},
                {"id": "m6", "analysis_status": "completed", "customer_id": "cust-d",
                 "last_analyzed": (now - timedelta(days=3)).isoformat()},
                {"id": "m7", "analysis_status": "completed", "customer_id": "cust-e", "last_analyzed": recent},
            ]
        }
    )
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        posted.append((request.url.path, body["customerId"]))
        if body["customerId"] == "cust-a":
            return httpx.Response(500, text="profile build failed")
        return httpx.Response(200, json={"success": True})

    http_client = httpx.AsyncClient(
        base_url="https://project.supabase.co/functions/v1",
        transport=httpx.MockTransport(handler),
    )
    updater = ProfileUpdater(
        PipelineSettings(),
        SupabaseConfig(url="https://project.supabase.co", key="service-key"),
        MessageStore(client),
        http_client=http_client,
    )

    summary = asyncio.run(updater.run())

    assert posted == [
        ("/functions/v1/customer-intelligence", "cust-a"),
        ("/functions/v1/customer-intelligence", "cust-b"),
        ("/functions/v1/customer-intelligence", "cust-e"),
    ]
    assert (summary["customers"], summary["updated"], summary["failed"]) == (3, 2, 1)
    assert [entry["customer_id"] for entry in summary["failures"]] == ["cust-a"]


def test_missing_oauth_credentials_fail_only_the_refresh_stage(monkeypatch):
    for key in ("GMAIL_CLIENT_ID", "GMAIL_CLIENT_SECRET", "PIPELINE_BATCH_SIZE", "SYNC_MAX_RESULTS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "service-key")
    client = FakeSupabaseClient({MESSAGES: make_messages(3)})

    orchestrator = service.build_orchestrator(client=client, analyzer=FakeAnalyzer())
    run = asyncio.run(orchestrator.run())

    assert run.success is True
    refresh = run.stage("token_refresh")
    assert refresh.success is False
    assert "client_id" in refresh.error
    assert run.stage("email_sync").success is True
    assert run.to_response()["analysis"]["processed"] == 3
    assert {row["analysis_status"] for row in client.rows(MESSAGES)} == {"completed"}
    assert [row["context"]["stage"] for row in _metrics(client, "cron_job_error")] == ["token_refresh"]
    assert len(_metrics(client, "cron_job_completed")) == 1
