import asyncio

import pytest

from src.functions.message_analysis.core.contracts import AnalysisStatus, MessageAnalysis
from src.functions.message_analysis.core.db import AnalysisWriter, MessageStore
from src.functions.message_analysis.core.pipelines import BatchFatalError, ChunkedDispatcher
from tests.message_analysis.fakes import (
    FakeAnalyzer,
    FakeSupabaseClient,
    RecordingSleep,
    make_messages,
)

MESSAGES = "email_history"
ANALYTICS = "email_analytics"


def _dispatcher(client, analyzer=None, sleep=None, **kwargs):
    return ChunkedDispatcher(
        analyzer or FakeAnalyzer(),
        MessageStore(client),
        AnalysisWriter(client),
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


def _statuses(client):
    return {row["id"]: row["analysis_status"] for row in client.rows(MESSAGES)}


def test_one_failing_item_in_chunk_does_not_abort_batch():
    client = FakeSupabaseClient({MESSAGES: make_messages(5, failing_index=2)})

    outcome = asyncio.run(_dispatcher(client).run_batch(5))

    assert (outcome.processed, outcome.success_count, outcome.error_count) == (5, 4, 1)
    assert outcome.errors == [{"item_id": "msg-02", "error": "analyzer returned 500"}]
    statuses = _statuses(client)
    assert statuses.pop("msg-02") == "failed"
    assert set(statuses.values()) == {"completed"}
    assert len(client.rows(ANALYTICS)) == 4
    assert {row["batch_id"] for row in client.rows(ANALYTICS)} == {outcome.batch_id}


def test_claims_batch_in_single_write_before_dispatch():
    client = FakeSupabaseClient({MESSAGES: make_messages(7)})

    asyncio.run(_dispatcher(client).run_batch(7))

    first_upsert = client.calls.index((ANALYTICS, "upsert"))
    claims = [call for call in client.calls[:first_upsert] if call == (MESSAGES, "update")]
    assert client.calls[0] == (MESSAGES, "select")
    assert len(claims) == 1


def test_selects_newest_first_up_to_batch_size():
    client = FakeSupabaseClient({MESSAGES: list(reversed(make_messages(8)))})
    analyzer = FakeAnalyzer()

    outcome = asyncio.run(_dispatcher(client, analyzer=analyzer).run_batch(3))

    assert outcome.processed == 3
    analyzed = {row["email_id"] for row in client.rows(ANALYTICS)}
    assert analyzed == {"msg-00", "msg-01", "msg-02"}
    assert _statuses(client)["msg-07"] == "pending"


def test_default_selection_skips_completed_and_processing():
    rows = make_messages(4)
    rows[0]["analysis_status"] = "completed"
    rows[1]["analysis_status"] = "processing"
    rows[2]["analysis_status"] = "failed"
    client = FakeSupabaseClient({MESSAGES: rows})

    outcome = asyncio.run(_dispatcher(client).run_batch(10))

    assert outcome.processed == 2
    assert {row["email_id"] for row in client.rows(ANALYTICS)} == {"msg-02", "msg-03"}


def test_status_filter_none_selects_everything():
    client = FakeSupabaseClient({MESSAGES: make_messages(3, status="completed")})

    outcome = asyncio.run(_dispatcher(client).run_batch(10, statuses=None))

    assert outcome.processed == 3
    assert set(_statuses(client).values()) == {"completed"}


def test_pacing_delay_only_between_chunks():
    client = FakeSupabaseClient({MESSAGES: make_messages(12)})
    sleep = RecordingSleep()

    outcome = asyncio.run(
        _dispatcher(client, sleep=sleep, chunk_size=5, chunk_delay_seconds=1.0).run_batch(12)
    )

    assert outcome.processed == 12
    assert sleep.delays == [1.0, 1.0]


def test_chunk_items_run_concurrently_up_to_chunk_size():
    class _SlowAnalyzer:
        def __init__(self):
            self.in_flight = 0
            self.peak = 0

        async def analyze(self, text):
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            await asyncio.sleep(0.01)
            self.in_flight -= 1
            return MessageAnalysis()

    client = FakeSupabaseClient({MESSAGES: make_messages(8)})
    analyzer = _SlowAnalyzer()

    asyncio.run(_dispatcher(client, analyzer=analyzer, chunk_size=4).run_batch(8))

    assert analyzer.peak == 4


def test_error_details_are_capped():
    rows = make_messages(15)
    for row in rows:
        row["body"] = "ALWAYS-FAIL " + row["body"]
    client = FakeSupabaseClient({MESSAGES: rows})

    outcome = asyncio.run(_dispatcher(client, error_detail_limit=10).run_batch(15))

    assert outcome.error_count == 15
    assert outcome.success_count == 0
    assert len(outcome.errors) == 10
    assert outcome.error_detail() == {"errors": outcome.errors}


def test_result_write_failure_fails_only_that_item():
    client = FakeSupabaseClient({MESSAGES: make_messages(3)})

    def _fail_second(table, op, payload):
        if table == ANALYTICS and op == "upsert" and payload["email_id"] == "msg-01":
            return RuntimeError("write rejected")
        return None

    client.fail_when = _fail_second

    outcome = asyncio.run(_dispatcher(client).run_batch(3))

    assert (outcome.success_count, outcome.error_count) == (2, 1)
    assert _statuses(client)["msg-01"] == "failed"
    assert outcome.errors[0]["error"] == "write rejected"


def test_selection_failure_is_batch_fatal():
    client = FakeSupabaseClient({MESSAGES: make_messages(3)})
    client.failures[(MESSAGES, "select")] = ConnectionError("database unavailable")

    with pytest.raises(BatchFatalError):
        asyncio.run(_dispatcher(client).run_batch(3))


def test_empty_selection_returns_zero_counts():
    client = FakeSupabaseClient({MESSAGES: []})

    outcome = asyncio.run(_dispatcher(client).run_batch(10))

    assert (outcome.processed, outcome.success_count, outcome.error_count) == (0, 0, 0)
    assert outcome.error_detail() is None
    assert (MESSAGES, "update") not in client.calls


def test_processed_always_equals_success_plus_errors():
    client = FakeSupabaseClient({MESSAGES: make_messages(9, failing_index=4)})

    outcome = asyncio.run(_dispatcher(client, chunk_size=2).run_batch(9))

    assert outcome.processed == outcome.success_count + outcome.error_count == 9
    assert AnalysisStatus.PROCESSING.value not in _statuses(client).values()
