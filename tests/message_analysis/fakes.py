"""
In-memory fakes for message analysis tests.

``FakeSupabaseClient`` mimics the subset of the PostgREST query builder the
stores use (select/insert/update/upsert with eq, in_, gte, lt, not_.is_,
order and limit) over plain dict rows.
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

from src.functions.message_analysis.core.contracts import MessageAnalysis
from src.functions.message_analysis.core.llm import ExternalServiceError

FAIL_MARKER = "ALWAYS-FAIL"


class _FakeQuery:
    def __init__(self, client: "FakeSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._columns: Optional[List[str]] = None
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None
        self._negate_next = False

    # --- operations -------------------------------------------------------
    def select(self, columns: str = "*"):
        self._op = "select"
        if columns.strip() != "*":
            self._columns = [name.strip() for name in columns.split(",")]
        return self

    def insert(self, rows):
        self._op = "insert"
        self._payload = rows
        return self

    def update(self, fields):
        self._op = "update"
        self._payload = fields
        return self

    def upsert(self, rows, on_conflict: str = "id"):
        self._op = "upsert"
        self._payload = rows
        self._on_conflict = on_conflict
        return self

    # --- filters ----------------------------------------------------------
    def _add(self, predicate):
        if self._negate_next:
            self._negate_next = False
            self._filters.append(lambda row: not predicate(row))
        else:
            self._filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) == value)

    def in_(self, column, values):
        allowed = list(values)
        return self._add(lambda row: row.get(column) in allowed)

    def gte(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) >= value)

    def lt(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) < value)

    def is_(self, column, value):
        if value == "null":
            return self._add(lambda row: row.get(column) is None)
        return self._add(lambda row: row.get(column) == value)

    @property
    def not_(self):
        self._negate_next = True
        return self

    def order(self, column, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    # --- execution --------------------------------------------------------
    def execute(self):
        return self._client._execute(self)

    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(predicate(row) for predicate in self._filters)


class FakeSupabaseClient:
    """Thread-safe in-memory table store."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}
        self.fail_when: Optional[Callable[[str, str, Any], Optional[Exception]]] = None
        self._lock = threading.Lock()

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def _execute(self, query: _FakeQuery):
        with self._lock:
            self.calls.append((query._table, query._op))
            error = self.failures.get((query._table, query._op))
            if error is None and self.fail_when is not None:
                error = self.fail_when(query._table, query._op, query._payload)
            if error is not None:
                raise error

            rows = self.rows(query._table)
            if query._op == "select":
                data = [dict(row) for row in rows if query._matches(row)]
                if query._order:
                    column, desc = query._order
                    data.sort(key=lambda row: (row.get(column) is None, row.get(column) or ""), reverse=desc)
                if query._limit is not None:
                    data = data[:query._limit]
                if query._columns:
                    data = [{name: row.get(name) for name in query._columns} for row in data]
                return SimpleNamespace(data=data)

            if query._op == "insert":
                payload = query._payload if isinstance(query._payload, list) else [query._payload]
                inserted = []
                for record in payload:
                    row = {"id": str(uuid.uuid4()), **record}
                    rows.append(row)
                    inserted.append(dict(row))
                return SimpleNamespace(data=inserted)

            if query._op == "update":
                updated = []
                for row in rows:
                    if query._matches(row):
                        row.update(query._payload)
                        updated.append(dict(row))
                return SimpleNamespace(data=updated)

            if query._op == "upsert":
                payload = query._payload if isinstance(query._payload, list) else [query._payload]
                keys = [key.strip() for key in query._on_conflict.split(",")]
                written = []
                for record in payload:
                    existing = next(
                        (row for row in rows if all(row.get(k) == record.get(k) for k in keys)),
                        None,
                    )
                    if existing is None:
                        existing = {"id": str(uuid.uuid4())}
                        rows.append(existing)
                    existing.update(record)
                    written.append(dict(existing))
                return SimpleNamespace(data=written)

            raise AssertionError(f"Unsupported operation {query._op}")


class FakeAnalyzer:
    """Analyzer that fails for any message whose text contains ``FAIL_MARKER``."""

    def __init__(self, fail_marker: str = FAIL_MARKER):
        self.fail_marker = fail_marker
        self.calls: List[str] = []
        self._lock = threading.Lock()

    async def analyze(self, text: str) -> MessageAnalysis:
        with self._lock:
            self.calls.append(text)
        if self.fail_marker in text:
            raise ExternalServiceError("analyzer returned 500")
        return MessageAnalysis(
            sentiment="positive",
            sentiment_score=0.9,
            intent="price_inquiry",
            intent_confidence=0.8,
            urgency="medium",
        )


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_messages(count: int, *, failing_index: Optional[int] = None, status: str = "pending"):
    """Build ``count`` message rows, newest first at index 0."""
    base = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    rows = []
    for index in range(count):
        body = f"Need a quote for container {index}"
        if index == failing_index:
            body = f"{FAIL_MARKER} {body}"
        rows.append(
            {
                "id": f"msg-{index:02d}",
                "external_id": f"ext-{index:02d}",
                "subject": f"Quote request {index}",
                "from_address": "buyer@example.com",
                "to_address": "support@acme.com",
                "body": body,
                "received_at": (base - timedelta(minutes=index)).isoformat(),
                "analysis_status": status,
                "customer_id": None,
            }
        )
    return rows
