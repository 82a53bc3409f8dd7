"""
Chunked dispatch of one analysis batch.

Steps:
1. Select up to ``batch_size`` messages, newest first
2. Claim all of them (status ``processing``) in a single write
3. Analyze each chunk concurrently, pausing between chunks
4. Store each result and mark the message ``completed`` or ``failed``
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..contracts import AnalysisStatus, MessageItem
from ..db import DEFAULT_SELECTION

logger = logging.getLogger(__name__)


class BatchFatalError(RuntimeError):
    """Raised when the batch cannot proceed at all (selection or claim failed)."""


@dataclass
class BatchOutcome:
    """Aggregate result of one dispatcher run."""

    batch_id: str
    requested: int
    processed: int = 0
    success_count: int = 0
    error_count: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def filled_batch(self) -> bool:
        """True when the selection returned as many messages as requested."""
        return self.requested > 0 and self.processed == self.requested

    def error_detail(self) -> Optional[Dict[str, Any]]:
        if not self.errors:
            return None
        return {"errors": list(self.errors)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "requested": self.requested,
            "processed": self.processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "errors": list(self.errors),
        }


class ChunkedDispatcher:
    """
    Sends a batch of messages to the analyzer in fixed-size concurrent chunks.

    Failure isolation is per message: an analyzer error, a malformed response
    or a failed result write marks only that message ``failed``. Only a
    failure to select or claim the batch aborts the run.
    """

    def __init__(
        self,
        analyzer,
        store,
        writer,
        *,
        chunk_size: int = 5,
        chunk_delay_seconds: float = 1.0,
        error_detail_limit: int = 10,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            analyzer: Object exposing ``async analyze(text) -> MessageAnalysis``
            store: MessageStore (or compatible) for selection and status writes
            writer: AnalysisWriter (or compatible) for result upserts
            chunk_size: Messages analyzed concurrently per chunk
            chunk_delay_seconds: Pause between consecutive chunks
            error_detail_limit: Maximum per-message errors kept in the outcome
            sleep: Awaitable used for the pause
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.analyzer = analyzer
        self.store = store
        self.writer = writer
        self.chunk_size = chunk_size
        self.chunk_delay_seconds = chunk_delay_seconds
        self.error_detail_limit = error_detail_limit
        self._sleep = sleep

    async def run_batch(
        self,
        batch_size: int,
        statuses: Optional[Sequence[AnalysisStatus]] = DEFAULT_SELECTION,
    ) -> BatchOutcome:
        """
        Analyze one batch.

        Args:
            batch_size: Maximum messages to select
            statuses: Selection filter; ``None`` selects regardless of status

        Returns:
            BatchOutcome where ``processed == success_count + error_count``

        Raises:
            BatchFatalError: If selecting or claiming the batch fails
        """
        outcome = BatchOutcome(batch_id=str(uuid.uuid4()), requested=batch_size)

        try:
            items = await self.store.select_for_analysis(batch_size, statuses)
        except Exception as exc:
            raise BatchFatalError(f"Failed to select messages: {exc}") from exc

        if not items:
            logger.info("No messages to analyze")
            return outcome

        try:
            await self.store.mark_processing([item.id for item in items])
        except Exception as exc:
            raise BatchFatalError(f"Failed to claim messages: {exc}") from exc

        chunks = [items[i:i + self.chunk_size] for i in range(0, len(items), self.chunk_size)]
        logger.info(
            f"Batch {outcome.batch_id}: analyzing {len(items)} message(s) in {len(chunks)} chunk(s)"
        )

        for index, chunk in enumerate(chunks):
            if index:
                await self._sleep(self.chunk_delay_seconds)

            errors = await asyncio.gather(
                *(self._process_item(item, outcome.batch_id) for item in chunk)
            )
            for item, error in zip(chunk, errors):
                outcome.processed += 1
                if error is None:
                    outcome.success_count += 1
                    continue
                outcome.error_count += 1
                if len(outcome.errors) < self.error_detail_limit:
                    outcome.errors.append({"item_id": item.id, "error": error})

            logger.debug(f"Chunk {index + 1}/{len(chunks)} done")

        logger.info(
            f"Batch {outcome.batch_id} completed: {outcome.success_count} success, "
            f"{outcome.error_count} failures"
        )
        return outcome

    async def _process_item(self, item: MessageItem, batch_id: str) -> Optional[str]:
        """Analyze and store one message. Returns the error text, or None on success."""
        try:
            analysis = await self.analyzer.analyze(item.to_analysis_text())
            await self.writer.upsert(item.id, analysis, batch_id)
            await self.store.set_status(item.id, AnalysisStatus.COMPLETED)
            return None
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.warning(f"Analysis failed for message {item.id}: {error}")

        try:
            await self.store.set_status(item.id, AnalysisStatus.FAILED)
        except Exception as exc:
            logger.error(f"Could not mark message {item.id} as failed: {exc}")
        return error
