"""
Analysis Dispatcher

Runs a classifier over a list of transcripts and persists each result,
with a hard concurrency cap, bounded retries and exponential backoff.

The dispatcher:
- Processes transcripts in waves of at most max_concurrent; a wave must
  fully drain before the next one starts
- Retries failed classifier calls and unparseable responses, doubling
  the delay between attempts
- Records a transcript that exhausts its retries as a failure and moves
  on; one bad transcript never halts the batch
- Publishes a ProgressEvent to subscribed listeners after every success

Callers filter out transcripts that already have a stored result before
dispatching. The persistence layer ignores duplicate writes, so a race
only costs a wasted classifier call.

Author: CallSync Team
Date: 2026-01-12
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, Sequence

from prometheus_client import Counter, Histogram

from callsync.common.config import settings
from callsync.common.records import TranscriptRecord
from callsync.services.classifier import PermanentAnalysisError

logger = logging.getLogger("dispatcher")

# Prometheus metrics for monitoring
ANALYSIS_SUCCESS = Counter('analysis_success_total', 'Transcripts analyzed and persisted')
ANALYSIS_FAILURE = Counter('analysis_failure_total', 'Transcripts that exhausted retries')
ANALYSIS_RETRIES = Counter('analysis_retries_total', 'Classifier attempts that were retried')
ANALYSIS_LATENCY = Histogram('analysis_latency_seconds', 'Latency of one classifier call')

AnalyzeFn = Callable[[TranscriptRecord], Awaitable[Any]]
PersistFn = Callable[[TranscriptRecord, Any], None]


class ProgressEvent(NamedTuple):
    """Emitted after each successful analysis, in completion order."""
    completed: int
    total: int
    vendor_call_key: str


ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class AnalysisFailure:
    vendor_call_key: str
    reason: str
    attempts: int


@dataclass
class DispatchResult:
    """What a dispatch run produced; returned, never kept as global state."""
    total: int = 0
    analyzed_keys: List[str] = field(default_factory=list)
    failures: List[AnalysisFailure] = field(default_factory=list)

    @property
    def analyzed(self) -> int:
        return len(self.analyzed_keys)

    @property
    def failed(self) -> int:
        return len(self.failures)


class AnalysisDispatcher:
    """
    Batched-wavefront executor for classifier calls.
    
    Args:
        analyze: Coroutine producing a validated result for one transcript
        persist: Stores a result; called only after a successful analyze
        max_concurrent: Maximum transcripts in flight at once
        retry_attempts: Total attempts per transcript
        retry_delay: Delay before the first retry, doubled on each retry
        batch_delay: Pause between waves to stay under vendor rate limits
        jitter: Upper bound of the random delay added to each backoff
    """

    def __init__(
        self,
        analyze: AnalyzeFn,
        persist: PersistFn,
        max_concurrent: int = settings.analysis_max_concurrent,
        retry_attempts: int = settings.analysis_retry_attempts,
        retry_delay: float = settings.analysis_retry_delay,
        batch_delay: float = settings.analysis_batch_delay,
        jitter: float = 0.3,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

        self.analyze = analyze
        self.persist = persist
        self.max_concurrent = max_concurrent
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.batch_delay = batch_delay
        self.jitter = jitter
        self._listeners: List[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        """Register a progress listener."""
        self._listeners.append(listener)

    def _publish(self, event: ProgressEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                # A broken progress display must not fail an analysis
                logger.exception("[dispatch] Progress listener failed")

    def backoff(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = self.retry_delay * (2 ** (attempt - 1))
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    async def _attempt(self, transcript: TranscriptRecord) -> Any:
        start_time = time.perf_counter()
        try:
            return await self.analyze(transcript)
        finally:
            ANALYSIS_LATENCY.observe(time.perf_counter() - start_time)

    async def _process_one(self, transcript: TranscriptRecord, progress: dict, result: DispatchResult) -> None:
        key = transcript.vendor_call_key
        attempt = 0

        while attempt < self.retry_attempts:
            attempt += 1
            try:
                analysis = await self._attempt(transcript)
            except PermanentAnalysisError as ex:
                self._fail(result, key, str(ex), attempt)
                return
            except Exception as ex:
                if attempt >= self.retry_attempts:
                    self._fail(result, key, str(ex), attempt)
                    return
                ANALYSIS_RETRIES.inc()
                logger.debug(f"[dispatch] {key} attempt {attempt} failed: {ex}")
                await asyncio.sleep(self.backoff(attempt))
                continue

            try:
                self.persist(transcript, analysis)
            except Exception as ex:
                self._fail(result, key, f"persist failed: {ex}", attempt)
                return

            ANALYSIS_SUCCESS.inc()
            result.analyzed_keys.append(key)
            progress["completed"] += 1
            self._publish(ProgressEvent(progress["completed"], result.total, key))
            return

    def _fail(self, result: DispatchResult, key: str, reason: str, attempts: int) -> None:
        ANALYSIS_FAILURE.inc()
        result.failures.append(AnalysisFailure(key, reason, attempts))
        logger.warning(f"[dispatch] {key} failed after {attempts} attempt(s): {reason}")

    async def run(self, transcripts: Sequence[TranscriptRecord]) -> DispatchResult:
        """
        Analyze and persist every transcript.
        
        Returns:
            DispatchResult: Successful keys and per-transcript failures
        """
        transcripts = list(transcripts)
        result = DispatchResult(total=len(transcripts))
        progress = {"completed": 0}

        for start in range(0, len(transcripts), self.max_concurrent):
            wave = transcripts[start:start + self.max_concurrent]
            await asyncio.gather(*(
                self._process_one(transcript, progress, result) for transcript in wave
            ))

            # Small delay between waves to avoid rate limits
            if start + self.max_concurrent < len(transcripts) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        return result


def log_progress(every: int = 50) -> ProgressListener:
    """Listener that logs every N completions and the final one."""
    def _listener(event: ProgressEvent) -> None:
        if event.completed % every == 0 or event.completed == event.total:
            logger.info(f"[dispatch] Analyzed {event.completed}/{event.total}...")
    return _listener


def queue_listener(queue: "asyncio.Queue[ProgressEvent]") -> ProgressListener:
    """Listener that forwards events into an asyncio queue without blocking."""
    def _listener(event: ProgressEvent) -> None:
        queue.put_nowait(event)
    return _listener
