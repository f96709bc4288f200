"""Segment orchestrator: drives one document through the remote API.

Segments are processed strictly in order, one at a time, because each
request carries the history of the previous exchanges. Per segment the
orchestrator walks this state machine::

    PENDING -> ATTEMPTING -> SUCCEEDED
                          -> RATE_LIMIT_WAIT -> ATTEMPTING
                          -> RETRYING        -> ATTEMPTING
                          -> FAILED

Decisions are made by the pure ``transition`` function; the orchestrator
only carries them out (rotating credentials, sleeping, emitting events).
A failed segment never stops the document: the run always reaches
``RunState.COMPLETED`` with a ``RunResult`` listing what succeeded and what
did not.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
import contextlib
import dataclasses
import enum
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, TypeAlias

from gemini_enhance.constants import (
    BACKOFF_BASE_MS,
    MAX_ATTEMPTS,
    MIN_RETENTION_RATIO,
    RETENTION_MIN_WORDS,
)
from gemini_enhance.core.types import (
    FatalError,
    Outcome,
    RateLimited,
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunResult,
    SafetyBlocked,
    Segment,
    SegmentError,
    SegmentOutcome,
    SegmentProcessed,
    SegmentStatus,
    Success,
    TransientError,
)
from gemini_enhance.exceptions import PipelineBusyError
from gemini_enhance.pipeline.context import ContextManager, History, append_exchange
from gemini_enhance.pipeline.segmenter import count_words, plan_segments
from gemini_enhance.prompts import restore_elements
from gemini_enhance.telemetry import TelemetryContext

if TYPE_CHECKING:
    from gemini_enhance.config import FrozenConfig
    from gemini_enhance.core.types import EnhanceRequest
    from gemini_enhance.pipeline.credentials import CredentialPool
    from gemini_enhance.pipeline.remote_client import RemoteClient
    from gemini_enhance.telemetry import TelemetryContextProtocol

logger = logging.getLogger(__name__)

EventListener: TypeAlias = Callable[[RunEvent], None]
SleepFunc: TypeAlias = Callable[[float], Awaitable[None]]


class SegmentState(enum.Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    RATE_LIMIT_WAIT = "rate_limit_wait"
    RETRYING = "retrying"
    FAILED = "failed"


class RunState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclasses.dataclass(frozen=True, slots=True)
class Transition:
    """Next segment state plus how long to wait before acting on it."""

    state: SegmentState
    delay_ms: int = 0
    reason: str = ""


def backoff_ms(attempt: int, base: int = BACKOFF_BASE_MS) -> int:
    """Exponential backoff for the 0-based retry ``attempt``: 3s, 6s, 12s..."""
    return (2**attempt) * base


def transition(
    outcome: Outcome,
    *,
    attempts_used: int,
    max_attempts: int = MAX_ATTEMPTS,
    backoff_base_ms: int = BACKOFF_BASE_MS,
) -> Transition:
    """Decide what happens after an attempt produced ``outcome``.

    ``attempts_used`` counts the attempt that just finished. Safety blocks
    and fatal errors fail at once; rate limits and transient errors retry
    until the attempt budget is spent.
    """
    match outcome:
        case Success():
            return Transition(SegmentState.SUCCEEDED)
        case SafetyBlocked(reason=reason):
            return Transition(SegmentState.FAILED, reason=reason)
        case FatalError(message=message):
            return Transition(SegmentState.FAILED, reason=message)
        case RateLimited(retry_after_ms=retry_after_ms, message=message):
            if attempts_used >= max_attempts:
                return Transition(
                    SegmentState.FAILED,
                    reason=f"Rate limit persisted after {attempts_used} attempts: {message}",
                )
            return Transition(
                SegmentState.RATE_LIMIT_WAIT, delay_ms=retry_after_ms, reason=message
            )
        case TransientError(message=message):
            if attempts_used >= max_attempts:
                return Transition(
                    SegmentState.FAILED,
                    reason=f"Failed after {attempts_used} attempts: {message}",
                )
            return Transition(
                SegmentState.RETRYING,
                delay_ms=backoff_ms(attempts_used - 1, backoff_base_ms),
                reason=message,
            )
    raise TypeError(f"Unknown outcome type: {type(outcome).__name__}")


def check_retention(
    original: str,
    outcome: Outcome,
    ratio: float = MIN_RETENTION_RATIO,
    min_words: int = RETENTION_MIN_WORDS,
) -> Outcome:
    """Downgrade a ``Success`` that dropped too much of the original text.

    Segments shorter than ``min_words`` are exempt.
    """
    if not isinstance(outcome, Success):
        return outcome
    original_words = count_words(original)
    if original_words < min_words:
        return outcome
    enhanced_words = count_words(outcome.text)
    if enhanced_words < original_words * ratio:
        return TransientError(
            f"Enhanced text kept {enhanced_words} of {original_words} words "
            f"({enhanced_words / original_words:.0%}), below the {ratio:.0%} minimum"
        )
    return outcome


class SegmentOrchestrator:
    """Runs one document at a time through client, credential pool and history.

    Progress is reported to ``listener`` as ``RunEvent`` values; use
    ``events()`` for the same stream as an async iterator. ``sleep`` is the
    only way the orchestrator waits, so tests can substitute a fake clock.
    """

    def __init__(
        self,
        cfg: FrozenConfig,
        client: RemoteClient,
        pool: CredentialPool,
        *,
        listener: EventListener | None = None,
        sleep: SleepFunc = asyncio.sleep,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self._cfg = cfg
        self._client = client
        self._pool = pool
        self._listeners: list[EventListener] = [listener] if listener else []
        self._sleep = sleep
        self._tele = telemetry or TelemetryContext()
        self._endpoint = cfg.effective_endpoint
        self._state = RunState.IDLE
        self._segment_states: dict[int, SegmentState] = {}
        self._cancel_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def client(self) -> RemoteClient:
        return self._client

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    @property
    def segment_states(self) -> Mapping[int, SegmentState]:
        """Read-only view of each segment's state in the current or last run."""
        return MappingProxyType(self._segment_states)

    def cancel(self) -> None:
        """Ask the running document to stop at the next segment or wait slice."""
        if self._state is RunState.RUNNING:
            logger.info("Cancellation requested")
        self._cancel_requested = True

    # --- Public entry points ---

    async def run(self, request: EnhanceRequest) -> RunResult:
        """Segment and enhance a whole document."""
        self._ensure_idle()
        self._pool.require_non_empty()
        segments = plan_segments(request, self._cfg)
        return await self._execute(request, segments, len(segments), resumed=False)

    async def resume(
        self,
        request: EnhanceRequest,
        segments: Iterable[Segment],
        total: int | None = None,
    ) -> RunResult:
        """Enhance caller-supplied segments of a previously started document.

        Segments keep their original indexes. History starts empty.
        """
        self._ensure_idle()
        self._pool.require_non_empty()
        ordered = sorted(segments, key=lambda s: s.index)
        highest = ordered[-1].index + 1 if ordered else 0
        if total is None:
            total = highest
        if total < highest:
            raise ValueError(f"total ({total}) is smaller than the highest index ({highest - 1})")
        return await self._execute(request, ordered, total, resumed=True)

    async def retry_failed(self, request: EnhanceRequest, result: RunResult) -> RunResult:
        """Re-run only the segments that failed in ``result``."""
        return await self.resume(
            request, [o.to_segment() for o in result.failed], result.total
        )

    async def events(self, request: EnhanceRequest) -> AsyncIterator[RunEvent]:
        """Run ``request`` and yield its events until the terminal one.

        Exceptions raised by the run are re-raised after the last event.
        Leaving the loop early cancels the run.
        """
        queue: asyncio.Queue[RunEvent | None] = asyncio.Queue()
        self._listeners.append(queue.put_nowait)
        task = asyncio.create_task(self.run(request))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while (event := await queue.get()) is not None:
                yield event
            task.result()
        finally:
            self._listeners.remove(queue.put_nowait)
            if not task.done():
                self.cancel()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    # --- Run loop ---

    def _ensure_idle(self) -> None:
        if self._state is RunState.RUNNING:
            raise PipelineBusyError(
                "A document is already being processed by this orchestrator"
            )

    async def _execute(
        self,
        request: EnhanceRequest,
        segments: list[Segment],
        total: int,
        *,
        resumed: bool,
    ) -> RunResult:
        self._state = RunState.RUNNING
        self._cancel_requested = False
        self._segment_states = {s.index: SegmentState.PENDING for s in segments}
        context = ContextManager(self._cfg, request)
        history: History = ()
        succeeded: list[SegmentOutcome] = []
        failed: list[SegmentOutcome] = []
        cancelled = False
        previous_retries = 0

        logger.info(
            "Enhancing '%s': %d segment(s) of %d%s",
            request.title,
            len(segments),
            total,
            " (resumed)" if resumed else "",
        )
        try:
            with self._tele("enhance.run", segments=len(segments), total=total):
                for position, segment in enumerate(segments):
                    if self._cancel_requested:
                        cancelled = True
                        break
                    # Throttle grows with the retries the previous segment needed
                    delay = self._cfg.inter_segment_delay_seconds * (1 + previous_retries)
                    if position > 0 and not await self._wait(delay):
                        cancelled = True
                        break

                    with self._tele("enhance.segment", index=segment.index):
                        outcome, history = await self._process_segment(
                            context, segment, history, total, resumed=resumed
                        )
                    if outcome is None:
                        cancelled = True
                        break
                    previous_retries = max(outcome.attempts - 1, 0)
                    if outcome.status is SegmentStatus.SUCCESS:
                        succeeded.append(outcome)
                    else:
                        failed.append(outcome)

                self._tele.count("segments_succeeded", len(succeeded))
                self._tele.count("segments_failed", len(failed))
        finally:
            self._state = RunState.COMPLETED

        result = RunResult(
            total=total,
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            cancelled=cancelled,
        )
        processed = len(succeeded) + len(failed)
        if cancelled:
            logger.info(
                "Cancelled after %d of %d segment(s)", processed, len(segments)
            )
            self._emit(
                RunCancelled(
                    processed_count=processed,
                    remaining_count=len(segments) - processed,
                    total=total,
                )
            )
        else:
            logger.info(
                "Finished '%s': %d succeeded, %d failed",
                request.title,
                len(succeeded),
                len(failed),
            )
            self._emit(
                RunCompleted(
                    succeeded_count=len(succeeded),
                    failed_count=len(failed),
                    total=total,
                    failed_indexes=result.failed_indexes,
                )
            )
        return result

    async def _process_segment(
        self,
        context: ContextManager,
        segment: Segment,
        history: History,
        total: int,
        *,
        resumed: bool,
    ) -> tuple[SegmentOutcome | None, History]:
        """Attempt one segment until it succeeds, fails or the run is cancelled.

        Returns ``None`` as the outcome when cancelled mid-wait.
        """
        index = segment.index
        stripped = len(segment.text.strip())
        if stripped < self._cfg.min_content_chars:
            message = (
                f"Segment {index + 1} is empty or too short "
                f"({stripped} chars, minimum {self._cfg.min_content_chars})"
            )
            return self._fail(segment, total, message, attempts=0), history

        self._pool.reset()
        credential = self._pool.current()
        payload = context.build_request(segment.text, history, part=(index + 1, total))
        body = payload.to_json()
        attempts = 0

        while True:
            attempts += 1
            self._segment_states[index] = SegmentState.ATTEMPTING
            logger.debug(
                "Segment %d/%d attempt %d with key %d",
                index + 1,
                total,
                attempts,
                credential.position + 1,
            )
            with self._tele("enhance.attempt", attempt=attempts, key=credential.position):
                outcome = await self._client.call(self._endpoint, credential, body)

            raw_text = ""
            if isinstance(outcome, Success):
                raw_text = outcome.text
                outcome = check_retention(
                    segment.text,
                    dataclasses.replace(
                        outcome, text=restore_elements(outcome.text, payload.preserved)
                    ),
                    self._cfg.min_retention_ratio,
                    self._cfg.retention_min_words,
                )

            step = transition(
                outcome,
                attempts_used=attempts,
                max_attempts=self._cfg.max_attempts,
                backoff_base_ms=self._cfg.backoff_base_ms,
            )
            self._segment_states[index] = step.state

            if isinstance(outcome, Success):
                history = append_exchange(history, payload.user_text, raw_text)
                self._emit(
                    SegmentProcessed(
                        index=index,
                        total=total,
                        enhanced_text=outcome.text,
                        progress_percent=int((index + 1) * 100 / total + 0.5),
                        original_text=segment.text,
                        is_resumed=resumed or attempts > 1,
                    )
                )
                logger.debug("Segment %d/%d enhanced", index + 1, total)
                return (
                    SegmentOutcome(
                        index=index,
                        status=SegmentStatus.SUCCESS,
                        original_text=segment.text,
                        enhanced_text=outcome.text,
                        attempts=attempts,
                    ),
                    history,
                )

            if step.state is SegmentState.FAILED:
                return (
                    self._fail(
                        segment,
                        total,
                        step.reason,
                        attempts=attempts,
                        is_rate_limit=isinstance(outcome, RateLimited),
                    ),
                    history,
                )

            wait_ms = step.delay_ms
            exhausted = False
            if step.state is SegmentState.RATE_LIMIT_WAIT:
                self._tele.count("rate_limits")
                rotated = self._pool.advance()
                exhausted = rotated is None
                if rotated is not None:
                    credential, wait_ms = rotated, 0
                    logger.warning(
                        "Segment %d/%d rate limited, switching to key %d",
                        index + 1,
                        total,
                        credential.position + 1,
                    )
                else:
                    logger.warning(
                        "Segment %d/%d rate limited on every key, waiting %.1fs",
                        index + 1,
                        total,
                        wait_ms / 1000,
                    )
            else:
                self._tele.count("retries")
                logger.warning(
                    "Segment %d/%d attempt %d failed (%s), retrying in %.1fs",
                    index + 1,
                    total,
                    attempts,
                    step.reason,
                    wait_ms / 1000,
                )

            self._emit(
                SegmentError(
                    index=index,
                    total=total,
                    message=step.reason,
                    is_rate_limit=step.state is SegmentState.RATE_LIMIT_WAIT,
                    retry_count=attempts,
                    wait_ms=wait_ms,
                )
            )
            if wait_ms and not await self._wait(wait_ms / 1000):
                return None, history
            if exhausted:
                self._pool.reset()
                credential = self._pool.current()

    def _fail(
        self,
        segment: Segment,
        total: int,
        message: str,
        *,
        attempts: int,
        is_rate_limit: bool = False,
    ) -> SegmentOutcome:
        self._segment_states[segment.index] = SegmentState.FAILED
        self._tele.count("failures")
        logger.error("Segment %d/%d failed: %s", segment.index + 1, total, message)
        self._emit(
            SegmentError(
                index=segment.index,
                total=total,
                message=message,
                is_rate_limit=is_rate_limit,
                final_failure=True,
                retry_count=attempts,
            )
        )
        return SegmentOutcome(
            index=segment.index,
            status=SegmentStatus.FAILED,
            original_text=segment.text,
            error=message,
            attempts=attempts,
        )

    async def _wait(self, seconds: float) -> bool:
        """Sleep in bounded slices; ``False`` if cancelled before the end."""
        remaining = seconds
        limit = self._cfg.rate_limit_slice_seconds
        while remaining > 0:
            if self._cancel_requested:
                return False
            step = min(limit, remaining)
            logger.debug("Waiting %.1fs (%.1fs left)", step, remaining)
            await self._sleep(step)
            remaining -= step
        return not self._cancel_requested

    def _emit(self, event: RunEvent) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Event listener failed on %s: %s",
                    type(event).__name__,
                    e,
                    exc_info=True,
                )
