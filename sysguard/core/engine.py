"""
SysGuard - Detection Engine

This module executes a Strategy: each CheckInstance reads its evidence
through the matching adapter, has its evaluation policy applied and yields
exactly one Outcome. Per-check failures never abort the scan; they become
Unknown outcomes carrying the reason.
"""

from collections import deque
from concurrent import futures
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Callable, Iterator, Optional

from .adapters import FileSource, LiveSource
from .check import (
    REASON_ERROR,
    REASON_NOT_APPLICABLE,
    REASON_NOT_CONFIGURED,
    REASON_PROBE_FAILED,
    REASON_SOURCE_UNAVAILABLE,
    REASON_TYPE_MISMATCH,
    CheckInstance,
    Evidence,
    Outcome,
    SourceKind,
    Strategy,
)
from .errors import (
    EvaluationTypeMismatch,
    KeyNotFound,
    ProbeFailed,
    SourceUnavailable,
)
from .evaluation import evaluate


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_CHECK_TIMEOUT = 10.0

ProgressCallback = Callable[[str, str, str, Optional[Outcome]], None]


@dataclass
class _Task:
    """A submitted check and the time its worker picked it up."""
    instance: CheckInstance
    started: threading.Event = field(default_factory=threading.Event)
    started_at: float = 0.0
    future: Optional[futures.Future] = None


class DetectionEngine:
    """Runs check instances through adapters and evaluation policies.

    Checks run on a bounded thread pool. At most ``max_workers`` checks are
    in flight at once and outcomes are yielded in strategy order regardless
    of completion order. A check that misses its deadline is abandoned and
    no longer counts against ``max_workers``; later checks run on a fresh
    pool.

    Args:
        file_source: Adapter for file-based evidence
        live_source: Adapter for live-state evidence
        max_workers: Worker pool size
        timeout: Per-check deadline in seconds, measured from the moment the
            check starts running

    Raises:
        ValueError: If max_workers or timeout is not positive
    """

    def __init__(
        self,
        file_source: Optional[FileSource] = None,
        live_source: Optional[LiveSource] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: float = DEFAULT_CHECK_TIMEOUT,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.file_source = file_source or FileSource()
        self.live_source = live_source or LiveSource()
        self.max_workers = max_workers
        self.timeout = timeout

    def execute(
        self,
        strategy: Strategy,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Outcome]:
        """Execute a strategy lazily.

        Args:
            strategy: Ordered check instances to run
            progress_callback: Optional callback called with
                (event_type, check_id, label, outcome) where event_type is
                'start' when a check is scheduled and 'complete' when its
                outcome is emitted (outcome is None for 'start')
            cancel_event: When set, no further checks are scheduled; checks
                already in flight are drained and iteration stops

        Yields:
            One Outcome per scheduled instance, in strategy order
        """
        instances = list(strategy)
        executor = self._new_executor()
        in_flight: deque[_Task] = deque()
        next_index = 0

        try:
            while True:
                while (
                    next_index < len(instances)
                    and len(in_flight) < self.max_workers
                    and not (cancel_event is not None and cancel_event.is_set())
                ):
                    instance = instances[next_index]
                    next_index += 1
                    if progress_callback:
                        progress_callback("start", instance.check_id, instance.label, None)
                    task = _Task(instance)
                    task.future = executor.submit(self._run_guarded, task)
                    in_flight.append(task)

                if not in_flight:
                    break

                task = in_flight.popleft()
                outcome = self._wait(task)
                if not task.future.done():
                    # The abandoned worker still holds its thread
                    executor.shutdown(wait=False)
                    executor = self._new_executor()

                if progress_callback:
                    progress_callback("complete", outcome.check_id, outcome.label, outcome)
                yield outcome
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if next_index < len(instances):
            logger.warning(
                "Scan cancelled: %d of %d checks were not run",
                len(instances) - next_index,
                len(instances),
            )

    def run_check(self, instance: CheckInstance) -> Outcome:
        """Execute a single check instance synchronously.

        Returns:
            Outcome for the instance. Evidence and evaluation failures are
            reported as Unknown; other exceptions propagate.
        """
        definition = instance.definition

        if not instance.applicable:
            evidence = Evidence(
                source=instance.locator.describe(),
                active=False,
                read_ok=False,
                error=instance.skip_reason,
            )
            return Outcome.unknown(instance, evidence, instance.skip_reason, REASON_NOT_APPLICABLE)

        try:
            if definition.source == SourceKind.FILE:
                evidence = self.file_source.read(instance.locator)
            else:
                evidence = self.live_source.probe(instance.locator)
        except KeyNotFound as e:
            evidence = Evidence(
                source=e.source or instance.locator.describe(),
                active=False,
                error=str(e),
            )
            return Outcome.unknown(instance, evidence, str(e), REASON_NOT_CONFIGURED)
        except SourceUnavailable as e:
            evidence = Evidence.unavailable(e.source or instance.locator.describe(), str(e))
            return Outcome.unknown(instance, evidence, str(e), REASON_SOURCE_UNAVAILABLE)
        except ProbeFailed as e:
            evidence = Evidence.unavailable(e.source or instance.locator.describe(), str(e))
            return Outcome.unknown(instance, evidence, str(e), REASON_PROBE_FAILED)

        try:
            verdict, explanation = evaluate(definition.policy, evidence, instance.parameter)
        except KeyNotFound as e:
            return Outcome.unknown(instance, evidence, str(e), REASON_NOT_CONFIGURED)
        except EvaluationTypeMismatch as e:
            return Outcome.unknown(instance, evidence, str(e), REASON_TYPE_MISMATCH)

        return Outcome.from_instance(instance, verdict, evidence, explanation)

    def _new_executor(self) -> futures.ThreadPoolExecutor:
        return futures.ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="sysguard-check",
        )

    def _run_guarded(self, task: _Task) -> Outcome:
        """Worker entry point: never raises."""
        instance = task.instance
        task.started_at = time.monotonic()
        task.started.set()
        try:
            return self.run_check(instance)
        except Exception as e:
            logger.warning(
                "Check %s raised %s: %s",
                instance.check_id,
                type(e).__name__,
                e,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            evidence = Evidence.unavailable(
                instance.locator.describe(),
                f"{type(e).__name__}: {e}",
            )
            return Outcome.unknown(
                instance,
                evidence,
                f"Check raised an unexpected error: {e}",
                REASON_ERROR,
            )

    def _wait(self, task: _Task) -> Outcome:
        """Wait for a check until its deadline; expiry yields Unknown.

        The deadline starts once a worker picks the check up, so time spent
        queued behind other checks is not charged to it.
        """
        instance = task.instance
        task.started.wait()
        remaining = task.started_at + self.timeout - time.monotonic()
        try:
            return task.future.result(timeout=max(0.0, remaining))
        except futures.TimeoutError:
            logger.warning("Check %s timed out after %ss", instance.check_id, self.timeout)
            message = f"Timed out after {self.timeout:g}s"
            evidence = Evidence.unavailable(instance.locator.describe(), message)
            return Outcome.unknown(instance, evidence, message, REASON_PROBE_FAILED)
