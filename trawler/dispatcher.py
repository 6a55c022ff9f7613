"""
Dispatch loop: paces queued targets into the job-creation backend.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from trawler.jobs.base import JobSubmitter, JobRequest, JobHandle, RunMetadata
from trawler.models import (
    Target,
    RunOutcome,
    DispatchError,
    RunCancelled,
    STAGE_DISPATCH,
)
from trawler.target_queue import TargetQueue
from trawler.timing import sleep_or_cancel

logger = logging.getLogger(__name__)


@dataclass
class DispatchSettings:
    """
    Dispatcher configuration.

    Attributes:
        metadata: Run-scoped values attached to every job
        interval: Minimum gap between two dispatches
        downloader_override: Replaces every target's own downloader when set
    """
    metadata: RunMetadata
    interval: timedelta = field(default_factory=lambda: timedelta(minutes=1))
    downloader_override: Optional[str] = None


class Dispatcher:
    """
    Consumes targets one at a time and submits a job for each.

    Responsibilities:
    1. Resolve the effective downloader (run override beats target default)
    2. Enforce the minimum interval between dispatches
    3. Submit the job request
    4. Record failures without stopping the loop
    """

    def __init__(
        self,
        submitter: JobSubmitter,
        settings: DispatchSettings,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], None]] = None
    ):
        """
        Initialize dispatcher.

        Args:
            submitter: Job-creation backend
            settings: Dispatch settings
            cancel_event: Shared cancellation event for the run
            clock: Monotonic clock in seconds
            wait: Blocking sleep taking seconds (default: cancellable sleep)
        """
        self.submitter = submitter
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._wait = wait or (lambda seconds: sleep_or_cancel(self.cancel_event, seconds))

        self.last_dispatch_at: Optional[float] = None
        self.dispatched = 0
        self.handles: List[JobHandle] = []

    def resolve_downloader(self, target: Target) -> str:
        """Return the run-level override if set, else the target's own downloader."""
        if self.settings.downloader_override:
            return self.settings.downloader_override
        return target.default_downloader

    def pace(self) -> float:
        """
        Block until the configured interval has passed since the last dispatch.

        Returns:
            Seconds waited
        """
        interval = self.settings.interval.total_seconds()
        remaining = 0.0
        if self.last_dispatch_at is not None:
            remaining = interval - (self._clock() - self.last_dispatch_at)

        if remaining > 0:
            self._wait(remaining)
        else:
            remaining = 0.0

        self.last_dispatch_at = self._clock()
        return remaining

    def dispatch(self, target: Target) -> JobHandle:
        """
        Pace and submit one target.

        Raises:
            DispatchError: If no downloader can be resolved or submission fails
            RunCancelled: If the run is cancelled before the job is submitted
        """
        self._check_cancelled(target)
        downloader = self.resolve_downloader(target)
        if not downloader:
            raise DispatchError(
                f"No downloader for {target.identifier}: target has no default and no override is set"
            )

        waited = self.pace()
        # pace() returns without consulting the event when no wait is due
        self._check_cancelled(target)
        logger.info(
            "Dispatching target identifier=%s version=%s downloader=%s run=%s (waited %.2fs)",
            target.identifier, target.version, downloader,
            self.settings.metadata.run_name, waited
        )

        request = JobRequest(
            identifier=target.identifier,
            version=target.version,
            downloader=downloader,
            metadata=self.settings.metadata
        )
        return self.submitter.submit(request)

    def _check_cancelled(self, target: Target) -> None:
        if self.cancel_event.is_set():
            raise RunCancelled(f"cancelled before dispatching {target.identifier}")

    def run(self, queue: TargetQueue) -> RunOutcome:
        """
        Drain the queue until it is closed and empty.

        Args:
            queue: Queue fed by the producer

        Returns:
            RunOutcome holding every failed dispatch
        """
        outcome = RunOutcome()

        for target in queue:
            try:
                handle = self.dispatch(target)
            except RunCancelled:
                raise
            except DispatchError as e:
                logger.error("Error dispatching target %s: %s", target.identifier, e)
                outcome.record(STAGE_DISPATCH, target.identifier, e)
                continue
            except Exception as e:
                logger.exception("Unexpected error dispatching target %s", target.identifier)
                outcome.record(STAGE_DISPATCH, target.identifier, e)
                continue

            self.dispatched += 1
            self.handles.append(handle)
            logger.info("Job created: %s for %s", handle.name, target.identifier)

        logger.info(
            "Dispatch loop finished: %d dispatched, %d failed",
            self.dispatched, len(outcome)
        )
        return outcome
