"""
Run coordinator - owns the lifecycle of one crawl run.

The producer runs as a background task that feeds the target queue; the
dispatcher drains the queue on the calling thread. The queue is closed
exactly once, by the producer's task, whatever way `produce` ends.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from trawler.dispatcher import Dispatcher
from trawler.models import (
    ConfigurationError,
    RunCancelled,
    RunOutcome,
    RunResult,
    RUN_CANCELLED,
    RUN_FAILED,
    RUN_SUCCEEDED,
)
from trawler.producers.base import Parameters, Producer
from trawler.target_queue import TargetQueue

logger = logging.getLogger(__name__)


class RunCoordinator:
    """
    Runs one producer against one dispatcher.

    Final status:
    - succeeded: the producer returned and the dispatcher drained the queue,
      whatever per-item failures were recorded
    - failed: the producer could not start or crashed
    - cancelled: the shared cancellation event was set
    """

    def __init__(
        self,
        producer: Producer,
        dispatcher: Dispatcher,
        queue_capacity: int = 1,
        cancel_event: Optional[threading.Event] = None
    ):
        """
        Initialize coordinator.

        Args:
            producer: Producer to run in the background
            dispatcher: Dispatcher to run on the calling thread
            queue_capacity: Target queue capacity
            cancel_event: Shared cancellation event for the run
        """
        self.producer = producer
        self.dispatcher = dispatcher
        self.cancel_event = cancel_event or threading.Event()
        self.queue = TargetQueue(capacity=queue_capacity, cancel_event=self.cancel_event)

    def _produce(self, parameters: Parameters) -> RunOutcome:
        try:
            return self.producer.produce(parameters, self.queue.push)
        finally:
            self.queue.close()
            logger.info("Producer %s finished, target queue closed", self.producer.name)

    def run(self, parameters: Parameters) -> RunResult:
        """
        Run the producer and dispatcher to completion.

        Args:
            parameters: Parsed producer parameters

        Returns:
            RunResult with the merged outcome of both sides
        """
        logger.info("Starting run with producer %s", self.producer.name)

        dispatch_outcome = RunOutcome()
        dispatch_error: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="trawler-producer") as pool:
            future = pool.submit(self._produce, parameters)
            try:
                dispatch_outcome = self.dispatcher.run(self.queue)
            except Exception as e:
                # Unblocks a producer stuck pushing or sleeping
                dispatch_error = e
                self.cancel_event.set()
            except BaseException:
                self.cancel_event.set()
                raise

            try:
                produce_outcome = future.result()
                produce_error = None
            except Exception as e:
                produce_outcome = RunOutcome()
                produce_error = e

        outcome = produce_outcome.merge(dispatch_outcome)
        result = self._result(outcome, produce_error, dispatch_error)

        if result.ok:
            logger.info(
                "Run succeeded: %d dispatched, %d failures",
                result.dispatched, len(outcome)
            )
        else:
            logger.error("Run %s: %s", result.status, result.error)
        return result

    def _result(
        self,
        outcome: RunOutcome,
        produce_error: Optional[BaseException],
        dispatch_error: Optional[BaseException]
    ) -> RunResult:
        dispatched = self.dispatcher.dispatched

        for error in (dispatch_error, produce_error):
            if error is not None and not isinstance(error, RunCancelled):
                if isinstance(error, ConfigurationError):
                    logger.error("Run could not start: %s", error)
                else:
                    logger.error("Run crashed: %s", error, exc_info=error)
                return RunResult(status=RUN_FAILED, outcome=outcome, dispatched=dispatched, error=error)

        if dispatch_error is not None or produce_error is not None or self.cancel_event.is_set():
            return RunResult(
                status=RUN_CANCELLED,
                outcome=outcome,
                dispatched=dispatched,
                error=dispatch_error or produce_error or RunCancelled("run cancelled")
            )

        return RunResult(status=RUN_SUCCEEDED, outcome=outcome, dispatched=dispatched)
