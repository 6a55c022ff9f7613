"""
Core data model for Trawler runs.

Targets discovered by producers, the per-item error aggregate collected
across a run, and the exception taxonomy shared by every component.
"""
import threading
from dataclasses import dataclass, field
from typing import Optional, List


class TrawlerError(Exception):
    """Base class for Trawler errors."""
    pass


class ConfigurationError(TrawlerError):
    """Raised when a run cannot start (missing groups, missing parameters)."""
    pass


class SourceError(TrawlerError):
    """Raised when a provider listing or page fetch fails."""
    pass


class TransformError(TrawlerError):
    """Raised when a provider item cannot be turned into a Target."""
    pass


class DispatchError(TrawlerError):
    """Raised when a job-creation request fails for one target."""
    pass


class RunCancelled(TrawlerError):
    """Raised when the run's cancellation event is observed."""
    pass


class QueueClosedError(TrawlerError):
    """Raised on push to a closed queue or on a second close."""
    pass


# Stages an ItemError can be recorded in
STAGE_ENUMERATION = "enumeration"
STAGE_TRANSFORM = "transform"
STAGE_DISPATCH = "dispatch"


@dataclass(frozen=True)
class Target:
    """
    One discovered unit of work.

    Attributes:
        identifier: Provider-specific coordinate (clone URL, image reference, package name)
        version: Version to fetch; empty means latest/default at download time
        default_downloader: Downloader the producer suggests; empty if no opinion
    """
    identifier: str
    version: str = ""
    default_downloader: str = ""

    def __post_init__(self):
        if not self.identifier:
            raise TransformError("Target identifier must be non-empty")


@dataclass
class ItemError:
    """A single non-fatal failure recorded during a run."""
    stage: str
    subject: str
    error: BaseException

    def __str__(self) -> str:
        return f"[{self.stage}] {self.subject}: {self.error}"


class RunOutcome:
    """
    Aggregate of per-group, per-item and per-dispatch failures.

    Recording a failure never stops the run; the aggregate is only
    surfaced once the run is over.
    """

    def __init__(self, errors: Optional[List[ItemError]] = None):
        self._errors: List[ItemError] = list(errors or [])
        self._lock = threading.Lock()

    def record(self, stage: str, subject: str, error: BaseException) -> ItemError:
        """
        Record a failure.

        Args:
            stage: One of enumeration, transform, dispatch
            subject: Group name or target identifier the failure belongs to
            error: The exception raised

        Returns:
            The recorded ItemError
        """
        item = ItemError(stage=stage, subject=subject, error=error)
        with self._lock:
            self._errors.append(item)
        return item

    def merge(self, other: 'RunOutcome') -> 'RunOutcome':
        """Return a new outcome holding both sets of errors, self first."""
        return RunOutcome(self.errors + other.errors)

    @property
    def errors(self) -> List[ItemError]:
        with self._lock:
            return list(self._errors)

    @property
    def has_failures(self) -> bool:
        return len(self) > 0

    def count(self, stage: Optional[str] = None) -> int:
        """Count failures, optionally restricted to one stage."""
        errors = self.errors
        if stage is None:
            return len(errors)
        return len([e for e in errors if e.stage == stage])

    def summary(self) -> str:
        """Human-readable multi-line summary."""
        errors = self.errors
        if not errors:
            return "no failures"
        lines = [f"{len(errors)} failure(s):"]
        lines.extend(f"  {e}" for e in errors)
        return "\n".join(lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def __iter__(self):
        return iter(self.errors)


# Terminal run states
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"
RUN_CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Terminal state of one run as reported by the coordinator."""
    status: str
    outcome: RunOutcome = field(default_factory=RunOutcome)
    dispatched: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        """True when the run completed; per-item failures do not count against it."""
        return self.status == RUN_SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.status == RUN_SUCCEEDED:
            return 0
        if self.status == RUN_CANCELLED:
            return 130
        return 1
