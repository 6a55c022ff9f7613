"""
Base job submitter interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict


@dataclass
class RunMetadata:
    """Run-scoped values attached to every job of a run."""
    run_name: str
    producer: str = ""
    profile: str = ""
    ttl_seconds: Optional[int] = None
    scan_service_account: Optional[str] = None
    upload_service_account: Optional[str] = None


@dataclass
class JobRequest:
    """A single job-creation request for one target."""
    identifier: str
    version: str
    downloader: str
    metadata: RunMetadata


@dataclass
class JobHandle:
    """Reference to a created job."""
    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)


class JobSubmitter(ABC):
    """
    Abstract base class for job-creation collaborators.

    Submitters receive fully resolved requests (downloader override already
    applied) and either return a handle or raise DispatchError.
    """

    @abstractmethod
    def submit(self, request: JobRequest) -> JobHandle:
        """
        Create a job for one target.

        Args:
            request: Job request

        Returns:
            JobHandle for the created job

        Raises:
            DispatchError: If the orchestration API rejects the request
        """
        pass
