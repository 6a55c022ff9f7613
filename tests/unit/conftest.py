"""
Pytest configuration for unit tests.

Provides an injectable fake clock, a recording job submitter and canned
HTTP responses so that pacing, backoff and provider paging can be tested
without real sleeps, clusters or network access.
"""
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from trawler.jobs.base import JobHandle, JobSubmitter
from trawler.models import DispatchError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when something waits on it."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.current = start
        self.waits = []
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self.current

    def monotonic(self) -> float:
        with self._lock:
            return (self.current - EPOCH).total_seconds()

    def wait(self, seconds: float) -> None:
        with self._lock:
            self.waits.append(seconds)
            self.current += timedelta(seconds=seconds)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.current += timedelta(seconds=seconds)

    def epoch_in(self, seconds: float) -> int:
        """Epoch seconds `seconds` from now, as carried by reset headers."""
        return int(self.monotonic() + seconds)


class RecordingSubmitter(JobSubmitter):
    """Submitter that records every request and the fake time it arrived."""

    def __init__(self, clock: FakeClock = None):
        self.clock = clock
        self.requests = []
        self.times = []
        self.fail_identifiers = set()

    def submit(self, request):
        if request.identifier in self.fail_identifiers:
            raise DispatchError(f"rejected {request.identifier}")
        self.requests.append(request)
        if self.clock is not None:
            self.times.append(self.clock.monotonic())
        return JobHandle(name=f"job-{len(self.requests)}", namespace="test-ns")

    @property
    def identifiers(self):
        return [r.identifier for r in self.requests]


def build_response(json_data=None, status=200, headers=None, links=None, text=""):
    """Mock requests.Response with the attributes the clients read."""
    response = Mock(spec=requests.Response)
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers or {})
    response.links = links or {}
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def fake_clock():
    """Fake clock starting at 2024-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def submitter(fake_clock):
    """Recording submitter timestamped with the fake clock."""
    return RecordingSubmitter(clock=fake_clock)


@pytest.fixture
def make_response():
    """Factory for canned HTTP responses."""
    return build_response


@pytest.fixture
def session():
    """Mock requests session; set session.get.side_effect per test."""
    mock_session = Mock(spec=requests.Session)
    mock_session.headers = {}
    return mock_session
