"""
End-to-end tests for a run: producer thread, target queue, dispatcher.

Provider listings are scripted and time is faked, so the scenarios run
without network access or real sleeps.
"""
import threading
from datetime import timedelta
from unittest.mock import Mock

from trawler.coordinator import RunCoordinator
from trawler.dispatcher import DispatchSettings, Dispatcher
from trawler.jobs.base import RunMetadata
from trawler.models import (
    ConfigurationError,
    SourceError,
    Target,
    RUN_CANCELLED,
    RUN_FAILED,
    RUN_SUCCEEDED,
    STAGE_ENUMERATION,
    STAGE_TRANSFORM,
)
from trawler.pagination import Page, PageReader, RateLimitSignal
from trawler.producers.base import Producer


class ScriptedProducer(Producer):
    """Producer whose groups and pages are scripted per test."""

    name = "scripted"
    default_downloader = "git"

    def __init__(self, listings, clock=None, **kwargs):
        super().__init__(**kwargs)
        self.listings = listings
        self.clock = clock
        self.fetch_times = []

    def produce(self, parameters, sink):
        groups = parameters.get("GROUPS")
        if not groups:
            raise ConfigurationError("no groups specified")
        return self.crawl_groups(
            groups.split(","),
            lambda group, outcome: self.crawl(group, sink, outcome)
        )

    def crawl(self, group, sink, outcome):
        for item in self.reader.iter_items(lambda page, size: self.fetch(group, page), group):
            self.emit(sink, outcome, f"{group}/{item}", lambda: Target(
                identifier=item["url"], default_downloader=self.default_downloader
            ))

    def fetch(self, group, page_number):
        if self.clock is not None:
            self.fetch_times.append((group, page_number, self.clock.now()))
        page = self.listings[group][page_number - 1]
        if isinstance(page, Exception):
            raise page
        return page


def items(group, count, start=0):
    return [{"url": f"{group}-{i}"} for i in range(start, start + count)]


class TestRunCoordinator:
    """Test complete runs."""

    def setup_method(self):
        self.metadata = RunMetadata(run_name="nightly", producer="scripted", profile="default")

    def build(self, listings, submitter, clock, interval_seconds=0, override=None, cancel_event=None):
        cancel_event = cancel_event or threading.Event()
        reader = PageReader(
            page_size=100,
            cancel_event=cancel_event,
            now=clock.now,
            wait=clock.wait
        )
        producer = ScriptedProducer(listings, clock=clock, reader=reader)
        dispatcher = Dispatcher(
            submitter,
            DispatchSettings(
                metadata=self.metadata,
                interval=timedelta(seconds=interval_seconds),
                downloader_override=override
            ),
            cancel_event=cancel_event,
            clock=clock.monotonic,
            wait=clock.wait
        )
        coordinator = RunCoordinator(producer, dispatcher, cancel_event=cancel_event)
        return coordinator, producer

    def test_two_groups_dispatched_in_order(self, submitter, fake_clock):
        listings = {
            "a": [Page(items=items("a", 3))],
            "b": [
                Page(items=items("b", 100), next_page=2),
                Page(items=items("b", 50, start=100), next_page=0),
            ],
        }
        coordinator, _ = self.build(listings, submitter, fake_clock)

        result = coordinator.run({"GROUPS": "a,b"})

        assert result.status == RUN_SUCCEEDED
        assert result.exit_code == 0
        assert result.dispatched == 153
        expected = [f"a-{i}" for i in range(3)] + [f"b-{i}" for i in range(150)]
        assert submitter.identifiers == expected
        assert not result.outcome.has_failures

    def test_failing_group_does_not_stop_others(self, submitter, fake_clock):
        listings = {
            "a": [SourceError("GitHub API returned 500")],
            "b": [Page(items=items("b", 2))],
        }
        coordinator, _ = self.build(listings, submitter, fake_clock)

        result = coordinator.run({"GROUPS": "a,b"})

        assert result.status == RUN_SUCCEEDED
        assert submitter.identifiers == ["b-0", "b-1"]
        assert result.outcome.count(STAGE_ENUMERATION) == 1
        assert result.outcome.errors[0].subject == "a"

    def test_failure_on_second_page_keeps_first_page_targets(self, submitter, fake_clock):
        listings = {
            "a": [Page(items=items("a", 2), next_page=2), SourceError("timeout")],
            "b": [Page(items=items("b", 1))],
        }
        coordinator, _ = self.build(listings, submitter, fake_clock)

        result = coordinator.run({"GROUPS": "a,b"})

        assert submitter.identifiers == ["a-0", "a-1", "b-0"]
        assert len(result.outcome) == 1

    def test_malformed_items_and_failed_dispatches_are_merged(self, submitter, fake_clock):
        submitter.fail_identifiers = {"a-1"}
        listings = {"a": [Page(items=[{"url": "a-0"}, {"no_url": True}, {"url": "a-1"}])]}
        coordinator, _ = self.build(listings, submitter, fake_clock)

        result = coordinator.run({"GROUPS": "a"})

        assert result.status == RUN_SUCCEEDED
        assert submitter.identifiers == ["a-0"]
        assert result.outcome.count(STAGE_TRANSFORM) == 1
        assert result.outcome.count() == 2
        assert "2 failure(s)" in result.outcome.summary()

    def test_rate_limited_group_pauses_before_next_page(self, submitter, fake_clock):
        start = fake_clock.now()
        reset = fake_clock.epoch_in(2)
        listings = {
            "a": [
                Page(
                    items=items("a", 1),
                    next_page=2,
                    rate_limit=RateLimitSignal.from_headers(
                        {"remaining": "0", "reset": str(reset)}, "remaining", "reset"
                    )
                ),
                Page(items=items("a", 1, start=1)),
            ],
        }
        coordinator, producer = self.build(listings, submitter, fake_clock)

        result = coordinator.run({"GROUPS": "a"})

        assert result.dispatched == 2
        assert 2.0 in fake_clock.waits
        page_two_time = producer.fetch_times[1][2]
        assert page_two_time - start >= timedelta(seconds=2)

    def test_pacing_holds_across_the_run(self, submitter, fake_clock):
        listings = {"a": [Page(items=items("a", 4))]}
        coordinator, _ = self.build(listings, submitter, fake_clock, interval_seconds=60)

        coordinator.run({"GROUPS": "a"})

        gaps = [b - a for a, b in zip(submitter.times, submitter.times[1:])]
        assert len(gaps) == 3
        assert all(gap >= 60 for gap in gaps)

    def test_override_applies_to_every_dispatch(self, submitter, fake_clock):
        listings = {"a": [Page(items=items("a", 2))]}
        coordinator, _ = self.build(listings, submitter, fake_clock, override="archive")

        coordinator.run({"GROUPS": "a"})

        assert [r.downloader for r in submitter.requests] == ["archive", "archive"]

    def test_configuration_error_fails_run(self, submitter, fake_clock):
        coordinator, _ = self.build({}, submitter, fake_clock)

        result = coordinator.run({})

        assert result.status == RUN_FAILED
        assert result.exit_code == 1
        assert isinstance(result.error, ConfigurationError)
        assert submitter.requests == []
        assert coordinator.queue.closed

    def test_producer_crash_fails_run(self, submitter, fake_clock):
        coordinator, producer = self.build({}, submitter, fake_clock)
        producer.crawl_groups = Mock(side_effect=RuntimeError("bug"))

        result = coordinator.run({"GROUPS": "a"})

        assert result.status == RUN_FAILED
        assert isinstance(result.error, RuntimeError)

    def test_cancelled_run(self, submitter, fake_clock):
        event = threading.Event()
        event.set()
        coordinator, _ = self.build({"a": [Page(items=items("a", 1))]}, submitter, fake_clock, cancel_event=event)

        result = coordinator.run({"GROUPS": "a"})

        assert result.status == RUN_CANCELLED
        assert result.exit_code == 130
        assert submitter.requests == []
