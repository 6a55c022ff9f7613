"""
Unit tests for the paginated source reader.
"""
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from trawler.models import RunCancelled, SourceError
from trawler.pagination import Page, PageReader, RateLimitSignal, TokenPages


def scripted_fetch(pages):
    """Fetch function serving pages by 1-based number and recording calls."""
    calls = []

    def fetch(page_number, page_size):
        calls.append((page_number, page_size))
        return pages[page_number - 1]

    fetch.calls = calls
    return fetch


class TestRateLimitSignal:
    """Test rate-limit header parsing."""

    def test_parses_remaining_and_epoch_reset(self):
        signal = RateLimitSignal.from_headers(
            {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1704067205"},
            "x-ratelimit-remaining",
            "x-ratelimit-reset"
        )

        assert signal.remaining == 0
        assert signal.exhausted is True
        assert signal.reset_at == datetime(2024, 1, 1, 0, 0, 5, tzinfo=timezone.utc)

    def test_unparsable_reset_is_none(self):
        signal = RateLimitSignal.from_headers(
            {"remaining": "0", "reset": "soon"}, "remaining", "reset"
        )

        assert signal.exhausted is True
        assert signal.reset_at is None
        assert signal.raw_reset == "soon"

    def test_missing_headers_are_not_exhausted(self):
        signal = RateLimitSignal.from_headers({}, "remaining", "reset")

        assert signal.remaining is None
        assert signal.exhausted is False


class TestPageReaderTermination:
    """Test when the reader stops fetching."""

    def setup_method(self):
        self.wait = Mock()
        self.reader = PageReader(page_size=2, wait=self.wait)

    def test_yields_all_items_until_no_next_page(self):
        fetch = scripted_fetch([
            Page(items=[1, 2], next_page=2),
            Page(items=[3, 4], next_page=3),
            Page(items=[5], next_page=None),
        ])

        items = list(self.reader.iter_items(fetch, "numbers"))

        assert items == [1, 2, 3, 4, 5]
        assert fetch.calls == [(1, 2), (2, 2), (3, 2)]

    def test_next_page_zero_is_terminal(self):
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2),
            Page(items=["b"], next_page=0),
        ])

        assert list(self.reader.iter_items(fetch)) == ["a", "b"]
        assert len(fetch.calls) == 2

    def test_next_page_at_total_pages_is_terminal(self):
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2, total_pages=3),
            Page(items=["b"], next_page=3, total_pages=3),
            Page(items=["never"], next_page=None),
        ])

        assert list(self.reader.iter_items(fetch)) == ["a", "b"]
        assert len(fetch.calls) == 2

    def test_non_advancing_next_page_is_terminal(self):
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2),
            Page(items=["b"], next_page=2),
        ])

        assert list(self.reader.iter_items(fetch)) == ["a", "b"]
        assert fetch.calls == [(1, 2), (2, 2)]

    def test_backwards_next_page_is_terminal(self):
        fetch = scripted_fetch([Page(items=["a"], next_page=1)])

        assert list(self.reader.iter_items(fetch)) == ["a"]
        assert len(fetch.calls) == 1

    def test_empty_first_page(self):
        fetch = scripted_fetch([Page(items=[], next_page=None)])

        assert list(self.reader.iter_items(fetch)) == []

    def test_lazy_fetching(self):
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2),
            Page(items=["b"], next_page=None),
        ])

        items = self.reader.iter_items(fetch)
        assert fetch.calls == []

        assert next(items) == "a"
        assert len(fetch.calls) == 1

    def test_fetch_error_propagates_without_retry(self):
        fetch = Mock(side_effect=[Page(items=["a"], next_page=2), SourceError("boom")])

        items = self.reader.iter_items(fetch)
        assert next(items) == "a"
        with pytest.raises(SourceError):
            next(items)
        assert fetch.call_count == 2

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            PageReader(page_size=0)


class TestPageReaderBackoff:
    """Test rate-limit pauses between pages."""

    def test_waits_until_reset_before_next_page(self, fake_clock):
        reader = PageReader(now=fake_clock.now, wait=fake_clock.wait)
        reset = fake_clock.now() + timedelta(seconds=5)
        fetch_times = []

        def fetch(page_number, page_size):
            fetch_times.append(fake_clock.now())
            if page_number == 1:
                return Page(
                    items=["a"],
                    next_page=2,
                    rate_limit=RateLimitSignal(remaining=0, reset_at=reset)
                )
            return Page(items=["b"])

        assert list(reader.iter_items(fetch)) == ["a", "b"]
        assert fake_clock.waits == [5.0]
        assert fetch_times[1] >= reset

    def test_unparsable_reset_uses_fallback(self, fake_clock):
        reader = PageReader(
            rate_limit_fallback=timedelta(hours=1),
            now=fake_clock.now,
            wait=fake_clock.wait
        )
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2, rate_limit=RateLimitSignal(remaining=0, raw_reset="bogus")),
            Page(items=["b"]),
        ])

        list(reader.iter_items(fetch))

        assert fake_clock.waits == [3600.0]

    def test_reset_in_the_past_waits_zero(self, fake_clock):
        reader = PageReader(now=fake_clock.now, wait=fake_clock.wait)
        reset = fake_clock.now() - timedelta(seconds=30)

        assert reader.backoff_seconds(RateLimitSignal(remaining=0, reset_at=reset)) == 0.0

    def test_no_wait_when_quota_remains(self, fake_clock):
        reader = PageReader(now=fake_clock.now, wait=fake_clock.wait)
        fetch = scripted_fetch([
            Page(items=["a"], next_page=2, rate_limit=RateLimitSignal(remaining=10)),
            Page(items=["b"]),
        ])

        list(reader.iter_items(fetch))

        assert fake_clock.waits == []

    def test_no_wait_after_last_page(self, fake_clock):
        reader = PageReader(now=fake_clock.now, wait=fake_clock.wait)
        fetch = scripted_fetch([
            Page(items=["a"], rate_limit=RateLimitSignal(remaining=0, raw_reset="bogus")),
        ])

        list(reader.iter_items(fetch))

        assert fake_clock.waits == []


class TestPageReaderCancellation:
    """Test cancellation of a listing."""

    def test_cancel_before_first_fetch(self):
        event = threading.Event()
        event.set()
        fetch = Mock()
        reader = PageReader(cancel_event=event, wait=Mock())

        with pytest.raises(RunCancelled):
            list(reader.iter_items(fetch))
        fetch.assert_not_called()

    def test_default_wait_raises_when_cancelled_mid_listing(self):
        event = threading.Event()
        reader = PageReader(cancel_event=event)

        def fetch(page_number, page_size):
            event.set()
            return Page(items=["a"], next_page=2, rate_limit=RateLimitSignal(remaining=0, raw_reset="x"))

        items = reader.iter_items(fetch)
        assert next(items) == "a"
        with pytest.raises(RunCancelled):
            next(items)


class TestTokenPages:
    """Test continuation-token listings driven by the reader."""

    def test_reader_follows_tokens(self):
        calls = []
        listing = {None: (["a", "b"], "t2"), "t2": (["c"], "t3"), "t3": (["d"], None)}

        def fetch_tokens(token, page_size):
            calls.append((token, page_size))
            return listing[token]

        items = list(PageReader(page_size=2, wait=Mock()).iter_items(TokenPages(fetch_tokens)))

        assert items == ["a", "b", "c", "d"]
        assert calls == [(None, 2), ("t2", 2), ("t3", 2)]

    def test_empty_token_ends_listing(self):
        page = TokenPages(lambda token, page_size: (["a"], ""))(1, 10)

        assert page.next_page is None

    def test_unknown_page_raises(self):
        with pytest.raises(SourceError):
            TokenPages(lambda token, page_size: ([], None))(3, 10)
