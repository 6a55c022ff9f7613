"""
Paginated source reader.

Walks a page-based listing API, yielding items lazily and pausing
whenever the provider reports an exhausted rate-limit window. Shared by
every producer; providers only supply a fetch function.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from trawler.models import RunCancelled, SourceError
from trawler.timing import sleep_or_cancel

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_RATE_LIMIT_FALLBACK = timedelta(hours=1)


@dataclass
class RateLimitSignal:
    """
    Rate-limit state reported with one response.

    Attributes:
        remaining: Requests left in the current window (None if not reported)
        reset_at: When the window resets (None if missing or unparsable)
        raw_reset: Reset value as received, kept for logging
    """
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None
    raw_reset: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        remaining_header: str,
        reset_header: str
    ) -> 'RateLimitSignal':
        """
        Build a signal from response headers carrying an epoch-seconds reset.

        Args:
            headers: Response headers (case-insensitive mapping from requests)
            remaining_header: Header holding the remaining request count
            reset_header: Header holding the reset instant in epoch seconds

        Returns:
            RateLimitSignal; unparsable values are left as None
        """
        remaining = None
        remaining_raw = headers.get(remaining_header)
        if remaining_raw is not None:
            try:
                remaining = int(str(remaining_raw).strip())
            except ValueError:
                remaining = None

        reset_at = None
        reset_raw = headers.get(reset_header)
        if reset_raw is not None:
            try:
                reset_at = datetime.fromtimestamp(int(str(reset_raw).strip()), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                reset_at = None

        return cls(remaining=remaining, reset_at=reset_at, raw_reset=reset_raw)


@dataclass
class Page:
    """
    One page of a listing.

    Attributes:
        items: Items on this page, in provider order
        next_page: Next page number; None or 0 means no further pages
        total_pages: Total page count, when the provider reports it
        rate_limit: Rate-limit signal derived from this response
    """
    items: List[Any] = field(default_factory=list)
    next_page: Optional[int] = None
    total_pages: Optional[int] = None
    rate_limit: Optional[RateLimitSignal] = None


# fetch_page(page_number, page_size) -> Page
FetchPage = Callable[[int, int], Page]

# fetch_tokens(continuation_token, page_size) -> (items, next_token)
FetchTokens = Callable[[Optional[str], int], Tuple[List[Any], Optional[str]]]


class TokenPages:
    """
    Adapts a continuation-token listing to the numbered page cursor.

    Page 1 is fetched without a token; the token returned with page N is
    remembered and sent when page N+1 is requested. One instance serves
    one listing.
    """

    def __init__(self, fetch_tokens: FetchTokens):
        self._fetch_tokens = fetch_tokens
        self._tokens: Dict[int, Optional[str]] = {1: None}

    def __call__(self, page_number: int, page_size: int) -> Page:
        if page_number not in self._tokens:
            raise SourceError(f"no continuation token for page {page_number}")

        items, next_token = self._fetch_tokens(self._tokens[page_number], page_size)
        if not next_token:
            return Page(items=list(items))

        self._tokens[page_number + 1] = next_token
        return Page(items=list(items), next_page=page_number + 1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageReader:
    """
    Drives a fetch function over an advancing 1-based page cursor.

    Errors from the fetch function propagate immediately; retrying is the
    caller's decision. A next-page value that does not advance past the
    current page ends the listing.
    """

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        rate_limit_fallback: timedelta = DEFAULT_RATE_LIMIT_FALLBACK,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[Callable[[], datetime]] = None,
        wait: Optional[Callable[[float], None]] = None
    ):
        """
        Initialize reader.

        Args:
            page_size: Items requested per page
            rate_limit_fallback: Pause used when the reset instant is unknown
            cancel_event: Shared cancellation event for the run
            now: Clock returning an aware datetime (default: UTC now)
            wait: Blocking sleep taking seconds (default: cancellable sleep)
        """
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self.page_size = page_size
        self.rate_limit_fallback = rate_limit_fallback
        self.cancel_event = cancel_event or threading.Event()
        self._now = now or _utcnow
        self._wait = wait or (lambda seconds: sleep_or_cancel(self.cancel_event, seconds))

    def iter_pages(self, fetch_page: FetchPage, description: str = "") -> Iterator[Page]:
        """
        Yield pages until the provider signals the end of the listing.

        Args:
            fetch_page: Provider page fetch
            description: Listing name used in log lines

        Yields:
            Page objects in cursor order
        """
        page_number = 1
        while True:
            if self.cancel_event.is_set():
                raise RunCancelled(f"cancelled before fetching page {page_number} of {description}")

            page = fetch_page(page_number, self.page_size)
            yield page

            next_page = self._advance(page_number, page, description)
            if next_page is None:
                return

            pause = self.backoff_seconds(page.rate_limit)
            if pause is not None:
                logger.info(
                    "Rate limit reached for %s, sleeping %.1fs before page %d",
                    description or "listing", pause, next_page
                )
                self._wait(pause)

            page_number = next_page

    def iter_items(self, fetch_page: FetchPage, description: str = "") -> Iterator[Any]:
        """Yield every item of every page, in order."""
        for page in self.iter_pages(fetch_page, description):
            for item in page.items:
                yield item

    def backoff_seconds(self, signal: Optional[RateLimitSignal]) -> Optional[float]:
        """
        Compute the pause required by a rate-limit signal.

        Returns:
            Seconds to wait, or None if the window is not exhausted
        """
        if signal is None or not signal.exhausted:
            return None

        if signal.reset_at is None:
            logger.error(
                "Unable to parse rate limit reset %r, using fallback of %s",
                signal.raw_reset, self.rate_limit_fallback
            )
            return self.rate_limit_fallback.total_seconds()

        return max(0.0, (signal.reset_at - self._now()).total_seconds())

    def _advance(self, current: int, page: Page, description: str) -> Optional[int]:
        next_page = page.next_page
        if not next_page:
            return None

        if page.total_pages is not None and next_page >= page.total_pages:
            return None

        if next_page <= current:
            logger.warning(
                "Next page %d does not advance past page %d for %s, stopping",
                next_page, current, description or "listing"
            )
            return None

        return next_page
