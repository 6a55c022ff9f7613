"""
Base producer interface for enumerating targets from one source type.
"""
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from trawler.models import (
    Target,
    RunOutcome,
    RunCancelled,
    QueueClosedError,
    TransformError,
    STAGE_ENUMERATION,
    STAGE_TRANSFORM,
)
from trawler.pagination import PageReader

logger = logging.getLogger(__name__)

Sink = Callable[[Target], None]
Parameters = Dict[str, str]

RECENT_TAG_LIMIT_PARAM = "RECENT_TAG_LIMIT"
DEFAULT_RECENT_TAG_LIMIT = 1


@dataclass
class ParameterDefinition:
    """
    A producer parameter.

    Attributes:
        name: Parameter name (also the suffix of its TRAWLER_PARAM_ variable)
        description: Help text
        required: Whether the run fails without it
        default: Value used when unset
        separator: Joins list values given in a config file; None for scalars
    """
    name: str
    description: str
    required: bool = False
    default: Optional[str] = None
    separator: Optional[str] = None


def split_list(value: Optional[str], separator: str = ",") -> List[str]:
    """Split a delimited parameter, trimming entries and dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(separator) if part.strip()]


def is_enabled(value: Optional[str]) -> bool:
    """Anything but empty, '0' or 'false' (any case) enables a flag."""
    flag = (value or "").strip().lower()
    return flag not in ("", "0", "false")


def parse_tag_limit(value: Optional[str], default: int = DEFAULT_RECENT_TAG_LIMIT) -> int:
    """
    Parse a recent-version cap; 0 means no cap.

    Invalid or negative values fall back to the default with a logged error.
    """
    if value is None or not value.strip():
        return default
    try:
        limit = int(value.strip())
    except ValueError:
        logger.error("Invalid value %r for %s, defaulting to %d", value, RECENT_TAG_LIMIT_PARAM, default)
        return default
    if limit < 0:
        logger.error("Negative value %r for %s, defaulting to %d", value, RECENT_TAG_LIMIT_PARAM, default)
        return default
    return limit


def take_recent(versions: Iterable[Any], limit: int) -> List[Any]:
    """Take the first `limit` versions in provider order (all when limit is 0)."""
    versions = list(versions)
    if limit > 0:
        return versions[:limit]
    return versions


class Producer(ABC):
    """
    Abstract base class for target producers.

    Producers are responsible for:
    1. Validating their parameters and resolving credentials once per run
    2. Enumerating each logical group through the shared PageReader
    3. Turning provider items into Targets and pushing them to the sink
    4. Recording per-group and per-item failures without stopping
    """

    name: str = ""
    description: str = ""
    default_downloader: str = ""
    requires_downloader_override: bool = False
    parameters: Sequence[ParameterDefinition] = ()

    def __init__(
        self,
        reader: Optional[PageReader] = None,
        environ: Optional[Mapping[str, str]] = None,
        client: Any = None
    ):
        """
        Initialize producer.

        Args:
            reader: Shared page reader (default: PageReader())
            environ: Environment holding provider secrets (default: os.environ)
            client: Pre-built provider client; built from environ when omitted
        """
        self.reader = reader or PageReader()
        self.environ = environ if environ is not None else os.environ
        self.client = client

    @abstractmethod
    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        """
        Enumerate targets and push each to the sink.

        Args:
            parameters: Parsed producer parameters
            sink: Accepts one Target at a time; may block

        Returns:
            RunOutcome with every per-group and per-item failure

        Raises:
            ConfigurationError: If the run cannot start
        """
        pass

    def crawl_groups(
        self,
        groups: Iterable[str],
        crawl_group: Callable[[str, RunOutcome], None],
        outcome: Optional[RunOutcome] = None
    ) -> RunOutcome:
        """
        Enumerate groups one after another, isolating failures per group.

        Args:
            groups: Group names in enumeration order
            crawl_group: Enumerates one group, recording item failures itself
            outcome: Aggregate to record into (default: a new one)

        Returns:
            RunOutcome for all groups
        """
        if outcome is None:
            outcome = RunOutcome()
        for group in groups:
            logger.info("Crawling %s group %s", self.name, group)
            try:
                crawl_group(group, outcome)
            except (RunCancelled, QueueClosedError):
                raise
            except Exception as e:
                logger.error("Error crawling %s group %s: %s", self.name, group, e)
                outcome.record(STAGE_ENUMERATION, group, e)
                continue
            logger.info("Finished crawling %s group %s", self.name, group)
        return outcome

    def emit(
        self,
        sink: Sink,
        outcome: RunOutcome,
        subject: str,
        build: Callable[[], Target]
    ) -> bool:
        """
        Build one target and push it, recording a transform failure instead of raising.

        Returns:
            True if a target was pushed
        """
        try:
            target = build()
        except (TransformError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping malformed item %s: %s", subject, e)
            outcome.record(STAGE_TRANSFORM, subject, e)
            return False

        logger.info(
            "Enqueuing target identifier=%s version=%s downloader=%s",
            target.identifier, target.version, target.default_downloader
        )
        sink(target)
        return True
