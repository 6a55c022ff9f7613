"""
GHCR producer - enumerates container images in GitHub Container Registry.

One target is produced per (package, tag) pair, taking the most recent
RECENT_TAG_LIMIT versions of each package in the order GitHub returns them.
"""
import logging
from typing import Any, List

from trawler.models import (
    ConfigurationError,
    QueueClosedError,
    RunCancelled,
    RunOutcome,
    Target,
    TransformError,
    STAGE_ENUMERATION,
    STAGE_TRANSFORM,
)
from trawler.producers.base import (
    DEFAULT_RECENT_TAG_LIMIT,
    RECENT_TAG_LIMIT_PARAM,
    ParameterDefinition,
    Parameters,
    Producer,
    Sink,
    parse_tag_limit,
    split_list,
    take_recent,
)
from trawler.producers.github import GITHUB_ORGS_PARAM, build_github_client, resolve_is_org

logger = logging.getLogger(__name__)

GHCR_REGISTRY = "ghcr.io"


def version_tag(version: Any) -> str:
    """
    Extract the first tag of a package version.

    Raises:
        KeyError, TypeError, IndexError: If the version carries no tag
    """
    return version["metadata"]["container"]["tags"][0]


class GHCRProducer(Producer):
    """Produces one docker target per recent tag of each container package."""

    name = "ghcr"
    description = "Container images published to GitHub Container Registry"
    default_downloader = "docker"
    parameters = (
        ParameterDefinition(
            GITHUB_ORGS_PARAM,
            "Comma separated GitHub organizations or users to crawl",
            required=True,
            separator=","
        ),
        ParameterDefinition(
            RECENT_TAG_LIMIT_PARAM,
            "Number of most recent tags per image (0 for all)",
            default=str(DEFAULT_RECENT_TAG_LIMIT)
        ),
    )

    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        orgs = split_list(parameters.get(GITHUB_ORGS_PARAM))
        if not orgs:
            raise ConfigurationError("no github org specified")
        limit = parse_tag_limit(parameters.get(RECENT_TAG_LIMIT_PARAM))

        if self.client is None:
            self.client = build_github_client(self.environ)

        return self.crawl_groups(
            orgs,
            lambda org, outcome: self.crawl_owner(org, limit, sink, outcome)
        )

    def crawl_owner(self, owner: str, limit: int, sink: Sink, outcome: RunOutcome) -> None:
        """Enumerate every container package of one owner."""
        is_org = resolve_is_org(self.client, owner)
        packages = self.reader.iter_items(
            lambda page, per_page: self.client.list_container_packages_page(owner, is_org, page, per_page),
            f"ghcr packages of {owner}"
        )

        for package in packages:
            package_name = package.get("name") if isinstance(package, dict) else None
            if not package_name:
                logger.warning("Skipping GHCR package without a name under %s", owner)
                outcome.record(STAGE_TRANSFORM, f"{owner}/<unknown>", TransformError("package without name"))
                continue

            image = f"{GHCR_REGISTRY}/{owner}/{package_name}"
            try:
                tags = self.recent_tags(owner, is_org, package_name, limit)
            except (RunCancelled, QueueClosedError):
                raise
            except Exception as e:
                logger.error("Error listing versions of %s: %s", image, e)
                outcome.record(STAGE_ENUMERATION, image, e)
                continue

            for tag in tags:
                self.emit(
                    sink, outcome, f"{image}:{tag}",
                    lambda: Target(identifier=image, version=tag, default_downloader=self.default_downloader)
                )

    def recent_tags(
        self,
        owner: str,
        is_org: bool,
        package: str,
        limit: int
    ) -> List[str]:
        """
        Collect the first tag of each package version, newest first.

        Paging stops as soon as `limit` tags are collected. Untagged
        versions are skipped.
        """
        versions = self.reader.iter_items(
            lambda page, per_page: self.client.list_package_versions_page(
                owner, is_org, package, page, per_page
            ),
            f"ghcr versions of {owner}/{package}"
        )

        tags: List[str] = []
        for version in versions:
            try:
                tags.append(version_tag(version))
            except (KeyError, TypeError, IndexError):
                logger.debug("Skipping untagged version of %s/%s", owner, package)
                continue
            if 0 < limit <= len(tags):
                break
        return take_recent(tags, limit)
