"""
Docker Hub producer - enumerates image tags of Docker Hub namespaces.
"""
import logging
from typing import List

from trawler.clients.dockerhub import DockerHubClient
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

logger = logging.getLogger(__name__)

DOCKERHUB_ORGS_PARAM = "DOCKERHUB_ORGS"
DOCKERHUB_TOKEN_ENV = "DOCKERHUB_TOKEN"

DOCKERHUB_REGISTRY = "docker.io"


class DockerHubProducer(Producer):
    """Produces one docker target per recent tag of each repository."""

    name = "dockerhub"
    description = "Image tags of Docker Hub namespaces"
    default_downloader = "docker"
    parameters = (
        ParameterDefinition(
            DOCKERHUB_ORGS_PARAM,
            "Comma separated Docker Hub namespaces to crawl",
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
        namespaces = split_list(parameters.get(DOCKERHUB_ORGS_PARAM))
        if not namespaces:
            raise ConfigurationError("no docker hub namespace specified")
        limit = parse_tag_limit(parameters.get(RECENT_TAG_LIMIT_PARAM))

        if self.client is None:
            token = self.environ.get(DOCKERHUB_TOKEN_ENV)
            if not token:
                logger.info("No Docker Hub token configured, proceeding unauthenticated")
            self.client = DockerHubClient(token=token)

        return self.crawl_groups(
            namespaces,
            lambda namespace, outcome: self.crawl_namespace(namespace, limit, sink, outcome)
        )

    def crawl_namespace(self, namespace: str, limit: int, sink: Sink, outcome: RunOutcome) -> None:
        """Enumerate every repository of one namespace."""
        repositories = self.reader.iter_items(
            lambda page, per_page: self.client.list_repositories_page(namespace, page, per_page),
            f"docker hub repositories of {namespace}"
        )

        for repository in repositories:
            repo_name = repository.get("name") if isinstance(repository, dict) else None
            if not repo_name:
                logger.warning("Skipping Docker Hub repository without a name in %s", namespace)
                outcome.record(
                    STAGE_TRANSFORM,
                    f"{namespace}/<unknown>",
                    TransformError("repository without name")
                )
                continue

            image = f"{DOCKERHUB_REGISTRY}/{namespace}/{repo_name}"
            try:
                tags = self.recent_tags(namespace, repo_name, limit)
            except (RunCancelled, QueueClosedError):
                raise
            except Exception as e:
                logger.error("Error listing tags of %s: %s", image, e)
                outcome.record(STAGE_ENUMERATION, image, e)
                continue

            for tag in tags:
                self.emit(
                    sink, outcome, f"{image}:{tag}",
                    lambda: Target(identifier=image, version=tag, default_downloader=self.default_downloader)
                )

    def recent_tags(self, namespace: str, repository: str, limit: int) -> List[str]:
        """Collect tag names in provider order, stopping once `limit` are found."""
        listing = self.reader.iter_items(
            lambda page, per_page: self.client.list_tags_page(namespace, repository, page, per_page),
            f"docker hub tags of {namespace}/{repository}"
        )

        tags: List[str] = []
        for tag in listing:
            name = tag.get("name") if isinstance(tag, dict) else None
            if not name:
                continue
            tags.append(name)
            if 0 < limit <= len(tags):
                break
        return take_recent(tags, limit)
