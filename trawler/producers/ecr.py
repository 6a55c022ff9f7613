"""
ECR producer - enumerates recent image tags of Amazon ECR repositories.

Crawls every repository of the registry selected by the AWS configuration
(optionally overridden by AWS_REGION / AWS_PROFILE). ECR lists images in no
particular order, so each repository's tagged images are sorted by push
time, newest first, before RECENT_TAG_LIMIT is applied.
"""
import logging
from typing import Any, List

from trawler.clients.ecr import ECRClient
from trawler.models import (
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
    take_recent,
)

logger = logging.getLogger(__name__)

AWS_REGION_PARAM = "AWS_REGION"
AWS_PROFILE_PARAM = "AWS_PROFILE"


def pushed_at(image: Any) -> float:
    """Push time of an image in epoch seconds; 0 when unknown."""
    pushed = image.get("imagePushedAt") if isinstance(image, dict) else None
    if pushed is None:
        return 0.0
    return pushed.timestamp()


class ECRProducer(Producer):
    """Produces one docker target per recent tag of each ECR repository."""

    name = "ecr"
    description = "Image tags of Amazon ECR repositories"
    default_downloader = "docker"
    parameters = (
        ParameterDefinition(
            AWS_REGION_PARAM,
            "AWS region of the registry (default: region from the AWS configuration)"
        ),
        ParameterDefinition(
            AWS_PROFILE_PARAM,
            "Shared AWS config profile to use (default: default profile)"
        ),
        ParameterDefinition(
            RECENT_TAG_LIMIT_PARAM,
            "Number of most recent tags per image (0 for all)",
            default=str(DEFAULT_RECENT_TAG_LIMIT)
        ),
    )

    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        limit = parse_tag_limit(parameters.get(RECENT_TAG_LIMIT_PARAM))

        if self.client is None:
            self.client = ECRClient(
                region=parameters.get(AWS_REGION_PARAM),
                profile=parameters.get(AWS_PROFILE_PARAM)
            )

        return self.crawl_groups(
            [self.client.region],
            lambda region, outcome: self.crawl_registry(region, limit, sink, outcome)
        )

    def crawl_registry(self, region: str, limit: int, sink: Sink, outcome: RunOutcome) -> None:
        """Enumerate every repository of the registry."""
        repositories = self.reader.iter_items(
            self.client.repository_pages(),
            f"ecr repositories in {region}"
        )

        for repository in repositories:
            repo_name = repository.get("repositoryName") if isinstance(repository, dict) else None
            repo_uri = repository.get("repositoryUri") if isinstance(repository, dict) else None
            if not repo_name or not repo_uri:
                logger.warning("Skipping ECR repository without name or URI in %s", region)
                outcome.record(
                    STAGE_TRANSFORM,
                    repo_name or f"{region}/<unknown>",
                    TransformError("repository without name or URI")
                )
                continue

            try:
                tags = self.recent_tags(repo_name, limit)
            except (RunCancelled, QueueClosedError):
                raise
            except Exception as e:
                logger.error("Error listing images of %s: %s", repo_uri, e)
                outcome.record(STAGE_ENUMERATION, repo_uri, e)
                continue

            for tag in tags:
                self.emit(
                    sink, outcome, f"{repo_uri}:{tag}",
                    lambda: Target(identifier=repo_uri, version=tag, default_downloader=self.default_downloader)
                )

    def recent_tags(self, repository: str, limit: int) -> List[str]:
        """First tag of each tagged image, newest push first, capped at `limit`."""
        images = list(self.reader.iter_items(
            self.client.image_pages(repository),
            f"ecr images of {repository}"
        ))
        images.sort(key=pushed_at, reverse=True)

        tags: List[str] = []
        for image in images:
            image_tags = image.get("imageTags") if isinstance(image, dict) else None
            if image_tags:
                tags.append(image_tags[0])
        return take_recent(tags, limit)
