"""
GitLab producer - enumerates projects of groups, or of a whole instance.
"""
import logging
from typing import Any, Dict, Iterator

from trawler.clients.gitlab import GITLAB_URL, GitLabClient
from trawler.models import (
    QueueClosedError,
    RunCancelled,
    RunOutcome,
    Target,
    STAGE_ENUMERATION,
    STAGE_TRANSFORM,
)
from trawler.producers.base import (
    ParameterDefinition,
    Parameters,
    Producer,
    Sink,
    is_enabled,
    split_list,
)

logger = logging.getLogger(__name__)

GITLAB_GROUPS_PARAM = "GITLAB_GROUPS"
GITLAB_INSTANCE_URL_PARAM = "GITLAB_INSTANCE_URL"
INCLUDE_SUBGROUPS_PARAM = "INCLUDE_SUBGROUPS"

GITLAB_TOKEN_ENV = "GITLAB_TOKEN"

INSTANCE_GROUP_LISTING = "gitlab instance groups"


class GitLabProducer(Producer):
    """
    Produces one git target per GitLab project.

    With no groups configured, every top-level group visible on the
    instance is crawled with its subgroups.
    """

    name = "gitlab"
    description = "Projects of GitLab groups, or of every group on an instance"
    default_downloader = "git"
    parameters = (
        ParameterDefinition(
            GITLAB_GROUPS_PARAM,
            "Comma separated group paths; empty crawls the whole instance",
            separator=","
        ),
        ParameterDefinition(
            GITLAB_INSTANCE_URL_PARAM,
            "GitLab instance URL",
            default=GITLAB_URL
        ),
        ParameterDefinition(
            INCLUDE_SUBGROUPS_PARAM,
            "Include projects of subgroups (any value but empty, 0 or false)",
            default="false"
        ),
    )

    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        if self.client is None:
            instance_url = parameters.get(GITLAB_INSTANCE_URL_PARAM) or GITLAB_URL
            token = self.environ.get(GITLAB_TOKEN_ENV)
            if not token:
                logger.info("No GitLab token configured, proceeding unauthenticated")
            self.client = GitLabClient(base_url=instance_url, token=token)

        groups = split_list(parameters.get(GITLAB_GROUPS_PARAM))
        if groups:
            include_subgroups = is_enabled(parameters.get(INCLUDE_SUBGROUPS_PARAM))
            return self.crawl_groups(
                groups,
                lambda group, outcome: self.crawl_group(group, include_subgroups, sink, outcome)
            )

        logger.info("No GitLab groups specified, crawling every group on %s", self.client.base_url)
        outcome = RunOutcome()
        return self.crawl_groups(
            self.instance_groups(outcome),
            lambda group, group_outcome: self.crawl_group(group, True, sink, group_outcome),
            outcome=outcome
        )

    def instance_groups(self, outcome: RunOutcome) -> Iterator[str]:
        """
        Yield the full path of every top-level group on the instance.

        A listing failure is recorded and ends the instance crawl; groups
        yielded before it are still crawled.
        """
        try:
            groups = self.reader.iter_items(self.client.list_groups_page, INSTANCE_GROUP_LISTING)
            for group in groups:
                if not isinstance(group, dict) or not group.get("full_path"):
                    logger.warning("Skipping GitLab group without a path: %r", group)
                    outcome.record(
                        STAGE_TRANSFORM,
                        INSTANCE_GROUP_LISTING,
                        ValueError(f"group without path: {group!r}")
                    )
                    continue
                yield group["full_path"]
        except (RunCancelled, QueueClosedError):
            raise
        except Exception as e:
            logger.error("Error listing GitLab groups: %s", e)
            outcome.record(STAGE_ENUMERATION, INSTANCE_GROUP_LISTING, e)

    def crawl_group(self, group: str, include_subgroups: bool, sink: Sink, outcome: RunOutcome) -> None:
        """Enumerate every project of one group."""
        projects = self.reader.iter_items(
            lambda page, per_page: self.client.list_group_projects_page(
                group, include_subgroups, page, per_page
            ),
            f"gitlab projects of {group}"
        )
        for project in projects:
            subject = _project_name(group, project)
            self.emit(sink, outcome, subject, lambda: self.to_target(project))

    def to_target(self, project: Dict[str, Any]) -> Target:
        return Target(identifier=project["http_url_to_repo"], default_downloader=self.default_downloader)


def _project_name(group: str, project: Any) -> str:
    if isinstance(project, dict) and project.get("path_with_namespace"):
        return str(project["path_with_namespace"])
    return f"{group}/<unknown>"
