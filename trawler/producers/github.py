"""
GitHub producer - enumerates repositories of organizations and users.
"""
import logging
from typing import Any, Dict

from trawler.auth import resolve_github_credential
from trawler.clients.github import ACCOUNT_TYPE_ORGANIZATION, GitHubClient
from trawler.models import ConfigurationError, RunOutcome, Target
from trawler.producers.base import (
    ParameterDefinition,
    Parameters,
    Producer,
    Sink,
    is_enabled,
    split_list,
)

logger = logging.getLogger(__name__)

GITHUB_ORGS_PARAM = "GITHUB_ORGS"
SKIP_FORKS_PARAM = "SKIP_FORKS"


def resolve_is_org(client: GitHubClient, owner: str) -> bool:
    """Decide whether an owner is listed through the org or the user endpoints."""
    account_type = client.get_account_type(owner)
    logger.debug("GitHub account %s has type %s", owner, account_type)
    return account_type == ACCOUNT_TYPE_ORGANIZATION


def build_github_client(environ) -> GitHubClient:
    """Build a client with the strongest credential available in environ."""
    credential = resolve_github_credential(environ)
    logger.info("Using GitHub credential kind: %s", credential.kind)
    return GitHubClient(token=credential.token, auth=credential.auth)


class GitHubProducer(Producer):
    """Produces one git target per repository of each listed org or user."""

    name = "github"
    description = "Repositories of GitHub organizations or users"
    default_downloader = "git"
    parameters = (
        ParameterDefinition(
            GITHUB_ORGS_PARAM,
            "Comma separated GitHub organizations or users to crawl",
            required=True,
            separator=","
        ),
        ParameterDefinition(
            SKIP_FORKS_PARAM,
            "Skip forked repositories (any value but empty, 0 or false)",
            default="false"
        ),
    )

    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        orgs = split_list(parameters.get(GITHUB_ORGS_PARAM))
        if not orgs:
            raise ConfigurationError("no github org specified")
        skip_forks = is_enabled(parameters.get(SKIP_FORKS_PARAM))

        if self.client is None:
            self.client = build_github_client(self.environ)

        return self.crawl_groups(
            orgs,
            lambda org, outcome: self.crawl_owner(org, skip_forks, sink, outcome)
        )

    def crawl_owner(self, owner: str, skip_forks: bool, sink: Sink, outcome: RunOutcome) -> None:
        """Enumerate every repository of one owner."""
        is_org = resolve_is_org(self.client, owner)
        repos = self.reader.iter_items(
            lambda page, per_page: self.client.list_repos_page(owner, is_org, page, per_page),
            f"github repositories of {owner}"
        )

        for repo in repos:
            subject = _repo_name(owner, repo)
            if skip_forks and isinstance(repo, dict) and repo.get("fork"):
                logger.debug("Skipping fork %s", subject)
                continue
            self.emit(sink, outcome, subject, lambda: self.to_target(repo))

    def to_target(self, repo: Dict[str, Any]) -> Target:
        return Target(identifier=repo["clone_url"], default_downloader=self.default_downloader)


def _repo_name(owner: str, repo: Any) -> str:
    if isinstance(repo, dict) and repo.get("full_name"):
        return str(repo["full_name"])
    return f"{owner}/<unknown>"
