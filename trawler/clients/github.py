"""
GitHub REST API client for repository and container package listings.
"""
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote, urlparse

import requests
from requests.auth import AuthBase

from trawler.clients.base import ApiClient
from trawler.models import SourceError
from trawler.pagination import Page, RateLimitSignal

GITHUB_API_URL = "https://api.github.com"

ACCOUNT_TYPE_ORGANIZATION = "Organization"


def next_page_from_links(response: requests.Response) -> Optional[int]:
    """Extract the next page number from a Link header, if any."""
    next_link = response.links.get("next", {}).get("url")
    if not next_link:
        return None
    values = parse_qs(urlparse(next_link).query).get("page")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


class GitHubClient:
    """Handles GitHub API listing operations."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = GITHUB_API_URL,
        session: Optional[requests.Session] = None,
        auth: Optional[AuthBase] = None
    ):
        """
        Initialize client.

        Args:
            token: Static bearer token
            api_url: GitHub API root
            session: HTTP session
            auth: Auth handler applied to every request; takes precedence over token
        """
        headers = {
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
        }
        if token and auth is None:
            headers['Authorization'] = f'Bearer {token}'
        self._api = ApiClient(api_url, provider="GitHub", headers=headers, session=session, auth=auth)

    def get_account_type(self, name: str) -> str:
        """
        Look up whether an account is an organization or a user.

        Returns:
            Account type as reported by GitHub ("Organization" or "User")
        """
        data = self._api.get_json(f"/users/{quote(name, safe='')}")
        if not isinstance(data, dict) or "type" not in data:
            raise SourceError(f"GitHub returned no account type for {name}")
        return data["type"]

    def list_repos_page(self, owner: str, is_org: bool, page: int, per_page: int) -> Page:
        """List one page of an organization's or user's repositories."""
        kind = "orgs" if is_org else "users"
        return self._page(f"/{kind}/{quote(owner, safe='')}/repos", page, per_page)

    def list_container_packages_page(self, owner: str, is_org: bool, page: int, per_page: int) -> Page:
        """List one page of container packages owned by an organization or user."""
        kind = "orgs" if is_org else "users"
        return self._page(
            f"/{kind}/{quote(owner, safe='')}/packages",
            page,
            per_page,
            extra={"package_type": "container"}
        )

    def list_package_versions_page(
        self,
        owner: str,
        is_org: bool,
        package: str,
        page: int,
        per_page: int
    ) -> Page:
        """List one page of a container package's versions, newest first."""
        kind = "orgs" if is_org else "users"
        return self._page(
            f"/{kind}/{quote(owner, safe='')}/packages/container/{quote(package, safe='')}/versions",
            page,
            per_page
        )

    def _page(self, path: str, page: int, per_page: int, extra: Optional[Dict[str, Any]] = None) -> Page:
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        if extra:
            params.update(extra)

        response = self._api.get(path, params)
        try:
            items = response.json()
        except ValueError as e:
            raise SourceError(f"GitHub returned invalid JSON for {path}") from e
        if not isinstance(items, list):
            raise SourceError(f"GitHub returned a non-list page for {path}")

        return Page(
            items=items,
            next_page=next_page_from_links(response),
            rate_limit=RateLimitSignal.from_headers(
                response.headers, "x-ratelimit-remaining", "x-ratelimit-reset"
            )
        )
