"""
GitLab REST API client for group and project listings.
"""
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from trawler.clients.base import ApiClient
from trawler.models import SourceError
from trawler.pagination import Page, RateLimitSignal

GITLAB_URL = "https://gitlab.com"


def api_root(base_url: str) -> str:
    """Accept either an instance URL or an explicit /api/v4 URL."""
    base = (base_url or GITLAB_URL).rstrip('/')
    if base.endswith("/api/v4"):
        return base
    return f"{base}/api/v4"


def _int_header(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class GitLabClient:
    """Handles GitLab API listing operations."""

    def __init__(
        self,
        base_url: str = GITLAB_URL,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        headers = {}
        if token:
            headers['PRIVATE-TOKEN'] = token
        self.base_url = api_root(base_url)
        self._api = ApiClient(self.base_url, provider="GitLab", headers=headers, session=session)

    def list_group_projects_page(
        self,
        group: str,
        include_subgroups: bool,
        page: int,
        per_page: int
    ) -> Page:
        """List one page of projects in a group."""
        params = {"include_subgroups": "true" if include_subgroups else "false"}
        return self._page(f"/groups/{quote(group, safe='')}/projects", page, per_page, params)

    def list_groups_page(self, page: int, per_page: int) -> Page:
        """List one page of the top-level groups visible on the instance."""
        return self._page(
            "/groups",
            page,
            per_page,
            {"all_available": "true", "top_level_only": "true"}
        )

    def _page(self, path: str, page: int, per_page: int, extra: Optional[Dict[str, Any]] = None) -> Page:
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        if extra:
            params.update(extra)

        response = self._api.get(path, params)
        try:
            items = response.json()
        except ValueError as e:
            raise SourceError(f"GitLab returned invalid JSON for {path}") from e
        if not isinstance(items, list):
            raise SourceError(f"GitLab returned a non-list page for {path}")

        # X-Next-Page is empty on the last page; X-Total-Pages is omitted
        # for large collections, so only the next-page header is passed on
        return Page(
            items=items,
            next_page=_int_header(response.headers.get("X-Next-Page")),
            rate_limit=RateLimitSignal.from_headers(
                response.headers, "RateLimit-Remaining", "RateLimit-Reset"
            )
        )
