"""
Docker Hub API client for namespace repository and tag listings.
"""
from typing import Optional
from urllib.parse import quote

import requests

from trawler.clients.base import ApiClient
from trawler.models import SourceError
from trawler.pagination import Page, RateLimitSignal

DOCKERHUB_API_URL = "https://hub.docker.com/v2"


class DockerHubClient:
    """Handles Docker Hub listing operations."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = DOCKERHUB_API_URL,
        session: Optional[requests.Session] = None
    ):
        headers = {}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        self._api = ApiClient(api_url, provider="Docker Hub", headers=headers, session=session)

    def list_repositories_page(self, namespace: str, page: int, per_page: int) -> Page:
        """List one page of repositories in a namespace."""
        return self._page(f"/namespaces/{quote(namespace, safe='')}/repositories", page, per_page)

    def list_tags_page(self, namespace: str, repository: str, page: int, per_page: int) -> Page:
        """List one page of a repository's tags, most recently pushed first."""
        return self._page(
            f"/namespaces/{quote(namespace, safe='')}/repositories/{quote(repository, safe='')}/tags",
            page,
            per_page
        )

    def _page(self, path: str, page: int, per_page: int) -> Page:
        response = self._api.get(path, {"page": page, "page_size": per_page})
        try:
            payload = response.json()
        except ValueError as e:
            raise SourceError(f"Docker Hub returned invalid JSON for {path}") from e
        if not isinstance(payload, dict):
            raise SourceError(f"Docker Hub returned an unexpected payload for {path}")

        results = payload.get("results") or []
        return Page(
            items=list(results),
            next_page=page + 1 if payload.get("next") else None,
            rate_limit=RateLimitSignal.from_headers(
                response.headers, "x-ratelimit-remaining", "x-ratelimit-reset"
            )
        )
