"""
Shared HTTP plumbing for provider clients.

Requests run on the producer thread and are not interrupted by run
cancellation; an in-flight call is bounded by CONNECT_TIMEOUT_SECONDS to
connect and READ_TIMEOUT_SECONDS between bytes received. Cancellation is
observed once the call returns, before the next page is fetched.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import requests
from requests.auth import AuthBase

from trawler.models import SourceError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5
READ_TIMEOUT_SECONDS = 15
REQUEST_TIMEOUT = (CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS)
USER_AGENT = "trawler/0.1"


class ApiClient:
    """Base JSON-over-HTTP client with a shared requests session."""

    def __init__(
        self,
        api_url: str,
        provider: str = "api",
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = REQUEST_TIMEOUT,
        auth: Optional[AuthBase] = None
    ):
        self.api_url = api_url.rstrip("/")
        self.provider = provider
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})
        if headers:
            self.session.headers.update(headers)
        if auth is not None:
            self.session.auth = auth

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        Make GET request to the provider API.

        Args:
            path: Path relative to the API root
            params: Query parameters

        Returns:
            Successful response

        Raises:
            SourceError: On transport failure or a non-2xx status
        """
        url = f"{self.api_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceError(f"{self.provider} request to {path} failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise SourceError(
                f"{self.provider} API returned {response.status_code} for {path}: {_error_message(response)}"
            )
        return response

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.get(path, params)
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(f"{self.provider} returned invalid JSON for {path}") from e


def _error_message(response: requests.Response) -> str:
    """Best-effort short message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body.get("detail") or body)[:200]
    return str(body)[:200]
