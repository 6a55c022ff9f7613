"""
GitHub credential resolution.

Tries, in order: GitHub App installation token, plain token,
unauthenticated. A failure at any step is logged and falls through to
the next; it never aborts the run.

Installation tokens live for one hour. The app credential is carried as a
requests auth handler that exchanges a fresh token shortly before the
current one expires, so long paced runs keep their access.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

import jwt
import requests
from requests.auth import AuthBase

from trawler.clients.github import GITHUB_API_URL
from trawler.models import TrawlerError

logger = logging.getLogger(__name__)

GITHUB_TOKEN_ENV = "GITHUB_TOKEN"
GITHUB_APP_ID_ENV = "GITHUB_APP_ID"
GITHUB_APP_INSTALLATION_ID_ENV = "GITHUB_APP_INSTALLATION_ID"
GITHUB_APP_PRIVATE_KEY_ENV = "GITHUB_APP_PRIVATE_KEY"

CREDENTIAL_APP = "app"
CREDENTIAL_TOKEN = "token"
CREDENTIAL_NONE = "none"

# GitHub rejects app JWTs valid for more than 10 minutes
_APP_JWT_LIFETIME_SECONDS = 540
_APP_JWT_CLOCK_SKEW_SECONDS = 60

INSTALLATION_TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 300


@dataclass
class InstallationToken:
    """
    Installation access token returned by GitHub.

    Attributes:
        token: Bearer token
        expires_at: Expiry in epoch seconds (None if GitHub did not say)
    """
    token: str
    expires_at: Optional[float] = None


class CredentialError(TrawlerError):
    """Raised when one credential source cannot produce a token."""
    pass


def create_app_jwt(app_id: int, private_key: str, now: Optional[float] = None) -> str:
    """
    Create the short-lived RS256 JWT that authenticates as a GitHub App.

    Args:
        app_id: GitHub App ID
        private_key: PEM encoded private key
        now: Current epoch seconds (default: time.time())

    Returns:
        Encoded JWT
    """
    issued = int(now if now is not None else time.time())
    payload = {
        "iat": issued - _APP_JWT_CLOCK_SKEW_SECONDS,
        "exp": issued + _APP_JWT_LIFETIME_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def parse_expiry(value: Optional[str]) -> Optional[float]:
    """Parse GitHub's `expires_at` (e.g. 2024-01-01T12:00:00Z) into epoch seconds."""
    if not value:
        return None
    try:
        expires = datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ")
    except (TypeError, ValueError):
        logger.warning("Unable to parse installation token expiry %r", value)
        return None
    return expires.replace(tzinfo=timezone.utc).timestamp()


def exchange_installation_token(
    app_jwt: str,
    installation_id: int,
    session: Optional[requests.Session] = None,
    api_url: str = GITHUB_API_URL
) -> InstallationToken:
    """
    Exchange an app JWT for an installation access token.

    Raises:
        CredentialError: If GitHub does not return a token
    """
    http = session or requests.Session()
    response = http.post(
        f"{api_url.rstrip('/')}/app/installations/{installation_id}/access_tokens",
        headers={
            'Authorization': f'Bearer {app_jwt}',
            'Accept': 'application/vnd.github+json',
        },
        timeout=30
    )
    if response.status_code != 201:
        raise CredentialError(f"installation token request returned {response.status_code}")

    body = response.json()
    token = body.get("token")
    if not token:
        raise CredentialError("installation token response carried no token")
    return InstallationToken(token=token, expires_at=parse_expiry(body.get("expires_at")))


class InstallationTokenAuth(AuthBase):
    """
    requests auth handler for a GitHub App installation.

    Each request gets the current installation token. A new token is
    exchanged once the current one is within `refresh_margin` seconds of
    expiring.
    """

    def __init__(
        self,
        app_id: int,
        installation_id: int,
        private_key: str,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
        clock: Optional[Callable[[], float]] = None,
        refresh_margin: float = TOKEN_REFRESH_MARGIN_SECONDS
    ):
        """
        Initialize handler.

        Args:
            app_id: GitHub App ID
            installation_id: Installation the token is scoped to
            private_key: PEM encoded app private key
            session: Session used for token exchanges; must not carry this handler
            api_url: GitHub API root
            clock: Clock returning epoch seconds (default: time.time)
            refresh_margin: Seconds before expiry at which a new token is fetched
        """
        self.app_id = app_id
        self.installation_id = installation_id
        self.private_key = private_key
        self.api_url = api_url
        self.refresh_margin = refresh_margin
        self._session = session or requests.Session()
        self._clock = clock or time.time
        self._token: Optional[InstallationToken] = None
        self._fetched_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def expires_at(self) -> Optional[float]:
        if self._token is None:
            return None
        if self._token.expires_at is not None:
            return self._token.expires_at
        return self._fetched_at + INSTALLATION_TOKEN_LIFETIME_SECONDS

    def needs_refresh(self) -> bool:
        if self._token is None:
            return True
        return self._clock() >= self.expires_at - self.refresh_margin

    def refresh(self) -> InstallationToken:
        """
        Exchange a fresh app JWT for a new installation token.

        Raises:
            CredentialError: If signing or the exchange fails
        """
        try:
            app_jwt = create_app_jwt(self.app_id, self.private_key, self._clock())
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise CredentialError(f"failed to sign GitHub App JWT: {e}") from e

        try:
            token = exchange_installation_token(
                app_jwt, self.installation_id, session=self._session, api_url=self.api_url
            )
        except (requests.RequestException, ValueError) as e:
            raise CredentialError(f"failed to authenticate GitHub App: {e}") from e

        self._token = token
        self._fetched_at = self._clock()
        logger.info("Obtained GitHub App installation token for installation %s", self.installation_id)
        return token

    def token(self) -> str:
        """Current installation token, refreshed first when close to expiry."""
        with self._lock:
            if self.needs_refresh():
                if self._token is not None:
                    logger.info("GitHub App installation token expiring, refreshing")
                self.refresh()
            return self._token.token

    def __call__(self, request):
        request.headers['Authorization'] = f'Bearer {self.token()}'
        return request


@dataclass
class GitHubCredential:
    """
    Resolved credential.

    Attributes:
        kind: "app", "token" or "none"
        token: Bearer token at resolution time, if any
        auth: Refreshing auth handler for app credentials
    """
    kind: str
    token: Optional[str] = None
    auth: Optional[InstallationTokenAuth] = None


def _app_auth(
    environ: Mapping[str, str],
    session: Optional[requests.Session],
    api_url: str,
    now: Optional[Callable[[], float]]
) -> InstallationTokenAuth:
    try:
        app_id = int(environ[GITHUB_APP_ID_ENV])
    except ValueError as e:
        raise CredentialError(f"failed to parse GitHub App ID: {e}") from e
    try:
        installation_id = int(environ[GITHUB_APP_INSTALLATION_ID_ENV])
    except ValueError as e:
        raise CredentialError(f"failed to parse GitHub Installation ID: {e}") from e

    auth = InstallationTokenAuth(
        app_id,
        installation_id,
        environ[GITHUB_APP_PRIVATE_KEY_ENV],
        session=session,
        api_url=api_url,
        clock=now
    )
    auth.refresh()
    return auth


def resolve_github_credential(
    environ: Mapping[str, str],
    session: Optional[requests.Session] = None,
    api_url: str = GITHUB_API_URL,
    now: Optional[Callable[[], float]] = None
) -> GitHubCredential:
    """
    Resolve the strongest available GitHub credential.

    Args:
        environ: Environment mapping holding the credential variables
        session: HTTP session used for installation token exchanges
        api_url: GitHub API root
        now: Clock returning epoch seconds, for JWT timestamps and token expiry

    Returns:
        GitHubCredential (kind "app", "token" or "none")
    """
    if all(environ.get(name) for name in (
        GITHUB_APP_ID_ENV, GITHUB_APP_INSTALLATION_ID_ENV, GITHUB_APP_PRIVATE_KEY_ENV
    )):
        logger.info("Authenticating using GitHub App")
        try:
            auth = _app_auth(environ, session, api_url, now)
        except CredentialError as e:
            logger.error("GitHub App authentication failed, falling back: %s", e)
        else:
            return GitHubCredential(kind=CREDENTIAL_APP, token=auth.token(), auth=auth)

    token = environ.get(GITHUB_TOKEN_ENV)
    if token:
        logger.info("Authenticating using GitHub token")
        return GitHubCredential(kind=CREDENTIAL_TOKEN, token=token)

    logger.info("No GitHub authentication configured, proceeding unauthenticated")
    return GitHubCredential(kind=CREDENTIAL_NONE)
