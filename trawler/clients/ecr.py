"""
Amazon ECR client for repository and image listings.

ECR pages by continuation token; listings are exposed through
`TokenPages` so the shared PageReader can drive them like the HTTP
providers. Throttling is retried inside botocore.
"""
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from trawler.clients.base import CONNECT_TIMEOUT_SECONDS, READ_TIMEOUT_SECONDS
from trawler.models import ConfigurationError, SourceError
from trawler.pagination import TokenPages

# describe_repositories and describe_images both cap maxResults at 1000
ECR_MAX_RESULTS = 1000

BOTO_CONFIG = Config(
    connect_timeout=CONNECT_TIMEOUT_SECONDS,
    read_timeout=READ_TIMEOUT_SECONDS,
    retries={"max_attempts": 5, "mode": "standard"}
)


def build_ecr_client(region: Optional[str] = None, profile: Optional[str] = None):
    """
    Create a boto3 ECR client from the default AWS configuration chain.

    Args:
        region: Region override (default: region from the AWS config)
        profile: Shared config profile (default: default profile)

    Raises:
        ConfigurationError: If no usable AWS configuration is found
    """
    try:
        session = boto3.session.Session(profile_name=profile or None, region_name=region or None)
        return session.client("ecr", config=BOTO_CONFIG)
    except BotoCoreError as e:
        raise ConfigurationError(f"failed to load AWS configuration: {e}") from e


class ECRClient:
    """Handles ECR listing operations."""

    def __init__(self, ecr=None, region: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize client.

        Args:
            ecr: Pre-built boto3 ECR client
            region: Region override, used when ecr is omitted
            profile: Shared config profile, used when ecr is omitted
        """
        self.ecr = ecr if ecr is not None else build_ecr_client(region, profile)

    @property
    def region(self) -> str:
        return getattr(self.ecr.meta, "region_name", None) or "default"

    def repository_pages(self) -> TokenPages:
        """Page fetch over every repository in the registry."""
        return TokenPages(self._describe_repositories)

    def image_pages(self, repository: str) -> TokenPages:
        """Page fetch over the tagged images of one repository."""
        return TokenPages(lambda token, page_size: self._describe_images(repository, token, page_size))

    def _describe_repositories(self, token: Optional[str], page_size: int) -> Tuple[List[Any], Optional[str]]:
        response = self._call(
            "describe_repositories",
            "repository listing",
            **self._paging(token, page_size)
        )
        return response.get("repositories", []), response.get("nextToken")

    def _describe_images(
        self,
        repository: str,
        token: Optional[str],
        page_size: int
    ) -> Tuple[List[Any], Optional[str]]:
        response = self._call(
            "describe_images",
            f"image listing of {repository}",
            repositoryName=repository,
            filter={"tagStatus": "TAGGED"},
            **self._paging(token, page_size)
        )
        return response.get("imageDetails", []), response.get("nextToken")

    def _paging(self, token: Optional[str], page_size: int) -> Dict[str, Any]:
        # botocore rejects a None nextToken
        params: Dict[str, Any] = {"maxResults": min(page_size, ECR_MAX_RESULTS)}
        if token:
            params["nextToken"] = token
        return params

    def _call(self, operation: str, description: str, **kwargs) -> Dict[str, Any]:
        try:
            return getattr(self.ecr, operation)(**kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise SourceError(f"ECR {description} failed ({code}): {e}") from e
        except BotoCoreError as e:
            raise SourceError(f"ECR {description} failed: {e}") from e
