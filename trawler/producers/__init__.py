"""
Target producers, selected by name.

Producers implement enumeration of one external source type:
- github: repositories of GitHub organizations or users
- gitlab: projects of GitLab groups or a whole instance
- ghcr: recent image tags in GitHub Container Registry
- dockerhub: recent image tags in Docker Hub namespaces
- ecr: recent image tags in Amazon ECR repositories
- static-list: a fixed list of identifiers
"""
from typing import Dict, List, Type

from trawler.models import ConfigurationError
from trawler.producers.base import Producer
from trawler.producers.dockerhub import DockerHubProducer
from trawler.producers.ecr import ECRProducer
from trawler.producers.ghcr import GHCRProducer
from trawler.producers.github import GitHubProducer
from trawler.producers.gitlab import GitLabProducer
from trawler.producers.static import StaticListProducer


class ProducerRegistry:
    """Maps producer names to producer classes; built once at startup."""

    def __init__(self):
        self._producers: Dict[str, Type[Producer]] = {}

    def register(self, producer_cls: Type[Producer]) -> None:
        if not producer_cls.name:
            raise ValueError(f"{producer_cls.__name__} has no name")
        if producer_cls.name in self._producers:
            raise ValueError(f"producer {producer_cls.name} registered twice")
        self._producers[producer_cls.name] = producer_cls

    def names(self) -> List[str]:
        return sorted(self._producers)

    def get(self, name: str) -> Type[Producer]:
        """
        Look up a producer class by name.

        Raises:
            ConfigurationError: If no producer has that name
        """
        try:
            return self._producers[name]
        except KeyError:
            raise ConfigurationError(
                f"unknown producer {name!r}, expected one of: {', '.join(self.names())}"
            ) from None

    def create(self, name: str, **kwargs) -> Producer:
        """Instantiate the named producer, passing kwargs to its constructor."""
        return self.get(name)(**kwargs)


def default_registry() -> ProducerRegistry:
    """Registry holding every built-in producer."""
    registry = ProducerRegistry()
    for producer_cls in (
        GitHubProducer,
        GitLabProducer,
        GHCRProducer,
        DockerHubProducer,
        ECRProducer,
        StaticListProducer,
    ):
        registry.register(producer_cls)
    return registry
