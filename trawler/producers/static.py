"""
Static list producer - emits a fixed list of identifiers.
"""
import logging

from trawler.models import ConfigurationError, RunOutcome, Target
from trawler.producers.base import ParameterDefinition, Parameters, Producer, Sink

logger = logging.getLogger(__name__)

TARGET_IDENTIFIERS_PARAM = "TARGET_IDENTIFIERS"


class StaticListProducer(Producer):
    """
    Produces one target per non-blank line of TARGET_IDENTIFIERS.

    Targets carry no downloader of their own, so a run using this
    producer must set a downloader override.
    """

    name = "static-list"
    description = "A fixed newline separated list of target identifiers"
    default_downloader = ""
    requires_downloader_override = True
    parameters = (
        ParameterDefinition(
            TARGET_IDENTIFIERS_PARAM,
            "Newline separated target identifiers",
            required=True,
            separator="\n"
        ),
    )

    def produce(self, parameters: Parameters, sink: Sink) -> RunOutcome:
        identifiers = [
            line.strip()
            for line in (parameters.get(TARGET_IDENTIFIERS_PARAM) or "").splitlines()
            if line.strip()
        ]
        if not identifiers:
            raise ConfigurationError("no target identifiers specified")

        logger.info("Emitting %d static targets", len(identifiers))
        outcome = RunOutcome()
        for identifier in identifiers:
            self.emit(sink, outcome, identifier, lambda: Target(identifier=identifier))
        return outcome
