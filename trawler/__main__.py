"""
CLI entrypoint for a crawl run.

Usage:
    python -m trawler --producer github --run-name nightly --param GITHUB_ORGS=acme
    python -m trawler --config run.yaml --dry-run
    python -m trawler --list-producers
"""
import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from trawler.config import load_run_config, parse_cli_params, producer_parameters
from trawler.coordinator import RunCoordinator
from trawler.dispatcher import Dispatcher
from trawler.jobs.dry_run import DryRunJobSubmitter
from trawler.jobs.k8s_submitter import KubernetesJobSubmitter
from trawler.models import ConfigurationError
from trawler.pagination import PageReader
from trawler.producers import ProducerRegistry, default_registry

logger = logging.getLogger("trawler")


def configure_logging() -> None:
    level = os.getenv("TRAWLER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Set the run's cancellation event on SIGINT or SIGTERM."""
    def _cancel(signum, frame):
        logger.warning("Received signal %d, cancelling run", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)


def print_producers(registry: ProducerRegistry) -> None:
    for name in registry.names():
        producer_cls = registry.get(name)
        print(f"{name}: {producer_cls.description}")
        for definition in producer_cls.parameters:
            flags = []
            if definition.required:
                flags.append("required")
            if definition.default is not None:
                flags.append(f"default: {definition.default}")
            suffix = f" ({', '.join(flags)})" if flags else ""
            print(f"    {definition.name}{suffix} - {definition.description}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trawler target crawler")
    parser.add_argument(
        "--config",
        help="YAML run configuration file"
    )
    parser.add_argument(
        "--producer",
        help="Producer name (default: from TRAWLER_PRODUCER)"
    )
    parser.add_argument(
        "--run-name",
        help="Logical run name attached to every job (default: from TRAWLER_RUN_NAME)"
    )
    parser.add_argument(
        "--namespace",
        help="Namespace jobs are created in (default: from TRAWLER_NAMESPACE or 'default')"
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Producer parameter; may be repeated"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log job specs instead of creating jobs"
    )
    parser.add_argument(
        "--list-producers",
        action="store_true",
        help="List available producers and their parameters, then exit"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the crawler CLI and return its exit status."""
    args = build_parser().parse_args(argv)
    configure_logging()

    registry = default_registry()
    if args.list_producers:
        print_producers(registry)
        return 0

    try:
        config = load_run_config(
            cli={
                "producer": args.producer,
                "run_name": args.run_name,
                "namespace": args.namespace,
                "dry_run": True if args.dry_run else None,
                "params": parse_cli_params(args.param),
            },
            config_file=args.config
        )
        producer_cls = registry.get(config.producer)
        parameters = producer_parameters(config, producer_cls)

        if config.dry_run:
            submitter = DryRunJobSubmitter(namespace=config.namespace, image=config.job_image)
        else:
            submitter = KubernetesJobSubmitter(namespace=config.namespace, image=config.job_image)
    except ConfigurationError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    reader = PageReader(
        page_size=config.page_size,
        rate_limit_fallback=config.rate_limit_fallback,
        cancel_event=cancel_event
    )
    producer = producer_cls(reader=reader)
    dispatcher = Dispatcher(submitter, config.dispatch_settings(), cancel_event=cancel_event)
    coordinator = RunCoordinator(
        producer,
        dispatcher,
        queue_capacity=config.queue_capacity,
        cancel_event=cancel_event
    )

    print("Trawler")
    print(f"Producer: {config.producer}")
    print(f"Run name: {config.run_name}")
    print(f"Namespace: {config.namespace}")
    print(f"Dispatch interval: {config.dispatch_interval}")
    if config.downloader_override:
        print(f"Downloader override: {config.downloader_override}")
    if config.dry_run:
        print("Dry run: jobs will not be created")
    print()

    result = coordinator.run(parameters)

    if result.ok:
        print(f"\n✅ Run completed: {result.dispatched} dispatched")
        if result.outcome.has_failures:
            print(f"⚠️  Completed with {result.outcome.summary()}")
    else:
        print(f"\n❌ Run {result.status}: {result.error}", file=sys.stderr)
        if result.outcome.has_failures:
            print(result.outcome.summary(), file=sys.stderr)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
