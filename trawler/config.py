"""
Run configuration.

Built once at startup from, in precedence order: CLI flags, environment
variables, an optional YAML file, and defaults. Components receive the
resulting RunConfig; nothing reads the environment after startup except
producers resolving their own provider secrets.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from trawler.dispatcher import DispatchSettings
from trawler.jobs.base import RunMetadata
from trawler.jobs.k8s_submitter import DEFAULT_IMAGE
from trawler.models import ConfigurationError
from trawler.pagination import DEFAULT_PAGE_SIZE, DEFAULT_RATE_LIMIT_FALLBACK
from trawler.producers.base import ParameterDefinition, Parameters, is_enabled
from trawler.timing import parse_duration_or_default

logger = logging.getLogger(__name__)

PARAM_ENV_PREFIX = "TRAWLER_PARAM_"

DEFAULT_NAMESPACE = "default"
DEFAULT_DISPATCH_INTERVAL = timedelta(minutes=1)
DEFAULT_JOB_TTL = timedelta(hours=168)
DEFAULT_QUEUE_CAPACITY = 1

# RunConfig field -> environment variable
ENV_VARS = {
    "producer": "TRAWLER_PRODUCER",
    "run_name": "TRAWLER_RUN_NAME",
    "namespace": "TRAWLER_NAMESPACE",
    "profile": "TRAWLER_PROFILE",
    "dispatch_interval": "TRAWLER_SLEEP_DURATION",
    "job_ttl": "TRAWLER_JOB_TTL",
    "downloader_override": "TRAWLER_DOWNLOADER_OVERRIDE",
    "scan_service_account": "TRAWLER_SCAN_SERVICE_ACCOUNT",
    "upload_service_account": "TRAWLER_UPLOAD_SERVICE_ACCOUNT",
    "job_image": "TRAWLER_JOB_IMAGE",
    "page_size": "TRAWLER_PAGE_SIZE",
    "rate_limit_fallback": "TRAWLER_RATE_LIMIT_FALLBACK",
    "queue_capacity": "TRAWLER_QUEUE_CAPACITY",
    "dry_run": "TRAWLER_DRY_RUN",
}

REQUIRED_FIELDS = ("producer", "run_name", "profile")


@dataclass
class RunConfig:
    """Settings for one run."""
    producer: str
    run_name: str
    profile: str
    namespace: str = DEFAULT_NAMESPACE
    dispatch_interval: timedelta = DEFAULT_DISPATCH_INTERVAL
    job_ttl: timedelta = DEFAULT_JOB_TTL
    downloader_override: Optional[str] = None
    scan_service_account: Optional[str] = None
    upload_service_account: Optional[str] = None
    job_image: str = DEFAULT_IMAGE
    page_size: int = DEFAULT_PAGE_SIZE
    rate_limit_fallback: timedelta = DEFAULT_RATE_LIMIT_FALLBACK
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    dry_run: bool = False
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def job_ttl_seconds(self) -> int:
        return int(self.job_ttl.total_seconds())

    def run_metadata(self) -> RunMetadata:
        """Run-scoped values attached to every job."""
        return RunMetadata(
            run_name=self.run_name,
            producer=self.producer,
            profile=self.profile,
            ttl_seconds=self.job_ttl_seconds,
            scan_service_account=self.scan_service_account,
            upload_service_account=self.upload_service_account
        )

    def dispatch_settings(self) -> DispatchSettings:
        return DispatchSettings(
            metadata=self.run_metadata(),
            interval=self.dispatch_interval,
            downloader_override=self.downloader_override
        )

    def validate_for(self, producer_cls: type) -> None:
        """
        Check settings a specific producer depends on.

        Raises:
            ConfigurationError: If the producer needs a downloader override and none is set
        """
        if getattr(producer_cls, "requires_downloader_override", False) and not self.downloader_override:
            raise ConfigurationError(
                f"producer {self.producer} requires {ENV_VARS['downloader_override']} to be set"
            )


def load_yaml_config(path: str) -> Dict[str, Any]:
    """
    Load a YAML run configuration file.

    Raises:
        ConfigurationError: If the file is missing, unparsable or not a mapping
    """
    config_file = Path(path).expanduser()
    if not config_file.is_file():
        raise ConfigurationError(f"Config file not found: {config_file}")

    try:
        with open(config_file, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config in {config_file}: must be a YAML dict")
    return data


def parse_cli_params(values: Optional[Sequence[str]]) -> Dict[str, str]:
    """
    Parse repeated NAME=VALUE flags.

    Raises:
        ConfigurationError: If an entry has no '=' or an empty name
    """
    params: Dict[str, str] = {}
    for entry in values or []:
        name, sep, value = entry.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"Invalid --param {entry!r}, expected NAME=VALUE")
        params[name.strip()] = value
    return params


def _as_text(value: Any, separator: str = ",") -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return separator.join(_as_text(v) for v in value)
    return str(value)


def _pick(name: str, cli: Mapping[str, Any], environ: Mapping[str, str], file_values: Mapping[str, Any]):
    value = cli.get(name)
    if value is not None:
        return value
    env_value = environ.get(ENV_VARS[name])
    if env_value:
        return env_value
    return file_values.get(name)


def _duration(name: str, raw: Any, default: timedelta) -> timedelta:
    try:
        return parse_duration_or_default(None if raw is None else str(raw), default)
    except ValueError as e:
        logger.error("Unable to parse %s %r, using default of %s: %s", name, raw, default, e)
        return default


def _positive_int(name: str, raw: Any, default: int) -> int:
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigurationError(f"{name} must be >= 1, got {value}")
    return value


def _optional(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def collect_parameters(
    cli_params: Mapping[str, str],
    environ: Mapping[str, str],
    file_values: Mapping[str, Any]
) -> Dict[str, Any]:
    """Merge raw producer parameter values; CLI beats env beats file."""
    merged: Dict[str, Any] = {}

    file_params = file_values.get("parameters") or {}
    if not isinstance(file_params, dict):
        raise ConfigurationError("'parameters' in config file must be a mapping")
    merged.update({str(k): v for k, v in file_params.items() if v is not None})

    for key, value in environ.items():
        if key.startswith(PARAM_ENV_PREFIX) and len(key) > len(PARAM_ENV_PREFIX):
            merged[key[len(PARAM_ENV_PREFIX):]] = value

    merged.update(cli_params)
    return merged


def load_run_config(
    cli: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[str] = None
) -> RunConfig:
    """
    Build the run configuration.

    Args:
        cli: Values from CLI flags, keyed by RunConfig field; None means unset.
             "params" holds parsed --param values.
        environ: Environment mapping (default: os.environ)
        config_file: Optional YAML file path

    Returns:
        RunConfig

    Raises:
        ConfigurationError: If required fields are missing or values are invalid
    """
    cli = cli or {}
    environ = environ if environ is not None else os.environ
    file_values = load_yaml_config(config_file) if config_file else {}

    values = {name: _pick(name, cli, environ, file_values) for name in ENV_VARS}

    missing = [name for name in REQUIRED_FIELDS if not _optional(values[name])]
    if missing:
        raise ConfigurationError(
            "Missing required setting(s): "
            + ", ".join(f"{name} ({ENV_VARS[name]})" for name in missing)
        )

    dry_run = values["dry_run"]
    if not isinstance(dry_run, bool):
        dry_run = is_enabled(dry_run)

    return RunConfig(
        producer=str(values["producer"]).strip(),
        run_name=str(values["run_name"]).strip(),
        profile=str(values["profile"]).strip(),
        namespace=_optional(values["namespace"]) or DEFAULT_NAMESPACE,
        dispatch_interval=_duration("dispatch interval", values["dispatch_interval"], DEFAULT_DISPATCH_INTERVAL),
        job_ttl=_duration("job TTL", values["job_ttl"], DEFAULT_JOB_TTL),
        downloader_override=_optional(values["downloader_override"]),
        scan_service_account=_optional(values["scan_service_account"]),
        upload_service_account=_optional(values["upload_service_account"]),
        job_image=_optional(values["job_image"]) or DEFAULT_IMAGE,
        page_size=_positive_int("page size", values["page_size"], DEFAULT_PAGE_SIZE),
        rate_limit_fallback=_duration(
            "rate limit fallback", values["rate_limit_fallback"], DEFAULT_RATE_LIMIT_FALLBACK
        ),
        queue_capacity=_positive_int("queue capacity", values["queue_capacity"], DEFAULT_QUEUE_CAPACITY),
        dry_run=dry_run,
        parameters=collect_parameters(cli.get("params") or {}, environ, file_values)
    )


def resolve_parameters(
    definitions: Sequence[ParameterDefinition],
    raw: Mapping[str, Any]
) -> Parameters:
    """
    Validate raw values against a producer's parameter definitions.

    Defaults fill unset parameters. Every missing required parameter is
    reported in a single error.

    Raises:
        ConfigurationError: If any required parameter is missing
    """
    known = {definition.name for definition in definitions}
    for name in sorted(set(raw) - known):
        logger.warning("Ignoring unknown producer parameter %s", name)

    resolved: Parameters = {}
    missing: List[str] = []
    for definition in definitions:
        value = raw.get(definition.name)
        if value is not None:
            value = _as_text(value, definition.separator or ",")
        if not value:
            value = definition.default
        if not value:
            if definition.required:
                missing.append(definition.name)
            continue
        resolved[definition.name] = value

    if missing:
        raise ConfigurationError(f"Missing required producer parameter(s): {', '.join(missing)}")
    return resolved


def producer_parameters(config: RunConfig, producer_cls: type) -> Parameters:
    """Resolve a run's parameters for its producer and check producer-specific settings."""
    config.validate_for(producer_cls)
    definitions: Sequence[ParameterDefinition] = getattr(producer_cls, "parameters", ())
    return resolve_parameters(definitions, config.parameters)

