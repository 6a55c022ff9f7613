"""
Kubernetes Job submitter - creates one batch/v1 Job per dispatched target.
"""
import logging
import os
import re
from typing import Dict, Any, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from trawler.jobs.base import JobSubmitter, JobRequest, JobHandle
from trawler.models import ConfigurationError, DispatchError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "trawler-pipeline:latest"

LABEL_APP = "app"
LABEL_RUN = "trawler.dev/run"
LABEL_PRODUCER = "trawler.dev/producer"
ANNOTATION_IDENTIFIER = "trawler.dev/target-identifier"
ANNOTATION_VERSION = "trawler.dev/target-version"
ANNOTATION_DOWNLOADER = "trawler.dev/downloader"
ANNOTATION_UPLOAD_SA = "trawler.dev/upload-service-account"

_NAME_INVALID_RE = re.compile(r"[^a-z0-9.-]+")


def sanitize_name(value: str, max_length: int = 52) -> str:
    """
    Turn an arbitrary string into a DNS-1123 compatible name fragment.

    Kubernetes appends a 5 character suffix to generateName, so the
    default length leaves room for it within the 63 character limit.
    """
    name = _NAME_INVALID_RE.sub("-", value.lower()).strip("-.")
    name = name[:max_length].strip("-.")
    return name or "run"


def load_kubernetes_config() -> str:
    """
    Load cluster credentials: in-cluster first, then kubeconfig.

    Returns:
        Source of the configuration ("in-cluster" or "kubeconfig")

    Raises:
        ConfigurationError: If neither source is usable
    """
    try:
        config.load_incluster_config()
        return "in-cluster"
    except ConfigException:
        logger.info("In-cluster configuration unavailable, trying kubeconfig")

    try:
        config.load_kube_config()
    except (ConfigException, OSError) as e:
        raise ConfigurationError(f"Unable to load in-cluster config or kubeconfig: {e}") from e
    return "kubeconfig"


def build_job_spec(request: JobRequest, namespace: str, image: str) -> Dict[str, Any]:
    """
    Generate Kubernetes Job specification.

    Target coordinates go into annotations and env vars; label values are
    restricted to DNS-safe run and producer names.

    Args:
        request: Job request
        namespace: Namespace the Job is created in
        image: Pipeline container image

    Returns:
        K8s Job spec dict
    """
    meta = request.metadata
    labels = {
        LABEL_APP: "trawler",
        LABEL_RUN: sanitize_name(meta.run_name, max_length=63),
    }
    if meta.producer:
        labels[LABEL_PRODUCER] = sanitize_name(meta.producer, max_length=63)

    annotations = {
        ANNOTATION_IDENTIFIER: request.identifier,
        ANNOTATION_VERSION: request.version,
        ANNOTATION_DOWNLOADER: request.downloader,
    }
    if meta.upload_service_account:
        annotations[ANNOTATION_UPLOAD_SA] = meta.upload_service_account

    env_vars = [
        {"name": "TARGET_IDENTIFIER", "value": request.identifier},
        {"name": "TARGET_VERSION", "value": request.version},
        {"name": "DOWNLOADER", "value": request.downloader},
        {"name": "PROFILE", "value": meta.profile},
        {"name": "RUN_NAME", "value": meta.run_name},
        {"name": "UPLOAD_SERVICE_ACCOUNT", "value": meta.upload_service_account or ""},
    ]

    pod_spec: Dict[str, Any] = {
        "restartPolicy": "Never",
        "containers": [
            {
                "name": "pipeline",
                "image": image,
                "env": env_vars,
            }
        ],
    }
    if meta.scan_service_account:
        pod_spec["serviceAccountName"] = meta.scan_service_account

    job_spec: Dict[str, Any] = {
        "template": {
            "metadata": {"labels": dict(labels)},
            "spec": pod_spec,
        },
        "backoffLimit": 0,
    }
    if meta.ttl_seconds is not None:
        job_spec["ttlSecondsAfterFinished"] = meta.ttl_seconds

    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "generateName": f"{sanitize_name(meta.run_name)}-",
            "namespace": namespace,
            "labels": labels,
            "annotations": annotations,
        },
        "spec": job_spec,
    }


class KubernetesJobSubmitter(JobSubmitter):
    """
    Submitter that creates a Kubernetes Job for each target.

    The Job runs the pipeline image, which:
    1. Fetches the target with the requested downloader
    2. Runs the profile against it
    3. Exits; the Job is garbage collected after its TTL
    """

    def __init__(
        self,
        namespace: str = "default",
        image: Optional[str] = None,
        batch_api: Optional[client.BatchV1Api] = None
    ):
        """
        Initialize Kubernetes submitter.

        Args:
            namespace: Namespace Jobs are created in
            image: Pipeline container image (default: from env TRAWLER_JOB_IMAGE)
            batch_api: Pre-built BatchV1Api; loads cluster config when omitted
        """
        self.namespace = namespace
        self.image = image or os.getenv("TRAWLER_JOB_IMAGE", DEFAULT_IMAGE)

        if batch_api is None:
            source = load_kubernetes_config()
            logger.info("Loaded Kubernetes configuration from %s", source)
            batch_api = client.BatchV1Api()
        self.batch_api = batch_api

    def generate_job_spec(self, request: JobRequest) -> Dict[str, Any]:
        """Generate the Job spec for a request."""
        return build_job_spec(request, namespace=self.namespace, image=self.image)

    def submit(self, request: JobRequest) -> JobHandle:
        """
        Create the Job.

        Raises:
            DispatchError: On any Kubernetes API error
        """
        body = self.generate_job_spec(request)
        try:
            job = self.batch_api.create_namespaced_job(
                namespace=self.namespace,
                body=body
            )
        except ApiException as e:
            raise DispatchError(f"K8s API error: {e.status} {e.reason}") from e

        return JobHandle(
            name=job.metadata.name,
            namespace=self.namespace,
            labels=body["metadata"]["labels"]
        )
