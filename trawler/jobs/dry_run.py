"""
Dry-run submitter - renders Job specs and logs them instead of creating them.

Lets a run be exercised end to end without a cluster.
"""
import json
import logging
import uuid
from typing import Any, Dict, List

from trawler.jobs.base import JobHandle, JobRequest, JobSubmitter
from trawler.jobs.k8s_submitter import DEFAULT_IMAGE, build_job_spec

logger = logging.getLogger(__name__)


class DryRunJobSubmitter(JobSubmitter):
    """Submitter that records rendered Job specs but never submits them."""

    def __init__(self, namespace: str = "default", image: str = DEFAULT_IMAGE):
        self.namespace = namespace
        self.image = image
        self.rendered: List[Dict[str, Any]] = []

    def submit(self, request: JobRequest) -> JobHandle:
        spec = build_job_spec(request, namespace=self.namespace, image=self.image)
        self.rendered.append(spec)

        name = f"{spec['metadata']['generateName']}{uuid.uuid4().hex[:5]}"
        logger.info("Dry run, not creating Job %s: %s", name, json.dumps(spec, sort_keys=True))

        return JobHandle(name=name, namespace=self.namespace, labels=spec["metadata"]["labels"])
