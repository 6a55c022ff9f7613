"""
Job-creation backends.

Submitters implement how a dispatched target becomes a downstream job:
- KubernetesJobSubmitter: creates a batch/v1 Job
- DryRunJobSubmitter: renders the Job spec and logs it
"""
