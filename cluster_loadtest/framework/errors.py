"""
Error kinds raised by the pipeline stages.

Every error that can terminate a run derives from PipelineError so the
pipeline driver can record its kind and diagnostics in the final report.
Missing metrics are not an error: they are represented as absent fields
on the snapshot and produce a failing verdict.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for errors that terminate a pipeline stage."""

    kind = "PipelineError"

    def __init__(self, message: str, diagnostics: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics or {}


class PrerequisiteError(PipelineError):
    """Raised when a required tool or input file is missing."""

    kind = "PrerequisiteError"


class KubectlError(PipelineError):
    """Raised when a kind or kubectl invocation exits non-zero."""

    kind = "KubectlError"

    def __init__(self, message: str, returncode: int = 1, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ClusterUnreachableError(KubectlError):
    """Raised when the control plane cannot be reached (usually transient)."""

    kind = "ClusterUnreachableError"


class ProvisionError(PipelineError):
    """Raised when every provisioning attempt has failed."""

    kind = "ProvisionError"

    def __init__(
        self,
        message: str,
        attempts: int,
        history: Optional[list[Any]] = None,
        diagnostics: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, diagnostics)
        self.attempts = attempts
        self.history = history or []


class ValidationError(PipelineError):
    """Raised when a required health check fails."""

    kind = "ValidationError"

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class WorkloadDeployError(PipelineError):
    """Raised when the ingress workload cannot be deployed or smoke-tested."""

    kind = "WorkloadDeployError"


class OrchestrationError(PipelineError):
    """Raised when the load-test Job or its logs cannot be handled."""

    kind = "OrchestrationError"

    def __init__(
        self,
        message: str,
        job: Any = None,
        diagnostics: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, diagnostics)
        self.job = job


class JobFailedError(OrchestrationError):
    """Raised when the load-test Job reports failure."""

    kind = "JobFailedError"


class PodNotFoundError(OrchestrationError):
    """Raised when no pod backs the load-test Job."""

    kind = "PodNotFoundError"


class TimedOutError(PipelineError):
    """Raised when the Job does not reach a terminal state within its timeout."""

    kind = "TimedOutError"

    def __init__(
        self,
        message: str,
        timeout_seconds: float,
        elapsed_seconds: float,
        job: Any = None,
        diagnostics: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, diagnostics)
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
        self.job = job


class JobStateError(Exception):
    """Raised on an illegal LoadTestJob state transition."""
