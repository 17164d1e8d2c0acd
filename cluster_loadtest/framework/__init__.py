"""
Core of the cluster load-test pipeline.

Provisioning, health validation, workload deployment, k6 Job
orchestration, metrics extraction and reporting.
"""

from .errors import (
    ClusterUnreachableError,
    JobFailedError,
    KubectlError,
    OrchestrationError,
    PipelineError,
    PodNotFoundError,
    PrerequisiteError,
    ProvisionError,
    TimedOutError,
    ValidationError,
    WorkloadDeployError,
)

from .models import (
    DEFAULT_TARGETS,
    DEFAULT_THRESHOLDS,
    CheckResult,
    ClusterHandle,
    JobState,
    LoadTestJob,
    MetricsSnapshot,
    PipelineReport,
    Target,
    ThresholdPolicy,
    ValidationResult,
    Verdict,
)

from .config import PipelineConfig, load_config
from .kubectl import KindClient, KubectlClient
from .metrics import MetricsExtractor
from .validator import HealthValidator
from .provisioner import ClusterProvisioner
from .workload import WorkloadDeployer
from .orchestrator import LoadTestOrchestrator
from .reporter import ReportGenerator
from .pipeline import PipelineDriver

__all__ = [
    # Errors
    "ClusterUnreachableError",
    "JobFailedError",
    "KubectlError",
    "OrchestrationError",
    "PipelineError",
    "PodNotFoundError",
    "PrerequisiteError",
    "ProvisionError",
    "TimedOutError",
    "ValidationError",
    "WorkloadDeployError",
    # Models
    "DEFAULT_TARGETS",
    "DEFAULT_THRESHOLDS",
    "CheckResult",
    "ClusterHandle",
    "JobState",
    "LoadTestJob",
    "MetricsSnapshot",
    "PipelineReport",
    "Target",
    "ThresholdPolicy",
    "ValidationResult",
    "Verdict",
    # Components
    "ClusterProvisioner",
    "HealthValidator",
    "KindClient",
    "KubectlClient",
    "LoadTestOrchestrator",
    "MetricsExtractor",
    "PipelineConfig",
    "PipelineDriver",
    "ReportGenerator",
    "WorkloadDeployer",
    "load_config",
]
