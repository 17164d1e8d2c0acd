"""
Data models for the cluster load-test pipeline.

This module defines the structures passed between pipeline stages:
cluster handles, node and health-check results, the load-test Job state
machine, the metrics snapshot with its threshold policy, and the final
pipeline report.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .errors import JobStateError


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ClusterHandle:
    """
    Reference to a live kind cluster.

    The handle is threaded explicitly through every component that talks
    to the cluster; nothing reads a global "current cluster".

    Attributes:
        name: Logical cluster name (kind --name)
        context: kubectl context for the cluster (kind-<name>)
        kubeconfig: Optional kubeconfig path, None for the default
        alive: False once the cluster has been destroyed or superseded
        created_at: When the cluster was created
    """

    name: str
    context: str = ""
    kubeconfig: Optional[str] = None
    alive: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.context:
            self.context = f"kind-{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "context": self.context,
            "kubeconfig": self.kubeconfig,
            "alive": self.alive,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NodeStatus:
    """Readiness of one cluster node, re-fetched on every poll."""

    name: str
    ready: bool
    role: str = "worker"

    @classmethod
    def from_node_json(cls, item: dict[str, Any]) -> "NodeStatus":
        """Build from one item of `kubectl get nodes -o json`."""
        metadata = item.get("metadata", {})
        labels = metadata.get("labels", {}) or {}
        role = "worker"
        for key in ("node-role.kubernetes.io/control-plane", "node-role.kubernetes.io/master"):
            if key in labels:
                role = "control-plane"
                break

        ready = False
        for condition in item.get("status", {}).get("conditions", []) or []:
            if condition.get("type") == "Ready":
                ready = condition.get("status") == "True"

        return cls(name=metadata.get("name", ""), ready=ready, role=role)


@dataclass
class CheckResult:
    """
    Outcome of a single health check.

    Attributes:
        name: Check identifier (e.g. "dns_resolution")
        passed: Whether the check passed
        detail: Human-readable detail line
        required: Advisory checks (required=False) never fail validation
    """

    name: str
    passed: bool
    detail: str = ""
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "passed": self.passed,
            "detail": self.detail,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckResult":
        """Create CheckResult from dictionary."""
        return cls(
            name=data["name"],
            passed=data["passed"],
            detail=data.get("detail", ""),
            required=data.get("required", True),
        )


@dataclass
class ValidationResult:
    """Ordered list of check results from one validation run."""

    checks: list[CheckResult] = field(default_factory=list)

    def add(self, check: CheckResult) -> CheckResult:
        self.checks.append(check)
        return check

    @property
    def passed(self) -> bool:
        """True when every required check passed."""
        return all(c.passed for c in self.checks if c.required)

    @property
    def failed_checks(self) -> list[CheckResult]:
        return [c for c in self.checks if c.required and not c.passed]

    @property
    def warnings(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.required and not c.passed]

    def get(self, name: str) -> Optional[CheckResult]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidationResult":
        """Create ValidationResult from dictionary."""
        return cls(checks=[CheckResult.from_dict(c) for c in data.get("checks", [])])


@dataclass(frozen=True)
class Target:
    """An ingress virtual host and the body fragment its backend returns."""

    host: str
    expect: str

    def to_dict(self) -> dict[str, str]:
        return {"host": self.host, "expect": self.expect}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "Target":
        return cls(host=data["host"], expect=data["expect"])


DEFAULT_TARGETS = (Target("foo.localhost", "foo"), Target("bar.localhost", "bar"))


class JobState(Enum):
    """Lifecycle states of the load-test Job."""

    PENDING = "pending"
    ACTIVE = "active"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT)


_STATE_RANK = {
    JobState.PENDING: 0,
    JobState.ACTIVE: 1,
    JobState.SUCCEEDED: 2,
    JobState.FAILED: 2,
    JobState.TIMED_OUT: 2,
}


@dataclass
class LoadTestJob:
    """
    One load-test Job submission.

    State only moves forward: Pending -> Active -> terminal. Once a
    terminal state is reached any further transition raises JobStateError.

    Attributes:
        name: Kubernetes Job name
        virtual_users: k6 virtual users
        duration: k6 duration string (e.g. "30s")
        id: Short run identifier
        state: Current state
        history: States entered, in order
        submitted_at: When the Job was applied
        finished_at: When a terminal state was entered
    """

    name: str = "k6-load-test"
    virtual_users: int = 10
    duration: str = "30s"
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: JobState = JobState.PENDING
    history: list[JobState] = field(default_factory=lambda: [JobState.PENDING])
    submitted_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: JobState) -> bool:
        """
        Move the Job to a new state.

        Args:
            new_state: Target state

        Returns:
            True if the state changed, False if it was already new_state

        Raises:
            JobStateError: If the Job is terminal or the move goes backwards
        """
        if self.state.is_terminal:
            raise JobStateError(
                f"Job {self.name} is already {self.state.value}, cannot move to {new_state.value}"
            )
        if new_state == self.state:
            return False
        if _STATE_RANK[new_state] < _STATE_RANK[self.state]:
            raise JobStateError(
                f"Job {self.name} cannot move from {self.state.value} back to {new_state.value}"
            )

        self.state = new_state
        self.history.append(new_state)
        if new_state.is_terminal:
            self.finished_at = datetime.now()
        return True

    def observe(self, observed: JobState) -> bool:
        """
        Apply a polled state.

        A non-terminal observation that lags behind the current state
        (Pending seen after Active) is ignored rather than rejected.
        """
        if not self.state.is_terminal and _STATE_RANK[observed] < _STATE_RANK[self.state]:
            return False
        return self.transition(observed)

    @property
    def duration_seconds(self) -> float:
        if self.submitted_at and self.finished_at:
            return (self.finished_at - self.submitted_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "virtual_users": self.virtual_users,
            "duration": self.duration,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "submitted_at": _iso(self.submitted_at),
            "finished_at": _iso(self.finished_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoadTestJob":
        """Create LoadTestJob from dictionary."""
        return cls(
            name=data.get("name", "k6-load-test"),
            virtual_users=data.get("virtual_users", 10),
            duration=data.get("duration", "30s"),
            id=data.get("id", ""),
            state=JobState(data.get("state", "pending")),
            history=[JobState(s) for s in data.get("history", ["pending"])],
            submitted_at=_parse_time(data.get("submitted_at")),
            finished_at=_parse_time(data.get("finished_at")),
        )


@dataclass
class JobStatus:
    """One observation of a Job's `.status` block."""

    active: int = 0
    succeeded: int = 0
    failed: int = 0
    conditions: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_job_json(cls, data: dict[str, Any]) -> "JobStatus":
        """Build from `kubectl get job -o json` output."""
        status = data.get("status", {}) or {}
        return cls(
            active=int(status.get("active") or 0),
            succeeded=int(status.get("succeeded") or 0),
            failed=int(status.get("failed") or 0),
            conditions=list(status.get("conditions") or []),
        )

    def has_condition(self, condition_type: str) -> bool:
        return any(
            c.get("type") == condition_type and c.get("status", "True") == "True"
            for c in self.conditions
        )

    def observed_state(self) -> JobState:
        """
        Map the status counts and conditions to a JobState.

        Success is checked before failure: a Job that has a completed pod
        is Succeeded even if an earlier pod failed.
        """
        if self.has_condition("Complete") or self.succeeded > 0:
            return JobState.SUCCEEDED
        if self.has_condition("Failed") or self.failed > 0:
            return JobState.FAILED
        if self.active > 0:
            return JobState.ACTIVE
        return JobState.PENDING


@dataclass
class MetricsSnapshot:
    """
    Performance metrics recovered from a k6 run.

    None means "unavailable" and is distinct from zero.

    Attributes:
        avg_latency_ms: Average http_req_duration in milliseconds
        p95_latency_ms: 95th percentile http_req_duration in milliseconds
        request_rate: http_reqs per second
        error_rate_pct: Failed request percentage
        success_rate_pct: Passed check percentage
        total_requests: http_reqs count
        source: Which extraction path produced the snapshot
    """

    avg_latency_ms: Optional[float] = None
    p95_latency_ms: Optional[float] = None
    request_rate: Optional[float] = None
    error_rate_pct: Optional[float] = None
    success_rate_pct: Optional[float] = None
    total_requests: Optional[int] = None
    source: str = "none"

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.avg_latency_ms,
                self.p95_latency_ms,
                self.request_rate,
                self.error_rate_pct,
                self.success_rate_pct,
                self.total_requests,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "avg_latency_ms": self.avg_latency_ms,
            "p95_latency_ms": self.p95_latency_ms,
            "request_rate": self.request_rate,
            "error_rate_pct": self.error_rate_pct,
            "success_rate_pct": self.success_rate_pct,
            "total_requests": self.total_requests,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricsSnapshot":
        """Create MetricsSnapshot from dictionary."""
        return cls(
            avg_latency_ms=data.get("avg_latency_ms"),
            p95_latency_ms=data.get("p95_latency_ms"),
            request_rate=data.get("request_rate"),
            error_rate_pct=data.get("error_rate_pct"),
            success_rate_pct=data.get("success_rate_pct"),
            total_requests=data.get("total_requests"),
            source=data.get("source", "none"),
        )


@dataclass(frozen=True)
class ThresholdPolicy:
    """Pass/fail limits for a load-test run."""

    p95_latency_max_ms: float = 500.0
    error_rate_max_pct: float = 10.0

    def k6_thresholds(self) -> dict[str, list[str]]:
        """Render the policy as k6 `options.thresholds`."""
        return {
            "http_req_duration": [f"p(95)<{self.p95_latency_max_ms:g}"],
            "http_req_failed": [f"rate<{self.error_rate_max_pct / 100:g}"],
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "p95_latency_max_ms": self.p95_latency_max_ms,
            "error_rate_max_pct": self.error_rate_max_pct,
        }


DEFAULT_THRESHOLDS = ThresholdPolicy()


@dataclass
class Verdict:
    """Final pass/fail decision for a metrics snapshot."""

    passed: bool
    reason: str = ""
    p95_within_threshold: Optional[bool] = None

    @property
    def label(self) -> str:
        return "PASSED" if self.passed else "FAILED"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "passed": self.passed,
            "reason": self.reason,
            "p95_within_threshold": self.p95_within_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Verdict":
        """Create Verdict from dictionary."""
        return cls(
            passed=data["passed"],
            reason=data.get("reason", ""),
            p95_within_threshold=data.get("p95_within_threshold"),
        )


@dataclass
class ProvisionAttempt:
    """Record of one provisioning attempt."""

    number: int
    stage: str = "destroy"
    succeeded: bool = False
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "number": self.number,
            "stage": self.stage,
            "succeeded": self.succeeded,
            "error": self.error,
            "validation": self.validation.to_dict() if self.validation else None,
            "duration_seconds": round(self.duration_seconds, 2),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvisionAttempt":
        """Create ProvisionAttempt from dictionary."""
        validation = data.get("validation")
        return cls(
            number=data["number"],
            stage=data.get("stage", "destroy"),
            succeeded=data.get("succeeded", False),
            error=data.get("error"),
            validation=ValidationResult.from_dict(validation) if validation else None,
            duration_seconds=data.get("duration_seconds", 0.0),
        )


class StageStatus(Enum):
    """Status of a pipeline stage."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageOutcome:
    """Outcome of one pipeline stage."""

    name: str
    status: StageStatus
    message: str = ""
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "duration_seconds": round(self.duration_seconds, 2),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageOutcome":
        """Create StageOutcome from dictionary."""
        return cls(
            name=data["name"],
            status=StageStatus(data["status"]),
            message=data.get("message", ""),
            duration_seconds=data.get("duration_seconds", 0.0),
        )


@dataclass
class PipelineReport:
    """
    Aggregated result of one pipeline run.

    Attributes:
        cluster_name: Cluster the run targeted
        run_id: Unique run identifier
        started_at: When the run started
        finished_at: When the run finished
        configuration: Run parameters (VUs, duration, timeout, thresholds)
        stages: Outcome of each stage in execution order
        provision_attempts: Provisioning attempt history
        validation: Health validation of the final attempt
        job: Load-test Job record
        metrics: Extracted metrics snapshot
        verdict: Pass/fail verdict for the metrics
        error_kind: Kind of the terminal error, None when no stage raised
        error_message: Message of the terminal error
        log_excerpt: First lines of the raw k6 output
        artifacts: Written artifact paths by name
        host: Tool versions of the host that ran the pipeline
    """

    cluster_name: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    configuration: dict[str, Any] = field(default_factory=dict)
    stages: list[StageOutcome] = field(default_factory=list)
    provision_attempts: list[ProvisionAttempt] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    job: Optional[LoadTestJob] = None
    metrics: Optional[MetricsSnapshot] = None
    verdict: Optional[Verdict] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    log_excerpt: list[str] = field(default_factory=list)
    artifacts: dict[str, str] = field(default_factory=dict)
    host: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        """A run passes only if no stage failed and the verdict passed."""
        if self.error_kind is not None:
            return False
        if any(s.status == StageStatus.FAILED for s in self.stages):
            return False
        return self.verdict is not None and self.verdict.passed

    @property
    def overall_status(self) -> str:
        return "passed" if self.passed else "failed"

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def add_stage(
        self,
        name: str,
        status: StageStatus,
        message: str = "",
        duration_seconds: float = 0.0,
    ) -> StageOutcome:
        stage = StageOutcome(
            name=name, status=status, message=message, duration_seconds=duration_seconds
        )
        self.stages.append(stage)
        return stage

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "run_id": self.run_id,
            "cluster_name": self.cluster_name,
            "status": self.overall_status,
            "started_at": self.started_at.isoformat(),
            "finished_at": _iso(self.finished_at),
            "duration_seconds": round(self.duration_seconds, 2),
            "configuration": self.configuration,
            "stages": [s.to_dict() for s in self.stages],
            "provision_attempts": [a.to_dict() for a in self.provision_attempts],
            "validation": self.validation.to_dict() if self.validation else None,
            "job": self.job.to_dict() if self.job else None,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "log_excerpt": self.log_excerpt,
            "artifacts": self.artifacts,
            "host": self.host,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineReport":
        """Create PipelineReport from dictionary."""
        validation = data.get("validation")
        job = data.get("job")
        metrics = data.get("metrics")
        verdict = data.get("verdict")
        return cls(
            cluster_name=data["cluster_name"],
            run_id=data.get("run_id", ""),
            started_at=datetime.fromisoformat(data["started_at"])
                if data.get("started_at") else datetime.now(),
            finished_at=_parse_time(data.get("finished_at")),
            configuration=data.get("configuration", {}),
            stages=[StageOutcome.from_dict(s) for s in data.get("stages", [])],
            provision_attempts=[
                ProvisionAttempt.from_dict(a) for a in data.get("provision_attempts", [])
            ],
            validation=ValidationResult.from_dict(validation) if validation else None,
            job=LoadTestJob.from_dict(job) if job else None,
            metrics=MetricsSnapshot.from_dict(metrics) if metrics else None,
            verdict=Verdict.from_dict(verdict) if verdict else None,
            error_kind=data.get("error_kind"),
            error_message=data.get("error_message"),
            log_excerpt=data.get("log_excerpt", []),
            artifacts=data.get("artifacts", {}),
            host=data.get("host", {}),
        )
