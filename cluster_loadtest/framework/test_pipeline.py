"""
Tests for PipelineDriver.

Every collaborator is a mock; the tests check stage sequencing, error
kind recording, skipped stages, teardown and written artifacts.
"""

import json
from unittest.mock import MagicMock

import pytest

from cluster_loadtest.framework.config import load_config
from cluster_loadtest.framework.errors import (
    JobFailedError,
    PrerequisiteError,
    ProvisionError,
    TimedOutError,
    WorkloadDeployError,
)
from cluster_loadtest.framework.kubectl import KindClient, KubectlClient
from cluster_loadtest.framework.models import (
    CheckResult,
    ClusterHandle,
    JobState,
    LoadTestJob,
    ProvisionAttempt,
    StageStatus,
    ValidationResult,
)
from cluster_loadtest.framework.orchestrator import LoadTestOrchestrator
from cluster_loadtest.framework.pipeline import STAGES, PipelineDriver, build_provisioner
from cluster_loadtest.framework.provisioner import MAX_ATTEMPTS, ClusterProvisioner
from cluster_loadtest.framework.reporter import HostInfo
from cluster_loadtest.framework.workload import WorkloadDeployer

PASSING_LOG = (
    "http_req_duration..............: avg=45.2ms p(95)=120ms\n"
    "http_req_failed................: rate=1%\n"
)
FAILING_LOG = (
    "http_req_duration..............: avg=45.2ms p(95)=120ms\n"
    "http_req_failed................: rate=35%\n"
)


def finished_job(state=JobState.SUCCEEDED):
    job = LoadTestJob()
    job.transition(JobState.ACTIVE)
    job.transition(state)
    return job


class Harness:
    """Mocks wired into a PipelineDriver."""

    def __init__(self, tmp_path, **overrides):
        self.config = load_config(output_dir=str(tmp_path), **overrides)
        self.handle = ClusterHandle(name=self.config.cluster.name)
        self.attempt = ProvisionAttempt(
            number=1,
            stage="ready",
            succeeded=True,
            validation=ValidationResult([CheckResult("api_reachable", True)]),
        )

        self.provisioner = MagicMock(spec=ClusterProvisioner)
        self.provisioner.attempts = [self.attempt]
        self.provisioner.provision.return_value = self.handle

        self.kind = MagicMock(spec=KindClient)
        self.kind.export_logs.return_value = str(tmp_path / "kind-logs")
        self.client = MagicMock(spec=KubectlClient)
        self.workload = MagicMock(spec=WorkloadDeployer)
        self.orchestrator = MagicMock(spec=LoadTestOrchestrator)
        self.orchestrator.run.return_value = (finished_job(), PASSING_LOG)

        self.driver = PipelineDriver(
            self.config,
            provisioner=self.provisioner,
            kind=self.kind,
            client_factory=lambda handle: self.client,
            orchestrator_factory=lambda client: self.orchestrator,
            workload_factory=lambda client: self.workload,
            host_info=HostInfo(kind_version="kind v0.23.0", kubectl_version="v1.30.0"),
        )


def stage_statuses(report):
    return {s.name: s.status for s in report.stages}


class TestRun:

    def test_success(self, tmp_path):
        h = Harness(tmp_path)
        report = h.driver.run()

        assert report.passed
        assert h.driver.get_exit_code() == 0
        assert [s.name for s in report.stages] == STAGES
        assert all(s.status == StageStatus.PASSED for s in report.stages)
        assert report.metrics.avg_latency_ms == pytest.approx(45.2)
        assert report.validation is h.attempt.validation
        assert report.host["kind_version"] == "kind v0.23.0"
        h.workload.deploy.assert_called_once()
        h.workload.verify.assert_called_once()

    def test_load_test_parameters(self, tmp_path):
        h = Harness(tmp_path, vus=25, duration="1m", timeout=900)
        h.driver.run()

        targets, vus, duration, timeout = h.orchestrator.run.call_args.args
        assert [t.host for t in targets] == ["foo.localhost", "bar.localhost"]
        assert (vus, duration, timeout) == (25, "1m", 900)

    def test_artifacts_written(self, tmp_path):
        h = Harness(tmp_path)
        report = h.driver.run()

        assert (tmp_path / "k6-output.log").read_text() == PASSING_LOG
        assert (tmp_path / "test-summary.md").is_file()
        data = json.loads((tmp_path / "report.json").read_text())
        assert data["status"] == "passed"
        assert data["artifacts"]["raw_log"] == report.artifacts["raw_log"]
        assert report.log_excerpt == PASSING_LOG.splitlines()

    def test_failing_verdict_fails_run(self, tmp_path):
        h = Harness(tmp_path)
        h.orchestrator.run.return_value = (finished_job(), FAILING_LOG)

        report = h.driver.run()

        assert not report.passed
        assert report.error_kind is None
        assert stage_statuses(report)["metrics"] == StageStatus.FAILED
        assert h.driver.get_exit_code() == 1

    def test_provision_error(self, tmp_path):
        h = Harness(tmp_path)
        h.provisioner.provision.side_effect = ProvisionError(
            "Failed after 3 attempts", attempts=3
        )

        report = h.driver.run()

        assert report.error_kind == "ProvisionError"
        statuses = stage_statuses(report)
        assert statuses["provision"] == StageStatus.FAILED
        assert statuses["workload"] == StageStatus.SKIPPED
        assert statuses["load_test"] == StageStatus.SKIPPED
        assert report.artifacts["kind_logs"] == str(tmp_path / "kind-logs")
        h.orchestrator.run.assert_not_called()
        assert h.driver.get_exit_code() == 1

    def test_prerequisite_error(self, tmp_path):
        h = Harness(tmp_path)
        h.provisioner.check_prerequisites.side_effect = PrerequisiteError("kind not installed")

        report = h.driver.run()

        assert report.error_kind == "PrerequisiteError"
        h.provisioner.provision.assert_not_called()

    def test_workload_error_keeps_diagnostics(self, tmp_path):
        h = Harness(tmp_path)
        h.workload.verify.side_effect = WorkloadDeployError(
            "Ingress smoke test failed", diagnostics={"pods.log": "foo-echo CrashLoopBackOff"}
        )

        report = h.driver.run()

        assert report.error_kind == "WorkloadDeployError"
        assert (tmp_path / "diagnostics" / "pods.log").read_text() == "foo-echo CrashLoopBackOff"
        assert "diagnostics/pods.log" in report.artifacts

    def test_timed_out_job_recorded(self, tmp_path):
        h = Harness(tmp_path)
        job = finished_job(JobState.TIMED_OUT)
        h.orchestrator.run.side_effect = TimedOutError(
            "did not finish", timeout_seconds=600, elapsed_seconds=601, job=job,
            diagnostics={"job-describe.log": "Active: 1"},
        )

        report = h.driver.run()

        assert report.error_kind == "TimedOutError"
        assert report.job.state == JobState.TIMED_OUT
        assert stage_statuses(report)["load_test"] == StageStatus.FAILED
        assert stage_statuses(report)["metrics"] == StageStatus.SKIPPED

    def test_failed_job_recorded(self, tmp_path):
        h = Harness(tmp_path)
        h.orchestrator.run.side_effect = JobFailedError(
            "job failed", job=finished_job(JobState.FAILED)
        )

        report = h.driver.run()

        assert report.error_kind == "JobFailedError"
        assert report.job.state == JobState.FAILED

    def test_skip_workload(self, tmp_path):
        h = Harness(tmp_path, skip_workload=True)
        report = h.driver.run()

        assert stage_statuses(report)["workload"] == StageStatus.SKIPPED
        h.workload.deploy.assert_not_called()
        assert report.passed

    def test_reuse_cluster_skips_provisioning(self, tmp_path):
        h = Harness(tmp_path, teardown=True)
        report = h.driver.run(reuse_cluster=True)

        statuses = stage_statuses(report)
        assert statuses["prerequisites"] == StageStatus.SKIPPED
        assert statuses["provision"] == StageStatus.SKIPPED
        h.provisioner.provision.assert_not_called()
        h.provisioner.destroy.assert_not_called()
        assert report.passed


class TestTeardown:

    def test_teardown_runs_after_failure(self, tmp_path):
        h = Harness(tmp_path, teardown=True)
        h.orchestrator.run.side_effect = JobFailedError("job failed")

        h.driver.run()

        h.provisioner.destroy.assert_called_once_with(h.config.cluster.name)

    def test_teardown_failure_does_not_fail_run(self, tmp_path):
        h = Harness(tmp_path, teardown=True)
        h.provisioner.destroy.side_effect = ProvisionError("kind delete failed", attempts=1)

        report = h.driver.run()

        assert report.passed

    def test_cluster_kept_by_default(self, tmp_path):
        h = Harness(tmp_path)
        h.driver.run()

        h.provisioner.destroy.assert_not_called()


def test_exit_code_before_run(tmp_path):
    assert Harness(tmp_path).driver.get_exit_code() == 1


def test_provisioner_attempt_count_is_fixed():
    provisioner = build_provisioner(load_config())

    assert provisioner.max_attempts == MAX_ATTEMPTS == 3
