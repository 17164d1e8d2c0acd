"""
End-to-end pipeline driver.

PipelineDriver runs the stages strictly in order (prerequisites,
provision, workload, load test, metrics), turns any PipelineError into
the report's terminal error kind and writes the report artifacts. A
failed required stage always fails the run.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

from .config import PipelineConfig
from .errors import PipelineError, ProvisionError
from .kubectl import KindClient, KubectlClient
from .metrics import MetricsExtractor
from .models import (
    DEFAULT_THRESHOLDS,
    ClusterHandle,
    PipelineReport,
    StageStatus,
    Target,
)
from .orchestrator import LoadTestOrchestrator
from .provisioner import ClusterProvisioner
from .reporter import HostInfo, ReportGenerator, log_excerpt
from .validator import HealthValidator
from .workload import WorkloadDeployer

logger = logging.getLogger(__name__)

STAGE_PREREQUISITES = "prerequisites"
STAGE_PROVISION = "provision"
STAGE_WORKLOAD = "workload"
STAGE_LOAD_TEST = "load_test"
STAGE_METRICS = "metrics"

STAGES = [STAGE_PREREQUISITES, STAGE_PROVISION, STAGE_WORKLOAD, STAGE_LOAD_TEST, STAGE_METRICS]


def build_validator(
    config: PipelineConfig,
    client_factory: Callable[[ClusterHandle], KubectlClient] = KubectlClient.for_handle,
) -> HealthValidator:
    """Create a HealthValidator from configuration."""
    return HealthValidator(
        expected_nodes=config.cluster.resolved_expected_nodes(),
        probe_image=config.validation.probe_image,
        dns_name=config.validation.dns_name,
        network_url=config.validation.network_url,
        probe_timeout=config.validation.probe_timeout,
        client_factory=client_factory,
    )


def build_provisioner(
    config: PipelineConfig,
    kind: Optional[KindClient] = None,
    client_factory: Callable[[ClusterHandle], KubectlClient] = KubectlClient.for_handle,
) -> ClusterProvisioner:
    """Create a ClusterProvisioner from configuration."""
    cluster = config.cluster
    validator = build_validator(config, client_factory)
    return ClusterProvisioner(
        validator=validator,
        kind=kind or KindClient(),
        client_factory=client_factory,
        expected_nodes=validator.expected_nodes,
        create_wait=cluster.create_wait,
        node_ready_timeout=cluster.node_ready_timeout,
        kubeconfig=cluster.kubeconfig or None,
    )


class PipelineDriver:
    """
    Sequences one pipeline run and aggregates its PipelineReport.

    Collaborators are built from the config unless injected.

    Args:
        config: Pipeline configuration
        provisioner: Cluster provisioner
        kind: kind command adapter
        client_factory: Builds a KubectlClient for a ClusterHandle
        orchestrator_factory: Builds a LoadTestOrchestrator for a client
        workload_factory: Builds a WorkloadDeployer for a client
        extractor: Metrics extractor
        reporter: Report writer
        host_info: Host details for the report, collected when omitted
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        config: PipelineConfig,
        provisioner: Optional[ClusterProvisioner] = None,
        kind: Optional[KindClient] = None,
        client_factory: Callable[[ClusterHandle], KubectlClient] = KubectlClient.for_handle,
        orchestrator_factory: Optional[Callable[[KubectlClient], LoadTestOrchestrator]] = None,
        workload_factory: Optional[Callable[[KubectlClient], WorkloadDeployer]] = None,
        extractor: Optional[MetricsExtractor] = None,
        reporter: Optional[ReportGenerator] = None,
        host_info: Optional[HostInfo] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.kind = kind or KindClient()
        self.client_factory = client_factory
        self.provisioner = provisioner or self._build_provisioner()
        self.orchestrator_factory = orchestrator_factory or self._build_orchestrator
        self.workload_factory = workload_factory or self._build_workload
        self.extractor = extractor or MetricsExtractor(DEFAULT_THRESHOLDS)
        self.reporter = reporter or ReportGenerator(output_dir=config.output.directory)
        self.host_info = host_info
        self.clock = clock
        self.report: Optional[PipelineReport] = None

    def _build_provisioner(self) -> ClusterProvisioner:
        return build_provisioner(self.config, kind=self.kind, client_factory=self.client_factory)

    def _build_orchestrator(self, client: KubectlClient) -> LoadTestOrchestrator:
        return LoadTestOrchestrator(
            client,
            namespace=self.config.workload.namespace,
            image=self.config.load_test.image,
            target_url=self.config.load_test.target_url,
        )

    def _build_workload(self, client: KubectlClient) -> WorkloadDeployer:
        workload = self.config.workload
        return WorkloadDeployer(
            client,
            controller_manifest=workload.controller_manifest,
            manifests=workload.manifests or None,
            namespace=workload.namespace,
            targets=self.targets,
            ingress_url=workload.ingress_url,
            http_checks=workload.http_checks,
            propagation_delay=workload.propagation_delay,
        )

    @property
    def targets(self) -> tuple[Target, ...]:
        return tuple(Target.from_dict(t) for t in self.config.load_test.targets)

    def _new_report(self) -> PipelineReport:
        load = self.config.load_test
        return PipelineReport(
            cluster_name=self.config.cluster.name,
            configuration={
                "vus": load.vus,
                "duration": load.duration,
                "timeout": load.timeout,
                "targets": [t.to_dict() for t in self.targets],
                "kind_config": self.config.cluster.config,
                "thresholds": DEFAULT_THRESHOLDS.to_dict(),
            },
        )

    def _stage(self, report: PipelineReport, name: str, action: Callable[[], Any]) -> Any:
        logger.info("=== Stage: %s ===", name)
        start = self.clock()
        try:
            result = action()
        except PipelineError as e:
            report.add_stage(name, StageStatus.FAILED, str(e), self.clock() - start)
            raise
        report.add_stage(name, StageStatus.PASSED, "", self.clock() - start)
        return result

    def run(self, reuse_cluster: bool = False) -> PipelineReport:
        """
        Run the pipeline.

        Args:
            reuse_cluster: Skip provisioning and target an existing cluster
                of the configured name

        Returns:
            The PipelineReport, also written to the output directory
        """
        report = self._new_report()
        self.report = report
        handle: Optional[ClusterHandle] = None
        diagnostics: dict[str, str] = {}

        try:
            if reuse_cluster:
                handle = ClusterHandle(
                    name=self.config.cluster.name,
                    kubeconfig=self.config.cluster.kubeconfig or None,
                )
                report.add_stage(STAGE_PREREQUISITES, StageStatus.SKIPPED, "existing cluster")
                report.add_stage(STAGE_PROVISION, StageStatus.SKIPPED, f"using {handle.context}")
            else:
                self._stage(
                    report,
                    STAGE_PREREQUISITES,
                    lambda: self.provisioner.check_prerequisites(self.config.cluster.config),
                )
                handle = self._stage(
                    report,
                    STAGE_PROVISION,
                    lambda: self.provisioner.provision(
                        self.config.cluster.name, self.config.cluster.config
                    ),
                )

            client = self.client_factory(handle)
            if self.config.workload.enabled:
                workload = self.workload_factory(client)
                self._stage(report, STAGE_WORKLOAD, lambda: (workload.deploy(), workload.verify()))
            else:
                report.add_stage(STAGE_WORKLOAD, StageStatus.SKIPPED, "disabled")

            orchestrator = self.orchestrator_factory(client)
            load = self.config.load_test
            job, raw_log = self._stage(
                report,
                STAGE_LOAD_TEST,
                lambda: orchestrator.run(list(self.targets), load.vus, load.duration, load.timeout),
            )
            report.job = job
            self._evaluate(report, raw_log)

        except PipelineError as e:
            logger.error("Pipeline failed: %s: %s", e.kind, e)
            report.error_kind = e.kind
            report.error_message = str(e)
            diagnostics.update(e.diagnostics)
            job = getattr(e, "job", None)
            if job is not None:
                report.job = job
            if isinstance(e, ProvisionError):
                self._export_kind_logs(report)

        finally:
            attempts = self.provisioner.attempts
            report.provision_attempts = list(attempts)
            if attempts and attempts[-1].validation is not None:
                report.validation = attempts[-1].validation
            recorded = {s.name for s in report.stages}
            for name in STAGES:
                if name not in recorded:
                    report.add_stage(name, StageStatus.SKIPPED, "not reached")
            if self.config.cluster.teardown and not reuse_cluster:
                self._teardown()
            report.finished_at = datetime.now()
            self._write_artifacts(report, diagnostics)

        logger.info("Pipeline %s", report.overall_status.upper())
        return report

    def _evaluate(self, report: PipelineReport, raw_log: str) -> None:
        start = self.clock()
        report.artifacts["raw_log"] = str(self.reporter.save_raw_log(raw_log))
        report.log_excerpt = log_excerpt(raw_log)
        snapshot = self.extractor.extract(raw_log)
        verdict = self.extractor.evaluate(snapshot)
        report.metrics = snapshot
        report.verdict = verdict
        status = StageStatus.PASSED if verdict.passed else StageStatus.FAILED
        report.add_stage(STAGE_METRICS, status, verdict.reason, self.clock() - start)
        logger.info("Verdict: %s (%s)", verdict.label, verdict.reason)

    def _export_kind_logs(self, report: PipelineReport) -> None:
        directory = self.reporter.output_dir / "kind-logs"
        exported = self.kind.export_logs(self.config.cluster.name, str(directory))
        if exported:
            report.artifacts["kind_logs"] = exported

    def _teardown(self) -> None:
        try:
            self.provisioner.destroy(self.config.cluster.name)
            logger.info("Cluster %s destroyed", self.config.cluster.name)
        except PipelineError as e:
            logger.warning("Teardown of %s failed: %s", self.config.cluster.name, e)

    def _write_artifacts(self, report: PipelineReport, diagnostics: dict[str, str]) -> None:
        for path in self.reporter.save_diagnostics(diagnostics):
            report.artifacts[f"diagnostics/{path.name}"] = str(path)
        if self.host_info is None:
            self.host_info = ReportGenerator.get_host_info(kind=self.kind)
        report.host = self.host_info.to_dict()
        self.reporter.save_report(report, formats=self.config.output.formats)

    def get_exit_code(self) -> int:
        """0 if the last run passed, 1 otherwise."""
        if self.report is None or not self.report.passed:
            return 1
        return 0
