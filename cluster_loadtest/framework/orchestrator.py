"""
k6 load-test Job orchestration.

LoadTestOrchestrator ships the bundled k6 script into the cluster as a
ConfigMap, runs it as a Kubernetes Job, follows the Job to a terminal
state under a timeout and returns the k6 output of the Job's pod. The Job
and ConfigMap are removed on every path.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .errors import (
    JobFailedError,
    KubectlError,
    OrchestrationError,
    PodNotFoundError,
    TimedOutError,
)
from .kubectl import KubectlClient
from .models import DEFAULT_THRESHOLDS, JobState, LoadTestJob, Target, ThresholdPolicy

logger = logging.getLogger(__name__)

JOB_NAME = "k6-load-test"
CONFIGMAP_NAME = "k6-test-script"
SCRIPT_FILE = "load-test.js"
K6_IMAGE = "grafana/k6:latest"
INGRESS_NAME = "echo-ingress"
TARGET_URL = "http://ingress-nginx-controller.ingress-nginx.svc.cluster.local/"
POLL_INTERVAL = 10
DEFAULT_TIMEOUT = 600
MAX_SLEEP_SECONDS = 2

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "k6" / "ingress-load.js"


def load_script(path: Optional[Path | str] = None) -> str:
    """Read the k6 script shipped with the package."""
    return Path(path or SCRIPT_PATH).read_text(encoding="utf-8")


class LoadTestOrchestrator:
    """
    Runs one k6 load test as a Kubernetes Job.

    Job lifecycle: Pending (objects applied) -> Active (pod scheduled) ->
    Succeeded | Failed | TimedOut. Failed and TimedOut capture a
    diagnostic dump that travels on the raised error.

    Args:
        client: kubectl bound to the target cluster
        namespace: Namespace for the Job and ConfigMap
        image: k6 container image
        target_url: URL k6 sends requests to (the ingress controller)
        ingress_name: Ingress that must exist before the run
        policy: Thresholds handed to k6
        script: k6 script source, defaults to the bundled script
        poll_interval: Seconds between Job status polls
        sleep: Blocking sleep, injectable for tests
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        client: KubectlClient,
        namespace: str = "default",
        image: str = K6_IMAGE,
        target_url: str = TARGET_URL,
        ingress_name: str = INGRESS_NAME,
        policy: ThresholdPolicy = DEFAULT_THRESHOLDS,
        script: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL,
        job_name: str = JOB_NAME,
        configmap_name: str = CONFIGMAP_NAME,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.namespace = namespace
        self.image = image
        self.target_url = target_url
        self.ingress_name = ingress_name
        self.policy = policy
        self.script = script
        self.poll_interval = poll_interval
        self.job_name = job_name
        self.configmap_name = configmap_name
        self.sleep = sleep
        self.clock = clock
        self.elapsed_seconds = 0.0

    def preflight(self) -> None:
        """
        Check the cluster and ingress are in place.

        Raises:
            OrchestrationError: If the API or the ingress is missing
        """
        if not self.client.cluster_info():
            raise OrchestrationError("Cluster API is not reachable")
        try:
            ingress = self.client.get_ingress(self.ingress_name, self.namespace)
        except KubectlError as e:
            raise OrchestrationError(f"Failed to look up ingress {self.ingress_name}: {e}") from e
        if ingress is None:
            raise OrchestrationError(
                f"Ingress {self.ingress_name} not found in {self.namespace}; "
                "deploy the workload first"
            )

    def build_configmap(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": self.configmap_name, "namespace": self.namespace},
            "data": {SCRIPT_FILE: self.script if self.script is not None else load_script()},
        }

    def build_job(self, job: LoadTestJob, targets: list[Target]) -> dict[str, Any]:
        """Render the Job manifest for one run."""
        env = {
            "VUS": str(job.virtual_users),
            "DURATION": job.duration,
            "TARGET_URL": self.target_url,
            "TARGETS": json.dumps([t.to_dict() for t in targets]),
            "P95_MAX_MS": f"{self.policy.p95_latency_max_ms:g}",
            "ERROR_RATE_MAX": f"{self.policy.error_rate_max_pct / 100:g}",
            "LATENCY_BOUND_MS": f"{self.policy.p95_latency_max_ms:g}",
            "MAX_SLEEP_SECONDS": str(MAX_SLEEP_SECONDS),
        }
        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {
                "name": job.name,
                "namespace": self.namespace,
                "labels": {"app": "k6-load-test", "run-id": job.id},
            },
            "spec": {
                # one pod per run: a retried load test would double the traffic
                "backoffLimit": 0,
                "template": {
                    "metadata": {"labels": {"app": "k6-load-test", "run-id": job.id}},
                    "spec": {
                        "restartPolicy": "Never",
                        "containers": [
                            {
                                "name": "k6",
                                "image": self.image,
                                "command": ["k6", "run", f"/scripts/{SCRIPT_FILE}"],
                                "env": [{"name": k, "value": v} for k, v in env.items()],
                                "volumeMounts": [{"name": "k6-script", "mountPath": "/scripts"}],
                                "resources": {
                                    "requests": {"cpu": "100m", "memory": "128Mi"},
                                    "limits": {"cpu": "500m", "memory": "512Mi"},
                                },
                            }
                        ],
                        "volumes": [
                            {"name": "k6-script", "configMap": {"name": self.configmap_name}}
                        ],
                    },
                },
            },
        }

    def submit(self, job: LoadTestJob, targets: list[Target]) -> None:
        """Remove leftovers of an earlier run, then apply the script ConfigMap and the Job."""
        logger.info(
            "Submitting %s (%d VUs for %s) against %d targets",
            job.name, job.virtual_users, job.duration, len(targets),
        )
        try:
            self.cleanup(job)
            self.client.apply_manifest(self.build_configmap())
            self.client.apply_manifest(self.build_job(job, targets))
        except KubectlError as e:
            raise OrchestrationError(f"Failed to create load-test job: {e}", job=job) from e
        job.submitted_at = datetime.now()

    def watch_job(self, job: LoadTestJob, timeout: float) -> Iterator[JobState]:
        """
        Yield observed Job states until a terminal one.

        The timeout is checked before every status fetch and produces a
        final TimedOut. Status fetch errors are logged and retried on the
        next poll.

        Args:
            job: Submitted Job
            timeout: Seconds from the first poll before TimedOut

        Yields:
            Observed JobState values, the last one terminal
        """
        start = self.clock()
        while True:
            self.elapsed_seconds = self.clock() - start
            if self.elapsed_seconds >= timeout:
                yield JobState.TIMED_OUT
                return

            try:
                status = self.client.get_job_status(job.name, self.namespace)
            except KubectlError as e:
                logger.warning("Could not read status of job %s: %s", job.name, e)
            else:
                state = status.observed_state()
                logger.info(
                    "Job %s: %s (active=%d succeeded=%d failed=%d, %.0fs elapsed)",
                    job.name, state.value, status.active, status.succeeded,
                    status.failed, self.elapsed_seconds,
                )
                yield state
                if state.is_terminal:
                    return

            self.sleep(self.poll_interval)

    def run(
        self,
        targets: list[Target],
        vus: int,
        duration: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> tuple[LoadTestJob, str]:
        """
        Run the load test to completion.

        Args:
            targets: Virtual hosts k6 picks from at random
            vus: k6 virtual users
            duration: k6 duration (e.g. "30s")
            timeout: Seconds to wait for a terminal Job state

        Returns:
            Tuple of the finished Job and the raw k6 output

        Raises:
            JobFailedError: If the Job failed
            TimedOutError: If no terminal state was seen within timeout
            PodNotFoundError: If the Job has no pod to read logs from
            OrchestrationError: If submission or log retrieval failed
        """
        job = LoadTestJob(name=self.job_name, virtual_users=vus, duration=duration)
        self.preflight()

        try:
            self.submit(job, list(targets))
            for state in self.watch_job(job, timeout):
                job.observe(state)
                if job.is_terminal:
                    break

            if job.state == JobState.FAILED:
                raise JobFailedError(
                    f"Load test job {job.name} failed",
                    job=job,
                    diagnostics=self.capture_diagnostics(job),
                )
            if job.state == JobState.TIMED_OUT:
                raise TimedOutError(
                    f"Load test job {job.name} did not finish within {timeout}s",
                    timeout_seconds=timeout,
                    elapsed_seconds=self.elapsed_seconds,
                    job=job,
                    diagnostics=self.capture_diagnostics(job),
                )

            logger.info("Load test job %s completed successfully", job.name)
            return job, self.fetch_log(job)
        finally:
            self.cleanup(job)

    def fetch_log(self, job: LoadTestJob) -> str:
        """Fetch the k6 output from the Job's pod."""
        selector = f"job-name={job.name}"
        pods = self.client.find_pods(selector, self.namespace)
        if not pods:
            raise PodNotFoundError(
                f"No pod found for job {job.name}",
                job=job,
                diagnostics={"all-pods.log": self._collect(self.client.get_pods_table, self.namespace)},
            )
        if len(pods) > 1:
            logger.warning("Job %s has %d pods, reading %s", job.name, len(pods), pods[0])

        pod = pods[0]
        try:
            return self.client.logs(pod, self.namespace)
        except KubectlError as e:
            raise OrchestrationError(
                f"Failed to retrieve logs from pod {pod}: {e}",
                job=job,
                diagnostics={
                    "pod-debug.log": self._collect(self.client.describe, "pod", pod, self.namespace),
                    "all-pods.log": self._collect(self.client.get_pods_table, self.namespace),
                },
            ) from e

    def capture_diagnostics(self, job: LoadTestJob) -> dict[str, str]:
        """Describe the Job and collect the logs of all its pods."""
        logger.info("Capturing diagnostics for job %s", job.name)
        return {
            "job-describe.log": self._collect(self.client.describe, "job", job.name, self.namespace),
            "job-logs.log": self._collect(
                self.client.logs_by_selector, f"job-name={job.name}", self.namespace
            ),
        }

    @staticmethod
    def _collect(command: Callable[..., str], *args: Any) -> str:
        """Run one diagnostics command, returning the error text if it fails."""
        try:
            return command(*args)
        except KubectlError as e:
            logger.warning("Could not collect diagnostics: %s", e)
            return f"Failed to collect diagnostics: {e}"

    def cleanup(self, job: LoadTestJob) -> None:
        logger.info("Cleaning up load-test resources")
        self.client.delete("job", job.name, namespace=self.namespace)
        self.client.delete("configmap", self.configmap_name, namespace=self.namespace)
