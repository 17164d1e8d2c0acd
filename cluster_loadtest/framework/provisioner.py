"""
Ephemeral kind cluster provisioning.

ClusterProvisioner owns the destroy -> create -> wait for nodes ->
validate cycle and retries the whole cycle a fixed number of times.
Only exhausting every attempt is fatal.
"""

import logging
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import (
    ClusterUnreachableError,
    PipelineError,
    PrerequisiteError,
    ProvisionError,
    ValidationError,
)
from .kubectl import KindClient, KubectlClient
from .models import ClusterHandle, ProvisionAttempt
from .validator import HealthValidator, summarize

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 10
CREATE_WAIT_SECONDS = 300
NODE_READY_TIMEOUT = 300
NODE_POLL_INTERVAL = 15
# nodes take a while to register after `kind create` returns
NODE_SETTLE_DELAY = 45
UNREACHABLE_BACKOFF = 10
DESTROY_SETTLE_DELAY = 5


class ClusterProvisioner:
    """
    Creates and destroys kind clusters, retrying failed attempts.

    At most one live ClusterHandle exists per cluster name: every attempt
    starts by destroying whatever cluster already carries the name, and
    the superseded handle is marked dead.

    Args:
        validator: Health validator run at the end of each attempt
        kind: kind command adapter
        client_factory: Builds a KubectlClient for a ClusterHandle
        expected_nodes: Node count the readiness wait requires
        max_attempts: Attempts before giving up
        retry_delay: Seconds between attempts
        create_wait: Seconds kind waits for the control plane
        node_ready_timeout: Seconds the readiness wait polls
        poll_interval: Seconds between node polls
        settle_delay: Seconds before the first node poll
        unreachable_backoff: Seconds to back off when the API is unreachable
        kubeconfig: Optional kubeconfig path recorded on handles
        kubectl_binary: kubectl executable checked by check_prerequisites
        sleep: Blocking sleep, injectable for tests
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        validator: Optional[HealthValidator] = None,
        kind: Optional[KindClient] = None,
        client_factory: Callable[[ClusterHandle], KubectlClient] = KubectlClient.for_handle,
        expected_nodes: int = 3,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        create_wait: int = CREATE_WAIT_SECONDS,
        node_ready_timeout: float = NODE_READY_TIMEOUT,
        poll_interval: float = NODE_POLL_INTERVAL,
        settle_delay: float = NODE_SETTLE_DELAY,
        unreachable_backoff: float = UNREACHABLE_BACKOFF,
        kubeconfig: Optional[str] = None,
        kubectl_binary: str = "kubectl",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.kind = kind or KindClient()
        self.kubectl_binary = kubectl_binary
        self.client_factory = client_factory
        self.expected_nodes = expected_nodes
        self.validator = validator or HealthValidator(
            expected_nodes=expected_nodes, client_factory=client_factory
        )
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.create_wait = create_wait
        self.node_ready_timeout = node_ready_timeout
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay
        self.unreachable_backoff = unreachable_backoff
        self.kubeconfig = kubeconfig
        self.sleep = sleep
        self.clock = clock
        self.attempts: list[ProvisionAttempt] = []
        self._live: dict[str, ClusterHandle] = {}

    def live_handle(self, name: str) -> Optional[ClusterHandle]:
        return self._live.get(name)

    def check_prerequisites(self, config_spec: Path | str) -> None:
        """
        Verify the kind and kubectl binaries and the cluster config exist.

        Raises:
            PrerequisiteError: If anything is missing
        """
        missing = [
            b for b in (self.kind.binary, self.kubectl_binary) if shutil.which(b) is None
        ]
        if missing:
            raise PrerequisiteError(f"Required tools not installed: {', '.join(missing)}")
        if not Path(config_spec).is_file():
            raise PrerequisiteError(f"Cluster config file not found: {config_spec}")
        logger.info("Prerequisites satisfied")

    def provision(self, name: str, config_spec: Path | str) -> ClusterHandle:
        """
        Provision a validated cluster.

        Args:
            name: Cluster name
            config_spec: Path to the kind Cluster topology file

        Returns:
            Handle to the live, validated cluster

        Raises:
            ProvisionError: After max_attempts failed attempts
        """
        self.attempts = []
        for number in range(1, self.max_attempts + 1):
            attempt = ProvisionAttempt(number=number)
            self.attempts.append(attempt)
            logger.info("Provisioning attempt %d/%d for cluster %s", number, self.max_attempts, name)

            start = self.clock()
            try:
                handle = self._attempt(name, config_spec, attempt)
            except PipelineError as e:
                attempt.error = str(e)
                logger.error("Attempt %d failed during %s: %s", number, attempt.stage, e)
            else:
                attempt.succeeded = True
                logger.info("Cluster %s provisioned and validated", name)
                return handle
            finally:
                attempt.duration_seconds = self.clock() - start

            if number < self.max_attempts:
                logger.info("Waiting %ss before retry...", self.retry_delay)
                self.sleep(self.retry_delay)

        raise ProvisionError(
            f"Failed to provision cluster {name} after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            history=list(self.attempts),
        )

    def _attempt(
        self, name: str, config_spec: Path | str, attempt: ProvisionAttempt
    ) -> ClusterHandle:
        attempt.stage = "destroy"
        self.destroy(name)

        attempt.stage = "create"
        self.kind.create_cluster(name, str(config_spec), wait_seconds=self.create_wait)
        handle = ClusterHandle(name=name, kubeconfig=self.kubeconfig)
        self._live[name] = handle

        attempt.stage = "nodes"
        if not self.wait_for_nodes_ready(handle):
            raise ValidationError(
                f"Nodes not ready within {self.node_ready_timeout}s "
                f"(expected {self.expected_nodes})"
            )

        attempt.stage = "validate"
        result = self.validator.validate(handle, stop_on_failure=True)
        attempt.validation = result
        if not result.passed:
            raise ValidationError(
                f"Cluster validation failed: {summarize(result, failed_only=True)}",
                result=result,
            )

        attempt.stage = "ready"
        return handle

    def destroy(self, name: str) -> bool:
        """
        Destroy the named cluster if it exists.

        Returns:
            True if a cluster was deleted, False if there was none
        """
        handle = self._live.pop(name, None)
        if handle:
            handle.alive = False

        deleted = self.kind.delete_cluster(name)
        if deleted:
            logger.info("Deleted existing cluster %s", name)
            self.sleep(DESTROY_SETTLE_DELAY)
        return deleted

    def wait_for_nodes_ready(
        self, handle: ClusterHandle, expected: Optional[int] = None
    ) -> bool:
        """
        Wait until every node is Ready and the node count is as expected.

        An unreachable control plane during polling is retried within the
        same wait after a short backoff.

        Args:
            handle: Cluster to poll
            expected: Required node count, defaults to expected_nodes

        Returns:
            True if ready == total == expected before the timeout
        """
        expected = expected if expected is not None else self.expected_nodes
        client = self.client_factory(handle)

        logger.info("Waiting %ss for nodes to register...", self.settle_delay)
        self.sleep(self.settle_delay)

        start = self.clock()
        while self.clock() - start < self.node_ready_timeout:
            try:
                nodes = client.get_nodes()
            except ClusterUnreachableError as e:
                logger.warning(
                    "Cannot reach control plane, retrying in %ss: %s", self.unreachable_backoff, e
                )
                self.sleep(self.unreachable_backoff)
                continue

            ready = sum(1 for n in nodes if n.ready)
            total = len(nodes)
            logger.info("Nodes ready: %d/%d (expected %d)", ready, total, expected)
            if ready == total == expected:
                return True
            self.sleep(self.poll_interval)

        logger.error("Timeout waiting for %d nodes to become ready", expected)
        return False

    def cluster_summary(self, handle: ClusterHandle) -> dict[str, Any]:
        """Collect nodes, system pods and storage classes for display."""
        client = self.client_factory(handle)
        return {
            "name": handle.name,
            "context": handle.context,
            "nodes": [
                {"name": n.name, "role": n.role, "ready": n.ready} for n in client.get_nodes()
            ],
            "system_pods": client.get_pods(self.validator.system_namespace),
            "storage_classes": client.get_storage_classes(),
        }
