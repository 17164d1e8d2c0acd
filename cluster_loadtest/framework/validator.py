"""
Cluster health validation.

HealthValidator runs a fixed, ordered battery of checks against a live
cluster: API reachability, node readiness, system pods, in-cluster DNS,
storage classes (advisory) and in-cluster network reachability.
"""

import logging
from typing import Callable, Optional

from .errors import KubectlError
from .kubectl import KubectlClient
from .models import CheckResult, ClusterHandle, ValidationResult

logger = logging.getLogger(__name__)

CHECK_API = "api_reachable"
CHECK_NODES = "nodes_ready"
CHECK_SYSTEM_PODS = "system_pods_running"
CHECK_DNS = "dns_resolution"
CHECK_STORAGE = "storage_class"
CHECK_NETWORK = "network_reachability"

CHECK_ORDER = [
    CHECK_API,
    CHECK_NODES,
    CHECK_SYSTEM_PODS,
    CHECK_DNS,
    CHECK_STORAGE,
    CHECK_NETWORK,
]

DEFAULT_PROBE_IMAGE = "busybox:1.36"
DEFAULT_DNS_NAME = "kubernetes.default.svc.cluster.local"
# CoreDNS serves plain-HTTP metrics behind the kube-dns service in every kind cluster
DEFAULT_NETWORK_URL = "http://kube-dns.kube-system.svc.cluster.local:9153/metrics"


class HealthValidator:
    """
    Ordered cluster health checks.

    A failing required check aborts the remaining checks only when the
    caller asks for it (stop_on_failure). The provisioner does, so the
    first failure ends the attempt; an operator running validation by
    hand gets every result.

    Args:
        expected_nodes: Minimum number of Ready nodes
        system_namespace: Namespace whose pods must all be Running
        probe_image: Image for the ephemeral DNS and network probes
        dns_name: Internal name the DNS probe resolves
        network_url: Internal URL the network probe fetches
        probe_timeout: Seconds each probe pod may run
        client_factory: Builds a KubectlClient for a ClusterHandle
    """

    def __init__(
        self,
        expected_nodes: int = 3,
        system_namespace: str = "kube-system",
        probe_image: str = DEFAULT_PROBE_IMAGE,
        dns_name: str = DEFAULT_DNS_NAME,
        network_url: str = DEFAULT_NETWORK_URL,
        probe_timeout: int = 120,
        client_factory: Callable[[ClusterHandle], KubectlClient] = KubectlClient.for_handle,
    ):
        self.expected_nodes = expected_nodes
        self.system_namespace = system_namespace
        self.probe_image = probe_image
        self.dns_name = dns_name
        self.network_url = network_url
        self.probe_timeout = probe_timeout
        self.client_factory = client_factory

    def validate(self, handle: ClusterHandle, stop_on_failure: bool = False) -> ValidationResult:
        """
        Run the checks in order.

        Args:
            handle: Cluster to validate
            stop_on_failure: Stop at the first failing required check

        Returns:
            A fresh ValidationResult
        """
        client = self.client_factory(handle)
        checks: list[tuple[str, Callable[[KubectlClient], CheckResult]]] = [
            (CHECK_API, self.check_api),
            (CHECK_NODES, self.check_nodes),
            (CHECK_SYSTEM_PODS, self.check_system_pods),
            (CHECK_DNS, self.check_dns),
            (CHECK_STORAGE, self.check_storage_class),
            (CHECK_NETWORK, self.check_network),
        ]

        result = ValidationResult()
        logger.info("Validating cluster %s", handle.name)
        for name, check in checks:
            try:
                outcome = check(client)
            except KubectlError as e:
                outcome = CheckResult(name=name, passed=False, detail=str(e))
                if name == CHECK_STORAGE:
                    outcome.required = False
            result.add(outcome)

            if outcome.passed:
                logger.info("✓ %s: %s", outcome.name, outcome.detail)
            elif not outcome.required:
                logger.warning("⚠ %s: %s", outcome.name, outcome.detail)
            else:
                logger.error("✗ %s: %s", outcome.name, outcome.detail)
                if stop_on_failure:
                    break

        return result

    def check_api(self, client: KubectlClient) -> CheckResult:
        if client.cluster_info():
            return CheckResult(CHECK_API, True, "cluster API accessible")
        return CheckResult(CHECK_API, False, "cluster-info failed")

    def check_nodes(self, client: KubectlClient) -> CheckResult:
        nodes = client.get_nodes()
        ready = sum(1 for n in nodes if n.ready)
        detail = f"{ready}/{len(nodes)} nodes ready (expected {self.expected_nodes})"
        return CheckResult(CHECK_NODES, ready >= self.expected_nodes, detail)

    def check_system_pods(self, client: KubectlClient) -> CheckResult:
        pods = client.get_pods(self.system_namespace)
        running = [p for p in pods if p["phase"] == "Running"]
        not_running = [f"{p['name']}={p['phase']}" for p in pods if p["phase"] != "Running"]
        detail = f"{len(running)}/{len(pods)} {self.system_namespace} pods running"
        if not_running:
            detail += f" (not running: {', '.join(not_running)})"
        return CheckResult(CHECK_SYSTEM_PODS, bool(pods) and not not_running, detail)

    def check_dns(self, client: KubectlClient) -> CheckResult:
        probe = client.run_probe(
            "dns-test",
            self.probe_image,
            ["nslookup", self.dns_name],
            timeout=self.probe_timeout,
        )
        if probe.succeeded:
            return CheckResult(CHECK_DNS, True, f"resolved {self.dns_name}")
        return CheckResult(CHECK_DNS, False, f"nslookup {self.dns_name} failed: {probe.output}")

    def check_storage_class(self, client: KubectlClient) -> CheckResult:
        classes = client.get_storage_classes()
        if classes:
            return CheckResult(
                CHECK_STORAGE, True, f"storage classes: {', '.join(classes)}", required=False
            )
        return CheckResult(CHECK_STORAGE, False, "no storage classes found", required=False)

    def check_network(self, client: KubectlClient) -> CheckResult:
        probe = client.run_probe(
            "network-test",
            self.probe_image,
            ["wget", "-q", "--spider", "-T", "10", self.network_url],
            timeout=self.probe_timeout,
        )
        if probe.succeeded:
            return CheckResult(CHECK_NETWORK, True, f"reached {self.network_url}")
        return CheckResult(CHECK_NETWORK, False, f"wget {self.network_url} failed: {probe.output}")


def summarize(result: ValidationResult, failed_only: bool = False) -> Optional[str]:
    """One line per check, for logs and error messages."""
    lines = []
    for check in result.checks:
        if failed_only and (check.passed or not check.required):
            continue
        mark = "PASS" if check.passed else ("WARN" if not check.required else "FAIL")
        lines.append(f"[{mark}] {check.name}: {check.detail}")
    return "\n".join(lines) if lines else None
