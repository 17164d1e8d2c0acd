"""
Ingress workload deployment and smoke testing.

Applies the ingress-nginx controller and the static echo backend and
ingress manifests shipped with the package, waits for them to come up,
then checks that requests routed by Host header reach the right backend.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import httpx

from .errors import KubectlError, WorkloadDeployError
from .kubectl import KubectlClient
from .models import DEFAULT_TARGETS, CheckResult, Target, ValidationResult

logger = logging.getLogger(__name__)

INGRESS_CONTROLLER_MANIFEST = (
    "https://raw.githubusercontent.com/kubernetes/ingress-nginx/main/"
    "deploy/static/provider/kind/deploy.yaml"
)
INGRESS_NAMESPACE = "ingress-nginx"
CONTROLLER_SELECTOR = "app.kubernetes.io/component=controller"

MANIFEST_DIR = Path(__file__).resolve().parent.parent / "manifests"
DEFAULT_MANIFESTS = (
    MANIFEST_DIR / "echo-services.yaml",
    MANIFEST_DIR / "echo-ingress.yaml",
)
ECHO_DEPLOYMENTS = ("foo-echo", "bar-echo")
ECHO_SERVICES = ("foo-service", "bar-service")

CONTROLLER_READY_TIMEOUT = 300
DEPLOYMENT_TIMEOUT = 120
PROPAGATION_DELAY = 30


class WorkloadDeployer:
    """
    Deploys the ingress controller and echo backends, then smoke-tests them.

    Args:
        client: kubectl bound to the target cluster
        controller_manifest: Path or URL of the ingress-nginx manifest
        manifests: Static manifests applied after the controller
        namespace: Namespace of the echo backends and ingress
        deployments: Deployments that must become available
        services: Services that must have ready endpoints
        targets: Host/fragment pairs checked over HTTP
        ingress_url: URL the HTTP checks request (kind maps port 80 to the host)
        http_checks: Whether to run the HTTP routing checks
        controller_timeout: Seconds to wait for the controller pod
        deployment_timeout: Seconds to wait for each deployment
        propagation_delay: Seconds to let ingress rules propagate
        transport: Optional httpx transport, used in tests
        sleep: Blocking sleep, injectable for tests
    """

    def __init__(
        self,
        client: KubectlClient,
        controller_manifest: str = INGRESS_CONTROLLER_MANIFEST,
        manifests: Optional[list[Path | str]] = None,
        namespace: str = "default",
        deployments: tuple[str, ...] = ECHO_DEPLOYMENTS,
        services: tuple[str, ...] = ECHO_SERVICES,
        targets: tuple[Target, ...] = DEFAULT_TARGETS,
        ingress_url: str = "http://localhost/",
        http_checks: bool = True,
        controller_timeout: int = CONTROLLER_READY_TIMEOUT,
        deployment_timeout: int = DEPLOYMENT_TIMEOUT,
        propagation_delay: float = PROPAGATION_DELAY,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.controller_manifest = controller_manifest
        self.manifests = list(manifests) if manifests is not None else list(DEFAULT_MANIFESTS)
        self.namespace = namespace
        self.deployments = deployments
        self.services = services
        self.targets = targets
        self.ingress_url = ingress_url
        self.http_checks = http_checks
        self.controller_timeout = controller_timeout
        self.deployment_timeout = deployment_timeout
        self.propagation_delay = propagation_delay
        self.transport = transport
        self.sleep = sleep

    def deploy(self) -> None:
        """
        Apply the controller and manifests and wait for them.

        Raises:
            WorkloadDeployError: If anything fails to apply or come up
        """
        try:
            logger.info("Installing NGINX ingress controller")
            self.client.apply_file(self.controller_manifest, timeout=180)
            if not self.client.wait_for_pods_ready(
                INGRESS_NAMESPACE, CONTROLLER_SELECTOR, timeout=self.controller_timeout
            ):
                raise WorkloadDeployError(
                    f"Ingress controller not ready within {self.controller_timeout}s",
                    diagnostics=self.debug_dump(),
                )

            for manifest in self.manifests:
                logger.info("Applying %s", manifest)
                self.client.apply_file(str(manifest))
        except KubectlError as e:
            raise WorkloadDeployError(f"Failed to apply workload: {e}") from e

        for name in self.deployments:
            if not self.client.wait_for_deployment_available(
                name, self.namespace, timeout=self.deployment_timeout
            ):
                raise WorkloadDeployError(
                    f"Deployment {name} not available within {self.deployment_timeout}s",
                    diagnostics=self.debug_dump(),
                )

        logger.info("Waiting %ss for ingress rules to propagate...", self.propagation_delay)
        self.sleep(self.propagation_delay)

    def smoke_test(self) -> ValidationResult:
        """Run every ingress check and return all results."""
        result = ValidationResult()
        result.add(self._check_controller())
        result.add(self._check_ingress_resources())
        for service in self.services:
            result.add(self._check_endpoints(service))
        if self.http_checks:
            for target in self.targets:
                result.add(self._check_http(target))

        for check in result.checks:
            log = logger.info if check.passed else logger.error
            log("%s %s: %s", "✓" if check.passed else "✗", check.name, check.detail)
        return result

    def verify(self) -> ValidationResult:
        """
        Smoke-test the ingress.

        Raises:
            WorkloadDeployError: If any check fails
        """
        result = self.smoke_test()
        if not result.passed:
            failed = ", ".join(c.name for c in result.failed_checks)
            raise WorkloadDeployError(
                f"Ingress smoke test failed: {failed}", diagnostics=self.debug_dump()
            )
        return result

    def _check_controller(self) -> CheckResult:
        try:
            pods = self.client.get_pods(INGRESS_NAMESPACE)
        except KubectlError as e:
            return CheckResult("ingress_controller", False, str(e))
        running = sum(1 for p in pods if p["phase"] == "Running")
        return CheckResult(
            "ingress_controller", running > 0, f"{running} controller pods running"
        )

    def _check_ingress_resources(self) -> CheckResult:
        try:
            ingresses = self.client.list_ingresses()
        except KubectlError as e:
            return CheckResult("ingress_resources", False, str(e))
        return CheckResult(
            "ingress_resources", bool(ingresses), f"{len(ingresses)} ingress resources"
        )

    def _check_endpoints(self, service: str) -> CheckResult:
        addresses = self.client.get_endpoint_addresses(service, self.namespace)
        return CheckResult(
            f"endpoints_{service}",
            bool(addresses),
            f"{len(addresses)} ready endpoints for {service}",
        )

    def _check_http(self, target: Target) -> CheckResult:
        name = f"http_{target.host}"
        try:
            with httpx.Client(timeout=10.0, transport=self.transport) as client:
                response = client.get(self.ingress_url, headers={"Host": target.host})
        except httpx.HTTPError as e:
            return CheckResult(name, False, f"request failed: {e}")

        if response.status_code == 200 and target.expect in response.text:
            return CheckResult(name, True, f"{target.host} routed to '{target.expect}' backend")
        return CheckResult(
            name,
            False,
            f"HTTP {response.status_code}, expected body containing '{target.expect}'",
        )

    def debug_dump(self) -> dict[str, str]:
        """Collect controller pods, ingress and endpoints for troubleshooting."""
        return {
            "ingress-pods.log": self.client.get_pods_table(INGRESS_NAMESPACE),
            "ingress-describe.log": self.client.describe("ingress", "echo-ingress", self.namespace),
            "pods.log": self.client.get_pods_table(self.namespace),
        }
