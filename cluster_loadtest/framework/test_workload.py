"""
Tests for ingress workload deployment and the smoke test.

HTTP checks run against an httpx.MockTransport that routes on the Host
header the way the echo ingress does.
"""

import httpx
import pytest

from cluster_loadtest.framework.errors import KubectlError, WorkloadDeployError
from cluster_loadtest.framework.workload import (
    CONTROLLER_SELECTOR,
    DEFAULT_MANIFESTS,
    INGRESS_NAMESPACE,
    WorkloadDeployer,
)


def echo_handler(request: httpx.Request) -> httpx.Response:
    host = request.headers.get("host", "")
    if host == "foo.localhost":
        return httpx.Response(200, text="foo\n")
    if host == "bar.localhost":
        return httpx.Response(200, text="bar\n")
    return httpx.Response(404, text="default backend - 404")


@pytest.fixture
def client(kubectl):
    kubectl.wait_for_pods_ready.return_value = True
    kubectl.wait_for_deployment_available.return_value = True
    kubectl.get_pods.return_value = [{"name": "ingress-nginx-controller-x", "phase": "Running"}]
    kubectl.list_ingresses.return_value = ["echo-ingress"]
    kubectl.get_endpoint_addresses.return_value = ["10.244.1.3"]
    return kubectl


@pytest.fixture
def deployer(client, clock):
    return WorkloadDeployer(
        client,
        controller_manifest="deploy.yaml",
        transport=httpx.MockTransport(echo_handler),
        sleep=clock.sleep,
    )


class TestDeploy:

    def test_applies_controller_then_manifests(self, deployer, client, clock):
        deployer.deploy()

        applied = [c.args[0] for c in client.apply_file.call_args_list]
        assert applied == ["deploy.yaml"] + [str(m) for m in DEFAULT_MANIFESTS]
        client.wait_for_pods_ready.assert_called_once_with(
            INGRESS_NAMESPACE, CONTROLLER_SELECTOR, timeout=300
        )
        waited = [c.args[0] for c in client.wait_for_deployment_available.call_args_list]
        assert waited == ["foo-echo", "bar-echo"]
        assert clock.sleeps == [30]

    def test_controller_not_ready(self, deployer, client):
        client.wait_for_pods_ready.return_value = False

        with pytest.raises(WorkloadDeployError, match="Ingress controller") as exc_info:
            deployer.deploy()

        assert "ingress-pods.log" in exc_info.value.diagnostics
        assert client.apply_file.call_count == 1

    def test_apply_failure(self, deployer, client):
        client.apply_file.side_effect = KubectlError("unable to recognize")

        with pytest.raises(WorkloadDeployError, match="unable to recognize"):
            deployer.deploy()

    def test_deployment_not_available(self, deployer, client):
        client.wait_for_deployment_available.side_effect = [True, False]

        with pytest.raises(WorkloadDeployError, match="bar-echo"):
            deployer.deploy()

    def test_bundled_manifests_exist(self):
        for manifest in DEFAULT_MANIFESTS:
            assert manifest.is_file()


class TestSmokeTest:

    def test_all_checks_pass(self, deployer):
        result = deployer.verify()

        assert [c.name for c in result.checks] == [
            "ingress_controller",
            "ingress_resources",
            "endpoints_foo-service",
            "endpoints_bar-service",
            "http_foo.localhost",
            "http_bar.localhost",
        ]
        assert result.passed

    def test_wrong_backend_fails(self, client, clock):
        def swapped(request):
            return httpx.Response(200, text="bar")

        deployer = WorkloadDeployer(client, transport=httpx.MockTransport(swapped), sleep=clock.sleep)
        result = deployer.smoke_test()

        assert not result.get("http_foo.localhost").passed
        assert result.get("http_bar.localhost").passed

    def test_connection_error_fails_check(self, client, clock):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        deployer = WorkloadDeployer(client, transport=httpx.MockTransport(refuse), sleep=clock.sleep)
        check = deployer.smoke_test().get("http_foo.localhost")

        assert not check.passed
        assert "connection refused" in check.detail

    def test_http_checks_can_be_disabled(self, client, clock):
        deployer = WorkloadDeployer(client, http_checks=False, sleep=clock.sleep)
        names = [c.name for c in deployer.smoke_test().checks]

        assert not any(n.startswith("http_") for n in names)

    def test_every_check_runs_and_verify_raises(self, deployer, client):
        client.get_pods.return_value = []
        client.get_endpoint_addresses.return_value = []

        with pytest.raises(WorkloadDeployError) as exc_info:
            deployer.verify()

        message = str(exc_info.value)
        assert "ingress_controller" in message
        assert "endpoints_foo-service" in message
        assert "endpoints_bar-service" in message
        assert set(exc_info.value.diagnostics) == {
            "ingress-pods.log",
            "ingress-describe.log",
            "pods.log",
        }
