"""
Tests for HealthValidator.

The kubectl client is a mock; each test shapes its answers to drive one
check to pass or fail.
"""

import pytest

from cluster_loadtest.framework.errors import KubectlError
from cluster_loadtest.framework.kubectl import ProbeResult
from cluster_loadtest.framework.models import NodeStatus
from cluster_loadtest.framework.validator import (
    CHECK_API,
    CHECK_DNS,
    CHECK_NETWORK,
    CHECK_NODES,
    CHECK_ORDER,
    CHECK_STORAGE,
    CHECK_SYSTEM_PODS,
    HealthValidator,
    summarize,
)


@pytest.fixture
def healthy(kubectl):
    kubectl.get_nodes.return_value = [
        NodeStatus("demo-control-plane", True, "control-plane"),
        NodeStatus("demo-worker", True),
        NodeStatus("demo-worker2", True),
    ]
    kubectl.get_pods.return_value = [
        {"name": "coredns-1", "phase": "Running"},
        {"name": "etcd-demo-control-plane", "phase": "Running"},
    ]
    kubectl.get_storage_classes.return_value = ["standard"]
    kubectl.run_probe.return_value = ProbeResult(succeeded=True, output="ok")
    return kubectl


def make_validator(client, **kwargs):
    return HealthValidator(client_factory=lambda handle: client, **kwargs)


class TestHealthValidator:
    """Tests for the ordered check battery."""

    def test_all_checks_pass_in_order(self, healthy, handle):
        result = make_validator(healthy).validate(handle)

        assert result.passed
        assert [c.name for c in result.checks] == CHECK_ORDER

    def test_probes_use_configured_targets(self, healthy, handle):
        make_validator(healthy, dns_name="svc.local", network_url="http://svc:80/").validate(handle)

        commands = [c.args[2] for c in healthy.run_probe.call_args_list]
        assert commands == [
            ["nslookup", "svc.local"],
            ["wget", "-q", "--spider", "-T", "10", "http://svc:80/"],
        ]

    def test_missing_node_fails(self, healthy, handle):
        healthy.get_nodes.return_value = healthy.get_nodes.return_value[:2]
        result = make_validator(healthy).validate(handle)

        assert not result.passed
        assert result.get(CHECK_NODES).detail == "2/2 nodes ready (expected 3)"

    def test_pending_system_pod_fails(self, healthy, handle):
        healthy.get_pods.return_value.append({"name": "kube-proxy-x", "phase": "Pending"})
        result = make_validator(healthy).validate(handle)

        check = result.get(CHECK_SYSTEM_PODS)
        assert not check.passed
        assert "kube-proxy-x=Pending" in check.detail

    def test_no_system_pods_fails(self, healthy, handle):
        healthy.get_pods.return_value = []
        result = make_validator(healthy).validate(handle)

        assert not result.get(CHECK_SYSTEM_PODS).passed

    def test_missing_storage_class_only_warns(self, healthy, handle):
        healthy.get_storage_classes.return_value = []
        result = make_validator(healthy).validate(handle)

        assert result.passed
        assert [c.name for c in result.warnings] == [CHECK_STORAGE]

    def test_storage_query_error_only_warns(self, healthy, handle):
        healthy.get_storage_classes.side_effect = KubectlError("forbidden")
        result = make_validator(healthy).validate(handle)

        assert result.passed
        assert not result.get(CHECK_STORAGE).required

    def test_kubectl_error_becomes_failed_check(self, healthy, handle):
        healthy.get_nodes.side_effect = KubectlError("boom")
        result = make_validator(healthy).validate(handle)

        assert result.get(CHECK_NODES).detail == "boom"
        assert not result.passed

    def test_stop_on_failure_short_circuits(self, healthy, handle):
        healthy.cluster_info.return_value = False
        result = make_validator(healthy).validate(handle, stop_on_failure=True)

        assert [c.name for c in result.checks] == [CHECK_API]
        healthy.run_probe.assert_not_called()

    def test_operator_mode_reports_everything(self, healthy, handle):
        healthy.cluster_info.return_value = False
        healthy.run_probe.return_value = ProbeResult(succeeded=False, output="timeout")
        result = make_validator(healthy).validate(handle, stop_on_failure=False)

        assert [c.name for c in result.checks] == CHECK_ORDER
        assert {c.name for c in result.failed_checks} == {CHECK_API, CHECK_DNS, CHECK_NETWORK}

    def test_each_run_builds_a_fresh_result(self, healthy, handle):
        validator = make_validator(healthy)
        first = validator.validate(handle)
        second = validator.validate(handle)

        assert first is not second
        assert len(second.checks) == len(CHECK_ORDER)


def test_summarize(healthy, handle):
    healthy.get_storage_classes.return_value = []
    healthy.cluster_info.return_value = False
    result = make_validator(healthy).validate(handle)

    lines = summarize(result).splitlines()
    assert lines[0] == "[FAIL] api_reachable: cluster-info failed"
    assert "[WARN] storage_class: no storage classes found" in lines
    assert summarize(result, failed_only=True) == "[FAIL] api_reachable: cluster-info failed"
