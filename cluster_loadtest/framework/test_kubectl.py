"""
Tests for the kind and kubectl command adapters.

subprocess.run is patched throughout; no binaries are invoked.
"""

import json
import subprocess
from unittest.mock import patch

import pytest

from cluster_loadtest.framework.errors import ClusterUnreachableError, KubectlError
from cluster_loadtest.framework.kubectl import (
    KindClient,
    KubectlClient,
    is_unreachable,
)
from cluster_loadtest.framework.models import ClusterHandle, JobState


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def run():
    with patch("cluster_loadtest.framework.kubectl.subprocess.run") as mock_run:
        mock_run.return_value = completed()
        yield mock_run


def commands(mock_run):
    return [c.args[0] for c in mock_run.call_args_list]


class TestRunCommand:
    """Tests for subprocess failure mapping."""

    def test_unreachable_stderr(self, run):
        run.return_value = completed(
            1, stderr="The connection to the server 127.0.0.1:6443 was refused"
        )
        with pytest.raises(ClusterUnreachableError):
            KubectlClient(context="kind-demo")._kubectl(["get", "nodes"])

    def test_other_failure(self, run):
        run.return_value = completed(1, stderr='Error from server (NotFound): jobs "x" not found')
        with pytest.raises(KubectlError) as exc_info:
            KubectlClient()._kubectl(["get", "job", "x"])

        assert not isinstance(exc_info.value, ClusterUnreachableError)
        assert exc_info.value.returncode == 1

    def test_missing_binary(self, run):
        run.side_effect = FileNotFoundError("kubectl")
        with pytest.raises(KubectlError) as exc_info:
            KubectlClient()._kubectl(["version"])
        assert exc_info.value.returncode == 127

    def test_timeout(self, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=5)
        with pytest.raises(KubectlError) as exc_info:
            KubectlClient()._kubectl(["get", "pods"], timeout=5)
        assert exc_info.value.returncode == 124

    def test_is_unreachable(self):
        assert is_unreachable("Unable to connect to the server: dial tcp: i/o timeout")
        assert not is_unreachable("pods \"x\" not found")
        assert not is_unreachable("")


class TestKubectlClient:
    """Tests for the context-bound kubectl adapter."""

    def test_context_and_kubeconfig_on_every_command(self, run):
        client = KubectlClient.for_handle(ClusterHandle(name="demo", kubeconfig="/tmp/kc"))
        client.cluster_info()

        cmd = commands(run)[0]
        assert cmd[:5] == ["kubectl", "--kubeconfig", "/tmp/kc", "--context", "kind-demo"]

    def test_get_nodes(self, run):
        run.return_value = completed(stdout=json.dumps({
            "items": [
                {
                    "metadata": {"name": "n1"},
                    "status": {"conditions": [{"type": "Ready", "status": "True"}]},
                },
                {
                    "metadata": {"name": "n2"},
                    "status": {"conditions": [{"type": "Ready", "status": "False"}]},
                },
            ]
        }))
        nodes = KubectlClient().get_nodes()

        assert [n.ready for n in nodes] == [True, False]

    def test_get_nodes_failure_is_unreachable(self, run):
        run.return_value = completed(1, stderr="error: You must be logged in to the server")
        with pytest.raises(ClusterUnreachableError):
            KubectlClient().get_nodes()

    def test_get_job_status(self, run):
        run.return_value = completed(stdout=json.dumps({"status": {"succeeded": 1}}))
        status = KubectlClient().get_job_status("k6-load-test")

        assert status.observed_state() == JobState.SUCCEEDED

    def test_delete_ignores_not_found(self, run):
        assert KubectlClient().delete("job", "k6-load-test")
        assert "--ignore-not-found=true" in commands(run)[0]

    def test_delete_failure_is_reported_not_raised(self, run):
        run.return_value = completed(1, stderr="forbidden")
        assert KubectlClient().delete("configmap", "k6-test-script") is False

    def test_apply_manifest_uses_stdin(self, run):
        KubectlClient().apply_manifest({"kind": "ConfigMap"})

        call = run.call_args
        assert call.args[0][-3:] == ["apply", "-f", "-"]
        assert json.loads(call.kwargs["input"]) == {"kind": "ConfigMap"}

    def test_get_endpoint_addresses(self, run):
        run.return_value = completed(stdout=json.dumps({
            "subsets": [{"addresses": [{"ip": "10.244.1.5"}, {"ip": "10.244.2.7"}]}]
        }))
        assert KubectlClient().get_endpoint_addresses("foo-service") == ["10.244.1.5", "10.244.2.7"]

    def test_get_ingress_missing(self, run):
        run.return_value = completed(1, stderr="not found")
        assert KubectlClient().get_ingress("echo-ingress") is None

    def test_get_ingress_invalid_json(self, run):
        run.return_value = completed(stdout="error: couldn't get resource list")

        with pytest.raises(KubectlError, match="Invalid JSON"):
            KubectlClient().get_ingress("echo-ingress")


class TestRunProbe:
    """The probe pod is removed whatever the probe's outcome."""

    def _delete_calls(self, run):
        return [c for c in commands(run) if "delete" in c]

    def test_success(self, run):
        run.return_value = completed(stdout="Name: kubernetes.default")
        result = KubectlClient().run_probe("dns-test", "busybox:1.36", ["nslookup", "x"])

        assert result.succeeded
        assert len(self._delete_calls(run)) == 1

    def test_failure(self, run):
        run.return_value = completed(1, stderr="can't resolve")
        result = KubectlClient().run_probe("dns-test", "busybox:1.36", ["nslookup", "x"])

        assert not result.succeeded
        assert "can't resolve" in result.output
        assert len(self._delete_calls(run)) == 1

    def test_timeout(self, run):
        run.side_effect = [subprocess.TimeoutExpired(cmd="kubectl", timeout=1), completed()]
        result = KubectlClient().run_probe("network-test", "busybox:1.36", ["wget", "x"])

        assert not result.succeeded
        probe_cmd, delete_cmd = commands(run)
        pod_name = probe_cmd[probe_cmd.index("run") + 1]
        assert pod_name.startswith("network-test-")
        assert pod_name in delete_cmd


class TestKindClient:
    """Tests for the kind adapter."""

    def test_delete_absent_cluster_is_noop(self, run):
        run.return_value = completed(stdout="other-cluster\n")

        assert KindClient().delete_cluster("demo") is False
        assert len(run.call_args_list) == 1

    def test_delete_existing_cluster(self, run):
        run.side_effect = [completed(stdout="demo\n"), completed()]

        assert KindClient().delete_cluster("demo") is True
        assert commands(run)[1] == ["kind", "delete", "cluster", "--name", "demo"]

    def test_create_cluster(self, run):
        KindClient().create_cluster("demo", "/tmp/kind.yaml", wait_seconds=60)

        assert commands(run)[0] == [
            "kind", "create", "cluster",
            "--name", "demo",
            "--config", "/tmp/kind.yaml",
            "--wait", "60s",
        ]
        assert run.call_args.kwargs["timeout"] == 180

    def test_export_logs_failure_returns_none(self, run):
        run.return_value = completed(1, stderr="no nodes")
        assert KindClient().export_logs("demo", "/tmp/logs") is None

    def test_version(self, run):
        run.return_value = completed(stdout="kind v0.23.0 go1.22.2 linux/amd64\n")
        assert KindClient().version() == "kind v0.23.0 go1.22.2 linux/amd64"

    def test_version_not_installed(self, run):
        run.side_effect = FileNotFoundError("kind")
        assert KindClient().version() is None
