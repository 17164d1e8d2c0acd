"""
Command adapters for the kind and kubectl binaries.

KindClient creates and destroys clusters. KubectlClient is bound to one
cluster context and covers the handful of queries and mutations the
pipeline needs; it is not a general Kubernetes client.
"""

import json
import logging
import subprocess
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from .errors import ClusterUnreachableError, KubectlError
from .models import ClusterHandle, JobStatus, NodeStatus

logger = logging.getLogger(__name__)

# stderr fragments kubectl prints when the API server cannot be reached
UNREACHABLE_MARKERS = (
    "unable to connect to the server",
    "the connection to the server",
    "connection refused",
    "i/o timeout",
    "no such host",
    "context deadline exceeded",
    "tls handshake timeout",
)


def is_unreachable(stderr: str) -> bool:
    """Check whether kubectl stderr indicates an unreachable control plane."""
    text = (stderr or "").lower()
    return any(marker in text for marker in UNREACHABLE_MARKERS)


class _CommandClient:
    """Shared subprocess handling for the CLI adapters."""

    binary = ""

    def _run_command(
        self,
        cmd: list[str],
        timeout: int = 300,
        capture_output: bool = True,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and wrap failures in KubectlError.

        Args:
            cmd: Command and arguments as list
            timeout: Command timeout in seconds
            capture_output: Whether to capture stdout/stderr
            check: Whether to raise on non-zero exit
            input: Text passed on stdin

        Returns:
            CompletedProcess result

        Raises:
            ClusterUnreachableError: If the API server could not be reached
            KubectlError: On non-zero exit (when check is set), timeout or
                missing binary
        """
        logger.debug("Running command: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                timeout=timeout,
                capture_output=capture_output,
                text=True,
                check=False,
                input=input,
            )
        except FileNotFoundError as e:
            raise KubectlError(f"{cmd[0]} not found: {e}", returncode=127) from e
        except subprocess.TimeoutExpired as e:
            raise KubectlError(
                f"Command timed out after {timeout}s: {' '.join(cmd)}", returncode=124
            ) from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            message = f"{' '.join(cmd[:4])} failed ({result.returncode}): {stderr}"
            if is_unreachable(stderr):
                raise ClusterUnreachableError(message, result.returncode, stderr)
            raise KubectlError(message, result.returncode, stderr)
        return result

    def version(self) -> Optional[str]:
        """Get the binary version string, or None if it is not installed."""
        try:
            result = self._run_command(self._version_cmd(), timeout=10, check=False)
        except KubectlError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip().splitlines()[0] if result.stdout.strip() else None

    def _version_cmd(self) -> list[str]:
        return [self.binary, "version"]


class KindClient(_CommandClient):
    """Create, list and delete kind clusters."""

    def __init__(self, binary: str = "kind"):
        self.binary = binary

    def list_clusters(self) -> list[str]:
        result = self._run_command([self.binary, "get", "clusters"], timeout=30)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def cluster_exists(self, name: str) -> bool:
        return name in self.list_clusters()

    def create_cluster(self, name: str, config_path: str, wait_seconds: int = 300) -> None:
        """
        Create a cluster from a kind topology file.

        Args:
            name: Cluster name
            config_path: Path to the kind Cluster config
            wait_seconds: How long kind waits for the control plane

        Raises:
            KubectlError: If kind exits non-zero or times out
        """
        cmd = [
            self.binary, "create", "cluster",
            "--name", name,
            "--config", str(config_path),
            "--wait", f"{wait_seconds}s",
        ]
        self._run_command(cmd, timeout=wait_seconds + 120)

    def delete_cluster(self, name: str) -> bool:
        """
        Delete a cluster if it exists.

        Returns:
            True if a cluster was deleted, False if none existed
        """
        if not self.cluster_exists(name):
            return False
        self._run_command([self.binary, "delete", "cluster", "--name", name], timeout=180)
        return True

    def export_logs(self, name: str, directory: str) -> Optional[str]:
        try:
            self._run_command(
                [self.binary, "export", "logs", str(directory), "--name", name], timeout=180
            )
            return str(directory)
        except KubectlError as e:
            logger.warning("Failed to export kind logs: %s", e)
            return None


@dataclass
class ProbeResult:
    """Exit outcome of an ephemeral probe pod."""

    succeeded: bool
    output: str = ""


class KubectlClient(_CommandClient):
    """
    kubectl bound to a single cluster context.

    Every command gets --kubeconfig/--context from the handle, so two
    clients never share ambient "current context" state.
    """

    def __init__(
        self,
        context: Optional[str] = None,
        kubeconfig: Optional[str] = None,
        binary: str = "kubectl",
    ):
        self.context = context
        self.kubeconfig = kubeconfig
        self.binary = binary

    @classmethod
    def for_handle(cls, handle: ClusterHandle, binary: str = "kubectl") -> "KubectlClient":
        return cls(context=handle.context, kubeconfig=handle.kubeconfig, binary=binary)

    def _version_cmd(self) -> list[str]:
        return [self.binary, "version", "--client"]

    def _get_kubectl_base_cmd(self) -> list[str]:
        """Get base kubectl command with kubeconfig and context."""
        cmd = [self.binary]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    def _kubectl(
        self,
        args: list[str],
        timeout: int = 60,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        return self._run_command(
            self._get_kubectl_base_cmd() + args, timeout=timeout, check=check, input=input
        )

    def _get_json(self, args: list[str], timeout: int = 60) -> dict[str, Any]:
        result = self._kubectl(args + ["-o", "json"], timeout=timeout)
        return self._parse_json(result.stdout, args)

    @staticmethod
    def _parse_json(stdout: str, args: list[str]) -> dict[str, Any]:
        try:
            return json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise KubectlError(f"Invalid JSON from kubectl {' '.join(args)}: {e}") from e

    # -- cluster queries -------------------------------------------------

    def cluster_info(self) -> bool:
        """Check that the API server answers."""
        try:
            result = self._kubectl(["cluster-info"], timeout=30, check=False)
        except KubectlError:
            return False
        return result.returncode == 0

    def get_nodes(self) -> list[NodeStatus]:
        """
        List nodes with their readiness.

        Raises:
            ClusterUnreachableError: If the node list cannot be fetched
        """
        try:
            data = self._get_json(["get", "nodes"], timeout=30)
        except ClusterUnreachableError:
            raise
        except KubectlError as e:
            raise ClusterUnreachableError(str(e), e.returncode, e.stderr) from e
        return [NodeStatus.from_node_json(item) for item in data.get("items", [])]

    def get_pods(self, namespace: str, selector: Optional[str] = None) -> list[dict[str, str]]:
        """List pods as {"name", "phase"} dicts."""
        args = ["get", "pods", "-n", namespace]
        if selector:
            args.extend(["-l", selector])
        data = self._get_json(args)
        return [
            {
                "name": item.get("metadata", {}).get("name", ""),
                "phase": item.get("status", {}).get("phase", "Unknown"),
            }
            for item in data.get("items", [])
        ]

    def find_pods(self, selector: str, namespace: str = "default") -> list[str]:
        return [p["name"] for p in self.get_pods(namespace, selector=selector)]

    def get_storage_classes(self) -> list[str]:
        data = self._get_json(["get", "storageclass"])
        return [item.get("metadata", {}).get("name", "") for item in data.get("items", [])]

    def get_pods_table(self, namespace: Optional[str] = None) -> str:
        args = ["get", "pods", "-o", "wide"]
        args.extend(["-n", namespace] if namespace else ["-A"])
        result = self._kubectl(args, check=False)
        return result.stdout or result.stderr

    # -- ephemeral probes ------------------------------------------------

    def run_probe(
        self,
        name: str,
        image: str,
        command: list[str],
        namespace: str = "default",
        timeout: int = 120,
    ) -> ProbeResult:
        """
        Run a one-shot pod to completion and report its exit outcome.

        The probe pod is deleted afterwards whether it succeeded, failed
        or timed out.

        Args:
            name: Prefix for the probe pod name
            image: Container image
            command: Command run inside the container
            namespace: Namespace for the probe pod
            timeout: Seconds to wait for the probe to finish

        Returns:
            ProbeResult with success flag and combined output
        """
        pod_name = f"{name}-{uuid.uuid4().hex[:5]}"
        args = [
            "run", pod_name,
            f"--image={image}",
            "--restart=Never",
            "--rm", "-i",
            "--quiet",
            "-n", namespace,
            f"--pod-running-timeout={timeout}s",
            "--",
        ] + command
        try:
            result = self._kubectl(args, timeout=timeout + 30, check=False)
            output = (result.stdout or "") + (result.stderr or "")
            return ProbeResult(succeeded=result.returncode == 0, output=output.strip())
        except KubectlError as e:
            return ProbeResult(succeeded=False, output=str(e))
        finally:
            self.delete("pod", pod_name, namespace=namespace, wait=False)

    # -- workload API ----------------------------------------------------

    def apply_manifest(self, manifest: dict[str, Any]) -> None:
        """Apply a manifest dict via `kubectl apply -f -`."""
        self._kubectl(["apply", "-f", "-"], input=json.dumps(manifest))

    def apply_file(self, path_or_url: str, timeout: int = 120) -> None:
        self._kubectl(["apply", "-f", str(path_or_url)], timeout=timeout)

    def wait_for_pods_ready(self, namespace: str, selector: str, timeout: int = 300) -> bool:
        result = self._kubectl(
            [
                "wait", "--namespace", namespace,
                "--for=condition=ready", "pod",
                f"--selector={selector}",
                f"--timeout={timeout}s",
            ],
            timeout=timeout + 30,
            check=False,
        )
        return result.returncode == 0

    def wait_for_deployment_available(
        self, name: str, namespace: str = "default", timeout: int = 120
    ) -> bool:
        result = self._kubectl(
            [
                "wait", "--namespace", namespace,
                "--for=condition=available",
                f"deployment/{name}",
                f"--timeout={timeout}s",
            ],
            timeout=timeout + 30,
            check=False,
        )
        return result.returncode == 0

    def get_job_status(self, name: str, namespace: str = "default") -> JobStatus:
        return JobStatus.from_job_json(self._get_json(["get", "job", name, "-n", namespace]))

    def logs(self, pod: str, namespace: str = "default") -> str:
        return self._kubectl(["logs", pod, "-n", namespace], timeout=120).stdout

    def logs_by_selector(self, selector: str, namespace: str = "default") -> str:
        """Aggregated logs of every pod matching a label selector (best effort)."""
        result = self._kubectl(
            ["logs", "-l", selector, "-n", namespace, "--tail=-1", "--prefix"],
            timeout=120,
            check=False,
        )
        return (result.stdout or "") + (result.stderr or "")

    def describe(self, kind: str, name: str, namespace: str = "default") -> str:
        result = self._kubectl(["describe", kind, name, "-n", namespace], check=False)
        return (result.stdout or "") + (result.stderr or "")

    def delete(self, kind: str, name: str, namespace: str = "default", wait: bool = True) -> bool:
        """Delete an object, tolerating one that is already gone."""
        args = ["delete", kind, name, "-n", namespace, "--ignore-not-found=true"]
        if not wait:
            args.append("--wait=false")
        try:
            result = self._kubectl(args, check=False)
        except KubectlError as e:
            logger.warning("Failed to delete %s/%s: %s", kind, name, e)
            return False
        if result.returncode != 0:
            logger.warning("Failed to delete %s/%s: %s", kind, name, result.stderr.strip())
            return False
        return True

    def get_ingress(self, name: str, namespace: str = "default") -> Optional[dict[str, Any]]:
        result = self._kubectl(
            ["get", "ingress", name, "-n", namespace, "-o", "json"], check=False
        )
        if result.returncode != 0:
            return None
        return self._parse_json(result.stdout, ["get", "ingress", name])

    def list_ingresses(self) -> list[str]:
        data = self._get_json(["get", "ingress", "-A"])
        return [item.get("metadata", {}).get("name", "") for item in data.get("items", [])]

    def get_endpoint_addresses(self, service: str, namespace: str = "default") -> list[str]:
        result = self._kubectl(
            ["get", "endpoints", service, "-n", namespace, "-o", "json"], check=False
        )
        if result.returncode != 0:
            return []
        data = json.loads(result.stdout or "{}")
        addresses = []
        for subset in data.get("subsets", []) or []:
            for address in subset.get("addresses", []) or []:
                addresses.append(address.get("ip", ""))
        return addresses
