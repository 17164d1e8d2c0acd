"""
Configuration management for the cluster load-test pipeline.

This module handles loading, parsing, and validating pipeline configuration
from YAML files and command-line arguments. Load-test thresholds are fixed
and deliberately absent from the schema; only VUs, duration and timeout
are run parameters.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from jsonschema import Draft7Validator

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_KIND_CONFIG = str(PACKAGE_DIR / "config" / "kind-cluster.yaml")
DEFAULT_CLUSTER_NAME = "mlops-test-cluster"
DEFAULT_EXPECTED_NODES = 3

DURATION_PATTERN = "^([0-9]+(ms|s|m|h))+$"
VALID_REPORT_FORMATS = ["json", "markdown", "html"]


# JSON Schema for configuration validation
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "cluster": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "name": {"type": "string", "pattern": "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"},
                "config": {"type": "string", "minLength": 1},
                "expected_nodes": {"type": "integer", "minimum": 1},
                "kubeconfig": {"type": "string"},
                "create_wait": {"type": "integer", "minimum": 1},
                "node_ready_timeout": {"type": "integer", "minimum": 1},
                "teardown": {"type": "boolean"},
            },
        },
        "validation": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "probe_image": {"type": "string", "minLength": 1},
                "dns_name": {"type": "string", "minLength": 1},
                "network_url": {"type": "string", "minLength": 1},
                "probe_timeout": {"type": "integer", "minimum": 1},
            },
        },
        "workload": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "enabled": {"type": "boolean"},
                "controller_manifest": {"type": "string", "minLength": 1},
                "manifests": {"type": "array", "items": {"type": "string"}},
                "namespace": {"type": "string", "minLength": 1},
                "ingress_url": {"type": "string"},
                "http_checks": {"type": "boolean"},
                "propagation_delay": {"type": "number", "minimum": 0},
            },
        },
        "load_test": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "vus": {"type": "integer", "minimum": 1},
                "duration": {"type": "string", "pattern": DURATION_PATTERN},
                "timeout": {"type": "integer", "minimum": 1},
                "image": {"type": "string", "minLength": 1},
                "target_url": {"type": "string", "minLength": 1},
                "targets": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["host", "expect"],
                        "properties": {
                            "host": {"type": "string", "minLength": 1},
                            "expect": {"type": "string", "minLength": 1},
                        },
                    },
                },
            },
        },
        "output": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "directory": {"type": "string", "minLength": 1},
                "formats": {
                    "type": "array",
                    "items": {"type": "string", "enum": VALID_REPORT_FORMATS},
                },
            },
        },
    },
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


def validate_config(data: dict[str, Any]) -> list[str]:
    """
    Validate configuration data against the schema.

    Args:
        data: Configuration dictionary to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR_NAME} references in strings, recursing into lists and dicts.

    Unset variables expand to an empty string.
    """
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    if not isinstance(value, str):
        return value

    def replace_env(match):
        return os.environ.get(match.group(1), "")

    return re.sub(r"\$\{([^}]+)\}", replace_env, value)


def expected_node_count(kind_config: Path | str) -> int:
    """
    Count the nodes declared in a kind Cluster config.

    A config without a `nodes` list gives kind's default single node.
    """
    with open(kind_config, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return len(data.get("nodes") or []) or 1


@dataclass
class ClusterConfig:
    """Configuration for the kind cluster."""

    name: str = DEFAULT_CLUSTER_NAME
    config: str = DEFAULT_KIND_CONFIG
    expected_nodes: Optional[int] = None
    kubeconfig: str = ""
    create_wait: int = 300
    node_ready_timeout: int = 300
    teardown: bool = False

    def resolved_expected_nodes(self) -> int:
        """Explicit node count, else the count declared in the kind config."""
        if self.expected_nodes:
            return self.expected_nodes
        if not Path(self.config).is_file():
            return DEFAULT_EXPECTED_NODES
        return expected_node_count(self.config)


@dataclass
class ValidationConfig:
    """Configuration for cluster health validation probes."""

    probe_image: str = "busybox:1.36"
    dns_name: str = "kubernetes.default.svc.cluster.local"
    network_url: str = "http://kube-dns.kube-system.svc.cluster.local:9153/metrics"
    probe_timeout: int = 120


@dataclass
class WorkloadConfig:
    """Configuration for the ingress workload."""

    enabled: bool = True
    controller_manifest: str = (
        "https://raw.githubusercontent.com/kubernetes/ingress-nginx/main/"
        "deploy/static/provider/kind/deploy.yaml"
    )
    manifests: list[str] = field(default_factory=list)
    namespace: str = "default"
    ingress_url: str = "http://localhost/"
    http_checks: bool = True
    propagation_delay: float = 30


@dataclass
class LoadTestConfig:
    """Configuration for the k6 load test."""

    vus: int = 10
    duration: str = "30s"
    timeout: int = 600
    image: str = "grafana/k6:latest"
    target_url: str = "http://ingress-nginx-controller.ingress-nginx.svc.cluster.local/"
    targets: list[dict[str, str]] = field(
        default_factory=lambda: [
            {"host": "foo.localhost", "expect": "foo"},
            {"host": "bar.localhost", "expect": "bar"},
        ]
    )


@dataclass
class OutputConfig:
    """Configuration for report artifacts."""

    directory: str = "./results"
    formats: list[str] = field(default_factory=lambda: list(VALID_REPORT_FORMATS))


@dataclass
class PipelineConfig:
    """
    Main configuration for a pipeline run.

    Attributes:
        cluster: kind cluster settings
        validation: Health validation probe settings
        workload: Ingress workload settings
        load_test: k6 run parameters
        output: Report output settings
    """

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    load_test: LoadTestConfig = field(default_factory=LoadTestConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def __post_init__(self):
        """Validate run parameters after initialization."""
        if self.load_test.vus < 1:
            raise ValueError(f"Invalid vus: {self.load_test.vus}. Must be at least 1")
        if not re.match(DURATION_PATTERN, self.load_test.duration):
            raise ValueError(f"Invalid duration: {self.load_test.duration}")
        if self.load_test.timeout < 1:
            raise ValueError(f"Invalid timeout: {self.load_test.timeout}. Must be positive")

    @classmethod
    def from_yaml(cls, path: Path | str, validate: bool = True) -> "PipelineConfig":
        """
        Load configuration from a YAML file.

        Relative cluster config and manifest paths are resolved against
        the YAML file's directory.

        Args:
            path: Path to the YAML configuration file
            validate: Whether to validate the configuration against schema

        Returns:
            PipelineConfig instance with loaded values

        Raises:
            FileNotFoundError: If the config file doesn't exist
            yaml.YAMLError: If the YAML is invalid
            ConfigValidationError: If validation fails
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = expand_env_vars(yaml.safe_load(f) or {})

        if validate:
            errors = validate_config(data)
            if errors:
                raise ConfigValidationError(
                    f"Configuration validation failed with {len(errors)} error(s)",
                    errors=errors,
                )

        base = path.parent
        cluster = data.get("cluster", {})
        if cluster.get("config") and not Path(cluster["config"]).is_absolute():
            cluster["config"] = str(base / cluster["config"])
        workload = data.get("workload", {})
        if workload.get("manifests"):
            workload["manifests"] = [
                m if Path(m).is_absolute() else str(base / m) for m in workload["manifests"]
            ]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        """
        Create configuration from a dictionary.

        Args:
            data: Dictionary containing configuration values

        Returns:
            PipelineConfig instance with loaded values
        """
        cluster_data = data.get("cluster", {})
        cluster = ClusterConfig(
            name=cluster_data.get("name", DEFAULT_CLUSTER_NAME),
            config=cluster_data.get("config", DEFAULT_KIND_CONFIG),
            expected_nodes=cluster_data.get("expected_nodes"),
            kubeconfig=cluster_data.get("kubeconfig", ""),
            create_wait=cluster_data.get("create_wait", 300),
            node_ready_timeout=cluster_data.get("node_ready_timeout", 300),
            teardown=cluster_data.get("teardown", False),
        )

        validation_data = data.get("validation", {})
        defaults = ValidationConfig()
        validation = ValidationConfig(
            probe_image=validation_data.get("probe_image", defaults.probe_image),
            dns_name=validation_data.get("dns_name", defaults.dns_name),
            network_url=validation_data.get("network_url", defaults.network_url),
            probe_timeout=validation_data.get("probe_timeout", defaults.probe_timeout),
        )

        workload_data = data.get("workload", {})
        workload_defaults = WorkloadConfig()
        workload = WorkloadConfig(
            enabled=workload_data.get("enabled", True),
            controller_manifest=workload_data.get(
                "controller_manifest", workload_defaults.controller_manifest
            ),
            manifests=list(workload_data.get("manifests", [])),
            namespace=workload_data.get("namespace", "default"),
            ingress_url=workload_data.get("ingress_url", workload_defaults.ingress_url),
            http_checks=workload_data.get("http_checks", True),
            propagation_delay=workload_data.get("propagation_delay", 30),
        )

        load_data = data.get("load_test", {})
        load_defaults = LoadTestConfig()
        load_test = LoadTestConfig(
            vus=load_data.get("vus", 10),
            duration=load_data.get("duration", "30s"),
            timeout=load_data.get("timeout", 600),
            image=load_data.get("image", load_defaults.image),
            target_url=load_data.get("target_url", load_defaults.target_url),
            targets=[dict(t) for t in load_data.get("targets", load_defaults.targets)],
        )

        output_data = data.get("output", {})
        output = OutputConfig(
            directory=output_data.get("directory", "./results"),
            formats=list(output_data.get("formats", VALID_REPORT_FORMATS)),
        )

        return cls(
            cluster=cluster,
            validation=validation,
            workload=workload,
            load_test=load_test,
            output=output,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        cluster = {
            "name": self.cluster.name,
            "config": self.cluster.config,
            "kubeconfig": self.cluster.kubeconfig,
            "create_wait": self.cluster.create_wait,
            "node_ready_timeout": self.cluster.node_ready_timeout,
            "teardown": self.cluster.teardown,
        }
        if self.cluster.expected_nodes is not None:
            cluster["expected_nodes"] = self.cluster.expected_nodes

        return {
            "cluster": cluster,
            "validation": {
                "probe_image": self.validation.probe_image,
                "dns_name": self.validation.dns_name,
                "network_url": self.validation.network_url,
                "probe_timeout": self.validation.probe_timeout,
            },
            "workload": {
                "enabled": self.workload.enabled,
                "controller_manifest": self.workload.controller_manifest,
                "manifests": list(self.workload.manifests),
                "namespace": self.workload.namespace,
                "ingress_url": self.workload.ingress_url,
                "http_checks": self.workload.http_checks,
                "propagation_delay": self.workload.propagation_delay,
            },
            "load_test": {
                "vus": self.load_test.vus,
                "duration": self.load_test.duration,
                "timeout": self.load_test.timeout,
                "image": self.load_test.image,
                "target_url": self.load_test.target_url,
                "targets": [dict(t) for t in self.load_test.targets],
            },
            "output": {
                "directory": self.output.directory,
                "formats": list(self.output.formats),
            },
        }

    def merge_cli_args(
        self,
        cluster_name: Optional[str] = None,
        kind_config: Optional[str] = None,
        vus: Optional[int] = None,
        duration: Optional[str] = None,
        timeout: Optional[int] = None,
        output_dir: Optional[str] = None,
        teardown: Optional[bool] = None,
        skip_workload: bool = False,
    ) -> "PipelineConfig":
        """
        Merge command-line arguments into the configuration.

        CLI arguments take precedence over file configuration.

        Args:
            cluster_name: Cluster name override
            kind_config: kind topology file override
            vus: k6 virtual users override
            duration: k6 duration override
            timeout: Job timeout override in seconds
            output_dir: Output directory override
            teardown: Destroy the cluster after the run
            skip_workload: Skip the ingress workload stage

        Returns:
            New PipelineConfig with merged values
        """
        new_config = PipelineConfig.from_dict(self.to_dict())

        if cluster_name:
            new_config.cluster.name = cluster_name
        if kind_config:
            new_config.cluster.config = kind_config
        if vus:
            new_config.load_test.vus = vus
        if duration:
            new_config.load_test.duration = duration
        if timeout:
            new_config.load_test.timeout = timeout
        if output_dir:
            new_config.output.directory = output_dir
        if teardown is not None:
            new_config.cluster.teardown = teardown
        if skip_workload:
            new_config.workload.enabled = False

        # Re-validate after merging
        new_config.__post_init__()

        return new_config


def load_config(
    config_path: Optional[Path | str] = None,
    validate: bool = True,
    **overrides: Any,
) -> PipelineConfig:
    """
    Load and merge configuration from file and CLI arguments.

    This is the main entry point for loading configuration.

    Args:
        config_path: Path to YAML configuration file (optional)
        validate: Whether to validate configuration
        **overrides: Keyword arguments accepted by merge_cli_args

    Returns:
        PipelineConfig with merged values
    """
    if config_path:
        config = PipelineConfig.from_yaml(config_path, validate=validate)
    else:
        config = PipelineConfig()

    return config.merge_cli_args(**overrides)
