#!/usr/bin/env python3
"""
Command-Line Interface for the cluster load-test pipeline.

This module provides the CLI entry point for running the full pipeline,
provisioning or validating a cluster on its own, running the load test
against an existing cluster, extracting metrics from a saved k6 log and
converting reports.

Usage:
    # Full pipeline: provision, deploy ingress, load test, report
    python3 -m cluster_loadtest run --vus 10 --duration 30s

    # Provision and validate a cluster only
    python3 -m cluster_loadtest provision --name mlops-test-cluster

    # Run every health check against an existing cluster
    python3 -m cluster_loadtest validate --name mlops-test-cluster

    # Load test an existing cluster
    python3 -m cluster_loadtest load-test --vus 20 --duration 1m

    # Evaluate a saved k6 log
    python3 -m cluster_loadtest extract results/k6-output.log
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__

# Set up logging with rich handler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
)
logger = logging.getLogger(__name__)
console = Console()

VALID_REPORT_FORMATS = ["json", "markdown", "html"]


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self):
        self.verbose = False
        self.config_path: Optional[Path] = None


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def _load(ctx: CLIContext, **overrides):
    from .framework.config import load_config

    return load_config(config_path=ctx.config_path, **overrides)


def _fail(ctx: CLIContext, error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}", style="red")
    if ctx.verbose:
        console.print_exception()
    sys.exit(1)


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to pipeline configuration file"
)
@click.version_option(version=__version__, prog_name="cluster-loadtest")
@pass_context
def cli(ctx: CLIContext, verbose: bool, config: Optional[Path]):
    """
    Ephemeral cluster load-test pipeline.

    Provision a kind cluster, validate it, deploy the ingress workload and
    run a k6 load test against it.
    """
    ctx.verbose = verbose
    ctx.config_path = config

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


@cli.command()
@click.option("--name", "-n", type=str, help="Cluster name (overrides config)")
@click.option(
    "--kind-config",
    type=click.Path(exists=True, dir_okay=False),
    help="kind cluster topology file"
)
@click.option("--vus", type=click.IntRange(min=1), default=None, help="k6 virtual users")
@click.option("--duration", type=str, default=None, help="k6 duration (e.g. 30s, 5m)")
@click.option("--timeout", type=click.IntRange(min=1), default=None, help="Job timeout in seconds")
@click.option("--skip-workload", is_flag=True, help="Do not deploy the ingress workload")
@click.option(
    "--teardown/--keep-cluster",
    default=None,
    help="Destroy the cluster when the run finishes"
)
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory for results"
)
@pass_context
def run(
    ctx: CLIContext,
    name: Optional[str],
    kind_config: Optional[str],
    vus: Optional[int],
    duration: Optional[str],
    timeout: Optional[int],
    skip_workload: bool,
    teardown: Optional[bool],
    output: Optional[Path],
):
    """
    Run the full pipeline.

    Examples:

        # Defaults: 3-node cluster, 10 VUs for 30s
        python3 -m cluster_loadtest run

        # Heavier run, destroy the cluster afterwards
        python3 -m cluster_loadtest run --vus 50 --duration 2m --teardown
    """
    try:
        from .framework.pipeline import PipelineDriver

        config = _load(
            ctx,
            cluster_name=name,
            kind_config=kind_config,
            vus=vus,
            duration=duration,
            timeout=timeout,
            output_dir=str(output) if output else None,
            teardown=teardown,
            skip_workload=skip_workload,
        )
        _print_run_header(config)

        driver = PipelineDriver(config)
        report = driver.run()
        _display_report(report)
        sys.exit(driver.get_exit_code())

    except Exception as e:
        _fail(ctx, e)


@cli.command("load-test")
@click.option("--name", "-n", type=str, help="Cluster name (overrides config)")
@click.option("--vus", type=click.IntRange(min=1), default=None, help="k6 virtual users")
@click.option("--duration", type=str, default=None, help="k6 duration (e.g. 30s, 5m)")
@click.option("--timeout", type=click.IntRange(min=1), default=None, help="Job timeout in seconds")
@click.option("--deploy-workload", is_flag=True, help="Deploy the ingress workload first")
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory for results"
)
@pass_context
def load_test(
    ctx: CLIContext,
    name: Optional[str],
    vus: Optional[int],
    duration: Optional[str],
    timeout: Optional[int],
    deploy_workload: bool,
    output: Optional[Path],
):
    """
    Run the load test against an existing cluster.

    The ingress workload is expected to be in place unless
    --deploy-workload is given.
    """
    try:
        from .framework.pipeline import PipelineDriver

        config = _load(
            ctx,
            cluster_name=name,
            vus=vus,
            duration=duration,
            timeout=timeout,
            output_dir=str(output) if output else None,
            skip_workload=not deploy_workload,
        )
        _print_run_header(config)

        driver = PipelineDriver(config)
        report = driver.run(reuse_cluster=True)
        _display_report(report)
        sys.exit(driver.get_exit_code())

    except Exception as e:
        _fail(ctx, e)


def _print_run_header(config) -> None:
    console.print("\n[bold blue]Cluster Load Test Pipeline[/bold blue]")
    console.print(f"Cluster: [cyan]{config.cluster.name}[/cyan]")
    console.print(f"VUs: [cyan]{config.load_test.vus}[/cyan]")
    console.print(f"Duration: [cyan]{config.load_test.duration}[/cyan]")
    console.print(f"Output: [cyan]{config.output.directory}[/cyan]")


def _metrics_table(snapshot, verdict) -> Table:
    table = Table(title="Load Test Metrics", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    def fmt(value, suffix):
        return "N/A" if value is None else f"{value:.2f}{suffix}"

    table.add_row("Average Response Time", fmt(snapshot.avg_latency_ms, " ms"))
    table.add_row("95th Percentile", fmt(snapshot.p95_latency_ms, " ms"))
    table.add_row("Request Rate", fmt(snapshot.request_rate, " req/s"))
    table.add_row("Error Rate", fmt(snapshot.error_rate_pct, "%"))
    table.add_row("Check Success Rate", fmt(snapshot.success_rate_pct, "%"))
    table.add_row(
        "Total Requests",
        "N/A" if snapshot.total_requests is None else str(snapshot.total_requests),
    )
    table.add_row("Source", snapshot.source)
    style = "green" if verdict.passed else "red"
    table.add_row("Verdict", f"[{style}]{verdict.label}[/{style}] ({verdict.reason})")
    return table


def _display_report(report) -> None:
    """Display pipeline stages and metrics in formatted tables."""
    console.print("\n")

    table = Table(title="Pipeline Stages", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")
    styles = {"passed": "green", "failed": "red", "skipped": "yellow"}
    for stage in report.stages:
        style = styles[stage.status.value]
        table.add_row(
            stage.name,
            f"[{style}]{stage.status.value.upper()}[/{style}]",
            f"{stage.duration_seconds:.1f}s",
            stage.message,
        )
    console.print(table)

    if report.metrics and report.verdict:
        console.print(_metrics_table(report.metrics, report.verdict))

    if report.error_kind:
        console.print(f"\n[bold red]{report.error_kind}:[/bold red] {report.error_message}")

    status_style = "green" if report.passed else "red"
    console.print(
        f"\nOverall: [{status_style}]{report.overall_status.upper()}[/{status_style}]"
    )

    if report.artifacts:
        console.print("\n[bold]Artifacts:[/bold]")
        for artifact in sorted(report.artifacts.values()):
            console.print(f"  • {artifact}")


@cli.command()
@click.option("--name", "-n", type=str, help="Cluster name (overrides config)")
@click.option(
    "--kind-config",
    type=click.Path(exists=True, dir_okay=False),
    help="kind cluster topology file"
)
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=Path("./results"),
    help="Directory for kind logs on failure"
)
@pass_context
def provision(
    ctx: CLIContext,
    name: Optional[str],
    kind_config: Optional[str],
    output: Path,
):
    """
    Provision and validate a cluster, retrying failed attempts.
    """
    try:
        from .framework.errors import ProvisionError
        from .framework.pipeline import build_provisioner

        config = _load(ctx, cluster_name=name, kind_config=kind_config)
        console.print("\n[bold blue]Cluster Provisioning[/bold blue]")
        console.print(f"Cluster: [cyan]{config.cluster.name}[/cyan]")
        console.print(f"Config: [cyan]{config.cluster.config}[/cyan]")

        provisioner = build_provisioner(config)
        provisioner.check_prerequisites(config.cluster.config)
        try:
            handle = provisioner.provision(config.cluster.name, config.cluster.config)
        except ProvisionError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            for attempt in e.history:
                console.print(f"  attempt {attempt.number} failed during {attempt.stage}: {attempt.error}")
            exported = provisioner.kind.export_logs(config.cluster.name, str(output / "kind-logs"))
            if exported:
                console.print(f"kind logs exported to [cyan]{exported}[/cyan]")
            sys.exit(1)

        _display_cluster_summary(provisioner.cluster_summary(handle))
        console.print(f"\n[bold green]Cluster ready![/bold green] Context: [cyan]{handle.context}[/cyan]")
        sys.exit(0)

    except Exception as e:
        _fail(ctx, e)


def _display_cluster_summary(summary: dict) -> None:
    table = Table(title="Cluster Nodes", show_header=True, header_style="bold magenta")
    table.add_column("Node", style="cyan")
    table.add_column("Role")
    table.add_column("Ready")
    for node in summary["nodes"]:
        ready = "[green]✓[/green]" if node["ready"] else "[red]✗[/red]"
        table.add_row(node["name"], node["role"], ready)
    console.print(table)

    running = sum(1 for p in summary["system_pods"] if p["phase"] == "Running")
    console.print(f"System pods running: {running}/{len(summary['system_pods'])}")
    classes = ", ".join(summary["storage_classes"]) or "none"
    console.print(f"Storage classes: {classes}")


@cli.command()
@click.option("--name", "-n", type=str, help="Cluster name (overrides config)")
@pass_context
def validate(ctx: CLIContext, name: Optional[str]):
    """
    Run every health check against an existing cluster.

    All checks run regardless of earlier failures. Exits 1 if a required
    check failed.
    """
    try:
        from .framework.models import ClusterHandle
        from .framework.pipeline import build_validator

        config = _load(ctx, cluster_name=name)
        handle = ClusterHandle(name=config.cluster.name, kubeconfig=config.cluster.kubeconfig or None)
        console.print("\n[bold blue]Cluster Validation[/bold blue]")
        console.print(f"Context: [cyan]{handle.context}[/cyan]")

        result = build_validator(config).validate(handle, stop_on_failure=False)

        table = Table(title="Health Checks", show_header=True, header_style="bold magenta")
        table.add_column("Check", style="cyan")
        table.add_column("Result")
        table.add_column("Detail")
        for check in result.checks:
            if check.passed:
                mark = "[green]✓ PASS[/green]"
            elif not check.required:
                mark = "[yellow]⚠ WARN[/yellow]"
            else:
                mark = "[red]✗ FAIL[/red]"
            table.add_row(check.name, mark, check.detail)
        console.print(table)

        sys.exit(0 if result.passed else 1)

    except Exception as e:
        _fail(ctx, e)


@cli.command()
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot and verdict as JSON")
@pass_context
def extract(ctx: CLIContext, log_file: Path, as_json: bool):
    """
    Extract metrics and a verdict from a saved k6 log.

    Exits 0 on PASS and 1 on FAIL.
    """
    try:
        from .framework.metrics import MetricsExtractor

        extractor = MetricsExtractor()
        snapshot = extractor.extract(log_file.read_text(encoding="utf-8", errors="replace"))
        verdict = extractor.evaluate(snapshot)

        if as_json:
            click.echo(json.dumps({"metrics": snapshot.to_dict(), "verdict": verdict.to_dict()}, indent=2))
        else:
            console.print(_metrics_table(snapshot, verdict))

        sys.exit(0 if verdict.passed else 1)

    except Exception as e:
        _fail(ctx, e)


@cli.command()
@click.option(
    "--format", "-f", "formats",
    multiple=True,
    type=click.Choice(VALID_REPORT_FORMATS, case_sensitive=False),
    default=["markdown", "html"],
    help="Report format(s) to generate"
)
@click.option(
    "--input", "-i",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Input JSON report file to convert"
)
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=Path("./results"),
    help="Output directory for reports"
)
@pass_context
def report(ctx: CLIContext, formats: tuple, input: Path, output: Path):
    """
    Convert a JSON pipeline report to other formats.
    """
    try:
        from .framework.reporter import ReportGenerator

        console.print("\n[bold blue]Report Generator[/bold blue]")
        console.print(f"Input: [cyan]{input}[/cyan]")
        console.print(f"Formats: [cyan]{', '.join(formats)}[/cyan]")

        reporter = ReportGenerator(output_dir=output)
        report_data = reporter.load_report(input)
        saved_files = reporter.save_report(report_data, formats=list(formats))

        console.print("\n[bold green]Reports generated successfully![/bold green]")
        for f in saved_files:
            console.print(f"  • {f}")
        sys.exit(0)

    except Exception as e:
        _fail(ctx, e)


@cli.command()
@click.option("--name", "-n", type=str, help="Cluster name (overrides config)")
@click.option("--force", is_flag=True, help="Delete without confirmation")
@pass_context
def cleanup(ctx: CLIContext, name: Optional[str], force: bool):
    """
    Delete the kind cluster.
    """
    try:
        from .framework.kubectl import KindClient

        config = _load(ctx, cluster_name=name)
        cluster_name = config.cluster.name
        console.print("\n[bold blue]Cluster Cleanup[/bold blue]")

        if not force:
            if not click.confirm(f"Delete kind cluster {cluster_name}?"):
                console.print("Cleanup cancelled.")
                sys.exit(0)

        if KindClient().delete_cluster(cluster_name):
            console.print(f"[bold green]Cluster {cluster_name} deleted[/bold green]")
        else:
            console.print(f"[yellow]No cluster named {cluster_name}[/yellow]")
        sys.exit(0)

    except Exception as e:
        _fail(ctx, e)


@cli.command()
@pass_context
def info(ctx: CLIContext):
    """
    Display tool versions and host information.
    """
    try:
        from .framework.reporter import ReportGenerator

        console.print("\n[bold blue]Cluster Load Test Pipeline[/bold blue]")
        console.print(f"Version: [cyan]{__version__}[/cyan]")

        host_info = ReportGenerator.get_host_info()

        table = Table(title="System Information", show_header=True, header_style="bold magenta")
        table.add_column("Property", style="cyan")
        table.add_column("Value")
        table.add_row("OS", f"{host_info.os_name} {host_info.os_version}")
        table.add_row("Python Version", host_info.python_version)
        table.add_row("Hostname", host_info.hostname)
        table.add_row("kind Version", host_info.kind_version or "Not installed")
        table.add_row("kubectl Version", host_info.kubectl_version or "Not installed")
        console.print(table)
        sys.exit(0)

    except Exception as e:
        _fail(ctx, e)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
