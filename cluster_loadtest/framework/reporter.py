"""
Report generation for the cluster load-test pipeline.

This module renders a PipelineReport as JSON, a Markdown test summary and
an HTML page, and writes the raw k6 output and diagnostic dumps next to
them in the output directory.
"""

import html
import json
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .kubectl import KindClient, KubectlClient
from .models import PipelineReport

LOG_EXCERPT_LINES = 20
RAW_LOG_FILE = "k6-output.log"
SUMMARY_FILE = "test-summary.md"
DEFAULT_FORMATS = ["json", "markdown", "html"]


@dataclass
class HostInfo:
    """Information about the host that ran the pipeline."""

    os_name: str = field(default_factory=lambda: platform.system())
    os_version: str = field(default_factory=lambda: platform.release())
    python_version: str = field(default_factory=lambda: platform.python_version())
    hostname: str = field(default_factory=lambda: platform.node())
    kind_version: Optional[str] = None
    kubectl_version: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "os": self.os_name,
            "os_version": self.os_version,
            "python_version": self.python_version,
            "hostname": self.hostname,
            "kind_version": self.kind_version,
            "kubectl_version": self.kubectl_version,
        }


def _fmt(value: Optional[float], suffix: str = "", digits: int = 2) -> str:
    if value is None:
        return "N/A"
    return f"{value:.{digits}f}{suffix}"


def log_excerpt(raw_log: str, lines: int = LOG_EXCERPT_LINES) -> list[str]:
    """First lines of the raw k6 output."""
    return (raw_log or "").splitlines()[:lines]


class ReportGenerator:
    """
    Writes pipeline artifacts.

    Artifacts in the output directory:
    - report.json: the full PipelineReport
    - test-summary.md: configuration, metrics, status line and log excerpt
    - report.html: the same summary as a standalone page
    - k6-output.log: raw k6 output
    - diagnostics/*.log: dumps captured on failures
    """

    def __init__(self, output_dir: Optional[Path | str] = None):
        """Initialize the report generator.

        Args:
            output_dir: Directory to save reports (default: ./results)
        """
        self.output_dir = Path(output_dir) if output_dir else Path("./results")

    def to_json(self, report: PipelineReport, indent: int = 2) -> str:
        """Convert report to JSON string."""
        return json.dumps(report.to_dict(), indent=indent, default=str)

    def status_line(self, report: PipelineReport) -> str:
        if report.passed:
            reason = report.verdict.reason if report.verdict else ""
            return f"✅ **PASSED** - {reason}"
        if report.error_kind:
            return f"❌ **FAILED** - {report.error_kind}: {report.error_message}"
        if report.verdict:
            return f"❌ **FAILED** - {report.verdict.reason}"
        return "❌ **FAILED** - metrics unavailable"

    def to_markdown(self, report: PipelineReport) -> str:
        """Render the Markdown test summary."""
        config = report.configuration
        targets = ", ".join(t.get("host", "") for t in config.get("targets", []))
        metrics = report.metrics
        job_state = report.job.state.value if report.job else "not run"

        lines = [
            "# Load Test Results",
            "",
            "## Test Configuration",
            f"- **Cluster:** {report.cluster_name}",
            f"- **Virtual Users (VUs):** {config.get('vus', 'N/A')}",
            f"- **Duration:** {config.get('duration', 'N/A')}",
            f"- **Target Services:** {targets or 'N/A'}",
            f"- **Job Status:** {job_state}",
            "",
            "## Performance Metrics",
            f"- **Average Response Time:** {_fmt(metrics.avg_latency_ms if metrics else None, 'ms')}",
            f"- **95th Percentile Response Time:** "
            f"{_fmt(metrics.p95_latency_ms if metrics else None, 'ms')}",
            f"- **Request Rate:** {_fmt(metrics.request_rate if metrics else None, ' req/s')}",
            f"- **Error Rate:** {_fmt(metrics.error_rate_pct if metrics else None, '%')}",
            f"- **Check Success Rate:** {_fmt(metrics.success_rate_pct if metrics else None, '%')}",
            f"- **Total Requests:** "
            f"{metrics.total_requests if metrics and metrics.total_requests is not None else 'N/A'}",
        ]
        if metrics:
            lines.append(f"- **Metrics Source:** {metrics.source}")

        lines.extend(["", "## Pipeline Stages", "", "| Stage | Status | Duration | Detail |",
                      "|-------|--------|----------|--------|"])
        for stage in report.stages:
            icon = {"passed": "✅", "failed": "❌", "skipped": "⏭️"}[stage.status.value]
            lines.append(
                f"| {stage.name} | {icon} {stage.status.value} | "
                f"{stage.duration_seconds:.1f}s | {stage.message} |"
            )

        lines.extend(["", "## Test Status", self.status_line(report)])
        if report.verdict and report.verdict.p95_within_threshold is False:
            lines.append("")
            lines.append("⚠️ p95 latency above threshold")

        if report.log_excerpt:
            lines.extend(["", "## Raw Logs", "```", *report.log_excerpt, "```"])

        if report.artifacts:
            lines.extend(["", "## Artifacts"])
            for name, path in sorted(report.artifacts.items()):
                lines.append(f"- **{name}:** `{path}`")

        return "\n".join(lines) + "\n"

    def to_html(self, report: PipelineReport) -> str:
        """Render the report as a standalone HTML page."""
        status_class = "passed" if report.passed else "failed"
        metrics = report.metrics
        rows = [
            ("Average Response Time", _fmt(metrics.avg_latency_ms if metrics else None, " ms")),
            ("95th Percentile", _fmt(metrics.p95_latency_ms if metrics else None, " ms")),
            ("Request Rate", _fmt(metrics.request_rate if metrics else None, " req/s")),
            ("Error Rate", _fmt(metrics.error_rate_pct if metrics else None, "%")),
            ("Check Success Rate", _fmt(metrics.success_rate_pct if metrics else None, "%")),
        ]
        metric_rows = "\n".join(
            f"            <tr><td>{name}</td><td>{value}</td></tr>" for name, value in rows
        )
        stage_rows = "\n".join(
            f'            <tr class="{s.status.value}"><td>{html.escape(s.name)}</td>'
            f"<td>{s.status.value}</td><td>{s.duration_seconds:.1f}s</td>"
            f"<td>{html.escape(s.message)}</td></tr>"
            for s in report.stages
        )
        excerpt = html.escape("\n".join(report.log_excerpt))
        status = html.escape(self.status_line(report).replace("**", ""))

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Load Test Report - {html.escape(report.run_id)}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 40px; background: #f5f5f5; }}
        .container {{ max-width: 1000px; margin: 0 auto; background: white; padding: 30px; border-radius: 8px; }}
        .status {{ padding: 15px; border-radius: 8px; font-weight: bold; }}
        .status.passed {{ background: #d4edda; }}
        .status.failed {{ background: #f8d7da; }}
        table {{ width: 100%; border-collapse: collapse; margin: 15px 0; }}
        th, td {{ padding: 10px; text-align: left; border-bottom: 1px solid #e0e0e0; }}
        tr.failed td {{ color: #dc3545; }}
        pre {{ background: #f4f4f4; padding: 15px; border-radius: 4px; overflow-x: auto; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Load Test Report</h1>
        <p><strong>Run:</strong> {html.escape(report.run_id)} &middot; <strong>Cluster:</strong> {html.escape(report.cluster_name)}</p>
        <p><strong>Started:</strong> {report.started_at.isoformat()}</p>
        <div class="status {status_class}">{status}</div>

        <h2>Performance Metrics</h2>
        <table>
            <tr><th>Metric</th><th>Value</th></tr>
{metric_rows}
        </table>

        <h2>Pipeline Stages</h2>
        <table>
            <tr><th>Stage</th><th>Status</th><th>Duration</th><th>Detail</th></tr>
{stage_rows}
        </table>

        <h2>Raw Logs</h2>
        <pre>{excerpt}</pre>
    </div>
</body>
</html>
"""

    def save_report(
        self,
        report: PipelineReport,
        formats: Optional[list[str]] = None,
        base_name: str = "report",
    ) -> list[Path]:
        """Save report to files in the requested formats.

        Args:
            report: Pipeline report
            formats: Formats to save (json, markdown, html)
            base_name: Base filename for the JSON and HTML files

        Returns:
            List of saved file paths
        """
        formats = formats or DEFAULT_FORMATS
        self.output_dir.mkdir(parents=True, exist_ok=True)

        saved_files = []
        if "markdown" in formats or "md" in formats:
            md_path = self.output_dir / SUMMARY_FILE
            md_path.write_text(self.to_markdown(report), encoding="utf-8")
            saved_files.append(md_path)
            report.artifacts["summary"] = str(md_path)

        if "html" in formats:
            html_path = self.output_dir / f"{base_name}.html"
            html_path.write_text(self.to_html(report), encoding="utf-8")
            saved_files.append(html_path)
            report.artifacts["html"] = str(html_path)

        # JSON last so it lists every other artifact
        if "json" in formats:
            json_path = self.output_dir / f"{base_name}.json"
            report.artifacts["json"] = str(json_path)
            json_path.write_text(self.to_json(report), encoding="utf-8")
            saved_files.append(json_path)

        return saved_files

    def save_raw_log(self, raw_log: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / RAW_LOG_FILE
        path.write_text(raw_log, encoding="utf-8")
        return path

    def save_diagnostics(self, diagnostics: dict[str, str]) -> list[Path]:
        """Write each diagnostic dump to diagnostics/<name>."""
        if not diagnostics:
            return []
        directory = self.output_dir / "diagnostics"
        directory.mkdir(parents=True, exist_ok=True)
        saved = []
        for name, content in diagnostics.items():
            path = directory / Path(name).name
            path.write_text(content or "", encoding="utf-8")
            saved.append(path)
        return saved

    def load_report(self, path: Path | str) -> PipelineReport:
        """Load a report from a JSON file."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return PipelineReport.from_dict(data)

    @staticmethod
    def get_host_info(
        kind: Optional[KindClient] = None, kubectl: Optional[KubectlClient] = None
    ) -> HostInfo:
        """Collect OS details and the kind/kubectl versions of this host."""
        kind = kind or KindClient()
        kubectl = kubectl or KubectlClient()
        return HostInfo(kind_version=kind.version(), kubectl_version=kubectl.version())
