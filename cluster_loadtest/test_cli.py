"""
Tests for the command-line interface.

Commands that would touch a cluster run against patched collaborators.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from cluster_loadtest import __version__
from cluster_loadtest.cli import cli
from cluster_loadtest.framework.models import (
    CheckResult,
    MetricsSnapshot,
    PipelineReport,
    StageStatus,
    ValidationResult,
    Verdict,
)
from cluster_loadtest.framework.reporter import HostInfo, ReportGenerator

PASSING_LOG = (
    "http_req_duration..............: avg=123.4ms p(95)=250ms\n"
    "http_req_failed................: rate=5%\n"
    "http_reqs......................: 600    20/s\n"
)


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


class TestExtract:

    def test_json_output(self, runner, tmp_path):
        log = tmp_path / "k6-output.log"
        log.write_text(PASSING_LOG)

        result = runner.invoke(cli, ["extract", str(log), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["metrics"]["avg_latency_ms"] == pytest.approx(123.4)
        assert data["metrics"]["error_rate_pct"] == pytest.approx(5.0)
        assert data["verdict"]["passed"] is True

    def test_failing_log_exits_nonzero(self, runner, tmp_path):
        log = tmp_path / "k6-output.log"
        log.write_text("no summary in here\n")

        result = runner.invoke(cli, ["extract", str(log)])

        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["extract", str(tmp_path / "missing.log")])
        assert result.exit_code == 2


class TestReport:

    def test_converts_json_report(self, runner, tmp_path):
        report = PipelineReport(
            cluster_name="demo",
            metrics=MetricsSnapshot(avg_latency_ms=10.0, error_rate_pct=0.0),
            verdict=Verdict(passed=True, reason="error rate 0.00% < 10%"),
        )
        report.add_stage("metrics", StageStatus.PASSED)
        source = ReportGenerator(output_dir=tmp_path / "in").save_report(report, formats=["json"])[0]
        output = tmp_path / "out"

        result = runner.invoke(
            cli, ["report", "--input", str(source), "--output", str(output), "-f", "markdown"]
        )

        assert result.exit_code == 0
        summary = (output / "test-summary.md").read_text()
        assert "✅ **PASSED**" in summary


class TestValidate:

    def test_required_failure_exits_nonzero(self, runner):
        validator = MagicMock()
        validator.validate.return_value = ValidationResult([
            CheckResult("api_reachable", True, "ok"),
            CheckResult("dns_resolution", False, "nslookup failed"),
            CheckResult("storage_class", False, "none", required=False),
        ])

        with patch("cluster_loadtest.framework.pipeline.build_validator", return_value=validator):
            result = runner.invoke(cli, ["validate", "--name", "demo"])

        assert result.exit_code == 1
        handle = validator.validate.call_args.args[0]
        assert handle.context == "kind-demo"
        assert validator.validate.call_args.kwargs == {"stop_on_failure": False}

    def test_warnings_only_pass(self, runner):
        validator = MagicMock()
        validator.validate.return_value = ValidationResult([
            CheckResult("storage_class", False, "none", required=False),
        ])

        with patch("cluster_loadtest.framework.pipeline.build_validator", return_value=validator):
            result = runner.invoke(cli, ["validate"])

        assert result.exit_code == 0


class TestRun:

    def test_exit_code_follows_report(self, runner, tmp_path):
        report = PipelineReport(cluster_name="demo", verdict=Verdict(passed=False, reason="bad"))
        report.add_stage("metrics", StageStatus.FAILED, "bad")
        driver = MagicMock()
        driver.run.return_value = report
        driver.get_exit_code.return_value = 1

        with patch("cluster_loadtest.framework.pipeline.PipelineDriver", return_value=driver) as cls:
            result = runner.invoke(
                cli, ["run", "--vus", "20", "--duration", "1m", "--output", str(tmp_path)]
            )

        assert result.exit_code == 1
        config = cls.call_args.args[0]
        assert config.load_test.vus == 20
        assert config.load_test.duration == "1m"
        driver.run.assert_called_once_with()

    def test_invalid_duration_reports_error(self, runner):
        result = runner.invoke(cli, ["run", "--duration", "forever"])

        assert result.exit_code == 1
        assert "Invalid duration" in result.output

    def test_load_test_reuses_cluster(self, runner, tmp_path):
        driver = MagicMock()
        driver.run.return_value = PipelineReport(cluster_name="demo")
        driver.get_exit_code.return_value = 1

        with patch("cluster_loadtest.framework.pipeline.PipelineDriver", return_value=driver) as cls:
            runner.invoke(cli, ["load-test", "--output", str(tmp_path)])

        driver.run.assert_called_once_with(reuse_cluster=True)
        assert cls.call_args.args[0].workload.enabled is False


class TestCleanup:

    def test_force(self, runner):
        with patch(
            "cluster_loadtest.framework.kubectl.KindClient.delete_cluster", return_value=True
        ) as delete:
            result = runner.invoke(cli, ["cleanup", "--name", "demo", "--force"])

        assert result.exit_code == 0
        delete.assert_called_once_with("demo")

    def test_declined_confirmation(self, runner):
        with patch("cluster_loadtest.framework.kubectl.KindClient.delete_cluster") as delete:
            result = runner.invoke(cli, ["cleanup", "--name", "demo"], input="n\n")

        assert result.exit_code == 0
        delete.assert_not_called()


def test_info(runner):
    host = HostInfo(kind_version="kind v0.23.0", kubectl_version=None)

    with patch(
        "cluster_loadtest.framework.reporter.ReportGenerator.get_host_info", return_value=host
    ):
        result = runner.invoke(cli, ["info"])

    assert result.exit_code == 0
    assert "kind v0.23.0" in result.output
    assert "Not installed" in result.output
