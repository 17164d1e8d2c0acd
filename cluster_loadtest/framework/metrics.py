"""
Metrics extraction from k6 output.

The k6 script prints a machine-readable `K6_SUMMARY_JSON {...}` line from
its handleSummary hook; when present that line is the source of truth.
Otherwise the end-of-test text summary is scraped, and if even the average
latency cannot be found the check markers (✓/✗) are counted to recover
success and error rates. The marker path never recovers latency or
throughput.
"""

import json
import logging
import re
from typing import Any, Optional

from .models import DEFAULT_THRESHOLDS, MetricsSnapshot, ThresholdPolicy, Verdict

logger = logging.getLogger(__name__)

SUMMARY_MARKER = "K6_SUMMARY_JSON"

SOURCE_SUMMARY_JSON = "summary_json"
SOURCE_TEXT = "text_summary"
SOURCE_MARKERS = "check_markers"
SOURCE_NONE = "none"

PASS_MARKERS = ("✓", "âœ“")
FAIL_MARKERS = ("✗", "âœ—")

_SUMMARY_JSON_RE = re.compile(re.escape(SUMMARY_MARKER) + r"\s+(\{.*\})\s*$")
# metric name, optionally followed by a {tag:value} sub-metric selector
_METRIC_RE = re.compile(
    r"(?<![\w{])(http_req_duration|http_req_failed|http_reqs|checks_succeeded|checks)"
    r"(\{[^}]*\})?(?=[\s.:])"
)
_AVG_RE = re.compile(r"\bavg=(\S+)")
_P95_RE = re.compile(r"\bp\(95\)=(\S+)")
_RATE_PER_SECOND_RE = re.compile(r"(\d+(?:\.\d+)?)/s\b")
_COUNT_RE = re.compile(r":\s*(\d+)(?=\s|$)")
_RATE_PCT_RE = re.compile(r"\brate=(\d+(?:\.\d+)?)%")
_PCT_RE = re.compile(r"(\d+(?:\.\d+)?)%")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|µs|μs|us|ms|s|m|h)")

_UNIT_TO_MS = {
    "ns": 1e-6,
    "µs": 1e-3,
    "μs": 1e-3,
    "us": 1e-3,
    "ms": 1.0,
    "s": 1000.0,
    "m": 60_000.0,
    "h": 3_600_000.0,
}


def parse_duration_ms(token: str) -> Optional[float]:
    """
    Convert a k6 duration token to milliseconds.

    Handles single units ("123.4ms", "1.2s", "850µs") and compound values
    ("1m2.5s"). A bare number is taken as milliseconds.

    Args:
        token: Duration token as printed by k6

    Returns:
        Milliseconds, or None if the token is not a duration
    """
    token = token.strip()
    if not token:
        return None
    try:
        return float(token)
    except ValueError:
        pass

    parts = _DURATION_PART_RE.findall(token)
    if not parts or "".join(n + u for n, u in parts) != token:
        return None
    return sum(float(number) * _UNIT_TO_MS[unit] for number, unit in parts)


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MetricsExtractor:
    """
    Turns raw k6 output into a MetricsSnapshot and a pass/fail Verdict.

    extract() is a pure function of its input: the same text always gives
    the same snapshot.
    """

    def __init__(self, policy: ThresholdPolicy = DEFAULT_THRESHOLDS):
        self.policy = policy

    def extract(self, raw_log: str) -> MetricsSnapshot:
        """
        Extract metrics from k6 output.

        Args:
            raw_log: Complete stdout of the k6 container

        Returns:
            MetricsSnapshot; unavailable values are None
        """
        raw_log = raw_log or ""
        snapshot = self.extract_summary_json(raw_log)
        if snapshot is None:
            snapshot = self.extract_text_summary(raw_log)

        if snapshot.avg_latency_ms is None:
            self._apply_marker_fallback(raw_log, snapshot)

        logger.debug("Extracted metrics (%s): %s", snapshot.source, snapshot.to_dict())
        return snapshot

    def extract_summary_json(self, raw_log: str) -> Optional[MetricsSnapshot]:
        """Parse the last K6_SUMMARY_JSON line, if any."""
        payload = None
        for line in reversed(raw_log.splitlines()):
            match = _SUMMARY_JSON_RE.search(line)
            if not match:
                continue
            try:
                payload = json.loads(match.group(1))
                break
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed %s line", SUMMARY_MARKER)
        if not isinstance(payload, dict):
            return None
        return self.from_summary(payload)

    @staticmethod
    def from_summary(data: dict[str, Any]) -> MetricsSnapshot:
        """
        Build a snapshot from k6 summary data.

        Accepts both the full handleSummary `data` object (metrics nested
        under `metrics.<name>.values`) and the compact form the bundled
        script prints (`<name>.<stat>`).
        """
        metrics = data.get("metrics", data)
        if not isinstance(metrics, dict):
            metrics = {}

        def values(name: str) -> dict[str, Any]:
            metric = metrics.get(name)
            if not isinstance(metric, dict):
                return {}
            nested = metric.get("values", metric)
            return nested if isinstance(nested, dict) else {}

        duration = values("http_req_duration")
        reqs = values("http_reqs")
        failed = values("http_req_failed")
        checks = values("checks")

        failed_rate = _as_float(failed.get("rate"))
        checks_rate = _as_float(checks.get("rate"))
        count = _as_float(reqs.get("count"))

        return MetricsSnapshot(
            avg_latency_ms=_as_float(duration.get("avg")),
            p95_latency_ms=_as_float(duration.get("p(95)")),
            request_rate=_as_float(reqs.get("rate")),
            error_rate_pct=failed_rate * 100 if failed_rate is not None else None,
            success_rate_pct=checks_rate * 100 if checks_rate is not None else None,
            total_requests=int(count) if count is not None else None,
            source=SOURCE_SUMMARY_JSON,
        )

    def extract_text_summary(self, raw_log: str) -> MetricsSnapshot:
        """
        Scrape the end-of-test text summary.

        For each metric the last matching line wins, so progress output
        earlier in the log never shadows the final summary.
        """
        lines: dict[str, str] = {}
        for line in raw_log.splitlines():
            match = _METRIC_RE.search(line)
            if not match or match.group(2):
                continue
            lines[match.group(1)] = line[match.end():]

        snapshot = MetricsSnapshot(source=SOURCE_TEXT)

        duration = lines.get("http_req_duration", "")
        match = _AVG_RE.search(duration)
        if match:
            snapshot.avg_latency_ms = parse_duration_ms(match.group(1))
        match = _P95_RE.search(duration)
        if match:
            snapshot.p95_latency_ms = parse_duration_ms(match.group(1))

        reqs = lines.get("http_reqs", "")
        match = _RATE_PER_SECOND_RE.search(reqs)
        if match:
            snapshot.request_rate = float(match.group(1))
        match = _COUNT_RE.search(reqs)
        if match:
            snapshot.total_requests = int(match.group(1))

        failed = lines.get("http_req_failed", "")
        match = _RATE_PCT_RE.search(failed) or _PCT_RE.search(failed)
        if match:
            snapshot.error_rate_pct = float(match.group(1))

        checks = lines.get("checks_succeeded") or lines.get("checks", "")
        match = _PCT_RE.search(checks)
        if match:
            snapshot.success_rate_pct = float(match.group(1))

        if snapshot.is_empty:
            snapshot.source = SOURCE_NONE
        return snapshot

    @staticmethod
    def count_markers(raw_log: str) -> tuple[int, int]:
        """Count check pass and fail markers across the whole log."""
        passed = sum(raw_log.count(marker) for marker in PASS_MARKERS)
        failed = sum(raw_log.count(marker) for marker in FAIL_MARKERS)
        return passed, failed

    def _apply_marker_fallback(self, raw_log: str, snapshot: MetricsSnapshot) -> None:
        passed, failed = self.count_markers(raw_log)
        total = passed + failed
        if total == 0:
            return

        logger.info(
            "Average latency unavailable, deriving rates from %d check markers", total
        )
        if snapshot.success_rate_pct is None:
            snapshot.success_rate_pct = passed * 100.0 / total
        if snapshot.error_rate_pct is None:
            snapshot.error_rate_pct = failed * 100.0 / total
        if snapshot.source == SOURCE_NONE:
            snapshot.source = SOURCE_MARKERS

    def evaluate(
        self,
        snapshot: MetricsSnapshot,
        policy: Optional[ThresholdPolicy] = None,
    ) -> Verdict:
        """
        Decide pass/fail for a snapshot.

        PASS when the error rate is strictly below the limit, otherwise
        PASS when the success rate is strictly above 100 minus the limit,
        otherwise FAIL. Missing metrics fail. The p95 comparison is
        reported but does not decide the verdict; k6 itself fails the Job
        when its p95 threshold is crossed.

        Args:
            snapshot: Extracted metrics
            policy: Thresholds, defaults to the extractor's policy

        Returns:
            Verdict
        """
        policy = policy or self.policy
        limit = policy.error_rate_max_pct

        p95_ok = None
        if snapshot.p95_latency_ms is not None:
            p95_ok = snapshot.p95_latency_ms < policy.p95_latency_max_ms

        if snapshot.error_rate_pct is not None and snapshot.error_rate_pct < limit:
            return Verdict(
                passed=True,
                reason=f"error rate {snapshot.error_rate_pct:.2f}% < {limit:g}%",
                p95_within_threshold=p95_ok,
            )
        if snapshot.success_rate_pct is not None and snapshot.success_rate_pct > 100 - limit:
            return Verdict(
                passed=True,
                reason=f"success rate {snapshot.success_rate_pct:.2f}% > {100 - limit:g}%",
                p95_within_threshold=p95_ok,
            )
        if snapshot.error_rate_pct is None and snapshot.success_rate_pct is None:
            return Verdict(passed=False, reason="metrics unavailable", p95_within_threshold=p95_ok)

        observed = (
            f"error rate {snapshot.error_rate_pct:.2f}%"
            if snapshot.error_rate_pct is not None
            else f"success rate {snapshot.success_rate_pct:.2f}%"
        )
        return Verdict(
            passed=False,
            reason=f"{observed} outside limit of {limit:g}% errors",
            p95_within_threshold=p95_ok,
        )
