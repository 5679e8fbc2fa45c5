"""
SysGuard - JSON Output Formatter

This module renders a scan Report as JSON and parses such documents back
into a Report.
"""

import json
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .. import __version__
from ..core.aggregator import Report
from ..core.check import HostProfile, Outcome


class DateTimeEncoder(json.JSONEncoder):
    """Custom JSON encoder to handle datetime, enum and set serialization."""

    def default(self, o: Any) -> Any:
        """Convert datetime objects to ISO format strings."""
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, (set, frozenset)):
            return sorted(o, key=str)
        return super().default(o)


class JSONFormatter:
    """Formatter for scan reports in JSON format.

    The document has four top-level sections: ``metadata`` (scan and host
    identity), ``profile`` (the captured host profile), ``summary`` (derived
    counts and score) and ``checks`` (one entry per outcome, in strategy
    order, with its evidence).

    Example:
        formatter = JSONFormatter(pretty=True)
        report = run_scan()

        json_output = formatter.format(report)
        same_report = formatter.parse(json_output)
    """

    SCHEMA_VERSION = "1.0"

    def __init__(self, pretty: bool = False) -> None:
        """Initialize the JSON formatter.

        Args:
            pretty: If True, output formatted JSON with indentation
        """
        self._pretty = pretty

    def format(self, report: Report, privileged: bool = False) -> str:
        """Format a report as JSON.

        Args:
            report: Aggregated scan report
            privileged: Whether the scan ran with root privileges

        Returns:
            JSON string containing the formatted report
        """
        output = self._build_output(report, privileged)

        if self._pretty:
            return json.dumps(output, cls=DateTimeEncoder, indent=2, sort_keys=False)
        else:
            return json.dumps(output, cls=DateTimeEncoder, separators=(',', ':'))

    def parse(self, text: str) -> Report:
        """Parse a JSON document produced by format() back into a Report.

        Args:
            text: JSON document

        Returns:
            Report with the same outcomes, evidence and profile

        Raises:
            ValueError: If the text is not valid JSON or not a report
        """
        data = json.loads(text)
        if not isinstance(data, dict) or "checks" not in data:
            raise ValueError("Document is not a SysGuard report")

        metadata = data.get("metadata") or {}
        try:
            return Report.from_dict({
                "profile": data.get("profile") or {},
                "outcomes": data["checks"],
                "planned": metadata.get("planned"),
            })
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed report document: {e}") from e

    def _build_output(self, report: Report, privileged: bool) -> dict[str, Any]:
        """Build the output dictionary structure."""
        return {
            "metadata": self._build_metadata(report, privileged),
            "profile": report.profile.to_dict(),
            "summary": self._build_summary(report),
            "checks": self._build_checks(report),
        }

    def _build_metadata(self, report: Report, privileged: bool) -> dict[str, Any]:
        """Build the metadata section.

        Args:
            report: Aggregated scan report
            privileged: Whether running with root privileges

        Returns:
            Dictionary containing scan metadata
        """
        profile: HostProfile = report.profile
        return {
            "schema_version": self.SCHEMA_VERSION,
            "tool_version": __version__,
            "timestamp": report.scanned_at,
            "hostname": profile.hostname,
            "addresses": list(profile.addresses),
            "distribution": profile.os_id,
            "distribution_version": profile.os_version,
            "distribution_name": profile.os_name,
            "platform_profile": profile.platform_profile,
            "privileged": privileged,
            "planned": report.planned,
            "complete": report.complete,
        }

    def _build_summary(self, report: Report) -> dict[str, Any]:
        """Build the summary section with statistics."""
        summary = report.summary
        return {
            "total_checks": summary.total,
            "passed": summary.passed,
            "failed": summary.failed,
            "unknown": summary.unknown,
            "score": report.score,
            "by_category": {
                name: counts.to_dict() for name, counts in report.by_category.items()
            },
            "by_severity": {
                name: counts.to_dict() for name, counts in report.by_severity.items()
            },
            "unknown_reasons": dict(report.unknown_reasons),
        }

    def _build_checks(self, report: Report) -> list[dict[str, Any]]:
        outcomes: tuple[Outcome, ...] = report.outcomes
        return [outcome.to_dict() for outcome in outcomes]

    def write_to_file(self, report: Report, output_path: Path, privileged: bool = False) -> None:
        """Write the formatted report to a file.

        Args:
            report: Aggregated scan report
            output_path: Path to write the JSON file
            privileged: Whether the scan ran with root privileges
        """
        json_content = self.format(report, privileged)
        output_path.write_text(json_content, encoding='utf-8')

    def write_to_stdout(self, report: Report, privileged: bool = False) -> None:
        """Write the formatted report to stdout.

        Args:
            report: Aggregated scan report
            privileged: Whether the scan ran with root privileges
        """
        json_content = self.format(report, privileged)
        sys.stdout.write(json_content)
        if self._pretty:
            sys.stdout.write('\n')
