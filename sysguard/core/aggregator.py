"""
SysGuard - Result Aggregator

This module folds the complete Outcome sequence of a scan into the Report
model: overall, per-category and per-severity verdict counts, Unknown
reasons and a severity-weighted compliance score.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from .check import CATEGORY_ORDER, HostProfile, Outcome, Severity, Verdict


# Weight of one decided check per severity in the compliance score
SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 5,
    Severity.MEDIUM: 3,
    Severity.LOW: 1,
}


@dataclass(frozen=True)
class VerdictCounts:
    """Pass/fail/unknown tally. ``total`` always equals the sum of the three."""
    total: int = 0
    passed: int = 0
    failed: int = 0
    unknown: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[Outcome]) -> "VerdictCounts":
        passed = failed = unknown = 0
        for outcome in outcomes:
            if outcome.verdict == Verdict.PASS:
                passed += 1
            elif outcome.verdict == Verdict.FAIL:
                failed += 1
            else:
                unknown += 1
        return cls(
            total=passed + failed + unknown,
            passed=passed,
            failed=failed,
            unknown=unknown,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "unknown": self.unknown,
        }


@dataclass(frozen=True)
class Report:
    """Aggregated result of one scan.

    Attributes:
        profile: Host snapshot the scan ran against
        outcomes: Outcomes in strategy order
        summary: Overall verdict counts
        by_category: Verdict counts per category, in report category order
        by_severity: Verdict counts per severity, most severe first
        unknown_reasons: Number of Unknown outcomes per reason
        score: Severity-weighted percentage of decided checks that passed,
            or None when no check was decided
        planned: Number of checks the strategy contained
        complete: False when the scan was cancelled before finishing
    """
    profile: HostProfile
    outcomes: tuple[Outcome, ...]
    summary: VerdictCounts
    by_category: dict[str, VerdictCounts]
    by_severity: dict[str, VerdictCounts]
    unknown_reasons: dict[str, int]
    score: Optional[float]
    planned: int
    complete: bool

    @property
    def scanned_at(self) -> datetime:
        """Scan timestamp (the host profile capture time)."""
        return self.profile.captured_at

    def get_outcome(self, check_id: str) -> Optional[Outcome]:
        for outcome in self.outcomes:
            if outcome.check_id == check_id:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert the report to a plain structure with stable field names."""
        return {
            "scanned_at": self.scanned_at,
            "complete": self.complete,
            "planned": self.planned,
            "profile": self.profile.to_dict(),
            "summary": self.summary.to_dict(),
            "by_category": {name: counts.to_dict() for name, counts in self.by_category.items()},
            "by_severity": {name: counts.to_dict() for name, counts in self.by_severity.items()},
            "unknown_reasons": dict(self.unknown_reasons),
            "score": self.score,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        """Rebuild a report from its dictionary form.

        Derived counts are recomputed from the outcomes, so they are always
        consistent with them.
        """
        profile = HostProfile.from_dict(data.get("profile") or {})
        outcomes = [Outcome.from_dict(item) for item in data.get("outcomes", [])]
        planned = data.get("planned")
        return aggregate(outcomes, profile, planned=int(planned) if planned is not None else None)


def aggregate(
    outcomes: Iterable[Outcome],
    profile: HostProfile,
    planned: Optional[int] = None,
) -> Report:
    """Aggregate a scan's outcomes into a Report.

    The outcome sequence is drained completely before anything is counted.

    Args:
        outcomes: Outcomes in strategy order (a list or the engine's iterator)
        profile: Host profile the scan ran against
        planned: Number of checks the strategy contained (default: the number
            of outcomes, i.e. a complete scan)

    Returns:
        Report for the scan
    """
    collected = tuple(outcomes)
    planned_count = len(collected) if planned is None else planned

    by_category = {
        category.value: VerdictCounts.from_outcomes(
            o for o in collected if o.category == category
        )
        for category in CATEGORY_ORDER
    }
    by_severity = {
        severity.value: VerdictCounts.from_outcomes(
            o for o in collected if o.severity == severity
        )
        for severity in Severity
    }

    unknown_reasons: dict[str, int] = {}
    for outcome in collected:
        if outcome.verdict == Verdict.UNKNOWN:
            unknown_reasons[outcome.reason] = unknown_reasons.get(outcome.reason, 0) + 1

    return Report(
        profile=profile,
        outcomes=collected,
        summary=VerdictCounts.from_outcomes(collected),
        by_category=by_category,
        by_severity=by_severity,
        unknown_reasons=dict(sorted(unknown_reasons.items())),
        score=compute_score(collected),
        planned=planned_count,
        complete=len(collected) == planned_count,
    )


def compute_score(outcomes: Iterable[Outcome]) -> Optional[float]:
    """Severity-weighted pass percentage over decided (Pass/Fail) checks."""
    total = 0
    done = 0

    for outcome in outcomes:
        if outcome.verdict == Verdict.UNKNOWN:
            continue
        weight = SEVERITY_WEIGHTS[outcome.severity]
        total += weight
        if outcome.verdict == Verdict.PASS:
            done += weight

    if total == 0:
        return None
    return round(100 * done / total, 1)
