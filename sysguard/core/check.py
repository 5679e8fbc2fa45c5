"""
SysGuard - Check Data Model

This module provides the immutable records the detection core passes
between stages: check definitions and their locators/policies, the host
profile snapshot, strategies, evidence and outcomes.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional


class Severity(Enum):
    """Severity levels for baseline checks.

    Attributes:
        CRITICAL: Critical security issue requiring immediate attention
        HIGH: High priority security issue
        MEDIUM: Medium priority security recommendation
        LOW: Low priority informational finding
    """
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Verdict(Enum):
    """Normalized outcome of one check."""
    PASS = "pass"
    FAIL = "fail"
    UNKNOWN = "unknown"


class Category(Enum):
    """Check categories, declared in report presentation order."""
    ACCOUNT_MANAGEMENT = "account-management"
    PASSWORD_POLICY = "password-policy"
    SESSION_TIMEOUT = "session-timeout"
    NETWORK_EXPOSURE = "network-exposure"
    SERVICE_EXPOSURE = "service-exposure"
    SSH_HARDENING = "ssh-hardening"
    AUDIT_LOGGING = "audit-logging"
    FIREWALL = "firewall"
    SHELL_HISTORY = "shell-history"


CATEGORY_ORDER: list[Category] = list(Category)


class SourceKind(Enum):
    """Where a check's evidence comes from."""
    FILE = "file"
    LIVE = "live"


class PolicyKind(Enum):
    """Evaluation policy variants."""
    EXACT_MATCH = "exact-match"
    NUMERIC_THRESHOLD = "numeric-threshold"
    SET_MEMBERSHIP = "set-membership"
    PRESENCE = "presence"


class Comparator(Enum):
    """Comparators for numeric-threshold policies."""
    LE = "<="
    GE = ">="
    EQ = "=="
    BETWEEN = "between"


# Reasons attached to Unknown outcomes
REASON_NOT_APPLICABLE = "not applicable"
REASON_NOT_CONFIGURED = "not configured"
REASON_SOURCE_UNAVAILABLE = "source unavailable"
REASON_PROBE_FAILED = "probe failed"
REASON_TYPE_MISMATCH = "type mismatch"
REASON_ERROR = "error"

PARAMETER_PLACEHOLDER = "{parameter}"


@dataclass(frozen=True)
class Locator:
    """Target locator for a check's evidence.

    File sources use path/key and the parsing hints; live sources use
    probe/target.

    Attributes:
        path: Configuration file path
        key: Directive name to locate
        delimiter: "" for whitespace-separated directives, "=" for assignments
        occurrence: Which active match wins: "first", "last" or "all"
        ignore_case: Match the key case-insensitively
        token: Optional whitespace token index to take from the value
        extra_paths: Further files or glob patterns read after path
        include: Directive that pulls other files in at its position
            (sshd's ``Include``); empty disables include handling
        probe: Live-state probe name
        target: Probe argument (service name, etc.)
    """
    path: str = ""
    key: str = ""
    delimiter: str = ""
    occurrence: str = "last"
    ignore_case: bool = False
    token: Optional[int] = None
    extra_paths: tuple[str, ...] = ()
    include: str = ""
    probe: str = ""
    target: str = ""

    @property
    def has_placeholder(self) -> bool:
        """Whether the key or target expects a bound parameter."""
        return PARAMETER_PLACEHOLDER in self.key or PARAMETER_PLACEHOLDER in self.target

    def bind(self, parameter: Any) -> "Locator":
        """Return a copy with the parameter substituted into key/target."""
        if parameter is None or not self.has_placeholder:
            return self
        value = str(parameter)
        return replace(
            self,
            key=self.key.replace(PARAMETER_PLACEHOLDER, value),
            target=self.target.replace(PARAMETER_PLACEHOLDER, value),
        )

    def describe(self) -> str:
        """Human-readable source description used as evidence provenance."""
        if self.probe:
            return f"probe:{self.probe}/{self.target}" if self.target else f"probe:{self.probe}"
        return f"{self.path}:{self.key}"


@dataclass(frozen=True)
class EvaluationPolicy:
    """Declarative evaluation policy (a tagged variant keyed by kind).

    Attributes:
        kind: Policy variant
        expected: Expected value(s); bounds for numeric thresholds
        comparator: Comparator for numeric thresholds
        value_type: How values compare: "str", "int" or "octal"
        ignore_case: Compare strings case-insensitively
        negate: Invert an exact match (value must NOT be expected)
        membership: "absent" or "present" for set membership
    """
    kind: PolicyKind
    expected: tuple[Any, ...] = ()
    comparator: Optional[Comparator] = None
    value_type: str = "str"
    ignore_case: bool = False
    negate: bool = False
    membership: str = "absent"


@dataclass(frozen=True)
class CheckDefinition:
    """A single baseline rule as declared in the catalog."""
    id: str
    label: str
    category: Category
    source: SourceKind
    locator: Locator
    policy: EvaluationPolicy
    severity: Severity = Severity.MEDIUM
    requires: tuple[str, ...] = ()
    parameters: tuple[Any, ...] = ()
    remediation: str = ""
    description: str = ""


@dataclass(frozen=True)
class HostProfile:
    """Read-only snapshot of the scanned host, captured once per scan.

    Attributes:
        hostname: Host name at capture time
        addresses: Non-loopback IPv4 addresses of the host
        os_id: os-release ID
        os_version: os-release VERSION_ID
        os_name: os-release PRETTY_NAME
        platform_profile: Platform profile used for OS commands
        installed_services: Installed service/socket unit names (no suffix)
        enabled_services: Subset of installed units enabled at boot
        listening_ports: Ports with a listening socket
        service_aliases: Logical service name -> alternative unit names
        captured_at: Capture timestamp (UTC)
    """
    hostname: str = "unknown"
    addresses: tuple[str, ...] = ()
    os_id: str = "unknown"
    os_version: str = "unknown"
    os_name: str = "unknown"
    platform_profile: str = "base"
    installed_services: frozenset[str] = frozenset()
    enabled_services: frozenset[str] = frozenset()
    listening_ports: frozenset[int] = frozenset()
    service_aliases: tuple[tuple[str, tuple[str, ...]], ...] = ()
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def resolve_service_names(self, service: str) -> list[str]:
        """Resolve a logical service name to the unit names to look for."""
        resolved = [service]
        for name, aliases in self.service_aliases:
            if name == service:
                resolved.extend(a for a in aliases if a not in resolved)
        return resolved

    def has_service(self, service: str) -> bool:
        """Check whether a logical service is installed on the host."""
        return any(
            name in self.installed_services
            for name in self.resolve_service_names(service)
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the profile to a dictionary for serialization."""
        return {
            "hostname": self.hostname,
            "addresses": list(self.addresses),
            "os_id": self.os_id,
            "os_version": self.os_version,
            "os_name": self.os_name,
            "platform_profile": self.platform_profile,
            "installed_services": sorted(self.installed_services),
            "enabled_services": sorted(self.enabled_services),
            "listening_ports": sorted(self.listening_ports),
            "service_aliases": {name: list(aliases) for name, aliases in self.service_aliases},
            "captured_at": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HostProfile":
        """Rebuild a profile from its dictionary form."""
        return cls(
            hostname=str(data.get("hostname", "unknown")),
            addresses=tuple(str(a) for a in data.get("addresses", [])),
            os_id=str(data.get("os_id", "unknown")),
            os_version=str(data.get("os_version", "unknown")),
            os_name=str(data.get("os_name", "unknown")),
            platform_profile=str(data.get("platform_profile", "base")),
            installed_services=frozenset(data.get("installed_services", [])),
            enabled_services=frozenset(data.get("enabled_services", [])),
            listening_ports=frozenset(int(p) for p in data.get("listening_ports", [])),
            service_aliases=tuple(
                (name, tuple(aliases))
                for name, aliases in data.get("service_aliases", {}).items()
            ),
            captured_at=_parse_timestamp(data.get("captured_at")),
        )


@dataclass(frozen=True)
class CheckInstance:
    """A CheckDefinition bound to host-specific parameters for one scan."""
    definition: CheckDefinition
    locator: Locator
    parameter: Any = None
    applicable: bool = True
    skip_reason: str = ""

    @property
    def check_id(self) -> str:
        """Unique id within a strategy (``id`` or ``id[parameter]``)."""
        if self.parameter is None:
            return self.definition.id
        return f"{self.definition.id}[{self.parameter}]"

    @property
    def label(self) -> str:
        if self.parameter is None:
            return self.definition.label
        return f"{self.definition.label} ({self.parameter})"


@dataclass(frozen=True)
class Strategy:
    """Ordered, host-adapted set of checks to run in one scan."""
    profile: HostProfile
    instances: tuple[CheckInstance, ...] = ()

    def __post_init__(self) -> None:
        """Reject strategies with duplicate check ids."""
        seen: set[str] = set()
        for instance in self.instances:
            if instance.check_id in seen:
                raise ValueError(f"Duplicate check id '{instance.check_id}' in strategy")
            seen.add(instance.check_id)

    def check_ids(self) -> list[str]:
        return [instance.check_id for instance in self.instances]

    def __len__(self) -> int:
        return len(self.instances)

    def __iter__(self) -> Iterator[CheckInstance]:
        return iter(self.instances)


@dataclass(frozen=True)
class Evidence:
    """Raw observed value(s) plus provenance.

    Attributes:
        source: Locator description the value came from
        value: Scalar string, or a sorted tuple for set-valued sources
        active: False when the directive only exists commented out
        read_ok: Whether the read succeeded
        error: Failure reason when read_ok is False
        raw: Raw matched line, when applicable
        collected_at: Collection timestamp (UTC)
    """
    source: str
    value: Any = None
    active: bool = True
    read_ok: bool = True
    error: str = ""
    raw: str = ""
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def unavailable(cls, source: str, error: str) -> "Evidence":
        """Create evidence for a failed read."""
        return cls(source=source, value=None, active=False, read_ok=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {
            "source": self.source,
            "value": value,
            "active": self.active,
            "read_ok": self.read_ok,
            "error": self.error,
            "raw": self.raw,
            "collected_at": self.collected_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Evidence":
        value = data.get("value")
        if isinstance(value, list):
            value = tuple(value)
        return cls(
            source=str(data.get("source", "")),
            value=value,
            active=bool(data.get("active", True)),
            read_ok=bool(data.get("read_ok", True)),
            error=str(data.get("error", "")),
            raw=str(data.get("raw", "")),
            collected_at=_parse_timestamp(data.get("collected_at")),
        )


@dataclass(frozen=True)
class Outcome:
    """Result of executing one CheckInstance.

    Attributes:
        check_id: Instance id (``id`` or ``id[parameter]``)
        definition_id: Catalog id of the underlying definition
        label: Human-readable check label
        category: Check category
        severity: Severity inherited from the definition
        verdict: Pass, Fail or Unknown
        evidence: Evidence that produced the verdict
        explanation: Auditor-readable explanation
        reason: Unknown cause (empty for Pass/Fail)
        parameter: Bound parameter, if the definition was expanded
        remediation: How to bring the host into compliance
    """
    check_id: str
    definition_id: str
    label: str
    category: Category
    severity: Severity
    verdict: Verdict
    evidence: Evidence
    explanation: str = ""
    reason: str = ""
    parameter: Any = None
    remediation: str = ""

    def __post_init__(self) -> None:
        """Validate the outcome after initialization."""
        if not self.check_id:
            raise ValueError("check_id cannot be empty")
        if self.reason and self.verdict != Verdict.UNKNOWN:
            raise ValueError("Only unknown outcomes carry a reason")

    @classmethod
    def from_instance(
        cls,
        instance: CheckInstance,
        verdict: Verdict,
        evidence: Evidence,
        explanation: str = "",
        reason: str = "",
    ) -> "Outcome":
        """Create an outcome carrying the instance's identity and metadata."""
        definition = instance.definition
        return cls(
            check_id=instance.check_id,
            definition_id=definition.id,
            label=instance.label,
            category=definition.category,
            severity=definition.severity,
            verdict=verdict,
            evidence=evidence,
            explanation=explanation,
            reason=reason,
            parameter=instance.parameter,
            remediation=definition.remediation if verdict != Verdict.PASS else "",
        )

    @classmethod
    def unknown(
        cls,
        instance: CheckInstance,
        evidence: Evidence,
        explanation: str,
        reason: str,
    ) -> "Outcome":
        """Create an Unknown outcome with a machine-readable reason."""
        return cls.from_instance(instance, Verdict.UNKNOWN, evidence, explanation, reason)

    def to_dict(self) -> dict[str, Any]:
        """Convert the outcome to a dictionary for serialization."""
        return {
            "id": self.check_id,
            "definition_id": self.definition_id,
            "label": self.label,
            "category": self.category.value,
            "severity": self.severity.value,
            "verdict": self.verdict.value,
            "reason": self.reason,
            "explanation": self.explanation,
            "parameter": self.parameter,
            "remediation": self.remediation,
            "evidence": self.evidence.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Outcome":
        """Rebuild an outcome from its dictionary form."""
        return cls(
            check_id=str(data["id"]),
            definition_id=str(data.get("definition_id", data["id"])),
            label=str(data.get("label", "")),
            category=Category(data["category"]),
            severity=Severity(str(data["severity"]).lower()),
            verdict=Verdict(data["verdict"]),
            evidence=Evidence.from_dict(data.get("evidence") or {}),
            explanation=str(data.get("explanation", "")),
            reason=str(data.get("reason", "")),
            parameter=data.get("parameter"),
            remediation=str(data.get("remediation", "")),
        )


def _parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return datetime.fromtimestamp(0, tz=timezone.utc)
