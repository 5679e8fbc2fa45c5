"""
SysGuard - Check Catalog

This module loads the fixed hardening baseline shipped with the package
(an ordered YAML list of check records), validates every record and exposes
the resulting immutable CheckDefinitions indexed by id and by category.

A catalog that fails validation is never partially loaded: any problem
raises CatalogInvalid.
"""

import logging
import re
import threading
from dataclasses import fields
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import yaml

from .adapters import PROBES
from .check import (
    Category,
    CheckDefinition,
    Comparator,
    EvaluationPolicy,
    Locator,
    PolicyKind,
    Severity,
    SourceKind,
)
from .errors import CatalogInvalid


logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "checks" / "baseline.yaml"

_ID_PATTERN = re.compile(r"^[a-z0-9_]+$")
_LOCATOR_FIELDS = {f.name for f in fields(Locator)}
_POLICY_FIELDS = {f.name for f in fields(EvaluationPolicy)}
_RECORD_FIELDS = {
    "id", "label", "category", "severity", "source", "locator", "policy",
    "requires", "parameters", "remediation", "description",
}
_OCCURRENCES = {"first", "last", "all"}
_DELIMITERS = {"", "="}
_VALUE_TYPES = {"str", "int", "octal"}
_MEMBERSHIPS = {"absent", "present"}


class CheckCatalog:
    """Immutable, ordered collection of CheckDefinitions.

    Definitions keep catalog declaration order; lookups by id and category
    are precomputed at construction.

    Raises:
        CatalogInvalid: If two definitions share an id
    """

    def __init__(self, definitions: list[CheckDefinition]) -> None:
        self._definitions: tuple[CheckDefinition, ...] = tuple(definitions)
        self._by_id: dict[str, CheckDefinition] = {}
        self._by_category: dict[Category, tuple[CheckDefinition, ...]] = {}

        for definition in self._definitions:
            if definition.id in self._by_id:
                raise CatalogInvalid(f"Duplicate check id '{definition.id}'")
            self._by_id[definition.id] = definition

        for category in Category:
            self._by_category[category] = tuple(
                d for d in self._definitions if d.category == category
            )

    def get(self, check_id: str) -> Optional[CheckDefinition]:
        """Get a definition by id, or None if it is not in the catalog."""
        return self._by_id.get(check_id)

    def by_category(self, category: Category) -> tuple[CheckDefinition, ...]:
        """Definitions of one category in declaration order."""
        return self._by_category.get(category, ())

    def ids(self) -> list[str]:
        return [d.id for d in self._definitions]

    def __iter__(self) -> Iterator[CheckDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, check_id: object) -> bool:
        return check_id in self._by_id


def load_catalog(path: Optional[Union[str, Path]] = None) -> CheckCatalog:
    """Load and validate a check catalog.

    Args:
        path: YAML file to load (default: the shipped baseline)

    Returns:
        Validated CheckCatalog

    Raises:
        CatalogInvalid: If the file is unreadable, is not valid YAML or any
            record fails validation
    """
    catalog_path = Path(path) if path is not None else DEFAULT_CATALOG_PATH

    try:
        with open(catalog_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise CatalogInvalid(f"Cannot read catalog {catalog_path}: {e}") from e
    except yaml.YAMLError as e:
        raise CatalogInvalid(f"Catalog {catalog_path} is not valid YAML: {e}") from e

    if not isinstance(data, list) or not data:
        raise CatalogInvalid(f"Catalog {catalog_path} must be a non-empty list of check records")

    definitions = [_parse_definition(index, record) for index, record in enumerate(data)]
    catalog = CheckCatalog(definitions)
    logger.info("Loaded %d check definitions from %s", len(catalog), catalog_path)
    return catalog


_DEFAULT_CATALOG: Optional[CheckCatalog] = None
_LOCK = threading.Lock()


def get_catalog(refresh: bool = False) -> CheckCatalog:
    """Get the process-wide catalog, loading the shipped baseline once."""
    global _DEFAULT_CATALOG

    with _LOCK:
        if refresh or _DEFAULT_CATALOG is None:
            _DEFAULT_CATALOG = load_catalog()
        return _DEFAULT_CATALOG


def _parse_definition(index: int, record: Any) -> CheckDefinition:
    """Validate one catalog record and build its CheckDefinition."""
    if not isinstance(record, dict):
        raise CatalogInvalid(f"Record #{index} is not a mapping")

    check_id = record.get("id")
    if not isinstance(check_id, str) or not _ID_PATTERN.match(check_id):
        raise CatalogInvalid(f"Record #{index} has an invalid id: {check_id!r}")

    def invalid(message: str) -> CatalogInvalid:
        return CatalogInvalid(f"Check '{check_id}': {message}")

    unknown = set(record) - _RECORD_FIELDS
    if unknown:
        raise invalid(f"unknown fields {sorted(unknown)}")

    label = record.get("label")
    if not isinstance(label, str) or not label.strip():
        raise invalid("label must be a non-empty string")

    category = _enum_value(Category, record.get("category"), "category", invalid)
    severity = _enum_value(Severity, record.get("severity", "medium"), "severity", invalid)
    source = _enum_value(SourceKind, record.get("source"), "source", invalid)

    locator = _parse_locator(record.get("locator"), source, invalid)
    policy = _parse_policy(record.get("policy"), invalid)

    requires = record.get("requires") or []
    if not isinstance(requires, list) or not all(isinstance(s, str) and s for s in requires):
        raise invalid("requires must be a list of service names")

    parameters = record.get("parameters") or []
    if not isinstance(parameters, list):
        raise invalid("parameters must be a list")
    if len({str(p) for p in parameters}) != len(parameters):
        raise invalid("parameters must be unique")

    shape = _value_shape(source, locator)
    _check_policy_consistency(policy, source, shape, bool(parameters), invalid)

    if parameters and not (policy.kind == PolicyKind.SET_MEMBERSHIP or locator.has_placeholder):
        raise invalid("parameters given but nothing binds them")
    if locator.has_placeholder and not parameters:
        raise invalid("locator has a {parameter} placeholder but no parameters")

    return CheckDefinition(
        id=check_id,
        label=label.strip(),
        category=category,
        source=source,
        locator=locator,
        policy=policy,
        severity=severity,
        requires=tuple(requires),
        parameters=tuple(parameters),
        remediation=str(record.get("remediation", "")).strip(),
        description=str(record.get("description", "")).strip(),
    )


def _enum_value(enum_cls: Any, value: Any, name: str, invalid: Any) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise invalid(f"unknown {name} {value!r}") from None


def _parse_locator(data: Any, source: SourceKind, invalid: Any) -> Locator:
    """Build a Locator and check it is complete for the source kind."""
    if not isinstance(data, dict) or not data:
        raise invalid("locator must be a non-empty mapping")

    unknown = set(data) - _LOCATOR_FIELDS
    if unknown:
        raise invalid(f"unknown locator fields {sorted(unknown)}")

    values = dict(data)
    extra_paths = values.get("extra_paths", [])
    if not isinstance(extra_paths, list):
        raise invalid("locator.extra_paths must be a list")
    values["extra_paths"] = tuple(str(p) for p in extra_paths)

    token = values.get("token")
    if token is not None and not isinstance(token, int):
        raise invalid("locator.token must be an integer")

    for key in ("path", "key", "delimiter", "occurrence", "include", "probe", "target"):
        if key in values:
            values[key] = "" if values[key] is None else str(values[key])

    locator = Locator(**values)

    if source == SourceKind.FILE:
        if not locator.path or not locator.key.strip():
            raise invalid("file locator needs a path and a key")
        if locator.occurrence not in _OCCURRENCES:
            raise invalid(f"unknown occurrence {locator.occurrence!r}")
        if locator.delimiter not in _DELIMITERS:
            raise invalid(f"unsupported delimiter {locator.delimiter!r}")
    else:
        if locator.probe not in PROBES:
            raise invalid(f"unknown probe {locator.probe!r}")

    return locator


def _parse_policy(data: Any, invalid: Any) -> EvaluationPolicy:
    """Build an EvaluationPolicy from its record form."""
    if not isinstance(data, dict):
        raise invalid("policy must be a mapping")

    unknown = set(data) - _POLICY_FIELDS
    if unknown:
        raise invalid(f"unknown policy fields {sorted(unknown)}")

    kind = _enum_value(PolicyKind, data.get("kind"), "policy kind", invalid)

    comparator = None
    if data.get("comparator") is not None:
        try:
            comparator = Comparator(str(data["comparator"]))
        except ValueError:
            raise invalid(f"unknown comparator {data['comparator']!r}") from None

    expected = data.get("expected", [])
    if expected is None:
        expected = []
    if not isinstance(expected, list):
        expected = [expected]

    default_type = "int" if kind == PolicyKind.NUMERIC_THRESHOLD else "str"
    value_type = str(data.get("value_type", default_type))
    if value_type not in _VALUE_TYPES:
        raise invalid(f"unknown value_type {value_type!r}")

    membership = str(data.get("membership", "absent"))
    if membership not in _MEMBERSHIPS:
        raise invalid(f"unknown membership {membership!r}")

    return EvaluationPolicy(
        kind=kind,
        expected=tuple(expected),
        comparator=comparator,
        value_type=value_type,
        ignore_case=bool(data.get("ignore_case", False)),
        negate=bool(data.get("negate", False)),
        membership=membership,
    )


def _value_shape(source: SourceKind, locator: Locator) -> str:
    if source == SourceKind.LIVE:
        return PROBES[locator.probe]
    return "set" if locator.occurrence == "all" else "scalar"


def _check_policy_consistency(
    policy: EvaluationPolicy,
    source: SourceKind,
    shape: str,
    has_parameters: bool,
    invalid: Any,
) -> None:
    """Reject policies that cannot be evaluated against the evidence kind."""
    if policy.negate and policy.kind != PolicyKind.EXACT_MATCH:
        raise invalid("negate is only supported for exact-match policies")

    if policy.kind == PolicyKind.NUMERIC_THRESHOLD:
        if policy.comparator is None:
            raise invalid("numeric-threshold policy needs a comparator")
        if shape != "scalar":
            raise invalid("numeric-threshold policy needs a source yielding a single number")
        if policy.value_type == "str":
            raise invalid("numeric-threshold policy cannot compare strings")
        bounds = 2 if policy.comparator == Comparator.BETWEEN else 1
        if len(policy.expected) != bounds or not all(_is_number(v) for v in policy.expected):
            raise invalid(f"numeric-threshold policy needs {bounds} numeric bound(s)")
        if bounds == 2 and policy.expected[0] > policy.expected[1]:
            raise invalid("between bounds must be ordered low, high")

    elif policy.kind == PolicyKind.SET_MEMBERSHIP:
        if shape != "set":
            raise invalid("set-membership policy needs a set-valued source")
        if not policy.expected and not has_parameters:
            raise invalid("set-membership policy needs expected items or parameters")

    elif policy.kind == PolicyKind.PRESENCE:
        if source != SourceKind.FILE:
            raise invalid("presence policy needs a file source")

    elif policy.kind == PolicyKind.EXACT_MATCH:
        if not policy.expected:
            raise invalid("exact-match policy needs expected values")
        if shape != "scalar":
            raise invalid("exact-match policy needs a single-valued source")

    if policy.comparator is not None and policy.kind != PolicyKind.NUMERIC_THRESHOLD:
        raise invalid("comparator is only valid for numeric-threshold policies")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
