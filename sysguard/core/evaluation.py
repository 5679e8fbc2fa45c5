"""
SysGuard - Evaluation Policies

Each policy kind is interpreted by exactly one function; catalog entries stay
pure data and the engine dispatches on ``policy.kind``.
"""

import math
from typing import Any, Callable

from .check import Comparator, EvaluationPolicy, Evidence, PolicyKind, Verdict
from .errors import EvaluationTypeMismatch, KeyNotFound


def evaluate(
    policy: EvaluationPolicy,
    evidence: Evidence,
    parameter: Any = None,
) -> tuple[Verdict, str]:
    """Apply an evaluation policy to successfully read evidence.

    Args:
        policy: The check's evaluation policy
        evidence: Evidence returned by an adapter
        parameter: Bound parameter of an expanded check, if any

    Returns:
        Tuple of (verdict, human-readable explanation)

    Raises:
        KeyNotFound: If a value-comparing policy only finds a commented-out
            directive (the setting is not in effect)
        EvaluationTypeMismatch: If the evidence cannot be coerced to the type
            the policy compares
    """
    evaluator = _EVALUATORS[policy.kind]
    return evaluator(policy, evidence, parameter)


def _exact_match(
    policy: EvaluationPolicy,
    evidence: Evidence,
    parameter: Any,
) -> tuple[Verdict, str]:
    _require_active(evidence)

    observed = _coerce(evidence.value, policy.value_type)
    expected = [_coerce(value, policy.value_type) for value in policy.expected]
    if policy.ignore_case and policy.value_type == "str":
        observed = observed.casefold()
        expected = [value.casefold() for value in expected]

    matched = observed in expected
    shown = ", ".join(str(value) for value in policy.expected)

    if policy.negate:
        if matched:
            return Verdict.FAIL, f"{evidence.value!r} is a disallowed value ({shown})"
        return Verdict.PASS, f"{evidence.value!r} is not a disallowed value ({shown})"

    if matched:
        return Verdict.PASS, f"{evidence.value!r} matches the expected value"
    return Verdict.FAIL, f"{evidence.value!r} is not one of: {shown}"


def _numeric_threshold(
    policy: EvaluationPolicy,
    evidence: Evidence,
    parameter: Any,
) -> tuple[Verdict, str]:
    _require_active(evidence)

    value = _coerce(evidence.value, policy.value_type)
    comparator = policy.comparator

    if comparator == Comparator.BETWEEN:
        low, high = policy.expected
        passed = low <= value <= high
        requirement = f"between {low} and {high}"
    else:
        bound = policy.expected[0]
        if comparator == Comparator.LE:
            passed = value <= bound
        elif comparator == Comparator.GE:
            passed = value >= bound
        else:
            passed = value == bound
        requirement = f"{comparator.value} {bound}"

    verdict = Verdict.PASS if passed else Verdict.FAIL
    relation = "satisfies" if passed else "does not satisfy"
    return verdict, f"Value {evidence.value} {relation} {requirement}"


def _set_membership(
    policy: EvaluationPolicy,
    evidence: Evidence,
    parameter: Any,
) -> tuple[Verdict, str]:
    if not isinstance(evidence.value, (tuple, list, set, frozenset)):
        raise EvaluationTypeMismatch(
            f"Expected a set of values from {evidence.source}, got {type(evidence.value).__name__}"
        )

    items = (parameter,) if parameter is not None else policy.expected
    observed = {_member_key(value, policy.ignore_case) for value in evidence.value}
    found = [item for item in items if _member_key(item, policy.ignore_case) in observed]

    if policy.membership == "absent":
        if found:
            return Verdict.FAIL, f"Observed: {_join(found)}"
        return Verdict.PASS, f"Not observed: {_join(items)}"

    missing = [item for item in items if item not in found]
    if missing:
        return Verdict.FAIL, f"Missing: {_join(missing)}"
    return Verdict.PASS, f"Observed: {_join(items)}"


def _presence(
    policy: EvaluationPolicy,
    evidence: Evidence,
    parameter: Any,
) -> tuple[Verdict, str]:
    if not evidence.active:
        return Verdict.FAIL, f"Directive is commented out: {evidence.raw}"

    if policy.expected:
        values = evidence.value if isinstance(evidence.value, tuple) else (evidence.value,)
        allowed = {_member_key(value, policy.ignore_case) for value in policy.expected}
        rejected = [v for v in values if _member_key(v, policy.ignore_case) not in allowed]
        if rejected:
            return Verdict.FAIL, (
                f"Directive is set to {_join(rejected)}, "
                f"expected one of: {_join(policy.expected)}"
            )

    return Verdict.PASS, f"Directive is present and active: {evidence.raw}"


_EVALUATORS: dict[PolicyKind, Callable[[EvaluationPolicy, Evidence, Any], tuple[Verdict, str]]] = {
    PolicyKind.EXACT_MATCH: _exact_match,
    PolicyKind.NUMERIC_THRESHOLD: _numeric_threshold,
    PolicyKind.SET_MEMBERSHIP: _set_membership,
    PolicyKind.PRESENCE: _presence,
}


def _require_active(evidence: Evidence) -> None:
    """A commented-out directive is not in effect."""
    if not evidence.active:
        raise KeyNotFound(
            f"Directive is only present commented out: {evidence.raw}",
            source=evidence.source,
        )


def _coerce(value: Any, value_type: str) -> Any:
    """Coerce a raw value to the type a policy compares.

    Raises:
        EvaluationTypeMismatch: If the value is not of the required type
    """
    if value_type == "str":
        return "" if value is None else str(value)

    if value is None or isinstance(value, (tuple, list, bool)):
        raise EvaluationTypeMismatch(f"Expected a number, got {value!r}")

    text = str(value).strip()
    try:
        if value_type == "octal":
            return int(text, 8)
        return int(text)
    except ValueError:
        pass

    try:
        if value_type == "int":
            number = float(text)
            if math.isfinite(number):
                return number
    except ValueError:
        pass

    kind = "an octal" if value_type == "octal" else "a numeric"
    raise EvaluationTypeMismatch(f"Expected {kind} value, got {value!r}")


def _member_key(value: Any, ignore_case: bool) -> str:
    key = str(value)
    return key.casefold() if ignore_case else key


def _join(values: Any) -> str:
    return ", ".join(str(v) for v in values)
