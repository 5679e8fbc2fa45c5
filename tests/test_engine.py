"""
Detection engine tests.

Adapters are replaced with mocks so each failure class can be injected and
mapped to its Unknown reason.
"""

import sys
import threading
import time
from pathlib import Path
from unittest import mock

import pytest

# Add project root to import path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sysguard.core.adapters import FileSource, LiveSource
from sysguard.core.check import (
    Category,
    CheckDefinition,
    CheckInstance,
    Comparator,
    EvaluationPolicy,
    Evidence,
    HostProfile,
    Locator,
    PolicyKind,
    Severity,
    SourceKind,
    Strategy,
    Verdict,
)
from sysguard.core.engine import DetectionEngine
from sysguard.core.errors import KeyNotFound, ProbeFailed, SourceUnavailable


PASS_MIN_LEN = CheckDefinition(
    id="pass_min_len",
    label="Minimum password length",
    category=Category.PASSWORD_POLICY,
    severity=Severity.HIGH,
    source=SourceKind.FILE,
    locator=Locator(path="/etc/login.defs", key="PASS_MIN_LEN"),
    policy=EvaluationPolicy(
        kind=PolicyKind.NUMERIC_THRESHOLD,
        comparator=Comparator.GE,
        expected=(8,),
        value_type="int",
    ),
    remediation="Set PASS_MIN_LEN 8 in /etc/login.defs.",
)

PORT_CLOSED = CheckDefinition(
    id="port_closed",
    label="High-risk port is not listening",
    category=Category.NETWORK_EXPOSURE,
    source=SourceKind.LIVE,
    locator=Locator(probe="listening_ports"),
    policy=EvaluationPolicy(kind=PolicyKind.SET_MEMBERSHIP, membership="absent"),
    parameters=(139, 3389),
)


def instance(definition: CheckDefinition = PASS_MIN_LEN, **kwargs) -> CheckInstance:
    return CheckInstance(definition=definition, locator=definition.locator, **kwargs)


def engine_with(file_read=None, live_probe=None, **kwargs) -> DetectionEngine:
    file_source = mock.MagicMock(spec=FileSource)
    live_source = mock.MagicMock(spec=LiveSource)
    if file_read is not None:
        file_source.read.side_effect = file_read
    if live_probe is not None:
        live_source.probe.side_effect = live_probe
    return DetectionEngine(file_source=file_source, live_source=live_source, **kwargs)


def file_value(value: str, active: bool = True):
    def read(locator: Locator) -> Evidence:
        return Evidence(source=locator.describe(), value=value, active=active)
    return read


class TestRunCheck:
    """Tests for DetectionEngine.run_check."""

    def test_pass(self) -> None:
        outcome = engine_with(file_read=file_value("10")).run_check(instance())

        assert outcome.verdict == Verdict.PASS
        assert outcome.check_id == "pass_min_len"
        assert outcome.severity == Severity.HIGH
        assert outcome.evidence.value == "10"
        assert outcome.reason == ""
        assert outcome.remediation == ""

    def test_fail_carries_remediation(self) -> None:
        outcome = engine_with(file_read=file_value("6")).run_check(instance())

        assert outcome.verdict == Verdict.FAIL
        assert outcome.remediation == "Set PASS_MIN_LEN 8 in /etc/login.defs."
        assert "6" in outcome.explanation

    @pytest.mark.parametrize("error, reason", [
        (KeyNotFound("PASS_MIN_LEN is not set"), "not configured"),
        (SourceUnavailable("/etc/login.defs: Permission denied"), "source unavailable"),
        (ProbeFailed("boom"), "probe failed"),
    ])
    def test_evidence_errors(self, error: Exception, reason: str) -> None:
        """Each adapter failure class maps to its reason."""
        outcome = engine_with(file_read=error).run_check(instance())

        assert outcome.verdict == Verdict.UNKNOWN
        assert outcome.reason == reason
        assert outcome.explanation == str(error)
        assert outcome.evidence.error == str(error)
        assert outcome.evidence.source == "/etc/login.defs:PASS_MIN_LEN"

    def test_commented_threshold_is_not_configured(self) -> None:
        outcome = engine_with(file_read=file_value("12", active=False)).run_check(instance())

        assert outcome.verdict == Verdict.UNKNOWN
        assert outcome.reason == "not configured"

    def test_type_mismatch(self) -> None:
        outcome = engine_with(file_read=file_value("eight")).run_check(instance())

        assert outcome.verdict == Verdict.UNKNOWN
        assert outcome.reason == "type mismatch"
        assert outcome.evidence.value == "eight"

    def test_repeatable(self) -> None:
        """Unchanged evidence gives the same verdict every time."""
        engine = engine_with(file_read=file_value("7"))

        first = engine.run_check(instance())
        second = engine.run_check(instance())

        assert (first.verdict, first.explanation) == (second.verdict, second.explanation)

    def test_not_applicable_reads_nothing(self) -> None:
        """Non-applicable instances never touch the adapters."""
        engine = engine_with()
        skipped = instance(applicable=False, skip_reason="Required service not installed: sshd")

        outcome = engine.run_check(skipped)

        assert outcome.verdict == Verdict.UNKNOWN
        assert outcome.reason == "not applicable"
        assert outcome.explanation == "Required service not installed: sshd"
        engine.file_source.read.assert_not_called()

    def test_live_source_dispatch(self) -> None:
        """Live definitions are probed with the bound parameter."""
        def probe(locator: Locator) -> Evidence:
            return Evidence(source=locator.describe(), value=(22, 3389))

        engine = engine_with(live_probe=probe)
        open_port = CheckInstance(
            definition=PORT_CLOSED, locator=PORT_CLOSED.locator, parameter=3389,
        )
        closed_port = CheckInstance(
            definition=PORT_CLOSED, locator=PORT_CLOSED.locator, parameter=139,
        )

        assert engine.run_check(open_port).verdict == Verdict.FAIL
        assert engine.run_check(closed_port).verdict == Verdict.PASS
        assert engine.run_check(open_port).check_id == "port_closed[3389]"
        engine.file_source.read.assert_not_called()


class TestExecute:
    """Tests for DetectionEngine.execute."""

    def strategy(self, *instances: CheckInstance) -> Strategy:
        return Strategy(profile=HostProfile(hostname="test"), instances=instances)

    def port_instances(self, *ports: int) -> list[CheckInstance]:
        return [
            CheckInstance(definition=PORT_CLOSED, locator=PORT_CLOSED.locator, parameter=p)
            for p in ports
        ]

    def test_one_outcome_per_instance_in_order(self) -> None:
        """Outcomes keep strategy order even when checks finish out of order."""
        def probe(locator: Locator) -> Evidence:
            # Earlier checks finish last
            time.sleep(0.05 if threading.current_thread().name.endswith("_0") else 0)
            return Evidence(source=locator.describe(), value=(3389,))

        engine = engine_with(live_probe=probe, max_workers=3)
        instances = self.port_instances(135, 139, 445, 3389)

        outcomes = list(engine.execute(self.strategy(*instances)))

        assert [o.check_id for o in outcomes] == [i.check_id for i in instances]
        assert [o.verdict for o in outcomes] == [
            Verdict.PASS, Verdict.PASS, Verdict.PASS, Verdict.FAIL,
        ]

    def test_failure_is_isolated(self) -> None:
        """One unreadable source does not affect the other checks."""
        def probe(locator: Locator) -> Evidence:
            return Evidence(source=locator.describe(), value=())

        engine = engine_with(
            file_read=SourceUnavailable("/etc/login.defs: Permission denied"),
            live_probe=probe,
        )
        instances = [instance(), *self.port_instances(139, 3389)]

        outcomes = list(engine.execute(self.strategy(*instances)))

        assert [o.verdict for o in outcomes] == [Verdict.UNKNOWN, Verdict.PASS, Verdict.PASS]
        assert outcomes[0].reason == "source unavailable"

    def test_unexpected_exception(self) -> None:
        """Bugs in a check become Unknown with reason 'error'."""
        engine = engine_with(file_read=RuntimeError("parser bug"))

        outcomes = list(engine.execute(self.strategy(instance())))

        assert outcomes[0].verdict == Verdict.UNKNOWN
        assert outcomes[0].reason == "error"
        assert "parser bug" in outcomes[0].evidence.error

    def test_timeout(self) -> None:
        """A check that misses its deadline is reported as a failed probe."""
        release = threading.Event()

        def probe(locator: Locator) -> Evidence:
            release.wait(5)
            return Evidence(source=locator.describe(), value=())

        engine = engine_with(live_probe=probe, timeout=0.05)
        try:
            outcomes = list(engine.execute(self.strategy(*self.port_instances(139))))
        finally:
            release.set()

        assert outcomes[0].verdict == Verdict.UNKNOWN
        assert outcomes[0].reason == "probe failed"
        assert outcomes[0].explanation == "Timed out after 0.05s"

    def test_hung_check_does_not_starve_siblings(self) -> None:
        """Checks queued behind a timed-out check still run to completion."""
        release = threading.Event()
        calls = []

        def probe(locator: Locator) -> Evidence:
            calls.append(locator)
            if len(calls) == 1:
                release.wait(5)
            return Evidence(source=locator.describe(), value=())

        engine = engine_with(live_probe=probe, max_workers=1, timeout=0.3)
        try:
            outcomes = list(engine.execute(self.strategy(*self.port_instances(1, 2, 3))))
        finally:
            release.set()

        assert [(o.check_id, o.verdict) for o in outcomes] == [
            ("port_closed[1]", Verdict.UNKNOWN),
            ("port_closed[2]", Verdict.PASS),
            ("port_closed[3]", Verdict.PASS),
        ]
        assert outcomes[0].reason == "probe failed"

    def test_progress_events(self) -> None:
        """Every check reports start then complete, with its outcome."""
        events = []

        def callback(event, check_id, label, outcome) -> None:
            events.append((event, check_id, outcome.verdict if outcome else None))

        engine = engine_with(file_read=file_value("9"), max_workers=1)

        list(engine.execute(self.strategy(instance()), progress_callback=callback))

        assert events == [
            ("start", "pass_min_len", None),
            ("complete", "pass_min_len", Verdict.PASS),
        ]

    def test_bounded_concurrency(self) -> None:
        """No more than max_workers checks run at once."""
        lock = threading.Lock()
        running = 0
        peak = 0

        def probe(locator: Locator) -> Evidence:
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.02)
            with lock:
                running -= 1
            return Evidence(source=locator.describe(), value=())

        engine = engine_with(live_probe=probe, max_workers=2)

        outcomes = list(engine.execute(self.strategy(*self.port_instances(1, 2, 3, 4, 5, 6))))

        assert len(outcomes) == 6
        assert peak <= 2

    def test_cancel_stops_scheduling(self) -> None:
        """After cancellation only in-flight checks are drained."""
        cancel = threading.Event()
        engine = engine_with(live_probe=lambda locator: Evidence(source="probe", value=()), max_workers=1)

        outcomes = []
        for outcome in engine.execute(
            self.strategy(*self.port_instances(1, 2, 3, 4)), cancel_event=cancel,
        ):
            outcomes.append(outcome)
            cancel.set()

        assert len(outcomes) < 4
        assert [o.check_id for o in outcomes] == [
            f"port_closed[{p}]" for p in (1, 2, 3, 4)
        ][:len(outcomes)]

    def test_execute_is_lazy(self) -> None:
        """Nothing runs until the iterator is consumed."""
        engine = engine_with(file_read=file_value("9"))

        iterator = engine.execute(self.strategy(instance()))
        engine.file_source.read.assert_not_called()

        assert next(iterator).verdict == Verdict.PASS

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"timeout": 0}])
    def test_invalid_configuration(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            engine_with(**kwargs)
