"""
Check catalog tests.

Validates loading of the shipped baseline, catalog indexing, and that every
kind of malformed record aborts the load with CatalogInvalid.
"""

import copy
import sys
from pathlib import Path
from typing import Any

import pytest
import yaml

# Add project root to import path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sysguard.core.catalog import CheckCatalog, get_catalog, load_catalog
from sysguard.core.check import (
    Category,
    Comparator,
    PolicyKind,
    Severity,
    SourceKind,
)
from sysguard.core.errors import CatalogInvalid


FILE_RECORD: dict[str, Any] = {
    "id": "pass_min_len",
    "label": "Minimum password length",
    "category": "password-policy",
    "severity": "high",
    "source": "file",
    "locator": {"path": "/etc/login.defs", "key": "PASS_MIN_LEN"},
    "policy": {"kind": "numeric-threshold", "comparator": ">=", "expected": 8},
}

LIVE_RECORD: dict[str, Any] = {
    "id": "port_closed",
    "label": "High-risk port is not listening",
    "category": "network-exposure",
    "source": "live",
    "locator": {"probe": "listening_ports"},
    "policy": {"kind": "set-membership", "membership": "absent"},
    "parameters": [135, 3389],
}


def file_record(**changes: Any) -> dict[str, Any]:
    record = copy.deepcopy(FILE_RECORD)
    record.update(changes)
    return record


def live_record(**changes: Any) -> dict[str, Any]:
    record = copy.deepcopy(LIVE_RECORD)
    record.update(changes)
    return record


def write_catalog(tmp_path: Path, records: Any) -> Path:
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(records, sort_keys=False), encoding="utf-8")
    return path


class TestShippedBaseline:
    """Tests for the baseline shipped with the package."""

    def test_baseline_loads(self) -> None:
        """The shipped baseline passes validation."""
        catalog = load_catalog()

        assert len(catalog) > 0
        assert len(set(catalog.ids())) == len(catalog)

    def test_every_category_has_checks(self) -> None:
        """Each report category is covered by at least one check."""
        catalog = load_catalog()

        for category in Category:
            assert catalog.by_category(category), category

    def test_password_length_threshold(self) -> None:
        """PASS_MIN_LEN must be at least 8."""
        definition = load_catalog().get("pass_min_len")

        assert definition is not None
        assert definition.source == SourceKind.FILE
        assert definition.locator.path == "/etc/login.defs"
        assert definition.policy.kind == PolicyKind.NUMERIC_THRESHOLD
        assert definition.policy.comparator == Comparator.GE
        assert definition.policy.expected == (8,)

    def test_high_risk_ports(self) -> None:
        """Port checks expand over the classic high-risk ports."""
        definition = load_catalog().get("port_closed")

        assert definition is not None
        assert definition.parameters == (135, 137, 138, 139, 445, 3389)

    def test_ssh_checks_require_sshd(self) -> None:
        """SSH hardening checks only apply when sshd is installed."""
        catalog = load_catalog()

        for definition in catalog.by_category(Category.SSH_HARDENING):
            assert "sshd" in definition.requires

    def test_sshd_checks_follow_includes(self) -> None:
        """Every sshd_config read honours Include so drop-ins take effect."""
        sshd_checks = [
            definition for definition in load_catalog()
            if definition.locator.path == "/etc/ssh/sshd_config"
        ]

        assert {d.id for d in sshd_checks} >= {"ssh_x11_forwarding", "ssh_syslog_facility"}
        for definition in sshd_checks:
            assert definition.locator.include == "Include", definition.id
            assert definition.locator.extra_paths == (), definition.id

    def test_default_accounts_exclude_root(self) -> None:
        """root is covered by the root-login checks, not the default-name list."""
        definition = load_catalog().get("no_default_admin_accounts")

        assert definition is not None
        assert definition.parameters == ("admin", "administrator", "superadmin", "test", "guest")

    def test_get_catalog_is_cached(self) -> None:
        """The process-wide catalog is loaded once."""
        assert get_catalog() is get_catalog()


class TestCatalogLoading:
    """Tests for loading custom catalog files."""

    def test_load_preserves_declaration_order(self, tmp_path: Path) -> None:
        """Definitions keep file order and are indexed by category."""
        catalog = load_catalog(write_catalog(tmp_path, [FILE_RECORD, LIVE_RECORD]))

        assert catalog.ids() == ["pass_min_len", "port_closed"]
        assert [d.id for d in catalog] == ["pass_min_len", "port_closed"]
        assert [d.id for d in catalog.by_category(Category.NETWORK_EXPOSURE)] == ["port_closed"]
        assert catalog.by_category(Category.FIREWALL) == ()
        assert "port_closed" in catalog
        assert "missing" not in catalog
        assert catalog.get("missing") is None

    def test_record_fields(self, tmp_path: Path) -> None:
        """Record values are converted to typed definitions."""
        catalog = load_catalog(write_catalog(tmp_path, [FILE_RECORD, LIVE_RECORD]))
        file_def = catalog.get("pass_min_len")
        live_def = catalog.get("port_closed")

        assert file_def.severity == Severity.HIGH
        assert file_def.policy.expected == (8,)
        assert file_def.policy.value_type == "int"
        assert live_def.severity == Severity.MEDIUM
        assert live_def.source == SourceKind.LIVE
        assert live_def.locator.probe == "listening_ports"
        assert live_def.parameters == (135, 3389)

    def test_placeholder_with_parameters(self, tmp_path: Path) -> None:
        """A {parameter} key placeholder accepts parameters."""
        record = file_record(
            id="pwquality_credit",
            locator={"path": "/etc/security/pwquality.conf", "key": "{parameter}", "delimiter": "="},
            policy={"kind": "numeric-threshold", "comparator": "<=", "expected": -1},
            parameters=["ucredit", "lcredit"],
        )
        catalog = load_catalog(write_catalog(tmp_path, [record]))

        assert catalog.get("pwquality_credit").locator.has_placeholder

    def test_missing_file(self, tmp_path: Path) -> None:
        """An unreadable catalog is fatal."""
        with pytest.raises(CatalogInvalid):
            load_catalog(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Malformed YAML is fatal."""
        path = tmp_path / "catalog.yaml"
        path.write_text("- id: [unclosed\n", encoding="utf-8")

        with pytest.raises(CatalogInvalid):
            load_catalog(path)

    @pytest.mark.parametrize("content", ["", "checks: []\n", "[]\n"])
    def test_not_a_record_list(self, tmp_path: Path, content: str) -> None:
        """The catalog must be a non-empty list."""
        path = tmp_path / "catalog.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(CatalogInvalid):
            load_catalog(path)

    def test_duplicate_ids(self, tmp_path: Path) -> None:
        """Two records with the same id are rejected."""
        with pytest.raises(CatalogInvalid, match="Duplicate"):
            load_catalog(write_catalog(tmp_path, [FILE_RECORD, file_record(label="Other")]))

    def test_catalog_constructor_rejects_duplicates(self, tmp_path: Path) -> None:
        """CheckCatalog itself refuses duplicate ids."""
        definition = load_catalog(write_catalog(tmp_path, [FILE_RECORD])).get("pass_min_len")

        with pytest.raises(CatalogInvalid):
            CheckCatalog([definition, definition])


INVALID_RECORDS = [
    pytest.param(file_record(id="Bad-Id"), id="malformed-id"),
    pytest.param(file_record(label=""), id="empty-label"),
    pytest.param(file_record(category="kernel"), id="unknown-category"),
    pytest.param(file_record(severity="urgent"), id="unknown-severity"),
    pytest.param(file_record(source="remote"), id="unknown-source"),
    pytest.param(file_record(weight=3), id="unknown-field"),
    pytest.param(file_record(locator={}), id="empty-locator"),
    pytest.param(file_record(locator={"path": "/etc/login.defs"}), id="file-locator-without-key"),
    pytest.param(
        file_record(locator={"path": "/etc/login.defs", "key": "X", "occurrence": "middle"}),
        id="unknown-occurrence",
    ),
    pytest.param(
        file_record(locator={"path": "/etc/login.defs", "key": "X", "delimiter": ":"}),
        id="unsupported-delimiter",
    ),
    pytest.param(
        file_record(locator={"path": "/etc/login.defs", "key": "X", "colour": "red"}),
        id="unknown-locator-field",
    ),
    pytest.param(
        file_record(policy={"kind": "numeric-threshold", "expected": 8}),
        id="numeric-without-comparator",
    ),
    pytest.param(
        file_record(policy={"kind": "numeric-threshold", "comparator": ">=", "expected": "eight"}),
        id="numeric-non-numeric-bound",
    ),
    pytest.param(
        file_record(policy={"kind": "numeric-threshold", "comparator": "between", "expected": [1]}),
        id="between-single-bound",
    ),
    pytest.param(
        file_record(policy={"kind": "numeric-threshold", "comparator": "between", "expected": [600, 1]}),
        id="between-unordered",
    ),
    pytest.param(
        file_record(policy={
            "kind": "numeric-threshold", "comparator": ">=", "expected": 8, "value_type": "str",
        }),
        id="numeric-string-type",
    ),
    pytest.param(
        file_record(policy={"kind": "numeric-threshold", "comparator": "~", "expected": 8}),
        id="unknown-comparator",
    ),
    pytest.param(file_record(policy={"kind": "regex"}), id="unknown-policy-kind"),
    pytest.param(file_record(policy={"kind": "exact-match"}), id="exact-without-expected"),
    pytest.param(
        file_record(policy={"kind": "exact-match", "expected": ["x"], "comparator": ">="}),
        id="comparator-on-exact",
    ),
    pytest.param(file_record(policy={"kind": "presence", "negate": True}), id="negate-on-presence"),
    pytest.param(
        file_record(policy={"kind": "set-membership", "expected": ["x"]}),
        id="set-membership-on-scalar-file",
    ),
    pytest.param(file_record(parameters=[1, 2]), id="parameters-without-binding"),
    pytest.param(
        file_record(locator={"path": "/etc/login.defs", "key": "{parameter}"}),
        id="placeholder-without-parameters",
    ),
    pytest.param(file_record(requires="sshd"), id="requires-not-a-list"),
    pytest.param(live_record(locator={"probe": "nope"}), id="unknown-probe"),
    pytest.param(
        live_record(policy={"kind": "numeric-threshold", "comparator": "<=", "expected": 5}),
        id="numeric-on-set-probe",
    ),
    pytest.param(live_record(policy={"kind": "presence"}), id="presence-on-live"),
    pytest.param(live_record(parameters=[]), id="set-membership-without-items"),
    pytest.param(live_record(parameters=[135, 135]), id="duplicate-parameters"),
    pytest.param(
        live_record(
            locator={"probe": "service_state", "target": "sshd"},
            policy={"kind": "set-membership"},
            parameters=[],
        ),
        id="set-membership-on-scalar-probe",
    ),
]


class TestCatalogValidation:
    """Each malformed record aborts the whole load."""

    @pytest.mark.parametrize("record", INVALID_RECORDS)
    def test_invalid_record(self, tmp_path: Path, record: dict[str, Any]) -> None:
        """A single bad record makes the catalog invalid."""
        with pytest.raises(CatalogInvalid):
            load_catalog(write_catalog(tmp_path, [record]))

    def test_record_not_a_mapping(self, tmp_path: Path) -> None:
        """Records must be mappings."""
        with pytest.raises(CatalogInvalid):
            load_catalog(write_catalog(tmp_path, [FILE_RECORD, "pass_max_days"]))
