"""
Platform abstraction and profile loading for multi-distro support.

This module centralizes OS-level assumptions (service manager commands,
legacy init fallbacks, audit/shell probe commands and service name aliases)
behind a config-driven platform profile model.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import subprocess
import threading
from typing import Any, Optional


logger = logging.getLogger(__name__)

_PLATFORMS_DIR = Path(__file__).resolve().parent.parent / "platforms"

DEFAULT_PROFILE_ID = "base"

# Unit file states treated as "enabled at boot"
ENABLED_STATES = {"enabled", "enabled-runtime", "indirect"}

# chkconfig runlevel markers meaning "on"
_LEGACY_ON_MARKERS = {"on", "启用"}


@dataclass(frozen=True)
class DistroInfo:
    """Normalized distro information from /etc/os-release."""

    os_id: str
    version_id: str
    id_like: list[str]
    pretty_name: str


@dataclass
class PlatformContext:
    """Runtime platform context with profile-backed helper methods."""

    profile_id: str
    distro: DistroInfo
    profile: dict[str, Any]

    @property
    def service_manager_name(self) -> str:
        """Get service manager name from profile."""
        return str(self.profile.get("service_manager", {}).get("name", "unknown"))

    @property
    def service_aliases(self) -> tuple[tuple[str, tuple[str, ...]], ...]:
        """Service alias table in a hashable, deterministic form."""
        aliases = self.profile.get("service_manager", {}).get("service_aliases", {})
        return tuple(
            (str(name), tuple(str(a) for a in values))
            for name, values in sorted(aliases.items())
        )

    def resolve_service_names(self, service: str) -> list[str]:
        """Resolve service aliases for the current distro profile.

        Args:
            service: Logical service name

        Returns:
            Ordered list of service names to try
        """
        aliases = self.profile.get("service_manager", {}).get("service_aliases", {})
        values = aliases.get(service, [])

        resolved = [service]
        for alias in values:
            alias_str = str(alias)
            if alias_str not in resolved:
                resolved.append(alias_str)
        return resolved

    def list_unit_states(self) -> Optional[dict[str, str]]:
        """List installed service/socket units with their boot state.

        Tries the service manager listing first and falls back to the
        legacy ``chkconfig --list`` output.

        Returns:
            Mapping of unit name (without suffix) to state, or None if no
            listing command could be run
        """
        service_mgr = self.profile.get("service_manager", {})

        command_spec = service_mgr.get("list_units")
        if command_spec:
            command, timeout = _normalize_command_spec(command_spec, default_timeout=10)
            result = _run_command(command, timeout=timeout)
            if result is not None and result.returncode == 0:
                return parse_unit_listing(result.stdout)

        command_spec = service_mgr.get("legacy_list")
        if command_spec:
            command, timeout = _normalize_command_spec(command_spec, default_timeout=10)
            result = _run_command(command, timeout=timeout)
            if result is not None and result.returncode == 0:
                return parse_chkconfig_listing(result.stdout)

        return None

    def service_state(self, service: str) -> Optional[str]:
        """Get the runtime state of a service, honouring aliases.

        Args:
            service: Logical service name

        Returns:
            "active" if any alias is active, otherwise the last reported
            state; None if the state command could not be run
        """
        service_mgr = self.profile.get("service_manager", {})
        command_spec = service_mgr.get("is_active")

        if not command_spec:
            return None

        command, timeout = _normalize_command_spec(command_spec, default_timeout=5)
        last_status: Optional[str] = None

        for service_name in self.resolve_service_names(service):
            rendered = _render_command(command, service=service_name)
            result = _run_command(rendered, timeout=timeout)
            if result is None:
                continue

            status = result.stdout.strip() or result.stderr.strip() or "inactive"
            if result.returncode == 0 and status == "active":
                return status
            last_status = status.splitlines()[0]

        return last_status

    def run_profile_command(
        self,
        section: str,
        key: str,
        **kwargs: Any,
    ) -> Optional[subprocess.CompletedProcess[str]]:
        """Run a command declared in the profile.

        Args:
            section: Profile section (e.g. "audit", "shell")
            key: Command key within the section
            **kwargs: Template variables

        Returns:
            CompletedProcess, or None if the command is missing or failed to run
        """
        command_spec = self.profile.get(section, {}).get(key)
        if not command_spec:
            return None

        command, timeout = _normalize_command_spec(command_spec, default_timeout=10)
        return _run_command(_render_command(command, **kwargs), timeout=timeout)


def parse_os_release(file_path: str = "/etc/os-release") -> dict[str, str]:
    """Parse /etc/os-release into a dictionary.

    Args:
        file_path: Path to os-release file

    Returns:
        Parsed key/value map (upper-case keys as in file)
    """
    data: dict[str, str] = {}
    path = Path(file_path)
    if not path.exists():
        return data

    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                value = value.strip().strip('"').strip("'")
                data[key.strip()] = value
    except (OSError, UnicodeDecodeError):
        return {}

    return data


def parse_unit_listing(output: str) -> dict[str, str]:
    """Parse ``systemctl list-unit-files --no-legend`` output.

    Lines look like ``sshd.service  enabled  disabled``.
    """
    units: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        name = parts[0]
        for suffix in (".service", ".socket"):
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        # Template units (foo@.service) are not addressable services
        if name.endswith("@"):
            continue
        state = parts[1]
        # A socket and service of the same name: keep the enabled one
        if units.get(name) in ENABLED_STATES:
            continue
        units[name] = state
    return units


def parse_chkconfig_listing(output: str) -> dict[str, str]:
    """Parse ``chkconfig --list`` output.

    A service counts as enabled when runlevels 2-5 are all on.
    """
    units: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 8:
            continue
        switches: dict[str, bool] = {}
        for item in parts[1:]:
            level, _, status = item.partition(":")
            switches[level] = status in _LEGACY_ON_MARKERS
        enabled = all(switches.get(level, False) for level in ("2", "3", "4", "5"))
        units[parts[0]] = "enabled" if enabled else "disabled"
    return units


def load_platform_context(
    profile_id: Optional[str] = None,
    os_release_path: str = "/etc/os-release",
) -> PlatformContext:
    """Load platform context from profile files and os-release data.

    Args:
        profile_id: Explicit profile id (e.g., "debian")
        os_release_path: Path to os-release file

    Returns:
        PlatformContext instance
    """
    os_release = parse_os_release(os_release_path)
    detected_profile = profile_id or _select_profile_id(os_release)

    base_profile = _load_profile_file(DEFAULT_PROFILE_ID)
    selected_profile = (
        _load_profile_file(detected_profile) if detected_profile != DEFAULT_PROFILE_ID else {}
    )

    if not selected_profile:
        detected_profile = DEFAULT_PROFILE_ID

    merged_profile = _deep_merge(base_profile, selected_profile)

    distro = DistroInfo(
        os_id=str(os_release.get("ID", "unknown")).lower(),
        version_id=str(os_release.get("VERSION_ID", "unknown")),
        id_like=[
            token.lower()
            for token in str(os_release.get("ID_LIKE", "")).split()
            if token.strip()
        ],
        pretty_name=str(os_release.get("PRETTY_NAME", "unknown")),
    )

    return PlatformContext(
        profile_id=detected_profile,
        distro=distro,
        profile=merged_profile,
    )


_DEFAULT_CONTEXT: Optional[PlatformContext] = None
_LOCK = threading.Lock()


def list_available_profiles(include_base: bool = False) -> list[str]:
    """List available platform profile IDs from profile directory.

    Args:
        include_base: Whether to include the internal base profile

    Returns:
        Sorted list of profile identifiers
    """
    if not _PLATFORMS_DIR.exists():
        return []

    profiles: list[str] = []
    for path in _PLATFORMS_DIR.glob("*.json"):
        profile_id = path.stem
        if profile_id == DEFAULT_PROFILE_ID and not include_base:
            continue
        profiles.append(profile_id)

    return sorted(profiles)


def profile_exists(profile_id: str) -> bool:
    """Check whether a platform profile file exists."""
    if not profile_id:
        return False
    return (_PLATFORMS_DIR / f"{profile_id}.json").exists()


def get_platform_context(
    profile_id: Optional[str] = None,
    refresh: bool = False,
) -> PlatformContext:
    """Get cached platform context.

    Args:
        profile_id: Optional explicit profile id. If provided, bypasses cache.
        refresh: Reload cached default context

    Returns:
        PlatformContext
    """
    global _DEFAULT_CONTEXT

    if profile_id:
        return load_platform_context(profile_id=profile_id)

    with _LOCK:
        if refresh or _DEFAULT_CONTEXT is None:
            _DEFAULT_CONTEXT = load_platform_context()
        return _DEFAULT_CONTEXT


def _select_profile_id(os_release: dict[str, str]) -> str:
    """Select best profile id based on os-release data."""
    os_id = str(os_release.get("ID", "")).strip().lower()
    id_like = [
        token.lower() for token in str(os_release.get("ID_LIKE", "")).split() if token.strip()
    ]

    candidates = [os_id] if os_id else []
    candidates.extend(id_like)

    for candidate in candidates:
        if (_PLATFORMS_DIR / f"{candidate}.json").exists():
            return candidate

    return DEFAULT_PROFILE_ID


def _load_profile_file(profile_id: str) -> dict[str, Any]:
    """Load a platform profile JSON file by id."""
    path = _PLATFORMS_DIR / f"{profile_id}.json"
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable platform profile %s: %s", path, e)
        return {}

    return {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries."""
    merged: dict[str, Any] = dict(base)

    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value

    return merged


def _normalize_command_spec(
    command_spec: Any,
    default_timeout: int,
) -> tuple[list[str], int]:
    """Normalize command spec to (command, timeout)."""
    if isinstance(command_spec, dict):
        command = command_spec.get("cmd", [])
        timeout = int(command_spec.get("timeout", default_timeout))
    else:
        command = command_spec
        timeout = default_timeout

    if not isinstance(command, list):
        return [], default_timeout

    return [str(part) for part in command], timeout


def _render_command(command: list[str], **kwargs: Any) -> list[str]:
    """Render command template tokens with format placeholders."""
    rendered: list[str] = []
    for part in command:
        try:
            rendered.append(part.format(**kwargs))
        except (KeyError, ValueError):
            rendered.append(part)
    return rendered


def _run_command(command: list[str], timeout: int) -> Optional[subprocess.CompletedProcess[str]]:
    """Run command safely and return CompletedProcess or None on failure."""
    if not command:
        return None

    try:
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(command))
        return None
    except (FileNotFoundError, PermissionError, OSError) as e:
        logger.debug("Command failed to start: %s (%s)", " ".join(command), e)
        return None
