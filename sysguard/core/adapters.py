"""
SysGuard - Evidence Source Adapters

This module provides uniform, read-only access to host evidence: directive
values parsed out of configuration files (FileSource) and live OS state such
as listening ports, enabled services and audit rules (LiveSource).

Adapters either return Evidence or raise a distinguishable EvidenceError.
They keep no per-check state, so one instance may serve concurrent checks.
"""

import glob
import ipaddress
import logging
import os
import pwd
import re
import socket
from typing import Any, Callable, Optional

import psutil

from .check import Evidence, Locator
from .errors import KeyNotFound, ProbeFailed, SourceUnavailable
from .platform import ENABLED_STATES, PlatformContext, get_platform_context


logger = logging.getLogger(__name__)

# Probe name -> shape of the value it yields
PROBES: dict[str, str] = {
    "listening_ports": "set",
    "running_processes": "set",
    "enabled_services": "set",
    "service_state": "scalar",
    "umask": "scalar",
    "login_accounts": "set",
    "audit_watches": "set",
}

# Shells that do not allow an interactive login
_NOLOGIN_SUFFIXES = ("nologin", "false")

# Shell prefixes tolerated in front of NAME=value assignments
_ASSIGNMENT_PREFIX = r"(?:(?:export|readonly|declare\s+-x)\s+)?"

_INLINE_COMMENT = re.compile(r"\s+#.*$")
_WATCH_RULE = re.compile(r"-w\s+(?P<path>\S+).*?-p\s+(?P<perms>[rwxa]+)")
_SYSCALL_PATH = re.compile(r"-F\s+(?:path|dir)=(?P<path>\S+)")
_SYSCALL_PERMS = re.compile(r"-F\s+perm=(?P<perms>[rwxa]+)")
_UMASK = re.compile(r"^[0-7]{3,4}$")

# sshd refuses deeper include chains
_MAX_INCLUDE_DEPTH = 16


class FileSource:
    """Reads directive values from configuration files.

    A directive line is ``KEY value`` (whitespace delimiter) or
    ``KEY=value`` (``=`` delimiter, shell and ini style). Lines whose key is
    prefixed by ``#`` are tracked as commented occurrences, which lets
    presence checks tell a disabled directive apart from a missing one.
    """

    def read(self, locator: Locator) -> Evidence:
        """Read the value of ``locator.key`` from the locator's files.

        Args:
            locator: File locator (path, key and parsing hints)

        Returns:
            Evidence holding the selected value. ``active`` is False when the
            key only appears commented out.

        Raises:
            SourceUnavailable: If none of the files can be read
            KeyNotFound: If the key does not appear in any readable file
        """
        source = locator.describe()
        pattern = _directive_pattern(locator)

        active: list[tuple[str, str]] = []
        commented: list[tuple[str, str]] = []
        read_any = False
        errors: list[str] = []

        for path in self._expand_paths(locator):
            lines = self._read_lines(path, locator, errors)
            if lines is None:
                continue

            read_any = True
            for raw_line in lines:
                line = raw_line.rstrip("\n")
                match = pattern.match(line)
                if not match:
                    continue
                value = _clean_value(match.group("value") or "", locator)
                if match.group("comment"):
                    commented.append((value, line.strip()))
                else:
                    active.append((value, line.strip()))

        if not read_any:
            reason = "; ".join(errors) or f"{locator.path}: No such file or directory"
            logger.debug("Source unavailable for %s: %s", source, reason)
            raise SourceUnavailable(reason, source=source)

        if active:
            if locator.occurrence == "all":
                value: Any = tuple(v for v, _ in active)
                raw = "\n".join(line for _, line in active)
            elif locator.occurrence == "first":
                value, raw = active[0]
            else:
                value, raw = active[-1]
            logger.debug("Read %s = %r", source, value)
            return Evidence(source=source, value=value, active=True, raw=raw)

        if commented:
            value, raw = commented[-1]
            logger.debug("Read %s only commented out: %r", source, raw)
            return Evidence(source=source, value=value, active=False, raw=raw)

        raise KeyNotFound(f"{locator.key} is not set", source=source)

    @staticmethod
    def _expand_paths(locator: Locator) -> list[str]:
        """Primary path followed by every match of the extra paths."""
        paths = [locator.path]
        for pattern in locator.extra_paths:
            if glob.has_magic(pattern):
                paths.extend(sorted(glob.glob(pattern)))
            else:
                paths.append(pattern)
        return paths

    def _read_lines(
        self,
        path: str,
        locator: Locator,
        errors: list[str],
        depth: int = 0,
    ) -> Optional[list[str]]:
        """Lines of ``path`` with include directives expanded in place.

        Returns None when the file cannot be read. Unreadable included files
        are recorded in ``errors`` and skipped.
        """
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except (IOError, OSError) as e:
            errors.append(f"{path}: {e.strerror or e}")
            return None

        if not locator.include or depth >= _MAX_INCLUDE_DEPTH:
            return lines

        include = re.compile(
            rf"^\s*{re.escape(locator.include)}\s+(?P<patterns>.+)$",
            re.IGNORECASE,
        )
        expanded: list[str] = []
        for line in lines:
            match = include.match(line)
            if not match:
                expanded.append(line)
                continue
            for included in _include_paths(match.group("patterns"), path):
                nested = self._read_lines(included, locator, errors, depth + 1)
                if nested:
                    expanded.extend(nested)
        return expanded


class LiveSource:
    """Queries live host state (sockets, processes, services, audit rules).

    Args:
        platform_context: Platform context providing OS commands. Resolved
            lazily from the detected platform when omitted.
    """

    def __init__(self, platform_context: Optional[PlatformContext] = None) -> None:
        self._platform_context = platform_context
        self._probes: dict[str, Callable[[str], Any]] = {
            "listening_ports": self._listening_ports,
            "running_processes": self._running_processes,
            "enabled_services": self._enabled_services,
            "service_state": self._service_state,
            "umask": self._umask,
            "login_accounts": self._login_accounts,
            "audit_watches": self._audit_watches,
        }

    @property
    def platform_context(self) -> PlatformContext:
        if self._platform_context is None:
            self._platform_context = get_platform_context()
        return self._platform_context

    def probe(self, locator: Locator) -> Evidence:
        """Run the locator's probe and wrap the result as Evidence.

        Raises:
            ProbeFailed: On permission errors, missing tools, non-zero exits,
                command timeouts or an unknown probe name
        """
        source = locator.describe()
        handler = self._probes.get(locator.probe)
        if handler is None:
            raise ProbeFailed(f"Unknown probe '{locator.probe}'", source=source)

        try:
            value = handler(locator.target)
        except ProbeFailed as e:
            e.source = e.source or source
            raise

        logger.debug("Probe %s returned %r", source, value)
        return Evidence(source=source, value=value)

    def _listening_ports(self, target: str) -> tuple[int, ...]:
        """TCP listeners plus bound, unconnected UDP sockets."""
        return tuple(sorted(listening_ports()))

    def _running_processes(self, target: str) -> tuple[str, ...]:
        names: set[str] = set()
        try:
            for proc in psutil.process_iter(["name"]):
                name = proc.info.get("name")
                if name:
                    names.add(name)
        except (psutil.AccessDenied, PermissionError, OSError) as e:
            raise ProbeFailed(f"Cannot enumerate processes: {e}")
        return tuple(sorted(names))

    def _enabled_services(self, target: str) -> tuple[str, ...]:
        """Enabled units, plus the logical names of enabled aliases."""
        units = self.platform_context.list_unit_states()
        if units is None:
            raise ProbeFailed("Cannot list service units")

        enabled = {name for name, state in units.items() if state in ENABLED_STATES}
        for name, aliases in self.platform_context.service_aliases:
            if enabled.intersection(aliases):
                enabled.add(name)
        return tuple(sorted(enabled))

    def _service_state(self, target: str) -> str:
        if not target:
            raise ProbeFailed("service_state probe needs a service name")
        state = self.platform_context.service_state(target)
        if state is None:
            raise ProbeFailed(f"Cannot query state of service '{target}'")
        return state

    def _umask(self, target: str) -> str:
        result = self.platform_context.run_profile_command("shell", "umask")
        if result is None:
            raise ProbeFailed("Cannot run login shell to read umask")
        if result.returncode != 0:
            raise ProbeFailed(f"umask exited with {result.returncode}: {result.stderr.strip()}")

        lines = result.stdout.strip().splitlines()
        value = lines[-1].strip() if lines else ""
        if not _UMASK.match(value):
            raise ProbeFailed(f"Unexpected umask output: {value!r}")
        return value.zfill(4)

    def _login_accounts(self, target: str) -> tuple[str, ...]:
        """Accounts whose shell allows an interactive login."""
        try:
            entries = pwd.getpwall()
        except (KeyError, OSError) as e:
            raise ProbeFailed(f"Cannot read account database: {e}")
        return tuple(sorted({
            entry.pw_name
            for entry in entries
            if entry.pw_shell and not entry.pw_shell.endswith(_NOLOGIN_SUFFIXES)
        }))

    def _audit_watches(self, target: str) -> tuple[str, ...]:
        """Paths watched by loaded audit rules for writes or attribute changes."""
        result = self.platform_context.run_profile_command("audit", "list_rules")
        if result is None:
            raise ProbeFailed("Cannot run auditctl")
        if result.returncode != 0:
            raise ProbeFailed(
                f"auditctl exited with {result.returncode}: {result.stderr.strip()}"
            )
        return tuple(sorted(parse_audit_watches(result.stdout)))


def listening_ports() -> set[int]:
    """Collect ports with a listening socket.

    Raises:
        ProbeFailed: If sockets cannot be enumerated (usually needs root)
    """
    try:
        conns = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, PermissionError) as e:
        raise ProbeFailed(f"Cannot enumerate sockets ({type(e).__name__}); run as root")
    except OSError as e:
        raise ProbeFailed(f"Cannot enumerate sockets: {e}")

    ports: set[int] = set()
    for conn in conns:
        if not conn.laddr:
            continue
        port = getattr(conn.laddr, "port", None)
        if port is None:
            continue
        if conn.type == socket.SOCK_STREAM and conn.status == psutil.CONN_LISTEN:
            ports.add(int(port))
        elif conn.type == socket.SOCK_DGRAM and not conn.raddr:
            ports.add(int(port))
    return ports


def interface_addresses() -> list[str]:
    """Non-loopback IPv4 addresses of the host's interfaces, sorted.

    Raises:
        ProbeFailed: If the interface table cannot be read
    """
    try:
        if_addrs = psutil.net_if_addrs()
    except OSError as e:
        raise ProbeFailed(f"Cannot enumerate interfaces: {e}")

    addresses: set[str] = set()
    for addr_list in if_addrs.values():
        for addr in addr_list:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                addresses.add(addr.address)
    return sorted(addresses, key=ipaddress.IPv4Address)


def parse_audit_watches(output: str) -> set[str]:
    """Parse ``auditctl -l`` output into watched paths.

    Both ``-w PATH -p PERMS`` watches and ``-F path=PATH -F perm=PERMS``
    syscall rules count, as long as the permissions include write or
    attribute change.
    """
    watched: set[str] = set()
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        match = _WATCH_RULE.search(line)
        if match:
            if _watches_writes(match.group("perms")):
                watched.add(match.group("path"))
            continue

        path_match = _SYSCALL_PATH.search(line)
        perm_match = _SYSCALL_PERMS.search(line)
        if path_match and perm_match and _watches_writes(perm_match.group("perms")):
            watched.add(path_match.group("path"))
    return watched


def _watches_writes(perms: str) -> bool:
    return "w" in perms or "a" in perms


def _directive_pattern(locator: Locator) -> "re.Pattern[str]":
    """Compile the line pattern for a locator's key and delimiter."""
    key = r"\s+".join(re.escape(part) for part in locator.key.split())
    flags = re.IGNORECASE if locator.ignore_case else 0

    if locator.delimiter:
        delimiter = re.escape(locator.delimiter)
        return re.compile(
            rf"^\s*(?P<comment>#+\s*)?{_ASSIGNMENT_PREFIX}{key}\s*{delimiter}\s*(?P<value>.*)$",
            flags,
        )
    return re.compile(rf"^\s*(?P<comment>#+\s*)?{key}(?:\s+(?P<value>.*))?$", flags)


def _include_paths(patterns: str, including_file: str) -> list[str]:
    """Files named by an include directive, relative to the including file."""
    base = os.path.dirname(including_file)
    paths: list[str] = []
    for pattern in _INLINE_COMMENT.sub("", patterns).split():
        pattern = os.path.join(base, pattern.strip("\"'"))
        if glob.has_magic(pattern):
            paths.extend(sorted(glob.glob(pattern)))
        else:
            paths.append(pattern)
    return paths


def _clean_value(value: str, locator: Locator) -> str:
    """Strip inline comments, shell tails and quotes; apply the token index."""
    value = _INLINE_COMMENT.sub("", value)
    if locator.delimiter:
        value = value.split(";", 1)[0]
    value = value.strip().strip('"').strip("'").strip()

    if locator.token is not None:
        tokens = value.split()
        value = tokens[locator.token] if -len(tokens) <= locator.token < len(tokens) else ""
    return value
