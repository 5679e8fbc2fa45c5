"""
SysGuard - Command Line Interface

This module provides the CLI argument parsing, privilege handling,
cancellation and main entry point for the hardening audit.
"""

import argparse
import logging
import os
import signal
import sys
import threading
import traceback
from pathlib import Path
from typing import Any, Optional

from .core.adapters import LiveSource
from .core.aggregator import Report
from .core.catalog import CheckCatalog, get_catalog
from .core.check import HostProfile
from .core.detector import HostProfileDetector
from .core.engine import DEFAULT_CHECK_TIMEOUT, DEFAULT_MAX_WORKERS, DetectionEngine
from .core.errors import CatalogInvalid, ProfileCaptureFailed
from .core.platform import (
    PlatformContext,
    get_platform_context,
    list_available_profiles,
    profile_exists,
)
from .core.scan import run_scan
from .core.strategy import StrategyGenerator
from .output.json_formatter import JSONFormatter
from .output.progress import create_progress_bar


class PrivilegeChecker:
    """Handles privilege checking and warnings for the audit.

    Some checks read root-only files (sshd_config, saved firewall rules) or
    query state only root can see (all sockets, loaded audit rules).
    """

    # Checks whose evidence usually requires root
    PRIVILEGED_CHECKS: list[str] = [
        "port_closed",
        "audit_watch",
        "ssh_permit_root_login",
        "iptables_whitelist",
        "iptables_input_policy",
    ]

    def __init__(self, skip_check: bool = False) -> None:
        """Initialize the privilege checker.

        Args:
            skip_check: If True, skip the root check entirely
        """
        self._skip_check = skip_check
        self._has_root = False
        self._warnings: list[str] = []

    def check_privileges(self) -> bool:
        """Check if the process is running with root privileges.

        Returns:
            True if running as root, False otherwise
        """
        if self._skip_check:
            self._warnings.append(
                "Privilege check skipped (--no-sudo). Some checks may be unknown."
            )
            return False

        self._has_root = os.geteuid() == 0

        if not self._has_root:
            self._warnings.append(
                "Not running with sudo/root privileges. "
                "Some checks will report unknown."
            )
            self._warnings.append(
                f"Checks requiring root: {', '.join(self.PRIVILEGED_CHECKS)}"
            )

        return self._has_root

    def print_warnings(self) -> None:
        """Print any privilege-related warnings to stderr."""
        for warning in self._warnings:
            print(f"WARNING: {warning}", file=sys.stderr)

    @property
    def has_warnings(self) -> bool:
        """Check if any warnings were generated."""
        return len(self._warnings) > 0


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


class CLI:
    """Command Line Interface for SysGuard.

    Handles argument parsing, privilege checking and host profile capture,
    and orchestrates the scan and report output.
    """

    def __init__(self) -> None:
        """Initialize the CLI."""
        self.args: Optional[argparse.Namespace] = None
        self.platform_context: Optional[PlatformContext] = None
        self.profile: Optional[HostProfile] = None
        self.privilege_checker = PrivilegeChecker()
        self.cancel_event = threading.Event()

    def parse_args(self, argv: Optional[list[str]] = None) -> argparse.Namespace:
        """Parse command line arguments.

        Args:
            argv: Command line arguments (defaults to sys.argv[1:])

        Returns:
            Parsed arguments namespace
        """
        parser = argparse.ArgumentParser(
            prog="sysguard-scan",
            description="Linux host hardening baseline audit",
            epilog=(
                "Exit codes: 0=all checks passed, 1=error, "
                "2=failed/unknown checks, incomplete scan or privilege warnings"
            ),
        )

        parser.add_argument(
            "--output", "-o",
            type=str,
            default=None,
            help="Output file path (default: stdout)"
        )

        parser.add_argument(
            "--verbose", "-v",
            action="store_true",
            help="Enable verbose output and debug logging"
        )

        parser.add_argument(
            "--no-sudo",
            action="store_true",
            help="Skip root check, run without privileges"
        )

        parser.add_argument(
            "--no-progress",
            action="store_true",
            help="Disable progress bar display"
        )

        parser.add_argument(
            "--pretty",
            action="store_true",
            help="Pretty-print JSON output with indentation"
        )

        parser.add_argument(
            "--profile",
            type=str,
            default=None,
            help=(
                "Platform profile override (e.g., debian, rhel). "
                "Defaults to auto-detection from /etc/os-release"
            ),
        )

        parser.add_argument(
            "--workers",
            type=_positive_int,
            default=DEFAULT_MAX_WORKERS,
            help=f"Number of checks run concurrently (default: {DEFAULT_MAX_WORKERS})"
        )

        parser.add_argument(
            "--timeout",
            type=_positive_float,
            default=DEFAULT_CHECK_TIMEOUT,
            help=f"Per-check timeout in seconds (default: {DEFAULT_CHECK_TIMEOUT:g})"
        )

        self.args = parser.parse_args(argv)
        return self.args

    def configure_logging(self) -> None:
        """Send library logging to stderr (debug level with --verbose)."""
        verbose = bool(self.args and self.args.verbose)
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(levelname)s: %(name)s: %(message)s",
            stream=sys.stderr,
        )

    def _ensure_platform_context(self) -> PlatformContext:
        """Load and cache the active platform context.

        Returns:
            PlatformContext selected by CLI profile override or auto-detection
        """
        if self.platform_context is None:
            profile_id = None
            if self.args is not None and self.args.profile:
                profile_id = self.args.profile
                if not profile_exists(profile_id):
                    available = ", ".join(list_available_profiles())
                    raise ValueError(
                        f"Unknown platform profile '{profile_id}'. "
                        f"Available profiles: {available}"
                    )
            self.platform_context = get_platform_context(profile_id=profile_id)
        return self.platform_context

    def capture_profile(self) -> HostProfile:
        """Capture the host profile for this run.

        Raises:
            ProfileCaptureFailed: If services or ports cannot be enumerated
        """
        detector = HostProfileDetector(platform_context=self._ensure_platform_context())
        self.profile = detector.detect()
        return self.profile

    def print_profile_info(self) -> None:
        """Print captured host information (verbose mode only)."""
        if not self.args or not self.args.verbose or self.profile is None:
            return

        profile = self.profile
        print(f"Host: {profile.hostname} ({profile.os_name})", file=sys.stderr)
        print(f"Platform profile: {profile.platform_profile}", file=sys.stderr)
        print(
            f"Services: {len(profile.installed_services)} installed, "
            f"{len(profile.enabled_services)} enabled",
            file=sys.stderr,
        )
        ports = ", ".join(str(p) for p in sorted(profile.listening_ports)) or "none"
        print(f"Listening ports: {ports}", file=sys.stderr)

    def _handle_interrupt(self, signum: int, frame: Any) -> None:
        """First Ctrl-C cancels the scan; a second one aborts."""
        if self.cancel_event.is_set():
            raise KeyboardInterrupt
        self.cancel_event.set()
        print(
            "\nCancelling scan, waiting for running checks (Ctrl-C again to abort)...",
            file=sys.stderr,
        )

    def run_audit(self, catalog: CheckCatalog, privileged: bool = False) -> int:
        """Run the scan and write the report.

        Args:
            catalog: Validated check catalog
            privileged: Whether the scan runs with root privileges

        Returns:
            Exit code (0=success, 1=error, 2=failed/unknown checks)
        """
        if self.args is None:
            raise RuntimeError("Arguments must be parsed before running the audit")

        profile = self.profile or self.capture_profile()
        planned = len(StrategyGenerator(catalog).generate(profile))

        if self.args.verbose:
            print(f"Executing {planned} checks", file=sys.stderr)

        engine = DetectionEngine(
            live_source=LiveSource(self._ensure_platform_context()),
            max_workers=self.args.workers,
            timeout=self.args.timeout,
        )
        progress_bar = create_progress_bar(
            total=planned,
            verbose=self.args.verbose,
            disable=self.args.no_progress,
        )

        previous_handler = signal.signal(signal.SIGINT, self._handle_interrupt)
        try:
            with progress_bar:
                report = run_scan(
                    profile=profile,
                    catalog=catalog,
                    engine=engine,
                    progress_callback=progress_bar.on_progress,
                    cancel_event=self.cancel_event,
                )
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        if not report.complete:
            print(
                f"WARNING: Scan cancelled, report covers {len(report.outcomes)} "
                f"of {report.planned} checks",
                file=sys.stderr,
            )

        exit_code = self.write_report(report, privileged)
        if exit_code != 0:
            return exit_code

        return self.exit_code_for(report)

    def write_report(self, report: Report, privileged: bool) -> int:
        """Write the report to the output file or stdout.

        Returns:
            0 on success, 1 if the output could not be written
        """
        formatter = JSONFormatter(pretty=self.args.pretty if self.args else False)

        try:
            if self.args and self.args.output:
                output_path = Path(self.args.output)
                formatter.write_to_file(report, output_path, privileged=privileged)
                if self.args.verbose:
                    print(f"Results written to {output_path}", file=sys.stderr)
            else:
                formatter.write_to_stdout(report, privileged=privileged)
        except BrokenPipeError:
            # Common when piping to tools like `head`; treat as graceful termination.
            return 0
        except (OSError, UnicodeError) as e:
            print(f"Error writing audit output: {e}", file=sys.stderr)
            return 1

        return 0

    @staticmethod
    def exit_code_for(report: Report) -> int:
        """Exit code for a written report: 2 unless every check passed."""
        if not report.complete:
            return 2
        if report.summary.failed > 0 or report.summary.unknown > 0:
            return 2
        return 0

    def main(self, argv: Optional[list[str]] = None) -> int:
        """Main entry point for the CLI.

        Args:
            argv: Command line arguments (defaults to sys.argv[1:])

        Returns:
            Exit code (0=success, 1=error, 2=warnings)
        """
        try:
            self.parse_args(argv)
            self.configure_logging()

            # Validate platform profile selection early for clearer errors.
            self._ensure_platform_context()

            catalog = get_catalog()

            self.privilege_checker = PrivilegeChecker(
                skip_check=self.args.no_sudo if self.args else False
            )
            privileged = self.privilege_checker.check_privileges()
            self.privilege_checker.print_warnings()

            self.capture_profile()
            self.print_profile_info()

            audit_exit_code = self.run_audit(catalog, privileged=privileged)

            if audit_exit_code != 0:
                return audit_exit_code

            if self.privilege_checker.has_warnings:
                return 2

            return 0

        except (CatalogInvalid, ProfileCaptureFailed, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("\nAudit interrupted by user", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Unexpected error: {e}", file=sys.stderr)
            if self.args and self.args.verbose:
                traceback.print_exc()
            return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the SysGuard CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0=success, 1=error, 2=warnings)
    """
    cli = CLI()
    return cli.main(argv)


if __name__ == "__main__":
    sys.exit(main())
