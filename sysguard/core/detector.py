"""
SysGuard - Host Profile Detection

This module captures the HostProfile snapshot a scan is tailored to: OS
identity, IPv4 addresses, installed and enabled service units and listening
ports.
"""

from datetime import datetime, timezone
import logging
import socket
from typing import Optional

from .adapters import interface_addresses, listening_ports
from .check import HostProfile
from .errors import ProbeFailed, ProfileCaptureFailed
from .platform import ENABLED_STATES, PlatformContext, get_platform_context


logger = logging.getLogger(__name__)


class HostProfileDetector:
    """Captures a HostProfile using platform adapters.

    The profile is captured once at scan start and never refreshed, so all
    checks in one run see the same view of the host.
    """

    def __init__(self, platform_context: Optional[PlatformContext] = None) -> None:
        """Initialize the detector.

        Args:
            platform_context: Optional platform context with distro adapters
        """
        self._platform_context = platform_context or get_platform_context()

    def detect(self) -> HostProfile:
        """Capture the host profile.

        Returns:
            Frozen HostProfile snapshot

        Raises:
            ProfileCaptureFailed: If services or listening ports cannot be
                enumerated
        """
        context = self._platform_context

        units = context.list_unit_states()
        if units is None:
            raise ProfileCaptureFailed(
                f"Cannot enumerate services with the {context.service_manager_name} "
                "service manager or chkconfig"
            )

        try:
            ports = listening_ports()
        except ProbeFailed as e:
            raise ProfileCaptureFailed(f"Cannot enumerate listening ports: {e}") from e

        try:
            addresses = tuple(interface_addresses())
        except ProbeFailed as e:
            logger.warning("Host addresses not captured: %s", e)
            addresses = ()

        profile = HostProfile(
            hostname=socket.gethostname(),
            addresses=addresses,
            os_id=context.distro.os_id,
            os_version=context.distro.version_id,
            os_name=context.distro.pretty_name,
            platform_profile=context.profile_id,
            installed_services=frozenset(units),
            enabled_services=frozenset(
                name for name, state in units.items() if state in ENABLED_STATES
            ),
            listening_ports=frozenset(ports),
            service_aliases=context.service_aliases,
            captured_at=datetime.now(timezone.utc),
        )

        logger.info(
            "Captured host profile for %s (%s): %d services, %d listening ports",
            profile.hostname,
            profile.os_name,
            len(profile.installed_services),
            len(profile.listening_ports),
        )
        return profile


def capture_host_profile(platform_context: Optional[PlatformContext] = None) -> HostProfile:
    """Convenience function to capture the host profile.

    Args:
        platform_context: Optional platform context with distro adapters

    Returns:
        HostProfile for the running host
    """
    detector = HostProfileDetector(platform_context=platform_context)
    return detector.detect()
