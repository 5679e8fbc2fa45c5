"""
Unit tests for host profile detection.

Tests cover:
- Profile fields captured from the platform context
- Enabled service filtering
- Capture failures
"""

import unittest
from unittest.mock import patch, MagicMock
import sys
from pathlib import Path

# Add project root to import path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sysguard.core.detector import HostProfileDetector, capture_host_profile
from sysguard.core.errors import ProbeFailed, ProfileCaptureFailed
from sysguard.core.platform import DistroInfo


def make_context(units=None) -> MagicMock:
    context = MagicMock()
    context.profile_id = "debian"
    context.service_manager_name = "systemd"
    context.distro = DistroInfo(
        os_id="debian",
        version_id="12",
        id_like=[],
        pretty_name="Debian GNU/Linux 12 (bookworm)",
    )
    context.service_aliases = (("sshd", ("ssh",)),)
    context.list_unit_states.return_value = units
    return context


class TestHostProfileDetector(unittest.TestCase):
    """Tests for HostProfileDetector.detect."""

    @patch("sysguard.core.detector.socket.gethostname", return_value="web01")
    @patch("sysguard.core.detector.listening_ports", return_value={22, 80})
    @patch("sysguard.core.detector.interface_addresses", return_value=["10.0.0.5", "192.168.1.20"])
    def test_captures_profile(
        self, mock_addresses: MagicMock, mock_ports: MagicMock, mock_hostname: MagicMock,
    ) -> None:
        """Test that OS identity, addresses, services and ports are captured."""
        context = make_context({
            "ssh": "enabled",
            "cron": "enabled-runtime",
            "telnet": "disabled",
            "cups": "masked",
        })

        profile = HostProfileDetector(platform_context=context).detect()

        self.assertEqual(profile.hostname, "web01")
        self.assertEqual(profile.addresses, ("10.0.0.5", "192.168.1.20"))
        self.assertEqual(profile.os_id, "debian")
        self.assertEqual(profile.os_version, "12")
        self.assertEqual(profile.os_name, "Debian GNU/Linux 12 (bookworm)")
        self.assertEqual(profile.platform_profile, "debian")
        self.assertEqual(profile.installed_services, frozenset({"ssh", "cron", "telnet", "cups"}))
        self.assertEqual(profile.enabled_services, frozenset({"ssh", "cron"}))
        self.assertEqual(profile.listening_ports, frozenset({22, 80}))
        self.assertTrue(profile.has_service("sshd"))
        self.assertFalse(profile.has_service("auditd"))
        self.assertIsNotNone(profile.captured_at.tzinfo)

    @patch("sysguard.core.detector.listening_ports", return_value=set())
    def test_service_listing_unavailable(self, mock_ports: MagicMock) -> None:
        """Test that a missing service listing aborts the capture."""
        with self.assertRaises(ProfileCaptureFailed):
            HostProfileDetector(platform_context=make_context(None)).detect()

    @patch(
        "sysguard.core.detector.listening_ports",
        side_effect=ProbeFailed("Cannot enumerate sockets (AccessDenied); run as root"),
    )
    def test_ports_unavailable(self, mock_ports: MagicMock) -> None:
        """Test that socket enumeration failures abort the capture."""
        with self.assertRaises(ProfileCaptureFailed) as ctx:
            HostProfileDetector(platform_context=make_context({"ssh": "enabled"})).detect()

        self.assertIn("listening ports", str(ctx.exception))

    @patch("sysguard.core.detector.listening_ports", return_value=set())
    @patch(
        "sysguard.core.detector.interface_addresses",
        side_effect=ProbeFailed("Cannot enumerate interfaces: boom"),
    )
    def test_addresses_unavailable(self, mock_addresses: MagicMock, mock_ports: MagicMock) -> None:
        """Test that missing addresses do not abort the capture."""
        with self.assertLogs("sysguard.core.detector", level="WARNING"):
            profile = HostProfileDetector(platform_context=make_context({})).detect()

        self.assertEqual(profile.addresses, ())

    @patch("sysguard.core.detector.listening_ports", return_value=set())
    def test_empty_host(self, mock_ports: MagicMock) -> None:
        """Test that a host with no services or ports still yields a profile."""
        profile = HostProfileDetector(platform_context=make_context({})).detect()

        self.assertEqual(profile.installed_services, frozenset())
        self.assertEqual(profile.listening_ports, frozenset())


class TestConvenienceFunction(unittest.TestCase):
    """Tests for capture_host_profile."""

    @patch("sysguard.core.detector.HostProfileDetector.detect")
    def test_capture_host_profile_calls_detector(self, mock_detect: MagicMock) -> None:
        """Test that the convenience function delegates to the detector."""
        sentinel = MagicMock()
        mock_detect.return_value = sentinel

        self.assertIs(capture_host_profile(platform_context=make_context({})), sentinel)
        mock_detect.assert_called_once()


if __name__ == "__main__":
    unittest.main()
