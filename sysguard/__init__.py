"""
SysGuard

A read-only hardening baseline auditor for Linux hosts.
Captures a host profile, runs a host-adapted strategy of configuration and
live-state checks and aggregates the outcomes into a compliance report.
"""

__version__ = "1.0.0"
__author__ = "SysGuard Project"

from .core.aggregator import Report, aggregate
from .core.catalog import CheckCatalog, get_catalog, load_catalog
from .core.check import HostProfile, Outcome, Severity, Verdict
from .core.detector import HostProfileDetector, capture_host_profile
from .core.engine import DetectionEngine
from .core.errors import CatalogInvalid, ProfileCaptureFailed, SysGuardError
from .core.platform import (
    DistroInfo,
    PlatformContext,
    get_platform_context,
    list_available_profiles,
    profile_exists,
    load_platform_context,
    parse_os_release,
)
from .core.scan import run_scan
from .core.strategy import StrategyGenerator

__all__ = [
    "Report",
    "aggregate",
    "CheckCatalog",
    "get_catalog",
    "load_catalog",
    "HostProfile",
    "Outcome",
    "Severity",
    "Verdict",
    "HostProfileDetector",
    "capture_host_profile",
    "DetectionEngine",
    "CatalogInvalid",
    "ProfileCaptureFailed",
    "SysGuardError",
    "DistroInfo",
    "PlatformContext",
    "get_platform_context",
    "list_available_profiles",
    "profile_exists",
    "load_platform_context",
    "parse_os_release",
    "run_scan",
    "StrategyGenerator",
]
