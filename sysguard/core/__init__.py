"""
SysGuard - Core Module

This module contains the detection core: data model, evidence adapters,
check catalog, strategy generator, detection engine and aggregator.
"""

from .adapters import FileSource, LiveSource, PROBES
from .aggregator import Report, VerdictCounts, aggregate
from .catalog import CheckCatalog, get_catalog, load_catalog
from .check import (
    Category,
    CheckDefinition,
    CheckInstance,
    Evidence,
    HostProfile,
    Outcome,
    Severity,
    Strategy,
    Verdict,
)
from .detector import HostProfileDetector, capture_host_profile
from .engine import DetectionEngine
from .errors import (
    CatalogInvalid,
    EvaluationTypeMismatch,
    KeyNotFound,
    ProbeFailed,
    ProfileCaptureFailed,
    SourceUnavailable,
    SysGuardError,
)
from .evaluation import evaluate
from .platform import (
    DistroInfo,
    PlatformContext,
    get_platform_context,
    list_available_profiles,
    profile_exists,
    load_platform_context,
    parse_os_release,
)
from .scan import run_scan
from .strategy import StrategyGenerator

__all__ = [
    "FileSource",
    "LiveSource",
    "PROBES",
    "Report",
    "VerdictCounts",
    "aggregate",
    "CheckCatalog",
    "get_catalog",
    "load_catalog",
    "Category",
    "CheckDefinition",
    "CheckInstance",
    "Evidence",
    "HostProfile",
    "Outcome",
    "Severity",
    "Strategy",
    "Verdict",
    "HostProfileDetector",
    "capture_host_profile",
    "DetectionEngine",
    "CatalogInvalid",
    "EvaluationTypeMismatch",
    "KeyNotFound",
    "ProbeFailed",
    "ProfileCaptureFailed",
    "SourceUnavailable",
    "SysGuardError",
    "evaluate",
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
