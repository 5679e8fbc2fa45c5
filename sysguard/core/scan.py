"""
SysGuard - Scan Entry Point

``run_scan`` is the single "run scan now" call: capture the host profile,
generate the strategy, execute it and aggregate the outcomes.
"""

import logging
import threading
from typing import Optional

from .aggregator import Report, aggregate
from .catalog import CheckCatalog, get_catalog
from .check import HostProfile
from .detector import capture_host_profile
from .engine import DetectionEngine, ProgressCallback
from .strategy import StrategyGenerator


logger = logging.getLogger(__name__)


def run_scan(
    profile: Optional[HostProfile] = None,
    catalog: Optional[CheckCatalog] = None,
    engine: Optional[DetectionEngine] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Report:
    """Run one complete scan.

    Args:
        profile: Host profile to scan against (captured from the running host
            when omitted)
        catalog: Check catalog (default: the shipped baseline)
        engine: Detection engine (default: engine with the host adapters)
        progress_callback: Optional progress callback, see
            DetectionEngine.execute
        cancel_event: Optional event that cancels the scan; the Report is
            then flagged incomplete

    Returns:
        Report covering every executed check

    Raises:
        CatalogInvalid: If the catalog fails validation
        ProfileCaptureFailed: If the host profile cannot be captured
    """
    catalog = catalog if catalog is not None else get_catalog()
    if profile is None:
        profile = capture_host_profile()
    engine = engine or DetectionEngine()

    strategy = StrategyGenerator(catalog).generate(profile)
    outcomes = engine.execute(
        strategy,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )
    report = aggregate(outcomes, profile, planned=len(strategy))

    logger.info(
        "Scan finished: %d passed, %d failed, %d unknown (%d planned)",
        report.summary.passed,
        report.summary.failed,
        report.summary.unknown,
        report.planned,
    )
    return report
