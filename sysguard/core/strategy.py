"""
SysGuard - Strategy Generator

This module turns the check catalog and a captured HostProfile into the
ordered list of CheckInstances one scan will run.
"""

import logging
from typing import Optional

from .catalog import CheckCatalog
from .check import CATEGORY_ORDER, CheckDefinition, CheckInstance, HostProfile, Strategy
from .errors import ProfileCaptureFailed


logger = logging.getLogger(__name__)


class StrategyGenerator:
    """Builds host-adapted strategies from a catalog.

    Generation is deterministic: categories follow the fixed report order,
    definitions keep catalog declaration order within a category and
    parameters expand in their declared order.

    Checks whose required services are missing from the host stay in the
    strategy as non-applicable instances so report counts remain auditable.
    """

    def __init__(self, catalog: CheckCatalog) -> None:
        self._catalog = catalog

    def generate(self, profile: Optional[HostProfile]) -> Strategy:
        """Generate the strategy for one scan.

        Args:
            profile: Host snapshot captured at scan start

        Returns:
            Strategy with one CheckInstance per definition and parameter

        Raises:
            ProfileCaptureFailed: If no host profile is available
        """
        if profile is None:
            raise ProfileCaptureFailed("Cannot generate a strategy without a host profile")

        instances: list[CheckInstance] = []
        for category in CATEGORY_ORDER:
            for definition in self._catalog.by_category(category):
                instances.extend(self._expand(definition, profile))

        skipped = sum(1 for instance in instances if not instance.applicable)
        logger.debug(
            "Generated strategy with %d checks (%d not applicable) for %s",
            len(instances),
            skipped,
            profile.hostname,
        )
        return Strategy(profile=profile, instances=tuple(instances))

    def _expand(self, definition: CheckDefinition, profile: HostProfile) -> list[CheckInstance]:
        """Expand one definition into its instances for this host."""
        missing = [service for service in definition.requires if not profile.has_service(service)]
        applicable = not missing
        skip_reason = ""
        if missing:
            skip_reason = f"Required service not installed: {', '.join(missing)}"

        if not definition.parameters:
            return [
                CheckInstance(
                    definition=definition,
                    locator=definition.locator,
                    applicable=applicable,
                    skip_reason=skip_reason,
                )
            ]

        return [
            CheckInstance(
                definition=definition,
                locator=definition.locator.bind(parameter),
                parameter=parameter,
                applicable=applicable,
                skip_reason=skip_reason,
            )
            for parameter in definition.parameters
        ]
