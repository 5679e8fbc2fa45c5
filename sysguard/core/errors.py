"""
SysGuard - Error Taxonomy

Catalog and profile failures abort a run. Evidence and evaluation failures
are per-check and are absorbed into the Outcome stream as Unknown verdicts.
"""


class SysGuardError(Exception):
    """Base class for all SysGuard errors."""


class CatalogInvalid(SysGuardError):
    """The check catalog is corrupt or inconsistent (fatal at startup)."""


class ProfileCaptureFailed(SysGuardError):
    """The host profile could not be captured (fatal to the scan)."""


class EvidenceError(SysGuardError):
    """Base class for per-check evidence retrieval failures.

    Attributes:
        source: Description of the locator that was being read
    """

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class SourceUnavailable(EvidenceError):
    """A configuration file does not exist or cannot be read."""


class KeyNotFound(EvidenceError):
    """The requested directive is not present in the source."""


class ProbeFailed(EvidenceError):
    """A live-state query failed (permissions, missing tool, timeout)."""


class EvaluationTypeMismatch(SysGuardError):
    """Evidence did not have the type the evaluation policy requires."""
