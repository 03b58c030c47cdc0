"""Exception types shared across Homestead."""
from typing import List, Optional


class HomesteadError(Exception):
    """Base class for Homestead errors."""


class ValidationError(HomesteadError):
    """Raised when a manifest is malformed. Fatal before any action runs."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        if self.errors:
            message = message + ":\n  " + "\n  ".join(self.errors)
        super().__init__(message)


class ProbeUncertain(HomesteadError):
    """Raised inside a probe that cannot determine a fact.

    Never escapes the probe layer; callers resolve it to a conservative default.
    """


class ActionFailed(HomesteadError):
    """Raised by a backend when an install/enable action fails.

    Carries enough diagnostic text to retry the step by hand.
    """

    def __init__(self, message: str, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(message)

    def detail(self) -> str:
        if self.diagnostic:
            return f"{self} ({self.diagnostic})"
        return str(self)


class UnsupportedPlatformError(HomesteadError):
    """Raised when no package backend exists for the probed platform."""


class ReportWriteError(HomesteadError):
    """Raised when the run report cannot be saved to disk."""
