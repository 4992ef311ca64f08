"""Exception hierarchy for the blob fault-injection harness.

Only :class:`ConfigurationError` is fatal to a run. Failures raised by the
storage SDK (``azure.core.exceptions.AzureError`` and friends) stay scoped to
a single download attempt and are caught by the verification loop, so callers
can still tell a misconfigured harness apart from a storage failure that was
induced on purpose.
"""

from __future__ import annotations

__all__ = [
    "BlobFaultReproError",
    "ConfigurationError",
]


class BlobFaultReproError(RuntimeError):
    """Base exception for harness failures."""


class ConfigurationError(BlobFaultReproError):
    """Raised when settings or CLI inputs are invalid."""
