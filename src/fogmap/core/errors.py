"""
Error taxonomy.

Library code raises these; the outer layers (tracker fix handler, CLI, API) decide
whether an error becomes a log line, a user-visible state or an exit code.
"""

from __future__ import annotations


class FogMapError(Exception):
    """Base class for all fogmap errors."""


class PermissionDeniedError(FogMapError):
    """The platform refused location (or radio) access."""


class LocationUnavailableError(FogMapError):
    """No location fix could be obtained."""


class UninitializedStoreError(FogMapError):
    """A store operation ran before `initialize()`; this is a setup-ordering bug."""


class GeometryMergeError(FogMapError):
    """Union/difference failed on degenerate or self-intersecting input."""


class MalformedExportDataError(FogMapError):
    """A peer payload could not be parsed or validated as LocationExportData."""


class TransportError(FogMapError):
    """A connect/read/write failure on the byte pipe."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ExchangeTimeoutError(TransportError):
    """Connect or a bounded wait inside an exchange ran out of time."""


class IncompleteTransferError(TransportError):
    """END arrived while one or more chunk indices were still missing."""

    def __init__(self, missing: list[int], total: int):
        preview = ", ".join(str(i) for i in missing[:10])
        if len(missing) > 10:
            preview += ", ..."
        super().__init__(f"missing {len(missing)} of {total} chunks: [{preview}]")
        self.missing = list(missing)
        self.total = total


class ExchangeBusyError(TransportError):
    """Another exchange is already in flight."""


class ExchangeCancelledError(FogMapError):
    """The caller cancelled the exchange."""
