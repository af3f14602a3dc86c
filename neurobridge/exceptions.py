"""Exception hierarchy for the NeuroBridge access core.

Authorization failures are not exceptions: the engine returns them as
``Decision`` values.  The types here cover infrastructure faults (the audit
sink, invalid configuration) and malformed input that the engine converts
into a denial before it reaches the caller.
"""

from __future__ import annotations


class NeuroBridgeError(Exception):
    """Base exception for all NeuroBridge errors."""

    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class UnknownAction(NeuroBridgeError):
    """Strict catalog lookup for an action the catalog does not define."""

    error_type = "unknown_action"


class MalformedResourceRef(NeuroBridgeError):
    """A resource ref lacks the scoping fields its resource type requires."""

    error_type = "insufficient_context"

    def __init__(self, resource_type: str, missing: list[str]) -> None:
        self.resource_type = resource_type
        self.missing = missing
        super().__init__(
            f"{resource_type} ref is missing required scoping fields: {', '.join(missing)}"
        )


class AuditError(NeuroBridgeError):
    """Raised by an audit recorder that could not persist an entry."""

    error_type = "audit_error"


class AuditUnavailable(AuditError):
    """The audit sink failed during a compliance-critical authorization."""

    error_type = "audit_unavailable"


class CatalogError(NeuroBridgeError, ValueError):
    """The permission catalog is structurally invalid."""

    error_type = "catalog_error"


class ConfigurationError(NeuroBridgeError, ValueError):
    """A settings file could not be loaded."""

    error_type = "configuration_error"
