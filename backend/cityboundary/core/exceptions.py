"""Error taxonomy for boundary resolution."""


class BoundaryError(Exception):
    """Base class for boundary resolution errors."""


class ProviderError(BoundaryError):
    """Candidate search failed or timed out."""


class InvariantViolation(BoundaryError):
    """A write would break the single-selection or immutability rules."""


class MalformedGeometry(BoundaryError):
    """Geometry is missing or has non-numeric positions."""


class ExportFailure(BoundaryError):
    """Geometry could not be serialized for download."""


class BoundaryNotFound(BoundaryError):
    """No stored boundary matches the request."""
