"""
Allocation Error Taxonomy.

    AllocationError
    ├── ValidationError      malformed request, answered with HTTP 400
    ├── TwinNotFoundError    twin absent in the store, recovered by the resolver
    ├── TwinStoreError       any other store failure, answered with HTTP 500
    └── ConfigurationError   missing or invalid settings, answered with HTTP 500
"""


class AllocationError(Exception):
    """Base class for all errors raised while allocating a device."""
    pass


class ValidationError(AllocationError):
    """
    Raised when a DPS allocation request is missing required fields.

    Attributes:
        reason: Short machine-readable reason (e.g. "missing registration id")
        message: Human-readable message returned to DPS
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class TwinNotFoundError(AllocationError):
    """Raised by a twin store when no twin exists with the requested id."""

    def __init__(self, twin_id: str):
        super().__init__(f"Digital twin '{twin_id}' not found")
        self.twin_id = twin_id


class TwinStoreError(AllocationError):
    """Raised by a twin store for any failure other than not-found."""
    pass


class ConfigurationError(AllocationError):
    """Raised when required configuration is missing."""
    pass
