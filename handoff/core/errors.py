"""Typed error taxonomy for the fulfillment core.

Every operation either returns its result or raises one of these.
Nothing is retried inside the core; retrying is a caller concern.
"""


class FulfillmentError(Exception):
    """Base class for all errors raised by the core."""

    code = "fulfillment_error"


class ValidationError(FulfillmentError, ValueError):
    """Raised when input fails validation (missing notes, bad amount, unknown code)."""

    code = "validation_error"


class InvalidTransition(FulfillmentError):
    """Raised for an illegal state-machine edge or re-resolving a refund."""

    code = "invalid_transition"


class AdmissionDenied(FulfillmentError):
    """Base class for admission-control denials."""

    code = "admission_denied"


class StoreClosed(AdmissionDenied):
    """Raised when the merchant store is closed."""

    code = "store_closed"


class NotAccepting(AdmissionDenied):
    """Raised when the merchant has paused order intake."""

    code = "not_accepting"


class CapacityExceeded(AdmissionDenied):
    """Raised when the merchant queue is full."""

    code = "capacity_exceeded"


class NotFound(FulfillmentError, LookupError):
    """Raised when an order or refund id is unknown."""

    code = "not_found"


class PermissionDenied(FulfillmentError):
    """Raised when the caller lacks the capability for an operation."""

    code = "permission_denied"


__all__ = [
    "AdmissionDenied",
    "CapacityExceeded",
    "FulfillmentError",
    "InvalidTransition",
    "NotAccepting",
    "NotFound",
    "PermissionDenied",
    "StoreClosed",
    "ValidationError",
]
