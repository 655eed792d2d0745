"""Core domain logic for the Handoff fulfillment system.

This package contains zero external dependencies and represents
the pure business logic of the application: the order state machine,
SLA clocks, admission control and the refund workflow. All storage,
transport and notification concerns are handled by the adapters package.
"""

from .errors import (
    AdmissionDenied,
    CapacityExceeded,
    FulfillmentError,
    InvalidTransition,
    NotAccepting,
    NotFound,
    PermissionDenied,
    StoreClosed,
    ValidationError,
)
from .models import (
    CapacitySettings,
    DeadlineKind,
    DomainEvent,
    EventKind,
    ItemStatus,
    Modifier,
    Order,
    OrderEvent,
    OrderFilter,
    OrderItem,
    OrderStatus,
    OrderSubmission,
    OrderTab,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
    SLASnapshot,
    StoreStatus,
    UrgencyLevel,
)
from .policy import SYSTEM_ACTOR, Actor, Capability, PolicyGate, StaffRole

__all__ = [
    "Actor",
    "AdmissionDenied",
    "Capability",
    "CapacityExceeded",
    "CapacitySettings",
    "DeadlineKind",
    "DomainEvent",
    "EventKind",
    "FulfillmentError",
    "InvalidTransition",
    "ItemStatus",
    "Modifier",
    "NotAccepting",
    "NotFound",
    "Order",
    "OrderEvent",
    "OrderFilter",
    "OrderItem",
    "OrderStatus",
    "OrderSubmission",
    "OrderTab",
    "PaymentStatus",
    "PermissionDenied",
    "PolicyGate",
    "RefundRequest",
    "RefundStatus",
    "SLASnapshot",
    "SYSTEM_ACTOR",
    "StaffRole",
    "StoreClosed",
    "StoreStatus",
    "UrgencyLevel",
    "ValidationError",
]
