"""Domain models for the Handoff fulfillment core.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

Clock: TypeAlias = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock used by the core services."""
    return datetime.now(timezone.utc)


def money_equal(a: float, b: float) -> bool:
    """Compare two monetary amounts to the cent."""
    return math.isclose(a, b, abs_tol=0.005)


def money_exceeds(amount: float, limit: float) -> bool:
    """Is amount above limit by more than float rounding error?"""
    return amount - limit > 1e-9


class OrderStatus(Enum):
    """Lifecycle states for an order.

    Success path: NEW → ACCEPTED → PREPARING → READY → IN_TRANSIT → DELIVERED.
    REJECTED, FAILED and REFUNDED are terminal failure states;
    REFUND_REQUESTED is a holding state while a refund is open.
    """

    NEW = "new"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    FAILED = "failed"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"


TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.REJECTED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    }
)

# Statuses that still occupy the kitchen pipeline.
FULFILLMENT_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.NEW,
        OrderStatus.ACCEPTED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.IN_TRANSIT,
    }
)


class OrderTab(Enum):
    """Inbox tabs used by staff tooling to group orders."""

    NEW = "new"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    ISSUES = "issues"


TAB_STATUSES: Mapping[OrderTab, frozenset[OrderStatus]] = MappingProxyType(
    {
        OrderTab.NEW: frozenset({OrderStatus.NEW}),
        OrderTab.PREPARING: frozenset({OrderStatus.ACCEPTED, OrderStatus.PREPARING}),
        OrderTab.READY: frozenset({OrderStatus.READY}),
        OrderTab.COMPLETED: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED}),
        OrderTab.ISSUES: frozenset(
            {
                OrderStatus.REJECTED,
                OrderStatus.FAILED,
                OrderStatus.REFUND_REQUESTED,
                OrderStatus.REFUNDED,
            }
        ),
    }
)


class ItemStatus(Enum):
    """Availability of a single line item."""

    AVAILABLE = "available"
    OUT_OF_STOCK = "out_of_stock"
    SUBSTITUTED = "substituted"
    PENDING = "pending"


class PaymentStatus(Enum):
    """Recorded payment state. The core never captures or settles payment."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(Enum):
    """Refund state, used both on orders and on refund requests.

    NONE only appears on orders that never had a refund submitted.
    """

    NONE = "none"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DECLINED = "declined"


class StoreStatus(Enum):
    """Merchant store status.

    CLOSED blocks all admissions; BUSY is a throttle signal only.
    """

    OPEN = "open"
    BUSY = "busy"
    CLOSED = "closed"


class UrgencyLevel(Enum):
    """Qualitative bucket for the time remaining to a deadline."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class DeadlineKind(Enum):
    """Which SLA a clock is measuring."""

    ACCEPT = "accept"
    DELIVER = "deliver"


class EventKind(Enum):
    """Domain events emitted through the NotificationPort."""

    ORDER_ADMITTED = "order_admitted"
    ADMISSION_DENIED = "admission_denied"
    ORDER_TRANSITIONED = "order_transitioned"
    SLA_BREACHED = "sla_breached"
    REFUND_PENDING_APPROVAL = "refund_pending_approval"
    REFUND_RESOLVED = "refund_resolved"


@dataclass(frozen=True)
class Modifier:
    """A modifier applied to a line item, with its own price delta."""

    name: str
    price: float = 0.0


@dataclass(frozen=True)
class OrderItem:
    """A single line item belonging to one order."""

    id: str
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    modifiers: tuple[Modifier, ...] = ()
    notes: str | None = None
    status: ItemStatus = ItemStatus.PENDING

    def __post_init__(self) -> None:
        """Validate line item invariants on creation."""
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"unit_price must be >= 0, got {self.unit_price}")
        if isinstance(self.modifiers, list):
            object.__setattr__(self, "modifiers", tuple(self.modifiers))

    @property
    def line_total(self) -> float:
        modifier_total = sum(m.price for m in self.modifiers)
        return self.quantity * (self.unit_price + modifier_total)


@dataclass(frozen=True)
class OrderEvent:
    """One entry in an order's append-only event log."""

    timestamp: datetime
    actor: str
    action: str
    details: str | None = None


@dataclass(frozen=True)
class OrderSubmission:
    """The "order submitted" payload accepted from an external order source.

    Carries the full order shape minus the fields the core assigns:
    id, SLA deadlines and the initial status.
    """

    order_number: str
    shop_id: str
    items: tuple[OrderItem, ...]
    subtotal: float
    total: float
    destination_gate: str
    destination_zone: str = ""
    discount: float = 0.0
    service_fee: float = 0.0
    currency: str = "AED"
    passenger_alias: str = ""
    flight_number: str | None = None
    payment_method: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PAID
    notes: str | None = None
    coupon_code: str | None = None
    is_priority: bool = False

    def __post_init__(self) -> None:
        """Validate payload invariants on creation."""
        if isinstance(self.items, list):
            object.__setattr__(self, "items", tuple(self.items))
        if not self.order_number or not self.order_number.strip():
            raise ValueError("order_number must be a non-empty string")
        if not self.items:
            raise ValueError("an order must contain at least one item")
        if self.subtotal < 0 or self.discount < 0 or self.service_fee < 0:
            raise ValueError("monetary amounts must be non-negative")
        expected = self.subtotal - self.discount + self.service_fee
        if not money_equal(self.total, expected):
            raise ValueError(
                f"total {self.total:.2f} does not equal subtotal - discount + "
                f"service_fee ({expected:.2f})"
            )


@dataclass
class Order:
    """A merchant order moving through the fulfillment lifecycle.

    Mutated only by the OrderStateMachine (status, timestamps, event log)
    and the RefundWorkflow (refund fields). Orders are never deleted.
    """

    id: str
    order_number: str
    shop_id: str
    status: OrderStatus
    created_at: datetime
    sla_accept_by: datetime
    sla_deliver_by: datetime
    items: tuple[OrderItem, ...]
    subtotal: float
    discount: float
    service_fee: float
    total: float
    destination_gate: str
    destination_zone: str = ""
    currency: str = "AED"
    passenger_alias: str = ""
    flight_number: str | None = None
    payment_method: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PAID
    notes: str | None = None
    coupon_code: str | None = None
    is_priority: bool = False
    accepted_at: datetime | None = None
    preparing_started_at: datetime | None = None
    ready_at: datetime | None = None
    delivered_at: datetime | None = None
    reject_reason: str | None = None
    reject_notes: str | None = None
    refund_status: RefundStatus = RefundStatus.NONE
    refund_amount: float | None = None
    refund_reason: str | None = None
    runner_id: str | None = None
    runner_name: str | None = None
    status_before_refund: OrderStatus | None = None
    holds_queue_slot: bool = True
    version: int = 0
    event_log: list[OrderEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate order invariants on creation or deserialization."""
        if isinstance(self.items, list):
            self.items = tuple(self.items)
        if not money_equal(self.total, self.subtotal - self.discount + self.service_fee):
            raise ValueError(
                f"Order {self.order_number}: total must equal "
                "subtotal - discount + service_fee"
            )

    @property
    def destination(self) -> str:
        if self.destination_zone:
            return f"{self.destination_gate} ({self.destination_zone})"
        return self.destination_gate

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_event_at(self) -> datetime | None:
        return self.event_log[-1].timestamp if self.event_log else None

    @classmethod
    def from_submission(
        cls,
        order_id: str,
        submission: OrderSubmission,
        created_at: datetime,
        sla_accept_by: datetime,
        sla_deliver_by: datetime,
    ) -> "Order":
        """Build a NEW order from an admitted submission."""
        return cls(
            id=order_id,
            order_number=submission.order_number,
            shop_id=submission.shop_id,
            status=OrderStatus.NEW,
            created_at=created_at,
            sla_accept_by=sla_accept_by,
            sla_deliver_by=sla_deliver_by,
            items=submission.items,
            subtotal=submission.subtotal,
            discount=submission.discount,
            service_fee=submission.service_fee,
            total=submission.total,
            destination_gate=submission.destination_gate,
            destination_zone=submission.destination_zone,
            currency=submission.currency,
            passenger_alias=submission.passenger_alias,
            flight_number=submission.flight_number,
            payment_method=submission.payment_method,
            payment_status=submission.payment_status,
            notes=submission.notes,
            coupon_code=submission.coupon_code,
            is_priority=submission.is_priority,
        )


@dataclass
class RefundRequest:
    """A refund request against a single order.

    Created by the RefundWorkflow and resolved only through its
    approve/decline operations.
    """

    id: str
    order_id: str
    order_number: str
    amount: float
    order_total: float
    reason: str
    status: RefundStatus
    requires_ops_approval: bool
    requested_by: str
    requested_at: datetime
    currency: str = "AED"
    notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate refund invariants on creation or deserialization."""
        if self.status == RefundStatus.NONE:
            raise ValueError("a refund request cannot have status 'none'")
        if not 0 < self.amount or money_exceeds(self.amount, self.order_total):
            raise ValueError(
                f"refund amount must satisfy 0 < amount <= {self.order_total:.2f}, "
                f"got {self.amount}"
            )

    @property
    def refund_type(self) -> str:
        return "full" if money_equal(self.amount, self.order_total) else "partial"

    @property
    def is_resolved(self) -> bool:
        return self.status != RefundStatus.PENDING_APPROVAL


@dataclass
class CapacitySettings:
    """Per-merchant capacity used by admission control.

    close_reason and estimated_reopen describe the current closure and
    are only set while the store is CLOSED.
    """

    current_queue_length: int = 0
    max_queue_length: int = 15
    avg_prep_time_minutes: int = 10
    is_accepting_orders: bool = True
    # Queue length at which staff should switch the store to BUSY.
    busy_auto_throttle_at: int = 12
    close_reason: str | None = None
    estimated_reopen: datetime | None = None

    def __post_init__(self) -> None:
        """Validate capacity invariants."""
        if self.current_queue_length < 0:
            raise ValueError("current_queue_length must be >= 0")
        if self.max_queue_length < 0:
            raise ValueError("max_queue_length must be >= 0")
        if self.busy_auto_throttle_at < 0:
            raise ValueError("busy_auto_throttle_at must be >= 0")

    @property
    def remaining(self) -> int:
        return max(0, self.max_queue_length - self.current_queue_length)

    @property
    def should_throttle(self) -> bool:
        """Has the queue reached the busy threshold?"""
        return self.current_queue_length >= self.busy_auto_throttle_at


@dataclass(frozen=True)
class SLASnapshot:
    """Point-in-time view of one SLA clock."""

    seconds_left: int
    is_expired: bool
    percentage_left: float
    urgency_level: UrgencyLevel
    kind: DeadlineKind = DeadlineKind.ACCEPT


@dataclass(frozen=True)
class DomainEvent:
    """A fact emitted by the core for external collaborators.

    Delivery (push, email, pager) is the collaborator's concern.
    """

    kind: EventKind
    order_id: str | None
    order_number: str | None
    occurred_at: datetime
    attributes: dict[str, Any] | MappingProxyType[str, Any] = field(
        default_factory=dict
    )  # converted to proxy in __post_init__

    def __post_init__(self) -> None:
        """Convert attributes dict to read-only proxy."""
        if isinstance(self.attributes, dict):
            object.__setattr__(
                self, "attributes", MappingProxyType(self.attributes)
            )


@dataclass(frozen=True)
class OrderFilter:
    """Query parameters for listing orders. Unset fields match everything."""

    statuses: frozenset[OrderStatus] | None = None
    tab: OrderTab | None = None
    refund_status: RefundStatus | None = None
    shop_id: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    def matches(self, order: Order) -> bool:
        if self.statuses is not None and order.status not in self.statuses:
            return False
        if self.tab is not None and order.status not in TAB_STATUSES[self.tab]:
            return False
        if self.refund_status is not None and order.refund_status != self.refund_status:
            return False
        if self.shop_id is not None and order.shop_id != self.shop_id:
            return False
        if self.created_after is not None and order.created_at < self.created_after:
            return False
        if self.created_before is not None and order.created_at >= self.created_before:
            return False
        return True
