"""Port interfaces for the Handoff fulfillment core.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - OrderStorePort: Persist and query orders, refunds and capacity
   - NotificationPort: Emit domain events (SLA breaches, refund reviews)

2. **Driving Ports** (adapters/external systems call into core)
   - IngestionPort: Entry point for "order submitted" messages
   - FulfillmentPort: Staff and runner order operations plus reads
   - RefundPort: Refund submission and review
   - SLAMonitorPort: Tick entry point for the background scheduler
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime

from .models import (
    CapacitySettings,
    DomainEvent,
    Order,
    OrderFilter,
    OrderSubmission,
    OrderTab,
    RefundRequest,
    RefundStatus,
    SLASnapshot,
    StoreStatus,
)
from .policy import Actor
from .reason_codes import ReasonCategory


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class OrderStorePort(ABC):
    """Port for the canonical order and refund collections.

    Pure CRUD and query; no policy lives here. Implementations must not
    hand out references to their internal state: a caller mutating a
    returned Order must not change what is stored until save_order().

    Implementations must handle:
    - Concurrent read/write access from many coroutines
    - Round-tripping every Order/RefundRequest field unchanged
    """

    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None:
        """Retrieve an order by ID.

        Args:
            order_id: Opaque order identifier.

        Returns:
            Order if found, None otherwise.
        """

    @abstractmethod
    async def get_order_by_number(self, shop_id: str, order_number: str) -> Order | None:
        """Retrieve an order by its human-readable number within a merchant."""

    @abstractmethod
    async def save_order(self, order: Order) -> None:
        """Insert or replace an order.

        Args:
            order: Order to persist. Its id is the key.
        """

    @abstractmethod
    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        """List orders matching a filter, newest first.

        Args:
            order_filter: Optional filter. None returns every order.

        Returns:
            List of orders in descending created_at order.
        """

    @abstractmethod
    async def get_refund(self, refund_id: str) -> RefundRequest | None:
        """Retrieve a refund request by ID."""

    @abstractmethod
    async def save_refund(self, refund: RefundRequest) -> None:
        """Insert or replace a refund request."""

    @abstractmethod
    async def list_refunds(
        self,
        order_id: str | None = None,
        status: RefundStatus | None = None,
    ) -> list[RefundRequest]:
        """List refund requests, newest first, optionally filtered."""

    @abstractmethod
    async def get_capacity(self) -> CapacitySettings:
        """Return the merchant's capacity settings (defaults if never saved)."""

    @abstractmethod
    async def save_capacity(self, capacity: CapacitySettings) -> None:
        """Persist the merchant's capacity settings."""

    @abstractmethod
    async def get_store_status(self) -> StoreStatus:
        """Return the merchant's store status (OPEN if never saved)."""

    @abstractmethod
    async def save_store_status(self, status: StoreStatus) -> None:
        """Persist the merchant's store status."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class NotificationPort(ABC):
    """Port for emitting domain events to external collaborators.

    The core decides WHAT happened; adapters decide how (and whether)
    anyone is alerted. Adapters should raise on delivery failure; the
    core logs and continues.
    """

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Emit a single domain event.

        Args:
            event: The event to emit.

        Raises:
            Exception: If the event could not be delivered.
        """

    async def close(self) -> None:
        """Release any resources held by the adapter."""


# ============================================================================
# DRIVING PORTS (External systems call into core)
# ============================================================================


class IngestionPort(ABC):
    """Port for order sources (POS, passenger app, demo generator)."""

    @abstractmethod
    async def submit_order(self, actor: Actor, submission: OrderSubmission) -> Order:
        """Admit a newly submitted order on behalf of an order source.

        Returns:
            The persisted Order in NEW status with SLA deadlines set.

        Raises:
            PermissionDenied: The actor may not submit orders.
            StoreClosed, NotAccepting, CapacityExceeded: Admission denied.
            ValidationError: Payload is malformed or duplicates an order number.
        """


class FulfillmentPort(ABC):
    """Port for staff/runner order operations and the read surface.

    Every mutating method takes the calling Actor first and raises
    PermissionDenied before doing anything else if the actor lacks the
    capability.
    """

    @abstractmethod
    async def accept_order(self, actor: Actor, order_id: str) -> Order:
        """NEW → ACCEPTED."""

    @abstractmethod
    async def reject_order(
        self, actor: Actor, order_id: str, reason_code: str, notes: str | None = None
    ) -> Order:
        """NEW → REJECTED with a merchant_reject reason code."""

    @abstractmethod
    async def start_preparing(self, actor: Actor, order_id: str) -> Order:
        """ACCEPTED → PREPARING."""

    @abstractmethod
    async def mark_ready(self, actor: Actor, order_id: str) -> Order:
        """PREPARING → READY."""

    @abstractmethod
    async def mark_picked_up(
        self, actor: Actor, order_id: str, runner_id: str, runner_name: str
    ) -> Order:
        """READY → IN_TRANSIT, recording the runner."""

    @abstractmethod
    async def mark_delivered(self, actor: Actor, order_id: str) -> Order:
        """IN_TRANSIT → DELIVERED."""

    @abstractmethod
    async def fail_order(
        self,
        actor: Actor,
        order_id: str,
        reason_code: str,
        notes: str | None = None,
        category: ReasonCategory = ReasonCategory.RUNNER_FAIL,
    ) -> Order:
        """Any non-terminal status → FAILED."""

    @abstractmethod
    async def update_capacity(
        self,
        actor: Actor,
        max_queue_length: int | None = None,
        avg_prep_time_minutes: int | None = None,
        is_accepting_orders: bool | None = None,
        busy_auto_throttle_at: int | None = None,
    ) -> CapacitySettings:
        """Change merchant capacity settings."""

    @abstractmethod
    async def set_store_status(
        self,
        actor: Actor,
        status: StoreStatus,
        reason: str | None = None,
        estimated_reopen: datetime | None = None,
    ) -> StoreStatus:
        """Open, throttle (busy) or close the store.

        The close reason and estimated reopen time are kept on the
        capacity settings while the store is closed.
        """

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        """Return an order or raise NotFound."""

    @abstractmethod
    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        """List orders, newest first."""

    @abstractmethod
    async def count_by_tab(self) -> Mapping[OrderTab, int]:
        """Count orders per inbox tab."""

    @abstractmethod
    async def get_capacity(self) -> CapacitySettings:
        """Return current capacity settings."""

    @abstractmethod
    async def get_store_status(self) -> StoreStatus:
        """Return the current store status."""

    @abstractmethod
    async def snapshot_sla(self, order_id: str) -> SLASnapshot | None:
        """Return the running SLA clock for an order, or None if unmonitored."""


class RefundPort(ABC):
    """Port for the refund approval workflow."""

    @abstractmethod
    async def submit_refund(
        self,
        actor: Actor,
        order_id: str,
        amount: float,
        reason: str,
        notes: str | None = None,
    ) -> RefundRequest:
        """Submit a refund; auto-approved at or below the ops threshold."""

    @abstractmethod
    async def approve_refund(self, actor: Actor, refund_id: str) -> RefundRequest:
        """Approve a pending refund."""

    @abstractmethod
    async def decline_refund(self, actor: Actor, refund_id: str) -> RefundRequest:
        """Decline a pending refund."""

    @abstractmethod
    async def get_refund(self, refund_id: str) -> RefundRequest:
        """Return a refund or raise NotFound."""

    @abstractmethod
    async def list_refunds(
        self, order_id: str | None = None, status: RefundStatus | None = None
    ) -> list[RefundRequest]:
        """List refunds, newest first."""


class SLAMonitorPort(ABC):
    """Port driven by the background scheduler."""

    @abstractmethod
    async def tick(self) -> list[DomainEvent]:
        """Advance all SLA clocks to now and emit breach events.

        Returns:
            The breach events emitted during this tick.
        """
