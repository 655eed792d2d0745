"""Order state machine.

Owns the transition graph and is the only code path that changes an
order's status, fulfillment timestamps and event log. Transitions on
one order are serialized by a per-order lock; different orders proceed
independently.

Transition Graph:
    NEW → ACCEPTED → PREPARING → READY → IN_TRANSIT → DELIVERED
    NEW → REJECTED
    any non-terminal → FAILED
    any fulfillment status → REFUND_REQUESTED
    REFUND_REQUESTED → REFUNDED | FAILED | (status before the refund, on decline)
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from .capacity import CapacityLedger
from .errors import InvalidTransition, NotFound
from .models import (
    Clock,
    DomainEvent,
    EventKind,
    FULFILLMENT_STATUSES,
    Order,
    OrderEvent,
    OrderStatus,
    utc_now,
)
from .ports import NotificationPort, OrderStorePort
from .sla import SLAClockEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """A named edge type; timestamp_field is set the first time it fires."""

    name: str
    target: OrderStatus | None
    timestamp_field: str | None = None


ACCEPT = Transition("accept", OrderStatus.ACCEPTED, "accepted_at")
REJECT = Transition("reject", OrderStatus.REJECTED)
START_PREPARING = Transition(
    "start_preparing", OrderStatus.PREPARING, "preparing_started_at"
)
MARK_READY = Transition("mark_ready", OrderStatus.READY, "ready_at")
PICK_UP = Transition("pick_up", OrderStatus.IN_TRANSIT)
DELIVER = Transition("deliver", OrderStatus.DELIVERED, "delivered_at")
FAIL = Transition("fail", OrderStatus.FAILED)
REQUEST_REFUND = Transition("refund_requested", OrderStatus.REFUND_REQUESTED)
APPROVE_REFUND = Transition("refund_approved", OrderStatus.REFUNDED)
# Target is resolved from order.status_before_refund.
DECLINE_REFUND = Transition("refund_declined", None)

_S = OrderStatus

ALLOWED_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = MappingProxyType(
    {
        _S.NEW: frozenset({_S.ACCEPTED, _S.REJECTED, _S.FAILED, _S.REFUND_REQUESTED}),
        _S.ACCEPTED: frozenset({_S.PREPARING, _S.FAILED, _S.REFUND_REQUESTED}),
        _S.PREPARING: frozenset({_S.READY, _S.FAILED, _S.REFUND_REQUESTED}),
        _S.READY: frozenset({_S.IN_TRANSIT, _S.FAILED, _S.REFUND_REQUESTED}),
        _S.IN_TRANSIT: frozenset({_S.DELIVERED, _S.FAILED, _S.REFUND_REQUESTED}),
        _S.REFUND_REQUESTED: frozenset({_S.REFUNDED, _S.FAILED}),
        _S.DELIVERED: frozenset(),
        _S.REJECTED: frozenset(),
        _S.FAILED: frozenset(),
        _S.REFUNDED: frozenset(),
    }
)

# Reaching any of these frees the order's queue slot (once).
QUEUE_RELEASE_STATUSES: frozenset[OrderStatus] = frozenset(
    {_S.READY, _S.DELIVERED, _S.REJECTED, _S.FAILED, _S.REFUNDED}
)


def is_allowed(order: Order, target: OrderStatus) -> bool:
    """Is target a legal next status for this order in the fixed graph?

    The return edge out of REFUND_REQUESTED is not part of the graph;
    only DECLINE_REFUND may take it (see resolve_target).
    """
    return target in ALLOWED_TRANSITIONS[order.status]


def resolve_target(order: Order, transition: Transition) -> OrderStatus | None:
    """Status the transition would move this order to, or None if illegal."""
    if transition is DECLINE_REFUND:
        if order.status != _S.REFUND_REQUESTED:
            return None
        return order.status_before_refund
    if transition.target is None or not is_allowed(order, transition.target):
        return None
    return transition.target


@dataclass
class OrderEdit:
    """A locked, in-memory edit of one order.

    Changes become visible to other callers only when the enclosing
    OrderStateMachine.edit() block exits without raising.
    """

    order: Order
    clock: Clock
    previous_status: OrderStatus
    events: list[OrderEvent] = field(default_factory=list)
    release_queue_slot: bool = False

    def apply(
        self,
        transition: Transition,
        actor: str,
        details: str | None = None,
        updates: Mapping[str, Any] | None = None,
    ) -> OrderEvent:
        """Validate and apply a status transition.

        Validation happens before any field is touched, so a rejected
        transition leaves the order exactly as it was.

        Raises:
            InvalidTransition: If the edge is not in the graph.
        """
        order = self.order
        target = resolve_target(order, transition)
        if target is None:
            raise InvalidTransition(
                f"Cannot {transition.name.replace('_', ' ')} order "
                f"{order.order_number} in {order.status.value} status"
            )
        if (
            transition.timestamp_field is not None
            and getattr(order, transition.timestamp_field) is not None
        ):
            raise InvalidTransition(
                f"Order {order.order_number} already has {transition.timestamp_field} set"
            )

        now = self._event_time()
        if target == _S.REFUND_REQUESTED:
            order.status_before_refund = order.status
        elif order.status == _S.REFUND_REQUESTED:
            order.status_before_refund = None
        order.status = target
        if transition.timestamp_field is not None:
            setattr(order, transition.timestamp_field, now)
        if target in QUEUE_RELEASE_STATUSES and order.holds_queue_slot:
            order.holds_queue_slot = False
            self.release_queue_slot = True
        for name, value in (updates or {}).items():
            setattr(order, name, value)
        return self._append(actor, transition.name, details, now)

    def record(
        self,
        actor: str,
        action: str,
        details: str | None = None,
        updates: Mapping[str, Any] | None = None,
    ) -> OrderEvent:
        """Log a non-status change (e.g. a refund on a delivered order)."""
        now = self._event_time()
        for name, value in (updates or {}).items():
            setattr(self.order, name, value)
        return self._append(actor, action, details, now)

    def _event_time(self) -> datetime:
        now = self.clock()
        last = self.order.last_event_at
        # Keep the log non-decreasing even if the wall clock steps back.
        if last is not None and now < last:
            return last
        return now

    def _append(
        self, actor: str, action: str, details: str | None, now: datetime
    ) -> OrderEvent:
        event = OrderEvent(timestamp=now, actor=actor, action=action, details=details)
        self.order.event_log.append(event)
        self.order.version += 1
        self.events.append(event)
        return event


class OrderStateMachine:
    """Serializes and persists order transitions."""

    def __init__(
        self,
        store: OrderStorePort,
        ledger: CapacityLedger | None = None,
        sla: SLAClockEngine | None = None,
        notification: NotificationPort | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize the state machine.

        Args:
            store: OrderStorePort implementation for persistence.
            ledger: Capacity ledger; queue slots are released through it.
            sla: SLA engine kept in step with each order's status.
            notification: Optional port for transition events.
            clock: Source of event-log timestamps.
        """
        self.store = store
        self.ledger = ledger
        self.sla = sla
        self.notification = notification
        self.clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        return lock

    @asynccontextmanager
    async def edit(self, order_id: str) -> AsyncIterator[OrderEdit]:
        """Lock an order, load it, and commit its changes on clean exit.

        Raises:
            NotFound: If the order does not exist.
        """
        async with self._lock_for(order_id):
            order = await self.store.get_order(order_id)
            if order is None:
                raise NotFound(f"Order {order_id} not found")
            edit = OrderEdit(order=order, clock=self.clock, previous_status=order.status)
            yield edit
            if edit.events:
                await self._commit(edit)

    async def transition(
        self,
        order_id: str,
        transition: Transition,
        actor: str,
        details: str | None = None,
        updates: Mapping[str, Any] | None = None,
    ) -> Order:
        """Apply a single transition and return the committed order."""
        async with self.edit(order_id) as edit:
            edit.apply(transition, actor, details, updates)
        return edit.order

    async def _commit(self, edit: OrderEdit) -> None:
        order = edit.order
        await self.store.save_order(order)

        if edit.release_queue_slot and self.ledger is not None:
            await self.ledger.release(order.id)
        if self.sla is not None:
            self.sla.sync(order)

        for event in edit.events:
            logger.info(
                f"Order {order.order_number}: {event.action} by {event.actor} "
                f"({edit.previous_status.value} → {order.status.value})",
                extra={
                    "order_id": order.id,
                    "action": event.action,
                    "actor": event.actor,
                    "version": order.version,
                },
            )

        if self.notification is None or order.status == edit.previous_status:
            return
        try:
            await self.notification.publish(
                DomainEvent(
                    kind=EventKind.ORDER_TRANSITIONED,
                    order_id=order.id,
                    order_number=order.order_number,
                    occurred_at=edit.events[-1].timestamp,
                    attributes={
                        "from": edit.previous_status.value,
                        "to": order.status.value,
                        "actions": [e.action for e in edit.events],
                        "in_pipeline": order.status in FULFILLMENT_STATUSES,
                    },
                )
            )
        except Exception as e:
            # Log notification failure but don't revert the committed transition
            logger.error(
                f"Failed to publish transition for order {order.order_number}: {e}",
                exc_info=True,
            )
