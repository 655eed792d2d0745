"""Order service: implements FulfillmentPort for staff and runner clients.

Each mutating operation runs the policy gate first, validates its
input, and then performs exactly one state-machine transition.
"""

import logging
from collections.abc import Mapping
from datetime import datetime

from .capacity import CapacityLedger
from .errors import NotFound, ValidationError
from .models import (
    CapacitySettings,
    Order,
    OrderFilter,
    OrderTab,
    SLASnapshot,
    StoreStatus,
    TAB_STATUSES,
)
from .policy import Actor, Capability, PolicyGate
from .ports import FulfillmentPort, OrderStorePort
from .reason_codes import ReasonCategory, describe, validate_reason
from .sla import MONITORED_STATUSES, SLAClockEngine
from .state_machine import (
    ACCEPT,
    DELIVER,
    FAIL,
    MARK_READY,
    PICK_UP,
    REJECT,
    START_PREPARING,
    OrderStateMachine,
)

logger = logging.getLogger(__name__)

FAIL_CATEGORIES = frozenset({ReasonCategory.RUNNER_FAIL, ReasonCategory.OPS_OVERRIDE})


class OrderService(FulfillmentPort):
    """Core implementation of FulfillmentPort."""

    def __init__(
        self,
        store: OrderStorePort,
        machine: OrderStateMachine,
        ledger: CapacityLedger,
        sla: SLAClockEngine,
        policy: PolicyGate | None = None,
    ):
        """Initialize the order service.

        Args:
            store: OrderStorePort implementation for reads.
            machine: State machine performing all transitions.
            ledger: Capacity ledger for capacity and store-status changes.
            sla: SLA engine backing snapshot_sla().
            policy: Capability gate (defaults to the built-in role map).
        """
        self.store = store
        self.machine = machine
        self.ledger = ledger
        self.sla = sla
        self.policy = policy or PolicyGate()

    async def accept_order(self, actor: Actor, order_id: str) -> Order:
        self.policy.require(actor, Capability.ORDERS_ACCEPT)
        return await self.machine.transition(
            order_id, ACCEPT, actor.name, "Order accepted"
        )

    async def reject_order(
        self, actor: Actor, order_id: str, reason_code: str, notes: str | None = None
    ) -> Order:
        """Reject a NEW order with a merchant_reject reason.

        Raises:
            ValidationError: Unknown reason code, or notes missing where required.
            InvalidTransition: Order is not NEW.
        """
        self.policy.require(actor, Capability.ORDERS_REJECT)
        reason = validate_reason(ReasonCategory.MERCHANT_REJECT, reason_code, notes)
        return await self.machine.transition(
            order_id,
            REJECT,
            actor.name,
            describe(reason, notes),
            updates={"reject_reason": reason.code, "reject_notes": notes or None},
        )

    async def start_preparing(self, actor: Actor, order_id: str) -> Order:
        self.policy.require(actor, Capability.ORDERS_PREPARE)
        return await self.machine.transition(
            order_id, START_PREPARING, actor.name, "Preparation started"
        )

    async def mark_ready(self, actor: Actor, order_id: str) -> Order:
        self.policy.require(actor, Capability.ORDERS_READY)
        return await self.machine.transition(
            order_id, MARK_READY, actor.name, "Ready for pickup"
        )

    async def mark_picked_up(
        self, actor: Actor, order_id: str, runner_id: str, runner_name: str
    ) -> Order:
        self.policy.require(actor, Capability.ORDERS_HANDOFF)
        if not runner_id or not runner_id.strip():
            raise ValidationError("runner_id is required for pickup")
        if not runner_name or not runner_name.strip():
            raise ValidationError("runner_name is required for pickup")
        return await self.machine.transition(
            order_id,
            PICK_UP,
            actor.name,
            f"Picked up by {runner_name}",
            updates={"runner_id": runner_id, "runner_name": runner_name},
        )

    async def mark_delivered(self, actor: Actor, order_id: str) -> Order:
        self.policy.require(actor, Capability.ORDERS_DELIVER)
        return await self.machine.transition(
            order_id, DELIVER, actor.name, "Delivered to passenger"
        )

    async def fail_order(
        self,
        actor: Actor,
        order_id: str,
        reason_code: str,
        notes: str | None = None,
        category: ReasonCategory = ReasonCategory.RUNNER_FAIL,
    ) -> Order:
        """Move a non-terminal order to FAILED.

        Raises:
            ValidationError: Category is not runner_fail/ops_override, or the
                reason is unknown or missing required notes.
            InvalidTransition: Order is already terminal.
        """
        self.policy.require(actor, Capability.ORDERS_FAIL)
        if category not in FAIL_CATEGORIES:
            raise ValidationError(
                f"Orders can only be failed with runner_fail or ops_override "
                f"reasons, not {category.value}"
            )
        reason = validate_reason(category, reason_code, notes)
        return await self.machine.transition(
            order_id, FAIL, actor.name, describe(reason, notes)
        )

    async def update_capacity(
        self,
        actor: Actor,
        max_queue_length: int | None = None,
        avg_prep_time_minutes: int | None = None,
        is_accepting_orders: bool | None = None,
        busy_auto_throttle_at: int | None = None,
    ) -> CapacitySettings:
        self.policy.require(actor, Capability.CAPACITY_EDIT)
        if max_queue_length is not None and max_queue_length < 0:
            raise ValidationError("max_queue_length must be >= 0")
        if busy_auto_throttle_at is not None and busy_auto_throttle_at < 0:
            raise ValidationError("busy_auto_throttle_at must be >= 0")
        if avg_prep_time_minutes is not None and avg_prep_time_minutes <= 0:
            raise ValidationError("avg_prep_time_minutes must be positive")

        capacity = await self.ledger.update(
            max_queue_length=max_queue_length,
            avg_prep_time_minutes=avg_prep_time_minutes,
            is_accepting_orders=is_accepting_orders,
            busy_auto_throttle_at=busy_auto_throttle_at,
        )
        logger.info(
            f"Capacity updated by {actor.name}: "
            f"{capacity.current_queue_length}/{capacity.max_queue_length}, "
            f"accepting={capacity.is_accepting_orders}",
            extra={"actor_id": actor.id},
        )
        return capacity

    async def set_store_status(
        self,
        actor: Actor,
        status: StoreStatus,
        reason: str | None = None,
        estimated_reopen: datetime | None = None,
    ) -> StoreStatus:
        self.policy.require(actor, Capability.CAPACITY_EDIT)
        reason = reason.strip() if reason else None
        await self.ledger.set_store_status(status, reason, estimated_reopen)
        logger.info(
            f"Store status set to {status.value} by {actor.name}"
            + (f": {reason}" if reason else ""),
            extra={"actor_id": actor.id, "reason": reason},
        )
        return status

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        return await self.store.list_orders(order_filter)

    async def count_by_tab(self) -> Mapping[OrderTab, int]:
        orders = await self.store.list_orders()
        return {
            tab: sum(1 for o in orders if o.status in statuses)
            for tab, statuses in TAB_STATUSES.items()
        }

    async def get_capacity(self) -> CapacitySettings:
        return await self.ledger.snapshot()

    async def get_store_status(self) -> StoreStatus:
        return await self.store.get_store_status()

    async def resume_clocks(self) -> int:
        """Start SLA clocks for every stored order in a monitored status.

        Run once at startup; clocks are not persisted.
        """
        orders = await self.store.list_orders(
            OrderFilter(statuses=frozenset(MONITORED_STATUSES))
        )
        return self.sla.resume(orders)

    async def snapshot_sla(self, order_id: str) -> SLASnapshot | None:
        order = await self.get_order(order_id)
        if not self.sla.is_running(order.id):
            return None
        return self.sla.snapshot(order.id)
