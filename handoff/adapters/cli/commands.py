"""CLI command implementations for Handoff staff operations.

Provides human-initiated actions through a command-line interface.

This adapter maps CLI commands (accept, reject, refund, ...) onto the
FulfillmentPort and RefundPort operations. It handles CLI-specific
formatting and turns typed core errors into error dictionaries.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from handoff.adapters.serialization import (
    capacity_to_dict,
    order_to_dict,
    refund_to_dict,
    snapshot_to_dict,
)
from handoff.core.errors import FulfillmentError, ValidationError
from handoff.core.models import (
    OrderFilter,
    OrderStatus,
    OrderTab,
    RefundStatus,
    StoreStatus,
)
from handoff.core.policy import Actor
from handoff.core.ports import FulfillmentPort, RefundPort
from handoff.core.reason_codes import ReasonCategory

logger = logging.getLogger(__name__)


def _enum_value(enum_cls: Any, value: str | None, field: str) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Expected one of: {allowed}") from e


def _parse_time(value: str | None, field: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value}") from e


def _order_summary(order_dict: dict[str, Any]) -> dict[str, Any]:
    return {
        key: order_dict[key]
        for key in (
            "id",
            "order_number",
            "status",
            "total",
            "currency",
            "destination_gate",
            "refund_status",
            "created_at",
        )
    }


class CLICommandHandler:
    """Handles CLI commands by delegating to the fulfillment and refund ports.

    Every command returns a dictionary with a ``status`` of ``success`` or
    ``error``; typed core errors never escape to the REPL.
    """

    def __init__(self, fulfillment: FulfillmentPort, refunds: RefundPort, actor: Actor):
        """Initialize the CLI command handler.

        Args:
            fulfillment: FulfillmentPort implementation for order commands.
            refunds: RefundPort implementation for refund commands.
            actor: The staff member operating this CLI session.
        """
        self.fulfillment = fulfillment
        self.refunds = refunds
        self.actor = actor

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[dict[str, Any]]],
        **context: Any,
    ) -> dict[str, Any]:
        """Run one command and wrap its outcome."""
        try:
            result = await call()
        except FulfillmentError as e:
            logger.error(f"CLI {operation} failed: {e}", extra={"code": e.code})
            return {
                "status": "error",
                "operation": operation,
                "code": e.code,
                "message": str(e),
                **context,
            }
        return {"status": "success", "operation": operation, **context, **result}

    async def _transition(
        self, operation: str, order_id: str, call: Callable[[], Awaitable[Any]]
    ) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            order = await call()
            return {
                "order_status": order.status.value,
                "message": f"Order {order.order_number} is now {order.status.value}",
            }

        return await self._run(operation, run, order_id=order_id)

    async def accept_order(self, order_id: str) -> dict[str, Any]:
        return await self._transition(
            "accept", order_id, lambda: self.fulfillment.accept_order(self.actor, order_id)
        )

    async def reject_order(
        self, order_id: str, reason_code: str, notes: str | None = None
    ) -> dict[str, Any]:
        return await self._transition(
            "reject",
            order_id,
            lambda: self.fulfillment.reject_order(self.actor, order_id, reason_code, notes),
        )

    async def start_preparing(self, order_id: str) -> dict[str, Any]:
        return await self._transition(
            "prepare", order_id, lambda: self.fulfillment.start_preparing(self.actor, order_id)
        )

    async def mark_ready(self, order_id: str) -> dict[str, Any]:
        return await self._transition(
            "ready", order_id, lambda: self.fulfillment.mark_ready(self.actor, order_id)
        )

    async def mark_picked_up(
        self, order_id: str, runner_id: str, runner_name: str
    ) -> dict[str, Any]:
        return await self._transition(
            "pickup",
            order_id,
            lambda: self.fulfillment.mark_picked_up(
                self.actor, order_id, runner_id, runner_name
            ),
        )

    async def mark_delivered(self, order_id: str) -> dict[str, Any]:
        return await self._transition(
            "deliver", order_id, lambda: self.fulfillment.mark_delivered(self.actor, order_id)
        )

    async def fail_order(
        self,
        order_id: str,
        reason_code: str,
        notes: str | None = None,
        category: str = ReasonCategory.RUNNER_FAIL.value,
    ) -> dict[str, Any]:
        async def call() -> Any:
            reason_category = _enum_value(ReasonCategory, category, "category")
            return await self.fulfillment.fail_order(
                self.actor, order_id, reason_code, notes, reason_category
            )

        return await self._transition("fail", order_id, call)

    async def get_order(self, order_id: str) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            order = await self.fulfillment.get_order(order_id)
            sla = await self.fulfillment.snapshot_sla(order_id)
            return {"order": order_to_dict(order), "sla": snapshot_to_dict(sla)}

        return await self._run("order", call, order_id=order_id)

    async def list_orders(
        self,
        status: str | None = None,
        tab: str | None = None,
        refund_status: str | None = None,
        created_after: str | None = None,
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            statuses = None
            if status is not None:
                statuses = frozenset({_enum_value(OrderStatus, status, "status")})
            order_filter = OrderFilter(
                statuses=statuses,
                tab=_enum_value(OrderTab, tab, "tab"),
                refund_status=_enum_value(RefundStatus, refund_status, "refund_status"),
                created_after=_parse_time(created_after, "created_after"),
            )
            orders = await self.fulfillment.list_orders(order_filter)
            return {
                "count": len(orders),
                "orders": [_order_summary(order_to_dict(o)) for o in orders],
            }

        return await self._run("orders", call)

    async def count_by_tab(self) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            counts = await self.fulfillment.count_by_tab()
            return {"tabs": {tab.value: count for tab, count in counts.items()}}

        return await self._run("tabs", call)

    async def snapshot_sla(self, order_id: str) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            snapshot = await self.fulfillment.snapshot_sla(order_id)
            return {"sla": snapshot_to_dict(snapshot)}

        return await self._run("sla", call, order_id=order_id)

    async def get_capacity(self) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            capacity = await self.fulfillment.get_capacity()
            status = await self.fulfillment.get_store_status()
            return {"capacity": capacity_to_dict(capacity), "store_status": status.value}

        return await self._run("capacity", call)

    async def update_capacity(
        self,
        max_queue_length: int | None = None,
        avg_prep_time_minutes: int | None = None,
        is_accepting_orders: bool | None = None,
        busy_auto_throttle_at: int | None = None,
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            capacity = await self.fulfillment.update_capacity(
                self.actor,
                max_queue_length,
                avg_prep_time_minutes,
                is_accepting_orders,
                busy_auto_throttle_at,
            )
            return {"capacity": capacity_to_dict(capacity)}

        return await self._run("set-capacity", call)

    async def set_store_status(
        self,
        status: str,
        reason: str | None = None,
        estimated_reopen: str | None = None,
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            new_status = _enum_value(StoreStatus, status, "store status")
            await self.fulfillment.set_store_status(
                self.actor,
                new_status,
                reason,
                _parse_time(estimated_reopen, "estimated_reopen"),
            )
            capacity = await self.fulfillment.get_capacity()
            return {
                "store_status": new_status.value,
                "close_reason": capacity.close_reason,
                "message": f"Store is now {new_status.value}",
            }

        return await self._run("store", call)

    async def submit_refund(
        self, order_id: str, amount: float, reason: str, notes: str | None = None
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            refund = await self.refunds.submit_refund(
                self.actor, order_id, float(amount), reason, notes
            )
            return {
                "refund": refund_to_dict(refund),
                "message": (
                    f"Refund {refund.id} awaiting ops approval"
                    if refund.requires_ops_approval
                    else f"Refund {refund.id} approved automatically"
                ),
            }

        return await self._run("refund", call, order_id=order_id)

    async def approve_refund(self, refund_id: str) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            refund = await self.refunds.approve_refund(self.actor, refund_id)
            return {"refund": refund_to_dict(refund), "message": f"Refund {refund_id} approved"}

        return await self._run("approve-refund", call, refund_id=refund_id)

    async def decline_refund(self, refund_id: str) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            refund = await self.refunds.decline_refund(self.actor, refund_id)
            return {"refund": refund_to_dict(refund), "message": f"Refund {refund_id} declined"}

        return await self._run("decline-refund", call, refund_id=refund_id)

    async def get_refund(self, refund_id: str) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            refund = await self.refunds.get_refund(refund_id)
            return {"refund": refund_to_dict(refund)}

        return await self._run("refund-details", call, refund_id=refund_id)

    async def list_refunds(
        self, order_id: str | None = None, status: str | None = None
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            refunds = await self.refunds.list_refunds(
                order_id=order_id,
                status=_enum_value(RefundStatus, status, "refund status"),
            )
            return {"count": len(refunds), "refunds": [refund_to_dict(r) for r in refunds]}

        return await self._run("refunds", call)
