"""HTTP webhook receiver for order sources and staff tooling.

Provides the request handling behind the REST endpoints: "order
submitted" messages from external order sources, staff and runner
operations, and the read surface.

This adapter is transport-agnostic: dispatch() takes a path and a parsed
JSON body and returns an HTTP status code with a JSON-ready dictionary.
WebhookHTTPServer supplies the actual HTTP transport.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from handoff.adapters.serialization import (
    capacity_to_dict,
    order_to_dict,
    refund_to_dict,
    snapshot_to_dict,
)
from handoff.adapters.webhook.schemas import (
    FailOrderRequest,
    OrderActionRequest,
    OrderSubmittedPayload,
    PickupRequest,
    RefundActionRequest,
    RejectOrderRequest,
    StoreStatusRequest,
    SubmitRefundRequest,
    UpdateCapacityRequest,
)
from handoff.core.errors import (
    AdmissionDenied,
    FulfillmentError,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from handoff.core.models import Order, OrderFilter, OrderStatus, OrderTab, RefundStatus
from handoff.core.policy import SYSTEM_ACTOR, Actor
from handoff.core.ports import FulfillmentPort, IngestionPort, RefundPort

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def status_for_error(error: FulfillmentError) -> int:
    """Map a typed core error onto an HTTP status code."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, PermissionDenied):
        return 403
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, (InvalidTransition, AdmissionDenied)):
        return 409
    return 500


def _parse(model: type[M], data: dict[str, Any]) -> M:
    try:
        return model.model_validate(data)
    except SchemaError as e:
        raise ValidationError(
            "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
        ) from e


def _transition_result(operation: str, order: Order) -> dict[str, Any]:
    return {
        "status": "success",
        "operation": operation,
        "order": order_to_dict(order),
    }


class WebhookReceiver:
    """Routes webhook requests onto the core's driving ports."""

    def __init__(
        self,
        ingestion: IngestionPort,
        fulfillment: FulfillmentPort,
        refunds: RefundPort,
        source_actor: Actor = SYSTEM_ACTOR,
    ):
        """Initialize the webhook receiver.

        Args:
            ingestion: IngestionPort for "order submitted" messages.
            fulfillment: FulfillmentPort for order operations and reads.
            refunds: RefundPort for the refund workflow.
            source_actor: Actor that POST /api/orders submits as.
        """
        self.ingestion = ingestion
        self.source_actor = source_actor
        self.fulfillment = fulfillment
        self.refunds = refunds
        self.routes: dict[str, Handler] = {
            "/api/orders": self.handle_order_submitted,
            "/api/orders/accept": self.handle_accept,
            "/api/orders/reject": self.handle_reject,
            "/api/orders/prepare": self.handle_prepare,
            "/api/orders/ready": self.handle_ready,
            "/api/orders/pickup": self.handle_pickup,
            "/api/orders/deliver": self.handle_deliver,
            "/api/orders/fail": self.handle_fail,
            "/api/orders/get": self.handle_get_order,
            "/api/orders/list": self.handle_list_orders,
            "/api/orders/tabs": self.handle_count_by_tab,
            "/api/refunds": self.handle_submit_refund,
            "/api/refunds/approve": self.handle_approve_refund,
            "/api/refunds/decline": self.handle_decline_refund,
            "/api/refunds/get": self.handle_get_refund,
            "/api/refunds/list": self.handle_list_refunds,
            "/api/capacity": self.handle_get_capacity,
            "/api/capacity/update": self.handle_update_capacity,
            "/api/store": self.handle_store_status,
        }

    async def dispatch(self, path: str, data: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        """Handle one request.

        Returns:
            Tuple of (HTTP status code, JSON-ready response body).
        """
        handler = self.routes.get(path)
        if handler is None:
            return 404, {"status": "error", "code": "not_found", "message": f"No route {path}"}

        try:
            return 200, await handler(data)
        except FulfillmentError as e:
            status = status_for_error(e)
            logger.info(
                f"Webhook {path} failed with {e.code}: {e}",
                extra={"path": path, "code": e.code, "http_status": status},
            )
            return status, {"status": "error", "code": e.code, "message": str(e)}

    async def handle_order_submitted(self, data: dict[str, Any]) -> dict[str, Any]:
        payload = _parse(OrderSubmittedPayload, data)
        order = await self.ingestion.submit_order(
            self.source_actor, payload.to_submission()
        )
        logger.info(
            f"Order {order.order_number} received via webhook",
            extra={"order_id": order.id},
        )
        return _transition_result("submit", order)

    async def handle_accept(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(OrderActionRequest, data)
        order = await self.fulfillment.accept_order(req.actor.to_actor(), req.order_id)
        return _transition_result("accept", order)

    async def handle_reject(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(RejectOrderRequest, data)
        order = await self.fulfillment.reject_order(
            req.actor.to_actor(), req.order_id, req.reason_code, req.notes
        )
        return _transition_result("reject", order)

    async def handle_prepare(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(OrderActionRequest, data)
        order = await self.fulfillment.start_preparing(req.actor.to_actor(), req.order_id)
        return _transition_result("prepare", order)

    async def handle_ready(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(OrderActionRequest, data)
        order = await self.fulfillment.mark_ready(req.actor.to_actor(), req.order_id)
        return _transition_result("ready", order)

    async def handle_pickup(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(PickupRequest, data)
        order = await self.fulfillment.mark_picked_up(
            req.actor.to_actor(), req.order_id, req.runner_id, req.runner_name
        )
        return _transition_result("pickup", order)

    async def handle_deliver(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(OrderActionRequest, data)
        order = await self.fulfillment.mark_delivered(req.actor.to_actor(), req.order_id)
        return _transition_result("deliver", order)

    async def handle_fail(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(FailOrderRequest, data)
        order = await self.fulfillment.fail_order(
            req.actor.to_actor(), req.order_id, req.reason_code, req.notes, req.category
        )
        return _transition_result("fail", order)

    async def handle_get_order(self, data: dict[str, Any]) -> dict[str, Any]:
        order_id = data.get("order_id")
        if not order_id:
            raise ValidationError("Missing order_id")
        order = await self.fulfillment.get_order(order_id)
        sla = await self.fulfillment.snapshot_sla(order_id)
        return {
            "status": "success",
            "operation": "get_order",
            "order": order_to_dict(order),
            "sla": snapshot_to_dict(sla),
        }

    async def handle_list_orders(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            statuses = data.get("statuses")
            order_filter = OrderFilter(
                statuses=frozenset(OrderStatus(s) for s in statuses) if statuses else None,
                tab=OrderTab(data["tab"]) if data.get("tab") else None,
                refund_status=(
                    RefundStatus(data["refund_status"]) if data.get("refund_status") else None
                ),
                shop_id=data.get("shop_id"),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid order filter: {e}") from e
        orders = await self.fulfillment.list_orders(order_filter)
        return {
            "status": "success",
            "operation": "list_orders",
            "count": len(orders),
            "orders": [order_to_dict(o) for o in orders],
        }

    async def handle_count_by_tab(self, data: dict[str, Any]) -> dict[str, Any]:
        counts = await self.fulfillment.count_by_tab()
        return {
            "status": "success",
            "operation": "count_by_tab",
            "tabs": {tab.value: count for tab, count in counts.items()},
        }

    async def handle_submit_refund(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(SubmitRefundRequest, data)
        refund = await self.refunds.submit_refund(
            req.actor.to_actor(), req.order_id, req.amount, req.reason, req.notes
        )
        return {"status": "success", "operation": "submit_refund", "refund": refund_to_dict(refund)}

    async def handle_approve_refund(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(RefundActionRequest, data)
        refund = await self.refunds.approve_refund(req.actor.to_actor(), req.refund_id)
        return {"status": "success", "operation": "approve_refund", "refund": refund_to_dict(refund)}

    async def handle_decline_refund(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(RefundActionRequest, data)
        refund = await self.refunds.decline_refund(req.actor.to_actor(), req.refund_id)
        return {"status": "success", "operation": "decline_refund", "refund": refund_to_dict(refund)}

    async def handle_get_refund(self, data: dict[str, Any]) -> dict[str, Any]:
        refund_id = data.get("refund_id")
        if not refund_id:
            raise ValidationError("Missing refund_id")
        refund = await self.refunds.get_refund(refund_id)
        return {"status": "success", "operation": "get_refund", "refund": refund_to_dict(refund)}

    async def handle_list_refunds(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            status = RefundStatus(data["status"]) if data.get("status") else None
        except ValueError as e:
            raise ValidationError(f"Invalid refund status: {data['status']}") from e
        refunds = await self.refunds.list_refunds(order_id=data.get("order_id"), status=status)
        return {
            "status": "success",
            "operation": "list_refunds",
            "count": len(refunds),
            "refunds": [refund_to_dict(r) for r in refunds],
        }

    async def handle_get_capacity(self, data: dict[str, Any]) -> dict[str, Any]:
        capacity = await self.fulfillment.get_capacity()
        store_status = await self.fulfillment.get_store_status()
        return {
            "status": "success",
            "operation": "get_capacity",
            "capacity": capacity_to_dict(capacity),
            "store_status": store_status.value,
        }

    async def handle_update_capacity(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(UpdateCapacityRequest, data)
        capacity = await self.fulfillment.update_capacity(
            req.actor.to_actor(),
            max_queue_length=req.max_queue_length,
            avg_prep_time_minutes=req.avg_prep_time_minutes,
            is_accepting_orders=req.is_accepting_orders,
            busy_auto_throttle_at=req.busy_auto_throttle_at,
        )
        return {
            "status": "success",
            "operation": "update_capacity",
            "capacity": capacity_to_dict(capacity),
        }

    async def handle_store_status(self, data: dict[str, Any]) -> dict[str, Any]:
        req = _parse(StoreStatusRequest, data)
        status = await self.fulfillment.set_store_status(
            req.actor.to_actor(), req.status, req.reason, req.estimated_reopen
        )
        capacity = await self.fulfillment.get_capacity()
        return {
            "status": "success",
            "operation": "set_store_status",
            "store_status": status.value,
            "capacity": capacity_to_dict(capacity),
        }

    async def health(self) -> dict[str, Any]:
        """Public health check with a small capacity summary."""
        capacity = await self.fulfillment.get_capacity()
        store_status = await self.fulfillment.get_store_status()
        return {
            "status": "healthy",
            "store_status": store_status.value,
            "queue": f"{capacity.current_queue_length}/{capacity.max_queue_length}",
        }
