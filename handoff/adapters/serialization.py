"""JSON-friendly conversion of core models.

Shared by the SQLite store (JSON columns), the CLI and webhook
responses, and the notification emitters.
"""

from datetime import datetime
from typing import Any

from handoff.core.models import (
    CapacitySettings,
    DomainEvent,
    ItemStatus,
    Modifier,
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
    SLASnapshot,
)


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def item_to_dict(item: OrderItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "menu_item_id": item.menu_item_id,
        "name": item.name,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "modifiers": [{"name": m.name, "price": m.price} for m in item.modifiers],
        "notes": item.notes,
        "status": item.status.value,
        "line_total": item.line_total,
    }


def item_from_dict(data: dict[str, Any]) -> OrderItem:
    return OrderItem(
        id=data["id"],
        menu_item_id=data["menu_item_id"],
        name=data["name"],
        quantity=data["quantity"],
        unit_price=data["unit_price"],
        modifiers=tuple(
            Modifier(name=m["name"], price=m.get("price", 0.0))
            for m in data.get("modifiers", [])
        ),
        notes=data.get("notes"),
        status=ItemStatus(data.get("status", ItemStatus.PENDING.value)),
    )


def event_entry_to_dict(event: OrderEvent) -> dict[str, Any]:
    return {
        "timestamp": event.timestamp.isoformat(),
        "actor": event.actor,
        "action": event.action,
        "details": event.details,
    }


def event_entry_from_dict(data: dict[str, Any]) -> OrderEvent:
    return OrderEvent(
        timestamp=datetime.fromisoformat(data["timestamp"]),
        actor=data["actor"],
        action=data["action"],
        details=data.get("details"),
    )


def order_to_dict(order: Order) -> dict[str, Any]:
    """Serialize an Order, including items and event log."""
    return {
        "id": order.id,
        "order_number": order.order_number,
        "shop_id": order.shop_id,
        "status": order.status.value,
        "created_at": order.created_at.isoformat(),
        "accepted_at": _dt(order.accepted_at),
        "preparing_started_at": _dt(order.preparing_started_at),
        "ready_at": _dt(order.ready_at),
        "delivered_at": _dt(order.delivered_at),
        "sla_accept_by": order.sla_accept_by.isoformat(),
        "sla_deliver_by": order.sla_deliver_by.isoformat(),
        "items": [item_to_dict(i) for i in order.items],
        "subtotal": order.subtotal,
        "discount": order.discount,
        "service_fee": order.service_fee,
        "total": order.total,
        "currency": order.currency,
        "destination_gate": order.destination_gate,
        "destination_zone": order.destination_zone,
        "passenger_alias": order.passenger_alias,
        "flight_number": order.flight_number,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status.value,
        "notes": order.notes,
        "coupon_code": order.coupon_code,
        "is_priority": order.is_priority,
        "reject_reason": order.reject_reason,
        "reject_notes": order.reject_notes,
        "refund_status": order.refund_status.value,
        "refund_amount": order.refund_amount,
        "refund_reason": order.refund_reason,
        "runner_id": order.runner_id,
        "runner_name": order.runner_name,
        "status_before_refund": (
            order.status_before_refund.value if order.status_before_refund else None
        ),
        "holds_queue_slot": order.holds_queue_slot,
        "version": order.version,
        "event_log": [event_entry_to_dict(e) for e in order.event_log],
    }


def order_from_dict(data: dict[str, Any]) -> Order:
    """Rebuild an Order from order_to_dict() output.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If an enum value or timestamp is invalid.
    """
    before = data.get("status_before_refund")
    return Order(
        id=data["id"],
        order_number=data["order_number"],
        shop_id=data["shop_id"],
        status=OrderStatus(data["status"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        accepted_at=_parse_dt(data.get("accepted_at")),
        preparing_started_at=_parse_dt(data.get("preparing_started_at")),
        ready_at=_parse_dt(data.get("ready_at")),
        delivered_at=_parse_dt(data.get("delivered_at")),
        sla_accept_by=datetime.fromisoformat(data["sla_accept_by"]),
        sla_deliver_by=datetime.fromisoformat(data["sla_deliver_by"]),
        items=tuple(item_from_dict(i) for i in data["items"]),
        subtotal=data["subtotal"],
        discount=data.get("discount", 0.0),
        service_fee=data.get("service_fee", 0.0),
        total=data["total"],
        currency=data.get("currency", "AED"),
        destination_gate=data["destination_gate"],
        destination_zone=data.get("destination_zone", ""),
        passenger_alias=data.get("passenger_alias", ""),
        flight_number=data.get("flight_number"),
        payment_method=data.get("payment_method"),
        payment_status=PaymentStatus(data.get("payment_status", PaymentStatus.PAID.value)),
        notes=data.get("notes"),
        coupon_code=data.get("coupon_code"),
        is_priority=data.get("is_priority", False),
        reject_reason=data.get("reject_reason"),
        reject_notes=data.get("reject_notes"),
        refund_status=RefundStatus(data.get("refund_status", RefundStatus.NONE.value)),
        refund_amount=data.get("refund_amount"),
        refund_reason=data.get("refund_reason"),
        runner_id=data.get("runner_id"),
        runner_name=data.get("runner_name"),
        status_before_refund=OrderStatus(before) if before else None,
        holds_queue_slot=data.get("holds_queue_slot", True),
        version=data.get("version", 0),
        event_log=[event_entry_from_dict(e) for e in data.get("event_log", [])],
    )


def refund_to_dict(refund: RefundRequest) -> dict[str, Any]:
    return {
        "id": refund.id,
        "order_id": refund.order_id,
        "order_number": refund.order_number,
        "amount": refund.amount,
        "order_total": refund.order_total,
        "currency": refund.currency,
        "refund_type": refund.refund_type,
        "reason": refund.reason,
        "notes": refund.notes,
        "status": refund.status.value,
        "requires_ops_approval": refund.requires_ops_approval,
        "requested_by": refund.requested_by,
        "requested_at": refund.requested_at.isoformat(),
        "reviewed_by": refund.reviewed_by,
        "reviewed_at": _dt(refund.reviewed_at),
    }


def refund_from_dict(data: dict[str, Any]) -> RefundRequest:
    return RefundRequest(
        id=data["id"],
        order_id=data["order_id"],
        order_number=data["order_number"],
        amount=data["amount"],
        order_total=data["order_total"],
        currency=data.get("currency", "AED"),
        reason=data["reason"],
        notes=data.get("notes"),
        status=RefundStatus(data["status"]),
        requires_ops_approval=data["requires_ops_approval"],
        requested_by=data["requested_by"],
        requested_at=datetime.fromisoformat(data["requested_at"]),
        reviewed_by=data.get("reviewed_by"),
        reviewed_at=_parse_dt(data.get("reviewed_at")),
    )


def capacity_to_dict(capacity: CapacitySettings) -> dict[str, Any]:
    return {
        "current_queue_length": capacity.current_queue_length,
        "max_queue_length": capacity.max_queue_length,
        "avg_prep_time_minutes": capacity.avg_prep_time_minutes,
        "is_accepting_orders": capacity.is_accepting_orders,
        "busy_auto_throttle_at": capacity.busy_auto_throttle_at,
        "should_throttle": capacity.should_throttle,
        "close_reason": capacity.close_reason,
        "estimated_reopen": _dt(capacity.estimated_reopen),
    }


def capacity_from_dict(data: dict[str, Any]) -> CapacitySettings:
    return CapacitySettings(
        current_queue_length=data["current_queue_length"],
        max_queue_length=data["max_queue_length"],
        avg_prep_time_minutes=data["avg_prep_time_minutes"],
        is_accepting_orders=data["is_accepting_orders"],
        busy_auto_throttle_at=data.get("busy_auto_throttle_at", 12),
        close_reason=data.get("close_reason"),
        estimated_reopen=_parse_dt(data.get("estimated_reopen")),
    )


def snapshot_to_dict(snapshot: SLASnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {
        "seconds_left": snapshot.seconds_left,
        "is_expired": snapshot.is_expired,
        "percentage_left": round(snapshot.percentage_left, 1),
        "urgency_level": snapshot.urgency_level.value,
        "kind": snapshot.kind.value,
    }


def domain_event_to_dict(event: DomainEvent) -> dict[str, Any]:
    return {
        "kind": event.kind.value,
        "order_id": event.order_id,
        "order_number": event.order_number,
        "occurred_at": event.occurred_at.isoformat(),
        "attributes": dict(event.attributes),
    }
