"""Unit tests for the refund approval workflow."""

import asyncio

import pytest

from handoff.core.errors import (
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from handoff.core.models import (
    EventKind,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)
from handoff.core.policy import Actor, StaffRole
from handoff.core.refund_workflow import AUTO_REVIEWER, RefundWorkflow
from handoff.tests.fakes import Core, build_core

# ============================================================================
# Helpers
# ============================================================================


async def deliver(core: Core, order: Order, manager: Actor, runner: Actor) -> Order:
    await core.orders.accept_order(manager, order.id)
    await core.orders.start_preparing(manager, order.id)
    await core.orders.mark_ready(manager, order.id)
    await core.orders.mark_picked_up(runner, order.id, "r-1", "Rami")
    return await core.orders.mark_delivered(runner, order.id)


def test_threshold_is_exclusive(core: Core) -> None:
    assert core.refunds.requires_ops_approval(100.0) is False
    assert core.refunds.requires_ops_approval(100.01) is True


def test_negative_threshold_rejected(core: Core) -> None:
    with pytest.raises(ValueError):
        RefundWorkflow(core.store, core.machine, ops_approval_threshold=-1)


# ============================================================================
# Auto-approval
# ============================================================================


@pytest.mark.asyncio
async def test_small_full_refund_is_auto_approved(core: Core, manager: Actor) -> None:
    """total=42, amount=42, threshold=100 resolves on the spot."""
    order = await core.admit(unit_price=42.0)

    refund = await core.refunds.submit_refund(manager, order.id, 42.0, "order_failed")

    assert refund.requires_ops_approval is False
    assert refund.status == RefundStatus.APPROVED
    assert refund.reviewed_by == AUTO_REVIEWER
    assert refund.reviewed_at == core.clock.now
    assert refund.refund_type == "full"

    stored = await core.orders.get_order(order.id)
    assert stored.refund_status == RefundStatus.APPROVED
    assert stored.status == OrderStatus.REFUNDED
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert [e.action for e in stored.event_log] == ["refund_requested", "refund_approved"]
    assert await core.queue_length() == 0


@pytest.mark.asyncio
async def test_auto_approval_publishes_resolution(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=42.0)

    await core.refunds.submit_refund(manager, order.id, 10.0, "order_failed")

    assert len(core.notification.events_of(EventKind.REFUND_RESOLVED)) == 1
    assert core.notification.events_of(EventKind.REFUND_PENDING_APPROVAL) == []


# ============================================================================
# Manual review
# ============================================================================


@pytest.mark.asyncio
async def test_large_refund_waits_for_ops(core: Core, manager: Actor) -> None:
    """total=220, amount=150, threshold=100 needs manual review."""
    order = await core.admit(unit_price=220.0)
    await core.orders.accept_order(manager, order.id)

    refund = await core.refunds.submit_refund(
        manager, order.id, 150.0, "wrong_item", "Got a tea instead"
    )

    assert refund.requires_ops_approval is True
    assert refund.status == RefundStatus.PENDING_APPROVAL
    assert refund.reviewed_by is None
    assert refund.reviewed_at is None
    assert refund.refund_type == "partial"

    stored = await core.orders.get_order(order.id)
    assert stored.status == OrderStatus.REFUND_REQUESTED
    assert stored.status_before_refund == OrderStatus.ACCEPTED
    assert stored.refund_status == RefundStatus.PENDING_APPROVAL
    assert stored.refund_amount == 150.0
    assert len(core.notification.events_of(EventKind.REFUND_PENDING_APPROVAL)) == 1


@pytest.mark.asyncio
async def test_ops_approval_resolves_refund(core: Core, manager: Actor, ops: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    pending = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")
    core.clock.advance(300)

    approved = await core.refunds.approve_refund(ops, pending.id)

    assert approved.status == RefundStatus.APPROVED
    assert approved.reviewed_by == "Noor"
    assert approved.reviewed_at == core.clock.now
    stored = await core.orders.get_order(order.id)
    assert stored.status == OrderStatus.REFUNDED
    assert stored.refund_status == RefundStatus.APPROVED
    # Partial refunds leave the payment itself alone
    assert stored.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_second_approval_is_rejected(core: Core, manager: Actor, ops: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    pending = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")
    first = await core.refunds.approve_refund(ops, pending.id)
    core.clock.advance(60)

    with pytest.raises(InvalidTransition):
        await core.refunds.approve_refund(ops, pending.id)

    stored = await core.refunds.get_refund(pending.id)
    assert stored.reviewed_at == first.reviewed_at


@pytest.mark.asyncio
async def test_concurrent_reviews_resolve_once(core: Core, manager: Actor, ops: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    pending = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")

    results = await asyncio.gather(
        core.refunds.approve_refund(ops, pending.id),
        core.refunds.decline_refund(ops, pending.id),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, InvalidTransition)) == 1
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1


@pytest.mark.asyncio
async def test_decline_restores_previous_status(
    core: Core, manager: Actor, ops: Actor
) -> None:
    order = await core.admit(unit_price=220.0)
    await core.orders.accept_order(manager, order.id)
    await core.orders.start_preparing(manager, order.id)
    pending = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")

    declined = await core.refunds.decline_refund(ops, pending.id)

    assert declined.status == RefundStatus.DECLINED
    stored = await core.orders.get_order(order.id)
    assert stored.status == OrderStatus.PREPARING
    assert stored.status_before_refund is None
    assert stored.refund_status == RefundStatus.DECLINED
    assert stored.event_log[-1].action == "refund_declined"
    # The order is back in the pipeline, so its delivery clock runs again
    assert core.sla.is_running(order.id)


@pytest.mark.asyncio
async def test_decline_then_resubmit(core: Core, manager: Actor, ops: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    first = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")
    await core.refunds.decline_refund(ops, first.id)

    second = await core.refunds.submit_refund(manager, order.id, 120.0, "order_failed")

    assert second.status == RefundStatus.PENDING_APPROVAL
    assert len(await core.refunds.list_refunds(order_id=order.id)) == 2


@pytest.mark.asyncio
async def test_manager_cannot_approve(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    pending = await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")

    with pytest.raises(PermissionDenied):
        await core.refunds.approve_refund(manager, pending.id)

    stored = await core.refunds.get_refund(pending.id)
    assert stored.status == RefundStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_unknown_refund(core: Core, ops: Actor) -> None:
    with pytest.raises(NotFound):
        await core.refunds.approve_refund(ops, "missing")
    with pytest.raises(NotFound):
        await core.refunds.get_refund("missing")


# ============================================================================
# Terminal orders
# ============================================================================


@pytest.mark.asyncio
async def test_refund_on_delivered_order_keeps_status(
    core: Core, manager: Actor, runner: Actor, ops: Actor
) -> None:
    order = await core.admit(unit_price=220.0)
    delivered = await deliver(core, order, manager, runner)
    log_length = len(delivered.event_log)

    pending = await core.refunds.submit_refund(
        manager, order.id, 150.0, "quality_issue", "Cold coffee"
    )

    stored = await core.orders.get_order(order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.refund_status == RefundStatus.PENDING_APPROVAL
    assert len(stored.event_log) == log_length + 1

    await core.refunds.approve_refund(ops, pending.id)
    stored = await core.orders.get_order(order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.refund_status == RefundStatus.APPROVED
    assert len(stored.event_log) == log_length + 2


@pytest.mark.asyncio
async def test_refunded_order_cannot_be_refunded_again(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=42.0)
    await core.refunds.submit_refund(manager, order.id, 42.0, "order_failed")

    with pytest.raises(InvalidTransition):
        await core.refunds.submit_refund(manager, order.id, 1.0, "order_failed")


# ============================================================================
# Validation
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0.0, -5.0, 42.01, 42.004, float("nan"), float("inf")])
async def test_amount_out_of_range(core: Core, manager: Actor, amount: float) -> None:
    order = await core.admit(unit_price=42.0)

    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, amount, "order_failed")

    stored = await core.orders.get_order(order.id)
    assert stored.refund_status == RefundStatus.NONE
    assert stored.event_log == []


@pytest.mark.asyncio
async def test_reason_requiring_notes(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=42.0)

    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, 10.0, "wrong_item")
    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, 10.0, "wrong_item", "   ")


@pytest.mark.asyncio
async def test_unknown_reason_code(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=42.0)

    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, 10.0, "too_busy")


@pytest.mark.asyncio
async def test_one_pending_refund_per_order(core: Core, manager: Actor) -> None:
    order = await core.admit(unit_price=220.0)
    await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")

    with pytest.raises(InvalidTransition):
        await core.refunds.submit_refund(manager, order.id, 10.0, "order_failed")


@pytest.mark.asyncio
async def test_approved_refunds_reduce_refundable_amount(
    core: Core, manager: Actor, runner: Actor
) -> None:
    order = await core.admit(unit_price=220.0)
    await deliver(core, order, manager, runner)
    await core.refunds.submit_refund(manager, order.id, 50.0, "delay_beyond_threshold")

    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, 180.0, "delay_beyond_threshold")

    remaining = await core.refunds.submit_refund(
        manager, order.id, 170.0, "delay_beyond_threshold"
    )
    assert remaining.status == RefundStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_remaining_amount_can_be_refunded_exactly(
    core: Core, manager: Actor, runner: Actor
) -> None:
    order = await core.admit(unit_price=14.5)
    await deliver(core, order, manager, runner)
    await core.refunds.submit_refund(manager, order.id, 4.3, "delay_beyond_threshold")

    with pytest.raises(ValidationError):
        await core.refunds.submit_refund(manager, order.id, 10.204, "delay_beyond_threshold")

    rest = await core.refunds.submit_refund(manager, order.id, 10.2, "delay_beyond_threshold")
    assert rest.status == RefundStatus.APPROVED


@pytest.mark.asyncio
async def test_kitchen_cannot_request_refund(core: Core, kitchen: Actor) -> None:
    order = await core.admit(unit_price=42.0)

    with pytest.raises(PermissionDenied):
        await core.refunds.submit_refund(kitchen, order.id, 10.0, "order_failed")


@pytest.mark.asyncio
async def test_unknown_order(core: Core, manager: Actor) -> None:
    with pytest.raises(NotFound):
        await core.refunds.submit_refund(manager, "missing", 10.0, "order_failed")


# ============================================================================
# Daily limit
# ============================================================================


@pytest.mark.asyncio
async def test_daily_limit_per_requester() -> None:
    core = build_core(daily_refund_limit=2)
    alice = Actor(id="u-1", name="Alice", role=StaffRole.MANAGER)
    bob = Actor(id="u-2", name="Bob", role=StaffRole.MANAGER)
    orders = [await core.admit(f"SLP-{i}", unit_price=42.0) for i in range(4)]

    await core.refunds.submit_refund(alice, orders[0].id, 5.0, "order_failed")
    await core.refunds.submit_refund(alice, orders[1].id, 5.0, "order_failed")

    with pytest.raises(ValidationError, match="Daily refund limit"):
        await core.refunds.submit_refund(alice, orders[2].id, 5.0, "order_failed")

    # Another requester has a separate daily count
    await core.refunds.submit_refund(bob, orders[2].id, 5.0, "order_failed")


@pytest.mark.asyncio
async def test_daily_limit_resets_next_day() -> None:
    core = build_core(daily_refund_limit=1)
    alice = Actor(id="u-1", name="Alice", role=StaffRole.MANAGER)
    first = await core.admit("SLP-1", unit_price=42.0)
    second = await core.admit("SLP-2", unit_price=42.0)

    await core.refunds.submit_refund(alice, first.id, 5.0, "order_failed")
    core.clock.advance(24 * 3600)

    refund = await core.refunds.submit_refund(alice, second.id, 5.0, "order_failed")
    assert refund.status == RefundStatus.APPROVED


# ============================================================================
# Listing
# ============================================================================


@pytest.mark.asyncio
async def test_list_refunds_by_status(core: Core, manager: Actor) -> None:
    small = await core.admit("SLP-1", unit_price=42.0)
    large = await core.admit("SLP-2", unit_price=220.0)
    await core.refunds.submit_refund(manager, small.id, 10.0, "order_failed")
    await core.refunds.submit_refund(manager, large.id, 150.0, "order_failed")

    pending = await core.refunds.list_refunds(status=RefundStatus.PENDING_APPROVAL)
    approved = await core.refunds.list_refunds(status=RefundStatus.APPROVED)

    assert [r.order_id for r in pending] == [large.id]
    assert [r.order_id for r in approved] == [small.id]
