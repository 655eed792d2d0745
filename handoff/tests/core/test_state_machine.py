"""Unit tests for the order state machine.

Covers the transition graph, the append-only event log, per-order
serialization of concurrent transitions, and queue slot release.
"""

import asyncio

import pytest

from handoff.core.errors import InvalidTransition, NotFound
from handoff.core.models import EventKind, OrderStatus, RefundStatus
from handoff.core.policy import Actor
from handoff.core.state_machine import (
    ACCEPT,
    ALLOWED_TRANSITIONS,
    APPROVE_REFUND,
    DECLINE_REFUND,
    FAIL,
    MARK_READY,
    START_PREPARING,
    is_allowed,
    resolve_target,
)
from handoff.tests.fakes import Core

# ============================================================================
# Transition graph
# ============================================================================


def test_terminal_statuses_have_no_outgoing_edges() -> None:
    """Delivered, rejected, failed and refunded are dead ends."""
    for status in (
        OrderStatus.DELIVERED,
        OrderStatus.REJECTED,
        OrderStatus.FAILED,
        OrderStatus.REFUNDED,
    ):
        assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_every_status_is_in_graph() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)


@pytest.mark.asyncio
async def test_declined_refund_target_is_previous_status(core: Core) -> None:
    """Only a refund decline may return REFUND_REQUESTED to its prior status."""
    order = await core.admit()
    order.status_before_refund = OrderStatus.ACCEPTED
    order.status = OrderStatus.REFUND_REQUESTED

    assert resolve_target(order, DECLINE_REFUND) == OrderStatus.ACCEPTED
    assert resolve_target(order, START_PREPARING) is None
    assert resolve_target(order, APPROVE_REFUND) == OrderStatus.REFUNDED
    assert is_allowed(order, OrderStatus.ACCEPTED) is False


@pytest.mark.asyncio
async def test_decline_requires_open_refund(core: Core) -> None:
    order = await core.admit()

    assert resolve_target(order, DECLINE_REFUND) is None
    with pytest.raises(InvalidTransition):
        await core.machine.transition(order.id, DECLINE_REFUND, "Noor")


@pytest.mark.asyncio
async def test_pending_refund_blocks_fulfillment_steps(
    core: Core, manager: Actor, runner: Actor
) -> None:
    """While a refund is open, no operation may revert the order's status."""
    order = await core.admit(unit_price=220.0)
    await core.orders.accept_order(manager, order.id)
    await core.orders.start_preparing(manager, order.id)
    await core.orders.mark_ready(manager, order.id)
    await core.orders.mark_picked_up(runner, order.id, "r-1", "Rami")
    await core.refunds.submit_refund(manager, order.id, 150.0, "order_failed")
    before = await core.store.get_order(order.id)

    attempts = (
        core.orders.accept_order(manager, order.id),
        core.orders.mark_ready(manager, order.id),
        core.orders.mark_picked_up(runner, order.id, "r-2", "Other"),
        core.orders.mark_delivered(runner, order.id),
    )
    for attempt in attempts:
        with pytest.raises(InvalidTransition):
            await attempt

    stored = await core.store.get_order(order.id)
    assert stored.status == OrderStatus.REFUND_REQUESTED
    assert stored.status_before_refund == OrderStatus.IN_TRANSIT
    assert stored.runner_id == "r-1"
    assert stored.refund_status == RefundStatus.PENDING_APPROVAL
    assert stored.version == before.version
    assert is_allowed(order, OrderStatus.PREPARING) is False
    assert is_allowed(order, OrderStatus.REFUNDED) is True


# ============================================================================
# Happy path
# ============================================================================


@pytest.mark.asyncio
async def test_full_success_path(core: Core, manager: Actor, runner: Actor) -> None:
    """An order walks the whole success path with one log entry per step."""
    order = await core.admit()
    assert order.status == OrderStatus.NEW
    assert order.event_log == []

    await core.orders.accept_order(manager, order.id)
    core.clock.advance(60)
    await core.orders.start_preparing(manager, order.id)
    core.clock.advance(300)
    await core.orders.mark_ready(manager, order.id)
    core.clock.advance(30)
    await core.orders.mark_picked_up(runner, order.id, "r-1", "Rami")
    core.clock.advance(240)
    delivered = await core.orders.mark_delivered(runner, order.id)

    assert delivered.status == OrderStatus.DELIVERED
    assert [e.action for e in delivered.event_log] == [
        "accept",
        "start_preparing",
        "mark_ready",
        "pick_up",
        "deliver",
    ]
    assert delivered.accepted_at is not None
    assert delivered.preparing_started_at > delivered.accepted_at
    assert delivered.ready_at > delivered.preparing_started_at
    assert delivered.delivered_at > delivered.ready_at
    assert delivered.runner_id == "r-1"
    assert delivered.runner_name == "Rami"
    assert delivered.version == 5


@pytest.mark.asyncio
async def test_transition_persists_to_store(core: Core, manager: Actor) -> None:
    order = await core.admit()
    await core.orders.accept_order(manager, order.id)

    stored = await core.store.get_order(order.id)
    assert stored is not None
    assert stored.status == OrderStatus.ACCEPTED
    assert len(stored.event_log) == 1
    assert stored.event_log[0].actor == "Dana"


# ============================================================================
# Invalid transitions
# ============================================================================


@pytest.mark.asyncio
async def test_invalid_transition_leaves_order_unchanged(core: Core) -> None:
    """A rejected edge changes no field and adds no log entry."""
    order = await core.admit()

    with pytest.raises(InvalidTransition):
        await core.machine.transition(order.id, MARK_READY, "Dana")

    stored = await core.store.get_order(order.id)
    assert stored.status == OrderStatus.NEW
    assert stored.ready_at is None
    assert stored.event_log == []
    assert stored.version == 0


@pytest.mark.asyncio
async def test_cannot_leave_terminal_status(core: Core, manager: Actor) -> None:
    order = await core.admit()
    await core.orders.reject_order(manager, order.id, "out_of_stock")

    with pytest.raises(InvalidTransition):
        await core.orders.accept_order(manager, order.id)
    with pytest.raises(InvalidTransition):
        await core.machine.transition(order.id, FAIL, "Noor")


@pytest.mark.asyncio
async def test_timestamp_is_set_only_once(core: Core, manager: Actor) -> None:
    order = await core.admit()
    await core.orders.accept_order(manager, order.id)

    with pytest.raises(InvalidTransition):
        await core.machine.transition(order.id, ACCEPT, "Dana")


@pytest.mark.asyncio
async def test_unknown_order_raises_not_found(core: Core) -> None:
    with pytest.raises(NotFound):
        await core.machine.transition("missing", ACCEPT, "Dana")


@pytest.mark.asyncio
async def test_failed_edit_block_commits_nothing(core: Core) -> None:
    """Changes made before an exception inside edit() are discarded."""
    order = await core.admit()

    with pytest.raises(RuntimeError):
        async with core.machine.edit(order.id) as edit:
            edit.apply(ACCEPT, "Dana")
            raise RuntimeError("boom")

    stored = await core.store.get_order(order.id)
    assert stored.status == OrderStatus.NEW
    assert stored.event_log == []


# ============================================================================
# Concurrency
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_accepts_yield_exactly_one_success(
    core: Core, manager: Actor
) -> None:
    """Two staff members accept the same order at the same time."""
    order = await core.admit()

    results = await asyncio.gather(
        core.orders.accept_order(manager, order.id),
        core.orders.accept_order(manager, order.id),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, InvalidTransition)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1

    stored = await core.store.get_order(order.id)
    assert len(stored.event_log) == 1


@pytest.mark.asyncio
async def test_transitions_on_different_orders_are_independent(
    core: Core, manager: Actor
) -> None:
    first = await core.admit("SLP-1")
    second = await core.admit("SLP-2")

    accepted = await asyncio.gather(
        core.orders.accept_order(manager, first.id),
        core.orders.accept_order(manager, second.id),
    )

    assert {o.status for o in accepted} == {OrderStatus.ACCEPTED}


# ============================================================================
# Event log and timestamps
# ============================================================================


@pytest.mark.asyncio
async def test_event_log_is_append_only(core: Core, manager: Actor) -> None:
    order = await core.admit()
    accepted = await core.orders.accept_order(manager, order.id)
    first_entry = accepted.event_log[0]

    prepared = await core.orders.start_preparing(manager, order.id)

    assert len(prepared.event_log) == 2
    assert prepared.event_log[0] == first_entry


@pytest.mark.asyncio
async def test_timestamps_never_decrease_when_clock_steps_back(
    core: Core, manager: Actor
) -> None:
    order = await core.admit()
    accepted = await core.orders.accept_order(manager, order.id)

    core.clock.advance(-120)
    prepared = await core.orders.start_preparing(manager, order.id)

    first, second = prepared.event_log
    assert second.timestamp >= first.timestamp
    assert prepared.preparing_started_at == accepted.accepted_at


# ============================================================================
# Queue slot release
# ============================================================================


@pytest.mark.asyncio
async def test_queue_slot_released_once_at_ready(
    core: Core, manager: Actor, runner: Actor
) -> None:
    order = await core.admit()
    assert await core.queue_length() == 1

    await core.orders.accept_order(manager, order.id)
    await core.orders.start_preparing(manager, order.id)
    assert await core.queue_length() == 1

    ready = await core.orders.mark_ready(manager, order.id)
    assert ready.holds_queue_slot is False
    assert await core.queue_length() == 0

    await core.orders.mark_picked_up(runner, order.id, "r-1", "Rami")
    await core.orders.mark_delivered(runner, order.id)
    assert await core.queue_length() == 0


@pytest.mark.asyncio
async def test_rejection_releases_queue_slot(core: Core, manager: Actor) -> None:
    await core.admit("SLP-1")
    order = await core.admit("SLP-2")
    assert await core.queue_length() == 2

    await core.orders.reject_order(manager, order.id, "too_busy")

    assert await core.queue_length() == 1


# ============================================================================
# Notifications
# ============================================================================


@pytest.mark.asyncio
async def test_transition_publishes_event(core: Core, manager: Actor) -> None:
    order = await core.admit()
    core.notification.reset()

    await core.orders.accept_order(manager, order.id)

    events = core.notification.events_of(EventKind.ORDER_TRANSITIONED)
    assert len(events) == 1
    assert events[0].attributes["from"] == "new"
    assert events[0].attributes["to"] == "accepted"


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition(
    core: Core, manager: Actor
) -> None:
    order = await core.admit()
    core.notification.set_should_fail(True)

    accepted = await core.orders.accept_order(manager, order.id)

    assert accepted.status == OrderStatus.ACCEPTED
    stored = await core.store.get_order(order.id)
    assert stored.status == OrderStatus.ACCEPTED


@pytest.mark.asyncio
async def test_start_preparing_transition_constant(core: Core) -> None:
    """Machine-level transitions work without going through the service."""
    order = await core.admit()
    await core.machine.transition(order.id, ACCEPT, "system")

    prepared = await core.machine.transition(
        order.id, START_PREPARING, "system", "Preparation started"
    )

    assert prepared.status == OrderStatus.PREPARING
    assert prepared.event_log[-1].details == "Preparation started"
