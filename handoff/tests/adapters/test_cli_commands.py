"""Tests for the CLI command handler and command dispatch."""

import pytest

from handoff.adapters.cli.commands import CLICommandHandler
from handoff.core.policy import Actor, StaffRole
from handoff.main import _execute_cli_command
from handoff.tests.fakes import Core


@pytest.fixture
def cli(core: Core, manager: Actor) -> CLICommandHandler:
    return CLICommandHandler(core.orders, core.refunds, manager)


@pytest.mark.asyncio
async def test_accept_success(core: Core, cli: CLICommandHandler) -> None:
    order = await core.admit()

    result = await cli.accept_order(order.id)

    assert result["status"] == "success"
    assert result["operation"] == "accept"
    assert result["order_id"] == order.id
    assert result["order_status"] == "accepted"
    assert result["message"] == "Order SLP-1001 is now accepted"


@pytest.mark.asyncio
async def test_errors_become_dicts(cli: CLICommandHandler) -> None:
    result = await cli.accept_order("missing")

    assert result["status"] == "error"
    assert result["operation"] == "accept"
    assert result["code"] == "not_found"
    assert result["order_id"] == "missing"


@pytest.mark.asyncio
async def test_permission_error(core: Core) -> None:
    order = await core.admit()
    cli = CLICommandHandler(
        core.orders, core.refunds, Actor(id="k", name="Kai", role=StaffRole.KITCHEN)
    )

    result = await cli.reject_order(order.id, "too_busy")

    assert result["status"] == "error"
    assert result["code"] == "permission_denied"


@pytest.mark.asyncio
async def test_invalid_enum_values(cli: CLICommandHandler) -> None:
    for result in (
        await cli.list_orders(tab="archived"),
        await cli.list_orders(status="lost"),
        await cli.list_orders(created_after="yesterday"),
        await cli.set_store_status("asleep"),
        await cli.list_refunds(status="maybe"),
        await cli.fail_order("o-1", "gate_closed", category="whim"),
    ):
        assert result["status"] == "error"
        assert result["code"] == "validation_error"


@pytest.mark.asyncio
async def test_list_and_tabs(core: Core, cli: CLICommandHandler) -> None:
    await core.admit("SLP-1")
    second = await core.admit("SLP-2")
    await cli.accept_order(second.id)

    listed = await cli.list_orders(tab="new")
    assert listed["count"] == 1
    assert listed["orders"][0]["order_number"] == "SLP-1"
    assert set(listed["orders"][0]) >= {"id", "status", "total", "destination_gate"}

    tabs = await cli.count_by_tab()
    assert tabs["tabs"]["new"] == 1
    assert tabs["tabs"]["preparing"] == 1


@pytest.mark.asyncio
async def test_order_details_and_sla(core: Core, cli: CLICommandHandler) -> None:
    order = await core.admit()

    details = await cli.get_order(order.id)
    sla = await cli.snapshot_sla(order.id)

    assert details["order"]["order_number"] == "SLP-1001"
    assert details["sla"]["kind"] == "accept"
    assert sla["sla"]["seconds_left"] == 90


@pytest.mark.asyncio
async def test_capacity_and_store(cli: CLICommandHandler) -> None:
    updated = await cli.update_capacity(max_queue_length=4)
    assert updated["capacity"]["max_queue_length"] == 4

    closed = await cli.set_store_status("closed", "Night", "2024-01-02T06:00:00+00:00")
    assert closed["store_status"] == "closed"
    assert closed["close_reason"] == "Night"

    capacity = await cli.get_capacity()
    assert capacity["store_status"] == "closed"
    assert capacity["capacity"]["is_accepting_orders"] is False
    assert capacity["capacity"]["estimated_reopen"] == "2024-01-02T06:00:00+00:00"


@pytest.mark.asyncio
async def test_refund_needing_ops(core: Core, cli: CLICommandHandler, ops: Actor) -> None:
    order = await core.admit(unit_price=220.0)

    submitted = await cli.submit_refund(order.id, 150, "order_failed")
    assert submitted["status"] == "success"
    assert "awaiting ops approval" in submitted["message"]
    refund_id = submitted["refund"]["id"]

    denied = await cli.approve_refund(refund_id)
    assert denied["code"] == "permission_denied"

    ops_cli = CLICommandHandler(core.orders, core.refunds, ops)
    declined = await ops_cli.decline_refund(refund_id)
    assert declined["status"] == "success"
    assert declined["refund"]["status"] == "declined"

    details = await cli.get_refund(refund_id)
    assert details["refund"]["reviewed_by"] == "Noor"
    listed = await cli.list_refunds(order_id=order.id, status="declined")
    assert listed["count"] == 1


# ============================================================================
# Command dispatch
# ============================================================================


@pytest.mark.asyncio
async def test_execute_dispatches(core: Core, cli: CLICommandHandler) -> None:
    order = await core.admit()

    result = await _execute_cli_command(cli, "accept", {"order_id": order.id})

    assert result["order_status"] == "accepted"


@pytest.mark.asyncio
async def test_execute_missing_parameter(cli: CLICommandHandler) -> None:
    with pytest.raises(ValueError, match="reason_code"):
        await _execute_cli_command(cli, "reject", {"order_id": "o-1"})


@pytest.mark.asyncio
async def test_execute_unknown_command(cli: CLICommandHandler) -> None:
    with pytest.raises(ValueError, match="Unknown command"):
        await _execute_cli_command(cli, "teleport", {})
