"""Integration tests for the composition root.

These tests verify that configuration loads and validates, that the
configured adapters are instantiated, and that build_services wires a
working core around them.
"""

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from handoff.adapters.notification.markdown import MarkdownNotificationAdapter
from handoff.adapters.notification.stdout import StdoutNotificationAdapter
from handoff.adapters.notification.webhook import WebhookNotificationAdapter
from handoff.adapters.store.memory import InMemoryOrderStore
from handoff.adapters.store.sqlite import SQLiteOrderStore
from handoff.config import Settings, load_settings
from handoff.core.errors import PermissionDenied
from handoff.core.models import DeadlineKind, EventKind, OrderStatus
from handoff.core.policy import SYSTEM_ACTOR, Actor, StaffRole
from handoff.main import build_notification, build_services, build_store, configure_logging
from handoff.tests.fakes import FakeNotificationPort, make_submission


class TestConfigurationLoading:
    """Test configuration loading and validation."""

    def test_load_settings_with_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.store_backend == "memory"
        assert settings.notification_backend == "stdout"
        assert settings.run_mode == "daemon"
        assert settings.acceptance_window_seconds == 90
        assert settings.delivery_window_seconds == 1800
        assert settings.ops_approval_threshold == 100.0
        assert settings.daily_refund_limit is None

    def test_load_settings_from_env(self) -> None:
        """Load settings from environment variables."""
        with patch.dict(
            os.environ,
            {
                "ACCEPTANCE_WINDOW_SECONDS": "120",
                "RUN_MODE": "cli",
                "CLI_ACTOR_ROLE": "ops",
                "DAILY_REFUND_LIMIT": "5",
                "LOG_LEVEL": "DEBUG",
            },
        ):
            settings = load_settings()
            assert settings.acceptance_window_seconds == 120
            assert settings.run_mode == "cli"
            assert settings.cli_actor_role == "ops"
            assert settings.daily_refund_limit == 5
            assert settings.log_level == "DEBUG"

    def test_load_settings_from_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / "handoff.env"
        env_file.write_text("MERCHANT_ID=shop-042\nMAX_QUEUE_LENGTH=3\n")

        settings = load_settings(str(env_file))

        assert settings.merchant_id == "shop-042"
        assert settings.max_queue_length == 3

    @pytest.mark.parametrize(
        "name,value",
        [
            ("ACCEPTANCE_WINDOW_SECONDS", "0"),
            ("DELIVERY_WINDOW_SECONDS", "-5"),
            ("SLA_TICK_SECONDS", "0"),
            ("OPS_APPROVAL_THRESHOLD", "-1"),
            ("DAILY_REFUND_LIMIT", "0"),
            ("MAX_QUEUE_LENGTH", "0"),
            ("WEBHOOK_PORT", "70000"),
            ("STORE_BACKEND", "postgres"),
        ],
    )
    def test_invalid_settings_rejected(self, name: str, value: str) -> None:
        with patch.dict(os.environ, {name: value}):
            with pytest.raises(Exception):  # ValidationError
                load_settings()


class TestAdapterInstantiation:
    """Test that adapters are selected from settings."""

    def test_memory_store(self) -> None:
        store = build_store(Settings(_env_file=None, max_queue_length=7))  # type: ignore[call-arg]
        assert isinstance(store, InMemoryOrderStore)

    @pytest.mark.asyncio
    async def test_sqlite_store_uses_capacity_defaults(self, tmp_path: Path) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None,
            store_backend="sqlite",
            store_sqlite_path=str(tmp_path / "handoff.db"),
            max_queue_length=7,
        )
        store = build_store(settings)
        try:
            assert isinstance(store, SQLiteOrderStore)
            assert (await store.get_capacity()).max_queue_length == 7
        finally:
            await store.close()

    def test_notification_backends(self, tmp_path: Path) -> None:
        stdout = build_notification(Settings(_env_file=None))  # type: ignore[call-arg]
        markdown = build_notification(
            Settings(  # type: ignore[call-arg]
                _env_file=None,
                notification_backend="markdown",
                notification_output_dir=str(tmp_path / "alerts"),
            )
        )
        webhook = build_notification(
            Settings(  # type: ignore[call-arg]
                _env_file=None,
                notification_backend="webhook",
                alert_webhook_url="https://alerts.example.test",
            )
        )

        assert isinstance(stdout, StdoutNotificationAdapter)
        assert isinstance(markdown, MarkdownNotificationAdapter)
        assert isinstance(webhook, WebhookNotificationAdapter)

    def test_webhook_backend_requires_url(self) -> None:
        settings = Settings(_env_file=None, notification_backend="webhook")  # type: ignore[call-arg]
        with pytest.raises(ValueError):
            build_notification(settings)


class TestServiceWiring:
    """Test that build_services produces a working core."""

    @pytest.mark.asyncio
    async def test_order_flows_through_wired_services(self) -> None:
        notification = FakeNotificationPort()
        services = build_services(
            Settings(_env_file=None, max_queue_length=2),  # type: ignore[call-arg]
            notification=notification,
        )
        manager = Actor(id="u-1", name="Dana", role=StaffRole.MANAGER)

        order = await services.admission.submit_order(SYSTEM_ACTOR, make_submission())
        accepted = await services.orders.accept_order(manager, order.id)

        assert accepted.status == OrderStatus.ACCEPTED
        assert (await services.orders.get_capacity()).max_queue_length == 2
        assert services.sla.is_running(order.id)
        assert notification.events_of(EventKind.ORDER_ADMITTED)

        await services.close()
        assert notification.closed is True

    @pytest.mark.asyncio
    async def test_policy_is_enforced(self) -> None:
        services = build_services(
            Settings(_env_file=None),  # type: ignore[call-arg]
            notification=FakeNotificationPort(),
        )
        order = await services.admission.submit_order(SYSTEM_ACTOR, make_submission())
        kitchen = Actor(id="u-2", name="Kai", role=StaffRole.KITCHEN)

        with pytest.raises(PermissionDenied):
            await services.orders.accept_order(kitchen, order.id)

    @pytest.mark.asyncio
    async def test_refund_threshold_from_settings(self) -> None:
        services = build_services(
            Settings(_env_file=None, ops_approval_threshold=5.0),  # type: ignore[call-arg]
            notification=FakeNotificationPort(),
        )
        manager = Actor(id="u-1", name="Dana", role=StaffRole.MANAGER)
        order = await services.admission.submit_order(
            SYSTEM_ACTOR, make_submission(unit_price=20.0)
        )

        refund = await services.refunds.submit_refund(manager, order.id, 10.0, "order_failed")

        assert refund.requires_ops_approval is True

    @pytest.mark.asyncio
    async def test_clocks_resume_after_restart(self, tmp_path: Path) -> None:
        """A new process over the same SQLite file picks up open deadlines."""
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None,
            store_backend="sqlite",
            store_sqlite_path=str(tmp_path / "handoff.db"),
        )
        manager = Actor(id="u-1", name="Dana", role=StaffRole.MANAGER)
        first = build_services(settings, notification=FakeNotificationPort())
        waiting = await first.admission.submit_order(SYSTEM_ACTOR, make_submission("SLP-1"))
        accepted = await first.admission.submit_order(SYSTEM_ACTOR, make_submission("SLP-2"))
        await first.orders.accept_order(manager, accepted.id)
        rejected = await first.admission.submit_order(SYSTEM_ACTOR, make_submission("SLP-3"))
        await first.orders.reject_order(manager, rejected.id, "too_busy")
        await first.close()

        second = build_services(settings, notification=FakeNotificationPort())
        try:
            assert await second.orders.snapshot_sla(waiting.id) is None

            resumed = await second.orders.resume_clocks()

            assert resumed == 2
            assert (await second.orders.snapshot_sla(waiting.id)).kind == DeadlineKind.ACCEPT
            assert (await second.orders.snapshot_sla(accepted.id)).kind == DeadlineKind.DELIVER
            assert await second.orders.snapshot_sla(rejected.id) is None
        finally:
            await second.close()


class TestLogging:
    def test_configure_logging_levels(self) -> None:
        root = logging.getLogger()
        try:
            configure_logging("WARNING", "text")
            assert root.level == logging.WARNING

            configure_logging("DEBUG", "json")
            assert root.level == logging.DEBUG
            assert root.handlers[0].formatter._fmt.startswith('{"time"')
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
            root.setLevel(logging.WARNING)
