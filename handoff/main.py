"""Entry point and wiring for the Handoff fulfillment service.

Nothing else imports both the core and the adapters: this module reads
Settings, picks the store and notification adapters, builds the core
services around them and starts one of four run modes (daemon, demo,
cli, webhook). The SLA scheduler runs in every mode.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from handoff.adapters.cli.commands import CLICommandHandler
from handoff.adapters.ingestion.demo import DemoOrderGenerator
from handoff.adapters.notification.markdown import MarkdownNotificationAdapter
from handoff.adapters.notification.stdout import StdoutNotificationAdapter
from handoff.adapters.notification.webhook import WebhookNotificationAdapter
from handoff.adapters.scheduler.daemon import DaemonScheduler
from handoff.adapters.store.memory import InMemoryOrderStore
from handoff.adapters.store.sqlite import SQLiteOrderStore
from handoff.adapters.webhook.http_server import WebhookHTTPServer
from handoff.adapters.webhook.receiver import WebhookReceiver
from handoff.config import Settings, load_settings
from handoff.core.admission import AdmissionController
from handoff.core.capacity import CapacityLedger
from handoff.core.models import CapacitySettings, DeadlineKind
from handoff.core.order_service import OrderService
from handoff.core.policy import Actor, PolicyGate, StaffRole
from handoff.core.ports import NotificationPort, OrderStorePort
from handoff.core.refund_workflow import RefundWorkflow
from handoff.core.sla import SLAClockEngine
from handoff.core.state_machine import OrderStateMachine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the run modes need, wired together."""

    settings: Settings
    store: OrderStorePort
    notification: NotificationPort
    sla: SLAClockEngine
    ledger: CapacityLedger
    machine: OrderStateMachine
    admission: AdmissionController
    orders: OrderService
    refunds: RefundWorkflow

    async def close(self) -> None:
        await self.notification.close()
        await self.store.close()


def build_store(settings: Settings) -> OrderStorePort:
    """Create the order store selected by settings.store_backend."""
    capacity = CapacitySettings(
        max_queue_length=settings.max_queue_length,
        avg_prep_time_minutes=settings.avg_prep_time_minutes,
    )
    if settings.store_backend == "sqlite":
        logger.info(f"Order store: SQLite ({settings.store_sqlite_path})")
        return SQLiteOrderStore(
            db_path=settings.store_sqlite_path,
            merchant_id=settings.merchant_id,
            default_capacity=capacity,
        )
    logger.info("Order store: in-memory")
    return InMemoryOrderStore(capacity=capacity)


def build_notification(settings: Settings) -> NotificationPort:
    """Create the notification adapter selected by settings.

    Raises:
        ValueError: If the webhook backend is selected without a URL.
    """
    if settings.notification_backend == "markdown":
        logger.info("Notification adapter: Markdown")
        return MarkdownNotificationAdapter(report_dir=settings.notification_output_dir)
    if settings.notification_backend == "webhook":
        if not settings.alert_webhook_url:
            raise ValueError("webhook notification backend requires ALERT_WEBHOOK_URL")
        logger.info("Notification adapter: Webhook")
        return WebhookNotificationAdapter(
            url=settings.alert_webhook_url,
            api_key=settings.alert_webhook_api_key or None,
        )
    logger.info("Notification adapter: Stdout")
    return StdoutNotificationAdapter(verbose=settings.debug)


def build_services(
    settings: Settings,
    store: OrderStorePort | None = None,
    notification: NotificationPort | None = None,
) -> Services:
    """Wire the core services around the configured adapters.

    Args:
        settings: Application settings.
        store: Store override (tests); built from settings if None.
        notification: Notification override (tests); built from settings if None.
    """
    if store is None:
        store = build_store(settings)
    if notification is None:
        notification = build_notification(settings)
    policy = PolicyGate()

    sla = SLAClockEngine(
        notification=notification,
        windows={
            DeadlineKind.ACCEPT: settings.acceptance_window_seconds,
            DeadlineKind.DELIVER: settings.delivery_window_seconds,
        },
    )
    ledger = CapacityLedger(store)
    machine = OrderStateMachine(store, ledger=ledger, sla=sla, notification=notification)
    admission = AdmissionController(
        store,
        ledger,
        sla=sla,
        notification=notification,
        policy=policy,
        acceptance_window_seconds=settings.acceptance_window_seconds,
        delivery_window_seconds=settings.delivery_window_seconds,
    )
    orders = OrderService(store, machine, ledger, sla, policy=policy)
    refunds = RefundWorkflow(
        store,
        machine,
        policy=policy,
        notification=notification,
        ops_approval_threshold=settings.ops_approval_threshold,
        daily_refund_limit=settings.daily_refund_limit,
    )
    return Services(
        settings=settings,
        store=store,
        notification=notification,
        sla=sla,
        ledger=ledger,
        machine=machine,
        admission=admission,
        orders=orders,
        refunds=refunds,
    )


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Read `command {json-args}` lines from stdin until exit or EOF.

    Results and command errors are printed as JSON; input errors are logged.
    """
    logger.info("Staff console ready ('help' lists commands, 'exit' quits)")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # input() blocks, so it runs on the default executor
            command_line = await loop.run_in_executor(None, input, "handoff> ")
            command_line = command_line.strip()

            if not command_line:
                continue

            if command_line.lower() == "exit":
                logger.info("Leaving staff console")
                break

            if command_line.lower() == "help":
                _print_cli_help()
                continue

            parts = command_line.split(maxsplit=1)
            command = parts[0].lower()
            args_str = parts[1] if len(parts) > 1 else ""

            try:
                args = json.loads(args_str) if args_str else {}
            except json.JSONDecodeError:
                logger.error(f"Arguments for '{command}' are not valid JSON")
                continue
            if not isinstance(args, dict):
                logger.error("Arguments must be a JSON object. Use 'help' for command syntax.")
                continue

            try:
                result = await _execute_cli_command(cli_handler, command, args)
                print(json.dumps(result, indent=2, default=str))
            except ValueError as e:
                print(json.dumps({"status": "error", "message": str(e)}, indent=2))

        except EOFError:
            logger.info("End of input, leaving staff console")
            break
        except KeyboardInterrupt:
            logger.info("Interrupted; type exit to quit")
            continue


def _require(args: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if name not in args]
    if missing:
        raise ValueError(f"Missing required parameter: {', '.join(missing)}")


async def _execute_cli_command(
    cli_handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Map one console command onto a CLICommandHandler call.

    Returns:
        The handler's success or error dictionary.

    Raises:
        ValueError: If the command is unknown or a required argument is missing.
    """
    if command == "orders":
        return await cli_handler.list_orders(
            status=args.get("status"),
            tab=args.get("tab"),
            refund_status=args.get("refund_status"),
            created_after=args.get("created_after"),
        )

    elif command == "tabs":
        return await cli_handler.count_by_tab()

    elif command == "order":
        _require(args, "order_id")
        return await cli_handler.get_order(args["order_id"])

    elif command == "sla":
        _require(args, "order_id")
        return await cli_handler.snapshot_sla(args["order_id"])

    elif command == "accept":
        _require(args, "order_id")
        return await cli_handler.accept_order(args["order_id"])

    elif command == "reject":
        _require(args, "order_id", "reason_code")
        return await cli_handler.reject_order(
            args["order_id"], args["reason_code"], args.get("notes")
        )

    elif command == "prepare":
        _require(args, "order_id")
        return await cli_handler.start_preparing(args["order_id"])

    elif command == "ready":
        _require(args, "order_id")
        return await cli_handler.mark_ready(args["order_id"])

    elif command == "pickup":
        _require(args, "order_id", "runner_id", "runner_name")
        return await cli_handler.mark_picked_up(
            args["order_id"], args["runner_id"], args["runner_name"]
        )

    elif command == "deliver":
        _require(args, "order_id")
        return await cli_handler.mark_delivered(args["order_id"])

    elif command == "fail":
        _require(args, "order_id", "reason_code")
        return await cli_handler.fail_order(
            args["order_id"],
            args["reason_code"],
            args.get("notes"),
            args.get("category", "runner_fail"),
        )

    elif command == "refund":
        _require(args, "order_id", "amount", "reason")
        return await cli_handler.submit_refund(
            args["order_id"], args["amount"], args["reason"], args.get("notes")
        )

    elif command == "approve-refund":
        _require(args, "refund_id")
        return await cli_handler.approve_refund(args["refund_id"])

    elif command == "decline-refund":
        _require(args, "refund_id")
        return await cli_handler.decline_refund(args["refund_id"])

    elif command == "refund-details":
        _require(args, "refund_id")
        return await cli_handler.get_refund(args["refund_id"])

    elif command == "refunds":
        return await cli_handler.list_refunds(
            order_id=args.get("order_id"), status=args.get("status")
        )

    elif command == "capacity":
        return await cli_handler.get_capacity()

    elif command == "set-capacity":
        return await cli_handler.update_capacity(
            max_queue_length=args.get("max_queue_length"),
            avg_prep_time_minutes=args.get("avg_prep_time_minutes"),
            is_accepting_orders=args.get("is_accepting_orders"),
            busy_auto_throttle_at=args.get("busy_auto_throttle_at"),
        )

    elif command == "store":
        _require(args, "status")
        return await cli_handler.set_store_status(
            args["status"], args.get("reason"), args.get("estimated_reopen")
        )

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")


def _print_cli_help() -> None:
    """Print the console command reference."""
    help_text = """
Available Commands (JSON format):

  orders         List orders. Optional: status, tab, refund_status, created_after
                 Example: orders {"tab": "new"}
  tabs           Count orders per inbox tab.
  order          Order details with its SLA snapshot. Required: order_id
  sla            SLA snapshot. Required: order_id

  accept         Required: order_id
  reject         Required: order_id, reason_code. Optional: notes
                 Example: reject {"order_id": "...", "reason_code": "out_of_stock"}
  prepare        Required: order_id
  ready          Required: order_id
  pickup         Required: order_id, runner_id, runner_name
  deliver        Required: order_id
  fail           Required: order_id, reason_code. Optional: notes, category
                 (runner_fail or ops_override)

  refund         Required: order_id, amount, reason. Optional: notes
                 Example: refund {"order_id": "...", "amount": 12.5, "reason": "order_failed"}
  approve-refund Required: refund_id
  decline-refund Required: refund_id
  refund-details Required: refund_id
  refunds        Optional: order_id, status

  capacity       Show capacity settings and store status.
  set-capacity   Optional: max_queue_length, avg_prep_time_minutes, is_accepting_orders,
                 busy_auto_throttle_at
  store          Required: status (open, busy, closed). Optional: reason,
                 estimated_reopen (ISO 8601)

  help           Show this help message.
  exit           Exit the CLI.

Arguments are one JSON object on the same line as the command.
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Send all log records to stdout in the configured format.

    Replaces any handlers installed earlier (basicConfig force=True).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = (
            '{"time": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


async def _run_with_scheduler(scheduler: DaemonScheduler, main_task: Awaitable[None]) -> None:
    """Run a foreground coroutine while the scheduler ticks in the background."""
    ticker = asyncio.create_task(scheduler.start())
    try:
        await main_task
    finally:
        await scheduler.stop()
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass


async def bootstrap() -> None:
    """Build the services from Settings and run the selected mode until it stops.

    Adapters are closed on the way out whatever the outcome.

    Raises:
        SystemExit: If an adapter cannot be created.
    """
    settings = load_settings()

    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger.info(f"Handoff starting for merchant {settings.merchant_id}")

    try:
        services = build_services(settings)
    except (ValueError, OSError) as e:
        logger.error(f"Failed to initialize adapters: {e}")
        sys.exit(1)

    scheduler = DaemonScheduler(
        sla_port=services.sla,
        tick_interval_seconds=settings.sla_tick_seconds,
    )

    logger.info(f"Run mode: {settings.run_mode}")

    try:
        await services.orders.resume_clocks()

        if settings.run_mode == "daemon":
            await scheduler.start()

        elif settings.run_mode == "demo":
            scheduler.order_source = DemoOrderGenerator(
                ingestion=services.admission,
                fulfillment=services.orders,
                shop_id=settings.merchant_id,
                seed=settings.demo_seed,
            )
            scheduler.source_every_n_ticks = settings.demo_every_n_ticks
            await scheduler.start()

        elif settings.run_mode == "cli":
            actor = Actor(
                id=f"cli-{settings.cli_actor_name}",
                name=settings.cli_actor_name,
                role=StaffRole(settings.cli_actor_role),
            )
            cli_handler = CLICommandHandler(services.orders, services.refunds, actor)
            await _run_with_scheduler(scheduler, _run_cli_interactive(cli_handler))

        elif settings.run_mode == "webhook":
            webhook_receiver = WebhookReceiver(
                ingestion=services.admission,
                fulfillment=services.orders,
                refunds=services.refunds,
            )
            http_server = WebhookHTTPServer(
                receiver=webhook_receiver,
                host=settings.webhook_host,
                port=settings.webhook_port,
                api_key=settings.webhook_api_key or None,
                require_auth=settings.webhook_require_auth,
            )
            await http_server.start()
            try:
                # The scheduler owns SIGINT/SIGTERM; when it stops, so does the server
                await scheduler.start()
            finally:
                await http_server.stop()

        else:
            logger.error(f"Unknown run mode: {settings.run_mode}")
            sys.exit(1)

    finally:
        await services.close()


def main() -> None:
    """Application entry point.

    Runs bootstrap() on a fresh event loop.

    Exit codes:
        0: clean shutdown
        1: startup failure or unhandled error
        130: interrupted (Ctrl+C)
    """
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
