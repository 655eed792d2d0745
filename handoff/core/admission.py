"""Admission control for newly submitted orders.

Decides whether an order may enter the pipeline given the merchant's
store status and capacity, and on success creates it in NEW status
with its SLA deadlines.
"""

import logging
import uuid
from datetime import timedelta

from .capacity import CapacityLedger
from .errors import (
    AdmissionDenied,
    CapacityExceeded,
    NotAccepting,
    StoreClosed,
    ValidationError,
)
from .models import (
    CapacitySettings,
    Clock,
    DomainEvent,
    EventKind,
    Order,
    OrderSubmission,
    StoreStatus,
    utc_now,
)
from .policy import Actor, Capability, PolicyGate
from .ports import IngestionPort, NotificationPort, OrderStorePort
from .sla import SLAClockEngine

logger = logging.getLogger(__name__)


def check_admission(capacity: CapacitySettings, store_status: StoreStatus) -> None:
    """Apply the admission rules in order.

    Pure decision logic; BUSY does not block on its own.

    Raises:
        StoreClosed: The store is closed.
        NotAccepting: Intake is paused.
        CapacityExceeded: The queue is full.
    """
    if store_status == StoreStatus.CLOSED:
        raise StoreClosed("Store is closed and not admitting orders")
    if not capacity.is_accepting_orders:
        raise NotAccepting("Merchant is not accepting orders")
    if capacity.current_queue_length >= capacity.max_queue_length:
        raise CapacityExceeded(
            f"Queue is full ({capacity.current_queue_length}/"
            f"{capacity.max_queue_length})"
        )


class AdmissionController(IngestionPort):
    """Core implementation of IngestionPort."""

    def __init__(
        self,
        store: OrderStorePort,
        ledger: CapacityLedger,
        sla: SLAClockEngine | None = None,
        notification: NotificationPort | None = None,
        policy: PolicyGate | None = None,
        acceptance_window_seconds: int = 90,
        delivery_window_seconds: int = 1800,
        clock: Clock = utc_now,
    ):
        """Initialize the admission controller.

        Args:
            store: OrderStorePort implementation for persistence.
            ledger: Shared capacity ledger (same instance as the state machine).
            sla: SLA engine that starts the acceptance clock on admission.
            notification: Optional port for admission events.
            policy: Capability gate (defaults to the built-in role map).
            acceptance_window_seconds: Time allowed to accept a new order.
            delivery_window_seconds: Time allowed to deliver from creation.
            clock: Source of the current time.
        """
        if acceptance_window_seconds <= 0 or delivery_window_seconds <= 0:
            raise ValueError("SLA windows must be positive")
        self.store = store
        self.ledger = ledger
        self.sla = sla
        self.notification = notification
        self.policy = policy or PolicyGate()
        self.acceptance_window = timedelta(seconds=acceptance_window_seconds)
        self.delivery_window = timedelta(seconds=delivery_window_seconds)
        self.clock = clock

    async def submit_order(self, actor: Actor, submission: OrderSubmission) -> Order:
        """Admit a submitted order or raise the specific denial."""
        self.policy.require(actor, Capability.ORDERS_SUBMIT)
        try:
            async with self.ledger.adjust() as (capacity, store_status):
                check_admission(capacity, store_status)

                existing = await self.store.get_order_by_number(
                    submission.shop_id, submission.order_number
                )
                if existing is not None:
                    raise ValidationError(
                        f"Order number {submission.order_number} already exists "
                        f"for shop {submission.shop_id}"
                    )

                now = self.clock()
                order = Order.from_submission(
                    order_id=str(uuid.uuid4()),
                    submission=submission,
                    created_at=now,
                    sla_accept_by=now + self.acceptance_window,
                    sla_deliver_by=now + self.delivery_window,
                )
                await self.store.save_order(order)
                capacity.current_queue_length += 1
        except AdmissionDenied as e:
            logger.info(
                f"Order {submission.order_number} denied: {e}",
                extra={"order_number": submission.order_number, "cause": e.code},
            )
            await self._publish(
                DomainEvent(
                    kind=EventKind.ADMISSION_DENIED,
                    order_id=None,
                    order_number=submission.order_number,
                    occurred_at=self.clock(),
                    attributes={"cause": e.code, "message": str(e)},
                )
            )
            raise

        if self.sla is not None:
            self.sla.sync(order)

        logger.info(
            f"Order {order.order_number} admitted "
            f"(queue {capacity.current_queue_length}/{capacity.max_queue_length})",
            extra={"order_id": order.id, "order_number": order.order_number},
        )
        if capacity.should_throttle and store_status == StoreStatus.OPEN:
            logger.warning(
                f"Queue length {capacity.current_queue_length} reached the busy "
                f"threshold ({capacity.busy_auto_throttle_at}); consider switching to BUSY",
                extra={"queue_length": capacity.current_queue_length},
            )
        await self._publish(
            DomainEvent(
                kind=EventKind.ORDER_ADMITTED,
                order_id=order.id,
                order_number=order.order_number,
                occurred_at=order.created_at,
                attributes={
                    "total": order.total,
                    "sla_accept_by": order.sla_accept_by.isoformat(),
                    "is_priority": order.is_priority,
                },
            )
        )
        return order

    async def _publish(self, event: DomainEvent) -> None:
        if self.notification is None:
            return
        try:
            await self.notification.publish(event)
        except Exception as e:
            # Log notification failure but don't undo the admission decision
            logger.error(
                f"Failed to publish {event.kind.value} for order "
                f"{event.order_number}: {e}",
                exc_info=True,
            )
