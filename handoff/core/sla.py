"""SLA clock engine.

Computes remaining time and urgency for order deadlines and detects
breaches. All clocks share one min-heap of deadlines that is advanced
by a single scheduler tick, instead of one timer per order.
"""

import heapq
import itertools
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType

from .errors import NotFound
from .models import (
    Clock,
    DeadlineKind,
    DomainEvent,
    EventKind,
    Order,
    OrderStatus,
    SLASnapshot,
    UrgencyLevel,
    utc_now,
)
from .ports import NotificationPort, SLAMonitorPort

logger = logging.getLogger(__name__)

CRITICAL_THRESHOLD_SECONDS = 30
WARNING_THRESHOLD_SECONDS = 60

DEFAULT_WINDOWS: Mapping[DeadlineKind, int] = MappingProxyType(
    {DeadlineKind.ACCEPT: 90, DeadlineKind.DELIVER: 1800}
)

# Which deadline is monitored while an order sits in each status.
MONITORED_STATUSES: Mapping[OrderStatus, DeadlineKind] = MappingProxyType(
    {
        OrderStatus.NEW: DeadlineKind.ACCEPT,
        OrderStatus.ACCEPTED: DeadlineKind.DELIVER,
        OrderStatus.PREPARING: DeadlineKind.DELIVER,
        OrderStatus.READY: DeadlineKind.DELIVER,
        OrderStatus.IN_TRANSIT: DeadlineKind.DELIVER,
    }
)


def seconds_left(deadline: datetime, now: datetime) -> int:
    """Whole seconds until the deadline, floored at zero."""
    return max(0, math.floor((deadline - now).total_seconds()))


def classify(diff: int) -> UrgencyLevel:
    """Map seconds remaining onto an urgency bucket."""
    if diff <= CRITICAL_THRESHOLD_SECONDS:
        return UrgencyLevel.CRITICAL
    if diff <= WARNING_THRESHOLD_SECONDS:
        return UrgencyLevel.WARNING
    return UrgencyLevel.OK


def evaluate(
    deadline: datetime,
    now: datetime,
    total_window: float,
    kind: DeadlineKind = DeadlineKind.ACCEPT,
) -> SLASnapshot:
    """Pure snapshot of a deadline at a given instant.

    Args:
        deadline: Absolute deadline.
        now: Current time.
        total_window: Nominal SLA window in seconds, for percentage_left.
        kind: Which SLA the deadline belongs to.
    """
    diff = seconds_left(deadline, now)
    if total_window > 0:
        percentage = min(100.0, max(0.0, diff / total_window * 100))
    else:
        percentage = 0.0
    return SLASnapshot(
        seconds_left=diff,
        is_expired=diff <= 0,
        percentage_left=percentage,
        urgency_level=classify(diff),
        kind=kind,
    )


@dataclass
class _Clock:
    order_id: str
    order_number: str | None
    kind: DeadlineKind
    deadline: datetime
    total_window: float
    generation: int
    breached: bool = False


class SLAClockEngine(SLAMonitorPort):
    """Tracks many concurrently active SLA clocks.

    At most one clock runs per order. Restarting or stopping a clock
    leaves its old heap entry behind; stale entries are skipped when
    popped (checked by generation) and compacted away periodically.
    """

    def __init__(
        self,
        notification: NotificationPort | None = None,
        clock: Clock = utc_now,
        windows: Mapping[DeadlineKind, int] = DEFAULT_WINDOWS,
    ):
        self.notification = notification
        self.clock = clock
        self.windows = windows
        self._clocks: dict[str, _Clock] = {}
        self._heap: list[tuple[datetime, int, str]] = []
        self._generations = itertools.count()
        # Last breached deadline per order, so a clock restarted on the
        # same deadline (refund declined) does not breach twice.
        self._breached: dict[str, tuple[DeadlineKind, datetime]] = {}

    @property
    def active_count(self) -> int:
        return len(self._clocks)

    def is_running(self, order_id: str) -> bool:
        return order_id in self._clocks

    def start(
        self,
        order_id: str,
        deadline: datetime,
        total_window: float,
        kind: DeadlineKind = DeadlineKind.ACCEPT,
        order_number: str | None = None,
        breached: bool = False,
    ) -> None:
        """Start (or restart) the clock for an order.

        A clock started with breached=True is tracked but never emits.
        """
        if total_window <= 0:
            raise ValueError(f"total_window must be positive, got {total_window}")
        generation = next(self._generations)
        self._clocks[order_id] = _Clock(
            order_id=order_id,
            order_number=order_number,
            kind=kind,
            deadline=deadline,
            total_window=total_window,
            generation=generation,
            breached=breached,
        )
        if not breached:
            heapq.heappush(self._heap, (deadline, generation, order_id))
        self._maybe_compact()
        logger.debug(
            f"SLA clock started for order {order_id}",
            extra={"order_id": order_id, "kind": kind.value, "deadline": deadline.isoformat()},
        )

    def stop(self, order_id: str) -> bool:
        """Stop the clock for an order. Returns False if none was running."""
        stopped = self._clocks.pop(order_id, None) is not None
        if stopped:
            logger.debug(f"SLA clock stopped for order {order_id}")
        return stopped

    def snapshot(self, order_id: str, now: datetime | None = None) -> SLASnapshot:
        """Snapshot a running clock.

        Raises:
            NotFound: If no clock is running for the order.
        """
        clock = self._clocks.get(order_id)
        if clock is None:
            raise NotFound(f"No SLA clock running for order {order_id}")
        return evaluate(
            clock.deadline, now or self.clock(), clock.total_window, clock.kind
        )

    def sync(self, order: Order) -> None:
        """Start, switch or stop an order's clock to match its status."""
        kind = MONITORED_STATUSES.get(order.status)
        if kind is None:
            self.stop(order.id)
            if order.is_terminal:
                self._breached.pop(order.id, None)
            return

        running = self._clocks.get(order.id)
        if running is not None and running.kind == kind:
            return

        deadline = order.sla_accept_by if kind == DeadlineKind.ACCEPT else order.sla_deliver_by
        self.start(
            order.id,
            deadline,
            self.windows[kind],
            kind=kind,
            order_number=order.order_number,
            breached=self._breached.get(order.id) == (kind, deadline),
        )

    def resume(self, orders: Iterable[Order]) -> int:
        """Rebuild clocks for orders loaded from a store, e.g. after a restart.

        Returns:
            Number of clocks running afterwards for the given orders.
        """
        resumed = 0
        for order in orders:
            self.sync(order)
            if order.id in self._clocks:
                resumed += 1
        logger.info(f"Resumed {resumed} SLA clocks", extra={"resumed": resumed})
        return resumed

    async def tick(self) -> list[DomainEvent]:
        """Pop every newly expired clock and emit one breach event each."""
        now = self.clock()
        breaches: list[DomainEvent] = []

        while self._heap and seconds_left(self._heap[0][0], now) <= 0:
            _, generation, order_id = heapq.heappop(self._heap)
            clock = self._clocks.get(order_id)
            if clock is None or clock.generation != generation or clock.breached:
                continue
            clock.breached = True
            self._breached[order_id] = (clock.kind, clock.deadline)
            breaches.append(
                DomainEvent(
                    kind=EventKind.SLA_BREACHED,
                    order_id=order_id,
                    order_number=clock.order_number,
                    occurred_at=now,
                    attributes={
                        "sla": clock.kind.value,
                        "deadline": clock.deadline.isoformat(),
                        "overdue_seconds": max(
                            0, math.floor((now - clock.deadline).total_seconds())
                        ),
                    },
                )
            )

        for event in breaches:
            logger.warning(
                f"SLA breached for order {event.order_number or event.order_id} "
                f"({event.attributes['sla']})",
                extra={"order_id": event.order_id, "sla": event.attributes["sla"]},
            )
            if self.notification is None:
                continue
            try:
                await self.notification.publish(event)
            except Exception as e:
                logger.error(
                    f"Failed to publish SLA breach for order {event.order_id}: {e}",
                    exc_info=True,
                )

        return breaches

    def _maybe_compact(self) -> None:
        """Drop stale heap entries once they dominate the heap."""
        if len(self._heap) <= 2 * len(self._clocks) + 64:
            return
        self._heap = [
            entry
            for entry in self._heap
            if (clock := self._clocks.get(entry[2])) is not None
            and clock.generation == entry[1]
        ]
        heapq.heapify(self._heap)
