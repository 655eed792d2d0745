"""Merchant capacity ledger.

Owns every read-modify-write of CapacitySettings. Admission (increment)
and the state machine (release) both go through the same lock, so
concurrent admissions and completions never lose an update.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from .models import CapacitySettings, StoreStatus
from .ports import OrderStorePort

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Serializes access to the merchant's queue counter and store status."""

    def __init__(self, store: OrderStorePort):
        self.store = store
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def adjust(self) -> AsyncIterator[tuple[CapacitySettings, StoreStatus]]:
        """Hold the ledger lock around a read-modify-write.

        Yields the current capacity and store status. The capacity is
        saved when the block exits cleanly and discarded if it raises.
        """
        async with self._lock:
            capacity = await self.store.get_capacity()
            store_status = await self.store.get_store_status()
            yield capacity, store_status
            await self.store.save_capacity(capacity)

    async def release(self, order_id: str) -> CapacitySettings:
        """Give back one queue slot, never dropping below zero."""
        async with self.adjust() as (capacity, _):
            if capacity.current_queue_length > 0:
                capacity.current_queue_length -= 1
            else:
                logger.warning(
                    f"Queue release for order {order_id} with an empty queue",
                    extra={"order_id": order_id},
                )
        logger.debug(
            f"Queue slot released by order {order_id}: "
            f"{capacity.current_queue_length}/{capacity.max_queue_length}",
            extra={"order_id": order_id},
        )
        return capacity

    async def update(
        self,
        max_queue_length: int | None = None,
        avg_prep_time_minutes: int | None = None,
        is_accepting_orders: bool | None = None,
        busy_auto_throttle_at: int | None = None,
    ) -> CapacitySettings:
        """Apply staff changes to the capacity settings."""
        async with self.adjust() as (capacity, _):
            if max_queue_length is not None:
                capacity.max_queue_length = max_queue_length
            if avg_prep_time_minutes is not None:
                capacity.avg_prep_time_minutes = avg_prep_time_minutes
            if is_accepting_orders is not None:
                capacity.is_accepting_orders = is_accepting_orders
            if busy_auto_throttle_at is not None:
                capacity.busy_auto_throttle_at = busy_auto_throttle_at
        return capacity

    async def set_store_status(
        self,
        status: StoreStatus,
        reason: str | None = None,
        estimated_reopen: datetime | None = None,
    ) -> CapacitySettings:
        """Change store status; closing pauses intake and reopening resumes it.

        Closing records the reason and estimated reopen time, keeping the
        previous values for any not given. Any other status clears them.
        """
        async with self.adjust() as (capacity, previous):
            await self.store.save_store_status(status)
            if status == StoreStatus.CLOSED:
                capacity.is_accepting_orders = False
                if reason is not None:
                    capacity.close_reason = reason
                if estimated_reopen is not None:
                    capacity.estimated_reopen = estimated_reopen
            else:
                if previous == StoreStatus.CLOSED:
                    capacity.is_accepting_orders = True
                capacity.close_reason = None
                capacity.estimated_reopen = None
        return capacity

    async def snapshot(self) -> CapacitySettings:
        return await self.store.get_capacity()
