"""In-memory order store adapter.

Implements OrderStorePort with plain dictionaries. Every read and write
deep-copies, so callers never hold references into stored state and an
aborted edit leaves nothing behind.
"""

import copy
import logging

from handoff.core.models import (
    CapacitySettings,
    Order,
    OrderFilter,
    RefundRequest,
    RefundStatus,
    StoreStatus,
)
from handoff.core.ports import OrderStorePort

logger = logging.getLogger(__name__)


class InMemoryOrderStore(OrderStorePort):
    """Dictionary-backed order, refund and capacity store."""

    def __init__(
        self,
        capacity: CapacitySettings | None = None,
        store_status: StoreStatus = StoreStatus.OPEN,
    ):
        """Initialize an empty store.

        Args:
            capacity: Initial capacity settings (defaults if omitted).
            store_status: Initial store status.
        """
        self._orders: dict[str, Order] = {}
        self._refunds: dict[str, RefundRequest] = {}
        self._capacity = copy.deepcopy(capacity) if capacity else CapacitySettings()
        self._store_status = store_status

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    async def get_order_by_number(self, shop_id: str, order_number: str) -> Order | None:
        for order in self._orders.values():
            if order.shop_id == shop_id and order.order_number == order_number:
                return copy.deepcopy(order)
        return None

    async def save_order(self, order: Order) -> None:
        self._orders[order.id] = copy.deepcopy(order)

    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        orders = [
            o for o in self._orders.values()
            if order_filter is None or order_filter.matches(o)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return copy.deepcopy(orders)

    async def get_refund(self, refund_id: str) -> RefundRequest | None:
        refund = self._refunds.get(refund_id)
        return copy.deepcopy(refund) if refund is not None else None

    async def save_refund(self, refund: RefundRequest) -> None:
        self._refunds[refund.id] = copy.deepcopy(refund)

    async def list_refunds(
        self,
        order_id: str | None = None,
        status: RefundStatus | None = None,
    ) -> list[RefundRequest]:
        refunds = [
            r
            for r in self._refunds.values()
            if (order_id is None or r.order_id == order_id)
            and (status is None or r.status == status)
        ]
        refunds.sort(key=lambda r: r.requested_at, reverse=True)
        return copy.deepcopy(refunds)

    async def get_capacity(self) -> CapacitySettings:
        return copy.deepcopy(self._capacity)

    async def save_capacity(self, capacity: CapacitySettings) -> None:
        self._capacity = copy.deepcopy(capacity)

    async def get_store_status(self) -> StoreStatus:
        return self._store_status

    async def save_store_status(self, status: StoreStatus) -> None:
        self._store_status = status

    async def close(self) -> None:
        logger.debug(
            f"Closing in-memory store ({len(self._orders)} orders, "
            f"{len(self._refunds)} refunds)"
        )
