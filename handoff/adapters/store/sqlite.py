"""SQLite order store adapter.

Implements OrderStorePort using SQLite with aiosqlite for async access.
Orders and refunds are stored as JSON documents next to the columns
used for filtering; capacity and store status live in a small
per-merchant key/value table.
"""

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from handoff.adapters.serialization import (
    capacity_from_dict,
    capacity_to_dict,
    order_from_dict,
    order_to_dict,
    refund_from_dict,
    refund_to_dict,
)
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

_CAPACITY_KEY = "capacity"
_STORE_STATUS_KEY = "store_status"


class SQLiteOrderStore(OrderStorePort):
    """SQLite-backed order store with connection pooling and async access."""

    def __init__(
        self,
        db_path: str,
        merchant_id: str = "default",
        default_capacity: CapacitySettings | None = None,
        pool_size: int = 5,
    ):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            merchant_id: Key for this merchant's capacity and store status.
            default_capacity: Capacity returned before any has been saved.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.merchant_id = merchant_id
        self.default_capacity = default_capacity or CapacitySettings()
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        return await aiosqlite.connect(str(self.db_path))

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return
        async with self._schema_lock:
            # Check again after acquiring lock to prevent race
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS orders (
                        id TEXT PRIMARY KEY,
                        order_number TEXT NOT NULL,
                        shop_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        refund_status TEXT NOT NULL DEFAULT 'none',
                        created_at TIMESTAMP NOT NULL,
                        version INTEGER NOT NULL DEFAULT 0,
                        data_json TEXT NOT NULL,
                        UNIQUE (shop_id, order_number)
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS refunds (
                        id TEXT PRIMARY KEY,
                        order_id TEXT NOT NULL REFERENCES orders(id),
                        status TEXT NOT NULL,
                        requested_at TIMESTAMP NOT NULL,
                        data_json TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS merchant_state (
                        merchant_id TEXT NOT NULL,
                        key TEXT NOT NULL,
                        value_json TEXT NOT NULL,
                        PRIMARY KEY (merchant_id, key)
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_orders_created ON orders(created_at)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_refunds_order ON refunds(order_id)"
                )
                await conn.commit()
                self._schema_initialized = True
            finally:
                await self._return_connection(conn)

    async def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[Any]:
        await self._init_schema()
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(query, params)
            return list(await cursor.fetchall())
        finally:
            await self._return_connection(conn)

    async def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        await self._init_schema()
        conn = await self._get_connection()
        try:
            await conn.execute(query, params)
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def get_order(self, order_id: str) -> Order | None:
        rows = await self._fetch_all(
            "SELECT data_json FROM orders WHERE id = ?", (order_id,)
        )
        return self._row_to_order(rows[0]) if rows else None

    async def get_order_by_number(self, shop_id: str, order_number: str) -> Order | None:
        rows = await self._fetch_all(
            "SELECT data_json FROM orders WHERE shop_id = ? AND order_number = ?",
            (shop_id, order_number),
        )
        return self._row_to_order(rows[0]) if rows else None

    async def save_order(self, order: Order) -> None:
        """Create or update an order."""
        await self._execute(
            """
            INSERT OR REPLACE INTO orders
            (id, order_number, shop_id, status, refund_status, created_at,
             version, data_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.id,
                order.order_number,
                order.shop_id,
                order.status.value,
                order.refund_status.value,
                order.created_at.isoformat(),
                order.version,
                json.dumps(order_to_dict(order)),
            ),
        )

    async def list_orders(self, order_filter: OrderFilter | None = None) -> list[Order]:
        """List orders, newest first.

        Shop and refund-status filters run in SQL; the remaining
        criteria are applied with OrderFilter.matches().
        """
        clauses: list[str] = []
        params: list[Any] = []
        if order_filter is not None:
            if order_filter.shop_id is not None:
                clauses.append("shop_id = ?")
                params.append(order_filter.shop_id)
            if order_filter.refund_status is not None:
                clauses.append("refund_status = ?")
                params.append(order_filter.refund_status.value)

        query = "SELECT data_json FROM orders"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"

        orders = [self._row_to_order(row) for row in await self._fetch_all(query, tuple(params))]
        if order_filter is None:
            return orders
        return [o for o in orders if order_filter.matches(o)]

    async def get_refund(self, refund_id: str) -> RefundRequest | None:
        rows = await self._fetch_all(
            "SELECT data_json FROM refunds WHERE id = ?", (refund_id,)
        )
        return self._row_to_refund(rows[0]) if rows else None

    async def save_refund(self, refund: RefundRequest) -> None:
        """Create or update a refund request."""
        await self._execute(
            """
            INSERT OR REPLACE INTO refunds
            (id, order_id, status, requested_at, data_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                refund.id,
                refund.order_id,
                refund.status.value,
                refund.requested_at.isoformat(),
                json.dumps(refund_to_dict(refund)),
            ),
        )

    async def list_refunds(
        self,
        order_id: str | None = None,
        status: RefundStatus | None = None,
    ) -> list[RefundRequest]:
        clauses: list[str] = []
        params: list[Any] = []
        if order_id is not None:
            clauses.append("order_id = ?")
            params.append(order_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        query = "SELECT data_json FROM refunds"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY requested_at DESC"
        return [self._row_to_refund(row) for row in await self._fetch_all(query, tuple(params))]

    async def get_capacity(self) -> CapacitySettings:
        value = await self._get_state(_CAPACITY_KEY)
        if value is None:
            return dataclasses.replace(self.default_capacity)
        return capacity_from_dict(value)

    async def save_capacity(self, capacity: CapacitySettings) -> None:
        await self._set_state(_CAPACITY_KEY, capacity_to_dict(capacity))

    async def get_store_status(self) -> StoreStatus:
        value = await self._get_state(_STORE_STATUS_KEY)
        return StoreStatus(value) if value is not None else StoreStatus.OPEN

    async def save_store_status(self, status: StoreStatus) -> None:
        await self._set_state(_STORE_STATUS_KEY, status.value)

    async def _get_state(self, key: str) -> Any:
        rows = await self._fetch_all(
            "SELECT value_json FROM merchant_state WHERE merchant_id = ? AND key = ?",
            (self.merchant_id, key),
        )
        return json.loads(rows[0][0]) if rows else None

    async def _set_state(self, key: str, value: Any) -> None:
        await self._execute(
            """
            INSERT OR REPLACE INTO merchant_state (merchant_id, key, value_json)
            VALUES (?, ?, ?)
            """,
            (self.merchant_id, key, json.dumps(value)),
        )

    @staticmethod
    def _row_to_order(row: tuple[Any, ...]) -> Order:
        """Convert a database row to an Order.

        Raises:
            ValueError: If the stored document is malformed.
        """
        try:
            return order_from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse order row: {e}")
            raise ValueError(f"Order row parsing failed: {e}") from e

    @staticmethod
    def _row_to_refund(row: tuple[Any, ...]) -> RefundRequest:
        """Convert a database row to a RefundRequest.

        Raises:
            ValueError: If the stored document is malformed.
        """
        try:
            return refund_from_dict(json.loads(row[0]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse refund row: {e}")
            raise ValueError(f"Refund row parsing failed: {e}") from e
