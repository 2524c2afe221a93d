"""PostgreSQL implementation of OrderRepository using asyncpg.

Works with any PostgreSQL database (Supabase, self-hosted, etc.) that has
``orders``, ``addresses`` and ``order_items`` tables.
"""

import json
from typing import Any, Optional, Union, TYPE_CHECKING

import asyncpg

from orderfeed.data.repository import OrderQuery, OrderRepository, StoreError
from orderfeed.domain.models import Order, OrderStatus

if TYPE_CHECKING:
    from orderfeed.data.connection_pool import DatabasePool


# Joined projection shared by the snapshot query and the single-row re-fetch.
# Prices are rendered as text so they round-trip into Decimal exactly.
_SELECT_ORDERS_SQL = """
SELECT
    o.id, o.user_id, o.address_id, o.currency, o.status,
    o.subtotal, o.shipping, o.total, o.notes, o.created_at,
    CASE WHEN a.id IS NULL THEN NULL ELSE json_build_object(
        'full_name', a.full_name,
        'email', a.email,
        'phone', a.phone
    ) END AS addresses,
    COALESCE((
        SELECT json_agg(json_build_object(
            'id', i.id,
            'product_id', i.product_id,
            'name', i.name,
            'price', i.price::text,
            'qty', i.qty
        ) ORDER BY i.id)
        FROM {schema}.order_items i
        WHERE i.order_id = o.id
    ), '[]'::json) AS order_items
FROM {schema}.{table} o
LEFT JOIN {schema}.addresses a ON a.id = o.address_id
"""

# Status as OrderStatus.parse reads it: trimmed, lowercased, and missing or
# unknown values count as pending
_NORMALIZED_STATUS_SQL = (
    "CASE WHEN lower(trim(o.status::text)) IN ("
    + ", ".join(f"'{s.value}'" for s in OrderStatus if s != OrderStatus.PENDING)
    + ") THEN lower(trim(o.status::text)) ELSE 'pending' END"
)


def build_orders_query(
    query: OrderQuery,
    table: str = "orders",
    schema: str = "public",
) -> tuple[str, list[Any]]:
    """Build the snapshot SQL and its parameters.

    Args:
        query: Snapshot parameters (bounds, status, limit)
        table: Orders table name
        schema: Schema holding the orders, addresses and order_items tables

    Returns:
        (sql, params) ready for ``conn.fetch(sql, *params)``
    """
    sql = _SELECT_ORDERS_SQL.format(schema=schema, table=table)
    conditions = []
    params: list[Any] = []

    if query.created_from is not None:
        params.append(query.created_from)
        conditions.append(f"o.created_at >= ${len(params)}")

    if query.created_before is not None:
        params.append(query.created_before)
        conditions.append(f"o.created_at < ${len(params)}")

    if query.status is not None:
        params.append(query.status.value)
        conditions.append(f"{_NORMALIZED_STATUS_SQL} = ${len(params)}")

    if conditions:
        sql += "WHERE " + " AND ".join(conditions) + "\n"

    params.append(query.limit)
    sql += f"ORDER BY o.created_at DESC LIMIT ${len(params)}"
    return sql, params


def build_order_by_id_query(table: str = "orders", schema: str = "public") -> str:
    """Build the single-row SQL used to re-fetch an order by id."""
    return _SELECT_ORDERS_SQL.format(schema=schema, table=table) + "WHERE o.id::text = $1"


def _decode_json(value: Any) -> Any:
    # asyncpg returns json columns as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def row_to_order(row: Any) -> Order:
    """Convert a joined database row to an Order."""
    data = dict(row)
    data["addresses"] = _decode_json(data.get("addresses"))
    data["order_items"] = _decode_json(data.get("order_items")) or []
    return Order.from_row(data)


class PostgresOrderRepository(OrderRepository):
    """PostgreSQL implementation of OrderRepository."""

    def __init__(
        self,
        pool_or_connection: Union[asyncpg.Pool, "DatabasePool"],
        table: str = "orders",
        schema: str = "public",
    ):
        """Initialize with either a pool or DatabasePool.

        Args:
            pool_or_connection: Either an asyncpg.Pool directly, or a DatabasePool
                                that provides dynamic pool access
            table: Orders table name
            schema: Schema holding the order tables
        """
        self._pool_or_connection = pool_or_connection
        self._table = table
        self._schema = schema

    @property
    def _pool(self) -> asyncpg.Pool:
        """Get the current pool, supporting both direct pool and DatabasePool."""
        if hasattr(self._pool_or_connection, "pool"):
            return self._pool_or_connection.pool
        return self._pool_or_connection

    async def fetch_orders(self, query: OrderQuery) -> list[Order]:
        """Fetch a bounded, newest-first snapshot of joined orders."""
        sql, params = build_orders_query(query, self._table, self._schema)
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(sql, *params)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), code=e.sqlstate) from e
        return [row_to_order(row) for row in rows]

    async def fetch_order_by_id(self, id: str) -> Optional[Order]:
        """Fetch one joined order by id."""
        sql = build_order_by_id_query(self._table, self._schema)
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(sql, str(id))
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), code=e.sqlstate) from e
        return row_to_order(row) if row else None
