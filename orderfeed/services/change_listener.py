"""Real-time order change stream using PostgreSQL LISTEN/NOTIFY.

A trigger on the orders table publishes every insert, update and delete on
one channel. Each registration gets a dedicated asyncpg connection (not from
the pool) so pool sizing is unaffected.

NOTIFY payloads carry the bare table row without the customer/line-item
joins, so they are delivered as partial rows and re-fetched by the
reconciler.

IMPORTANT: LISTEN/NOTIFY does not work through connection poolers
(PgBouncer, Supavisor) in transaction mode. Supabase pooler URLs are
rewritten to session mode automatically.
"""

import asyncio
import itertools
import json
import logging
from typing import Optional
from urllib.parse import urlparse, urlunparse

import asyncpg

from orderfeed.data.repository import (
    ChangeStream,
    EventCallback,
    StatusCallback,
    SubscriptionHandle,
    SubscriptionStatus,
)
from orderfeed.domain.models import ChangeEvent, ChangeKind, PartialRow

logger = logging.getLogger(__name__)

# Channel name for all order change notifications
NOTIFY_CHANNEL = "orderfeed_changes"

# SQL to create the notify trigger function (idempotent)
_CREATE_NOTIFY_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION orderfeed_notify_change()
RETURNS TRIGGER AS $$
DECLARE
    rec RECORD;
    body TEXT;
BEGIN
    rec := COALESCE(NEW, OLD);
    body := json_build_object(
        'table', TG_TABLE_NAME,
        'op', TG_OP,
        'id', rec.id,
        'row', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END
    )::text;
    -- NOTIFY payloads are limited to 8000 bytes; fall back to the id only
    IF octet_length(body) > 7000 THEN
        body := json_build_object('table', TG_TABLE_NAME, 'op', TG_OP, 'id', rec.id)::text;
    END IF;
    PERFORM pg_notify('orderfeed_changes', body);
    RETURN rec;
END;
$$ LANGUAGE plpgsql;
"""

# SQL template for creating the trigger on a table (idempotent)
_CREATE_TRIGGER_SQL = """
DO $$ BEGIN
    IF NOT EXISTS (
        SELECT 1 FROM pg_trigger WHERE tgname = 'orderfeed_notify_{table}'
    ) THEN
        CREATE TRIGGER orderfeed_notify_{table}
            AFTER INSERT OR UPDATE OR DELETE ON {schema}.{table}
            FOR EACH ROW EXECUTE FUNCTION orderfeed_notify_change();
    END IF;
END $$;
"""

_SELF_TEST_TABLE = "_test"


def get_direct_dsn(dsn: str) -> str:
    """Convert a pooler connection string to session mode if needed.

    Supabase pooler URLs use port 6543 for transaction mode, which
    silently drops LISTEN/NOTIFY. Port 5432 on the same host uses
    session mode, which supports it. Other URLs are returned unchanged.
    """
    parsed = urlparse(dsn)
    if parsed.port != 6543:
        return dsn

    new_netloc = parsed.netloc.replace(":6543", ":5432")
    direct = urlunparse((
        parsed.scheme,
        new_netloc,
        parsed.path,
        parsed.params,
        parsed.query,
        parsed.fragment,
    ))

    host = parsed.hostname or "pooler"
    print(f"[LISTEN] Using session mode: {host}:5432")
    return direct


def parse_notification(payload: str, table: str) -> Optional[ChangeEvent]:
    """Turn a NOTIFY payload into a ChangeEvent.

    Returns:
        ChangeEvent, or None for other tables, self-tests and malformed payloads
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid notification payload: {payload!r} ({e})")
        return None

    if not isinstance(data, dict) or data.get("table") != table:
        return None

    try:
        kind = ChangeKind(str(data.get("op", "")).upper())
    except ValueError:
        logger.warning(f"Unknown change op in payload: {payload!r}")
        return None

    row_id = data.get("id")
    if row_id is None:
        logger.warning(f"Notification without id: {payload!r}")
        return None
    row_id = str(row_id)

    if kind == ChangeKind.DELETE:
        return ChangeEvent.delete(row_id)

    fields = data.get("row") if isinstance(data.get("row"), dict) else {}
    fields = {**fields, "id": row_id}
    return ChangeEvent(kind, PartialRow(fields))


class _Registration:
    """State of one LISTEN registration."""

    def __init__(self, conn: asyncpg.Connection, table: str, on_event: EventCallback,
                 on_status: StatusCallback):
        self.conn = conn
        self.table = table
        self.on_event = on_event
        self.on_status = on_status
        self.self_test = asyncio.Event()
        self.closed = False

    def on_notification(self, connection, pid, channel, payload) -> None:
        """Handle a NOTIFY event (runs on the event loop)."""
        if self.closed:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and data.get("table") == _SELF_TEST_TABLE:
            self.self_test.set()
            return

        event = parse_notification(payload, self.table)
        if event is not None:
            self.on_event(event)

    def on_termination(self, connection) -> None:
        if self.closed:
            return
        self.closed = True
        print("[LISTEN] Connection terminated")
        logger.warning("Change listener connection terminated")
        self.on_status(SubscriptionStatus.CLOSED)


class PostgresChangeStream(ChangeStream):
    """ChangeStream backed by LISTEN/NOTIFY on a dedicated connection.

    ``subscribe`` returns once LISTEN is registered; SUBSCRIBED is reported
    through ``on_status`` only after a self-test NOTIFY round-trips, so a
    pooler that drops notifications shows up as CHANNEL_ERROR instead of a
    silent, dead stream.
    """

    def __init__(
        self,
        dsn: str,
        schema: str = "public",
        self_test_timeout: float = 2.0,
        install_triggers: bool = True,
    ):
        self._dsn = dsn
        self._schema = schema
        self._self_test_timeout = self_test_timeout
        self._install_triggers = install_triggers
        self._ids = itertools.count(1)
        self._registrations: dict[int, _Registration] = {}
        self._verify_tasks: set[asyncio.Task] = set()

    async def subscribe(
        self,
        table: str,
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> SubscriptionHandle:
        conn = await asyncpg.connect(
            get_direct_dsn(self._dsn), timeout=10, statement_cache_size=0,
        )
        registration = _Registration(conn, table, on_event, on_status)
        try:
            if self._install_triggers:
                await self._ensure_trigger(conn, table)
            await conn.add_listener(NOTIFY_CHANNEL, registration.on_notification)
            conn.add_termination_listener(registration.on_termination)
        except Exception:
            await _close_quietly(conn)
            raise

        handle = SubscriptionHandle(id=next(self._ids), table=table)
        self._registrations[handle.id] = registration
        task = asyncio.ensure_future(self._verify(registration))
        self._verify_tasks.add(task)
        task.add_done_callback(self._verify_tasks.discard)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        registration = self._registrations.pop(handle.id, None)
        if registration is None:
            return
        registration.closed = True
        try:
            await registration.conn.remove_listener(
                NOTIFY_CHANNEL, registration.on_notification,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.debug(f"remove_listener failed (connection may be closed): {e}")
        await _close_quietly(registration.conn)
        logger.info(f"Change listener for {handle.table} stopped")

    async def close(self) -> None:
        """Release every open registration."""
        for handle_id in list(self._registrations):
            registration = self._registrations[handle_id]
            await self.unsubscribe(SubscriptionHandle(handle_id, registration.table))

    async def _ensure_trigger(self, conn: asyncpg.Connection, table: str) -> None:
        await conn.execute(_CREATE_NOTIFY_FUNCTION_SQL)
        await conn.execute(_CREATE_TRIGGER_SQL.format(schema=self._schema, table=table))
        logger.info(f"Ensured NOTIFY trigger on {self._schema}.{table}")

    async def _verify(self, registration: _Registration) -> None:
        """Send a test NOTIFY and report SUBSCRIBED once it arrives."""
        payload = json.dumps({"table": _SELF_TEST_TABLE, "op": "TEST"})
        try:
            await registration.conn.execute("SELECT pg_notify($1, $2)", NOTIFY_CHANNEL, payload)
            await asyncio.wait_for(registration.self_test.wait(), self._self_test_timeout)
        except asyncio.TimeoutError:
            if not registration.closed:
                print("[LISTEN] Self-test failed - NOTIFY not received (pooler issue?)")
                logger.warning("LISTEN/NOTIFY self-test timed out")
                registration.on_status(SubscriptionStatus.TIMED_OUT)
            return
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            if not registration.closed:
                logger.warning(f"LISTEN/NOTIFY self-test failed: {e}")
                registration.on_status(SubscriptionStatus.CHANNEL_ERROR)
            return

        if not registration.closed:
            print(f"[LISTEN] Change listener started on {registration.table} (verified)")
            registration.on_status(SubscriptionStatus.SUBSCRIBED)


async def _close_quietly(conn: asyncpg.Connection) -> None:
    try:
        await conn.close(timeout=2.0)
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError):
        conn.terminate()
