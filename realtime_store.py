# realtime_store.py
"""
StoreAdapter over Ably realtime channels with Supabase as the durable record
of created missions.

Path conventions:
- a collection path maps to one channel ("telemetry/usv-01" -> "telemetry:usv-01");
  each message on it carries one child: name = child key, data = child value
  (None data removes the child)
- a single-record path is the child named by its last segment on its parent's channel
- create(path, value) publishes a new child on the path's channel and inserts
  the row into the Supabase table named after the path's first segment
"""

import asyncio
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

try:
    from ably import AblyRealtime
except ImportError:
    print("Error: Ably library not installed. Run: pip install ably")
    sys.exit(1)

try:
    from supabase import create_client, Client
except ImportError:
    print("Error: Supabase library not installed. Run: pip install supabase")
    sys.exit(1)

from config import (
    ABLY_API_KEY,
    CONNECTION_TIMEOUT,
    MISSIONS_PATH,
    SUPABASE_API_KEY,
    SUPABASE_URL,
    WRITE_DRAIN_INTERVAL,
    WRITE_QUEUE_MAX_SIZE,
    WRITE_RETRY_INTERVAL,
)
from store_adapter import (
    StoreAdapter,
    Subscription,
    generate_push_key,
    last_children,
    split_path,
)

logger = logging.getLogger("USVConsole.RealtimeStore")

HISTORY_PROBE_LIMIT = 50

# (kind, parent path parts, child key, value); kind is "create" or "set"
Write = Tuple[str, Tuple[str, ...], str, Any]


def channel_name(path: str) -> str:
    return ":".join(split_path(path))


def parse_message_data(data: Any) -> Any:
    """Decode an Ably message payload (dict, JSON text or JSON bytes). Undecodable payloads become None."""
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(data, str):
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return None
    return data


class RealtimeStore(StoreAdapter):
    """
    - Waits for the Ably connection before delivering or writing anything
    - Keeps a last-N child cache per collection subscription and emits it as a batch
    - Queues writes and drains them from a background task (fire-and-forget)
    - Logs transport failures and carries on
    """

    def __init__(
        self,
        ably_api_key: str = ABLY_API_KEY,
        supabase_url: str = SUPABASE_URL,
        supabase_api_key: str = SUPABASE_API_KEY,
        persisted_collections: Tuple[str, ...] = (MISSIONS_PATH,),
        connection_timeout: float = CONNECTION_TIMEOUT,
        retry_interval: float = WRITE_RETRY_INTERVAL,
    ):
        super().__init__()
        self.ably_api_key = ably_api_key
        self.supabase_url = supabase_url
        self.supabase_api_key = supabase_api_key
        self.persisted_collections = persisted_collections
        self.connection_timeout = connection_timeout
        self.retry_interval = retry_interval

        self.client: Optional[AblyRealtime] = None
        self.supabase_client: Optional[Client] = None

        self._writes: asyncio.Queue = asyncio.Queue(maxsize=WRITE_QUEUE_MAX_SIZE)
        self._writer_task: Optional[asyncio.Task] = None
        self._retry_writes: List[Tuple[Write, bool]] = []
        self._next_retry_at = 0.0
        self._attach_tasks: List[asyncio.Task] = []
        self._subscriptions: List[Subscription] = []
        self._listeners: Dict[Subscription, Tuple[Any, Any]] = {}
        self._probes: List[Subscription] = []
        self.connected = False

        self.stats = {
            "messages_received": 0,
            "writes_queued": 0,
            "writes_published": 0,
            "writes_dropped": 0,
            "writes_failed": 0,
            "rows_stored_db": 0,
            "errors": 0,
            "last_error": None,
        }

    # ------------- Session -------------

    async def connect(self) -> bool:
        if not self.ably_api_key:
            self._count_error("Realtime connect failed: no Ably API key configured")
            return False
        try:
            self.client = AblyRealtime(self.ably_api_key)
            self.client.connection.on(self._on_connection_state)
            await self._wait_for_connection(self.client, "Realtime", self.connection_timeout)
        except Exception as e:
            self._count_error(f"Realtime connect failed: {e}")
            return False

        if self.supabase_url and self.supabase_api_key:
            try:
                self.supabase_client = create_client(self.supabase_url, self.supabase_api_key)
                logger.info("✅ Connected to Supabase")
            except Exception as e:
                self._count_error(f"Supabase connect failed: {e}")
        else:
            logger.warning("⚠️ Supabase not configured - missions are published but not stored")

        self._writer_task = asyncio.create_task(self._drain_writes(), name="store_writer")
        self.connected = True
        self.ready.set()
        logger.info("✅ Store session ready")
        return True

    async def _wait_for_connection(self, client, name: str, timeout: float = 10):
        logger.info(f"Waiting for {name} connection...")
        start = time.time()
        while time.time() - start < timeout:
            if client.connection.state == "connected":
                logger.info(f"✅ {name} connected")
                return
            if client.connection.state in ("failed", "closed", "suspended"):
                raise ConnectionError(f"{name} connection state: {client.connection.state}")
            await asyncio.sleep(0.1)
        raise TimeoutError(f"{name} connection timeout after {timeout}s")

    def _on_connection_state(self, change) -> None:
        current = getattr(change, "current", change)
        connected = current == "connected"
        if connected != self.connected:
            logger.info(f"Connected to realtime store: {connected}")
        self.connected = connected
        for sub in self._probes:
            sub.push(connected)

    # ------------- Subscriptions -------------

    def subscribe(self, path: str, limit: Optional[int] = None) -> Subscription:
        sub = Subscription(path, self.ready, limit=limit, on_cancel=self._detach)
        self._subscriptions.append(sub)
        self._attach_tasks.append(asyncio.ensure_future(self._attach_collection(sub)))
        return sub

    def subscribe_single(self, path: str) -> Subscription:
        sub = Subscription(path, self.ready, on_cancel=self._detach)
        self._subscriptions.append(sub)
        self._attach_tasks.append(asyncio.ensure_future(self._attach_single(sub)))
        return sub

    def subscribe_connection(self) -> Subscription:
        sub = Subscription(".info/connected", self.ready, on_cancel=self._detach)
        self._probes.append(sub)
        if self.is_ready:
            sub.push(self.connected)
        return sub

    async def _history(self, channel, limit: int) -> List[Any]:
        """Newest-first channel history; failures are logged and yield nothing"""
        try:
            result = await channel.history(limit=limit)
            return list(result.items)
        except Exception as e:
            self._count_error(f"History fetch failed on {channel.name}: {e}")
            return []

    async def _attach_collection(self, sub: Subscription) -> None:
        await self.ready.wait()
        if sub.cancelled:
            return
        channel = self.client.channels.get(channel_name(sub.path))
        children: Dict[str, Any] = {}

        def apply(message) -> bool:
            key = message.name or message.id
            value = parse_message_data(message.data)
            if key is None:
                return False
            if value is None:
                return children.pop(key, None) is not None
            children.pop(key, None)
            children[key] = value
            if sub.limit is not None:
                while len(children) > sub.limit:
                    children.pop(next(iter(children)))
            return True

        for message in reversed(await self._history(channel, sub.limit or HISTORY_PROBE_LIMIT)):
            apply(message)
        if children:
            sub.push(last_children(children, sub.limit))

        def on_message(message):
            self.stats["messages_received"] += 1
            if apply(message):
                sub.push(last_children(children, sub.limit))

        try:
            await channel.subscribe(on_message)
            if sub.cancelled:
                channel.unsubscribe(on_message)
                return
            self._listeners[sub] = (channel, on_message)
            logger.info(f"✅ Subscribed to {sub.path} (last {sub.limit})")
        except Exception as e:
            self._count_error(f"Subscribe to {sub.path} failed: {e}")

    async def _attach_single(self, sub: Subscription) -> None:
        await self.ready.wait()
        if sub.cancelled:
            return
        parts = split_path(sub.path)
        name = parts[-1]
        channel = self.client.channels.get(":".join(parts[:-1]))

        for message in await self._history(channel, HISTORY_PROBE_LIMIT):
            if message.name == name:
                value = parse_message_data(message.data)
                if value is not None:
                    sub.push(value)
                break

        def on_message(message):
            self.stats["messages_received"] += 1
            value = parse_message_data(message.data)
            if value is not None:
                sub.push(value)

        try:
            await channel.subscribe(name, on_message)
            if sub.cancelled:
                channel.unsubscribe(on_message)
                return
            self._listeners[sub] = (channel, on_message)
            logger.info(f"✅ Subscribed to {sub.path}")
        except Exception as e:
            self._count_error(f"Subscribe to {sub.path} failed: {e}")

    def _detach(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        if sub in self._probes:
            self._probes.remove(sub)
        listener = self._listeners.pop(sub, None)
        if listener:
            channel, on_message = listener
            try:
                channel.unsubscribe(on_message)
            except Exception as e:
                self._count_error(f"Unsubscribe from {sub.path} failed: {e}")

    # ------------- Writes -------------

    def create(self, path: str, value: Dict[str, Any]) -> str:
        key = generate_push_key()
        self._enqueue(("create", split_path(path), key, value))
        return key

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        self._enqueue(("set", parts[:-1], parts[-1], value))

    def _enqueue(self, write: Write) -> None:
        try:
            self._writes.put_nowait(write)
        except asyncio.QueueFull:
            # Drop oldest write to make room
            self._writes.get_nowait()
            self._writes.task_done()
            self._writes.put_nowait(write)
            self.stats["writes_dropped"] += 1
        self.stats["writes_queued"] += 1

    async def _drain_writes(self):
        while True:
            if self._retry_writes and time.monotonic() >= self._next_retry_at:
                await self._retry_failed_writes()
            try:
                write = await asyncio.wait_for(self._writes.get(), timeout=self.retry_interval)
            except asyncio.TimeoutError:
                continue
            try:
                await self._flush_write(write)
            finally:
                self._writes.task_done()
            await asyncio.sleep(WRITE_DRAIN_INTERVAL)

    async def _flush_write(self, write: Write, published: bool = False, retry: bool = True) -> bool:
        """
        Publish a write and store its row. A failure is queued for one retry;
        the publish is not repeated when only the row write failed.
        """
        kind, parent, key, value = write
        try:
            if not published:
                await self._publish(parent, key, value)
                published = True
            if parent and parent[0] in self.persisted_collections:
                self._store_row(kind, parent, key, value)
            return True
        except Exception as e:
            self._count_error(f"Store {kind} on {'/'.join(parent + (key,))} failed: {e}")
            if retry:
                self._retry_writes.append((write, published))
                self._next_retry_at = time.monotonic() + self.retry_interval
            else:
                self.stats["writes_failed"] += 1
            return False

    async def _retry_failed_writes(self) -> None:
        retry = list(self._retry_writes)
        self._retry_writes.clear()
        if retry:
            logger.info(f"🔁 Retrying {len(retry)} failed writes")
        for write, published in retry:
            await self._flush_write(write, published=published, retry=False)

    async def _flush_pending_writes(self) -> None:
        """Write out whatever is still queued, then give failed writes their retry"""
        if self.client is None:
            if not self._writes.empty():
                self._count_error(f"{self._writes.qsize()} queued writes lost: no realtime client")
            return
        pending = self._writes.qsize()
        if pending:
            logger.info(f"💾 Flushing {pending} queued writes")
        while not self._writes.empty():
            write = self._writes.get_nowait()
            await self._flush_write(write)
            self._writes.task_done()
        await self._retry_failed_writes()

    async def _publish(self, parent: Tuple[str, ...], key: str, value: Any) -> None:
        channel = self.client.channels.get(":".join(parent))
        await channel.publish(key, value)
        self.stats["writes_published"] += 1

    def _store_row(self, kind: str, parent: Tuple[str, ...], key: str, value: Any) -> None:
        if not self.supabase_client or len(parent) != 1 or not isinstance(value, dict):
            return
        row = {"key": key, **value}
        table = self.supabase_client.table(parent[0])
        query = table.insert(row) if kind == "create" else table.upsert(row)
        resp = query.execute()
        if not resp.data:
            raise RuntimeError("Supabase write returned no data")
        self.stats["rows_stored_db"] += len(resp.data)

    # ------------- Lifecycle -------------

    async def close(self) -> None:
        logger.info("🧹 Closing store ...")
        for sub in list(self._subscriptions) + list(self._probes):
            sub.cancel()

        if self._writer_task and not self._writer_task.done():
            try:
                await asyncio.wait_for(self._writes.join(), timeout=self.connection_timeout)
            except asyncio.TimeoutError:
                self._count_error(f"Write queue not drained after {self.connection_timeout}s")

        pending = [t for t in self._attach_tasks if not t.done()]
        if self._writer_task:
            pending.append(self._writer_task)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        await self._flush_pending_writes()

        if self.client:
            try:
                await self.client.close()
            except Exception as e:
                self._count_error(f"Realtime close failed: {e}")
        self.connected = False
        logger.info(f"✅ Store closed at {datetime.now(timezone.utc).isoformat()}")

    def _count_error(self, msg: str):
        logger.error(f"❌ {msg}")
        self.stats["errors"] += 1
        self.stats["last_error"] = msg
