# store_adapter.py
"""
Boundary between the console core and the realtime key-value store.

The core only ever talks to a StoreAdapter:
- subscribe(path, limit)       -> Subscription of keyed batches (last N children)
- subscribe_single(path)       -> Subscription of single records
- subscribe_connection()       -> Subscription of session online/offline flags
- create(path, value)          -> generated key (write is fire-and-forget)
- set(path, value)             -> None (fire-and-forget)

Nothing is delivered and nothing is written until the session is ready.
Transport failures are logged by the adapter and surface as silence.
"""

import abc
import asyncio
import copy
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("USVConsole.Store")

_CLOSED = object()


# ------------------------------
# Push keys
# ------------------------------

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_last_push_time = 0
_last_rand_chars: List[int] = []


def generate_push_key(now_ms: Optional[int] = None) -> str:
    """
    20-char chronologically sortable key: 8 chars of millisecond time followed
    by 12 random chars. Keys generated within the same millisecond increment
    the random part so ordering is kept.
    """
    global _last_push_time, _last_rand_chars

    now = int(time.time() * 1000) if now_ms is None else now_ms
    duplicate = now == _last_push_time
    _last_push_time = now

    time_chars = []
    for _ in range(8):
        time_chars.append(PUSH_CHARS[now % 64])
        now //= 64
    key = "".join(reversed(time_chars))

    if not duplicate:
        _last_rand_chars = [random.randrange(64) for _ in range(12)]
    else:
        i = 11
        while i >= 0 and _last_rand_chars[i] == 63:
            _last_rand_chars[i] = 0
            i -= 1
        if i >= 0:
            _last_rand_chars[i] += 1

    return key + "".join(PUSH_CHARS[c] for c in _last_rand_chars)


def split_path(path: str) -> Tuple[str, ...]:
    return tuple(p for p in path.strip("/").split("/") if p)


def last_children(value: Any, limit: Optional[int]) -> Optional[Dict[str, Any]]:
    """Ordered copy of the last `limit` children of a collection value"""
    if not isinstance(value, dict):
        return None
    items = list(value.items())
    if limit is not None:
        items = items[-limit:] if limit > 0 else []
    return copy.deepcopy(dict(items))


# ------------------------------
# Subscription stream
# ------------------------------

class Subscription:
    """
    Cancellable async stream of store events.
    Iteration waits for the session to become ready, then yields events in
    delivery order until cancelled.
    """

    def __init__(
        self,
        path: str,
        ready: asyncio.Event,
        limit: Optional[int] = None,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.path = path
        self.limit = limit
        self._ready = ready
        self._on_cancel = on_cancel
        self._queue: asyncio.Queue = asyncio.Queue()
        self.cancelled = False

    def push(self, event: Any) -> None:
        if self.cancelled:
            return
        self._queue.put_nowait(event)

    def pending(self) -> int:
        return self._queue.qsize()

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._queue.put_nowait(_CLOSED)
        if self._on_cancel:
            self._on_cancel(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        if not self._ready.is_set():
            await self._ready.wait()
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event


# ------------------------------
# Adapter interface
# ------------------------------

class StoreAdapter(abc.ABC):
    """Narrow interface over a publish/subscribe key-value store"""

    def __init__(self):
        self.ready = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self.ready.is_set()

    async def wait_ready(self) -> None:
        await self.ready.wait()

    @abc.abstractmethod
    async def connect(self) -> bool:
        """Complete the session handshake. Returns False (and stays not-ready) on failure."""

    @abc.abstractmethod
    def subscribe(self, path: str, limit: Optional[int] = None) -> Subscription:
        ...

    @abc.abstractmethod
    def subscribe_single(self, path: str) -> Subscription:
        ...

    @abc.abstractmethod
    def subscribe_connection(self) -> Subscription:
        ...

    @abc.abstractmethod
    def create(self, path: str, value: Dict[str, Any]) -> str:
        ...

    @abc.abstractmethod
    def set(self, path: str, value: Any) -> None:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...


# ------------------------------
# In-memory store
# ------------------------------

class InMemoryStore(StoreAdapter):
    """
    Local keyed tree with realtime-database semantics, used for mock sessions
    and tests:
    - a subscriber receives the current value as soon as the session is ready
    - writes notify subscribers on the written path, its ancestors and descendants
    - collection subscriptions receive only the last `limit` children
    """

    def __init__(self, auto_ready: bool = True):
        super().__init__()
        self.auto_ready = auto_ready
        self._root: Dict[str, Any] = {}
        self._collections: List[Subscription] = []
        self._singles: List[Subscription] = []
        self._probes: List[Subscription] = []
        self._pending_writes: List[Tuple[str, Any]] = []
        self.connected = False
        self.auth_failed = False
        self.stats = {"writes": 0, "writes_deferred": 0, "events_delivered": 0}

    # ------------- Session -------------

    async def connect(self) -> bool:
        if self.auth_failed:
            return False
        if self.auto_ready:
            self.mark_ready()
        return self.is_ready

    def mark_ready(self) -> None:
        if self.is_ready:
            return
        self.ready.set()
        logger.info("✅ In-memory store session ready")
        self.set_connected(True)

        pending = list(self._pending_writes)
        self._pending_writes.clear()
        for path, value in pending:
            self._write(path, value)

        for sub in self._collections + self._singles:
            self._deliver(sub)

    def fail_auth(self, reason: str = "anonymous sign-in rejected") -> None:
        """Simulate a failed handshake: the session never becomes ready"""
        self.auth_failed = True
        logger.error(f"❌ Store auth failed: {reason}")

    def set_connected(self, connected: bool) -> None:
        self.connected = connected
        for sub in self._probes:
            sub.push(connected)

    # ------------- Reads -------------

    def _node(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def get(self, path: str) -> Any:
        return copy.deepcopy(self._node(path))

    def subscribe(self, path: str, limit: Optional[int] = None) -> Subscription:
        sub = Subscription(path, self.ready, limit=limit, on_cancel=self._remove)
        self._collections.append(sub)
        if self.is_ready:
            self._deliver(sub)
        return sub

    def subscribe_single(self, path: str) -> Subscription:
        sub = Subscription(path, self.ready, on_cancel=self._remove)
        self._singles.append(sub)
        if self.is_ready:
            self._deliver(sub)
        return sub

    def subscribe_connection(self) -> Subscription:
        sub = Subscription(".info/connected", self.ready, on_cancel=self._remove)
        self._probes.append(sub)
        if self.is_ready:
            sub.push(self.connected)
        return sub

    # ------------- Writes -------------

    def create(self, path: str, value: Dict[str, Any]) -> str:
        key = generate_push_key()
        self.set("/".join(split_path(path) + (key,)), value)
        return key

    def set(self, path: str, value: Any) -> None:
        if not self.is_ready:
            self._pending_writes.append((path, copy.deepcopy(value)))
            self.stats["writes_deferred"] += 1
            return
        self._write(path, copy.deepcopy(value))

    def _write(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            self._root = value if isinstance(value, dict) else {}
        else:
            node = self._root
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            if value is None:
                node.pop(parts[-1], None)
            else:
                node[parts[-1]] = value
        self.stats["writes"] += 1
        self._notify(parts)

    def _notify(self, written: Tuple[str, ...]) -> None:
        for sub in self._collections + self._singles:
            sub_parts = split_path(sub.path)
            n = min(len(sub_parts), len(written))
            if sub_parts[:n] == written[:n]:
                self._deliver(sub)

    def _deliver(self, sub: Subscription) -> None:
        value = self._node(sub.path)
        if sub in self._collections:
            batch = last_children(value, sub.limit)
            if batch is None:
                return
            sub.push(batch)
        else:
            if value is None:
                return
            sub.push(copy.deepcopy(value))
        self.stats["events_delivered"] += 1

    def _remove(self, sub: Subscription) -> None:
        for subs in (self._collections, self._singles, self._probes):
            if sub in subs:
                subs.remove(sub)

    async def close(self) -> None:
        for sub in self._collections + self._singles + self._probes:
            sub.cancel()
        self.set_connected(False)
