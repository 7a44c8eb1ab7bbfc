"""
Async front end for ``sqlalchemy.pool.QueuePool``.

Drivers stay blocking DB-API drivers: checkout, every driver call and
check-in run in worker threads via ``asyncio.to_thread``. QueuePool bounds
the sessions checked out at once, hands idle ones back in FIFO order and
replaces a reused session whose liveness ping fails.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, TypeVar

from sqlalchemy import event
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import QueuePool

from adapters.errors import AdapterError, EngineConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool_ids = itertools.count(1)

# marks a session that has been checked in at least once; fresh ones skip the ping
_REUSED = "reused"


@dataclass(eq=False)
class PooledConnection:
    """A checked-out QueuePool connection plus per-checkout bookkeeping."""

    proxy: Any
    broken: bool = False
    pending: Optional["asyncio.Future[Any]"] = None

    @property
    def raw(self) -> Any:
        return self.proxy.dbapi_connection

    @property
    def session(self) -> Dict[str, Any]:
        """Per-connection state, cleared whenever the driver connection is replaced."""
        return self.proxy.info


class PoolTimeoutError(AdapterError):
    """Raised when a pooled operation exceeds its time budget."""


class ConnectionPool:
    """
    Bounded pool of driver connections.

    Args:
        connect: zero-argument callable returning a new DB-API connection.
        size: maximum number of connections checked out at once.
        timeout: seconds to wait for a free connection.
        name: label used in logs.
        on_checkout: optional ``(PooledConnection) -> None`` run in the worker
            thread before a connection is handed out (session setup).
        ping: optional ``(raw) -> None`` liveness check for reused connections.
        cancel: optional ``(raw) -> None`` that interrupts the statement
            running on ``raw``; called from another thread.
        keep_interrupted: return a timed-out session to the pool once its
            statement has stopped, instead of discarding it.
    """

    def __init__(
        self,
        connect: Callable[[], Any],
        size: int = 10,
        timeout: float = 60.0,
        name: str = "pool",
        on_checkout: Optional[Callable[[PooledConnection], None]] = None,
        ping: Optional[Callable[[Any], None]] = None,
        cancel: Optional[Callable[[Any], None]] = None,
        keep_interrupted: bool = False,
    ):
        if size <= 0:
            raise ValueError(f"Pool size must be > 0, got {size}")

        self.pool_id = next(_pool_ids)
        self.size = size
        self.timeout = timeout
        self.name = name
        self.keep_interrupted = keep_interrupted
        self._connect = connect
        self._on_checkout = on_checkout
        self._ping = ping
        self._cancel = cancel

        self._pool = QueuePool(
            self._create,
            pool_size=size,
            max_overflow=0,
            timeout=timeout,
            reset_on_return="rollback",
            logging_name=name,
        )
        if ping is not None:
            event.listen(self._pool, "checkout", self._ping_on_checkout)
        self._background: Set["asyncio.Future[Any]"] = set()
        self._closed = False

    def __repr__(self) -> str:
        return f"ConnectionPool(name={self.name!r}, id={self.pool_id}, size={self.size})"

    def _create(self) -> Any:
        return self._connect()

    def _ping_on_checkout(self, dbapi_connection: Any, record: Any, proxy: Any) -> None:
        if not record.info.get(_REUSED):
            return
        try:
            self._ping(dbapi_connection)
        except Exception as exc:
            logger.info("Replacing stale connection in %s: %s", self.name, exc)
            raise sa_exc.DisconnectionError(str(exc)) from exc

    def _checkout(self) -> Any:
        try:
            return self._pool.connect()
        except sa_exc.TimeoutError as exc:
            raise PoolTimeoutError(f"Timed out waiting for a connection from {self.name}") from exc

    def _warm(self, count: int) -> None:
        held = []
        try:
            for _ in range(count):
                held.append(self._pool.connect())
        finally:
            for proxy in held:
                proxy.close()

    async def warm_up(self, count: int = 1) -> None:
        """Open ``count`` connections eagerly; the first failure propagates."""
        await asyncio.to_thread(self._warm, min(count, self.size))

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[PooledConnection, None]:
        if self._closed:
            raise EngineConnectionError(f"Pool {self.name} is closed")

        proxy = await asyncio.to_thread(self._checkout)
        conn = PooledConnection(proxy=proxy)
        try:
            if self._on_checkout is not None:
                await asyncio.to_thread(self._on_checkout, conn)
        except BaseException:
            await asyncio.to_thread(proxy.invalidate)
            raise

        try:
            yield conn
        finally:
            if conn.pending is not None and not conn.pending.done():
                # the worker thread still holds the driver connection
                conn.pending.add_done_callback(lambda _: self._release_later(conn))
            else:
                await asyncio.to_thread(self._checkin, conn)

    def _checkin(self, conn: PooledConnection) -> None:
        keep = not self._closed and (not conn.broken or self.keep_interrupted)
        if not keep:
            conn.proxy.invalidate()
            return
        conn.session[_REUSED] = True
        conn.proxy.close()

    def _release_later(self, conn: PooledConnection) -> None:
        task = conn.pending
        if task is not None and not task.cancelled() and task.exception() is not None:
            logger.debug("Abandoned statement on %s ended with: %s", self.name, task.exception())
        self._spawn(asyncio.to_thread(self._checkin, conn))

    def _spawn(self, awaitable: Any) -> None:
        future = asyncio.ensure_future(awaitable)
        self._background.add(future)
        future.add_done_callback(self._background.discard)

    def _interrupt(self, raw: Any) -> None:
        try:
            self._cancel(raw)
        except Exception as exc:
            logger.debug("Cancel request on %s failed: %s", self.name, exc)

    def _abandon(self, conn: PooledConnection, task: "asyncio.Future[Any]") -> None:
        conn.broken = True
        conn.pending = task
        if self._cancel is not None and not task.done():
            self._spawn(asyncio.to_thread(self._interrupt, conn.raw))

    async def run(self, conn: PooledConnection, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        """Run ``fn(conn.raw, *args)`` in a worker thread.

        On timeout the running statement is cancelled through the driver and
        the session is marked broken; it is checked in only after the worker
        thread has returned.
        """
        task = asyncio.ensure_future(asyncio.to_thread(fn, conn.raw, *args))
        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._abandon(conn, task)
            raise PoolTimeoutError(f"Operation on {self.name} exceeded {timeout}s") from exc
        except asyncio.CancelledError:
            self._abandon(conn, task)
            raise

    async def execute(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        async with self.acquire() as conn:
            return await self.run(conn, fn, *args, timeout=timeout)

    async def close(self) -> None:
        """Close idle connections; sessions still checked out are discarded on release."""
        self._closed = True
        await asyncio.to_thread(self._pool.dispose)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def available(self) -> int:
        return self._pool.checkedin()

    @property
    def in_use(self) -> int:
        return self._pool.checkedout()

    @property
    def total(self) -> int:
        return self.available + self.in_use

    def stats(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "pool_size": self.size,
            "pool_total": self.total,
            "pool_idle": self.available,
            "pool_in_use": self.in_use,
        }
