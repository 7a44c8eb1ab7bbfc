import threading

import pytest

from adapters.errors import EngineConnectionError
from adapters.pool import ConnectionPool, PoolTimeoutError


class FakeConn:
    opened = 0

    def __init__(self):
        FakeConn.opened += 1
        self.number = FakeConn.opened
        self.closed = False
        self.running = False
        self.closed_while_running = False
        self.stop = threading.Event()
        self.pings = 0

    def rollback(self):
        return None

    def close(self):
        self.closed_while_running = self.running
        self.closed = True


def _read_number(raw):
    return raw.number


def _block_until_stopped(raw):
    raw.running = True
    try:
        raw.stop.wait(5)
    finally:
        raw.running = False
    return raw.number


def _ping(raw):
    raw.pings += 1


def test_pool_rejects_non_positive_size():
    with pytest.raises(ValueError, match="Pool size must be > 0"):
        ConnectionPool(connect=FakeConn, size=0)


@pytest.mark.asyncio
async def test_idle_connection_is_reused():
    pool = ConnectionPool(connect=FakeConn, size=2, timeout=1)
    async with pool.acquire() as first:
        assert pool.in_use == 1
        raw = first.raw
    async with pool.acquire() as second:
        assert second.raw is raw
    assert pool.stats()["pool_total"] == 1
    await pool.close()
    assert raw.closed


@pytest.mark.asyncio
async def test_on_checkout_runs_for_every_acquire():
    seen = []
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=1, on_checkout=lambda conn: seen.append(conn.raw.number))
    await pool.execute(_read_number)
    await pool.execute(_read_number)
    assert len(seen) == 2
    assert seen[0] == seen[1]
    await pool.close()


@pytest.mark.asyncio
async def test_session_state_survives_checkin():
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=1)
    async with pool.acquire() as conn:
        conn.session["target"] = "shop"
    async with pool.acquire() as conn:
        assert conn.session["target"] == "shop"
    await pool.close()


@pytest.mark.asyncio
async def test_only_reused_connections_are_pinged():
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=1, ping=_ping)
    async with pool.acquire() as conn:
        raw = conn.raw
        assert raw.pings == 0
    async with pool.acquire():
        assert raw.pings == 1
    await pool.close()


@pytest.mark.asyncio
async def test_failed_ping_replaces_connection():
    def flaky_ping(raw):
        if raw.number == first:
            raise OSError("server closed the connection unexpectedly")

    pool = ConnectionPool(connect=FakeConn, size=1, timeout=1, ping=flaky_ping)
    async with pool.acquire() as conn:
        stale = conn.raw
        first = stale.number
    async with pool.acquire() as conn:
        assert conn.raw is not stale
    assert stale.closed
    await pool.close()


@pytest.mark.asyncio
async def test_checkout_is_bounded_by_size():
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=0.05)
    async with pool.acquire():
        with pytest.raises(PoolTimeoutError, match="Timed out waiting"):
            async with pool.acquire():
                pass
    async with pool.acquire():
        pass
    await pool.close()


@pytest.mark.asyncio
async def test_timed_out_session_closes_only_after_worker_returns():
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=5, cancel=lambda raw: raw.stop.set())
    async with pool.acquire() as conn:
        stale = conn.raw
        with pytest.raises(PoolTimeoutError, match="exceeded"):
            await pool.run(conn, _block_until_stopped, timeout=0.05)
        assert conn.broken

    # the single slot frees up once the cancelled statement has stopped
    async with pool.acquire() as fresh:
        assert fresh.raw is not stale
    assert stale.closed
    assert stale.closed_while_running is False
    await pool.close()


@pytest.mark.asyncio
async def test_interrupted_session_can_be_kept():
    pool = ConnectionPool(
        connect=FakeConn, size=1, timeout=5, cancel=lambda raw: raw.stop.set(), keep_interrupted=True
    )
    async with pool.acquire() as conn:
        kept = conn.raw
        with pytest.raises(PoolTimeoutError):
            await pool.run(conn, _block_until_stopped, timeout=0.05)

    async with pool.acquire() as again:
        assert again.raw is kept
    assert not kept.closed
    await pool.close()


@pytest.mark.asyncio
async def test_closed_pool_refuses_checkout():
    pool = ConnectionPool(connect=FakeConn, size=1, timeout=1)
    await pool.warm_up(1)
    assert pool.available == 1
    await pool.close()
    assert pool.closed
    with pytest.raises(EngineConnectionError, match="is closed"):
        async with pool.acquire():
            pass


@pytest.mark.asyncio
async def test_connect_failure_propagates_and_frees_slot():
    calls = []

    def failing_connect():
        calls.append(1)
        raise OSError("connection refused")

    pool = ConnectionPool(connect=failing_connect, size=1, timeout=1)
    for _ in range(2):
        with pytest.raises(OSError):
            async with pool.acquire():
                pass
    assert len(calls) == 2
