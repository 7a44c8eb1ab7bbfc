import sqlite3

import pytest

from adapters.config import ConnectionConfig
from adapters.constants import SQLITE_NO_PERMISSIONS, ConnectionState, StatementType
from adapters.errors import NoActiveConnectionError, UnsupportedOperationError
from adapters.sql_renderer import SQLDialect
from adapters.sqlite import SQLiteAdapter, normalize_transaction
from schema.introspector.service import describe_database


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(
            """
            CREATE TABLE customers (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email VARCHAR(120) UNIQUE
            );
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                customer_id INTEGER REFERENCES customers(id) ON DELETE CASCADE,
                amount DECIMAL(10, 2)
            );
            CREATE INDEX idx_orders_customer ON orders(customer_id);
            CREATE VIEW big_orders AS SELECT * FROM orders WHERE amount > 100;
            CREATE TRIGGER trg_orders_ai AFTER INSERT ON orders BEGIN SELECT 1; END;
            """
        )
        conn.executemany(
            "INSERT INTO customers(name, email) VALUES (?, ?)",
            [(f"customer {i}", f"c{i}@example.com") for i in range(1, 26)],
        )
        conn.commit()
    finally:
        conn.close()
    return path


async def _connected(path, **settings):
    adapter = SQLiteAdapter()
    await adapter.connect(ConnectionConfig(engine="sqlite", file_path=str(path), **settings))
    return adapter


@pytest.mark.asyncio
async def test_select_is_paginated_and_counted(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("SELECT id, name FROM customers ORDER BY id", page=2, page_size=10)
    finally:
        await adapter.disconnect()

    assert result.total_queries == 1
    entry = result.queries[0]
    assert entry.type == StatementType.SELECT
    assert [row["id"] for row in entry.rows] == list(range(11, 21))
    assert entry.total_rows == 25
    assert entry.pagination.total_pages == 3
    assert entry.pagination.has_more is True
    assert entry.messages[0].message == "Query executed successfully"
    assert not entry.failed


@pytest.mark.asyncio
async def test_limited_select_runs_as_written(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("SELECT id FROM customers ORDER BY id LIMIT 3", page=5, page_size=2)
    finally:
        await adapter.disconnect()

    entry = result.queries[0]
    assert [row["id"] for row in entry.rows] == [1, 2, 3]
    assert entry.total_rows == 3
    assert entry.pagination is None


@pytest.mark.asyncio
async def test_failed_statement_does_not_stop_batch(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("SELECT 1 AS a; SELCT BAD SYNTAX; SELECT 2 AS b")
    finally:
        await adapter.disconnect()

    first, broken, last = result.queries
    assert first.rows == [{"a": 1}]
    assert broken.type == StatementType.UNKNOWN
    assert broken.failed
    assert broken.messages[0].category == "syntax_error"
    assert broken.rows == []
    assert last.rows == [{"b": 2}]
    assert not last.failed


@pytest.mark.asyncio
async def test_count_failure_keeps_rows_and_warns(db_path, monkeypatch):
    monkeypatch.setattr(SQLDialect, "render_count", lambda self, statement: "SELECT nope FROM missing_table")
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("SELECT id FROM customers ORDER BY id", page=1, page_size=5)
    finally:
        await adapter.disconnect()

    entry = result.queries[0]
    assert len(entry.rows) == 5
    assert entry.total_rows == 5
    assert entry.pagination is None
    assert not entry.failed
    assert entry.messages[-1].category == "warning"


@pytest.mark.asyncio
async def test_mutation_reports_affected_rows(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("INSERT INTO customers(name) VALUES ('new customer')")
    finally:
        await adapter.disconnect()

    entry = result.queries[0]
    assert entry.type == StatementType.MUTATION
    assert entry.messages[0].message == "1 row(s) affected"
    assert entry.messages[0].affected_rows == 1
    assert entry.stats.last_insert_id == 26
    assert entry.total_rows is None


@pytest.mark.asyncio
async def test_transaction_keywords_are_normalized(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query(
            "START TRANSACTION; DELETE FROM customers; ROLLBACK; SELECT COUNT(*) AS n FROM customers"
        )
    finally:
        await adapter.disconnect()

    assert not any(entry.failed for entry in result.queries)
    assert result.queries[0].type == StatementType.TRANSACTION
    assert result.queries[1].messages[0].affected_rows == 25
    assert result.queries[3].rows == [{"n": 25}]
    assert normalize_transaction("begin work") == "BEGIN TRANSACTION"
    assert normalize_transaction("COMMIT") == "COMMIT"


@pytest.mark.asyncio
async def test_grant_is_answered_without_engine(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("GRANT SELECT ON customers TO reporting")
    finally:
        await adapter.disconnect()

    entry = result.queries[0]
    assert entry.type == StatementType.PERMISSION
    assert entry.failed
    assert entry.messages[0].message == SQLITE_NO_PERMISSIONS
    assert entry.messages[0].category == "unsupported"


@pytest.mark.asyncio
async def test_schema_commands_use_catalog_templates(db_path):
    adapter = await _connected(db_path)
    try:
        result = await adapter.execute_query("SHOW TABLES; DESCRIBE customers")
    finally:
        await adapter.disconnect()

    tables, described = result.queries
    assert [row["name"] for row in tables.rows] == ["customers", "orders"]
    assert tables.messages[0].message == "Schema command executed successfully"
    assert [row["name"] for row in described.rows] == ["id", "name", "email"]


@pytest.mark.asyncio
async def test_switch_database_is_unsupported(db_path):
    adapter = await _connected(db_path)
    try:
        with pytest.raises(UnsupportedOperationError, match="does not support switching"):
            await adapter.switch_database("other.db")
        assert adapter.state == ConnectionState.CONNECTED
        assert adapter.current_database == str(db_path)
    finally:
        await adapter.disconnect()


@pytest.mark.asyncio
async def test_table_info_shape(db_path):
    adapter = await _connected(db_path)
    try:
        orders = await adapter.get_table_info(None, "orders")
        customers = await adapter.get_table_info(str(db_path), "customers")
    finally:
        await adapter.disconnect()

    assert [column.column_name for column in orders.columns] == ["id", "customer_id", "amount"]
    amount = orders.columns[2]
    assert (amount.precision, amount.scale, amount.length) == (10, 2, None)
    assert orders.columns[0].is_primary_key is True
    assert [index.index_name for index in orders.indexes] == ["idx_orders_customer"]
    assert orders.indexes[0].columns == ["customer_id"]
    assert orders.foreign_keys[0].referenced_table == "customers"
    assert orders.foreign_keys[0].delete_rule == "CASCADE"
    assert orders.triggers[0].trigger_name == "trg_orders_ai"
    assert (orders.triggers[0].event, orders.triggers[0].timing) == ("INSERT", "AFTER")

    name, email = customers.columns[1], customers.columns[2]
    assert name.is_nullable is False
    assert email.length == 120
    assert any(index.is_unique and index.columns == ["email"] for index in customers.indexes)
    assert customers.triggers == []


@pytest.mark.asyncio
async def test_multiple_tables_info_isolates_failures(db_path, monkeypatch):
    adapter = await _connected(db_path)
    original = adapter.get_table_info

    async def flaky(db_name, table):
        if table == "broken":
            raise RuntimeError("catalog read failed")
        return await original(db_name, table)

    monkeypatch.setattr(adapter, "get_table_info", flaky)
    try:
        described = await adapter.get_multiple_tables_info(None, ["customers", "broken", "orders"])
    finally:
        await adapter.disconnect()

    assert [table.table_name for table in described] == ["customers", "broken", "orders"]
    assert described[1].error == "catalog read failed"
    assert described[1].columns == []
    assert described[0].error is None and described[2].error is None


@pytest.mark.asyncio
async def test_databases_and_describe_database(db_path):
    adapter = await _connected(db_path)
    try:
        databases = await adapter.get_databases()
        tables = await adapter.get_tables()
        summary = await describe_database(adapter)
        stats = await adapter.get_connection_stats()
    finally:
        await adapter.disconnect()

    assert len(databases) == 1
    assert databases[0].name == str(db_path)
    assert databases[0].size_on_disk > 0
    assert [view.name for view in databases[0].views] == ["big_orders"]
    assert tables == ["customers", "orders"]
    assert summary["table_count"] == 2
    assert summary["failed_tables"] == []
    assert summary["tables"][0]["tableName"] == "customers"
    assert stats["table_count"] == 2
    assert stats["view_count"] == 1
    assert stats["pool_size"] == 1


@pytest.mark.asyncio
async def test_memory_database_keeps_state_between_calls():
    adapter = SQLiteAdapter()
    await adapter.connect(ConnectionConfig(engine="sqlite", file_path=":memory:"))
    try:
        await adapter.execute_query("CREATE TABLE notes (body TEXT)")
        await adapter.execute_query("INSERT INTO notes VALUES ('a'); INSERT INTO notes VALUES ('b')")
        result = await adapter.execute_query("SELECT body FROM notes ORDER BY body")
    finally:
        await adapter.disconnect()

    assert [row["body"] for row in result.queries[0].rows] == ["a", "b"]
    assert result.queries[0].total_rows == 2


_LONG_RUNNING = (
    "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 500000000) "
    "SELECT COUNT(*) AS n FROM c"
)


@pytest.mark.asyncio
async def test_timed_out_statement_fails_and_batch_continues(db_path):
    adapter = await _connected(db_path, request_timeout_ms=200)
    try:
        result = await adapter.execute_query(f"{_LONG_RUNNING}; SELECT COUNT(*) AS n FROM customers")
        assert adapter.state == ConnectionState.ERROR

        slow, quick = result.queries
        assert slow.failed
        assert "exceeded" in slow.messages[0].message
        assert not quick.failed
        assert quick.rows == [{"n": 25}]

        assert await adapter.validate_connection() is True
        assert adapter.state == ConnectionState.CONNECTED
    finally:
        await adapter.disconnect()


@pytest.mark.asyncio
async def test_timeout_keeps_memory_database_contents():
    adapter = SQLiteAdapter()
    await adapter.connect(ConnectionConfig(engine="sqlite", file_path=":memory:", request_timeout_ms=200))
    try:
        await adapter.execute_query("CREATE TABLE notes (body TEXT); INSERT INTO notes VALUES ('kept')")
        timed_out = await adapter.execute_query(_LONG_RUNNING)
        result = await adapter.execute_query("SELECT body FROM notes")
    finally:
        await adapter.disconnect()

    assert timed_out.queries[0].failed
    assert result.queries[0].rows == [{"body": "kept"}]


@pytest.mark.asyncio
async def test_same_page_twice_returns_same_rows(db_path):
    adapter = await _connected(db_path)
    try:
        sql = "SELECT id, name FROM customers ORDER BY id"
        first = (await adapter.execute_query(sql, page=3, page_size=10)).queries[0]
        second = (await adapter.execute_query(sql, page=3, page_size=10)).queries[0]
    finally:
        await adapter.disconnect()

    assert [row["id"] for row in first.rows] == list(range(21, 26))
    assert second.rows == first.rows
    assert second.total_rows == first.total_rows == 25
    assert second.pagination == first.pagination
    assert first.pagination.has_more is False


@pytest.mark.asyncio
async def test_read_only_connection_rejects_writes(db_path):
    adapter = await _connected(db_path, read_only=True)
    try:
        result = await adapter.execute_query("DELETE FROM customers")
    finally:
        await adapter.disconnect()

    entry = result.queries[0]
    assert entry.failed
    assert entry.messages[0].category == "execution_error"


@pytest.mark.asyncio
async def test_lifecycle_validation(db_path):
    adapter = await _connected(db_path, busy_timeout_ms=500, journal_mode="wal", foreign_keys=True)
    assert adapter.state == ConnectionState.CONNECTED
    assert await adapter.validate_connection() is True
    health = await adapter.get_connection_health()
    assert health["status"] == "healthy"

    await adapter.disconnect()
    assert adapter.state == ConnectionState.DISCONNECTED
    assert await adapter.validate_connection() is False
    with pytest.raises(NoActiveConnectionError):
        await adapter.execute_query("SELECT 1")
