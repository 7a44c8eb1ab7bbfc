import pytest

from adapters.constants import ConnectionState, SwitchMode
from adapters.factory import get_adapter
from adapters.mssql import MSSQLAdapter
from adapters.oracle import OracleAdapter
from adapters.postgres import PostgresAdapter
from adapters.sqlite import SQLiteAdapter


def test_get_adapter_by_alias():
    assert isinstance(get_adapter("postgresql"), PostgresAdapter)
    assert isinstance(get_adapter("sqlserver"), MSSQLAdapter)
    assert isinstance(get_adapter("oracle"), OracleAdapter)


def test_get_adapter_reads_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DB_ENGINE", "sqlite")
    adapter = get_adapter()
    assert isinstance(adapter, SQLiteAdapter)
    assert adapter.state == ConnectionState.DISCONNECTED
    assert adapter.capabilities.switch_mode == SwitchMode.UNSUPPORTED


def test_get_adapter_rejects_unknown_engine():
    with pytest.raises(ValueError, match="Unsupported database type: db2"):
        get_adapter("db2")


def test_fresh_adapters_are_independent():
    assert get_adapter("mysql") is not get_adapter("mysql")
