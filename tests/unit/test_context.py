import pytest

from adapters.constants import ConnectionState, EngineType
from adapters.errors import NoActiveConnectionError
from connections.context import ActiveContext, get_active_context
from connections.registry import ConnectionRegistry


class RecordingAdapter:
    def __init__(self, engine, log):
        self.engine = engine
        self.log = log
        self.state = ConnectionState.DISCONNECTED
        self.current_database = None
        self.config = None

    async def connect(self, config):
        self.log.append(("connect", config.engine.value))
        self.config = config
        self.state = ConnectionState.CONNECTED
        self.current_database = config.database

    async def disconnect(self):
        self.log.append(("disconnect", self.engine.value))
        self.state = ConnectionState.DISCONNECTED

    async def switch_database(self, name):
        self.log.append(("switch", name))
        self.current_database = name


@pytest.fixture
def log():
    return []


@pytest.fixture
def context(log):
    registry = ConnectionRegistry(adapter_factory=lambda engine: RecordingAdapter(engine, log))
    return ActiveContext(registry)


MYSQL = {"engine": "mysql", "username": "app", "database": "shop"}
POSTGRES = {"engine": "postgres", "username": "app", "database": "shop"}


@pytest.mark.asyncio
async def test_engine_change_closes_previous_connection(context, log):
    first = await context.connect(MYSQL)
    second = await context.connect(POSTGRES)

    assert first != second
    assert log == [("connect", "mysql"), ("disconnect", "mysql"), ("connect", "postgres")]
    assert context.current_engine == EngineType.POSTGRES
    assert context.registry.get_active_connection_count() == 1
    assert not context.registry.is_connection_active(first)


@pytest.mark.asyncio
async def test_same_config_reuses_connection(context, log):
    first = await context.connect(MYSQL)
    again = await context.connect(dict(MYSQL))
    assert again == first
    assert log == [("connect", "mysql")]


@pytest.mark.asyncio
async def test_calls_without_connection_raise(context):
    assert context.is_connection_active() is False
    assert await context.validate_connection() is False
    with pytest.raises(NoActiveConnectionError):
        await context.execute_query("SELECT 1")
    with pytest.raises(NoActiveConnectionError):
        context.get_adapter()


@pytest.mark.asyncio
async def test_switch_and_disconnect_delegate(context, log):
    await context.connect(MYSQL)
    await context.switch_database("analytics")
    assert context.get_adapter().current_database == "analytics"

    await context.disconnect()
    assert context.connection_id is None
    assert context.current_engine is None
    assert log[-2:] == [("switch", "analytics"), ("disconnect", "mysql")]


def test_default_context_is_shared():
    assert get_active_context() is get_active_context()
