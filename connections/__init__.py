"""Connection registry and the optional active-context convenience wrapper."""

from connections.context import ActiveContext, get_active_context
from connections.registry import ConnectionRegistry, generate_connection_id

__all__ = ["ActiveContext", "ConnectionRegistry", "generate_connection_id", "get_active_context"]
