"""
Adapter exception hierarchy.

Every failure that leaves the adapter layer is one of these types. Driver
exceptions raised while executing user SQL are mapped through
``classify_engine_error`` so callers see a common syntax/execution split while
the native error code is preserved on ``code``.
"""

from __future__ import annotations

import re
from typing import Any, Optional


class AdapterError(RuntimeError):
    """Base exception for the adapter layer."""

    def __init__(self, message: str, code: Any = None, engine: Optional[str] = None):
        self.message = message
        self.code = code
        self.engine = engine
        super().__init__(message)


class EngineConnectionError(AdapterError):
    """Raised when a native pool cannot be established (network or auth)."""


class UnsupportedOperationError(AdapterError):
    """Raised when an operation has no meaning for the bound engine."""


class NoActiveConnectionError(AdapterError):
    """Raised when a connection id is unknown or not connected."""


class SqlExecutionError(AdapterError):
    """Raised for engine-reported failures while executing a statement."""

    category = "execution_error"

    def __init__(
        self,
        message: str,
        code: Any = None,
        engine: Optional[str] = None,
        query: Optional[str] = None,
    ):
        self.query = query
        super().__init__(message, code=code, engine=engine)


class SqlSyntaxError(SqlExecutionError):
    """Raised when the engine rejected the statement as unparseable."""

    category = "syntax_error"


class IntrospectionPartialFailure(AdapterError):
    """A single database or table failed during a listing call."""

    def __init__(self, message: str, item: str, code: Any = None, engine: Optional[str] = None):
        self.item = item
        super().__init__(message, code=code, engine=engine)


_SYNTAX_CODES = {
    1064,  # mysql ER_PARSE_ERROR
    "1064",
    "42601",  # postgres syntax_error
    102,  # sql server: incorrect syntax near
    156,  # sql server: incorrect syntax near keyword
}

_SYNTAX_MARKERS = (
    "syntax error",
    "incorrect syntax near",
    "you have an error in your sql syntax",
    "ora-00900",
    "ora-00923",
    "ora-00933",
    "ora-00936",
)

_ORA_CODE = re.compile(r"\b(ORA-\d{5})\b")
_SQLSTATE = re.compile(r"\b(\d{2}[0-9A-Z]{3})\b")


def native_error_code(exc: BaseException) -> Any:
    """Best-effort extraction of the driver's own error code."""
    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate:
        return sqlstate
    text = str(exc)
    ora = _ORA_CODE.search(text)
    if ora:
        return ora.group(1)
    args = getattr(exc, "args", ()) or ()
    if args:
        first = args[0]
        if isinstance(first, int):
            return first
        full_code = getattr(first, "full_code", None)
        if full_code:
            return full_code
        if isinstance(first, str) and _SQLSTATE.fullmatch(first.strip()):
            return first.strip()
    return getattr(exc, "sqlite_errorname", None)


def _message_of(exc: BaseException) -> str:
    args = getattr(exc, "args", ()) or ()
    # pymysql and pyodbc put (code, message) in args
    if len(args) >= 2 and isinstance(args[1], str):
        return args[1]
    return str(exc) or type(exc).__name__


def is_syntax_error(exc: BaseException, code: Any = None) -> bool:
    code = native_error_code(exc) if code is None else code
    if code in _SYNTAX_CODES:
        return True
    text = str(exc).lower()
    if any(marker in text for marker in _SYNTAX_MARKERS):
        return True
    return False


def classify_engine_error(
    exc: BaseException,
    engine: Optional[str] = None,
    query: Optional[str] = None,
) -> SqlExecutionError:
    if isinstance(exc, SqlExecutionError):
        return exc
    code = native_error_code(exc)
    message = _message_of(exc)
    if is_syntax_error(exc, code):
        return SqlSyntaxError(message, code=code, engine=engine, query=query)
    return SqlExecutionError(message, code=code, engine=engine, query=query)
