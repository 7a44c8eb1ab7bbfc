from __future__ import annotations

from dataclasses import dataclass

from adapters.config import normalize_engine
from adapters.constants import EngineType, PaginationStyle
from adapters.statements import compute_offset, has_order_by


@dataclass(frozen=True)
class SQLDialect:
    engine: str
    pagination: PaginationStyle
    quote_open: str = '"'
    quote_close: str = '"'
    subquery_alias: bool = True

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def render_pagination(self, statement: str, page: int, page_size: int) -> str:
        offset = compute_offset(page, page_size)
        if self.pagination == PaginationStyle.LIMIT_OFFSET:
            return f"{statement} LIMIT {int(page_size)} OFFSET {int(offset)}"
        if self.engine == EngineType.ORACLE.value:
            if offset == 0:
                return f"{statement} FETCH FIRST {int(page_size)} ROWS ONLY"
            return f"{statement} OFFSET {int(offset)} ROWS FETCH NEXT {int(page_size)} ROWS ONLY"
        # sql server requires ORDER BY before OFFSET/FETCH
        order = "" if has_order_by(statement) else " ORDER BY (SELECT NULL)"
        return f"{statement}{order} OFFSET {int(offset)} ROWS FETCH NEXT {int(page_size)} ROWS ONLY"

    def render_count(self, statement: str) -> str:
        alias = " AS subquery" if self.subquery_alias else " subquery"
        return f"SELECT COUNT(*) AS total_count FROM ({statement}){alias}"


_DIALECTS = {
    EngineType.POSTGRES: SQLDialect(engine="postgres", pagination=PaginationStyle.LIMIT_OFFSET),
    EngineType.MYSQL: SQLDialect(
        engine="mysql",
        pagination=PaginationStyle.LIMIT_OFFSET,
        quote_open="`",
        quote_close="`",
    ),
    EngineType.SQLITE: SQLDialect(engine="sqlite", pagination=PaginationStyle.LIMIT_OFFSET),
    EngineType.MSSQL: SQLDialect(
        engine="mssql",
        pagination=PaginationStyle.OFFSET_FETCH,
        quote_open="[",
        quote_close="]",
    ),
    # oracle rejects "AS" before a table alias
    EngineType.ORACLE: SQLDialect(
        engine="oracle",
        pagination=PaginationStyle.OFFSET_FETCH,
        subquery_alias=False,
    ),
}


def get_sql_dialect(db_engine: str) -> SQLDialect:
    return _DIALECTS[normalize_engine(db_engine or "postgres")]
