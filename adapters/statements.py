from __future__ import annotations

import re
from typing import List, Optional, Pattern, Tuple

from adapters.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, StatementType

# First match wins.
STATEMENT_PATTERNS: Tuple[Tuple[StatementType, Pattern[str]], ...] = (
    (StatementType.SELECT, re.compile(r"^(SELECT|WITH)\b", re.IGNORECASE)),
    (StatementType.SCHEMA, re.compile(r"^(SHOW|DESCRIBE|DESC|EXPLAIN|PRAGMA)\b", re.IGNORECASE)),
    (StatementType.MUTATION, re.compile(r"^(INSERT|UPDATE|DELETE|MERGE|UPSERT|REPLACE)\b", re.IGNORECASE)),
    (StatementType.DDL, re.compile(r"^(CREATE|DROP|ALTER|TRUNCATE|RENAME)\b", re.IGNORECASE)),
    (StatementType.PERMISSION, re.compile(r"^(GRANT|REVOKE)\b", re.IGNORECASE)),
    (
        StatementType.TRANSACTION,
        re.compile(r"^(BEGIN|START\s+TRANSACTION|COMMIT|ROLLBACK|SAVEPOINT|RELEASE)\b", re.IGNORECASE),
    ),
)

_LIMIT_PATTERNS = (
    re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE),
    re.compile(r"\bOFFSET\s+\d+", re.IGNORECASE),
    re.compile(r"\bFETCH\s+(FIRST|NEXT)\s+\d+", re.IGNORECASE),
    re.compile(r"^\s*SELECT\s+(DISTINCT\s+)?TOP\s*\(?\s*\d+", re.IGNORECASE),
)

_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_SHOW_TABLES = re.compile(r"^SHOW\s+(FULL\s+)?TABLES\b", re.IGNORECASE)
_DESCRIBE = re.compile(r"^(?:DESCRIBE|DESC)\s+[`\"\[]?([\w$#.]+?)[`\"\]]?\s*$", re.IGNORECASE)
_IDENTIFIER_JUNK = re.compile(r"[^\w$]")


def split_statements(text: str) -> List[str]:
    """Split on ``;`` and drop blanks. Terminators inside literals are not special."""
    if not text:
        return []
    return [part.strip() for part in text.split(";") if part.strip()]


def classify_statement(statement: str) -> StatementType:
    candidate = statement.lstrip("( \t\r\n")
    for statement_type, pattern in STATEMENT_PATTERNS:
        if pattern.match(candidate):
            return statement_type
    return StatementType.UNKNOWN


def has_row_limit(statement: str) -> bool:
    return any(pattern.search(statement) for pattern in _LIMIT_PATTERNS)


def has_order_by(statement: str) -> bool:
    return bool(_ORDER_BY.search(statement))


def is_show_tables(statement: str) -> bool:
    return bool(_SHOW_TABLES.match(statement.strip()))


def describe_target(statement: str) -> Optional[str]:
    """Table name from ``DESCRIBE t`` / ``DESC t``; ``None`` for anything else."""
    match = _DESCRIBE.match(statement.strip())
    if not match:
        return None
    return match.group(1).split(".")[-1]


def strip_qualifier(statement: str, qualifier: Optional[str]) -> str:
    """Turn ``qualifier.table`` into ``table`` (case-insensitive)."""
    if not qualifier:
        return statement
    pattern = re.compile(rf"\b{re.escape(qualifier)}\.([A-Za-z_][A-Za-z0-9_$]*)\b", re.IGNORECASE)
    return pattern.sub(r"\1", statement)


def sanitize_identifier(identifier: str) -> str:
    return _IDENTIFIER_JUNK.sub("", identifier or "")


def compute_offset(page: int, page_size: int) -> int:
    return max(page - 1, 0) * page_size


def total_pages(total_rows: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return -(-total_rows // page_size)


def clamp_page(page: int, page_size: int, max_page_size: int = MAX_PAGE_SIZE) -> Tuple[int, int]:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), max_page_size)
    return page, page_size
