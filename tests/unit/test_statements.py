import pytest

from adapters.constants import StatementType
from adapters.statements import (
    clamp_page,
    classify_statement,
    describe_target,
    has_row_limit,
    is_show_tables,
    sanitize_identifier,
    split_statements,
    strip_qualifier,
    total_pages,
)


@pytest.mark.parametrize(
    "statement, expected",
    [
        ("select * from orders", StatementType.SELECT),
        ("  (SELECT 1) UNION (SELECT 2)", StatementType.SELECT),
        ("WITH totals AS (SELECT 1) SELECT * FROM totals", StatementType.SELECT),
        ("SHOW TABLES", StatementType.SCHEMA),
        ("DESC orders", StatementType.SCHEMA),
        ("describe orders", StatementType.SCHEMA),
        ("PRAGMA table_info(orders)", StatementType.SCHEMA),
        ("INSERT INTO orders VALUES (1)", StatementType.MUTATION),
        ("merge into t using s on (1=1)", StatementType.MUTATION),
        ("CREATE TABLE t (id int)", StatementType.DDL),
        ("truncate table t", StatementType.DDL),
        ("GRANT SELECT ON t TO bob", StatementType.PERMISSION),
        ("START TRANSACTION", StatementType.TRANSACTION),
        ("rollback", StatementType.TRANSACTION),
        ("VACUUM", StatementType.UNKNOWN),
        ("SELCT 1", StatementType.UNKNOWN),
    ],
)
def test_classify_statement(statement, expected):
    assert classify_statement(statement) == expected


def test_classify_requires_keyword_boundary():
    assert classify_statement("selection_view") == StatementType.UNKNOWN
    assert classify_statement("COMMITTED") == StatementType.UNKNOWN


def test_split_statements_drops_blank_segments():
    assert split_statements("SELECT 1; ;\n SELECT 2;") == ["SELECT 1", "SELECT 2"]
    assert split_statements("") == []
    assert split_statements(" ; ") == []


def test_has_row_limit_detects_every_dialect():
    assert has_row_limit("SELECT * FROM t LIMIT 5")
    assert has_row_limit("SELECT * FROM t ORDER BY id OFFSET 20 ROWS")
    assert has_row_limit("SELECT * FROM t FETCH FIRST 3 ROWS ONLY")
    assert has_row_limit("SELECT TOP 10 * FROM t")
    assert has_row_limit("select distinct top (5) name from t")


def test_has_row_limit_ignores_lookalike_identifiers():
    assert not has_row_limit("SELECT * FROM t")
    assert not has_row_limit("SELECT limit_value, offset_days FROM quotas")
    assert not has_row_limit("SELECT topic FROM posts")


def test_strip_qualifier_only_touches_exact_prefix():
    sql = "SELECT * FROM shop.orders o JOIN SHOP.items i ON i.order_id = o.id JOIN myshop.notes n ON 1=1"
    assert strip_qualifier(sql, "shop") == (
        "SELECT * FROM orders o JOIN items i ON i.order_id = o.id JOIN myshop.notes n ON 1=1"
    )
    assert strip_qualifier(sql, None) == sql


def test_schema_command_helpers():
    assert is_show_tables("show full tables")
    assert not is_show_tables("SHOW DATABASES")
    assert describe_target("DESCRIBE `users`") == "users"
    assert describe_target("DESC shop.users") == "users"
    assert describe_target("DESCRIBE users extra") is None
    assert sanitize_identifier("users; DROP TABLE x") == "usersDROPTABLEx"


def test_clamp_page_bounds():
    assert clamp_page(0, 5000) == (1, 1000)
    assert clamp_page(-2, -5) == (1, 1)
    assert clamp_page(3, 25) == (3, 25)


def test_total_pages_rounds_up():
    assert total_pages(0, 10) == 0
    assert total_pages(20, 10) == 2
    assert total_pages(21, 10) == 3
