from schema.descriptors import TableDescriptor
from schema.introspector.normalizer import (
    build_column,
    build_foreign_key,
    group_indexes,
    group_triggers,
    positive_or_none,
    to_bool,
)


def test_column_sentinels_become_none():
    column = build_column(
        {
            "column_name": "payload",
            "data_type": "nvarchar",
            "is_nullable": "YES",
            "length": -1,
            "precision": None,
            "scale": -3,
        }
    )
    assert column.length is None
    assert column.scale is None
    assert column.is_nullable is True
    assert column.is_primary_key is False
    assert positive_or_none(0) is None


def test_primary_key_from_key_set():
    column = build_column({"column_name": "id", "data_type": "int", "is_nullable": "NO"}, primary_keys={"id"})
    assert column.is_primary_key is True
    assert column.is_nullable is False


def test_group_indexes_folds_columns():
    indexes = group_indexes(
        [
            {"index_name": "ix_name", "column_name": "last", "is_unique": 1},
            {"index_name": "ix_name", "column_name": "first", "is_unique": 1},
            {"index_name": "pk", "column_name": "id", "is_unique": True, "is_primary": True},
            {"index_name": "ix_expr", "column_name": None},
        ]
    )
    assert [index.index_name for index in indexes] == ["ix_name", "pk", "ix_expr"]
    assert indexes[0].columns == ["last", "first"]
    assert indexes[0].is_unique is True
    assert indexes[1].is_primary is True
    assert indexes[2].columns == []


def test_group_triggers_joins_events():
    triggers = group_triggers(
        [
            {"trigger_name": "audit", "event": "INSERT", "timing": "AFTER", "enabled": "ENABLED"},
            {"trigger_name": "audit", "event": "UPDATE", "timing": "AFTER"},
        ]
    )
    assert len(triggers) == 1
    assert triggers[0].event == "INSERT OR UPDATE"
    assert triggers[0].enabled is True


def test_foreign_key_rules_are_optional():
    fk = build_foreign_key({"column_name": "customer_id", "referenced_table": "customers"})
    assert fk.fk_name is None
    assert fk.delete_rule is None
    assert fk.referenced_column is None


def test_descriptor_payload_keeps_every_key():
    payload = TableDescriptor(table_name="empty").to_payload()
    assert payload["columns"] == []
    assert payload["foreignKeys"] == []
    assert payload["triggers"] == []
    assert payload["error"] is None
    assert to_bool(b"yes") is True
    assert to_bool(None) is False
