# test_schema.py
#
#
# Imports
import pytest
#
# Local Imports
from tempo_data.app.core.DB_Management.exceptions import InputError, SchemaError
from tempo_data.app.core.DB_Management.schema import (
    SYSTEM_COLUMNS,
    ColumnType,
    SchemaBuilder,
    physical_type,
    table,
)
from tempo_data.app.core.DB_Management.schemas import SCHEMA_REGISTRY, TABLE_NAMES
#
#######################################################################################################################
#
# Functions:


class TestTypeMapping:
    @pytest.mark.parametrize("logical, physical", [
        (ColumnType.TEXT, "TEXT"),
        (ColumnType.INTEGER, "INTEGER"),
        (ColumnType.REAL, "REAL"),
        (ColumnType.BOOLEAN, "INTEGER"),
        (ColumnType.TIMESTAMP, "INTEGER"),
        (ColumnType.DATE, "TEXT"),
        (ColumnType.JSONB, "TEXT"),
        ("boolean", "INTEGER"),
    ])
    def test_known_types(self, logical, physical):
        assert physical_type(logical) == physical

    def test_unknown_type_falls_back_to_text(self):
        assert physical_type("GEOMETRY") == "TEXT"
        column_table = table("odd", lambda t: t.column("shape", "GEOMETRY"))
        assert column_table.columns["shape"].physical_type == "TEXT"


class TestSchemaBuilder:
    def test_table_helper_prepends_system_columns(self):
        schema = table("notes", lambda t: t.column("name", ColumnType.TEXT))
        assert schema.column_names == list(SYSTEM_COLUMNS) + ["name"]
        assert schema.columns["id"].primary_key is True
        assert schema.columns["created_at"].not_null is True
        assert schema.columns["synced"].default is False
        assert schema.domain_columns == ["name"]

    def test_default_index_name(self):
        schema = table("notes", lambda t: (
            t.column("a", ColumnType.TEXT).column("b", ColumnType.TEXT).index(["a", "b"])
        ))
        assert schema.indexes[0].name == "idx_notes_a_b"
        assert schema.indexes[0].columns == ("a", "b")
        assert schema.indexes[0].unique is False

    def test_explicit_unique_index(self):
        schema = table("notes", lambda t: t.column("a", ColumnType.TEXT).index("a", name="uq_a", unique=True))
        assert schema.indexes[0].name == "uq_a"
        assert schema.indexes[0].unique is True

    def test_duplicate_column_rejected(self):
        with pytest.raises(SchemaError):
            SchemaBuilder("notes").column("a", ColumnType.TEXT).column("a", ColumnType.INTEGER)

    @pytest.mark.parametrize("bad_name", ["drop table", "1abc", "name;--", ""])
    def test_invalid_identifiers_rejected(self, bad_name):
        with pytest.raises(SchemaError):
            SchemaBuilder("notes").column(bad_name, ColumnType.TEXT)

    def test_invalid_table_name_rejected(self):
        with pytest.raises(SchemaError):
            table("bad-name")

    def test_index_on_undeclared_column_rejected(self):
        with pytest.raises(SchemaError):
            table("notes", lambda t: t.index(["missing"]))

    def test_schema_is_immutable(self):
        schema = table("notes", lambda t: t.column("a", ColumnType.TEXT))
        with pytest.raises(TypeError):
            schema.columns["b"] = schema.columns["a"]
        with pytest.raises(AttributeError):
            schema.name = "other"


class TestRecordValidation:
    @pytest.fixture
    def schema(self):
        return table("items", lambda t: (
            t.column("name", ColumnType.TEXT)
             .column("qty", ColumnType.INTEGER)
             .column("ratio", ColumnType.REAL)
             .column("flag", ColumnType.BOOLEAN)
             .column("meta", ColumnType.JSONB)
        ))

    def test_only_supplied_keys_returned(self, schema):
        assert schema.validate_record({"name": "x"}) == {"name": "x"}

    def test_values_are_coerced(self, schema):
        data = schema.validate_record({"qty": "3", "ratio": 2, "flag": 1, "meta": {"a": [1]}})
        assert data == {"qty": 3, "ratio": 2.0, "flag": True, "meta": {"a": [1]}}

    def test_unknown_key_rejected(self, schema):
        with pytest.raises(InputError):
            schema.validate_record({"nope": 1})

    def test_wrong_type_rejected(self, schema):
        with pytest.raises(InputError):
            schema.validate_record({"qty": "many"})

    def test_explicit_none_kept(self, schema):
        assert schema.validate_record({"name": None}) == {"name": None}


class TestRegistry:
    def test_registry_order(self):
        assert TABLE_NAMES == ["pomodoro_sessions", "pomodoro_log", "pomodoro_streak", "app_settings"]
        assert list(SCHEMA_REGISTRY.keys()) == TABLE_NAMES

    def test_every_table_has_system_columns(self):
        for schema in SCHEMA_REGISTRY.values():
            assert schema.column_names[:5] == list(SYSTEM_COLUMNS)

    def test_pomodoro_log_unique_date(self):
        log = SCHEMA_REGISTRY["pomodoro_log"]
        assert log.columns["log_date"].unique is True
        assert {index.name for index in log.indexes} == {"idx_pomodoro_log_log_date", "idx_pomodoro_log_focus_score"}

    def test_app_settings_defaults(self):
        settings = SCHEMA_REGISTRY["app_settings"]
        assert settings.columns["work_session_duration"].default == 25
        assert settings.columns["sessions_before_long_break"].default == 4

    def test_last_streak_date_is_a_date(self):
        assert SCHEMA_REGISTRY["pomodoro_streak"].columns["last_streak_date"].type == ColumnType.DATE
