"""Tests for schema compilation: native vs derived partition and type mapping."""

from mviews.services.model_registry import ModelSpec
from mviews.services.view_schema_compiler import (
    ARRAY_TRANSFORM_FUNCTION,
    EXCLUDED_COLUMNS,
    compile_view_schema,
    derived_expression,
)
from tests.helpers import field


def _spec(**columns) -> ModelSpec:
    return ModelSpec(
        name="Widget",
        table_name="widgets",
        columns=columns,
        primary_key=("id",),
    )


class TestConcreteFields:
    def test_every_mappable_native_column_is_concrete(self, session_spec):
        result = compile_view_schema(session_spec, [])
        concrete = {f.column for f in result.schema.concrete_fields}

        assert "id" in concrete
        assert "tenant_code" in concrete
        assert "title" in concrete
        assert "start_date" in concrete
        assert "meta" in concrete
        assert result.schema.derived_fields == []

    def test_audit_timestamps_excluded(self, session_spec):
        result = compile_view_schema(session_spec, [])
        names = result.schema.column_names
        for column in EXCLUDED_COLUMNS:
            assert column not in names

    def test_native_type_mapping(self, session_spec):
        schema = compile_view_schema(session_spec, []).schema
        assert schema.sql_type_of("id") == "integer"
        assert schema.sql_type_of("start_date") == "bigint"
        assert schema.sql_type_of("title") == "character varying"
        assert schema.sql_type_of("description") == "text"
        assert schema.sql_type_of("categories") == "character varying[]"
        assert schema.sql_type_of("is_feedback_skipped") == "boolean"
        assert schema.sql_type_of("started_at") == "timestamp with time zone"
        assert schema.sql_type_of("meeting_info") == "jsonb"
        assert schema.sql_type_of("custom_entity_text") == "json"

    def test_unmappable_native_column_dropped_silently(self):
        spec = _spec(id="INTEGER", blob=None, shape="GEOMETRY")
        result = compile_view_schema(spec, [])
        assert result.schema.column_names == ["id"]
        assert result.issues == []


class TestDerivedFields:
    def test_metadata_field_not_native_is_derived(self, session_spec):
        result = compile_view_schema(session_spec, [field("category", "STRING")])

        derived = result.schema.derived_fields
        assert [d.key for d in derived] == ["category"]
        assert derived[0].sql_type == "character varying"
        assert derived[0].render() == "(meta->>'category')::character varying AS category"

    def test_native_field_in_metadata_stays_concrete(self, session_spec):
        result = compile_view_schema(session_spec, [field("title", "STRING")])
        assert result.schema.derived_fields == []
        assert "title" in [f.column for f in result.schema.concrete_fields]

    def test_array_field_uses_transform_function(self, session_spec):
        result = compile_view_schema(session_spec, [field("tags", "ARRAY[STRING]")])
        expr = result.schema.derived_fields[0].source_expression
        assert expr == f"{ARRAY_TRANSFORM_FUNCTION}(meta->'tags')::character varying[]"

    def test_derived_fields_follow_concrete(self, session_spec):
        result = compile_view_schema(
            session_spec, [field("category", "STRING"), field("level", "INTEGER")]
        )
        names = result.schema.column_names
        concrete_count = len(result.schema.concrete_fields)
        assert names[concrete_count:] == ["category", "level"]

    def test_declared_type_is_normalized(self, session_spec):
        result = compile_view_schema(session_spec, [field("tags", "array[ string ]")])
        assert result.schema.derived_fields[0].sql_type == "character varying[]"

    def test_duplicate_metadata_field_compiled_once(self, session_spec):
        result = compile_view_schema(
            session_spec, [field("category", "STRING"), field("category", "TEXT")]
        )
        assert [d.key for d in result.schema.derived_fields] == ["category"]


class TestFailSoft:
    def test_unsupported_type_skipped_rest_compiles(self, session_spec):
        result = compile_view_schema(
            session_spec, [field("shape", "GEOMETRY"), field("category", "STRING")]
        )

        assert [d.key for d in result.schema.derived_fields] == ["category"]
        assert len(result.issues) == 1
        assert result.issues[0].field_name == "shape"
        assert result.issues[0].reason == "unsupported_type"

    def test_unsafe_field_name_skipped(self, session_spec):
        result = compile_view_schema(
            session_spec, [field("x; DROP TABLE sessions", "STRING"), field("level", "INTEGER")]
        )

        assert [d.key for d in result.schema.derived_fields] == ["level"]
        assert result.issues[0].reason == "invalid_name"


def test_derived_expression_escapes_key_literal():
    assert derived_expression("meta", "it's", "text") == "(meta->>'it''s')::text"
