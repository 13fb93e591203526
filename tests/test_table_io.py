# Copyright (c) Syntropy Systems
"""Tests for input import/export and readiness checks."""

import json

import pytest

from promptgrid.store import TestMatrixStore
from promptgrid.table_io import (
    check_readiness,
    describe_json_input,
    export_rows,
    import_rows,
    rows_from_json,
)


class TestRowsFromJson:
    """Tests for rows_from_json."""

    def test_array_of_strings(self) -> None:
        assert rows_from_json('["a", "b"]') == ["a", "b"]

    def test_array_of_objects(self) -> None:
        text = json.dumps(
            [{"input": "one"}, {"text": "two"}, {"message": "three"}, {"other": 4}, 5]
        )

        assert rows_from_json(text) == ["one", "two", "three", '{"other":4}', "5"]

    def test_empty_input_key_falls_through(self) -> None:
        assert rows_from_json('[{"input": "", "content": "c"}]') == ["c"]

    def test_wrapped_array(self) -> None:
        text = json.dumps({"inputs": ["x", {"y": 1}]})

        assert rows_from_json(text) == ["x", '{"y":1}']

    def test_object_values(self) -> None:
        text = json.dumps({"a": "first", "b": 2, "c": None, "d": True, "e": {"k": "v"}})

        assert rows_from_json(text) == ["first", "2", '{"k":"v"}']

    def test_scalar_rejected(self) -> None:
        with pytest.raises(ValueError, match="array or object"):
            rows_from_json("42")


class TestDescribeJsonInput:
    """Tests for describe_json_input."""

    def test_blank(self) -> None:
        status = describe_json_input("   ")

        assert status.is_valid
        assert status.is_empty

    def test_rows_detected(self) -> None:
        assert describe_json_input('["a", "b"]').message == "Valid - 2 rows detected"

    def test_object_values(self) -> None:
        status = describe_json_input('{"a": "x"}')

        assert status.message == "Valid JSON - Will create 1 row(s) from object values"

    def test_broken_json(self) -> None:
        status = describe_json_input("[1,")

        assert not status.is_valid
        assert status.message == "Invalid - JSON format error"

    def test_scalar(self) -> None:
        assert describe_json_input('"x"').message == "Invalid - must be array or object"


class TestImportExport:
    """Tests for replacing and exporting prompt inputs."""

    def test_import_replaces_rows_in_order(self, store: TestMatrixStore) -> None:
        prompt_id = store.create_prompt("Echo")
        old_row = store.get_prompt(prompt_id).input_rows[0].id
        store.write_cell(prompt_id, store.active_version_id, old_row, "gpt-4o", "x")

        row_ids = import_rows(store, prompt_id, '["first", "second", "third"]')

        rows = store.get_prompt(prompt_id).input_rows
        assert [r.input for r in rows] == ["first", "second", "third"]
        assert [r.id for r in rows] == row_ids
        assert store.get_version(prompt_id, store.active_version_id).responses == {}

    def test_import_unknown_prompt(self, store: TestMatrixStore) -> None:
        assert import_rows(store, "missing", '["a"]') == []

    def test_export_skips_blank_rows(self, store: TestMatrixStore) -> None:
        prompt_id = store.create_prompt("Echo")
        store.add_input_row(prompt_id, "  ")
        store.add_input_row(prompt_id, "latest")

        assert json.loads(export_rows(store, prompt_id)) == ["latest", "example input"]

    def test_export_default(self, store: TestMatrixStore) -> None:
        prompt_id = store.create_prompt("Echo")
        import_rows(store, prompt_id, "[]")

        assert json.loads(export_rows(store, prompt_id)) == ["hello"]


class TestReadiness:
    """Tests for check_readiness."""

    def test_ready(self, store: TestMatrixStore, fake_invoker) -> None:
        prompt_id = store.create_prompt("Echo")

        readiness = check_readiness(
            store.get_prompt(prompt_id).input_rows, ["gpt-4o"], fake_invoker
        )

        assert readiness.is_valid
        assert readiness.messages == []

    def test_all_problems_reported(self, store: TestMatrixStore, fake_invoker) -> None:
        fake_invoker.allowed = set()

        no_rows = check_readiness([], [], fake_invoker)
        missing_keys = check_readiness([], ["gpt-4o", "grok-3"], fake_invoker)

        assert no_rows.messages == ["No input rows available", "No models selected"]
        assert missing_keys.messages == [
            "No input rows available",
            "Missing API keys for: GPT-4o, Grok 3",
        ]

    def test_blank_rows(self, store: TestMatrixStore, fake_invoker) -> None:
        prompt_id = store.create_prompt("Echo")
        row_id = store.get_prompt(prompt_id).input_rows[0].id
        store.update_input_row(prompt_id, row_id, "")

        readiness = check_readiness(
            store.get_prompt(prompt_id).input_rows, ["gpt-4o"], fake_invoker
        )

        assert readiness.messages == ["All input rows are empty"]
