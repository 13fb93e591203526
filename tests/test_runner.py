# Copyright (c) Syntropy Systems
"""Tests for concurrent prompt execution."""

import asyncio

import pytest

from promptgrid.codec import LOADING_SENTINEL, decode_response
from promptgrid.models.result import Completion, TokenUsage, ValidationResult
from promptgrid.runner import NoRunnableInputError, PromptRunner, RunOptions
from promptgrid.store import TestMatrixStore


@pytest.fixture
def translate_prompt(store: TestMatrixStore):
    """A one-row translation prompt with its variable set."""
    prompt_id = store.create_prompt("Translate: {{word}}")
    version_id = store.active_version_id
    row_id = store.get_prompt(prompt_id).input_rows[0].id
    store.update_input_row(prompt_id, row_id, "  ignored  ")
    store.set_variable(prompt_id, "word", "hola")
    options = RunOptions(
        prompt_id=prompt_id, version_id=version_id, content="Translate: {{word}}"
    )
    return options, row_id


@pytest.fixture
def runner(store, fake_invoker, fake_clock) -> PromptRunner:
    return PromptRunner(store, fake_invoker, fake_invoker, clock=fake_clock)


class TestSingleExecution:
    """Tests for running one cell."""

    @pytest.mark.asyncio
    async def test_success_is_encoded(self, runner, store, fake_invoker, translate_prompt):
        """Test the stored value and messages of a successful call."""
        options, row_id = translate_prompt
        fake_invoker.responses["gpt-4o"] = Completion(
            text="hello",
            usage=TokenUsage(prompt_tokens=5, completion_tokens=1, total_tokens=6),
        )

        result = await runner.run_single_cell("gpt-4o", "  ignored  ", row_id, options)

        cell = store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o")
        assert cell == "hello__TIMING__120__USAGE__5,1,6"
        assert result.ok
        assert result.response == "hello"
        assert result.duration_ms == 120

        messages, model_id = fake_invoker.calls[0]
        assert model_id == "gpt-4o"
        assert messages[0].role == "system"
        assert messages[0].content == "Translate: hola"
        assert messages[1].role == "user"
        assert messages[1].content == "ignored"

    @pytest.mark.asyncio
    async def test_provider_error_is_written(
        self, runner, store, fake_invoker, translate_prompt
    ):
        """Test that an invocation failure becomes an error cell."""
        options, row_id = translate_prompt
        fake_invoker.responses["gpt-4o"] = RuntimeError("rate limited")

        result = await runner.run_single_cell("gpt-4o", "ignored", row_id, options)

        cell = store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o")
        assert cell == "Error: rate limited"
        assert result.error == "rate limited"
        assert result.duration_ms == 0

    @pytest.mark.asyncio
    async def test_missing_key_short_circuits(
        self, runner, store, fake_invoker, translate_prompt
    ):
        """Test that an unentitled model is never invoked."""
        options, row_id = translate_prompt
        fake_invoker.allowed = {"gpt-4o-mini"}

        result = await runner.run_single_execution("gpt-4o", "ignored", row_id, options)

        cell = store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o")
        assert cell == "Error: API key required for gpt-4o"
        assert not result.ok
        assert fake_invoker.calls == []

    @pytest.mark.asyncio
    async def test_schema_validation_stored(
        self, runner, store, fake_invoker, translate_prompt
    ):
        options, row_id = translate_prompt
        store.set_output_schema(
            options.prompt_id,
            options.version_id,
            '{"type": "object", "required": ["word"], '
            '"properties": {"word": {"type": "string"}}}',
        )
        fake_invoker.responses["gpt-4o"] = Completion(text='{"word": "hello"}')

        await runner.run_single_cell("gpt-4o", "x", row_id, options)

        validation = store.get_validation_result(
            options.prompt_id, options.version_id, row_id, "gpt-4o"
        )
        assert validation.is_valid
        assert validation.parsed_data == {"word": "hello"}

    @pytest.mark.asyncio
    async def test_schema_with_look_ahead_keeps_answer(
        self, runner, store, fake_invoker, translate_prompt
    ):
        options, row_id = translate_prompt
        store.set_output_schema(
            options.prompt_id,
            options.version_id,
            '{"type": "object", "properties": {"code": {"type": "string", "pattern": "^(?=A)"}}}',
        )
        fake_invoker.responses["gpt-4o"] = Completion(text='{"code": "ABC"}')

        result = await runner.run_single_cell("gpt-4o", "x", row_id, options)

        assert result.ok
        cell = store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o")
        assert decode_response(cell).text == '{"code": "ABC"}'
        validation = store.get_validation_result(
            options.prompt_id, options.version_id, row_id, "gpt-4o"
        )
        assert validation.is_valid

    @pytest.mark.asyncio
    async def test_unbuildable_schema_keeps_answer(
        self, runner, store, fake_invoker, translate_prompt
    ):
        """Test that a schema that cannot be compiled is stored as a validation failure."""
        options, row_id = translate_prompt
        store.set_output_schema(
            options.prompt_id, options.version_id, '{"type": "string", "pattern": "[unclosed"}'
        )
        fake_invoker.responses["gpt-4o"] = Completion(text='"hello"')

        result = await runner.run_single_cell("gpt-4o", "x", row_id, options)

        assert result.ok
        cell = store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o")
        assert decode_response(cell).text == '"hello"'
        validation = store.get_validation_result(
            options.prompt_id, options.version_id, row_id, "gpt-4o"
        )
        assert validation.errors == ["Invalid JSON schema format"]


    @pytest.mark.asyncio
    async def test_no_schema_no_validation(self, store, fake_invoker, translate_prompt):
        options, row_id = translate_prompt
        calls = []

        def validator(text, schema):
            calls.append(text)
            return ValidationResult(is_valid=True)

        runner = PromptRunner(store, fake_invoker, fake_invoker, validator=validator)

        await runner.run_single_cell("gpt-4o", "x", row_id, options)

        assert calls == []
        assert store.get_validation_result(
            options.prompt_id, options.version_id, row_id, "gpt-4o"
        ) is None

    @pytest.mark.asyncio
    async def test_blank_input_rejected(self, runner, store, translate_prompt):
        """Test that blank input raises before any cell is touched."""
        options, row_id = translate_prompt

        with pytest.raises(NoRunnableInputError, match="Input is required"):
            await runner.run_single_cell("gpt-4o", "   ", row_id, options)

        assert store.read_cell(options.prompt_id, options.version_id, row_id, "gpt-4o") is None


class TestBatches:
    """Tests for row, column and full-table runs."""

    @pytest.mark.asyncio
    async def test_entire_table_writes_every_cell(self, runner, store, fake_invoker):
        """Test N rows x M models produce N*M settled cells."""
        prompt_id = store.create_prompt("Echo")
        version_id = store.active_version_id
        store.add_input_row(prompt_id, "two")
        store.add_input_row(prompt_id, "   ")
        store.add_input_row(prompt_id, "three")
        models = ["gpt-4o", "gpt-4o-mini", "claude-3-5-haiku-20241022"]
        fake_invoker.responses["gpt-4o-mini"] = RuntimeError("overloaded")
        options = RunOptions(prompt_id=prompt_id, version_id=version_id, content="Echo")

        results = await runner.run_entire_table(models, options)

        assert len(results) == 3 * 3
        matrix = store.get_test_matrix(prompt_id, version_id)
        filled = [row for row in matrix if row.input.strip()]
        blank = [row for row in matrix if not row.input.strip()]
        for row in filled:
            assert set(row.responses) == set(models)
            for model_id, value in row.responses.items():
                assert value != LOADING_SENTINEL
                if model_id == "gpt-4o-mini":
                    assert value == "Error: overloaded"
                else:
                    assert decode_response(value).text == f"{model_id}: {row.input}"
        assert blank[0].responses == {}

    @pytest.mark.asyncio
    async def test_cells_marked_loading_before_requests(self, store, fake_clock):
        """Test that every target cell is pending before the first request runs."""
        prompt_id = store.create_prompt("Echo")
        version_id = store.active_version_id
        store.add_input_row(prompt_id, "second")
        options = RunOptions(prompt_id=prompt_id, version_id=version_id, content="Echo")
        seen = []

        class RecordingInvoker:
            def has_valid_key_for_model(self, model_id):
                return True

            async def invoke(self, messages, model_id):
                if not seen:
                    seen.extend(
                        value
                        for row in store.get_test_matrix(prompt_id, version_id)
                        for value in row.responses.values()
                    )
                await asyncio.sleep(0)
                return Completion(text="ok")

        invoker = RecordingInvoker()
        runner = PromptRunner(store, invoker, invoker, clock=fake_clock)

        await runner.run_model_for_all_rows("gpt-4o", options)

        assert seen == [LOADING_SENTINEL, LOADING_SENTINEL]

    @pytest.mark.asyncio
    async def test_all_models_for_row(self, runner, store, translate_prompt):
        options, row_id = translate_prompt

        results = await runner.run_all_models_for_row(
            ["gpt-4o", "grok-3"], "ignored", row_id, options
        )

        assert [r.model_id for r in results] == ["gpt-4o", "grok-3"]
        assert all(r.row_id == row_id for r in results)

    @pytest.mark.asyncio
    async def test_model_for_all_rows_skips_blank(self, runner, store, fake_invoker):
        prompt_id = store.create_prompt("Echo")
        version_id = store.active_version_id
        store.add_input_row(prompt_id, "")
        options = RunOptions(prompt_id=prompt_id, version_id=version_id, content="Echo")

        results = await runner.run_model_for_all_rows("gpt-4o", options)

        assert len(results) == 1
        assert len(fake_invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_no_rows_with_content(self, runner, store):
        prompt_id = store.create_prompt("Echo")
        version_id = store.active_version_id
        row_id = store.get_prompt(prompt_id).input_rows[0].id
        store.update_input_row(prompt_id, row_id, " ")
        options = RunOptions(prompt_id=prompt_id, version_id=version_id, content="Echo")

        with pytest.raises(NoRunnableInputError, match="No rows with content found"):
            await runner.run_entire_table(["gpt-4o"], options)

        assert store.get_test_matrix(prompt_id, version_id)[0].responses == {}

    @pytest.mark.asyncio
    async def test_results_stay_in_their_version(self, runner, store):
        prompt_id = store.create_prompt("one")
        v1 = store.active_version_id
        v2 = store.revise_instruction(prompt_id, "two")
        options = RunOptions(prompt_id=prompt_id, version_id=v2, content="two")

        await runner.run_entire_table(["gpt-4o"], options)

        assert store.get_version(prompt_id, v1).responses == {}
        assert len(store.get_version(prompt_id, v2).responses) == 1
