# Copyright (c) Syntropy Systems
"""Concurrent execution of a prompt version over inputs and models.

Every entry point first marks its target cells with the loading sentinel and
then runs one request per cell concurrently. A request never raises: the
outcome, good or bad, is written into its cell.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from promptgrid.codec import LOADING_SENTINEL, encode_response, format_error
from promptgrid.models.result import ChatMessage, ValidationResult
from promptgrid.validation import validate_response

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from promptgrid.providers import Entitlements, Invoker
    from promptgrid.store import TestMatrixStore

logger = logging.getLogger(__name__)

Validator = Callable[[str, str], ValidationResult]
Clock = Callable[[], float]


class NoRunnableInputError(ValueError):
    """Raised when a run is requested without any non-blank input."""


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.perf_counter() * 1000


@dataclass(frozen=True)
class RunOptions:
    """Which prompt version to run and the instruction text to send."""

    prompt_id: str
    version_id: str
    content: str


@dataclass(frozen=True)
class RunResult:
    """Outcome of one (input, model) request."""

    model_id: str
    row_id: str
    response: str
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class PromptRunner:
    """Runs a prompt version against models and writes results to the store."""

    store: TestMatrixStore
    invoker: Invoker
    entitlements: Entitlements
    validator: Validator
    clock: Clock

    def __init__(
        self,
        store: TestMatrixStore,
        invoker: Invoker,
        entitlements: Entitlements,
        validator: Validator = validate_response,
        clock: Clock = monotonic_ms,
    ) -> None:
        """Initialize the runner.

        Args:
            store: Store holding the prompt and receiving cell results
            invoker: Model capability, e.g. ``ProviderInvoker``
            entitlements: Decides whether a model may be called
            validator: Checks a response against an output schema
            clock: Millisecond clock used to time requests

        """
        self.store = store
        self.invoker = invoker
        self.entitlements = entitlements
        self.validator = validator
        self.clock = clock

    def can_use_model(self, model_id: str) -> bool:
        """Whether the caller is entitled to run ``model_id``."""
        return self.entitlements.has_valid_key_for_model(model_id)

    def _mark_loading(
        self, options: RunOptions, cells: Iterable[tuple[str, str]]
    ) -> None:
        for row_id, model_id in cells:
            self.store.write_cell(
                options.prompt_id, options.version_id, row_id, model_id, LOADING_SENTINEL
            )

    def _runnable_rows(self, options: RunOptions) -> list[tuple[str, str]]:
        rows = [
            (row.id, row.input)
            for row in self.store.get_test_matrix(options.prompt_id, options.version_id)
            if row.input.strip()
        ]
        if not rows:
            raise NoRunnableInputError("No rows with content found")
        return rows

    async def run_single_execution(
        self,
        model_id: str,
        input_text: str,
        row_id: str,
        options: RunOptions,
    ) -> RunResult:
        """Run one input against one model and store the outcome."""
        prompt_id, version_id = options.prompt_id, options.version_id

        if not self.can_use_model(model_id):
            message = format_error(f"API key required for {model_id}")
            self.store.write_cell(prompt_id, version_id, row_id, model_id, message)
            return RunResult(
                model_id=model_id,
                row_id=row_id,
                response=message,
                error="Missing API key",
            )

        try:
            messages = [
                ChatMessage(
                    role="system",
                    content=self.store.substitute_variables(prompt_id, options.content),
                ),
                ChatMessage(role="user", content=input_text.strip()),
            ]
            logger.debug("Starting request for %s on row %s", model_id, row_id)
            started = self.clock()
            completion = await self.invoker.invoke(messages, model_id)
            duration_ms = self.clock() - started

            self.store.write_cell(
                prompt_id,
                version_id,
                row_id,
                model_id,
                encode_response(completion.text, duration_ms, completion.usage),
            )

            schema = self.store.get_output_schema(prompt_id, version_id)
            if schema:
                self.store.set_validation_result(
                    prompt_id,
                    version_id,
                    row_id,
                    model_id,
                    self.validator(completion.text, schema),
                )
        except Exception as e:
            detail = str(e) or f"Failed to get response from {model_id}"
            logger.warning("Request for %s on row %s failed: %s", model_id, row_id, detail)
            message = format_error(detail)
            self.store.write_cell(prompt_id, version_id, row_id, model_id, message)
            return RunResult(
                model_id=model_id, row_id=row_id, response=message, error=detail
            )

        return RunResult(
            model_id=model_id,
            row_id=row_id,
            response=completion.text,
            duration_ms=duration_ms,
        )

    async def _run_cells(
        self, options: RunOptions, jobs: Sequence[tuple[str, str, str]]
    ) -> list[RunResult]:
        self._mark_loading(options, ((row_id, model_id) for row_id, _, model_id in jobs))
        return list(
            await asyncio.gather(
                *(
                    self.run_single_execution(model_id, text, row_id, options)
                    for row_id, text, model_id in jobs
                )
            )
        )

    async def run_single_cell(
        self, model_id: str, input_text: str, row_id: str, options: RunOptions
    ) -> RunResult:
        """Run one model on one input row."""
        if not input_text.strip():
            raise NoRunnableInputError("Input is required")
        results = await self._run_cells(options, [(row_id, input_text, model_id)])
        return results[0]

    async def run_all_models_for_row(
        self,
        model_ids: Sequence[str],
        input_text: str,
        row_id: str,
        options: RunOptions,
    ) -> list[RunResult]:
        """Run every given model on one input row."""
        if not input_text.strip():
            raise NoRunnableInputError("Input is required")
        results = await self._run_cells(
            options, [(row_id, input_text, model_id) for model_id in model_ids]
        )
        logger.info("All models completed for row %s", row_id)
        return results

    async def run_model_for_all_rows(
        self, model_id: str, options: RunOptions
    ) -> list[RunResult]:
        """Run one model on every row that has input."""
        rows = self._runnable_rows(options)
        results = await self._run_cells(
            options, [(row_id, text, model_id) for row_id, text in rows]
        )
        logger.info("All rows completed for model %s", model_id)
        return results

    async def run_entire_table(
        self, model_ids: Sequence[str], options: RunOptions
    ) -> list[RunResult]:
        """Run every given model on every row that has input."""
        rows = self._runnable_rows(options)
        results = await self._run_cells(
            options,
            [
                (row_id, text, model_id)
                for row_id, text in rows
                for model_id in model_ids
            ],
        )
        logger.info("All table requests completed: %d cells", len(results))
        return results
