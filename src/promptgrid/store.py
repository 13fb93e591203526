# Copyright (c) Syntropy Systems
"""In-memory store for prompts, versions, test inputs and cell results.

Every mutation swaps in new immutable records rather than editing existing
ones, then notifies subscribers with the new prompt list. Operations on
unknown prompt or version ids are silent no-ops, and reads of unknown ids
return empty values.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from promptgrid.catalog import ModelCatalog
from promptgrid.codec import cell_state
from promptgrid.models.prompt import InputRow, Prompt, PromptVersion, TestMatrixRow
from promptgrid.variables import detect_variables, substitute_variables

if TYPE_CHECKING:
    from collections.abc import Iterable

    from promptgrid.models.result import CellState, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_INPUT = "example input"

Listener = Callable[[list[Prompt]], None]


def _without_row(table: dict[str, dict], row_id: str) -> dict[str, dict]:
    return {rid: cells for rid, cells in table.items() if rid != row_id}


class TestMatrixStore:
    """Single source of truth for prompt data.

    The store is an ordinary object: create one per session and hand it to
    the runner and sync bridge that should share it.
    """

    __test__ = False

    _prompts: list[Prompt]
    _catalog: ModelCatalog
    _default_models: list[str]
    _active_prompt_id: Optional[str]
    _active_version_id: Optional[str]
    _listeners: list[Listener]

    def __init__(
        self,
        catalog: Optional[ModelCatalog] = None,
        prompts: Optional[Iterable[Prompt]] = None,
        default_models: Optional[list[str]] = None,
    ) -> None:
        """Initialize the store.

        Args:
            catalog: Model catalog used for default model selection
            prompts: Initial prompts, e.g. from a loaded snapshot
            default_models: Override for the models preselected on new prompts

        """
        self._catalog = catalog or ModelCatalog()
        self._prompts = list(prompts or [])
        self._default_models = list(default_models or self._catalog.default_models())
        self._active_prompt_id = None
        self._active_version_id = None
        self._listeners = []

    # --- Lifecycle and change notification ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def close(self) -> None:
        """Drop all listeners."""
        self._listeners.clear()

    def _commit(self, prompts: list[Prompt]) -> None:
        self._prompts = prompts
        snapshot = list(prompts)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Store listener failed")

    @property
    def prompts(self) -> list[Prompt]:
        """Snapshot of all prompts."""
        return list(self._prompts)

    def replace_all(self, prompts: Iterable[Prompt]) -> None:
        """Replace the whole prompt list, e.g. after loading a snapshot."""
        new_prompts = list(prompts)
        ids = {p.id for p in new_prompts}
        if self._active_prompt_id not in ids:
            self._active_prompt_id = None
            self._active_version_id = None
        self._commit(new_prompts)

    # --- Lookup helpers ---

    def get_prompt(self, prompt_id: Optional[str]) -> Optional[Prompt]:
        """Return a prompt by id."""
        if not prompt_id:
            return None
        for prompt in self._prompts:
            if prompt.id == prompt_id:
                return prompt
        return None

    def get_version(
        self, prompt_id: Optional[str], version_id: Optional[str]
    ) -> Optional[PromptVersion]:
        """Return one version of a prompt."""
        prompt = self.get_prompt(prompt_id)
        if prompt is None or not version_id:
            return None
        return prompt.get_version(version_id)

    def _update_prompt(self, prompt_id: str, fn: Callable[[Prompt], Prompt]) -> bool:
        for index, prompt in enumerate(self._prompts):
            if prompt.id == prompt_id:
                prompts = list(self._prompts)
                prompts[index] = fn(prompt)
                self._commit(prompts)
                return True
        return False

    def _update_version(
        self,
        prompt_id: str,
        version_id: str,
        fn: Callable[[PromptVersion], PromptVersion],
    ) -> bool:
        if self.get_version(prompt_id, version_id) is None:
            return False

        def _apply(prompt: Prompt) -> Prompt:
            versions = [
                fn(v) if v.version_id == version_id else v for v in prompt.versions
            ]
            return prompt.model_copy(update={"versions": versions})

        return self._update_prompt(prompt_id, _apply)

    # --- Active selection ---

    @property
    def active_prompt_id(self) -> Optional[str]:
        """Id of the prompt currently being edited."""
        return self._active_prompt_id

    @property
    def active_version_id(self) -> Optional[str]:
        """Id of the version currently being edited."""
        return self._active_version_id

    def set_active_prompt(self, prompt_id: Optional[str]) -> None:
        """Select a prompt and its latest version."""
        prompt = self.get_prompt(prompt_id)
        latest = prompt.latest_version if prompt else None
        self._active_prompt_id = prompt_id
        self._active_version_id = latest.version_id if latest else None

    def set_active_version(self, prompt_id: str, version_id: str) -> None:
        """Select a specific version, e.g. to revert to it."""
        if self.get_version(prompt_id, version_id) is None:
            return
        self._active_prompt_id = prompt_id
        self._active_version_id = version_id

    # --- Prompts and versions ---

    def create_prompt(self, content: str, title: str = "") -> str:
        """Create a prompt with one version and one default input row.

        The new prompt becomes active. Returns its id.
        """
        version = PromptVersion(
            title=title,
            content=content,
            selected_models=list(self._default_models),
        )
        prompt = Prompt(
            versions=[version],
            input_rows=[InputRow(input=DEFAULT_INPUT)],
            variables=dict.fromkeys(detect_variables(content), ""),
        )
        self._active_prompt_id = prompt.id
        self._active_version_id = version.version_id
        self._commit([*self._prompts, prompt])
        return prompt.id

    def revise_instruction(self, prompt_id: str, content: str) -> Optional[str]:
        """Append a version with new instruction text.

        Title and model selection carry over from the active version (or the
        latest one). Results and the output schema start empty. Returns the
        new version id, or None for an unknown prompt.
        """
        prompt = self.get_prompt(prompt_id)
        if prompt is None:
            return None

        base = None
        if self._active_prompt_id == prompt_id and self._active_version_id:
            base = prompt.get_version(self._active_version_id)
        base = base or prompt.latest_version

        version = PromptVersion(
            title=base.title if base else "",
            content=content,
            selected_models=(
                list(base.selected_models)
                if base and base.selected_models is not None
                else list(self._default_models)
            ),
        )
        self._update_prompt(
            prompt_id,
            lambda p: p.model_copy(update={"versions": [*p.versions, version]}),
        )
        self._active_prompt_id = prompt_id
        self._active_version_id = version.version_id
        self.discover_variables(prompt_id, content)
        return version.version_id

    def set_version_title(self, prompt_id: str, version_id: str, title: str) -> None:
        """Rename a version."""
        self._update_version(
            prompt_id, version_id, lambda v: v.model_copy(update={"title": title})
        )

    def delete_prompt(self, prompt_id: str) -> None:
        """Delete a prompt with all its versions and inputs."""
        if self.get_prompt(prompt_id) is None:
            return
        if self._active_prompt_id == prompt_id:
            self._active_prompt_id = None
            self._active_version_id = None
        self._commit([p for p in self._prompts if p.id != prompt_id])

    def delete_version(self, prompt_id: str, version_id: str) -> None:
        """Delete one version; the last remaining version is never deleted."""
        prompt = self.get_prompt(prompt_id)
        if prompt is None or len(prompt.versions) <= 1:
            return
        if prompt.get_version(version_id) is None:
            return

        remaining = [v for v in prompt.versions if v.version_id != version_id]
        if self._active_version_id == version_id:
            self._active_version_id = remaining[-1].version_id
        self._update_prompt(
            prompt_id, lambda p: p.model_copy(update={"versions": remaining})
        )

    # --- Input rows ---

    def add_input_row(self, prompt_id: str, text: str = "") -> Optional[str]:
        """Add an input row at the top of the list. Returns its id."""
        if self.get_prompt(prompt_id) is None:
            return None
        row = InputRow(input=text)
        self._update_prompt(
            prompt_id,
            lambda p: p.model_copy(update={"input_rows": [row, *p.input_rows]}),
        )
        return row.id

    def update_input_row(self, prompt_id: str, row_id: str, text: str) -> None:
        """Replace the text of an input row."""

        def _apply(prompt: Prompt) -> Prompt:
            rows = [
                r.model_copy(update={"input": text}) if r.id == row_id else r
                for r in prompt.input_rows
            ]
            return prompt.model_copy(update={"input_rows": rows})

        self._update_prompt(prompt_id, _apply)

    def remove_input_row(self, prompt_id: str, row_id: str) -> None:
        """Remove an input row and every result recorded for it."""

        def _apply(prompt: Prompt) -> Prompt:
            versions = [
                v.model_copy(
                    update={
                        "responses": _without_row(v.responses, row_id),
                        "schema_validation_results": _without_row(
                            v.schema_validation_results, row_id
                        ),
                    }
                )
                for v in prompt.versions
            ]
            rows = [r for r in prompt.input_rows if r.id != row_id]
            return prompt.model_copy(update={"input_rows": rows, "versions": versions})

        self._update_prompt(prompt_id, _apply)

    def get_test_matrix(
        self, prompt_id: Optional[str], version_id: Optional[str]
    ) -> list[TestMatrixRow]:
        """Join the prompt's input rows with one version's responses."""
        prompt = self.get_prompt(prompt_id)
        if prompt is None or not version_id:
            return []
        version = prompt.get_version(version_id)
        responses = version.responses if version else {}
        return [
            TestMatrixRow(
                id=row.id,
                input=row.input,
                timestamp=row.timestamp,
                responses=dict(responses.get(row.id, {})),
            )
            for row in prompt.input_rows
        ]

    # --- Cells ---

    def write_cell(
        self,
        prompt_id: str,
        version_id: str,
        row_id: str,
        model_id: str,
        value: str,
    ) -> None:
        """Store a cell value. The last write wins."""

        def _apply(version: PromptVersion) -> PromptVersion:
            responses = dict(version.responses)
            responses[row_id] = {**responses.get(row_id, {}), model_id: value}
            return version.model_copy(update={"responses": responses})

        self._update_version(prompt_id, version_id, _apply)

    def read_cell(
        self, prompt_id: str, version_id: str, row_id: str, model_id: str
    ) -> Optional[str]:
        """Return the stored cell string, or None if the cell was never written."""
        version = self.get_version(prompt_id, version_id)
        if version is None:
            return None
        return version.responses.get(row_id, {}).get(model_id) or None

    def read_cell_state(
        self, prompt_id: str, version_id: str, row_id: str, model_id: str
    ) -> CellState:
        """Return the cell as an explicit unset/pending/succeeded/failed state."""
        return cell_state(self.read_cell(prompt_id, version_id, row_id, model_id))

    # --- Variables ---

    def get_variables(self, prompt_id: str) -> dict[str, str]:
        """Return a copy of the prompt's variable map."""
        prompt = self.get_prompt(prompt_id)
        return dict(prompt.variables) if prompt else {}

    def set_variable(self, prompt_id: str, key: str, value: str) -> None:
        """Set one variable value."""
        self._update_prompt(
            prompt_id,
            lambda p: p.model_copy(update={"variables": {**p.variables, key: value}}),
        )

    def delete_variable(self, prompt_id: str, key: str) -> None:
        """Remove a variable."""
        self._update_prompt(
            prompt_id,
            lambda p: p.model_copy(
                update={"variables": {k: v for k, v in p.variables.items() if k != key}}
            ),
        )

    def discover_variables(self, prompt_id: str, content: str) -> list[str]:
        """Register names referenced in ``content`` that are not yet known.

        New names get an empty value. Returns the names that were added.
        """
        prompt = self.get_prompt(prompt_id)
        if prompt is None:
            return []
        added = [n for n in detect_variables(content) if n not in prompt.variables]
        if added:
            self._update_prompt(
                prompt_id,
                lambda p: p.model_copy(
                    update={"variables": {**p.variables, **dict.fromkeys(added, "")}}
                ),
            )
        return added

    def substitute_variables(self, prompt_id: str, text: str) -> str:
        """Resolve variable references in ``text`` using the prompt's values."""
        return substitute_variables(text, self.get_variables(prompt_id))

    # --- Version settings ---

    def get_selected_models(
        self, prompt_id: Optional[str], version_id: Optional[str]
    ) -> list[str]:
        """Models selected for a version, or the defaults."""
        version = self.get_version(prompt_id, version_id)
        if version is None or version.selected_models is None:
            return list(self._default_models)
        return list(version.selected_models)

    def set_selected_models(
        self, prompt_id: str, version_id: str, models: list[str]
    ) -> None:
        """Replace the model selection of a version."""
        selected = list(models)
        self._update_version(
            prompt_id,
            version_id,
            lambda v: v.model_copy(update={"selected_models": selected}),
        )

    def get_output_schema(self, prompt_id: str, version_id: str) -> str:
        """Raw JSON-Schema text configured for a version ('' when none)."""
        version = self.get_version(prompt_id, version_id)
        return version.output_schema if version else ""

    def set_output_schema(self, prompt_id: str, version_id: str, schema: str) -> None:
        """Set the output schema text of a version."""
        self._update_version(
            prompt_id,
            version_id,
            lambda v: v.model_copy(update={"output_schema": schema}),
        )

    def get_validation_result(
        self, prompt_id: str, version_id: str, row_id: str, model_id: str
    ) -> Optional[ValidationResult]:
        """Stored schema validation outcome for one cell."""
        version = self.get_version(prompt_id, version_id)
        if version is None:
            return None
        return version.schema_validation_results.get(row_id, {}).get(model_id)

    def set_validation_result(
        self,
        prompt_id: str,
        version_id: str,
        row_id: str,
        model_id: str,
        result: ValidationResult,
    ) -> None:
        """Store the schema validation outcome for one cell."""

        def _apply(version: PromptVersion) -> PromptVersion:
            results = dict(version.schema_validation_results)
            results[row_id] = {**results.get(row_id, {}), model_id: result}
            return version.model_copy(update={"schema_validation_results": results})

        self._update_version(prompt_id, version_id, _apply)
