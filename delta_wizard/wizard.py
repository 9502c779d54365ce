from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import requests
from pydantic import BaseModel, Field, ValidationError

from delta_wizard import columns as cols
from delta_wizard import delta_service, filters, rule_store, rules
from delta_wizard.api_client import ApiClient
from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import (
    DEFAULT_USER_REQUIREMENTS,
    DeltaConfig,
    DeltaFile,
    DeltaProcessRequest,
    DeltaResult,
    DeltaRule,
    FileFilters,
    RuleMetadata,
    SelectedFile,
)

logger = logging.getLogger(__name__)


class Step(str, Enum):
    RULE_MANAGEMENT = "rule_management"
    AI_REQUIREMENTS = "ai_requirements"
    FILTER_DATA = "filter_data"
    KEY_RULES = "key_rules"
    COMPARISON_RULES = "comparison_rules"
    RESULT_COLUMNS = "result_columns"
    REVIEW = "review"
    GENERATE_VIEW = "generate_view"


STEP_ORDER = list(Step)


class ConfigMethod(str, Enum):
    AI = "ai"
    LOAD = "load"
    MANUAL = "manual"


def next_step(step: Step, method: ConfigMethod | None) -> Step:
    i = STEP_ORDER.index(step)
    if i == len(STEP_ORDER) - 1:
        return step
    target = STEP_ORDER[i + 1]
    if step == Step.RULE_MANAGEMENT and method != ConfigMethod.AI:
        target = Step.FILTER_DATA
    return target


def prev_step(step: Step, method: ConfigMethod | None) -> Step:
    i = STEP_ORDER.index(step)
    if i == 0:
        return step
    if step == Step.AI_REQUIREMENTS:
        return Step.RULE_MANAGEMENT
    if step == Step.FILTER_DATA and method != ConfigMethod.AI:
        return Step.RULE_MANAGEMENT
    return STEP_ORDER[i - 1]


class WizardState(BaseModel):
    current_step: Step = Step.RULE_MANAGEMENT
    config_method: ConfigMethod | None = None
    files: list[SelectedFile]
    config_files: list[DeltaFile] = Field(default_factory=list)
    key_rules: list[DeltaRule] = Field(default_factory=list)
    comparison_rules: list[DeltaRule] = Field(default_factory=list)
    file_filters: FileFilters = Field(default_factory=FileFilters)
    selected_columns_file_a: list[str] = Field(default_factory=list)
    selected_columns_file_b: list[str] = Field(default_factory=list)

    ai_requirements: str = ""
    generated_ai_config: dict[str, Any] | None = None
    ai_error: str | None = None

    is_processing: bool = False
    generated_results: dict[str, Any] | None = None
    generation_error: str | None = None

    loaded_rule_id: str | int | None = None
    has_unsaved_changes: bool = False
    rule_picker_open: bool = False
    notices: list[str] = Field(default_factory=list)


class WizardController:
    """Owns one WizardState and applies user intents to it.

    Backend calls go through ``client``; a controller built without one can still
    be driven through every step except the ones that talk to the backend.
    """

    def __init__(self, files: list[SelectedFile], client: ApiClient | None = None):
        if len(files) != 2:
            raise WizardError("Exactly 2 files are required for delta generation")
        self.client = client
        self.state = WizardState(
            files=files,
            config_files=[DeltaFile(Name=f"File{chr(65 + i)}") for i in range(len(files))],
            selected_columns_file_a=list(files[0].columns),
            selected_columns_file_b=list(files[1].columns),
        )
        self.unique_values = filters.UniqueValueCache(self._fetch_unique_values)

    # Helpers

    def _require_client(self) -> ApiClient:
        if self.client is None:
            raise WizardError("No backend client configured")
        return self.client

    def _fetch_unique_values(self, file_id: str, column: str) -> dict[str, Any]:
        return delta_service.get_column_unique_values(self._require_client(), file_id, column)

    def _touch(self) -> None:
        if self.state.loaded_rule_id is not None:
            self.state.has_unsaved_changes = True

    def available_columns(self, file_index: int) -> list[str]:
        if file_index not in (0, 1):
            raise WizardError(f"Unknown file index {file_index}")
        return list(self.state.files[file_index].columns)

    def _selection(self, file_index: int) -> list[str]:
        return self.state.selected_columns_file_a if file_index == 0 else self.state.selected_columns_file_b

    def _set_selection(self, file_index: int, selection: list[str]) -> None:
        if file_index == 0:
            self.state.selected_columns_file_a = selection
        else:
            self.state.selected_columns_file_b = selection

    def _reconcile_columns(self) -> None:
        for i in (0, 1):
            self._set_selection(
                i,
                cols.reconcile_columns(
                    self.state.key_rules,
                    self.state.comparison_rules,
                    self._selection(i),
                    self.available_columns(i),
                    i,
                ),
            )

    def snapshot(self) -> WizardState:
        return self.state.model_copy(deep=True)

    # Navigation

    def choose_method(self, method: ConfigMethod | str) -> WizardState:
        method = ConfigMethod(method)
        self.state.config_method = method
        if method == ConfigMethod.MANUAL:
            return self.next()
        if method == ConfigMethod.LOAD:
            # The rule picker drives the transition once a rule is chosen.
            self.state.rule_picker_open = True
            return self.state
        self.state.current_step = Step.AI_REQUIREMENTS
        return self.state

    def can_advance(self) -> bool:
        step = self.state.current_step
        if step == STEP_ORDER[-1]:
            return False
        if step == Step.REVIEW and not self.state.key_rules:
            return False
        return True

    def next(self) -> WizardState:
        step = self.state.current_step
        if step == Step.REVIEW and not self.state.key_rules:
            raise WizardError("At least one key rule is required before generating the delta")
        target = next_step(step, self.state.config_method)
        self.state.current_step = target
        if target == Step.GENERATE_VIEW and step != target:
            # Submission happens in run_generation(); the wizard only shows it is in flight.
            self.state.is_processing = True
            self.state.generated_results = None
            self.state.generation_error = None
        return self.state

    def prev(self) -> WizardState:
        self.state.current_step = prev_step(self.state.current_step, self.state.config_method)
        return self.state

    # Rules

    def _rules_for(self, kind: str) -> list[DeltaRule]:
        if kind == rules.KEY:
            return self.state.key_rules
        if kind == rules.COMPARISON:
            return self.state.comparison_rules
        raise WizardError(f"Unknown rule kind '{kind}', expected one of {rules.RULE_KINDS}")

    def _set_rules(self, kind: str, updated: list[DeltaRule]) -> WizardState:
        if kind == rules.KEY:
            self.state.key_rules = updated
        else:
            self.state.comparison_rules = updated
        self._reconcile_columns()
        self._touch()
        return self.state

    def add_rule(self, kind: str) -> WizardState:
        return self._set_rules(kind, rules.add_rule(self._rules_for(kind), kind))

    def update_rule(self, kind: str, index: int, field: str, value: Any) -> WizardState:
        return self._set_rules(kind, rules.update_rule(self._rules_for(kind), index, field, value))

    def remove_rule(self, kind: str, index: int) -> WizardState:
        return self._set_rules(kind, rules.remove_rule(self._rules_for(kind), index))

    # Filters

    def _set_filters(self, updated: FileFilters) -> WizardState:
        self.state.file_filters = updated
        self.state.config_files = filters.sync_files_filters(self.state.config_files, updated)
        self._touch()
        return self.state

    def _file_for_key(self, file_key: str) -> SelectedFile:
        if file_key not in filters.FILE_KEYS:
            raise WizardError(f"Unknown file key '{file_key}', expected one of {filters.FILE_KEYS}")
        return self.state.files[filters.FILE_KEYS.index(file_key)]

    def add_filter(self, file_key: str) -> WizardState:
        return self._set_filters(filters.add_filter(self.state.file_filters, file_key))

    def update_filter(self, file_key: str, index: int, field: str, value: Any) -> WizardState:
        updated = filters.update_filter(self.state.file_filters, file_key, index, field, value)
        if field == "column" and value:
            self.unique_values.invalidate(self._file_for_key(file_key).file_id, value)
        return self._set_filters(updated)

    def toggle_filter_value(self, file_key: str, index: int, value: str) -> WizardState:
        return self._set_filters(filters.toggle_filter_value(self.state.file_filters, file_key, index, value))

    def remove_filter(self, file_key: str, index: int) -> WizardState:
        return self._set_filters(filters.remove_filter(self.state.file_filters, file_key, index))

    def filter_values(self, file_key: str, index: int) -> dict[str, Any]:
        file = self._file_for_key(file_key)
        items = self.state.file_filters.for_key(file_key)
        if index < 0 or index >= len(items):
            raise WizardError(f"Filter index {index} out of range (0..{len(items) - 1})")
        column = items[index].column
        if not column:
            raise WizardError("Select a column before loading its values")
        return self.unique_values.get(file.file_id, column)

    # Output columns

    def mandatory_columns(self, file_index: int) -> list[str]:
        return cols.mandatory_columns(
            self.state.key_rules, self.state.comparison_rules, file_index, self.available_columns(file_index)
        )

    def optional_columns(self, file_index: int) -> list[str]:
        return cols.optional_columns(
            self.state.key_rules, self.state.comparison_rules, self.available_columns(file_index), file_index
        )

    def toggle_column(self, file_index: int, column: str) -> WizardState:
        available = self.available_columns(file_index)
        if column not in available:
            raise WizardError(f"Column '{column}' is not a column of file {file_index}")
        selection = cols.toggle_column(
            self._selection(file_index),
            column,
            self.state.key_rules,
            self.state.comparison_rules,
            file_index,
            available,
        )
        self._set_selection(file_index, selection)
        self._touch()
        return self.state

    def select_all_columns(self, file_index: int) -> WizardState:
        self._set_selection(file_index, cols.select_all(self.available_columns(file_index)))
        self._touch()
        return self.state

    def deselect_all_columns(self, file_index: int) -> WizardState:
        available = self.available_columns(file_index)
        self._set_selection(
            file_index, cols.deselect_all(self.state.key_rules, self.state.comparison_rules, file_index, available)
        )
        self._touch()
        return self.state

    # AI-assisted configuration

    def generate_ai_config(self, requirements: str) -> WizardState:
        client = self._require_client()
        self.state.ai_requirements = requirements
        self.state.generated_ai_config = None
        self.state.ai_error = None
        source_files = [
            {
                "filename": f.filename,
                "columns": f.columns,
                "total_rows": f.total_rows,
                "label": "Older File" if i == 0 else "Newer File",
            }
            for i, f in enumerate(self.state.files)
        ]
        try:
            response = delta_service.generate_delta_config(client, requirements, source_files)
        except (BackendError, requests.RequestException) as exc:
            logger.exception("Error generating AI config")
            self.state.ai_error = f"Failed to generate AI configuration: {exc}"
            return self.state

        if response and response.get("success") and response.get("data"):
            self.state.generated_ai_config = response
        else:
            error = (response or {}).get("error") or "Unknown error"
            logger.error("AI config generation failed: %s", error)
            self.state.ai_error = f"AI configuration generation failed: {error}"
        return self.state

    def apply_ai_config(self, config: dict[str, Any]) -> WizardState:
        try:
            key_rules = [DeltaRule(**dict(r, IsKey=True)) for r in config.get("KeyRules") or []]
            comparison_rules = [DeltaRule(**dict(r, IsKey=False)) for r in config.get("ComparisonRules") or []]
        except (TypeError, ValueError) as exc:
            logger.error("Rejected AI configuration: %s", exc)
            self.state.ai_error = f"AI configuration could not be applied: {exc}"
            raise WizardError(self.state.ai_error) from exc
        self.state.ai_error = None
        if key_rules:
            self.state.key_rules = key_rules
        if comparison_rules:
            self.state.comparison_rules = comparison_rules
        if config.get("selected_columns_file_a"):
            self.state.selected_columns_file_a = list(config["selected_columns_file_a"])
        if config.get("selected_columns_file_b"):
            self.state.selected_columns_file_b = list(config["selected_columns_file_b"])
        self._reconcile_columns()
        self.state.current_step = Step.FILTER_DATA
        self.state.has_unsaved_changes = True
        return self.state

    # Saved rules

    def load_rule(self, rule: dict[str, Any]) -> WizardState:
        try:
            config, warnings = rule_store.adapt_rule_to_files(
                rule, self.available_columns(0), self.available_columns(1)
            )
        except (TypeError, ValueError) as exc:
            logger.error("Rejected saved rule %s: %s", rule.get("id"), exc)
            raise WizardError(f"Saved rule could not be loaded: {exc}") from exc
        if config.Files:
            self.state.config_files = config.Files
        self.state.key_rules = config.KeyRules
        self.state.comparison_rules = config.ComparisonRules
        self.state.selected_columns_file_a = config.selected_columns_file_a
        self.state.selected_columns_file_b = config.selected_columns_file_b
        self.state.file_filters = config.file_filters
        self.state.config_files = filters.sync_files_filters(self.state.config_files, config.file_filters)
        self._reconcile_columns()

        self.state.loaded_rule_id = rule.get("id")
        self.state.has_unsaved_changes = False
        self.state.rule_picker_open = False
        if warnings:
            self.state.notices.append(
                "Delta rule loaded with warnings:\n" + "\n".join(warnings)
                + "\n\nPlease review and update the configuration as needed."
            )
        else:
            self.state.notices.append(f'Delta rule "{rule.get("name", "")}" loaded successfully!')
        self.state.current_step = Step.FILTER_DATA
        return self.state

    def load_saved_rule(self, rule_id: str) -> WizardState:
        client = self._require_client()
        rule = rule_store.get_rule(client, rule_id)
        rule_store.mark_rule_as_used(client, rule_id)
        return self.load_rule(rule)

    def apply_rules_workbook(self, path: str) -> WizardState:
        """Replace both rule lists with the ones mapped in an XLSX field_map sheet."""
        key_rules, comparison_rules = rule_store.load_rules_workbook(path)
        self.state.key_rules = key_rules
        self.state.comparison_rules = comparison_rules
        self._reconcile_columns()
        self._touch()
        return self.state

    def save_rule(self, metadata: RuleMetadata) -> dict[str, Any]:
        client = self._require_client()
        config = self.current_config()
        if self.state.loaded_rule_id is not None and self.state.has_unsaved_changes:
            saved = rule_store.update_rule(
                client,
                str(self.state.loaded_rule_id),
                {"metadata": metadata.model_dump(), "rule_config": rule_store.sanitize_rule_config(config)},
            )
        else:
            saved = rule_store.save_rule(client, config, metadata)
        saved = saved or {}
        self.state.loaded_rule_id = saved.get("id", self.state.loaded_rule_id)
        self.state.has_unsaved_changes = False
        self.state.notices.append(f'Delta rule "{saved.get("name", metadata.name)}" saved successfully!')
        return saved

    # Output

    def current_config(self) -> DeltaConfig:
        return DeltaConfig(
            Files=filters.sync_files_filters(self.state.config_files, self.state.file_filters),
            KeyRules=self.state.key_rules,
            ComparisonRules=self.state.comparison_rules,
            selected_columns_file_a=self.state.selected_columns_file_a,
            selected_columns_file_b=self.state.selected_columns_file_b,
            file_filters=self.state.file_filters,
            user_requirements=DEFAULT_USER_REQUIREMENTS,
        )

    def build_process_request(self) -> DeltaProcessRequest:
        return delta_service.build_process_request(
            self.current_config(),
            [f.file_id for f in self.state.files],
            user_requirements=self.state.ai_requirements or DEFAULT_USER_REQUIREMENTS,
        )

    def run_generation(self) -> WizardState:
        """Submit the current configuration and record the outcome in the state."""
        self.state.is_processing = True
        self.state.generated_results = None
        self.state.generation_error = None
        try:
            request = self.build_process_request()
            errors = request.delta_config.submission_errors()
            if errors:
                self.state.generation_error = "; ".join(errors)
                return self.state
            response = delta_service.process_delta_generation(self._require_client(), request)
            result = DeltaResult.model_validate(response or {"success": False})
            if result.success:
                self.state.generated_results = result.model_dump(mode="json", exclude_none=True)
                logger.info("Delta generation succeeded: %s", result.delta_id)
            else:
                message = result.message or "Unknown error"
                logger.error("Delta generation failed: %s", message)
                self.state.generation_error = f"Delta generation failed: {message}"
        except (BackendError, requests.RequestException, WizardError, ValidationError) as exc:
            logger.exception("Error generating delta")
            self.state.generation_error = f"Failed to generate delta: {exc}"
        finally:
            self.state.is_processing = False
        return self.state
