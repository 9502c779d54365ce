from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from delta_wizard.errors import WizardError

DEFAULT_USER_REQUIREMENTS = (
    "Generate delta between older and newer files using configured key and comparison rules"
)


class RuleMatchType(str, Enum):
    EQUALS = "equals"
    CASE_INSENSITIVE = "case_insensitive"
    NUMERIC_TOLERANCE = "numeric_tolerance"
    DATE_EQUALS = "date_equals"


class ResultType(str, Enum):
    ALL = "all"
    UNCHANGED = "unchanged"
    AMENDED = "amended"
    DELETED = "deleted"
    NEWLY_ADDED = "newly_added"
    ALL_CHANGES = "all_changes"


class DeltaRule(BaseModel):
    # Shared shape for key rules (IsKey=True) and comparison rules (IsKey=False).
    LeftFileColumn: str = ""
    RightFileColumn: str = ""
    MatchType: RuleMatchType = RuleMatchType.EQUALS
    ToleranceValue: float | None = None
    IsKey: bool = False

    @model_validator(mode="after")
    def _drop_unused_tolerance(self):
        if self.MatchType != RuleMatchType.NUMERIC_TOLERANCE and self.ToleranceValue is not None:
            self.ToleranceValue = None
        return self


class FileFilter(BaseModel):
    column: str = ""
    values: list[str] = Field(default_factory=list)


class FileFilters(BaseModel):
    file_0: list[FileFilter] = Field(default_factory=list)
    file_1: list[FileFilter] = Field(default_factory=list)

    def for_key(self, file_key: str) -> list[FileFilter]:
        if file_key not in ("file_0", "file_1"):
            raise KeyError(file_key)
        return getattr(self, file_key)


class DeltaFile(BaseModel):
    Name: str
    Extract: list[dict[str, Any]] = Field(default_factory=list)
    Filter: list[FileFilter] = Field(default_factory=list)


class DeltaConfig(BaseModel):
    """Configuration assembled by the wizard and handed to the delta backend."""

    schema_version: Literal["1"] = "1"
    Files: list[DeltaFile] = Field(default_factory=list)
    KeyRules: list[DeltaRule] = Field(default_factory=list)
    ComparisonRules: list[DeltaRule] = Field(default_factory=list)
    selected_columns_file_a: list[str] = Field(default_factory=list)
    selected_columns_file_b: list[str] = Field(default_factory=list)
    file_filters: FileFilters = Field(default_factory=FileFilters)
    user_requirements: str = DEFAULT_USER_REQUIREMENTS

    def submission_errors(self) -> list[str]:
        errors: list[str] = []
        if not self.KeyRules:
            errors.append("At least one key rule is required for delta generation")
        for i, rule in enumerate(self.KeyRules, start=1):
            if not rule.LeftFileColumn or not rule.RightFileColumn:
                errors.append(f"Key rule {i}: Both left and right file columns are required")
        for rule in self.KeyRules + self.ComparisonRules:
            if rule.LeftFileColumn and rule.LeftFileColumn not in self.selected_columns_file_a:
                errors.append(f"Column '{rule.LeftFileColumn}' must be selected for the older file")
            if rule.RightFileColumn and rule.RightFileColumn not in self.selected_columns_file_b:
                errors.append(f"Column '{rule.RightFileColumn}' must be selected for the newer file")
        return errors

    def validate_for_submission(self) -> "DeltaConfig":
        errors = self.submission_errors()
        if errors:
            raise WizardError("; ".join(errors))
        return self


class SelectedFile(BaseModel):
    file_id: str
    filename: str = ""
    columns: list[str] = Field(default_factory=list)
    total_rows: int = 0


class FileReference(BaseModel):
    file_id: str
    role: str
    label: str


class DeltaProcessRequest(BaseModel):
    process_type: str = "delta-generation"
    process_name: str = "Delta Generation"
    user_requirements: str = DEFAULT_USER_REQUIREMENTS
    files: list[FileReference]
    delta_config: DeltaConfig


class DeltaSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_records_file_a: int = 0
    total_records_file_b: int = 0
    unchanged_records: int = 0
    amended_records: int = 0
    deleted_records: int = 0
    newly_added_records: int = 0
    processing_time_seconds: float = 0.0


class DeltaResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    delta_id: str | None = None
    summary: DeltaSummary | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    message: str | None = None


class RuleMetadata(BaseModel):
    name: str
    description: str = ""
    category: str = "delta"
    tags: list[str] = Field(default_factory=list)
    template_id: str | None = None
    template_name: str | None = None
    rule_type: str = "delta_generation"


class SavedRule(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int
    name: str
    description: str = ""
    category: str = "delta"
    tags: list[str] = Field(default_factory=list)
    rule_config: dict[str, Any] = Field(default_factory=dict)
    usage_count: int = 0
    last_used_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class UseCase(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int
    name: str
    description: str = ""
    use_case_type: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    use_case_content: str | None = None
    use_case_config: dict[str, Any] | None = None
    use_case_metadata: dict[str, Any] | None = None
    usage_count: int = 0
    rating: float | None = None
    created_at: str | None = None
    updated_at: str | None = None
