from __future__ import annotations

import re
from typing import Any

from delta_wizard.errors import WizardError
from delta_wizard.models import DeltaRule, RuleMatchType

KEY = "key"
COMPARISON = "comparison"
RULE_KINDS = (KEY, COMPARISON)

_EDITABLE_FIELDS = {"LeftFileColumn", "RightFileColumn", "MatchType", "ToleranceValue"}
_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def _check_kind(kind: str) -> None:
    if kind not in RULE_KINDS:
        raise WizardError(f"Unknown rule kind '{kind}', expected one of {RULE_KINDS}")


def _check_index(rules: list[DeltaRule], index: int) -> None:
    if index < 0 or index >= len(rules):
        raise WizardError(f"Rule index {index} out of range (0..{len(rules) - 1})")


def parse_tolerance(value: Any) -> float | None:
    """Blank or zero-like input clears the tolerance; otherwise take the leading number."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = _LEADING_NUMBER.match(str(value))
    return float(m.group(0)) if m else None


def new_rule(kind: str) -> DeltaRule:
    _check_kind(kind)
    return DeltaRule(IsKey=(kind == KEY))


def add_rule(rules: list[DeltaRule], kind: str) -> list[DeltaRule]:
    return [*rules, new_rule(kind)]


def update_rule(rules: list[DeltaRule], index: int, field: str, value: Any) -> list[DeltaRule]:
    _check_index(rules, index)
    if field not in _EDITABLE_FIELDS:
        raise WizardError(f"Field '{field}' cannot be edited")

    rule = rules[index]
    if field == "ToleranceValue":
        changes: dict[str, Any] = {"ToleranceValue": parse_tolerance(value)}
    elif field == "MatchType":
        try:
            match_type = RuleMatchType(value)
        except ValueError:
            raise WizardError(f"Unknown match type '{value}'")
        changes = {"MatchType": match_type}
        if match_type != RuleMatchType.NUMERIC_TOLERANCE:
            changes["ToleranceValue"] = None
    else:
        changes = {field: "" if value is None else str(value).strip()}

    updated = list(rules)
    updated[index] = rule.model_copy(update=changes)
    return updated


def remove_rule(rules: list[DeltaRule], index: int) -> list[DeltaRule]:
    _check_index(rules, index)
    return [r for i, r in enumerate(rules) if i != index]


def validate_rules(key_rules: list[DeltaRule], comparison_rules: list[DeltaRule]) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    if not key_rules:
        errors.append("At least one key rule is required for delta generation")
    for i, rule in enumerate(key_rules, start=1):
        if not rule.LeftFileColumn or not rule.RightFileColumn:
            errors.append(f"Key rule {i}: Both left and right file columns are required")
    if not comparison_rules:
        warnings.append(
            "No comparison rules defined - records with matching keys will be considered unchanged"
        )
    return errors, warnings
