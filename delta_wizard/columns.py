from __future__ import annotations

from delta_wizard.models import DeltaRule

# Shorter names are treated as still being typed unless they name a real column.
MIN_MANDATORY_LENGTH = 3


def _unique_keep_order(values: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def mandatory_columns(
    key_rules: list[DeltaRule],
    comparison_rules: list[DeltaRule],
    file_index: int,
    available_columns: list[str] | None = None,
) -> list[str]:
    """Columns referenced by any key or comparison rule on one side (0 = left, 1 = right)."""
    available = set(available_columns or [])
    out: list[str] = []
    for rule in [*key_rules, *comparison_rules]:
        raw = rule.LeftFileColumn if file_index == 0 else rule.RightFileColumn
        name = (raw or "").strip()
        if len(name) >= MIN_MANDATORY_LENGTH or name in available:
            out.append(name)
    return _unique_keep_order(out)


def optional_columns(
    key_rules: list[DeltaRule],
    comparison_rules: list[DeltaRule],
    available_columns: list[str],
    file_index: int,
) -> list[str]:
    mandatory = set(mandatory_columns(key_rules, comparison_rules, file_index, available_columns))
    return [c for c in available_columns if c not in mandatory]


def reconcile_columns(
    key_rules: list[DeltaRule],
    comparison_rules: list[DeltaRule],
    prior_selection: list[str],
    available_columns: list[str],
    file_index: int,
) -> list[str]:
    """Selection after a rule change: stale rule-derived names dropped, mandatory names added.

    A selected name survives when it is a real file column or is still referenced by a
    rule; anything else could only have come from an earlier rule edit.
    """
    mandatory = mandatory_columns(key_rules, comparison_rules, file_index, available_columns)
    keep = set(available_columns) | set(mandatory)
    cleaned = [c for c in prior_selection if c in keep]
    return _unique_keep_order(cleaned + mandatory)


def toggle_column(
    selection: list[str],
    column: str,
    key_rules: list[DeltaRule],
    comparison_rules: list[DeltaRule],
    file_index: int,
    available_columns: list[str] | None = None,
) -> list[str]:
    if column in mandatory_columns(key_rules, comparison_rules, file_index, available_columns):
        return list(selection)
    if column in selection:
        return [c for c in selection if c != column]
    return [*selection, column]


def select_all(available_columns: list[str]) -> list[str]:
    return list(available_columns)


def deselect_all(
    key_rules: list[DeltaRule],
    comparison_rules: list[DeltaRule],
    file_index: int,
    available_columns: list[str] | None = None,
) -> list[str]:
    return mandatory_columns(key_rules, comparison_rules, file_index, available_columns)
