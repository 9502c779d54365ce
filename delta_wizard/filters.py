from __future__ import annotations

import logging
from typing import Any, Callable

import requests

from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import DeltaFile, FileFilter, FileFilters

logger = logging.getLogger(__name__)

FILE_KEYS = ("file_0", "file_1")
EMPTY_UNIQUE_VALUES = {"unique_values": [], "is_date_column": False, "total_unique": 0}


def _filters_for(filters: FileFilters, file_key: str) -> list[FileFilter]:
    if file_key not in FILE_KEYS:
        raise WizardError(f"Unknown file key '{file_key}', expected one of {FILE_KEYS}")
    return filters.for_key(file_key)


def _replace(filters: FileFilters, file_key: str, items: list[FileFilter]) -> FileFilters:
    return filters.model_copy(update={file_key: items})


def _check_index(items: list[FileFilter], index: int) -> None:
    if index < 0 or index >= len(items):
        raise WizardError(f"Filter index {index} out of range (0..{len(items) - 1})")


def add_filter(filters: FileFilters, file_key: str) -> FileFilters:
    items = _filters_for(filters, file_key)
    return _replace(filters, file_key, [*items, FileFilter()])


def update_filter(filters: FileFilters, file_key: str, index: int, field: str, value: Any) -> FileFilters:
    items = list(_filters_for(filters, file_key))
    _check_index(items, index)
    if field == "column":
        # Previously chosen values may not exist in the new column.
        items[index] = FileFilter(column=value or "", values=[])
    elif field == "values":
        items[index] = items[index].model_copy(update={"values": [str(v) for v in (value or [])]})
    else:
        raise WizardError(f"Filter field '{field}' cannot be edited")
    return _replace(filters, file_key, items)


def toggle_filter_value(filters: FileFilters, file_key: str, index: int, value: str) -> FileFilters:
    items = _filters_for(filters, file_key)
    _check_index(items, index)
    current = items[index].values
    values = [v for v in current if v != value] if value in current else [*current, value]
    return update_filter(filters, file_key, index, "values", values)


def remove_filter(filters: FileFilters, file_key: str, index: int) -> FileFilters:
    items = _filters_for(filters, file_key)
    _check_index(items, index)
    return _replace(filters, file_key, [f for i, f in enumerate(items) if i != index])


def sync_files_filters(files: list[DeltaFile], filters: FileFilters) -> list[DeltaFile]:
    """Mirror per-file filters into the Files section of the config."""
    out = []
    for i, f in enumerate(files):
        key = f"file_{i}"
        items = filters.for_key(key) if key in FILE_KEYS else []
        out.append(f.model_copy(update={"Filter": list(items)}))
    return out


class UniqueValueCache:
    """Session-lifetime cache of unique column values keyed by (file_id, column).

    Unbounded; entries leave only through invalidate().
    """

    def __init__(self, fetch: Callable[[str, str], dict[str, Any]]):
        self._fetch = fetch
        self._entries: dict[tuple[str, str], dict[str, Any]] = {}

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, file_id: str, column: str) -> dict[str, Any]:
        key = (file_id, column)
        if key in self._entries:
            return self._entries[key]
        try:
            payload = self._fetch(file_id, column)
        except (BackendError, requests.RequestException) as exc:
            # Not cached, so the next call retries.
            logger.error("Error fetching unique values for %s/%s: %s", file_id, column, exc)
            return dict(EMPTY_UNIQUE_VALUES)
        self._entries[key] = payload
        return payload

    def invalidate(self, file_id: str, column: str) -> None:
        self._entries.pop((file_id, column), None)
