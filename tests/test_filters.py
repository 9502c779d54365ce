import pytest
import requests

from delta_wizard import filters
from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import DeltaFile, FileFilter, FileFilters


def test_add_and_remove_filter():
    ff = filters.add_filter(FileFilters(), "file_0")
    ff = filters.add_filter(ff, "file_0")
    assert len(ff.file_0) == 2 and ff.file_1 == []
    ff = filters.remove_filter(ff, "file_0", 0)
    assert len(ff.file_0) == 1
    with pytest.raises(WizardError):
        filters.remove_filter(ff, "file_0", 5)


def test_unknown_file_key_rejected():
    with pytest.raises(WizardError):
        filters.add_filter(FileFilters(), "file_2")


def test_column_change_clears_values():
    ff = FileFilters(file_1=[FileFilter(column="region", values=["EU", "US"])])
    updated = filters.update_filter(ff, "file_1", 0, "column", "desk")
    assert updated.file_1[0] == FileFilter(column="desk", values=[])
    # Original is untouched.
    assert ff.file_1[0].values == ["EU", "US"]


def test_toggle_value():
    ff = FileFilters(file_0=[FileFilter(column="region", values=["EU"])])
    ff = filters.toggle_filter_value(ff, "file_0", 0, "US")
    assert ff.file_0[0].values == ["EU", "US"]
    ff = filters.toggle_filter_value(ff, "file_0", 0, "EU")
    assert ff.file_0[0].values == ["US"]


def test_sync_files_filters_mirrors_into_files():
    ff = FileFilters(file_1=[FileFilter(column="region", values=["EU"])])
    files = [DeltaFile(Name="FileA"), DeltaFile(Name="FileB")]
    synced = filters.sync_files_filters(files, ff)
    assert synced[0].Filter == []
    assert synced[1].Filter == [FileFilter(column="region", values=["EU"])]


def test_unique_value_cache_hits_once():
    calls = []

    def fetch(file_id, column):
        calls.append((file_id, column))
        return {"unique_values": ["EU", "US"], "is_date_column": False, "total_unique": 2}

    cache = filters.UniqueValueCache(fetch)
    first = cache.get("f-old", "region")
    second = cache.get("f-old", "region")
    assert first == second
    assert calls == [("f-old", "region")]
    assert ("f-old", "region") in cache and len(cache) == 1

    cache.invalidate("f-old", "region")
    cache.get("f-old", "region")
    assert len(calls) == 2


@pytest.mark.parametrize(
    "exc",
    [BackendError(500, "boom"), requests.ConnectionError("down")],
)
def test_unique_value_failure_is_not_cached(exc):
    attempts = []

    def fetch(file_id, column):
        attempts.append(column)
        if len(attempts) == 1:
            raise exc
        return {"unique_values": ["2024-01-01"], "is_date_column": True, "total_unique": 1}

    cache = filters.UniqueValueCache(fetch)
    assert cache.get("f-new", "date") == filters.EMPTY_UNIQUE_VALUES
    assert ("f-new", "date") not in cache
    assert cache.get("f-new", "date")["is_date_column"] is True
    assert len(attempts) == 2
