from delta_wizard import columns
from delta_wizard.models import DeltaRule


def _key(left, right):
    return DeltaRule(LeftFileColumn=left, RightFileColumn=right, IsKey=True)


def _comp(left, right):
    return DeltaRule(LeftFileColumn=left, RightFileColumn=right)


def test_mandatory_columns_dedupes_and_skips_short_names():
    keys = [_key("txn_id", "transaction_id"), _key("id", "id")]
    comps = [_comp("amount", "amount"), _comp("txn_id", "transaction_id")]
    assert columns.mandatory_columns(keys, comps, 0) == ["txn_id", "amount"]
    assert columns.mandatory_columns(keys, comps, 1) == ["transaction_id", "amount"]


def test_optional_columns_exclude_mandatory():
    keys = [_key("txn_id", "transaction_id")]
    available = ["id", "txn_id", "region"]
    assert columns.optional_columns(keys, [], available, 0) == ["id", "region"]


def test_reconcile_adds_mandatory_for_each_side():
    keys = [_key("txn_id", "transaction_id")]
    left = columns.reconcile_columns(keys, [], ["amount"], ["amount", "txn_id"], 0)
    right = columns.reconcile_columns(keys, [], ["amount"], ["amount", "transaction_id"], 1)
    assert left == ["amount", "txn_id"]
    assert right == ["amount", "transaction_id"]


def test_reconcile_drops_stale_partial_names():
    # Typing "amo" then "amount" must not leave "amo" behind.
    available = ["id", "amount", "date"]
    typed = columns.reconcile_columns([_key("id", "id")], [_comp("amo", "amo")], ["id", "date"], available, 0)
    assert "amo" in typed
    done = columns.reconcile_columns([_key("id", "id")], [_comp("amount", "amount")], typed, available, 0)
    assert "amo" not in done
    assert done == ["id", "date", "amount"]


def test_reconcile_keeps_unrelated_selection_and_order():
    available = ["id", "amount", "date", "region"]
    out = columns.reconcile_columns([], [_comp("amount", "amount")], ["region", "date"], available, 0)
    assert out == ["region", "date", "amount"]


def test_reconcile_never_duplicates():
    available = ["id", "amount"]
    out = columns.reconcile_columns([_comp("amount", "amount")], [], ["amount", "amount"], available, 0)
    assert out == ["amount"]


def test_toggle_mandatory_is_noop():
    keys = [_key("txn_id", "transaction_id")]
    selection = ["txn_id", "amount"]
    assert columns.toggle_column(selection, "txn_id", keys, [], 0) == selection


def test_toggle_optional_adds_and_removes():
    selection = ["amount"]
    added = columns.toggle_column(selection, "region", [], [], 0)
    assert added == ["amount", "region"]
    assert columns.toggle_column(added, "region", [], [], 0) == ["amount"]


def test_select_and_deselect_all():
    keys = [_key("txn_id", "transaction_id")]
    available = ["id", "txn_id", "region"]
    assert columns.select_all(available) == available
    assert columns.deselect_all(keys, [], 0) == ["txn_id"]


def test_short_names_that_are_real_columns_are_mandatory():
    available = ["id", "amount", "date"]
    keys = [_key("id", "id")]
    comps = [DeltaRule(LeftFileColumn="amount", RightFileColumn="amount", MatchType="numeric_tolerance",
                       ToleranceValue=0.01)]
    assert columns.mandatory_columns(keys, comps, 0, available) == ["id", "amount"]
    assert columns.optional_columns(keys, comps, available, 0) == ["date"]
    assert columns.toggle_column(["id", "amount", "date"], "id", keys, comps, 0, available) == ["id", "amount", "date"]
    assert columns.deselect_all(keys, comps, 1, available) == ["id", "amount"]


def test_short_partial_names_are_not_mandatory():
    assert columns.mandatory_columns([_key("am", "am")], [], 0, ["id", "amount"]) == []
