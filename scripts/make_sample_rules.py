from pathlib import Path
from openpyxl import Workbook

out = Path("mappings/delta_rules_sample.xlsx")
out.parent.mkdir(parents=True, exist_ok=True)

wb = Workbook()
ws = wb.active
ws.title = "field_map"
ws.append(["left_field", "right_field", "is_key", "compare", "match_type", "tolerance"])
rows = [
    ["txn_id", "transaction_id", True, True, "equals", None],
    ["trade_date", "trade_date", False, True, "date_equals", None],
    ["counterparty", "counterparty_name", False, True, "case_insensitive", None],
    ["notional", "notional_amount", False, True, "numeric_tolerance", 0.01],
    ["booking_system", "source_system", False, False, "equals", None],
]
for r in rows:
    ws.append(r)

wb.save(out)
print(f"Wrote {out}")
