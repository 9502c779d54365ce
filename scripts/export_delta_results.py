"""Export a finished delta to XLSX plus a text summary report.

Edit DELTA_ID below, run script, get one sheet per result partition in /output.

Usage:
  python3 scripts/export_delta_results.py
"""

from __future__ import annotations

from pathlib import Path

from delta_wizard import delta_service
from delta_wizard.api_client import ApiClient

# --------------------
# EDIT THESE
# --------------------
DELTA_ID = "REPLACE_WITH_DELTA_ID"

# Shown in the summary report only.
OLDER_FILE = ""
NEWER_FILE = ""

# Optional: also pull the backend's own CSV of all rows.
DOWNLOAD_CSV = False
# --------------------


def _project_root_from_script() -> Path:
    """Find repo root by walking up to the folder containing pyproject.toml."""
    here = Path(__file__).resolve()
    for p in [here.parent, *here.parents]:
        if (p / "pyproject.toml").exists():
            return p
    return here.parent.parent


def main() -> None:
    client = ApiClient()
    out_dir = _project_root_from_script() / "output"

    exported = delta_service.export_results_workbook(client, DELTA_ID, output_dir=str(out_dir))
    report_path = delta_service.write_summary_report(
        client, DELTA_ID, {"file_a": OLDER_FILE, "file_b": NEWER_FILE}, output_dir=str(out_dir)
    )

    for result_type, count in exported["counts"].items():
        print(f"{result_type}: {count}")
    print(f"Workbook: {exported['output_file']}")
    print(f"Report: {report_path}")

    if DOWNLOAD_CSV:
        downloaded = delta_service.download_delta_results(client, DELTA_ID, output_dir=str(out_dir))
        print(f"CSV: {downloaded['path']}")


if __name__ == "__main__":
    main()
