from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from openpyxl import Workbook

from delta_wizard.api_client import ApiClient
from delta_wizard.models import DeltaConfig, DeltaProcessRequest, DeltaSummary, FileReference, ResultType
from delta_wizard.rules import validate_rules
from delta_wizard.settings import settings

logger = logging.getLogger(__name__)

RESULT_PARTITIONS = [
    ResultType.UNCHANGED,
    ResultType.AMENDED,
    ResultType.DELETED,
    ResultType.NEWLY_ADDED,
]


def _result_type(value: ResultType | str) -> str:
    return ResultType(value).value


def process_delta_generation(client: ApiClient, request: DeltaProcessRequest) -> dict[str, Any]:
    request.delta_config.validate_for_submission()
    files = [f.model_dump() for f in request.files]
    delta_config = request.delta_config.model_dump(mode="json")
    delta_config["user_requirements"] = request.user_requirements
    delta_config["files"] = files
    logger.info("Submitting delta generation for %d files", len(files))
    return client.post(
        "/delta/process/",
        json={
            "process_type": request.process_type,
            "process_name": request.process_name,
            "user_requirements": request.user_requirements,
            "files": files,
            "delta_config": delta_config,
        },
    )


def get_delta_results(
    client: ApiClient,
    delta_id: str,
    result_type: ResultType | str = ResultType.ALL,
    page: int = 1,
    page_size: int | None = None,
) -> dict[str, Any]:
    return client.get(
        f"/delta/results/{delta_id}",
        params={
            "result_type": _result_type(result_type),
            "page": page,
            "page_size": page_size or settings.default_page_size,
        },
    )


def get_delta_summary(client: ApiClient, delta_id: str) -> dict[str, Any]:
    return client.get(f"/delta/results/{delta_id}/summary")


def delete_delta_results(client: ApiClient, delta_id: str) -> dict[str, Any]:
    return client.delete(f"/delta/results/{delta_id}")


def get_delta_health(client: ApiClient) -> dict[str, Any]:
    return client.get("/delta/health")


def _write_download(name: str, content: bytes, output_dir: str | None) -> Path:
    out_dir = Path(output_dir or settings.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / Path(name).name
    out_path.write_bytes(content)
    return out_path


def fetch_delta_download(
    client: ApiClient,
    delta_id: str,
    fmt: str = "csv",
    result_type: ResultType | str = ResultType.ALL,
) -> tuple[str, bytes]:
    rt = _result_type(result_type)
    return client.download(
        f"/delta/download/{delta_id}",
        params={"format": fmt, "result_type": rt},
        fallback_name=f"delta_{delta_id}_{rt}.{fmt}",
    )


def download_delta_results(
    client: ApiClient,
    delta_id: str,
    fmt: str = "csv",
    result_type: ResultType | str = ResultType.ALL,
    output_dir: str | None = None,
) -> dict[str, Any]:
    name, content = fetch_delta_download(client, delta_id, fmt, result_type)
    out_path = _write_download(name, content, output_dir)
    return {"success": True, "filename": name, "path": str(out_path)}


def save_results_to_server(
    client: ApiClient,
    result_id: str,
    result_type: ResultType | str = ResultType.ALL,
    file_format: str = "csv",
    custom_filename: str | None = None,
    description: str | None = None,
    process_type: str = "delta",
) -> dict[str, Any]:
    return client.post(
        "/save-results/save",
        json={
            "result_id": result_id,
            "result_type": result_type.value if isinstance(result_type, ResultType) else result_type,
            "process_type": process_type,
            "file_format": file_format,
            "custom_filename": custom_filename,
            "description": description,
        },
    )


def list_saved_results(client: ApiClient) -> dict[str, Any]:
    return client.get("/save-results/list")


def delete_saved_result(client: ApiClient, saved_file_id: str) -> dict[str, Any]:
    return client.delete(f"/save-results/delete/{saved_file_id}")


def download_saved_result(
    client: ApiClient, saved_file_id: str, fmt: str = "csv", output_dir: str | None = None
) -> dict[str, Any]:
    name, content = client.download(
        f"/save-results/download/{saved_file_id}",
        params={"format": fmt},
        fallback_name=f"saved_result_{saved_file_id}.{fmt}",
    )
    out_path = _write_download(name, content, output_dir)
    return {"success": True, "filename": name, "path": str(out_path)}


def get_recent_results(client: ApiClient, limit: int = 5) -> dict[str, Any]:
    return client.get("/recent-results/list", params={"limit": limit})


def get_file_generation_results(client: ApiClient, generation_id: str) -> dict[str, Any]:
    return client.get(f"/file-generator/results/{generation_id}")


def delete_file_generation_results(client: ApiClient, generation_id: str) -> dict[str, Any]:
    return client.delete(f"/file-generator/results/{generation_id}")


def download_file_generation_results(
    client: ApiClient, generation_id: str, fmt: str = "csv", output_dir: str | None = None
) -> dict[str, Any]:
    ext = "xlsx" if fmt == "excel" else "csv"
    name, content = client.download(
        f"/transformation/download/{generation_id}",
        params={"format": fmt},
        fallback_name=f"generated_file_{generation_id}.{ext}",
    )
    out_path = _write_download(name, content, output_dir)
    return {"success": True, "filename": name, "path": str(out_path)}


def get_column_unique_values(
    client: ApiClient, file_id: str, column_name: str, limit: int | None = None
) -> dict[str, Any]:
    return client.get(
        f"/files/{file_id}/columns/{quote(column_name, safe='')}/unique-values",
        params={"limit": limit or settings.unique_values_limit},
    )


def generate_delta_config(client: ApiClient, requirements: str, source_files: list[dict[str, Any]]) -> dict[str, Any]:
    formatted = [
        {
            "filename": f.get("filename"),
            "columns": f.get("columns") or [],
            "totalRows": f.get("totalRows") or f.get("total_rows") or 0,
            "label": f.get("label") or "",
        }
        for f in source_files
    ]
    return client.post("/delta/generate-config/", json={"requirements": requirements, "source_files": formatted})


def validate_delta_config(request: DeltaProcessRequest) -> dict[str, Any]:
    errors: list[str] = []
    if len(request.files) != 2:
        errors.append("Exactly 2 files are required for delta generation")
    rule_errors, warnings = validate_rules(request.delta_config.KeyRules, request.delta_config.ComparisonRules)
    errors.extend(rule_errors)
    return {"is_valid": not errors, "errors": errors, "warnings": warnings}


def _pct(numerator: float, denominator: float) -> str:
    return f"{(numerator / denominator * 100) if denominator else 0.0:.2f}%"


def delta_summary_report(summary: dict[str, Any], record: dict[str, Any]) -> str:
    s = DeltaSummary.model_validate(summary.get("summary") or summary)
    total_a = s.total_records_file_a
    total_b = s.total_records_file_b
    unchanged = s.unchanged_records
    amended = s.amended_records
    deleted = s.deleted_records
    added = s.newly_added_records

    lines = [
        "Delta Generation Summary Report",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "Files Compared:",
        f"- Older File: {record.get('file_a', '')}",
        f"- Newer File: {record.get('file_b', '')}",
        "",
        "Results Summary:",
        f"- Total Records in Older File: {total_a:,}",
        f"- Total Records in Newer File: {total_b:,}",
        "",
        "Delta Analysis:",
        f"- Unchanged Records: {unchanged:,}",
        f"- Amended Records: {amended:,}",
        f"- Deleted Records: {deleted:,}",
        f"- Newly Added Records: {added:,}",
        "",
        "Processing Details:",
        f"- Processing Time: {s.processing_time_seconds:g}s",
        f"- Delta ID: {record.get('delta_id', '')}",
        f"- Timestamp: {record.get('created_at', '')}",
        "",
        "Data Quality Metrics:",
        f"- File A Change Rate: {_pct(amended + deleted, total_a)}",
        f"- File B Change Rate: {_pct(amended + added, total_b)}",
        f"- Overall Stability: {_pct(unchanged, max(total_a, total_b))}",
    ]
    return "\n".join(lines) + "\n"


def write_summary_report(client: ApiClient, delta_id: str, record: dict[str, Any], output_dir: str | None = None) -> Path:
    summary = get_delta_summary(client, delta_id)
    report = delta_summary_report(summary, {"delta_id": delta_id, **record})
    return _write_download(f"delta_summary_{delta_id}.txt", report.encode("utf-8"), output_dir)


def _sheet_name(name: str) -> str:
    safe = name.replace("/", "_").replace("\\", "_").replace(".", "_")
    return safe[:31] if len(safe) > 31 else safe


def _write_table(ws, rows: list[dict[str, Any]], headers: list[str] | None = None):
    if headers is None:
        headers = list(rows[0].keys()) if rows else []
    ws.append(headers)
    for row in rows:
        ws.append([_excel_safe(row.get(h)) for h in headers])


def _excel_safe(v):
    if isinstance(v, (datetime, int, float, bool, str)) or v is None:
        return v
    return str(v)


def _partition_rows(payload: dict[str, Any]) -> list[dict[str, Any]]:
    for key in ("data", "results", "records"):
        rows = payload.get(key)
        if isinstance(rows, list):
            return rows
    return []


def export_results_workbook(
    client: ApiClient,
    delta_id: str,
    partitions: list[ResultType] | None = None,
    output_dir: str | None = None,
) -> dict[str, Any]:
    """Fetch each result partition page by page and write one sheet per partition."""
    partitions = partitions or RESULT_PARTITIONS
    counts: dict[str, int] = {}

    wb = Workbook()
    wb.remove(wb.active)
    for partition in partitions:
        rt = _result_type(partition)
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = get_delta_results(client, delta_id, rt, page=page)
            batch = _partition_rows(payload)
            rows.extend(batch)
            pagination = payload.get("pagination") or {}
            if not batch or not pagination.get("has_more"):
                break
            page += 1
        counts[rt] = len(rows)
        _write_table(wb.create_sheet(_sheet_name(rt)), rows)

    out_dir = Path(output_dir or settings.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_path = out_dir / f"delta_{delta_id}_{ts}.xlsx"
    wb.save(out_path)
    logger.info("Wrote delta results workbook %s", out_path)
    return {"output_file": str(out_path), "counts": counts}


def build_process_request(
    config: DeltaConfig,
    file_ids: list[str],
    user_requirements: str | None = None,
) -> DeltaProcessRequest:
    files = [
        FileReference(file_id=fid, role=f"file_{i}", label="Older File" if i == 0 else "Newer File")
        for i, fid in enumerate(file_ids)
    ]
    return DeltaProcessRequest(
        user_requirements=user_requirements or config.user_requirements,
        files=files,
        delta_config=config,
    )
