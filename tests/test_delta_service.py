import pytest
from openpyxl import load_workbook

from delta_wizard import delta_service
from delta_wizard.api_client import filename_from_disposition
from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import DeltaConfig, DeltaRule, ResultType

from conftest import FakeResponse


def _config():
    return DeltaConfig(
        KeyRules=[DeltaRule(LeftFileColumn="txn_id", RightFileColumn="transaction_id", IsKey=True)],
        ComparisonRules=[DeltaRule(LeftFileColumn="amount", RightFileColumn="amount")],
        selected_columns_file_a=["txn_id", "amount"],
        selected_columns_file_b=["transaction_id", "amount"],
    )


def test_build_process_request_labels_files():
    request = delta_service.build_process_request(_config(), ["f-old", "f-new"])
    assert [f.role for f in request.files] == ["file_0", "file_1"]
    assert [f.label for f in request.files] == ["Older File", "Newer File"]
    assert request.process_type == "delta-generation"
    assert request.user_requirements == request.delta_config.user_requirements


def test_process_payload_embeds_files_and_requirements(api, fake_session):
    fake_session.add("POST", "/delta/process/", FakeResponse(200, {"success": True, "delta_id": "d-9"}))
    request = delta_service.build_process_request(_config(), ["f-old", "f-new"], "compare positions")
    result = delta_service.process_delta_generation(api, request)
    assert result["delta_id"] == "d-9"

    body = fake_session.last()["json"]
    assert body["process_name"] == "Delta Generation"
    assert body["user_requirements"] == "compare positions"
    assert body["delta_config"]["user_requirements"] == "compare positions"
    assert body["delta_config"]["files"] == body["files"]
    assert body["delta_config"]["schema_version"] == "1"


def test_results_query_uses_defaults(api, fake_session):
    fake_session.add("GET", "/delta/results/d-1", FakeResponse(200, {"data": []}))
    delta_service.get_delta_results(api, "d-1", ResultType.AMENDED)
    assert fake_session.last()["params"] == {"result_type": "amended", "page": 1, "page_size": 1000}


def test_backend_error_carries_detail(api, fake_session):
    fake_session.add("GET", "/delta/results/missing/summary", FakeResponse(404, {"detail": "Delta not found"}))
    with pytest.raises(BackendError) as err:
        delta_service.get_delta_summary(api, "missing")
    assert err.value.status_code == 404
    assert err.value.message == "Delta not found"


def test_backend_error_without_body(api, fake_session):
    fake_session.add("DELETE", "/delta/results/d-1", FakeResponse(503))
    with pytest.raises(BackendError) as err:
        delta_service.delete_delta_results(api, "d-1")
    assert err.value.message == "HTTP 503"


def test_download_uses_content_disposition_name(api, fake_session, tmp_path):
    fake_session.add(
        "GET",
        "/delta/download/d-1",
        FakeResponse(200, content=b"id,amount\n1,2\n", headers={"Content-Disposition": 'attachment; filename="deltas.csv"'}),
    )
    out = delta_service.download_delta_results(api, "d-1", output_dir=str(tmp_path))
    assert out["filename"] == "deltas.csv"
    assert (tmp_path / "deltas.csv").read_bytes() == b"id,amount\n1,2\n"
    assert fake_session.last()["params"] == {"format": "csv", "result_type": "all"}


def test_download_falls_back_to_generated_name(api, fake_session, tmp_path):
    fake_session.add("GET", "/delta/download/d-2", FakeResponse(200, content=b"x"))
    out = delta_service.download_delta_results(api, "d-2", "excel", ResultType.DELETED, output_dir=str(tmp_path))
    assert out["filename"] == "delta_d-2_deleted.excel"


def test_filename_from_disposition():
    assert filename_from_disposition(None, "x.csv") == "x.csv"
    assert filename_from_disposition("attachment; filename=report.xlsx", "x") == "report.xlsx"
    assert filename_from_disposition("attachment; filename*=UTF-8''r%C3%A9.csv", "x") == "r%C3%A9.csv"
    assert filename_from_disposition("inline", "x.csv") == "x.csv"


def test_unique_values_quotes_column(api, fake_session):
    fake_session.add("GET", "/files/f-1/columns/Trade%20Date/unique-values", FakeResponse(200, {"unique_values": []}))
    delta_service.get_column_unique_values(api, "f-1", "Trade Date")
    assert fake_session.last()["url"].endswith("/files/f-1/columns/Trade%20Date/unique-values")
    assert fake_session.last()["params"] == {"limit": 1000}


def test_save_results_payload(api, fake_session):
    fake_session.add("POST", "/save-results/save", FakeResponse(200, {"success": True}))
    delta_service.save_results_to_server(api, "d-1", ResultType.NEWLY_ADDED, "excel", "new.xlsx")
    assert fake_session.last()["json"] == {
        "result_id": "d-1",
        "result_type": "newly_added",
        "process_type": "delta",
        "file_format": "excel",
        "custom_filename": "new.xlsx",
        "description": None,
    }


def test_validate_delta_config():
    ok = delta_service.validate_delta_config(delta_service.build_process_request(_config(), ["a", "b"]))
    assert ok["is_valid"] is True and ok["warnings"] == []

    bad = delta_service.validate_delta_config(delta_service.build_process_request(DeltaConfig(), ["a"]))
    assert bad["is_valid"] is False
    assert "Exactly 2 files are required for delta generation" in bad["errors"]


def test_summary_report_rates():
    summary = {
        "summary": {
            "total_records_file_a": 100,
            "total_records_file_b": 110,
            "unchanged_records": 80,
            "amended_records": 10,
            "deleted_records": 10,
            "newly_added_records": 20,
            "processing_time_seconds": 1.5,
        }
    }
    report = delta_service.delta_summary_report(summary, {"delta_id": "d-1", "file_a": "a.csv", "file_b": "b.csv"})
    assert "- Older File: a.csv" in report
    assert "- File A Change Rate: 20.00%" in report
    assert "- File B Change Rate: 27.27%" in report
    assert "- Overall Stability: 72.73%" in report
    assert "- Processing Time: 1.5s" in report


def test_summary_report_empty_totals():
    report = delta_service.delta_summary_report({}, {})
    assert "- File A Change Rate: 0.00%" in report


def test_export_workbook_pages_through_partitions(api, fake_session, tmp_path):
    pages = {
        ("amended", 1): {"data": [{"id": 1, "amount": 5}], "pagination": {"has_more": True}},
        ("amended", 2): {"data": [{"id": 2, "amount": 6}], "pagination": {"has_more": False}},
        ("deleted", 1): {"data": [{"id": 3, "amount": 7}]},
    }

    def results(params=None, json=None):
        return FakeResponse(200, pages.get((params["result_type"], params["page"]), {"data": []}))

    fake_session.add("GET", "/delta/results/d-1", results)
    out = delta_service.export_results_workbook(
        api, "d-1", partitions=[ResultType.AMENDED, ResultType.DELETED], output_dir=str(tmp_path)
    )
    assert out["counts"] == {"amended": 2, "deleted": 1}

    wb = load_workbook(out["output_file"])
    assert wb.sheetnames == ["amended", "deleted"]
    rows = list(wb["amended"].iter_rows(values_only=True))
    assert rows == [("id", "amount"), (1, 5), (2, 6)]


def test_process_refuses_config_without_key_rules(api, fake_session):
    request = delta_service.build_process_request(DeltaConfig(), ["f-old", "f-new"])
    with pytest.raises(WizardError):
        delta_service.process_delta_generation(api, request)
    assert fake_session.calls == []


def test_saved_result_and_generated_file_downloads(api, fake_session, tmp_path):
    fake_session.add("GET", "/save-results/download/s-1", FakeResponse(200, content=b"a"))
    fake_session.add("GET", "/transformation/download/g-1", FakeResponse(200, content=b"b"))

    saved = delta_service.download_saved_result(api, "s-1", output_dir=str(tmp_path))
    generated = delta_service.download_file_generation_results(api, "g-1", "excel", output_dir=str(tmp_path))
    assert saved["filename"] == "saved_result_s-1.csv"
    assert generated["filename"] == "generated_file_g-1.xlsx"
    assert (tmp_path / "generated_file_g-1.xlsx").read_bytes() == b"b"
