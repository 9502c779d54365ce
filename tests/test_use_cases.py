import pytest

from delta_wizard.errors import WizardError
from delta_wizard.use_cases import UseCaseService, generate_ideal_prompt, use_case_type_label

from conftest import FakeResponse


@pytest.fixture
def service(api):
    return UseCaseService(api)


def test_list_drops_unset_filters(service, fake_session):
    fake_session.add("GET", "/saved-use-cases", FakeResponse(200, [{"id": 1, "name": "Recon"}]))
    assert service.list_use_cases(category="finance", offset=0) == [{"id": 1, "name": "Recon"}]
    assert fake_session.last()["params"] == {"category": "finance"}


def test_search_and_get(service, fake_session):
    fake_session.add("GET", "/saved-use-cases/search/query", FakeResponse(200, []))
    fake_session.add("GET", "/saved-use-cases/uc-1", FakeResponse(200, {"id": "uc-1", "name": "Recon"}))
    service.search("monthly", tags=["fx"])
    assert fake_session.last()["params"] == {"q": "monthly", "tags": ["fx"]}
    assert service.get("uc-1", "reconciliation")["name"] == "Recon"
    assert fake_session.last()["params"] == {"use_case_type": "reconciliation"}


def test_delete_and_usage_return_true(service, fake_session):
    fake_session.add("DELETE", "/saved-use-cases/uc-1", FakeResponse(204))
    fake_session.add("POST", "/saved-use-cases/uc-1/usage", FakeResponse(200, {"success": True}))
    assert service.delete("uc-1") is True
    assert service.mark_usage("uc-1") is True


@pytest.mark.parametrize("rating", [0, 6])
def test_rating_out_of_bounds(service, fake_session, rating):
    with pytest.raises(WizardError):
        service.rate("uc-1", rating)
    assert fake_session.calls == []


def test_rating_posts_value(service, fake_session):
    fake_session.add("POST", "/saved-use-cases/uc-1/rating", FakeResponse(200, {"success": True}))
    assert service.rate("uc-1", 4) is True
    assert fake_session.last()["json"] == {"rating": 4}


def test_create_from_query_uses_template_fields(service, fake_session):
    fake_session.add("POST", "/saved-use-cases/create-from-query", FakeResponse(200, {"id": 9}))
    service.create_from_query(
        {"user_prompt": "sum by desk"},
        {"name": "Desk totals", "use_case_type": "analysis", "use_case_content": "SELECT 1"},
    )
    body = fake_session.last()["json"]
    assert body["template_name"] == "Desk totals"
    assert body["template_type"] == "analysis"
    assert body["template_content"] == "SELECT 1"
    assert body["tags"] == []


def test_execute_variants(service, fake_session):
    for suffix in ("/execute", "/execute/ai-assisted", "/execute/with-mapping", "/apply"):
        fake_session.add("POST", f"/saved-use-cases{suffix}", FakeResponse(200, {"success": True}))
    files = [{"file_id": "f-1"}]
    service.execute("uc-1", files)
    assert fake_session.last()["json"] == {"template_id": "uc-1", "files": files, "parameters": {}}
    service.execute_with_ai("uc-1", files, {"limit": 5})
    service.execute_with_mapping("uc-1", files, {"amt": "amount"})
    assert fake_session.last()["json"]["column_mapping"] == {"amt": "amount"}
    service.apply("uc-1", files)
    assert fake_session.last()["json"]["use_case_id"] == "uc-1"


def test_generate_ideal_prompt_payload(api, fake_session):
    fake_session.add("POST", "/miscellaneous/generate-ideal-prompt", FakeResponse(200, {"success": True}))
    generate_ideal_prompt(
        api,
        {
            "user_prompt": "total by desk",
            "generated_sql": "SELECT desk, SUM(amount) FROM file_1 GROUP BY desk",
            "process_id": "p-1",
            "file_schemas": [{"filename": "a.csv", "columns": ["desk", "amount"], "totalRows": 10}],
            "process_results": {
                "data": [{"desk": "fx"}, {"desk": "rates"}],
                "metadata": {"processing_info": {"description": "Totals", "column_count": 2}},
            },
        },
    )
    body = fake_session.last()["json"]
    assert body["files_info"] == [
        {"reference": "file_1", "filename": "a.csv", "columns": ["desk", "amount"], "total_rows": 10}
    ]
    assert body["results_summary"] == {"row_count": 2, "column_count": 2, "query_type": "unknown"}
    assert body["ai_description"] == "Totals"


def test_use_case_type_label():
    assert use_case_type_label("data_processing") == "Data Processing"
    assert use_case_type_label("custom") == "custom"
