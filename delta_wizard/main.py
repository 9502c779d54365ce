from __future__ import annotations

import io
import logging
import uuid
from typing import Any

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from delta_wizard import delta_service, rule_store
from delta_wizard.api_client import ApiClient
from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import DeltaSummary, ResultType, RuleMetadata, SavedRule, SelectedFile, UseCase
from delta_wizard.settings import settings
from delta_wizard.use_cases import UseCaseService, use_case_type_label
from delta_wizard.wizard import ConfigMethod, Step, WizardController

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Delta Wizard")

# Wizard sessions live for the lifetime of the process.
_sessions: dict[str, WizardController] = {}


def get_client() -> ApiClient:
    return ApiClient()


class SessionNotFound(Exception):
    pass


class CreateWizardRequest(BaseModel):
    files: list[SelectedFile]


class MethodRequest(BaseModel):
    method: ConfigMethod


class FieldUpdate(BaseModel):
    field: str
    value: Any = None


class ColumnRequest(BaseModel):
    column: str


class FilterValueRequest(BaseModel):
    value: str


class AiGenerateRequest(BaseModel):
    requirements: str


class AiApplyRequest(BaseModel):
    config: dict[str, Any]


class SaveResultsRequest(BaseModel):
    result_type: ResultType = ResultType.ALL
    file_format: str = "csv"
    custom_filename: str | None = None
    description: str | None = None


class SuggestRequest(BaseModel):
    user_prompt: str
    file_schemas: list[dict[str, Any]] = []
    limit: int = 5


class RatingRequest(BaseModel):
    rating: int
    use_case_type: str | None = None


@app.exception_handler(WizardError)
async def _wizard_error(request: Request, exc: WizardError):
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(BackendError)
async def _backend_error(request: Request, exc: BackendError):
    return JSONResponse({"error": exc.message, "backend_status": exc.status_code}, status_code=502)


@app.exception_handler(SessionNotFound)
async def _session_not_found(request: Request, exc: SessionNotFound):
    return JSONResponse({"error": "wizard session not found"}, status_code=404)


def _session(session_id: str) -> WizardController:
    ctl = _sessions.get(session_id)
    if ctl is None:
        raise SessionNotFound(session_id)
    return ctl


def _state(session_id: str, ctl: WizardController) -> JSONResponse:
    state = ctl.snapshot()
    return JSONResponse(
        {
            "session_id": session_id,
            "can_advance": ctl.can_advance(),
            "mandatory_columns": {
                "file_0": ctl.mandatory_columns(0),
                "file_1": ctl.mandatory_columns(1),
            },
            "state": state.model_dump(mode="json"),
        }
    )


# Wizard


@app.post("/wizard")
def create_wizard(body: CreateWizardRequest, client: ApiClient = Depends(get_client)):
    ctl = WizardController(body.files, client=client)
    session_id = uuid.uuid4().hex
    _sessions[session_id] = ctl
    logger.info("Started wizard session %s", session_id)
    return _state(session_id, ctl)


@app.get("/wizard/{session_id}")
def get_wizard(session_id: str):
    return _state(session_id, _session(session_id))


@app.delete("/wizard/{session_id}")
def cancel_wizard(session_id: str):
    _session(session_id)
    del _sessions[session_id]
    return JSONResponse({"cancelled": session_id})


@app.post("/wizard/{session_id}/method")
def choose_method(session_id: str, body: MethodRequest):
    ctl = _session(session_id)
    ctl.choose_method(body.method)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/next")
def next_step(session_id: str, background_tasks: BackgroundTasks):
    ctl = _session(session_id)
    before = ctl.state.current_step
    ctl.next()
    if ctl.state.current_step == Step.GENERATE_VIEW and before != Step.GENERATE_VIEW:
        background_tasks.add_task(ctl.run_generation)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/prev")
def prev_step(session_id: str):
    ctl = _session(session_id)
    ctl.prev()
    return _state(session_id, ctl)


@app.get("/wizard/{session_id}/config")
def wizard_config(session_id: str):
    ctl = _session(session_id)
    request = ctl.build_process_request()
    return JSONResponse(
        {
            "config": request.model_dump(mode="json"),
            "validation": delta_service.validate_delta_config(request),
        }
    )


# Saved rules (declared before the rule-kind routes)


@app.post("/wizard/{session_id}/saved-rules")
def save_rule(session_id: str, body: RuleMetadata):
    ctl = _session(session_id)
    saved = ctl.save_rule(body)
    return JSONResponse({"rule": saved, "state": ctl.snapshot().model_dump(mode="json")})


@app.post("/wizard/{session_id}/saved-rules/{rule_id}/load")
def load_rule(session_id: str, rule_id: str):
    ctl = _session(session_id)
    ctl.load_saved_rule(rule_id)
    return _state(session_id, ctl)


# Key / comparison rules


@app.post("/wizard/{session_id}/rules/{kind}")
def add_rule(session_id: str, kind: str):
    ctl = _session(session_id)
    ctl.add_rule(kind)
    return _state(session_id, ctl)


@app.patch("/wizard/{session_id}/rules/{kind}/{index}")
def update_rule(session_id: str, kind: str, index: int, body: FieldUpdate):
    ctl = _session(session_id)
    ctl.update_rule(kind, index, body.field, body.value)
    return _state(session_id, ctl)


@app.delete("/wizard/{session_id}/rules/{kind}/{index}")
def remove_rule(session_id: str, kind: str, index: int):
    ctl = _session(session_id)
    ctl.remove_rule(kind, index)
    return _state(session_id, ctl)


# Filters


@app.post("/wizard/{session_id}/filters/{file_key}")
def add_filter(session_id: str, file_key: str):
    ctl = _session(session_id)
    ctl.add_filter(file_key)
    return _state(session_id, ctl)


@app.patch("/wizard/{session_id}/filters/{file_key}/{index}")
def update_filter(session_id: str, file_key: str, index: int, body: FieldUpdate):
    ctl = _session(session_id)
    ctl.update_filter(file_key, index, body.field, body.value)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/filters/{file_key}/{index}/toggle")
def toggle_filter_value(session_id: str, file_key: str, index: int, body: FilterValueRequest):
    ctl = _session(session_id)
    ctl.toggle_filter_value(file_key, index, body.value)
    return _state(session_id, ctl)


@app.delete("/wizard/{session_id}/filters/{file_key}/{index}")
def remove_filter(session_id: str, file_key: str, index: int):
    ctl = _session(session_id)
    ctl.remove_filter(file_key, index)
    return _state(session_id, ctl)


@app.get("/wizard/{session_id}/filters/{file_key}/{index}/values")
def filter_values(session_id: str, file_key: str, index: int):
    return JSONResponse(_session(session_id).filter_values(file_key, index))


# Output columns


@app.post("/wizard/{session_id}/columns/{file_index}/toggle")
def toggle_column(session_id: str, file_index: int, body: ColumnRequest):
    ctl = _session(session_id)
    ctl.toggle_column(file_index, body.column)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/columns/{file_index}/select-all")
def select_all_columns(session_id: str, file_index: int):
    ctl = _session(session_id)
    ctl.select_all_columns(file_index)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/columns/{file_index}/deselect-all")
def deselect_all_columns(session_id: str, file_index: int):
    ctl = _session(session_id)
    ctl.deselect_all_columns(file_index)
    return _state(session_id, ctl)


# AI-assisted configuration


@app.post("/wizard/{session_id}/ai/generate")
def generate_ai_config(session_id: str, body: AiGenerateRequest):
    ctl = _session(session_id)
    ctl.generate_ai_config(body.requirements)
    return _state(session_id, ctl)


@app.post("/wizard/{session_id}/ai/apply")
def apply_ai_config(session_id: str, body: AiApplyRequest):
    ctl = _session(session_id)
    ctl.apply_ai_config(body.config)
    return _state(session_id, ctl)


# Results


@app.get("/results/{delta_id}")
def delta_results(
    delta_id: str,
    result_type: ResultType = ResultType.ALL,
    page: int = 1,
    page_size: int | None = None,
    client: ApiClient = Depends(get_client),
):
    return JSONResponse(delta_service.get_delta_results(client, delta_id, result_type, page, page_size))


@app.get("/results/{delta_id}/download")
def download_results(
    delta_id: str,
    fmt: str = "csv",
    result_type: ResultType = ResultType.ALL,
    client: ApiClient = Depends(get_client),
):
    name, content = delta_service.fetch_delta_download(client, delta_id, fmt, result_type)
    media_type = (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet" if fmt == "excel" else "text/csv"
    )
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={name}"},
    )


@app.post("/results/{delta_id}/save")
def save_results(delta_id: str, body: SaveResultsRequest, client: ApiClient = Depends(get_client)):
    return JSONResponse(
        delta_service.save_results_to_server(
            client, delta_id, body.result_type, body.file_format, body.custom_filename, body.description
        )
    )


@app.get("/results/{delta_id}/report", response_class=PlainTextResponse)
def results_report(delta_id: str, file_a: str = "", file_b: str = "", client: ApiClient = Depends(get_client)):
    summary = delta_service.get_delta_summary(client, delta_id)
    return delta_service.delta_summary_report(summary, {"delta_id": delta_id, "file_a": file_a, "file_b": file_b})


@app.post("/results/{delta_id}/export")
def export_results(delta_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.export_results_workbook(client, delta_id))


@app.delete("/results/{delta_id}")
def delete_results(delta_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.delete_delta_results(client, delta_id))


@app.get("/results/{delta_id}/summary")
def results_summary(delta_id: str, client: ApiClient = Depends(get_client)):
    payload = delta_service.get_delta_summary(client, delta_id)
    summary = DeltaSummary.model_validate(payload.get("summary") or payload)
    return JSONResponse(summary.model_dump(mode="json"))


@app.get("/saved-results")
def saved_results(client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.list_saved_results(client))


@app.delete("/saved-results/{saved_file_id}")
def delete_saved_result(saved_file_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.delete_saved_result(client, saved_file_id))


@app.get("/recent-results")
def recent_results(limit: int = 5, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.get_recent_results(client, limit))


@app.get("/file-generation/{generation_id}")
def file_generation_results(generation_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.get_file_generation_results(client, generation_id))


@app.delete("/file-generation/{generation_id}")
def delete_file_generation(generation_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(delta_service.delete_file_generation_results(client, generation_id))


@app.get("/health")
def health(client: ApiClient = Depends(get_client)):
    checks = {
        "delta": delta_service.get_delta_health,
        "delta_rules": rule_store.rules_health,
        "use_cases": lambda c: UseCaseService(c).health(),
    }
    status = {}
    for name, check in checks.items():
        try:
            status[name] = check(client)
        except BackendError as exc:
            status[name] = {"status": "unhealthy", "error": exc.message}
    return JSONResponse({"sessions": len(_sessions), **status})


# Saved rules library


@app.get("/saved-rules")
def list_saved_rules(
    category: str = "all",
    template_id: str | None = None,
    q: str = "",
    sort_by: str = "updated_at",
    sort_order: str = "desc",
    client: ApiClient = Depends(get_client),
):
    if template_id:
        found = rule_store.rules_by_template(client, template_id)
    else:
        found = rule_store.list_rules(client)
    found = rule_store.sort_rules(rule_store.search_rules(found or [], q, category), sort_by, sort_order)
    return JSONResponse([SavedRule.model_validate(r).model_dump(mode="json") for r in found])


@app.get("/saved-rules/categories")
def saved_rule_categories(client: ApiClient = Depends(get_client)):
    remote = rule_store.rule_categories(client) or []
    return JSONResponse(rule_store.DEFAULT_CATEGORIES + [c for c in remote if c not in rule_store.DEFAULT_CATEGORIES])


@app.get("/saved-rules/stats")
def saved_rule_stats(client: ApiClient = Depends(get_client)):
    return JSONResponse(rule_store.rule_statistics(rule_store.list_rules(client, limit=None) or []))


@app.post("/saved-rules/search")
def search_saved_rules(search_filters: dict[str, Any], client: ApiClient = Depends(get_client)):
    return JSONResponse(rule_store.search_rules_remote(client, search_filters))


@app.delete("/saved-rules/{rule_id}")
def delete_saved_rule(rule_id: str, client: ApiClient = Depends(get_client)):
    return JSONResponse(rule_store.delete_rule(client, rule_id))


# Use cases


@app.get("/use-cases")
def list_use_cases(
    use_case_type: str | None = None,
    category: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    client: ApiClient = Depends(get_client),
):
    service = UseCaseService(client)
    return JSONResponse(
        service.list_use_cases(use_case_type=use_case_type, category=category, limit=limit, offset=offset)
    )


@app.get("/use-cases/search")
def search_use_cases(q: str, use_case_type: str | None = None, category: str | None = None,
                     client: ApiClient = Depends(get_client)):
    return JSONResponse(UseCaseService(client).search(q, use_case_type=use_case_type, category=category))


@app.get("/use-cases/popular")
def popular_use_cases(limit: int = 10, use_case_type: str | None = None, client: ApiClient = Depends(get_client)):
    return JSONResponse(UseCaseService(client).popular(limit, use_case_type))


@app.get("/use-cases/categories")
def use_case_categories(use_case_type: str | None = None, client: ApiClient = Depends(get_client)):
    return JSONResponse(UseCaseService(client).categories(use_case_type))


@app.get("/use-cases/types")
def use_case_types(client: ApiClient = Depends(get_client)):
    types = UseCaseService(client).types() or []
    return JSONResponse([{"value": t, "label": use_case_type_label(t)} for t in types])


@app.post("/use-cases/suggest")
def suggest_use_cases(body: SuggestRequest, client: ApiClient = Depends(get_client)):
    return JSONResponse(UseCaseService(client).suggest(body.user_prompt, body.file_schemas, body.limit))


@app.get("/use-cases/{use_case_id}")
def get_use_case(use_case_id: str, use_case_type: str | None = None, client: ApiClient = Depends(get_client)):
    use_case = UseCase.model_validate(UseCaseService(client).get(use_case_id, use_case_type=use_case_type))
    return JSONResponse(use_case.model_dump(mode="json"))


@app.post("/use-cases/{use_case_id}/rating")
def rate_use_case(use_case_id: str, body: RatingRequest, client: ApiClient = Depends(get_client)):
    return JSONResponse({"success": UseCaseService(client).rate(use_case_id, body.rating, body.use_case_type)})


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
