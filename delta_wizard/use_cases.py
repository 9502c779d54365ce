from __future__ import annotations

import logging
from typing import Any

from delta_wizard.api_client import ApiClient
from delta_wizard.errors import WizardError
from delta_wizard.settings import settings

logger = logging.getLogger(__name__)

USE_CASE_TYPE_LABELS = {
    "data_processing": "Data Processing",
    "reconciliation": "Reconciliation",
    "analysis": "Analysis",
    "transformation": "Transformation",
    "reporting": "Reporting",
}


class UseCaseService:
    """Pass-through client for the saved use case collection."""

    def __init__(self, client: ApiClient, base_path: str | None = None):
        self.client = client
        self.base_path = (base_path or settings.use_cases_path).rstrip("/")

    def _path(self, suffix: str = "") -> str:
        return f"{self.base_path}{suffix}"

    # CRUD

    def create(self, use_case: dict[str, Any]) -> dict[str, Any]:
        return self.client.post(self._path(), json=use_case)

    def get(self, use_case_id: str, use_case_type: str | None = None) -> dict[str, Any]:
        return self.client.get(self._path(f"/{use_case_id}"), params={"use_case_type": use_case_type})

    def update(self, use_case_id: str, update: dict[str, Any], use_case_type: str | None = None) -> dict[str, Any]:
        return self.client.put(self._path(f"/{use_case_id}"), json=update, params={"use_case_type": use_case_type})

    def delete(self, use_case_id: str, use_case_type: str | None = None) -> bool:
        self.client.delete(self._path(f"/{use_case_id}"), params={"use_case_type": use_case_type})
        return True

    # Discovery

    def list_use_cases(
        self,
        use_case_type: str | None = None,
        category: str | None = None,
        is_public: bool | None = None,
        created_by: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        return self.client.get(
            self._path(),
            params={
                "use_case_type": use_case_type,
                "category": category,
                "is_public": is_public,
                "created_by": created_by,
                "limit": limit,
                "offset": offset or None,
            },
        )

    def search(
        self,
        query: str,
        use_case_type: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        return self.client.get(
            self._path("/search/query"),
            params={"q": query, "use_case_type": use_case_type, "category": category, "tags": tags or None},
        )

    def popular(self, limit: int = 10, use_case_type: str | None = None) -> list[dict[str, Any]]:
        return self.client.get(self._path("/popular/list"), params={"limit": limit, "use_case_type": use_case_type})

    def categories(self, use_case_type: str | None = None) -> list[str]:
        return self.client.get(self._path("/categories/list"), params={"use_case_type": use_case_type})

    def types(self) -> list[str]:
        return self.client.get(self._path("/types/list"))

    # Application

    def suggest(self, user_prompt: str, file_schemas: list[dict[str, Any]], limit: int = 5) -> list[dict[str, Any]]:
        return self.client.post(
            self._path("/suggest"),
            json={"user_prompt": user_prompt, "file_schemas": file_schemas, "limit": limit},
        )

    def execute(self, use_case_id: str, files: list[dict[str, Any]], parameters: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.client.post(
            self._path("/execute"),
            json={"template_id": use_case_id, "files": files, "parameters": parameters or {}},
        )

    def execute_with_ai(
        self, use_case_id: str, files: list[dict[str, Any]], parameters: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        logger.info("Executing use case %s with AI assistance", use_case_id)
        return self.client.post(
            self._path("/execute/ai-assisted"),
            json={"template_id": use_case_id, "files": files, "parameters": parameters or {}},
        )

    def execute_with_mapping(
        self,
        use_case_id: str,
        files: list[dict[str, Any]],
        column_mapping: dict[str, Any],
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.client.post(
            self._path("/execute/with-mapping"),
            json={
                "template_id": use_case_id,
                "files": files,
                "column_mapping": column_mapping,
                "parameters": parameters or {},
            },
        )

    def apply(self, use_case_id: str, files: list[dict[str, Any]], parameters: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.client.post(
            self._path("/apply"),
            json={"use_case_id": use_case_id, "files": files, "parameters": parameters or {}},
        )

    def create_from_query(self, query_data: dict[str, Any], metadata: dict[str, Any]) -> dict[str, Any]:
        # The backend still uses the older template_* field names.
        return self.client.post(
            self._path("/create-from-query"),
            json={
                "query_data": query_data,
                "template_name": metadata.get("name"),
                "template_description": metadata.get("description"),
                "template_type": metadata.get("use_case_type"),
                "category": metadata.get("category"),
                "tags": metadata.get("tags") or [],
                "created_by": metadata.get("created_by"),
                "template_content": metadata.get("use_case_content"),
                "template_config": metadata.get("template_config"),
                "template_metadata": metadata.get("use_case_metadata"),
            },
        )

    # Analytics

    def mark_usage(self, use_case_id: str, use_case_type: str | None = None) -> bool:
        self.client.post(self._path(f"/{use_case_id}/usage"), params={"use_case_type": use_case_type})
        return True

    def rate(self, use_case_id: str, rating: int, use_case_type: str | None = None) -> bool:
        if rating < 1 or rating > 5:
            raise WizardError("Rating must be between 1 and 5")
        self.client.post(
            self._path(f"/{use_case_id}/rating"),
            json={"rating": rating},
            params={"use_case_type": use_case_type},
        )
        return True

    def health(self) -> dict[str, Any]:
        return self.client.get(self._path("/health/check"))


def generate_ideal_prompt(client: ApiClient, query_data: dict[str, Any], base_path: str | None = None) -> dict[str, Any]:
    """Ask the backend to rewrite a successful ad-hoc query into a reusable prompt."""
    results = query_data.get("process_results") or {}
    info = (results.get("metadata") or {}).get("processing_info") or {}
    files_info = [
        {
            "reference": f"file_{i + 1}",
            "filename": f.get("filename"),
            "columns": f.get("columns") or [],
            "total_rows": f.get("totalRows") or f.get("total_rows") or 0,
        }
        for i, f in enumerate(query_data.get("file_schemas") or [])
    ]
    path = (base_path or settings.miscellaneous_path).rstrip("/")
    return client.post(
        f"{path}/generate-ideal-prompt",
        json={
            "original_prompt": query_data.get("user_prompt"),
            "generated_sql": query_data.get("generated_sql"),
            "ai_description": info.get("description"),
            "files_info": files_info,
            "results_summary": {
                "row_count": len(results.get("data") or []),
                "column_count": info.get("column_count", 0),
                "query_type": info.get("query_type", "unknown"),
            },
            "process_id": query_data.get("process_id"),
        },
    )


def use_case_type_label(use_case_type: str) -> str:
    return USE_CASE_TYPE_LABELS.get(use_case_type, use_case_type)
