from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from openpyxl import load_workbook
from pydantic import ValidationError

from delta_wizard.api_client import ApiClient
from delta_wizard.errors import BackendError, WizardError
from delta_wizard.models import DeltaConfig, DeltaRule, RuleMetadata

logger = logging.getLogger(__name__)

RULES_PATH = "/delta-rules"
DEFAULT_CATEGORIES = ["delta", "financial", "trading", "data-comparison", "validation"]


# Backend operations


def save_rule(client: ApiClient, config: DeltaConfig, metadata: RuleMetadata) -> dict[str, Any]:
    errors = validate_rule_metadata(metadata)
    if errors:
        raise WizardError(", ".join(errors))
    return client.post(
        f"{RULES_PATH}/save",
        json={"metadata": metadata.model_dump(), "rule_config": sanitize_rule_config(config)},
    )


def list_rules(
    client: ApiClient,
    category: str | None = None,
    template_id: str | None = None,
    limit: int | None = 50,
    offset: int | None = None,
) -> list[dict[str, Any]]:
    return client.get(
        f"{RULES_PATH}/list",
        params={"category": category, "template_id": template_id, "limit": limit, "offset": offset},
    )


def rules_by_template(client: ApiClient, template_id: str) -> list[dict[str, Any]]:
    return client.get(f"{RULES_PATH}/template/{template_id}")


def get_rule(client: ApiClient, rule_id: str) -> dict[str, Any]:
    return client.get(f"{RULES_PATH}/{rule_id}")


def update_rule(client: ApiClient, rule_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    return client.put(f"{RULES_PATH}/{rule_id}", json=updates)


def delete_rule(client: ApiClient, rule_id: str) -> dict[str, Any]:
    return client.delete(f"{RULES_PATH}/{rule_id}")


def mark_rule_as_used(client: ApiClient, rule_id: str) -> dict[str, Any]:
    return client.post(f"{RULES_PATH}/{rule_id}/use")


def search_rules_remote(client: ApiClient, search_filters: dict[str, Any]) -> list[dict[str, Any]]:
    return client.post(f"{RULES_PATH}/search", json=search_filters)


def rule_categories(client: ApiClient) -> list[str]:
    return client.get(f"{RULES_PATH}/categories/list")


def rules_health(client: ApiClient) -> dict[str, Any]:
    return client.get(f"{RULES_PATH}/health")


# Local helpers


def validate_rule_metadata(metadata: RuleMetadata) -> list[str]:
    errors = []
    name = (metadata.name or "").strip()
    if len(name) < 3:
        errors.append("Rule name must be at least 3 characters long")
    if len(metadata.name or "") > 100:
        errors.append("Rule name must be less than 100 characters")
    if len(metadata.description or "") > 500:
        errors.append("Description must be less than 500 characters")
    if len(metadata.tags) > 10:
        errors.append("Maximum 10 tags allowed")
    return errors


def sanitize_rule_config(config: DeltaConfig) -> dict[str, Any]:
    """Strip file-specific parts so the rule can be reused on other files.

    Column selections are kept only as examples; filters are applied at processing
    time and are not part of the saved rule.
    """
    data = config.model_dump(mode="json", exclude={"file_filters"})
    data["Files"] = [
        {"Name": f"File{chr(65 + i)}", "Extract": f.get("Extract") or [], "Filter": []}
        for i, f in enumerate(data.get("Files") or [])
    ]
    data["example_columns_file_a"] = data.pop("selected_columns_file_a", [])
    data["example_columns_file_b"] = data.pop("selected_columns_file_b", [])
    return data


def _missing_rule_columns(label: str, rules: list[dict[str, Any]], cols_a: list[str], cols_b: list[str]) -> list[str]:
    warnings = []
    for i, rule in enumerate(rules, start=1):
        left = rule.get("LeftFileColumn")
        right = rule.get("RightFileColumn")
        if not left or not right:
            warnings.append(f"{label} rule {i} has missing column references")
        if left and left not in cols_a:
            warnings.append(f'{label} rule {i}: Column "{left}" not found in older file')
        if right and right not in cols_b:
            warnings.append(f'{label} rule {i}: Column "{right}" not found in newer file')
    return warnings


def _restore_selection(examples: list[str] | None, columns: list[str], side: str, warnings: list[str]) -> list[str]:
    if not examples:
        return []
    missing = [c for c in examples if c not in columns]
    if missing:
        warnings.append(f"{side} file: Columns not found - {', '.join(missing)}")
    return [c for c in examples if c in columns]


def adapt_rule_to_files(
    saved_rule: dict[str, Any], columns_a: list[str], columns_b: list[str]
) -> tuple[DeltaConfig, list[str]]:
    """Fit a saved rule onto the currently selected files; returns the config plus warnings."""
    rc = dict(saved_rule.get("rule_config") or {})
    warnings: list[str] = []

    key_rules = [dict(r, IsKey=True) for r in rc.get("KeyRules") or []]
    comparison_rules = [dict(r, IsKey=False) for r in rc.get("ComparisonRules") or []]
    warnings += _missing_rule_columns("Key", key_rules, columns_a, columns_b)
    warnings += _missing_rule_columns("Comparison", comparison_rules, columns_a, columns_b)

    selected_a = rc.get("selected_columns_file_a")
    if selected_a is None:
        selected_a = _restore_selection(rc.get("example_columns_file_a"), columns_a, "Older", warnings)
    selected_b = rc.get("selected_columns_file_b")
    if selected_b is None:
        selected_b = _restore_selection(rc.get("example_columns_file_b"), columns_b, "Newer", warnings)

    if not selected_a:
        selected_a = columns_a[:5]
        warnings.append("Auto-selected first 5 columns for older file as no valid selections found")
    if not selected_b:
        selected_b = columns_b[:5]
        warnings.append("Auto-selected first 5 columns for newer file as no valid selections found")

    config = DeltaConfig(
        Files=rc.get("Files") or [],
        KeyRules=key_rules,
        ComparisonRules=comparison_rules,
        selected_columns_file_a=selected_a,
        selected_columns_file_b=selected_b,
        file_filters=rc.get("file_filters") or {},
        **({"user_requirements": rc["user_requirements"]} if rc.get("user_requirements") else {}),
    )
    return config, warnings


def search_rules(
    rules: list[dict[str, Any]], search_term: str = "", category: str = "all", tags: list[str] | None = None
) -> list[dict[str, Any]]:
    term = (search_term or "").lower()
    tags = tags or []

    def matches(rule: dict[str, Any]) -> bool:
        if term and term not in (rule.get("name") or "").lower() and term not in (rule.get("description") or "").lower():
            return False
        if category != "all" and rule.get("category") != category:
            return False
        if tags and not any(t in (rule.get("tags") or []) for t in tags):
            return False
        return True

    return [r for r in rules if matches(r)]


def sort_rules(rules: list[dict[str, Any]], sort_by: str = "updated_at", sort_order: str = "desc") -> list[dict[str, Any]]:
    def sort_key(rule: dict[str, Any]):
        value = rule.get(sort_by)
        if sort_by == "usage_count":
            return value or 0
        if sort_by == "name":
            return (value or "").lower()
        return value or ""

    return sorted(rules, key=sort_key, reverse=(sort_order != "asc"))


# Export / import


def export_rules(rules: list[dict[str, Any]], path: str | Path) -> Path:
    """Write rules to a JSON bundle that import_rules can read back."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    bundle = {
        "version": "1.0",
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "rule_type": "delta_generation",
        "rules": rules,
    }
    out_path.write_text(json.dumps(bundle, indent=2, default=str), encoding="utf-8")
    logger.info("Exported %d delta rules to %s", len(rules), out_path)
    return out_path


def import_rules(client: ApiClient, path: str | Path) -> dict[str, Any]:
    """Save every rule of an exported bundle as a new rule; one failure does not stop the rest."""
    bundle = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(bundle, dict) or not isinstance(bundle.get("rules"), list):
        raise WizardError("Invalid delta rule file format")

    results: dict[str, Any] = {"successful": 0, "failed": 0, "errors": []}
    for rule in bundle["rules"]:
        name = rule.get("name", "")
        try:
            metadata = RuleMetadata(
                name=f"{name} (Imported)",
                description=rule.get("description") or "",
                category=rule.get("category") or "delta",
                tags=rule.get("tags") or [],
                template_id=rule.get("template_id"),
                template_name=rule.get("template_name"),
            )
            rc = dict(rule.get("rule_config") or {})
            # Saved rules carry selections as examples; keep them through the re-save.
            rc.setdefault("selected_columns_file_a", rc.get("example_columns_file_a") or [])
            rc.setdefault("selected_columns_file_b", rc.get("example_columns_file_b") or [])
            save_rule(client, DeltaConfig.model_validate(rc), metadata)
            results["successful"] += 1
        except (BackendError, WizardError, ValidationError) as exc:
            logger.error("Failed to import delta rule %r: %s", name, exc)
            results["failed"] += 1
            results["errors"].append(f"{name}: {exc}")
    return results


def rule_statistics(rules: list[dict[str, Any]], now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    week_ago = now - timedelta(days=7)
    stats: dict[str, Any] = {
        "total": len(rules),
        "by_category": {},
        "by_template": {},
        "total_usage": 0,
        "most_used": None,
        "recently_created": 0,
    }
    for rule in rules:
        category = rule.get("category")
        stats["by_category"][category] = stats["by_category"].get(category, 0) + 1
        if rule.get("template_name"):
            stats["by_template"][rule["template_name"]] = stats["by_template"].get(rule["template_name"], 0) + 1
        usage = rule.get("usage_count") or 0
        stats["total_usage"] += usage
        if stats["most_used"] is None or usage > (stats["most_used"].get("usage_count") or 0):
            stats["most_used"] = rule
        created = _parse_timestamp(rule.get("created_at"))
        if created and created > week_ago:
            stats["recently_created"] += 1
    return stats


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _sheet_dicts(ws):
    rows = list(ws.iter_rows(values_only=True))
    if not rows:
        return []
    headers = [str(h) for h in rows[0]]
    out = []
    for r in rows[1:]:
        if all(v is None for v in r):
            continue
        out.append({headers[i]: r[i] for i in range(len(headers))})
    return out


def load_rules_workbook(path: str) -> tuple[list[DeltaRule], list[DeltaRule]]:
    """Read key and comparison rules from the 'field_map' sheet of a mapping workbook.

    Columns: left_field, right_field, is_key, compare, match_type, tolerance.
    """
    wb = load_workbook(path, data_only=True)
    if "field_map" not in wb.sheetnames:
        raise WizardError(f"Workbook {path} has no 'field_map' sheet")

    key_rules: list[DeltaRule] = []
    comparison_rules: list[DeltaRule] = []
    for row in _sheet_dicts(wb["field_map"]):
        rule = {
            "LeftFileColumn": str(row.get("left_field") or "").strip(),
            "RightFileColumn": str(row.get("right_field") or "").strip(),
            "MatchType": row.get("match_type") or "equals",
            "ToleranceValue": row.get("tolerance"),
        }
        if row.get("is_key"):
            key_rules.append(DeltaRule(**rule, IsKey=True))
        elif row.get("compare") is not False:
            comparison_rules.append(DeltaRule(**rule, IsKey=False))
    logger.info("Loaded %d key and %d comparison rules from %s", len(key_rules), len(comparison_rules), path)
    return key_rules, comparison_rules
