from __future__ import annotations

import os

from pydantic import BaseModel


def _env_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


class Settings(BaseModel):
    api_base_url: str = os.getenv("DELTA_API_URL", "http://localhost:8000")
    # No client-side timeout unless one is configured explicitly.
    api_timeout: float | None = _env_float("DELTA_API_TIMEOUT")
    use_cases_path: str = "/saved-use-cases"
    miscellaneous_path: str = "/miscellaneous"
    default_page_size: int = 1000
    unique_values_limit: int = 1000
    output_dir: str = "output"
    log_level: str = os.getenv("DELTA_LOG_LEVEL", "INFO")
    host: str = os.getenv("DELTA_WIZARD_HOST", "127.0.0.1")
    port: int = int(os.getenv("DELTA_WIZARD_PORT", "8080"))


settings = Settings()
